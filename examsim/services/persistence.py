"""Keeps exam session state in sync with the local slot and the database.

The local slot is written synchronously on every mutation and never raises.
Database writes are best effort: a failure is rolled back, logged and
reported to the caller, and local state is left untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .. import db
from ..models import ExamAttempt, QuestionResponse
from .local_store import LocalProgressStore, storage_key

logger = logging.getLogger(__name__)

UPSERT_DIALECTS = {"sqlite", "postgresql"}


@dataclass
class Answer:
    question_id: int
    selected_option: str = ""
    time_spent: int = 0

    @property
    def answered(self) -> bool:
        return self.selected_option != ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "questionId": self.question_id,
            "selectedOption": self.selected_option,
            "timeSpent": self.time_spent,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Answer":
        return cls(
            question_id=int(data["questionId"]),
            selected_option=str(data.get("selectedOption") or ""),
            time_spent=max(int(data.get("timeSpent") or 0), 0),
        )


@dataclass
class SavedProgress:
    answers: list[Answer]
    start_time: datetime | None
    current_index: int
    elapsed_seconds: int
    display_mode: str | None = None
    current_page: int = 0


def serialise_progress(
    answers: list[Answer],
    start_time: datetime,
    current_index: int,
    elapsed_seconds: int,
    *,
    display_mode: str | None = None,
    current_page: int = 0,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "answers": [answer.to_dict() for answer in answers],
        "startTimeStr": start_time.isoformat(),
        "currentIndex": current_index,
        "elapsedSeconds": elapsed_seconds,
    }
    if display_mode:
        payload["displayMode"] = display_mode
        payload["currentPage"] = current_page
    return payload


def parse_progress(data: dict[str, Any]) -> SavedProgress | None:
    """Return the saved progress, or ``None`` when the blob has the wrong shape."""

    raw_answers = data.get("answers")
    if not isinstance(raw_answers, list):
        return None
    try:
        answers = [Answer.from_dict(item) for item in raw_answers]
        start_raw = data.get("startTimeStr")
        start_time = datetime.fromisoformat(start_raw) if start_raw else None
        current_index = int(data.get("currentIndex") or 0)
        elapsed = max(int(data.get("elapsedSeconds") or 0), 0)
        current_page = int(data.get("currentPage") or 0)
    except (KeyError, TypeError, ValueError):
        return None
    return SavedProgress(
        answers=answers,
        start_time=start_time,
        current_index=current_index,
        elapsed_seconds=elapsed,
        display_mode=data.get("displayMode"),
        current_page=current_page,
    )


class AttemptRepository:
    """Database access for the rows that belong to one attempt."""

    def __init__(self, attempt_id: str) -> None:
        self.attempt_id = attempt_id

    def upsert_response(
        self,
        question_id: int,
        selected_option: str,
        is_correct: bool,
        time_spent: int,
    ) -> None:
        """Insert the (attempt, question) row or fold this selection into it."""

        dialect = db.session.get_bind().dialect.name
        if dialect in UPSERT_DIALECTS:
            self._upsert_statement(dialect, question_id, selected_option, is_correct, time_spent)
        else:
            self._upsert_fallback(question_id, selected_option, is_correct, time_spent)
        db.session.commit()

    def _upsert_statement(
        self,
        dialect: str,
        question_id: int,
        selected_option: str,
        is_correct: bool,
        time_spent: int,
    ) -> None:
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            from sqlalchemy.dialects.sqlite import insert

        table = QuestionResponse.__table__
        stmt = insert(table).values(
            attempt_id=self.attempt_id,
            question_id=question_id,
            selected_option=selected_option,
            is_correct=is_correct,
            time_spent=time_spent,
            updated_at=datetime.utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.attempt_id, table.c.question_id],
            set_={
                "selected_option": stmt.excluded.selected_option,
                "is_correct": stmt.excluded.is_correct,
                "time_spent": table.c.time_spent + stmt.excluded.time_spent,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        db.session.execute(stmt)

    def _upsert_fallback(
        self,
        question_id: int,
        selected_option: str,
        is_correct: bool,
        time_spent: int,
    ) -> None:
        for _ in range(2):
            response = QuestionResponse.query.filter_by(
                attempt_id=self.attempt_id, question_id=question_id
            ).first()
            if response:
                response.selected_option = selected_option
                response.is_correct = is_correct
                response.time_spent = (response.time_spent or 0) + time_spent
                db.session.flush()
                return
            try:
                with db.session.begin_nested():
                    db.session.add(
                        QuestionResponse(
                            attempt_id=self.attempt_id,
                            question_id=question_id,
                            selected_option=selected_option,
                            is_correct=is_correct,
                            time_spent=time_spent,
                        )
                    )
                return
            except IntegrityError:
                # Another writer inserted the row first; update it instead.
                continue

    def responses(self) -> list[QuestionResponse]:
        return (
            QuestionResponse.query.filter_by(attempt_id=self.attempt_id)
            .order_by(QuestionResponse.question_id.asc())
            .all()
        )

    def correct_count(self) -> int:
        stmt = select(func.count(QuestionResponse.id)).where(
            QuestionResponse.attempt_id == self.attempt_id,
            QuestionResponse.is_correct.is_(True),
        )
        return int(db.session.execute(stmt).scalar() or 0)

    def complete_attempt(
        self,
        *,
        score: int,
        total_questions: int,
        correct_answers: int,
        time_spent: int,
        completed_at: datetime,
    ) -> ExamAttempt:
        attempt = db.session.get(ExamAttempt, self.attempt_id)
        if attempt is None:
            raise LookupError(f"Attempt {self.attempt_id} no longer exists.")
        attempt.completed_at = completed_at
        attempt.score = score
        attempt.total_questions = total_questions
        attempt.correct_answers = correct_answers
        attempt.time_spent = time_spent
        db.session.commit()
        return attempt

    def rollback(self) -> None:
        db.session.rollback()


class PersistenceBridge:
    def __init__(
        self,
        attempt_id: str,
        store: LocalProgressStore,
        repository: AttemptRepository | None = None,
    ) -> None:
        self.attempt_id = attempt_id
        self.key = storage_key(attempt_id)
        self.store = store
        self.repository = repository or AttemptRepository(attempt_id)

    def load_local(self) -> SavedProgress | None:
        data = self.store.load(self.key)
        if data is None:
            return None
        progress = parse_progress(data)
        if progress is None:
            logger.warning("Discarding malformed saved progress for attempt %s", self.attempt_id)
        return progress

    def save_local(self, payload: dict[str, Any]) -> bool:
        return self.store.save(self.key, payload)

    def clear_local(self) -> None:
        self.store.remove(self.key)

    def save_remote(
        self,
        question_id: int,
        selected_option: str,
        is_correct: bool,
        time_spent: int,
    ) -> bool:
        try:
            self.repository.upsert_response(question_id, selected_option, is_correct, time_spent)
        except SQLAlchemyError:
            self.repository.rollback()
            logger.exception(
                "Error saving answer for attempt %s question %s", self.attempt_id, question_id
            )
            return False
        return True


__all__ = [
    "Answer",
    "AttemptRepository",
    "PersistenceBridge",
    "SavedProgress",
    "parse_progress",
    "serialise_progress",
]
