"""In-process controller for one exam attempt.

The controller owns the answer sheet, the current position and the timers of
a mounted attempt. Every mutation folds the time spent on the active question
into its answer before moving, writes the local slot, and (for selections)
saves the response row in the database on a best-effort basis.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Sequence

from sqlalchemy.exc import SQLAlchemyError

from ..i18n import translate_text
from .enem_api import Question
from .persistence import Answer, PersistenceBridge, serialise_progress

logger = logging.getLogger(__name__)

SINGLE = "single"
MULTIPLE = "multiple"
DISPLAY_MODES = (SINGLE, MULTIPLE)

IN_PROGRESS = "in-progress"
SUBMITTING = "submitting"
SUBMITTED = "submitted"

DEFAULT_QUESTIONS_PER_PAGE = 10
DEFAULT_AUTOSAVE_INTERVAL = 30
MAX_SCORE = 1000


class ExamSessionError(RuntimeError):
    """Base class for exam session problems."""


class SessionLockedError(ExamSessionError):
    """Raised when the session is no longer accepting answers or navigation."""


class InvalidSelectionError(ExamSessionError):
    """Raised when an option or question index cannot be selected."""


class SubmissionError(ExamSessionError):
    """Raised when the attempt could not be finalised; the session stays open."""


@dataclass(frozen=True)
class Notice:
    title: str
    description: str
    variant: str = "default"

    def to_dict(self) -> dict[str, str]:
        return {"title": self.title, "description": self.description, "variant": self.variant}


@dataclass
class SessionState:
    answers: list[Answer]
    start_time: datetime
    question_start_time: datetime
    current_index: int = 0
    current_page: int = 0
    display_mode: str = SINGLE
    elapsed_seconds: int = 0
    status: str = IN_PROGRESS

    @property
    def is_submitting(self) -> bool:
        return self.status == SUBMITTING


@dataclass(frozen=True)
class FinishResult:
    attempt_id: str
    score: int
    total_questions: int
    correct_answers: int
    answered_questions: int
    time_spent: int
    redirect_url: str


@dataclass
class VisibleQuestion:
    index: int
    question: Question
    answer: Answer

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "number": self.index + 1,
            "question": self.question.to_dict(),
            "selectedOption": self.answer.selected_option,
            "timeSpent": self.answer.time_spent,
        }


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_score(correct_answers: int, total_questions: int) -> int:
    """Scale the correct count to 0..1000, rounding halves up."""

    if total_questions <= 0:
        return 0
    return round_half_up(correct_answers / total_questions * MAX_SCORE)


def format_time(seconds: int) -> str:
    seconds = max(int(seconds or 0), 0)
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def _whole_seconds(start: datetime, end: datetime) -> int:
    return max(int((end - start).total_seconds()), 0)


class ExamSession:
    def __init__(
        self,
        attempt_id: str,
        questions: Sequence[Question],
        bridge: PersistenceBridge,
        *,
        questions_per_page: int = DEFAULT_QUESTIONS_PER_PAGE,
        autosave_interval: int = DEFAULT_AUTOSAVE_INTERVAL,
        language: str | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        if not questions:
            raise ExamSessionError("An exam session needs at least one question.")
        if questions_per_page <= 0:
            raise ValueError("questions_per_page must be positive")
        self.attempt_id = attempt_id
        self.questions: tuple[Question, ...] = tuple(questions)
        self.bridge = bridge
        self.questions_per_page = questions_per_page
        self.autosave_interval = max(int(autosave_interval), 1)
        self.language = language
        self._clock = clock
        self._lock = threading.RLock()
        self._notices: list[Notice] = []
        self._last_autosave_bucket = 0
        self.initialized = False
        self.state: SessionState | None = None

    # -- lifecycle -----------------------------------------------------

    def initialize(self) -> bool:
        """Restore saved progress or start fresh; returns ``True`` when restored.

        Runs once; later calls leave the state untouched.
        """

        with self._lock:
            if self.initialized:
                return False
            restored = self._restore()
            if not restored:
                self._start_fresh()
            self.initialized = True
            self._last_autosave_bucket = self.state.elapsed_seconds // self.autosave_interval
            return restored

    def _start_fresh(self) -> None:
        now = self._clock()
        self.state = SessionState(
            answers=[Answer(question_id=question.id) for question in self.questions],
            start_time=now,
            question_start_time=now,
        )

    def _restore(self) -> bool:
        saved = self.bridge.load_local()
        if saved is None:
            return False
        if len(saved.answers) != len(self.questions):
            logger.info(
                "Saved progress for attempt %s has %s answers, expected %s; starting fresh",
                self.attempt_id,
                len(saved.answers),
                len(self.questions),
            )
            return False

        now = self._clock()
        start_time = saved.start_time or now
        elapsed = saved.elapsed_seconds if saved.start_time else 0
        current_index = saved.current_index if 0 <= saved.current_index < len(self.questions) else 0
        display_mode = saved.display_mode if saved.display_mode in DISPLAY_MODES else SINGLE
        current_page = saved.current_page if 0 <= saved.current_page < self.total_pages else 0
        self.state = SessionState(
            answers=list(saved.answers),
            start_time=start_time,
            question_start_time=now,
            current_index=current_index,
            current_page=current_page,
            display_mode=display_mode,
            elapsed_seconds=elapsed,
        )
        self._notify(
            "Progress restored",
            "Your previous progress was loaded automatically.",
        )
        return True

    def teardown(self) -> None:
        """Flush the active question's time and write the local slot."""

        with self._lock:
            if not self.initialized or self.state.status == SUBMITTED:
                return
            self._commit_time_on_current()
            self.save_local()

    # -- helpers -------------------------------------------------------

    def _require_state(self) -> SessionState:
        if not self.initialized or self.state is None:
            raise ExamSessionError("Exam session has not been initialised.")
        return self.state

    def _require_open(self) -> SessionState:
        state = self._require_state()
        if state.status != IN_PROGRESS:
            message = (
                "The exam is being submitted."
                if state.status == SUBMITTING
                else "This exam has already been submitted."
            )
            raise SessionLockedError(translate_text(message, self.language))
        return state

    def _notify(self, title: str, description: str, *, variant: str = "default") -> None:
        self._notices.append(
            Notice(
                title=translate_text(title, self.language),
                description=translate_text(description, self.language),
                variant=variant,
            )
        )

    def drain_notices(self) -> list[Notice]:
        with self._lock:
            notices, self._notices = self._notices, []
            return notices

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def total_pages(self) -> int:
        return math.ceil(len(self.questions) / self.questions_per_page)

    def save_local(self) -> bool:
        state = self._require_state()
        return self.bridge.save_local(
            serialise_progress(
                state.answers,
                state.start_time,
                state.current_index,
                state.elapsed_seconds,
                display_mode=state.display_mode,
                current_page=state.current_page,
            )
        )

    # -- timing --------------------------------------------------------

    def record_time_on_current(self) -> list[Answer]:
        """Return a copy of the answers with the active question's time folded in.

        Nothing is committed; callers decide when to apply the result.
        """

        with self._lock:
            state = self._require_state()
            spent = _whole_seconds(state.question_start_time, self._clock())
            answers = list(state.answers)
            current = answers[state.current_index]
            answers[state.current_index] = replace(current, time_spent=current.time_spent + spent)
            return answers

    def _commit_time_on_current(self) -> None:
        state = self._require_state()
        now = self._clock()
        spent = _whole_seconds(state.question_start_time, now)
        current = state.answers[state.current_index]
        state.answers[state.current_index] = replace(
            current, time_spent=current.time_spent + spent
        )
        state.question_start_time = now

    def tick(self) -> int:
        """One-second timer callback; autosaves every ``autosave_interval`` seconds."""

        with self._lock:
            state = self._require_state()
            if state.status == SUBMITTED:
                return state.elapsed_seconds
            state.elapsed_seconds = _whole_seconds(state.start_time, self._clock())
            bucket = state.elapsed_seconds // self.autosave_interval
            if bucket > self._last_autosave_bucket:
                self._last_autosave_bucket = bucket
                self.save_local()
            return state.elapsed_seconds

    # -- answering -----------------------------------------------------

    def select_option(self, option: str, target_index: int | None = None) -> bool:
        """Record ``option`` for the target question; returns whether the database save succeeded."""

        with self._lock:
            state = self._require_open()
            index = state.current_index if target_index is None else int(target_index)
            if not 0 <= index < len(self.questions):
                raise InvalidSelectionError(
                    translate_text("Question index is out of range.", self.language)
                )
            question = self.questions[index]
            option = (option or "").strip().upper()
            if question.options and option not in question.option_keys():
                raise InvalidSelectionError(
                    translate_text(
                        "Option {option} is not available for this question.",
                        self.language,
                        option=option or "''",
                    )
                )

            now = self._clock()
            spent = _whole_seconds(state.question_start_time, now)
            answer = state.answers[index]
            state.answers[index] = replace(
                answer, selected_option=option, time_spent=answer.time_spent + spent
            )
            state.question_start_time = now
            if state.display_mode == MULTIPLE:
                state.current_index = index
            self.save_local()

        synced = self.bridge.save_remote(
            question.id, option, option == question.answer, spent
        )
        if not synced:
            with self._lock:
                self._notify(
                    "Error saving answer",
                    "Your answer was saved locally but has not been synced with the server.",
                    variant="destructive",
                )
        return synced

    # -- navigation ----------------------------------------------------

    def _move_to_index(self, index: int) -> bool:
        state = self._require_open()
        if not 0 <= index < len(self.questions):
            return False
        self._commit_time_on_current()
        state.current_index = index
        self.save_local()
        return True

    def change_page(self, page: int) -> bool:
        with self._lock:
            state = self._require_open()
            if not 0 <= page < self.total_pages:
                return False
            self._commit_time_on_current()
            state.current_page = page
            state.current_index = page * self.questions_per_page
            self.save_local()
            return True

    def next(self) -> bool:
        with self._lock:
            state = self._require_open()
            if state.display_mode == MULTIPLE:
                return self.change_page(state.current_page + 1)
            return self._move_to_index(state.current_index + 1)

    def previous(self) -> bool:
        with self._lock:
            state = self._require_open()
            if state.display_mode == MULTIPLE:
                return self.change_page(state.current_page - 1)
            return self._move_to_index(state.current_index - 1)

    def jump(self, index: int) -> bool:
        with self._lock:
            state = self._require_open()
            if not 0 <= index < len(self.questions):
                return False
            if state.display_mode == MULTIPLE:
                # Jumping in the grid lands on the page that holds the question.
                moved = self.change_page(index // self.questions_per_page)
                if moved:
                    state.current_index = index
                    self.save_local()
                return moved
            return self._move_to_index(index)

    def toggle_display_mode(self) -> str:
        with self._lock:
            state = self._require_open()
            self._commit_time_on_current()
            per_page = self.questions_per_page
            if state.display_mode == SINGLE:
                state.display_mode = MULTIPLE
                state.current_page = state.current_index // per_page
            else:
                state.display_mode = SINGLE
                # Keep the active question when it is still on the shown page.
                if state.current_index // per_page != state.current_page:
                    state.current_index = state.current_page * per_page
            self.save_local()
            return state.display_mode

    # -- views ---------------------------------------------------------

    def visible_questions(self) -> list[VisibleQuestion]:
        with self._lock:
            state = self._require_state()
            if state.display_mode == SINGLE:
                indexes = [state.current_index]
            else:
                start = state.current_page * self.questions_per_page
                indexes = list(range(start, min(start + self.questions_per_page, len(self.questions))))
            return [
                VisibleQuestion(index=i, question=self.questions[i], answer=state.answers[i])
                for i in indexes
            ]

    def answered_count(self) -> int:
        with self._lock:
            return sum(1 for answer in self._require_state().answers if answer.answered)

    def progress(self) -> float:
        with self._lock:
            state = self._require_state()
            if state.display_mode == SINGLE:
                return (state.current_index + 1) / len(self.questions) * 100
            return (state.current_page + 1) / self.total_pages * 100

    def on_last_step(self) -> bool:
        with self._lock:
            state = self._require_state()
            if state.display_mode == SINGLE:
                return state.current_index == len(self.questions) - 1
            return state.current_page == self.total_pages - 1

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            state = self._require_state()
            return {
                "attemptId": self.attempt_id,
                "status": state.status,
                "displayMode": state.display_mode,
                "currentIndex": state.current_index,
                "currentPage": state.current_page,
                "questionsPerPage": self.questions_per_page,
                "totalQuestions": len(self.questions),
                "totalPages": self.total_pages,
                "answeredCount": self.answered_count(),
                "progress": round(self.progress(), 2),
                "canFinish": self.on_last_step(),
                "elapsedSeconds": state.elapsed_seconds,
                "elapsedDisplay": format_time(state.elapsed_seconds),
                "questions": [item.to_dict() for item in self.visible_questions()],
                "answers": [
                    {"questionId": answer.question_id, "answered": answer.answered}
                    for answer in state.answers
                ],
                "notices": [notice.to_dict() for notice in self.drain_notices()],
            }

    # -- submission ----------------------------------------------------

    def request_finish(self) -> None:
        """Move to ``submitting``; only allowed from the last question or page."""

        with self._lock:
            state = self._require_open()
            if not self.on_last_step():
                raise ExamSessionError(
                    translate_text("Go to the last question before finishing the exam.", self.language)
                )
            state.status = SUBMITTING

    def cancel_finish(self) -> None:
        with self._lock:
            state = self._require_state()
            if state.status == SUBMITTING:
                state.status = IN_PROGRESS

    def finish(self) -> FinishResult:
        """Score the attempt from its stored responses and close it.

        The score counts the response rows in the database, so answers whose
        save failed are not included even though they show as answered here.
        """

        with self._lock:
            state = self._require_state()
            if state.status != SUBMITTING:
                raise ExamSessionError(
                    translate_text("Confirm the submission before finishing the exam.", self.language)
                )

            self._commit_time_on_current()
            now = self._clock()
            state.elapsed_seconds = _whole_seconds(state.start_time, now)
            total = len(self.questions)
            answered = self.answered_count()
            repository = self.bridge.repository
            try:
                correct = repository.correct_count()
                score = compute_score(correct, total)
                repository.complete_attempt(
                    score=score,
                    total_questions=total,
                    correct_answers=correct,
                    time_spent=state.elapsed_seconds,
                    completed_at=now,
                )
            except (SQLAlchemyError, LookupError) as exc:
                repository.rollback()
                logger.exception("Error finishing exam attempt %s", self.attempt_id)
                state.status = IN_PROGRESS
                self.save_local()
                self._notify(
                    "Error finishing exam",
                    "An error occurred while finishing the exam. Please try again.",
                    variant="destructive",
                )
                raise SubmissionError(
                    translate_text(
                        "An error occurred while finishing the exam. Please try again.",
                        self.language,
                    )
                ) from exc

            self.bridge.clear_local()
            state.status = SUBMITTED
            logger.info(
                "Attempt %s submitted: %s/%s correct, score %s",
                self.attempt_id,
                correct,
                total,
                score,
            )
            return FinishResult(
                attempt_id=self.attempt_id,
                score=score,
                total_questions=total,
                correct_answers=correct,
                answered_questions=answered,
                time_spent=state.elapsed_seconds,
                redirect_url=f"/results/{self.attempt_id}",
            )


__all__ = [
    "DISPLAY_MODES",
    "ExamSession",
    "ExamSessionError",
    "FinishResult",
    "IN_PROGRESS",
    "InvalidSelectionError",
    "MULTIPLE",
    "Notice",
    "SINGLE",
    "SUBMITTED",
    "SUBMITTING",
    "SessionLockedError",
    "SessionState",
    "SubmissionError",
    "VisibleQuestion",
    "compute_score",
    "format_time",
    "round_half_up",
]
