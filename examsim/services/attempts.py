"""Exam catalogue and attempt lifecycle helpers."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from .. import db
from ..models import Exam, ExamAttempt, Profile, QuestionResponse
from .enem_api import EnemApiClient, EnemApiError, Question

logger = logging.getLogger(__name__)


class AttemptError(RuntimeError):
    """Base class for attempt lifecycle problems."""


class AttemptNotFoundError(AttemptError):
    """Raised when an attempt does not exist or belongs to someone else."""


class AttemptCompletedError(AttemptError):
    """Raised when an exam view is requested for a finished attempt."""

    def __init__(self, attempt: ExamAttempt) -> None:
        super().__init__(f"Attempt {attempt.id} is already completed.")
        self.attempt = attempt


class AttemptInProgressError(AttemptError):
    """Raised when results are requested for an attempt that is still open."""

    def __init__(self, attempt: ExamAttempt) -> None:
        super().__init__(f"Attempt {attempt.id} has not been completed.")
        self.attempt = attempt


class QuestionsUnavailableError(AttemptError):
    """Raised when the question bank for an attempt cannot be loaded."""


def start_attempt(profile: Profile, year: int) -> ExamAttempt:
    attempt = ExamAttempt(exam_year=int(year), user_id=profile.id, started_at=datetime.utcnow())
    db.session.add(attempt)
    db.session.commit()
    logger.info("Attempt %s started for ENEM %s", attempt.id, year)
    return attempt


def get_owned_attempt(profile: Profile, attempt_id: str) -> ExamAttempt:
    attempt = ExamAttempt.query.filter_by(id=attempt_id, user_id=profile.id).first()
    if not attempt:
        raise AttemptNotFoundError(f"Attempt {attempt_id} not found.")
    return attempt


def get_open_attempt(profile: Profile, attempt_id: str) -> ExamAttempt:
    """Return an attempt that can still be taken; completed ones raise."""

    attempt = get_owned_attempt(profile, attempt_id)
    if attempt.is_completed:
        raise AttemptCompletedError(attempt)
    return attempt


def discard_attempt(attempt: ExamAttempt) -> bool:
    """Delete an attempt that never recorded an answer. Returns whether it was deleted."""

    has_responses = (
        QuestionResponse.query.filter_by(attempt_id=attempt.id).first() is not None
    )
    if has_responses or attempt.is_completed:
        return False
    db.session.delete(attempt)
    db.session.commit()
    logger.info("Discarded attempt %s without questions", attempt.id)
    return True


def load_attempt_questions(client: EnemApiClient, attempt: ExamAttempt) -> list[Question]:
    """Fetch the question bank for ``attempt``; unusable attempts are discarded."""

    try:
        questions = client.get_questions(attempt.exam_year)
    except EnemApiError as exc:
        logger.error("Could not load questions for attempt %s: %s", attempt.id, exc)
        discard_attempt(attempt)
        raise QuestionsUnavailableError(
            f"Could not load the questions for ENEM {attempt.exam_year}."
        ) from exc

    if not questions:
        discard_attempt(attempt)
        raise QuestionsUnavailableError(f"No questions are available for ENEM {attempt.exam_year}.")
    return questions


def sync_exam_catalog(client: EnemApiClient, *, refresh_questions: bool = False) -> list[Exam]:
    """Mirror the remote exam list into the ``exams`` table.

    With ``refresh_questions`` the cached question lists are dropped as well,
    so the next attempt of any year refetches its questions.
    """

    remote_exams = client.get_exams()
    existing = {exam.year: exam for exam in Exam.query.all()}
    for remote in remote_exams:
        exam = existing.get(remote.year)
        if exam is None:
            exam = Exam(year=remote.year, title=remote.title, description=remote.description)
            db.session.add(exam)
            existing[remote.year] = exam
        else:
            exam.title = remote.title
            exam.description = remote.description
    db.session.commit()
    cache = getattr(client, "cache", None)
    if refresh_questions and cache is not None:
        dropped = cache.invalidate()
        logger.info("Exam catalogue synced; dropped %s cached question lists", dropped)
    return sorted(existing.values(), key=lambda exam: exam.year, reverse=True)


def list_exams(client: EnemApiClient) -> list[Exam]:
    """Return the catalogue, refreshing it from the API and falling back to the stored copy."""

    try:
        return sync_exam_catalog(client)
    except EnemApiError as exc:
        db.session.rollback()
        logger.warning("Exam catalogue refresh failed, serving stored copy: %s", exc)
        return Exam.query.order_by(Exam.year.desc()).all()


def serialise_attempt(attempt: ExamAttempt) -> dict[str, Any]:
    return {
        "id": attempt.id,
        "examYear": attempt.exam_year,
        "startedAt": attempt.started_at.isoformat() if attempt.started_at else None,
        "completedAt": attempt.completed_at.isoformat() if attempt.completed_at else None,
        "score": attempt.score,
        "totalQuestions": attempt.total_questions,
        "correctAnswers": attempt.correct_answers,
        "timeSpent": attempt.time_spent,
    }


def get_exam_info(client: EnemApiClient, profile: Profile, year: int) -> dict[str, Any]:
    exam = client.get_exam(year)
    attempts = (
        ExamAttempt.query.filter_by(user_id=profile.id, exam_year=int(year))
        .order_by(ExamAttempt.started_at.desc())
        .all()
    )
    return {
        "year": exam.year,
        "title": exam.title,
        "description": exam.description,
        "attempts": [serialise_attempt(attempt) for attempt in attempts],
    }


__all__ = [
    "AttemptCompletedError",
    "AttemptError",
    "AttemptInProgressError",
    "AttemptNotFoundError",
    "QuestionsUnavailableError",
    "discard_attempt",
    "get_exam_info",
    "get_open_attempt",
    "get_owned_attempt",
    "list_exams",
    "load_attempt_questions",
    "serialise_attempt",
    "start_attempt",
    "sync_exam_catalog",
]
