"""History, results and dashboard aggregation for completed attempts."""

from __future__ import annotations

import csv
from dataclasses import dataclass
from datetime import datetime
from io import StringIO
from typing import Any, Iterable, Sequence

from ..models import ExamAttempt, Profile, QuestionResponse
from .attempts import AttemptInProgressError, get_owned_attempt, serialise_attempt
from .exam_session import format_time, round_half_up

RECENT_ATTEMPTS = 5
SORT_ORDERS = {"asc", "desc"}


class HistoryValidationError(RuntimeError):
    """Raised when history filters are invalid."""


@dataclass(frozen=True)
class DashboardSummary:
    total_attempts: int
    average_score: float
    total_time_spent: int
    last_completed_at: datetime | None
    recent_attempts: list[ExamAttempt]

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalAttempts": self.total_attempts,
            "averageScore": round(self.average_score, 1),
            "totalTimeSpent": self.total_time_spent,
            "totalTimeDisplay": format_time(self.total_time_spent),
            "lastCompletedAt": self.last_completed_at.isoformat()
            if self.last_completed_at
            else None,
            "recentAttempts": [serialise_attempt(attempt) for attempt in self.recent_attempts],
            # Oldest first so the chart reads left to right.
            "chart": [
                {
                    "date": attempt.completed_at.date().isoformat(),
                    "year": attempt.exam_year,
                    "score": attempt.score or 0,
                }
                for attempt in reversed(self.recent_attempts)
            ],
        }


def completed_attempts(profile: Profile) -> list[ExamAttempt]:
    return (
        ExamAttempt.query.filter(
            ExamAttempt.user_id == profile.id,
            ExamAttempt.completed_at.isnot(None),
        )
        .order_by(ExamAttempt.completed_at.desc())
        .all()
    )


def get_dashboard(profile: Profile) -> DashboardSummary:
    attempts = completed_attempts(profile)
    total = len(attempts)
    average = sum(attempt.score or 0 for attempt in attempts) / (total or 1)
    return DashboardSummary(
        total_attempts=total,
        average_score=average,
        total_time_spent=sum(attempt.time_spent or 0 for attempt in attempts),
        last_completed_at=attempts[0].completed_at if attempts else None,
        recent_attempts=attempts[:RECENT_ATTEMPTS],
    )


def accuracy_percent(attempt: ExamAttempt) -> int:
    correct = attempt.correct_answers or 0
    total = attempt.total_questions or 1
    return round_half_up(correct / total * 100)


def unique_years(attempts: Iterable[ExamAttempt]) -> list[int]:
    return sorted({attempt.exam_year for attempt in attempts}, reverse=True)


def filter_attempts(
    attempts: Sequence[ExamAttempt],
    *,
    year: int | str | None = None,
    search: str | None = None,
    order: str = "desc",
) -> list[ExamAttempt]:
    """Filter by exam year and year substring, then sort by completion date."""

    order = (order or "desc").lower()
    if order not in SORT_ORDERS:
        raise HistoryValidationError("Sort order must be 'asc' or 'desc'.")

    filtered = list(attempts)
    if year not in (None, "", "all"):
        try:
            wanted = int(year)
        except (TypeError, ValueError) as exc:
            raise HistoryValidationError("Year filter must be a number or 'all'.") from exc
        filtered = [attempt for attempt in filtered if attempt.exam_year == wanted]

    query = (search or "").strip()
    if query:
        filtered = [attempt for attempt in filtered if query in str(attempt.exam_year)]

    filtered.sort(key=lambda attempt: attempt.completed_at or datetime.min, reverse=order == "desc")
    return filtered


def get_history(
    profile: Profile,
    *,
    year: int | str | None = None,
    search: str | None = None,
    order: str = "desc",
) -> dict[str, Any]:
    attempts = completed_attempts(profile)
    rows = filter_attempts(attempts, year=year, search=search, order=order)
    return {
        "years": unique_years(attempts),
        "order": order.lower(),
        "attempts": [
            {
                **serialise_attempt(attempt),
                "accuracy": accuracy_percent(attempt),
                "timeDisplay": format_time(attempt.time_spent or 0),
                "resultsUrl": f"/results/{attempt.id}",
            }
            for attempt in rows
        ],
    }


def get_attempt_results(profile: Profile, attempt_id: str) -> dict[str, Any]:
    attempt = get_owned_attempt(profile, attempt_id)
    if not attempt.is_completed:
        raise AttemptInProgressError(attempt)

    responses = (
        QuestionResponse.query.filter_by(attempt_id=attempt.id)
        .order_by(QuestionResponse.question_id.asc())
        .all()
    )
    return {
        **serialise_attempt(attempt),
        "timeDisplay": format_time(attempt.time_spent or 0),
        "accuracy": accuracy_percent(attempt),
        "responses": [
            {
                "questionId": response.question_id,
                "selectedOption": response.selected_option or None,
                "isCorrect": response.is_correct,
                "timeSpent": response.time_spent or 0,
                "timeDisplay": format_time(response.time_spent or 0),
            }
            for response in responses
        ],
    }


def export_history_csv(profile: Profile) -> str:
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(
        ["attempt_id", "exam_year", "completed_at", "score", "correct", "total", "time_spent"]
    )
    for attempt in completed_attempts(profile):
        writer.writerow(
            [
                attempt.id,
                attempt.exam_year,
                attempt.completed_at.isoformat(),
                attempt.score or 0,
                attempt.correct_answers or 0,
                attempt.total_questions or 0,
                format_time(attempt.time_spent or 0),
            ]
        )
    return buffer.getvalue()


__all__ = [
    "DashboardSummary",
    "HistoryValidationError",
    "accuracy_percent",
    "completed_attempts",
    "export_history_csv",
    "filter_attempts",
    "get_attempt_results",
    "get_dashboard",
    "get_history",
    "unique_years",
]
