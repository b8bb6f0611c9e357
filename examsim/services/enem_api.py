"""Client for the public ENEM question bank REST API.

Transient failures (HTTP 5xx, 429, timeouts and connection errors) are retried
with a linear backoff; any other 4xx fails on the first response. Question
lists are memoised in a :class:`QuestionCache` keyed by year, query options
and whether every page was followed.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import requests

from .question_cache import QuestionCache, make_cache_key

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.enem.dev/v1"
DEFAULT_PAGE_SIZE = 50
RETRYABLE_STATUS = 429


class EnemApiError(RuntimeError):
    """Raised when the ENEM API cannot serve a request."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class EnemApiTimeout(EnemApiError):
    """Raised when every attempt at a request timed out."""


@dataclass(frozen=True)
class Exam:
    year: int
    title: str
    description: str | None = None


@dataclass(frozen=True)
class QuestionOption:
    key: str
    text: str


@dataclass(frozen=True)
class Question:
    id: int
    statement: str
    options: tuple[QuestionOption, ...]
    answer: str
    context: str | None = None
    files: tuple[str, ...] = field(default_factory=tuple)
    subject: str | None = None

    def option_keys(self) -> list[str]:
        return [option.key for option in self.options]

    def to_dict(self, *, include_answer: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "statement": self.statement,
            "context": self.context,
            "files": list(self.files),
            "subject": self.subject,
            "options": [{"key": option.key, "value": option.text} for option in self.options],
        }
        if include_answer:
            payload["answer"] = self.answer
        return payload


@dataclass(frozen=True)
class QuestionPage:
    questions: list[Question]
    current_page: int
    total_pages: int
    total_questions: int
    has_next_page: bool
    has_previous_page: bool


def exam_from_payload(data: Mapping[str, Any]) -> Exam:
    year = int(data["year"])
    return Exam(
        year=year,
        title=str(data.get("title") or f"ENEM {year}"),
        description=data.get("description"),
    )


def question_from_payload(data: Mapping[str, Any]) -> Question:
    """Map an API question onto the application's :class:`Question`."""

    alternatives = data.get("alternatives") or []
    return Question(
        id=int(data["index"]),
        statement=str(data.get("alternativesIntroduction") or ""),
        options=tuple(
            QuestionOption(key=str(alt.get("letter", "")), text=str(alt.get("text") or ""))
            for alt in alternatives
        ),
        answer=str(data.get("correctAlternative") or ""),
        context=data.get("context"),
        files=tuple(data.get("files") or ()),
        subject=data.get("discipline"),
    )


class EnemApiClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout: float = 10.0,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        page_size: int = DEFAULT_PAGE_SIZE,
        cache: QuestionCache | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.page_size = page_size
        self.cache = cache
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "EnemApiClient":
        return cls(
            config.get("ENEM_API_BASE_URL", DEFAULT_BASE_URL),
            timeout=config.get("ENEM_API_TIMEOUT", 10.0),
            max_attempts=config.get("ENEM_API_MAX_ATTEMPTS", 3),
            backoff_seconds=config.get("ENEM_API_BACKOFF_SECONDS", 1.0),
            page_size=config.get("ENEM_API_PAGE_SIZE", DEFAULT_PAGE_SIZE),
            cache=QuestionCache(
                max_entries=config.get("QUESTION_CACHE_SIZE", 32),
                ttl_seconds=config.get("QUESTION_CACHE_TTL"),
            ),
        )

    def _request(self, endpoint: str, params: Mapping[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{endpoint}"
        query = {key: value for key, value in (params or {}).items() if value is not None}
        last_error = EnemApiError(f"No request to {endpoint} was attempted.")

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self.session.get(url, params=query, timeout=self.timeout)
            except requests.Timeout:
                last_error = EnemApiTimeout(f"Request to {endpoint} timed out.")
            except requests.RequestException as exc:
                last_error = EnemApiError(f"Failed to reach the ENEM API: {exc}")
            else:
                status = response.status_code
                if status < 400:
                    try:
                        return response.json()
                    except ValueError as exc:
                        raise EnemApiError(
                            f"ENEM API returned invalid JSON for {endpoint}.", status=status
                        ) from exc
                reason = getattr(response, "reason", None) or ""
                message = f"ENEM API error: {status} {reason}".strip()
                if status != RETRYABLE_STATUS and status < 500:
                    logger.error("ENEM API returned status %s for %s", status, endpoint)
                    raise EnemApiError(message, status=status)
                last_error = EnemApiError(message, status=status)

            if attempt < self.max_attempts:
                delay = self.backoff_seconds * attempt
                logger.warning(
                    "ENEM API request to %s failed (%s); retry %s/%s in %.1fs",
                    endpoint,
                    last_error,
                    attempt,
                    self.max_attempts - 1,
                    delay,
                )
                if delay > 0:
                    self._sleep(delay)

        logger.error("ENEM API request to %s failed after %s attempts", endpoint, self.max_attempts)
        raise last_error

    def get_exams(self) -> list[Exam]:
        data = self._request("/exams") or []
        return [exam_from_payload(item) for item in data]

    def get_exam(self, year: int) -> Exam:
        return exam_from_payload(self._request(f"/exams/{int(year)}"))

    def get_questions(
        self,
        year: int,
        options: Mapping[str, Any] | None = None,
        fetch_all: bool = True,
    ) -> list[Question]:
        """Return the questions of ``year``; follows ``hasMore`` when ``fetch_all``."""

        options = dict(options or {})
        key = make_cache_key(year, options, fetch_all)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return list(cached)

        questions: list[Question] = []
        offset = int(options.get("offset") or 0)
        limit = int(options.get("limit") or self.page_size)
        while True:
            data = self._request(
                f"/exams/{int(year)}/questions",
                {
                    "limit": limit,
                    "offset": offset,
                    "discipline": options.get("discipline"),
                    "language": options.get("language"),
                },
            )
            items = (data or {}).get("questions") or []
            if not items:
                if not questions:
                    logger.info("ENEM API returned no questions for year %s", year)
                break
            questions.extend(question_from_payload(item) for item in items)
            metadata = data.get("metadata") or {}
            if not fetch_all or not metadata.get("hasMore"):
                break
            offset += int(metadata.get("limit") or limit)

        if self.cache is not None:
            self.cache.put(key, tuple(questions))
        return questions

    def get_questions_by_discipline(
        self, year: int, discipline: str, fetch_all: bool = True
    ) -> list[Question]:
        return self.get_questions(year, {"discipline": discipline}, fetch_all)

    def get_question(self, year: int, question_id: int) -> Question:
        return question_from_payload(
            self._request(f"/exams/{int(year)}/questions/{int(question_id)}")
        )

    def get_paginated_questions(
        self,
        year: int,
        page: int = 0,
        page_size: int = 10,
        options: Mapping[str, Any] | None = None,
    ) -> QuestionPage:
        if page < 0 or page_size <= 0:
            raise ValueError("page must be >= 0 and page_size positive")
        params = {
            key: value
            for key, value in (options or {}).items()
            if key not in {"limit", "offset"}
        }
        params.update({"limit": page_size, "offset": page * page_size})
        data = self._request(f"/exams/{int(year)}/questions", params) or {}
        total = int((data.get("metadata") or {}).get("total") or 0)
        total_pages = math.ceil(total / page_size)
        return QuestionPage(
            questions=[question_from_payload(item) for item in data.get("questions") or []],
            current_page=page,
            total_pages=total_pages,
            total_questions=total,
            has_next_page=page < total_pages - 1,
            has_previous_page=page > 0,
        )


__all__ = [
    "EnemApiClient",
    "EnemApiError",
    "EnemApiTimeout",
    "Exam",
    "Question",
    "QuestionOption",
    "QuestionPage",
    "exam_from_payload",
    "question_from_payload",
]
