from __future__ import annotations

import pytest
import requests

from examsim.services.enem_api import (
    EnemApiClient,
    EnemApiError,
    EnemApiTimeout,
    question_from_payload,
)
from examsim.services.question_cache import QuestionCache


class _Response:
    def __init__(self, status_code: int = 200, payload=None, reason: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.reason = reason

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _Session:
    def __init__(self, *outcomes) -> None:
        self.headers: dict[str, str] = {}
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, dict]] = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, dict(params or {})))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _question_payload(index: int, answer: str = "A") -> dict:
    return {
        "index": index,
        "title": f"Questão {index} - ENEM 2023",
        "discipline": "matematica",
        "context": "Texto base",
        "files": [],
        "alternativesIntroduction": f"Enunciado {index}",
        "correctAlternative": answer,
        "alternatives": [
            {"letter": letter, "text": f"Alternativa {letter}"} for letter in "ABCDE"
        ],
    }


def _page(indexes, has_more: bool, limit: int = 2, total: int = 3) -> _Response:
    return _Response(
        payload={
            "metadata": {"limit": limit, "offset": 0, "total": total, "hasMore": has_more},
            "questions": [_question_payload(index) for index in indexes],
        }
    )


def _client(session: _Session, **kwargs) -> EnemApiClient:
    kwargs.setdefault("backoff_seconds", 0.0)
    return EnemApiClient("https://api.example.test/v1/", session=session, **kwargs)


def test_question_payload_mapping():
    question = question_from_payload(_question_payload(7, answer="D"))

    assert question.id == 7
    assert question.statement == "Enunciado 7"
    assert question.answer == "D"
    assert question.subject == "matematica"
    assert question.option_keys() == ["A", "B", "C", "D", "E"]
    assert "answer" not in question.to_dict()
    assert question.to_dict(include_answer=True)["answer"] == "D"


def test_get_questions_follows_every_page():
    session = _Session(_page([1, 2], has_more=True), _page([3], has_more=False))
    client = _client(session, page_size=2)

    questions = client.get_questions(2023)

    assert [question.id for question in questions] == [1, 2, 3]
    assert [params["offset"] for _, params in session.calls] == [0, 2]
    assert session.calls[0][0] == "https://api.example.test/v1/exams/2023/questions"
    assert "discipline" not in session.calls[0][1]


def test_get_questions_single_page_when_not_fetching_all():
    session = _Session(_page([1, 2], has_more=True))
    client = _client(session, page_size=2)

    questions = client.get_questions(2023, fetch_all=False)

    assert [question.id for question in questions] == [1, 2]
    assert len(session.calls) == 1


def test_question_lists_are_cached_per_key():
    session = _Session(
        _page([1], has_more=False),
        _page([1], has_more=False),
    )
    client = _client(session, cache=QuestionCache(max_entries=4))

    client.get_questions(2023)
    client.get_questions(2023)
    assert len(session.calls) == 1

    client.get_questions_by_discipline(2023, "linguagens")
    assert len(session.calls) == 2
    assert session.calls[1][1]["discipline"] == "linguagens"


def test_retries_server_errors_with_linear_backoff():
    delays: list[float] = []
    session = _Session(
        _Response(503, reason="Service Unavailable"),
        _Response(429, reason="Too Many Requests"),
        _Response(payload=[{"year": 2023, "title": "ENEM 2023"}]),
    )
    client = EnemApiClient(
        session=session, max_attempts=3, backoff_seconds=1.5, sleep=delays.append
    )

    exams = client.get_exams()

    assert [exam.year for exam in exams] == [2023]
    assert delays == [1.5, 3.0]


def test_client_errors_fail_without_retry():
    session = _Session(_Response(404, reason="Not Found"), _Response(payload={}))
    client = _client(session)

    with pytest.raises(EnemApiError) as excinfo:
        client.get_exam(1990)

    assert excinfo.value.status == 404
    assert "404 Not Found" in str(excinfo.value)
    assert len(session.calls) == 1


def test_timeouts_exhaust_attempts():
    session = _Session(requests.Timeout(), requests.Timeout(), requests.Timeout())
    client = _client(session, max_attempts=3)

    with pytest.raises(EnemApiTimeout):
        client.get_exams()
    assert len(session.calls) == 3


def test_connection_error_then_success():
    session = _Session(
        requests.ConnectionError("refused"),
        _Response(payload=[{"year": 2022}]),
    )
    client = _client(session)

    exams = client.get_exams()

    assert exams[0].title == "ENEM 2022"


def test_invalid_json_is_reported():
    session = _Session(_Response(payload=ValueError("not json")))
    client = _client(session)

    with pytest.raises(EnemApiError):
        client.get_exams()


def test_paginated_questions_metadata():
    session = _Session(_page([21, 22, 23, 24, 25], has_more=False, limit=10, total=25))
    client = _client(session)

    page = client.get_paginated_questions(2023, page=2, page_size=10)

    assert session.calls[0][1] == {"limit": 10, "offset": 20}
    assert page.total_pages == 3
    assert page.has_next_page is False
    assert page.has_previous_page is True
    assert len(page.questions) == 5


def test_single_attempt_reports_last_server_error():
    delays: list[float] = []
    session = _Session(_Response(503, reason="Service Unavailable"))
    client = _client(session, max_attempts=1, sleep=delays.append)

    with pytest.raises(EnemApiError) as excinfo:
        client.get_exams()

    assert excinfo.value.status == 503
    assert len(session.calls) == 1
    assert delays == []


def test_get_question_fetches_one_question():
    session = _Session(_Response(payload=_question_payload(12, "C")))
    client = _client(session)

    question = client.get_question(2023, 12)

    assert session.calls[0][0] == "https://api.example.test/v1/exams/2023/questions/12"
    assert question.id == 12
    assert question.answer == "C"
    assert question.option_keys() == ["A", "B", "C", "D", "E"]
