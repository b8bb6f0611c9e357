from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from examsim import create_app, db
from examsim.config import TestConfig
from examsim.models import ExamAttempt
from examsim.services.enem_api import EnemApiError, Exam, Question, QuestionOption


def _questions() -> list[Question]:
    return [
        Question(
            id=index,
            statement=f"Enunciado {index}",
            options=tuple(QuestionOption(key=letter, text=letter.lower()) for letter in "ABCDE"),
            answer="A",
        )
        for index in (1, 2, 3)
    ]


class _FakeClient:
    def __init__(self) -> None:
        self.fail_questions = False
        self.fail_exams = False

    def get_exams(self):
        if self.fail_exams:
            raise EnemApiError("ENEM API error: 503 Service Unavailable", status=503)
        return [Exam(year=2023, title="ENEM 2023"), Exam(year=2022, title="ENEM 2022")]

    def get_exam(self, year):
        if year != 2023:
            raise EnemApiError("ENEM API error: 404 Not Found", status=404)
        return Exam(year=2023, title="ENEM 2023", description="Prova de 2023")

    def get_questions(self, year, options=None, fetch_all=True):
        if self.fail_questions:
            raise EnemApiError("ENEM API error: 500 Internal Server Error", status=500)
        return _questions()


@pytest.fixture
def app(tmp_path):
    class _Config(TestConfig):
        LOCAL_PROGRESS_DIR = str(tmp_path)
        EXAM_QUESTIONS_PER_PAGE = 2

    app = create_app(_Config)
    app.extensions["enem_api"] = _FakeClient()
    with app.app_context():
        db.create_all()
    # No app context stays pushed while requests run.
    yield app
    app.extensions["exam_sessions"].shutdown()
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(client):
    response = client.post(
        "/api/auth/register",
        json={"email": "Davi@Example.com", "password": "secret123", "fullName": "Davi Rocha"},
    )
    assert response.status_code == 201
    return {"Authorization": f"Bearer {response.get_json()['token']}"}


def _start(client, headers, year: int = 2023) -> str:
    response = client.post(f"/api/exams/{year}/attempts", headers=headers)
    assert response.status_code == 201
    return response.get_json()["id"]


def test_requires_bearer_token(client):
    response = client.get("/api/dashboard")

    assert response.status_code == 401
    assert response.get_json()["redirectUrl"] == "/login"


def test_register_rejects_duplicates_and_login_works(client, auth_headers):
    duplicate = client.post(
        "/api/auth/register", json={"email": "davi@example.com", "password": "secret123"}
    )
    assert duplicate.status_code == 409

    bad = client.post("/api/auth/login", json={"email": "davi@example.com", "password": "nope"})
    assert bad.status_code == 401

    good = client.post(
        "/api/auth/login", json={"email": "davi@example.com", "password": "secret123"}
    )
    assert good.status_code == 200
    assert good.get_json()["token"]


def test_logout_revokes_token(client, auth_headers):
    assert client.post("/api/auth/logout", headers=auth_headers).status_code == 200
    assert client.get("/api/profile", headers=auth_headers).status_code == 401


def test_profile_language_switches_messages(client, auth_headers):
    response = client.put(
        "/api/profile", json={"preferredLanguage": "pt-br"}, headers=auth_headers
    )
    assert response.status_code == 200
    assert response.get_json()["profile"]["preferredLanguage"] == "PORTUGUESE"

    missing = client.get("/api/attempts/does-not-exist/results", headers=auth_headers)
    assert missing.status_code == 404
    assert missing.get_json()["error"] == "Tentativa de prova não encontrada."


def test_exam_catalogue_falls_back_to_stored_copy(app, client, auth_headers):
    first = client.get("/api/exams", headers=auth_headers)
    assert [exam["year"] for exam in first.get_json()["exams"]] == [2023, 2022]

    app.extensions["enem_api"].fail_exams = True
    second = client.get("/api/exams", headers=auth_headers)
    assert second.status_code == 200
    assert [exam["year"] for exam in second.get_json()["exams"]] == [2023, 2022]


def test_exam_info_lists_attempts(client, auth_headers):
    attempt_id = _start(client, auth_headers)

    response = client.get("/api/exams/2023", headers=auth_headers)
    assert response.status_code == 200
    assert [item["id"] for item in response.get_json()["attempts"]] == [attempt_id]
    assert client.get("/api/exams/1990", headers=auth_headers).status_code == 404


def test_full_exam_flow(client, auth_headers, tmp_path):
    attempt_id = _start(client, auth_headers)
    base = f"/api/attempts/{attempt_id}"

    opened = client.get(f"{base}/session", headers=auth_headers)
    assert opened.status_code == 200
    payload = opened.get_json()
    assert payload["mounted"] is True
    assert payload["totalQuestions"] == 3
    assert payload["questions"][0]["question"]["id"] == 1
    assert "answer" not in payload["questions"][0]["question"]

    answered = client.post(f"{base}/session/answer", json={"option": "A"}, headers=auth_headers)
    assert answered.get_json()["synced"] is True
    assert answered.get_json()["answeredCount"] == 1
    assert (tmp_path / f"exam_attempt_{attempt_id}.json").exists()

    moved = client.post(f"{base}/session/navigate", json={"action": "next"}, headers=auth_headers)
    assert moved.get_json()["currentIndex"] == 1
    client.post(f"{base}/session/answer", json={"option": "B"}, headers=auth_headers)
    client.post(
        f"{base}/session/navigate", json={"action": "jump", "index": 2}, headers=auth_headers
    )
    client.post(f"{base}/session/answer", json={"option": "A"}, headers=auth_headers)

    pending = client.post(f"{base}/session/finish", json={}, headers=auth_headers)
    assert pending.get_json()["confirmRequired"] is True
    assert pending.get_json()["status"] == "submitting"

    finished = client.post(f"{base}/session/finish", json={"confirm": True}, headers=auth_headers)
    assert finished.status_code == 200
    result = finished.get_json()
    assert result["score"] == 667
    assert result["correctAnswers"] == 2
    assert result["answeredQuestions"] == 3
    assert result["redirectUrl"].endswith(f"{base}/results")
    assert not (tmp_path / f"exam_attempt_{attempt_id}.json").exists()

    reopened = client.get(f"{base}/session", headers=auth_headers)
    assert reopened.status_code == 302
    assert reopened.headers["Location"].endswith(f"{base}/results")

    results = client.get(f"{base}/results", headers=auth_headers)
    assert results.status_code == 200
    assert [item["selectedOption"] for item in results.get_json()["responses"]] == ["A", "B", "A"]

    history = client.get("/api/history?year=2023", headers=auth_headers).get_json()
    assert [item["id"] for item in history["attempts"]] == [attempt_id]

    export = client.get("/api/history/export", headers=auth_headers)
    assert export.mimetype == "text/csv"
    assert attempt_id in export.get_data(as_text=True)

    dashboard = client.get("/api/dashboard", headers=auth_headers).get_json()
    assert dashboard["totalAttempts"] == 1
    assert dashboard["averageScore"] == 667


def test_results_for_open_attempt_redirect_to_session(client, auth_headers):
    attempt_id = _start(client, auth_headers)

    response = client.get(f"/api/attempts/{attempt_id}/results", headers=auth_headers)

    assert response.status_code == 302
    assert response.headers["Location"].endswith(f"/api/attempts/{attempt_id}/session")


def test_finish_before_last_question_is_rejected(client, auth_headers):
    attempt_id = _start(client, auth_headers)

    response = client.post(
        f"/api/attempts/{attempt_id}/session/finish", json={"confirm": True}, headers=auth_headers
    )

    assert response.status_code == 400


def test_display_mode_and_page_navigation(client, auth_headers):
    attempt_id = _start(client, auth_headers)
    base = f"/api/attempts/{attempt_id}/session"

    grid = client.post(f"{base}/display-mode", headers=auth_headers).get_json()
    assert grid["displayMode"] == "multiple"
    assert [item["index"] for item in grid["questions"]] == [0, 1]

    paged = client.post(
        f"{base}/navigate", json={"action": "page", "page": 1}, headers=auth_headers
    ).get_json()
    assert paged["currentIndex"] == 2
    assert [item["index"] for item in paged["questions"]] == [2]

    picked = client.post(
        f"{base}/answer", json={"option": "C", "index": 2}, headers=auth_headers
    ).get_json()
    assert picked["answers"][2]["answered"] is True


def test_invalid_answer_and_navigation_payloads(client, auth_headers):
    attempt_id = _start(client, auth_headers)
    base = f"/api/attempts/{attempt_id}/session"

    assert client.post(f"{base}/answer", json={}, headers=auth_headers).status_code == 400
    assert (
        client.post(f"{base}/answer", json={"option": "Z"}, headers=auth_headers).status_code
        == 422
    )
    assert (
        client.post(f"{base}/navigate", json={"action": "fly"}, headers=auth_headers).status_code
        == 400
    )
    assert (
        client.post(
            f"{base}/navigate", json={"action": "jump", "index": "x"}, headers=auth_headers
        ).status_code
        == 400
    )


def test_progress_survives_remount(app, client, auth_headers):
    attempt_id = _start(client, auth_headers)
    base = f"/api/attempts/{attempt_id}/session"
    client.get(base, headers=auth_headers)
    client.post(f"{base}/answer", json={"option": "D"}, headers=auth_headers)
    client.post(f"{base}/navigate", json={"action": "next"}, headers=auth_headers)

    closed = client.delete(base, headers=auth_headers)
    assert closed.get_json()["closed"] is True

    reopened = client.get(base, headers=auth_headers).get_json()
    assert reopened["mounted"] is True
    assert reopened["currentIndex"] == 1
    assert reopened["answeredCount"] == 1
    assert reopened["notices"][0]["title"] == "Progress restored"


def test_unavailable_questions_discard_fresh_attempt(app, client, auth_headers):
    attempt_id = _start(client, auth_headers)
    app.extensions["enem_api"].fail_questions = True

    response = client.get(f"/api/attempts/{attempt_id}/session", headers=auth_headers)

    assert response.status_code == 502
    assert response.get_json()["redirectUrl"] == "/"
    with app.app_context():
        assert db.session.get(ExamAttempt, attempt_id) is None


def test_cancel_finish_reopens_navigation(client, auth_headers):
    attempt_id = _start(client, auth_headers)
    base = f"/api/attempts/{attempt_id}/session"
    client.post(f"{base}/navigate", json={"action": "jump", "index": 2}, headers=auth_headers)
    client.post(f"{base}/finish", json={}, headers=auth_headers)

    locked = client.post(f"{base}/navigate", json={"action": "previous"}, headers=auth_headers)
    assert locked.status_code == 409

    reopened = client.post(f"{base}/finish/cancel", headers=auth_headers).get_json()
    assert reopened["status"] == "in-progress"
    moved = client.post(f"{base}/navigate", json={"action": "previous"}, headers=auth_headers)
    assert moved.get_json()["currentIndex"] == 1


def test_score_counts_only_synced_answers(client, auth_headers, monkeypatch):
    attempt_id = _start(client, auth_headers)
    base = f"/api/attempts/{attempt_id}/session"
    client.post(f"{base}/answer", json={"option": "A", "index": 0}, headers=auth_headers)
    client.post(f"{base}/answer", json={"option": "A", "index": 1}, headers=auth_headers)
    client.post(f"{base}/navigate", json={"action": "jump", "index": 2}, headers=auth_headers)

    def _offline(self, *args, **kwargs):
        raise OperationalError("INSERT INTO question_responses", {}, Exception("connection lost"))

    monkeypatch.setattr(
        "examsim.services.persistence.AttemptRepository.upsert_response", _offline
    )
    unsynced = client.post(f"{base}/answer", json={"option": "A"}, headers=auth_headers).get_json()
    assert unsynced["synced"] is False
    assert unsynced["answeredCount"] == 3
    assert unsynced["notices"][-1]["variant"] == "destructive"

    result = client.post(f"{base}/finish", json={"confirm": True}, headers=auth_headers).get_json()

    assert result["answeredQuestions"] == 3
    assert result["correctAnswers"] == 2
    assert result["score"] == 667
