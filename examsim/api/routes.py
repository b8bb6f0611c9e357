from __future__ import annotations

from typing import Any

from flask import Response, current_app, g, jsonify, redirect, request, url_for
from flask_login import current_user, login_required

from .. import db
from ..i18n import translate_text
from ..models import AuthToken, ExamAttempt, Profile
from ..services.attempts import (
    AttemptCompletedError,
    AttemptInProgressError,
    AttemptNotFoundError,
    QuestionsUnavailableError,
    get_exam_info,
    get_open_attempt,
    list_exams,
    load_attempt_questions,
    serialise_attempt,
    start_attempt,
)
from ..services.enem_api import EnemApiClient, EnemApiError
from ..services.exam_session import (
    IN_PROGRESS,
    SUBMITTING,
    ExamSession,
    ExamSessionError,
    InvalidSelectionError,
    SessionLockedError,
    SubmissionError,
)
from ..services.history import (
    HistoryValidationError,
    export_history_csv,
    get_attempt_results,
    get_dashboard,
    get_history,
)
from ..services.local_store import LocalProgressStore
from ..services.persistence import PersistenceBridge
from ..services.profiles import (
    ProfileConflictError,
    ProfileValidationError,
    authenticate,
    register_profile,
    serialise_profile,
    update_profile,
)
from ..services.session_registry import SessionRegistry
from . import api_bp

NAVIGATION_ACTIONS = {"next", "previous", "jump", "page"}


def _json_error(message: str, status: int = 400, **extra: Any):
    return jsonify({"error": message, **extra}), status


def _t(message: str, **values: Any) -> str:
    return translate_text(message, getattr(g, "active_language", None), **values)


def _profile() -> Profile:
    return current_user._get_current_object()


def _client() -> EnemApiClient:
    return current_app.extensions["enem_api"]


def _registry() -> SessionRegistry:
    return current_app.extensions["exam_sessions"]


def _local_store() -> LocalProgressStore:
    return current_app.extensions["local_progress"]


def _session_factory(attempt: ExamAttempt):
    config = current_app.config
    language = getattr(g, "active_language", None)

    def build() -> ExamSession:
        questions = load_attempt_questions(_client(), attempt)
        return ExamSession(
            attempt.id,
            questions,
            PersistenceBridge(attempt.id, _local_store()),
            questions_per_page=config["EXAM_QUESTIONS_PER_PAGE"],
            autosave_interval=config["EXAM_AUTOSAVE_INTERVAL"],
            language=language,
        )

    return build


def _mounted_session(attempt_id: str) -> tuple[ExamAttempt, ExamSession, bool]:
    attempt = get_open_attempt(_profile(), attempt_id)
    session, mounted = _registry().mount(attempt.id, _session_factory(attempt))
    return attempt, session, mounted


def _results_redirect(attempt: ExamAttempt):
    return redirect(url_for("api.attempt_results", attempt_id=attempt.id))


def _session_error_response(exc: Exception):
    if isinstance(exc, AttemptNotFoundError):
        return _json_error(_t("Exam attempt not found."), 404)
    if isinstance(exc, AttemptCompletedError):
        return _json_error(
            str(exc),
            409,
            redirectUrl=url_for("api.attempt_results", attempt_id=exc.attempt.id),
        )
    if isinstance(exc, QuestionsUnavailableError):
        return _json_error(str(exc), 502, redirectUrl="/")
    if isinstance(exc, SessionLockedError):
        return _json_error(str(exc), 409)
    return _json_error(str(exc), 400)


SESSION_ERRORS = (
    AttemptNotFoundError,
    AttemptCompletedError,
    QuestionsUnavailableError,
    ExamSessionError,
)


# -- authentication --------------------------------------------------------


@api_bp.post("/auth/register")
def register():
    data = request.get_json(silent=True) or {}
    try:
        profile = register_profile(
            data.get("email") or "",
            (data.get("password") or "").strip(),
            full_name=data.get("fullName") or "",
            preferred_language=data.get("preferredLanguage"),
        )
    except ProfileConflictError as exc:
        return _json_error(str(exc), 409)
    except ProfileValidationError as exc:
        return _json_error(str(exc))

    token = profile.issue_token(ttl_days=current_app.config["AUTH_TOKEN_TTL_DAYS"])
    db.session.commit()
    current_app.logger.info("register success", extra={"email": profile.email})
    return (
        jsonify(
            {
                "userId": profile.id,
                "token": token.token,
                "expiresAt": token.expires_at.isoformat(),
                "redirectUrl": "/",
            }
        ),
        201,
    )


@api_bp.post("/auth/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip()
    password = (data.get("password") or "").strip()
    if not email or not password:
        return _json_error("Email and password are required.")

    profile = authenticate(email, password)
    if not profile:
        return _json_error(_t("Invalid email or password."), 401)

    token = profile.issue_token(ttl_days=current_app.config["AUTH_TOKEN_TTL_DAYS"])
    db.session.commit()
    current_app.logger.info("login success", extra={"email": profile.email})
    return jsonify(
        {
            "userId": profile.id,
            "token": token.token,
            "expiresAt": token.expires_at.isoformat(),
            "redirectUrl": "/",
        }
    )


@api_bp.post("/auth/logout")
@login_required
def logout():
    header = request.headers.get("Authorization", "")
    token = AuthToken.find_active(header[7:].strip())
    if token:
        token.revoked = True
        db.session.commit()
    return jsonify({"message": _t("Logged out")})


# -- profile -----------------------------------------------------------------


@api_bp.get("/profile")
@login_required
def get_profile():
    return jsonify(serialise_profile(_profile()))


@api_bp.put("/profile")
@login_required
def put_profile():
    data = request.get_json(silent=True) or {}
    try:
        profile = update_profile(
            _profile(),
            full_name=data.get("fullName"),
            preferred_language=data.get("preferredLanguage"),
        )
    except ProfileValidationError as exc:
        db.session.rollback()
        return _json_error(str(exc))
    return jsonify({"message": _t("Profile updated"), "profile": serialise_profile(profile)})


# -- catalogue ---------------------------------------------------------------


@api_bp.get("/exams")
@login_required
def exams():
    catalogue = list_exams(_client())
    return jsonify(
        {
            "exams": [
                {"year": exam.year, "title": exam.title, "description": exam.description}
                for exam in catalogue
            ]
        }
    )


@api_bp.get("/exams/<int:year>")
@login_required
def exam_info(year: int):
    try:
        info = get_exam_info(_client(), _profile(), year)
    except EnemApiError as exc:
        status = 404 if exc.status == 404 else 502
        return _json_error(str(exc), status)
    return jsonify(info)


@api_bp.post("/exams/<int:year>/attempts")
@login_required
def create_attempt(year: int):
    attempt = start_attempt(_profile(), year)
    return (
        jsonify(
            {
                **serialise_attempt(attempt),
                "sessionUrl": url_for("api.exam_session", attempt_id=attempt.id),
            }
        ),
        201,
    )


# -- exam session ------------------------------------------------------------


@api_bp.get("/attempts/<attempt_id>/session")
@login_required
def exam_session(attempt_id: str):
    try:
        attempt, session, mounted = _mounted_session(attempt_id)
    except AttemptCompletedError as exc:
        return _results_redirect(exc.attempt)
    except SESSION_ERRORS as exc:
        return _session_error_response(exc)
    payload = session.snapshot()
    payload["examYear"] = attempt.exam_year
    payload["mounted"] = mounted
    return jsonify(payload)


@api_bp.delete("/attempts/<attempt_id>/session")
@login_required
def close_exam_session(attempt_id: str):
    try:
        attempt = get_open_attempt(_profile(), attempt_id)
    except AttemptCompletedError as exc:
        return jsonify({"closed": _registry().unmount(exc.attempt.id)})
    except AttemptNotFoundError as exc:
        return _session_error_response(exc)
    return jsonify({"closed": _registry().unmount(attempt.id)})


@api_bp.post("/attempts/<attempt_id>/session/answer")
@login_required
def answer_question(attempt_id: str):
    data = request.get_json(silent=True) or {}
    option = data.get("option")
    if not option:
        return _json_error("option is required.")
    index = data.get("index")
    try:
        _, session, _ = _mounted_session(attempt_id)
        synced = session.select_option(str(option), None if index is None else int(index))
    except (TypeError, ValueError):
        return _json_error("index must be an integer.")
    except InvalidSelectionError as exc:
        return _json_error(str(exc), 422)
    except SESSION_ERRORS as exc:
        return _session_error_response(exc)
    payload = session.snapshot()
    payload["synced"] = synced
    return jsonify(payload)


@api_bp.post("/attempts/<attempt_id>/session/navigate")
@login_required
def navigate(attempt_id: str):
    data = request.get_json(silent=True) or {}
    action = (data.get("action") or "").strip().lower()
    if action not in NAVIGATION_ACTIONS:
        return _json_error("action must be one of next, previous, jump or page.")
    try:
        _, session, _ = _mounted_session(attempt_id)
        if action == "next":
            moved = session.next()
        elif action == "previous":
            moved = session.previous()
        elif action == "jump":
            moved = session.jump(int(data.get("index")))
        else:
            moved = session.change_page(int(data.get("page")))
    except (TypeError, ValueError):
        return _json_error("A numeric index or page is required.")
    except SESSION_ERRORS as exc:
        return _session_error_response(exc)
    payload = session.snapshot()
    payload["moved"] = moved
    return jsonify(payload)


@api_bp.post("/attempts/<attempt_id>/session/display-mode")
@login_required
def toggle_display_mode(attempt_id: str):
    try:
        _, session, _ = _mounted_session(attempt_id)
        session.toggle_display_mode()
    except SESSION_ERRORS as exc:
        return _session_error_response(exc)
    return jsonify(session.snapshot())


@api_bp.post("/attempts/<attempt_id>/session/finish")
@login_required
def finish_exam(attempt_id: str):
    data = request.get_json(silent=True) or {}
    try:
        _, session, _ = _mounted_session(attempt_id)
        if session.state.status == IN_PROGRESS:
            session.request_finish()
        if not data.get("confirm"):
            payload = session.snapshot()
            payload["confirmRequired"] = True
            return jsonify(payload)
        result = session.finish()
    except SubmissionError as exc:
        return _json_error(
            str(exc),
            503,
            notices=[notice.to_dict() for notice in session.drain_notices()],
        )
    except SESSION_ERRORS as exc:
        return _session_error_response(exc)

    _registry().unmount(attempt_id)
    return jsonify(
        {
            "attemptId": result.attempt_id,
            "status": "submitted",
            "score": result.score,
            "totalQuestions": result.total_questions,
            "correctAnswers": result.correct_answers,
            "answeredQuestions": result.answered_questions,
            "timeSpent": result.time_spent,
            "redirectUrl": url_for("api.attempt_results", attempt_id=result.attempt_id),
        }
    )


@api_bp.post("/attempts/<attempt_id>/session/finish/cancel")
@login_required
def cancel_finish(attempt_id: str):
    try:
        _, session, _ = _mounted_session(attempt_id)
        if session.state.status == SUBMITTING:
            session.cancel_finish()
    except SESSION_ERRORS as exc:
        return _session_error_response(exc)
    return jsonify(session.snapshot())


# -- results and analytics -----------------------------------------------------


@api_bp.get("/attempts/<attempt_id>/results")
@login_required
def attempt_results(attempt_id: str):
    try:
        results = get_attempt_results(_profile(), attempt_id)
    except AttemptNotFoundError:
        return _json_error(_t("Exam attempt not found."), 404, redirectUrl="/")
    except AttemptInProgressError as exc:
        return redirect(url_for("api.exam_session", attempt_id=exc.attempt.id))
    return jsonify(results)


@api_bp.get("/dashboard")
@login_required
def dashboard():
    profile = _profile()
    payload = get_dashboard(profile).to_dict()
    payload["profile"] = serialise_profile(profile)
    return jsonify(payload)


@api_bp.get("/history")
@login_required
def history():
    try:
        payload = get_history(
            _profile(),
            year=request.args.get("year"),
            search=request.args.get("q"),
            order=request.args.get("order", "desc"),
        )
    except HistoryValidationError as exc:
        return _json_error(str(exc))
    return jsonify(payload)


@api_bp.get("/history/export")
@login_required
def history_export():
    response = Response(export_history_csv(_profile()), mimetype="text/csv")
    response.headers["Content-Disposition"] = "attachment; filename=history.csv"
    return response
