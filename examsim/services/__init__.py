"""Service layer for exam sessions, attempts and history."""

from .attempts import (
    AttemptCompletedError,
    AttemptError,
    AttemptInProgressError,
    AttemptNotFoundError,
    QuestionsUnavailableError,
    get_exam_info,
    get_open_attempt,
    get_owned_attempt,
    list_exams,
    load_attempt_questions,
    start_attempt,
    sync_exam_catalog,
)
from .enem_api import EnemApiClient, EnemApiError, EnemApiTimeout, Question, QuestionOption
from .exam_session import (
    ExamSession,
    ExamSessionError,
    FinishResult,
    InvalidSelectionError,
    SessionLockedError,
    SubmissionError,
    compute_score,
    format_time,
)
from .history import (
    HistoryValidationError,
    export_history_csv,
    filter_attempts,
    get_attempt_results,
    get_dashboard,
    get_history,
)
from .local_store import LocalProgressStore, storage_key
from .persistence import Answer, AttemptRepository, PersistenceBridge
from .question_cache import QuestionCache
from .session_registry import SessionRegistry, SessionTimer

__all__ = [
    "Answer",
    "AttemptCompletedError",
    "AttemptError",
    "AttemptInProgressError",
    "AttemptNotFoundError",
    "AttemptRepository",
    "EnemApiClient",
    "EnemApiError",
    "EnemApiTimeout",
    "ExamSession",
    "ExamSessionError",
    "FinishResult",
    "HistoryValidationError",
    "InvalidSelectionError",
    "LocalProgressStore",
    "PersistenceBridge",
    "Question",
    "QuestionCache",
    "QuestionOption",
    "QuestionsUnavailableError",
    "SessionLockedError",
    "SessionRegistry",
    "SessionTimer",
    "SubmissionError",
    "compute_score",
    "export_history_csv",
    "filter_attempts",
    "format_time",
    "get_attempt_results",
    "get_dashboard",
    "get_exam_info",
    "get_history",
    "get_open_attempt",
    "get_owned_attempt",
    "list_exams",
    "load_attempt_questions",
    "start_attempt",
    "storage_key",
    "sync_exam_catalog",
]
