import os
from pathlib import Path

from sqlalchemy.engine import URL


def _flag(name: str, default: str = "1") -> bool:
    return os.environ.get(name, default).lower() not in {"0", "false", "no"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
    default_db_path = Path(__file__).resolve().parent.parent / "instance" / "examsim.db"
    default_db_uri = URL.create(
        drivername="sqlite",
        database=str(default_db_path),
    )
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", str(default_db_uri))
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    ENEM_API_BASE_URL = os.environ.get("ENEM_API_BASE_URL", "https://api.enem.dev/v1")
    ENEM_API_TIMEOUT = float(os.environ.get("ENEM_API_TIMEOUT", "10"))
    ENEM_API_MAX_ATTEMPTS = int(os.environ.get("ENEM_API_MAX_ATTEMPTS", "3"))
    ENEM_API_BACKOFF_SECONDS = float(os.environ.get("ENEM_API_BACKOFF_SECONDS", "1.0"))
    ENEM_API_PAGE_SIZE = int(os.environ.get("ENEM_API_PAGE_SIZE", "50"))
    QUESTION_CACHE_SIZE = int(os.environ.get("QUESTION_CACHE_SIZE", "32"))
    QUESTION_CACHE_TTL = int(os.environ.get("QUESTION_CACHE_TTL", "3600"))

    EXAM_QUESTIONS_PER_PAGE = int(os.environ.get("EXAM_QUESTIONS_PER_PAGE", "10"))
    EXAM_AUTOSAVE_INTERVAL = int(os.environ.get("EXAM_AUTOSAVE_INTERVAL", "30"))
    EXAM_TIMER_ENABLED = _flag("EXAM_TIMER_ENABLED")
    EXAM_SESSION_TTL = int(os.environ.get("EXAM_SESSION_TTL", "3600"))
    # Falls back to <instance>/progress when unset.
    LOCAL_PROGRESS_DIR = os.environ.get("LOCAL_PROGRESS_DIR")

    AUTH_TOKEN_TTL_DAYS = int(os.environ.get("AUTH_TOKEN_TTL_DAYS", "7"))


class TestConfig(Config):
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    TESTING = True
    EXAM_TIMER_ENABLED = False
    ENEM_API_BACKOFF_SECONDS = 0.0
