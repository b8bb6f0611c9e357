"""Database maintenance helpers to keep legacy deployments compatible."""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from . import db

RESPONSE_UNIQUE_INDEX = "ix_question_responses_attempt_question"


def ensure_core_tables(engine: Engine, logger: logging.Logger | None = None) -> None:
    """Ensure the base SQLAlchemy models are materialised for new databases."""

    logger = logger or logging.getLogger(__name__)
    try:
        db.create_all()
    except SQLAlchemyError:
        logger.exception("Failed to create core tables during maintenance")
        raise


def ensure_response_time_column(engine: Engine, logger: logging.Logger | None = None) -> None:
    """Add ``question_responses.time_spent`` to databases created before timing existed."""

    inspector = inspect(engine)
    tables: Iterable[str] = inspector.get_table_names()
    if "question_responses" not in tables:
        return

    columns = {col["name"] for col in inspector.get_columns("question_responses")}
    if "time_spent" in columns:
        return

    logger = logger or logging.getLogger(__name__)
    logger.warning(
        "Missing question_responses.time_spent column detected; applying legacy schema patch."
    )

    try:
        with engine.begin() as connection:
            connection.execute(
                text(
                    "ALTER TABLE question_responses "
                    "ADD COLUMN time_spent INTEGER NOT NULL DEFAULT 0"
                )
            )
    except SQLAlchemyError:
        logger.exception("Failed to add time_spent column to question_responses")
        raise


def _has_unique_response_index(engine: Engine) -> bool:
    inspector = inspect(engine)
    wanted = ["attempt_id", "question_id"]
    for index in inspector.get_indexes("question_responses"):
        if index.get("unique") and index.get("column_names") == wanted:
            return True
    for constraint in inspector.get_unique_constraints("question_responses"):
        if constraint.get("column_names") == wanted:
            return True
    return False


def ensure_response_uniqueness(engine: Engine, logger: logging.Logger | None = None) -> None:
    """Collapse duplicated (attempt, question) rows and enforce a unique index.

    Older clients saved answers with a read-then-insert sequence, so two quick
    selections could both insert a row. The surviving row is the most recent
    one (highest id) and it absorbs the time recorded on its duplicates.
    """

    inspector = inspect(engine)
    if "question_responses" not in inspector.get_table_names():
        return
    if _has_unique_response_index(engine):
        return

    logger = logger or logging.getLogger(__name__)
    logger.warning(
        "Missing unique index on question_responses(attempt_id, question_id); "
        "merging duplicate rows."
    )

    try:
        with engine.begin() as connection:
            duplicates = list(
                connection.execute(
                    text(
                        "SELECT attempt_id, question_id, MAX(id) AS keep_id, "
                        "SUM(time_spent) AS total_time "
                        "FROM question_responses "
                        "GROUP BY attempt_id, question_id HAVING COUNT(*) > 1"
                    )
                )
            )
            for row in duplicates:
                connection.execute(
                    text("UPDATE question_responses SET time_spent = :total WHERE id = :id"),
                    {"total": row.total_time or 0, "id": row.keep_id},
                )
                connection.execute(
                    text(
                        "DELETE FROM question_responses "
                        "WHERE attempt_id = :attempt AND question_id = :question "
                        "AND id != :id"
                    ),
                    {"attempt": row.attempt_id, "question": row.question_id, "id": row.keep_id},
                )
            if duplicates:
                logger.info("Merged %s duplicated response groups", len(duplicates))

            connection.execute(
                text(
                    f"CREATE UNIQUE INDEX IF NOT EXISTS {RESPONSE_UNIQUE_INDEX} "
                    "ON question_responses(attempt_id, question_id)"
                )
            )
    except SQLAlchemyError:
        logger.exception("Failed to enforce unique question responses during maintenance")
        raise


def ensure_database_schema(engine: Engine, logger: logging.Logger | None = None) -> None:
    """Run all lightweight schema checks for legacy compatibility."""

    ensure_core_tables(engine, logger)
    ensure_response_time_column(engine, logger)
    ensure_response_uniqueness(engine, logger)
