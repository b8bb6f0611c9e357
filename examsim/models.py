from __future__ import annotations

from datetime import datetime, timedelta
from uuid import uuid4

from flask_login import UserMixin
from sqlalchemy import CheckConstraint, UniqueConstraint
from werkzeug.security import check_password_hash, generate_password_hash

from . import db


def _new_identifier() -> str:
    return str(uuid4())


class Profile(UserMixin, db.Model):
    __tablename__ = "profiles"

    id = db.Column(db.String(36), primary_key=True, default=_new_identifier)
    email = db.Column(db.String(120), unique=True, nullable=False)
    full_name = db.Column(db.String(120), nullable=False, default="")
    password_hash = db.Column(db.String(255), nullable=False)
    preferred_language = db.Column(db.String(20), nullable=False, default="ENGLISH")
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    attempts = db.relationship(
        "ExamAttempt", back_populates="profile", cascade="all, delete-orphan"
    )
    auth_tokens = db.relationship(
        "AuthToken", back_populates="profile", cascade="all, delete-orphan"
    )

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def issue_token(self, *, ttl_days: int = 7) -> "AuthToken":
        from secrets import token_urlsafe

        token = AuthToken(
            token=token_urlsafe(32),
            profile=self,
            expires_at=datetime.utcnow() + timedelta(days=ttl_days),
            revoked=False,
        )
        db.session.add(token)
        return token


class AuthToken(db.Model):
    __tablename__ = "auth_tokens"

    id = db.Column(db.Integer, primary_key=True)
    profile_id = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=False)
    token = db.Column(db.String(255), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    revoked = db.Column(db.Boolean, nullable=False, default=False)

    profile = db.relationship("Profile", back_populates="auth_tokens")

    @classmethod
    def find_active(cls, value: str | None) -> "AuthToken | None":
        if not value:
            return None
        token = cls.query.filter_by(token=value, revoked=False).first()
        if not token or token.expires_at <= datetime.utcnow():
            return None
        return token


class Exam(db.Model):
    """Local copy of the remote exam catalogue."""

    __tablename__ = "exams"

    id = db.Column(db.Integer, primary_key=True)
    year = db.Column(db.Integer, unique=True, nullable=False)
    title = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class ExamAttempt(db.Model):
    __tablename__ = "exam_attempts"

    id = db.Column(db.String(36), primary_key=True, default=_new_identifier)
    exam_year = db.Column(db.Integer, nullable=False)
    user_id = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=False)
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)
    score = db.Column(db.Integer)
    total_questions = db.Column(db.Integer)
    correct_answers = db.Column(db.Integer)
    time_spent = db.Column(db.Integer)

    profile = db.relationship("Profile", back_populates="attempts")
    responses = db.relationship(
        "QuestionResponse", back_populates="attempt", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("score IS NULL OR (score >= 0 AND score <= 1000)", name="score_range"),
    )

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


class QuestionResponse(db.Model):
    __tablename__ = "question_responses"

    id = db.Column(db.Integer, primary_key=True)
    attempt_id = db.Column(db.String(36), db.ForeignKey("exam_attempts.id"), nullable=False)
    question_id = db.Column(db.Integer, nullable=False)
    selected_option = db.Column(db.String(5), nullable=False, default="")
    is_correct = db.Column(db.Boolean, nullable=False, default=False)
    time_spent = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    attempt = db.relationship("ExamAttempt", back_populates="responses")

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_response_attempt_question"),
    )


__all__ = [
    "Profile",
    "AuthToken",
    "Exam",
    "ExamAttempt",
    "QuestionResponse",
]
