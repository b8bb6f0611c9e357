"""Helpers for learner accounts and their preferences."""

from __future__ import annotations

import re

from .. import db
from ..i18n import ensure_language_code, normalise_language_code
from ..models import Profile

EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


class ProfileError(RuntimeError):
    """Base class for profile problems."""


class ProfileValidationError(ProfileError):
    """Raised when profile input is invalid."""


class ProfileConflictError(ProfileError):
    """Raised when an email address is already registered."""


def register_profile(
    email: str,
    password: str,
    *,
    full_name: str = "",
    preferred_language: str | None = None,
) -> Profile:
    email = (email or "").strip().lower()
    if not EMAIL_REGEX.match(email):
        raise ProfileValidationError("A valid email address is required.")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ProfileValidationError("Password must be at least 6 characters long.")
    language = normalise_language_code(preferred_language)
    if preferred_language and language is None:
        raise ProfileValidationError("Preferred language must be English or Portuguese.")
    if Profile.query.filter_by(email=email).first():
        raise ProfileConflictError("Email is already registered.")

    profile = Profile(
        email=email,
        full_name=(full_name or "").strip(),
        preferred_language=ensure_language_code(language),
    )
    profile.set_password(password)
    db.session.add(profile)
    db.session.commit()
    return profile


def authenticate(email: str, password: str) -> Profile | None:
    profile = Profile.query.filter_by(email=(email or "").strip().lower()).first()
    if not profile or not profile.check_password(password or ""):
        return None
    return profile


def update_profile(
    profile: Profile,
    *,
    full_name: str | None = None,
    preferred_language: str | None = None,
) -> Profile:
    if full_name is not None:
        name = full_name.strip()
        if not name:
            raise ProfileValidationError("Full name cannot be empty.")
        profile.full_name = name
    if preferred_language is not None:
        language = normalise_language_code(preferred_language)
        if not language:
            raise ProfileValidationError("Preferred language must be English or Portuguese.")
        profile.preferred_language = language
    db.session.commit()
    return profile


def serialise_profile(profile: Profile) -> dict[str, str | None]:
    return {
        "id": profile.id,
        "email": profile.email,
        "fullName": profile.full_name,
        "preferredLanguage": profile.preferred_language,
        "updatedAt": profile.updated_at.isoformat() if profile.updated_at else None,
    }


__all__ = [
    "ProfileConflictError",
    "ProfileError",
    "ProfileValidationError",
    "authenticate",
    "register_profile",
    "serialise_profile",
    "update_profile",
]
