"""
Account passwords: argon2id hashes and the strength rules applied on set.

Sign-in is link-first; a password is optional and only checked here when
the user chooses one.
"""

from __future__ import annotations

import argon2

from rankshare.config import get_settings

_hasher = argon2.PasswordHasher(
    time_cost=2,
    memory_cost=64 * 1024,
    parallelism=1,
    hash_len=32,
    salt_len=16,
    type=argon2.Type.ID,
)


class PasswordStrengthError(ValueError):
    """The chosen password breaks one of the strength rules."""


def hash_password(password: str) -> str:
    return _hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """True on match; a mismatch or a malformed stored hash is just False."""
    try:
        return _hasher.verify(password_hash, password)
    except (argon2.exceptions.VerifyMismatchError, argon2.exceptions.InvalidHashError):
        return False


def check_needs_rehash(password_hash: str) -> bool:
    """True when the stored hash was made with older hasher parameters."""
    return _hasher.check_needs_rehash(password_hash)


def validate_password_strength(password: str, email: str | None = None) -> None:
    """
    Raise PasswordStrengthError unless the password:

    - is not blank,
    - fits ``password_min_length``..``password_max_length``,
    - has a letter and a digit,
    - does not contain the local part of the account's email.
    """
    settings = get_settings()
    if not password.strip():
        msg = "Password cannot be empty"
        raise PasswordStrengthError(msg)
    if not settings.password_min_length <= len(password) <= settings.password_max_length:
        msg = (
            f"Password must be between {settings.password_min_length} "
            f"and {settings.password_max_length} characters"
        )
        raise PasswordStrengthError(msg)
    if not any(c.isalpha() for c in password) or not any(c.isdigit() for c in password):
        msg = "Password must contain at least one letter and one digit"
        raise PasswordStrengthError(msg)
    local_part = (email or "").partition("@")[0].lower()
    if len(local_part) >= 3 and local_part in password.lower():
        msg = "Password must not contain your email address"
        raise PasswordStrengthError(msg)
