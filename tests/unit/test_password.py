"""Tests for password hashing and validation."""

import pytest

from rankshare.auth.password import (
    PasswordStrengthError,
    check_needs_rehash,
    hash_password,
    validate_password_strength,
    verify_password,
)


class TestPasswordHashing:
    def test_hash_and_verify(self):
        hashed = hash_password("SecurePass1")
        assert verify_password("SecurePass1", hashed) is True

    def test_wrong_password_rejected(self):
        hashed = hash_password("CorrectPass1")
        assert verify_password("WrongPass1", hashed) is False

    def test_invalid_hash_rejected(self):
        assert verify_password("whatever1", "not-a-hash") is False

    def test_fresh_hash_needs_no_rehash(self):
        assert check_needs_rehash(hash_password("SecurePass1")) is False


class TestPasswordStrength:
    def test_strong_password_accepted(self):
        validate_password_strength("correcthorse9")

    @pytest.mark.parametrize("password", ["", "   ", "short1", "onlyletters", "1234567890", "a1" * 65])
    def test_weak_passwords_rejected(self, password: str):
        with pytest.raises(PasswordStrengthError):
            validate_password_strength(password)

    def test_password_containing_email_rejected(self):
        with pytest.raises(PasswordStrengthError, match="email"):
            validate_password_strength("Alice2024pw", email="alice@example.com")

    def test_short_local_part_ignored(self):
        validate_password_strength("bobcat2024", email="bo@example.com")
