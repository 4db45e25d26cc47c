"""
Tests for bearer tokens and password hashing.
"""

import pytest

from auth.jwt import create_token, verify_token
from auth.password import hash_password, needs_rehash, verify_password
from utils.exceptions import AuthenticationRequired


class TestTokens:
    def test_roundtrip_user_id(self):
        assert verify_token(create_token("user-1")) == "user-1"

    def test_expired_token(self):
        with pytest.raises(AuthenticationRequired):
            verify_token(create_token("user-1", expires_in=-10))

    def test_tampered_signature(self):
        token = create_token("user-1")
        with pytest.raises(AuthenticationRequired):
            verify_token(token[:-1] + ("0" if token[-1] != "0" else "1"))


class TestPasswords:
    def test_verify(self):
        hashed = hash_password("correct-horse")
        assert verify_password("correct-horse", hashed) is True
        assert verify_password("wrong-horse", hashed) is False

    def test_empty_hash_never_matches(self):
        assert verify_password("anything", "") is False

    def test_rehash_when_work_factor_changes(self, monkeypatch):
        from auth import password

        hashed = hash_password("correct-horse")
        assert needs_rehash(hashed) is False
        monkeypatch.setattr(password.config, "bcrypt_rounds", 5)
        assert needs_rehash(hashed) is True
