"""
tests/test_jwt_startup — JWT Secret Validation at Startup
===========================================================
The dashboard API must refuse to start when JWT_SECRET is missing, blank,
too short, or a known weak default.
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from fastapi import HTTPException

from topia.api.deps import _load_jwt_secret, admin_actor_id


class TestJWTSecretValidation:
    """Prove that _load_jwt_secret() rejects bad secrets and accepts good ones."""

    def test_rejects_missing_secret(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("JWT_SECRET", None)
            with pytest.raises(RuntimeError, match="JWT_SECRET environment variable is not set"):
                _load_jwt_secret()

    def test_rejects_empty_secret(self):
        with patch.dict(os.environ, {"JWT_SECRET": ""}):
            with pytest.raises(RuntimeError, match="JWT_SECRET environment variable is not set"):
                _load_jwt_secret()

    @pytest.mark.parametrize("weak", ["topia-dev-secret-change-me", "change-me", "secret"])
    def test_rejects_known_weak_defaults(self, weak):
        with patch.dict(os.environ, {"JWT_SECRET": weak}):
            with pytest.raises(RuntimeError, match="known weak default"):
                _load_jwt_secret()

    def test_rejects_short_secret(self):
        with patch.dict(os.environ, {"JWT_SECRET": "tooshort"}):
            with pytest.raises(RuntimeError, match="too short"):
                _load_jwt_secret()

    def test_accepts_strong_secret(self):
        good_secret = "a" * 64
        with patch.dict(os.environ, {"JWT_SECRET": good_secret}):
            assert _load_jwt_secret() == good_secret


class TestAdminActorId:
    def test_sub_claim_is_the_actor(self):
        assert admin_actor_id({"sub": "12345", "is_admin": True}) == 12345

    @pytest.mark.parametrize("payload", [{}, {"sub": None}, {"sub": "abc"}])
    def test_missing_or_bad_sub_is_401(self, payload):
        with pytest.raises(HTTPException) as exc_info:
            admin_actor_id(payload)
        assert exc_info.value.status_code == 401
