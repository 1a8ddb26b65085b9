"""
topia.api.deps — FastAPI dependency injection
==============================================

* ``get_currency_service`` — one :class:`CurrencyService` per process, so
  every request shares the same wallet locks.
* ``get_current_admin`` — validates the ``Authorization: Bearer`` JWT.
* ``AdminActor`` — the admin's Discord user id, for audit rows.

The JWT secret is checked when this module is imported; the API refuses to
start with a missing, weak, or short secret.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from topia.database.engine import create_db_engine
from topia.services.currency_service import CurrencyService

JWT_ALGORITHM = "HS256"
MIN_SECRET_LENGTH = 32

_WEAK_SECRETS = frozenset({
    "",
    "change-me",
    "dev",
    "secret",
    "topia-dev-secret-change-me",
})


def _load_jwt_secret() -> str:
    """Read ``JWT_SECRET`` and raise ``RuntimeError`` unless it is usable."""
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars); "
            f"at least {MIN_SECRET_LENGTH} are required."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


# ---------------------------------------------------------------------------
# Database & service
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_currency_service() -> CurrencyService:
    return CurrencyService(get_engine())


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------
def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Decoded token payload of a dashboard admin (401 / 403 otherwise)."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme != "Bearer" or not token:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload


def admin_actor_id(admin: Annotated[dict, Depends(get_current_admin)]) -> int:
    """Discord user id from the ``sub`` claim."""
    try:
        return int(admin["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token has no user id")


AdminActor = Annotated[int, Depends(admin_actor_id)]
