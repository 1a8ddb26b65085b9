"""
topia.errors — Currency Error Taxonomy
=======================================

"Not eligible" outcomes (cooldown, daily cap, short message, exclusions) are
**not** exceptions — they come back as ``GrantResult(granted=False)``.
Missing guild settings are not an error either; defaults are used.

Everything below is raised by :class:`~topia.services.currency_service.CurrencyService`
and handled at the edges (cogs reply or log, API routes map to HTTP codes).
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError


class CurrencyError(Exception):
    """Base class for every currency-domain failure."""


class RepositoryError(CurrencyError):
    """The database rejected or failed an operation.

    The transaction was rolled back; the original ``SQLAlchemyError`` is
    chained as ``__cause__``.
    """

    def __init__(self, operation: str) -> None:
        super().__init__(f"Repository failure during {operation}")
        self.operation = operation


class InvalidAmount(CurrencyError):
    pass


class InvalidSettings(CurrencyError):
    """A settings, multiplier, or hot-time change failed validation."""


class InsufficientBalance(CurrencyError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"Insufficient balance: need {required}, have {available}")
        self.required = required
        self.available = available


class SelfTransfer(CurrencyError):
    def __init__(self) -> None:
        super().__init__("Cannot transfer currency to yourself")


class NotCurrencyManager(CurrencyError):
    def __init__(self, user_id: int) -> None:
        super().__init__(f"User {user_id} is not a currency manager")
        self.user_id = user_id


class AlreadyClaimed(CurrencyError):
    def __init__(self, next_claim_at: datetime) -> None:
        super().__init__(f"Already claimed today; next claim at {next_claim_at.isoformat()}")
        self.next_claim_at = next_claim_at


@contextmanager
def repository_errors(operation: str) -> Iterator[None]:
    """Re-raise any ``SQLAlchemyError`` inside the block as :class:`RepositoryError`."""
    try:
        yield
    except SQLAlchemyError as exc:
        raise RepositoryError(operation) from exc
