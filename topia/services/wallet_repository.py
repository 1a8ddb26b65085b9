"""
topia.services.wallet_repository — Wallet rows, ledger rows, wallet locks
==========================================================================

Every method takes a caller-provided :class:`Session`; the caller owns the
transaction boundary.  Balance mutations go through :meth:`credit` /
:meth:`debit`, which always append exactly one ledger row, so the sum of a
wallet's ledger amounts equals its balance.

Locking is two-layered:

* **in-process** — a fixed pool of striped ``threading.Lock`` objects picked
  by key hash.  Grants run on worker threads via ``run_db``, so two messages
  from the same member can race inside one bot process.
* **cross-process** — ``SELECT … FOR UPDATE`` on the wallet row (a no-op on
  SQLite).

Lazy creation races are resolved the same way event ingestion resolves
duplicates: insert inside a SAVEPOINT and re-read on ``IntegrityError``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import NamedTuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from topia.database.models import CurrencyTransaction, CurrencyType, TransactionType, Wallet

logger = logging.getLogger(__name__)

DEFAULT_LOCK_STRIPES = 64


class WalletKey(NamedTuple):
    guild_id: int
    user_id: int
    currency_type: CurrencyType


class WalletRepository:
    """Wallet persistence plus the per-wallet locking primitive.

    Thread-safe.  One instance should be shared by everything that mutates
    wallets in a process (the bot and the API each build one service).
    """

    def __init__(self, stripes: int = DEFAULT_LOCK_STRIPES) -> None:
        self._locks = [threading.Lock() for _ in range(stripes)]

    # -------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------
    def _stripe(self, key: WalletKey) -> int:
        return hash(key) % len(self._locks)

    @contextmanager
    def lock(self, *keys: WalletKey) -> Iterator[None]:
        """Hold the in-process locks for *keys* for the duration of the block.

        Stripes are acquired in ascending index order (and each at most once)
        so two callers locking the same pair never deadlock.
        """
        stripes = sorted({self._stripe(k) for k in keys})
        acquired: list[threading.Lock] = []
        try:
            for idx in stripes:
                lock = self._locks[idx]
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get(self, session: Session, key: WalletKey, *, for_update: bool = False) -> Wallet | None:
        stmt = select(Wallet).where(
            Wallet.guild_id == key.guild_id,
            Wallet.user_id == key.user_id,
            Wallet.currency_type == key.currency_type.value,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return session.scalar(stmt)

    def get_or_create(self, session: Session, key: WalletKey) -> Wallet:
        """Return the wallet row locked ``FOR UPDATE``, inserting it if missing."""
        wallet = self.get(session, key, for_update=True)
        if wallet is not None:
            return wallet

        wallet = Wallet(
            guild_id=key.guild_id,
            user_id=key.user_id,
            currency_type=key.currency_type.value,
            balance=0,
            total_earned=0,
            daily_earned=0,
            text_count_in_cooldown=0,
            voice_count_in_cooldown=0,
        )
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(wallet)
                session.flush()
        except IntegrityError:
            # Another process inserted the same wallet first.
            logger.debug("Wallet insert race for %s; re-reading", key)
            wallet = self.get(session, key, for_update=True)
            if wallet is None:
                raise
        else:
            logger.debug("Created wallet %s", key)
        return wallet

    def leaderboard(
        self,
        session: Session,
        guild_id: int,
        currency_type: CurrencyType,
        limit: int,
        offset: int,
    ) -> list[Wallet]:
        """Balance descending; ties broken by ``user_id`` so pages are stable."""
        return list(session.scalars(
            select(Wallet)
            .where(Wallet.guild_id == guild_id, Wallet.currency_type == currency_type.value)
            .order_by(Wallet.balance.desc(), Wallet.user_id.asc())
            .limit(limit)
            .offset(offset)
        ).all())

    def transactions(
        self,
        session: Session,
        guild_id: int,
        *,
        user_id: int | None = None,
        currency_type: CurrencyType | None = None,
        transaction_type: TransactionType | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[CurrencyTransaction]:
        """Ledger rows, newest first."""
        stmt = select(CurrencyTransaction).where(CurrencyTransaction.guild_id == guild_id)
        if user_id is not None:
            stmt = stmt.where(CurrencyTransaction.user_id == user_id)
        if currency_type is not None:
            stmt = stmt.where(CurrencyTransaction.currency_type == currency_type.value)
        if transaction_type is not None:
            stmt = stmt.where(CurrencyTransaction.transaction_type == transaction_type.value)
        stmt = stmt.order_by(
            CurrencyTransaction.created_at.desc(), CurrencyTransaction.id.desc()
        ).limit(limit).offset(offset)
        return list(session.scalars(stmt).all())

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    def credit(
        self,
        session: Session,
        wallet: Wallet,
        amount: int,
        transaction_type: TransactionType,
        *,
        earned: bool = False,
        related_user_id: int | None = None,
        description: str | None = None,
    ) -> CurrencyTransaction:
        """Add *amount* (> 0) and append the matching ledger row.

        ``earned=True`` also bumps ``total_earned``.
        """
        if amount <= 0:
            raise ValueError(f"credit amount must be positive, got {amount}")
        wallet.balance += amount
        if earned:
            wallet.total_earned += amount
        return self._append(
            session, wallet, amount, transaction_type,
            related_user_id=related_user_id, description=description,
        )

    def debit(
        self,
        session: Session,
        wallet: Wallet,
        amount: int,
        transaction_type: TransactionType,
        *,
        fee: int = 0,
        related_user_id: int | None = None,
        description: str | None = None,
    ) -> CurrencyTransaction:
        """Subtract *amount* (> 0); the caller has already checked the balance."""
        if amount <= 0:
            raise ValueError(f"debit amount must be positive, got {amount}")
        if wallet.balance < amount:
            raise ValueError(
                f"debit of {amount} would overdraw wallet with balance {wallet.balance}"
            )
        wallet.balance -= amount
        return self._append(
            session, wallet, -amount, transaction_type,
            fee=fee, related_user_id=related_user_id, description=description,
        )

    def _append(
        self,
        session: Session,
        wallet: Wallet,
        signed_amount: int,
        transaction_type: TransactionType,
        *,
        fee: int = 0,
        related_user_id: int | None = None,
        description: str | None = None,
    ) -> CurrencyTransaction:
        row = CurrencyTransaction(
            guild_id=wallet.guild_id,
            user_id=wallet.user_id,
            currency_type=wallet.currency_type,
            transaction_type=transaction_type.value,
            amount=signed_amount,
            balance_after=wallet.balance,
            fee=fee,
            related_user_id=related_user_id,
            description=description,
        )
        session.add(row)
        return row
