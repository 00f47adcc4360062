from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from studio_credits.core.database import insert_ignore
from studio_credits.core.errors import Conflict, InsufficientFunds, Internal, InvalidArgument, Unavailable
from studio_credits.core.settings import settings
from studio_credits.models.credit_account import CreditAccount
from studio_credits.models.credit_ledger import KEYED_EVENT_TYPES, CreditEventType, CreditLedger


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    user_id: str
    delta: int
    event_type: CreditEventType
    source: str
    metadata: dict[str, Any] | None = field(default=None)

    @property
    def idempotency_key(self) -> str | None:
        return self.source if self.event_type in KEYED_EVENT_TYPES else None


@dataclass(frozen=True)
class AppliedEntry:
    entry_id: int
    balance: int
    replayed: bool = False


def get_balance(db: Session, user_id: str) -> int:
    balance = db.execute(select(CreditAccount.balance).where(CreditAccount.user_id == user_id)).scalar()
    return int(balance or 0)


def list_entries(db: Session, user_id: str, limit: int = 50) -> list[CreditLedger]:
    limit = max(1, min(int(limit or 50), 500))
    return list(
        db.execute(
            select(CreditLedger)
            .where(CreditLedger.user_id == user_id)
            .order_by(CreditLedger.created_at.desc(), CreditLedger.id.desc())
            .limit(limit)
        ).scalars()
    )


def find_keyed_entry(db: Session, idempotency_key: str) -> CreditLedger | None:
    return db.execute(
        select(CreditLedger).where(CreditLedger.idempotency_key == idempotency_key)
    ).scalar_one_or_none()


def find_entry_by_source(db: Session, user_id: str, source: str) -> CreditLedger | None:
    return db.execute(
        select(CreditLedger)
        .where(CreditLedger.user_id == user_id, CreditLedger.source == source)
        .order_by(CreditLedger.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def _replayed(db: Session, entry: LedgerEntry, existing: CreditLedger) -> AppliedEntry:
    if existing.user_id != entry.user_id:
        logger.warning(
            "ledger.append.key_owned_by_other_user key=%s user_id=%s owner=%s",
            existing.idempotency_key,
            entry.user_id,
            existing.user_id,
        )
        raise Conflict("Source key already used by another account")
    balance = existing.balance_after
    if balance is None:
        balance = get_balance(db, entry.user_id)
    logger.info(
        "ledger.append.replayed user_id=%s key=%s entry_id=%s balance=%s",
        entry.user_id,
        existing.idempotency_key or existing.source,
        existing.id,
        balance,
    )
    return AppliedEntry(entry_id=int(existing.id), balance=int(balance), replayed=True)


def _apply_once(db: Session, entry: LedgerEntry, retrying: bool = False) -> AppliedEntry:
    key = entry.idempotency_key
    if key:
        existing = find_keyed_entry(db, key)
        if existing is not None:
            return _replayed(db, entry, existing)
    elif retrying:
        # a failed commit may still have landed; unkeyed sources are unique per call
        existing = find_entry_by_source(db, entry.user_id, entry.source)
        if existing is not None:
            return _replayed(db, entry, existing)

    insert_ignore(db, CreditAccount, {"user_id": entry.user_id, "balance": 0}, ["user_id"])

    row = CreditLedger(
        user_id=entry.user_id,
        event_type=entry.event_type.value,
        delta=int(entry.delta),
        source=entry.source,
        idempotency_key=key,
        event_metadata=(entry.metadata or None),
    )
    db.add(row)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        existing = find_keyed_entry(db, key) if key else None
        if existing is None:
            logger.exception("ledger.append.integrity_error user_id=%s source=%s", entry.user_id, entry.source)
            raise Internal("Failed to record credit transaction") from exc
        return _replayed(db, entry, existing)

    # the guard lives in the UPDATE itself so a concurrent writer cannot slip between check and write
    result = db.execute(
        update(CreditAccount)
        .where(CreditAccount.user_id == entry.user_id, CreditAccount.balance + entry.delta >= 0)
        .values(balance=CreditAccount.balance + entry.delta, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if int(result.rowcount or 0) != 1:
        db.rollback()
        balance = get_balance(db, entry.user_id)
        raise InsufficientFunds(balance=balance, required=-int(entry.delta))

    balance = get_balance(db, entry.user_id)
    row.balance_after = balance
    entry_id = int(row.id)
    db.commit()
    logger.info(
        "ledger.append.applied user_id=%s type=%s delta=%s source=%s entry_id=%s balance=%s",
        entry.user_id,
        entry.event_type.value,
        entry.delta,
        entry.source,
        entry_id,
        balance,
    )
    return AppliedEntry(entry_id=entry_id, balance=balance)


def append_and_apply(db: Session, entry: LedgerEntry) -> AppliedEntry:
    if not entry.user_id:
        raise InvalidArgument("user_id is required")
    if int(entry.delta) == 0:
        raise InvalidArgument("delta must be non-zero")
    if not entry.source:
        raise InvalidArgument("source is required")

    last_error: OperationalError | None = None
    for attempt in range(1, settings.db_max_retries + 1):
        try:
            return _apply_once(db, entry, retrying=attempt > 1)
        except OperationalError as exc:
            db.rollback()
            last_error = exc
            logger.warning(
                "ledger.append.retry user_id=%s source=%s attempt=%s error=%s",
                entry.user_id,
                entry.source,
                attempt,
                exc.orig if exc.orig is not None else exc,
            )
            time.sleep(min(0.05 * attempt, 0.5))

    logger.error("ledger.append.unavailable user_id=%s source=%s", entry.user_id, entry.source)
    raise Unavailable("Credit store is temporarily unavailable") from last_error
