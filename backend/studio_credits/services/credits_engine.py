from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from sqlalchemy.orm import Session

from studio_credits.core.errors import InvalidArgument
from studio_credits.core.settings import settings
from studio_credits.models.credit_ledger import CONSUMPTION_EVENT_TYPES, CreditEventType, CreditLedger
from studio_credits.services.ledger_store import LedgerEntry, append_and_apply, get_balance, list_entries


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditResult:
    new_balance: int
    entry_id: int
    replayed: bool = False


def trial_source_key(user_id: str) -> str:
    return f"trial_{user_id}"


def _positive_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidArgument("amount must be a positive integer")
    return amount


def _consumption_type(event_type: CreditEventType | str) -> CreditEventType:
    try:
        parsed = CreditEventType(event_type)
    except ValueError:
        raise InvalidArgument(f"Unknown transaction type: {event_type}")
    if parsed not in CONSUMPTION_EVENT_TYPES:
        raise InvalidArgument(f"{parsed.value} is not a consumption type")
    return parsed


def get_credit_balance(db: Session, user_id: str) -> int:
    return get_balance(db, user_id)


def has_sufficient_credits(db: Session, user_id: str, required: int = 1) -> bool:
    # Advisory only: deduct_credits re-validates inside the ledger transaction.
    return get_balance(db, user_id) >= max(int(required), 0)


def grant_trial_credits(db: Session, user_id: str) -> CreditResult:
    credits = int(settings.trial_credits)
    if credits <= 0:
        raise InvalidArgument("Trial credits are disabled")
    applied = append_and_apply(
        db,
        LedgerEntry(
            user_id=user_id,
            delta=credits,
            event_type=CreditEventType.TRIAL_GRANT,
            source=trial_source_key(user_id),
            metadata={"trial_credits": credits},
        ),
    )
    return CreditResult(new_balance=applied.balance, entry_id=applied.entry_id, replayed=applied.replayed)


def deduct_credits(
    db: Session,
    user_id: str,
    amount: int,
    event_type: CreditEventType | str = CreditEventType.GENERATION_CONSUMPTION,
    metadata: dict[str, Any] | None = None,
) -> int:
    amount = _positive_amount(amount)
    parsed_type = _consumption_type(event_type)
    # each deduction is its own event, never deduplicated
    applied = append_and_apply(
        db,
        LedgerEntry(
            user_id=user_id,
            delta=-amount,
            event_type=parsed_type,
            source=f"debit_{uuid4().hex}",
            metadata=metadata,
        ),
    )
    return applied.balance


def add_credits(
    db: Session,
    user_id: str,
    amount: int,
    source_key: str,
    metadata: dict[str, Any] | None = None,
) -> CreditResult:
    amount = _positive_amount(amount)
    source_key = str(source_key or "").strip()
    if not source_key:
        raise InvalidArgument("source_key is required")
    applied = append_and_apply(
        db,
        LedgerEntry(
            user_id=user_id,
            delta=amount,
            event_type=CreditEventType.PURCHASE,
            source=source_key,
            metadata=metadata,
        ),
    )
    return CreditResult(new_balance=applied.balance, entry_id=applied.entry_id, replayed=applied.replayed)


def refund_credits(
    db: Session,
    user_id: str,
    amount: int,
    source_key: str,
    metadata: dict[str, Any] | None = None,
) -> CreditResult:
    amount = _positive_amount(amount)
    source_key = str(source_key or "").strip()
    if not source_key:
        raise InvalidArgument("source_key is required")
    applied = append_and_apply(
        db,
        LedgerEntry(
            user_id=user_id,
            delta=amount,
            event_type=CreditEventType.REFUND,
            source=source_key,
            metadata=metadata,
        ),
    )
    return CreditResult(new_balance=applied.balance, entry_id=applied.entry_id, replayed=applied.replayed)


def list_transactions(db: Session, user_id: str, limit: int = 50) -> list[CreditLedger]:
    return list_entries(db, user_id, limit=limit)
