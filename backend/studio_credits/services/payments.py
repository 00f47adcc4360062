from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, or_, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from studio_credits.core.database import insert_ignore
from studio_credits.core.errors import (
    Conflict,
    Internal,
    InvalidArgument,
    InvalidSignature,
    PaymentNotSuccessful,
    Unavailable,
)
from studio_credits.core.settings import settings
from studio_credits.models.payment_order import (
    ORDER_STATUS_CAPTURED,
    ORDER_STATUS_CREATED,
    ORDER_STATUS_FAILED,
    TERMINAL_ORDER_STATUSES,
    PaymentOrder,
)
from studio_credits.services import razorpay
from studio_credits.services.credits_engine import add_credits
from studio_credits.services.packages import (
    find_package,
    package_for_credits,
    plan_id_for,
    price_minor,
    resolve_package_credits,
)


logger = logging.getLogger(__name__)

SUCCESSFUL_PAYMENT_STATUSES = frozenset({"captured", "authorized"})
_PAYMENT_ENTITY_FIELDS = ("method", "email", "contact")


@dataclass(frozen=True)
class VerificationResult:
    credits_added: int
    new_balance: int
    replayed: bool = False


@dataclass(frozen=True)
class WebhookResult:
    order_id: str
    status: str
    credited: bool = False
    new_balance: int | None = None


def order_source_key(order_id: str) -> str:
    return f"gateway_order_{order_id}"


def status_for_event(event_name: str | None) -> str:
    if event_name == "payment.captured":
        return ORDER_STATUS_CAPTURED
    if event_name == "payment.failed":
        return ORDER_STATUS_FAILED
    return event_name or "unknown"


def get_order(db: Session, order_id: str) -> PaymentOrder | None:
    return db.get(PaymentOrder, order_id)


def upsert_order(db: Session, order_id: str, fields: dict[str, Any], status: str | None = None) -> PaymentOrder:
    """Merge ``fields`` into the order record, creating it when missing.

    Only non-None fields overwrite stored values. ``status`` is applied with a
    conditional UPDATE so a terminal status (captured/failed) is never left,
    even when deliveries race.
    """
    values = {k: v for k, v in fields.items() if v is not None}
    try:
        insert_ignore(db, PaymentOrder, {"order_id": order_id}, ["order_id"])
        if values:
            db.execute(
                update(PaymentOrder)
                .where(PaymentOrder.order_id == order_id)
                .values(**values, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
        if status:
            result = db.execute(
                update(PaymentOrder)
                .where(
                    PaymentOrder.order_id == order_id,
                    or_(PaymentOrder.status.is_(None), PaymentOrder.status.notin_(TERMINAL_ORDER_STATUSES)),
                )
                .values(status=status, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            if int(result.rowcount or 0) != 1:
                logger.info("payments.order.status_kept order_id=%s incoming=%s", order_id, status)
        db.commit()
    except OperationalError as exc:
        db.rollback()
        logger.warning("payments.order.upsert_unavailable order_id=%s error=%s", order_id, exc.orig)
        raise Unavailable("Order store is temporarily unavailable") from exc

    order = db.get(PaymentOrder, order_id, populate_existing=True)
    if order is None:
        raise Unavailable("Order record could not be read back")
    return order


def _expected_amount_minor(order: PaymentOrder | None, plan_id: str | None, credits: int, currency: str) -> int | None:
    if order is not None and order.amount:
        return int(order.amount)
    package = find_package(plan_id) or package_for_credits(credits)
    if package is None:
        return None
    return price_minor(package, currency)


def _payment_covers(order: PaymentOrder | None, plan_id: str | None, credits: int, payment: dict[str, Any]) -> bool:
    """True when the captured amount pays for the credits about to be granted.

    Plan ids outside the catalog are priced as the smallest package that
    grants at least as many credits.
    """
    currency = str(payment.get("currency") or "").strip().upper()
    if not currency and order is not None and order.currency:
        currency = str(order.currency).upper()
    currency = currency or "INR"
    if order is not None and order.currency and currency != str(order.currency).upper():
        return False
    expected = _expected_amount_minor(order, plan_id, credits, currency)
    if expected is None:
        return False
    paid = payment.get("amount")
    if isinstance(paid, bool) or not isinstance(paid, int):
        return False
    return paid >= expected


def create_order(
    db: Session,
    *,
    user_id: str,
    amount: float,
    currency: str = "INR",
    plan_id: str | None = None,
    receipt: str | None = None,
) -> dict[str, Any]:
    if isinstance(amount, bool) or not isinstance(amount, (int, float)) or math.isnan(amount) or amount <= 0:
        raise InvalidArgument("A valid amount is required.")
    currency = (currency or "INR").strip().upper()
    package = find_package(plan_id)
    if package is None:
        raise InvalidArgument("Unknown credit package.")
    amount_minor = price_minor(package, currency)
    if amount_minor is None:
        raise InvalidArgument(f"Unsupported currency: {currency}")
    if int(round(amount * 100)) != amount_minor:
        logger.warning(
            "payments.create_order.amount_mismatch user_id=%s plan_id=%s amount=%s expected_minor=%s",
            user_id,
            plan_id,
            amount,
            amount_minor,
        )
        raise InvalidArgument("Amount does not match the selected package.")
    plan_id = plan_id_for(package)
    receipt = (receipt or "").strip() or f"vs_{int(time.time() * 1000)}"
    notes = {"uid": user_id, "planId": plan_id}

    order = razorpay.create_order(
        amount_minor=amount_minor,
        currency=currency,
        receipt=receipt,
        notes=notes,
    )
    order_id = str(order.get("id") or "").strip()
    if not order_id:
        logger.error("payments.create_order.missing_id user_id=%s", user_id)
        raise Internal("Failed to create Razorpay order.")

    upsert_order(
        db,
        order_id,
        {
            "user_id": user_id,
            "amount": amount_minor,
            "currency": currency,
            "plan_id": plan_id,
            "receipt": str(order.get("receipt") or receipt),
            "notes": notes,
        },
        status=str(order.get("status") or ORDER_STATUS_CREATED),
    )
    logger.info("payments.create_order.created user_id=%s order_id=%s plan_id=%s", user_id, order_id, plan_id)
    return {
        "orderId": order_id,
        "amount": amount_minor,
        "currency": currency,
        "key": settings.razorpay_key_id,
    }


def verify_order(
    db: Session,
    *,
    user_id: str,
    order_id: str,
    payment_id: str,
    signature: str,
    package_id: str | None = None,
) -> VerificationResult:
    order_id = (order_id or "").strip()
    payment_id = (payment_id or "").strip()
    signature = (signature or "").strip()
    if not order_id or not payment_id or not signature:
        raise InvalidArgument("Missing payment verification data")

    if not razorpay.verify_payment_signature(order_id, payment_id, signature, settings.razorpay_key_secret or ""):
        logger.warning(
            "payments.verify.invalid_signature user_id=%s order_id=%s payment_id=%s",
            user_id,
            order_id,
            payment_id,
        )
        raise InvalidSignature("Invalid payment signature")

    payment = razorpay.fetch_payment(payment_id)
    payment_status = str(payment.get("status") or "")
    if payment_status not in SUCCESSFUL_PAYMENT_STATUSES:
        logger.info(
            "payments.verify.not_successful user_id=%s order_id=%s status=%s",
            user_id,
            order_id,
            payment_status,
        )
        raise PaymentNotSuccessful("Payment not successful")

    order = get_order(db, order_id)
    if order is not None and order.user_id and order.user_id != user_id:
        logger.warning(
            "payments.verify.order_owner_mismatch user_id=%s order_id=%s owner=%s",
            user_id,
            order_id,
            order.user_id,
        )
        raise InvalidArgument("Order does not belong to this account")

    resolved_package = package_id
    if order is not None and order.plan_id:
        if package_id and package_id != order.plan_id:
            logger.warning(
                "payments.verify.package_mismatch order_id=%s submitted=%s recorded=%s",
                order_id,
                package_id,
                order.plan_id,
            )
        resolved_package = order.plan_id
    credits = resolve_package_credits(resolved_package)
    if not _payment_covers(order, resolved_package, credits, payment):
        logger.warning(
            "payments.verify.amount_short user_id=%s order_id=%s paid=%s currency=%s package=%s",
            user_id,
            order_id,
            payment.get("amount"),
            payment.get("currency"),
            resolved_package,
        )
        raise PaymentNotSuccessful("Payment amount does not cover the order")

    result = add_credits(
        db,
        user_id,
        credits,
        order_source_key(order_id),
        {
            "orderId": order_id,
            "paymentId": payment_id,
            "packageId": resolved_package,
            "amount": payment.get("amount"),
            "currency": payment.get("currency"),
            "via": "verify",
        },
    )

    fields: dict[str, Any] = {
        "payment_id": payment_id,
        "method": payment.get("method"),
        "email": payment.get("email"),
        "contact": payment.get("contact"),
    }
    if order is None or not order.user_id:
        fields["user_id"] = user_id
    if order is None or not order.plan_id:
        fields["plan_id"] = resolved_package
    if order is None:
        fields["amount"] = payment.get("amount")
        fields["currency"] = payment.get("currency")
    upsert_order(
        db,
        order_id,
        fields,
        status=ORDER_STATUS_CAPTURED if payment_status == "captured" else payment_status,
    )

    logger.info(
        "payments.verify.credited user_id=%s order_id=%s credits=%s balance=%s replayed=%s",
        user_id,
        order_id,
        credits,
        result.new_balance,
        result.replayed,
    )
    return VerificationResult(credits_added=credits, new_balance=result.new_balance, replayed=result.replayed)


def _entity(event: dict[str, Any], name: str) -> dict[str, Any]:
    payload = event.get("payload")
    if not isinstance(payload, dict):
        return {}
    wrapper = payload.get(name)
    if not isinstance(wrapper, dict):
        return {}
    entity = wrapper.get("entity")
    return entity if isinstance(entity, dict) else {}


def _extract_order_id(event: dict[str, Any]) -> str:
    order_id = _entity(event, "payment").get("order_id") or _entity(event, "order").get("id")
    return str(order_id or "").strip()


def _credit_from_webhook(db: Session, order: PaymentOrder, entity: dict[str, Any]) -> WebhookResult | None:
    notes = entity.get("notes") if isinstance(entity.get("notes"), dict) else {}
    user_id = order.user_id or str(notes.get("uid") or "").strip() or None
    plan_id = order.plan_id or str(notes.get("planId") or "").strip() or None
    if not user_id or not plan_id:
        logger.warning(
            "payments.webhook.credit_skipped order_id=%s has_user=%s has_plan=%s",
            order.order_id,
            bool(user_id),
            bool(plan_id),
        )
        return None

    credits = resolve_package_credits(plan_id)
    if not _payment_covers(order, plan_id, credits, entity):
        logger.warning(
            "payments.webhook.amount_short order_id=%s paid=%s currency=%s plan_id=%s",
            order.order_id,
            entity.get("amount"),
            entity.get("currency"),
            plan_id,
        )
        return None

    try:
        result = add_credits(
            db,
            user_id,
            credits,
            order_source_key(order.order_id),
            {
                "orderId": order.order_id,
                "paymentId": entity.get("id") or order.payment_id,
                "packageId": plan_id,
                "amount": entity.get("amount"),
                "currency": entity.get("currency"),
                "via": "webhook",
            },
        )
    except Conflict:
        logger.error("payments.webhook.credit_conflict order_id=%s user_id=%s", order.order_id, user_id)
        return None

    logger.info(
        "payments.webhook.credited order_id=%s user_id=%s credits=%s balance=%s replayed=%s",
        order.order_id,
        user_id,
        credits,
        result.new_balance,
        result.replayed,
    )
    return WebhookResult(
        order_id=order.order_id,
        status=str(order.status),
        credited=not result.replayed,
        new_balance=result.new_balance,
    )


def reconcile_webhook(db: Session, raw_body: bytes, signature: str | None, event: Any) -> WebhookResult:
    """Apply a verified gateway event to the order record.

    ``event`` is the parsed JSON of ``raw_body``; the signature is always
    checked over the raw bytes.
    """
    signature = (signature or "").strip()
    if not signature:
        raise InvalidArgument("Missing signature header")
    if not razorpay.verify_webhook_signature(raw_body, signature, settings.razorpay_webhook_secret or ""):
        logger.warning("payments.webhook.invalid_signature bytes=%s", len(raw_body or b""))
        raise InvalidSignature("Invalid signature")
    if not isinstance(event, dict):
        raise InvalidArgument("Invalid JSON")

    order_id = _extract_order_id(event)
    if not order_id:
        logger.warning("payments.webhook.missing_order event=%s", event.get("event"))
        raise InvalidArgument("Missing order information")

    event_name = str(event.get("event") or "").strip() or None
    status = status_for_event(event_name)
    entity = _entity(event, "payment")

    fields: dict[str, Any] = {"payment_id": entity.get("id")}
    for name in _PAYMENT_ENTITY_FIELDS:
        fields[name] = entity.get(name)
    # the gateway sends empty notes as []
    notes = entity.get("notes")
    if isinstance(notes, dict) and notes:
        fields["notes"] = notes
    raw_fields = {"event": event_name, "created_at": event.get("created_at")}
    if entity:
        raw_fields["payment"] = entity
    order_entity = _entity(event, "order")
    if order_entity:
        raw_fields["order"] = order_entity
    fields["raw_gateway_fields"] = raw_fields

    order = upsert_order(db, order_id, fields, status=status)
    logger.info("payments.webhook.processed order_id=%s event=%s status=%s", order_id, event_name, order.status)

    if settings.webhook_grants_credits and status == ORDER_STATUS_CAPTURED and order.status == ORDER_STATUS_CAPTURED:
        credited = _credit_from_webhook(db, order, entity)
        if credited is not None:
            return credited
    return WebhookResult(order_id=order_id, status=str(order.status))
