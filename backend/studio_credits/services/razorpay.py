from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any

import requests

from studio_credits.core.errors import Internal, Unavailable
from studio_credits.core.settings import settings


logger = logging.getLogger(__name__)


def _hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(key=secret.encode("utf-8"), msg=message, digestmod=hashlib.sha256).hexdigest()


def payment_signature(order_id: str, payment_id: str, secret: str) -> str:
    return _hmac_sha256_hex(secret, f"{order_id}|{payment_id}".encode("utf-8"))


def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    if not secret or not signature:
        return False
    expected = payment_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected, str(signature).strip())


def verify_webhook_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    if not secret or not signature:
        return False
    expected = _hmac_sha256_hex(secret, raw_body)
    return hmac.compare_digest(expected, str(signature).strip())


def _require_credentials() -> tuple[str, str]:
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        raise Internal("Razorpay credentials are not configured")
    return settings.razorpay_key_id, settings.razorpay_key_secret


def _request(method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
    key_id, key_secret = _require_credentials()
    url = f"{settings.razorpay_api_base}{path}"
    try:
        resp = requests.request(
            method,
            url,
            auth=(key_id, key_secret),
            json=payload,
            headers={"Accept": "application/json"},
            timeout=settings.razorpay_timeout_s,
        )
    except requests.RequestException as exc:
        logger.warning("razorpay.request.transport_error method=%s path=%s error=%s", method, path, exc)
        raise Unavailable("Payment gateway is unreachable") from exc

    if resp.status_code >= 500:
        logger.warning("razorpay.request.upstream_error method=%s path=%s status=%s", method, path, resp.status_code)
        raise Unavailable(f"Razorpay error ({resp.status_code})")
    if resp.status_code >= 400:
        logger.warning("razorpay.request.rejected method=%s path=%s status=%s", method, path, resp.status_code)
        raise Internal(f"Razorpay error ({resp.status_code})")
    try:
        data = resp.json()
    except ValueError as exc:
        raise Internal("Razorpay returned an invalid response") from exc
    if not isinstance(data, dict):
        raise Internal("Razorpay returned an invalid response")
    return data


def fetch_payment(payment_id: str) -> dict[str, Any]:
    return _request("GET", f"/payments/{payment_id}")


def create_order(
    *,
    amount_minor: int,
    currency: str,
    receipt: str,
    notes: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return _request(
        "POST",
        "/orders",
        {
            "amount": int(amount_minor),
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        },
    )
