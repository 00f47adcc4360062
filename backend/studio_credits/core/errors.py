from __future__ import annotations

from typing import Any


class CreditsError(Exception):
    code = "internal"
    status_code = 500
    retryable = False

    def __init__(self, message: str | None = None, **details: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.retryable:
            body["retryable"] = True
        return body


class Unauthenticated(CreditsError):
    code = "unauthenticated"
    status_code = 401


class InvalidArgument(CreditsError):
    code = "invalid_argument"
    status_code = 400


class InvalidSignature(CreditsError):
    code = "invalid_signature"
    status_code = 400


class PaymentNotSuccessful(CreditsError):
    code = "payment_not_successful"
    status_code = 400


class Conflict(CreditsError):
    code = "conflict"
    status_code = 409


class InsufficientFunds(CreditsError):
    code = "insufficient_credits"
    status_code = 402

    def __init__(self, message: str | None = None, *, balance: int = 0, required: int = 0) -> None:
        super().__init__(
            message or f"Insufficient credits. Required: {required}, available: {balance}.",
            balance=balance,
            required=required,
        )
        self.balance = int(balance)
        self.required = int(required)


class Unavailable(CreditsError):
    code = "unavailable"
    status_code = 503
    retryable = True


class Internal(CreditsError):
    code = "internal"
    status_code = 500
