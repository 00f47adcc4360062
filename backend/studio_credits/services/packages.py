from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditPackage:
    id: str
    name: str
    credits: int
    price_inr: int
    price_usd: float
    popular: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


CREDIT_PACKAGES: tuple[CreditPackage, ...] = (
    CreditPackage(id="starter", name="Starter", credits=120, price_inr=199, price_usd=3.99),
    CreditPackage(id="popular", name="Popular", credits=240, price_inr=299, price_usd=6.99, popular=True),
    CreditPackage(id="pro", name="Pro", credits=480, price_inr=549, price_usd=9.99),
)

PACKAGE_CREDITS: dict[str, int] = {pkg.id: pkg.credits for pkg in CREDIT_PACKAGES}
FALLBACK_PACKAGE_CREDITS = min(PACKAGE_CREDITS.values())
MAX_PLAN_CREDITS = max(PACKAGE_CREDITS.values())

_PLAN_ID_RE = re.compile(r"^credits_(.+?)_(\d+)$")


def plan_id_for(package: CreditPackage) -> str:
    return f"credits_{package.id}_{package.credits}"


def find_package(package_or_plan_id: str | None) -> CreditPackage | None:
    """Match a catalog package by its id or its ``credits_<id>_<credits>`` plan id."""
    raw = str(package_or_plan_id or "").strip()
    for pkg in CREDIT_PACKAGES:
        if raw in (pkg.id, plan_id_for(pkg)):
            return pkg
    return None


def price_minor(package: CreditPackage, currency: str | None) -> int | None:
    currency = (currency or "").strip().upper()
    if currency == "INR":
        return package.price_inr * 100
    if currency == "USD":
        return int(round(package.price_usd * 100))
    return None


def resolve_package_credits(package_id: str | None) -> int:
    raw = str(package_id or "").strip()
    match = _PLAN_ID_RE.match(raw)
    if match:
        credits = int(match.group(2))
        if 0 < credits <= MAX_PLAN_CREDITS:
            return credits
    if raw in PACKAGE_CREDITS:
        return PACKAGE_CREDITS[raw]
    logger.warning(
        "packages.resolve.fallback package_id=%r credits=%s",
        raw,
        FALLBACK_PACKAGE_CREDITS,
    )
    return FALLBACK_PACKAGE_CREDITS


def package_for_credits(credits: int) -> CreditPackage | None:
    """Smallest catalog package granting at least ``credits``."""
    covering = [pkg for pkg in CREDIT_PACKAGES if pkg.credits >= credits]
    return min(covering, key=lambda pkg: pkg.credits) if covering else None
