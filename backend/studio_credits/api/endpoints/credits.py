from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from studio_credits.core.database import get_db
from studio_credits.core.errors import InsufficientFunds
from studio_credits.core.security import CurrentUser, get_current_user
from studio_credits.schemas.credits import (
    BalanceResponse,
    ConsumeRequest,
    ConsumeResponse,
    CreditPackageResponse,
    CreditTransactionListResponse,
    CreditTransactionResponse,
    TrialGrantResponse,
)
from studio_credits.services.credits_engine import (
    deduct_credits,
    get_credit_balance,
    grant_trial_credits,
    has_sufficient_credits,
    list_transactions,
)
from studio_credits.services.packages import CREDIT_PACKAGES, plan_id_for


router = APIRouter()


@router.get("/credits/balance", response_model=BalanceResponse)
def credits_balance(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BalanceResponse:
    return BalanceResponse(balance=get_credit_balance(db, current_user.id))


@router.get("/credits/transactions", response_model=CreditTransactionListResponse)
def credits_transactions(
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> CreditTransactionListResponse:
    rows = list_transactions(db, current_user.id, limit=limit)
    return CreditTransactionListResponse(
        items=[CreditTransactionResponse.model_validate(row) for row in rows],
        limit=limit,
    )


@router.get("/credits/packages", response_model=list[CreditPackageResponse])
def credits_packages() -> list[CreditPackageResponse]:
    return [CreditPackageResponse(**pkg.to_dict(), plan_id=plan_id_for(pkg)) for pkg in CREDIT_PACKAGES]


@router.post("/credits/trial", response_model=TrialGrantResponse)
def credits_trial(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> TrialGrantResponse:
    result = grant_trial_credits(db, current_user.id)
    return TrialGrantResponse(granted=not result.replayed, balance=result.new_balance)


@router.post("/credits/consume", response_model=ConsumeResponse)
def credits_consume(
    body: ConsumeRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ConsumeResponse:
    if not has_sufficient_credits(db, current_user.id, body.amount):
        raise InsufficientFunds(balance=get_credit_balance(db, current_user.id), required=body.amount)
    new_balance = deduct_credits(db, current_user.id, body.amount, body.type, body.metadata)
    return ConsumeResponse(success=True, newBalance=new_balance)
