from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from studio_credits.core.database import get_db
from studio_credits.core.errors import InvalidArgument
from studio_credits.core.security import CurrentUser, get_current_user
from studio_credits.schemas.payment import (
    CreateOrderRequest,
    CreateOrderResponse,
    VerifyOrderRequest,
    VerifyOrderResponse,
    WebhookAck,
)
from studio_credits.services.payments import create_order, reconcile_webhook, verify_order


router = APIRouter()


@router.post("/payment/create-order", response_model=CreateOrderResponse)
def payment_create_order(
    body: CreateOrderRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> dict:
    return create_order(
        db,
        user_id=current_user.id,
        amount=body.amount,
        currency=body.currency,
        plan_id=body.planId,
        receipt=body.receipt,
    )


@router.post("/payment/verify-order", response_model=VerifyOrderResponse)
def payment_verify_order(
    body: VerifyOrderRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> VerifyOrderResponse:
    result = verify_order(
        db,
        user_id=current_user.id,
        order_id=body.orderId or "",
        payment_id=body.paymentId or "",
        signature=body.signature or "",
        package_id=body.packageId,
    )
    return VerifyOrderResponse(success=True, creditsAdded=result.credits_added, newBalance=result.new_balance)


@router.post("/payment/webhook", response_model=WebhookAck)
async def payment_webhook(request: Request, db: Session = Depends(get_db)) -> WebhookAck:
    raw_body = await request.body()
    try:
        event = json.loads(raw_body or b"null")
    except ValueError:
        event = None
    await run_in_threadpool(reconcile_webhook, db, raw_body, request.headers.get("x-razorpay-signature"), event)
    return WebhookAck(received=True)


@router.api_route("/payment/webhook", methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
def payment_webhook_wrong_method() -> None:
    raise InvalidArgument("Method not allowed")
