from typing import Optional

from pydantic import BaseModel, Field


class CreateOrderRequest(BaseModel):
    amount: float = Field(gt=0)
    currency: str = "INR"
    planId: Optional[str] = None
    receipt: Optional[str] = None


class CreateOrderResponse(BaseModel):
    orderId: str
    amount: int
    currency: str
    key: Optional[str] = None


class VerifyOrderRequest(BaseModel):
    orderId: Optional[str] = None
    paymentId: Optional[str] = None
    signature: Optional[str] = None
    packageId: Optional[str] = None


class VerifyOrderResponse(BaseModel):
    success: bool
    creditsAdded: int
    newBalance: int


class WebhookAck(BaseModel):
    received: bool = True
