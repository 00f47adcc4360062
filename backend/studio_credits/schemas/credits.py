from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from studio_credits.models.credit_ledger import CreditEventType


class BalanceResponse(BaseModel):
    balance: int


class CreditTransactionResponse(BaseModel):
    id: int
    amount: int = Field(validation_alias="delta")
    type: str = Field(validation_alias="event_type")
    source: Optional[str] = None
    balance_after: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="event_metadata")
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CreditTransactionListResponse(BaseModel):
    items: List[CreditTransactionResponse]
    limit: int


class CreditPackageResponse(BaseModel):
    id: str
    name: str
    credits: int
    price_inr: int
    price_usd: float
    popular: bool = False
    plan_id: str


class TrialGrantResponse(BaseModel):
    granted: bool
    balance: int


class ConsumeRequest(BaseModel):
    amount: int = Field(default=1, ge=1, le=10000)
    type: CreditEventType = CreditEventType.GENERATION_CONSUMPTION
    metadata: Optional[Dict[str, Any]] = None


class ConsumeResponse(BaseModel):
    success: bool
    newBalance: int
