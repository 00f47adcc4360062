import enum

from sqlalchemy import JSON, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from studio_credits.core.database import Base


class CreditEventType(str, enum.Enum):
    TRIAL_GRANT = "trial_grant"
    PURCHASE = "purchase"
    GENERATION_CONSUMPTION = "generation_consumption"
    CONCEPT_CONSUMPTION = "concept_consumption"
    REFUND = "refund"


# Entries of these types may be recorded at most once per source key.
KEYED_EVENT_TYPES = frozenset(
    {CreditEventType.TRIAL_GRANT, CreditEventType.PURCHASE, CreditEventType.REFUND}
)
CONSUMPTION_EVENT_TYPES = frozenset(
    {CreditEventType.GENERATION_CONSUMPTION, CreditEventType.CONCEPT_CONSUMPTION}
)


class CreditLedger(Base):
    __tablename__ = "credit_ledger"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    event_type = Column(String, index=True, nullable=False)
    delta = Column(Integer, nullable=False)
    source = Column(String, index=True, nullable=False)
    idempotency_key = Column(String, unique=True, nullable=True)
    balance_after = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    event_metadata = Column("metadata", JSON, nullable=True)
