from sqlalchemy import JSON, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from studio_credits.core.database import Base


ORDER_STATUS_CREATED = "created"
ORDER_STATUS_CAPTURED = "captured"
ORDER_STATUS_FAILED = "failed"
TERMINAL_ORDER_STATUSES = frozenset({ORDER_STATUS_CAPTURED, ORDER_STATUS_FAILED})


class PaymentOrder(Base):
    __tablename__ = "payment_orders"

    order_id = Column(String, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=True)
    amount = Column(Integer, nullable=True)
    currency = Column(String, nullable=True)
    plan_id = Column(String, index=True, nullable=True)
    receipt = Column(String, nullable=True)
    status = Column(String, index=True, nullable=True)
    payment_id = Column(String, index=True, nullable=True)
    method = Column(String, nullable=True)
    email = Column(String, nullable=True)
    contact = Column(String, nullable=True)
    notes = Column(JSON, nullable=True)
    raw_gateway_fields = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
