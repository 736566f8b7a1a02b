from sqlalchemy import Column, String, DateTime
from app.core.database import Base
from datetime import datetime


class ProcessedBillingEvent(Base):
    """Billing events whose side effects must not repeat on redelivery"""
    __tablename__ = "processed_billing_events"

    event_id = Column(String, primary_key=True)  # Stripe event ID (evt_...)
    event_type = Column(String, nullable=False)
    processed_at = Column(DateTime, default=datetime.utcnow, nullable=False)
