from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Index, Uuid, text
from sqlalchemy.orm import relationship
from app.core.database import Base
from datetime import datetime
import enum
import uuid


class SubscriptionStatus(str, enum.Enum):
    """Stripe subscription statuses"""
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    PAUSED = "paused"


# Statuses that count as a live billing relationship
ACTIVE_STATUSES = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value)

_ACTIVE_PREDICATE = text("status IN ('active', 'trialing')")


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        # At most one active-or-trialing subscription per user
        Index(
            "uq_subscriptions_one_active_per_user",
            "user_id",
            unique=True,
            postgresql_where=_ACTIVE_PREDICATE,
            sqlite_where=_ACTIVE_PREDICATE,
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    stripe_customer_id = Column(String, nullable=True, index=True)
    stripe_subscription_id = Column(String, nullable=False, unique=True, index=True)
    status = Column(String, nullable=False, index=True)  # see SubscriptionStatus
    price_id = Column(String, nullable=True)
    product_name = Column(String, nullable=True)
    product_id = Column(String, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="subscriptions")

    def to_dict(self) -> dict:
        return {
            'id': str(self.id),
            'user_id': str(self.user_id),
            'status': self.status,
            'stripe_customer_id': self.stripe_customer_id,
            'stripe_subscription_id': self.stripe_subscription_id,
            'price_id': self.price_id,
            'product_name': self.product_name,
            'product_id': self.product_id,
            'cancel_at_period_end': self.cancel_at_period_end,
            'current_period_end': self.current_period_end.isoformat() if self.current_period_end else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
