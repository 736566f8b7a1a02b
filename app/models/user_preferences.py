from sqlalchemy import Column, String, DateTime, Boolean, Integer, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from app.core.database import Base
from datetime import datetime

DEFAULT_ONBOARDING_STEP = 1
MAX_ONBOARDING_STEP = 10


class UserPreferences(Base):
    __tablename__ = "user_preferences"

    user_id = Column(Uuid, ForeignKey("users.id"), primary_key=True)
    has_completed_onboarding = Column(Boolean, default=False, nullable=False)
    onboarding_step = Column(Integer, default=DEFAULT_ONBOARDING_STEP, nullable=False)  # 1-10
    selected_plan_id = Column(String, nullable=True)
    onboarding_completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="preferences")

    def to_dict(self) -> dict:
        return {
            'user_id': str(self.user_id),
            'has_completed_onboarding': self.has_completed_onboarding,
            'onboarding_step': self.onboarding_step,
            'selected_plan_id': self.selected_plan_id,
            'onboarding_completed_at': self.onboarding_completed_at.isoformat() if self.onboarding_completed_at else None,
        }
