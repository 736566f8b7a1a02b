from sqlalchemy import Column, DateTime, Boolean, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from app.core.database import Base
from datetime import datetime


class UserTrial(Base):
    __tablename__ = "user_trials"

    user_id = Column(Uuid, ForeignKey("users.id"), primary_key=True)
    trial_end_time = Column(DateTime, nullable=False)
    is_trial_used = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="trial")

    def to_dict(self) -> dict:
        return {
            'trial_end_time': self.trial_end_time.isoformat() if self.trial_end_time else None,
            'is_trial_used': self.is_trial_used,
        }
