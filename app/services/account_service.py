import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.models.user import User
from app.services.analytics_service import AnalyticsService

logger = logging.getLogger(__name__)

INVALID_USER_MESSAGE = "Invalid user ID"


class AccountService:
    def __init__(self):
        self.analytics = AnalyticsService()
        self.logger = logging.getLogger(__name__)

    def get_user(self, db: Session, user_id: uuid.UUID) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    def require_user(self, db: Session, user_id: uuid.UUID) -> User:
        """Existence check run before acting on any caller-supplied user id"""
        user = self.get_user(db, user_id)
        if not user:
            # Same message whatever the reason, so ids cannot be probed
            raise ValueError(INVALID_USER_MESSAGE)
        return user

    def get_or_create_from_identity(
        self,
        db: Session,
        firebase_uid: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None
    ) -> User:
        """Find the user for an identity-provider UID, creating the row on first sign-in"""
        self.logger.info(f"get_or_create_from_identity: Entry - uid: {firebase_uid}")

        try:
            user = db.query(User).filter(User.firebase_uid == firebase_uid).first()
            if user:
                changed = False
                if email and user.email != email:
                    user.email = email
                    changed = True
                if display_name and user.display_name != display_name:
                    user.display_name = display_name
                    changed = True
                if changed:
                    db.commit()
                    db.refresh(user)
                self.logger.info(f"get_or_create_from_identity: Success - existing user: {user.id}")
                return user

            user = User(
                id=uuid.uuid4(),
                firebase_uid=firebase_uid,
                email=email,
                display_name=display_name,
            )
            db.add(user)
            db.commit()
            db.refresh(user)

            self.analytics.log_success(action='user_created', user_id=user.id)
            self.logger.info(f"get_or_create_from_identity: Success - created user: {user.id}")
            return user
        except Exception as e:
            db.rollback()
            self.logger.error(f"get_or_create_from_identity: Failure - {e}")
            raise

    def reactivate(self, db: Session, user_id: uuid.UUID) -> User:
        """Clear the soft-delete flag on an account"""
        self.logger.info(f"reactivate: Entry - user: {user_id}")

        try:
            user = self.require_user(db, user_id)
            if not user.is_deleted:
                raise ValueError("Account is not deleted")

            user.is_deleted = False
            user.deleted_at = None
            user.reactivated_at = datetime.utcnow()
            db.commit()
            db.refresh(user)

            self.analytics.log_success(action='account_reactivate', user_id=user_id)
            self.logger.info(f"reactivate: Success - user: {user_id}")
            return user
        except ValueError:
            raise
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(action='account_reactivate', error=str(e), user_id=user_id)
            self.logger.error(f"reactivate: Failure - {e}")
            raise

    def soft_delete(self, db: Session, user_id: uuid.UUID) -> User:
        """Mark an account deleted without removing any rows"""
        self.logger.info(f"soft_delete: Entry - user: {user_id}")

        try:
            user = self.require_user(db, user_id)
            if user.is_deleted:
                raise ValueError("Account is already deleted")

            user.is_deleted = True
            user.deleted_at = datetime.utcnow()
            db.commit()
            db.refresh(user)

            self.analytics.log_success(action='account_delete', user_id=user_id)
            self.logger.info(f"soft_delete: Success - user: {user_id}")
            return user
        except ValueError:
            raise
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(action='account_delete', error=str(e), user_id=user_id)
            self.logger.error(f"soft_delete: Failure - {e}")
            raise
