import logging
import uuid
from datetime import datetime

from sqlalchemy.orm import Session

from app.models.user_preferences import DEFAULT_ONBOARDING_STEP, UserPreferences
from app.services.analytics_service import AnalyticsService

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    'has_completed_onboarding',
    'onboarding_step',
    'selected_plan_id',
    'onboarding_completed_at',
)


def default_preferences(user_id: uuid.UUID) -> dict:
    """Preferences reported for a user who has no row yet"""
    return {
        'user_id': str(user_id),
        'has_completed_onboarding': False,
        'onboarding_step': DEFAULT_ONBOARDING_STEP,
        'selected_plan_id': None,
        'onboarding_completed_at': None,
    }


class PreferencesService:
    def __init__(self):
        self.analytics = AnalyticsService()
        self.logger = logging.getLogger(__name__)

    def _find(self, db: Session, user_id: uuid.UUID):
        return db.query(UserPreferences).filter(UserPreferences.user_id == user_id).first()

    def get_preferences(self, db: Session, user_id: uuid.UUID) -> dict:
        """Read preferences; never creates a row"""
        self.logger.info(f"get_preferences: Entry - user: {user_id}")
        preferences = self._find(db, user_id)
        result = preferences.to_dict() if preferences else default_preferences(user_id)
        self.logger.info(f"get_preferences: Success - user: {user_id}, stored: {preferences is not None}")
        return result

    def get_or_create(self, db: Session, user_id: uuid.UUID) -> UserPreferences:
        """Read preferences, inserting the default row when missing"""
        preferences = self._find(db, user_id)
        if preferences:
            return preferences

        self.logger.info(f"get_or_create: Creating default preferences - user: {user_id}")
        try:
            preferences = UserPreferences(
                user_id=user_id,
                has_completed_onboarding=False,
                onboarding_step=DEFAULT_ONBOARDING_STEP,
            )
            db.add(preferences)
            db.commit()
            db.refresh(preferences)
            return preferences
        except Exception as e:
            db.rollback()
            self.logger.error(f"get_or_create: Failure - {e}")
            raise

    def update_preferences(self, db: Session, user_id: uuid.UUID, updates: dict) -> UserPreferences:
        """Upsert any subset of the onboarding fields; explicit None clears a field"""
        self.logger.info(f"update_preferences: Entry - user: {user_id}, fields: {sorted(updates)}")

        unknown = set(updates) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown preference fields: {', '.join(sorted(unknown))}")

        try:
            preferences = self._find(db, user_id)
            if not preferences:
                preferences = UserPreferences(
                    user_id=user_id,
                    has_completed_onboarding=False,
                    onboarding_step=DEFAULT_ONBOARDING_STEP,
                )
                db.add(preferences)

            for field, value in updates.items():
                if value is None and field in ('has_completed_onboarding', 'onboarding_step'):
                    # Non-nullable columns fall back to their defaults
                    value = False if field == 'has_completed_onboarding' else DEFAULT_ONBOARDING_STEP
                setattr(preferences, field, value)
            preferences.updated_at = datetime.utcnow()

            db.commit()
            db.refresh(preferences)

            self.analytics.log_success(
                action='update_preferences',
                user_id=user_id,
                parameters={'fields': sorted(updates)}
            )
            self.logger.info(f"update_preferences: Success - user: {user_id}")
            return preferences
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(action='update_preferences', error=str(e), user_id=user_id)
            self.logger.error(f"update_preferences: Failure - {e}")
            raise

    def mark_onboarding_complete(self, db: Session, user_id: uuid.UUID) -> bool:
        """
        Best-effort: flag onboarding as complete after a subscription is created.
        Errors are logged and swallowed; returns whether the write landed.
        """
        try:
            self.update_preferences(db, user_id, {'has_completed_onboarding': True})
            self.logger.info(f"mark_onboarding_complete: Success - user: {user_id}")
            return True
        except Exception as e:
            self.logger.error(f"mark_onboarding_complete: Failure - user: {user_id}, error: {e}")
            return False
