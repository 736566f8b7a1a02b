from app.models.user import User
from app.models.subscription import Subscription, SubscriptionStatus, ACTIVE_STATUSES
from app.models.user_preferences import UserPreferences
from app.models.user_trial import UserTrial
from app.models.processed_billing_event import ProcessedBillingEvent

__all__ = ["User", "Subscription", "SubscriptionStatus", "ACTIVE_STATUSES", "UserPreferences", "UserTrial", "ProcessedBillingEvent"]
