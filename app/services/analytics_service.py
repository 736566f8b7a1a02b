import logging
from datetime import datetime
from app.core.firebase import get_firestore_client

logger = logging.getLogger(__name__)


class AnalyticsService:
    """Product events and error tracking stored in Firestore.

    Nothing here may break the calling operation: every write failure is
    logged and dropped.
    """

    events_collection = 'analytics_events'
    errors_collection = 'error_events'

    def __init__(self):
        self._db = None

    @property
    def db(self):
        if self._db is None:
            self._db = get_firestore_client()
        return self._db

    def _write(self, collection: str, document: dict):
        try:
            self.db.collection(collection).add(document)
        except Exception as e:
            logger.error(f"AnalyticsService: Failed to write to {collection} - {e}")

    def log_event(self, event_name: str, user_id: str = None, parameters: dict = None):
        """Record a product analytics event"""
        logger.debug(f"log_event: {event_name}, user: {user_id}")
        self._write(self.events_collection, {
            'event_name': event_name,
            'user_id': str(user_id) if user_id else None,
            'parameters': parameters or {},
            'timestamp': datetime.utcnow(),
        })

    def log_success(self, action: str, user_id: str = None, parameters: dict = None):
        self.log_event(
            event_name=f'{action}_success',
            user_id=user_id,
            parameters={'status': 'success', **(parameters or {})}
        )

    def log_failure(self, action: str, error: str, user_id: str = None, parameters: dict = None):
        """Record a failed action both as an analytics event and as a tracked error"""
        self.log_event(
            event_name=f'{action}_failure',
            user_id=user_id,
            parameters={'status': 'failure', 'error': error, **(parameters or {})}
        )
        self._write(self.errors_collection, {
            'action': action,
            'user_id': str(user_id) if user_id else None,
            'error_message': error,
            'parameters': parameters or {},
            'fatal': False,
            'timestamp': datetime.utcnow(),
        })
