import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import httpx

logger = logging.getLogger(__name__)

TRIAL_PATH = "/api/v1/user/trial"
SUBSCRIBED_STATUSES = ('active', 'trialing')


@dataclass(frozen=True)
class TrialStatus:
    is_in_trial: bool = False
    trial_end_time: Optional[str] = None
    has_subscription: bool = False


class TrialStatusClient:
    def __init__(self, http_client: httpx.AsyncClient, now: Callable[[], datetime] = datetime.utcnow):
        self.http_client = http_client
        self.now = now

    async def get_trial_status(self, user_id: Optional[str]) -> TrialStatus:
        """
        A subscriber is never in trial. Without a trial record the user is
        implicitly in trial; with one, until its end time unless used up.
        Any failure yields the all-false status.
        """
        if not user_id:
            return TrialStatus()

        try:
            response = await self.http_client.get(TRIAL_PATH, params={'user_id': user_id})
            response.raise_for_status()
            data = response.json()

            subscription = data.get('subscription') or {}
            if subscription.get('status') in SUBSCRIBED_STATUSES:
                return TrialStatus(has_subscription=True)

            trial = data.get('trial')
            if not trial:
                return TrialStatus(is_in_trial=True)

            end_time = trial.get('trial_end_time')
            is_in_trial = (
                not trial.get('is_trial_used')
                and end_time is not None
                and self.now() < datetime.fromisoformat(end_time)
            )
            return TrialStatus(is_in_trial=is_in_trial, trial_end_time=end_time)
        except (httpx.HTTPError, ValueError, TypeError, AttributeError) as e:
            logger.error(f"get_trial_status: Failure - user: {user_id}, error: {e}")
            return TrialStatus()
