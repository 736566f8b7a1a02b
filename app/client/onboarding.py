import logging
from datetime import datetime
from typing import Callable, Optional

import httpx

from app.core.ttl_cache import InMemoryTTLCache, TTLCache

logger = logging.getLogger(__name__)

PREFERENCES_PATH = "/api/v1/user/preferences"
ONBOARDING_CACHE_TTL_SECONDS = 30
FIRST_STEP = 1


class OnboardingClient:
    """Onboarding progress for a signed-in user, read through a short-lived cache.

    Failures are recorded on `error` and reported through return values
    rather than raised.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        cache: Optional[TTLCache] = None,
        now: Callable[[], datetime] = datetime.utcnow,
    ):
        self.http_client = http_client
        self.cache = cache if cache is not None else InMemoryTTLCache(ONBOARDING_CACHE_TTL_SECONDS)
        self.now = now
        self.error: Optional[str] = None

    async def fetch_status(self, user_id: Optional[str]) -> Optional[dict]:
        if not user_id:
            return None

        cached = self.cache.get(user_id)
        if cached is not None:
            return cached

        try:
            response = await self.http_client.get(PREFERENCES_PATH, params={'user_id': user_id})
            response.raise_for_status()
            status = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"fetch_status: Failure - user: {user_id}, error: {e}")
            self.error = 'Failed to load onboarding status'
            return None

        self.cache.set(user_id, status)
        return status

    async def _post(self, body: dict) -> bool:
        response = await self.http_client.post(PREFERENCES_PATH, json=body)
        response.raise_for_status()
        return True

    async def update_step(self, user_id: str, step: int, plan_id: Optional[str] = None) -> bool:
        body = {'user_id': user_id, 'onboarding_step': step}
        if plan_id:
            body['selected_plan_id'] = plan_id

        try:
            await self._post(body)
        except httpx.HTTPError as e:
            logger.error(f"update_step: Failure - user: {user_id}, error: {e}")
            self.error = 'Failed to update onboarding progress'
            return False

        cached = self.cache.get(user_id)
        if cached is not None:
            self.cache.set(user_id, {**cached, **body})
        return True

    async def complete_onboarding(self, user_id: str, selected_plan: Optional[str]) -> bool:
        """Mark onboarding finished; a plan must have been chosen"""
        if not user_id or not selected_plan:
            return False

        completed_at = self.now().isoformat()
        body = {
            'user_id': user_id,
            'has_completed_onboarding': True,
            'selected_plan_id': selected_plan,
            'onboarding_completed_at': completed_at,
        }
        try:
            await self._post(body)
        except httpx.HTTPError as e:
            logger.error(f"complete_onboarding: Failure - user: {user_id}, error: {e}")
            self.error = 'Failed to complete onboarding'
            return False

        cached = self.cache.get(user_id)
        if cached is not None:
            self.cache.set(user_id, {**cached, **body})
        return True

    async def reset_onboarding(self, user_id: str) -> Optional[dict]:
        """Back to step one with no plan, then reload from the server"""
        body = {
            'user_id': user_id,
            'has_completed_onboarding': False,
            'onboarding_step': FIRST_STEP,
            'selected_plan_id': None,
            'onboarding_completed_at': None,
        }
        try:
            await self._post(body)
        except httpx.HTTPError as e:
            logger.error(f"reset_onboarding: Failure - user: {user_id}, error: {e}")
            self.error = 'Failed to reset onboarding'
            return None

        self.cache.invalidate(user_id)
        return await self.fetch_status(user_id)
