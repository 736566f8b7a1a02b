import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional

import httpx

from app.core.ttl_cache import InMemoryTTLCache, TTLCache

logger = logging.getLogger(__name__)

AUTH_DATA_PATH = "/api/v1/user/auth-data"
AUTH_DATA_CACHE_TTL_SECONDS = 30

LOGIN_PATH = "/login"
ONBOARDING_PATH = "/onboarding"
DASHBOARD_PATH = "/dashboard"


@dataclass(frozen=True)
class ClientUser:
    """Signed-in principal as the client sees it; `id` is the account id"""

    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None


@dataclass(frozen=True)
class AuthData:
    user: Optional[ClientUser] = None
    session: Any = None
    is_subscriber: bool = False
    has_completed_onboarding: bool = False
    selected_plan: Optional[str] = None
    subscription: Optional[dict] = None


@dataclass(frozen=True)
class AuthDecision:
    destination: str
    should_redirect: bool
    is_loading: bool = False


Listener = Callable[[AuthData], None]


class AuthService:
    """
    Aggregates subscription and onboarding state per signed-in user.

    One GET to the batched auth-data endpoint per cache miss; results are
    kept in an injected TTL cache and broadcast to subscribers. Requests
    carry a per-user sequence number so a slow response never replaces a
    newer one, and never repopulates the cache after an invalidation.
    """

    def __init__(self, http_client: httpx.AsyncClient, cache: Optional[TTLCache] = None):
        self.http_client = http_client
        self.cache = cache if cache is not None else InMemoryTTLCache(AUTH_DATA_CACHE_TTL_SECONDS)
        self._listeners: List[Listener] = []
        self._issued: Dict[str, int] = {}
        self._applied: Dict[str, int] = {}

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, auth_data: AuthData):
        for listener in list(self._listeners):
            listener(auth_data)

    def _next_sequence(self, user_id: str) -> int:
        sequence = self._issued.get(user_id, 0) + 1
        self._issued[user_id] = sequence
        return sequence

    async def fetch_auth_data(self, user: Optional[ClientUser], session: Any = None) -> AuthData:
        if user is None:
            return AuthData()

        cached = self.cache.get(user.id)
        if cached is not None:
            auth_data = replace(cached, user=user, session=session)
            self._notify(auth_data)
            return auth_data

        sequence = self._next_sequence(user.id)
        try:
            response = await self.http_client.get(AUTH_DATA_PATH, params={'user_id': user.id})
            response.raise_for_status()
            data = response.json()['data']
            auth_data = AuthData(
                user=user,
                session=session,
                is_subscriber=bool(data.get('isSubscriber')),
                has_completed_onboarding=bool(data.get('hasCompletedOnboarding')),
                selected_plan=data.get('selectedPlanId') or None,
                subscription=data.get('subscription') or None,
            )
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(f"fetch_auth_data: Failure - user: {user.id}, error: {e}")
            return AuthData(user=user, session=session)

        if sequence <= self._applied.get(user.id, 0):
            logger.debug(f"fetch_auth_data: Discarded stale response - user: {user.id}, sequence: {sequence}")
            return auth_data

        self._applied[user.id] = sequence
        self.cache.set(user.id, auth_data)
        self._notify(auth_data)
        return auth_data

    def get_auth_decision(self, auth_data: AuthData, current_path: str) -> AuthDecision:
        if auth_data.user is None:
            destination = LOGIN_PATH
        elif not auth_data.is_subscriber:
            destination = ONBOARDING_PATH
        else:
            destination = DASHBOARD_PATH
        return AuthDecision(destination=destination, should_redirect=current_path != destination)

    def optimistic_update(self, user_id: str, **fields):
        """Patch a cached entry ahead of server confirmation; no-op when nothing is cached"""
        cached = self.cache.get(user_id)
        if cached is None:
            return
        updated = replace(cached, **fields)
        self.cache.set(user_id, updated)
        self._notify(updated)

    def invalidate_cache(self, user_id: str):
        self.cache.invalidate(user_id)
        # Responses to requests already in flight must not repopulate the entry
        self._applied[user_id] = self._issued.get(user_id, 0)

    def clear_cache(self):
        self.cache.clear()
        self._applied.update(self._issued)

    def get_optimistic_auth_data(self, user: Optional[ClientUser]) -> Optional[AuthData]:
        """Cached data only, never any I/O"""
        if user is None:
            return None
        return self.cache.get(user.id)
