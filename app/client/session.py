import logging
from typing import Any, Optional

import httpx

from app.client.auth_service import AuthData, AuthService, ClientUser
from app.client.navigation import NavigationResolver

logger = logging.getLogger(__name__)

ACCOUNT_PATH = "/api/v1/user/account"


class AuthSession:
    """Current identity and session, tied to an AuthService"""

    def __init__(self, http_client: httpx.AsyncClient, auth_service: Optional[AuthService] = None):
        self.http_client = http_client
        self.auth_service = auth_service or AuthService(http_client)
        self.user: Optional[ClientUser] = None
        self.session: Any = None
        self.auth_data: Optional[AuthData] = None

    async def _reactivate(self, user_id: str):
        """Undo a soft delete on sign-in; any failure leaves sign-in unaffected"""
        try:
            response = await self.http_client.post(
                ACCOUNT_PATH, json={'action': 'reactivate', 'user_id': user_id})
            if response.status_code == 200:
                logger.info(f"sign_in: Reactivated account - user: {user_id}")
        except httpx.HTTPError as e:
            logger.warning(f"sign_in: Account reactivation check failed - {e}")

    async def sign_in(self, user: ClientUser, session: Any = None) -> AuthData:
        self.user = user
        self.session = session
        await self._reactivate(user.id)
        self.auth_data = await self.auth_service.fetch_auth_data(user, session)
        return self.auth_data

    def sign_out(self):
        self.auth_service.clear_cache()
        self.user = None
        self.session = None
        self.auth_data = None

    async def refresh(self) -> AuthData:
        self.auth_data = await self.auth_service.fetch_auth_data(self.user, self.session)
        return self.auth_data

    async def handle_payment_success(self) -> Optional[AuthData]:
        """Drop cached state so the new subscription is read from the server"""
        if self.user is None:
            return None
        self.auth_service.invalidate_cache(self.user.id)
        return await self.refresh()

    def navigation(self) -> NavigationResolver:
        return NavigationResolver.from_service(self.auth_service, self.user, self.auth_data)
