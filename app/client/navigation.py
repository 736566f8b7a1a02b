from enum import Enum
from typing import Mapping, Optional

from app.client.auth_service import (
    DASHBOARD_PATH,
    LOGIN_PATH,
    ONBOARDING_PATH,
    AuthData,
    AuthService,
    ClientUser,
)

PUBLIC_ROUTES = ('/', '/login', '/signup', '/verify-email', '/reset-password', '/update-password')

# Set on the return URL from checkout while the subscription is still propagating
PAYMENT_SUCCESS_FLAG = 'payment_success'


class AuthState(str, Enum):
    LOADING = 'loading'
    UNAUTHENTICATED = 'unauthenticated'
    NEEDS_ONBOARDING = 'needs_onboarding'
    AUTHENTICATED = 'authenticated'


def resolve_auth_state(
    identity_present: bool,
    auth_data_present: bool,
    is_subscriber: bool,
    has_completed_onboarding: bool,
    has_pending_payment: bool = False,
) -> AuthState:
    if not identity_present:
        return AuthState.UNAUTHENTICATED
    if not auth_data_present:
        return AuthState.LOADING
    if not is_subscriber and not has_completed_onboarding and not has_pending_payment:
        return AuthState.NEEDS_ONBOARDING
    return AuthState.AUTHENTICATED


def has_payment_success_flag(query: Optional[Mapping[str, str]]) -> bool:
    if not query:
        return False
    return PAYMENT_SUCCESS_FLAG in query


class NavigationResolver:
    """Redirect and visibility decisions for one render of one user"""

    def __init__(
        self,
        user: Optional[ClientUser],
        auth_data: Optional[AuthData] = None,
        optimistic_auth_data: Optional[AuthData] = None,
    ):
        self.user = user
        self.auth_data = auth_data or optimistic_auth_data

    @classmethod
    def from_service(
        cls,
        auth_service: AuthService,
        user: Optional[ClientUser],
        auth_data: Optional[AuthData] = None,
    ) -> 'NavigationResolver':
        optimistic = None if auth_data is not None else auth_service.get_optimistic_auth_data(user)
        return cls(user, auth_data=auth_data, optimistic_auth_data=optimistic)

    @property
    def is_loading(self) -> bool:
        return self.get_auth_state() == AuthState.LOADING

    def get_auth_state(self, query: Optional[Mapping[str, str]] = None) -> AuthState:
        data = self.auth_data
        return resolve_auth_state(
            identity_present=self.user is not None,
            auth_data_present=data is not None,
            is_subscriber=bool(data and data.is_subscriber),
            has_completed_onboarding=bool(data and data.has_completed_onboarding),
            has_pending_payment=has_payment_success_flag(query),
        )

    def get_destination(self) -> str:
        state = self.get_auth_state()
        if state == AuthState.UNAUTHENTICATED:
            return LOGIN_PATH
        if state == AuthState.NEEDS_ONBOARDING:
            return ONBOARDING_PATH
        return DASHBOARD_PATH

    def redirect_if_needed(self, path: str, query: Optional[Mapping[str, str]] = None) -> Optional[str]:
        """Where to send the user from `path`, or None to stay"""
        state = self.get_auth_state(query)

        if state == AuthState.LOADING:
            return None
        if state == AuthState.UNAUTHENTICATED and path not in PUBLIC_ROUTES:
            return LOGIN_PATH
        if state == AuthState.NEEDS_ONBOARDING and path != ONBOARDING_PATH:
            return ONBOARDING_PATH
        if state == AuthState.AUTHENTICATED and path == LOGIN_PATH:
            return DASHBOARD_PATH
        return None

    def should_show_page(self, path: str, query: Optional[Mapping[str, str]] = None) -> bool:
        if path in PUBLIC_ROUTES:
            return True

        state = self.get_auth_state(query)
        if state == AuthState.LOADING:
            return True
        if state == AuthState.UNAUTHENTICATED:
            return False
        if state == AuthState.NEEDS_ONBOARDING:
            return path == ONBOARDING_PATH
        return True
