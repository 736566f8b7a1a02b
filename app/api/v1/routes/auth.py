import logging
from typing import Optional

import httpx
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db
from app.core.firebase import identity_from_claims, verify_firebase_token
from app.services.account_service import AccountService
from app.services.analytics_service import AnalyticsService
from app.services.preferences_service import PreferencesService

router = APIRouter()
logger = logging.getLogger(__name__)


def get_account_service() -> AccountService:
    """Dependency to get account service instance"""
    return AccountService()


def get_preferences_service() -> PreferencesService:
    return PreferencesService()


def _app_url(path: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}{path}"


def _safe_next(next_path: Optional[str]) -> Optional[str]:
    """Only same-site relative paths are honoured as redirect targets"""
    if next_path and next_path.startswith('/') and not next_path.startswith('//'):
        return next_path
    return None


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get('Authorization')
    if auth_header and auth_header.startswith('Bearer '):
        return auth_header.split(' ', 1)[1]
    return None


async def warm_auth_data_cache(user_id: str):
    """Fire-and-forget request that primes the auth-data path for a fresh session"""
    if not settings.api_base_url:
        return
    url = f"{settings.api_base_url.rstrip('/')}{settings.api_v1_str}/user/auth-data"
    try:
        async with httpx.AsyncClient(follow_redirects=False) as client:
            await client.get(url, params={'user_id': user_id}, timeout=5.0)
        logger.debug(f"warm_auth_data_cache: Success - user: {user_id}")
    except Exception as e:
        # Cache warming is best effort only
        logger.debug(f"warm_auth_data_cache: Skipped - user: {user_id}, error: {e}")


@router.get("/callback")
async def auth_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    id_token: Optional[str] = Query(None),
    next: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    account_service: AccountService = Depends(get_account_service),
    preferences_service: PreferencesService = Depends(get_preferences_service)
):
    """
    Landing point after sign-in at the identity provider.

    Verifies the ID token (query parameter or Bearer header), provisions
    the user and their preferences row, then redirects to `next` when
    given, otherwise to onboarding or the dashboard.
    """
    logger.info("auth_callback: Entry")
    analytics = AnalyticsService()

    token = id_token or _bearer_token(request)
    if not token:
        logger.info("auth_callback: No token, redirecting to login")
        return RedirectResponse(_app_url('/login'))

    try:
        identity = identity_from_claims(verify_firebase_token(token))
        uid = identity['firebase_uid']
    except Exception as e:
        logger.warning(f"auth_callback: Token rejected - {e}")
        return RedirectResponse(_app_url('/login?error=auth-failed'))

    try:
        user = account_service.get_or_create_from_identity(db, **identity)
        preferences = preferences_service.get_or_create(db, user.id)
    except Exception as e:
        analytics.log_failure(action='auth_callback', error=str(e), parameters={'firebase_uid': uid})
        logger.error(f"auth_callback: Failure - {e}")
        return RedirectResponse(_app_url('/login?error=auth-failed'))

    background_tasks.add_task(warm_auth_data_cache, str(user.id))

    target = _safe_next(next)
    if target is None:
        target = '/dashboard' if preferences.has_completed_onboarding else '/onboarding'

    analytics.log_success(action='auth_callback', user_id=user.id)
    logger.info(f"auth_callback: Success - user: {user.id}, redirect: {target}")
    return RedirectResponse(_app_url(target))
