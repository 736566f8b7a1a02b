import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.firebase import verify_firebase_token
from app.models.user_preferences import MAX_ONBOARDING_STEP
from app.services.account_service import INVALID_USER_MESSAGE, AccountService
from app.services.auth_data_service import AuthDataService
from app.services.preferences_service import PreferencesService
from app.services.subscription_service import SubscriptionService
from app.services.trial_service import TrialService

router = APIRouter()
logger = logging.getLogger(__name__)

ACCOUNT_ACTIONS = ('reactivate', 'delete')


def get_account_service() -> AccountService:
    """Dependency to get account service instance"""
    return AccountService()


def get_auth_data_service() -> AuthDataService:
    return AuthDataService()


def get_preferences_service() -> PreferencesService:
    return PreferencesService()


def get_subscription_service() -> SubscriptionService:
    return SubscriptionService()


def get_trial_service() -> TrialService:
    return TrialService()


class AccountActionRequest(BaseModel):
    action: str
    user_id: str


class PreferencesUpdateRequest(BaseModel):
    """Any subset of the onboarding fields; fields sent as null are cleared"""

    user_id: str
    has_completed_onboarding: Optional[bool] = None
    onboarding_step: Optional[int] = Field(None, ge=1, le=MAX_ONBOARDING_STEP)
    selected_plan_id: Optional[str] = None
    onboarding_completed_at: Optional[datetime] = None


def _invalid_user() -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_USER_MESSAGE)


def require_account_owner(request: Request, firebase_uid: str):
    """Bearer ID token must belong to the account being changed"""
    auth_header = request.headers.get('Authorization')
    if not auth_header or not auth_header.startswith('Bearer '):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

    try:
        decoded_token = verify_firebase_token(auth_header.split(' ', 1)[1], check_revoked=True)
    except Exception:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication credentials")

    if decoded_token.get('uid') != firebase_uid:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to modify this account")


def resolve_user_id(db: Session, raw_user_id: Optional[str], account_service: AccountService) -> uuid.UUID:
    """Validate a caller-supplied user id: well-formed UUID of an existing user"""
    if not raw_user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="user_id is required")
    try:
        user_id = uuid.UUID(raw_user_id)
    except ValueError:
        raise _invalid_user()

    try:
        account_service.require_user(db, user_id)
    except ValueError:
        raise _invalid_user()
    return user_id


@router.post("/account")
async def manage_account(
    request: AccountActionRequest,
    http_request: Request,
    db: Session = Depends(get_db),
    account_service: AccountService = Depends(get_account_service)
):
    """
    Reactivate or soft-delete an account.
    Body: {"action": "reactivate" | "delete", "user_id": "<uuid>"}
    Delete also requires the account owner's Bearer ID token.
    """
    logger.info(f"manage_account: Entry - action: {request.action}, user: {request.user_id}")

    if request.action not in ACCOUNT_ACTIONS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid action")

    try:
        user_id = resolve_user_id(db, request.user_id, account_service)

        if request.action == 'reactivate':
            account_service.reactivate(db, user_id)
            message = "Account reactivated successfully"
        else:
            require_account_owner(http_request, account_service.require_user(db, user_id).firebase_uid)
            account_service.soft_delete(db, user_id)
            message = "Account deleted successfully"

        logger.info(f"manage_account: Success - action: {request.action}, user: {user_id}")
        return {"success": True, "message": message}
    except HTTPException:
        raise
    except ValueError as e:
        logger.warning(f"manage_account: Rejected - {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(f"manage_account: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update account"
        )


@router.get("/auth-data")
async def get_auth_data(
    user_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    account_service: AccountService = Depends(get_account_service),
    auth_data_service: AuthDataService = Depends(get_auth_data_service)
):
    """
    Subscription and onboarding state in one call.
    Creates the default preferences row on first read.
    """
    logger.info(f"get_auth_data: Entry - user: {user_id}")

    try:
        resolved_id = resolve_user_id(db, user_id, account_service)
        data = auth_data_service.get_auth_data(db, resolved_id)
        logger.info(f"get_auth_data: Success - user: {resolved_id}")
        return {"success": True, "data": data}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"get_auth_data: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch auth data"
        )


@router.get("/preferences")
async def get_preferences(
    user_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    account_service: AccountService = Depends(get_account_service),
    preferences_service: PreferencesService = Depends(get_preferences_service)
):
    """Stored preferences, or defaults when the user has none. Never writes."""
    logger.info(f"get_preferences: Entry - user: {user_id}")

    try:
        resolved_id = resolve_user_id(db, user_id, account_service)
        return preferences_service.get_preferences(db, resolved_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"get_preferences: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch preferences"
        )


@router.post("/preferences")
async def update_preferences(
    request: PreferencesUpdateRequest,
    db: Session = Depends(get_db),
    account_service: AccountService = Depends(get_account_service),
    preferences_service: PreferencesService = Depends(get_preferences_service)
):
    logger.info(f"update_preferences: Entry - user: {request.user_id}")

    try:
        resolved_id = resolve_user_id(db, request.user_id, account_service)
        updates = request.model_dump(exclude_unset=True, exclude={'user_id'})
        preferences = preferences_service.update_preferences(db, resolved_id, updates)
        logger.info(f"update_preferences: Success - user: {resolved_id}")
        return {"success": True, "data": preferences.to_dict()}
    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(f"update_preferences: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update preferences"
        )


@router.get("/subscription")
async def get_subscription(
    user_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    account_service: AccountService = Depends(get_account_service),
    subscription_service: SubscriptionService = Depends(get_subscription_service)
):
    """Current active/trialing subscription with its validity"""
    logger.info(f"get_subscription: Entry - user: {user_id}")

    try:
        resolved_id = resolve_user_id(db, user_id, account_service)
        return subscription_service.get_subscription_status(db, resolved_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"get_subscription: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch subscription"
        )


@router.get("/trial")
async def get_trial(
    user_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    account_service: AccountService = Depends(get_account_service),
    trial_service: TrialService = Depends(get_trial_service)
):
    logger.info(f"get_trial: Entry - user: {user_id}")

    try:
        resolved_id = resolve_user_id(db, user_id, account_service)
        return trial_service.get_trial_status(db, resolved_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"get_trial: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch trial status"
        )
