import firebase_admin
from firebase_admin import credentials, auth, firestore
from app.core.config import settings
import logging

logger = logging.getLogger(__name__)


def init_firebase():
    """Initialize Firebase Admin SDK"""
    logger.info("init_firebase: Entry")

    try:
        if not firebase_admin._apps:
            cred = credentials.Certificate(settings.firebase_credentials_path)
            firebase_admin.initialize_app(cred, {
                'projectId': settings.firebase_project_id,
            })
            logger.info("init_firebase: Success")
        else:
            logger.info("init_firebase: Already initialized")
    except Exception as e:
        logger.error(f"init_firebase: Failure - {e}")
        raise


def verify_firebase_token(token: str, check_revoked: bool = False) -> dict:
    """Verify a Firebase ID token and return the decoded claims.

    With check_revoked, tokens of disabled users or with revoked refresh
    tokens are rejected too (one extra call to Firebase).
    """
    logger.info(f"verify_firebase_token: Entry - check_revoked: {check_revoked}")

    try:
        decoded_token = auth.verify_id_token(token, check_revoked=check_revoked)
        logger.info(f"verify_firebase_token: Success - {decoded_token.get('uid')}")
        return decoded_token
    except Exception as e:
        logger.error(f"verify_firebase_token: Failure - {e}")
        raise


def identity_from_claims(decoded_token: dict) -> dict:
    """Account fields carried by a decoded ID token"""
    uid = decoded_token.get('uid')
    if not uid:
        raise ValueError("Token has no uid")
    return {
        'firebase_uid': uid,
        'email': decoded_token.get('email'),
        'display_name': decoded_token.get('name'),
    }


def get_firestore_client():
    """Get Firestore client instance"""
    return firestore.client()
