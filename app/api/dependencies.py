import contextlib
import logging
import os
import threading
import uuid
from dataclasses import dataclass
from typing import Any

import firebase_admin
from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth, credentials, exceptions
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import AppError, ErrorKind
from app.db.database import get_raw_db
from app.middleware.logging import resolve_request_id
from app.models import AppUser

# Configure structured logging
logger = logging.getLogger("app.auth")

security = HTTPBearer(auto_error=False)

_firebase_lock = threading.Lock()


@dataclass(frozen=True)
class StaffContext:
    auth_user_id: str  # Firebase UID
    app_user_id: uuid.UUID  # app_users.id, recorded on mutations
    email: str


def _unauthorized(message: str) -> AppError:
    return AppError(ErrorKind.UNAUTHORIZED, "UNAUTHORIZED", message)


def _forbidden(message: str) -> AppError:
    return AppError(ErrorKind.FORBIDDEN, "FORBIDDEN", message)


# -----------------------------------------------------------------------------
# 1. Firebase Initialization
# -----------------------------------------------------------------------------
def initialize_firebase() -> None:
    """
    Idempotent Firebase initialization, done on the first token verification.
    Handles both local development (SA file) and Cloud Run (ADC).
    """
    with _firebase_lock:
        with contextlib.suppress(ValueError):
            firebase_admin.get_app()
            return  # Already initialized
        logger.info("Initializing Firebase Admin SDK...")

        # In Cloud Run, we mount the secret to /secrets/service-account.json
        cred_path = "/secrets/service-account.json"

        if os.path.exists(cred_path):
            try:
                cred = credentials.Certificate(cred_path)
                firebase_admin.initialize_app(cred)
                logger.info(f"Firebase initialized with credentials from {cred_path}")
                return
            except Exception as e:
                logger.warning(f"Failed to load Firebase credentials from {cred_path}: {e}")
                logger.info("Falling back to Application Default Credentials (ADC).")

        try:
            firebase_admin.initialize_app()
            logger.info("Firebase initialized with Application Default Credentials (ADC)")
        except Exception as e:
            logger.critical(f"Failed to initialize Firebase: {e}")
            raise RuntimeError("Firebase initialization failed") from e


# -----------------------------------------------------------------------------
# 2. Authentication Dependency
# -----------------------------------------------------------------------------
def get_current_user_token(
    creds: HTTPAuthorizationCredentials | None = Security(security),
) -> dict[str, Any]:
    """
    Validates the Firebase ID Token.
    Returns the decoded token dictionary.
    """
    # DEV BYPASS: Skip Firebase validation for local development
    if settings.RUN_LOCALLY and settings.SKIP_AUTH:
        if settings.DEV_USER_UID and settings.DEV_USER_EMAIL:
            logger.warning("AUTH BYPASS: Using dev user for local testing")
            return {
                "uid": settings.DEV_USER_UID,
                "email": settings.DEV_USER_EMAIL,
                "role": settings.STAFF_ROLE,
            }
        logger.error("SKIP_AUTH=True but DEV_USER_UID/DEV_USER_EMAIL not set!")
        raise AppError(
            ErrorKind.INTERNAL, "AUTH_MISCONFIGURED", "Dev auth bypass misconfigured"
        )

    if not creds or not creds.credentials or not creds.credentials.strip():
        raise _unauthorized("Missing authorization header")

    initialize_firebase()

    token = creds.credentials.strip()
    try:
        # verify_id_token checks signature, expiration, and format
        decoded_token: dict[str, Any] = auth.verify_id_token(token, check_revoked=True)
        return decoded_token
    except auth.ExpiredIdTokenError:
        raise _unauthorized("Token expired") from None
    except auth.RevokedIdTokenError:
        raise _unauthorized("Token revoked") from None
    except auth.InvalidIdTokenError:
        raise _unauthorized("Invalid token") from None
    except (exceptions.FirebaseError, ValueError) as e:
        logger.error(f"Authentication error: {e}")
        raise _unauthorized("Could not validate credentials") from e


# -----------------------------------------------------------------------------
# 3. Staff Dependency
# -----------------------------------------------------------------------------
def require_staff(
    token: dict[str, Any] = Depends(get_current_user_token),
    db: Session = Depends(get_raw_db),
) -> StaffContext:
    """
    Dependency for allowlist administration endpoints.
    The Firebase custom claim ``role`` must equal the staff role and the UID
    must map to a row in ``app_users``.
    """
    uid = token.get("uid")
    if not uid:
        raise _unauthorized("Token has no subject")

    if token.get("role") != settings.STAFF_ROLE:
        logger.warning(f"Non-staff access attempt by {token.get('email', uid)}")
        raise _forbidden("Staff access required")

    try:
        app_user = db.scalar(select(AppUser).where(AppUser.auth_uid == uid))
    except SQLAlchemyError as e:
        logger.error(f"Failed to load staff user {uid}: {e}", exc_info=True)
        raise AppError(
            ErrorKind.INTERNAL, "STAFF_LOOKUP_FAILED", "Could not verify staff access."
        ) from e

    if not app_user:
        logger.warning(f"Staff token for {uid} has no app user record")
        raise _forbidden("Staff user could not be identified")

    return StaffContext(auth_user_id=uid, app_user_id=app_user.id, email=app_user.email)


# -----------------------------------------------------------------------------
# 4. Request Correlation
# -----------------------------------------------------------------------------
def get_request_id(request: Request) -> str:
    return resolve_request_id(request)
