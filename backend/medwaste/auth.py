"""Authentication and authorization."""
import logging
import time
from uuid import UUID
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from .config import settings
from .database import get_db
from .models import User

logger = logging.getLogger(__name__)

# Bearer token scheme
security = HTTPBearer()


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str) -> dict:
    """Decode JWT token issued by the identity service."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        raise _credentials_error()

    now = int(time.time())
    try:
        exp_int = int(payload["exp"])
    except (KeyError, TypeError, ValueError):
        raise _credentials_error()
    if now > exp_int + int(settings.JWT_LEEWAY_SECONDS):
        raise _credentials_error("Token expired")

    iat = payload.get("iat")
    if iat is not None:
        try:
            iat_int = int(iat)
        except (TypeError, ValueError):
            raise _credentials_error()
        # Reject tokens issued far in the future (clock skew / malicious tokens).
        if iat_int > now + int(settings.JWT_LEEWAY_SECONDS):
            raise _credentials_error()
    return payload


def _parse_token_subject(payload: dict) -> UUID:
    """Parse and validate JWT subject as UUID."""
    sub = payload.get("sub")
    if not sub:
        raise _credentials_error()
    try:
        return UUID(str(sub))
    except ValueError:
        raise _credentials_error()


def _assert_token_not_revoked(user: User, payload: dict) -> None:
    try:
        token_ver = int(payload.get("ver", 0))
    except (TypeError, ValueError):
        raise _credentials_error()
    if user.token_version != token_ver:
        raise _credentials_error("Token has been revoked")


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user."""
    payload = decode_token(credentials.credentials)

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type"
        )

    user_id = _parse_token_subject(payload)
    user = db.query(User).filter(User.id == user_id, User.is_active == True).first()  # noqa: E712
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive"
        )

    _assert_token_not_revoked(user, payload)
    return user


# Permission checks
class PermissionChecker:
    """Check user permissions based on role."""

    def __init__(self, required_permission: str):
        self.required_permission = required_permission

    def __call__(self, current_user: User = Depends(get_current_user)):
        """Check if user has required permission."""
        if not check_permission(current_user, self.required_permission):
            logger.info(
                "Permission %s denied for user %s (%s)",
                self.required_permission, current_user.id, current_user.role,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {self.required_permission} required"
            )
        return current_user


# Role permissions matrix
ROLE_PERMISSIONS = {
    "admin": {
        "canViewAll": True,
        "canViewHandoffs": True,
        "canCreateHandoffs": True,
        "canCreateFacilityHandoffs": True,
        "canCreateIncinerationHandoffs": True,
        "canConfirmHandoffs": True,
        "canDisputeHandoffs": True,
        "canResolveDisputes": True,
        "canResendNotifications": True,
        "canViewNotificationLogs": True,
    },
    "supervisor": {
        "canViewAll": False,
        "canViewHandoffs": True,
        "canCreateHandoffs": True,
        "canCreateFacilityHandoffs": True,
        "canCreateIncinerationHandoffs": False,
        "canConfirmHandoffs": True,
        "canDisputeHandoffs": True,
        "canResolveDisputes": True,
        "canResendNotifications": True,
        "canViewNotificationLogs": True,
    },
    "driver": {
        "canViewAll": False,
        "canViewHandoffs": True,
        "canCreateHandoffs": True,
        "canCreateFacilityHandoffs": False,
        "canCreateIncinerationHandoffs": True,
        "canConfirmHandoffs": True,
        "canDisputeHandoffs": True,
        "canResolveDisputes": False,
        "canResendNotifications": False,
        "canViewNotificationLogs": False,
    },
    # Plant operators confirm through the public link and hold no API rights.
    "incinerator_operator": {
        "canViewAll": False,
        "canViewHandoffs": False,
        "canCreateHandoffs": False,
        "canCreateFacilityHandoffs": False,
        "canCreateIncinerationHandoffs": False,
        "canConfirmHandoffs": False,
        "canDisputeHandoffs": False,
        "canResolveDisputes": False,
        "canResendNotifications": False,
        "canViewNotificationLogs": False,
    },
}


def check_permission(user: User, permission: str) -> bool:
    """Check if user has specific permission."""
    permissions = ROLE_PERMISSIONS.get(user.role, {})
    return permissions.get(permission, False)
