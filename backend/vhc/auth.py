"""Authentication and authorization."""
from datetime import timedelta
from typing import Optional
import time
from uuid import UUID
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from .config import settings
from .database import get_db
from .models import User

# Bearer token scheme
security = HTTPBearer()

ACCESS_TOKEN_EXPIRE_MINUTES = 60


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token."""
    to_encode = data.copy()
    now = int(time.time())
    if expires_delta:
        exp = now + int(expires_delta.total_seconds())
    else:
        exp = now + ACCESS_TOKEN_EXPIRE_MINUTES * 60
    to_encode.update({"exp": exp, "iat": now, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode JWT token, allowing JWT_LEEWAY_SECONDS of clock skew on exp/iat."""
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
    user = db.query(User).filter(User.id == user_id, User.is_active == True).first()
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
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {self.required_permission} required"
            )
        return current_user


# Role permissions matrix
ROLE_PERMISSIONS = {
    "super_admin": {
        "canViewHealthChecks": True,
        "canInspect": True,
        "canPrice": True,
        "canRecordDecisions": True,
        "canSendToCustomer": True,
        "canCloseHealthChecks": True,
        "canCancelHealthChecks": True,
        "canSkipCheckin": True,
    },
    "org_admin": {
        "canViewHealthChecks": True,
        "canInspect": True,
        "canPrice": True,
        "canRecordDecisions": True,
        "canSendToCustomer": True,
        "canCloseHealthChecks": True,
        "canCancelHealthChecks": True,
        "canSkipCheckin": True,
    },
    "site_admin": {
        "canViewHealthChecks": True,
        "canInspect": True,
        "canPrice": True,
        "canRecordDecisions": True,
        "canSendToCustomer": True,
        "canCloseHealthChecks": True,
        "canCancelHealthChecks": True,
        "canSkipCheckin": True,
    },
    "service_advisor": {
        "canViewHealthChecks": True,
        "canInspect": False,
        "canPrice": True,
        "canRecordDecisions": True,
        "canSendToCustomer": True,
        "canCloseHealthChecks": True,
        "canCancelHealthChecks": True,
        "canSkipCheckin": False,
    },
    "technician": {
        "canViewHealthChecks": True,
        "canInspect": True,
        "canPrice": False,
        "canRecordDecisions": False,
        "canSendToCustomer": False,
        "canCloseHealthChecks": False,
        "canCancelHealthChecks": False,
        "canSkipCheckin": False,
    },
}


def check_permission(user: User, permission: str) -> bool:
    """Check if user has specific permission."""
    permissions = ROLE_PERMISSIONS.get(user.role, {})
    return permissions.get(permission, False)
