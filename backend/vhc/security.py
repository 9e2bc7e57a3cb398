"""Capability checks used inside use-cases."""

from __future__ import annotations

from .auth import check_permission
from .domain_errors import Forbidden
from .models import User


def require_permission(user: User, permission: str) -> None:
    """Enforce a role permission server-side."""
    if not check_permission(user, permission):
        raise Forbidden(
            code="PERMISSION_DENIED",
            http_status=403,
            message=f"Permission denied: {permission} required",
            details={"permission": permission},
        )
