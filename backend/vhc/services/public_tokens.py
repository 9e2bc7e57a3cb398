"""Customer-facing link tokens."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from uuid import UUID


TOKEN_BYTES = 32


def issue_public_token(health_check_id: UUID, expires_in_days: int) -> str:
    """Mint an unguessable token for the public link. The caller stores it with its expiry."""
    if expires_in_days <= 0:
        raise ValueError("expires_in_days must be positive")
    return secrets.token_hex(TOKEN_BYTES)


def token_expiry(*, issued_at: datetime, expires_in_days: int) -> datetime:
    return issued_at + timedelta(days=expires_in_days)


def is_token_expired(health_check, *, at: datetime) -> bool:
    expires_at = health_check.token_expires_at
    return expires_at is not None and expires_at <= at
