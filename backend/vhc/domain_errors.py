"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class PreconditionFailed(DomainError):
    """Transition or operation rejected before any mutation."""


class NotFound(DomainError):
    """Record missing or outside the caller's organization."""


class Conflict(DomainError):
    """Record state or unique constraint prevents the write."""


class Forbidden(DomainError):
    """Capability check failed inside a use-case."""


class CollaboratorFailure(DomainError):
    """Persistence layer failed while applying a mutation."""


def not_found(code: str, message: str) -> NotFound:
    return NotFound(code=code, http_status=404, message=message)


def precondition_failed(
    code: str,
    message: str,
    *,
    details: dict[str, Any] | None = None,
    http_status: int = 400,
) -> PreconditionFailed:
    return PreconditionFailed(code=code, http_status=http_status, message=message, details=details)


def conflict(code: str, message: str, *, details: dict[str, Any] | None = None) -> Conflict:
    return Conflict(code=code, http_status=409, message=message, details=details)
