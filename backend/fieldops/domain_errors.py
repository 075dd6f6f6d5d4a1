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


class UnauthorizedError(DomainError):
    """No valid session, or the actor is not a member of the requested org."""

    def __init__(self, message: str = "Unauthorized", details: dict[str, Any] | None = None):
        super().__init__(code="UNAUTHORIZED", http_status=401, message=message, details=details)


class ForbiddenError(DomainError):
    """Authenticated, but lacking capability or job-level access."""

    def __init__(self, message: str = "Insufficient permissions", details: dict[str, Any] | None = None):
        super().__init__(code="FORBIDDEN", http_status=403, message=message, details=details)


class ValidationError(DomainError):
    """Malformed or semantically invalid input."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(code="VALIDATION_ERROR", http_status=400, message=message, details=details)


class NotFoundError(DomainError):
    """Referenced assignment or job is absent (in the caller's org)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(code="NOT_FOUND", http_status=404, message=message, details=details)


class ConflictError(DomainError):
    """Stale write detected by the optimistic version check."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(code="CONFLICT", http_status=409, message=message, details=details)


class InternalError(DomainError):
    """Unexpected failure, e.g. broken referential integrity."""

    def __init__(self, message: str = "Internal server error", details: dict[str, Any] | None = None):
        super().__init__(code="INTERNAL", http_status=500, message=message, details=details)
