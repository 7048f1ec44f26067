"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

Admission failures are also carried as values: ``AdmissionPipeline.try_produce``
returns them inside its result instead of raising, and the HTTP layer re-raises
them so the global handlers render one stable response shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    limit: int
    current: int
    remaining: int
    reset_at: int
    retry_after: int
    category: str
    stage: str
    cause: str
    compensated: bool
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)

    def _detail(self, key: str) -> Any:
        return (self.details or {}).get(key)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class NotFoundAppError(AppError):
    """Raised when a requested resource does not exist for the caller."""


class RateLimitedError(AppError):
    """The caller exceeded the short-window request rate for a route."""

    @property
    def reset_at(self) -> int | None:
        """UNIX epoch milliseconds at which the current window ends."""
        return self._detail("reset_at")

    @property
    def retry_after(self) -> int:
        return self._detail("retry_after") or 0


class QuotaExceededError(AppError):
    """The identity used up its daily quota for a category."""

    @property
    def limit(self) -> int | None:
        return self._detail("limit")

    @property
    def reset_at(self) -> int | None:
        """UNIX epoch milliseconds of the next quota period boundary."""
        return self._detail("reset_at")


class CapacityExceededError(AppError):
    """Post-eviction verification still found the owner at or over capacity."""

    @property
    def limit(self) -> int | None:
        return self._detail("limit")


class StoreUnavailableError(AppError):
    """A backing store failed or timed out; the operation was denied."""

    @property
    def cause(self) -> str | None:
        return self._detail("cause")


class ProductionFailedError(AppError):
    """The item factory failed or returned something that cannot be stored."""


def store_unavailable(stage: str, exc: BaseException | str) -> StoreUnavailableError:
    """Wrap a backing store failure for the given stage.

    Args:
        stage: Pipeline stage or component name that hit the failure.
        exc: Underlying exception (or a short reason string).

    Returns:
        StoreUnavailableError with the cause recorded in details.
    """

    cause = exc if isinstance(exc, str) else f"{type(exc).__name__}: {exc}"
    return StoreUnavailableError(
        code="store_unavailable",
        message=f"A backing store is unavailable ({stage}). Try again later.",
        details={"stage": stage, "cause": cause},
    )
