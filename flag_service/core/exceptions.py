"""Custom exception classes for the application."""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base application exception.

    All custom exceptions inherit from this class and render as RFC 7807
    Problem Details at the HTTP boundary.

    Attributes:
        status_code: HTTP status code for the error.
        detail: Human-readable error message.
        type: Error type identifier (used in RFC 7807 problem details).
        title: Short, human-readable summary of the problem type.
        instance: URI reference that identifies the specific occurrence of the problem.
        extra: Additional context-specific information about the error.

    Example:
        raise AppException(
            status_code=404,
            detail="Flag not found",
            type="flag-not-found",
            extra={"flag_id": "0192..."},
        )
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        type: str = "about:blank",
        title: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        self.detail = detail
        self.type = type
        self.title = title or self._default_title(status_code)
        self.instance = instance
        self.extra = extra or {}
        super().__init__(detail)

    @staticmethod
    def _default_title(status_code: int) -> str:
        titles = {
            400: "Bad Request",
            404: "Not Found",
            409: "Conflict",
            422: "Unprocessable Entity",
            429: "Too Many Requests",
            500: "Internal Server Error",
            503: "Service Unavailable",
        }
        return titles.get(status_code, "Error")


class NotFoundException(AppException):
    """Exception raised when a resource is not found."""

    def __init__(
        self,
        detail: str,
        type: str = "not-found",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=404,
            detail=detail,
            type=type,
            title="Not Found",
            instance=instance,
            extra=extra,
        )


class ValidationException(AppException):
    """Exception raised for validation errors."""

    def __init__(
        self,
        detail: str,
        type: str = "validation-error",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=422,
            detail=detail,
            type=type,
            title="Validation Error",
            instance=instance,
            extra=extra,
        )


class ConflictException(AppException):
    """Exception raised when a write conflicts with existing state.

    Example:
        raise ConflictException(
            detail="Flag 'checkout_v2' already exists in website:abc",
            type="flag-key-conflict",
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "conflict",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=409,
            detail=detail,
            type=type,
            title="Conflict",
            instance=instance,
            extra=extra,
        )


class ServiceUnavailableException(AppException):
    """Exception raised when a downstream service cannot be reached."""

    def __init__(
        self,
        detail: str,
        type: str = "service-unavailable",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=503,
            detail=detail,
            type=type,
            title="Service Unavailable",
            instance=instance,
            extra=extra,
        )


class InternalServerException(AppException):
    """Exception raised for internal server errors."""

    def __init__(
        self,
        detail: str,
        type: str = "internal-error",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=500,
            detail=detail,
            type=type,
            title="Internal Server Error",
            instance=instance,
            extra=extra,
        )


# ============================================================================
# Scheduling Exceptions
# ============================================================================
# Raised by the schedule lifecycle manager, the execution worker and the
# dependency cascade engine. They surface as problem details on the API and
# as failed Taskiq tasks in the worker.


class FlagNotFoundError(NotFoundException):
    """A feature flag referenced by id or key does not exist."""

    def __init__(self, identifier: Any, *, field: str = "id") -> None:
        super().__init__(
            detail=f"Feature flag with {field} {identifier} not found",
            type="flag-not-found",
            extra={f"flag_{field}": str(identifier)},
        )


class ScheduleNotFoundError(NotFoundException):
    """A flag schedule does not exist.

    At execution time this is a permanent condition: the task fails and
    every Taskiq retry fails the same way.
    """

    def __init__(self, schedule_id: Any) -> None:
        super().__init__(
            detail=f"Flag schedule {schedule_id} not found",
            type="schedule-not-found",
            extra={"schedule_id": str(schedule_id)},
        )


class ScheduleValidationError(ValidationException):
    """A schedule definition violates its invariants.

    Carries every violation found so the caller can fix them in one pass.
    Nothing is dispatched when this is raised.

    Example:
        raise ScheduleValidationError(
            ["scheduled_at must be in the future"],
            extra={"schedule_type": "enable"},
        )
    """

    def __init__(self, errors: list[str], extra: dict[str, Any] | None = None) -> None:
        self.errors = list(errors)
        super().__init__(
            detail="; ".join(self.errors) or "Invalid schedule",
            type="schedule-validation-error",
            extra={"errors": self.errors, **(extra or {})},
        )


class DispatchError(ServiceUnavailableException):
    """The delayed-delivery service rejected or failed a dispatch.

    For batch schedules ``failed`` and ``total`` report how many step
    dispatches failed; successful siblings have already been compensated.
    """

    def __init__(
        self,
        detail: str,
        *,
        failed: int = 1,
        total: int = 1,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.failed = failed
        self.total = total
        super().__init__(
            detail=detail,
            type="schedule-dispatch-error",
            extra={"failed": failed, "total": total, **(extra or {})},
        )


class ExecutionError(InternalServerException):
    """The execution routine failed while applying a schedule."""

    def __init__(self, detail: str, *, schedule_id: Any, extra: dict[str, Any] | None = None) -> None:
        self.schedule_id = schedule_id
        super().__init__(
            detail=detail,
            type="schedule-execution-error",
            extra={"schedule_id": str(schedule_id), **(extra or {})},
        )


class CascadeError(InternalServerException):
    """A dependency cascade step failed to read or write a flag.

    Updates committed before the failure remain committed.
    """

    def __init__(self, detail: str, *, flag_id: Any, direction: str, extra: dict[str, Any] | None = None) -> None:
        self.flag_id = flag_id
        self.direction = direction
        super().__init__(
            detail=detail,
            type="cascade-error",
            extra={"flag_id": str(flag_id), "direction": direction, **(extra or {})},
        )


__all__ = [
    "AppException",
    "CascadeError",
    "ConflictException",
    "DispatchError",
    "ExecutionError",
    "FlagNotFoundError",
    "InternalServerException",
    "NotFoundException",
    "ScheduleNotFoundError",
    "ScheduleValidationError",
    "ServiceUnavailableException",
    "ValidationException",
]
