"""Route construction error taxonomy.

Every error carries a stable machine-readable ``code`` and the HTTP status the
API layer should answer with, so handlers can translate them uniformly into
``{error, code, details}`` payloads.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional


class RouteMaxError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(RouteMaxError):
    code = "VALIDATION_ERROR"
    status_code = 400


class ClientAccessDenied(RouteMaxError):
    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, missing_ids: list[str]) -> None:
        super().__init__(
            "One or more clients not found or access denied",
            details={"client_ids": sorted(missing_ids)},
        )
        self.missing_ids = missing_ids


class RouteNotFound(RouteMaxError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, route_id: str) -> None:
        super().__init__("Route not found", details={"route_id": route_id})


class NotConfiguredError(RouteMaxError):
    code = "NOT_CONFIGURED"
    status_code = 503


class OptimizerError(RouteMaxError):
    """The route optimizer failed after any retries were spent."""

    code = "OPTIMIZATION_API_ERROR"
    status_code = 502


class OptimizerResponseError(OptimizerError):
    code = "OPTIMIZATION_RESPONSE_INVALID"


class OptimizerRateLimited(OptimizerError):
    """Backpressure from the optimizer. Never retried; callers may fall back to simple ordering."""

    code = "RATE_LIMITED"
    status_code = 429


class TimeConstraintImpossible(RouteMaxError):
    code = "TIME_CONSTRAINT_IMPOSSIBLE"
    status_code = 400

    def __init__(self, estimated_return_time: datetime, max_return_time: datetime, overtime_minutes: int) -> None:
        super().__init__(
            "The return deadline cannot be met even with only the mandatory destination",
            details={
                "estimated_return_time": estimated_return_time.isoformat(),
                "max_return_time": max_return_time.isoformat(),
                "overtime_minutes": overtime_minutes,
            },
        )
        self.estimated_return_time = estimated_return_time
        self.max_return_time = max_return_time
        self.overtime_minutes = overtime_minutes


class OptimizationFailed(RouteMaxError):
    code = "OPTIMIZATION_FAILED"
    status_code = 500

    def __init__(self, attempts: int) -> None:
        super().__init__(
            f"Optimization failed after {attempts} attempts",
            details={"attempts": attempts},
        )
        self.attempts = attempts


class PersistenceError(RouteMaxError):
    code = "PERSISTENCE_ERROR"
    status_code = 500
