"""
Domain errors raised by the engine services.

Each class carries the HTTP status and problem title it maps to; the
application installs one exception handler for the whole hierarchy and
renders it as ``application/problem+json``.
"""

from typing import Any, Optional


class EngineError(Exception):
    """Base class for every error the engine reports to a caller."""

    status_code = 500
    title = "Internal error"

    def __init__(self, detail: str = "", **context: Any):
        super().__init__(detail)
        self.detail = detail
        self.context = context

    def to_problem(self) -> dict[str, Any]:
        problem: dict[str, Any] = {
            "type": "about:blank",
            "title": self.title,
            "status": self.status_code,
        }
        if self.detail:
            problem["detail"] = self.detail
        problem.update(self.context)
        return problem


class AuthError(EngineError):
    """Device key missing or wrong."""

    status_code = 403
    title = "Forbidden"


class SecretMismatch(AuthError):
    """Shared registration secret not recognized."""

    status_code = 401
    title = "Unauthorized"


class NotFoundError(EngineError):
    status_code = 404
    title = "Not found"


class ValidationError(EngineError):
    """
    Input the caller has to correct.

    ``errors`` holds per-field messages when several inputs were checked
    at once (bulk variable upserts).
    """

    status_code = 422
    title = "Validation failed"

    def __init__(self, detail: str = "", errors: Optional[list[dict[str, str]]] = None, **context: Any):
        if errors:
            context["errors"] = errors
        super().__init__(detail, **context)
        self.errors = errors or []


class ConflictError(EngineError):
    status_code = 409
    title = "Conflict"


class AllocationExhausted(EngineError):
    """No free child prefix or address left in the requested range."""

    status_code = 409
    title = "Allocation exhausted"


class RenderError(EngineError):
    """Template body malformed or referencing an unresolved variable."""

    status_code = 422
    title = "Build failed"
