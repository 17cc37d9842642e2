"""
Application error taxonomy.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer renders it with. Sandbox errors are never rendered directly; the
pipeline records them on the prompt instead.
"""

from typing import Any

from finsight.config.constants import ErrorCode


class AppError(Exception):
    """Base application error with error code support."""

    status_code: int = 500
    default_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        code: ErrorCode | str | None = None,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        resolved = code or self.default_code
        self.code = resolved.value if isinstance(resolved, ErrorCode) else resolved
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    """Malformed input."""

    status_code = 400
    default_code = ErrorCode.VALIDATION_ERROR


class AuthenticationError(AppError):
    """Bearer token missing or rejected by the identity provider."""

    status_code = 401
    default_code = ErrorCode.INVALID_TOKEN


class MissingToken(AuthenticationError):
    default_code = ErrorCode.MISSING_TOKEN


class InvalidToken(AuthenticationError):
    default_code = ErrorCode.INVALID_TOKEN


class ExpiredToken(AuthenticationError):
    default_code = ErrorCode.TOKEN_EXPIRED


class RevokedToken(AuthenticationError):
    default_code = ErrorCode.TOKEN_REVOKED


class AccessDenied(AppError):
    """Principal lacks ownership or team membership."""

    status_code = 403
    default_code = ErrorCode.ACCESS_DENIED


class SubscriptionRequired(AccessDenied):
    default_code = ErrorCode.SUBSCRIPTION_REQUIRED


class NotFound(AppError):
    """Missing prompt, dataset, team or user."""

    status_code = 404
    default_code = ErrorCode.NOT_FOUND


class ResultsNotAvailable(AppError):
    """Results requested before the prompt completed."""

    status_code = 404
    default_code = ErrorCode.RESULTS_NOT_AVAILABLE


class InvalidState(AppError):
    """Illegal state-transition request."""

    status_code = 409
    default_code = ErrorCode.INVALID_PROMPT_STATE


class ConcurrencyConflict(AppError):
    """Version token mismatch on a conditional write."""

    status_code = 409
    default_code = ErrorCode.CONCURRENCY_CONFLICT


class UpstreamError(AppError):
    """LLM or storage dependency failure."""

    status_code = 502
    default_code = ErrorCode.LLM_API_ERROR


class InternalError(AppError):
    """Unexpected failure."""

    status_code = 500
    default_code = ErrorCode.INTERNAL_ERROR


class SandboxError(AppError):
    """Base class for failed sandbox runs."""

    default_code = ErrorCode.CODE_EXECUTION_ERROR


class ExecutionError(SandboxError):
    """Generated code failed to compile, raised, hit a denied operation or returned a bad shape."""


class ExecutionTimeout(SandboxError):
    default_code = ErrorCode.EXECUTION_TIMEOUT


class ExecutionResourceExceeded(SandboxError):
    default_code = ErrorCode.EXECUTION_RESOURCE_EXCEEDED
