"""Error handling for the library sync application.

This module provides:
- Custom exception classes for the error types the pipeline distinguishes
- Classification of transport and parsing failures into source failure reasons
- User-friendly error message generation with suggested actions

Adapter failures are converted into ``FailureReason`` values and never raised
past the pipeline. ``RemoteStoreError`` and ``ConfigurationError`` are the
fatal classes that end a run.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
import pydantic
import structlog

log = structlog.stdlib.get_logger()


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""
    NETWORK = "network"
    CACHE = "cache"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    AUTHENTICATION = "authentication"
    REMOTE_STORE = "remote_store"
    UNEXPECTED = "unexpected"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class FailureReason(Enum):
    """Why a catalog source could not produce a payload for a key."""
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"  # Affirmatively deleted or delisted
    TRANSIENT = "transient"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class UserFriendlyError:
    """User-friendly error representation with suggested actions."""
    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    suggested_actions: list[str]
    technical_details: str | None = None
    recoverable: bool = True


class AppError(Exception):
    """Base exception class for application errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNEXPECTED,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        suggested_actions: list[str] | None = None,
        technical_details: str | None = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.suggested_actions = suggested_actions or []
        self.technical_details = technical_details
        self.recoverable = recoverable

    def to_user_friendly(self) -> UserFriendlyError:
        """Convert to user-friendly error representation."""
        return UserFriendlyError(
            message=self.message,
            category=self.category,
            severity=self.severity,
            suggested_actions=self.suggested_actions,
            technical_details=self.technical_details,
            recoverable=self.recoverable,
        )


class NetworkError(AppError):
    """Exception for network-related errors."""

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        suggested_actions = [
            "Check your internet connection",
            "Try again in a few moments",
        ]

        if status_code:
            if status_code == 429:
                suggested_actions = [
                    "Wait a few minutes before retrying",
                    "Re-run with caching enabled to continue where this run stopped",
                ]
            elif status_code in (401, 403):
                suggested_actions = [
                    "Check the API key or access token",
                ]
            elif status_code >= 500:
                suggested_actions = [
                    "The server is experiencing issues",
                    "Try again later",
                ]

        technical_details = None
        if original_error:
            technical_details = f"{type(original_error).__name__}: {str(original_error)}"
        if url:
            technical_details = f"URL: {url}" + (f"\n{technical_details}" if technical_details else "")
        if status_code:
            technical_details = f"Status: {status_code}" + (f"\n{technical_details}" if technical_details else "")

        super().__init__(
            message=message,
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.ERROR,
            suggested_actions=suggested_actions,
            technical_details=technical_details,
            recoverable=True,
        )
        self.original_error = original_error
        self.url = url
        self.status_code = status_code


class CacheError(AppError):
    """Exception for cache file read/write failures."""

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
        path: str | None = None,
    ) -> None:
        if isinstance(original_error, PermissionError):
            suggested_actions = [
                "Check permissions on the cache directory",
                "Choose a different cache directory",
            ]
        else:
            suggested_actions = [
                "Check the cache directory exists and has free space",
                "Delete the broken cache file to rebuild it",
            ]

        technical_details = None
        if original_error:
            technical_details = f"{type(original_error).__name__}: {str(original_error)}"
        if path:
            technical_details = f"Path: {path}" + (f"\n{technical_details}" if technical_details else "")

        super().__init__(
            message=message,
            category=ErrorCategory.CACHE,
            severity=ErrorSeverity.WARNING,
            suggested_actions=suggested_actions,
            technical_details=technical_details,
            recoverable=True,
        )
        self.original_error = original_error
        self.path = path


class ConfigurationError(AppError):
    """Exception for missing or invalid configuration. Fatal for the run."""

    def __init__(
        self,
        message: str,
        setting: str | None = None,
        expected: str | None = None,
    ) -> None:
        suggested_actions = [
            "Set the value in the environment or in a .env file",
            "Check the configuration file",
        ]
        if expected:
            suggested_actions.append(f"Expected: {expected}")

        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            suggested_actions=suggested_actions,
            technical_details=f"Setting: {setting}" if setting else None,
            recoverable=False,
        )
        self.setting = setting
        self.expected = expected


class AuthCaptureTimeout(AppError):
    """No authentication token was captured before the deadline."""

    def __init__(self, message: str, timeout: float | None = None) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.AUTHENTICATION,
            severity=ErrorSeverity.ERROR,
            suggested_actions=[
                "Check that the site is reachable from a browser",
                "Provide HLTB_AUTH_TOKEN to skip the capture",
            ],
            technical_details=f"Timeout: {timeout}s" if timeout is not None else None,
            recoverable=True,
        )
        self.timeout = timeout


class RemoteStoreError(AppError):
    """A write to the remote store failed. Aborts the whole upsert batch."""

    def __init__(
        self,
        message: str,
        external_id: int | None = None,
        item_id: int | str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        technical_details = None
        if external_id is not None:
            technical_details = f"External ID: {external_id}"
        if item_id is not None:
            technical_details = (technical_details or "") + f"\nItem ID: {item_id}"
        if original_error:
            technical_details = (technical_details or "") + f"\nError: {type(original_error).__name__}: {str(original_error)}"

        super().__init__(
            message=message,
            category=ErrorCategory.REMOTE_STORE,
            severity=ErrorSeverity.CRITICAL,
            suggested_actions=[
                "Check the Directus access token and its permissions",
                "Check the collection schema still has the mapped fields",
            ],
            technical_details=technical_details,
            recoverable=False,
        )
        self.external_id = external_id
        self.item_id = item_id
        self.original_error = original_error


def classify_exception(error: Exception) -> FailureReason:
    """Map a transport or parsing exception onto a source failure reason."""
    if isinstance(error, httpx.HTTPStatusError):
        if error.response.status_code == 429:
            return FailureReason.RATE_LIMITED
        return FailureReason.TRANSIENT
    if isinstance(error, (httpx.RequestError, httpx.TimeoutException)):
        return FailureReason.TRANSIENT
    if isinstance(error, (pydantic.ValidationError, json.JSONDecodeError, ValueError, TypeError, KeyError)):
        return FailureReason.MALFORMED
    return FailureReason.TRANSIENT


class ErrorHandlingService:
    """Turns exceptions into logged, user-presentable errors.

    Constructed once by the application context and passed to whatever needs
    to report a failure to the user.
    """

    def handle_error(
        self,
        error: Exception,
        operation: str,
        component: str,
        context: dict[str, Any] | None = None,
    ) -> UserFriendlyError:
        """Handle an error and return a user-friendly representation.

        Args:
            error: The exception that occurred
            operation: The operation being performed
            component: The component where the error occurred
            context: Additional context information

        Returns:
            User-friendly error representation
        """
        app_error = self._convert_to_app_error(error, context)
        self._log_error(app_error, operation, component, context)

        return app_error.to_user_friendly()

    def _convert_to_app_error(self, error: Exception, context: dict[str, Any] | None) -> AppError:
        """Convert a standard exception to an AppError."""
        if isinstance(error, AppError):
            return error

        if isinstance(error, httpx.HTTPStatusError):
            status_code = error.response.status_code
            return NetworkError(
                message=f"HTTP error {status_code} occurred.",
                original_error=error,
                url=str(error.request.url),
                status_code=status_code,
            )
        elif isinstance(error, (httpx.RequestError, httpx.TimeoutException)):
            return NetworkError(
                message="A network error occurred. Please check your connection.",
                original_error=error,
                url=context.get("url") if context else None,
            )
        elif isinstance(error, OSError):
            return CacheError(
                message=f"A file system error occurred: {str(error)}",
                original_error=error,
                path=context.get("path") if context else None,
            )

        return AppError(
            message="An unexpected error occurred.",
            category=ErrorCategory.UNEXPECTED,
            severity=ErrorSeverity.ERROR,
            technical_details=f"{type(error).__name__}: {str(error)}",
            recoverable=False,
        )

    def _log_error(
        self,
        error: AppError,
        operation: str,
        component: str,
        context: dict[str, Any] | None,
    ) -> None:
        """Log error with full technical details."""
        log_method = log.warning if error.severity == ErrorSeverity.WARNING else log.error

        log_method(
            "Error occurred",
            error_message=error.message,
            category=error.category.value,
            severity=error.severity.value,
            operation=operation,
            component=component,
            technical_details=error.technical_details,
            recoverable=error.recoverable,
            context=context,
        )

    def create_user_message(
        self,
        error: UserFriendlyError,
        include_suggestions: bool = True,
    ) -> str:
        """Create a formatted user message from an error.

        Args:
            error: The user-friendly error
            include_suggestions: Whether to include suggested actions

        Returns:
            Formatted message string
        """
        parts = [error.message]

        if include_suggestions and error.suggested_actions:
            parts.append("\nSuggested actions:")
            for action in error.suggested_actions[:3]:
                parts.append(f"  • {action}")

        return "\n".join(parts)
