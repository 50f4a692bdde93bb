"""
Error taxonomy for the sprint review toolkit.

Upstream and validation failures get their own exception types; everything
that goes wrong while producing an export is normalised into an ExportError
carrying a stable code and a recoverable flag that drives the retry loop.
"""

import asyncio
import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

import aiohttp

logger = logging.getLogger(__name__)

NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
MEMORY_ERROR = "MEMORY_ERROR"
PERMISSION_ERROR = "PERMISSION_ERROR"
FORMAT_ERROR = "FORMAT_ERROR"
RENDERER_ERROR = "RENDERER_ERROR"
ASSET_ERROR = "ASSET_ERROR"
VALIDATION_ERROR = "VALIDATION_ERROR"
IO_ERROR = "IO_ERROR"
UNKNOWN_ERROR = "UNKNOWN_ERROR"

RECOVERABLE_CODES = frozenset({NETWORK_TIMEOUT, MEMORY_ERROR, RENDERER_ERROR, ASSET_ERROR, IO_ERROR})

USER_MESSAGES: Dict[str, str] = {
    NETWORK_TIMEOUT: "The export is taking longer than expected. Please try again.",
    MEMORY_ERROR: "The export requires more memory than available. Try reducing the quality or number of slides.",
    PERMISSION_ERROR: "Permission denied. Please check your file system permissions.",
    FORMAT_ERROR: "The selected export format is not supported or has an error.",
    RENDERER_ERROR: "There was an issue generating the export. Please try again.",
    ASSET_ERROR: "Some images or assets could not be processed. The export may be incomplete.",
    VALIDATION_ERROR: "The presentation data is invalid. Please regenerate the presentation.",
    IO_ERROR: "The export could not be read or written. Please try again.",
    UNKNOWN_ERROR: "An unexpected error occurred during export. Please try again.",
}

RECOVERY_ACTIONS: Dict[str, List[str]] = {
    NETWORK_TIMEOUT: [
        "Check your network connection",
        "Try again in a few minutes",
        "Use a lower quality setting",
    ],
    MEMORY_ERROR: [
        "Close other applications to free up memory",
        "Reduce the number of slides",
        "Use a lower quality setting",
        "Try exporting in smaller batches",
    ],
    PERMISSION_ERROR: [
        "Check file system permissions",
        "Try saving to a different location",
    ],
    FORMAT_ERROR: [
        "Try a different export format",
        "Update the application",
    ],
    RENDERER_ERROR: [
        "Try the export again",
        "Try a different export format",
    ],
    ASSET_ERROR: [
        "Check that all images are accessible",
        "Try removing problematic images",
        "Export without images",
    ],
    VALIDATION_ERROR: [
        "Regenerate the presentation",
        "Check that all required data is present",
    ],
    IO_ERROR: [
        "Check available disk space",
        "Try again",
    ],
}

# Checked in order; the first keyword hit decides the code
_MESSAGE_KEYWORDS = (
    (("timeout", "timed out", "network"), NETWORK_TIMEOUT),
    (("out of memory", "memory"), MEMORY_ERROR),
    (("permission", "access denied"), PERMISSION_ERROR),
    (("unsupported", "format"), FORMAT_ERROR),
    (("renderer", "render"), RENDERER_ERROR),
    (("asset", "image"), ASSET_ERROR),
    (("validation", "invalid"), VALIDATION_ERROR),
)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JsrError(Exception):
    """Base class for all errors raised by this toolkit."""


class ValidationError(JsrError):
    """Caller input is malformed (bad ids, empty JQL, invalid payload)."""


class UpstreamFetchError(JsrError):
    """Jira request failed, timed out or returned malformed data.

    Args:
        message: What failed
        status_code: HTTP status when Jira answered, else None
        operation: Logical operation name (e.g., "fetch_sprints")
        body: Response body text, if any
    """

    def __init__(self, message: str, status_code: Optional[int] = None,
                 operation: Optional[str] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.operation = operation
        self.body = body


class UnsupportedFormatError(JsrError):
    """No renderer is registered for the requested export format."""


class ExportError(JsrError):
    """Structured export failure.

    Attributes:
        code: One of the error codes defined in this module
        message: Technical message (logged, not shown to users)
        details: Free-form context string (format, quality, slides, attempt)
        recoverable: True when retrying the same export may succeed
        retry_count: Attempt number on which the error occurred
        timestamp: ISO 8601 UTC time of creation
        context: Optional structured context (format, quality, slideCount)
    """

    def __init__(self, code: str, message: str, details: Optional[str] = None,
                 recoverable: Optional[bool] = None, retry_count: int = 0,
                 timestamp: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details
        self.recoverable = is_recoverable(code) if recoverable is None else recoverable
        self.retry_count = retry_count
        self.timestamp = timestamp or _utc_now()
        self.context = context or {}

    @property
    def user_message(self) -> str:
        return USER_MESSAGES.get(self.code, USER_MESSAGES[UNKNOWN_ERROR])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
            "retryCount": self.retry_count,
            "timestamp": self.timestamp,
            "context": self.context,
        }

    def __repr__(self) -> str:
        return f"ExportError(code={self.code!r}, message={self.message!r}, recoverable={self.recoverable})"


def is_recoverable(code: str) -> bool:
    """Return True for error codes worth retrying.

    Examples:
        >>> is_recoverable("NETWORK_TIMEOUT")
        True
        >>> is_recoverable("PERMISSION_ERROR")
        False
    """
    return code in RECOVERABLE_CODES


def categorize_error(exc: BaseException) -> str:
    """Map an exception to an error code.

    The exception type decides first; only exceptions without a telling type
    fall back to keyword matching on the message.

    Examples:
        >>> categorize_error(PermissionError("denied"))
        'PERMISSION_ERROR'
        >>> categorize_error(RuntimeError("chart render failed"))
        'RENDERER_ERROR'
    """
    if isinstance(exc, ExportError):
        return exc.code
    if isinstance(exc, ValidationError):
        return VALIDATION_ERROR
    if isinstance(exc, UnsupportedFormatError):
        return FORMAT_ERROR
    if isinstance(exc, MemoryError):
        return MEMORY_ERROR
    # before OSError: TimeoutError and PermissionError both subclass it
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, aiohttp.ServerTimeoutError)):
        return NETWORK_TIMEOUT
    if isinstance(exc, PermissionError):
        return PERMISSION_ERROR
    if isinstance(exc, (aiohttp.ClientError, ConnectionError, UpstreamFetchError)):
        return NETWORK_TIMEOUT
    if isinstance(exc, OSError):
        return IO_ERROR

    message = str(exc).lower()
    for keywords, code in _MESSAGE_KEYWORDS:
        if any(keyword in message for keyword in keywords):
            return code
    return UNKNOWN_ERROR


class ExportErrorHandler:
    """Turns raw exceptions into ExportErrors and keeps a bounded history.

    Args:
        max_retries: Attempts allowed per export (default: 3)
        base_delay: Seconds before the first retry (default: 1.0)
        backoff_multiplier: Delay growth per attempt (default: 2)
        max_history: Errors kept for reporting (default: 100)
    """

    def __init__(self, max_retries: int = 3, base_delay: float = 1.0,
                 backoff_multiplier: float = 2, max_history: int = 100):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.backoff_multiplier = backoff_multiplier
        self._history: Deque[ExportError] = deque(maxlen=max_history)

    def categorize(self, exc: BaseException) -> str:
        return categorize_error(exc)

    def is_recoverable(self, code: str) -> bool:
        return is_recoverable(code)

    def to_export_error(self, exc: BaseException, attempt: int = 1,
                        context: Optional[Dict[str, Any]] = None) -> ExportError:
        """Wrap ``exc`` in an ExportError, record it and log it.

        An ExportError passes through with its code and recoverable flag kept;
        only its retry_count is updated.
        """
        context = dict(context or {})
        if isinstance(exc, ExportError):
            error = exc
            error.retry_count = attempt
            if context:
                error.context = {**context, **error.context}
        else:
            code = self.categorize(exc)
            details = ", ".join(f"{k}: {v}" for k, v in context.items()) or None
            error = ExportError(
                code=code,
                message=str(exc) or exc.__class__.__name__,
                details=f"{details}, attempt: {attempt}" if details else f"attempt: {attempt}",
                recoverable=self.is_recoverable(code),
                retry_count=attempt,
                context=context,
            )
        self._history.append(error)
        logger.error(
            "Export error (attempt %d): code=%s recoverable=%s message=%s",
            attempt, error.code, error.recoverable, error.message,
        )
        return error

    def should_retry(self, error: ExportError, attempt: int) -> bool:
        return error.recoverable and attempt < self.max_retries

    def retry_delay(self, attempt: int) -> float:
        """Return the back-off delay (seconds) after a failed ``attempt``.

        Examples:
            >>> ExportErrorHandler(base_delay=1.0).retry_delay(3)
            4.0
        """
        return self.base_delay * (self.backoff_multiplier ** (attempt - 1))

    def user_message(self, error: ExportError) -> str:
        return error.user_message

    def suggest_recovery_actions(self, error: ExportError) -> List[str]:
        return list(RECOVERY_ACTIONS.get(error.code, ["Try again", "Contact support if the issue persists"]))

    @property
    def history(self) -> List[ExportError]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    def error_report(self) -> Dict[str, Any]:
        """Summarise recorded errors (counts, last error)."""
        errors = self.history
        recoverable = sum(1 for e in errors if e.recoverable)
        return {
            "errors": [e.to_dict() for e in errors],
            "totalErrors": len(errors),
            "recoverableErrors": recoverable,
            "unrecoverableErrors": len(errors) - recoverable,
            "lastError": errors[-1].to_dict() if errors else None,
            "timestamp": _utc_now(),
        }

    def error_statistics(self) -> Dict[str, Any]:
        errors = self.history
        total = len(errors)
        by_code = Counter(e.code for e in errors)
        by_format = Counter(e.context.get("format", "unknown") for e in errors)
        recoverable = sum(1 for e in errors if e.recoverable)
        return {
            "totalErrors": total,
            "errorsByCode": dict(by_code),
            "errorsByFormat": dict(by_format),
            "averageRetryCount": (sum(e.retry_count for e in errors) / total) if total else 0,
            "recoveryRate": (recoverable / total * 100) if total else 0,
        }


@dataclass
class ValidationReport:
    """Result of pre-flight export validation."""

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors
