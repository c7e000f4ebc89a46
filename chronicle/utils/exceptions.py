"""
Errors raised across the bridge, the guard and the tools.

Every chronicle error carries a stable ``code`` and an ``ErrorCategory``.
Tool-facing code never lets an exception reach the MCP client: the
registry and ``tool_error_handler`` render them as ``Error: <message>`` text
with secrets redacted.
"""

from __future__ import annotations

import asyncio
import functools
import json
import re
from enum import Enum
from typing import Any, Callable, TypeVar

from loguru import logger

F = TypeVar("F", bound=Callable[..., Any])


class ErrorCategory(Enum):
    """How a caller should react to an error."""
    RECOVERABLE = "recoverable"
    RETRYABLE = "retryable"
    FATAL = "fatal"
    VALIDATION = "validation"
    SECURITY = "security"
    TIMEOUT = "timeout"
    CONNECTION = "connection"


class ChronicleError(Exception):
    """Base exception for all chronicle errors."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        category: ErrorCategory = ErrorCategory.FATAL,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "category": self.category.value,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class NotConnectedError(ChronicleError):
    """A request was attempted while the bridge socket is down."""

    def __init__(self, message: str = "Not connected to Chronicle app"):
        super().__init__(message, code="NOT_CONNECTED", category=ErrorCategory.CONNECTION)


class BridgeConnectError(ChronicleError):
    """A single connect attempt to the Host failed."""

    def __init__(self, url: str, reason: str):
        super().__init__(
            f"Failed to connect to {url}: {reason}",
            code="CONNECT_FAILED",
            category=ErrorCategory.RETRYABLE,
            details={"url": url},
        )


class RequestTimeoutError(ChronicleError):
    """No response arrived before the request deadline."""

    def __init__(self, method: str, timeout_seconds: float):
        super().__init__(
            f"Request '{method}' timed out after {timeout_seconds:g}s",
            code="TIMEOUT",
            category=ErrorCategory.TIMEOUT,
            details={"method": method, "timeout_seconds": timeout_seconds},
        )


class BridgeRequestError(ChronicleError):
    """The peer answered a request with an error."""

    def __init__(self, method: str, message: str):
        super().__init__(
            message,
            code="REMOTE_ERROR",
            category=ErrorCategory.RECOVERABLE,
            details={"method": method},
        )


class FrameValidationError(ChronicleError):
    """An inbound frame did not match any known frame shape."""

    def __init__(self, message: str):
        super().__init__(message, code="INVALID_FRAME", category=ErrorCategory.VALIDATION)


class SecurityError(ChronicleError):
    """A path or git reference failed containment checks."""

    def __init__(self, message: str, value: str | None = None):
        details = {"value": value[:80]} if isinstance(value, str) else {}
        super().__init__(message, code="SECURITY_VIOLATION", category=ErrorCategory.SECURITY, details=details)


class ToolError(ChronicleError):
    """A tool could not complete; the message is shown to the MCP client as-is."""

    def __init__(
        self,
        tool_name: str,
        message: str,
        is_recoverable: bool = True,
    ):
        category = ErrorCategory.RECOVERABLE if is_recoverable else ErrorCategory.FATAL
        super().__init__(
            message,
            code="TOOL_ERROR",
            category=category,
            details={"tool_name": tool_name, "is_recoverable": is_recoverable},
        )


class ProviderError(ChronicleError):
    """The completion call failed or returned nothing usable."""

    def __init__(self, message: str, model: str | None = None, is_retryable: bool = False):
        category = ErrorCategory.RETRYABLE if is_retryable else ErrorCategory.FATAL
        super().__init__(
            message,
            code="PROVIDER_ERROR",
            category=category,
            details={"model": model, "is_retryable": is_retryable},
        )


_REDACT_PATTERNS = (
    re.compile(r"(api[_-]?key|token|secret|password|auth)[=:]\s*['\"]?([^\s'\"]+)['\"]?", re.IGNORECASE),
    re.compile(r"bearer\s+[a-zA-Z0-9\-._~+/]+=*", re.IGNORECASE),
    re.compile(r"sk-[a-zA-Z0-9_\-]{20,}"),
    re.compile(r"[a-zA-Z0-9]{40,}"),
)

# Checked in order; the first matching type wins.
_BUILTIN_CLASSES: tuple[tuple[type[BaseException], str, ErrorCategory, bool], ...] = (
    (FileNotFoundError, "FILE_NOT_FOUND", ErrorCategory.RECOVERABLE, False),
    (PermissionError, "PERMISSION_DENIED", ErrorCategory.SECURITY, False),
    (asyncio.TimeoutError, "TIMEOUT", ErrorCategory.TIMEOUT, True),
    (ConnectionError, "CONNECTION_ERROR", ErrorCategory.CONNECTION, True),
    (json.JSONDecodeError, "JSON_PARSE_ERROR", ErrorCategory.VALIDATION, False),
    (ValueError, "INVALID_VALUE", ErrorCategory.VALIDATION, False),
    (KeyError, "INVALID_VALUE", ErrorCategory.VALIDATION, False),
    (TypeError, "INVALID_VALUE", ErrorCategory.VALIDATION, False),
)


def sanitize_error_message(message: str, replacement: str = "[REDACTED]") -> str:
    """Redact credentials and long opaque tokens from ``message``."""
    for pattern in _REDACT_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


def classify_exception(exc: BaseException) -> tuple[str, ErrorCategory, bool]:
    """Return ``(code, category, should_retry)`` for any exception."""
    if isinstance(exc, ChronicleError):
        return exc.code, exc.category, exc.category is ErrorCategory.RETRYABLE
    for exc_type, code, category, retry in _BUILTIN_CLASSES:
        if isinstance(exc, exc_type):
            return code, category, retry
    return "INTERNAL_ERROR", ErrorCategory.FATAL, False


def format_tool_error(exc: BaseException, include_details: bool = False) -> str:
    """Render ``exc`` as the text an MCP client sees."""
    code, category, _ = classify_exception(exc)
    message = exc.message if isinstance(exc, ChronicleError) else sanitize_error_message(str(exc))
    if include_details:
        return f"Error [{code}] ({category.value}): {message}"
    return f"Error: {message}"


def tool_error_handler(default_message: str = "Operation failed", log_errors: bool = True) -> Callable[[F], F]:
    """
    Wrap an async ``Tool.execute`` so failures come back as ``Error: ...`` text.

    Chronicle errors keep their own message. Missing files and timeouts get a
    fixed message so no filesystem detail leaks. Anything else is reported as
    ``<default_message>: <sanitized exception text>``.

    Usage:
        @tool_error_handler("Failed to read note history")
        async def execute(self, path: ResolvedPath, **kwargs) -> str:
            ...
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> str:
            try:
                return await func(*args, **kwargs)
            except ChronicleError as e:
                if log_errors:
                    logger.warning(f"{func.__qualname__} failed: {e.code} - {e.message}")
                return f"Error: {e.message}"
            except FileNotFoundError as e:
                if log_errors:
                    logger.debug(f"{func.__qualname__}: file not found: {e}")
                return "Error: File not found"
            except asyncio.TimeoutError:
                if log_errors:
                    logger.warning(f"{func.__qualname__} timed out")
                return "Error: Operation timed out"
            except Exception as e:
                code, _, _ = classify_exception(e)
                detail = sanitize_error_message(str(e))
                if log_errors:
                    logger.error(f"{func.__qualname__} raised [{code}]: {detail}")
                return f"Error: {default_message}: {detail}"

        return wrapper  # type: ignore[return-value]

    return decorator
