"""Utility functions for chronicle."""

from chronicle.utils.exceptions import (
    BridgeConnectError,
    BridgeRequestError,
    ChronicleError,
    ErrorCategory,
    FrameValidationError,
    NotConnectedError,
    ProviderError,
    RequestTimeoutError,
    SecurityError,
    ToolError,
)

__all__ = [
    "BridgeConnectError",
    "BridgeRequestError",
    "ChronicleError",
    "ErrorCategory",
    "FrameValidationError",
    "NotConnectedError",
    "ProviderError",
    "RequestTimeoutError",
    "SecurityError",
    "ToolError",
]
