"""
Custom exceptions for h2_fetch.

This module defines the exception hierarchy used throughout
the library. Every error carries a ``name`` so callers can tell
the kind of failure apart without importing the classes.
"""

from typing import Optional


class FetchError(Exception):
    """Base exception for all h2_fetch errors."""

    name = "FetchError"

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class ConfigurationError(FetchError):
    """Raised for unsupported request options, before any network activity."""

    name = "ConfigurationError"


class NetworkError(FetchError):
    """Raised when the transport or the HTTP/2 session fails."""

    name = "NetworkError"


class AbortError(FetchError):
    """Raised when a request is cancelled through its abort signal."""

    name = "AbortError"

    def __init__(self, message: str = "Request aborted", cause: Optional[BaseException] = None) -> None:
        super().__init__(message, cause)


class ProtocolIncompleteError(FetchError):
    """Raised when a stream closes before any response headers arrived."""

    name = "ProtocolIncompleteError"

    def __init__(self, message: str = "fetch failed", cause: Optional[BaseException] = None) -> None:
        super().__init__(message, cause)
