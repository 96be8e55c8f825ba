"""
h2_fetch - Minimal HTTP/2 request layer

Single-shot fetch-style requests multiplexed over long-lived,
per-origin HTTP/2 sessions kept alive with PING probing.
"""

__version__ = "0.1.0"
__author__ = "Developer"
__email__ = "dev@example.com"

# Import main components for easy access
from .client import HTTP2Client, PendingRequest, disconnect_all, fetch, get_default_client
from .connection_pool import SessionRegistry
from .exceptions import (
    AbortError,
    ConfigurationError,
    FetchError,
    NetworkError,
    ProtocolIncompleteError,
)
from .http2 import HTTP2Connection, SessionState
from .http_primitives import Headers, Origin, Response
from .keepalive import KeepaliveProber, ProbeState
from .signals import AbortController, AbortSignal

__all__ = [
    "fetch",
    "disconnect_all",
    "get_default_client",
    "HTTP2Client",
    "PendingRequest",
    "SessionRegistry",
    "HTTP2Connection",
    "SessionState",
    "KeepaliveProber",
    "ProbeState",
    "Headers",
    "Origin",
    "Response",
    "AbortController",
    "AbortSignal",
    "FetchError",
    "ConfigurationError",
    "NetworkError",
    "AbortError",
    "ProtocolIncompleteError",
]
