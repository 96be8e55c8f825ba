"""
HTTP/2 request executor.

``HTTP2Client.fetch`` runs one request over the pooled session for the
URL's origin and settles exactly once: with a Response, a NetworkError,
an AbortError or a ProtocolIncompleteError. Module-level ``fetch`` and
``disconnect_all`` share a process-wide default client.
"""

import asyncio
import logging
from typing import Any, List, Mapping, Optional

from .connection_pool import SessionRegistry
from .exceptions import AbortError, ConfigurationError, NetworkError, ProtocolIncompleteError
from .http2 import HTTP2Connection
from .http_primitives import (
    HeaderList,
    Headers,
    Origin,
    Response,
    build_request_headers,
    request_target,
)
from .keepalive import Scheduler
from .network import NetworkBackend
from .signals import AbortSignal

logger = logging.getLogger(__name__)

SUPPORTED_METHODS = ("GET", "POST")


class PendingRequest:
    """
    Accumulator for one in-flight exchange.

    Implements the stream listener interface. The first terminal event
    (error, aborted or close) settles the request; anything after that
    is ignored.
    """

    def __init__(self, url: str):
        self.url = url
        self.status: Optional[int] = None
        self.headers = Headers()
        self._chunks: List[bytes] = []
        self._future: "asyncio.Future[Response]" = asyncio.get_running_loop().create_future()

    @property
    def settled(self) -> bool:
        return self._future.done()

    def on_response(self, headers: HeaderList) -> None:
        for name, value in headers:
            if name == ":status":
                self.status = int(value)
            else:
                self.headers.append(name, value)

    def on_data(self, chunk: bytes) -> None:
        self._chunks.append(chunk)

    def on_error(self, error: Exception) -> None:
        if not isinstance(error, NetworkError):
            error = NetworkError(str(error), cause=error)
        self._reject(error)

    def on_aborted(self) -> None:
        self._reject(AbortError("Request aborted"))

    def on_close(self) -> None:
        if self.settled:
            return
        if self.status is None:
            self._reject(ProtocolIncompleteError("fetch failed"))
            return
        self._future.set_result(Response.create(
            url=self.url,
            status=self.status,
            headers=self.headers,
            content=b"".join(self._chunks),
        ))

    async def wait(self) -> Response:
        return await self._future

    def _reject(self, error: Exception) -> None:
        if self.settled:
            return
        logger.debug(f"Request to {self.url} failed: {error}")
        self._future.set_exception(error)


def _consume_result(task: "asyncio.Future[Any]") -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.debug(f"Abandoned connect failed: {task.exception()}")


def _check_method(method: Optional[str]) -> str:
    if method is None:
        return "GET"
    normalized = method.upper() if isinstance(method, str) else method
    if normalized not in SUPPORTED_METHODS:
        raise ConfigurationError(f"Unsupported method: {method}")
    return normalized


def _encode_body(body: Any) -> Optional[bytes]:
    if body is None:
        return None
    if not isinstance(body, str):
        raise ConfigurationError(f"Unsupported body type: {type(body).__name__}")
    return body.encode("utf-8")


class HTTP2Client:
    """
    HTTP/2 client backed by a per-origin session registry.

    Sessions outlive individual requests; call ``disconnect_all`` (or use
    the client as an async context manager) to close them.
    """

    def __init__(
        self,
        backend: Optional[NetworkBackend] = None,
        connect_timeout: Optional[float] = None,
        ping_interval: Optional[float] = None,
        pong_timeout: Optional[float] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        """
        Initialize the client.

        Args:
            backend: Network backend to use (asyncio by default)
            connect_timeout: Timeout in seconds for establishing a session
            ping_interval: Seconds between keepalive pings
            pong_timeout: Seconds to wait for a keepalive pong
            scheduler: Timer source for keepalive probing
        """
        self._registry = SessionRegistry(
            backend=backend,
            connect_timeout=connect_timeout,
            ping_interval=ping_interval,
            pong_timeout=pong_timeout,
            scheduler=scheduler,
        )

    @property
    def sessions(self) -> SessionRegistry:
        return self._registry

    async def fetch(
        self,
        url: str,
        *,
        method: Optional[str] = None,
        headers: Optional[Mapping[str, Any]] = None,
        body: Optional[str] = None,
        signal: Optional[AbortSignal] = None,
    ) -> Response:
        """
        Make an HTTP/2 request and buffer the whole response.

        Args:
            url: Absolute http(s) URL
            method: "GET" (default) or "POST"
            headers: Headers sent as given; pseudo-headers and
                     content-length always override them
            body: String payload, sent UTF-8 encoded
            signal: Cancellation token

        Returns:
            The response

        Raises:
            ConfigurationError: For unsupported options, before any I/O
            AbortError: If the signal is (or becomes) aborted
            NetworkError: If the transport or session fails
            ProtocolIncompleteError: If the stream closes before a response
        """
        method = _check_method(method)
        payload = _encode_body(body)

        if signal is not None and signal.aborted:
            raise AbortError("Request aborted")

        origin = Origin.from_url(url)
        request_headers = build_request_headers(
            origin,
            request_target(url),
            method,
            headers,
            content_length=len(payload) if payload is not None else None,
        )

        if signal is None:
            session = await self._registry.resolve(origin)
        else:
            session = await self._resolve_or_abort(origin, signal)

        logger.debug(f"HTTP/2 request {method} {url}")
        pending = PendingRequest(url)
        stream_id = session.open_stream(request_headers, pending, end_stream=payload is None)

        def on_abort() -> None:
            session.reset_stream(stream_id)

        if signal is not None:
            signal.add_listener(on_abort)
        try:
            if payload is not None:
                await session.send_body(stream_id, payload)
            response = await pending.wait()
        except asyncio.CancelledError:
            session.reset_stream(stream_id)
            raise
        finally:
            if signal is not None:
                signal.remove_listener(on_abort)

        logger.debug(f"HTTP/2 response {method} {url} -> {response.status}")
        return response

    async def _resolve_or_abort(self, origin: Origin, signal: AbortSignal) -> HTTP2Connection:
        """
        Resolve the session for an origin unless the signal fires first.

        An abort settles the request at once. The connect itself keeps
        running in the background, so a session it opens is pooled for
        later requests.
        """
        aborted: "asyncio.Future[None]" = asyncio.get_running_loop().create_future()

        def on_abort() -> None:
            if not aborted.done():
                aborted.set_result(None)

        signal.add_listener(on_abort)
        resolving = asyncio.ensure_future(self._registry.resolve(origin))
        try:
            await asyncio.wait({resolving, aborted}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            resolving.add_done_callback(_consume_result)
            raise
        finally:
            signal.remove_listener(on_abort)

        if aborted.done() or signal.aborted:
            resolving.add_done_callback(_consume_result)
            raise AbortError("Request aborted")
        return resolving.result()

    async def disconnect_all(self) -> None:
        """Close every pooled session."""
        await self._registry.close_all()

    async def __aenter__(self) -> "HTTP2Client":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect_all()


_default_client: Optional[HTTP2Client] = None


def get_default_client() -> HTTP2Client:
    """Return the process-wide client, creating it on first use."""
    global _default_client
    if _default_client is None:
        _default_client = HTTP2Client()
    return _default_client


async def fetch(url: str, **kwargs: Any) -> Response:
    """Make a request with the process-wide client. See ``HTTP2Client.fetch``."""
    return await get_default_client().fetch(url, **kwargs)


async def disconnect_all() -> None:
    """Close every session of the process-wide client, e.g. at shutdown."""
    if _default_client is not None:
        await _default_client.disconnect_all()
