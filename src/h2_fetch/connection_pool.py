"""
HTTP/2 session registry.

This module keeps one long-lived HTTP/2 session per origin. Sessions
are created on demand, probed by a KeepaliveProber for as long as
they live, and dropped from the registry when they close.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, Iterator, Optional

from .exceptions import NetworkError
from .http2 import HTTP2Connection
from .http_primitives import Origin
from .keepalive import KeepaliveProber, Scheduler
from .network import AsyncioNetworkBackend, NetworkBackend
from .network.utils import H2_ALPN_PROTOCOLS

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Map from origin to an open HTTP/2 session.

    A session with no requests in flight stays registered and is reused;
    entries are removed only when the session itself reports that it
    closed. ``resolve`` never returns a session that is closing or closed.
    """

    DEFAULT_CONNECT_TIMEOUT = 10.0

    def __init__(
        self,
        backend: Optional[NetworkBackend] = None,
        connect_timeout: Optional[float] = None,
        ping_interval: Optional[float] = None,
        pong_timeout: Optional[float] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        """
        Initialize the registry.

        Args:
            backend: Network backend used to connect (asyncio by default)
            connect_timeout: Timeout in seconds for TCP connect and TLS handshake
            ping_interval: Keepalive interval passed to each prober
            pong_timeout: Keepalive pong timeout passed to each prober
            scheduler: Timer source for the probers (the running loop by default)
        """
        self._backend = backend or AsyncioNetworkBackend()
        self._connect_timeout = connect_timeout or self.DEFAULT_CONNECT_TIMEOUT
        self._ping_interval = ping_interval
        self._pong_timeout = pong_timeout
        self._scheduler = scheduler

        self._sessions: Dict[Origin, HTTP2Connection] = {}
        self._probers: Dict[Origin, KeepaliveProber] = {}
        self._locks: Dict[Origin, asyncio.Lock] = defaultdict(asyncio.Lock)

        # Metrics
        self._total_sessions_created = 0
        self._total_sessions_closed = 0

    async def resolve(self, origin: Origin) -> HTTP2Connection:
        """
        Get the open session for an origin, connecting if there is none.

        Concurrent callers for the same origin wait for a single connect.

        Raises:
            NetworkError: If the connection cannot be established
        """
        session = self._open_session(origin)
        if session is not None:
            logger.debug(f"Reusing session to {origin}")
            return session

        async with self._locks[origin]:
            session = self._open_session(origin)
            if session is not None:
                return session

            session = await self._connect(origin)
            self._register(origin, session)
            return session

    async def close_all(self) -> None:
        """
        Close every registered session gracefully.

        Returns once all of them have closed; the registry is then empty.
        """
        sessions = list(self._sessions.values())
        logger.debug(f"Closing {len(sessions)} session(s)")

        for session in sessions:
            session.close()

        if sessions:
            await asyncio.gather(*(session.wait_closed() for session in sessions))

    def get(self, origin: Origin) -> Optional[HTTP2Connection]:
        return self._sessions.get(origin)

    def get_prober(self, origin: Origin) -> Optional[KeepaliveProber]:
        return self._probers.get(origin)

    def __contains__(self, origin: object) -> bool:
        return origin in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Origin]:
        return iter(list(self._sessions))

    @property
    def metrics(self) -> Dict[str, Any]:
        """
        Get registry metrics.

        Returns:
            Dictionary with registry metrics
        """
        return {
            "active_sessions": len(self._sessions),
            "total_sessions_created": self._total_sessions_created,
            "total_sessions_closed": self._total_sessions_closed,
            "sessions": {
                str(origin): session.metrics
                for origin, session in self._sessions.items()
            },
        }

    def _open_session(self, origin: Origin) -> Optional[HTTP2Connection]:
        session = self._sessions.get(origin)
        if session is None:
            return None
        if not session.is_open:
            # Closing sessions drain their streams but take no new ones
            self._forget(origin, session)
            return None
        return session

    async def _connect(self, origin: Origin) -> HTTP2Connection:
        try:
            stream = await self._backend.connect_tcp(
                origin.host, origin.port, timeout=self._connect_timeout
            )
            if origin.is_secure:
                try:
                    stream = await self._backend.connect_tls(
                        stream,
                        origin.host,
                        origin.port,
                        timeout=self._connect_timeout,
                        alpn_protocols=H2_ALPN_PROTOCOLS,
                    )
                except BaseException:
                    # stream is still the plain TCP connection here
                    await stream.aclose()
                    raise
        except (OSError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to connect to {origin}: {e}")
            raise NetworkError(f"Failed to connect to {origin}: {e}", cause=e)

        if origin.is_secure:
            protocol = stream.get_extra_info("selected_alpn_protocol")
            if protocol != "h2":
                await stream.aclose()
                raise NetworkError(f"{origin} did not negotiate HTTP/2 (ALPN: {protocol})")

        session = HTTP2Connection(stream, origin)
        await session.start()
        if not session.is_open:
            raise NetworkError(
                f"Session to {origin} closed during setup", cause=session.error
            )

        self._total_sessions_created += 1
        logger.debug(f"Created new session to {origin}")
        return session

    def _register(self, origin: Origin, session: HTTP2Connection) -> None:
        def on_close(closed: HTTP2Connection) -> None:
            self._total_sessions_closed += 1
            self._forget(origin, closed)

        session.add_close_callback(on_close)

        prober = KeepaliveProber(
            session,
            ping_interval=self._ping_interval,
            pong_timeout=self._pong_timeout,
            scheduler=self._scheduler,
        )
        self._sessions[origin] = session
        self._probers[origin] = prober
        prober.start()

    def _forget(self, origin: Origin, session: HTTP2Connection) -> None:
        if self._sessions.get(origin) is session:
            del self._sessions[origin]
            self._probers.pop(origin, None)
            lock = self._locks.get(origin)
            if lock is not None and not lock.locked():
                del self._locks[origin]
            logger.debug(f"Removed session to {origin}")
