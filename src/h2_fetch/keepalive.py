"""
Keepalive probing for HTTP/2 sessions.

Transport error and close events do not fire reliably when the
network silently drops a connection, so every pooled session is
probed with PING frames. A missed PING ACK destroys the session.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from .exceptions import NetworkError

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything that can run a callback later, e.g. an asyncio event loop."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class ProbeState(Enum):
    """States of a keepalive prober."""
    IDLE = "idle"            # Waiting for the ping interval to elapse
    PING_SENT = "ping_sent"  # Waiting for the PING ACK
    STOPPED = "stopped"      # Session closed, no timers armed


class KeepaliveProber:
    """
    Ping/pong cycle for one session.

    The cycle is Idle -> PingSent -> (pong: Idle | timeout: destroy).
    Only one of the two timers is armed at any time: the pong timeout
    while a PING is outstanding, the ping interval while idle.
    """

    DEFAULT_PING_INTERVAL = 5.0
    DEFAULT_PONG_TIMEOUT = 2.0

    def __init__(
        self,
        session: Any,
        ping_interval: Optional[float] = None,
        pong_timeout: Optional[float] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        """
        Initialize the prober.

        Args:
            session: Session to probe (an HTTP2Connection)
            ping_interval: Seconds between a pong and the next ping
            pong_timeout: Seconds to wait for a pong before destroying
            scheduler: Timer source; the running event loop by default, so
                       the prober must then be created inside a coroutine
        """
        self._session = session
        self._ping_interval = ping_interval or self.DEFAULT_PING_INTERVAL
        self._pong_timeout = pong_timeout or self.DEFAULT_PONG_TIMEOUT
        if scheduler is None:
            scheduler = asyncio.get_running_loop()
        self._scheduler: Scheduler = scheduler
        self._state = ProbeState.IDLE
        self._ping_timer: Optional[TimerHandle] = None
        self._pong_timer: Optional[TimerHandle] = None
        self._last_rtt: Optional[float] = None

    def start(self) -> None:
        """Attach to the session and send the first ping immediately."""
        self._session.add_close_callback(self._on_session_closed)
        self._ping()

    def stop(self) -> None:
        """Cancel both timers; no further pings are sent."""
        self._cancel_timers()
        self._state = ProbeState.STOPPED

    @property
    def state(self) -> ProbeState:
        return self._state

    @property
    def last_rtt(self) -> Optional[float]:
        """Round-trip time of the last acknowledged ping, in seconds."""
        return self._last_rtt

    @property
    def ping_timer(self) -> Optional[TimerHandle]:
        return self._ping_timer

    @property
    def pong_timer(self) -> Optional[TimerHandle]:
        return self._pong_timer

    def _ping(self) -> None:
        self._ping_timer = None
        if self._state is ProbeState.STOPPED:
            return

        if not self._session.ping(self._on_pong):
            logger.debug(f"Cannot ping {self._session.origin}, closing session")
            self._session.close()
            return

        self._state = ProbeState.PING_SENT
        self._pong_timer = self._scheduler.call_later(self._pong_timeout, self._on_pong_timeout)

    def _on_pong(self, error: Optional[Exception], rtt: Optional[float]) -> None:
        self._cancel_timers()
        if self._state is ProbeState.STOPPED:
            return

        if error is not None:
            logger.debug(f"Ping to {self._session.origin} failed: {error}")
            self._state = ProbeState.IDLE
            return

        self._last_rtt = rtt
        self._state = ProbeState.IDLE
        self._ping_timer = self._scheduler.call_later(self._ping_interval, self._ping)

    def _on_pong_timeout(self) -> None:
        self._pong_timer = None
        if self._state is ProbeState.STOPPED:
            return

        logger.warning(
            f"No keepalive response from {self._session.origin} within "
            f"{self._pong_timeout}s, destroying session"
        )
        self._session.destroy(NetworkError("Keepalive ping timed out"))

    def _on_session_closed(self, session: Any) -> None:
        self.stop()

    def _cancel_timers(self) -> None:
        if self._ping_timer is not None:
            self._ping_timer.cancel()
            self._ping_timer = None
        if self._pong_timer is not None:
            self._pong_timer.cancel()
            self._pong_timer = None
