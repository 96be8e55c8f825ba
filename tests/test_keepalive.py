"""
Tests for the keepalive prober.

The prober runs against a fake session and a fake scheduler so the
ping/pong state machine can be driven step by step.
"""

import asyncio
from typing import Any, Callable, List, Optional

import pytest

from h2_fetch.exceptions import NetworkError
from h2_fetch.http_primitives import Origin
from h2_fetch.keepalive import KeepaliveProber, ProbeState


class FakeSession:
    """Stand-in for HTTP2Connection recording what the prober does."""

    def __init__(self, can_ping: bool = True) -> None:
        self.origin = Origin("https", "example.test", 443)
        self.can_ping = can_ping
        self.ping_callbacks: List[Callable[[Optional[Exception], Optional[float]], None]] = []
        self.close_callbacks: List[Callable[[Any], None]] = []
        self.closed = False
        self.destroyed_with: Optional[Exception] = None

    def ping(self, callback) -> bool:
        if not self.can_ping:
            return False
        self.ping_callbacks.append(callback)
        return True

    def pong(self, rtt: float = 0.01) -> None:
        self.ping_callbacks.pop(0)(None, rtt)

    def close(self) -> None:
        self.closed = True

    def destroy(self, error: Optional[Exception] = None) -> None:
        self.destroyed_with = error
        self.fire_close()

    def add_close_callback(self, callback) -> None:
        self.close_callbacks.append(callback)

    def fire_close(self) -> None:
        for callback in self.ping_callbacks:
            callback(NetworkError("Session closed before ping acknowledgement"), None)
        self.ping_callbacks.clear()
        for callback in self.close_callbacks:
            callback(self)


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def prober(session, fake_scheduler) -> KeepaliveProber:
    return KeepaliveProber(session, ping_interval=5.0, pong_timeout=2.0, scheduler=fake_scheduler)


class TestKeepaliveProber:
    """Test the ping/pong cycle."""

    def test_defaults(self, session, fake_scheduler) -> None:
        prober = KeepaliveProber(session, scheduler=fake_scheduler)
        prober.start()

        assert fake_scheduler.pending[0].delay == KeepaliveProber.DEFAULT_PONG_TIMEOUT

    def test_start_pings_immediately(self, prober, session, fake_scheduler) -> None:
        prober.start()

        assert len(session.ping_callbacks) == 1
        assert prober.state is ProbeState.PING_SENT
        assert prober.pong_timer is not None
        assert prober.ping_timer is None
        assert [timer.delay for timer in fake_scheduler.pending] == [2.0]

    def test_pong_arms_ping_interval(self, prober, session, fake_scheduler) -> None:
        prober.start()
        pong_timer = prober.pong_timer

        session.pong(rtt=0.05)

        assert pong_timer.cancelled
        assert prober.pong_timer is None
        assert prober.state is ProbeState.IDLE
        assert prober.last_rtt == 0.05
        assert [timer.delay for timer in fake_scheduler.pending] == [5.0]

    def test_next_ping_after_interval(self, prober, session, fake_scheduler) -> None:
        prober.start()
        session.pong()

        fake_scheduler.advance(4.9)
        assert session.ping_callbacks == []

        fake_scheduler.advance(0.1)
        assert len(session.ping_callbacks) == 1
        assert prober.state is ProbeState.PING_SENT

    def test_cycle_repeats_without_destroying(self, prober, session, fake_scheduler) -> None:
        prober.start()
        for _ in range(3):
            fake_scheduler.advance(1.0)
            session.pong()
            fake_scheduler.advance(5.0)

        assert session.destroyed_with is None
        assert len(session.ping_callbacks) == 1

    def test_pong_timeout_destroys_session(self, prober, session, fake_scheduler) -> None:
        prober.start()

        fake_scheduler.advance(2.0)

        assert isinstance(session.destroyed_with, NetworkError)
        assert session.closed is False
        assert prober.state is ProbeState.STOPPED
        assert fake_scheduler.pending == []

    def test_pong_just_before_timeout(self, prober, session, fake_scheduler) -> None:
        prober.start()
        fake_scheduler.advance(1.9)
        session.pong()

        fake_scheduler.advance(0.5)

        assert session.destroyed_with is None

    def test_unsendable_ping_closes_gracefully(self, session, fake_scheduler) -> None:
        session.can_ping = False
        prober = KeepaliveProber(session, scheduler=fake_scheduler)

        prober.start()

        assert session.closed is True
        assert session.destroyed_with is None
        assert fake_scheduler.pending == []

    def test_session_close_cancels_timers(self, prober, session, fake_scheduler) -> None:
        prober.start()
        session.pong()

        session.fire_close()

        assert prober.state is ProbeState.STOPPED
        assert fake_scheduler.pending == []
        fake_scheduler.advance(60.0)
        assert session.ping_callbacks == []

    def test_session_close_while_ping_outstanding(self, prober, session, fake_scheduler) -> None:
        prober.start()

        session.fire_close()

        assert prober.state is ProbeState.STOPPED
        assert fake_scheduler.pending == []
        assert session.destroyed_with is None

    def test_stop(self, prober, session, fake_scheduler) -> None:
        prober.start()
        prober.stop()

        fake_scheduler.advance(10.0)

        assert session.destroyed_with is None
        assert prober.state is ProbeState.STOPPED

    @pytest.mark.asyncio
    async def test_running_loop_is_default_scheduler(self, session) -> None:
        prober = KeepaliveProber(session, pong_timeout=0.01)

        prober.start()
        await asyncio.sleep(0.05)

        assert isinstance(session.destroyed_with, NetworkError)
        assert prober.state is ProbeState.STOPPED
