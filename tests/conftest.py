"""
Pytest configuration for h2_fetch tests.

This file contains shared fixtures, an in-process HTTP/2 server that
answers like httpbin, and a fake scheduler for keepalive timers.
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit

import h2.config
import h2.connection
import h2.errors
import h2.events
import h2.exceptions
import pytest
import pytest_asyncio

from h2_fetch.client import HTTP2Client
from h2_fetch.network.mock import MockNetworkBackend, MockNetworkStream


class H2TestServer:
    """
    Minimal HTTP/2 server serving one connection.

    Routes mimic httpbin; a few extra ones misbehave on purpose
    (reset streams, truncate responses, drop the connection).
    """

    def __init__(self, stream: MockNetworkStream) -> None:
        self.stream = stream
        self.conn = h2.connection.H2Connection(
            config=h2.config.H2Configuration(client_side=False, header_encoding="utf-8")
        )
        self.received: List[Dict[str, Any]] = []
        self.reset_streams: List[int] = []
        self.pings_received = 0
        self.frozen = False
        self._requests: Dict[int, Dict[str, Any]] = {}
        self._handlers: Dict[int, asyncio.Task] = {}

    async def serve(self) -> None:
        self.conn.initiate_connection()
        await self.flush()
        try:
            while True:
                data = await self.stream.read(65535)
                if not data:
                    break
                if self.frozen:
                    continue
                try:
                    events = self.conn.receive_data(data)
                except h2.exceptions.ProtocolError:
                    # Frames arriving after our own GOAWAY
                    break
                for event in events:
                    self.handle_event(event)
                await self.flush()
        finally:
            for task in list(self._handlers.values()):
                task.cancel()

    def handle_event(self, event: h2.events.Event) -> None:
        if isinstance(event, h2.events.RequestReceived):
            self._requests[event.stream_id] = {
                "stream_id": event.stream_id,
                "headers": list(event.headers),
                "body": b"",
            }
        elif isinstance(event, h2.events.DataReceived):
            self._requests[event.stream_id]["body"] += event.data
            self.conn.acknowledge_received_data(event.flow_controlled_length, event.stream_id)
        elif isinstance(event, h2.events.StreamEnded):
            request = self._requests.pop(event.stream_id)
            self.received.append(request)
            self._handlers[event.stream_id] = asyncio.ensure_future(
                self.respond(event.stream_id, request)
            )
        elif isinstance(event, h2.events.StreamReset):
            self.reset_streams.append(event.stream_id)
            self._requests.pop(event.stream_id, None)
            task = self._handlers.pop(event.stream_id, None)
            if task is not None:
                task.cancel()
        elif isinstance(event, h2.events.PingReceived):
            self.pings_received += 1

    async def flush(self) -> None:
        data = self.conn.data_to_send()
        if data and not self.stream.is_closed:
            try:
                await self.stream.write(data)
            except OSError:
                pass

    async def respond(self, stream_id: int, request: Dict[str, Any]) -> None:
        try:
            await self.route(stream_id, request)
        except h2.exceptions.StreamClosedError:
            pass
        finally:
            self._handlers.pop(stream_id, None)

    async def route(self, stream_id: int, request: Dict[str, Any]) -> None:
        headers = dict(request["headers"])
        target = urlsplit(headers[":path"])
        path = target.path
        args = dict(parse_qsl(target.query))
        echoed = {name: value for name, value in request["headers"] if not name.startswith(":")}

        if path == "/get":
            await self.send_json(stream_id, {"args": args, "headers": echoed})
        elif path == "/post":
            await self.send_json(stream_id, {
                "args": args,
                "data": request["body"].decode("utf-8"),
                "headers": echoed,
            })
        elif path == "/headers":
            await self.send_json(stream_id, {"headers": request["headers"]})
        elif path == "/length":
            await self.send_json(stream_id, {"length": len(request["body"])})
        elif path == "/cookies":
            cookies = dict(
                part.strip().split("=", 1)
                for part in headers.get("cookie", "").split(";") if "=" in part
            )
            await self.send_json(stream_id, {"cookies": cookies})
        elif path == "/cookies/set":
            cookie_headers = [("set-cookie", f"{key}={value}; Path=/") for key, value in args.items()]
            await self.send_response(stream_id, 302, [("location", "/cookies")] + cookie_headers)
        elif path == "/set-cookies":
            await self.send_response(
                stream_id, 200, [("set-cookie", "a=1; Path=/"), ("set-cookie", "b=2; Path=/")]
            )
        elif path.startswith("/delay/"):
            await asyncio.sleep(float(path.rsplit("/", 1)[1]))
            await self.send_json(stream_id, {"args": args, "headers": echoed})
        elif path.startswith("/status/"):
            await self.send_response(stream_id, int(path.rsplit("/", 1)[1]))
        elif path == "/chunks":
            await self.send_response(stream_id, 200, chunks=[b"first,", b"second,", b"third"])
        elif path == "/utf8":
            await self.send_response(stream_id, 200, body="héllo wörld".encode("utf-8"))
        elif path == "/reset":
            self.conn.reset_stream(stream_id, error_code=h2.errors.ErrorCodes.INTERNAL_ERROR)
            await self.flush()
        elif path == "/refuse":
            self.conn.reset_stream(stream_id, error_code=h2.errors.ErrorCodes.NO_ERROR)
            await self.flush()
        elif path == "/truncate":
            self.conn.send_headers(stream_id, [(":status", "200")])
            self.conn.send_data(stream_id, b"partial")
            await self.flush()
            await asyncio.sleep(0)
            self.conn.reset_stream(stream_id, error_code=h2.errors.ErrorCodes.NO_ERROR)
            await self.flush()
        elif path == "/goaway":
            await self.send_json(stream_id, {"args": args})
            self.conn.close_connection(last_stream_id=stream_id)
            await self.flush()
        elif path == "/close":
            await self.stream.aclose()
        else:
            await self.send_response(stream_id, 404, body=b"not found")

    async def send_json(self, stream_id: int, payload: Any, status: int = 200) -> None:
        await self.send_response(
            stream_id,
            status,
            [("content-type", "application/json")],
            body=json.dumps(payload).encode("utf-8"),
        )

    async def send_response(
        self,
        stream_id: int,
        status: int,
        headers: Optional[List[Tuple[str, str]]] = None,
        body: bytes = b"",
        chunks: Optional[List[bytes]] = None,
    ) -> None:
        if chunks is None:
            size = self.conn.max_outbound_frame_size
            chunks = [body[i:i + size] for i in range(0, len(body), size)]

        self.conn.send_headers(
            stream_id,
            [(":status", str(status))] + (headers or []),
            end_stream=not chunks,
        )
        await self.flush()
        for index, chunk in enumerate(chunks):
            self.conn.send_data(stream_id, chunk, end_stream=index == len(chunks) - 1)
            await self.flush()
            await asyncio.sleep(0)


class FakeTimer:
    """Handle returned by FakeScheduler.call_later."""

    def __init__(self, when: float, delay: float, callback: Callable[..., Any], args: tuple) -> None:
        self.when = when
        self.delay = delay
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Manually advanced clock implementing ``call_later``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: List[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> FakeTimer:
        timer = FakeTimer(self.now + delay, delay, callback, args)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[FakeTimer]:
        return [timer for timer in self.timers if not timer.cancelled]

    def advance(self, seconds: float) -> None:
        self.now += seconds
        while True:
            due = [timer for timer in self.pending if timer.when <= self.now]
            if not due:
                return
            timer = min(due, key=lambda t: t.when)
            self.timers.remove(timer)
            timer.callback(*timer.args)


@pytest.fixture
def servers() -> List[H2TestServer]:
    """Servers started by the mock backend, in connection order."""
    return []


@pytest.fixture
def backend(servers):
    """Mock backend whose connections are served by H2TestServer."""
    async def serve(stream: MockNetworkStream) -> None:
        server = H2TestServer(stream)
        servers.append(server)
        await server.serve()

    return MockNetworkBackend(server_factory=serve)


@pytest_asyncio.fixture
async def client(backend):
    """HTTP2Client wired to the in-process server."""
    client = HTTP2Client(backend=backend)
    yield client
    await asyncio.wait_for(client.disconnect_all(), timeout=5.0)
    await backend.aclose()


@pytest.fixture
def fake_scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def stream_pair():
    """Connected pair of mock streams."""
    return MockNetworkStream.pair()
