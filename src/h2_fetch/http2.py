"""
HTTP/2 connection implementation for h2_fetch.

This module implements the HTTP2Connection class: one multiplexed
session to an origin, driven by the h2 state machine over a
NetworkStream. Each request stream reports to a StreamListener;
the connection itself never settles a request.
"""

import asyncio
import logging
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, List, Optional, Protocol, Set, Tuple

import h2.config
import h2.connection
import h2.errors
import h2.events
import h2.exceptions

from .exceptions import NetworkError
from .http_primitives import HeaderList, Origin
from .network.stream import NetworkStream

logger = logging.getLogger(__name__)

PingCallback = Callable[[Optional[Exception], Optional[float]], None]
CloseCallback = Callable[["HTTP2Connection"], None]


class SessionState(Enum):
    """States of an HTTP/2 session."""
    OPEN = "open"          # Accepting new streams
    CLOSING = "closing"    # Refusing new streams, draining in-flight ones
    CLOSED = "closed"      # Torn down, cannot be reused


class StreamListener(Protocol):
    """Receiver of the events of a single request stream."""

    def on_response(self, headers: HeaderList) -> None: ...

    def on_data(self, chunk: bytes) -> None: ...

    def on_error(self, error: Exception) -> None: ...

    def on_aborted(self) -> None: ...

    def on_close(self) -> None: ...


@dataclass
class _ActiveStream:
    listener: StreamListener
    response_received: bool = False


def _error_code_name(code: int) -> str:
    try:
        return h2.errors.ErrorCodes(code).name
    except ValueError:
        return f"0x{code:x}"


class HTTP2Connection:
    """
    HTTP/2 session manager.

    Owns the socket and the h2 protocol state for one origin. Any number
    of streams may be in flight at once; they share the connection but
    each one reports only to its own listener. ``on_close`` is always the
    last event a listener receives, after which it is detached.
    """

    READ_BUFFER_SIZE = 65536

    def __init__(self, stream: NetworkStream, origin: Origin):
        """
        Initialize HTTP/2 connection.

        Args:
            stream: Connected stream (TLS with 'h2' negotiated, or cleartext
                    with prior knowledge)
            origin: Origin this session serves
        """
        self._stream = stream
        self._origin = origin
        self._h2 = h2.connection.H2Connection(
            config=h2.config.H2Configuration(client_side=True, header_encoding="utf-8")
        )
        self._state = SessionState.OPEN
        self._streams: Dict[int, _ActiveStream] = {}
        self._pings: Dict[bytes, Tuple[PingCallback, float]] = {}
        self._close_callbacks: List[CloseCallback] = []
        self._window_open = asyncio.Event()
        self._closed_event = asyncio.Event()
        self._reader_task: Optional["asyncio.Task[None]"] = None
        self._tasks: Set["asyncio.Task[Any]"] = set()
        self._error: Optional[Exception] = None

        # Metrics
        self._streams_opened = 0
        self._pings_sent = 0
        self._bytes_sent = 0
        self._bytes_received = 0

    async def start(self) -> None:
        """Send the connection preface and start reading frames."""
        self._h2.initiate_connection()
        await self._flush()
        if self._state is SessionState.CLOSED:
            return
        self._reader_task = asyncio.ensure_future(self._read_loop())
        logger.debug(f"HTTP/2 session started for {self._origin}")

    def open_stream(
        self,
        headers: HeaderList,
        listener: StreamListener,
        end_stream: bool = True,
    ) -> int:
        """
        Open a request stream and send its headers.

        Args:
            headers: Complete header block, pseudo-headers first
            listener: Receiver for the stream's events
            end_stream: Whether the request has no body

        Returns:
            The stream id

        Raises:
            NetworkError: If the session is not open or refuses the stream
        """
        if self._state is not SessionState.OPEN:
            raise NetworkError(f"Session to {self._origin} is {self._state.value}")

        stream_id = self._h2.get_next_available_stream_id()
        try:
            self._h2.send_headers(stream_id, headers, end_stream=end_stream)
        except h2.exceptions.ProtocolError as e:
            raise NetworkError(f"Could not open stream: {e}", cause=e)

        self._streams[stream_id] = _ActiveStream(listener)
        self._streams_opened += 1
        self._spawn(self._flush())
        return stream_id

    async def send_body(self, stream_id: int, data: bytes) -> None:
        """
        Send the request body and end the stream.

        Respects the peer's flow-control window and frame size. Stops
        quietly if the stream is closed or reset meanwhile; the listener
        has already been told.
        """
        offset = 0
        try:
            while offset < len(data):
                if stream_id not in self._streams:
                    return
                window = min(
                    self._h2.local_flow_control_window(stream_id),
                    self._h2.max_outbound_frame_size,
                )
                if window <= 0:
                    self._window_open.clear()
                    await self._window_open.wait()
                    continue
                chunk = data[offset:offset + window]
                self._h2.send_data(stream_id, chunk)
                offset += len(chunk)
                await self._flush()

            if stream_id not in self._streams:
                return
            self._h2.end_stream(stream_id)
            await self._flush()
        except h2.exceptions.StreamClosedError:
            logger.debug(f"Stream {stream_id} closed while sending body")
        except h2.exceptions.ProtocolError as e:
            self._fail_stream(stream_id, NetworkError(f"Could not send body: {e}", cause=e))

    def reset_stream(self, stream_id: int) -> None:
        """
        Abandon a stream (RST_STREAM CANCEL).

        The listener receives ``on_aborted`` then ``on_close``; the
        session stays usable for other streams.
        """
        active = self._streams.pop(stream_id, None)
        if active is None:
            return

        if self._state is not SessionState.CLOSED:
            try:
                self._h2.reset_stream(stream_id, error_code=h2.errors.ErrorCodes.CANCEL)
            except h2.exceptions.StreamClosedError:
                logger.debug(f"Stream {stream_id} already closed at protocol level")
            self._spawn(self._flush())

        logger.debug(f"Stream {stream_id} to {self._origin} cancelled")
        active.listener.on_aborted()
        active.listener.on_close()
        self._stream_released()

    def ping(self, callback: PingCallback) -> bool:
        """
        Send a PING frame.

        Args:
            callback: Called as ``callback(None, rtt)`` on acknowledgement,
                      or ``callback(error, None)`` if the session closes first

        Returns:
            False (and nothing is sent) if the session is not open
        """
        if self._state is not SessionState.OPEN:
            return False

        self._pings_sent += 1
        payload = struct.pack(">Q", self._pings_sent)
        self._h2.ping(payload)
        self._pings[payload] = (callback, asyncio.get_running_loop().time())
        self._spawn(self._flush())
        return True

    def close(self) -> None:
        """
        Close the session gracefully.

        New streams are refused at once. GOAWAY is sent and the
        connection torn down when the streams in flight have finished;
        h2 accepts no further frames once GOAWAY has been sent.
        """
        if self._state is not SessionState.OPEN:
            return

        logger.debug(f"Closing session to {self._origin} ({len(self._streams)} active streams)")
        self._state = SessionState.CLOSING
        self._maybe_finish_close()

    def destroy(self, error: Optional[Exception] = None) -> None:
        """
        Tear the session down immediately.

        In-flight streams receive ``on_error(error)``, or ``on_aborted``
        when there is no error and their response had started, then
        ``on_close``.
        """
        if self._state is SessionState.CLOSED:
            return
        if error is not None:
            logger.debug(f"Destroying session to {self._origin}: {error}")
        self._finalize(error, graceful=False)

    async def wait_closed(self) -> None:
        """Wait until the underlying stream has been closed."""
        await self._closed_event.wait()

    def add_close_callback(self, callback: CloseCallback) -> None:
        """Register a callback run once when the session reaches CLOSED."""
        if self._state is SessionState.CLOSED:
            callback(self)
            return
        self._close_callbacks.append(callback)

    def remove_close_callback(self, callback: CloseCallback) -> None:
        if callback in self._close_callbacks:
            self._close_callbacks.remove(callback)

    @property
    def origin(self) -> Origin:
        return self._origin

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is SessionState.OPEN

    @property
    def is_closed(self) -> bool:
        return self._state is SessionState.CLOSED

    @property
    def active_streams(self) -> int:
        return len(self._streams)

    @property
    def error(self) -> Optional[Exception]:
        """The error the session was destroyed with, if any."""
        return self._error

    @property
    def metrics(self) -> Dict[str, Any]:
        """
        Get session metrics.

        Returns:
            Dictionary with session metrics
        """
        return {
            "origin": str(self._origin),
            "state": self._state.value,
            "active_streams": len(self._streams),
            "streams_opened": self._streams_opened,
            "pings_sent": self._pings_sent,
            "bytes_sent": self._bytes_sent,
            "bytes_received": self._bytes_received,
        }

    async def _read_loop(self) -> None:
        try:
            while self._state is not SessionState.CLOSED:
                data = await self._stream.read(self.READ_BUFFER_SIZE)
                if not data:
                    logger.debug(f"Session to {self._origin} closed by peer")
                    self.destroy()
                    return

                self._bytes_received += len(data)
                try:
                    events = self._h2.receive_data(data)
                except h2.exceptions.ProtocolError as e:
                    logger.error(f"HTTP/2 protocol error from {self._origin}: {e}")
                    self.destroy(NetworkError(f"HTTP/2 protocol error: {e}", cause=e))
                    return

                for event in events:
                    self._handle_event(event)
                await self._flush()
        except OSError as e:
            logger.debug(f"Read from {self._origin} failed: {e}")
            self.destroy(NetworkError(f"Connection to {self._origin} lost: {e}", cause=e))

    def _handle_event(self, event: h2.events.Event) -> None:
        if isinstance(event, h2.events.ResponseReceived):
            active = self._streams.get(event.stream_id)
            if active is not None:
                active.response_received = True
                active.listener.on_response(list(event.headers))

        elif isinstance(event, h2.events.DataReceived):
            self._h2.acknowledge_received_data(event.flow_controlled_length, event.stream_id)
            active = self._streams.get(event.stream_id)
            if active is not None and event.data:
                active.listener.on_data(event.data)

        elif isinstance(event, h2.events.StreamEnded):
            active = self._streams.pop(event.stream_id, None)
            if active is not None:
                active.listener.on_close()
                self._stream_released()

        elif isinstance(event, h2.events.StreamReset):
            self._on_stream_reset(event)

        elif isinstance(event, h2.events.PingAckReceived):
            entry = self._pings.pop(event.ping_data, None)
            if entry is not None:
                callback, sent_at = entry
                callback(None, asyncio.get_running_loop().time() - sent_at)

        elif isinstance(event, h2.events.ConnectionTerminated):
            self._on_goaway(event)

        elif isinstance(event, (h2.events.WindowUpdated, h2.events.RemoteSettingsChanged)):
            self._window_open.set()

    def _on_stream_reset(self, event: h2.events.StreamReset) -> None:
        active = self._streams.pop(event.stream_id, None)
        if active is None:
            return

        logger.debug(
            f"Stream {event.stream_id} reset by {self._origin}: "
            f"{_error_code_name(event.error_code)}"
        )
        if event.error_code != h2.errors.ErrorCodes.NO_ERROR:
            active.listener.on_error(NetworkError(
                f"Stream reset by peer: {_error_code_name(event.error_code)}"
            ))
        elif active.response_received:
            active.listener.on_aborted()
        active.listener.on_close()
        self._stream_released()

    def _on_goaway(self, event: h2.events.ConnectionTerminated) -> None:
        code_name = _error_code_name(event.error_code)
        logger.debug(
            f"GOAWAY from {self._origin}: last_stream_id={event.last_stream_id}, "
            f"error={code_name}"
        )
        # No frame is accepted after GOAWAY, so unfinished streams cannot complete
        if event.error_code != h2.errors.ErrorCodes.NO_ERROR or self._streams:
            self.destroy(NetworkError(f"Session to {self._origin} went away: {code_name}"))
            return

        self._finalize(None, graceful=True)

    def _fail_stream(self, stream_id: int, error: Exception) -> None:
        active = self._streams.pop(stream_id, None)
        if active is None:
            return
        active.listener.on_error(error)
        active.listener.on_close()
        self._stream_released()

    def _stream_released(self) -> None:
        self._window_open.set()
        self._maybe_finish_close()

    def _maybe_finish_close(self) -> None:
        if self._state is SessionState.CLOSING and not self._streams:
            self._finalize(None, graceful=True)

    def _finalize(self, error: Optional[Exception], graceful: bool) -> None:
        self._state = SessionState.CLOSED
        self._error = error

        streams, self._streams = self._streams, {}
        for active in streams.values():
            if error is not None:
                active.listener.on_error(error)
            elif active.response_received:
                active.listener.on_aborted()
            active.listener.on_close()

        pings, self._pings = self._pings, {}
        for callback, _ in pings.values():
            callback(error or NetworkError("Session closed before ping acknowledgement"), None)

        self._window_open.set()

        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            callback(self)

        logger.debug(
            f"Session to {self._origin} closed after {self._streams_opened} streams"
        )
        self._spawn(self._shutdown(graceful))

    async def _shutdown(self, graceful: bool) -> None:
        try:
            if graceful:
                self._h2.close_connection()
                await self._flush()
            reader = self._reader_task
            if reader is not None and reader is not asyncio.current_task():
                reader.cancel()
            await self._stream.aclose()
        finally:
            self._closed_event.set()

    async def _flush(self) -> None:
        # data_to_send is taken and written without suspending in between,
        # so frames reach the stream in the order h2 serialized them.
        data = self._h2.data_to_send()
        if not data or self._stream.is_closed:
            return
        try:
            await self._stream.write(data)
            self._bytes_sent += len(data)
        except OSError as e:
            self.destroy(NetworkError(f"Write to {self._origin} failed: {e}", cause=e))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
