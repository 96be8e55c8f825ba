"""
Mock network implementations for testing.

This module provides in-memory implementations of NetworkStream and
NetworkBackend. Streams come in connected pairs so a test can run an
HTTP/2 server on one end and the client under test on the other.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from .backend import NetworkBackend
from .stream import NetworkStream


ServerFactory = Callable[["MockNetworkStream"], Awaitable[None]]

_EOF = b""


class MockNetworkStream(NetworkStream):
    """
    Mock network stream for testing.

    A standalone stream reads from the data it was created with (and
    anything added later) and records writes. A paired stream delivers
    its writes to the peer's read side.
    """

    def __init__(self, data: bytes = b""):
        """
        Initialize the mock stream.

        Args:
            data: Initial data to be available for reading.
        """
        self._incoming: "asyncio.Queue[bytes]" = asyncio.Queue()
        self._buffer = b""
        self._eof = False
        self._closed = False
        self._peer: Optional["MockNetworkStream"] = None
        self._extra_info: Dict[str, Any] = {}
        self._write_buffer: List[bytes] = []

        if data:
            self._incoming.put_nowait(data)

    @classmethod
    def pair(cls) -> Tuple["MockNetworkStream", "MockNetworkStream"]:
        """Create two streams connected to each other."""
        left, right = cls(), cls()
        left._peer, right._peer = right, left
        return left, right

    async def read(self, max_bytes: Optional[int] = None) -> bytes:
        """
        Read data from the mock stream.

        Waits until data is available; returns b"" once the peer or this
        stream has been closed.
        """
        if not self._buffer:
            if self._eof:
                return _EOF
            chunk = await self._incoming.get()
            if chunk == _EOF:
                self._eof = True
                return _EOF
            self._buffer = chunk

        if max_bytes is None:
            result, self._buffer = self._buffer, b""
        else:
            result, self._buffer = self._buffer[:max_bytes], self._buffer[max_bytes:]

        return result

    async def write(self, data: bytes) -> None:
        """
        Write data to the mock stream.

        Raises:
            BrokenPipeError: If the stream is closed.
            ConnectionResetError: If the peer has closed.
        """
        if self._closed:
            raise BrokenPipeError("Stream is closed")

        if self._peer is not None:
            if self._peer._closed:
                raise ConnectionResetError("Connection reset by peer")
            if data:
                self._peer._incoming.put_nowait(bytes(data))

        self._write_buffer.append(bytes(data))

    async def aclose(self) -> None:
        """Close the mock stream, signalling end of stream to both sides."""
        if self._closed:
            return
        self._closed = True
        self._incoming.put_nowait(_EOF)
        if self._peer is not None and not self._peer._closed:
            self._peer._incoming.put_nowait(_EOF)

    def get_extra_info(self, name: str) -> Optional[Any]:
        return self._extra_info.get(name)

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def peer(self) -> Optional["MockNetworkStream"]:
        return self._peer

    @property
    def written_data(self) -> bytes:
        """Get all data that was written to the stream."""
        return b"".join(self._write_buffer)

    def set_extra_info(self, name: str, value: Any) -> None:
        self._extra_info[name] = value

    def add_data(self, data: bytes) -> None:
        """Add data to be available for reading."""
        if data:
            self._incoming.put_nowait(data)


class MockNetworkBackend(NetworkBackend):
    """
    Mock network backend for testing.

    Every ``connect_tcp`` creates a fresh stream pair. The server end is
    passed to ``server_factory`` (if given), which runs as a task for
    the lifetime of the connection.

    Args:
        server_factory: Coroutine function serving the server end.
        alpn_protocol: Protocol reported by ``connect_tls``; defaults to
                       the first protocol offered.
    """

    def __init__(
        self,
        server_factory: Optional[ServerFactory] = None,
        alpn_protocol: Optional[str] = None,
    ):
        self._server_factory = server_factory
        self._alpn_protocol = alpn_protocol
        self._connections: List[Tuple[str, int, MockNetworkStream]] = []
        self._tls_connections: List[Tuple[str, int]] = []
        self._refused: Set[Tuple[str, int]] = set()
        self._server_tasks: Set["asyncio.Task[None]"] = set()

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
    ) -> MockNetworkStream:
        """
        Create a mock TCP connection.

        Raises:
            ConnectionRefusedError: If the endpoint was marked with ``refuse``.
        """
        if (host, port) in self._refused:
            raise ConnectionRefusedError(f"Connection refused: {host}:{port}")

        client, server = MockNetworkStream.pair()
        client.set_extra_info("peername", (host, port))
        client.set_extra_info("sockname", ("127.0.0.1", 40000 + len(self._connections)))
        self._connections.append((host, port, client))

        if self._server_factory is not None:
            task = asyncio.ensure_future(self._server_factory(server))
            self._server_tasks.add(task)
            task.add_done_callback(self._server_tasks.discard)

        return client

    async def connect_tls(
        self,
        stream: NetworkStream,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        alpn_protocols: Optional[List[str]] = None,
    ) -> NetworkStream:
        """Mark the stream as TLS and report the negotiated ALPN protocol."""
        if not isinstance(stream, MockNetworkStream):
            raise TypeError("MockNetworkBackend can only upgrade its own streams")

        protocol = self._alpn_protocol
        if protocol is None and alpn_protocols:
            protocol = alpn_protocols[0]

        stream.set_extra_info("ssl_object", True)
        stream.set_extra_info("selected_alpn_protocol", protocol)
        self._tls_connections.append((host, port))
        return stream

    def refuse(self, host: str, port: int) -> None:
        """Make subsequent connections to host:port fail."""
        self._refused.add((host, port))

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def tls_connection_count(self) -> int:
        return len(self._tls_connections)

    def get_connections(self, host: str, port: int) -> List[MockNetworkStream]:
        """Get the client ends of every connection made to host:port."""
        return [
            stream for conn_host, conn_port, stream in self._connections
            if (conn_host, conn_port) == (host, port)
        ]

    async def aclose(self) -> None:
        """Cancel any server tasks that are still running."""
        tasks = list(self._server_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
