"""
asyncio network backend for h2_fetch.

Connections are plain asyncio streams; TLS is negotiated in place
with ``StreamWriter.start_tls`` so ALPN can select HTTP/2.
"""

import asyncio
import logging
import ssl
from typing import Any, List, Optional

from .backend import NetworkBackend
from .stream import NetworkStream
from .utils import create_ssl_context

logger = logging.getLogger(__name__)


class AsyncioNetworkStream(NetworkStream):
    """NetworkStream over an asyncio StreamReader/StreamWriter pair."""

    DEFAULT_READ_SIZE = 65536

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._closed = False

    async def read(self, max_bytes: Optional[int] = None) -> bytes:
        if self._closed:
            return b""
        return await self._reader.read(max_bytes or self.DEFAULT_READ_SIZE)

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise BrokenPipeError("Stream is closed")
        self._writer.write(data)
        await self._writer.drain()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (OSError, ssl.SSLError) as e:
            logger.debug(f"Error while closing stream: {e}")

    async def start_tls(
        self,
        context: ssl.SSLContext,
        server_hostname: str,
        timeout: Optional[float] = None,
    ) -> None:
        await asyncio.wait_for(
            self._writer.start_tls(context, server_hostname=server_hostname),
            timeout=timeout,
        )

    def get_extra_info(self, name: str) -> Optional[Any]:
        if name == "selected_alpn_protocol":
            ssl_object = self._writer.get_extra_info("ssl_object")
            return ssl_object.selected_alpn_protocol() if ssl_object else None
        return self._writer.get_extra_info(name)

    @property
    def is_closed(self) -> bool:
        return self._closed


class AsyncioNetworkBackend(NetworkBackend):
    """
    Default network backend built on asyncio streams.

    Args:
        ssl_context: Context used for TLS; one offering 'h2' via ALPN
                     is created when omitted.
    """

    def __init__(self, ssl_context: Optional[ssl.SSLContext] = None) -> None:
        self._ssl_context = ssl_context

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
    ) -> AsyncioNetworkStream:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout,
        )
        logger.debug(f"TCP connection established to {host}:{port}")
        return AsyncioNetworkStream(reader, writer)

    async def connect_tls(
        self,
        stream: NetworkStream,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        alpn_protocols: Optional[List[str]] = None,
    ) -> NetworkStream:
        if not isinstance(stream, AsyncioNetworkStream):
            raise TypeError("AsyncioNetworkBackend can only upgrade its own streams")

        context = self._ssl_context or create_ssl_context(alpn_protocols)
        await stream.start_tls(context, server_hostname=host, timeout=timeout)
        logger.debug(
            f"TLS established to {host}:{port}, "
            f"alpn={stream.get_extra_info('selected_alpn_protocol')}"
        )
        return stream
