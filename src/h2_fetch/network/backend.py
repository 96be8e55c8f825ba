"""
Network backend interface for h2_fetch.

This module defines the NetworkBackend interface used by the
session registry to open connections to an origin.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from .stream import NetworkStream


class NetworkBackend(ABC):
    """
    Interface for network backend implementations.

    A backend opens TCP connections and upgrades them to TLS with
    ALPN, which is how an HTTP/2 session is negotiated over https.
    """

    @abstractmethod
    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
    ) -> NetworkStream:
        """
        Connect to a TCP endpoint.

        Args:
            host: The hostname or IP address to connect to.
            port: The port number to connect to.
            timeout: Optional timeout in seconds for the connection.

        Returns:
            A NetworkStream representing the TCP connection.

        Raises:
            OSError: If the connection fails.
            asyncio.TimeoutError: If the connection times out.
        """
        pass

    @abstractmethod
    async def connect_tls(
        self,
        stream: NetworkStream,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        alpn_protocols: Optional[List[str]] = None,
    ) -> NetworkStream:
        """
        Upgrade a TCP stream to TLS.

        Args:
            stream: The existing TCP NetworkStream to upgrade.
            host: The hostname for SNI and certificate verification.
            port: The port number (used for logging).
            timeout: Optional timeout in seconds for the TLS handshake.
            alpn_protocols: ALPN protocols to offer, e.g. ['h2'].

        Returns:
            A NetworkStream whose "selected_alpn_protocol" extra info
            reports the negotiated protocol.

        Raises:
            OSError: If the TLS handshake fails.
            asyncio.TimeoutError: If the TLS handshake times out.
        """
        pass
