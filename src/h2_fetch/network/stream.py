"""
Network stream interface for h2_fetch.

A NetworkStream is the byte pipe an HTTP/2 session is layered on.
Implementations must deliver writes in call order, since frames
serialized by the session are written without an extra lock.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class NetworkStream(ABC):
    """
    Interface for bidirectional byte streams with async I/O.

    An empty read means the peer closed the connection.
    """

    @abstractmethod
    async def read(self, max_bytes: Optional[int] = None) -> bytes:
        """
        Read the next chunk of data from the stream.

        Args:
            max_bytes: Maximum number of bytes to return.

        Returns:
            The data read, or b"" at end of stream.

        Raises:
            OSError: If a network error occurs.
        """
        pass

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """
        Write data to the stream.

        Raises:
            OSError: If the stream is closed or a network error occurs.
        """
        pass

    @abstractmethod
    async def aclose(self) -> None:
        """Close the stream. Closing twice is allowed."""
        pass

    @abstractmethod
    def get_extra_info(self, name: str) -> Optional[Any]:
        """
        Get extra information about the stream.

        Args:
            name: Common values include "peername", "ssl_object" and
                  "selected_alpn_protocol".

        Returns:
            The requested information or None if not available.
        """
        pass

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        """Check if the stream is closed."""
        pass
