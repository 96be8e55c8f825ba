"""
HTTP primitives for h2_fetch.

This module defines the value types exchanged between the request
executor and its callers: the connection-pool key, the header
multi-map and the finished response.
"""

import json
from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Tuple,
)
from urllib.parse import urlsplit

from .exceptions import ConfigurationError


# Type aliases for better readability
HeaderList = List[Tuple[str, str]]
StatusCode = int

DEFAULT_PORTS = {"http": 80, "https": 443}

# HTTP/2 forbids connection-specific header fields (RFC 9113, 8.2.2)
CONNECTION_SPECIFIC_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-connection",
    "transfer-encoding",
    "upgrade",
})

PSEUDO_HEADER_ORDER = (":method", ":scheme", ":authority", ":path")


class Origin(NamedTuple):
    """Immutable scheme/host/port triple used as the connection-pool key."""
    scheme: str
    host: str
    port: int

    @classmethod
    def from_url(cls, url: str) -> "Origin":
        """
        Derive the origin of an absolute URL.

        Raises:
            ConfigurationError: If the URL is not an absolute http(s) URL
        """
        try:
            parsed = urlsplit(url)
            port = parsed.port
        except ValueError as e:
            raise ConfigurationError(f"Invalid URL: {url}", cause=e)

        scheme = parsed.scheme.lower()
        if scheme not in DEFAULT_PORTS:
            raise ConfigurationError(f"Unsupported URL scheme: {url}")
        if not parsed.hostname:
            raise ConfigurationError(f"Invalid URL: {url}")

        return cls(
            scheme=scheme,
            host=parsed.hostname,
            port=port or DEFAULT_PORTS[scheme],
        )

    @property
    def authority(self) -> str:
        """Host, plus the port when it is not the scheme default."""
        host = f"[{self.host}]" if ":" in self.host else self.host
        if self.port == DEFAULT_PORTS[self.scheme]:
            return host
        return f"{host}:{self.port}"

    @property
    def is_secure(self) -> bool:
        return self.scheme == "https"

    def __str__(self) -> str:
        return f"{self.scheme}://{self.authority}"


def request_target(url: str) -> str:
    """Return the ``:path`` value for a URL: path plus query, never the fragment."""
    parsed = urlsplit(url)
    path = parsed.path or "/"
    if parsed.query:
        path += "?" + parsed.query
    return path


class Headers:
    """
    Ordered, case-insensitive multi-map of header names to string values.

    Repeated headers such as ``set-cookie`` are kept as separate
    entries; ``get`` joins them the way the fetch API does while
    ``get_all`` returns them individually.
    """

    def __init__(self, items: Optional[Iterable[Tuple[str, str]]] = None) -> None:
        self._items: HeaderList = []
        if items is not None:
            for name, value in items:
                self.append(name, value)

    def append(self, name: str, value: str) -> None:
        self._items.append((name.lower(), str(value)))

    def get(self, name: str) -> Optional[str]:
        values = self.get_all(name)
        if not values:
            return None
        return ", ".join(values)

    def get_all(self, name: str) -> List[str]:
        name = name.lower()
        return [value for key, value in self._items if key == name]

    def keys(self) -> List[str]:
        seen: Dict[str, None] = {}
        for name, _ in self._items:
            seen.setdefault(name, None)
        return list(seen)

    def items(self) -> HeaderList:
        return list(self._items)

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        name = name.lower()
        return any(key == name for key, _ in self._items)

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Headers):
            return NotImplemented
        return self._items == other._items

    def __repr__(self) -> str:
        return f"Headers({self._items!r})"


def build_request_headers(
    origin: Origin,
    path: str,
    method: str,
    headers: Optional[Mapping[str, Any]] = None,
    content_length: Optional[int] = None,
) -> HeaderList:
    """
    Build the outgoing HTTP/2 header block for a request.

    Caller headers are merged first so none are dropped; the
    pseudo-headers and ``content-length`` are applied afterwards and
    always win over a caller entry of the same name.

    Args:
        origin: Origin the request is sent to
        path: Request target (path and query)
        method: HTTP method
        headers: Caller supplied headers
        content_length: Body length in bytes, or None without a body

    Returns:
        List of (name, value) tuples with pseudo-headers first

    Raises:
        ConfigurationError: If a connection-specific header or an unknown
            pseudo-header is supplied
    """
    merged: Dict[str, str] = {}

    for name, value in (headers or {}).items():
        key = name.lower()
        if key in CONNECTION_SPECIFIC_HEADERS:
            raise ConfigurationError(f"Connection-specific header not allowed in HTTP/2: {name}")
        if key.startswith(":") and key not in PSEUDO_HEADER_ORDER:
            raise ConfigurationError(f"Unknown pseudo-header: {name}")
        merged[key] = str(value)

    merged[":method"] = method
    merged[":scheme"] = origin.scheme
    merged[":authority"] = origin.authority
    merged[":path"] = path

    if content_length is not None:
        merged["content-length"] = str(content_length)

    pseudo = [(name, merged[name]) for name in PSEUDO_HEADER_ORDER]
    regular = [
        (name, value) for name, value in merged.items()
        if not name.startswith(":")
    ]
    return pseudo + regular


@dataclass(frozen=True)
class Response:
    """
    Immutable HTTP response representation.

    The body is fully buffered before the response is constructed,
    so ``text()`` and ``json()`` never touch the network.
    """

    ok: bool
    url: str
    status: StatusCode
    headers: Headers = field(default_factory=Headers)
    content: bytes = b""

    @classmethod
    def create(
        cls,
        url: str,
        status: StatusCode,
        headers: Optional[Headers] = None,
        content: bytes = b"",
    ) -> "Response":
        """Create a Response, deriving ``ok`` from the status code."""
        return cls(
            ok=200 <= status <= 399,
            url=url,
            status=status,
            headers=headers if headers is not None else Headers(),
            content=content,
        )

    async def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    async def json(self) -> Any:
        return json.loads(await self.text())
