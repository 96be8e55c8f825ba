"""
Cancellation tokens for h2_fetch.

An ``AbortController`` owns an ``AbortSignal``; the signal is handed
to ``fetch`` and the controller is used to cancel the request.
"""

import logging
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)

AbortCallback = Callable[[], None]


class AbortSignal:
    """Read-only side of a cancellation token."""

    def __init__(self) -> None:
        self._aborted = False
        self._reason: Optional[Any] = None
        self._listeners: List[AbortCallback] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> Optional[Any]:
        return self._reason

    def add_listener(self, callback: AbortCallback) -> None:
        """Register a callback fired once when the signal is aborted."""
        self._listeners.append(callback)

    def remove_listener(self, callback: AbortCallback) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _abort(self, reason: Optional[Any]) -> None:
        if self._aborted:
            return
        self._aborted = True
        self._reason = reason
        listeners, self._listeners = self._listeners, []
        logger.debug(f"Signal aborted, notifying {len(listeners)} listener(s)")
        for callback in listeners:
            callback()


class AbortController:
    """Owner side of a cancellation token."""

    def __init__(self) -> None:
        self._signal = AbortSignal()

    @property
    def signal(self) -> AbortSignal:
        return self._signal

    def abort(self, reason: Optional[Any] = None) -> None:
        """Abort the signal. Calling it again has no effect."""
        self._signal._abort(reason)
