"""
Tests for AbortController and AbortSignal.
"""

from h2_fetch.signals import AbortController


class TestAbortController:
    """Test cancellation tokens."""

    def test_initial_state(self) -> None:
        controller = AbortController()
        assert controller.signal.aborted is False
        assert controller.signal.reason is None

    def test_abort_notifies_listeners_once(self) -> None:
        controller = AbortController()
        calls = []
        controller.signal.add_listener(lambda: calls.append("a"))
        controller.signal.add_listener(lambda: calls.append("b"))

        controller.abort("user cancelled")
        controller.abort("again")

        assert calls == ["a", "b"]
        assert controller.signal.aborted is True
        assert controller.signal.reason == "user cancelled"

    def test_removed_listener_not_called(self) -> None:
        controller = AbortController()
        calls = []

        def listener() -> None:
            calls.append(1)

        controller.signal.add_listener(listener)
        controller.signal.remove_listener(listener)
        controller.signal.remove_listener(listener)
        controller.abort()

        assert calls == []
