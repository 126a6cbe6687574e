"""Session lifecycle signals.

A running session ends on whichever comes first: the tunnel process exiting or
the user pressing Ctrl+C. Both watchers write to one SignalLatch; the first
write wins and the controller reads the winner once.

Public API (Studs):
    SessionSignal - Why the running state ended
    SignalLatch - Write-once, first-write-wins completion latch
    InterruptListener - Routes SIGINT into a callback while installed
"""

import logging
import signal
import threading
from collections.abc import Callable
from enum import Enum
from types import FrameType
from typing import Any

logger = logging.getLogger(__name__)


class SessionSignal(Enum):
    """Events that end the running state."""

    TUNNEL_ENDED = "tunnel_ended"
    USER_INTERRUPTED = "user_interrupted"


class SignalLatch:
    """Completion latch written by whichever watcher fires first.

    Later writes are ignored. ``fire`` may be called from a signal handler on
    the thread that is blocked in ``wait``, so the guard is re-entrant.
    """

    def __init__(self) -> None:
        self._guard = threading.RLock()
        self._event = threading.Event()
        self._value: SessionSignal | None = None

    @property
    def value(self) -> SessionSignal | None:
        return self._value

    def fire(self, value: SessionSignal) -> bool:
        """Record ``value`` if nothing was recorded yet.

        Returns:
            True if this call won the race
        """
        with self._guard:
            if self._value is not None:
                return False
            self._value = value
            self._event.set()
            return True

    def wait(self, timeout: float | None = None) -> SessionSignal | None:
        """Block until a value is recorded and return it.

        Returns None only if ``timeout`` elapsed first.
        """
        self._event.wait(timeout)
        return self._value


class InterruptListener:
    """Deliver SIGINT to a callback instead of raising KeyboardInterrupt.

    Only valid on the main thread. The previous handler is restored by
    ``restore`` or on leaving the context manager.

    Example:
        >>> latch = SignalLatch()
        >>> with InterruptListener().install(lambda: latch.fire(SessionSignal.USER_INTERRUPTED)):
        ...     latch.wait()
    """

    def __init__(self, signum: int = signal.SIGINT):
        self.signum = signum
        self._previous: Any = None
        self._installed = False

    def install(self, callback: Callable[[], None]) -> "InterruptListener":
        def _handler(signum: int, frame: FrameType | None) -> None:
            logger.debug(f"Received signal {signum}")
            callback()

        self._previous = signal.signal(self.signum, _handler)
        self._installed = True
        return self

    def restore(self) -> None:
        if not self._installed:
            return
        signal.signal(self.signum, self._previous)
        self._installed = False

    def __enter__(self) -> "InterruptListener":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.restore()


__all__ = ["InterruptListener", "SessionSignal", "SignalLatch"]
