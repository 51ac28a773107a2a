import threading
from abc import ABC, abstractmethod
from collections.abc import Callable

from loguru import logger


class Timer(ABC):
    """A re-armable single-shot timer.

    Arming an armed timer replaces the pending callback. Subclasses decide how
    the delay actually elapses; the engine only ever talks to this interface.
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    def arm(self, delay_seconds: float, callback: Callable[[], None]) -> None: ...

    @abstractmethod
    def cancel(self) -> None: ...

    @property
    @abstractmethod
    def armed(self) -> bool: ...


class ThreadTimer(Timer):
    """Timer backed by threading.Timer; the callback runs on a daemon thread."""

    def __init__(self, name: str):
        super().__init__(name)
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._lock = threading.Lock()

    def arm(self, delay_seconds: float, callback: Callable[[], None]) -> None:
        with self._lock:
            if self._timer:
                self._timer.cancel()
            self._generation += 1
            self._timer = threading.Timer(
                max(0.0, delay_seconds), self._fire, args=(self._generation, callback)
            )
            self._timer.name = f"{self.name}-timer"
            self._timer.daemon = True
            self._timer.start()
        logger.debug(f"Armed {self.name} timer for {delay_seconds:.1f}s")

    def _fire(self, generation: int, callback: Callable[[], None]) -> None:
        with self._lock:
            # Re-armed or cancelled while this thread was waking up
            if generation != self._generation:
                return
            self._timer = None
        try:
            callback()
        except Exception:
            logger.exception(f"{self.name} timer callback failed")

    def cancel(self) -> None:
        with self._lock:
            self._generation += 1
            if self._timer:
                self._timer.cancel()
                self._timer = None

    @property
    def armed(self) -> bool:
        with self._lock:
            return self._timer is not None


TimerFactory = Callable[[str], Timer]
