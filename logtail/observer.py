"""Observer protocol between a LogSession and the presentation layer."""

import logging
import threading
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class LogObserver(Protocol):
    def on_data_batch(self, lines: list[bytes]) -> None: ...

    def on_clear(self) -> None: ...

    def on_terminated(self, cause: BaseException | None) -> None: ...

    def on_paused(self) -> None: ...

    def on_resumed(self) -> None: ...

    def on_failed(self, error: Exception) -> None: ...


class ObserverRegistry:
    """Ordered, thread-safe list of observers.

    Events are delivered in registration order to a snapshot of the list, so
    registering while a delivery is in flight never races with it.
    """

    def __init__(self):
        self._observers: list[LogObserver] = []
        self._lock = threading.Lock()

    def add(self, observer: LogObserver):
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def remove(self, observer: LogObserver):
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def __len__(self) -> int:
        with self._lock:
            return len(self._observers)

    def _fire(self, event: str, *args):
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                getattr(observer, event)(*args)
            except Exception:
                logger.exception("Observer %r failed handling %s", observer, event)

    def data_batch(self, lines: list[bytes]):
        self._fire("on_data_batch", lines)

    def clear(self):
        self._fire("on_clear")

    def terminated(self, cause: BaseException | None):
        self._fire("on_terminated", cause)

    def paused(self):
        self._fire("on_paused")

    def resumed(self):
        self._fire("on_resumed")

    def failed(self, error: Exception):
        self._fire("on_failed", error)
