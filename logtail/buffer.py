"""LineBuffer: capped window of the most recent log lines."""

import collections
from typing import Iterable

from logtail.models import LogLine


class LineBuffer:
    """In-memory line storage backed by a bounded deque.

    Appending beyond capacity evicts the oldest lines first. Not thread-safe on
    its own; LogSession guards it with its data lock.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity must be > 0, got {capacity}")
        self._lines: collections.deque[LogLine] = collections.deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._lines)

    def add(self, line: LogLine):
        self._lines.append(line)

    def replace_all(self, lines: Iterable[LogLine]):
        """Discard current contents and keep the last `capacity` of `lines`."""
        self._lines.clear()
        self._lines.extend(lines)

    def snapshot(self) -> tuple[LogLine, ...]:
        """Return an immutable ordered copy of the current contents."""
        return tuple(self._lines)

    def clear(self):
        self._lines.clear()
