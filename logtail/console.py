"""ConsoleView: terminal observer that redraws the most recent lines."""

import logging
import shutil
import sys
import threading

from logtail.source import StreamClosed

logger = logging.getLogger(__name__)

# ANSI control sequences
CLEAR_SCREEN = "\033[2J\033[H"
DIM = "\033[2m"
RESET = "\033[0m"


class ConsoleView:
    """Renders log batches to a terminal, keeping the last screenful visible."""

    def __init__(self, stream=None, rows: int | None = None, redraw: bool = True):
        self._stream = stream if stream is not None else sys.stdout
        self._rows = rows
        self._redraw = redraw
        self._lines: list[bytes] = []
        self._status = ""
        self._lock = threading.Lock()
        self.terminated = threading.Event()

    @property
    def status(self) -> str:
        return self._status

    @property
    def lines(self) -> list[bytes]:
        with self._lock:
            return list(self._lines)

    def _visible_rows(self) -> int:
        if self._rows is not None:
            return self._rows
        # One row reserved for the status line.
        return max(shutil.get_terminal_size().lines - 1, 1)

    def _render(self):
        rows = self._visible_rows()
        out = []
        if self._redraw:
            out.append(CLEAR_SCREEN)
        for line in self._lines[-rows:]:
            out.append(line.decode("utf-8", errors="replace") + "\n")
        if self._status:
            out.append(f"{DIM}-- {self._status} --{RESET}\n")
        self._stream.write("".join(out))
        self._stream.flush()

    def on_data_batch(self, lines: list[bytes]) -> None:
        with self._lock:
            self._lines = list(lines)
            self._render()

    def on_clear(self) -> None:
        with self._lock:
            self._lines = []

    def on_terminated(self, cause: BaseException | None) -> None:
        with self._lock:
            if cause is None:
                self._status = "stopped"
            elif isinstance(cause, StreamClosed):
                self._status = "stream closed"
            else:
                self._status = f"failed: {cause}"
            self._render()
        self.terminated.set()

    def on_paused(self) -> None:
        with self._lock:
            self._status = "paused"
            self._render()

    def on_resumed(self) -> None:
        with self._lock:
            self._status = ""

    def on_failed(self, error: Exception) -> None:
        with self._lock:
            self._status = str(error)
            self._render()
