"""Shared fixtures for the logtail test suite."""

import threading

import pytest

from logtail.config import SessionOptions
from logtail.models import LogLine


class RecordingView:
    """Observer that counts every callback and keeps the last batch."""

    def __init__(self):
        self.data: list[bytes] | None = None
        self.data_called = 0
        self.clear_called = 0
        self.paused_called = 0
        self.resumed_called = 0
        self.terminations: list = []
        self.failures: list = []
        self.events: list[str] = []
        self.done = threading.Event()

    def on_data_batch(self, lines):
        self.data = lines
        self.data_called += 1
        self.events.append("data")

    def on_clear(self):
        self.data = None
        self.clear_called += 1
        self.events.append("clear")

    def on_terminated(self, cause):
        self.terminations.append(cause)
        self.events.append("terminated")
        self.done.set()

    def on_paused(self):
        self.paused_called += 1
        self.events.append("paused")

    def on_resumed(self):
        self.resumed_called += 1
        self.events.append("resumed")

    def on_failed(self, error):
        self.failures.append(error)
        self.events.append("failed")


class StubFactory:
    """Log source yielding `lines`, then blocking until cancelled.

    With `end=True` the stream ends after the lines instead of blocking;
    `error` is raised after the lines when given.
    """

    def __init__(self, lines=(), end=False, error=None):
        self._lines = list(lines)
        self._end = end
        self._error = error
        self.opened: list[tuple[str, str]] = []
        self.closed = threading.Event()

    def open_stream(self, path, container, options, cancel):
        self.opened.append((path, container))
        return self._stream(cancel)

    def _stream(self, cancel):
        try:
            for line in self._lines:
                yield line
            if self._error is not None:
                raise self._error
            if not self._end:
                cancel.wait()
        finally:
            self.closed.set()


def make_options(capacity: int, **kwargs) -> SessionOptions:
    kwargs.setdefault("notification_interval", 10.0)
    return SessionOptions(path="fred", container="blee", capacity=capacity, **kwargs)


def make_lines(*texts: str) -> list[LogLine]:
    return [LogLine.from_string(t) for t in texts]


@pytest.fixture()
def view() -> RecordingView:
    return RecordingView()


@pytest.fixture()
def stub_factory() -> StubFactory:
    return StubFactory()


@pytest.fixture()
def options_for():
    """Return a SessionOptions builder (path "fred", container "blee")."""
    return make_options


@pytest.fixture()
def lines_of():
    """Return a builder turning strings into LogLines."""
    return make_lines


@pytest.fixture()
def factory_cls():
    return StubFactory
