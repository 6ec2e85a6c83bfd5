"""Log sources: the collaborator boundary plus a file-backed implementation.

FileLogFactory maps a workload onto the filesystem. A directory is a workload
whose ``*.log`` files are its containers; a plain file is a single container.
"""

import glob
import logging
import os
import queue
import threading
from typing import Iterable, Protocol, runtime_checkable

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from logtail.config import SessionOptions
from logtail.models import LogLine

logger = logging.getLogger(__name__)

LOG_SUFFIX = ".log"


class StreamClosed(Exception):
    """The log stream ended without being cancelled."""


@runtime_checkable
class LogFactory(Protocol):
    def open_stream(
        self,
        path: str,
        container: str,
        options: SessionOptions,
        cancel: threading.Event,
    ) -> Iterable[LogLine]: ...


def _container_name(path: str) -> str:
    name = os.path.basename(path)
    return name[: -len(LOG_SUFFIX)] if name.endswith(LOG_SUFFIX) else name


def resolve_files(path: str, container: str) -> dict[str, str]:
    """Map absolute log file paths to their container labels."""
    if os.path.isfile(path):
        abs_path = os.path.abspath(path)
        return {abs_path: _container_name(abs_path)}
    if not os.path.isdir(path):
        raise FileNotFoundError(f"no such log path: {path}")
    if container:
        return {os.path.abspath(os.path.join(path, container + LOG_SUFFIX)): container}
    return {
        os.path.abspath(p): _container_name(p)
        for p in sorted(glob.glob(os.path.join(path, "*" + LOG_SUFFIX)))
    }


def _split_lines(data: bytes) -> list[bytes]:
    return [line.rstrip(b"\r") for line in data.split(b"\n")]


def read_tail(path: str, container: str, lines: int) -> list[LogLine]:
    """Return the last `lines` lines currently on disk for the container(s)."""
    if lines <= 0:
        return []
    out: list[LogLine] = []
    for file_path, label in resolve_files(path, container).items():
        try:
            with open(file_path, "rb") as f:
                data = f.read()
        except FileNotFoundError:
            logger.debug("Log file %s does not exist yet", file_path)
            continue
        chunks = _split_lines(data)
        if chunks and chunks[-1] == b"":
            chunks.pop()
        out.extend(LogLine(raw, label) for raw in chunks[-lines:])
    return out[-lines:]


class _TailHandler(FileSystemEventHandler):
    """Reads lines appended to the watched files and queues them."""

    def __init__(self, files: dict[str, str], q: queue.Queue, watch_dir: str | None = None):
        super().__init__()
        self._files = dict(files)
        self._queue = q
        # Set in aggregate mode: new *.log files in this directory join the stream.
        self._watch_dir = watch_dir
        self._handles: dict[str, object] = {}
        self._partial: dict[str, bytes] = {}
        self._inodes: dict[str, int] = {}
        self._lock = threading.Lock()

    def open_all(self):
        with self._lock:
            for path in self._files:
                self._open(path, seek_end=True)

    def _open(self, path: str, seek_end: bool):
        try:
            fh = open(path, "rb")
        except FileNotFoundError:
            logger.debug("Waiting for %s to appear", path)
            return
        if seek_end:
            fh.seek(0, os.SEEK_END)
        self._handles[path] = fh
        self._inodes[path] = os.fstat(fh.fileno()).st_ino
        logger.debug("Opened %s at offset %d (inode=%d)", path, fh.tell(), self._inodes[path])

    def _drain(self, path: str, fh, final: bool = False):
        """Queue every complete line from `fh`; with `final`, the partial too."""
        data = self._partial.pop(path, b"") + fh.read()
        if not data:
            return
        lines = _split_lines(data)
        # The last element is a partial line, or "" when data ends with \n.
        if lines[-1] and not final:
            self._partial[path] = lines[-1]
            lines = lines[:-1]
        elif not lines[-1]:
            lines = lines[:-1]
        label = self._files[path]
        for raw in lines:
            self._queue.put(LogLine(raw, label))

    def _read_new_lines(self, path: str):
        if path not in self._handles:
            self._open(path, seek_end=False)
        fh = self._handles.get(path)
        if fh is None:
            return

        try:
            stat = os.stat(path)
        except FileNotFoundError:
            return

        if stat.st_ino != self._inodes.get(path):
            logger.info("File rotated (inode changed): %s", path)
            self._drain(path, fh, final=True)
            fh.close()
            del self._handles[path]
            self._open(path, seek_end=False)
            fh = self._handles.get(path)
            if fh is None:
                return
        elif stat.st_size < fh.tell():
            logger.info("File truncated: %s", path)
            fh.seek(0)
            self._partial.pop(path, None)

        self._drain(path, fh)

    def poll(self):
        """Read from every watched file; covers events the watcher missed."""
        with self._lock:
            for path in self._files:
                self._read_new_lines(path)

    def on_modified(self, event):
        if event.is_directory:
            return
        path = os.path.abspath(event.src_path)
        with self._lock:
            if path in self._files:
                self._read_new_lines(path)

    def on_created(self, event):
        if event.is_directory:
            return
        path = os.path.abspath(event.src_path)
        with self._lock:
            if path not in self._files and self._watch_dir is not None:
                if os.path.dirname(path) == self._watch_dir and path.endswith(LOG_SUFFIX):
                    logger.info("New container log: %s", path)
                    self._files[path] = _container_name(path)
            if path in self._files:
                self._read_new_lines(path)

    def close_all(self):
        with self._lock:
            for fh in self._handles.values():
                fh.close()
            self._handles.clear()
            self._inodes.clear()
            self._partial.clear()


class _LogStream:
    """Iterator over tailed lines; ends once the cancel event is set."""

    def __init__(self, handler: _TailHandler, observer, q: queue.Queue,
                 cancel: threading.Event, poll_interval: float):
        self._handler = handler
        self._observer = observer
        self._queue = q
        self._cancel = cancel
        self._poll_interval = poll_interval
        self._closed = False

    def __iter__(self):
        return self

    def __next__(self) -> LogLine:
        while not self._cancel.is_set() and not self._closed:
            try:
                return self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                self._handler.poll()
        self.close()
        raise StopIteration

    def close(self):
        """Stop the watcher and release file handles."""
        if self._closed:
            return
        self._closed = True
        self._observer.stop()
        self._observer.join(timeout=5)
        self._handler.close_all()


class FileLogFactory:
    """Streams lines appended to log files, watched with watchdog."""

    def __init__(self, poll_interval: float = 0.2):
        self._poll_interval = poll_interval

    def open_stream(
        self,
        path: str,
        container: str,
        options: SessionOptions,
        cancel: threading.Event,
    ) -> _LogStream:
        """Start watching and return an iterator over newly written lines.

        The iterator ends once `cancel` is set. Raises FileNotFoundError if
        `path` does not exist.
        """
        files = resolve_files(path, container)
        aggregate = os.path.isdir(path) and not container
        watch_dir = os.path.abspath(path) if os.path.isdir(path) else os.path.dirname(
            os.path.abspath(path)
        )

        q: queue.Queue = queue.Queue()
        handler = _TailHandler(files, q, watch_dir if aggregate else None)
        handler.open_all()

        observer = Observer()
        observer.schedule(handler, watch_dir, recursive=False)
        observer.start()
        logger.info("Tailing %d file(s) under %s", len(files), watch_dir)
        return _LogStream(handler, observer, q, cancel, self._poll_interval)
