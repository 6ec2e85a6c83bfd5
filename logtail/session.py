"""LogSession: buffered, filterable live view over one workload's log stream.

Lines pushed through ``append`` are only stored; observers hear about them on
the next notification tick, so a noisy stream cannot flood the UI. Operations
that change what is visible (``set``, ``filter``, ``clear_filter``, ``clear``)
notify immediately.

Threading model per ``start()``:
    feed thread        iterates the collaborator's stream and appends lines
    supervisor thread  ticks every notification_interval, flushes when dirty,
                       watches for cancellation and reports termination once
"""

import logging
import threading
from enum import Enum
from typing import Iterable

from logtail import matcher
from logtail.buffer import LineBuffer
from logtail.config import ConfigError, SessionOptions
from logtail.matcher import FilterError, FilterSpec
from logtail.models import LogLine
from logtail.observer import LogObserver, ObserverRegistry
from logtail.source import LogFactory, StreamClosed

logger = logging.getLogger(__name__)

_JOIN_TIMEOUT = 5.0


class SessionError(RuntimeError):
    """Raised when a session operation is invoked in the wrong state."""


class SessionState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class _Run:
    """Bookkeeping for one start()..termination cycle."""

    def __init__(self, cancel: threading.Event):
        self.cancel = cancel              # caller-owned context
        self.stop = threading.Event()     # set on stop(), cancel or stream end
        self.cause: BaseException | None = None
        self.feed: threading.Thread | None = None
        self.supervisor: threading.Thread | None = None


class LogSession:
    def __init__(self, options: SessionOptions):
        self._options = options
        self._factory: LogFactory | None = None
        self._buffer: LineBuffer | None = None
        self._filter: FilterSpec | None = None
        self._container = ""
        self._single_container = ""
        self._dirty = False
        self._paused = False
        self._state = SessionState.IDLE
        self._run: _Run | None = None
        self._last_run: _Run | None = None
        self._observers = ObserverRegistry()
        # _mx guards buffer, filter and flags. _fire_mx is taken before _mx by
        # every notifying operation so deliveries keep invocation order.
        self._mx = threading.RLock()
        self._fire_mx = threading.RLock()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def path(self) -> str:
        return self._options.path

    @property
    def container(self) -> str:
        with self._mx:
            return self._container

    @property
    def options(self) -> SessionOptions:
        return self._options

    @property
    def state(self) -> SessionState:
        with self._mx:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state is SessionState.RUNNING

    @property
    def is_paused(self) -> bool:
        with self._mx:
            return self._paused

    @property
    def filter_expression(self) -> str:
        with self._mx:
            return self._filter.expression if self._filter else ""

    def __len__(self) -> int:
        with self._mx:
            return len(self._buffer) if self._buffer is not None else 0

    def add_listener(self, observer: LogObserver):
        self._observers.add(observer)

    def remove_listener(self, observer: LogObserver):
        self._observers.remove(observer)

    def lines(self) -> list[bytes]:
        """Return the current rendered view without notifying anyone."""
        with self._mx:
            self._require_init()
            captured = self._capture()
        return self._render(captured)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self, factory: LogFactory):
        """Bind the log source and resolve the effective container."""
        try:
            self._options.validate()
        except ConfigError:
            logger.error("Invalid options for %s", self._options.path or "<no path>")
            raise
        with self._mx:
            if self._run is not None:
                raise SessionError(f"session for {self.path} is running")
            self._factory = factory
            self._buffer = LineBuffer(self._options.capacity)
            self._container = self._options.effective_container()
            self._single_container = self._container
            self._filter = None
            self._dirty = False
        if self._options.filter:
            self.filter(self._options.filter)

    def start(self, cancel: threading.Event | None = None):
        """Launch the background feed. Setting `cancel` ends the run."""
        with self._mx:
            if self._factory is None:
                raise SessionError("init must be called before start")
            if self._run is not None:
                raise SessionError(f"session for {self.path} is already running")
            run = _Run(cancel if cancel is not None else threading.Event())
            self._run = run
            self._last_run = run
            self._state = SessionState.RUNNING
            container = self._container

        run.feed = threading.Thread(
            target=self._feed, args=(run, container), name="logtail-feed", daemon=True,
        )
        run.supervisor = threading.Thread(
            target=self._supervise, args=(run,), name="logtail-supervisor", daemon=True,
        )
        run.feed.start()
        run.supervisor.start()
        logger.info("Log session started for %s (container=%r)", self.path, container)

    def stop(self):
        """Request termination of the running feed. No-op when not running.

        Returns once the termination has been reported to observers, unless
        called from one of the session's own threads.
        """
        with self._mx:
            run = self._run
            if run is None:
                # The run may have ended on its own and still be reporting.
                run = self._last_run
                if run is None:
                    return
            else:
                self._run = None
                self._state = SessionState.STOPPED
        run.stop.set()
        if threading.current_thread() not in (run.feed, run.supervisor):
            run.supervisor.join(timeout=2 * _JOIN_TIMEOUT)

    def restart(self, cancel: threading.Event | None = None):
        """Stop, drop buffered lines and start a fresh feed."""
        self.stop()
        self.clear()
        self.start(cancel)

    def toggle_all_containers(self):
        """Swap between all containers ("") and the single resolved container.

        Does not notify; callers restart the feed to pick up the change.
        """
        with self._mx:
            if self._container:
                self._single_container = self._container
                self._container = ""
            else:
                self._container = self._single_container
            container = self._container
        logger.info("Container for %s is now %r", self.path, container)

    def pause(self):
        """Suspend interval flushes. Lines keep buffering."""
        with self._fire_mx:
            with self._mx:
                if self._paused:
                    return
                self._paused = True
            self._observers.paused()

    def resume(self):
        """Resume interval flushes, delivering anything buffered meanwhile."""
        with self._fire_mx:
            with self._mx:
                if not self._paused:
                    return
                self._paused = False
                pending = self._dirty
            self._observers.resumed()
            if pending:
                self.notify()

    # ------------------------------------------------------------------
    # Data operations
    # ------------------------------------------------------------------

    def append(self, line: LogLine):
        """Buffer one line. Observers see it on the next flush."""
        with self._mx:
            self._require_init()
            self._buffer.add(line)
            self._dirty = True

    def set(self, lines: Iterable[LogLine]):
        """Replace the buffer wholesale and hard-reset observers."""
        with self._fire_mx:
            with self._mx:
                self._require_init()
                self._buffer.replace_all(lines)
                self._dirty = False
                captured = self._capture()
            view = self._render(captured)
            self._observers.clear()
            self._observers.data_batch(view)

    def notify(self):
        """Push the current view to observers.

        A filtered view replaces what was shown (clear + data); an unfiltered
        one only grows (data).
        """
        with self._fire_mx:
            with self._mx:
                self._require_init()
                self._dirty = False
                if not len(self._buffer):
                    return
                filtered = self._filter is not None
                captured = self._capture()
            view = self._render(captured)
            logger.debug("Flushing %d line(s) for %s", len(view), self.path)
            if filtered:
                self._observers.clear()
            self._observers.data_batch(view)

    def clear(self):
        """Drop every buffered line."""
        with self._fire_mx:
            with self._mx:
                self._require_init()
                self._buffer.clear()
                self._dirty = False
            self._observers.clear()

    def filter(self, expression: str) -> bool:
        """Install a filter over the buffered lines.

        Returns False, keeping the previous filter, if the expression is
        rejected. An empty expression removes the filter.
        """
        try:
            spec = matcher.parse_filter(expression)
        except FilterError as e:
            logger.warning("Rejected filter for %s: %s", self.path, e)
            with self._fire_mx:
                self._observers.failed(e)
            return False
        self._install_filter(spec)
        return True

    def clear_filter(self):
        """Remove the active filter and show every buffered line."""
        self._install_filter(None)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_init(self):
        if self._buffer is None:
            raise SessionError("init must be called first")

    def _capture(self):
        """Take the immutable inputs of the view. Caller holds _mx."""
        show_source = self._options.show_source or not self._container
        return self._filter, self._buffer.snapshot(), show_source

    def _render(self, captured) -> list[bytes]:
        """Filter and highlight a captured view; runs without holding _mx."""
        spec, snapshot, show_source = captured
        return matcher.apply(
            spec,
            snapshot,
            show_timestamp=self._options.show_timestamp,
            show_source=show_source,
        )

    def _install_filter(self, spec: FilterSpec | None):
        with self._fire_mx:
            with self._mx:
                self._require_init()
                self._filter = spec
                self._dirty = False
                if not len(self._buffer):
                    return
                captured = self._capture()
            view = self._render(captured)
            self._observers.clear()
            self._observers.data_batch(view)

    def _flush_if_dirty(self):
        with self._fire_mx:
            with self._mx:
                if not self._dirty or self._paused:
                    return
            self.notify()

    def _feed(self, run: _Run, container: str):
        path = self._options.path
        try:
            stream = self._factory.open_stream(path, container, self._options, run.stop)
            try:
                for line in stream:
                    if run.stop.is_set():
                        break
                    self.append(line)
            finally:
                close = getattr(stream, "close", None)
                if close is not None:
                    close()
            if not run.stop.is_set():
                run.cause = StreamClosed(f"log stream for {path} closed")
        except Exception as e:
            if not run.stop.is_set():
                logger.warning("Log stream for %s failed: %s", path, e)
                run.cause = e
            else:
                logger.debug("Log stream for %s raised during shutdown: %s", path, e)
        finally:
            run.stop.set()

    def _supervise(self, run: _Run):
        interval = self._options.notification_interval
        while not run.cancel.is_set():
            if run.stop.wait(interval):
                break
            self._flush_if_dirty()
        run.stop.set()
        run.feed.join(timeout=_JOIN_TIMEOUT)

        self._flush_if_dirty()
        with self._mx:
            if self._run is run:
                self._run = None
                self._state = SessionState.STOPPED
        logger.info("Log session for %s terminated: %s", self.path, run.cause or "stopped")
        with self._fire_mx:
            self._observers.terminated(run.cause)
