"""Tests for the file-backed log source."""

import threading
import time

import pytest

from logtail.config import SessionOptions
from logtail.models import LogLine
from logtail.session import LogSession
from logtail.source import FileLogFactory, LogFactory, read_tail, resolve_files


def _collect(stream, received: list):
    for line in stream:
        received.append(line)


def _wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture()
def workload(tmp_path):
    """A workload directory with two container logs."""
    (tmp_path / "web.log").write_text("web 1\nweb 2\n")
    (tmp_path / "sidecar.log").write_text("side 1\n")
    return tmp_path


class TestResolveFiles:
    def test_single_file(self, workload):
        files = resolve_files(str(workload / "web.log"), "")
        assert list(files.values()) == ["web"]

    def test_directory_single_container(self, workload):
        files = resolve_files(str(workload), "sidecar")
        assert list(files.values()) == ["sidecar"]

    def test_directory_all_containers(self, workload):
        files = resolve_files(str(workload), "")
        assert sorted(files.values()) == ["sidecar", "web"]

    def test_missing_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            resolve_files(str(tmp_path / "nope"), "")


class TestReadTail:
    def test_last_lines(self, workload):
        lines = read_tail(str(workload), "web", 1)
        assert lines == [LogLine(b"web 2", "web")]

    def test_aggregate(self, workload):
        lines = read_tail(str(workload), "", 10)
        assert sorted(line.raw for line in lines) == [b"side 1", b"web 1", b"web 2"]

    def test_zero_lines(self, workload):
        assert read_tail(str(workload), "web", 0) == []

    def test_container_without_file(self, workload):
        assert read_tail(str(workload), "db", 5) == []


class TestFileLogFactory:
    def test_is_a_log_factory(self):
        assert isinstance(FileLogFactory(), LogFactory)

    def test_streams_appended_lines(self, workload):
        cancel = threading.Event()
        stream = FileLogFactory(poll_interval=0.05).open_stream(
            str(workload), "web", SessionOptions(), cancel,
        )
        received: list[LogLine] = []
        t = threading.Thread(target=_collect, args=(stream, received), daemon=True)
        t.start()

        with open(workload / "web.log", "a") as f:
            f.write("web 3\nweb ")
            f.flush()
            f.write("4\n")

        assert _wait_for(lambda: len(received) >= 2)
        cancel.set()
        t.join(timeout=2)

        assert not t.is_alive()
        assert received == [LogLine(b"web 3", "web"), LogLine(b"web 4", "web")]

    def test_aggregate_tags_sources(self, workload):
        cancel = threading.Event()
        stream = FileLogFactory(poll_interval=0.05).open_stream(
            str(workload), "", SessionOptions(), cancel,
        )
        received: list[LogLine] = []
        t = threading.Thread(target=_collect, args=(stream, received), daemon=True)
        t.start()

        with open(workload / "sidecar.log", "a") as f:
            f.write("side 2\n")
        (workload / "db.log").write_text("db 1\n")

        assert _wait_for(lambda: len(received) >= 2)
        cancel.set()
        t.join(timeout=2)

        assert sorted((line.source, line.raw) for line in received) == [
            ("db", b"db 1"), ("sidecar", b"side 2"),
        ]

    def test_truncation_restarts_from_top(self, workload):
        cancel = threading.Event()
        stream = FileLogFactory(poll_interval=0.05).open_stream(
            str(workload), "web", SessionOptions(), cancel,
        )
        received: list[LogLine] = []
        t = threading.Thread(target=_collect, args=(stream, received), daemon=True)
        t.start()

        (workload / "web.log").write_text("new\n")

        assert _wait_for(lambda: received == [LogLine(b"new", "web")])
        cancel.set()
        t.join(timeout=2)

    def test_rotation_follows_new_file(self, workload):
        cancel = threading.Event()
        stream = FileLogFactory(poll_interval=0.05).open_stream(
            str(workload), "web", SessionOptions(), cancel,
        )
        received: list[LogLine] = []
        t = threading.Thread(target=_collect, args=(stream, received), daemon=True)
        t.start()

        with open(workload / "web.log", "a") as f:
            f.write("old 1\n")
        assert _wait_for(lambda: received == [LogLine(b"old 1", "web")])

        (workload / "web.log").rename(workload / "web.log.1")
        (workload / "web.log").write_text("new 1\n")

        assert _wait_for(lambda: len(received) >= 2)
        time.sleep(0.2)
        cancel.set()
        t.join(timeout=2)

        assert received == [LogLine(b"old 1", "web"), LogLine(b"new 1", "web")]

    def test_close_without_iterating(self, workload):
        stream = FileLogFactory().open_stream(
            str(workload), "web", SessionOptions(), threading.Event(),
        )
        stream.close()
        stream.close()
        assert list(stream) == []

    def test_missing_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            FileLogFactory().open_stream(
                str(tmp_path / "nope"), "", SessionOptions(), threading.Event(),
            )


class TestSessionOverFiles:
    def test_live_tail(self, workload, view):
        opts = SessionOptions(path=str(workload), container="web", capacity=3,
                              notification_interval=0.05)
        s = LogSession(opts)
        s.init(FileLogFactory(poll_interval=0.05))
        s.add_listener(view)
        s.set(read_tail(opts.path, s.container, 10))
        assert view.data == [b"web 1", b"web 2"]

        s.start()
        time.sleep(0.1)
        with open(workload / "web.log", "a") as f:
            f.write("web 3\nweb 4\n")

        assert _wait_for(lambda: view.data == [b"web 2", b"web 3", b"web 4"])
        s.stop()
        assert view.terminations == [None]
