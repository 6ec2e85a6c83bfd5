#!/usr/bin/env python3
"""logtail: live, filterable tail of a workload's container logs."""

import argparse
import logging
import signal
import sys
import threading

from logtail.config import ConfigError, load_config, load_yaml_config
from logtail.console import ConsoleView
from logtail.session import LogSession
from logtail.source import FileLogFactory, read_tail

logger = logging.getLogger(__name__)


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="logtail",
        description="Tail a workload's container logs with live filtering.",
    )
    parser.add_argument(
        "path",
        help="Log file, or directory whose *.log files are the workload's containers",
    )
    parser.add_argument("-c", "--container", default=None, help="Container to tail")
    parser.add_argument(
        "--default-container", default=None,
        help="Container used when --container is not given",
    )
    parser.add_argument(
        "--capacity", type=int, default=None,
        help="Maximum number of buffered lines (default: 1000)",
    )
    parser.add_argument(
        "--interval", dest="notification_interval", type=float, default=None,
        help="Seconds between screen updates (default: 0.2)",
    )
    parser.add_argument(
        "--tail", dest="tail_lines", type=int, default=None,
        help="Historical lines to load at startup (default: 100)",
    )
    parser.add_argument(
        "--filter", default=None,
        help="Initial filter: regex, '!regex' to invert, '-f term' for fuzzy",
    )
    parser.add_argument(
        "--timestamps", dest="show_timestamp", action="store_true", default=None,
        help="Keep leading RFC3339 timestamps",
    )
    parser.add_argument(
        "--show-source", action="store_true", default=None,
        help="Prefix each line with its container name",
    )
    parser.add_argument(
        "--all-containers", action="store_true",
        help="Aggregate every container of the workload",
    )
    parser.add_argument("--config", default=None, help="Path to YAML config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_cli_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [LOGTAIL] %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    try:
        options = load_config(args, load_yaml_config(args.config))
        session = LogSession(options)
        view = ConsoleView()
        session.add_listener(view)
        session.init(FileLogFactory())
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 2

    if args.all_containers:
        session.toggle_all_containers()

    cancel = threading.Event()

    def _signal_handler(sig, frame):
        logger.info("Shutdown signal received, stopping...")
        cancel.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        session.set(read_tail(options.path, session.container, options.tail_lines))
    except FileNotFoundError as e:
        logger.error("%s", e)
        return 1

    session.start(cancel)
    while not cancel.is_set() and not view.terminated.is_set():
        cancel.wait(0.5)
    session.stop()

    logger.info("Stats: %d line(s) buffered for %s", len(session), options.path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
