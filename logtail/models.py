"""Captured log line model."""

import re
from dataclasses import dataclass

# RFC3339 prefix emitted by the cluster API when timestamps are requested.
_TIMESTAMP_RX = re.compile(rb"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2}) ")


@dataclass(frozen=True)
class LogLine:
    raw: bytes
    source: str = ""     # pod/container label, empty for single-source tailing

    @classmethod
    def from_string(cls, text: str, source: str = "") -> "LogLine":
        return cls(text.rstrip("\r\n").encode("utf-8"), source)

    def render(self, show_timestamp: bool = False, show_source: bool = False) -> bytes:
        """Return the line as the operator sees it."""
        body = self.raw
        if not show_timestamp:
            m = _TIMESTAMP_RX.match(body)
            if m is not None:
                body = body[m.end():]
        if show_source and self.source:
            body = self.source.encode("utf-8") + b" " + body
        return body
