"""Incremental Server-Sent-Events decoder.

Frames look like::

    id: <token>
    event: <type>
    data: <json>
    <blank line>
"""
import codecs
import json
from typing import Optional

from .types import SSEEvent


def parse_frame(text: str) -> Optional[SSEEvent]:
    """Parse one frame. Returns None for frames without any ``data:`` line."""
    event_id: Optional[str] = None
    event = "message"
    data_lines: list[str] = []

    for line in text.split("\n"):
        if not line or line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "id":
            event_id = value.strip()
        elif name == "event":
            event = value.strip() or "message"
        elif name == "data":
            data_lines.append(value)
        # "retry" and unknown fields are ignored

    if not data_lines:
        return None

    raw = "\n".join(data_lines)
    try:
        data = json.loads(raw)
    except ValueError:
        data = raw
    return SSEEvent(event=event, data=data, id=event_id)


class SSEDecoder:
    """Turns arbitrary byte chunks into complete :class:`SSEEvent` frames."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[SSEEvent]:
        self._buffer += self._decoder.decode(chunk)
        self._buffer = self._buffer.replace("\r\n", "\n")
        *frames, self._buffer = self._buffer.split("\n\n")
        return self._parse(frames)

    def flush(self) -> list[SSEEvent]:
        """Parse whatever partial frame is left once the stream has ended."""
        rest = (self._buffer + self._decoder.decode(b"", final=True)).replace("\r\n", "\n")
        self._buffer = ""
        return self._parse([rest])

    @staticmethod
    def _parse(frames: list[str]) -> list[SSEEvent]:
        events = []
        for text in frames:
            if not text.strip():
                continue
            event = parse_frame(text)
            if event is not None:
                events.append(event)
        return events
