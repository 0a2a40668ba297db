"""Wire vocabulary of the chat stream.

Frame grammar::

    ["event:" TYPE "\\n"]? ("data:" PAYLOAD "\\n")+ "\\n"

Text chunks carry a JSON string payload, ``usage`` and ``error`` events carry
a JSON object, and every stream ends with a frame whose payload is the bare
``[DONE]`` sentinel.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

DONE_SENTINEL = "[DONE]"
EVENT_FIELD = "event:"
DATA_FIELD = "data:"
EVENT_DELIMITER = "\n\n"

DEFAULT_CHUNK_SIZE = 24
INVALID_REQUEST_MESSAGE = "Invalid request"
UNKNOWN_ERROR_MESSAGE = "Unknown error"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class EventType(str, Enum):
    """Declared ``event:`` types. Text chunks use no declared type."""

    ERROR = "error"
    USAGE = "usage"


@dataclass(frozen=True)
class SSEEvent:
    """One parsed event: optional declared type plus joined data payload."""

    data: str
    event: Optional[str] = None

    @property
    def is_done(self) -> bool:
        return self.data == DONE_SENTINEL


def format_frame(data: str, event: Optional[str] = None) -> str:
    """Serialize one frame. Multi-line payloads become several data lines."""
    lines = [f"{EVENT_FIELD} {event}"] if event else []
    lines.extend(f"{DATA_FIELD} {line}" for line in data.split("\n"))
    return "\n".join(lines) + EVENT_DELIMITER


def parse_event(raw: str) -> Optional[SSEEvent]:
    """Parse the text between two delimiters.

    Returns ``None`` for an event without any data line.
    """
    event_type: Optional[str] = None
    data_lines: list[str] = []

    for line in raw.split("\n"):
        if line.startswith(EVENT_FIELD):
            if event_type is None:
                event_type = line[len(EVENT_FIELD) :].strip() or None
        elif line.startswith(DATA_FIELD):
            data_lines.append(line[len(DATA_FIELD) :].lstrip())

    if not data_lines:
        return None
    return SSEEvent(data="\n".join(data_lines), event=event_type)
