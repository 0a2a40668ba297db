"""Plain text, Markdown and JSON renderings of a session."""

import time
from dataclasses import dataclass
from typing import Callable, Literal

from webbot.models.messages import MessageRole
from webbot.models.sessions import Session

ExportFormat = Literal["txt", "md", "json"]

RULE_WIDTH = 60


@dataclass
class ExportedChat:
    content: str
    mime_type: str
    filename: str


def _created(session: Session) -> str:
    return session.created_at.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def to_text(session: Session) -> str:
    parts = [
        f"{session.title}\n",
        f"Created: {_created(session)}\n",
        "=" * RULE_WIDTH + "\n\n",
    ]
    for message in session.messages:
        parts.append(f"{message.role.value.upper()}:\n{message.content}\n\n")
        parts.append("-" * RULE_WIDTH + "\n\n")
    return "".join(parts)


def to_markdown(session: Session) -> str:
    parts = [
        f"# {session.title}\n\n",
        f"*Created: {_created(session)}*\n\n",
        "---\n\n",
    ]
    for message in session.messages:
        speaker = "👤 User" if message.role == MessageRole.USER else "🤖 Assistant"
        parts.append(f"## {speaker}\n\n{message.content}\n\n---\n\n")
    return "".join(parts)


def to_json(session: Session) -> str:
    return session.model_dump_json(indent=2)


EXPORTERS: dict[str, tuple[Callable[[Session], str], str]] = {
    "txt": (to_text, "text/plain"),
    "md": (to_markdown, "text/markdown"),
    "json": (to_json, "application/json"),
}


def export_session(session: Session, fmt: ExportFormat = "txt") -> ExportedChat:
    try:
        render, mime_type = EXPORTERS[fmt]
    except KeyError:
        raise ValueError(f"Unsupported export format: {fmt}") from None

    stem = session.title[:30].replace("/", "-")
    filename = f"chat-{stem}-{int(time.time() * 1000)}.{fmt}"
    return ExportedChat(content=render(session), mime_type=mime_type, filename=filename)
