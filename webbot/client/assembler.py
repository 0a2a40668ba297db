"""Folds stream callbacks into a session's ordered message log."""

import logging
from typing import Optional

from webbot.models.messages import (
    ErrorKind,
    ErrorResponse,
    Message,
    MessageRole,
    Reaction,
)
from webbot.models.sessions import Session

logger = logging.getLogger(__name__)

STOPPED_MESSAGE = "Generation stopped by user"
RETRY_HINT = " (You can retry this message)"


def error_annotation(error: ErrorResponse) -> str:
    if error.type == ErrorKind.ABORT:
        return f"\n\n[{error.message}]"
    hint = RETRY_HINT if error.retryable else ""
    return f"\n\n[Error: {error.message}]{hint}"


def strip_annotation(message: Message) -> str:
    """Message content without the annotation ``fail``/``cancel`` appended."""
    if message.error is None:
        return message.content
    annotation = error_annotation(message.error)
    if message.content.endswith(annotation):
        return message.content[: -len(annotation)]
    return message.content


class MessageAssembler:
    """Mutates one session's messages in place, looked up by id.

    At most one assistant message is active (receiving tokens) at a time.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._index: dict[str, int] = {}
        self._active_id: Optional[str] = None
        self._reindex()

    @property
    def session(self) -> Session:
        return self._session

    @property
    def messages(self) -> list[Message]:
        return self._session.messages

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    def get(self, message_id: str) -> Optional[Message]:
        position = self._index.get(message_id)
        return None if position is None else self._session.messages[position]

    def add_user(self, content: str, attachments: Optional[list[str]] = None) -> Message:
        message = self._append(
            Message(role=MessageRole.USER, content=content, attachments=attachments or None)
        )
        self._session.refresh_title()
        return message

    def begin(self, assistant_id: str) -> Message:
        """Start a new assistant message at the tail.

        A token may already have created the message; it is then reused.
        """
        if self._active_id is not None and self._active_id != assistant_id:
            logger.debug("Cancelling active message %s before %s", self._active_id, assistant_id)
            self.cancel(self._active_id)

        message = self.get(assistant_id)
        if message is None:
            message = self._append(Message(id=assistant_id, role=MessageRole.ASSISTANT))
        self._active_id = assistant_id
        return message

    def append_token(self, assistant_id: str, token: str) -> None:
        if not token:
            return
        message = self.get(assistant_id)
        if message is None:
            self._append(
                Message(id=assistant_id, role=MessageRole.ASSISTANT, content=token)
            )
            return
        if message.role != MessageRole.ASSISTANT:
            raise ValueError(f"Message {assistant_id} is not an assistant message")
        message.content += token
        self._session.touch()

    def finalize(self, assistant_id: str) -> None:
        if self._active_id == assistant_id:
            self._active_id = None
        self._session.touch()

    def fail(self, assistant_id: str, error: ErrorResponse) -> str:
        """Annotate the message with ``error`` and end it. Returns the annotation."""
        annotation = error_annotation(error)
        self.append_token(assistant_id, annotation)
        message = self.get(assistant_id)
        if message is not None:
            message.error = error
            message.retryable = error.retryable
        self.finalize(assistant_id)
        return annotation

    def cancel(self, assistant_id: str) -> str:
        return self.fail(
            assistant_id,
            ErrorResponse(type=ErrorKind.ABORT, message=STOPPED_MESSAGE, retryable=False),
        )

    def truncate_from(self, message_id: str) -> list[Message]:
        """Drop ``message_id`` and everything after it."""
        position = self._index[message_id]
        removed = self._session.messages[position:]
        del self._session.messages[position:]
        if any(m.id == self._active_id for m in removed):
            self._active_id = None
        self._reindex()
        self._session.touch()
        self._session.refresh_title()
        return removed

    def remove(self, message_id: str) -> Message:
        position = self._index[message_id]
        message = self._session.messages.pop(position)
        if self._active_id == message_id:
            self._active_id = None
        self._reindex()
        self._session.touch()
        self._session.refresh_title()
        return message

    def react(self, message_id: str, reaction: Optional[Reaction]) -> None:
        message = self.get(message_id)
        if message is None:
            raise KeyError(message_id)
        message.reaction = reaction
        self._session.touch()

    def reset(self, messages: list[Message]) -> None:
        """Replace the whole log, e.g. when a chat is cleared."""
        self._session.messages[:] = messages
        self._active_id = None
        self._reindex()
        self._session.touch()
        self._session.refresh_title()

    def _append(self, message: Message) -> Message:
        self._session.messages.append(message)
        self._index[message.id] = len(self._session.messages) - 1
        self._session.touch()
        return message

    def _reindex(self) -> None:
        self._index = {m.id: i for i, m in enumerate(self._session.messages)}
