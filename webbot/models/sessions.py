"""Session models for conversation management."""

from datetime import datetime

from pydantic import BaseModel, Field

from webbot.models.messages import Message, MessageRole, make_id, utcnow

DEFAULT_TITLE = "New Chat"
GREETING = "Hi! I'm WebBot. Ask me anything."
TITLE_LENGTH = 50


def generate_session_title(messages: list[Message]) -> str:
    """Derive a title from the first user message."""
    first_user = next((m for m in messages if m.role == MessageRole.USER), None)
    if first_user is None:
        return DEFAULT_TITLE

    title = first_user.content[:TITLE_LENGTH]
    return f"{title}..." if len(title) < len(first_user.content) else title


def greeting_message() -> Message:
    return Message(role=MessageRole.ASSISTANT, content=GREETING)


class Session(BaseModel):
    """A conversation: ordered messages plus metadata.

    Messages are never reordered, only appended, truncated or mutated in
    place by id.
    """

    id: str = Field(default_factory=make_id, frozen=True)
    title: str = DEFAULT_TITLE
    messages: list[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def new(cls) -> "Session":
        return cls(messages=[greeting_message()])
    def touch(self) -> None:
        """Advance ``updated_at``; never moves backwards."""
        now = utcnow()
        if now > self.updated_at:
            self.updated_at = now

    def refresh_title(self) -> None:
        """Derive the title from the first user message while it is the default.

        Called when messages are added or removed, not on every token.
        """
        if self.title == DEFAULT_TITLE:
            self.title = generate_session_title(self.messages)
