"""Message models shared by the chat endpoint and the chat client."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Reaction = Literal["👍", "👎"]


def make_id() -> str:
    """Return a new opaque identifier for messages and sessions."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    """Message sender role."""

    USER = "user"
    ASSISTANT = "assistant"


class ErrorKind(str, Enum):
    """Classification of a failed or interrupted stream."""

    NETWORK = "network"
    SERVER = "server"
    TIMEOUT = "timeout"
    ABORT = "abort"


class ChatTurn(BaseModel):
    """One role+content turn of conversation history."""

    role: MessageRole
    content: str


class ChatRequest(BaseModel):
    """Body of ``POST /api/chat/stream``."""

    messages: list[ChatTurn] = Field(min_length=1)


class ErrorResponse(BaseModel):
    """Terminal error of a stream.

    ``retryable`` is the only signal a front end uses to offer a retry.
    """

    type: ErrorKind
    message: str
    retryable: bool = False


class Usage(BaseModel):
    """Token and cost counters, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_cost: float = Field(default=0.0, ge=0.0)

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_cost=self.total_cost + other.total_cost,
        )

    @property
    def is_empty(self) -> bool:
        return not (self.prompt_tokens or self.completion_tokens or self.total_cost)


class AgentAnswer(BaseModel):
    """Final output of one agent run."""

    answer: str
    usage: Optional[Usage] = None


class Message(BaseModel):
    """A chat message as held and persisted by the client.

    ``id`` and ``role`` are fixed at creation. Assistant content only grows
    while a stream is active.
    """

    id: str = Field(default_factory=make_id, frozen=True)
    role: MessageRole = Field(frozen=True)
    content: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    reaction: Optional[Reaction] = None
    attachments: Optional[list[str]] = None
    error: Optional[ErrorResponse] = None
    retryable: Optional[bool] = None

    def to_turn(self) -> ChatTurn:
        return ChatTurn(role=self.role, content=self.content)
