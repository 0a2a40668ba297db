"""Headless chat controller: sessions, sending and the active stream.

Everything a chat front end needs lives here; the front end only renders
``sessions`` / ``messages`` and subscribes to ``ChatEvent`` notifications.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Literal, Optional

import httpx

from webbot.client.assembler import MessageAssembler, strip_annotation
from webbot.client.export import ExportedChat, ExportFormat, export_session
from webbot.client.health import BackendStatus, HealthMonitor
from webbot.client.status import READY, THINKING, detect_status
from webbot.client.store import SessionStore
from webbot.config import Settings
from webbot.config import settings as default_settings
from webbot.models.messages import (
    ChatTurn,
    ErrorResponse,
    Message,
    MessageRole,
    Reaction,
    Usage,
    make_id,
)
from webbot.models.sessions import Session, greeting_message
from webbot.streaming.decoder import StreamCallbacks, StreamHandle, stream_from_sse

logger = logging.getLogger(__name__)

EventKind = Literal["chunk", "usage", "done", "error", "stopped", "sessions"]


class SendRejectedError(RuntimeError):
    """A send was refused locally before any request was made."""


@dataclass
class ChatEvent:
    kind: EventKind
    message_id: Optional[str] = None
    text: str = ""


class StreamSlot:
    """Holds the handle of the single active stream.

    Storing a new handle always cancels and clears the previous one first.
    """

    def __init__(self) -> None:
        self._handle: Optional[StreamHandle] = None

    @property
    def handle(self) -> Optional[StreamHandle]:
        return self._handle

    def replace(self, handle: Optional[StreamHandle]) -> None:
        prior, self._handle = self._handle, None
        if prior is not None:
            prior.cancel()
        self._handle = handle

    def release(self, handle: StreamHandle) -> None:
        """Forget ``handle`` if it is still the active one, without cancelling."""
        if self._handle is handle:
            self._handle = None


class ChatController:
    def __init__(
        self,
        client: httpx.AsyncClient,
        store: SessionStore,
        *,
        settings: Optional[Settings] = None,
        health: Optional[HealthMonitor] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._store = store
        self._settings = settings or default_settings
        self._health = health
        self._clock = clock

        self._slot = StreamSlot()
        self._assembler: Optional[MessageAssembler] = None
        self._last_request_at: Optional[float] = None
        self._listeners: list[Callable[[ChatEvent], None]] = []

        self.sessions: list[Session] = []
        self.current_session_id: Optional[str] = None
        self.usage = Usage()
        self.is_streaming = False
        self.current_status = READY
        self.streamed_tokens = 0

        self._load()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def current_session(self) -> Session:
        return self._require_assembler().session

    @property
    def messages(self) -> list[Message]:
        return self.current_session.messages

    @property
    def backend_status(self) -> BackendStatus:
        return self._health.status if self._health is not None else BackendStatus.CHECKING

    @property
    def active_stream(self) -> Optional[StreamHandle]:
        return self._slot.handle

    def subscribe(self, listener: Callable[[ChatEvent], None]) -> None:
        self._listeners.append(listener)

    async def start(self) -> None:
        if self._health is not None:
            self._health.start()

    async def aclose(self) -> None:
        self._cancel_active()
        if self._health is not None:
            await self._health.stop()
        self._persist()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self) -> Session:
        self._cancel_active()
        session = Session.new()
        self.sessions.insert(0, session)
        self._activate(session)
        self._persist()
        return session

    def switch_session(self, session_id: str) -> Session:
        session = self._find_session(session_id)
        self._cancel_active()
        self._activate(session)
        self._persist()
        return session

    def delete_session(self, session_id: str) -> None:
        session = self._find_session(session_id)
        if session_id == self.current_session_id:
            self._cancel_active()
        self.sessions.remove(session)

        if session_id == self.current_session_id:
            if self.sessions:
                self._activate(self.sessions[0])
            else:
                self.create_session()
                return
        self._persist()

    def rename_session(self, session_id: str, title: str) -> None:
        title = title.strip()
        if not title:
            raise ValueError("Session title must not be empty")
        self._find_session(session_id).title = title
        self._persist()

    def clear_chat(self) -> None:
        self._cancel_active()
        self._require_assembler().reset([greeting_message()])
        self._persist()

    def export_chat(self, fmt: ExportFormat = "txt") -> ExportedChat:
        return export_session(self.current_session, fmt)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def send_message(
        self, content: str, attachments: Optional[list[str]] = None
    ) -> StreamHandle:
        """Append the user turn and start streaming the assistant reply.

        Raises:
            SendRejectedError: empty text, too soon after the last send, or
                backend marked offline.
        """
        text = content.strip()
        self._last_request_at = self._check_can_send(text)
        self._cancel_active()

        assembler = self._require_assembler()
        history = assembler.messages[-self._settings.max_context_messages :]
        payload = _context_turns(history)

        user_message = assembler.add_user(text, attachments)
        payload.append(user_message.to_turn().model_dump(mode="json"))

        assistant_id = make_id()
        assembler.begin(assistant_id)

        handle = StreamHandle()
        callbacks = StreamCallbacks(
            on_chunk=lambda token: self._on_chunk(assembler, assistant_id, token),
            on_done=lambda: self._on_done(handle, assembler, assistant_id),
            on_error=lambda error: self._on_error(handle, assembler, assistant_id, error),
            on_usage=self._on_usage,
        )
        task = asyncio.create_task(
            stream_from_sse(
                self._client,
                self._settings.api_url,
                {"messages": payload},
                callbacks,
                handle,
            )
        )
        handle.attach(task)
        self._slot.replace(handle)

        self.is_streaming = True
        self.current_status = THINKING
        self.streamed_tokens = 0
        logger.info("Sent message with %d turns of context", len(payload))
        self._persist()
        return handle

    def stop_generation(self) -> bool:
        """Cancel the active stream. Returns False when nothing was streaming."""
        if self._slot.handle is None:
            return False
        self._cancel_active()
        self._persist()
        return True

    def retry_message(self, message_id: str) -> StreamHandle:
        """Drop a user message and everything after it, then send it again.

        The log is left untouched when the send would be rejected.
        """
        message = self._user_message(message_id)
        self._check_can_send(message.content.strip())
        self._cancel_active()
        self._require_assembler().truncate_from(message_id)
        return self.send_message(message.content, message.attachments)

    def edit_message(self, message_id: str, new_content: str) -> StreamHandle:
        self._user_message(message_id)
        self._check_can_send(new_content.strip())
        self._cancel_active()
        self._require_assembler().truncate_from(message_id)
        return self.send_message(new_content)

    def can_retry(self, message_id: str) -> bool:
        """Whether the reply to user message ``message_id`` failed retryably."""
        messages = self.messages
        for position, message in enumerate(messages):
            if message.id == message_id:
                following = messages[position + 1 : position + 2]
                return bool(following and following[0].retryable)
        return False

    def delete_message(self, message_id: str) -> None:
        assembler = self._require_assembler()
        if assembler.active_id == message_id:
            self._cancel_active()
        assembler.remove(message_id)
        self._persist()

    def react_to_message(self, message_id: str, reaction: Optional[Reaction]) -> None:
        self._require_assembler().react(message_id, reaction)
        if reaction:
            logger.info("User reacted %s to message %s", reaction, message_id)
        self._persist()

    # ------------------------------------------------------------------
    # Stream callbacks
    # ------------------------------------------------------------------

    def _on_chunk(self, assembler: MessageAssembler, assistant_id: str, token: str) -> None:
        if not token:
            return
        assembler.append_token(assistant_id, token)
        self.streamed_tokens += 1
        self.current_status = detect_status(token) or THINKING
        self._notify(ChatEvent("chunk", assistant_id, token))

    def _on_usage(self, usage: Usage) -> None:
        self.usage = self.usage + usage
        self._notify(ChatEvent("usage"))

    def _on_done(
        self, handle: StreamHandle, assembler: MessageAssembler, assistant_id: str
    ) -> None:
        assembler.finalize(assistant_id)
        self._finish(handle)
        self._notify(ChatEvent("done", assistant_id))

    def _on_error(
        self,
        handle: StreamHandle,
        assembler: MessageAssembler,
        assistant_id: str,
        error: ErrorResponse,
    ) -> None:
        logger.warning("Stream failed (%s): %s", error.type.value, error.message)
        annotation = assembler.fail(assistant_id, error)
        self._finish(handle)
        self._notify(ChatEvent("error", assistant_id, annotation))

    def _finish(self, handle: StreamHandle) -> None:
        self._slot.release(handle)
        self.is_streaming = False
        self.current_status = READY
        self._persist()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cancel_active(self) -> None:
        """Abort the active stream and mark its message as stopped."""
        had_stream = self._slot.handle is not None
        self._slot.replace(None)

        assembler = self._assembler
        if assembler is not None and assembler.active_id is not None:
            assistant_id = assembler.active_id
            annotation = assembler.cancel(assistant_id)
            self._notify(ChatEvent("stopped", assistant_id, annotation))

        if had_stream:
            self.is_streaming = False
            self.current_status = READY

    def _check_can_send(self, text: str) -> float:
        """Raise ``SendRejectedError`` unless ``text`` may be sent now.

        Returns the clock reading the send would be stamped with.
        """
        if not text:
            raise SendRejectedError("Message is empty")

        now = self._clock()
        if (
            self._last_request_at is not None
            and now - self._last_request_at < self._settings.min_request_interval
        ):
            raise SendRejectedError("Please wait a moment before sending another message")

        if self.backend_status == BackendStatus.OFFLINE:
            raise SendRejectedError("Backend is offline. Please check your connection.")
        return now

    def _activate(self, session: Session) -> None:
        self.current_session_id = session.id
        self._assembler = MessageAssembler(session)
        self._notify(ChatEvent("sessions"))

    def _find_session(self, session_id: str) -> Session:
        for session in self.sessions:
            if session.id == session_id:
                return session
        raise KeyError(session_id)

    def _user_message(self, message_id: str) -> Message:
        message = self._require_assembler().get(message_id)
        if message is None:
            raise KeyError(message_id)
        if message.role != MessageRole.USER:
            raise SendRejectedError("Only user messages can be resent")
        return message

    def _require_assembler(self) -> MessageAssembler:
        if self._assembler is None:
            raise RuntimeError("No active session")
        return self._assembler

    def _load(self) -> None:
        self.sessions = self._store.load_sessions()
        self.usage = self._store.load_usage()
        last_id = self._store.load_last_session_id()

        by_id = {s.id: s for s in self.sessions}
        if last_id in by_id:
            self._activate(by_id[last_id])
        elif self.sessions:
            self._activate(max(self.sessions, key=lambda s: s.updated_at))
        else:
            self.create_session()

    def _persist(self) -> None:
        try:
            self._store.save(self.sessions, self.current_session_id, self.usage)
        except OSError:
            logger.exception("Failed to persist chat state to %s", self._store.path)

    def _notify(self, event: ChatEvent) -> None:
        for listener in self._listeners:
            listener(event)


def _context_turns(messages: list[Message]) -> list[dict]:
    """History sent to the model, without local error/stop annotations."""
    turns = []
    for message in messages:
        content = strip_annotation(message)
        if content:
            turns.append(ChatTurn(role=message.role, content=content).model_dump(mode="json"))
    return turns
