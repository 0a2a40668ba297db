"""Client side of the chat stream: raw bytes to typed callbacks.

``SSEParser`` only frames bytes into events. ``StreamDecoder`` applies the
event semantics (done, error, usage, text) and guarantees that each stream
reports exactly one terminal outcome. ``stream_from_sse`` drives both from a
live ``httpx`` response and classifies transport failures.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

import httpx
from pydantic import ValidationError

from webbot.models.messages import ErrorKind, ErrorResponse, Usage
from webbot.streaming.protocol import (
    EVENT_DELIMITER,
    UNKNOWN_ERROR_MESSAGE,
    EventType,
    SSEEvent,
    parse_event,
)

logger = logging.getLogger(__name__)


class SSEParser:
    """Incremental event splitter tolerant of arbitrary read boundaries."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Text received but not yet cut into an event."""
        return self._buffer

    def feed(self, data: bytes) -> Iterator[SSEEvent]:
        """Append ``data`` and lazily yield every complete event.

        The buffer is advanced before each event is handed out, so a consumer
        that stops iterating leaves the remaining text unparsed.
        """
        self._buffer += self._decoder.decode(data)
        while True:
            sep = self._buffer.find(EVENT_DELIMITER)
            if sep == -1:
                return
            raw = self._buffer[:sep]
            self._buffer = self._buffer[sep + len(EVENT_DELIMITER) :]
            event = parse_event(raw)
            if event is not None:
                yield event


@dataclass
class StreamCallbacks:
    on_chunk: Callable[[str], None]
    on_done: Callable[[], None]
    on_error: Callable[[ErrorResponse], None]
    on_usage: Optional[Callable[[Usage], None]] = None


class StreamDecoder:
    """Dispatches parsed events to callbacks until the stream terminates.

    ``is_live`` is consulted before every callback; once it returns False
    nothing is dispatched any more.
    """

    def __init__(
        self,
        callbacks: StreamCallbacks,
        is_live: Callable[[], bool] = lambda: True,
    ) -> None:
        self._callbacks = callbacks
        self._is_live = is_live
        self._parser = SSEParser()
        self.finished = False

    def feed(self, data: bytes) -> bool:
        """Process one read. Returns True once the stream has terminated."""
        if self.finished:
            return True
        for event in self._parser.feed(data):
            if not self._is_live():
                self.finished = True
                break
            self._dispatch(event)
            if self.finished:
                break
        return self.finished

    def close(self) -> None:
        """End of body: a stream closed without a sentinel counts as done."""
        if self.finished:
            return
        self.finished = True
        self._emit(self._callbacks.on_done)

    def fail(self, error: ErrorResponse) -> None:
        if self.finished:
            return
        self.finished = True
        self._emit(self._callbacks.on_error, error)

    def _emit(self, callback: Callable[..., None], *args: Any) -> None:
        if self._is_live():
            callback(*args)

    def _dispatch(self, event: SSEEvent) -> None:
        if event.is_done:
            self.close()
            return

        if event.event == EventType.ERROR.value:
            self.fail(
                ErrorResponse(
                    type=ErrorKind.SERVER,
                    message=_error_message(event.data),
                    retryable=False,
                )
            )
            return

        if event.event == EventType.USAGE.value:
            try:
                usage = Usage.model_validate_json(event.data)
            except ValidationError:
                logger.warning("Failed to parse usage data: %r", event.data[:200])
                return
            if self._callbacks.on_usage is not None:
                self._emit(self._callbacks.on_usage, usage)
            return

        self._emit(self._callbacks.on_chunk, _chunk_token(event.data))


def _error_message(data: str) -> str:
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        return data or UNKNOWN_ERROR_MESSAGE
    if isinstance(parsed, dict):
        return str(parsed.get("message") or UNKNOWN_ERROR_MESSAGE)
    return data or UNKNOWN_ERROR_MESSAGE


def _chunk_token(data: str) -> str:
    try:
        token = json.loads(data)
    except json.JSONDecodeError:
        return data
    return token if isinstance(token, str) else data


class StreamHandle:
    """Cancellation handle for one in-flight stream."""

    def __init__(self) -> None:
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._task is None or self._task.done()

    def attach(self, task: asyncio.Task) -> None:
        self._task = task

    def cancel(self) -> None:
        """Abandon the stream. No callback fires after this returns."""
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        """Wait for the stream task; cancellation is not an error."""
        if self._task is None:
            return
        await asyncio.wait({self._task})
        if not self._task.cancelled():
            self._task.result()


async def stream_from_sse(
    client: httpx.AsyncClient,
    url: str,
    body: Any,
    callbacks: StreamCallbacks,
    handle: Optional[StreamHandle] = None,
) -> None:
    """POST ``body`` to ``url`` and feed the streamed reply to ``callbacks``.

    Exactly one of ``on_done`` / ``on_error`` fires unless ``handle`` is
    cancelled first, in which case neither does.
    """
    handle = handle or StreamHandle()
    decoder = StreamDecoder(callbacks, is_live=lambda: not handle.cancelled)

    try:
        async with client.stream("POST", url, json=body) as response:
            if not response.is_success:
                try:
                    text = (await response.aread()).decode("utf-8", errors="replace")
                except httpx.HTTPError:
                    text = ""
                status = response.status_code
                logger.warning("Chat stream rejected with status %d", status)
                decoder.fail(
                    ErrorResponse(
                        type=ErrorKind.SERVER,
                        message=text or f"Server error ({status})",
                        retryable=status >= 500,
                    )
                )
                return

            try:
                async for chunk in response.aiter_bytes():
                    if decoder.feed(chunk):
                        return
            except httpx.HTTPError as exc:
                if handle.cancelled:
                    logger.debug("Stream read aborted after cancellation")
                    return
                logger.warning("Chat stream broke mid-read: %s", exc)
                decoder.fail(
                    ErrorResponse(
                        type=ErrorKind.NETWORK,
                        message=str(exc) or "Connection error",
                        retryable=True,
                    )
                )
                return

        decoder.close()

    except asyncio.CancelledError:
        logger.debug("Stream to %s cancelled", url)
        raise
    except httpx.TimeoutException as exc:
        if handle.cancelled:
            return
        logger.warning("Chat request timed out: %s", exc)
        decoder.fail(
            ErrorResponse(
                type=ErrorKind.TIMEOUT,
                message="Request timed out. Please try again.",
                retryable=True,
            )
        )
    except httpx.HTTPError as exc:
        if handle.cancelled:
            return
        logger.warning("Chat request failed: %s", exc)
        decoder.fail(
            ErrorResponse(
                type=ErrorKind.NETWORK,
                message="Network error. Please check your connection.",
                retryable=True,
            )
        )
