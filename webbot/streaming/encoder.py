"""Server side of the chat stream: answer text to SSE frames."""

from __future__ import annotations

import json
import logging
from typing import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable, Iterator

from webbot.models.messages import AgentAnswer, Usage
from webbot.streaming.protocol import (
    DEFAULT_CHUNK_SIZE,
    DONE_SENTINEL,
    EventType,
    format_frame,
)

logger = logging.getLogger(__name__)


def iter_chunks(answer: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[str]:
    """Split ``answer`` into consecutive slices of ``chunk_size`` characters."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    for start in range(0, len(answer), chunk_size):
        yield answer[start : start + chunk_size]


def text_frame(token: str) -> str:
    return format_frame(json.dumps(token, ensure_ascii=False))


def usage_frame(usage: Usage) -> str:
    return format_frame(usage.model_dump_json(by_alias=True), EventType.USAGE.value)


def error_frame(message: str) -> str:
    return format_frame(
        json.dumps({"message": message}, ensure_ascii=False), EventType.ERROR.value
    )


def done_frame() -> str:
    return format_frame(DONE_SENTINEL)


def encode_answer(
    answer: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    usage: Usage | None = None,
) -> Iterator[str]:
    """Frame a fully computed answer, ending with the done sentinel."""
    for chunk in iter_chunks(answer, chunk_size):
        yield text_frame(chunk)
    if usage is not None and not usage.is_empty:
        yield usage_frame(usage)
    yield done_frame()


def encode_error(message: str) -> Iterator[str]:
    """Frame a terminal failure: one error frame, then the sentinel."""
    yield error_frame(message)
    yield done_frame()


async def encode_stream(
    tokens: Iterable[str] | AsyncIterable[str],
    usage: Usage | None = None,
) -> AsyncIterator[str]:
    """Frame tokens from any ordered source, sync or async.

    Empty tokens are skipped so every text frame carries content.
    """
    if hasattr(tokens, "__aiter__"):
        async for token in tokens:
            if token:
                yield text_frame(token)
    else:
        for token in tokens:
            if token:
                yield text_frame(token)
    if usage is not None and not usage.is_empty:
        yield usage_frame(usage)
    yield done_frame()


async def stream_answer(
    produce: Callable[[], Awaitable[AgentAnswer]],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> AsyncIterator[str]:
    """Run ``produce`` to completion, then stream its answer.

    A failure inside ``produce`` becomes a single error frame; no text frame
    is ever written for the same request.
    """
    try:
        result = await produce()
    except Exception as exc:
        logger.exception("Agent run failed before producing an answer")
        for frame in encode_error(str(exc) or type(exc).__name__):
            yield frame
        return

    logger.debug(
        "Streaming answer of %d chars in chunks of %d", len(result.answer), chunk_size
    )
    for frame in encode_answer(result.answer, chunk_size, result.usage):
        yield frame
