"""Streaming chat endpoint.

Protocol:
    Client POSTs JSON: {"messages": [{"role": "user"|"assistant", "content": "..."}, ...]}
    Server replies with ``text/event-stream`` frames:
        data: "<json string chunk>"          (repeated)
        event: usage / data: {...}            (optional)
        event: error / data: {"message": ...} (instead of chunks on failure)
        data: [DONE]                          (always last)
"""

import logging
from typing import AsyncIterator, Iterator, Union

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from webbot.agent.graph import AgentRunner
from webbot.config import Settings, get_settings
from webbot.dependencies import get_agent_runner
from webbot.models.messages import ChatRequest
from webbot.streaming.encoder import encode_error, stream_answer
from webbot.streaming.protocol import INVALID_REQUEST_MESSAGE, SSE_HEADERS

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/stream")
async def chat_stream(
    request: Request,
    runner: AgentRunner = Depends(get_agent_runner),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    """Run the agent over the posted history and stream its answer.

    The body is validated before anything is streamed; an invalid body gets
    an error frame and the agent is never invoked.
    """
    try:
        payload = ChatRequest.model_validate_json(await request.body())
    except ValidationError as exc:
        logger.info("Rejected invalid chat request (%d errors)", exc.error_count())
        return _sse_response(encode_error(INVALID_REQUEST_MESSAGE))

    logger.info("Chat request with %d messages", len(payload.messages))
    return _sse_response(
        stream_answer(
            lambda: runner.run(payload.messages),
            chunk_size=settings.stream_chunk_size,
        )
    )


def _sse_response(frames: Union[Iterator[str], AsyncIterator[str]]) -> StreamingResponse:
    return StreamingResponse(
        frames,
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
