"""Chat stream transport - SSE framing shared by server and client."""

from .decoder import SSEParser, StreamCallbacks, StreamDecoder, StreamHandle, stream_from_sse
from .encoder import encode_answer, encode_error, encode_stream, stream_answer

__all__ = [
    "SSEParser",
    "StreamCallbacks",
    "StreamDecoder",
    "StreamHandle",
    "encode_answer",
    "encode_error",
    "encode_stream",
    "stream_answer",
    "stream_from_sse",
]
