"""Shared test fixtures for the WebBot server and client."""

from collections.abc import AsyncGenerator, Callable, Iterator
from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from webbot.config import Settings, get_settings
from webbot.dependencies import get_agent_runner
from webbot.main import app
from webbot.models.messages import AgentAnswer, ChatTurn, Usage
from webbot.streaming.decoder import StreamCallbacks


class StubAgent:
    """Stands in for ``AgentRunner``: returns a canned answer or raises."""

    def __init__(
        self,
        answer: str = "hello world",
        usage: Optional[Usage] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.answer = answer
        self.usage = usage
        self.error = error
        self.calls: list[list[ChatTurn]] = []

    async def run(self, turns: list[ChatTurn]) -> AgentAnswer:
        self.calls.append(turns)
        if self.error is not None:
            raise self.error
        return AgentAnswer(answer=self.answer, usage=self.usage)


class RecordingCallbacks:
    """Collects decoder callbacks as ``(kind, payload)`` tuples."""

    def __init__(self) -> None:
        self.events: list[tuple] = []

    def as_callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_chunk=lambda token: self.events.append(("chunk", token)),
            on_done=lambda: self.events.append(("done",)),
            on_error=lambda error: self.events.append(("error", error)),
            on_usage=lambda usage: self.events.append(("usage", usage)),
        )

    @property
    def kinds(self) -> list[str]:
        return [event[0] for event in self.events]

    @property
    def text(self) -> str:
        return "".join(event[1] for event in self.events if event[0] == "chunk")


@pytest.fixture
def recorder() -> RecordingCallbacks:
    return RecordingCallbacks()


@pytest.fixture
def stub_agent() -> Iterator[StubAgent]:
    """Install a stub agent and a chunk size of 5 on the app."""
    agent = StubAgent()
    app.dependency_overrides[get_agent_runner] = lambda: agent
    app.dependency_overrides[get_settings] = lambda: Settings(stream_chunk_size=5)
    yield agent
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def client_settings(tmp_path) -> Callable[..., Settings]:
    """Client settings pointing at the test app with no rate limit."""

    def make(**overrides) -> Settings:
        values = {
            "api_url": "http://test/api/chat/stream",
            "health_url": "http://test/api/health",
            "min_request_interval": 0.0,
            "store_path": tmp_path / "state.json",
        }
        values.update(overrides)
        return Settings(**values)

    return make
