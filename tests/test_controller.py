"""Tests for the headless chat controller."""

import asyncio
import json
from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from webbot.client.controller import ChatController, ChatEvent, SendRejectedError
from webbot.client.health import BackendStatus, HealthMonitor
from webbot.client.status import READY
from webbot.client.store import SessionStore
from webbot.config import Settings
from webbot.models.messages import ErrorKind, MessageRole, Usage
from webbot.models.sessions import GREETING
from webbot.streaming.encoder import encode_answer, encode_error

Handler = Callable[[httpx.Request], httpx.Response]


def _reply(answer: str, usage: Usage | None = None) -> httpx.Response:
    body = "".join(encode_answer(answer, chunk_size=4, usage=usage)).encode("utf-8")
    return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})


def _make(
    settings: Settings, handler: Handler, **kwargs
) -> tuple[ChatController, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    store = SessionStore(settings.store_path)
    return ChatController(client, store, settings=settings, **kwargs), client


async def _until(condition: Callable[[], bool]) -> None:
    async def poll() -> None:
        while not condition():
            await asyncio.sleep(0)

    await asyncio.wait_for(poll(), timeout=2)


@pytest.mark.asyncio
async def test_send_streams_reply_into_session(client_settings) -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return _reply("Hello there, friend!")

    controller, client = _make(client_settings(), handler)
    events: list[ChatEvent] = []
    controller.subscribe(events.append)

    handle = controller.send_message("  Hi bot  ")
    assert controller.is_streaming
    await handle.wait()

    user, assistant = controller.messages[-2:]
    assert user.role == MessageRole.USER
    assert user.content == "Hi bot"
    assert assistant.content == "Hello there, friend!"
    assert assistant.error is None
    assert not controller.is_streaming
    assert controller.current_status == READY
    assert controller.active_stream is None
    assert controller.current_session.title == "Hi bot"
    assert events[-1].kind == "done"
    assert [e.kind for e in events].count("chunk") == controller.streamed_tokens

    sent = bodies[0]["messages"]
    assert sent[0] == {"role": "assistant", "content": GREETING}
    assert sent[-1] == {"role": "user", "content": "Hi bot"}
    await client.aclose()


@pytest.mark.asyncio
async def test_context_window_is_limited(client_settings) -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return _reply("ok")

    controller, client = _make(client_settings(max_context_messages=2), handler)
    for text in ["one", "two", "three"]:
        await controller.send_message(text).wait()

    last = bodies[-1]["messages"]
    assert [m["content"] for m in last] == ["two", "ok", "three"]
    await client.aclose()


@pytest.mark.asyncio
async def test_usage_accumulates(client_settings) -> None:
    controller, client = _make(
        client_settings(),
        lambda request: _reply("ok", Usage(prompt_tokens=10, completion_tokens=5, total_cost=0.1)),
    )

    await controller.send_message("a").wait()
    await controller.send_message("b").wait()

    assert controller.usage.prompt_tokens == 20
    assert controller.usage.completion_tokens == 10
    assert controller.usage.total_cost == pytest.approx(0.2)
    await client.aclose()


@pytest.mark.asyncio
async def test_server_error_marks_message(client_settings) -> None:
    body = "".join(encode_error("Missing GOOGLE_API_KEY")).encode()
    controller, client = _make(client_settings(), lambda request: httpx.Response(200, content=body))

    await controller.send_message("hi").wait()

    assistant = controller.messages[-1]
    assert assistant.content == "\n\n[Error: Missing GOOGLE_API_KEY]"
    assert assistant.retryable is False
    assert not controller.is_streaming
    await client.aclose()


@pytest.mark.asyncio
async def test_empty_message_is_rejected(client_settings) -> None:
    controller, client = _make(client_settings(), lambda request: _reply("x"))
    before = len(controller.messages)

    with pytest.raises(SendRejectedError):
        controller.send_message("   ")

    assert len(controller.messages) == before
    await client.aclose()


@pytest.mark.asyncio
async def test_sends_are_rate_limited(client_settings) -> None:
    now = [100.0]
    controller, client = _make(
        client_settings(min_request_interval=1.0),
        lambda request: _reply("x"),
        clock=lambda: now[0],
    )

    await controller.send_message("first").wait()
    now[0] += 0.5
    with pytest.raises(SendRejectedError):
        controller.send_message("second")

    now[0] += 0.6
    await controller.send_message("third").wait()
    assert [m.content for m in controller.messages if m.role == MessageRole.USER] == [
        "first",
        "third",
    ]
    await client.aclose()


@pytest.mark.asyncio
async def test_offline_backend_rejects_send(client_settings) -> None:
    settings = client_settings()
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return _reply("x")

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    monitor = HealthMonitor(client, settings.health_url)
    monitor.status = BackendStatus.OFFLINE
    controller = ChatController(
        client, SessionStore(settings.store_path), settings=settings, health=monitor
    )

    with pytest.raises(SendRejectedError):
        controller.send_message("hello")

    assert requests == []
    await client.aclose()


def _gated_handler(release: asyncio.Event) -> Handler:
    calls = [0]

    def handler(request: httpx.Request) -> httpx.Response:
        calls[0] += 1
        if calls[0] > 1:
            return _reply("second answer")

        async def body() -> AsyncIterator[bytes]:
            yield b'data: "slow "\n\n'
            await release.wait()
            yield b'data: "never"\n\ndata: [DONE]\n\n'

        return httpx.Response(200, content=body())

    return handler


@pytest.mark.asyncio
async def test_new_send_cancels_previous_stream(client_settings) -> None:
    release = asyncio.Event()
    controller, client = _make(client_settings(), _gated_handler(release))

    first = controller.send_message("one")
    first_id = controller.messages[-1].id
    await _until(lambda: controller.messages[-1].content == "slow ")

    second = controller.send_message("two")
    release.set()
    await first.wait()
    await second.wait()

    stopped = next(m for m in controller.messages if m.id == first_id)
    assert stopped.content == "slow \n\n[Generation stopped by user]"
    assert first.cancelled
    assert controller.messages[-1].content == "second answer"
    assert not controller.is_streaming
    await client.aclose()


@pytest.mark.asyncio
async def test_stop_generation(client_settings) -> None:
    release = asyncio.Event()
    controller, client = _make(client_settings(), _gated_handler(release))
    events: list[ChatEvent] = []
    controller.subscribe(events.append)

    assert controller.stop_generation() is False

    handle = controller.send_message("one")
    await _until(lambda: controller.messages[-1].content == "slow ")
    assert controller.stop_generation() is True
    release.set()
    await handle.wait()

    assert controller.messages[-1].content.endswith("[Generation stopped by user]")
    assert not controller.is_streaming
    assert "stopped" in [e.kind for e in events]
    assert "done" not in [e.kind for e in events]
    await client.aclose()


@pytest.mark.asyncio
async def test_retry_after_network_failure(client_settings) -> None:
    attempts = [0]

    def handler(request: httpx.Request) -> httpx.Response:
        attempts[0] += 1
        if attempts[0] == 1:
            raise httpx.ConnectError("refused", request=request)
        return _reply("recovered")

    controller, client = _make(client_settings(), handler)

    await controller.send_message("question").wait()
    user = controller.messages[-2]
    assert controller.can_retry(user.id)
    assert "(You can retry this message)" in controller.messages[-1].content

    await controller.retry_message(user.id).wait()

    contents = [m.content for m in controller.messages]
    assert contents == [GREETING, "question", "recovered"]
    assert not controller.can_retry(controller.messages[1].id)
    await client.aclose()


@pytest.mark.asyncio
async def test_edit_resends_from_that_message(client_settings) -> None:
    controller, client = _make(client_settings(), lambda request: _reply("answer"))

    await controller.send_message("first").wait()
    await controller.send_message("second").wait()
    first = controller.messages[1]

    await controller.edit_message(first.id, "rewritten").wait()

    assert [m.content for m in controller.messages] == [GREETING, "rewritten", "answer"]
    await client.aclose()


@pytest.mark.asyncio
async def test_assistant_messages_cannot_be_retried(client_settings) -> None:
    controller, client = _make(client_settings(), lambda request: _reply("answer"))

    with pytest.raises(SendRejectedError):
        controller.retry_message(controller.messages[0].id)
    with pytest.raises(KeyError):
        controller.retry_message("missing")
    await client.aclose()


@pytest.mark.asyncio
async def test_state_survives_reload(client_settings) -> None:
    settings = client_settings()
    controller, client = _make(
        settings,
        lambda request: _reply("persisted", Usage(prompt_tokens=3, completion_tokens=4)),
    )
    await controller.send_message("remember me").wait()
    controller.react_to_message(controller.messages[-1].id, "👍")
    session_id = controller.current_session_id
    await client.aclose()

    reloaded, client = _make(settings, lambda request: _reply("x"))

    assert reloaded.current_session_id == session_id
    assert [m.content for m in reloaded.messages] == [GREETING, "remember me", "persisted"]
    assert reloaded.messages[-1].reaction == "👍"
    assert reloaded.usage.prompt_tokens == 3
    assert reloaded.current_session.title == "remember me"
    await client.aclose()


@pytest.mark.asyncio
async def test_session_management(client_settings) -> None:
    controller, client = _make(client_settings(), lambda request: _reply("x"))
    first = controller.current_session

    second = controller.create_session()
    assert controller.current_session_id == second.id
    assert controller.sessions[0] is second
    assert controller.messages[0].content == GREETING

    controller.switch_session(first.id)
    assert controller.current_session is first

    controller.rename_session(first.id, "  Renamed  ")
    assert first.title == "Renamed"
    with pytest.raises(ValueError):
        controller.rename_session(first.id, "   ")
    with pytest.raises(KeyError):
        controller.switch_session("missing")

    controller.delete_session(first.id)
    assert controller.current_session_id == second.id

    controller.delete_session(second.id)
    assert len(controller.sessions) == 1
    assert controller.current_session_id == controller.sessions[0].id
    await client.aclose()


@pytest.mark.asyncio
async def test_switch_session_stops_active_stream(client_settings) -> None:
    release = asyncio.Event()
    controller, client = _make(client_settings(), _gated_handler(release))
    origin = controller.current_session

    handle = controller.send_message("one")
    await _until(lambda: controller.messages[-1].content == "slow ")
    controller.create_session()
    release.set()
    await handle.wait()

    assert origin.messages[-1].content.endswith("[Generation stopped by user]")
    assert controller.messages[-1].content == GREETING
    assert not controller.is_streaming
    await client.aclose()


@pytest.mark.asyncio
async def test_clear_and_delete_message(client_settings) -> None:
    controller, client = _make(client_settings(), lambda request: _reply("reply"))
    await controller.send_message("hello").wait()

    controller.delete_message(controller.messages[-1].id)
    assert [m.content for m in controller.messages] == [GREETING, "hello"]

    controller.clear_chat()
    assert [m.content for m in controller.messages] == [GREETING]
    await client.aclose()


@pytest.mark.asyncio
async def test_rejected_retry_keeps_messages(client_settings) -> None:
    now = [100.0]
    controller, client = _make(
        client_settings(min_request_interval=60.0),
        lambda request: httpx.Response(500, content=b"oops"),
        clock=lambda: now[0],
    )
    await controller.send_message("please keep me").wait()
    user = controller.messages[1]
    before = [m.content for m in controller.messages]
    assert controller.can_retry(user.id)

    now[0] += 1
    with pytest.raises(SendRejectedError):
        controller.retry_message(user.id)

    assert [m.content for m in controller.messages] == before
    await client.aclose()


@pytest.mark.asyncio
async def test_rejected_edit_keeps_messages(client_settings) -> None:
    controller, client = _make(client_settings(), lambda request: _reply("answer"))
    await controller.send_message("original").wait()
    user = controller.messages[1]
    before = [m.content for m in controller.messages]

    with pytest.raises(SendRejectedError):
        controller.edit_message(user.id, "   ")

    assert [m.content for m in controller.messages] == before
    await client.aclose()


@pytest.mark.asyncio
async def test_undecodable_reply_ends_the_stream(client_settings) -> None:
    async def body() -> AsyncIterator[bytes]:
        yield b"not gzip at all"

    controller, client = _make(
        client_settings(),
        lambda request: httpx.Response(
            200, content=body(), headers={"content-encoding": "gzip"}
        ),
    )

    await controller.send_message("hi").wait()

    assistant = controller.messages[-1]
    assert not controller.is_streaming
    assert controller.active_stream is None
    assert assistant.error.type == ErrorKind.NETWORK
    assert assistant.content.endswith("(You can retry this message)")
    await client.aclose()


@pytest.mark.asyncio
async def test_annotations_are_not_sent_as_context(client_settings) -> None:
    bodies: list[dict] = []
    release = asyncio.Event()
    gated = _gated_handler(release)

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return gated(request)

    controller, client = _make(client_settings(), handler)

    first = controller.send_message("one")
    await _until(lambda: controller.messages[-1].content == "slow ")
    controller.stop_generation()
    release.set()
    await first.wait()
    await controller.send_message("two").wait()

    sent = [m["content"] for m in bodies[-1]["messages"]]
    assert sent == [GREETING, "one", "slow ", "two"]
    await client.aclose()
