"""Tests for terminal client commands."""

import httpx
import pytest

from webbot.client.cli import TerminalChat
from webbot.client.controller import ChatController
from webbot.client.store import SessionStore
from webbot.streaming.encoder import encode_answer


@pytest.fixture
def chat(client_settings):
    settings = client_settings()
    body = "".join(encode_answer("pong")).encode()
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body))
    )
    controller = ChatController(client, SessionStore(settings.store_path), settings=settings)
    return TerminalChat(controller)


@pytest.mark.asyncio
async def test_session_commands(chat: TerminalChat, capsys) -> None:
    assert await chat._command("/new")
    assert await chat._command("/rename Work")
    assert await chat._command("/sessions")

    out = capsys.readouterr().out
    assert "* 1. Work" in out
    assert "  2. New Chat" in out

    assert await chat._command("/switch 2")
    assert chat.controller.current_session.title == "New Chat"
    assert await chat._command("/switch 9")
    assert "Usage: /switch" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_retry_and_usage(chat: TerminalChat, capsys) -> None:
    assert await chat._command("/retry")
    assert "Nothing to retry" in capsys.readouterr().out

    await chat._send(lambda: chat.controller.send_message("ping"))
    assert "pong" in capsys.readouterr().out

    assert await chat._command("/usage")
    assert "prompt tokens: 0" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_export_writes_file(chat: TerminalChat, tmp_path, capsys) -> None:
    target = tmp_path / "out.md"

    assert await chat._command(f"/export md {target}")
    assert target.read_text().startswith("# New Chat")

    assert await chat._command("/export pdf")
    assert "Unsupported export format" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_quit_and_unknown(chat: TerminalChat, capsys) -> None:
    assert await chat._command("/bogus")
    assert "Unknown command /bogus" in capsys.readouterr().out
    assert await chat._command("/quit") is False
