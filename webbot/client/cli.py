"""Interactive terminal front end over ``ChatController``.

Lines are sent as chat messages; lines starting with ``/`` are commands.
Ctrl+C while an answer is streaming stops the generation.
"""

import asyncio
import logging
import signal
from pathlib import Path

from webbot.client.controller import ChatController, ChatEvent, SendRejectedError
from webbot.models.messages import MessageRole

logger = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  /new                 start a new chat
  /sessions            list chats
  /switch <n>          switch to chat number n
  /rename <title>      rename the current chat
  /delete              delete the current chat
  /clear               clear the current chat
  /retry               resend the last message
  /export <txt|md|json> [path]
  /usage               show token usage
  /status              show backend status
  /quit                exit"""


class TerminalChat:
    def __init__(self, controller: ChatController) -> None:
        self.controller = controller
        controller.subscribe(self._on_event)

    def _on_event(self, event: ChatEvent) -> None:
        if event.kind in ("chunk", "error", "stopped"):
            print(event.text, end="", flush=True)
        elif event.kind == "done":
            print(flush=True)

    async def run(self) -> None:
        print(f"WebBot - {self.controller.current_session.title}. Type /help for commands.")
        self._print_history()
        while True:
            try:
                line = await asyncio.to_thread(input, "\nyou> ")
            except EOFError:
                break
            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                if not await self._command(line):
                    break
                continue
            await self._send(lambda: self.controller.send_message(line))

    async def _send(self, start) -> None:
        try:
            handle = start()
        except SendRejectedError as exc:
            print(f"! {exc}")
            return

        print("bot> ", end="", flush=True)
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.controller.stop_generation)
        except (NotImplementedError, RuntimeError):
            logger.debug("SIGINT handler unavailable; generation cannot be interrupted")
        try:
            await handle.wait()
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass
        if handle.cancelled:
            print(flush=True)

    async def _command(self, line: str) -> bool:
        name, _, arg = line[1:].partition(" ")
        arg = arg.strip()
        controller = self.controller

        if name in ("quit", "exit"):
            return False
        if name == "help":
            print(HELP_TEXT)
        elif name == "new":
            controller.create_session()
            print("Started a new chat.")
        elif name == "sessions":
            for number, session in enumerate(controller.sessions, start=1):
                marker = "*" if session.id == controller.current_session_id else " "
                print(f"{marker} {number}. {session.title} ({len(session.messages)} messages)")
        elif name == "switch":
            try:
                session = controller.sessions[int(arg) - 1]
            except (ValueError, IndexError):
                print("! Usage: /switch <number from /sessions>")
                return True
            controller.switch_session(session.id)
            self._print_history()
        elif name == "rename":
            try:
                controller.rename_session(controller.current_session_id, arg)
            except ValueError as exc:
                print(f"! {exc}")
        elif name == "delete":
            controller.delete_session(controller.current_session_id)
            print(f"Deleted. Now in: {controller.current_session.title}")
        elif name == "clear":
            controller.clear_chat()
            self._print_history()
        elif name == "retry":
            last_user = next(
                (m for m in reversed(controller.messages) if m.role == MessageRole.USER),
                None,
            )
            if last_user is None:
                print("! Nothing to retry")
            else:
                await self._send(lambda: controller.retry_message(last_user.id))
        elif name == "export":
            fmt, _, path = arg.partition(" ")
            try:
                exported = controller.export_chat(fmt or "txt")
            except ValueError as exc:
                print(f"! {exc}")
                return True
            target = Path(path.strip() or exported.filename)
            target.write_text(exported.content, encoding="utf-8")
            print(f"Exported to {target}")
        elif name == "usage":
            usage = controller.usage
            print(
                f"prompt tokens: {usage.prompt_tokens}, "
                f"completion tokens: {usage.completion_tokens}, "
                f"cost: ${usage.total_cost:.4f}"
            )
        elif name == "status":
            print(f"backend: {controller.backend_status.value}, {controller.current_status}")
        else:
            print(f"! Unknown command /{name}. Type /help.")
        return True

    def _print_history(self) -> None:
        for message in self.controller.messages:
            speaker = "you" if message.role == MessageRole.USER else "bot"
            print(f"{speaker}> {message.content}")
