"""CLI entrypoint for kal-chat."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Callable, Sequence
from importlib import metadata
from pathlib import Path
import shlex

from .config import ensure_config_dir, load_config
from .controller import ConversationController
from .events import ATTACHMENT_ADDED, ATTACHMENT_FAILED, Event
from .logging_utils import configure_logging
from .models import Message

HELP_TEXT = """Commands:
  /new                 start a new chat
  /sessions            list chats
  /select <id>         switch to a chat
  /delete <id>         delete a chat
  /attach <path>...    attach files to the next message
  /detach <index>      remove a pending attachment
  /quick <name>        load a preset prompt ({quick})
  /clear               reset the current chat
  /export [path]       write the current chat as markdown
  /quit                exit"""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kal-chat",
        description="kal-chat - multimodal chat sessions in the terminal",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to an alternative config.toml",
    )
    return parser


def _render_message(message: Message, emit: Callable[[str], None]) -> None:
    label = "you" if message.role == "user" else "kal"
    if message.text:
        emit(f"[{label}] {message.text}")
    for attachment in message.attachments:
        emit(f"[{label}] <{attachment.name} {attachment.mime_type}>")


class ChatShell:
    """Line-oriented UI that forwards user intents to the controller."""

    def __init__(
        self,
        controller: ConversationController,
        emit: Callable[[str], None] = print,
    ) -> None:
        self.controller = controller
        self.emit = emit
        controller.events.subscribe(ATTACHMENT_FAILED, self._on_attachment_failed)
        controller.events.subscribe(ATTACHMENT_ADDED, self._on_attachment_added)

    def _on_attachment_failed(self, event: Event) -> None:
        self.emit(f"! could not attach {event.data['name']}: {event.data['reason']}")

    def _on_attachment_added(self, event: Event) -> None:
        self.emit(f"+ attached {event.data['name']}")

    def show_current(self) -> None:
        session = self.controller.sessions.current_session
        self.emit(f"== {session.title} ({session.id})")
        for message in session.messages:
            _render_message(message, self.emit)

    async def handle(self, line: str) -> bool:
        """Process one input line; return False when the shell should exit."""
        stripped = line.strip()
        if not stripped.startswith("/"):
            await self.controller.set_pending_text(self.controller.pending_text + line)
            reply = await self.controller.send_turn()
            if reply is not None:
                _render_message(reply, self.emit)
            elif self.controller.is_sending():
                self.emit("! busy, wait for the current reply")
            return True

        try:
            command, *args = shlex.split(stripped)
        except ValueError as exc:
            self.emit(f"! {exc}")
            return True

        controller = self.controller
        if command == "/quit":
            return False
        if command == "/help":
            quick = ", ".join(sorted(controller.quick_actions)) or "none"
            self.emit(HELP_TEXT.format(quick=quick))
        elif command == "/new":
            await controller.new_session()
            self.show_current()
        elif command == "/sessions":
            current = controller.sessions.current_session_id
            for session in controller.sessions.sessions:
                marker = "*" if session.id == current else " "
                self.emit(f"{marker} {session.id}  {session.title}")
        elif command == "/select" and args:
            if await controller.select_session(args[0]):
                self.show_current()
            else:
                self.emit(f"! no chat {args[0]}")
        elif command == "/delete" and args:
            if not await controller.delete_session(args[0]):
                self.emit(f"! no chat {args[0]}")
        elif command == "/attach" and args:
            controller.attach_file(*args)
            await controller.wait_for_attachments()
        elif command == "/detach" and args:
            try:
                index = int(args[0])
            except ValueError:
                self.emit("! index must be a number")
                return True
            if not await controller.remove_attachment(index):
                self.emit(f"! no attachment {index}")
        elif command == "/quick" and args:
            if await controller.apply_quick_action(args[0]):
                self.emit(f"> {controller.pending_text}")
            else:
                self.emit(f"! unknown quick action {args[0]}")
        elif command == "/clear":
            await controller.clear_session()
            self.show_current()
        elif command == "/export":
            target = Path(args[0]) if args else Path(
                f"{controller.sessions.current_session_id}.md"
            )
            try:
                target.write_text(controller.export_markdown(), encoding="utf-8")
            except OSError as exc:
                self.emit(f"! could not export to {target}: {exc.strerror or exc}")
                return True
            self.emit(f"exported to {target}")
        else:
            self.emit("! unknown command, try /help")
        return True

    async def run(self) -> None:
        self.show_current()
        try:
            while True:
                try:
                    line = await asyncio.to_thread(input, "> ")
                except EOFError:
                    break
                if not await self.handle(line):
                    break
        finally:
            await self.controller.aclose()


def main(argv: Sequence[str] | None = None) -> None:
    """Load configuration, handle CLI flags, and run the chat shell."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        try:
            version = metadata.version("kal-chat")
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        print(f"kal-chat {version}")
        return

    ensure_config_dir()
    config = load_config(args.config)
    configure_logging(config["logging"])
    controller = ConversationController.from_config(config)
    try:
        asyncio.run(ChatShell(controller).run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
