"""Chat commands - interactive streaming conversation and one-shot questions."""

import json
import logging
import sqlite3
import sys
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from concurrent.futures import wait
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import typer

from elevate.cli._globals import build_client, get_global_config
from elevate.cli.client import APIClient, APIError
from elevate.cli.lib.chat_renderer import ChatRenderer
from elevate.cli.lib.safe_output import emoji, safe_print, safe_print_err
from elevate.cli.stream_session import ACT_PATH, STREAM_PATH, StreamSessionController
from elevate.schemas.chat import Attachment, ChatRecord
from elevate.schemas.stream import AccumulatedMessage
from elevate.services import chat_store
from elevate.services.title_generation import FALLBACK_TITLE
from elevate.services.uploads import MAX_FILES, AttachmentError, load_attachment

logger = logging.getLogger(__name__)

_POLL_INTERVAL_SEC = 0.1
_EXIT_WORDS = {"/exit", "quit", "exit"}


def _normalize_input_text(text: str) -> str:
    """Repair surrogate escapes some consoles leave in input()."""
    if not any(0xD800 <= ord(ch) <= 0xDFFF for ch in text):
        return text
    raw = text.encode(sys.stdin.encoding or "utf-8", errors="surrogateescape")
    return raw.decode("utf-8", errors="replace")


def request_title(client: APIClient, prompt: str) -> str:
    """Ask the relay for a conversation title; never fails."""
    try:
        response = client.post("/chat/title", json={"prompt": prompt})
    except APIError as e:
        logger.warning("Title request failed: %s", e.message)
        return FALLBACK_TITLE
    title = response.get("title") if isinstance(response, dict) else None
    return str(title) if title else FALLBACK_TITLE


def load_attachments(paths: Optional[List[Path]]) -> List[Attachment]:
    if paths and len(paths) > MAX_FILES:
        safe_print_err(f"{emoji('❌', '[ERROR]')} At most {MAX_FILES} files can be attached")
        raise typer.Exit(1)
    attachments: List[Attachment] = []
    for path in paths or []:
        try:
            attachments.append(load_attachment(path))
        except AttachmentError as e:
            safe_print_err(f"{emoji('❌', '[ERROR]')} {e}")
            raise typer.Exit(1)
    return attachments


def open_saved_chat(chat_id: Optional[str]) -> Optional[ChatRecord]:
    if not chat_id:
        return None
    record = chat_store.get_chat(chat_id)
    if record is None:
        safe_print_err(f"{emoji('❌', '[ERROR]')} Chat not found: {chat_id}")
        raise typer.Exit(1)
    return record


class ChatTurnRunner:
    """
    Runs the turns of one conversation.

    Owns the stream controller, forwards its callbacks to the renderer, lets
    Ctrl+C cancel an in-flight reply, and saves finished turns to the local
    chat history.
    """

    def __init__(
        self,
        client: APIClient,
        renderer: ChatRenderer,
        act: bool = False,
        chat: Optional[ChatRecord] = None,
        save_history: bool = True,
        stream_output: bool = True,
    ):
        self.client = client
        self.renderer = renderer
        self.controller = StreamSessionController(client, path=ACT_PATH if act else STREAM_PATH)
        self.chat = chat
        self.session_id = chat.session_id if chat else None
        self.save_history = save_history
        self.stream_output = stream_output
        self.errors: List[str] = []
        self.cancelled = False

    def start_new_conversation(self) -> None:
        self.chat = None
        self.session_id = None

    def _callbacks(self) -> Dict[str, Any]:
        if not self.stream_output:
            return {
                "on_snapshot": lambda _snapshot: None,
                "on_thinking": None,
                "on_complete": lambda _session_id: None,
                "on_error": self.errors.append,
            }

        def on_snapshot(snapshot: str) -> None:
            message = self.controller.message
            self.renderer.close_thinking(message.thinking_buffer if message else "")
            self.renderer.render_snapshot(snapshot)

        return {
            "on_snapshot": on_snapshot,
            "on_thinking": self.renderer.render_thinking,
            "on_complete": lambda _session_id: None,
            "on_error": self.errors.append,
        }

    def _run_interruptible(
        self, prompt: str, attachments: List[Attachment]
    ) -> Tuple[Optional[AccumulatedMessage], bool]:
        """Run send() on a worker so Ctrl+C in the main thread can cancel it."""
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="elevate-send") as executor:
            future = executor.submit(
                self.controller.send,
                prompt,
                attachments=attachments or None,
                prior_session_id=self.session_id,
                **self._callbacks(),
            )
            while True:
                try:
                    return future.result(timeout=_POLL_INTERVAL_SEC), False
                except FutureTimeoutError:
                    continue
                except KeyboardInterrupt:
                    self.controller.cancel()
                    wait([future])
                    return None, True

    def send(
        self, prompt: str, attachments: Optional[List[Attachment]] = None
    ) -> Optional[AccumulatedMessage]:
        attachments = attachments or []
        self.renderer.begin_reply()
        self.errors = []

        result, self.cancelled = self._run_interruptible(prompt, attachments)

        if self.cancelled:
            if self.stream_output:
                self.renderer.render_cancelled()
            return None

        if self.errors:
            if self.stream_output:
                error = self.controller.last_error
                self.renderer.render_error(error.user_friendly_message() if error else self.errors[0])
            return None

        if result is None:
            return None

        if self.stream_output:
            self.renderer.close_thinking(result.thinking_buffer)
            self.renderer.render_complete(result.snapshot)

        if result.session_id:
            self.session_id = result.session_id
        if self.save_history:
            self._persist(prompt, attachments, result)
        return result

    def _persist(
        self, prompt: str, attachments: List[Attachment], result: AccumulatedMessage
    ) -> None:
        try:
            if self.chat is None:
                title = request_title(self.client, prompt)
                self.chat = chat_store.create_chat(title=title, session_id=self.session_id)
            elif self.session_id and self.session_id != self.chat.session_id:
                self.chat = (
                    chat_store.update_chat(self.chat.chat_id, session_id=self.session_id)
                    or self.chat
                )

            chat_store.append_message(
                self.chat.chat_id,
                "user",
                prompt,
                attachments=[
                    {"name": item.display_name, "mime": item.mime_type} for item in attachments
                ],
            )
            chat_store.append_message(
                self.chat.chat_id,
                "assistant",
                result.visible_buffer,
                thinking=result.thinking_buffer,
            )
        except sqlite3.Error as e:
            logger.warning("Could not save chat history: %s", e)


def _print_repl_help() -> None:
    safe_print("\n[CHAT HELP]\n")
    safe_print("  - Type a message and press Enter to send it")
    safe_print("  - /attach <path>   attach a file to the next message")
    safe_print("  - /new             start a new conversation")
    safe_print("  - /thinking        toggle the reasoning trace")
    safe_print("  - Ctrl+C while a reply streams cancels it")
    safe_print("  - /exit, quit or Ctrl+D to leave\n")


def chat(
    act: bool = typer.Option(False, "--act", help="Use the agent chatflow (tool use, non-streaming)."),
    attach: Optional[List[Path]] = typer.Option(
        None, "--attach", "-a", help="File to attach to the first message (repeatable)."
    ),
    chat_id: Optional[str] = typer.Option(None, "--chat-id", "-c", help="Continue a saved chat."),
    show_thinking: bool = typer.Option(
        False, "--show-thinking", help="Print the model's reasoning trace."
    ),
) -> None:
    """
    Interactive chat with streamed, formatted replies.

    Commands inside the session: /attach, /new, /thinking, /help, /exit.
    """
    saved_chat = open_saved_chat(chat_id)
    pending = load_attachments(attach)

    client = build_client()
    renderer = ChatRenderer(show_thinking=show_thinking)
    runner = ChatTurnRunner(client, renderer, act=act, chat=saved_chat)

    safe_print("=" * 60)
    safe_print(f"Elevate chat - {'agent' if act else 'streaming'} mode")
    if saved_chat:
        safe_print(f"Continuing: {saved_chat.title}")
    safe_print("=" * 60)
    renderer.render_notice("Type /help for commands\n")

    try:
        while True:
            try:
                raw_input = _normalize_input_text(input("You: ")).strip()
            except (EOFError, KeyboardInterrupt):
                safe_print("\n\n[EXIT] Chat closed")
                break

            if not raw_input:
                continue
            if raw_input.lower() in _EXIT_WORDS:
                safe_print("\n[EXIT] Chat closed")
                break

            if raw_input.startswith("/") and not raw_input.startswith("//"):
                command, _, argument = raw_input.partition(" ")
                command = command.lower()
                if command == "/help":
                    _print_repl_help()
                elif command == "/new":
                    runner.start_new_conversation()
                    renderer.render_notice("Started a new conversation")
                elif command == "/thinking":
                    renderer.show_thinking = not renderer.show_thinking
                    renderer.render_notice(
                        f"Reasoning trace {'on' if renderer.show_thinking else 'off'}"
                    )
                elif command == "/attach":
                    if not argument.strip():
                        safe_print_err("Usage: /attach <path>")
                        continue
                    if len(pending) >= MAX_FILES:
                        safe_print_err(
                            f"{emoji('❌', '[ERROR]')} At most {MAX_FILES} files can be attached"
                        )
                        continue
                    try:
                        pending.append(load_attachment(argument.strip()))
                    except AttachmentError as e:
                        safe_print_err(f"{emoji('❌', '[ERROR]')} {e}")
                        continue
                    renderer.render_notice(f"{len(pending)} file(s) attached to the next message")
                else:
                    safe_print_err(f"Unknown command: {command} (type /help)")
                continue

            prompt = raw_input[1:] if raw_input.startswith("//") else raw_input
            safe_print("")
            result = runner.send(prompt, pending)
            if result is not None or runner.cancelled:
                pending = []
            safe_print("")
    finally:
        client.close()


def ask(
    prompt: str = typer.Argument(..., help="Message to send ('-' reads stdin)."),
    act: bool = typer.Option(False, "--act", help="Use the agent chatflow (tool use, non-streaming)."),
    attach: Optional[List[Path]] = typer.Option(
        None, "--attach", "-a", help="File to attach (repeatable)."
    ),
    chat_id: Optional[str] = typer.Option(None, "--chat-id", "-c", help="Continue a saved chat."),
    show_thinking: bool = typer.Option(
        False, "--show-thinking", help="Print the model's reasoning trace."
    ),
    save: bool = typer.Option(True, "--save/--no-save", help="Save the exchange to local history."),
) -> None:
    """Send one message and print the formatted reply."""
    config = get_global_config()
    if prompt == "-":
        prompt = sys.stdin.read().strip()
    if not prompt and not attach:
        safe_print_err(f"{emoji('❌', '[ERROR]')} Nothing to send")
        raise typer.Exit(1)

    saved_chat = open_saved_chat(chat_id)
    attachments = load_attachments(attach)
    json_output = config.output_format == "json"

    client = build_client(config)
    try:
        runner = ChatTurnRunner(
            client,
            ChatRenderer(show_thinking=show_thinking),
            act=act,
            chat=saved_chat,
            save_history=save,
            stream_output=not json_output,
        )
        result = runner.send(prompt, attachments)
    finally:
        client.close()

    if result is None:
        if json_output and runner.errors:
            safe_print(json.dumps({"error": runner.errors[0]}, ensure_ascii=False))
        raise typer.Exit(130 if runner.cancelled else 1)

    if json_output:
        safe_print(
            json.dumps(
                {
                    "response": result.visible_buffer,
                    "formatted": result.snapshot,
                    "thinking": result.thinking_buffer or None,
                    "sessionId": result.session_id,
                    "chatId": runner.chat.chat_id if runner.chat else None,
                },
                indent=2,
                ensure_ascii=False,
            )
        )
