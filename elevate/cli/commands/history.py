"""History command - list, show, rename and delete saved chats."""

import json
from datetime import datetime

import typer

from elevate.cli._globals import build_client, get_global_config
from elevate.cli.client import APIError
from elevate.cli.lib.chat_renderer import ChatRenderer
from elevate.cli.lib.safe_output import emoji, safe_print, safe_print_err
from elevate.cli.stream_session import render_snapshot
from elevate.schemas.chat import ChatRecord
from elevate.services import chat_store


def _format_timestamp(ts: str) -> str:
    """Format ISO timestamp to readable format."""
    try:
        dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
        return dt.strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return ts


def _truncate_text(text: str, max_len: int = 50) -> str:
    if len(text) > max_len:
        return text[:max_len] + "..."
    return text


def _require_chat(chat_id: str) -> ChatRecord:
    record = chat_store.get_chat(chat_id)
    if record is None:
        safe_print_err(f"{emoji('❌', '[ERROR]')} Chat not found: {chat_id}")
        raise typer.Exit(1)
    return record


def _forget_upstream_session(record: ChatRecord) -> None:
    """Best-effort removal of the agent's conversation memory."""
    if not record.session_id:
        return
    client = build_client()
    try:
        response = client.delete(f"/chat/sessions/{record.session_id}")
    except APIError as e:
        safe_print_err(f"{emoji('⚠️', '[WARN]')} Could not clear agent memory: {e.message}")
        return
    finally:
        client.close()
    warning = response.get("warning") if isinstance(response, dict) else None
    if warning:
        safe_print_err(f"{emoji('⚠️', '[WARN]')} {warning}")


history_app = typer.Typer(help="Manage locally saved chats", no_args_is_help=True)


@history_app.command("list")
def list_history(
    limit: int = typer.Option(20, "--limit", "-l", help="Number of chats to show"),
) -> None:
    """List recent chats."""
    chats = chat_store.list_chats(limit=limit)

    if get_global_config().output_format == "json":
        safe_print(json.dumps([item.model_dump() for item in chats], indent=2, ensure_ascii=False))
        return

    if not chats:
        safe_print(emoji("📭", "[EMPTY]") + " No saved chats")
        return

    safe_print(f"\n{emoji('📋', '[LIST]')} Saved chats (latest {len(chats)})\n")
    safe_print(f"{'#':<4} {'Chat ID':<40} {'Updated':<17} Title")
    safe_print("-" * 100)
    for idx, item in enumerate(chats, 1):
        safe_print(
            f"{idx:<4} {item.chat_id:<40} {_format_timestamp(item.updated_at):<17} "
            f"{_truncate_text(item.title)}"
        )
    safe_print("")
    safe_print(emoji("💡", "[TIP]") + " Continue one with: elevate chat --chat-id <chat_id>\n")


@history_app.command("show")
def show_history(
    chat_id: str = typer.Argument(..., help="Chat ID to display"),
    raw: bool = typer.Option(False, "--raw", help="Print stored text without formatting"),
) -> None:
    """Show every message of a chat."""
    record = _require_chat(chat_id)
    messages = chat_store.list_messages(chat_id)

    if get_global_config().output_format == "json":
        safe_print(
            json.dumps(
                {
                    "chat": record.model_dump(),
                    "messages": [message.model_dump() for message in messages],
                },
                indent=2,
                ensure_ascii=False,
            )
        )
        return

    safe_print(f"\n{emoji('💬', '[CHAT]')} {record.title}")
    safe_print(f"  Chat ID:  {record.chat_id}")
    safe_print(f"  Session:  {record.session_id or '-'}")
    safe_print(f"  Created:  {_format_timestamp(record.created_at)}")

    renderer = ChatRenderer()
    for message in messages:
        if message.role == "user":
            names = ", ".join(item.get("name", "?") for item in message.attachments)
            suffix = f"  [files: {names}]" if names else ""
            safe_print(f"\nYou ({_format_timestamp(message.created_at)}): {message.content}{suffix}")
        else:
            content = message.content if raw else render_snapshot(message.content)
            renderer.render_message(content)
    safe_print("")


@history_app.command("rename")
def rename_history(
    chat_id: str = typer.Argument(..., help="Chat ID"),
    title: str = typer.Argument(..., help="New title"),
) -> None:
    """Rename a chat."""
    _require_chat(chat_id)
    chat_store.update_chat(chat_id, title=title.strip() or "New Chat")
    safe_print(f"{emoji('✅', '[SUCCESS]')} Renamed")


@history_app.command("delete")
def delete_history(
    chat_id: str = typer.Argument(..., help="Chat ID"),
    keep_remote: bool = typer.Option(
        False, "--keep-remote", help="Do not clear the agent's conversation memory"
    ),
) -> None:
    """Delete a chat locally and clear its agent memory."""
    record = _require_chat(chat_id)
    if not keep_remote:
        _forget_upstream_session(record)
    chat_store.delete_chat(chat_id)
    safe_print(f"{emoji('✅', '[SUCCESS]')} Deleted {chat_id}")


@history_app.command("clear")
def clear_history(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
) -> None:
    """Delete every saved chat (local only)."""
    if not yes and not typer.confirm("Delete all saved chats?"):
        raise typer.Exit(0)
    removed = chat_store.clear_chats()
    safe_print(f"{emoji('✅', '[SUCCESS]')} Removed {removed} chat(s)")
