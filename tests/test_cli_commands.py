"""End-to-end tests for the typer commands against a mocked relay."""

import json

import httpx
import pytest
from typer.testing import CliRunner

from elevate.cli.client import APIClient
from elevate.cli.commands.chat import ChatTurnRunner
from elevate.cli.lib.chat_renderer import ChatRenderer
from elevate.cli.main import app
from elevate.schemas.chat import Attachment
from elevate.services import chat_store

runner = CliRunner()

SSE_REPLY = (
    b'data: {"event":"token","data":"Hello **world"}\n\n'
    b'data: {"event":"metadata","data":{"sessionId":"s1"}}\n\n'
    b'data: {"event":"end","data":"[DONE]"}\n\n'
)


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    monkeypatch.setenv("ELEVATE_CHAT_DB_PATH", str(tmp_path / "chat.db"))
    chat_store.reset_db_path()
    yield
    chat_store.reset_db_path()


@pytest.fixture
def relay(monkeypatch):
    """Point every CLI-built client at an in-process mock relay."""
    state = {"requests": [], "stream": None, "delete": {"success": True}}

    def handler(request: httpx.Request) -> httpx.Response:
        state["requests"].append(request)
        if request.url.path == "/chat/stream":
            if state["stream"] is not None:
                return state["stream"]
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=SSE_REPLY)
        if request.url.path == "/chat/title":
            return httpx.Response(200, json={"title": "Friendly Greeting"})
        if request.method == "DELETE":
            return httpx.Response(200, json=state["delete"])
        return httpx.Response(404, json={"error": "not found"})

    def build(config=None):
        return APIClient(transport=httpx.MockTransport(handler))

    monkeypatch.setattr("elevate.cli.commands.chat.build_client", build)
    monkeypatch.setattr("elevate.cli.commands.history.build_client", build)
    return state


def test_ask_json_output(relay) -> None:
    result = runner.invoke(app, ["--json", "ask", "hello", "--no-save"])

    assert result.exit_code == 0, result.output
    body = json.loads(result.stdout)
    assert body["response"] == "Hello **world"
    assert body["formatted"] == "Hello **world**"
    assert body["sessionId"] == "s1"
    assert body["chatId"] is None
    assert chat_store.list_chats() == []


def test_ask_text_output_prints_formatted_reply(relay) -> None:
    result = runner.invoke(app, ["ask", "hello", "--no-save"])

    assert result.exit_code == 0, result.output
    assert "Hello **world**" in result.stdout


def test_ask_saves_titled_history(relay) -> None:
    result = runner.invoke(app, ["ask", "hello"])

    assert result.exit_code == 0, result.output
    chats = chat_store.list_chats()
    assert len(chats) == 1
    assert chats[0].title == "Friendly Greeting"
    assert chats[0].session_id == "s1"
    messages = chat_store.list_messages(chats[0].chat_id)
    assert [(m.role, m.content) for m in messages] == [
        ("user", "hello"),
        ("assistant", "Hello **world"),
    ]


def test_ask_continues_saved_chat_session(relay) -> None:
    chat = chat_store.create_chat(title="Earlier", session_id="s0")

    result = runner.invoke(app, ["ask", "again", "--chat-id", chat.chat_id])

    assert result.exit_code == 0, result.output
    sent = json.loads(relay["requests"][0].content)
    assert sent["sessionId"] == "s0"
    assert chat_store.get_chat(chat.chat_id).session_id == "s1"
    assert len(chat_store.list_messages(chat.chat_id)) == 2


def test_ask_relay_error_exits_nonzero(relay) -> None:
    relay["stream"] = httpx.Response(502, json={"error": "Flowise error: 503"})

    result = runner.invoke(app, ["--json", "ask", "hello"])

    assert result.exit_code == 1
    assert json.loads(result.stdout) == {"error": "Flowise error: 503"}
    assert chat_store.list_chats() == []


def test_ask_unknown_chat_id(relay) -> None:
    result = runner.invoke(app, ["ask", "hello", "--chat-id", "chat_missing"])
    assert result.exit_code == 1


def test_history_list_json() -> None:
    chat_store.create_chat(title="Sales Review")

    result = runner.invoke(app, ["--json", "history", "list"])

    assert result.exit_code == 0, result.output
    items = json.loads(result.stdout)
    assert [item["title"] for item in items] == ["Sales Review"]


def test_history_list_empty() -> None:
    result = runner.invoke(app, ["history", "list"])

    assert result.exit_code == 0
    assert "No saved chats" in result.stdout


def test_history_show_formats_assistant_messages() -> None:
    chat = chat_store.create_chat(title="Profile")
    chat_store.append_message(chat.chat_id, "user", "who?")
    chat_store.append_message(chat.chat_id, "assistant", "Name: Alice")

    formatted = runner.invoke(app, ["history", "show", chat.chat_id])
    raw = runner.invoke(app, ["history", "show", chat.chat_id, "--raw"])

    assert formatted.exit_code == 0, formatted.output
    assert "- **Name:** Alice" in formatted.stdout
    assert "- **Name:**" not in raw.stdout
    assert "Name: Alice" in raw.stdout


def test_history_rename() -> None:
    chat = chat_store.create_chat()

    result = runner.invoke(app, ["history", "rename", chat.chat_id, "Quarterly Plan"])

    assert result.exit_code == 0, result.output
    assert chat_store.get_chat(chat.chat_id).title == "Quarterly Plan"


def test_history_delete_clears_remote_session(relay) -> None:
    chat = chat_store.create_chat(session_id="s7")

    result = runner.invoke(app, ["history", "delete", chat.chat_id])

    assert result.exit_code == 0, result.output
    assert chat_store.get_chat(chat.chat_id) is None
    assert relay["requests"][0].url.path == "/chat/sessions/s7"


def test_history_delete_keep_remote(relay) -> None:
    chat = chat_store.create_chat(session_id="s7")

    result = runner.invoke(app, ["history", "delete", chat.chat_id, "--keep-remote"])

    assert result.exit_code == 0, result.output
    assert relay["requests"] == []
    assert chat_store.get_chat(chat.chat_id) is None


def test_history_delete_remote_warning_does_not_block(relay) -> None:
    relay["delete"] = {"success": True, "warning": "Flowise deletion failed: 404 - gone"}
    chat = chat_store.create_chat(session_id="s7")

    result = runner.invoke(app, ["history", "delete", chat.chat_id])

    assert result.exit_code == 0
    assert "Flowise deletion failed" in result.output
    assert chat_store.get_chat(chat.chat_id) is None


def test_history_clear_with_yes() -> None:
    chat_store.create_chat()
    chat_store.create_chat()

    result = runner.invoke(app, ["history", "clear", "--yes"])

    assert result.exit_code == 0
    assert "Removed 2 chat(s)" in result.stdout
    assert chat_store.list_chats() == []


def test_chat_rejects_attach_past_the_file_limit(relay, tmp_path) -> None:
    note = tmp_path / "note.txt"
    note.write_text("remember this", encoding="utf-8")

    result = runner.invoke(app, ["chat"], input=f"/attach {note}\n" * 6 + "/exit\n")

    assert result.exit_code == 0, result.output
    assert "5 file(s) attached to the next message" in result.output
    assert "6 file(s) attached" not in result.output
    assert "At most 5 files can be attached" in result.output
    assert relay["requests"] == []


def test_ask_with_too_many_attachments_exits_nonzero(relay, tmp_path) -> None:
    note = tmp_path / "note.txt"
    note.write_text("remember this", encoding="utf-8")
    args = ["ask", "hello"]
    for _ in range(6):
        args += ["-a", str(note)]

    result = runner.invoke(app, args)

    assert result.exit_code == 1
    assert relay["requests"] == []


def test_turn_runner_renders_attachment_limit_as_error(capsys) -> None:
    attachment = Attachment(data=b"x", mime_type="text/plain", display_name="x.txt")
    turn_runner = ChatTurnRunner(APIClient(transport=httpx.MockTransport(lambda request: None)), ChatRenderer())

    result = turn_runner.send("q", [attachment] * 6)

    assert result is None
    assert turn_runner.errors == ["At most 5 files can be attached, got 6"]
    assert "Error: At most 5 files can be attached, got 6" in capsys.readouterr().out
    assert chat_store.list_chats() == []
