import pytest

from elevate.services import chat_store


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    monkeypatch.setenv("ELEVATE_CHAT_DB_PATH", str(tmp_path / "chat.db"))
    chat_store.reset_db_path()
    yield tmp_path / "chat.db"
    chat_store.reset_db_path()


def test_database_created_at_configured_path(isolated_db) -> None:
    chat_store.init_db()
    assert isolated_db.exists()


def test_create_and_get_chat() -> None:
    chat = chat_store.create_chat(title="Sales Data Analysis", session_id="sess-1")

    assert chat.chat_id.startswith("chat_")
    fetched = chat_store.get_chat(chat.chat_id)
    assert fetched == chat


def test_get_missing_chat_returns_none() -> None:
    assert chat_store.get_chat("chat_missing") is None


def test_default_title() -> None:
    assert chat_store.create_chat().title == "New Chat"


def test_messages_round_trip_in_order() -> None:
    chat = chat_store.create_chat()
    chat_store.append_message(chat.chat_id, "user", "describe this", attachments=[{"name": "a.png"}])
    chat_store.append_message(chat.chat_id, "assistant", "A chart.", thinking="Looking at axes.")

    messages = chat_store.list_messages(chat.chat_id)

    assert [m.role for m in messages] == ["user", "assistant"]
    assert messages[0].attachments == [{"name": "a.png"}]
    assert messages[0].thinking is None
    assert messages[1].content == "A chart."
    assert messages[1].thinking == "Looking at axes."


def test_append_message_bumps_chat_to_top() -> None:
    older = chat_store.create_chat(title="Older")
    newer = chat_store.create_chat(title="Newer")
    assert [c.chat_id for c in chat_store.list_chats()] == [newer.chat_id, older.chat_id]

    chat_store.append_message(older.chat_id, "user", "still here")

    assert [c.chat_id for c in chat_store.list_chats()] == [older.chat_id, newer.chat_id]


def test_list_chats_respects_limit() -> None:
    for i in range(5):
        chat_store.create_chat(title=f"Chat {i}")
    assert len(chat_store.list_chats(limit=3)) == 3


def test_update_chat_title_and_session() -> None:
    chat = chat_store.create_chat()

    updated = chat_store.update_chat(chat.chat_id, title="Renamed", session_id="sess-9")

    assert updated is not None
    assert updated.title == "Renamed"
    assert updated.session_id == "sess-9"
    assert updated.updated_at >= chat.updated_at


def test_update_missing_chat_returns_none() -> None:
    assert chat_store.update_chat("chat_missing", title="x") is None


def test_delete_chat_removes_messages() -> None:
    chat = chat_store.create_chat()
    chat_store.append_message(chat.chat_id, "user", "hi")

    assert chat_store.delete_chat(chat.chat_id) is True
    assert chat_store.get_chat(chat.chat_id) is None
    assert chat_store.list_messages(chat.chat_id) == []
    assert chat_store.delete_chat(chat.chat_id) is False


def test_clear_chats_returns_count() -> None:
    chat_store.create_chat()
    chat_store.create_chat()

    assert chat_store.clear_chats() == 2
    assert chat_store.list_chats() == []
