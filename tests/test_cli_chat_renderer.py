"""Tests for the streaming chat CLI renderer."""

from elevate.cli.lib.chat_renderer import SEPARATOR, THINKING_PREFIX, ChatRenderer


def test_snapshot_holds_back_unstable_tail(capsys):
    renderer = ChatRenderer()
    renderer.render_snapshot("one")
    renderer.render_snapshot("one\ntwo\nthr")
    out = capsys.readouterr().out

    assert out == "one\n"


def test_complete_flushes_remaining_lines(capsys):
    renderer = ChatRenderer()
    renderer.render_snapshot("one\ntwo\nthr")
    renderer.render_complete("one\ntwo\nthree")
    out = capsys.readouterr().out

    assert out == "one\ntwo\nthree\n"
    assert not renderer.diverged


def test_rewritten_lines_trigger_full_reprint(capsys):
    renderer = ChatRenderer()
    renderer.render_snapshot("x = 1\ny = 2\nz = 3\nw")
    final = "```python\nx = 1\ny = 2\nz = 3\nw\n```"
    renderer.render_snapshot(final)
    renderer.render_complete(final)
    out = capsys.readouterr().out

    assert renderer.diverged
    assert out.startswith("x = 1\ny = 2\n")
    assert SEPARATOR in out
    assert final in out


def test_begin_reply_resets_state(capsys):
    renderer = ChatRenderer()
    renderer.render_snapshot("a\nb\nc")
    renderer.render_snapshot("z\nb\nc\nd")
    assert renderer.diverged

    renderer.begin_reply()
    renderer.render_complete("fresh")
    out = capsys.readouterr().out

    assert not renderer.diverged
    assert out.endswith("fresh\n")


def test_thinking_hidden_by_default(capsys):
    renderer = ChatRenderer()
    renderer.render_thinking("step one\nstep two\n")
    renderer.close_thinking("step one\nstep two\n")

    assert capsys.readouterr().out == ""


def test_thinking_lines_are_prefixed(capsys):
    renderer = ChatRenderer(show_thinking=True)
    renderer.render_thinking("step one\nstep")
    renderer.render_thinking("step one\nstep two\nand")
    renderer.close_thinking("step one\nstep two\nand done")
    out = capsys.readouterr().out
    lines = out.split("\n")

    assert lines[0] in ("💭", "[THINKING]")
    assert lines[1:4] == [
        f"{THINKING_PREFIX}step one",
        f"{THINKING_PREFIX}step two",
        f"{THINKING_PREFIX}and done",
    ]
    assert out.endswith("\n\n")


def test_render_message_with_title(capsys):
    renderer = ChatRenderer()
    renderer.render_message("line one\nline two", title="Weekly report")
    out = capsys.readouterr().out

    assert out.count(SEPARATOR) == 2
    assert "Weekly report" in out
    assert "line one\nline two" in out


def test_render_error(capsys):
    renderer = ChatRenderer()
    renderer.render_error("relay unreachable")
    out = capsys.readouterr().out
    assert "Error: relay unreachable" in out


def test_render_cancelled(capsys):
    ChatRenderer().render_cancelled()
    assert "Reply cancelled" in capsys.readouterr().out
