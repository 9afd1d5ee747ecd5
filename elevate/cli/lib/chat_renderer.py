"""Terminal renderer for streamed agent replies.

Snapshots arrive as whole render-ready documents. Lines are printed once
they are stable; because the formatter may still rewrite earlier lines (for
example when a run of code lines becomes a fenced block), the full reply is
printed again as a separated block at the end whenever what was streamed no
longer matches the final text.
"""

from __future__ import annotations

from elevate.cli.lib.safe_output import emoji, safe_print

SEPARATOR = "-" * 60
THINKING_PREFIX = "  | "

# The last line may still grow, and markdown repair can append a closing
# fence line after it.
_UNSTABLE_TAIL = 2


class ChatRenderer:
    """Render one reply at a time with a stable block structure."""

    def __init__(self, show_thinking: bool = False):
        self.show_thinking = show_thinking
        self.begin_reply()

    def begin_reply(self) -> None:
        """Reset per-reply state before a new send."""
        self._printed: list[str] = []
        self._diverged = False
        self._thinking_lines = 0
        self._thinking_open = False

    @property
    def diverged(self) -> bool:
        return self._diverged

    def _emit(self, lines: list[str]) -> None:
        if self._diverged:
            return
        if lines[: len(self._printed)] != self._printed:
            self._diverged = True
            return
        for line in lines[len(self._printed) :]:
            safe_print(line)
            self._printed.append(line)

    def render_thinking(self, trace: str, final: bool = False) -> None:
        """Print completed lines of the reasoning trace with a margin prefix."""
        if not self.show_thinking:
            return
        lines = trace.split("\n")
        if not final:
            lines = lines[:-1]
        if not self._thinking_open and lines[self._thinking_lines :]:
            safe_print(emoji("💭", "[THINKING]"))
            self._thinking_open = True
        for line in lines[self._thinking_lines :]:
            safe_print(f"{THINKING_PREFIX}{line}")
        self._thinking_lines = max(self._thinking_lines, len(lines))

    def close_thinking(self, trace: str) -> None:
        if self._thinking_open or trace:
            self.render_thinking(trace, final=True)
        if self._thinking_open:
            safe_print("")
            self._thinking_open = False

    def render_snapshot(self, snapshot: str) -> None:
        lines = snapshot.split("\n")
        self._emit(lines[: max(0, len(lines) - _UNSTABLE_TAIL)])

    def render_complete(self, final_snapshot: str) -> None:
        """Flush the rest of the reply, or reprint it whole if earlier lines changed."""
        lines = final_snapshot.split("\n") if final_snapshot else []
        if not self._diverged and lines[: len(self._printed)] == self._printed:
            self._emit(lines)
            return
        self.render_message(final_snapshot)

    def render_message(self, content: str, title: str | None = None) -> None:
        """Render a full message block with separators."""
        safe_print("\n" + SEPARATOR)
        if title:
            safe_print(title)
            safe_print("")
        if content:
            safe_print(content)
        safe_print(SEPARATOR)

    def render_error(self, error_msg: str) -> None:
        safe_print(f"\n{emoji('❌', '[ERROR]')} Error: {error_msg}")

    def render_cancelled(self) -> None:
        safe_print(f"\n{emoji('⏹', '[CANCELLED]')} Reply cancelled")

    def render_notice(self, text: str) -> None:
        safe_print(f"{emoji('💡', '[TIP]')} {text}")
