"""
Terminal-safe output for the CLI.

Agent replies carry arbitrary Unicode (emoji, box drawing, CJK). Terminals
with a narrow encoding (cp1252, GBK) cannot print all of it, so every write
goes through a replacement fallback instead of raising UnicodeEncodeError.
"""

import sys
from typing import Callable, TextIO

import typer


def supports_unicode(stream: TextIO | None = None) -> bool:
    """True if the stream's encoding can render emoji."""
    encoding = getattr(stream or sys.stdout, "encoding", None) or "utf-8"
    try:
        "✅".encode(encoding)
        return True
    except (UnicodeEncodeError, LookupError):
        return False


_UNICODE_SUPPORT = supports_unicode()


def emoji(unicode_char: str, ascii_fallback: str) -> str:
    """Return the emoji when the terminal can show it, else a bracketed label like [ERROR]."""
    return unicode_char if _UNICODE_SUPPORT else ascii_fallback


def _sanitize(text: str, encoding: str) -> str:
    try:
        return text.encode(encoding, errors="replace").decode(encoding, errors="replace")
    except LookupError:
        return text.encode("ascii", errors="replace").decode("ascii")


def _write_with_fallback(write: Callable[[str], None], text: str, encoding: str | None) -> None:
    try:
        write(text)
    except UnicodeEncodeError:
        write(_sanitize(text, encoding or "utf-8"))


def safe_print(text: str, end: str = "\n", flush: bool = False, err: bool = False) -> None:
    """
    Print text with terminal-encoding fallback.

    Characters the terminal cannot encode are replaced rather than raising.

    Args:
        text: Text to print
        end: String appended after the text (default: newline)
        flush: Whether to flush the stream
        err: Print to stderr instead of stdout
    """
    if err:
        safe_print_err(text, end=end, flush=flush)
        return

    _write_with_fallback(
        lambda value: print(value, end=end, flush=flush),
        text,
        sys.stdout.encoding,
    )


def safe_print_err(text: str, end: str = "\n", flush: bool = False) -> None:
    """Print to stderr through typer.echo with the same fallback as safe_print."""
    newline = end == "\n"
    _write_with_fallback(
        lambda value: typer.echo(value, err=True, nl=newline),
        text,
        sys.stderr.encoding,
    )
    if flush:
        sys.stderr.flush()
