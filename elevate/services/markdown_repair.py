"""Close markdown constructs left open by a truncated, still-streaming reply."""

from __future__ import annotations

import re

_BOLD_RE = re.compile(r"\*\*")
_ITALIC_RE = re.compile(r"(?<!\*)\*(?!\*)")
_FENCE_RE = re.compile(r"```")
_BACKTICK_RE = re.compile(r"`")


def _is_odd(count: int) -> bool:
    return count % 2 == 1


def repair_markdown(content: str) -> str:
    """Append closers for any unbalanced bold, italic, inline-code or fence marker.

    Counts are taken on the input; closers go on the end in the order
    bold, italic, inline code, fence. Literal markers (e.g. asterisks inside
    code) are counted like any other.
    """
    if not content:
        return ""

    bold_count = len(_BOLD_RE.findall(content))
    italic_count = len(_ITALIC_RE.findall(content))
    fence_count = len(_FENCE_RE.findall(content))
    # Backticks belonging to a ``` fence are not inline-code markers.
    inline_count = len(_BACKTICK_RE.findall(_FENCE_RE.sub("", content)))

    result = content
    if _is_odd(bold_count):
        result += "**"
    if _is_odd(italic_count):
        result += "*"
    if _is_odd(inline_count):
        result += "`"
    if _is_odd(fence_count):
        result += "\n```"
    return result
