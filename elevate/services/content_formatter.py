"""
Structural formatter for agent replies.

The agent often answers in plain text that is "almost" markdown: bare code
lines, pipe-separated rows, `Key: value` fields. ``format_content`` rewrites
those into markdown a renderer can display. It is a best-effort classifier,
not a parser: it must never raise, and it is re-run on the whole accumulated
reply every time a token arrives.

Stages (in order):
  1. wrap runs of code-like lines in fenced blocks
  2. render `TABLE: ... COLUMNS: ...` schema descriptions as tables
  3. add separator rows to pipe-delimited tables
  4. bold `label: value` fields as list items
  5. normalize blank lines around headings and fences
"""

from __future__ import annotations

import re
from typing import Callable

FENCE = "```"
MIN_CODE_RUN = 3
CODE_LOOKAHEAD = 2

# ----------------------------------------------------------------------------
# Stage 1: code auto-detection
# ----------------------------------------------------------------------------

_STATEMENT_OPENER_RE = re.compile(
    r"^(const|let|var|function|class|import|export|return|if|for|while|async|await"
    r"|def|from|public|private|protected|static|void|int|String"
    r"|func|package|type|struct)\s"
)
_SQL_OPENER_RE = re.compile(r"^(SELECT|INSERT|UPDATE|DELETE|CREATE|ALTER|DROP)\s", re.IGNORECASE)
_BRACKET_ONLY_RE = re.compile(r"^[{}\[\]()]$")
_STATEMENT_END_RE = re.compile(r"[{};]$")
_INDENTED_RE = re.compile(r"^( {4}|\t)")
_COMPACT_ASSIGNMENT_RE = re.compile(r"^\w+=\S*$")
_CALL_RE = re.compile(r"^\w+\(.*\)")
_TAG_OPEN_RE = re.compile(r"^<\w+.*>")
_TAG_CLOSE_RE = re.compile(r"</\w+>$")

_PYTHON_RE = re.compile(
    r"^(def\s|elif\s|print\(|if __name__"
    r"|from\s+[\w.]+\s+import\s"
    r"|import\s+[\w.]+(\s+as\s+\w+)?$"
    r"|(class|if|for|while|with|try|except)\b.*:$)"
)
_JAVASCRIPT_RE = re.compile(r"^(const|let|var|function|class|import|export|async|await)\b")
_JAVA_RE = re.compile(r"^(public|private|protected|static|void|int|String)\b")
_SQL_RE = re.compile(r"^(SELECT|INSERT|UPDATE|DELETE|CREATE|ALTER|DROP)\b", re.IGNORECASE)


def _is_fence(line: str) -> bool:
    return line.strip().startswith(FENCE)


def _is_code_line(line: str) -> bool:
    stripped = line.strip()
    if not stripped:
        return False
    if _INDENTED_RE.match(line):
        return True
    if _STATEMENT_OPENER_RE.match(stripped) or _SQL_OPENER_RE.match(stripped):
        return True
    if _BRACKET_ONLY_RE.match(stripped) or _STATEMENT_END_RE.search(stripped):
        return True
    if _COMPACT_ASSIGNMENT_RE.match(stripped) or _CALL_RE.match(stripped):
        return True
    return bool(_TAG_OPEN_RE.match(stripped) and _TAG_CLOSE_RE.search(stripped))


def detect_language(line: str) -> str:
    """Guess a fence language tag from the first line of a code run."""
    stripped = line.strip()
    if _PYTHON_RE.match(stripped):
        return "python"
    if _JAVASCRIPT_RE.match(stripped) or "=>" in stripped:
        return "javascript"
    if _JAVA_RE.match(stripped):
        return "java"
    if _SQL_RE.match(stripped):
        return "sql"
    if _TAG_OPEN_RE.match(stripped) and _TAG_CLOSE_RE.search(stripped):
        return "jsx"
    return ""


def _indented_code_ahead(lines: list[str], index: int) -> bool:
    for ahead in lines[index + 1 : index + 1 + CODE_LOOKAHEAD]:
        if ahead.strip() and _INDENTED_RE.match(ahead):
            return True
    return False


def wrap_code_blocks(content: str) -> str:
    """Fence runs of at least three code-like lines.

    A non-code line inside a run is kept in the run when indented code follows
    within the lookahead window (blank lines inside a function body, etc.).
    Skipped entirely once the text already contains a fence.
    """
    if FENCE in content:
        return content

    lines = content.split("\n")
    result: list[str] = []
    run: list[str] = []

    def flush() -> None:
        trailing: list[str] = []
        while run and not _is_code_line(run[-1]):
            trailing.insert(0, run.pop())
        code_lines = sum(1 for item in run if _is_code_line(item))
        if code_lines >= MIN_CODE_RUN:
            result.append(FENCE + detect_language(run[0]))
            result.extend(run)
            result.append(FENCE)
        else:
            result.extend(run)
        result.extend(trailing)
        run.clear()

    for index, line in enumerate(lines):
        if _is_code_line(line):
            run.append(line)
            continue
        if run and _indented_code_ahead(lines, index):
            run.append(line)
            continue
        if run:
            flush()
        result.append(line)

    if run:
        flush()
    return "\n".join(result)


# ----------------------------------------------------------------------------
# Stage 2: schema blocks
# ----------------------------------------------------------------------------

_SCHEMA_RE = re.compile(r"TABLE:\s*(\w+)\s*COLUMNS:\s*((?:- \w+[^\n]*\n?)+)", re.IGNORECASE)


def _render_schema(match: re.Match) -> str:
    name = match.group(1)
    rows: list[list[str]] = []
    for raw in match.group(2).split("\n"):
        item = raw.strip()
        if not item.startswith("-"):
            continue
        rows.append([cell.strip() for cell in item[1:].split("|")])

    width = max(len(row) for row in rows)
    header = "| **Column** |" + "  |" * (width - 1)
    separator = "|" + " --- |" * width
    body = ["| " + " | ".join(row + [""] * (width - len(row))) + " |" for row in rows]

    block = [f"## TABLE: {name}", "", FENCE, header, separator, *body, FENCE, ""]
    return "\n" + "\n".join(block) + "\n"


def format_schema_blocks(content: str) -> str:
    return _SCHEMA_RE.sub(_render_schema, content)


# ----------------------------------------------------------------------------
# Stage 3: pipe tables
# ----------------------------------------------------------------------------

_SEPARATOR_ROW_RE = re.compile(r"^\s*\|?\s*:?-{3,}:?\s*(\|\s*:?-{3,}:?\s*)*\|?\s*$")


def _is_table_row(line: str) -> bool:
    return line.count("|") >= 2


def _separator_for(line: str) -> str:
    cells = line.strip()
    if cells.startswith("|"):
        cells = cells[1:]
    if cells.endswith("|"):
        cells = cells[:-1]
    return "|" + " --- |" * len(cells.split("|"))


def _ensure_blank(lines: list[str]) -> None:
    if lines and lines[-1].strip():
        lines.append("")


def format_pipe_tables(content: str) -> str:
    """Turn runs of pipe-delimited lines (outside fences) into markdown tables."""
    lines = content.split("\n")
    out: list[str] = []
    in_fence = False
    in_table = False

    for index, line in enumerate(lines):
        if _is_fence(line) or in_fence:
            if _is_fence(line):
                in_fence = not in_fence
            if in_table:
                in_table = False
                _ensure_blank(out)
            out.append(line)
            continue

        if _is_table_row(line):
            if not in_table:
                in_table = True
                _ensure_blank(out)
                out.append(line)
                following = lines[index + 1] if index + 1 < len(lines) else ""
                if not _SEPARATOR_ROW_RE.match(following):
                    out.append(_separator_for(line))
            else:
                out.append(line)
            continue

        if in_table:
            in_table = False
            if line.strip():
                _ensure_blank(out)
        out.append(line)

    return "\n".join(out)


# ----------------------------------------------------------------------------
# Stage 4: structured lists
# ----------------------------------------------------------------------------

_FIELD_RE = re.compile(r"^\s*(?:-\s*)?(\w[\w ]*):\s+(\S.*)$")


def format_structured_lists(content: str) -> str:
    """Rewrite `Label: value` lines as `- **Label:** value` list items."""
    out: list[str] = []
    in_fence = False
    for line in content.split("\n"):
        if _is_fence(line):
            in_fence = not in_fence
            out.append(line)
            continue
        match = None if in_fence or _is_table_row(line) else _FIELD_RE.match(line)
        if match:
            out.append(f"- **{match.group(1).strip()}:** {match.group(2)}")
        else:
            out.append(line)
    return "\n".join(out)


# ----------------------------------------------------------------------------
# Stage 5: spacing
# ----------------------------------------------------------------------------

_HEADING_RE = re.compile(r"^#{1,6}\s+\S")


def normalize_spacing(content: str) -> str:
    """Blank lines around headings and fences; at most one blank line in a row."""
    out: list[str] = []
    in_fence = False

    for line in content.split("\n"):
        if _is_fence(line):
            if in_fence:
                out.append(line)
                out.append("")
            else:
                _ensure_blank(out)
                out.append(line)
            in_fence = not in_fence
            continue

        if in_fence:
            out.append(line)
            continue

        if not line.strip():
            if out and out[-1] == "":
                continue
            out.append("")
            continue

        if _HEADING_RE.match(line):
            _ensure_blank(out)
            out.append(line)
            out.append("")
            continue

        out.append(line)

    return "\n".join(out).strip()


_STAGES: tuple[Callable[[str], str], ...] = (
    wrap_code_blocks,
    format_schema_blocks,
    format_pipe_tables,
    format_structured_lists,
    normalize_spacing,
)


def format_content(content: str) -> str:
    """Run every formatting stage over ``content`` and return markdown."""
    formatted = content or ""
    for stage in _STAGES:
        formatted = stage(formatted)
    return formatted
