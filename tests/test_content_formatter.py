import pytest

from elevate.services.content_formatter import (
    detect_language,
    format_content,
    format_pipe_tables,
    format_schema_blocks,
    format_structured_lists,
    normalize_spacing,
    wrap_code_blocks,
)


def test_empty_input_returns_empty() -> None:
    assert format_content("") == ""


def test_plain_text_is_unchanged() -> None:
    assert format_content("Hello there, how are you?") == "Hello there, how are you?"


def test_code_detection_skipped_when_fence_present() -> None:
    text = "```\nalready fenced\n```\nconst a = 1;\nconst b = 2;\nconst c = 3;"
    assert wrap_code_blocks(text) == text


def test_code_run_is_fenced_with_language() -> None:
    text = "Here is code:\ndef add(a, b):\n    return a + b\nprint(add(1, 2))\nDone."
    assert format_content(text) == (
        "Here is code:\n\n"
        "```python\n"
        "def add(a, b):\n"
        "    return a + b\n"
        "print(add(1, 2))\n"
        "```\n\n"
        "Done."
    )


def test_code_run_keeps_blank_line_before_indented_continuation() -> None:
    text = "def f():\n    a = 1\n\n    return a\nprint(f())"
    assert format_content(text) == "```python\ndef f():\n    a = 1\n\n    return a\nprint(f())\n```"


def test_trailing_prose_stays_outside_the_fence() -> None:
    text = "const a = 1;\nconst b = 2;\nconst c = 3;\n\nThat's it."
    assert format_content(text) == (
        "```javascript\nconst a = 1;\nconst b = 2;\nconst c = 3;\n```\n\nThat's it."
    )


def test_short_code_run_is_left_verbatim() -> None:
    text = "Call setup() first.\nsetup()\nThen relax."
    assert wrap_code_blocks(text) == text


@pytest.mark.parametrize(
    "line,language",
    [
        ("def main():", "python"),
        ("from os import path", "python"),
        ("const x = 1;", "javascript"),
        ("items.map(x => x * 2)", "javascript"),
        ("public class Main {", "java"),
        ("SELECT * FROM users;", "sql"),
        ("<div>hi</div>", "jsx"),
        ("x=1", ""),
    ],
)
def test_detect_language(line: str, language: str) -> None:
    assert detect_language(line) == language


def test_schema_block_becomes_heading_and_table() -> None:
    text = "TABLE: users\nCOLUMNS:\n- id | int | primary key\n- email | text\n"
    result = format_content(text)

    assert result.startswith("## TABLE: users\n\n```\n")
    assert "| **Column** |  |  |" in result
    assert "| --- | --- | --- |" in result
    assert "| id | int | primary key |" in result
    assert "| email | text |  |" in result
    assert result.endswith("```")


def test_schema_block_pattern_is_required() -> None:
    text = "The TABLE: keyword alone is not a schema"
    assert format_schema_blocks(text) == text


def test_pipe_table_gets_separator_after_first_row() -> None:
    text = "Results:\n| Name | Age |\n| Alice | 30 |\nEnd of list"
    assert format_pipe_tables(text) == (
        "Results:\n\n| Name | Age |\n| --- | --- |\n| Alice | 30 |\n\nEnd of list"
    )


def test_pipe_table_without_outer_pipes() -> None:
    text = "a | b | c\n1 | 2 | 3"
    assert format_pipe_tables(text) == "a | b | c\n| --- | --- | --- |\n1 | 2 | 3"


def test_pipe_table_existing_separator_is_not_duplicated() -> None:
    text = "| Name | Age |\n| --- | --- |\n| Bob | 25 |"
    assert format_pipe_tables(text) == text


def test_pipe_table_ends_at_first_non_pipe_line() -> None:
    lines = format_pipe_tables("| a | b |\n| 1 | 2 |\nafter\n| c | d |").split("\n")
    assert lines == [
        "| a | b |",
        "| --- | --- |",
        "| 1 | 2 |",
        "",
        "after",
        "",
        "| c | d |",
        "| --- | --- |",
    ]


def test_pipes_inside_fence_are_not_tables() -> None:
    text = "```\na | b | c\n```"
    assert format_pipe_tables(text) == text


def test_structured_fields_become_bold_list_items() -> None:
    text = "Name: Alice\nRole: Senior Engineer"
    assert format_structured_lists(text) == "- **Name:** Alice\n- **Role:** Senior Engineer"


def test_structured_field_with_existing_dash() -> None:
    assert format_structured_lists("- Status: active") == "- **Status:** active"


def test_urls_are_not_structured_fields() -> None:
    text = "Visit https://example.com today"
    assert format_content(text) == text


def test_structured_fields_inside_fence_untouched() -> None:
    text = "```\nkey: value\n```"
    assert format_structured_lists(text) == text


def test_heading_gets_blank_lines() -> None:
    assert normalize_spacing("intro\n# Title\nSome text") == "intro\n\n# Title\n\nSome text"


def test_consecutive_blank_lines_collapse() -> None:
    assert normalize_spacing("\n\na\n\n\n\nb\n\n") == "a\n\nb"


def test_blank_lines_inside_fence_are_preserved() -> None:
    text = "```\na\n\n\nb\n```"
    assert normalize_spacing(text) == text


@pytest.mark.parametrize(
    "text",
    [
        "Results:\n| Name | Age |\n| Alice | 30 |\nEnd of list",
        "Name: Alice\nRole: Engineer",
        "Here is code:\ndef add(a, b):\n    return a + b\nprint(add(1, 2))\nDone.",
        "TABLE: users\nCOLUMNS:\n- id | int\n- email | text\n",
        "# Title\ntext\n\n\n\nmore",
    ],
)
def test_format_is_idempotent(text: str) -> None:
    once = format_content(text)
    assert format_content(once) == once


@pytest.mark.parametrize(
    "text",
    ["|", "||", ":", ": value", "```", "TABLE: x COLUMNS:", "\n\n\n", "\t\t", "- ", "<a>"],
)
def test_format_never_raises(text: str) -> None:
    assert isinstance(format_content(text), str)
