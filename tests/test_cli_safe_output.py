"""Tests for CLI safe output handling with encoding fallback."""

import io
from unittest import mock

from elevate.cli.lib import safe_output
from elevate.cli.lib.safe_output import (
    emoji,
    safe_print,
    safe_print_err,
    supports_unicode,
)


class _Stream:
    def __init__(self, encoding):
        self.encoding = encoding


class TestUnicodeSupport:
    """Test unicode/emoji support detection."""

    def test_utf8_stream_supports_unicode(self):
        assert supports_unicode(_Stream("utf-8")) is True

    def test_narrow_encoding_does_not(self):
        assert supports_unicode(_Stream("ascii")) is False
        assert supports_unicode(_Stream("cp1252")) is False

    def test_missing_encoding_defaults_to_utf8(self):
        assert supports_unicode(_Stream(None)) is True

    def test_unknown_codec(self):
        assert supports_unicode(_Stream("no-such-codec")) is False

    def test_emoji_provides_fallback(self):
        """Test emoji always returns either unicode or ascii fallback."""
        result = emoji("❌", "[ERROR]")
        assert result in ["❌", "[ERROR]"]

    def test_emoji_uses_ascii_on_narrow_terminal(self):
        with mock.patch.object(safe_output, "_UNICODE_SUPPORT", False):
            assert emoji("❌", "[ERROR]") == "[ERROR]"


class TestEncodingFallback:
    """Test replacement when the terminal cannot encode the text."""

    def test_unencodable_text_is_replaced(self):
        written = []

        def ascii_only(value):
            value.encode("ascii")
            written.append(value)

        safe_output._write_with_fallback(ascii_only, "done ✅ ok", "ascii")

        assert written == ["done ? ok"]

    def test_safe_print_on_narrow_stdout(self):
        buffer = io.BytesIO()
        narrow = io.TextIOWrapper(buffer, encoding="ascii")
        with mock.patch("sys.stdout", narrow):
            safe_print("naïve ✅")
            narrow.flush()

        assert buffer.getvalue() == b"na?ve ?\n"

    def test_control_chars_dont_crash(self):
        with mock.patch("builtins.print"):
            safe_print("Normal\x00\x01\x02text")


class TestStreams:
    """Test which stream each helper writes to."""

    def test_safe_print_to_stdout(self, capsys):
        safe_print("hello 世界")
        captured = capsys.readouterr()
        assert captured.out == "hello 世界\n"
        assert captured.err == ""

    def test_safe_print_end_and_err(self, capsys):
        safe_print("partial", end="", err=True)
        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err == "partial"

    def test_error_message_with_emoji(self, capsys):
        message = f"{emoji('❌', '[ERROR]')} File not found: config.json"
        safe_print_err(message)
        assert "File not found: config.json" in capsys.readouterr().err
