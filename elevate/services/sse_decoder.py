"""
Incremental Server-Sent Events decoder for agent replies.

Feeds raw transport chunks in, gets typed stream events out. A chunk may end
in the middle of a line (or of a multi-byte character); the tail is kept until
the next ``feed`` or ``finish`` call, so the same bytes always decode to the
same events regardless of how the transport split them.

Accepted payload shapes on `data:` lines:
  - {"event": "token" | "thinking", "data": "<text>"}
  - {"event": "metadata", "data": {"sessionId": "..."}}
  - {"event": "end"} / {"event": "error", "data": "<message>"}
  - legacy flat {"token": "...", "sessionId": "..."}
  - bare text (anything that is not JSON), except the `[DONE]` sentinel
"""

from __future__ import annotations

import json
import logging
from typing import Any

from elevate.schemas.stream import (
    EndEvent,
    ErrorEvent,
    MetadataEvent,
    StreamEvent,
    ThinkingEvent,
    TokenEvent,
)

logger = logging.getLogger("elevate.sse_decoder")

DONE_SENTINEL = "[DONE]"

# Framing artifacts some Flowise versions emit on their own line.
_IGNORED_LINES = frozenset({"message", "message:"})

_NOT_JSON = object()


def _load_json(payload: str) -> Any:
    try:
        return json.loads(payload)
    except ValueError:
        return _NOT_JSON


def _as_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


class SSEDecoder:
    """Stateful line decoder; one instance per response stream."""

    def __init__(self) -> None:
        self._buffer = b""
        self.current_event: str | None = None

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        """Consume a transport chunk and return the events it completes."""
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        if not chunk:
            return []

        self._buffer += chunk
        *complete, self._buffer = self._buffer.split(b"\n")

        events: list[StreamEvent] = []
        for raw in complete:
            events.extend(self._decode_raw(raw))
        return events

    def finish(self) -> list[StreamEvent]:
        """Flush a trailing line that arrived without a newline."""
        raw, self._buffer = self._buffer, b""
        if not raw:
            return []
        return self._decode_raw(raw)

    def _decode_raw(self, raw: bytes) -> list[StreamEvent]:
        line = raw.decode("utf-8", errors="replace")
        if line.endswith("\r"):
            line = line[:-1]
        return self.decode_line(line)

    def decode_line(self, line: str) -> list[StreamEvent]:
        """Decode one complete SSE line."""
        if not line.strip() or line.startswith(":"):
            # blank separators and `:keepalive` comments
            return []
        if line.strip() in _IGNORED_LINES:
            return []

        if line.startswith("event:"):
            self.current_event = line[len("event:") :].strip() or None
            return []

        if line.startswith("data:"):
            payload = line[len("data:") :]
            if payload.startswith(" "):
                payload = payload[1:]
            return self._classify(payload)

        # id:, retry: and anything else carry nothing we use.
        return []

    def _classify(self, payload: str) -> list[StreamEvent]:
        stripped = payload.strip()
        parsed = _load_json(stripped) if stripped else _NOT_JSON

        if isinstance(parsed, dict):
            return self._from_object(parsed)

        if parsed is not _NOT_JSON:
            logger.debug("Ignoring non-object JSON payload: %.80s", stripped)
            return []

        if stripped and stripped != DONE_SENTINEL:
            return [TokenEvent(text=payload, sse_event=self.current_event)]
        return []

    def _from_object(self, obj: dict[str, Any]) -> list[StreamEvent]:
        kind = obj.get("event")
        data = obj.get("data")
        context = self.current_event

        if kind == "token" and _as_text(data):
            return [TokenEvent(text=_as_text(data), sse_event=context)]
        if kind == "thinking" and _as_text(data):
            return [ThinkingEvent(text=_as_text(data), sse_event=context)]
        if kind == "metadata" and isinstance(data, dict) and data.get("sessionId"):
            return [MetadataEvent(session_id=str(data["sessionId"]), sse_event=context)]
        if kind == "end":
            return [EndEvent(sse_event=context)]
        if kind == "error":
            message = _as_text(data) or "Upstream agent reported an error"
            return [ErrorEvent(message=message, sse_event=context)]

        # Legacy flat format; both fields may appear on the same line.
        events: list[StreamEvent] = []
        token = _as_text(obj.get("token"))
        if token:
            events.append(TokenEvent(text=token, sse_event=context))
        session_id = obj.get("sessionId")
        if session_id:
            events.append(MetadataEvent(session_id=str(session_id), sse_event=context))
        if not events and kind is not None:
            logger.debug("Ignoring unrecognised stream event: %s", kind)
        return events
