"""
Stream session controller.

Runs one prompt/response exchange against the relay: opens the transport,
feeds bytes to the SSE decoder, keeps the accumulated reply, and reports
progress to the caller through callbacks:

    on_snapshot(markdown)   render-ready reply so far, after every token
    on_thinking(trace)      full reasoning trace so far
    on_complete(session_id) once, when the reply is finished
    on_error(message)       once, instead of on_complete

Exactly one of on_complete / on_error fires per send, unless the caller
cancels, in which case nothing fires after cancel() returns.
"""

import json
import logging
import threading
from typing import Callable, List, Optional

import httpx

from elevate.cli.client import (
    APIClient,
    APIError,
    JSONParseError,
    SendInProgressError,
    UnexpectedContentTypeError,
    map_transport_error,
)
from elevate.schemas.chat import Attachment, PredictionRequest
from elevate.schemas.stream import (
    AccumulatedMessage,
    EndEvent,
    ErrorEvent,
    MetadataEvent,
    StreamEvent,
    ThinkingEvent,
    TokenEvent,
)
from elevate.services.content_formatter import format_content
from elevate.services.markdown_repair import repair_markdown
from elevate.services.sse_decoder import SSEDecoder
from elevate.services.uploads import AttachmentError, build_uploads

logger = logging.getLogger(__name__)

STREAM_PATH = "/chat/stream"
ACT_PATH = "/chat/act"

SnapshotCallback = Callable[[str], None]
ThinkingCallback = Callable[[str], None]
CompleteCallback = Callable[[Optional[str]], None]
ErrorCallback = Callable[[str], None]


def render_snapshot(buffer: str) -> str:
    """Formatter + repair over the whole accumulated reply."""
    return repair_markdown(format_content(buffer))


class _Exchange:
    """State of a single send: the growing message plus the caller's callbacks."""

    def __init__(
        self,
        message: AccumulatedMessage,
        on_snapshot: SnapshotCallback,
        on_thinking: Optional[ThinkingCallback],
        on_complete: CompleteCallback,
        on_error: ErrorCallback,
        render: Callable[[str], str],
        cancelled: threading.Event,
        lock: threading.RLock,
    ):
        self.message = message
        self.on_snapshot = on_snapshot
        self.on_thinking = on_thinking
        self.on_complete = on_complete
        self.on_error = on_error
        self.render = render
        self.cancelled = cancelled
        # Held around every callback; cancel() takes it to set the flag.
        self.lock = lock
        self.finished = False
        self.result: Optional[AccumulatedMessage] = None

    @property
    def stopped(self) -> bool:
        return self.finished or self.cancelled.is_set()

    def dispatch(self, event: StreamEvent) -> bool:
        """Apply one event. Returns True once no further events should be read."""
        if self.stopped:
            return True

        if isinstance(event, TokenEvent):
            self.message.visible_buffer += event.text
            snapshot = self.render(self.message.visible_buffer)
            self.message.snapshot = snapshot
            with self.lock:
                if not self.stopped:
                    self.on_snapshot(snapshot)
        elif isinstance(event, ThinkingEvent):
            self.message.thinking_buffer += event.text
            with self.lock:
                if not self.stopped and self.on_thinking is not None:
                    self.on_thinking(self.message.thinking_buffer)
        elif isinstance(event, MetadataEvent):
            self.message.session_id = event.session_id
        elif isinstance(event, EndEvent):
            self.complete()
        elif isinstance(event, ErrorEvent):
            self.fail(event.message)

        return self.stopped

    def complete(self) -> None:
        with self.lock:
            if self.stopped:
                return
            self.finished = True
            self.result = self.message.finalize()
            self.on_complete(self.message.session_id)

    def fail(self, message: str) -> None:
        with self.lock:
            if self.stopped:
                return
            self.finished = True
            self.on_error(message)


class StreamSessionController:
    """Owns at most one in-flight exchange for a conversation."""

    def __init__(
        self,
        client: APIClient,
        path: str = STREAM_PATH,
        render: Callable[[str], str] = render_snapshot,
    ):
        self._client = client
        self.path = path
        self._render = render
        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._callback_lock = threading.RLock()
        self._response: Optional[httpx.Response] = None
        self._owner_thread: Optional[int] = None
        self.message: Optional[AccumulatedMessage] = None
        self.last_error: Optional[APIError] = None

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    def cancel(self) -> None:
        """Abort the in-flight send; no callback fires afterwards."""
        if not self.in_flight:
            return
        with self._callback_lock:
            self._cancelled.set()
        logger.info("Cancelling in-flight reply")

        # From another thread the reader may be blocked on the socket; closing
        # the response unblocks it. From a callback the read loop sees the flag.
        response = self._response
        if response is not None and threading.get_ident() != self._owner_thread:
            response.close()

    def send(
        self,
        prompt: str,
        *,
        on_snapshot: SnapshotCallback,
        on_complete: CompleteCallback,
        on_error: ErrorCallback,
        on_thinking: Optional[ThinkingCallback] = None,
        attachments: Optional[List[Attachment]] = None,
        prior_session_id: Optional[str] = None,
    ) -> Optional[AccumulatedMessage]:
        """
        Send a prompt and stream the reply through the callbacks.

        Returns:
            The finalized (immutable) message on completion, None on error
            or cancellation.

        Rejected attachments are reported through on_error without a request
        being made.

        Raises:
            SendInProgressError: another send on this controller is still running
        """
        if not self._lock.acquire(blocking=False):
            raise SendInProgressError("A reply is still streaming; cancel it before sending again")

        try:
            self._cancelled.clear()
            self._owner_thread = threading.get_ident()
            self.last_error = None
            self.message = AccumulatedMessage(session_id=prior_session_id)

            exchange = _Exchange(
                self.message,
                on_snapshot,
                on_thinking,
                on_complete,
                on_error,
                self._render,
                self._cancelled,
                self._callback_lock,
            )
            try:
                uploads = build_uploads(attachments) if attachments else None
            except AttachmentError as e:
                self._report(exchange, APIError(str(e)))
                return None

            request = PredictionRequest(
                question=prompt, session_id=prior_session_id, uploads=uploads
            )
            self._run(request, exchange)
            if self._cancelled.is_set():
                return None
            return exchange.result
        finally:
            self._response = None
            self._owner_thread = None
            self._lock.release()

    def ask(self, prompt: str, **kwargs) -> Optional[AccumulatedMessage]:
        """Blocking variant: returns the finished message or raises APIError."""
        errors: List[str] = []
        result = self.send(
            prompt,
            on_snapshot=lambda _snapshot: None,
            on_complete=lambda _session_id: None,
            on_error=errors.append,
            **kwargs,
        )
        if errors:
            raise self.last_error or APIError(errors[0])
        return result

    def _run(self, request: PredictionRequest, exchange: _Exchange) -> None:
        logger.info(
            "Sending prompt (%d chars, %d uploads, session=%s) to %s",
            len(request.question),
            len(request.uploads or []),
            request.session_id or "new",
            self.path,
        )
        try:
            with self._client.stream("POST", self.path, json=request.to_payload()) as response:
                self._response = response
                if self._cancelled.is_set():
                    return

                content_type = response.headers.get("content-type", "")
                if "text/event-stream" in content_type:
                    self._consume_stream(response, exchange)
                elif "application/json" in content_type:
                    self._consume_json(response, exchange)
                else:
                    raise UnexpectedContentTypeError(
                        f"Unexpected content-type: {content_type or 'none'}"
                    )
        except APIError as e:
            self._report(exchange, e)
        except (httpx.HTTPError, httpx.StreamError) as e:
            if self._cancelled.is_set():
                logger.debug("Transport closed after cancel: %s", e)
                return
            self._report(exchange, map_transport_error(e, "streaming reply"))

    def _consume_stream(self, response: httpx.Response, exchange: _Exchange) -> None:
        decoder = SSEDecoder()
        for chunk in response.iter_bytes():
            if exchange.stopped:
                return
            for event in decoder.feed(chunk):
                if exchange.dispatch(event):
                    return

        for event in decoder.finish():
            if exchange.dispatch(event):
                return

        # The relay closes the stream right after the final frame; a missing
        # `end` event is not an error.
        exchange.complete()

    def _consume_json(self, response: httpx.Response, exchange: _Exchange) -> None:
        raw = response.read().decode("utf-8", errors="replace")
        try:
            body = json.loads(raw)
        except ValueError as e:
            raise JSONParseError(f"Failed to parse JSON response: {e}", response_text=raw) from e

        if not isinstance(body, dict):
            raise APIError("Unexpected JSON response format", response_text=raw)
        if body.get("response"):
            events: List[StreamEvent] = [TokenEvent(text=str(body["response"]))]
            if body.get("sessionId"):
                events.append(MetadataEvent(session_id=str(body["sessionId"])))
            events.append(EndEvent())
            for event in events:
                if exchange.dispatch(event):
                    return
            return
        if body.get("error"):
            raise APIError(str(body["error"]), status_code=response.status_code, response_text=raw)
        raise APIError("Unexpected JSON response format", response_text=raw)

    def _report(self, exchange: _Exchange, error: APIError) -> None:
        if self._cancelled.is_set():
            return
        self.last_error = error
        logger.error("Reply failed: %s", error.message)
        exchange.fail(error.message)
