"""
Relay between chat clients and the Flowise prediction API.

Streaming replies are passed through byte-for-byte; while the upstream is
silent for longer than the heartbeat interval a `:keepalive` SSE comment is
interleaved so proxies do not drop the idle connection. The agent chatflow
is non-streaming and its answer is reshaped to `{response, sessionId}`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator

import httpx

from elevate.core import settings
from elevate.schemas.chat import ChatReplyResponse, ChatStreamRequest, SessionDeleteResponse

logger = logging.getLogger("elevate.flowise_relay")

DEFAULT_FILE_QUESTION = "Please analyze the attached file(s)."
KEEPALIVE_FRAME = b":keepalive\n\n"

STREAM_TIMEOUT_MESSAGE = (
    "Request timed out. The AI operation is taking longer than expected."
)
AGENT_TIMEOUT_MESSAGE = (
    "The AI agent operation is taking longer than expected. This can happen with "
    "complex tasks. Please try again or break down your request into smaller parts."
)


class RelayError(Exception):
    """Upstream call failed; `status_code` is what the relay answers with."""

    def __init__(self, message: str, status_code: int = 502):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class RelayTimeoutError(RelayError):
    def __init__(self, message: str):
        super().__init__(message, status_code=504)


def _async_client(**kwargs: Any) -> httpx.AsyncClient:
    return httpx.AsyncClient(trust_env=False, **kwargs)


def _headers() -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    api_key = settings.flowise_api_key()
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


def _timeout() -> httpx.Timeout:
    return httpx.Timeout(settings.relay_timeout_sec(), connect=10.0)


def _prediction_url(chatflow_id: str) -> str:
    if not chatflow_id:
        raise RelayError("Flowise chatflow is not configured", status_code=500)
    return f"{settings.flowise_base_url()}/prediction/{chatflow_id}"


def build_flowise_payload(request: ChatStreamRequest, streaming: bool) -> dict[str, Any]:
    """Translate a relay request into a Flowise prediction body."""
    if not request.message and not request.uploads:
        raise RelayError("No message or files provided", status_code=400)

    payload: dict[str, Any] = {
        "question": request.message or DEFAULT_FILE_QUESTION,
        "overrideConfig": {},
    }
    if streaming:
        payload["streaming"] = True
    if request.session_id:
        payload["overrideConfig"]["sessionId"] = request.session_id
    if request.uploads:
        payload["uploads"] = [upload.model_dump() for upload in request.uploads]
    return payload


def _error_frame(message: str) -> bytes:
    body = json.dumps({"event": "error", "data": message}, ensure_ascii=False)
    return f"data: {body}\n\n".encode("utf-8")


class FlowiseStream:
    """An upstream streaming response whose status has already been checked."""

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response):
        self._client = client
        self._response = response

    async def relay(self, heartbeat_sec: float) -> AsyncIterator[bytes]:
        """Yield upstream bytes, plus keepalive frames while the upstream is idle."""
        chunks = self._response.aiter_bytes()
        pending: asyncio.Future | None = None
        forwarded = 0
        try:
            while True:
                if pending is None:
                    pending = asyncio.ensure_future(chunks.__anext__())
                done, _ = await asyncio.wait({pending}, timeout=heartbeat_sec)
                if not done:
                    logger.debug("Upstream idle for %.1fs, sending keepalive", heartbeat_sec)
                    yield KEEPALIVE_FRAME
                    continue

                task, pending = pending, None
                try:
                    chunk = task.result()
                except StopAsyncIteration:
                    break
                if chunk:
                    forwarded += len(chunk)
                    yield chunk
        except httpx.TimeoutException:
            # Headers are already sent; report in-band.
            logger.error("Upstream stream timed out after %d bytes", forwarded)
            yield _error_frame(STREAM_TIMEOUT_MESSAGE)
        except httpx.HTTPError as exc:
            logger.error("Upstream stream failed after %d bytes: %s", forwarded, exc)
            yield _error_frame(f"Upstream stream failed: {exc}")
        finally:
            if pending is not None:
                pending.cancel()
                await asyncio.gather(pending, return_exceptions=True)
            logger.info("Relay finished, %d bytes forwarded", forwarded)
            await self.aclose()

    async def aclose(self) -> None:
        await self._response.aclose()
        await self._client.aclose()


async def open_stream(request: ChatStreamRequest) -> FlowiseStream:
    """
    Start a streaming prediction.

    Raises:
        RelayError: bad request (400), missing config (500) or upstream failure (502)
        RelayTimeoutError: upstream did not answer in time (504)
    """
    payload = build_flowise_payload(request, streaming=True)
    url = _prediction_url(settings.flowise_chatflow_id())
    logger.info(
        "Streaming request: message=%s session=%s uploads=%d",
        bool(request.message),
        bool(request.session_id),
        len(request.uploads or []),
    )

    client = _async_client(timeout=_timeout())
    try:
        upstream = await client.send(
            client.build_request("POST", url, json=payload, headers=_headers()),
            stream=True,
        )
    except httpx.TimeoutException as exc:
        await client.aclose()
        raise RelayTimeoutError(STREAM_TIMEOUT_MESSAGE) from exc
    except httpx.HTTPError as exc:
        await client.aclose()
        raise RelayError(f"Flowise request failed: {exc}") from exc

    if upstream.status_code >= 400:
        body = (await upstream.aread()).decode("utf-8", errors="replace")
        await upstream.aclose()
        await client.aclose()
        logger.error("Flowise error %s: %.200s", upstream.status_code, body)
        raise RelayError(f"Flowise error: {upstream.status_code}")

    return FlowiseStream(client, upstream)


def extract_reply_text(body: Any) -> str:
    """Pull the answer text out of a non-streaming Flowise response.

    Extended-thinking models return `text` as a JSON array of parts; only the
    `type == "text"` parts are kept.
    """
    if isinstance(body, str):
        return body
    if not isinstance(body, dict):
        return json.dumps(body, ensure_ascii=False)

    text = body.get("text")
    if isinstance(text, str) and text:
        try:
            parsed = json.loads(text)
        except ValueError:
            return text
        if isinstance(parsed, list):
            return "".join(
                str(part.get("text", ""))
                for part in parsed
                if isinstance(part, dict) and part.get("type") == "text"
            )
        return text
    if body.get("answer"):
        return str(body["answer"])
    if body.get("response"):
        return str(body["response"])
    return json.dumps(body, ensure_ascii=False)


async def run_agent(request: ChatStreamRequest) -> ChatReplyResponse:
    """Call the agent chatflow and reshape its answer."""
    payload = build_flowise_payload(request, streaming=False)
    url = _prediction_url(settings.flowise_act_chatflow_id())
    logger.info(
        "Agent request: message=%s session=%s uploads=%d",
        bool(request.message),
        bool(request.session_id),
        len(request.uploads or []),
    )

    async with _async_client(timeout=_timeout()) as client:
        try:
            response = await client.post(url, json=payload, headers=_headers())
        except httpx.TimeoutException as exc:
            raise RelayTimeoutError(AGENT_TIMEOUT_MESSAGE) from exc
        except httpx.HTTPError as exc:
            raise RelayError(f"Flowise request failed: {exc}") from exc

    if response.status_code >= 400:
        logger.error("Flowise agent error %s: %.200s", response.status_code, response.text)
        raise RelayError(f"Flowise error: {response.status_code}")

    try:
        body: Any = response.json()
    except ValueError:
        body = response.text

    session_id = body.get("sessionId") if isinstance(body, dict) else None
    return ChatReplyResponse(response=extract_reply_text(body), session_id=session_id)


async def delete_session(session_id: str) -> SessionDeleteResponse:
    """Clear the upstream conversation memory for a session.

    Never fails: local deletion must not be blocked by the upstream, so
    problems are reported as a warning.
    """
    chatflow_id = settings.flowise_chatflow_id()
    if not chatflow_id:
        return SessionDeleteResponse(warning="Flowise chatflow is not configured")

    url = f"{settings.flowise_base_url()}/chatmessage/{chatflow_id}"
    try:
        async with _async_client(timeout=httpx.Timeout(30.0)) as client:
            response = await client.delete(
                url, params={"sessionId": session_id}, headers=_headers()
            )
    except httpx.HTTPError as exc:
        logger.warning("Flowise session delete error for %s: %s", session_id, exc)
        return SessionDeleteResponse(warning=f"Flowise deletion error: {exc}")

    if response.status_code >= 400:
        logger.warning(
            "Flowise session delete failed for %s: %s %.200s",
            session_id,
            response.status_code,
            response.text,
        )
        return SessionDeleteResponse(
            warning=f"Flowise deletion failed: {response.status_code} - {response.text[:200]}"
        )

    logger.info("Deleted Flowise session %s", session_id)
    return SessionDeleteResponse(message="Session memory deleted from Flowise")
