"""
HTTP client the CLI uses to talk to the Elevate relay.

Plain JSON calls (title, session delete) and the streamed chat reply share one
httpx.Client, one credential and one error hierarchy.
"""

import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import httpx

logger = logging.getLogger(__name__)

_SENSITIVE_HEADERS = ("authorization", "x-api-key", "apikey")


# ============================================================================
# Error Classes
# ============================================================================


class APIError(Exception):
    """Base class for everything the relay client raises."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_text: str = ""):
        self.message = message
        self.status_code = status_code
        self.response_text = response_text
        super().__init__(self.message)

    def user_friendly_message(self) -> str:
        """Returns a user-friendly error message."""
        return self.message


class NetworkError(APIError):
    """Network connectivity errors (connection refused, DNS failure, etc.)."""

    def user_friendly_message(self) -> str:
        return (
            f"[ERROR] Unable to connect to server\n\n"
            f"Error: {self.message}\n\n"
            f"Suggestions:\n"
            f"  1. Check that the relay is running (elevate serve)\n"
            f"  2. Check the --api-base option\n"
            f"  3. Check your network connection"
        )


class TimeoutError(APIError):
    """The relay (or the agent behind it) did not answer in time."""

    def user_friendly_message(self) -> str:
        return (
            f"[TIMEOUT] The operation took too long\n\n"
            f"Error: {self.message}\n\n"
            f"Suggestions:\n"
            f"  1. Try again, or break the request into smaller parts\n"
            f"  2. Raise the limit with --stream-timeout"
        )


class HTTPStatusError(APIError):
    """HTTP status code errors (4xx, 5xx)."""

    def user_friendly_message(self) -> str:
        status = self.status_code or "Unknown"
        return (
            f"[SERVER ERROR] (HTTP {status})\n\n"
            f"Error: {self.message}\n\n"
            f"Response: {self.response_text[:200]}"
        )


class JSONParseError(APIError):
    """JSON parsing errors in response."""

    def user_friendly_message(self) -> str:
        return (
            f"[JSON ERROR] Failed to parse JSON\n\n"
            f"Error: {self.message}\n\n"
            f"Raw response: {self.response_text[:200]}"
        )


class UnexpectedContentTypeError(APIError):
    """Response was neither an event stream nor JSON."""


class SendInProgressError(RuntimeError):
    """A second send was started while one is still streaming."""


def error_message_from_body(status_code: int, body: str) -> str:
    """Pull the `error` field out of a JSON error body, if there is one."""
    try:
        parsed = json.loads(body)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict) and parsed.get("error"):
        return str(parsed["error"])
    return f"HTTP {status_code}: {body[:100]}"


def map_transport_error(error: httpx.HTTPError, action: str = "Request") -> APIError:
    """Translate an httpx exception into the client's error hierarchy."""
    if isinstance(error, httpx.ConnectTimeout):
        return NetworkError("Connection timeout: server may be unreachable")
    if isinstance(error, httpx.TimeoutException):
        return TimeoutError(f"Request timed out: {action} did not finish in time")
    if isinstance(error, (httpx.ConnectError, httpx.NetworkError)):
        return NetworkError(str(error))
    return NetworkError(f"HTTP error: {error}")


# ============================================================================
# Stream Context Manager Wrapper
# ============================================================================


class _StreamContextWrapper:
    """
    Context manager returned by APIClient.stream().
    Sends the request and validates the status code when entering the context.
    """

    def __init__(self, ctx_mgr):
        self.ctx_mgr = ctx_mgr
        self.response = None

    def __enter__(self) -> httpx.Response:
        try:
            self.response = self.ctx_mgr.__enter__()
        except httpx.HTTPError as e:
            raise map_transport_error(e, "stream request") from e

        if self.response.status_code >= 400:
            try:
                response_text = self.response.read().decode("utf-8", errors="replace")
            finally:
                self.ctx_mgr.__exit__(None, None, None)
            raise HTTPStatusError(
                error_message_from_body(self.response.status_code, response_text),
                status_code=self.response.status_code,
                response_text=response_text,
            )
        return self.response

    def __exit__(self, exc_type, exc_val, exc_tb):
        return self.ctx_mgr.__exit__(exc_type, exc_val, exc_tb)


# ============================================================================
# HTTP Client
# ============================================================================


class APIClient:
    """
    Relay client.

    JSON calls are retried on transport failures only; streamed replies are
    never retried. Every request carries the bearer credential when one is
    configured, and credentials are masked in debug logs.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        timeout: float = 30.0,
        retry_times: int = 1,
        stream_timeout: Optional[float] = 300.0,
        access_token: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize API client.

        Args:
            base_url: Base URL for the relay (e.g., http://127.0.0.1:8000)
            timeout: Request timeout in seconds
            retry_times: Number of attempts on network errors (not on 4xx/5xx)
            stream_timeout: Read timeout for streamed replies; None disables it
            access_token: Bearer credential for the Authorization header
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.base_url = base_url
        self.timeout = timeout
        self.retry_times = max(1, retry_times)
        self.stream_timeout = stream_timeout

        headers = {"Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
            trust_env=False,  # Prevent SOCKS proxy detection
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        """Close the underlying httpx client."""
        if self._client:
            self._client.close()

    def _log_request(self, method: str, url: str, **kwargs):
        """Log request details (without sensitive headers)."""
        headers = dict(self._client.headers)
        headers.update(kwargs.get("headers") or {})
        safe_headers = {
            k: ("***" if k.lower() in _SENSITIVE_HEADERS else v) for k, v in headers.items()
        }
        logger.debug("%s %s | headers: %s", method, url, safe_headers)

    def _handle_error(self, error: Exception, attempt: int) -> None:
        """Log a failed attempt."""
        logger.error("Request failed (attempt %s): %s: %s", attempt, type(error).__name__, error)

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = urljoin(self.base_url, path)
        self._log_request(method, url, **kwargs)

        for attempt in range(1, self.retry_times + 1):
            try:
                response = self._client.request(method, path, **kwargs)
                return self._process_response(response)
            except httpx.HTTPError as e:
                self._handle_error(e, attempt)
                if attempt >= self.retry_times:
                    raise map_transport_error(e, f"{method} {path}") from e
        raise NetworkError(f"{method} {path} was not attempted")

    def get(self, path: str, **kwargs) -> Dict[str, Any]:
        """
        Make GET request.

        Raises:
            NetworkError: Connection failure
            TimeoutError: Request timeout
            HTTPStatusError: Non-2xx HTTP status
            JSONParseError: JSON parsing failure
        """
        return self._request("GET", path, **kwargs)

    def post(self, path: str, json: Optional[Dict[str, Any]] = None, **kwargs) -> Dict[str, Any]:
        """Make POST request. Raises the same errors as get()."""
        return self._request("POST", path, json=json, **kwargs)

    def delete(self, path: str, **kwargs) -> Dict[str, Any]:
        """Make DELETE request. Raises the same errors as get()."""
        return self._request("DELETE", path, **kwargs)

    def stream(self, method: str, path: str, json: Optional[Dict[str, Any]] = None, **kwargs):
        """
        Make streaming request and return context manager for SSE processing.

        The request is sent when the context is entered; the connection is
        released when it exits, whatever the exit path.

        Usage:
            with client.stream("POST", "/chat/stream", json=payload) as response:
                for chunk in response.iter_bytes():
                    ...

        Raises (on enter):
            NetworkError: Connection failure
            TimeoutError: Request timeout
            HTTPStatusError: Non-2xx HTTP status
        """
        url = urljoin(self.base_url, path)
        self._log_request(method, url, json=json, **kwargs)

        stream_timeout = kwargs.pop("timeout", None)
        if stream_timeout is None:
            stream_timeout = httpx.Timeout(
                connect=self.timeout,
                read=self.stream_timeout,
                write=self.timeout,
                pool=self.timeout,
            )

        if json is not None:
            ctx_mgr = self._client.stream(method, path, json=json, timeout=stream_timeout, **kwargs)
        else:
            ctx_mgr = self._client.stream(method, path, timeout=stream_timeout, **kwargs)

        # Wrap the context manager to check status code on entry
        return _StreamContextWrapper(ctx_mgr)

    def _process_response(self, response: httpx.Response) -> Dict[str, Any]:
        """
        Process HTTP response.

        Handles:
        - Non-2xx status codes -> HTTPStatusError
        - JSON parse errors -> JSONParseError

        Returns:
            Parsed JSON response
        """
        if response.status_code >= 400:
            response_text = response.text
            raise HTTPStatusError(
                error_message_from_body(response.status_code, response_text),
                status_code=response.status_code,
                response_text=response_text,
            )

        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as e:
            response_text = response.text
            raise JSONParseError(
                f"Failed to parse JSON response: {str(e)}",
                response_text=response_text,
            ) from e
