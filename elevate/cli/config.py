"""
Elevate CLI Configuration Module

Handles configuration priority:
  1. CLI flags (highest priority)
  2. Environment variables
  3. Default values (lowest priority)

Configuration sources:
  - API_BASE: ELEVATE_API_BASE (env) → http://127.0.0.1:8000 (default)
  - TIMEOUT: ELEVATE_CLI_TIMEOUT (env) → 30 (default, seconds)
  - STREAM_TIMEOUT: ELEVATE_CLI_STREAM_TIMEOUT (env) → 300 (default, seconds)
  - OUTPUT_FORMAT: ELEVATE_CLI_OUTPUT_FORMAT (env) → text (default, text|json)
  - RETRY_TIMES: ELEVATE_CLI_RETRY_TIMES (env) → 3 (default)
  - ACCESS_TOKEN: ELEVATE_ACCESS_TOKEN (env) → none
"""

import os
from dataclasses import dataclass
from typing import Literal, Optional

DEFAULT_API_BASE = "http://127.0.0.1:8000"


@dataclass
class CLIConfig:
    """CLI Configuration object."""

    api_base: str = DEFAULT_API_BASE
    timeout: int = 30  # seconds
    stream_timeout: int = 300  # seconds between bytes of a streamed reply
    output_format: Literal["text", "json"] = "text"
    retry_times: int = 3
    access_token: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary (safe for display, no secrets)."""
        return {
            "api_base": self.api_base,
            "timeout": self.timeout,
            "stream_timeout": self.stream_timeout,
            "output_format": self.output_format,
            "retry_times": self.retry_times,
            "access_token": "***" if self.access_token else None,
        }


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_api_base_from_env() -> str:
    return os.getenv("ELEVATE_API_BASE") or DEFAULT_API_BASE


def get_timeout_from_env() -> int:
    return _int_from_env("ELEVATE_CLI_TIMEOUT", 30)


def get_stream_timeout_from_env() -> int:
    return _int_from_env("ELEVATE_CLI_STREAM_TIMEOUT", 300)


def get_output_format_from_env() -> Literal["text", "json"]:
    output_format = os.getenv("ELEVATE_CLI_OUTPUT_FORMAT", "text").lower()
    if output_format in ("text", "json"):
        return output_format  # type: ignore
    return "text"


def get_retry_times_from_env() -> int:
    return _int_from_env("ELEVATE_CLI_RETRY_TIMES", 3)


def get_access_token_from_env() -> Optional[str]:
    return os.getenv("ELEVATE_ACCESS_TOKEN") or None


def get_config(
    api_base: Optional[str] = None,
    timeout: Optional[int] = None,
    stream_timeout: Optional[int] = None,
    output_format: Optional[Literal["text", "json"]] = None,
    retry_times: Optional[int] = None,
    access_token: Optional[str] = None,
) -> CLIConfig:
    """
    Build CLI configuration with priority: CLI flag > env > default.

    Returns:
        CLIConfig object with resolved values
    """
    return CLIConfig(
        api_base=api_base or get_api_base_from_env(),
        timeout=timeout or get_timeout_from_env(),
        stream_timeout=stream_timeout or get_stream_timeout_from_env(),
        output_format=output_format or get_output_format_from_env(),
        retry_times=retry_times or get_retry_times_from_env(),
        access_token=access_token or get_access_token_from_env(),
    )
