"""
Relay settings, read from the environment on every call so tests can
monkeypatch variables without reloading modules.

  ELEVATE_FLOWISE_BASE_URL         Flowise REST root (default http://127.0.0.1:3000/api/v1)
  ELEVATE_FLOWISE_CHATFLOW_ID      chatflow used by /chat/stream
  ELEVATE_FLOWISE_ACT_CHATFLOW_ID  agent chatflow used by /chat/act
  ELEVATE_FLOWISE_API_KEY          optional bearer key for Flowise
  ELEVATE_RELAY_TIMEOUT_SEC        upstream read timeout (default 300)
  ELEVATE_HEARTBEAT_SEC            idle interval before a keepalive frame (default 15)
  ELEVATE_TITLE_LLM_BASE_URL       OpenAI-compatible base URL for titles
  ELEVATE_TITLE_LLM_API_KEY        key for the title model; titles fall back without it
  ELEVATE_TITLE_LLM_MODEL          title model name
  ELEVATE_TITLE_LLM_TIMEOUT_SEC    title request timeout (default 12)
"""

import os


def _float_env(name: str, default: float, low: float, high: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return max(low, min(high, float(raw)))
    except ValueError:
        return default


def flowise_base_url() -> str:
    base = (os.getenv("ELEVATE_FLOWISE_BASE_URL") or "http://127.0.0.1:3000/api/v1").strip()
    return base.rstrip("/")


def flowise_chatflow_id() -> str:
    return (os.getenv("ELEVATE_FLOWISE_CHATFLOW_ID") or "").strip()


def flowise_act_chatflow_id() -> str:
    return (os.getenv("ELEVATE_FLOWISE_ACT_CHATFLOW_ID") or "").strip()


def flowise_api_key() -> str:
    return (os.getenv("ELEVATE_FLOWISE_API_KEY") or "").strip()


def relay_timeout_sec() -> float:
    return _float_env("ELEVATE_RELAY_TIMEOUT_SEC", 300.0, 5.0, 3600.0)


def heartbeat_sec() -> float:
    return _float_env("ELEVATE_HEARTBEAT_SEC", 15.0, 0.01, 300.0)


def title_llm_base_url() -> str:
    base = (os.getenv("ELEVATE_TITLE_LLM_BASE_URL") or "https://api.openai.com/v1").strip()
    return base.rstrip("/")


def title_llm_api_key() -> str:
    return (os.getenv("ELEVATE_TITLE_LLM_API_KEY") or "").strip()


def title_llm_model() -> str:
    return (os.getenv("ELEVATE_TITLE_LLM_MODEL") or "gpt-4o-mini").strip()


def title_llm_timeout_sec() -> float:
    return _float_env("ELEVATE_TITLE_LLM_TIMEOUT_SEC", 12.0, 3.0, 60.0)
