import logging
import re

import httpx

from elevate.core import settings

logger = logging.getLogger("elevate.title_generation")

FALLBACK_TITLE = "New Chat"
MAX_TITLE_LENGTH = 50
MIN_TITLE_LENGTH = 3

_TITLE_INSTRUCTIONS = (
    "Generate a concise, descriptive title (3-6 words) for a chat conversation "
    "that starts with the user's message.\n\n"
    "Rules:\n"
    "- Keep it under 6 words\n"
    "- Make it descriptive and specific\n"
    "- Use title case\n"
    "- No quotes or special characters\n"
    "- Focus on the main topic/action\n\n"
    "Examples:\n"
    '- "help me build an airtable schema for a pokemon card collection" -> '
    '"Pokemon Card Collection Schema"\n'
    '- "write a python script to analyze sales data" -> "Python Sales Data Analysis"\n'
    '- "explain how photosynthesis works" -> "Photosynthesis Explanation"\n\n'
    "Just return the title, nothing else."
)


def clean_title(raw: str) -> str:
    """Strip quotes, cap the length, fall back when nothing usable is left."""
    title = re.sub(r"['\"]", "", raw or "").strip()
    if len(title) > MAX_TITLE_LENGTH:
        title = title[: MAX_TITLE_LENGTH - 3] + "..."
    if len(title) < MIN_TITLE_LENGTH:
        return FALLBACK_TITLE
    return title


def generate_title(prompt: str) -> str:
    """Ask an OpenAI-compatible model for a short conversation title.

    Any failure (no key, network, odd response) yields the fallback title.
    """
    api_key = settings.title_llm_api_key()
    if not api_key or not prompt.strip():
        return FALLBACK_TITLE

    payload = {
        "model": settings.title_llm_model(),
        "messages": [
            {"role": "system", "content": _TITLE_INSTRUCTIONS},
            {"role": "user", "content": prompt},
        ],
        "temperature": 0.3,
        "max_tokens": 20,
    }

    try:
        with httpx.Client(timeout=settings.title_llm_timeout_sec()) as client:
            resp = client.post(
                f"{settings.title_llm_base_url()}/chat/completions",
                headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
                json=payload,
            )
            resp.raise_for_status()
            content = resp.json()["choices"][0]["message"]["content"]
    except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as exc:
        logger.warning("Title generation failed: %s", exc)
        return FALLBACK_TITLE

    title = clean_title(str(content))
    logger.info("Generated title: %s", title)
    return title
