from __future__ import annotations

import json
import logging
from typing import Any

from groq import Groq

from .config import DEFAULT_LLM_CONFIG, LLMConfig

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a hospitality editor. Given a venue name and any known facts, "
    "list the taste signals that editorial coverage of the venue supports. "
    "Each signal belongs to exactly one dimension: Design, Character, Service, "
    "Food, Location or Wellness. Mark evidence against a dimension as negative.\n\n"
    "Return ONLY valid JSON in this exact format:\n"
    '{"signals": [{"dimension": "<dimension>", "signal": "<short tag>", '
    '"confidence": <0..1>, "polarity": "positive" | "negative"}]}\n'
    "Omit anything you are not confident editorial sources would support."
)


class EditorialExtractionError(RuntimeError):
    pass


def _build_user_message(display_name: str, facts: dict[str, Any] | None) -> str:
    lines = ["## Venue", f"- Name: {display_name}"]
    for key, value in (facts or {}).items():
        if value in (None, "", [], {}):
            continue
        if isinstance(value, (list, tuple)):
            value = ", ".join(str(v) for v in value)
        lines.append(f"- {key.replace('_', ' ').capitalize()}: {value}")
    return "\n".join(lines)


def extract_editorial_signals(
    display_name: str,
    facts: dict[str, Any] | None = None,
    config: LLMConfig = DEFAULT_LLM_CONFIG,
) -> list[dict[str, Any]]:
    """
    Ask the Groq model for editorial taste signals about a venue.

    Returns raw signal dicts (``dimension``, ``signal``, ``confidence``,
    ``polarity``). Raises ``EditorialExtractionError`` when the model is
    disabled, unreachable, or returns something that is not the expected JSON,
    so the caller can record the failure as a diagnostic.
    """
    if not config.enabled or not config.api_key:
        raise EditorialExtractionError("Groq editorial extraction is not configured")

    try:
        client = Groq(api_key=config.api_key, timeout=config.timeout)
        response = client.chat.completions.create(
            model=config.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": _build_user_message(display_name, facts)},
            ],
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content or ""
        parsed = json.loads(content)
    except json.JSONDecodeError as exc:
        raise EditorialExtractionError(f"Groq returned invalid JSON: {exc}") from exc
    except Exception as exc:
        logger.warning("Groq editorial extraction failed for %s", display_name, exc_info=True)
        raise EditorialExtractionError(f"Groq call failed: {exc}") from exc

    items = parsed.get("signals") if isinstance(parsed, dict) else None
    if not isinstance(items, list):
        raise EditorialExtractionError("Groq response has no 'signals' list")

    results: list[dict[str, Any]] = []
    for item in items[: config.max_signals]:
        if not isinstance(item, dict):
            continue
        if item.get("dimension") and item.get("signal"):
            results.append(item)
    return results
