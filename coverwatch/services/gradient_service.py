"""LLM client for notification copy — DigitalOcean Gradient inference (OpenAI-compatible).

Design rules:
  - Every call returns a result or None; callers fall back to templates
  - Failures are logged, never raised
  - Retries with exponential backoff on 429/5xx and transport errors
  - Token usage logged for cost tracking

Called by: renewal_email_planner
Depends on: http_client, config
"""

import asyncio
import json
import time
from typing import Any

import httpx
from loguru import logger

from ..config import settings
from ..http_client import http

API_URL = "https://inference.do-ai.run/v1/chat/completions"
DEFAULT_MODEL = "anthropic-claude-sonnet-4-5"

RETRYABLE_STATUSES = {429, 500, 502, 503, 504}
MAX_RETRIES = 3
BASE_DELAY = 1.0  # seconds


async def _chat(
    messages: list[dict[str, Any]],
    *,
    model: str,
    max_tokens: int,
    temperature: float,
    timeout: int,
) -> str | None:
    """POST a chat completion; return the first choice's content or None."""
    body = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }
    headers = {
        "Authorization": f"Bearer {settings.do_gradient_api_key}",
        "Content-Type": "application/json",
    }

    for attempt in range(1, MAX_RETRIES + 1):
        delay = BASE_DELAY * (2 ** (attempt - 1))
        try:
            start = time.monotonic()
            resp = await http.post(API_URL, headers=headers, json=body, timeout=timeout)
        except httpx.HTTPError as e:
            if attempt < MAX_RETRIES:
                logger.warning("Gradient transport error (attempt {}/{}): {}", attempt, MAX_RETRIES, e)
                await asyncio.sleep(delay)
                continue
            logger.warning("Gradient call failed after {} attempts: {}", MAX_RETRIES, e)
            return None

        if resp.status_code == 200:
            data = resp.json()
            usage = data.get("usage", {})
            logger.info(
                "Gradient OK | model={} | in={} | out={} | {:.1f}s",
                model,
                usage.get("prompt_tokens", "?"),
                usage.get("completion_tokens", "?"),
                time.monotonic() - start,
            )
            choices = data.get("choices") or []
            return choices[0].get("message", {}).get("content") if choices else None

        if resp.status_code in RETRYABLE_STATUSES and attempt < MAX_RETRIES:
            logger.warning("Gradient {} (attempt {}/{}), retry in {:.1f}s", resp.status_code, attempt, MAX_RETRIES, delay)
            await asyncio.sleep(delay)
            continue

        logger.warning("Gradient API {}: {}", resp.status_code, resp.text[:200])
        return None

    return None


async def gradient_json(
    prompt: str,
    *,
    system: str = "",
    model: str | None = None,
    max_tokens: int = 800,
    temperature: float = 0.2,
    timeout: int = 30,
) -> dict | list | None:
    """Ask the model for JSON and parse it, tolerating code fences and preamble.

    Returns None when no API key is configured, the call fails, or the
    output holds no parseable JSON.
    """
    if not settings.do_gradient_api_key:
        logger.debug("DO_GRADIENT_API_KEY not set — skipping Gradient call")
        return None

    messages: list[dict[str, Any]] = []
    if system:
        if "json" not in system.lower():
            system += " Return ONLY valid JSON, no markdown or explanation."
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    text = await _chat(
        messages,
        model=model or DEFAULT_MODEL,
        max_tokens=max_tokens,
        temperature=temperature,
        timeout=timeout,
    )
    return parse_json_text(text) if text else None


def parse_json_text(text: str) -> dict | list | None:
    """Parse JSON from LLM output that may contain markdown fences or preamble."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = "\n".join(
            line for line in cleaned.split("\n") if not line.strip().startswith("```")
        ).strip()

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    for open_char, close_char in (("{", "}"), ("[", "]")):
        start, end = cleaned.find(open_char), cleaned.rfind(close_char)
        if start != -1 and end > start:
            try:
                return json.loads(cleaned[start : end + 1])
            except json.JSONDecodeError:
                continue

    logger.debug("JSON parse failed: {}...", text[:100])
    return None
