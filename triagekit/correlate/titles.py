"""Group title suggestion using Claude, with a deterministic fallback."""

from __future__ import annotations

import json
import logging
import time
from typing import Callable

import anthropic

from triagekit.models import Signal, Thread

logger = logging.getLogger(__name__)

MODEL = "claude-sonnet-4-20250514"
MAX_RETRIES = 3
RETRY_BASE_DELAY = 2.0  # seconds
MAX_TITLE_LENGTH = 80
FALLBACK_BODY_CHARS = 60
MAX_EXCERPTS = 5
EXCERPT_CHARS = 500

TITLE_PROMPT = """\
You are triaging user reports. The conversations below were grouped because \
they appear to describe the same underlying problem.

{target_section}## Conversations

{excerpts}

## Instructions

Write one concise issue title (under {max_length} characters) that names the \
problem, not the people reporting it. Do not add prefixes like "Bug:" or "Issue:".

Respond with a JSON object: {{"title": "..."}}
Respond ONLY with valid JSON, no other text.
"""


def fallback_title(units: list[Thread], target: Signal | None = None) -> str:
    """Target title, else the first real thread name, else the start of the first message."""
    if target is not None and target.title.strip():
        return target.title.strip()
    for unit in units:
        if not unit.is_standalone and unit.name.strip():
            return unit.name.strip()
    for unit in units:
        text = " ".join(unit.text.split())
        if text:
            return text[:FALLBACK_BODY_CHARS]
    return "Untitled group"


def _build_prompt(units: list[Thread], target: Signal | None) -> str:
    target_section = ""
    if target is not None:
        target_section = f"## Related tracker issue\n\n#{target.source_id}: {target.title}\n\n"
    excerpts = "\n\n---\n\n".join(
        f"### {unit.name}\n{unit.text[:EXCERPT_CHARS]}" for unit in units[:MAX_EXCERPTS]
    )
    if len(units) > MAX_EXCERPTS:
        excerpts += f"\n\n... ({len(units) - MAX_EXCERPTS} more conversations)"
    return TITLE_PROMPT.format(
        target_section=target_section, excerpts=excerpts, max_length=MAX_TITLE_LENGTH
    )


def _parse_title(response: anthropic.types.Message) -> str | None:
    if not response.content:
        return None
    text = response.content[0].text.strip()

    # Handle markdown code fences
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()

    try:
        title = json.loads(text).get("title", "")
    except (json.JSONDecodeError, AttributeError):
        logger.warning(f"Failed to parse title response: {text[:200]}")
        return None
    title = " ".join(str(title).split())
    return title[:MAX_TITLE_LENGTH] or None


class TitleSuggester:
    """Suggests group titles with Claude. Without a client, always uses the fallback."""

    def __init__(
        self,
        client: anthropic.Anthropic | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._sleep = sleep

    def suggest(self, units: list[Thread], target: Signal | None = None) -> str:
        fallback = fallback_title(units, target)
        if self._client is None or not units:
            return fallback

        prompt = _build_prompt(units, target)
        for attempt in range(MAX_RETRIES):
            try:
                response = self._client.messages.create(
                    model=MODEL,
                    max_tokens=256,
                    messages=[{"role": "user", "content": prompt}],
                )
                break
            except anthropic.RateLimitError:
                if attempt < MAX_RETRIES - 1:
                    delay = RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(f"Rate limited suggesting a title, retrying in {delay}s...")
                    self._sleep(delay)
                else:
                    logger.error(f"Rate limited after {MAX_RETRIES} retries, using fallback title")
                    return fallback
            except anthropic.APIError as e:
                logger.error(f"API error suggesting a title: {e}")
                return fallback

        return _parse_title(response) or fallback
