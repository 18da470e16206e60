"""OpenAI integration for turning a skill journey into a short story."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional

from openai import APIError, OpenAI

from .config import CONFIG

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """
You write short, warm bedtime stories for children who are practicing a hard skill.
The child is the hero. Celebrate effort over outcome; never mention diagnoses,
medications or struggles in a negative light. Keep it under 200 words and
end on the idea that the next adventure is just beginning.

Return JSON only: {"title": "...", "content": "..."}. No markdown fences.
"""


@dataclass(frozen=True)
class StoryDraft:
    title: str
    content: str
    is_placeholder: bool = False


@lru_cache
def _client() -> Optional[OpenAI]:
    api_key = CONFIG.openai_api_key or os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None
    return OpenAI(api_key=api_key)


def placeholder_story(*, skill_name: str, child_name: Optional[str], adventure_count: int) -> StoryDraft:
    hero = child_name or "a brave adventurer"
    return StoryDraft(
        title=f"The Tale of the Tenacious {skill_name} Master",
        content=(
            f"Once upon a time, {hero} decided to master the skill of {skill_name}. "
            f"It wasn't always easy, but with {adventure_count} amazing adventures, "
            "they showed incredible courage and didn't give up. Every step was a victory, "
            "and every try was a new discovery. The end? No, this is just the beginning "
            "of the next great adventure!"
        ),
        is_placeholder=True,
    )


def _user_prompt(skill_name: str, child_name: Optional[str], adventure_count: int, recent_wins: List[str]) -> str:
    lines = [
        f"Child: {child_name or 'the hero'}",
        f"Skill: {skill_name}",
        f"Adventures so far: {adventure_count}",
    ]
    if recent_wins:
        lines.append("Recent wins:")
        lines.extend(f"- {win}" for win in recent_wins[:5])
    return "\n".join(lines)


def _parse_draft(content: str) -> Optional[StoryDraft]:
    try:
        payload: Dict[str, Any] = json.loads(content.strip().strip("`"))
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    title = payload.get("title")
    body = payload.get("content")
    if not isinstance(title, str) or not isinstance(body, str) or not title.strip() or not body.strip():
        return None
    return StoryDraft(title=title.strip(), content=body.strip())


def write_story(
    *,
    skill_name: str,
    child_name: Optional[str],
    adventure_count: int,
    recent_wins: Optional[List[str]] = None,
) -> StoryDraft:
    """Ask the model for a story; fall back to the template when unavailable."""
    fallback = placeholder_story(skill_name=skill_name, child_name=child_name, adventure_count=adventure_count)
    client = _client()
    if client is None:
        return fallback

    try:
        response = client.chat.completions.create(
            model=CONFIG.openai_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": _user_prompt(skill_name, child_name, adventure_count, recent_wins or []),
                },
            ],
            temperature=0.8,
            response_format={"type": "json_object"},
        )
    except APIError as exc:
        logger.exception("OpenAI story request failed, using placeholder", exc_info=exc)
        return fallback

    try:
        raw_content = response.choices[0].message.content or ""
    except (AttributeError, IndexError, KeyError) as exc:
        logger.exception("Unexpected OpenAI response format, using placeholder", exc_info=exc)
        return fallback

    draft = _parse_draft(raw_content)
    if draft is None:
        logger.warning("OpenAI story was not valid JSON, using placeholder")
        return fallback
    return draft
