"""
Service layer for producing structured story outlines via LiteLLM-compatible models.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from storyloom.common import (
    ChatResult,
    CompletionCallable,
    MalformedResponse,
    call_chat_completion,
    extract_json_object,
)
from storyloom.common.llm import resolve_api_key, resolve_model

from .characters import BookRequest
from .prompting import StoryPrompt, build_outline_prompt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChapterOutline:
    """
    One planned chapter of the story.
    """

    number: int
    title: str
    summary: str
    scene_description: str
    emotional_tone: str = ""


@dataclass(frozen=True)
class StoryOutline:
    """Book title, dedication, and ordered chapter plan."""

    title: str
    dedication: str
    chapters: tuple[ChapterOutline, ...]


class OutlineGenerator:
    """
    Turns the buyer's book request into exactly ``target_chapters`` chapter outlines.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        completion_fn: CompletionCallable | None = None,
    ) -> None:
        self._api_key = resolve_api_key(api_key)
        self._model = resolve_model(model, "STORYLOOM_OUTLINE_MODEL")
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion

    @property
    def model(self) -> str:
        """Return the model identifier in use."""
        return self._model

    def generate(
        self,
        request: BookRequest,
        *,
        temperature: float = 0.8,
        max_output_tokens: int = 3000,
        **response_kwargs: Any,
    ) -> StoryOutline:
        """
        Invoke the configured LLM and parse its outline.

        A title pinned by the buyer always replaces the model's suggestion.
        """
        prompt: StoryPrompt = build_outline_prompt(request)
        result: ChatResult = self._completion_fn(
            model=self._model,
            messages=[
                {"role": "system", "content": prompt.system},
                {"role": "user", "content": prompt.user},
            ],
            temperature=temperature,
            max_tokens=max_output_tokens,
            api_key=self._api_key,
            **response_kwargs,
        )

        payload = extract_json_object(result.text, context="story outline response")
        chapters = self._convert_chapters(payload.get("chapters") or payload.get("scenes"))
        self._validate_sequence(chapters, request.target_chapters)

        title = request.title or str(payload.get("title") or "").strip()
        if not title:
            raise MalformedResponse("Story outline response is missing a title.")

        dedication = str(payload.get("dedication") or "").strip()
        if not dedication:
            dedication = f"For {request.main_character.name}, a brave adventurer."

        logger.info("Outline ready: %r with %d chapters", title, len(chapters))
        return StoryOutline(title=title, dedication=dedication, chapters=tuple(chapters))

    @staticmethod
    def _convert_chapters(raw: Any) -> list[ChapterOutline]:
        if not isinstance(raw, list):
            raise MalformedResponse("Story outline JSON must contain a 'chapters' list.")

        chapters: list[ChapterOutline] = []
        for item in raw:
            try:
                number = int(item["number"])
                title = str(item["title"]).strip()
                summary = str(item["summary"]).strip()
                scene = str(item.get("sceneDescription") or item.get("scene_description") or "").strip()
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                raise MalformedResponse(f"Invalid chapter outline entry: {item!r}") from exc

            if not title or not summary or not scene:
                raise MalformedResponse(
                    f"Chapter {number} is missing title, summary, or scene description."
                )

            chapters.append(
                ChapterOutline(
                    number=number,
                    title=title,
                    summary=summary,
                    scene_description=scene,
                    emotional_tone=str(item.get("emotionalTone") or "").strip(),
                )
            )
        return chapters

    @staticmethod
    def _validate_sequence(chapters: Sequence[ChapterOutline], expected: int) -> None:
        if len(chapters) != expected:
            raise MalformedResponse(
                f"Expected exactly {expected} chapters, received {len(chapters)}."
            )

        for number, chapter in enumerate(chapters, start=1):
            if chapter.number != number:
                raise MalformedResponse("Chapter numbers must be sequential starting from 1.")


def chapter_summaries(chapters: Iterable[ChapterOutline]) -> list[str]:
    return [chapter.summary for chapter in chapters]
