"""
Expand chapter outlines into finished prose.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from storyloom.common import (
    ChatResult,
    CompletionCallable,
    MalformedResponse,
    call_chat_completion,
    extract_json_object,
)
from storyloom.common.llm import resolve_api_key, resolve_model

from .characters import StoryCharacter
from .outline_service import ChapterOutline, StoryOutline, chapter_summaries
from .prompting import (
    PreviousChapter,
    build_back_cover_prompt,
    build_chapter_prompt,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChapterDraft:
    """
    Finished text for one chapter plus the scene description its illustration uses.
    """

    number: int
    title: str
    text: str
    scene_description: str

    def as_previous(self) -> PreviousChapter:
        return PreviousChapter(title=self.title, text=self.text)


class ChapterWriter:
    """
    Writes chapter prose one chapter at a time, carrying earlier chapters as context.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        completion_fn: CompletionCallable | None = None,
    ) -> None:
        self._api_key = resolve_api_key(api_key)
        self._model = resolve_model(model, "STORYLOOM_CHAPTER_MODEL", "STORYLOOM_OUTLINE_MODEL")
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion

    @property
    def model(self) -> str:
        return self._model

    def write(
        self,
        chapter: ChapterOutline,
        *,
        outline: StoryOutline,
        characters: Sequence[StoryCharacter],
        age_range: str,
        previous: Sequence[ChapterDraft] = (),
        temperature: float = 0.7,
        max_output_tokens: int = 1200,
        **response_kwargs: Any,
    ) -> ChapterDraft:
        """
        Produce the prose for ``chapter``.

        The returned scene description is the model's refinement of the outline
        scene so the illustration matches the finished text.
        """
        prompt = build_chapter_prompt(
            number=chapter.number,
            title=chapter.title,
            summary=chapter.summary,
            emotional_tone=chapter.emotional_tone,
            story_title=outline.title,
            characters=characters,
            age_range=age_range,
            previous=[draft.as_previous() for draft in previous],
        )

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

        payload = extract_json_object(
            result.text, context=f"chapter {chapter.number} text response"
        )
        text = str(payload.get("text") or "").strip()
        if not text:
            raise MalformedResponse(f"Chapter {chapter.number} response is missing 'text'.")

        scene = str(payload.get("visualPrompt") or "").strip() or chapter.scene_description
        logger.debug("Chapter %d written (%d words)", chapter.number, len(text.split()))
        return ChapterDraft(
            number=chapter.number,
            title=chapter.title,
            text=text,
            scene_description=scene,
        )

    def write_back_cover(
        self,
        outline: StoryOutline,
        *,
        characters: Sequence[StoryCharacter],
        age_range: str,
        temperature: float = 0.7,
        max_output_tokens: int = 300,
    ) -> str:
        prompt = build_back_cover_prompt(
            story_title=outline.title,
            chapter_summaries=chapter_summaries(outline.chapters),
            characters=characters,
            age_range=age_range,
        )
        result: ChatResult = self._completion_fn(
            model=self._model,
            messages=[
                {"role": "system", "content": prompt.system},
                {"role": "user", "content": prompt.user},
            ],
            temperature=temperature,
            max_tokens=max_output_tokens,
            api_key=self._api_key,
        )
        if not result.text:
            raise MalformedResponse("Back cover response did not contain any text content.")
        return result.text.strip().strip('"')
