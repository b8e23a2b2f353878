"""
Stable visual descriptions that keep each character consistent across illustrations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from storyloom.common import (
    CompletionCallable,
    MalformedResponse,
    UpstreamGenerationFailure,
    call_chat_completion,
    extract_json_object,
)
from storyloom.common.llm import resolve_api_key, resolve_model

from .characters import StoryCharacter
from .prompting import build_character_description_prompt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CharacterVisualDescription:
    name: str
    description: str
    consistency_keywords: str


def fallback_description(character: StoryCharacter) -> CharacterVisualDescription:
    noun = {"male": "boy", "female": "girl"}.get((character.gender or "").lower(), "child")
    if character.entity_type != "human":
        noun = character.entity_type
    description = f"{character.name}, a {noun} character"
    if character.appearance:
        description = f"{description}: {character.appearance}"
    return CharacterVisualDescription(
        name=character.name,
        description=description,
        consistency_keywords=f"{noun}, friendly expression, natural look",
    )


class CharacterDescriber:
    """
    Asks the text model for a reusable appearance description of a character.

    Failures fall back to a description built from the character's own fields.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        completion_fn: CompletionCallable | None = None,
    ) -> None:
        self._api_key = resolve_api_key(api_key)
        self._model = resolve_model(model, "STORYLOOM_CHARACTER_MODEL")
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion

    def describe(self, character: StoryCharacter, **response_kwargs: Any) -> CharacterVisualDescription:
        prompt = build_character_description_prompt(character)
        try:
            result = self._completion_fn(
                model=self._model,
                messages=[
                    {"role": "system", "content": prompt.system},
                    {"role": "user", "content": prompt.user},
                ],
                temperature=0.4,
                max_tokens=400,
                api_key=self._api_key,
                **response_kwargs,
            )
            payload = extract_json_object(result.text, context="character description")
        except (MalformedResponse, UpstreamGenerationFailure) as exc:
            logger.warning("Using fallback description for %s: %s", character.name, exc)
            return fallback_description(character)

        description = str(payload.get("description") or "").strip()
        keywords = str(payload.get("consistencyKeywords") or "").strip()
        if not description or not keywords:
            logger.warning("Incomplete description for %s, using fallback", character.name)
            return fallback_description(character)

        return CharacterVisualDescription(
            name=character.name,
            description=description,
            consistency_keywords=keywords,
        )
