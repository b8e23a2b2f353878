"""
Request illustrations and copy them to permanent storage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence

import requests

from storyloom.storage import ImageStore, persist_remote_image
from storyloom.story_generation import CharacterVisualDescription, StoryCharacter

from .prompting import (
    CharacterReference,
    IllustrationPrompt,
    build_cover_prompt,
    build_scene_prompt,
)
from .replicate_service import random_seed

logger = logging.getLogger(__name__)


class ImageGenerator(Protocol):
    def generate(
        self,
        *,
        prompt: str,
        seed: int | None = None,
        aspect_ratio: str = ...,
        negative_prompt: str | None = None,
        image_input: Sequence[str] | None = None,
        **model_kwargs: Any,
    ) -> str:
        ...


@dataclass(frozen=True)
class IllustrationResult:
    """
    A generated image that already lives on permanent storage.
    """

    image_url: str
    prompt: str
    negative_prompt: str
    seed: int
    reference_images: tuple[str, ...]


def build_character_references(
    characters: Sequence[StoryCharacter],
    descriptions: Mapping[str, CharacterVisualDescription] | None = None,
) -> list[CharacterReference]:
    """
    Pair every character with exactly one reference image, in cast order.

    Raises ``ValueError`` when a character has no usable image, since dropping
    it would shift every later ``Character N`` label.
    """
    descriptions = descriptions or {}
    references: list[CharacterReference] = []
    for character in characters:
        image = character.reference_image()
        if not image:
            raise ValueError(f"Character {character.name!r} has no reference image.")
        described = descriptions.get(character.character_id)
        if described is not None:
            visual = f"{described.description} ({described.consistency_keywords})"
        else:
            visual = character.appearance or character.entity_type
        references.append(
            CharacterReference(
                character_id=character.character_id,
                name=character.name,
                visual_description=visual,
                reference_image_url=image,
            )
        )
    return references


class IllustrationRequester:
    """
    Builds prompts, invokes the image generator, and persists the result.
    """

    def __init__(
        self,
        *,
        image_generator: ImageGenerator,
        store: ImageStore,
        download_timeout: float = 60.0,
        http_session: requests.Session | None = None,
    ) -> None:
        self._image_generator = image_generator
        self._store = store
        self._download_timeout = download_timeout
        self._http_session = http_session

    def illustrate(
        self,
        *,
        scene_description: str,
        references: Sequence[CharacterReference],
        owner_id: str,
        seed: int | None = None,
        art_style: str = "pixar-3d",
        aspect_ratio: str = "3:4",
    ) -> IllustrationResult:
        prompt = build_scene_prompt(scene_description, references, art_style=art_style)
        return self._render(prompt, owner_id=owner_id, seed=seed, kind="illustrations",
                            aspect_ratio=aspect_ratio)

    def illustrate_cover(
        self,
        *,
        title: str,
        theme: str,
        references: Sequence[CharacterReference],
        owner_id: str,
        seed: int | None = None,
        art_style: str = "pixar-3d",
    ) -> IllustrationResult:
        prompt = build_cover_prompt(title, references, theme=theme, art_style=art_style)
        return self._render(prompt, owner_id=owner_id, seed=seed, kind="covers",
                            aspect_ratio="3:4")

    def _render(
        self,
        prompt: IllustrationPrompt,
        *,
        owner_id: str,
        seed: int | None,
        kind: str,
        aspect_ratio: str,
    ) -> IllustrationResult:
        used_seed = seed if seed is not None else random_seed()
        logger.debug("Illustration prompt (seed %d):\n%s", used_seed, prompt.positive)

        ephemeral_url = self._image_generator.generate(
            prompt=prompt.positive,
            seed=used_seed,
            aspect_ratio=aspect_ratio,
            negative_prompt=prompt.negative,
            image_input=list(prompt.reference_images),
        )
        permanent_url = persist_remote_image(
            ephemeral_url,
            store=self._store,
            owner_id=owner_id,
            kind=kind,  # type: ignore[arg-type]
            session=self._http_session,
            timeout=self._download_timeout,
        )
        return IllustrationResult(
            image_url=permanent_url,
            prompt=prompt.positive,
            negative_prompt=prompt.negative,
            seed=used_seed,
            reference_images=prompt.reference_images,
        )
