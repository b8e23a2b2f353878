"""
Prompt construction utilities for storybook illustrations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

PIXAR_3D_QUALITY = (
    "Pixar style 3D cinematic scene, high quality 3D render, ultra detailed, "
    "global illumination, soft shadows, depth of field, warm tones, "
    "cinematic composition, volumetric lighting, subsurface scattering"
)

PIXAR_3D_NEGATIVE = (
    "2D, flat, cartoon, anime, sketch, drawing, painting, low quality, blurry, pixelated, "
    "bad anatomy, distorted features, text, words, logos, watermark, signature, ugly, "
    "deformed, extra limbs, missing limbs, bad proportions"
)

DEFAULT_NEGATIVE = "blurry, bad quality, distorted, text, words, letters, low resolution, pixelated"

ART_STYLE_PROMPTS = {
    "pixar-3d": f"{PIXAR_3D_QUALITY}. No text, no logos.",
    "storybook": "classic storybook illustration style, detailed linework, rich colors, timeless quality",
    "watercolor": "soft watercolor children's book illustration, gentle washes, paper texture, pastel palette",
}

ART_STYLE_NEGATIVES = {
    "pixar-3d": PIXAR_3D_NEGATIVE,
    "storybook": DEFAULT_NEGATIVE,
    "watercolor": DEFAULT_NEGATIVE,
}

DEFAULT_LIGHTING = "Cinematic composition, soft shadows, depth of field, warm tones"


@dataclass(frozen=True)
class CharacterReference:
    """
    Pairs a character with the one reference image the image model receives for it.

    The prompt label ``Character N`` and ``image_input[N-1]`` are both derived
    from the position of this pair in a single sequence.
    """

    character_id: str
    name: str
    visual_description: str
    reference_image_url: str


@dataclass(frozen=True)
class IllustrationPrompt:
    """Container for the positive prompt, negative prompt, and aligned references."""

    positive: str
    negative: str
    reference_images: tuple[str, ...]


def style_prompt(art_style: str) -> str:
    return ART_STYLE_PROMPTS.get(art_style, ART_STYLE_PROMPTS["pixar-3d"])


def negative_prompt(art_style: str) -> str:
    return ART_STYLE_NEGATIVES.get(art_style, DEFAULT_NEGATIVE)


def _character_block(references: Sequence[CharacterReference]) -> str:
    lines = [
        f"Character {index}: [reference image {index}] – {ref.name}, {ref.visual_description}"
        for index, ref in enumerate(references, start=1)
    ]
    return "\n".join(lines)


def _require(references: Sequence[CharacterReference]) -> None:
    if not references:
        raise ValueError("At least one character reference is required.")
    seen: set[str] = set()
    for ref in references:
        if not ref.reference_image_url:
            raise ValueError(f"Character {ref.name!r} has no reference image.")
        if ref.character_id in seen:
            raise ValueError(f"Character {ref.name!r} is listed twice.")
        seen.add(ref.character_id)


def build_scene_prompt(
    scene_description: str,
    references: Sequence[CharacterReference],
    *,
    art_style: str = "pixar-3d",
    lighting: str = DEFAULT_LIGHTING,
) -> IllustrationPrompt:
    """
    Build the prompt for one chapter illustration.
    """
    if not scene_description or not scene_description.strip():
        raise ValueError("scene_description must be a non-empty string.")
    _require(references)

    positive = (
        f"{style_prompt(art_style)}\n\n"
        f"{scene_description.strip()}, {lighting}.\n\n"
        f"{_character_block(references)}\n\n"
        "All characters interacting naturally. Maintain exact character appearance, "
        "consistent proportions and features. No text, no logos."
    )
    return IllustrationPrompt(
        positive=positive,
        negative=negative_prompt(art_style),
        reference_images=tuple(ref.reference_image_url for ref in references),
    )


def build_cover_prompt(
    title: str,
    references: Sequence[CharacterReference],
    *,
    theme: str,
    art_style: str = "pixar-3d",
) -> IllustrationPrompt:
    """
    Build the prompt for the front cover featuring every character.
    """
    if not title or not title.strip():
        raise ValueError("title must be a non-empty string.")
    _require(references)

    positive = (
        f"{style_prompt(art_style)}\n\n"
        f"Children's book front cover for a {theme} story titled \"{title.strip()}\". "
        "Characters posed together in a joyful, inviting composition with space at the top "
        "for the title.\n\n"
        f"{_character_block(references)}\n\n"
        f"{DEFAULT_LIGHTING}. Do not render any text or lettering."
    )
    return IllustrationPrompt(
        positive=positive,
        negative=negative_prompt(art_style),
        reference_images=tuple(ref.reference_image_url for ref in references),
    )
