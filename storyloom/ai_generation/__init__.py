"""
AI image generation package for Storyloom.
"""

from .illustrator import (
    IllustrationRequester,
    IllustrationResult,
    build_character_references,
)
from .prompting import (
    CharacterReference,
    IllustrationPrompt,
    build_cover_prompt,
    build_scene_prompt,
)
from .replicate_service import ReplicateImageGenerator, normalize_image_output

__all__ = [
    "CharacterReference",
    "IllustrationPrompt",
    "build_cover_prompt",
    "build_scene_prompt",
    "IllustrationRequester",
    "IllustrationResult",
    "build_character_references",
    "ReplicateImageGenerator",
    "normalize_image_output",
]
