"""
Story generation utilities: outlines, chapter prose, and character descriptions.
"""

from .chapter_writer import ChapterDraft, ChapterWriter
from .character_describer import (
    CharacterDescriber,
    CharacterVisualDescription,
    fallback_description,
)
from .characters import BookRequest, StoryCharacter, first_avatar_url, split_subject
from .outline_service import ChapterOutline, OutlineGenerator, StoryOutline
from .prompting import PreviousChapter, StoryPrompt

__all__ = [
    "BookRequest",
    "StoryCharacter",
    "first_avatar_url",
    "split_subject",
    "ChapterOutline",
    "StoryOutline",
    "OutlineGenerator",
    "ChapterDraft",
    "ChapterWriter",
    "CharacterDescriber",
    "CharacterVisualDescription",
    "fallback_description",
    "PreviousChapter",
    "StoryPrompt",
]
