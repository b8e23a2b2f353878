"""
Structured representations of the story cast and the buyer's book request.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

AGE_RANGES = ("0-2", "2-4", "5-8", "9-12")
DEFAULT_AGE_RANGE = "5-8"
DEFAULT_THEME = "adventure"
DEFAULT_ART_STYLE = "pixar-3d"
MAX_CHAPTERS = 24


def _coerce_optional_str(value: Any) -> str | None:
    if value is None:
        return None

    text = str(value).strip()
    return text or None


def first_avatar_url(raw: str | None) -> str | None:
    """
    Return the canonical (first) image of an AI avatar field.

    The field holds either a JSON array of URLs, a JSON string, or a bare URL.
    """
    if not raw:
        return None

    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return raw.strip() or None

    if isinstance(parsed, list):
        for item in parsed:
            if isinstance(item, str) and item.strip():
                return item.strip()
        return None
    if isinstance(parsed, str):
        return parsed.strip() or None
    return None


@dataclass(frozen=True)
class StoryCharacter:
    """
    One member of the story cast.

    Attributes
    ----------
    character_id:
        Stable identifier of the character row.
    name:
        Display name used in the narrative.
    role:
        ``main`` or ``supporting``.
    entity_type:
        What the character is (``human``, ``dog``, ``dragon``...).
    gender:
        Optional gender used for respectful phrasing.
    appearance:
        Buyer-provided visual notes.
    photo_url:
        Uploaded photo of the character, if any.
    ai_avatar_url:
        Generated avatar reference(s); see :func:`first_avatar_url`.
    """

    character_id: str
    name: str
    role: str = "main"
    entity_type: str = "human"
    gender: str | None = None
    appearance: str | None = None
    photo_url: str | None = None
    ai_avatar_url: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StoryCharacter":
        if "name" not in data or not str(data["name"]).strip():
            raise ValueError("Character data must include a non-empty 'name' field.")

        name = str(data["name"]).strip()
        role = (_coerce_optional_str(data.get("role")) or "main").lower()
        if role not in {"main", "supporting"}:
            raise ValueError(f"Character role must be 'main' or 'supporting', got {role!r}.")

        return cls(
            character_id=str(data.get("id") or data.get("character_id") or name),
            name=name,
            role=role,
            entity_type=_coerce_optional_str(data.get("entity_type") or data.get("type")) or "human",
            gender=_coerce_optional_str(data.get("gender")),
            appearance=_coerce_optional_str(data.get("appearance") or data.get("description")),
            photo_url=_coerce_optional_str(data.get("photo_url")),
            ai_avatar_url=_coerce_optional_str(data.get("ai_avatar_url")),
        )

    def reference_image(self) -> str | None:
        """Single reference image for this character: first avatar, else the photo."""
        return first_avatar_url(self.ai_avatar_url) or self.photo_url

    def prompt_line(self) -> str:
        details = [self.entity_type]
        if self.gender:
            details.append(self.gender)
        if self.role == "main":
            details.append("main character")
        return f"- {self.name} ({', '.join(details)})"


def main_character(characters: Sequence[StoryCharacter]) -> StoryCharacter:
    if not characters:
        raise ValueError("At least one character is required.")
    for character in characters:
        if character.role == "main":
            return character
    return characters[0]


def split_subject(description: str | None) -> tuple[str, str]:
    """
    Split a ``"Subject: <name>. <context>"`` description into (subject, context).
    """
    text = (description or "").strip()
    prefix = "Subject: "
    if text.startswith(prefix):
        end = text.find(".")
        if end != -1:
            return text[len(prefix):end].strip(), text[end + 1:].strip()
    return "", text


@dataclass(frozen=True)
class BookRequest:
    """
    Everything the buyer chose for the book, as read from the storybook row.
    """

    characters: tuple[StoryCharacter, ...]
    target_chapters: int
    age_range: str = DEFAULT_AGE_RANGE
    theme: str = DEFAULT_THEME
    setting: str | None = None
    art_style: str = DEFAULT_ART_STYLE
    title: str | None = None
    subject: str = ""
    user_context: str = ""

    def __post_init__(self) -> None:
        if not self.characters:
            raise ValueError("A book request needs at least one character.")
        if not 1 <= self.target_chapters <= MAX_CHAPTERS:
            raise ValueError(
                f"target_chapters must fall between 1 and {MAX_CHAPTERS}, "
                f"received {self.target_chapters}."
            )
        if self.age_range not in AGE_RANGES:
            raise ValueError(f"Unsupported age range {self.age_range!r}.")

    @property
    def main_character(self) -> StoryCharacter:
        return main_character(self.characters)
