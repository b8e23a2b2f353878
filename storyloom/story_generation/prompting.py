"""
Prompt construction utilities for outlines, chapter text, and back covers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .characters import BookRequest, StoryCharacter

AGE_RANGE_LABELS = {
    "0-2": "Baby & Toddler",
    "2-4": "Preschool",
    "5-8": "Early Reader",
    "9-12": "Middle Grade",
}

TEXT_COMPLEXITY = {
    "0-2": {"words_per_page": 10, "style": "Very simple words, sound effects, and repetition."},
    "2-4": {"words_per_page": 25, "style": "Short sentences, familiar concepts, gentle rhythm."},
    "5-8": {"words_per_page": 100, "style": "Engaging dialogue, adventure, clear plot progression."},
    "9-12": {"words_per_page": 180, "style": "Richer vocabulary, introspection, meaningful themes."},
}

AGE_INSTRUCTIONS = {
    "0-2": (
        "- Use 1-5 simple words or short phrases\n"
        '- Include sound words like "splash!", "boom!", "whoosh!"\n'
        "- Repetition is great\n"
        "- Focus on sensory experiences"
    ),
    "2-4": (
        "- Use 15-25 simple words\n"
        "- Short, complete sentences\n"
        "- Familiar, everyday vocabulary"
    ),
    "5-8": (
        "- Write 80-120 words\n"
        "- Include engaging dialogue between characters\n"
        "- Use vivid sensory descriptions\n"
        "- Show emotions through actions and expressions"
    ),
    "9-12": (
        "- Write 150-200 words\n"
        "- Include rich descriptions of settings and atmosphere\n"
        "- Show character introspection\n"
        "- Include dialogue that reveals personality"
    ),
}

SYSTEM_PROMPT = (
    "You are a compassionate children's author who writes personalized, illustrated storybooks. "
    "Keep every story warm, safe, and age-appropriate. Never include author notes or mention you are an AI."
)


@dataclass(frozen=True)
class StoryPrompt:
    """
    Container for the system and user prompts passed to the LLM.
    """

    system: str
    user: str


@dataclass(frozen=True)
class PreviousChapter:
    """Continuity context carried from an already written chapter."""

    title: str
    text: str


def build_outline_prompt(request: BookRequest) -> StoryPrompt:
    """
    Build the prompt pair asking for a strict-JSON outline with ``target_chapters`` entries.
    """
    complexity = TEXT_COMPLEXITY[request.age_range]
    label = AGE_RANGE_LABELS[request.age_range]
    main = request.main_character
    cast = "\n".join(character.prompt_line() for character in request.characters)
    count = request.target_chapters
    title_hint = request.title or "Create an engaging title"

    extra_lines: list[str] = []
    if request.setting:
        extra_lines.append(f"SETTING: {request.setting}")
    if request.subject:
        extra_lines.append(f"SUBJECT: {request.subject}")
    if request.user_context:
        extra_lines.append(f"BUYER NOTES: {request.user_context}")
    extras = ("\n".join(extra_lines) + "\n\n") if extra_lines else ""

    user_prompt = f"""Create a children's storybook outline with exactly {count} chapters.

TARGET AUDIENCE: Children aged {request.age_range} years old ({label})
WRITING STYLE: {complexity['style']}
WORDS PER PAGE: Maximum {complexity['words_per_page']} words

THEME: {request.theme}
MAIN CHARACTER: {main.name}

CHARACTERS:
{cast}

{extras}STORY REQUIREMENTS:
- Create a heartwarming {request.theme}-themed story
- Each chapter should have a clear visual moment for illustration
- End with a positive, loving conclusion

Respond in strict JSON format:
{{
  "title": "{title_hint}",
  "dedication": "A short, heartfelt dedication message (1 sentence)",
  "chapters": [
    {{
      "number": 1,
      "title": "Chapter title",
      "summary": "What happens in this chapter (1-2 sentences)",
      "sceneDescription": "Visual description for illustration",
      "emotionalTone": "happy/excited/curious/loving/brave/peaceful"
    }}
  ]
}}

Create exactly {count} chapters. Make sure the story flows naturally from chapter to chapter."""

    return StoryPrompt(system=SYSTEM_PROMPT, user=user_prompt)


def build_chapter_prompt(
    *,
    number: int,
    title: str,
    summary: str,
    emotional_tone: str,
    story_title: str,
    characters: Sequence[StoryCharacter],
    age_range: str,
    previous: Sequence[PreviousChapter] = (),
) -> StoryPrompt:
    """
    Build the prompt pair for the prose of one chapter.
    """
    complexity = TEXT_COMPLEXITY[age_range]
    label = AGE_RANGE_LABELS[age_range]
    names = ", ".join(character.name for character in characters)

    if previous:
        recap = "\n".join(
            f'- {item.title}: "...{item.text[-150:]}"' for item in previous
        )
        continuity = f"STORY SO FAR (in order):\n{recap}"
    else:
        continuity = "This is the opening of the story."

    user_prompt = f"""Write the text for chapter {number} of the children's storybook "{story_title}".

TARGET AUDIENCE: Children aged {age_range} years old ({label})
WRITING STYLE: {complexity['style']}
TARGET WORD COUNT: {complexity['words_per_page']} words

CHAPTER: {title}
{summary}
EMOTIONAL TONE: {emotional_tone or 'warm'}
CHARACTERS IN SCENE: {names}

{continuity}

INSTRUCTIONS:
{AGE_INSTRUCTIONS[age_range]}

Respond in JSON format:
{{
  "text": "The chapter text exactly as it should appear in the book",
  "visualPrompt": "Updated visual description for the illustration based on the text"
}}"""

    return StoryPrompt(system=SYSTEM_PROMPT, user=user_prompt)


def build_back_cover_prompt(
    *,
    story_title: str,
    chapter_summaries: Sequence[str],
    characters: Sequence[StoryCharacter],
    age_range: str,
) -> StoryPrompt:
    names = ", ".join(character.name for character in characters)
    beats = "\n".join(f"- {summary}" for summary in chapter_summaries)
    user_prompt = f"""Write a back-cover summary for the children's book "{story_title}".

READERS: ages {age_range}
CHARACTERS: {names}
STORY BEATS:
{beats}

Write 2-3 enticing sentences without spoiling the ending. Respond with the summary text only."""
    return StoryPrompt(system=SYSTEM_PROMPT, user=user_prompt)


def build_character_description_prompt(character: StoryCharacter) -> StoryPrompt:
    notes = f"\nNOTES: {character.appearance}" if character.appearance else ""
    user_prompt = f"""Analyze this character and create a detailed visual description for illustration consistency.

CHARACTER: {character.name}
TYPE: {character.entity_type}
GENDER: {character.gender or 'unspecified'}{notes}

Focus on permanent visual features that should remain the same in every scene.

Respond in JSON format:
{{
  "description": "2-3 sentences covering age, hair, eyes, skin tone, face shape, distinctive features",
  "consistencyKeywords": "comma-separated keywords for consistent generation"
}}"""
    return StoryPrompt(system=SYSTEM_PROMPT, user=user_prompt)
