"""
Assemble the printable page sequence from stored chapters and illustrations.
"""

from __future__ import annotations

from typing import Any, Sequence

from storyloom.common import IncompleteBook
from storyloom.persistence import ChapterRecord, IllustrationRecord


def expected_page_count(chapter_count: int) -> int:
    """Cover, title page, two pages per chapter, back cover."""
    return chapter_count * 2 + 3


def chapter_illustration(chapter: ChapterRecord) -> IllustrationRecord:
    if len(chapter.illustrations) != 1:
        raise IncompleteBook(
            f"Chapter {chapter.number} has {len(chapter.illustrations)} illustrations, expected 1."
        )
    return chapter.illustrations[0]


def build_illustration_metadata(chapters: Sequence[ChapterRecord]) -> list[dict[str, Any]]:
    """Per-chapter prompt data kept for regenerating an image later."""
    metadata: list[dict[str, Any]] = []
    for chapter in chapters:
        illustration = chapter_illustration(chapter)
        metadata.append(
            {
                "sceneNumber": chapter.number,
                "illustrationPrompt": illustration.prompt,
                "sceneSeed": illustration.seed,
                "negativePrompt": illustration.negative_prompt,
                "referenceImages": list(illustration.reference_images),
            }
        )
    return metadata


def build_book_content(
    *,
    title: str,
    dedication: str,
    cover_url: str,
    chapters: Sequence[ChapterRecord],
    back_cover_text: str,
) -> dict[str, Any]:
    """
    Build the ``content`` document stored on the storybook.

    Page 1 is the cover, page 2 the title and dedication. Chapter ``i`` gets
    its illustration on page ``2i + 1`` and its text on page ``2i + 2``. The
    back cover closes the book.
    """
    numbers = [chapter.number for chapter in chapters]
    if numbers != list(range(1, len(chapters) + 1)):
        raise IncompleteBook(f"Chapters are not contiguous from 1: {numbers}")

    pages: list[dict[str, Any]] = [
        {"pageNumber": 1, "type": "cover", "illustrationUrl": cover_url},
        {"pageNumber": 2, "type": "title", "text": f"{title}\n\n{dedication}"},
    ]
    for chapter in chapters:
        illustration = chapter_illustration(chapter)
        pages.append(
            {
                "pageNumber": 2 * chapter.number + 1,
                "type": "story",
                "sceneNumber": chapter.number,
                "title": chapter.title,
                "illustrationUrl": illustration.image_url,
                "illustrationPrompt": illustration.prompt,
                "sceneSeed": illustration.seed,
                "negativePrompt": illustration.negative_prompt,
            }
        )
        pages.append(
            {
                "pageNumber": 2 * chapter.number + 2,
                "type": "story",
                "sceneNumber": chapter.number,
                "title": chapter.title,
                "text": chapter.text,
            }
        )
    pages.append({"pageNumber": len(pages) + 1, "type": "back", "text": back_cover_text})

    return {"title": title, "dedication": dedication, "pages": pages}
