"""
Runs a paid order through every generation stage and finalizes the book.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping

from storyloom.ai_generation import (
    CharacterReference,
    IllustrationRequester,
    IllustrationResult,
    build_character_references,
)
from storyloom.common import IncompleteBook, OrderNotFound, PaymentNotVerified, RunSuperseded
from storyloom.payments import StripePaymentVerifier
from storyloom.persistence import ChapterRecord, GenerationStore, OrderContext
from storyloom.story_generation import (
    ChapterDraft,
    ChapterOutline,
    ChapterWriter,
    CharacterDescriber,
    CharacterVisualDescription,
    OutlineGenerator,
    StoryOutline,
)

from .assembly import build_book_content, build_illustration_metadata, expected_page_count
from .progress import ProgressTracker
from .stages import Stage

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict[str, Any]], None]

SEED_MODULUS = 1_000_000
REGENERATION_CREDITS = 10


def derive_seed(storybook_id: str, global_seed: int | None = None) -> int:
    """
    Base illustration seed for a storybook.

    A stored ``global_seed`` wins; otherwise the seed is derived from the id so
    a retried run reuses the same value.
    """
    if global_seed is not None:
        return int(global_seed)
    digest = hashlib.sha256(storybook_id.encode("utf-8")).hexdigest()
    return int(digest, 16) % SEED_MODULUS


@dataclass(frozen=True)
class GenerationResult:
    order_id: str
    success: bool
    error: str | None = None
    storybook_id: str | None = None
    page_count: int = 0

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"orderId": self.order_id, "success": self.success}
        if self.error:
            payload["error"] = self.error
        if self.success:
            payload["storybookId"] = self.storybook_id
            payload["pageCount"] = self.page_count
        return payload


@dataclass
class _RunState:
    """Mutable working set of one run."""

    context: OrderContext
    seed: int
    outline: StoryOutline | None = None
    references: list[CharacterReference] = field(default_factory=list)
    drafts: list[ChapterDraft] = field(default_factory=list)
    cover_url: str | None = None
    chapters: list[ChapterRecord] = field(default_factory=list)
    illustration_metadata: list[dict[str, Any]] = field(default_factory=list)

    @property
    def order_id(self) -> str:
        return self.context.order.id

    @property
    def storybook_id(self) -> str:
        return self.context.storybook.id

    @property
    def run_started_at(self) -> datetime | None:
        """Start time stamped by the trigger claim; identifies this run."""
        return self.context.order.generation_started_at


class GenerationOrchestrator:
    """
    Sequences payment, outline, narrative, cover, illustrations and layout.

    Stages run strictly in order. Inside ``narrative`` every chapter is written
    and then illustrated before the next chapter starts; the image prompt
    uses the finished chapter's scene description. Any exception
    ends the run as failed; nothing is retried here.

    Parameters
    ----------
    store:
        Data layer for orders, storybooks, chapters and illustrations.
    tracker:
        Progress tracker that clients poll.
    outline_generator / chapter_writer / character_describer:
        Text collaborators.
    illustrator:
        Builds image prompts, calls the image model and persists the result.
    payment_verifier:
        Used when the order has a checkout session but no recorded payment.
    is_permanent_url:
        Optional check that a stored image URL points at permanent storage.
    """

    def __init__(
        self,
        *,
        store: GenerationStore,
        tracker: ProgressTracker,
        outline_generator: OutlineGenerator,
        chapter_writer: ChapterWriter,
        illustrator: IllustrationRequester,
        character_describer: CharacterDescriber | None = None,
        payment_verifier: StripePaymentVerifier | None = None,
        is_permanent_url: Callable[[str], bool] | None = None,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._outline_generator = outline_generator
        self._chapter_writer = chapter_writer
        self._illustrator = illustrator
        self._character_describer = character_describer
        self._payment_verifier = payment_verifier
        self._is_permanent_url = is_permanent_url

    def run(
        self,
        order_id: str,
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> GenerationResult:
        """
        Execute a granted run. Never raises; failures come back in the result.

        A run whose order was handed to a newer run stops at its next progress
        write and leaves the order and progress record to that run.
        """
        run_started_at: datetime | None = None
        try:
            context = self._store.load_context(order_id)
            run_started_at = context.order.generation_started_at
            state = _RunState(
                context=context,
                seed=derive_seed(context.storybook.id, context.storybook.global_seed),
            )
            logger.info("Starting generation for order %s (seed %d)", order_id, state.seed)

            self._payment_stage(state, progress_callback)
            self._outline_stage(state, progress_callback)
            self._narrative_stage(state, progress_callback)
            self._cover_stage(state, progress_callback)
            self._illustrations_stage(state, progress_callback)
            page_count = self._layout_stage(state, progress_callback)

            self._advance(state, progress_callback, Stage.COMPLETE, 100, "Your storybook is ready!")
            logger.info("Order %s complete with %d pages", order_id, page_count)
            return GenerationResult(
                order_id=order_id,
                success=True,
                storybook_id=state.storybook_id,
                page_count=page_count,
            )
        except RunSuperseded as exc:
            logger.warning("Stopping generation for order %s: %s", order_id, exc)
            return GenerationResult(order_id=order_id, success=False, error=str(exc))
        except Exception as exc:
            logger.error("Generation failed for order %s: %s", order_id, exc, exc_info=True)
            self._record_failure(order_id, exc, run_started_at)
            try:
                self._notify(progress_callback, Stage.FAILED.value, error=str(exc))
            except Exception:
                logger.exception("Progress callback failed for order %s", order_id)
            return GenerationResult(order_id=order_id, success=False, error=str(exc))

    # ------------------------------------------------------------------ stages

    def _payment_stage(self, state: _RunState, callback: ProgressCallback | None) -> None:
        self._advance(state, callback, Stage.PAYMENT, 0, "Verifying payment...")
        order = state.context.order
        if order.payment_status != "paid":
            if not order.stripe_session_id or self._payment_verifier is None:
                raise PaymentNotVerified()
            verification = self._payment_verifier.verify(order.id, order.stripe_session_id)
            if not (verification.success and verification.paid):
                raise PaymentNotVerified()
        self._advance(state, callback, Stage.PAYMENT, 100, "Payment verified")

    def _outline_stage(self, state: _RunState, callback: ProgressCallback | None) -> None:
        self._advance(state, callback, Stage.OUTLINE, 0, "Planning your story...")
        discarded = self._store.discard_partial_content(state.storybook_id)
        if discarded:
            logger.info("Order %s: starting over after %d partial chapters", state.order_id, discarded)

        outline = self._outline_generator.generate(state.context.request)
        self._tracker.merge_data(
            state.order_id,
            run_started_at=state.run_started_at,
            title=outline.title,
            chapterCount=len(outline.chapters),
        )
        state.outline = outline
        self._advance(
            state,
            callback,
            Stage.OUTLINE,
            100,
            f"Outline ready: {outline.title}",
            total_chapters=len(outline.chapters),
        )

    def _narrative_stage(self, state: _RunState, callback: ProgressCallback | None) -> None:
        outline = self._require_outline(state)
        total = len(outline.chapters)
        self._advance(
            state, callback, Stage.NARRATIVE, 0, "Getting to know your characters...",
            total_chapters=total,
        )
        state.references = build_character_references(
            state.context.request.characters, self._describe_characters(state)
        )

        step = 100 / (2 * total)
        for index, chapter in enumerate(outline.chapters):
            draft, chapter_id = self.write_chapter(state, chapter)
            self._advance(
                state, callback, Stage.NARRATIVE, step * (2 * index + 1),
                f"Chapter {chapter.number} of {total} written",
                current_chapter=chapter.number, total_chapters=total,
            )
            self.illustrate_chapter(state, draft, chapter_id)
            self._advance(
                state, callback, Stage.NARRATIVE, step * (2 * index + 2),
                f"Chapter {chapter.number} of {total} illustrated",
                current_chapter=chapter.number, total_chapters=total,
            )

    def _cover_stage(self, state: _RunState, callback: ProgressCallback | None) -> None:
        self._advance(state, callback, Stage.COVER, 0, "Painting the cover...")
        existing = state.context.storybook.cover_url
        if existing and self._permanent(existing):
            logger.info("Order %s: reusing existing cover", state.order_id)
            cover_url = existing
        else:
            outline = self._require_outline(state)
            cover = self._illustrator.illustrate_cover(
                title=outline.title,
                theme=state.context.request.theme,
                references=state.references,
                owner_id=state.context.order.user_id,
                seed=state.seed,
                art_style=state.context.request.art_style,
            )
            cover_url = cover.image_url
            self._store.set_cover(state.storybook_id, cover_url)
        state.cover_url = cover_url
        self._tracker.merge_data(state.order_id, run_started_at=state.run_started_at, coverUrl=cover_url)
        self._advance(state, callback, Stage.COVER, 100, "Cover ready")

    def _illustrations_stage(self, state: _RunState, callback: ProgressCallback | None) -> None:
        self._advance(state, callback, Stage.ILLUSTRATIONS, 0, "Checking illustrations...")
        outline = self._require_outline(state)
        chapters = self._store.load_chapters(state.storybook_id)
        if len(chapters) != len(outline.chapters):
            raise IncompleteBook(
                f"Expected {len(outline.chapters)} chapters, found {len(chapters)}."
            )
        metadata = build_illustration_metadata(chapters)
        for chapter in chapters:
            url = chapter.illustrations[0].image_url
            if not self._permanent(url):
                raise IncompleteBook(f"Chapter {chapter.number} image is not on permanent storage.")
        state.chapters = chapters
        state.illustration_metadata = metadata
        self._advance(state, callback, Stage.ILLUSTRATIONS, 100, "All illustrations in place")

    def _layout_stage(self, state: _RunState, callback: ProgressCallback | None) -> int:
        self._advance(state, callback, Stage.LAYOUT, 0, "Writing the back cover...")
        outline = self._require_outline(state)
        request = state.context.request
        back_cover = self._chapter_writer.write_back_cover(
            outline, characters=request.characters, age_range=request.age_range
        )

        self._advance(state, callback, Stage.LAYOUT, 50, "Finalizing pages...")
        content = build_book_content(
            title=outline.title,
            dedication=outline.dedication,
            cover_url=state.cover_url or "",
            chapters=state.chapters,
            back_cover_text=back_cover,
        )
        page_count = len(content["pages"])
        if page_count != expected_page_count(len(state.chapters)):
            raise IncompleteBook(f"Assembled {page_count} pages for {len(state.chapters)} chapters.")

        self._store.finalize(
            state.order_id,
            content=content,
            illustration_metadata=state.illustration_metadata,
            regeneration_credits=REGENERATION_CREDITS,
            run_started_at=state.run_started_at,
        )
        self._advance(state, callback, Stage.LAYOUT, 100, "Book assembled")
        return page_count

    # ------------------------------------------------------------- chapter steps

    def write_chapter(self, state: _RunState, chapter: ChapterOutline) -> tuple[ChapterDraft, str]:
        """Write and persist one chapter; returns the draft and the stored row id."""
        request = state.context.request
        draft = self._chapter_writer.write(
            chapter,
            outline=self._require_outline(state),
            characters=request.characters,
            age_range=request.age_range,
            previous=state.drafts,
        )
        chapter_id = self._store.save_chapter(
            state.storybook_id,
            number=draft.number,
            title=draft.title,
            text=draft.text,
            scene_description=draft.scene_description,
        )
        state.drafts.append(draft)
        return draft, chapter_id

    def illustrate_chapter(
        self, state: _RunState, draft: ChapterDraft, chapter_id: str
    ) -> IllustrationResult:
        result = self._illustrator.illustrate(
            scene_description=draft.scene_description,
            references=state.references,
            owner_id=state.context.order.user_id,
            seed=state.seed + draft.number,
            art_style=state.context.request.art_style,
        )
        self._store.save_illustration(
            chapter_id,
            image_url=result.image_url,
            prompt=result.prompt,
            seed=result.seed,
            negative_prompt=result.negative_prompt,
            reference_images=result.reference_images,
            position=1,
        )
        return result

    # ----------------------------------------------------------------- helpers

    def _describe_characters(self, state: _RunState) -> Mapping[str, CharacterVisualDescription]:
        if self._character_describer is None:
            return {}
        return {
            character.character_id: self._character_describer.describe(character)
            for character in state.context.request.characters
        }

    def _permanent(self, url: str) -> bool:
        if self._is_permanent_url is None:
            return True
        return self._is_permanent_url(url)

    @staticmethod
    def _require_outline(state: _RunState) -> StoryOutline:
        if state.outline is None:
            raise RuntimeError("Outline stage has not run.")
        return state.outline

    def _advance(
        self,
        state: _RunState,
        callback: ProgressCallback | None,
        stage: Stage,
        stage_progress: float,
        message: str,
        **extra: Any,
    ) -> None:
        accepted = self._tracker.advance(
            state.order_id,
            stage,
            stage_progress,
            message,
            run_started_at=state.run_started_at,
            **extra,
        )
        if not accepted:
            raise RunSuperseded(state.order_id)
        self._notify(
            callback,
            stage.value,
            stage_progress=stage_progress,
            message=message,
            **extra,
        )

    def _record_failure(
        self, order_id: str, exc: Exception, run_started_at: datetime | None
    ) -> None:
        try:
            self._tracker.fail(order_id, str(exc), run_started_at=run_started_at)
            self._store.mark_failed(order_id, run_started_at=run_started_at)
        except OrderNotFound:
            logger.warning("Order %s vanished before it could be marked failed", order_id)
        except Exception:
            logger.exception("Could not record failure for order %s", order_id)

    @staticmethod
    def _notify(
        callback: ProgressCallback | None,
        stage: str,
        **payload: Any,
    ) -> None:
        if callback is not None:
            callback(stage, payload)
