"""
Transactional access to orders, storybooks, chapters, and illustrations.

Every public method runs in its own transaction and returns plain snapshots,
never live ORM rows, so callers on worker threads share nothing mutable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from storyloom.common import InvalidStatusTransition, OrderNotFound, RunSuperseded
from storyloom.story_generation import BookRequest, StoryCharacter, split_subject

from .models import (
    Chapter,
    Character,
    Illustration,
    Order,
    OrderStatus,
    Storybook,
    StorybookStatus,
    can_transition,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderSnapshot:
    id: str
    user_id: str
    storybook_id: str
    status: str
    payment_status: str
    stripe_session_id: str | None
    generation_triggered_at: datetime | None
    generation_started_at: datetime | None
    book_completed_at: datetime | None


@dataclass(frozen=True)
class StorybookSnapshot:
    id: str
    title: str | None
    status: str
    cover_url: str | None
    content: Mapping[str, Any] | None
    global_seed: int | None
    target_chapters: int
    art_style: str
    theme: str


@dataclass(frozen=True)
class OrderContext:
    """Everything a generation run needs to know about an order."""

    order: OrderSnapshot
    storybook: StorybookSnapshot
    request: BookRequest


@dataclass(frozen=True)
class IllustrationRecord:
    id: str
    image_url: str
    prompt: str
    seed: int
    negative_prompt: str | None
    reference_images: tuple[str, ...]
    position: int


@dataclass(frozen=True)
class ChapterRecord:
    id: str
    number: int
    title: str
    text: str
    scene_description: str
    illustrations: tuple[IllustrationRecord, ...]


def _order_snapshot(row: Order) -> OrderSnapshot:
    return OrderSnapshot(
        id=row.id,
        user_id=row.user_id,
        storybook_id=row.storybook_id,
        status=row.status,
        payment_status=row.payment_status,
        stripe_session_id=row.stripe_session_id,
        generation_triggered_at=row.generation_triggered_at,
        generation_started_at=row.generation_started_at,
        book_completed_at=row.book_completed_at,
    )


def _storybook_snapshot(row: Storybook) -> StorybookSnapshot:
    return StorybookSnapshot(
        id=row.id,
        title=row.title,
        status=row.status,
        cover_url=row.cover_url,
        content=row.content,
        global_seed=row.global_seed,
        target_chapters=row.target_chapters,
        art_style=row.art_style,
        theme=row.theme,
    )


def _character_model(row: Character) -> StoryCharacter:
    return StoryCharacter(
        character_id=row.id,
        name=row.name,
        role=row.role,
        entity_type=row.entity_type,
        gender=row.gender,
        appearance=row.appearance,
        photo_url=row.photo_url,
        ai_avatar_url=row.ai_avatar_url,
    )


def _owned_by(order: Order, run_started_at: datetime | None) -> bool:
    """A run is identified by the start time its trigger claim stamped on the order."""
    return run_started_at is None or order.generation_started_at == run_started_at


class GenerationStore:
    """
    Data-layer facade used by the payment verifier, trigger guard, and orchestrator.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @property
    def session_factory(self) -> sessionmaker:
        return self._session_factory

    # ------------------------------------------------------------------ orders

    def create_order(
        self,
        *,
        user_id: str,
        characters: Sequence[Mapping[str, Any]],
        target_chapters: int = 12,
        title: str | None = None,
        description: str | None = None,
        age_range: str = "5-8",
        theme: str = "adventure",
        setting: str | None = None,
        art_style: str = "pixar-3d",
        global_seed: int | None = None,
        cover_url: str | None = None,
    ) -> str:
        """Place a new pending order with its draft storybook and cast; return the order id."""
        if not characters:
            raise ValueError("An order needs at least one character.")
        cast = [StoryCharacter.from_mapping(item) for item in characters]
        # Same checks a run applies when it loads the order.
        BookRequest(characters=tuple(cast), target_chapters=target_chapters, age_range=age_range)

        with self._session_factory.begin() as session:
            storybook = Storybook(
                user_id=user_id,
                title=title,
                description=description,
                age_range=age_range,
                theme=theme,
                setting=setting,
                art_style=art_style,
                target_chapters=target_chapters,
                global_seed=global_seed,
                cover_url=cover_url,
            )
            for position, (raw, character) in enumerate(zip(characters, cast)):
                row = Character(
                    position=position,
                    name=character.name,
                    role=character.role,
                    entity_type=character.entity_type,
                    gender=character.gender,
                    appearance=character.appearance,
                    photo_url=character.photo_url,
                    ai_avatar_url=character.ai_avatar_url,
                )
                if raw.get("id"):
                    row.id = str(raw["id"])
                storybook.characters.append(row)
            session.add(storybook)
            session.flush()

            order = Order(user_id=user_id, storybook_id=storybook.id)
            session.add(order)
            session.flush()
            return order.id

    def get_order(self, order_id: str) -> OrderSnapshot:
        with self._session_factory() as session:
            return _order_snapshot(self._require_order(session, order_id))

    def find_order(self, order_id: str) -> OrderSnapshot | None:
        with self._session_factory() as session:
            row = session.get(Order, order_id)
            return _order_snapshot(row) if row is not None else None

    def get_storybook(self, storybook_id: str) -> StorybookSnapshot:
        with self._session_factory() as session:
            row = session.get(Storybook, storybook_id)
            if row is None:
                raise LookupError(f"Storybook '{storybook_id}' not found.")
            return _storybook_snapshot(row)

    def load_context(self, order_id: str) -> OrderContext:
        with self._session_factory() as session:
            order = self._require_order(session, order_id)
            storybook = order.storybook
            if storybook is None:
                raise OrderNotFound(order_id)
            subject, user_context = split_subject(storybook.description)
            request = BookRequest(
                characters=tuple(_character_model(row) for row in storybook.characters),
                target_chapters=storybook.target_chapters,
                age_range=storybook.age_range,
                theme=storybook.theme,
                setting=storybook.setting,
                art_style=storybook.art_style,
                title=storybook.title,
                subject=subject,
                user_context=user_context,
            )
            return OrderContext(
                order=_order_snapshot(order),
                storybook=_storybook_snapshot(storybook),
                request=request,
            )

    def set_status(self, order_id: str, status: str) -> None:
        """Move an order to ``status``, enforcing forward-only transitions."""
        with self._session_factory.begin() as session:
            order = self._require_order(session, order_id)
            if order.status == status:
                return
            if not can_transition(order.status, status):
                raise InvalidStatusTransition(order.status, status)
            order.status = status
            now = utcnow()
            if status == OrderStatus.SHIPPED.value:
                order.shipped_at = now
            elif status == OrderStatus.DELIVERED.value:
                order.delivered_at = now

    def cancel_order(self, order_id: str) -> bool:
        """Cancel a still-pending order; returns ``False`` for any other status."""
        with self._session_factory.begin() as session:
            result = session.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == OrderStatus.PENDING.value)
                .values(status=OrderStatus.CANCELLED.value, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def record_payment(
        self,
        order_id: str,
        *,
        session_id: str,
        paid: bool,
        provider: str = "stripe",
    ) -> None:
        with self._session_factory.begin() as session:
            order = self._require_order(session, order_id)
            order.payment_provider = provider
            order.stripe_session_id = session_id
            if paid:
                order.payment_status = "paid"
                if order.paid_at is None:
                    order.paid_at = utcnow()
                if order.status == OrderStatus.PENDING.value:
                    order.status = OrderStatus.PAID.value
            elif order.payment_status != "paid":
                order.payment_status = "pending"

    # ----------------------------------------------------------- trigger guard

    def claim_generation(
        self,
        order_id: str,
        *,
        now: datetime,
        cooldown: timedelta,
        allowed_statuses: Iterable[str] = (OrderStatus.PAID.value,),
    ) -> bool:
        """
        Atomically flip an order to ``generating``.

        A single conditional UPDATE decides the winner: the order must be in
        one of ``allowed_statuses`` and its last trigger must be older than
        ``cooldown``. Returns ``True`` only for the caller whose update matched.
        """
        with self._session_factory.begin() as session:
            result = session.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.status.in_(list(allowed_statuses)),
                    or_(
                        Order.generation_triggered_at.is_(None),
                        Order.generation_triggered_at <= now - cooldown,
                    ),
                )
                .values(
                    status=OrderStatus.GENERATING.value,
                    generation_triggered_at=now,
                    generation_started_at=now,
                    book_completed_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return False

            storybook_id = session.execute(
                select(Order.storybook_id).where(Order.id == order_id)
            ).scalar_one()
            session.execute(
                update(Storybook)
                .where(Storybook.id == storybook_id)
                .values(status=StorybookStatus.GENERATING.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            return True

    # -------------------------------------------------------- generation rows

    def discard_partial_content(self, storybook_id: str) -> int:
        """Delete chapters (and their illustrations) left by an earlier run."""
        with self._session_factory.begin() as session:
            chapter_ids = list(
                session.execute(
                    select(Chapter.id).where(Chapter.storybook_id == storybook_id)
                ).scalars()
            )
            if not chapter_ids:
                return 0
            session.execute(delete(Illustration).where(Illustration.chapter_id.in_(chapter_ids)))
            session.execute(delete(Chapter).where(Chapter.id.in_(chapter_ids)))
            logger.info("Discarded %d partial chapters for storybook %s", len(chapter_ids), storybook_id)
            return len(chapter_ids)

    def set_cover(self, storybook_id: str, cover_url: str) -> None:
        with self._session_factory.begin() as session:
            storybook = self._require_storybook(session, storybook_id)
            storybook.cover_url = cover_url

    def save_chapter(
        self,
        storybook_id: str,
        *,
        number: int,
        title: str,
        text: str,
        scene_description: str,
    ) -> str:
        with self._session_factory.begin() as session:
            chapter = Chapter(
                storybook_id=storybook_id,
                chapter_number=number,
                title=title,
                content=text,
                scene_description=scene_description,
            )
            session.add(chapter)
            session.flush()
            return chapter.id

    def save_illustration(
        self,
        chapter_id: str,
        *,
        image_url: str,
        prompt: str,
        seed: int,
        negative_prompt: str | None = None,
        reference_images: Sequence[str] = (),
        position: int = 1,
    ) -> str:
        with self._session_factory.begin() as session:
            illustration = Illustration(
                chapter_id=chapter_id,
                image_url=image_url,
                prompt_used=prompt,
                seed_used=seed,
                negative_prompt=negative_prompt,
                reference_images=list(reference_images),
                position=position,
            )
            session.add(illustration)
            session.flush()
            return illustration.id

    def load_chapters(self, storybook_id: str) -> list[ChapterRecord]:
        with self._session_factory() as session:
            rows = session.execute(
                select(Chapter)
                .where(Chapter.storybook_id == storybook_id)
                .order_by(Chapter.chapter_number)
            ).scalars()
            records: list[ChapterRecord] = []
            for row in rows:
                illustrations = tuple(
                    IllustrationRecord(
                        id=item.id,
                        image_url=item.image_url,
                        prompt=item.prompt_used,
                        seed=item.seed_used,
                        negative_prompt=item.negative_prompt,
                        reference_images=tuple(item.reference_images or ()),
                        position=item.position,
                    )
                    for item in row.illustrations
                )
                records.append(
                    ChapterRecord(
                        id=row.id,
                        number=row.chapter_number,
                        title=row.title,
                        text=row.content,
                        scene_description=row.scene_description,
                        illustrations=illustrations,
                    )
                )
            return records

    def finalize(
        self,
        order_id: str,
        *,
        content: Mapping[str, Any],
        illustration_metadata: Sequence[Mapping[str, Any]],
        regeneration_credits: int = 10,
        run_started_at: datetime | None = None,
    ) -> None:
        """
        Store the assembled book and mark storybook and order complete together.

        With ``run_started_at`` the order must still belong to that run;
        otherwise :class:`RunSuperseded` is raised and nothing is written.
        """
        with self._session_factory.begin() as session:
            order = self._require_order(session, order_id)
            if not _owned_by(order, run_started_at):
                raise RunSuperseded(order_id)
            if not can_transition(order.status, OrderStatus.COMPLETE.value):
                raise InvalidStatusTransition(order.status, OrderStatus.COMPLETE.value)
            storybook = order.storybook
            storybook.content = dict(content)
            storybook.title = content.get("title") or storybook.title
            storybook.illustration_metadata = [dict(item) for item in illustration_metadata]
            storybook.regeneration_credits = regeneration_credits
            storybook.status = StorybookStatus.COMPLETE.value
            order.status = OrderStatus.COMPLETE.value
            order.book_completed_at = utcnow()

    def mark_failed(self, order_id: str, *, run_started_at: datetime | None = None) -> bool:
        """Move a generating order to failed and its storybook back to draft."""
        changed = False
        with self._session_factory.begin() as session:
            order = self._require_order(session, order_id)
            if not _owned_by(order, run_started_at):
                logger.warning("Order %s belongs to a newer run; leaving it alone", order_id)
                return False
            if order.status == OrderStatus.GENERATING.value:
                order.status = OrderStatus.FAILED.value
                changed = True
            else:
                logger.warning(
                    "Order %s is %s, not generating; leaving status unchanged", order_id, order.status
                )
            if order.storybook is not None and order.storybook.status == StorybookStatus.GENERATING.value:
                order.storybook.status = StorybookStatus.DRAFT.value
        return changed

    # ----------------------------------------------------------------- helpers

    @staticmethod
    def _require_order(session: Session, order_id: str) -> Order:
        order = session.get(Order, order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    @staticmethod
    def _require_storybook(session: Session, storybook_id: str) -> Storybook:
        storybook = session.get(Storybook, storybook_id)
        if storybook is None:
            raise LookupError(f"Storybook '{storybook_id}' not found.")
        return storybook
