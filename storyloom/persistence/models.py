"""
Database models for orders, storybooks, and generation progress.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Current UTC time, stored naive so SQLite round-trips compare cleanly."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    GENERATING = "generating"
    COMPLETE = "complete"
    FAILED = "failed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class StorybookStatus(str, Enum):
    DRAFT = "draft"
    GENERATING = "generating"
    COMPLETE = "complete"
    PRINTED = "printed"


ORDER_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"paid", "cancelled"}),
    "paid": frozenset({"generating", "refunded"}),
    "generating": frozenset({"complete", "failed"}),
    # Only a granted retry trigger takes a failed order back to generating.
    "failed": frozenset({"generating", "refunded"}),
    "complete": frozenset({"shipped", "refunded"}),
    "shipped": frozenset({"delivered"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
    "refunded": frozenset(),
}


def can_transition(current: str, requested: str) -> bool:
    return requested in ORDER_TRANSITIONS.get(current, frozenset())


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    storybook_id = Column(String(36), ForeignKey("storybooks.id"), nullable=False, unique=True)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)

    payment_status = Column(String(20), nullable=False, default="unpaid")
    payment_provider = Column(String(32))
    stripe_session_id = Column(String(255), index=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    paid_at = Column(DateTime)
    shipped_at = Column(DateTime)
    delivered_at = Column(DateTime)

    generation_triggered_at = Column(DateTime)
    generation_started_at = Column(DateTime)
    book_completed_at = Column(DateTime)

    storybook = relationship("Storybook", back_populates="order")

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, status={self.status})>"


class Storybook(Base):
    __tablename__ = "storybooks"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    title = Column(String(200))
    description = Column(Text)
    age_range = Column(String(8), nullable=False, default="5-8")
    theme = Column(String(64), nullable=False, default="adventure")
    setting = Column(String(200))
    art_style = Column(String(32), nullable=False, default="pixar-3d")
    target_chapters = Column(Integer, nullable=False, default=12)
    global_seed = Column(Integer)
    status = Column(String(20), nullable=False, default=StorybookStatus.DRAFT.value)
    content = Column(JSON)
    cover_url = Column(Text)
    illustration_metadata = Column(JSON)
    regeneration_credits = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    order = relationship("Order", back_populates="storybook", uselist=False)
    characters = relationship(
        "Character", order_by="Character.position", cascade="all, delete-orphan"
    )
    chapters = relationship(
        "Chapter", order_by="Chapter.chapter_number", cascade="all, delete-orphan"
    )


class Character(Base):
    __tablename__ = "characters"

    id = Column(String(36), primary_key=True, default=new_id)
    storybook_id = Column(String(36), ForeignKey("storybooks.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    name = Column(String(100), nullable=False)
    role = Column(String(20), nullable=False, default="main")
    entity_type = Column(String(50), nullable=False, default="human")
    gender = Column(String(20))
    appearance = Column(Text)
    photo_url = Column(Text)
    ai_avatar_url = Column(Text)


class Chapter(Base):
    __tablename__ = "chapters"
    __table_args__ = (UniqueConstraint("storybook_id", "chapter_number"),)

    id = Column(String(36), primary_key=True, default=new_id)
    storybook_id = Column(String(36), ForeignKey("storybooks.id", ondelete="CASCADE"), nullable=False)
    chapter_number = Column(Integer, nullable=False)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    scene_description = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    illustrations = relationship(
        "Illustration", order_by="Illustration.position", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Chapter(id={self.id}, chapter_number={self.chapter_number}, title={self.title})>"


class Illustration(Base):
    __tablename__ = "illustrations"
    __table_args__ = (UniqueConstraint("chapter_id", "position"),)

    id = Column(String(36), primary_key=True, default=new_id)
    chapter_id = Column(String(36), ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False)
    image_url = Column(Text, nullable=False)
    prompt_used = Column(Text, nullable=False)
    seed_used = Column(Integer, nullable=False)
    negative_prompt = Column(Text)
    reference_images = Column(JSON)
    position = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class GenerationProgressRow(Base):
    __tablename__ = "generation_progress"

    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), primary_key=True)
    stage = Column(String(20), nullable=False)
    stage_progress = Column(Integer, nullable=False, default=0)
    overall_progress = Column(Integer, nullable=False, default=0)
    message = Column(Text, nullable=False, default="")
    data = Column(JSON)
    current_chapter = Column(Integer)
    total_chapters = Column(Integer)
    error = Column(Text)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
