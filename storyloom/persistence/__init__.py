"""
SQLAlchemy persistence for orders, storybooks, and generation progress.
"""

from .database import build_engine, build_session_factory
from .models import (
    Base,
    Chapter,
    Character,
    GenerationProgressRow,
    Illustration,
    Order,
    OrderStatus,
    Storybook,
    StorybookStatus,
    can_transition,
    utcnow,
)
from .repository import (
    ChapterRecord,
    GenerationStore,
    IllustrationRecord,
    OrderContext,
    OrderSnapshot,
    StorybookSnapshot,
)

__all__ = [
    "Base",
    "Chapter",
    "Character",
    "GenerationProgressRow",
    "Illustration",
    "Order",
    "OrderStatus",
    "Storybook",
    "StorybookStatus",
    "can_transition",
    "utcnow",
    "build_engine",
    "build_session_factory",
    "ChapterRecord",
    "GenerationStore",
    "IllustrationRecord",
    "OrderContext",
    "OrderSnapshot",
    "StorybookSnapshot",
]
