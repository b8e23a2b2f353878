"""
Persisted, monotonic progress records polled by clients.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from storyloom.persistence import GenerationProgressRow, Order, utcnow

from .stages import (
    TERMINAL_STAGES,
    Stage,
    coerce_stage,
    overall_progress,
    stage_index,
)

logger = logging.getLogger(__name__)

START_MESSAGE = "Payment confirmed, starting generation..."
FAILURE_MESSAGE = "Something went wrong while creating your book. Please try again."


@dataclass(frozen=True)
class ProgressSnapshot:
    order_id: str
    stage: Stage
    stage_progress: int
    overall_progress: int
    message: str
    data: Mapping[str, Any] = field(default_factory=dict)
    current_chapter: int | None = None
    total_chapters: int | None = None
    error: str | None = None
    started_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    def as_dict(self) -> dict[str, Any]:
        """Client-facing view without the raw ``error`` text."""
        return {
            "stage": self.stage.value,
            "stageProgress": self.stage_progress,
            "overallProgress": self.overall_progress,
            "message": self.message,
            "currentChapter": self.current_chapter,
            "totalChapters": self.total_chapters,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class ProgressReport:
    """What a polling client sees: order status, progress and storybook summary."""

    order_id: str
    status: str
    progress: ProgressSnapshot | None
    storybook: Mapping[str, Any]

    def as_dict(self) -> dict[str, Any]:
        return {
            "orderId": self.order_id,
            "status": self.status,
            "progress": self.progress.as_dict() if self.progress else None,
            "data": dict(self.progress.data) if self.progress else {},
            "storybook": dict(self.storybook),
        }


def _snapshot(row: GenerationProgressRow) -> ProgressSnapshot:
    return ProgressSnapshot(
        order_id=row.order_id,
        stage=coerce_stage(row.stage),
        stage_progress=row.stage_progress,
        overall_progress=row.overall_progress,
        message=row.message,
        data=dict(row.data or {}),
        current_chapter=row.current_chapter,
        total_chapters=row.total_chapters,
        error=row.error,
        started_at=row.started_at,
        updated_at=row.updated_at,
    )


def _same_run(row: GenerationProgressRow, run_started_at: datetime | None) -> bool:
    return run_started_at is None or row.started_at == run_started_at


class ProgressTracker:
    """
    Owns the ``generation_progress`` row for each order.

    Writes that would move a run backwards, or touch a finished run, are
    refused and logged instead of applied.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def reset(self, order_id: str, *, started_at: datetime | None = None) -> ProgressSnapshot:
        """Start a fresh record for a newly granted run."""
        now = started_at or utcnow()
        with self._session_factory.begin() as session:
            row = session.get(GenerationProgressRow, order_id)
            if row is None:
                row = GenerationProgressRow(order_id=order_id)
                session.add(row)
            row.stage = Stage.PAYMENT.value
            row.stage_progress = 0
            row.overall_progress = 0
            row.message = START_MESSAGE
            row.data = {}
            row.current_chapter = None
            row.total_chapters = None
            row.error = None
            row.started_at = now
            row.updated_at = now
            session.flush()
            return _snapshot(row)

    def advance(
        self,
        order_id: str,
        stage: Stage | str,
        stage_progress: float,
        message: str,
        *,
        current_chapter: int | None = None,
        total_chapters: int | None = None,
        run_started_at: datetime | None = None,
    ) -> bool:
        """
        Record progress for the active run; returns ``False`` when the write is refused.

        ``run_started_at`` identifies the run. A record reset by a newer run
        carries a different start time and refuses the write.
        """
        stage = coerce_stage(stage)
        if stage is Stage.FAILED:
            raise ValueError("Use fail() to record a failed run.")
        stage_progress = min(max(int(round(stage_progress)), 0), 100)
        overall = overall_progress(stage, stage_progress)

        with self._session_factory.begin() as session:
            row = session.execute(
                select(GenerationProgressRow)
                .where(GenerationProgressRow.order_id == order_id)
                .with_for_update()
            ).scalar_one_or_none()

            if row is None:
                row = GenerationProgressRow(order_id=order_id, started_at=utcnow(), data={})
                session.add(row)
            else:
                current = coerce_stage(row.stage)
                if not _same_run(row, run_started_at):
                    logger.warning(
                        "Ignoring %s update for order %s from a superseded run", stage.value, order_id
                    )
                    return False
                if current in TERMINAL_STAGES:
                    logger.warning(
                        "Ignoring %s update for order %s: run already %s",
                        stage.value, order_id, current.value,
                    )
                    return False
                if stage_index(stage) < stage_index(current) or overall < row.overall_progress:
                    logger.warning(
                        "Rejected regressive progress for order %s: %s/%d%% after %s/%d%%",
                        order_id, stage.value, overall, current.value, row.overall_progress,
                    )
                    return False

            row.stage = stage.value
            row.stage_progress = stage_progress
            row.overall_progress = overall
            row.message = message
            if current_chapter is not None:
                row.current_chapter = current_chapter
            if total_chapters is not None:
                row.total_chapters = total_chapters
            row.updated_at = utcnow()

        logger.debug("Order %s progress %s %d%% (%d%% overall)", order_id, stage.value, stage_progress, overall)
        return True

    def fail(
        self,
        order_id: str,
        error: str,
        *,
        message: str = FAILURE_MESSAGE,
        run_started_at: datetime | None = None,
    ) -> bool:
        """Freeze a non-terminal record as failed, keeping its last overall percentage."""
        with self._session_factory.begin() as session:
            row = session.get(GenerationProgressRow, order_id)
            if row is None:
                row = GenerationProgressRow(
                    order_id=order_id,
                    stage_progress=0,
                    overall_progress=0,
                    started_at=utcnow(),
                    data={},
                )
                session.add(row)
            elif not _same_run(row, run_started_at):
                logger.warning("Order %s belongs to a newer run; not marking failed", order_id)
                return False
            elif coerce_stage(row.stage) in TERMINAL_STAGES:
                logger.warning("Order %s already %s; not marking failed", order_id, row.stage)
                return False
            row.stage = Stage.FAILED.value
            row.message = message
            row.error = error
            row.updated_at = utcnow()
        return True

    def merge_data(
        self, order_id: str, *, run_started_at: datetime | None = None, **values: Any
    ) -> None:
        with self._session_factory.begin() as session:
            row = session.get(GenerationProgressRow, order_id)
            if row is None:
                logger.warning("No progress record for order %s; dropping data %s", order_id, sorted(values))
                return
            if not _same_run(row, run_started_at):
                logger.warning("Dropping data %s for order %s from a superseded run", sorted(values), order_id)
                return
            # Reassign so the JSON column registers the change.
            merged = dict(row.data or {})
            merged.update(values)
            row.data = merged
            row.updated_at = utcnow()

    def snapshot(self, order_id: str) -> ProgressSnapshot | None:
        with self._session_factory() as session:
            row = session.get(GenerationProgressRow, order_id)
            return _snapshot(row) if row is not None else None

    def read(self, order_id: str) -> ProgressReport | None:
        with self._session_factory() as session:
            order = session.get(Order, order_id)
            if order is None:
                return None
            row = session.get(GenerationProgressRow, order_id)
            storybook = order.storybook
            return ProgressReport(
                order_id=order.id,
                status=order.status,
                progress=_snapshot(row) if row is not None else None,
                storybook={
                    "id": storybook.id if storybook else None,
                    "title": storybook.title if storybook else None,
                    "coverUrl": storybook.cover_url if storybook else None,
                },
            )
