"""
Generation stages and the fixed percentage budget each one owns.
"""

from __future__ import annotations

from enum import Enum


class Stage(str, Enum):
    PAYMENT = "payment"
    OUTLINE = "outline"
    NARRATIVE = "narrative"
    COVER = "cover"
    ILLUSTRATIONS = "illustrations"
    LAYOUT = "layout"
    COMPLETE = "complete"
    FAILED = "failed"


STAGE_ORDER: tuple[Stage, ...] = (
    Stage.PAYMENT,
    Stage.OUTLINE,
    Stage.NARRATIVE,
    Stage.COVER,
    Stage.ILLUSTRATIONS,
    Stage.LAYOUT,
    Stage.COMPLETE,
)

TERMINAL_STAGES = frozenset({Stage.COMPLETE, Stage.FAILED})

# (base, weight) in overall percent; bases are cumulative weights.
STAGE_BUDGET: dict[Stage, tuple[int, int]] = {
    Stage.PAYMENT: (0, 2),
    Stage.OUTLINE: (2, 8),
    Stage.NARRATIVE: (10, 72),
    Stage.COVER: (82, 6),
    Stage.ILLUSTRATIONS: (88, 2),
    Stage.LAYOUT: (90, 10),
    Stage.COMPLETE: (100, 0),
}


def coerce_stage(value: Stage | str) -> Stage:
    return value if isinstance(value, Stage) else Stage(value)


def stage_index(stage: Stage | str) -> int:
    """Position in the forward order; ``failed`` sorts after everything."""
    stage = coerce_stage(stage)
    if stage is Stage.FAILED:
        return len(STAGE_ORDER)
    return STAGE_ORDER.index(stage)


def overall_progress(stage: Stage | str, stage_progress: float) -> int:
    """
    Map a stage-local percentage (0-100) to the whole-run percentage.
    """
    stage = coerce_stage(stage)
    if stage is Stage.FAILED:
        raise ValueError("The failed stage has no progress budget.")
    base, weight = STAGE_BUDGET[stage]
    clamped = min(max(float(stage_progress), 0.0), 100.0)
    return int(round(base + clamped * weight / 100))
