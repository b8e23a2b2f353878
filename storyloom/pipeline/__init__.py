"""
Generation pipeline: stage budget, progress tracking, trigger guard and orchestrator.
"""

from .assembly import build_book_content, build_illustration_metadata, expected_page_count
from .maintenance import fix_stuck_order
from .orchestrator import GenerationOrchestrator, GenerationResult, derive_seed
from .progress import ProgressReport, ProgressSnapshot, ProgressTracker
from .stages import STAGE_BUDGET, STAGE_ORDER, Stage, overall_progress
from .trigger_guard import GenerationLauncher, TriggerGuard, TriggerResult

__all__ = [
    "build_book_content",
    "build_illustration_metadata",
    "expected_page_count",
    "fix_stuck_order",
    "GenerationOrchestrator",
    "GenerationResult",
    "derive_seed",
    "ProgressReport",
    "ProgressSnapshot",
    "ProgressTracker",
    "STAGE_BUDGET",
    "STAGE_ORDER",
    "Stage",
    "overall_progress",
    "GenerationLauncher",
    "TriggerGuard",
    "TriggerResult",
]
