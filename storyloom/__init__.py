"""
Storyloom: paid, AI-illustrated storybook generation.
"""

from .pipeline import (
    GenerationLauncher,
    GenerationOrchestrator,
    GenerationResult,
    ProgressTracker,
    TriggerGuard,
    TriggerResult,
)
from .services import PipelineServices, build_services

__all__ = [
    "GenerationLauncher",
    "GenerationOrchestrator",
    "GenerationResult",
    "ProgressTracker",
    "TriggerGuard",
    "TriggerResult",
    "PipelineServices",
    "build_services",
]
