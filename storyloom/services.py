"""
Wire settings and collaborators into a ready-to-use pipeline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import requests
from sqlalchemy.orm import sessionmaker

from storyloom.ai_generation import IllustrationRequester, ReplicateImageGenerator
from storyloom.ai_generation.illustrator import ImageGenerator
from storyloom.common import CompletionCallable, Settings
from storyloom.payments import StripePaymentVerifier
from storyloom.persistence import GenerationStore, build_session_factory
from storyloom.pipeline import (
    GenerationLauncher,
    GenerationOrchestrator,
    ProgressTracker,
    TriggerGuard,
)
from storyloom.storage import FileSystemImageStore, ImageStore
from storyloom.story_generation import CharacterDescriber, ChapterWriter, OutlineGenerator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineServices:
    settings: Settings
    store: GenerationStore
    tracker: ProgressTracker
    guard: TriggerGuard
    orchestrator: GenerationOrchestrator
    launcher: GenerationLauncher
    payment_verifier: StripePaymentVerifier | None


def build_services(
    settings: Settings,
    *,
    session_factory: sessionmaker | None = None,
    completion_fn: CompletionCallable | None = None,
    image_generator: ImageGenerator | None = None,
    image_store: ImageStore | None = None,
    payment_verifier: StripePaymentVerifier | None = None,
    http_session: requests.Session | None = None,
) -> PipelineServices:
    """
    Build every collaborator from ``settings``; any argument overrides the default.
    """
    session_factory = session_factory or build_session_factory(settings.database_url)
    store = GenerationStore(session_factory)
    tracker = ProgressTracker(session_factory)

    if image_store is None:
        image_store = FileSystemImageStore(settings.image_root, settings.public_base_url)
    if image_generator is None:
        image_generator = ReplicateImageGenerator(model_identifier=settings.replicate_model)
    if payment_verifier is None and settings.stripe_api_key:
        payment_verifier = StripePaymentVerifier(store=store, api_key=settings.stripe_api_key)
    if payment_verifier is None:
        logger.warning("No Stripe key configured; unpaid orders cannot be re-verified")

    illustrator = IllustrationRequester(
        image_generator=image_generator,
        store=image_store,
        download_timeout=settings.download_timeout_seconds,
        http_session=http_session,
    )
    orchestrator = GenerationOrchestrator(
        store=store,
        tracker=tracker,
        outline_generator=OutlineGenerator(completion_fn=completion_fn),
        chapter_writer=ChapterWriter(completion_fn=completion_fn),
        character_describer=CharacterDescriber(completion_fn=completion_fn),
        illustrator=illustrator,
        payment_verifier=payment_verifier,
        is_permanent_url=getattr(image_store, "is_permanent", None),
    )
    guard = TriggerGuard(
        store=store,
        tracker=tracker,
        cooldown_seconds=settings.trigger_cooldown_seconds,
    )
    return PipelineServices(
        settings=settings,
        store=store,
        tracker=tracker,
        guard=guard,
        orchestrator=orchestrator,
        launcher=GenerationLauncher(guard, orchestrator.run),
        payment_verifier=payment_verifier,
    )
