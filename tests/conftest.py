"""
Shared fixtures: in-memory database, scripted text model, fake image provider.
"""

from __future__ import annotations

import json
import re
from typing import Any

import pytest
import requests

from storyloom.ai_generation import IllustrationRequester
from storyloom.common import ChatResult, UpstreamGenerationFailure
from storyloom.persistence import GenerationStore, build_session_factory
from storyloom.pipeline import GenerationOrchestrator, ProgressTracker, TriggerGuard
from storyloom.storage import FileSystemImageStore
from storyloom.story_generation import CharacterDescriber, ChapterWriter, OutlineGenerator

PUBLIC_BASE = "https://cdn.storyloom.test/images"

CAST = [
    {
        "name": "Mia",
        "role": "main",
        "entity_type": "human",
        "gender": "girl",
        "appearance": "curly red hair, green raincoat",
        "ai_avatar_url": json.dumps(["https://avatars.test/mia.png"]),
    },
    {
        "name": "Biscuit",
        "role": "supporting",
        "entity_type": "dog",
        "photo_url": "https://photos.test/biscuit.jpg",
    },
]


def outline_payload(count: int, title: str = "Mia and the Lantern Sea") -> dict[str, Any]:
    return {
        "title": title,
        "dedication": "For Mia, who always looks up.",
        "chapters": [
            {
                "number": number,
                "title": f"Chapter {number} Title",
                "summary": f"Summary of chapter {number}.",
                "sceneDescription": f"Outline scene {number}",
                "emotionalTone": "curious",
            }
            for number in range(1, count + 1)
        ],
    }


class FakeCompletion:
    """
    Stands in for LiteLLM; answers by recognizing which prompt it was given.
    """

    def __init__(self, *, outline_text: str | None = None, title: str = "Mia and the Lantern Sea"):
        self.outline_text = outline_text
        self.title = title
        self.calls: list[dict[str, Any]] = []

    def __call__(self, *, model: str, messages, **kwargs: Any) -> ChatResult:
        self.calls.append({"model": model, "messages": list(messages), **kwargs})
        user = messages[-1]["content"]

        match = re.search(r"outline with exactly (\d+) chapters", user)
        if match:
            text = self.outline_text
            if text is None:
                payload = outline_payload(int(match.group(1)), title=self.title)
                text = "Here is your outline:\n```json\n" + json.dumps(payload) + "\n```"
            return ChatResult(text=text, raw=None)

        match = re.search(r"Write the text for chapter (\d+)", user)
        if match:
            number = int(match.group(1))
            payload = {
                "text": f"Chapter {number} prose about Mia and Biscuit.",
                "visualPrompt": f"Refined scene {number}",
            }
            return ChatResult(text=json.dumps(payload), raw=None)

        if "back-cover summary" in user:
            return ChatResult(text='"A glowing adventure awaits."', raw=None)

        if "visual description for illustration consistency" in user:
            payload = {
                "description": "A cheerful figure with bright eyes.",
                "consistencyKeywords": "bright eyes, cheerful",
            }
            return ChatResult(text=json.dumps(payload), raw=None)

        raise AssertionError(f"Unexpected prompt: {user[:80]}")


class FakeImageGenerator:
    def __init__(self, fail_on_call: int | None = None) -> None:
        self.calls: list[dict[str, Any]] = []
        self.fail_on_call = fail_on_call

    def generate(self, *, prompt: str, seed: int | None = None, **kwargs: Any) -> str:
        self.calls.append({"prompt": prompt, "seed": seed, **kwargs})
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise UpstreamGenerationFailure("provider exploded")
        return f"https://replicate.delivery/fake/{len(self.calls)}.webp"


class FakeResponse:
    def __init__(self, content: bytes, status_code: int = 200) -> None:
        self.content = content
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeHttpSession:
    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.requested: list[str] = []

    def get(self, url: str, timeout: float | None = None) -> FakeResponse:
        self.requested.append(url)
        return FakeResponse(b"fake-webp-bytes", status_code=self.status_code)


@pytest.fixture
def session_factory():
    return build_session_factory("sqlite://")


@pytest.fixture
def store(session_factory) -> GenerationStore:
    return GenerationStore(session_factory)


@pytest.fixture
def tracker(session_factory) -> ProgressTracker:
    return ProgressTracker(session_factory)


@pytest.fixture
def guard(store, tracker) -> TriggerGuard:
    return TriggerGuard(store=store, tracker=tracker, cooldown_seconds=30)


@pytest.fixture
def http_session() -> FakeHttpSession:
    return FakeHttpSession()


@pytest.fixture
def image_store(tmp_path) -> FileSystemImageStore:
    return FileSystemImageStore(tmp_path / "images", PUBLIC_BASE)


@pytest.fixture
def make_order(store):
    def _make(*, target_chapters: int = 3, paid: bool = True, **overrides: Any) -> str:
        order_id = store.create_order(
            user_id="user-1",
            characters=overrides.pop("characters", CAST),
            target_chapters=target_chapters,
            setting=overrides.pop("setting", "a seaside town"),
            **overrides,
        )
        if paid:
            store.record_payment(order_id, session_id="cs_test_123", paid=True)
        return order_id

    return _make


@pytest.fixture
def build_orchestrator(store, tracker, image_store, http_session):
    def _build(
        completion: FakeCompletion,
        image_generator: FakeImageGenerator,
        *,
        payment_verifier=None,
    ) -> GenerationOrchestrator:
        illustrator = IllustrationRequester(
            image_generator=image_generator,
            store=image_store,
            http_session=http_session,
        )
        return GenerationOrchestrator(
            store=store,
            tracker=tracker,
            outline_generator=OutlineGenerator(completion_fn=completion),
            chapter_writer=ChapterWriter(completion_fn=completion),
            character_describer=CharacterDescriber(completion_fn=completion),
            illustrator=illustrator,
            payment_verifier=payment_verifier,
            is_permanent_url=image_store.is_permanent,
        )

    return _build
