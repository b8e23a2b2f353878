import re

import pytest

from storyloom.ai_generation import (
    CharacterReference,
    IllustrationRequester,
    ReplicateImageGenerator,
    build_character_references,
    build_scene_prompt,
    normalize_image_output,
)
from storyloom.common import MalformedResponse, StorageUploadFailure, UpstreamGenerationFailure
from storyloom.story_generation import StoryCharacter

from .conftest import PUBLIC_BASE, FakeHttpSession, FakeImageGenerator


def make_references(count: int) -> list[CharacterReference]:
    return [
        CharacterReference(
            character_id=f"c{index}",
            name=f"Friend {index}",
            visual_description=f"look {index}",
            reference_image_url=f"https://refs.test/{index}.png",
        )
        for index in range(1, count + 1)
    ]


def test_character_labels_match_reference_image_order():
    references = make_references(3)
    prompt = build_scene_prompt("Picnic on a hill", references)

    labels = re.findall(r"Character (\d+): \[reference image \d+\] – (Friend \d+)", prompt.positive)
    assert [int(number) for number, _ in labels] == [1, 2, 3]
    for number, name in labels:
        index = int(number) - 1
        assert references[index].name == name
        assert prompt.reference_images[index] == references[index].reference_image_url


def test_duplicate_character_is_rejected():
    reference = make_references(1)[0]
    with pytest.raises(ValueError):
        build_scene_prompt("Scene", [reference, reference])


def test_character_without_image_cannot_become_a_reference():
    characters = [
        StoryCharacter(character_id="c1", name="Mia", photo_url="https://photos.test/mia.jpg"),
        StoryCharacter(character_id="c2", name="Ghost"),
    ]
    with pytest.raises(ValueError):
        build_character_references(characters)


def test_avatar_wins_over_photo():
    characters = [
        StoryCharacter(
            character_id="c1",
            name="Mia",
            photo_url="https://photos.test/mia.jpg",
            ai_avatar_url='["https://avatars.test/mia-1.png", "https://avatars.test/mia-2.png"]',
        )
    ]
    (reference,) = build_character_references(characters)
    assert reference.reference_image_url == "https://avatars.test/mia-1.png"


class _FileOutput:
    def __init__(self, url: str) -> None:
        self._url = url

    def url(self) -> str:
        return self._url


@pytest.mark.parametrize(
    "raw",
    [
        "https://img.test/a.webp",
        ["https://img.test/a.webp", "https://img.test/b.webp"],
        {"url": "https://img.test/a.webp"},
        _FileOutput("https://img.test/a.webp"),
        iter(["https://img.test/a.webp"]),
    ],
)
def test_normalize_accepts_every_output_shape(raw):
    assert normalize_image_output(raw) == "https://img.test/a.webp"


@pytest.mark.parametrize("raw", [None, [], {"image": "x"}, "   ", 42])
def test_normalize_rejects_unusable_output(raw):
    with pytest.raises(MalformedResponse):
        normalize_image_output(raw)


class _FlakyClient:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.inputs: list[dict] = []

    def run(self, model, input):
        self.inputs.append(input)
        if len(self.inputs) <= self.failures:
            raise RuntimeError("503 from provider")
        return [{"url": "https://replicate.delivery/ok.webp"}]


def test_replicate_generator_retries_with_backoff():
    sleeps: list[float] = []
    client = _FlakyClient(failures=2)
    generator = ReplicateImageGenerator(client=client, sleep=sleeps.append)

    url = generator.generate(prompt="A dragon", seed=7, image_input=["https://refs.test/1.png"])

    assert url == "https://replicate.delivery/ok.webp"
    assert sleeps == [2.0, 4.0]
    sent = client.inputs[-1]
    assert sent["seed"] == 7
    assert sent["aspect_ratio"] == "3:4"
    assert sent["output_format"] == "webp"
    assert sent["image_input"] == ["https://refs.test/1.png"]


def test_replicate_generator_gives_up_after_max_attempts():
    generator = ReplicateImageGenerator(client=_FlakyClient(failures=5), sleep=lambda _: None)
    with pytest.raises(UpstreamGenerationFailure):
        generator.generate(prompt="A dragon", seed=1)


def test_illustrator_persists_image_before_returning(image_store, tmp_path):
    generator = FakeImageGenerator()
    session = FakeHttpSession()
    requester = IllustrationRequester(image_generator=generator, store=image_store, http_session=session)

    result = requester.illustrate(
        scene_description="Sailing at dusk",
        references=make_references(2),
        owner_id="user-1",
        seed=42,
    )

    assert session.requested == ["https://replicate.delivery/fake/1.webp"]
    assert result.image_url.startswith(PUBLIC_BASE + "/user-1/illustrations/")
    assert result.seed == 42
    assert generator.calls[0]["image_input"] == list(result.reference_images)
    stored = list((tmp_path / "images" / "user-1" / "illustrations").iterdir())
    assert len(stored) == 1
    assert stored[0].read_bytes() == b"fake-webp-bytes"


def test_failed_download_is_a_storage_failure(image_store):
    requester = IllustrationRequester(
        image_generator=FakeImageGenerator(),
        store=image_store,
        http_session=FakeHttpSession(status_code=404),
    )
    with pytest.raises(StorageUploadFailure):
        requester.illustrate(scene_description="Scene", references=make_references(1), owner_id="u")


@pytest.mark.parametrize("path", ["../escape.webp", "/abs/path.webp"])
def test_image_store_refuses_paths_outside_root(image_store, path):
    with pytest.raises(StorageUploadFailure):
        image_store.upload(b"data", path)
