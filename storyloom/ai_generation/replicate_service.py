"""
Integration with Replicate for storybook image generation.
"""

from __future__ import annotations

import logging
import os
import random
import time
from collections.abc import Iterable as IterableABC
from collections.abc import Mapping as MappingABC
from typing import Any, Callable, Sequence

import replicate

from storyloom.common import MalformedResponse, UpstreamGenerationFailure

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "bytedance/seedream-4.5"
DEFAULT_ASPECT_RATIO = "3:4"
DEFAULT_OUTPUT_FORMAT = "webp"
DEFAULT_OUTPUT_QUALITY = 95
MAX_SEED = 999_999


def random_seed() -> int:
    return random.randint(1, MAX_SEED)


def normalize_image_output(raw: Any) -> str:
    """
    Normalize the output returned by Replicate into a single URL string.

    Accepts a bare string, a sequence or iterator (first element wins), an
    object with a ``url`` attribute or method (Replicate ``FileOutput``), or a
    mapping with a ``"url"`` key.
    """
    if raw is None:
        raise MalformedResponse("Image model returned no output.")

    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="ignore")

    if isinstance(raw, str):
        url = raw.strip()
        if not url:
            raise MalformedResponse("Image model returned an empty URL.")
        return url

    if isinstance(raw, MappingABC):
        if "url" not in raw:
            raise MalformedResponse("Image model output object has no 'url'.")
        return normalize_image_output(raw["url"])

    url_attr = getattr(raw, "url", None)
    if url_attr is not None:
        return normalize_image_output(url_attr() if callable(url_attr) else url_attr)

    if isinstance(raw, IterableABC):
        for item in raw:
            return normalize_image_output(item)
        raise MalformedResponse("Image model returned an empty list.")

    raise MalformedResponse(f"Unexpected image model output type: {type(raw).__name__}.")


class ReplicateImageGenerator:
    """
    Convenience wrapper around the Replicate client for storybook image generation.

    Parameters
    ----------
    api_token:
        Replicate API token. Falls back to ``REPLICATE_API_TOKEN`` environment variable.
    model_identifier:
        Model string (``owner/model`` or ``owner/model:version``). Falls back to
        ``REPLICATE_MODEL`` and then to Seedream 4.5.
    client:
        Optional pre-configured :class:`replicate.Client`. Mainly useful for testing.
    max_attempts:
        Provider calls attempted before giving up.
    backoff_seconds:
        Base delay; attempt ``n`` waits ``backoff_seconds * 2 ** (n - 1)``.
    sleep:
        Injectable sleep function.
    """

    def __init__(
        self,
        *,
        api_token: str | None = None,
        model_identifier: str | None = None,
        client: replicate.Client | None = None,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._api_token = api_token or os.getenv("REPLICATE_API_TOKEN")
        if not self._api_token and not client:
            raise ValueError(
                "Replicate API token is required. Set REPLICATE_API_TOKEN or pass api_token."
            )

        self._model_identifier = model_identifier or os.getenv("REPLICATE_MODEL") or DEFAULT_MODEL
        self._client = client or replicate.Client(api_token=self._api_token)
        self._max_attempts = max(1, max_attempts)
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    @property
    def model_identifier(self) -> str:
        """Return the model identifier currently used."""
        return self._model_identifier

    def generate(
        self,
        *,
        prompt: str,
        seed: int | None = None,
        aspect_ratio: str = DEFAULT_ASPECT_RATIO,
        output_format: str = DEFAULT_OUTPUT_FORMAT,
        output_quality: int = DEFAULT_OUTPUT_QUALITY,
        negative_prompt: str | None = None,
        image_input: Sequence[str] | None = None,
        **model_kwargs: Any,
    ) -> str:
        """
        Generate one image and return its (ephemeral) provider URL.

        Provider exceptions are retried with exponential backoff and surface
        as :class:`UpstreamGenerationFailure` once attempts run out. An output
        that cannot be normalized raises :class:`MalformedResponse` immediately.
        """
        replicate_input: dict[str, Any] = {
            "prompt": prompt,
            "seed": seed if seed is not None else random_seed(),
            "aspect_ratio": aspect_ratio,
            "output_format": output_format,
            "output_quality": output_quality,
            "sequential_image_generation": "disabled",
            "max_images": 1,
        }
        if negative_prompt:
            replicate_input["negative_prompt"] = negative_prompt
        if image_input:
            replicate_input["image_input"] = list(image_input)

        # Allow the caller to tweak model-specific knobs.
        replicate_input.update(model_kwargs)

        last_error: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                output = self._client.run(self._model_identifier, input=replicate_input)
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Image generation attempt %d/%d failed: %s", attempt, self._max_attempts, exc
                )
                if attempt < self._max_attempts:
                    self._sleep(self._backoff_seconds * 2 ** (attempt - 1))
                continue

            return normalize_image_output(output)

        raise UpstreamGenerationFailure(
            f"Image generation failed after {self._max_attempts} attempts: {last_error}"
        ) from last_error
