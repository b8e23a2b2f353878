"""
LiteLLM-powered chat completion helper utilities.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Mapping, MutableMapping, Sequence

from litellm import completion

from .errors import MalformedResponse, UpstreamGenerationFailure

logger = logging.getLogger(__name__)

ChatMessage = Mapping[str, Any]

DEFAULT_MODEL = "gpt-4.1-mini"


@dataclass
class ChatResult:
    """
    Structured response returned from an LLM chat completion.
    """

    text: str
    raw: Any


CompletionCallable = Callable[..., ChatResult]


def resolve_model(explicit: str | None, *env_names: str) -> str:
    """Pick the model from the argument, the given env vars, ``LITELLM_MODEL`` or the default."""
    if explicit:
        return explicit
    for name in (*env_names, "LITELLM_MODEL"):
        value = os.getenv(name)
        if value:
            return value
    return DEFAULT_MODEL


def resolve_api_key(explicit: str | None) -> str | None:
    return explicit or os.getenv("OPENAI_API_KEY") or os.getenv("LITELLM_API_KEY")


def call_chat_completion(
    *,
    model: str,
    messages: Sequence[ChatMessage],
    temperature: float | None = None,
    max_tokens: int | None = None,
    api_key: str | None = None,
    **extra_kwargs: Any,
) -> ChatResult:
    """
    Invoke LiteLLM's `completion` API and return the consolidated text.

    Provider errors surface as :class:`UpstreamGenerationFailure`; a response
    without message content surfaces as :class:`MalformedResponse`.
    """
    payload: MutableMapping[str, Any] = {
        "model": model,
        "messages": list(messages),
    }

    if temperature is not None:
        payload["temperature"] = temperature

    if max_tokens is not None:
        payload["max_tokens"] = max_tokens

    if api_key is not None:
        payload["api_key"] = api_key

    payload.update(extra_kwargs)

    try:
        response = completion(**payload)
    except Exception as exc:
        logger.error("Text generation call to %s failed: %s", model, exc)
        raise UpstreamGenerationFailure(f"Text generation failed: {exc}") from exc

    try:
        message = response["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise MalformedResponse("Unexpected LiteLLM response format.") from exc

    text = str(message or "").strip()
    return ChatResult(text=text, raw=response)
