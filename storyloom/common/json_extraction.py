"""
Pull a JSON object out of free-form model output.
"""

from __future__ import annotations

import json
import re
from typing import Any

from .errors import MalformedResponse

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


def extract_json_object(text: str, *, context: str = "model response") -> dict[str, Any]:
    """
    Return the first ``{...}`` block of ``text`` parsed as a JSON object.

    The match is greedy, so wrapper prose and Markdown fences around a single
    object are ignored. Raises :class:`MalformedResponse` when no block is
    present, it does not decode, or it decodes to something other than an object.
    """
    match = _JSON_BLOCK.search(text or "")
    if match is None:
        raise MalformedResponse(f"No JSON object found in {context}.")

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise MalformedResponse(f"Failed to parse {context} as JSON: {exc.msg}.") from exc

    if not isinstance(parsed, dict):
        raise MalformedResponse(f"Expected a JSON object in {context}.")

    return parsed
