"""
Common utilities shared across Storyloom modules.
"""

from .config import Settings, load_settings
from .errors import (
    DuplicateTriggerRejected,
    IncompleteBook,
    InvalidStatusTransition,
    MalformedResponse,
    OrderNotFound,
    PaymentNotVerified,
    RunSuperseded,
    StorageUploadFailure,
    StoryloomError,
    UpstreamGenerationFailure,
)
from .json_extraction import extract_json_object
from .llm import ChatResult, CompletionCallable, call_chat_completion
from .log_setup import configure_logging

__all__ = [
    "ChatResult",
    "CompletionCallable",
    "call_chat_completion",
    "configure_logging",
    "extract_json_object",
    "Settings",
    "load_settings",
    "StoryloomError",
    "PaymentNotVerified",
    "MalformedResponse",
    "UpstreamGenerationFailure",
    "StorageUploadFailure",
    "OrderNotFound",
    "IncompleteBook",
    "RunSuperseded",
    "InvalidStatusTransition",
    "DuplicateTriggerRejected",
]
