"""
Runtime settings gathered from the environment and an optional YAML file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml
from dotenv import load_dotenv

DEFAULT_DATABASE_URL = "sqlite:///storyloom.db"


@dataclass(frozen=True)
class Settings:
    """
    Service-wide configuration.

    Attributes
    ----------
    database_url:
        SQLAlchemy URL of the order/storybook database.
    trigger_cooldown_seconds:
        Window during which a repeated generation trigger is refused.
    stuck_after_minutes:
        Age of the last progress update after which a ``generating`` order may
        be marked failed by an operator.
    image_root:
        Directory that backs the permanent image store.
    public_base_url:
        Public URL prefix under which ``image_root`` is served.
    download_timeout_seconds:
        Timeout for fetching ephemeral provider images.
    replicate_model:
        Image model identifier; ``None`` lets the generator pick its default.
    stripe_api_key:
        Secret key for checkout session lookups.
    """

    database_url: str = DEFAULT_DATABASE_URL
    trigger_cooldown_seconds: int = 30
    stuck_after_minutes: int = 20
    image_root: str = "generated-images"
    public_base_url: str = "http://localhost:8000/static/generated-images"
    download_timeout_seconds: float = 60.0
    replicate_model: str | None = None
    stripe_api_key: str | None = None

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "Settings":
        known = {item.name: item for item in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in values.items():
            if key not in known or value is None:
                continue
            kwargs[key] = _coerce(value, known[key].type)
        return cls(**kwargs)


def _coerce(value: Any, annotation: Any) -> Any:
    text = str(annotation)
    if text.startswith("int"):
        return int(value)
    if text.startswith("float"):
        return float(value)
    return str(value)


_ENV_KEYS = {
    "database_url": "STORYLOOM_DATABASE_URL",
    "trigger_cooldown_seconds": "STORYLOOM_TRIGGER_COOLDOWN_SECONDS",
    "stuck_after_minutes": "STORYLOOM_STUCK_AFTER_MINUTES",
    "image_root": "STORYLOOM_IMAGE_ROOT",
    "public_base_url": "STORYLOOM_PUBLIC_BASE_URL",
    "download_timeout_seconds": "STORYLOOM_DOWNLOAD_TIMEOUT_SECONDS",
    "replicate_model": "REPLICATE_MODEL",
    "stripe_api_key": "STRIPE_SECRET_KEY",
}


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Build :class:`Settings` from ``.env``/environment, then overlay a YAML file.

    The YAML path comes from ``config_path`` or ``STORYLOOM_CONFIG``.
    """
    load_dotenv()

    env_values = {key: os.getenv(env_name) for key, env_name in _ENV_KEYS.items()}
    settings = Settings.from_mapping(env_values)

    path = config_path or os.getenv("STORYLOOM_CONFIG")
    if path:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        if not isinstance(data, Mapping):
            raise ValueError("Storyloom config YAML must deserialize to a mapping.")
        overrides = Settings.from_mapping(data)
        chosen = [key for key, value in data.items() if key in _ENV_KEYS and value is not None]
        settings = replace(settings, **{key: getattr(overrides, key) for key in chosen})

    return settings
