"""
Permanent storage for generated images.

Provider URLs expire, so every generated image is downloaded and re-uploaded
before anything references it.
"""

from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path, PurePosixPath
from typing import Literal, Protocol

import requests

from storyloom.common import StorageUploadFailure

logger = logging.getLogger(__name__)

ImageKind = Literal["avatars", "covers", "illustrations"]
IMAGE_KINDS: tuple[str, ...] = ("avatars", "covers", "illustrations")


class ImageStore(Protocol):
    """Durable storage that returns a permanent public URL for an uploaded object."""

    def upload(self, data: bytes, path: str, *, content_type: str = "image/webp") -> str:
        ...


class FileSystemImageStore:
    """
    Stores images beneath ``root`` and serves them from ``public_base_url``.
    """

    def __init__(self, root: str | Path, public_base_url: str) -> None:
        self._root = Path(root).expanduser()
        self._public_base_url = public_base_url.rstrip("/")

    @property
    def public_base_url(self) -> str:
        return self._public_base_url

    def upload(self, data: bytes, path: str, *, content_type: str = "image/webp") -> str:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise StorageUploadFailure(f"Refusing to write outside the image root: {path!r}")
        if not data:
            raise StorageUploadFailure(f"Refusing to store an empty image at {path!r}")

        target = self._root.joinpath(*relative.parts)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("xb") as handle:
                handle.write(data)
        except OSError as exc:
            raise StorageUploadFailure(f"Failed to write {path!r}: {exc}") from exc

        return f"{self._public_base_url}/{relative.as_posix()}"

    def is_permanent(self, url: str) -> bool:
        return url.startswith(self._public_base_url + "/")


def build_object_path(owner_id: str, kind: str, *, extension: str = "webp") -> str:
    if kind not in IMAGE_KINDS:
        raise ValueError(f"Unknown image kind {kind!r}; expected one of {IMAGE_KINDS}.")
    timestamp = int(time.time() * 1000)
    return f"{owner_id}/{kind}/{timestamp}-{uuid.uuid4()}.{extension}"


def persist_remote_image(
    url: str,
    *,
    store: ImageStore,
    owner_id: str,
    kind: ImageKind,
    session: requests.Session | None = None,
    timeout: float = 60.0,
) -> str:
    """
    Download ``url`` and upload it to ``store``; return the permanent URL.

    Every download or upload problem is raised as :class:`StorageUploadFailure`.
    """
    http = session or requests
    try:
        response = http.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise StorageUploadFailure(f"Failed to download generated image: {exc}") from exc

    path = build_object_path(owner_id, kind)
    try:
        permanent_url = store.upload(response.content, path, content_type="image/webp")
    except StorageUploadFailure:
        raise
    except Exception as exc:
        raise StorageUploadFailure(f"Failed to upload to storage: {exc}") from exc

    logger.info("Persisted %s image for %s to %s", kind, owner_id, permanent_url)
    return permanent_url
