"""
Permanent image storage for Storyloom.
"""

from .image_store import (
    IMAGE_KINDS,
    FileSystemImageStore,
    ImageStore,
    build_object_path,
    persist_remote_image,
)

__all__ = [
    "IMAGE_KINDS",
    "FileSystemImageStore",
    "ImageStore",
    "build_object_path",
    "persist_remote_image",
]
