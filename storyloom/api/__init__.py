"""
HTTP surface for Storyloom.
"""

from .app import create_app

__all__ = ["create_app"]
