"""
Core package initializer.

This package provides error types shared across services and the API.
"""

from .errors import (
    NotFoundError,
    GalleryNotFoundError,
    FaceNotFoundError,
    ClusterNotFoundError,
)

__all__ = [
    "NotFoundError",
    "GalleryNotFoundError",
    "FaceNotFoundError",
    "ClusterNotFoundError",
]
