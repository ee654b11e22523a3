"""Utility helpers for the storage layer."""

from .documents import Document
from .documents import matches_filter
from .documents import validate_blob_path
from .documents import validate_segment

__all__ = ["Document", "matches_filter", "validate_blob_path", "validate_segment"]
