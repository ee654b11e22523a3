"""Storage Abstraction Layer for Nexus.

Provides one interface for JSON records and binary blobs that works with
both the local filesystem and Google Cloud Storage.

The backend is selected once per process:
- Local: Development mode, incomplete GCS settings, or an unreachable bucket
- GCS: When project, bucket and service account credentials are configured

Usage:
    from nexus_storage.storage import get_storage

    storage = get_storage()
    await storage.init()
    item = await storage.store_item("users", {"name": "Ada"})
    url = await storage.upload_file("avatars/ada.png", png_bytes, "image/png")
"""

from .base import BlobBackend
from .base import BlobContent
from .base import DocumentBackend
from .facade import Storage
from .facade import get_storage
from .facade import get_storage_info
from .facade import reset_storage
from .factory import BackendDecision
from .factory import StorageType

__all__ = [
    "BackendDecision",
    "BlobBackend",
    "BlobContent",
    "DocumentBackend",
    "Storage",
    "StorageType",
    "get_storage",
    "get_storage_info",
    "reset_storage",
]
