"""Unified record and blob storage with local fallback for Google Cloud Storage."""

from .exceptions import CorruptDocumentError
from .exceptions import InvalidKeyError
from .exceptions import RemoteUnavailableError
from .exceptions import StorageConfigError
from .exceptions import StorageError
from .storage import BlobContent
from .storage import Storage
from .storage import StorageType
from .storage import get_storage
from .storage import reset_storage

__version__ = "0.1.0"

__all__ = [
    "BlobContent",
    "CorruptDocumentError",
    "InvalidKeyError",
    "RemoteUnavailableError",
    "Storage",
    "StorageConfigError",
    "StorageError",
    "StorageType",
    "get_storage",
    "reset_storage",
]
