"""Abstract Base Classes for Storage Backends.

Defines the interfaces that the local and remote drivers implement.
Record semantics (id assignment, timestamps, merge, filter) are written
once here on top of four byte-level primitives, so every backend behaves
the same way.
"""
from __future__ import annotations


import json
from abc import ABC
from abc import abstractmethod
from dataclasses import dataclass

from ..exceptions import CorruptDocumentError
from ..logger_config import ErrorCategory
from ..logger_config import log_structured_error
from ..utils.documents import Document
from ..utils.documents import matches_filter
from ..utils.documents import merge_document
from ..utils.documents import prepare_new_document
from ..utils.documents import validate_segment

RECORD_SUFFIX = ".json"
JSON_CONTENT_TYPE = "application/json"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class BlobContent:
    """A stored blob and its content type."""

    path: str
    data: bytes
    content_type: str = DEFAULT_CONTENT_TYPE


def encode_record(document: Document) -> bytes:
    return json.dumps(document, ensure_ascii=False, indent=2).encode("utf-8")


def decode_record(collection: str, item_id: str, payload: bytes) -> Document:
    """Parse a stored record, raising CorruptDocumentError on bad data."""
    try:
        document = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptDocumentError(collection, item_id, str(e)) from e
    if not isinstance(document, dict):
        raise CorruptDocumentError(collection, item_id, f"expected object, got {type(document).__name__}")
    return document


class DocumentBackend(ABC):
    """Abstract base class for JSON record storage.

    Subclasses implement the byte-level primitives; the record operations
    (``store``, ``get``, ``update``, ``delete``, ``query``) are shared.
    """

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Return the backend type identifier (e.g., 'local', 'gcs')."""
        pass

    @property
    @abstractmethod
    def root_path(self) -> str:
        """Return the root directory or bucket URI for records."""
        pass

    # === Primitives ===

    @abstractmethod
    async def read_record(self, collection: str, item_id: str) -> bytes | None:
        """Return the raw record bytes, or None if the record does not exist."""
        pass

    @abstractmethod
    async def write_record(self, collection: str, item_id: str, payload: bytes) -> None:
        """Create or replace the raw record bytes."""
        pass

    @abstractmethod
    async def remove_record(self, collection: str, item_id: str) -> bool:
        """Remove a record. Returns True if it existed."""
        pass

    @abstractmethod
    async def list_record_ids(self, collection: str) -> list[str]:
        """List every record id in a collection (empty if the collection is new)."""
        pass

    # === Record Operations ===

    async def store(self, collection: str, item: Document) -> Document:
        """Write ``item`` (overwriting any record with the same id).

        Returns:
            The stored record, including its id and ``createdAt``.
        """
        validate_segment(collection, "collection")
        document = prepare_new_document(item)
        await self.write_record(collection, document["id"], encode_record(document))
        return document

    async def get(self, collection: str, item_id: str) -> Document | None:
        validate_segment(collection, "collection")
        validate_segment(item_id, "id")
        payload = await self.read_record(collection, item_id)
        if payload is None:
            return None
        return decode_record(collection, item_id, payload)

    async def update(self, collection: str, item_id: str, patch: Document) -> Document | None:
        """Shallow-merge ``patch`` into an existing record.

        Returns None when the record does not exist; update never creates.
        """
        existing = await self.get(collection, item_id)
        if existing is None:
            return None
        updated = merge_document(existing, patch)
        await self.write_record(collection, item_id, encode_record(updated))
        return updated

    async def delete(self, collection: str, item_id: str) -> bool:
        validate_segment(collection, "collection")
        validate_segment(item_id, "id")
        return await self.remove_record(collection, item_id)

    async def query(self, collection: str, query: Document | None = None) -> list[Document]:
        """Linear scan of the collection, keeping records equal on every filter key.

        Corrupt records are logged and skipped.
        """
        validate_segment(collection, "collection")
        results = []
        for item_id in sorted(await self.list_record_ids(collection)):
            payload = await self.read_record(collection, item_id)
            if payload is None:
                # Deleted between listing and reading
                continue
            try:
                document = decode_record(collection, item_id, payload)
            except CorruptDocumentError as e:
                log_structured_error(
                    category=ErrorCategory.WARNING,
                    message=f"Skipping corrupt record during query: {e}",
                    exception=e,
                    operation="query",
                    collection=collection,
                    item_id=item_id,
                    backend=self.backend_type,
                )
                continue
            if matches_filter(document, query):
                results.append(document)
        return results


class BlobBackend(ABC):
    """Abstract base class for binary blob storage addressed by path."""

    @property
    @abstractmethod
    def backend_type(self) -> str:
        pass

    @property
    @abstractmethod
    def root_path(self) -> str:
        pass

    @abstractmethod
    def public_url(self, path: str) -> str:
        """URL under which the web tier can serve the blob at ``path``."""
        pass

    @abstractmethod
    async def upload(self, path: str, data: bytes | str, content_type: str) -> str:
        """Write a blob, overwriting any existing one at ``path``.

        Returns:
            The blob's public URL
        """
        pass

    @abstractmethod
    async def read(self, path: str) -> BlobContent | None:
        """Read a blob, or None if nothing is stored at ``path``."""
        pass

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """Delete a blob. Returns True if it existed."""
        pass


def as_bytes(data: bytes | bytearray | str) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    raise TypeError(f"Blob data must be bytes or str, got {type(data).__name__}")
