"""Local Filesystem Storage Backends.

Implements the document and blob interfaces on the local filesystem.
This is the fallback whenever the remote bucket is unavailable and the
default for local development.

Layout::

    <root>/data/<collection>/<id>.json
    <root>/uploads/<blob path>
"""

from __future__ import annotations

import mimetypes
import os
import tempfile
from pathlib import Path
from urllib.parse import quote

from ..utils.documents import validate_blob_path
from .base import DEFAULT_CONTENT_TYPE
from .base import RECORD_SUFFIX
from .base import BlobBackend
from .base import BlobContent
from .base import DocumentBackend
from .base import as_bytes

DATA_DIR_NAME = "data"
UPLOADS_DIR_NAME = "uploads"


def atomic_write(target: Path, payload: bytes) -> None:
    """Write ``payload`` to a temp file beside ``target`` and rename it into place.

    Readers see either the old or the new content, never a partial file.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as tmp:
            tmp.write(payload)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class LocalDocumentBackend(DocumentBackend):
    """JSON records as one file per record under a collection directory.

    Args:
        root_dir: Storage root; records live in ``<root_dir>/data``.
    """

    def __init__(self, root_dir: str | Path):
        self._root = Path(root_dir).expanduser().resolve()
        self._data_dir = self._root / DATA_DIR_NAME

    @property
    def backend_type(self) -> str:
        return "local"

    @property
    def root_path(self) -> str:
        return str(self._data_dir)

    def _record_path(self, collection: str, item_id: str) -> Path:
        return self._data_dir / collection / f"{item_id}{RECORD_SUFFIX}"

    async def read_record(self, collection: str, item_id: str) -> bytes | None:
        try:
            return self._record_path(collection, item_id).read_bytes()
        except FileNotFoundError:
            return None

    async def write_record(self, collection: str, item_id: str, payload: bytes) -> None:
        atomic_write(self._record_path(collection, item_id), payload)

    async def remove_record(self, collection: str, item_id: str) -> bool:
        try:
            self._record_path(collection, item_id).unlink()
        except FileNotFoundError:
            return False
        return True

    async def list_record_ids(self, collection: str) -> list[str]:
        collection_dir = self._data_dir / collection
        if not collection_dir.is_dir():
            return []

        ids = []
        for item in collection_dir.iterdir():
            # Skip in-flight temp files and anything hidden
            if item.name.startswith(".") or not item.is_file():
                continue
            if item.name.endswith(RECORD_SUFFIX):
                ids.append(item.name[: -len(RECORD_SUFFIX)])
        return ids


class LocalBlobBackend(BlobBackend):
    """Blobs as plain files under ``<root_dir>/uploads``.

    Args:
        root_dir: Storage root directory.
        public_url_prefix: Root-relative URL prefix the web tier serves uploads from.
    """

    def __init__(self, root_dir: str | Path, public_url_prefix: str = "/uploads"):
        self._root = Path(root_dir).expanduser().resolve()
        self._uploads_dir = self._root / UPLOADS_DIR_NAME
        self._url_prefix = "/" + public_url_prefix.strip("/") if public_url_prefix.strip("/") else ""

    @property
    def backend_type(self) -> str:
        return "local"

    @property
    def root_path(self) -> str:
        return str(self._uploads_dir)

    def _full_path(self, path: str) -> Path:
        return self._uploads_dir / validate_blob_path(path)

    def public_url(self, path: str) -> str:
        return f"{self._url_prefix}/{quote(validate_blob_path(path))}"

    async def upload(self, path: str, data: bytes | str, content_type: str) -> str:
        # Content type is not persisted locally; reads infer it from the extension
        atomic_write(self._full_path(path), as_bytes(data))
        return self.public_url(path)

    async def read(self, path: str) -> BlobContent | None:
        full_path = self._full_path(path)
        if not full_path.is_file():
            return None
        content_type, _ = mimetypes.guess_type(full_path.name)
        return BlobContent(
            path=validate_blob_path(path),
            data=full_path.read_bytes(),
            content_type=content_type or DEFAULT_CONTENT_TYPE,
        )

    async def delete(self, path: str) -> bool:
        full_path = self._full_path(path)
        if full_path.is_file():
            full_path.unlink()
            return True
        return False
