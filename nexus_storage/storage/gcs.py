"""Google Cloud Storage Backends.

Implements the document and blob interfaces on a GCS bucket. The
google-cloud-storage client is synchronous, so every call runs in a worker
thread with a bounded timeout; connectivity-class failures surface as
:class:`~nexus_storage.exceptions.RemoteUnavailableError`.

Layout inside the bucket::

    <collection>/<id>.json
    <blob path>
"""
from __future__ import annotations


import asyncio
import logging

from google.api_core import exceptions as api_exceptions
from google.cloud import storage
from google.oauth2 import service_account

from ..config.settings import Settings
from ..exceptions import StorageConfigError
from ..exceptions import classify_remote_error
from ..utils.documents import validate_blob_path
from .base import DEFAULT_CONTENT_TYPE
from .base import JSON_CONTENT_TYPE
from .base import RECORD_SUFFIX
from .base import BlobBackend
from .base import BlobContent
from .base import DocumentBackend
from .base import as_bytes

logger = logging.getLogger(__name__)

PUBLIC_CACHE_CONTROL = "public, max-age=31536000"
TOKEN_URI = "https://oauth2.googleapis.com/token"


def build_gcs_client(settings: Settings) -> storage.Client:
    """Create a storage client from explicit service-account settings.

    Uses the inline client email + private key when both are present,
    otherwise the service account JSON file.

    Raises:
        StorageConfigError: if neither form of credentials is configured
    """
    project = settings.google_cloud_project_id
    if settings.has_service_account:
        credentials = service_account.Credentials.from_service_account_info(
            {
                "type": "service_account",
                "project_id": project,
                "client_email": settings.google_cloud_client_email,
                "private_key": settings.google_cloud_private_key,
                "token_uri": TOKEN_URI,
            }
        )
        return storage.Client(project=project, credentials=credentials)
    if settings.has_credentials_file:
        return storage.Client.from_service_account_json(settings.google_application_credentials, project=project)
    raise StorageConfigError("No Google Cloud service account credentials configured")


async def run_remote(operation: str, deadline: float, func, *args, **kwargs):
    """Run a blocking client call in a thread, bounded by ``deadline`` seconds.

    Callers also pass the client its own ``timeout=`` so the worker thread cannot
    outlive the caller by more than one request. A missing bucket surfaces
    as RemoteUnavailableError; a missing object stays ``NotFound``.
    """
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout=deadline)
    except Exception as e:
        translated = classify_remote_error(e, operation)
        if translated is e:
            raise
        raise translated from e


class _GCSBase:
    def __init__(self, bucket: storage.Bucket, timeout: float = 10.0):
        self._bucket = bucket
        self._timeout = timeout

    @property
    def backend_type(self) -> str:
        return "gcs"

    @property
    def bucket_name(self) -> str:
        return self._bucket.name

    @property
    def root_path(self) -> str:
        return f"gs://{self._bucket.name}"


class GCSDocumentBackend(_GCSBase, DocumentBackend):
    """JSON records as one object per record under a collection prefix.

    Args:
        bucket: Bucket handle from ``client.bucket(name)``.
        timeout: Per-call timeout in seconds.
    """

    def _object_name(self, collection: str, item_id: str) -> str:
        return f"{collection}/{item_id}{RECORD_SUFFIX}"

    async def read_record(self, collection: str, item_id: str) -> bytes | None:
        blob = self._bucket.blob(self._object_name(collection, item_id))
        try:
            return await run_remote("read_record", self._timeout, blob.download_as_bytes, timeout=self._timeout)
        except api_exceptions.NotFound:
            return None

    async def write_record(self, collection: str, item_id: str, payload: bytes) -> None:
        blob = self._bucket.blob(self._object_name(collection, item_id))
        await run_remote(
            "write_record",
            self._timeout,
            blob.upload_from_string,
            payload,
            content_type=JSON_CONTENT_TYPE,
            timeout=self._timeout,
        )

    async def remove_record(self, collection: str, item_id: str) -> bool:
        blob = self._bucket.blob(self._object_name(collection, item_id))
        try:
            await run_remote("remove_record", self._timeout, blob.delete, timeout=self._timeout)
        except api_exceptions.NotFound:
            return False
        return True

    async def list_record_ids(self, collection: str) -> list[str]:
        prefix = f"{collection}/"

        def _list_names() -> list[str]:
            return [blob.name for blob in self._bucket.list_blobs(prefix=prefix, timeout=self._timeout)]

        names = await run_remote("list_record_ids", self._timeout, _list_names)

        ids = []
        for name in names:
            relative = name[len(prefix) :]
            # Nested keys belong to something else sharing the prefix
            if not relative or "/" in relative or relative.startswith("."):
                continue
            if relative.endswith(RECORD_SUFFIX):
                ids.append(relative[: -len(RECORD_SUFFIX)])
        return ids


class GCSBlobBackend(_GCSBase, BlobBackend):
    """Publicly readable blobs at caller-chosen object paths.

    Args:
        bucket: Bucket handle from ``client.bucket(name)``.
        timeout: Per-call timeout in seconds.
    """

    def public_url(self, path: str) -> str:
        return self._bucket.blob(validate_blob_path(path)).public_url

    async def upload(self, path: str, data: bytes | str, content_type: str) -> str:
        blob = self._bucket.blob(validate_blob_path(path))
        blob.cache_control = PUBLIC_CACHE_CONTROL
        await run_remote(
            "upload",
            self._timeout,
            blob.upload_from_string,
            as_bytes(data),
            content_type=content_type or DEFAULT_CONTENT_TYPE,
            timeout=self._timeout,
        )
        await run_remote("make_public", self._timeout, blob.make_public, timeout=self._timeout)
        logger.debug("Uploaded %s to gs://%s", blob.name, self._bucket.name)
        return blob.public_url

    async def read(self, path: str) -> BlobContent | None:
        blob = self._bucket.blob(validate_blob_path(path))
        try:
            data = await run_remote("read", self._timeout, blob.download_as_bytes, timeout=self._timeout)
        except api_exceptions.NotFound:
            return None
        return BlobContent(path=blob.name, data=data, content_type=blob.content_type or DEFAULT_CONTENT_TYPE)

    async def delete(self, path: str) -> bool:
        blob = self._bucket.blob(validate_blob_path(path))
        try:
            await run_remote("delete", self._timeout, blob.delete, timeout=self._timeout)
        except api_exceptions.NotFound:
            return False
        return True
