"""Storage Backend Selection.

Picks the driver pair that serves the process:
- Local: when forced by configuration, when remote settings are incomplete,
  or when the remote bucket cannot be reached
- GCS: when project, bucket and credentials are configured and the bucket
  answers an existence check within the remote timeout
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..config.settings import Settings
from ..logger_config import ErrorCategory
from ..logger_config import log_structured_error
from .base import BlobBackend
from .base import DocumentBackend
from .gcs import GCSBlobBackend
from .gcs import GCSDocumentBackend
from .gcs import build_gcs_client
from .gcs import run_remote
from .local import LocalBlobBackend
from .local import LocalDocumentBackend

logger = logging.getLogger(__name__)


class StorageType(Enum):
    """Available storage backend types."""

    LOCAL = "local"
    GCS = "gcs"


@dataclass
class BackendDecision:
    """The driver pair chosen for this process.

    ``location`` is the local root directory or the bucket name. ``reason``
    explains why local mode was chosen when remote was wanted. ``bucket_exists``
    is the result of the GCS bucket existence check.
    """

    mode: StorageType
    documents: DocumentBackend
    blobs: BlobBackend
    location: str
    reason: str | None = None
    client: Any = None
    bucket_exists: bool | None = None

    @property
    def is_remote(self) -> bool:
        return self.mode == StorageType.GCS


def detect_environment(settings: Settings) -> StorageType:
    """Report which backend the selector will try, without any I/O.

    Detection order:
    1. STORAGE_BACKEND=local or DEVELOPMENT_MODE -> Local
    2. Complete remote configuration -> GCS
    3. Default -> Local
    """
    if settings.force_local:
        return StorageType.LOCAL
    if settings.remote_configured:
        return StorageType.GCS
    return StorageType.LOCAL


def build_local_decision(settings: Settings, reason: str | None = None) -> BackendDecision:
    root = settings.storage_root_path
    return BackendDecision(
        mode=StorageType.LOCAL,
        documents=LocalDocumentBackend(root),
        blobs=LocalBlobBackend(root, public_url_prefix=settings.storage_public_url_prefix),
        location=str(root),
        reason=reason,
    )


async def select_backend(
    settings: Settings,
    client_factory: Callable[[Settings], Any] = build_gcs_client,
) -> BackendDecision:
    """Choose local or GCS drivers for ``settings``.

    Never raises: any failure to configure or reach the bucket yields a
    local decision with the failure recorded in ``reason``.
    """
    if settings.force_local:
        logger.info("Local storage forced by configuration")
        return build_local_decision(settings)

    missing = settings.missing_remote_fields
    if missing:
        reason = f"remote storage not configured (missing {', '.join(missing)})"
        if settings.storage_backend == "gcs":
            log_structured_error(
                category=ErrorCategory.WARNING,
                message=f"STORAGE_BACKEND=gcs but {reason}; using local storage",
                operation="select_backend",
            )
        else:
            logger.info("Using local storage: %s", reason)
        return build_local_decision(settings, reason)

    bucket_name = settings.google_cloud_storage_bucket.strip()
    timeout = settings.storage_remote_timeout
    try:
        client = client_factory(settings)
        bucket = client.bucket(bucket_name)
        exists = await run_remote("check bucket", timeout, bucket.exists, timeout=timeout)
    except Exception as e:
        reason = f"remote storage unreachable: {e}"
        log_structured_error(
            category=ErrorCategory.WARNING,
            message=f"Falling back to local storage, {reason}",
            exception=e,
            operation="select_backend",
            bucket=bucket_name,
        )
        return build_local_decision(settings, reason)

    if not exists:
        # Created by the bootstrapper
        logger.info("Bucket %s does not exist yet", bucket_name)

    logger.info("Using GCS storage: bucket %s", bucket_name)
    return BackendDecision(
        mode=StorageType.GCS,
        documents=GCSDocumentBackend(bucket, timeout=timeout),
        blobs=GCSBlobBackend(bucket, timeout=timeout),
        location=bucket_name,
        client=client,
        bucket_exists=exists,
    )
