"""Directory and bucket bootstrapping.

Makes sure the chosen backend has somewhere to write before the first call.
Both helpers report problems through their return value and the error log;
neither raises.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from ..logger_config import ErrorCategory
from ..logger_config import log_structured_error
from .factory import StorageType
from .gcs import run_remote
from .local import DATA_DIR_NAME
from .local import UPLOADS_DIR_NAME

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_SUBDIRS = ("avatars", "models", "temp")


def required_directories(root: Path, upload_subdirs: Iterable[str] = DEFAULT_UPLOAD_SUBDIRS) -> list[Path]:
    uploads = root / UPLOADS_DIR_NAME
    return [root / DATA_DIR_NAME, uploads, *(uploads / sub for sub in upload_subdirs)]


def ensure_local_directories(root: str | Path, upload_subdirs: Iterable[str] = DEFAULT_UPLOAD_SUBDIRS) -> bool:
    """Create the data and upload directories and check they are writable."""
    root = Path(root).expanduser().resolve()
    ready = True
    for directory in required_directories(root, upload_subdirs):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log_structured_error(
                category=ErrorCategory.WARNING,
                message=f"Cannot create storage directory {directory}",
                exception=e,
                operation="ensure_ready",
                path=str(directory),
            )
            ready = False
            continue
        if not os.access(directory, os.W_OK):
            log_structured_error(
                category=ErrorCategory.WARNING,
                message=f"Storage directory {directory} is not writable",
                operation="ensure_ready",
                path=str(directory),
            )
            ready = False
    return ready


async def ensure_bucket(client: Any, bucket_name: str, timeout: float = 10.0) -> bool:
    """Create ``bucket_name`` when the project does not list it yet."""

    def _bucket_names() -> set[str]:
        return {bucket.name for bucket in client.list_buckets(timeout=timeout)}

    try:
        if bucket_name in await run_remote("list buckets", timeout, _bucket_names):
            return True
        logger.info("Creating bucket %s", bucket_name)
        await run_remote("create bucket", timeout, client.create_bucket, bucket_name, timeout=timeout)
    except Exception as e:
        log_structured_error(
            category=ErrorCategory.WARNING,
            message=f"Bucket {bucket_name} is not usable: {e}",
            exception=e,
            operation="ensure_ready",
            bucket=bucket_name,
        )
        return False
    return True


async def ensure_ready(
    mode: StorageType,
    root_or_bucket: str,
    *,
    client: Any = None,
    upload_subdirs: Iterable[str] = DEFAULT_UPLOAD_SUBDIRS,
    timeout: float = 10.0,
    bucket_exists: bool | None = None,
) -> bool:
    """Prepare the backend for ``mode``. Safe to call repeatedly.

    Args:
        mode: Backend the decision selected
        root_or_bucket: Local root directory, or bucket name for GCS
        client: Storage client, required for GCS
        upload_subdirs: Upload folders created under the local uploads directory
        timeout: Seconds allowed for each bucket call
        bucket_exists: Result of an earlier existence check; True skips bucket
            listing, which needs project-level permissions

    Returns:
        True when the backend is ready for writes
    """
    if mode == StorageType.GCS:
        if client is None:
            log_structured_error(
                category=ErrorCategory.ERROR,
                message="No storage client available for bucket bootstrap",
                operation="ensure_ready",
                bucket=root_or_bucket,
            )
            return False
        if bucket_exists:
            return True
        return await ensure_bucket(client, root_or_bucket, timeout=timeout)
    return ensure_local_directories(root_or_bucket, upload_subdirs)
