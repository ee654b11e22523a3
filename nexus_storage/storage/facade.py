"""Storage Facade.

The one surface application code calls. ``Storage`` decides on a backend
once per process, delegates every call to the chosen drivers and turns all
failures into empty results (``None``, ``False`` or ``[]``) plus a logged
diagnostic.

When a GCS call fails for connectivity reasons, the facade switches the
process to local storage and retries that call once against it. The switch
is never undone; a restart re-evaluates the remote configuration.

Example:
    storage = Storage()
    await storage.init()
    user = await storage.store_item("users", {"name": "Ada"})
    await storage.update_item("users", user["id"], {"bio": "hello"})
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from collections.abc import Callable
from typing import Any

from ..config.settings import Settings
from ..config.settings import get_settings
from ..exceptions import RemoteUnavailableError
from ..logger_config import ErrorCategory
from ..logger_config import configure_log_level
from ..logger_config import log_storage_call
from ..logger_config import log_structured_error
from ..logger_config import safe_async_operation
from ..metrics_config import ensure_metrics_initialized
from ..metrics_config import get_metrics_summary
from ..metrics_config import record_fallback
from ..utils.documents import Document
from .base import DEFAULT_CONTENT_TYPE
from .base import BlobContent
from .bootstrap import ensure_local_directories
from .bootstrap import ensure_ready
from .factory import BackendDecision
from .factory import StorageType
from .factory import build_local_decision
from .factory import detect_environment
from .factory import select_backend
from .gcs import build_gcs_client


class Storage:
    """Backend-agnostic access to records and blobs.

    Args:
        settings: Configuration snapshot; defaults to the global settings.
        client_factory: Builds the GCS client from settings. Tests inject fakes here.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client_factory: Callable[[Settings], Any] = build_gcs_client,
    ):
        self._settings = settings or get_settings()
        self._client_factory = client_factory
        self._decision: BackendDecision | None = None
        self._ready: bool | None = None
        self._init_lock = asyncio.Lock()

    # === State ===

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def decision(self) -> BackendDecision | None:
        """The current backend decision, or None before ``init``."""
        return self._decision

    @property
    def mode(self) -> StorageType | None:
        return self._decision.mode if self._decision else None

    @property
    def mode_name(self) -> str:
        return self._decision.mode.value if self._decision else "uninitialized"

    @property
    def is_initialized(self) -> bool:
        return self._ready is not None

    # === Initialization ===

    async def init(self) -> bool:
        """Select and prepare a backend. Idempotent; concurrent callers share one attempt.

        Returns:
            True when a usable backend is ready. False when local directories
            are not writable, or when remote storage is required but local
            storage had to be used. Calls are served either way.
        """
        if self._ready is not None:
            return self._ready
        async with self._init_lock:
            if self._ready is None:
                self._ready = await self._initialize()
        return self._ready

    async def _initialize(self) -> bool:
        ensure_metrics_initialized()
        settings = self._settings
        configure_log_level(settings.log_level)

        decision = await select_backend(settings, self._client_factory)
        ready = await ensure_ready(
            decision.mode,
            decision.location,
            client=decision.client,
            upload_subdirs=settings.storage_upload_subdirs,
            timeout=settings.storage_remote_timeout,
            bucket_exists=decision.bucket_exists,
        )

        if decision.is_remote and not ready:
            record_fallback("bootstrap")
            decision = build_local_decision(settings, f"bucket {decision.location} could not be prepared")
            ready = ensure_local_directories(decision.location, settings.storage_upload_subdirs)

        self._decision = decision

        if not ready:
            log_structured_error(
                category=ErrorCategory.WARNING,
                message="Storage is running degraded; writes may fail",
                operation="init",
                backend=decision.mode.value,
                location=decision.location,
            )
        if settings.require_remote_storage and not decision.is_remote:
            log_structured_error(
                category=ErrorCategory.ERROR,
                message="Remote storage is required but local storage is in use",
                operation="init",
                reason=decision.reason,
            )
            return False
        return ready

    def _downgrade(self, error: RemoteUnavailableError) -> BackendDecision:
        """Switch the process to local storage after a remote failure."""
        current = self._decision
        if current is not None and not current.is_remote:
            # Another call already switched
            return current

        log_structured_error(
            category=ErrorCategory.WARNING,
            message="Remote storage unavailable, switching to local storage for this process",
            exception=error,
            operation="fallback",
            reason=error.reason,
            bucket=current.location if current else None,
        )
        record_fallback(error.reason)
        local = build_local_decision(self._settings, f"{error.reason}: {error}")
        ensure_local_directories(local.location, self._settings.storage_upload_subdirs)
        self._decision = local
        return local

    async def _run(
        self,
        operation: str,
        call: Callable[[BackendDecision], Awaitable[Any]],
        empty: Any,
        **context,
    ) -> Any:
        await self.init()
        decision = self._decision

        success, result, error = await safe_async_operation(operation, call, decision, context=context)
        if success:
            return result

        if isinstance(error, RemoteUnavailableError) and decision.is_remote:
            local = self._downgrade(error)
            success, result, _ = await safe_async_operation(
                f"{operation} (local retry)", call, local, context=context
            )
            if success:
                return result
        return empty

    # === Documents ===

    @log_storage_call
    async def store_item(self, collection: str, item: Document) -> Document | None:
        """Store ``item``, assigning an id when it has none. Overwrites by id."""
        return await self._run(
            "store_item",
            lambda d: d.documents.store(collection, item),
            None,
            collection=collection,
        )

    @log_storage_call
    async def get_item(self, collection: str, item_id: str) -> Document | None:
        return await self._run(
            "get_item",
            lambda d: d.documents.get(collection, str(item_id)),
            None,
            collection=collection,
            item_id=item_id,
        )

    @log_storage_call
    async def update_item(self, collection: str, item_id: str, patch: Document) -> Document | None:
        """Shallow-merge ``patch`` into an existing record; None if it does not exist."""
        return await self._run(
            "update_item",
            lambda d: d.documents.update(collection, str(item_id), patch),
            None,
            collection=collection,
            item_id=item_id,
        )

    @log_storage_call
    async def delete_item(self, collection: str, item_id: str) -> bool:
        return await self._run(
            "delete_item",
            lambda d: d.documents.delete(collection, str(item_id)),
            False,
            collection=collection,
            item_id=item_id,
        )

    @log_storage_call
    async def query_items(self, collection: str, query: Document | None = None) -> list[Document]:
        """Records whose fields equal every key in ``query``, ordered by id."""
        return await self._run(
            "query_items",
            lambda d: d.documents.query(collection, query),
            [],
            collection=collection,
        )

    # === Blobs ===

    @log_storage_call
    async def upload_file(
        self, path: str, data: bytes | str, content_type: str = DEFAULT_CONTENT_TYPE
    ) -> str | None:
        """Write a blob and return its public URL."""
        return await self._run(
            "upload_file",
            lambda d: d.blobs.upload(path, data, content_type),
            None,
            path=path,
            content_type=content_type,
        )

    @log_storage_call
    async def get_file(self, path: str) -> BlobContent | None:
        return await self._run("get_file", lambda d: d.blobs.read(path), None, path=path)

    @log_storage_call
    async def delete_file(self, path: str) -> bool:
        return await self._run("delete_file", lambda d: d.blobs.delete(path), False, path=path)

    # === Diagnostics ===

    def get_storage_info(self) -> dict:
        """Get information about the current storage configuration.

        Returns:
            Dict with storage backend info for debugging/monitoring
        """
        decision = self._decision
        return {
            "initialized": self.is_initialized,
            "ready": self._ready,
            "backend_type": self.mode_name,
            "detected_type": detect_environment(self._settings).value,
            "root_path": decision.documents.root_path if decision else None,
            "blob_root": decision.blobs.root_path if decision else None,
            "fallback_reason": decision.reason if decision else None,
            "gcs_bucket": self._settings.google_cloud_storage_bucket,
            "storage_backend_env": self._settings.storage_backend,
            "metrics": get_metrics_summary(),
        }


# Singleton instance for the application
_storage_instance: Storage | None = None


def get_storage(settings: Settings | None = None) -> Storage:
    """Get the global Storage instance.

    Args:
        settings: Configuration used on the first call only

    Returns:
        The global Storage instance
    """
    global _storage_instance

    if _storage_instance is None:
        _storage_instance = Storage(settings)

    return _storage_instance


def reset_storage() -> None:
    """Reset the global storage instance (for testing)."""
    global _storage_instance
    _storage_instance = None


def get_storage_info() -> dict:
    """Diagnostics for the global Storage instance."""
    return get_storage().get_storage_info()
