"""Storage-specific exceptions.

Drivers raise these; the facade turns them into empty return values.
``classify_remote_error`` maps the many exception types a remote bucket
call can produce onto :class:`RemoteUnavailableError`, the only error that
triggers a fallback to local storage.
"""

from __future__ import annotations

import asyncio
import socket

import requests
from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions


class StorageError(Exception):
    """Base exception for storage operations."""


class RemoteUnavailableError(StorageError):
    """The remote bucket could not be reached or refused the request."""

    def __init__(self, message: str, reason: str = "unavailable"):
        self.reason = reason
        super().__init__(message)


class CorruptDocumentError(StorageError):
    """A stored record exists but does not parse as a JSON object."""

    def __init__(self, collection: str, item_id: str, detail: str):
        self.collection = collection
        self.item_id = item_id
        super().__init__(f"Corrupt record {collection}/{item_id}: {detail}")


class InvalidKeyError(StorageError, ValueError):
    """A collection name, record id or blob path is not a safe storage key."""


class StorageConfigError(StorageError):
    """Configuration is incomplete or unusable for the requested backend."""


# Permission denial and a missing bucket count as unavailability: the
# backend cannot serve us, so local storage takes over.
_UNAVAILABLE_API_ERRORS = (
    api_exceptions.ServerError,
    api_exceptions.TooManyRequests,
    api_exceptions.Unauthorized,
    api_exceptions.Forbidden,
    api_exceptions.RetryError,
)

_NETWORK_ERRORS = (
    ConnectionError,
    socket.timeout,
    socket.gaierror,
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    auth_exceptions.TransportError,
    auth_exceptions.RefreshError,
    auth_exceptions.DefaultCredentialsError,
)


def is_missing_bucket(error: BaseException) -> bool:
    """True for the 404 GCS returns when the bucket itself is gone."""
    if not isinstance(error, api_exceptions.NotFound):
        return False
    message = str(error).lower()
    return "bucket does not exist" in message or "no such bucket" in message


def classify_remote_error(error: BaseException, operation: str = "remote call") -> Exception:
    """Return the exception a remote driver should raise for ``error``.

    Connectivity-class failures become :class:`RemoteUnavailableError`;
    anything else is returned unchanged.
    """
    if isinstance(error, RemoteUnavailableError):
        return error
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return RemoteUnavailableError(f"{operation} timed out", reason="timeout")
    if isinstance(error, _NETWORK_ERRORS):
        return RemoteUnavailableError(f"{operation} failed: {error}", reason="network")
    if isinstance(error, (api_exceptions.Unauthorized, api_exceptions.Forbidden)):
        return RemoteUnavailableError(f"{operation} denied: {error}", reason="permission")
    if isinstance(error, _UNAVAILABLE_API_ERRORS):
        return RemoteUnavailableError(f"{operation} failed: {error}", reason="server")
    if is_missing_bucket(error):
        return RemoteUnavailableError(f"{operation} failed: {error}", reason="bucket_missing")
    return error
