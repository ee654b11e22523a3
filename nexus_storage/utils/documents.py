"""Helpers shared by every document and blob driver.

Key validation, timestamps, id assignment and the equality filter live here
so the local and remote drivers cannot drift apart.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from datetime import timezone
from pathlib import PurePosixPath
from typing import Any

from ..exceptions import InvalidKeyError

Document = dict[str, Any]

CREATED_AT_FIELD = "createdAt"
UPDATED_AT_FIELD = "updatedAt"
ID_FIELD = "id"


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(tz=timezone.utc).isoformat()


def new_item_id() -> str:
    return str(uuid.uuid4())


def validate_segment(value: str, kind: str = "key") -> str:
    """Ensure ``value`` is a single, non-hidden path segment.

    Raises:
        InvalidKeyError: for empty values, separators, traversal or hidden names
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidKeyError(f"Invalid {kind}: {value!r}")
    if "/" in value or "\\" in value or "\x00" in value:
        raise InvalidKeyError(f"Invalid {kind} (path separator): {value!r}")
    if value.startswith("."):
        raise InvalidKeyError(f"Invalid {kind} (hidden or traversal): {value!r}")
    return value


def validate_blob_path(path: str) -> str:
    """Normalize a caller-supplied blob path to ``a/b/c.ext`` form.

    Leading slashes are dropped; empty, ``.`` and ``..`` segments are rejected.
    """
    if not isinstance(path, str) or not path.strip():
        raise InvalidKeyError(f"Invalid blob path: {path!r}")
    if "\\" in path or "\x00" in path:
        raise InvalidKeyError(f"Invalid blob path: {path!r}")

    parts = path.strip().lstrip("/").split("/")
    for part in parts:
        if part in ("", ".", ".."):
            raise InvalidKeyError(f"Invalid blob path (bad segment {part!r}): {path!r}")
    return str(PurePosixPath(*parts))


def prepare_new_document(item: Document) -> Document:
    """Copy ``item``, assigning an id and ``createdAt`` when absent."""
    if not isinstance(item, dict):
        raise TypeError(f"Documents must be mappings, got {type(item).__name__}")

    document = dict(item)
    if document.get(ID_FIELD) in (None, ""):
        document[ID_FIELD] = new_item_id()
    else:
        document[ID_FIELD] = str(document[ID_FIELD])
    validate_segment(document[ID_FIELD], "id")
    document.setdefault(CREATED_AT_FIELD, utc_timestamp())
    return document


def merge_document(existing: Document, patch: Document) -> Document:
    """Shallow merge ``patch`` over ``existing``; ``id`` is never replaced."""
    if not isinstance(patch, dict):
        raise TypeError(f"Patches must be mappings, got {type(patch).__name__}")

    merged = {**existing, **{k: v for k, v in patch.items() if k != ID_FIELD}}
    merged[ID_FIELD] = existing[ID_FIELD]
    merged[UPDATED_AT_FIELD] = utc_timestamp()
    return merged


def json_equal(left: Any, right: Any) -> bool:
    """Equality between decoded JSON values.

    Booleans only equal booleans, so ``true`` never matches ``1``. Numbers
    compare by value (``1 == 1.0``), containers element by element.
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(json_equal(v, right[k]) for k, v in left.items())
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(json_equal(a, b) for a, b in zip(left, right))
    return left == right


def matches_filter(document: Document, query: Document | None) -> bool:
    """Exact equality on every filter key; a missing field never matches."""
    if not query:
        return True
    for key, value in query.items():
        if key not in document or not json_equal(document[key], value):
            return False
    return True
