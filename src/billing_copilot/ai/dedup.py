"""Idempotency index over tool messages already stored in a conversation."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Optional

from billing_copilot.storage.models import Message


def canonicalize(value: Any) -> Any:
    """Copy of ``value`` with object keys sorted recursively. List order is kept."""
    if isinstance(value, dict):
        return {key: canonicalize(value[key]) for key in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    return value


def canonical_json(value: Any) -> str:
    return json.dumps(canonicalize(value), separators=(",", ":"), ensure_ascii=False, default=str)


def hash_arguments(value: Any) -> str:
    """SHA-256 hex digest of the canonical form, or "" when it cannot be serialized."""
    try:
        serialized = canonical_json(value)
    except (TypeError, ValueError):
        return ""
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def arguments_equal(left: Any, right: Any) -> bool:
    try:
        return canonical_json(left) == canonical_json(right)
    except (TypeError, ValueError):
        return False


def find_reusable_result(
    candidates: list[Message], digest: str, normalized: dict[str, Any]
) -> Optional[Message]:
    """First prior tool message whose arguments match, by hash or deep equality.

    ``candidates`` is expected newest first. Failed calls are never reused.
    """
    for message in candidates:
        metadata = message.metadata or {}
        if metadata.get("error"):
            continue
        if digest and metadata.get("arguments_hash") == digest:
            return message
        prior = metadata.get("arguments_normalized", metadata.get("arguments"))
        if prior is not None and arguments_equal(prior, normalized):
            return message
    return None
