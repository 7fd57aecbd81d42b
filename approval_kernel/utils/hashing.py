"""
Deterministic hashing utilities.

All hashing in the approval kernel must be deterministic and reproducible.
This module provides the canonical hashing functions used by the status
history chain and the configuration checksum.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Normalize so that 1, 1.0 and 1.000000 hash identically
        return str(obj.normalize())
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of special types (Decimal, datetime, UUID, Enum)
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_history_entry(
    workflow_id: str,
    seq: int,
    transition: str,
    status: str,
    changes_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute hash for a status history row.

    The hash includes the row's key fields plus the previous row's hash for
    the same workflow, creating a per-workflow tamper-evident chain.

    Args:
        workflow_id: Workflow the row belongs to.
        seq: 1-based position in the workflow's history.
        transition: Transition kind recorded.
        status: Workflow status after the transition.
        changes_hash: Hash of the row's effect record.
        prev_hash: Hash of the previous row (None for the SUBMIT row).

    Returns:
        Hex-encoded SHA-256 hash.
    """
    components = [
        str(workflow_id),
        str(seq),
        transition,
        status,
        changes_hash,
        prev_hash or "GENESIS",
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
