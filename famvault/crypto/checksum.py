"""
Integrity Checksum

SHA-256 over a canonical JSON rendering of a record. Keys are sorted, so
two dicts with the same content always hash the same regardless of
insertion order.
"""

import hashlib
import hmac
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel


def _canonical_default(value: Any) -> Any:
    """json.dumps fallback for the non-JSON types records carry."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    raise TypeError(f"Object of type {type(value).__name__} is not checksummable")


def canonical_json(data: Any) -> str:
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_canonical_default,
    )


def create_data_checksum(data: Any) -> str:
    """SHA-256 hex digest of the canonical form of `data`."""
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()


def verify_data_checksum(data: Any, expected_checksum: str) -> bool:
    """Recompute and compare in constant time."""
    return hmac.compare_digest(
        create_data_checksum(data).encode("utf-8"),
        (expected_checksum or "").encode("utf-8"),
    )
