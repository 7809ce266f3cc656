"""
Hash-chain primitives for the integrity ledger.

    hash = sha256_hex(canonical_json(event without "hash") + previous_hash)

`previous_hash` is part of the serialised body *and* the suffix, so two
events with identical content but a different predecessor never collide.
The first event of the ledger points at GENESIS_HASH.
"""
from __future__ import annotations
import hashlib
import json
from typing import Any, Dict

GENESIS_HASH = "0" * 64


def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def normalize_details(details: Dict[str, Any] | None) -> Dict[str, Any]:
    """Round-trip through JSON so stored and hashed forms are identical."""
    if not details:
        return {}
    return json.loads(json.dumps(details, ensure_ascii=False, default=str))


def compute_hash(body: Dict[str, Any], previous_hash: str) -> str:
    payload = canonical_json(body) + previous_hash
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def hash_record(record: Dict[str, Any]) -> str:
    """Recompute the hash of a stored record (the `hash` key is ignored)."""
    body = {k: v for k, v in record.items() if k != "hash"}
    return compute_hash(body, str(record.get("previous_hash", "")))
