"""Content hashing for feed snapshots and individual records.

Both hashes are SHA-256 rendered as uppercase hex, so a record hash and
a snapshot hash computed anywhere (another process, another machine)
compare equal byte-for-byte for the same content.
"""

import hashlib
import json
from typing import Any, Iterable

from .models import Record


def content_hash(data: bytes) -> str:
    """Hash raw bytes as uppercase SHA-256 hex."""
    return hashlib.sha256(data).hexdigest().upper()


def canonical_json(obj: Any) -> bytes:
    """Serialize ``obj`` deterministically.

    Keys are sorted, separators are compact and non-ASCII text is kept
    as UTF-8, so the bytes depend only on the content.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def record_hash(record: Record) -> str:
    """Compute the content hash of a record.

    Args:
        record: A decoded record.

    Returns:
        Uppercase SHA-256 hex over the record's canonical JSON form.
    """
    return content_hash(canonical_json(record.model_dump(mode="json")))


def record_hashes(records: Iterable[Record]) -> dict[str, str]:
    """Map each record's identifier to its content hash."""
    return {r.cve_id: record_hash(r) for r in records}
