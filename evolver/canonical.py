"""Canonical serialization and content identity for GEP records.

Two values with the same content always canonicalize to the same string:
map keys are sorted at every level, lists keep their order, and non-finite
numbers collapse to ``null``. Integral floats render as integers, so ``1``
and ``1.0`` are the same content. The identity of a record is the SHA-256
of its canonical form with the identity field itself removed.
"""

import hashlib
import json
import math
import random
import time
from typing import Any, Iterable, Optional

IDENTITY_FIELD = "asset_id"
IDENTITY_PREFIX = "sha256:"
MAX_SAFE_INTEGER = 2 ** 53


def canonicalize(value: Any) -> str:
    """Deterministically serialize a value tree to a JSON string."""
    if value is None:
        return "null"
    # bool is a subclass of int, check it first
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return "null"
        # Integral floats render as integers so 1 and 1.0 share an identity
        if value.is_integer() and abs(value) < MAX_SAFE_INTEGER:
            return str(int(value))
        return json.dumps(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(canonicalize(v) for v in value) + "]"
    if isinstance(value, dict):
        parts = []
        for key in sorted(value.keys(), key=str):
            parts.append(json.dumps(str(key), ensure_ascii=False) + ":" + canonicalize(value[key]))
        return "{" + ",".join(parts) + "}"
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return canonicalize(to_dict())
    return "null"


def _drop_nulls(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _drop_nulls(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_drop_nulls(v) for v in value]
    return value


def _as_mapping(record: Any) -> Optional[dict]:
    if record is None:
        return None
    if isinstance(record, dict):
        return record
    to_dict = getattr(record, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return None


def compute_identity(
    record: Any, exclude_fields: Iterable[str] = (IDENTITY_FIELD,)
) -> Optional[str]:
    """Return ``"sha256:<hex>"`` for a record, or None if there is nothing to hash.

    Excluded fields are removed from the top level and null-valued keys are
    dropped at every level, so optional fields left unset do not affect the
    result.
    """
    data = _as_mapping(record)
    if not data:
        return None
    excluded = set(exclude_fields)
    clean = {k: v for k, v in data.items() if k not in excluded}
    digest = hashlib.sha256(canonicalize(_drop_nulls(clean)).encode("utf-8")).hexdigest()
    return IDENTITY_PREFIX + digest


def verify_identity(record: Any) -> bool:
    """True when the record's ``asset_id`` matches its recomputed identity."""
    data = _as_mapping(record)
    if not data:
        return False
    claimed = data.get(IDENTITY_FIELD)
    if not isinstance(claimed, str) or not claimed:
        return False
    return compute_identity(data) == claimed


def generate_local_id(
    prefix: str, *, rng: Optional[random.Random] = None, now: Optional[float] = None
) -> str:
    """Build a local id of the form ``<prefix>_<unix-ts>_<8 hex>``."""
    ts = int(time.time() if now is None else now)
    bits = (rng or random).getrandbits(32)
    return f"{prefix}_{ts}_{bits:08x}"
