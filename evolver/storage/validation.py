"""JSON Schema validation of records at the store boundary.

Every write goes through :func:`coerce_record`, which accepts either a typed
record or a plain dict, validates its wire shape, and returns the typed
record. Anything missing ``id``/``type`` (or carrying the wrong ``type``)
raises :class:`~evolver.errors.MalformedRecordError` before SQL is touched.
"""

import logging
from typing import Any, Dict, List

from jsonschema import Draft7Validator

from ..errors import MalformedRecordError
from ..types import CATEGORIES, RECORD_TYPES

logger = logging.getLogger(__name__)

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

_BLAST_RADIUS = {
    "type": "object",
    "properties": {
        "files": {"type": "integer", "minimum": 0},
        "lines": {"type": "integer", "minimum": 0},
    },
}

_OUTCOME = {
    "type": "object",
    "properties": {
        "status": {"type": "string"},
        "score": {"type": "number"},
    },
}

_ID = {"type": "string", "minLength": 1}

RECORD_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "Gene": {
        "type": "object",
        "required": ["type", "id", "category"],
        "properties": {
            "type": {"const": "Gene"},
            "id": _ID,
            "category": {"enum": list(CATEGORIES)},
            "signals_match": _STRING_LIST,
            "strategy": _STRING_LIST,
            "validation": _STRING_LIST,
            "preconditions": _STRING_LIST,
            "constraints": {
                "type": "object",
                "properties": {
                    "max_files": {"type": "integer", "minimum": 0},
                    "forbidden_paths": _STRING_LIST,
                },
            },
        },
    },
    "Capsule": {
        "type": "object",
        "required": ["type", "id", "gene"],
        "properties": {
            "type": {"const": "Capsule"},
            "id": _ID,
            "gene": {"type": "string"},
            "trigger": _STRING_LIST,
            "summary": {"type": "string"},
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
            "blast_radius": _BLAST_RADIUS,
            "outcome": _OUTCOME,
            "success_streak": {"type": "integer", "minimum": 0},
        },
    },
    "EvolutionEvent": {
        "type": "object",
        "required": ["type", "id", "intent"],
        "properties": {
            "type": {"const": "EvolutionEvent"},
            "id": _ID,
            "parent": {"type": ["string", "null"]},
            "intent": {"type": "string"},
            "signals": _STRING_LIST,
            "genes_used": _STRING_LIST,
            "blast_radius": _BLAST_RADIUS,
            "outcome": _OUTCOME,
        },
    },
    "FailedCapsule": {
        "type": "object",
        "required": ["type", "id", "gene"],
        "properties": {
            "type": {"const": "FailedCapsule"},
            "id": _ID,
            "gene": {"type": "string"},
            "trigger": _STRING_LIST,
            "failure_reason": {"type": "string"},
            "diff_snapshot": {"type": "string"},
        },
    },
}

_VALIDATORS = {name: Draft7Validator(schema) for name, schema in RECORD_SCHEMAS.items()}


def validation_errors(data: Any, record_type: str) -> List[str]:
    """Return schema error messages for ``data`` as a ``record_type`` (empty if valid)."""
    validator = _VALIDATORS[record_type]
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))
    messages = []
    for err in errors:
        where = ".".join(str(p) for p in err.path) or "<record>"
        messages.append(f"{where}: {err.message}")
    return messages


def coerce_record(record: Any, record_type: str):
    """Validate a record or dict and return it as the typed record.

    Raises:
        MalformedRecordError: If the record fails validation.
    """
    cls = RECORD_TYPES[record_type]
    if isinstance(record, cls):
        data = record.to_dict()
    elif isinstance(record, dict):
        data = record
    else:
        raise MalformedRecordError(
            f"{record_type} must be a {cls.__name__} or dict, got {type(record).__name__}",
            record_type=record_type,
        )

    errors = validation_errors(data, record_type)
    if errors:
        logger.warning(f"Rejected malformed {record_type}: {errors[0]}")
        raise MalformedRecordError(
            f"Malformed {record_type}: {'; '.join(errors)}",
            record_type=record_type,
            errors=errors,
        )
    return record if isinstance(record, cls) else cls.from_dict(data)
