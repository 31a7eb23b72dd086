"""Shared helpers for the SQLite CRUD modules."""

import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


def to_json(data: Any) -> Optional[str]:
    """Serialize a record dict for the ``data`` column."""
    if data is None:
        return None
    return json.dumps(data, ensure_ascii=False, sort_keys=True)


def from_json(text: Optional[str], default: Any = None) -> Any:
    """Parse a ``data`` column, returning ``default`` for empty or unreadable blobs."""
    if not text:
        return default
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Unreadable JSON blob skipped: {e}")
        return default
