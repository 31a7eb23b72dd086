"""FailedCapsule append-only operations."""

import logging
from typing import Callable, List, Optional

from ..types import FailedCapsule
from .base import from_json, to_json

logger = logging.getLogger(__name__)


def _row_to_failed(row) -> Optional[FailedCapsule]:
    data = from_json(row["data"])
    if not data or not data.get("id"):
        return None
    return FailedCapsule.from_dict(data)


def append_failed_capsule(
    connect_fn: Callable, failed: FailedCapsule, now_fn: Callable[[], str]
) -> FailedCapsule:
    with connect_fn() as conn:
        conn.execute(
            """
            INSERT OR REPLACE INTO failed_capsules (id, gene_id, data, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (failed.id, failed.gene, to_json(failed.to_dict()), failed.created_at or now_fn()),
        )
    logger.debug(f"Recorded failed capsule {failed.id} for gene {failed.gene}")
    return failed


def list_failed_capsules(connect_fn: Callable, limit: int = 20) -> List[FailedCapsule]:
    """Most recent failures, newest first."""
    with connect_fn() as conn:
        rows = conn.execute(
            "SELECT data FROM failed_capsules ORDER BY rowid DESC LIMIT ?", (limit,)
        ).fetchall()
    return [f for f in (_row_to_failed(r) for r in rows) if f is not None]


def list_recent_failed_capsules(connect_fn: Callable, limit: int = 20) -> List[FailedCapsule]:
    """Most recent failures, oldest first."""
    failed = list_failed_capsules(connect_fn, limit)
    failed.reverse()
    return failed
