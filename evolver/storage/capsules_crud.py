"""Capsule CRUD operations."""

import dataclasses
import logging
from typing import Callable, List, Optional

from ..canonical import compute_identity
from ..types import Capsule
from .base import from_json, to_json

logger = logging.getLogger(__name__)


def _row_to_capsule(row) -> Optional[Capsule]:
    data = from_json(row["data"])
    if not data or not data.get("id"):
        return None
    return Capsule.from_dict(data)


def upsert_capsule(connect_fn: Callable, capsule: Capsule, now_fn: Callable[[], str]) -> Capsule:
    """Insert or supersede a capsule keyed by id, recomputing its identity."""
    stored = dataclasses.replace(capsule, asset_id=compute_identity(capsule))
    with connect_fn() as conn:
        conn.execute(
            """
            INSERT OR REPLACE INTO capsules
            (id, gene_id, data, asset_id, outcome_status, outcome_score,
             success_streak, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                stored.id,
                stored.gene,
                to_json(stored.to_dict()),
                stored.asset_id,
                stored.outcome.status,
                stored.outcome.score,
                stored.success_streak,
                stored.created_at or now_fn(),
            ),
        )
    logger.debug(f"Stored capsule {stored.id} for gene {stored.gene}")
    return stored


def get_capsule(connect_fn: Callable, capsule_id: str) -> Optional[Capsule]:
    with connect_fn() as conn:
        row = conn.execute("SELECT data FROM capsules WHERE id = ?", (capsule_id,)).fetchone()
    return _row_to_capsule(row) if row else None


def get_capsule_by_identity(connect_fn: Callable, asset_id: str) -> Optional[Capsule]:
    with connect_fn() as conn:
        row = conn.execute(
            "SELECT data FROM capsules WHERE asset_id = ? LIMIT 1", (asset_id,)
        ).fetchone()
    return _row_to_capsule(row) if row else None


def list_capsules(
    connect_fn: Callable,
    gene_id: Optional[str] = None,
    outcome_status: Optional[str] = None,
    limit: int = 100,
) -> List[Capsule]:
    """List capsules newest first."""
    clauses = []
    params: list = []
    if gene_id:
        clauses.append("gene_id = ?")
        params.append(gene_id)
    if outcome_status:
        clauses.append("outcome_status = ?")
        params.append(outcome_status)

    query = "SELECT data FROM capsules"
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY rowid DESC LIMIT ?"
    params.append(limit)

    with connect_fn() as conn:
        rows = conn.execute(query, params).fetchall()
    return [c for c in (_row_to_capsule(r) for r in rows) if c is not None]
