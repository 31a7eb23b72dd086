"""Gene CRUD operations.

All functions receive the connection factory explicitly so they can be
tested against any SQLite connection.
"""

import dataclasses
import logging
from typing import Callable, List, Optional

from ..canonical import compute_identity
from ..types import Gene
from .base import from_json, to_json

logger = logging.getLogger(__name__)


def _row_to_gene(row) -> Optional[Gene]:
    data = from_json(row["data"])
    if not data or not data.get("id"):
        return None
    return Gene.from_dict(data)


def upsert_gene(connect_fn: Callable, gene: Gene, now_fn: Callable[[], str]) -> Gene:
    """Insert or update a gene keyed by id, recomputing its identity.

    Returns:
        The stored gene (with ``asset_id`` set).
    """
    stored = dataclasses.replace(gene, asset_id=compute_identity(gene))
    now = now_fn()
    with connect_fn() as conn:
        conn.execute(
            """
            INSERT INTO genes (id, category, data, asset_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                category = excluded.category,
                data = excluded.data,
                asset_id = excluded.asset_id,
                updated_at = excluded.updated_at
            """,
            (stored.id, stored.category, to_json(stored.to_dict()), stored.asset_id, now, now),
        )
    logger.debug(f"Upserted gene {stored.id} ({stored.asset_id})")
    return stored


def get_gene(connect_fn: Callable, gene_id: str) -> Optional[Gene]:
    with connect_fn() as conn:
        row = conn.execute("SELECT data FROM genes WHERE id = ?", (gene_id,)).fetchone()
    return _row_to_gene(row) if row else None


def get_gene_by_identity(connect_fn: Callable, asset_id: str) -> Optional[Gene]:
    with connect_fn() as conn:
        row = conn.execute(
            "SELECT data FROM genes WHERE asset_id = ? LIMIT 1", (asset_id,)
        ).fetchone()
    return _row_to_gene(row) if row else None


def list_genes(
    connect_fn: Callable, category: Optional[str] = None, limit: int = 100
) -> List[Gene]:
    """List genes in insertion order, optionally filtered by category."""
    query = "SELECT data FROM genes"
    params: list = []
    if category:
        query += " WHERE category = ?"
        params.append(category)
    query += " ORDER BY rowid ASC LIMIT ?"
    params.append(limit)

    with connect_fn() as conn:
        rows = conn.execute(query, params).fetchall()
    genes = []
    for row in rows:
        gene = _row_to_gene(row)
        if gene is not None:
            genes.append(gene)
    return genes


def delete_gene(connect_fn: Callable, gene_id: str) -> bool:
    with connect_fn() as conn:
        cursor = conn.execute("DELETE FROM genes WHERE id = ?", (gene_id,))
        deleted = cursor.rowcount > 0
    if deleted:
        logger.info(f"Deleted gene {gene_id}")
    return deleted


def count_genes(connect_fn: Callable) -> int:
    with connect_fn() as conn:
        return conn.execute("SELECT COUNT(*) FROM genes").fetchone()[0]
