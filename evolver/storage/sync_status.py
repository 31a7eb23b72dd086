"""Pending-sync ledger.

The outbound sync client is external; it reads ``pending`` entries and
reports back through :func:`update_sync_status` or :func:`mark_synced`.
"""

import logging
from typing import Callable, List, Optional

from ..types import SYNC_PENDING, SYNC_STATUSES, SYNC_SYNCED, SyncEntry

logger = logging.getLogger(__name__)


def _row_to_entry(row) -> SyncEntry:
    return SyncEntry(
        asset_type=row["asset_type"],
        local_id=row["local_id"],
        asset_id=row["asset_id"],
        status=row["sync_status"],
        last_sync_attempt=row["last_sync_attempt"],
        sync_error=row["sync_error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def update_sync_status(
    connect_fn: Callable,
    asset_type: str,
    local_id: str,
    asset_id: Optional[str],
    status: str,
    now_fn: Callable[[], str],
    error: Optional[str] = None,
) -> None:
    """Create or update the ledger entry for one asset."""
    if status not in SYNC_STATUSES:
        raise ValueError(f"Invalid sync status: {status}")
    now = now_fn()
    attempt = now if status != SYNC_PENDING else None
    with connect_fn() as conn:
        conn.execute(
            """
            INSERT INTO sync_status
            (asset_type, local_id, asset_id, sync_status, last_sync_attempt,
             sync_error, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(asset_type, local_id) DO UPDATE SET
                asset_id = COALESCE(excluded.asset_id, sync_status.asset_id),
                sync_status = excluded.sync_status,
                last_sync_attempt = COALESCE(excluded.last_sync_attempt,
                                             sync_status.last_sync_attempt),
                sync_error = excluded.sync_error,
                updated_at = excluded.updated_at
            """,
            (asset_type, local_id, asset_id, status, attempt, error, now, now),
        )
    logger.debug(f"Sync status {asset_type}/{local_id} -> {status}")


def get_sync_entry(connect_fn: Callable, asset_type: str, local_id: str) -> Optional[SyncEntry]:
    with connect_fn() as conn:
        row = conn.execute(
            "SELECT * FROM sync_status WHERE asset_type = ? AND local_id = ?",
            (asset_type, local_id),
        ).fetchone()
    return _row_to_entry(row) if row else None


def list_pending_sync(
    connect_fn: Callable, asset_type: Optional[str] = None, limit: int = 50
) -> List[SyncEntry]:
    """Pending entries, oldest first."""
    query = "SELECT * FROM sync_status WHERE sync_status = ?"
    params: list = [SYNC_PENDING]
    if asset_type:
        query += " AND asset_type = ?"
        params.append(asset_type)
    query += " ORDER BY id ASC LIMIT ?"
    params.append(limit)
    with connect_fn() as conn:
        rows = conn.execute(query, params).fetchall()
    return [_row_to_entry(r) for r in rows]


def mark_synced(
    connect_fn: Callable, asset_type: str, local_id: str, now_fn: Callable[[], str]
) -> bool:
    """Mark an existing entry synced. Returns False if there was no entry."""
    now = now_fn()
    with connect_fn() as conn:
        cursor = conn.execute(
            """
            UPDATE sync_status
            SET sync_status = ?, last_sync_attempt = ?, sync_error = NULL, updated_at = ?
            WHERE asset_type = ? AND local_id = ?
            """,
            (SYNC_SYNCED, now, now, asset_type, local_id),
        )
        return cursor.rowcount > 0
