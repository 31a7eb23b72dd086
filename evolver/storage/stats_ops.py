"""Record counts across the store."""

import logging
import sqlite3
from typing import Dict

from .schema import validate_table_name

logger = logging.getLogger(__name__)


def get_stats(conn: sqlite3.Connection) -> Dict[str, int]:
    """Get counts of each record type plus pending sync entries."""
    stats = {}
    for table, key in [
        ("genes", "genes"),
        ("capsules", "capsules"),
        ("events", "events"),
        ("failed_capsules", "failed_capsules"),
    ]:
        validate_table_name(table)
        stats[key] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    stats["pending_sync"] = conn.execute(
        "SELECT COUNT(*) FROM sync_status WHERE sync_status = 'pending'"
    ).fetchone()[0]
    return stats
