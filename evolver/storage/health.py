"""Integrity checking and repair of the backing SQLite file.

Startup must never fail because of a corrupt database. The repair policy
is: back the file up, try an export/reimport through ``iterdump()``, and if
that does not produce a clean database, move the original aside and start
empty. Every step is logged.
"""

import logging
import os
import shutil
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..errors import StoreIntegrityError

logger = logging.getLogger(__name__)

SIDECAR_SUFFIXES = ("-wal", "-shm")


def check_integrity(db_path: str) -> Tuple[bool, str]:
    """Run ``PRAGMA integrity_check`` on a database file.

    Returns:
        (ok, detail) where detail is "ok" or the first reported problem.
    """
    conn = None
    try:
        conn = sqlite3.connect(db_path)
        row = conn.execute("PRAGMA integrity_check").fetchone()
        detail = str(row[0]) if row else "no result"
        return detail == "ok", detail
    except sqlite3.DatabaseError as e:
        return False, str(e)
    finally:
        if conn is not None:
            conn.close()


def _timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime("%Y%m%d%H%M%S")


def _move_sidecars(db_path: str, target: Optional[str]) -> None:
    for suffix in SIDECAR_SUFFIXES:
        sidecar = db_path + suffix
        if not os.path.exists(sidecar):
            continue
        if target is None:
            os.remove(sidecar)
        else:
            os.replace(sidecar, target + suffix)


def _dump_into(src_path: str, dst_path: str) -> None:
    src = sqlite3.connect(src_path)
    dst = sqlite3.connect(dst_path)
    try:
        dst.executescript("\n".join(src.iterdump()))
        dst.commit()
    finally:
        src.close()
        dst.close()


def repair_database(db_path: str, now: Optional[datetime] = None) -> List[str]:
    """Repair or replace a corrupt database file in place.

    Returns:
        Log lines describing what was done.

    Raises:
        StoreIntegrityError: If the corrupt file cannot even be moved aside.
    """
    ts = _timestamp(now)
    actions: List[str] = []

    backup_path = f"{db_path}.backup.{ts}"
    try:
        shutil.copy2(db_path, backup_path)
        actions.append(f"backed up corrupt database to {backup_path}")
        logger.warning(f"Backed up corrupt database to {backup_path}")
    except OSError as e:
        actions.append(f"backup failed: {e}")
        logger.error(f"Could not back up corrupt database {db_path}: {e}")

    recovered_path = f"{db_path}.recovered.{ts}"
    try:
        _dump_into(db_path, recovered_path)
        ok, detail = check_integrity(recovered_path)
        if ok:
            # Stale WAL/SHM belong to the corrupt file and must not be replayed
            _move_sidecars(db_path, None)
            os.replace(recovered_path, db_path)
            actions.append("repaired database by export/reimport")
            logger.warning(f"Repaired database {db_path} by export/reimport")
            return actions
        actions.append(f"reimported copy failed integrity check: {detail}")
    except (sqlite3.DatabaseError, OSError) as e:
        actions.append(f"export/reimport failed: {e}")
        logger.error(f"Export/reimport of {db_path} failed: {e}")

    if os.path.exists(recovered_path):
        os.remove(recovered_path)

    corrupted_path = f"{db_path}.corrupted.{ts}"
    try:
        os.replace(db_path, corrupted_path)
        _move_sidecars(db_path, corrupted_path)
    except OSError as e:
        raise StoreIntegrityError(f"Cannot move corrupt database {db_path} aside: {e}") from e
    actions.append(f"moved corrupt database to {corrupted_path}; starting fresh")
    logger.error(f"Database {db_path} unrecoverable, moved to {corrupted_path}; starting fresh")
    return actions


def ensure_healthy(db_path: str) -> List[str]:
    """Check an existing database file and repair it if needed."""
    path = Path(db_path)
    if not path.exists() or path.stat().st_size == 0:
        return []
    ok, detail = check_integrity(db_path)
    if ok:
        return []
    logger.error(f"Integrity check failed for {db_path}: {detail}")
    return [f"integrity check failed: {detail}"] + repair_database(db_path)


def get_health_status(
    conn: sqlite3.Connection, db_path: str, migration_log: List[str]
) -> Dict[str, Any]:
    """Report on the open database."""
    in_memory = db_path == ":memory:"
    path = Path(db_path)
    exists = in_memory or path.exists()
    row = conn.execute("PRAGMA integrity_check").fetchone()
    integrity = str(row[0]) if row else "no result"
    journal_mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    version_row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return {
        "db_path": db_path,
        "exists": exists,
        "size_bytes": path.stat().st_size if exists and not in_memory else 0,
        "schema_version": version_row[0] if version_row else None,
        "integrity": integrity,
        "healthy": integrity == "ok",
        "journal_mode": journal_mode,
        "migration_log": list(migration_log),
    }
