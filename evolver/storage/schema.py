"""Database schema and migration logic for Evolver SQLite storage.

Contains:
- Schema DDL per migration step (v1 base tables, v2 identity/outcome
  columns, v3 sync ledger)
- Schema version tracking (SCHEMA_VERSION)
- Table allowlist (ALLOWED_TABLES, validate_table_name)
- Database initialization (init_db)
- Index verification (ensure_indexes)
"""

import logging
import sqlite3
from typing import Callable, List, Set, Tuple

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 3  # v3: sync_status ledger

# Table names that may be interpolated into SQL
ALLOWED_TABLES = frozenset(
    {
        "genes",
        "capsules",
        "events",
        "failed_capsules",
        "sync_status",
        "schema_version",
    }
)


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist to prevent SQL injection.

    Raises:
        ValueError: If table name is not in allowlist
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


SCHEMA_VERSION_TABLE = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
)
"""

# v1: one row per record, full record serialized in ``data``
BASE_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS genes (
        id TEXT PRIMARY KEY,
        category TEXT NOT NULL,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS capsules (
        id TEXT PRIMARY KEY,
        gene_id TEXT,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS events (
        id TEXT PRIMARY KEY,
        intent TEXT,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS failed_capsules (
        id TEXT PRIMARY KEY,
        gene_id TEXT,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
]

# v2: identity hash and indexed outcome columns
V2_COLUMNS: List[Tuple[str, str, str]] = [
    ("genes", "asset_id", "TEXT"),
    ("capsules", "asset_id", "TEXT"),
    ("capsules", "outcome_status", "TEXT"),
    ("capsules", "outcome_score", "REAL"),
    ("capsules", "success_streak", "INTEGER DEFAULT 0"),
    ("events", "asset_id", "TEXT"),
    ("events", "parent_id", "TEXT"),
    ("events", "outcome_status", "TEXT"),
    ("events", "outcome_score", "REAL"),
]

# v3: pending-sync ledger
SYNC_STATUS_TABLE = """
CREATE TABLE IF NOT EXISTS sync_status (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    asset_type TEXT NOT NULL,
    local_id TEXT NOT NULL,
    asset_id TEXT,
    sync_status TEXT NOT NULL DEFAULT 'pending',
    last_sync_attempt TEXT,
    sync_error TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(asset_type, local_id)
)
"""

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_genes_category ON genes(category)",
    "CREATE INDEX IF NOT EXISTS idx_genes_asset_id ON genes(asset_id)",
    "CREATE INDEX IF NOT EXISTS idx_capsules_gene ON capsules(gene_id)",
    "CREATE INDEX IF NOT EXISTS idx_capsules_asset_id ON capsules(asset_id)",
    "CREATE INDEX IF NOT EXISTS idx_capsules_outcome ON capsules(outcome_status)",
    "CREATE INDEX IF NOT EXISTS idx_events_intent ON events(intent)",
    "CREATE INDEX IF NOT EXISTS idx_events_created ON events(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_events_asset_id ON events(asset_id)",
    "CREATE INDEX IF NOT EXISTS idx_failed_gene ON failed_capsules(gene_id)",
    "CREATE INDEX IF NOT EXISTS idx_sync_asset ON sync_status(asset_type, local_id)",
    "CREATE INDEX IF NOT EXISTS idx_sync_status ON sync_status(sync_status)",
]


def get_columns(conn: sqlite3.Connection, table: str) -> Set[str]:
    """Return the column names of a table (empty if it does not exist)."""
    try:
        validate_table_name(table)
        cols = conn.execute(f"PRAGMA table_info({table})").fetchall()
        return {c[1] for c in cols}
    except (TypeError, ValueError):
        return set()


def get_table_names(conn: sqlite3.Connection) -> Set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    return {r[0] for r in rows}


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Stored schema version, or 0 for a fresh database."""
    if "schema_version" not in get_table_names(conn):
        return 0
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return int(row[0]) if row and row[0] is not None else 0


def _migrate_v1(conn: sqlite3.Connection) -> None:
    for ddl in BASE_TABLES:
        conn.execute(ddl)


def _migrate_v2(conn: sqlite3.Connection) -> None:
    for table, column, decl in V2_COLUMNS:
        if column not in get_columns(conn, table):
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {decl}")
            logger.info(f"Added column {table}.{column}")


def _migrate_v3(conn: sqlite3.Connection) -> None:
    conn.execute(SYNC_STATUS_TABLE)


MIGRATIONS: List[Tuple[int, Callable[[sqlite3.Connection], None]]] = [
    (1, _migrate_v1),
    (2, _migrate_v2),
    (3, _migrate_v3),
]


def migrate_schema(conn: sqlite3.Connection) -> List[str]:
    """Apply every migration step newer than the stored version.

    Each step only creates what is missing, so re-running one is harmless.

    Returns:
        Human-readable descriptions of the steps that ran.
    """
    current = get_schema_version(conn)
    applied = []
    for version, step in MIGRATIONS:
        if version <= current:
            continue
        step(conn)
        applied.append(f"migrated schema to v{version}")
        logger.info(f"Applied schema migration v{version}")
    return applied


def ensure_indexes(conn: sqlite3.Connection) -> None:
    for ddl in INDEXES:
        conn.execute(ddl)


def init_db(conn: sqlite3.Connection) -> List[str]:
    """Initialize or upgrade the database schema.

    Args:
        conn: Database connection (the caller owns the transaction).

    Returns:
        Descriptions of migration steps applied.
    """
    conn.execute(SCHEMA_VERSION_TABLE)
    applied = migrate_schema(conn)

    # Indexes are verified on every startup
    ensure_indexes(conn)

    row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    elif row[0] != SCHEMA_VERSION:
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
    return applied
