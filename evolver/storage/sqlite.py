"""SQLite storage backend for Evolver.

Local, single-file persistence for genes, capsules, evolution events,
failed capsules and the pending-sync ledger. One connection is held for
the life of the store; write-ahead logging gives concurrent readers and a
single writer.
"""

import contextlib
import logging
import sqlite3
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from ..types import (
    ASSET_CAPSULE,
    ASSET_GENE,
    SYNC_PENDING,
    Capsule,
    EvolutionEvent,
    FailedCapsule,
    Gene,
    SyncEntry,
)
from ..utils import get_evolver_home, utc_now
from . import capsules_crud, events_crud, failed_crud, genes_crud, sync_status
from .health import ensure_healthy, get_health_status
from .schema import get_schema_version, init_db
from .seed import seed_default_genes
from .stats_ops import get_stats
from .validation import coerce_record

logger = logging.getLogger(__name__)

PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA mmap_size=134217728",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA cache_size=-65536",
    "PRAGMA temp_store=MEMORY",
    "PRAGMA wal_autocheckpoint=1000",
    "PRAGMA foreign_keys=ON",
    "PRAGMA busy_timeout=5000",
)

RecordLike = Union[Dict[str, Any], Gene, Capsule, EvolutionEvent, FailedCapsule]


class SQLiteStore:
    """Repository for GEP records backed by one SQLite file.

    Args:
        db_path: Database file, or ``":memory:"``. Defaults to
            ``<evolver home>/evolver.db``.
        seed_genes: Load the built-in genes when the genes table is empty.
        sync_enabled: Record written genes/capsules as pending in the sync ledger.
        now_fn: Timestamp source for ``created_at``/``updated_at`` columns.
    """

    def __init__(
        self,
        db_path: Optional[Union[str, Path]] = None,
        *,
        seed_genes: bool = True,
        sync_enabled: bool = True,
        now_fn: Optional[Callable[[], str]] = None,
    ):
        self.db_path = str(db_path) if db_path is not None else str(get_evolver_home() / "evolver.db")
        self.sync_enabled = sync_enabled
        self._now = now_fn or utc_now
        self._depth = 0
        self.migration_log: List[str] = []

        if not self.is_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self.migration_log.extend(ensure_healthy(self.db_path))

        self._conn = self._open()
        with self._connect() as conn:
            self.migration_log.extend(init_db(conn))

        if seed_genes:
            seed_default_genes(self.count_genes, self.upsert_gene)

    @property
    def is_memory(self) -> bool:
        return self.db_path == ":memory:"

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=5.0)
        conn.row_factory = sqlite3.Row
        for pragma in PRAGMAS:
            conn.execute(pragma)
        logger.debug(f"Opened database {self.db_path}")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Transaction scope on the store's connection.

        Nested scopes join the outermost one, which commits on success and
        rolls back if anything inside raised.
        """
        conn = self._conn
        outermost = self._depth == 0
        self._depth += 1
        try:
            yield conn
            if outermost:
                conn.commit()
        except Exception as e:
            if outermost:
                logger.debug(f"Transaction failed, rolling back: {e}")
                conn.rollback()
            raise
        finally:
            self._depth -= 1

    def transaction(self):
        """Group several writes into one atomic step."""
        return self._connect()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SQLiteStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # === Genes ===

    def upsert_gene(self, gene: RecordLike) -> Gene:
        gene = coerce_record(gene, "Gene")
        with self._connect():
            stored = genes_crud.upsert_gene(self._connect, gene, self._now)
            if self.sync_enabled:
                self.update_sync_status(ASSET_GENE, stored.id, stored.asset_id, SYNC_PENDING)
        return stored

    def get_gene(self, gene_id: str) -> Optional[Gene]:
        return genes_crud.get_gene(self._connect, gene_id)

    def get_gene_by_identity(self, asset_id: str) -> Optional[Gene]:
        return genes_crud.get_gene_by_identity(self._connect, asset_id)

    def list_genes(self, category: Optional[str] = None, limit: int = 100) -> List[Gene]:
        return genes_crud.list_genes(self._connect, category=category, limit=limit)

    def delete_gene(self, gene_id: str) -> bool:
        return genes_crud.delete_gene(self._connect, gene_id)

    def count_genes(self) -> int:
        return genes_crud.count_genes(self._connect)

    # === Capsules ===

    def upsert_capsule(self, capsule: RecordLike) -> Capsule:
        capsule = coerce_record(capsule, "Capsule")
        with self._connect():
            stored = capsules_crud.upsert_capsule(self._connect, capsule, self._now)
            if self.sync_enabled:
                self.update_sync_status(ASSET_CAPSULE, stored.id, stored.asset_id, SYNC_PENDING)
        return stored

    def get_capsule(self, capsule_id: str) -> Optional[Capsule]:
        return capsules_crud.get_capsule(self._connect, capsule_id)

    def get_capsule_by_identity(self, asset_id: str) -> Optional[Capsule]:
        return capsules_crud.get_capsule_by_identity(self._connect, asset_id)

    def list_capsules(
        self,
        gene_id: Optional[str] = None,
        outcome_status: Optional[str] = None,
        limit: int = 100,
    ) -> List[Capsule]:
        return capsules_crud.list_capsules(
            self._connect, gene_id=gene_id, outcome_status=outcome_status, limit=limit
        )

    # === Events ===

    def append_event(self, event: RecordLike) -> EvolutionEvent:
        event = coerce_record(event, "EvolutionEvent")
        return events_crud.append_event(self._connect, event, self._now)

    def get_event(self, event_id: str) -> Optional[EvolutionEvent]:
        return events_crud.get_event(self._connect, event_id)

    def get_event_by_identity(self, asset_id: str) -> Optional[EvolutionEvent]:
        return events_crud.get_event_by_identity(self._connect, asset_id)

    def get_last_event_id(self) -> Optional[str]:
        return events_crud.get_last_event_id(self._connect)

    def list_recent_events(self, limit: int = 20) -> List[EvolutionEvent]:
        return events_crud.list_recent_events(self._connect, limit)

    def list_events(
        self,
        intent: Optional[str] = None,
        outcome_status: Optional[str] = None,
        limit: int = 100,
    ) -> List[EvolutionEvent]:
        return events_crud.list_events(
            self._connect, intent=intent, outcome_status=outcome_status, limit=limit
        )

    def compute_success_streak(self, gene_id: str) -> int:
        return events_crud.compute_success_streak(self._connect, gene_id)

    # === Failed capsules ===

    def append_failed_capsule(self, failed: RecordLike) -> FailedCapsule:
        failed = coerce_record(failed, "FailedCapsule")
        return failed_crud.append_failed_capsule(self._connect, failed, self._now)

    def list_failed_capsules(self, limit: int = 20) -> List[FailedCapsule]:
        return failed_crud.list_failed_capsules(self._connect, limit)

    def list_recent_failed_capsules(self, limit: int = 20) -> List[FailedCapsule]:
        return failed_crud.list_recent_failed_capsules(self._connect, limit)

    # === Sync ledger ===

    def update_sync_status(
        self,
        asset_type: str,
        local_id: str,
        asset_id: Optional[str],
        status: str,
        error: Optional[str] = None,
    ) -> None:
        sync_status.update_sync_status(
            self._connect, asset_type, local_id, asset_id, status, self._now, error=error
        )

    def get_sync_entry(self, asset_type: str, local_id: str) -> Optional[SyncEntry]:
        return sync_status.get_sync_entry(self._connect, asset_type, local_id)

    def list_pending_sync(
        self, asset_type: Optional[str] = None, limit: int = 50
    ) -> List[SyncEntry]:
        return sync_status.list_pending_sync(self._connect, asset_type=asset_type, limit=limit)

    def mark_synced(self, asset_type: str, local_id: str) -> bool:
        return sync_status.mark_synced(self._connect, asset_type, local_id, self._now)

    # === Stats & health ===

    def get_stats(self) -> Dict[str, int]:
        with self._connect() as conn:
            return get_stats(conn)

    def get_schema_version(self) -> int:
        with self._connect() as conn:
            return get_schema_version(conn)

    def get_health_status(self) -> Dict[str, Any]:
        with self._connect() as conn:
            status = get_health_status(conn, self.db_path, self.migration_log)
        status["stats"] = self.get_stats()
        return status
