"""EvolutionEvent append-only operations.

Events form a singly linked audit chain through ``parent``. Ordering uses
SQLite rowid, which follows write order even when several events share a
timestamp.
"""

import dataclasses
import logging
from typing import Callable, List, Optional

from ..canonical import compute_identity
from ..types import OUTCOME_SUCCESS, EvolutionEvent
from .base import from_json, to_json

logger = logging.getLogger(__name__)


def _row_to_event(row) -> Optional[EvolutionEvent]:
    data = from_json(row["data"])
    if not data or not data.get("id"):
        return None
    return EvolutionEvent.from_dict(data)


def append_event(
    connect_fn: Callable, event: EvolutionEvent, now_fn: Callable[[], str]
) -> EvolutionEvent:
    """Append an event, recomputing its identity. Re-using an id replaces the row."""
    stored = dataclasses.replace(event, asset_id=compute_identity(event))
    with connect_fn() as conn:
        conn.execute(
            """
            INSERT OR REPLACE INTO events
            (id, intent, data, asset_id, parent_id, outcome_status, outcome_score, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                stored.id,
                stored.intent,
                to_json(stored.to_dict()),
                stored.asset_id,
                stored.parent,
                stored.outcome.status,
                stored.outcome.score,
                stored.created_at or now_fn(),
            ),
        )
    logger.debug(f"Appended event {stored.id} (parent={stored.parent})")
    return stored


def get_event(connect_fn: Callable, event_id: str) -> Optional[EvolutionEvent]:
    with connect_fn() as conn:
        row = conn.execute("SELECT data FROM events WHERE id = ?", (event_id,)).fetchone()
    return _row_to_event(row) if row else None


def get_event_by_identity(connect_fn: Callable, asset_id: str) -> Optional[EvolutionEvent]:
    with connect_fn() as conn:
        row = conn.execute(
            "SELECT data FROM events WHERE asset_id = ? LIMIT 1", (asset_id,)
        ).fetchone()
    return _row_to_event(row) if row else None


def get_last_event_id(connect_fn: Callable) -> Optional[str]:
    with connect_fn() as conn:
        row = conn.execute("SELECT id FROM events ORDER BY rowid DESC LIMIT 1").fetchone()
    return row["id"] if row else None


def list_recent_events(connect_fn: Callable, limit: int = 20) -> List[EvolutionEvent]:
    """The ``limit`` most recent events, oldest first."""
    with connect_fn() as conn:
        rows = conn.execute(
            "SELECT data FROM events ORDER BY rowid DESC LIMIT ?", (limit,)
        ).fetchall()
    events = [e for e in (_row_to_event(r) for r in rows) if e is not None]
    events.reverse()
    return events


def list_events(
    connect_fn: Callable,
    intent: Optional[str] = None,
    outcome_status: Optional[str] = None,
    limit: int = 100,
) -> List[EvolutionEvent]:
    """Filtered events, newest first."""
    clauses = []
    params: list = []
    if intent:
        clauses.append("intent = ?")
        params.append(intent)
    if outcome_status:
        clauses.append("outcome_status = ?")
        params.append(outcome_status)

    query = "SELECT data FROM events"
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY rowid DESC LIMIT ?"
    params.append(limit)

    with connect_fn() as conn:
        rows = conn.execute(query, params).fetchall()
    return [e for e in (_row_to_event(r) for r in rows) if e is not None]


def compute_success_streak(connect_fn: Callable, gene_id: str, window: int = 50) -> int:
    """Count consecutive successful events, newest first, that used ``gene_id``.

    Events that did not use the gene are skipped; the first non-success
    event that used it ends the streak.
    """
    streak = 0
    for event in list_events(connect_fn, limit=window):
        if gene_id not in event.genes_used:
            continue
        if event.outcome.status != OUTCOME_SUCCESS:
            break
        streak += 1
    return streak
