"""Tests for SQLiteStore: CRUD, ordering, sync ledger and transactions."""

import sqlite3

import pytest

from evolver.canonical import compute_identity, verify_identity
from evolver.errors import MalformedRecordError
from evolver.storage import SCHEMA_VERSION, SQLiteStore
from evolver.storage.seed import default_genes
from evolver.types import Capsule, FailedCapsule, Outcome


class TestSeeding:
    def test_fresh_store_has_default_genes(self, store):
        ids = [g.id for g in store.list_genes()]
        assert ids == [g.id for g in default_genes()]
        assert store.count_genes() == 3

    def test_seeding_can_be_disabled(self, empty_store):
        assert empty_store.count_genes() == 0

    def test_no_reseed_when_genes_exist(self, tmp_path, make_gene):
        db = tmp_path / "evolver.db"
        with SQLiteStore(db) as s:
            s.delete_gene("gene_gep_repair_from_errors")
            s.upsert_gene(make_gene("gene_custom"))
        with SQLiteStore(db) as s:
            ids = {g.id for g in s.list_genes()}
        assert "gene_custom" in ids
        assert "gene_gep_repair_from_errors" not in ids

    def test_seeded_genes_marked_pending(self, store):
        pending = store.list_pending_sync(asset_type="gene")
        assert {e.local_id for e in pending} == {g.id for g in default_genes()}


class TestGenes:
    def test_round_trip(self, empty_store, make_gene):
        gene = make_gene("gene_a", signals_match=["timeout"], forbidden_paths=["secrets/"])
        stored = empty_store.upsert_gene(gene)
        fetched = empty_store.get_gene("gene_a")
        assert fetched == stored
        assert fetched.constraints.forbidden_paths == ["secrets/"]

    def test_identity_assigned_and_verifiable(self, empty_store, make_gene):
        stored = empty_store.upsert_gene(make_gene("gene_a"))
        assert stored.asset_id == compute_identity(stored)
        assert verify_identity(stored)

    def test_identity_recomputed_on_update(self, empty_store, make_gene):
        first = empty_store.upsert_gene(make_gene("gene_a", signals_match=["a"]))
        second = empty_store.upsert_gene(make_gene("gene_a", signals_match=["a", "b"]))
        assert first.asset_id != second.asset_id
        assert empty_store.count_genes() == 1
        assert empty_store.get_gene("gene_a").signals_match == ["a", "b"]

    def test_get_by_identity(self, empty_store, make_gene):
        stored = empty_store.upsert_gene(make_gene("gene_a"))
        assert empty_store.get_gene_by_identity(stored.asset_id).id == "gene_a"
        assert empty_store.get_gene_by_identity("sha256:nope") is None

    def test_accepts_dict(self, empty_store):
        stored = empty_store.upsert_gene({"type": "Gene", "id": "gene_d", "category": "optimize"})
        assert stored.id == "gene_d"
        assert stored.constraints.max_files == 25

    def test_list_by_category_keeps_insertion_order(self, empty_store, make_gene):
        empty_store.upsert_gene(make_gene("gene_z", category="innovate"))
        empty_store.upsert_gene(make_gene("gene_a", category="innovate"))
        empty_store.upsert_gene(make_gene("gene_r", category="repair"))
        assert [g.id for g in empty_store.list_genes(category="innovate")] == ["gene_z", "gene_a"]

    def test_delete(self, empty_store, make_gene):
        empty_store.upsert_gene(make_gene("gene_a"))
        assert empty_store.delete_gene("gene_a") is True
        assert empty_store.delete_gene("gene_a") is False
        assert empty_store.get_gene("gene_a") is None

    def test_missing_gene(self, empty_store):
        assert empty_store.get_gene("nope") is None


class TestMalformedRecords:
    def test_missing_id_rejected(self, store):
        before = store.get_stats()
        with pytest.raises(MalformedRecordError):
            store.upsert_gene({"type": "Gene", "category": "repair"})
        assert store.get_stats() == before

    def test_wrong_type_rejected(self, store):
        with pytest.raises(MalformedRecordError) as exc_info:
            store.upsert_gene({"type": "Capsule", "id": "x", "category": "repair"})
        assert exc_info.value.record_type == "Gene"
        assert exc_info.value.errors

    def test_unknown_category_rejected(self, store):
        with pytest.raises(MalformedRecordError):
            store.upsert_gene({"type": "Gene", "id": "x", "category": "mystery"})

    def test_event_without_intent_rejected(self, store):
        with pytest.raises(MalformedRecordError):
            store.append_event({"type": "EvolutionEvent", "id": "evt_1"})
        assert store.get_stats()["events"] == 0

    def test_malformed_error_is_value_error(self, store):
        with pytest.raises(ValueError):
            store.upsert_capsule({"type": "Capsule", "id": ""})


class TestCapsules:
    def _capsule(self, capsule_id, gene="gene_a", status="success"):
        return Capsule(
            id=capsule_id,
            gene=gene,
            trigger=["log_error"],
            summary="fixed it",
            outcome=Outcome(status=status, score=0.8),
        )

    def test_round_trip(self, empty_store):
        stored = empty_store.upsert_capsule(self._capsule("cap_1"))
        assert empty_store.get_capsule("cap_1") == stored
        assert empty_store.get_capsule_by_identity(stored.asset_id).id == "cap_1"

    def test_integer_numbers_keep_caller_identity(self, empty_store):
        data = self._capsule("cap_1").to_dict()
        data["confidence"] = 1
        data["outcome"]["score"] = 1
        data["asset_id"] = compute_identity(data)
        assert verify_identity(data)

        stored = empty_store.upsert_capsule(data)
        assert stored.confidence == 1.0
        assert stored.asset_id == data["asset_id"]

    def test_newest_first(self, empty_store):
        for i in range(3):
            empty_store.upsert_capsule(self._capsule(f"cap_{i}"))
        assert [c.id for c in empty_store.list_capsules()] == ["cap_2", "cap_1", "cap_0"]

    def test_filters(self, empty_store):
        empty_store.upsert_capsule(self._capsule("cap_1", gene="gene_a"))
        empty_store.upsert_capsule(self._capsule("cap_2", gene="gene_b", status="failed"))
        assert [c.id for c in empty_store.list_capsules(gene_id="gene_b")] == ["cap_2"]
        assert [c.id for c in empty_store.list_capsules(outcome_status="success")] == ["cap_1"]

    def test_marked_pending(self, empty_store):
        empty_store.upsert_capsule(self._capsule("cap_1"))
        entry = empty_store.get_sync_entry("capsule", "cap_1")
        assert entry.status == "pending"
        assert entry.asset_id.startswith("sha256:")


class TestEvents:
    def test_append_and_get(self, empty_store, make_event):
        stored = empty_store.append_event(make_event(event_id="evt_1"))
        assert empty_store.get_event("evt_1") == stored
        assert verify_identity(stored)
        assert empty_store.get_event_by_identity(stored.asset_id).id == "evt_1"

    def test_recent_events_chronological(self, empty_store, make_event):
        for i in range(5):
            empty_store.append_event(make_event(event_id=f"evt_{i}"))
        recent = empty_store.list_recent_events(3)
        assert [e.id for e in recent] == ["evt_2", "evt_3", "evt_4"]

    def test_last_event_id(self, empty_store, make_event):
        assert empty_store.get_last_event_id() is None
        empty_store.append_event(make_event(event_id="evt_b"))
        empty_store.append_event(make_event(event_id="evt_a"))
        assert empty_store.get_last_event_id() == "evt_a"

    def test_list_events_filters_newest_first(self, empty_store, make_event):
        empty_store.append_event(make_event(intent="repair", event_id="evt_1"))
        empty_store.append_event(make_event(intent="innovate", event_id="evt_2"))
        empty_store.append_event(make_event(intent="repair", status="failed", event_id="evt_3"))
        assert [e.id for e in empty_store.list_events(intent="repair")] == ["evt_3", "evt_1"]
        assert [e.id for e in empty_store.list_events(outcome_status="failed")] == ["evt_3"]

    def test_parent_persisted(self, empty_store, make_event):
        event = make_event(event_id="evt_2")
        event.parent = "evt_1"
        empty_store.append_event(event)
        assert empty_store.get_event("evt_2").parent == "evt_1"

    def test_success_streak(self, empty_store, make_event):
        empty_store.append_event(make_event(status="failed", genes_used=["gene_a"]))
        empty_store.append_event(make_event(status="success", genes_used=["gene_a"]))
        empty_store.append_event(make_event(status="success", genes_used=["gene_b"]))
        empty_store.append_event(make_event(status="success", genes_used=["gene_a"]))
        assert empty_store.compute_success_streak("gene_a") == 2
        assert empty_store.compute_success_streak("gene_b") == 1
        assert empty_store.compute_success_streak("gene_none") == 0


class TestFailedCapsules:
    def test_ordering(self, empty_store):
        for i in range(3):
            empty_store.append_failed_capsule(
                FailedCapsule(id=f"failed_{i}", gene="gene_a", trigger=["log_error"])
            )
        assert [f.id for f in empty_store.list_failed_capsules()] == [
            "failed_2",
            "failed_1",
            "failed_0",
        ]
        assert [f.id for f in empty_store.list_recent_failed_capsules(2)] == [
            "failed_1",
            "failed_2",
        ]


class TestSyncLedger:
    def test_asset_types_are_lowercase(self, empty_store, make_gene):
        empty_store.upsert_gene(make_gene("gene_a"))
        empty_store.upsert_capsule(Capsule(id="cap_1", gene="gene_a"))
        pending = {(e.asset_type, e.local_id) for e in empty_store.list_pending_sync()}
        assert pending == {("gene", "gene_a"), ("capsule", "cap_1")}
        assert empty_store.list_pending_sync(asset_type="Gene") == []

    def test_pending_then_synced(self, empty_store, make_gene):
        empty_store.upsert_gene(make_gene("gene_a"))
        assert [e.local_id for e in empty_store.list_pending_sync()] == ["gene_a"]
        assert empty_store.mark_synced("gene", "gene_a") is True
        assert empty_store.list_pending_sync() == []
        entry = empty_store.get_sync_entry("gene", "gene_a")
        assert entry.status == "synced"
        assert entry.last_sync_attempt is not None

    def test_mark_synced_unknown_entry(self, empty_store):
        assert empty_store.mark_synced("gene", "nope") is False

    def test_update_back_to_pending_after_change(self, empty_store, make_gene):
        empty_store.upsert_gene(make_gene("gene_a"))
        empty_store.mark_synced("gene", "gene_a")
        empty_store.upsert_gene(make_gene("gene_a", signals_match=["x"]))
        assert [e.local_id for e in empty_store.list_pending_sync(asset_type="gene")] == ["gene_a"]

    def test_error_status(self, empty_store):
        empty_store.update_sync_status("capsule", "cap_1", None, "error", error="hub down")
        entry = empty_store.get_sync_entry("capsule", "cap_1")
        assert entry.status == "error"
        assert entry.sync_error == "hub down"

    def test_invalid_status(self, empty_store):
        with pytest.raises(ValueError, match="Invalid sync status"):
            empty_store.update_sync_status("gene", "g", None, "bogus")

    def test_sync_disabled(self, make_gene):
        with SQLiteStore(":memory:", seed_genes=False, sync_enabled=False) as s:
            s.upsert_gene(make_gene("gene_a"))
            assert s.list_pending_sync() == []


class TestTransactions:
    def test_rollback_on_error(self, empty_store, make_event):
        with pytest.raises(RuntimeError):
            with empty_store.transaction():
                empty_store.append_event(make_event(event_id="evt_1"))
                raise RuntimeError("boom")
        assert empty_store.get_event("evt_1") is None

    def test_commit_groups_writes(self, empty_store, make_event, make_gene):
        with empty_store.transaction():
            empty_store.append_event(make_event(event_id="evt_1"))
            empty_store.upsert_gene(make_gene("gene_a"))
        assert empty_store.get_event("evt_1") is not None
        assert empty_store.get_gene("gene_a") is not None


class TestStatsAndHealth:
    def test_stats(self, store):
        stats = store.get_stats()
        assert stats == {
            "genes": 3,
            "capsules": 0,
            "events": 0,
            "failed_capsules": 0,
            "pending_sync": 3,
        }

    def test_schema_version(self, store):
        assert store.get_schema_version() == SCHEMA_VERSION

    def test_health_in_memory(self, store):
        status = store.get_health_status()
        assert status["healthy"] is True
        assert status["schema_version"] == SCHEMA_VERSION
        assert status["stats"]["genes"] == 3
        assert "migrated schema to v3" in status["migration_log"]

    def test_file_store_uses_wal(self, tmp_path):
        db = tmp_path / "evolver.db"
        with SQLiteStore(db) as s:
            status = s.get_health_status()
        assert status["journal_mode"] == "wal"
        assert status["exists"] is True
        assert status["size_bytes"] > 0

    def test_default_path_under_data_dir(self, isolated_data_dir):
        with SQLiteStore() as s:
            assert s.db_path == str(isolated_data_dir / "evolver.db")
        conn = sqlite3.connect(isolated_data_dir / "evolver.db")
        try:
            assert conn.execute("SELECT COUNT(*) FROM genes").fetchone()[0] == 3
        finally:
            conn.close()
