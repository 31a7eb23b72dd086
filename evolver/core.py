"""
Evolver core - the service object tying extraction, selection and solidify together.

One ``Evolver`` owns a store, a random source and a node id for its whole
lifetime. ``run`` returns plain data (tags, selected gene and capsule, the
event chain head) for an external template layer to render; it never
produces text itself.
"""

import logging
import random
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .canonical import generate_local_id
from .commands import run_validation_command
from .config import EvolverSettings, get_settings
from .gdi import compute_gene_gdi, gdi_stats, group_capsules_by_gene, top_capsules
from .logging_config import log_failure, log_selection, log_solidify, setup_evolver_logging
from .safety import NEVER_MODE_VIOLATION, SafetyController, SourceProtector
from .selector import GeneSelector
from .signals import SignalExtractor, has_opportunity_signal
from .solidify import SolidifyEngine, validate_gep_objects
from .storage import SQLiteStore
from .types import (
    Capsule,
    CycleResult,
    EvolutionEvent,
    FailedCapsule,
    Gene,
    GepObjectCheck,
    SolidifyResult,
    SyncEntry,
)

logger = logging.getLogger(__name__)

STRATEGIES = ("balanced", "repair-only", "innovate", "harden")
REPAIR_ONLY_SIGNALS = frozenset({"log_error", "recurring_error", "repair_loop_detected"})

CAPSULE_WINDOW = 50
EVENT_WINDOW = 20
FAILED_WINDOW = 20
GENE_LIMIT = 1000


def apply_strategy(tags: Sequence[str], strategy: str) -> List[str]:
    """Bias the tag set toward a strategy preset.

    Raises:
        ValueError: For an unknown strategy.
    """
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown strategy: {strategy} (expected one of {', '.join(STRATEGIES)})")

    tags = list(tags)
    if strategy == "repair-only":
        tags = [t for t in tags if t in REPAIR_ONLY_SIGNALS or t.startswith("errsig:")]
        return tags or ["log_error"]
    if strategy == "innovate":
        if not has_opportunity_signal(tags):
            tags.append("user_feature_request")
        return tags
    if strategy == "harden":
        return list(dict.fromkeys(tags + ["security", "harden"]))
    return tags


class Evolver:
    """Evolution engine for one node.

    Args:
        db_path: Database path; defaults to the configured location.
        settings: Explicit settings, otherwise loaded from the environment.
        store: Pre-built store (tests use ``SQLiteStore(":memory:")``).
        rng: Random source shared by drift selection and id generation.
        node_id: Stable identifier for this node; generated once if omitted.
        env_fingerprint: Provider of the environment snapshot for records.
        command_runner: Validation command runner for solidify.
        project_root: Root for source-protection path checks.
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        *,
        settings: Optional[EvolverSettings] = None,
        store: Optional[SQLiteStore] = None,
        rng: Optional[random.Random] = None,
        node_id: Optional[str] = None,
        env_fingerprint=None,
        command_runner=None,
        project_root: Optional[str] = None,
    ):
        self.settings = settings or get_settings()
        self.log_dir = self.settings.resolved_data_dir() / "logs"
        if self.settings.event_log_enabled:
            setup_evolver_logging(self.settings.log_level, log_dir=self.log_dir)
        self.rng = rng or random.Random()
        self.node_id = node_id or generate_local_id("node", rng=self.rng)

        self.store = store or SQLiteStore(
            db_path or self.settings.resolved_db_path(),
            seed_genes=self.settings.seed_genes,
            sync_enabled=self.settings.sync_enabled,
        )
        self.safety = SafetyController(
            self.settings.allow_self_modify, SourceProtector(project_root)
        )
        self.extractor = SignalExtractor()
        self.selector = GeneSelector(rng=self.rng)
        self.solidifier = SolidifyEngine(
            self.store,
            safety=self.safety,
            command_runner=command_runner or run_validation_command,
            env_fingerprint=env_fingerprint,
            rng=self.rng,
            validation_timeout=self.settings.validation_timeout,
        )
        logger.debug(f"Evolver node {self.node_id} ready (mode={self.safety.mode})")

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "Evolver":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # === Cycle ===

    def extract_signals(
        self, context: str = "", *, include_history: bool = True, **text_fields: str
    ) -> List[str]:
        """Tags for ``context`` plus optional transcript/log/memory/user text."""
        history = self.store.list_recent_events(EVENT_WINDOW) if include_history else None
        return self.extractor.extract(context, history, **text_fields)

    def run(
        self,
        context: str = "",
        strategy: str = "balanced",
        drift_enabled: bool = False,
        preferred_gene_id: Optional[str] = None,
        banned_gene_ids: Optional[Iterable[str]] = None,
        effective_population_size: Optional[float] = None,
    ) -> CycleResult:
        """Extract tags and select a gene and capsule for them.

        Nothing is written; recording the outcome is ``solidify``'s job.
        """
        if not self.safety.is_operation_allowed("propose"):
            logger.info("Run blocked by self-modify policy")
            return CycleResult(tags=[], strategy=strategy, blocked=NEVER_MODE_VIOLATION)

        recent = self.store.list_recent_events(EVENT_WINDOW)
        tags = apply_strategy(self.extractor.extract(context, recent), strategy)

        selection = self.selector.select_gene_and_capsule(
            self.store.list_genes(limit=GENE_LIMIT),
            self.store.list_capsules(limit=CAPSULE_WINDOW),
            tags,
            failed_capsules=self.store.list_failed_capsules(FAILED_WINDOW),
            banned_ids=banned_gene_ids,
            preferred_id=preferred_gene_id,
            drift_enabled=drift_enabled,
            effective_population_size=effective_population_size,
        )
        parent_id = recent[-1].id if recent else None

        gene_id = selection.selected_gene.id if selection.selected_gene else None
        capsule_id = selection.selected_capsule.id if selection.selected_capsule else None
        logger.info(
            f"Cycle strategy={strategy} tags={len(tags)} gene={gene_id} capsule={capsule_id}"
        )
        if self.settings.event_log_enabled:
            log_selection(
                self.node_id,
                tags,
                gene_id,
                capsule_id,
                selection.drift_intensity,
                log_dir=self.log_dir,
            )

        return CycleResult(
            tags=tags,
            strategy=strategy,
            selected_gene=selection.selected_gene,
            selected_capsule=selection.selected_capsule,
            alternatives=selection.alternatives,
            selector_decision=selection.decision,
            parent_event_id=parent_id,
            drift_intensity=selection.drift_intensity,
            banned_gene_ids=sorted(selection.banned_gene_ids),
        )

    def solidify(self, intent: str, summary: str, signals=None, **kwargs: Any) -> SolidifyResult:
        """Record the outcome of an applied strategy; see ``SolidifyEngine.solidify``."""
        result = self.solidifier.solidify(intent, summary, signals, **kwargs)
        if self.settings.event_log_enabled:
            status = result.event.outcome.status if result.event else "rejected"
            log_solidify(
                self.node_id,
                result.event.id if result.event else None,
                intent,
                status,
                dry_run=result.dry_run,
                log_dir=self.log_dir,
            )
        return result

    def record_failure(
        self,
        gene,
        signals: Sequence[str],
        reason: str = "unknown",
        diff_snapshot: Optional[str] = None,
    ) -> FailedCapsule:
        failed = self.solidifier.record_failure(gene, signals, reason, diff_snapshot)
        if self.settings.event_log_enabled:
            log_failure(self.node_id, failed.gene, reason, log_dir=self.log_dir)
        return failed

    def validate_gep_objects(self, text: str) -> List[GepObjectCheck]:
        """Per-object errors and warnings for every GEP object embedded in ``text``."""
        return validate_gep_objects(text)

    def extract_gep_objects(self, text: str) -> List[Any]:
        """Typed records for every embedded GEP object that passes validation."""
        records = []
        for check in validate_gep_objects(text):
            if not check.valid:
                logger.info(f"Skipping embedded {check.type!r} object: {check.errors[0]}")
                continue
            for warning in check.warnings:
                logger.debug(f"GEP object {check.id}: {warning}")
            records.append(check.record)
        return records

    # === Assets ===

    def upsert_gene(self, gene) -> Gene:
        return self.store.upsert_gene(gene)

    def delete_gene(self, gene_id: str) -> bool:
        return self.store.delete_gene(gene_id)

    def get_gene(self, gene_id: str) -> Optional[Gene]:
        return self.store.get_gene(gene_id)

    def list_genes(self, category: Optional[str] = None) -> List[Gene]:
        return self.store.list_genes(category=category, limit=GENE_LIMIT)

    def list_capsules(self, gene_id: Optional[str] = None, limit: int = 100) -> List[Capsule]:
        return self.store.list_capsules(gene_id=gene_id, limit=limit)

    def list_recent_events(self, limit: int = EVENT_WINDOW) -> List[EvolutionEvent]:
        return self.store.list_recent_events(limit)

    def rank_capsules(self, limit: int = 10) -> List[Capsule]:
        """Highest-quality capsules by GDI."""
        return top_capsules(self.store.list_capsules(limit=GENE_LIMIT), limit)

    def rank_genes(self) -> List[Dict[str, Any]]:
        """Genes with their GDI score, best first."""
        by_gene = group_capsules_by_gene(self.store.list_capsules(limit=GENE_LIMIT))
        ranked = [
            {"gene": gene, "gdi": compute_gene_gdi(gene, by_gene.get(gene.id, []))}
            for gene in self.list_genes()
        ]
        ranked.sort(key=lambda item: item["gdi"], reverse=True)
        return ranked

    # === Sync ledger ===

    def pending_sync(self, asset_type: Optional[str] = None, limit: int = 50) -> List[SyncEntry]:
        return self.store.list_pending_sync(asset_type=asset_type, limit=limit)

    def mark_synced(self, asset_type: str, local_id: str) -> bool:
        return self.store.mark_synced(asset_type, local_id)

    # === Status ===

    def stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = dict(self.store.get_stats())
        stats["gdi"] = gdi_stats(self.store.list_capsules(limit=GENE_LIMIT))
        return stats

    def health(self) -> Dict[str, Any]:
        status = self.store.get_health_status()
        status["node_id"] = self.node_id
        status["safety"] = self.safety.status_report()
        return status
