"""Record and result types for Evolver.

Every GEP record kind is a closed dataclass that serializes to its JSON wire
shape with a literal ``type`` discriminator (``to_dict``) and parses back
with ``from_dict``. Unknown keys are ignored when parsing.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

GEP_SCHEMA_VERSION = "1.6.0"

CATEGORIES = ("repair", "optimize", "innovate")

OUTCOME_SUCCESS = "success"
OUTCOME_PARTIAL = "partial"
OUTCOME_FAILED = "failed"

SYNC_PENDING = "pending"
SYNC_SYNCED = "synced"
SYNC_ERROR = "error"
SYNC_STATUSES = (SYNC_PENDING, SYNC_SYNCED, SYNC_ERROR)

# Sync ledger asset_type values
ASSET_GENE = "gene"
ASSET_CAPSULE = "capsule"


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(v) for v in value if v is not None]


def _put_optional(data: Dict[str, Any], **values: Any) -> Dict[str, Any]:
    for key, value in values.items():
        if value is not None:
            data[key] = value
    return data


@dataclass
class BlastRadius:
    """Declared size of a change."""

    files: int = 0
    lines: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"files": self.files, "lines": self.lines}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BlastRadius":
        data = data or {}
        return cls(files=int(data.get("files") or 0), lines=int(data.get("lines") or 0))

    @property
    def is_empty(self) -> bool:
        return self.files == 0 and self.lines == 0


@dataclass
class Outcome:
    status: str = OUTCOME_SUCCESS
    score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "score": self.score}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Outcome":
        data = data or {}
        return cls(
            status=str(data.get("status") or OUTCOME_SUCCESS),
            score=float(data.get("score") or 0.0),
        )


@dataclass
class GeneConstraints:
    max_files: int = 25
    forbidden_paths: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"max_files": self.max_files, "forbidden_paths": list(self.forbidden_paths)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GeneConstraints":
        data = data or {}
        max_files = data.get("max_files")
        return cls(
            max_files=int(max_files) if max_files is not None else 25,
            forbidden_paths=_str_list(data.get("forbidden_paths")),
        )


@dataclass
class Gene:
    """A reusable, matchable strategy template."""

    id: str
    category: str
    signals_match: List[str] = field(default_factory=list)
    strategy: List[str] = field(default_factory=list)
    constraints: GeneConstraints = field(default_factory=GeneConstraints)
    validation: List[str] = field(default_factory=list)
    preconditions: Optional[List[str]] = None
    summary: Optional[str] = None
    schema_version: Optional[str] = None
    asset_id: Optional[str] = None

    record_type = "Gene"

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.record_type,
            "id": self.id,
            "category": self.category,
            "signals_match": list(self.signals_match),
            "strategy": list(self.strategy),
            "constraints": self.constraints.to_dict(),
            "validation": list(self.validation),
        }
        return _put_optional(
            data,
            preconditions=list(self.preconditions) if self.preconditions is not None else None,
            summary=self.summary,
            schema_version=self.schema_version,
            asset_id=self.asset_id,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Gene":
        preconditions = data.get("preconditions")
        return cls(
            id=str(data["id"]),
            category=str(data.get("category") or ""),
            signals_match=_str_list(data.get("signals_match")),
            strategy=_str_list(data.get("strategy")),
            constraints=GeneConstraints.from_dict(data.get("constraints")),
            validation=_str_list(data.get("validation")),
            preconditions=_str_list(preconditions) if preconditions is not None else None,
            summary=data.get("summary"),
            schema_version=data.get("schema_version"),
            asset_id=data.get("asset_id"),
        )


@dataclass
class Capsule:
    """A recorded successful application of a gene."""

    id: str
    gene: str
    trigger: List[str] = field(default_factory=list)
    summary: str = ""
    confidence: float = 0.5
    blast_radius: BlastRadius = field(default_factory=BlastRadius)
    outcome: Outcome = field(default_factory=Outcome)
    success_streak: int = 0
    content: Optional[str] = None
    env_fingerprint: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None
    schema_version: Optional[str] = None
    asset_id: Optional[str] = None

    record_type = "Capsule"

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.record_type,
            "id": self.id,
            "trigger": list(self.trigger),
            "gene": self.gene,
            "summary": self.summary,
            "confidence": self.confidence,
            "blast_radius": self.blast_radius.to_dict(),
            "outcome": self.outcome.to_dict(),
            "success_streak": self.success_streak,
        }
        return _put_optional(
            data,
            content=self.content,
            env_fingerprint=self.env_fingerprint,
            created_at=self.created_at,
            schema_version=self.schema_version,
            asset_id=self.asset_id,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Capsule":
        return cls(
            id=str(data["id"]),
            gene=str(data.get("gene") or ""),
            trigger=_str_list(data.get("trigger")),
            summary=str(data.get("summary") or ""),
            confidence=float(data.get("confidence") if data.get("confidence") is not None else 0.5),
            blast_radius=BlastRadius.from_dict(data.get("blast_radius")),
            outcome=Outcome.from_dict(data.get("outcome")),
            success_streak=int(data.get("success_streak") or 0),
            content=data.get("content"),
            env_fingerprint=data.get("env_fingerprint"),
            created_at=data.get("created_at"),
            schema_version=data.get("schema_version"),
            asset_id=data.get("asset_id"),
        )


@dataclass
class EvolutionEvent:
    """Audit record of one selection-and-apply cycle."""

    id: str
    intent: str
    parent: Optional[str] = None
    signals: List[str] = field(default_factory=list)
    genes_used: List[str] = field(default_factory=list)
    blast_radius: BlastRadius = field(default_factory=BlastRadius)
    outcome: Outcome = field(default_factory=Outcome)
    mutation_id: Optional[str] = None
    personality_state: Optional[Dict[str, Any]] = None
    env_fingerprint: Optional[Dict[str, Any]] = None
    mutations_tried: Optional[int] = None
    total_cycles: Optional[int] = None
    summary: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None
    schema_version: Optional[str] = None
    asset_id: Optional[str] = None

    record_type = "EvolutionEvent"

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.record_type,
            "id": self.id,
            "parent": self.parent,
            "intent": self.intent,
            "signals": list(self.signals),
            "genes_used": list(self.genes_used),
            "blast_radius": self.blast_radius.to_dict(),
            "outcome": self.outcome.to_dict(),
        }
        return _put_optional(
            data,
            mutation_id=self.mutation_id,
            personality_state=self.personality_state,
            env_fingerprint=self.env_fingerprint,
            mutations_tried=self.mutations_tried,
            total_cycles=self.total_cycles,
            summary=self.summary,
            meta=self.meta,
            created_at=self.created_at,
            schema_version=self.schema_version,
            asset_id=self.asset_id,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvolutionEvent":
        return cls(
            id=str(data["id"]),
            intent=str(data.get("intent") or ""),
            parent=data.get("parent"),
            signals=_str_list(data.get("signals")),
            genes_used=_str_list(data.get("genes_used")),
            blast_radius=BlastRadius.from_dict(data.get("blast_radius")),
            outcome=Outcome.from_dict(data.get("outcome")),
            mutation_id=data.get("mutation_id"),
            personality_state=data.get("personality_state"),
            env_fingerprint=data.get("env_fingerprint"),
            mutations_tried=data.get("mutations_tried"),
            total_cycles=data.get("total_cycles"),
            summary=data.get("summary"),
            meta=data.get("meta"),
            created_at=data.get("created_at"),
            schema_version=data.get("schema_version"),
            asset_id=data.get("asset_id"),
        )

    @property
    def is_empty_cycle(self) -> bool:
        if self.meta and self.meta.get("empty_cycle"):
            return True
        return self.blast_radius.is_empty


@dataclass
class FailedCapsule:
    """A recorded failed attempt, used to ban genes under similar conditions."""

    id: str
    gene: str
    trigger: List[str] = field(default_factory=list)
    failure_reason: str = ""
    diff_snapshot: str = ""
    created_at: Optional[str] = None

    record_type = "FailedCapsule"

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.record_type,
            "id": self.id,
            "gene": self.gene,
            "trigger": list(self.trigger),
            "failure_reason": self.failure_reason,
            "diff_snapshot": self.diff_snapshot,
        }
        return _put_optional(data, created_at=self.created_at)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FailedCapsule":
        return cls(
            id=str(data["id"]),
            gene=str(data.get("gene") or ""),
            trigger=_str_list(data.get("trigger")),
            failure_reason=str(data.get("failure_reason") or ""),
            diff_snapshot=str(data.get("diff_snapshot") or ""),
            created_at=data.get("created_at"),
        )


@dataclass
class SyncEntry:
    """Pending/synced marker for one asset in the sync ledger."""

    asset_type: str
    local_id: str
    asset_id: Optional[str] = None
    status: str = SYNC_PENDING
    last_sync_attempt: Optional[str] = None
    sync_error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_type": self.asset_type,
            "local_id": self.local_id,
            "asset_id": self.asset_id,
            "status": self.status,
            "last_sync_attempt": self.last_sync_attempt,
            "sync_error": self.sync_error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


RECORD_TYPES = {
    "Gene": Gene,
    "Capsule": Capsule,
    "EvolutionEvent": EvolutionEvent,
    "FailedCapsule": FailedCapsule,
}


def record_from_dict(data: Dict[str, Any]):
    """Parse any record by its ``type`` discriminator."""
    cls = RECORD_TYPES.get(data.get("type"))
    if cls is None:
        raise ValueError(f"Unknown record type: {data.get('type')!r}")
    return cls.from_dict(data)


# === Results ===


@dataclass
class HistoryAnalysis:
    """Diagnostics derived from the most recent evolution events."""

    suppressed_signals: Set[str] = field(default_factory=set)
    recent_intents: List[str] = field(default_factory=list)
    consecutive_repair_count: int = 0
    consecutive_empty_cycles: int = 0
    consecutive_failure_count: int = 0
    recent_failure_count: int = 0
    recent_failure_ratio: float = 0.0
    signal_freq: Dict[str, int] = field(default_factory=dict)
    gene_freq: Dict[str, int] = field(default_factory=dict)
    oscillating_signals: List[str] = field(default_factory=list)


@dataclass
class GeneSelection:
    selected: Optional[Gene]
    alternatives: List[Gene] = field(default_factory=list)
    drift_intensity: float = 0.0


@dataclass
class SelectionResult:
    """Gene plus capsule chosen for one set of tags."""

    selected_gene: Optional[Gene]
    selected_capsule: Optional[Capsule]
    alternatives: List[Gene] = field(default_factory=list)
    drift_intensity: float = 0.0
    banned_gene_ids: Set[str] = field(default_factory=set)
    decision: Optional["SelectorDecision"] = None


@dataclass
class SelectorDecision:
    selected: Optional[str]
    reason: List[str] = field(default_factory=list)
    alternatives: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected": self.selected,
            "reason": list(self.reason),
            "alternatives": list(self.alternatives),
        }


@dataclass
class CommandResult:
    command: str
    ok: bool
    out: str = ""
    err: str = ""
    exit_code: Optional[int] = None
    timed_out: bool = False


@dataclass
class SolidifyResult:
    """Outcome of the validated write path.

    ``ok`` is False only when violations fired; warnings downgrade the
    recorded outcome but do not block the write.
    """

    ok: bool
    dry_run: bool = False
    violations: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    event: Optional[EvolutionEvent] = None
    gene: Optional[Gene] = None
    capsule: Optional[Capsule] = None
    command_results: List[CommandResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "dry_run": self.dry_run,
            "violations": list(self.violations),
            "warnings": list(self.warnings),
            "event": self.event.to_dict() if self.event else None,
            "gene": self.gene.to_dict() if self.gene else None,
            "capsule": self.capsule.to_dict() if self.capsule else None,
        }


@dataclass
class GepObjectCheck:
    """Validation verdict for one GEP object found in free text.

    ``record`` holds the typed record only when there are no errors.
    """

    type: Optional[str]
    id: Optional[str]
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    record: Any = None

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "id": self.id,
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass
class CycleResult:
    """Plain data handed to the template layer after one selection cycle."""

    tags: List[str]
    strategy: str
    selected_gene: Optional[Gene] = None
    selected_capsule: Optional[Capsule] = None
    alternatives: List[Gene] = field(default_factory=list)
    selector_decision: Optional[SelectorDecision] = None
    parent_event_id: Optional[str] = None
    drift_intensity: float = 0.0
    banned_gene_ids: List[str] = field(default_factory=list)
    blocked: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tags": list(self.tags),
            "strategy": self.strategy,
            "selected_gene": self.selected_gene.to_dict() if self.selected_gene else None,
            "selected_capsule": self.selected_capsule.to_dict() if self.selected_capsule else None,
            "alternatives": [g.id for g in self.alternatives],
            "selector_decision": (
                self.selector_decision.to_dict() if self.selector_decision else None
            ),
            "parent_event_id": self.parent_event_id,
            "drift_intensity": self.drift_intensity,
            "banned_gene_ids": list(self.banned_gene_ids),
            "blocked": self.blocked,
        }
