"""The validated write path.

``solidify`` either rejects a proposed outcome with a list of violations
(nothing is written) or records it: an EvolutionEvent chained to the last
event, the updated Gene, and usually a Capsule, all in one transaction.
Failed validation commands are warnings; they downgrade the recorded
outcome but never block the write.
"""

import dataclasses
import json
import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .canonical import IDENTITY_FIELD, compute_identity, generate_local_id
from .commands import VALIDATION_TIMEOUT, run_validation_command
from .safety import NEVER_MODE_VIOLATION, SafetyController
from .storage.validation import coerce_record, validation_errors
from .types import (
    GEP_SCHEMA_VERSION,
    OUTCOME_PARTIAL,
    OUTCOME_SUCCESS,
    RECORD_TYPES,
    BlastRadius,
    Capsule,
    CommandResult,
    EvolutionEvent,
    FailedCapsule,
    Gene,
    GepObjectCheck,
    Outcome,
    SolidifyResult,
)
from .utils import utc_now

logger = logging.getLogger(__name__)

MAX_FILES_HARD_LIMIT = 60
MAX_LINES_HARD_LIMIT = 20000

DEFAULT_PERSONALITY_STATE = {
    "rigor": 0.8,
    "creativity": 0.3,
    "verbosity": 0.5,
    "risk_tolerance": 0.2,
    "obedience": 0.9,
}

CommandRunner = Callable[..., CommandResult]


def _blast_radius(value: Union[None, BlastRadius, Dict[str, Any]]) -> BlastRadius:
    if isinstance(value, BlastRadius):
        return value
    return BlastRadius.from_dict(value)


def parse_gep_objects(text: str) -> List[Dict[str, Any]]:
    """Extract top-level JSON objects carrying a ``type`` from free text.

    Braces inside JSON strings are ignored; fragments that do not parse are
    skipped.
    """
    objects = []
    depth = 0
    start = None
    in_string = False
    escaped = False
    for i, ch in enumerate(text or ""):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and depth > 0:
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start is not None:
                try:
                    parsed = json.loads(text[start : i + 1])
                except json.JSONDecodeError:
                    parsed = None
                if isinstance(parsed, dict) and "type" in parsed:
                    objects.append(parsed)
                start = None
    return objects


def validate_gep_object(obj: Dict[str, Any]) -> GepObjectCheck:
    """Check one parsed GEP object before it is trusted as a record.

    Errors: unsupported ``type``, schema violations, and an ``asset_id``
    that does not match the object's content. Warnings flag fields a
    well-formed record should carry but may omit.
    """
    record_type = obj.get("type")
    check = GepObjectCheck(type=record_type, id=obj.get("id"))
    cls = RECORD_TYPES.get(record_type) if isinstance(record_type, str) else None
    if cls is None:
        check.errors.append(f"Unsupported GEP object type: {record_type!r}")
        return check

    check.errors.extend(validation_errors(obj, record_type))

    claimed = obj.get(IDENTITY_FIELD)
    if claimed is not None:
        computed = compute_identity(obj)
        if claimed != computed:
            check.errors.append(f"asset_id mismatch (claimed {claimed}, computed {computed})")
    elif record_type in ("Gene", "Capsule"):
        check.warnings.append(f"{record_type} has no asset_id for content-addressable storage")

    if check.errors:
        return check

    if record_type == "Gene" and "constraints" not in obj:
        check.warnings.append("Gene has no constraints")
    elif record_type == "Capsule" and "outcome" not in obj:
        check.warnings.append("Capsule has no outcome")
    elif record_type == "EvolutionEvent":
        blast = BlastRadius.from_dict(obj.get("blast_radius"))
        if blast.files > MAX_FILES_HARD_LIMIT:
            check.warnings.append(
                f"blast_radius.files exceeds recommended limit of {MAX_FILES_HARD_LIMIT}"
            )
        if blast.lines > MAX_LINES_HARD_LIMIT:
            check.warnings.append(
                f"blast_radius.lines exceeds recommended limit of {MAX_LINES_HARD_LIMIT}"
            )

    check.record = cls.from_dict(obj)
    return check


def validate_gep_objects(text: str) -> List[GepObjectCheck]:
    """Parse and check every GEP object embedded in ``text``, in order."""
    return [validate_gep_object(obj) for obj in parse_gep_objects(text)]


class SolidifyEngine:
    """Checks limits, runs validation commands and commits outcomes to the store.

    Args:
        store: The SQLiteStore to write through.
        safety: Self-modification policy; defaults to ``always`` mode.
        command_runner: Runs one validation command, ``(cmd, timeout=...)``.
        env_fingerprint: Returns an opaque environment snapshot embedded in
            events and capsules.
        rng: Random source for id suffixes.
        clock: Returns the current unix time.
    """

    def __init__(
        self,
        store,
        *,
        safety: Optional[SafetyController] = None,
        command_runner: CommandRunner = run_validation_command,
        env_fingerprint: Optional[Callable[[], Dict[str, Any]]] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        validation_timeout: float = VALIDATION_TIMEOUT,
    ):
        self.store = store
        self.safety = safety or SafetyController()
        self.command_runner = command_runner
        self.env_fingerprint = env_fingerprint
        self.rng = rng or random.Random()
        self.clock = clock
        self.validation_timeout = validation_timeout

    def _check_limits(
        self,
        blast: BlastRadius,
        gene: Optional[Gene],
        dry_run: bool,
        modified_files: Sequence[str],
        mutation: Optional[Dict[str, Any]],
    ) -> List[str]:
        violations = []
        if not dry_run and not self.safety.self_modify_allowed:
            violations.append(NEVER_MODE_VIOLATION)
        if blast.files > MAX_FILES_HARD_LIMIT:
            violations.append(
                f"blast_radius.files ({blast.files}) exceeds hard limit ({MAX_FILES_HARD_LIMIT})"
            )
        if blast.lines > MAX_LINES_HARD_LIMIT:
            violations.append(
                f"blast_radius.lines ({blast.lines}) exceeds hard limit ({MAX_LINES_HARD_LIMIT})"
            )
        if gene is not None and blast.files > gene.constraints.max_files:
            violations.append(
                f"blast_radius.files ({blast.files}) exceeds gene.constraints.max_files "
                f"({gene.constraints.max_files})"
            )
        violations.extend(self.safety.policy_violations(modified_files, gene, mutation))
        return violations

    def _run_validation(self, gene: Gene) -> Tuple[List[CommandResult], List[str]]:
        results, warnings = [], []
        for cmd in gene.validation:
            result = self.command_runner(cmd, timeout=self.validation_timeout)
            results.append(result)
            if not result.ok:
                warnings.append(f"Validation failed: {cmd} - {result.err}")
        return results, warnings

    def solidify(
        self,
        intent: str,
        summary: str,
        signals: Optional[Sequence[str]] = None,
        *,
        gene: Union[None, Gene, Dict[str, Any]] = None,
        capsule: Union[None, Capsule, Dict[str, Any]] = None,
        event: Optional[Dict[str, Any]] = None,
        blast_radius: Union[None, BlastRadius, Dict[str, Any]] = None,
        dry_run: bool = False,
        context: str = "",
        modified_files: Optional[Sequence[str]] = None,
        mutation: Optional[Dict[str, Any]] = None,
        personality_state: Optional[Dict[str, Any]] = None,
        mutations_tried: int = 1,
        total_cycles: int = 1,
    ) -> SolidifyResult:
        """Validate and record the outcome of applying a strategy.

        Args:
            intent: repair, optimize or innovate.
            summary: Human-readable description of the change.
            signals: Tags that triggered the cycle.
            gene: The gene that was applied.
            capsule: Optional capsule fields to record (id, content, outcome).
            event: Extra EvolutionEvent fields such as ``meta``.
            blast_radius: Declared ``{files, lines}`` of the change.
            dry_run: Validate and build records without running commands or writing.
            context: Stored as capsule content when non-empty.
            modified_files: Paths touched, checked against protected and forbidden paths.
            mutation: Mutation descriptor; ``risk_level`` is checked against the policy.

        Raises:
            MalformedRecordError: If ``gene`` fails validation.
        """
        signals = list(signals or [])
        blast = _blast_radius(blast_radius)
        files = list(modified_files or [])
        gene_record: Optional[Gene] = coerce_record(gene, "Gene") if gene is not None else None

        violations = self._check_limits(blast, gene_record, dry_run, files, mutation)
        if violations:
            logger.warning(f"Solidify rejected ({intent}): {'; '.join(violations)}")
            return SolidifyResult(ok=False, dry_run=dry_run, violations=violations)

        command_results: List[CommandResult] = []
        warnings: List[str] = []
        if gene_record is not None and gene_record.validation and not dry_run:
            command_results, warnings = self._run_validation(gene_record)

        now_iso = utc_now()
        ts = self.clock()
        event_id = generate_local_id("evt", rng=self.rng, now=ts)
        suffix = event_id.rsplit("_", 1)[-1]
        parent_id = self.store.get_last_event_id()
        env = self.env_fingerprint() if self.env_fingerprint else None
        clean = not warnings
        outcome = Outcome(
            status=OUTCOME_SUCCESS if clean else OUTCOME_PARTIAL, score=0.8 if clean else 0.5
        )
        gene_id = gene_record.id if gene_record else None

        extras = dict(event or {})
        extras.update(
            {
                "type": EvolutionEvent.record_type,
                "id": event_id,
                "parent": parent_id,
                "intent": intent,
                "signals": signals,
                "genes_used": [gene_id] if gene_id else [],
                "mutation_id": (mutation or {}).get("id") or f"mut_{int(ts)}_{suffix}",
                "personality_state": personality_state or dict(DEFAULT_PERSONALITY_STATE),
                "blast_radius": blast.to_dict(),
                "outcome": outcome.to_dict(),
                "env_fingerprint": env,
                "mutations_tried": mutations_tried,
                "total_cycles": total_cycles,
                "created_at": now_iso,
                "summary": summary,
                "schema_version": GEP_SCHEMA_VERSION,
            }
        )
        extras.pop("asset_id", None)
        evolution_event = EvolutionEvent.from_dict(extras)
        evolution_event.asset_id = compute_identity(evolution_event)

        gene_to_store = None
        if gene_record is not None:
            gene_to_store = dataclasses.replace(
                gene_record, schema_version=GEP_SCHEMA_VERSION, asset_id=None
            )
            gene_to_store.asset_id = compute_identity(gene_to_store)

        capsule_to_store = None
        if capsule is not None or (clean and intent != "repair"):
            capsule_to_store = self._build_capsule(
                capsule, gene_id, signals, summary, blast, outcome, env, context, now_iso, ts,
                suffix, clean,
            )

        if not dry_run:
            with self.store.transaction():
                evolution_event = self.store.append_event(evolution_event)
                if gene_to_store is not None:
                    gene_to_store = self.store.upsert_gene(gene_to_store)
                if capsule_to_store is not None:
                    capsule_to_store = self.store.upsert_capsule(capsule_to_store)

        logger.info(
            f"Solidified {evolution_event.id} intent={intent} status={outcome.status} "
            f"gene={gene_id} capsule={capsule_to_store.id if capsule_to_store else None} "
            f"dry_run={dry_run}"
        )
        return SolidifyResult(
            ok=True,
            dry_run=dry_run,
            warnings=warnings,
            event=evolution_event,
            gene=gene_to_store,
            capsule=capsule_to_store,
            command_results=command_results,
        )

    def _build_capsule(
        self, capsule, gene_id, signals, summary, blast, outcome, env, context, now_iso, ts,
        suffix, clean,
    ) -> Capsule:
        base: Dict[str, Any] = {}
        if isinstance(capsule, Capsule):
            base = capsule.to_dict()
        elif isinstance(capsule, dict):
            base = dict(capsule)

        streak = 0
        if gene_id:
            streak = self.store.compute_success_streak(gene_id) + (1 if clean else 0)

        data = dict(base)
        data.update(
            {
                "type": Capsule.record_type,
                "id": base.get("id") or f"capsule_{int(ts)}_{suffix}",
                "trigger": signals,
                "gene": gene_id or base.get("gene") or "",
                "summary": summary,
                "confidence": 0.8 if clean else 0.5,
                "blast_radius": blast.to_dict(),
                "outcome": base.get("outcome") or outcome.to_dict(),
                "env_fingerprint": env,
                "success_streak": streak,
                "created_at": now_iso,
                "schema_version": GEP_SCHEMA_VERSION,
            }
        )
        if context:
            data["content"] = context
        data.pop("asset_id", None)
        built = Capsule.from_dict(data)
        built.asset_id = compute_identity(built)
        return built

    def record_failure(
        self,
        gene: Union[Gene, Dict[str, Any], str, None],
        signals: Sequence[str],
        reason: str = "unknown",
        diff_snapshot: Optional[str] = None,
    ) -> FailedCapsule:
        """Record an attempt that never reached a successful solidify."""
        if isinstance(gene, Gene):
            gene_id = gene.id
        elif isinstance(gene, dict):
            gene_id = str(gene.get("id") or "")
        else:
            gene_id = gene or ""

        failed = FailedCapsule(
            id=generate_local_id("failed", rng=self.rng, now=self.clock()),
            gene=gene_id,
            trigger=list(signals),
            failure_reason=reason,
            diff_snapshot=diff_snapshot or "",
            created_at=utc_now(),
        )
        stored = self.store.append_failed_capsule(failed)
        logger.info(f"Recorded failure {stored.id} for gene {gene_id or '-'}: {reason}")
        return stored
