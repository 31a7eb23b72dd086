"""Gene and capsule selection.

Genes are scored by how many of their ``signals_match`` patterns hit the
current tags. Selection is greedy by default; drift trades some
determinism for exploration by sampling among the top candidates. The
random source is injected so drift is reproducible under test.
"""

import logging
import math
import random
import re
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .types import (
    CATEGORIES,
    Capsule,
    FailedCapsule,
    Gene,
    GeneSelection,
    SelectionResult,
    SelectorDecision,
)

logger = logging.getLogger(__name__)

DISTILLED_PREFIX = "gene_distilled_"
DISTILLED_FACTOR = 0.8
DRIFT_ACTIVE_THRESHOLD = 0.15
DRIFT_FLOOR = 0.7
MAX_ALTERNATIVES = 4
BAN_THRESHOLD = 2
BAN_OVERLAP_MIN = 0.6


def _parse_regex(pattern: str) -> Optional[Tuple[str, int]]:
    """Split a ``/body/flags`` pattern into (body, re flags), or None if not regex-like."""
    if len(pattern) < 2 or not pattern.startswith("/"):
        return None
    last = pattern.rfind("/")
    if last <= 0:
        return None
    body, flag_text = pattern[1:last], pattern[last + 1 :]
    flags = 0
    if "i" in flag_text:
        flags |= re.IGNORECASE
    if "m" in flag_text:
        flags |= re.MULTILINE
    return body, flags


def match_pattern_to_signals(pattern: str, tags: Sequence[str]) -> bool:
    """True if the pattern hits any tag.

    ``/body/flags`` patterns are regular expressions (only ``i`` and ``m``
    flags are honored); anything else, or a regex that fails to compile,
    is a case-insensitive substring.
    """
    if not pattern or not tags:
        return False

    parsed = _parse_regex(pattern)
    if parsed is not None:
        body, flags = parsed
        try:
            compiled = re.compile(body, flags)
        except re.error as e:
            logger.debug(f"Pattern {pattern!r} is not a valid regex, using substring match: {e}")
        else:
            return any(compiled.search(str(tag)) for tag in tags)

    needle = pattern.lower()
    return any(needle in str(tag).lower() for tag in tags)


def score_gene(gene: Gene, tags: Sequence[str]) -> int:
    """Number of the gene's patterns that hit the tags (0 for unknown categories)."""
    if gene.category not in CATEGORIES or not gene.signals_match:
        return 0
    return sum(1 for pattern in gene.signals_match if match_pattern_to_signals(pattern, tags))


def compute_drift_intensity(
    drift_enabled: bool, effective_population_size: Optional[float] = None
) -> float:
    ne = effective_population_size
    if drift_enabled:
        if ne is not None and ne > 1:
            return max(DRIFT_FLOOR, min(1.0, 1.0 / math.sqrt(ne) + 0.3))
        return DRIFT_FLOOR
    if ne is not None and ne > 0:
        return min(1.0, 1.0 / math.sqrt(ne))
    return 0.0


def compute_signal_overlap(tags_a: Sequence[str], tags_b: Sequence[str]) -> float:
    """Fraction of ``tags_a`` present in ``tags_b`` (case-insensitive exact match)."""
    if not tags_a or not tags_b:
        return 0.0
    set_b = {str(t).lower() for t in tags_b}
    hits = sum(1 for t in tags_a if str(t).lower() in set_b)
    return hits / len(tags_a)


class GeneSelector:
    """Scores and picks genes and capsules for a tag set."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def select_gene(
        self,
        genes: Iterable[Gene],
        tags: Sequence[str],
        *,
        banned_ids: Optional[Iterable[str]] = None,
        preferred_id: Optional[str] = None,
        drift_enabled: bool = False,
        effective_population_size: Optional[float] = None,
    ) -> GeneSelection:
        banned = set(banned_ids or ())
        drift = compute_drift_intensity(drift_enabled, effective_population_size)
        use_drift = drift_enabled or drift > DRIFT_ACTIVE_THRESHOLD

        scored: List[Tuple[Gene, float]] = []
        for gene in genes:
            score = score_gene(gene, tags)
            if score <= 0:
                continue
            weighted = score * DISTILLED_FACTOR if gene.id.startswith(DISTILLED_PREFIX) else score
            scored.append((gene, float(weighted)))

        if not scored:
            return GeneSelection(selected=None, alternatives=[], drift_intensity=drift)

        # sorted() is stable, so ties keep the caller's order
        scored.sort(key=lambda item: item[1], reverse=True)

        if preferred_id is not None:
            for index, (gene, _) in enumerate(scored):
                if gene.id != preferred_id:
                    continue
                if use_drift or gene.id not in banned:
                    rest = [g for i, (g, _) in enumerate(scored) if i != index]
                    if not use_drift:
                        rest = [g for g in rest if g.id not in banned]
                    return GeneSelection(
                        selected=gene, alternatives=rest[:MAX_ALTERNATIVES], drift_intensity=drift
                    )
                break

        candidates = [g for g, _ in scored]
        if not use_drift:
            candidates = [g for g in candidates if g.id not in banned]

        if not candidates:
            logger.debug(f"All {len(scored)} matching genes are banned")
            return GeneSelection(
                selected=None,
                alternatives=[g for g, _ in scored][:MAX_ALTERNATIVES],
                drift_intensity=drift,
            )

        selected_index = 0
        if drift > 0 and len(candidates) > 1 and self.rng.random() < drift:
            top_n = max(2, math.ceil(len(candidates) * drift))
            top_n = min(top_n, len(candidates))
            selected_index = self.rng.randrange(top_n)
            logger.debug(f"Drift picked rank {selected_index} of top {top_n}")

        alternatives = [g for i, g in enumerate(candidates) if i != selected_index]
        return GeneSelection(
            selected=candidates[selected_index],
            alternatives=alternatives[:MAX_ALTERNATIVES],
            drift_intensity=drift,
        )

    def select_capsule(self, capsules: Iterable[Capsule], tags: Sequence[str]) -> Optional[Capsule]:
        """Best capsule by number of matching triggers; ties keep input order."""
        best: Optional[Capsule] = None
        best_score = 0
        for capsule in capsules:
            score = sum(1 for t in capsule.trigger if match_pattern_to_signals(t, tags))
            if score > best_score:
                best, best_score = capsule, score
        return best

    def ban_genes_from_failed_capsules(
        self,
        failed: Iterable[FailedCapsule],
        tags: Sequence[str],
        existing_bans: Optional[Iterable[str]] = None,
    ) -> Set[str]:
        """Ban genes with repeated failures under near-identical tags."""
        bans = set(existing_bans or ())
        fail_counts: Dict[str, int] = {}
        for fc in failed:
            if not fc.gene:
                continue
            if compute_signal_overlap(tags, fc.trigger) < BAN_OVERLAP_MIN:
                continue
            fail_counts[fc.gene] = fail_counts.get(fc.gene, 0) + 1

        for gene_id, count in fail_counts.items():
            if count >= BAN_THRESHOLD and gene_id not in bans:
                logger.info(f"Banning gene {gene_id} after {count} similar failures")
                bans.add(gene_id)
        return bans

    def select_gene_and_capsule(
        self,
        genes: Sequence[Gene],
        capsules: Sequence[Capsule],
        tags: Sequence[str],
        *,
        failed_capsules: Sequence[FailedCapsule] = (),
        banned_ids: Optional[Iterable[str]] = None,
        preferred_id: Optional[str] = None,
        drift_enabled: bool = False,
        effective_population_size: Optional[float] = None,
    ) -> SelectionResult:
        bans = self.ban_genes_from_failed_capsules(failed_capsules, tags, banned_ids)
        gene_result = self.select_gene(
            genes,
            tags,
            banned_ids=bans,
            preferred_id=preferred_id,
            drift_enabled=drift_enabled,
            effective_population_size=effective_population_size,
        )
        capsule = self.select_capsule(capsules, tags)
        decision = build_selector_decision(
            gene_result.selected,
            capsule,
            tags,
            gene_result.alternatives,
            drift_enabled=drift_enabled,
            drift_intensity=gene_result.drift_intensity,
        )
        return SelectionResult(
            selected_gene=gene_result.selected,
            selected_capsule=capsule,
            alternatives=gene_result.alternatives,
            drift_intensity=gene_result.drift_intensity,
            banned_gene_ids=bans,
            decision=decision,
        )


def build_selector_decision(
    gene: Optional[Gene],
    capsule: Optional[Capsule],
    tags: Sequence[str],
    alternatives: Sequence[Gene] = (),
    *,
    drift_enabled: bool = False,
    drift_intensity: float = 0.0,
) -> SelectorDecision:
    """Human-readable record of why a gene was (or was not) chosen."""
    reason = []
    if gene:
        reason.append("signals match gene.signals_match")
    if capsule:
        reason.append("capsule trigger matches signals")
    if not gene:
        reason.append("no matching gene found; new gene may be required")
    if tags:
        reason.append("signals: " + ", ".join(tags))
    if drift_enabled:
        reason.append("random_drift_override: true")
    if drift_intensity > 0:
        reason.append(f"drift_intensity: {drift_intensity:.3f}")
    return SelectorDecision(
        selected=gene.id if gene else None,
        reason=reason,
        alternatives=[g.id for g in alternatives],
    )
