"""GDI (Genome Distribution Index) quality scoring for genes and capsules.

GDI is a 0.0-1.0 quality score; higher means a more trustworthy asset.
"""

from typing import Dict, List, Optional, Sequence

from .types import OUTCOME_SUCCESS, Capsule, Gene

WEIGHT_OUTCOME = 0.4
WEIGHT_CONFIDENCE = 0.3
WEIGHT_STREAK_MAX = 0.15
WEIGHT_PRECISION = 0.1
WEIGHT_CONTENT = 0.05

GDI_CATEGORIES = (
    (0.8, "excellent"),
    (0.6, "good"),
    (0.4, "average"),
    (0.2, "poor"),
)


def compute_capsule_gdi(capsule: Capsule) -> float:
    score = capsule.outcome.score * WEIGHT_OUTCOME
    score += capsule.confidence * WEIGHT_CONFIDENCE
    score += min(capsule.success_streak * 0.05, WEIGHT_STREAK_MAX)
    if capsule.blast_radius.files <= 5 and capsule.blast_radius.lines <= 100:
        score += WEIGHT_PRECISION
    if capsule.content:
        score += WEIGHT_CONTENT
    return min(score, 1.0)


def _success_rate(capsules: Sequence[Capsule]) -> float:
    if not capsules:
        return 0.5
    wins = sum(1 for c in capsules if c.outcome.status == OUTCOME_SUCCESS)
    return wins / len(capsules)


def _average_streak(capsules: Sequence[Capsule]) -> float:
    if not capsules:
        return 0.0
    return sum(c.success_streak for c in capsules) / len(capsules)


def compute_gene_gdi(
    gene: Gene, capsules: Sequence[Capsule] = (), usage_count: Optional[int] = None
) -> float:
    """Score a gene from its capsules' track record.

    ``usage_count`` defaults to the number of capsules.
    """
    usage = len(capsules) if usage_count is None else usage_count
    score = min(usage * 0.02, 0.3)
    score += _success_rate(capsules) * 0.4
    score += min(_average_streak(capsules) * 0.05, 0.2)
    if gene.constraints.max_files:
        score += 0.1
    return min(score, 1.0)


def gdi_category(gdi: float) -> str:
    for threshold, name in GDI_CATEGORIES:
        if gdi >= threshold:
            return name
    return "very_poor"


def sort_capsules_by_gdi(capsules: Sequence[Capsule], descending: bool = True) -> List[Capsule]:
    return sorted(capsules, key=compute_capsule_gdi, reverse=descending)


def sort_genes_by_gdi(
    genes: Sequence[Gene],
    capsules_by_gene: Optional[Dict[str, List[Capsule]]] = None,
    descending: bool = True,
) -> List[Gene]:
    capsules_by_gene = capsules_by_gene or {}
    return sorted(
        genes,
        key=lambda g: compute_gene_gdi(g, capsules_by_gene.get(g.id, [])),
        reverse=descending,
    )


def filter_capsules_by_min_gdi(capsules: Sequence[Capsule], min_gdi: float) -> List[Capsule]:
    return [c for c in capsules if compute_capsule_gdi(c) >= min_gdi]


def top_capsules(capsules: Sequence[Capsule], limit: int = 10) -> List[Capsule]:
    return sort_capsules_by_gdi(capsules)[:limit]


def group_capsules_by_gene(capsules: Sequence[Capsule]) -> Dict[str, List[Capsule]]:
    grouped: Dict[str, List[Capsule]] = {}
    for capsule in capsules:
        grouped.setdefault(capsule.gene, []).append(capsule)
    return grouped


def gdi_stats(capsules: Sequence[Capsule]) -> Dict[str, object]:
    """Count, mean, min, max and per-category distribution of capsule GDI."""
    if not capsules:
        return {"count": 0, "average": 0.0, "min": 0.0, "max": 0.0, "distribution": {}}

    scores = [compute_capsule_gdi(c) for c in capsules]
    distribution = {name: 0 for _, name in GDI_CATEGORIES}
    distribution["very_poor"] = 0
    for s in scores:
        distribution[gdi_category(s)] += 1
    return {
        "count": len(scores),
        "average": sum(scores) / len(scores),
        "min": min(scores),
        "max": max(scores),
        "distribution": distribution,
    }
