"""Built-in genes loaded into an empty store."""

import logging
from typing import Callable, List

from ..types import GEP_SCHEMA_VERSION, Gene, GeneConstraints

logger = logging.getLogger(__name__)


def default_genes() -> List[Gene]:
    return [
        Gene(
            id="gene_gep_repair_from_errors",
            category="repair",
            signals_match=["error", "exception", "failed", "unstable"],
            strategy=[
                "Extract the error signature and locate the failing code path",
                "Reproduce the failure with the smallest possible input",
                "Apply the narrowest fix that removes the root cause",
                "Re-run validation and record the outcome",
            ],
            constraints=GeneConstraints(max_files=20, forbidden_paths=[".git", "node_modules"]),
            summary="Repair recurring errors seen in logs",
            schema_version=GEP_SCHEMA_VERSION,
        ),
        Gene(
            id="gene_gep_optimize_prompt_and_assets",
            category="optimize",
            signals_match=["protocol", "gep", "prompt", "audit", "reusable"],
            strategy=[
                "Audit the prompt and asset pipeline for protocol drift",
                "Consolidate duplicated instructions into reusable assets",
                "Keep EvolutionEvent output compliant with the protocol",
            ],
            constraints=GeneConstraints(max_files=20, forbidden_paths=[".git", "node_modules"]),
            summary="Tighten prompt assembly and reusable assets",
            schema_version=GEP_SCHEMA_VERSION,
        ),
        Gene(
            id="gene_gep_innovate_from_opportunity",
            category="innovate",
            signals_match=[
                "user_feature_request",
                "user_improvement_suggestion",
                "perf_bottleneck",
                "capability_gap",
                "stable_success_plateau",
                "external_opportunity",
                "force_innovation",
            ],
            strategy=[
                "Identify the capability the opportunity signal points at",
                "Design the smallest addition that delivers it",
                "Implement behind existing interfaces and validate",
            ],
            constraints=GeneConstraints(max_files=25, forbidden_paths=[".git", "node_modules"]),
            summary="Turn opportunity signals into new capabilities",
            schema_version=GEP_SCHEMA_VERSION,
        ),
    ]


def seed_default_genes(count_fn: Callable[[], int], upsert_fn: Callable[[Gene], Gene]) -> int:
    """Load the built-in genes if the store has none. Returns how many were added."""
    if count_fn() > 0:
        return 0
    genes = default_genes()
    for gene in genes:
        upsert_fn(gene)
    logger.info(f"Seeded {len(genes)} default genes")
    return len(genes)
