"""
Pytest fixtures and test configuration for Evolver tests.
"""

import random
from typing import Dict, List, Optional

import pytest

from evolver.config import EvolverSettings, get_settings
from evolver.core import Evolver
from evolver.storage import SQLiteStore
from evolver.types import BlastRadius, CommandResult, EvolutionEvent, Gene, GeneConstraints, Outcome


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path, monkeypatch):
    """Keep databases and log files out of the real home directory."""
    data_dir = tmp_path / "evolver-home"
    monkeypatch.setenv("EVOLVER_DATA_DIR", str(data_dir))
    monkeypatch.delenv("EVOLVE_ALLOW_SELF_MODIFY", raising=False)
    monkeypatch.delenv("EVOLVER_ALLOW_SELF_MODIFY", raising=False)
    get_settings.cache_clear()
    yield data_dir
    get_settings.cache_clear()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def store():
    """In-memory store seeded with the built-in genes."""
    s = SQLiteStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def empty_store():
    s = SQLiteStore(":memory:", seed_genes=False)
    yield s
    s.close()


class FakeRunner:
    """Stands in for run_validation_command; records every call."""

    def __init__(self, failures: Optional[Dict[str, str]] = None):
        self.failures = failures or {}
        self.calls: List[str] = []

    def __call__(self, cmd: str, timeout: float = 60.0, cwd: Optional[str] = None) -> CommandResult:
        self.calls.append(cmd)
        if cmd in self.failures:
            return CommandResult(command=cmd, ok=False, err=self.failures[cmd], exit_code=1)
        return CommandResult(command=cmd, ok=True, out="ok", exit_code=0)


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def settings():
    return EvolverSettings(db_path=":memory:", allow_self_modify="always")


@pytest.fixture
def evolver(settings, runner):
    evo = Evolver(settings=settings, rng=random.Random(7), command_runner=runner)
    yield evo
    evo.close()


@pytest.fixture
def make_gene():
    def _make(
        gene_id: str = "gene_test",
        category: str = "repair",
        signals_match=None,
        max_files: int = 25,
        forbidden_paths=None,
        validation=None,
    ) -> Gene:
        return Gene(
            id=gene_id,
            category=category,
            signals_match=list(signals_match if signals_match is not None else ["error"]),
            strategy=["Do the thing"],
            constraints=GeneConstraints(max_files=max_files, forbidden_paths=forbidden_paths or []),
            validation=list(validation or []),
        )

    return _make


@pytest.fixture
def make_event():
    """Build an EvolutionEvent with sensible defaults for history tests."""
    counter = {"n": 0}

    def _make(
        intent: str = "repair",
        signals=None,
        files: int = 1,
        lines: int = 10,
        status: str = "success",
        genes_used=None,
        event_id: Optional[str] = None,
    ) -> EvolutionEvent:
        counter["n"] += 1
        return EvolutionEvent(
            id=event_id or f"evt_test_{counter['n']:04d}",
            intent=intent,
            signals=list(signals or []),
            genes_used=list(genes_used or []),
            blast_radius=BlastRadius(files=files, lines=lines),
            outcome=Outcome(status=status, score=0.8 if status == "success" else 0.2),
        )

    return _make
