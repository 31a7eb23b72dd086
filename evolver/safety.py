"""Self-modification policy and source protection.

The policy mode comes from ``EVOLVE_ALLOW_SELF_MODIFY``:

- ``never``: diagnostics only, nothing is written
- ``review``: changes may be proposed but need a human to apply them
- ``always``: full automation (default)
"""

import fnmatch
import logging
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .config import SAFETY_MODES
from .types import Gene

logger = logging.getLogger(__name__)

MODE_NEVER = "never"
MODE_REVIEW = "review"
MODE_ALWAYS = "always"

MAX_LINES = 20000

NEVER_MODE_VIOLATION = "Self-modification is disabled (EVOLVE_ALLOW_SELF_MODIFY=never)"

DEFAULT_PROTECTED_PATHS = (
    "evolver/canonical.py",
    "evolver/safety.py",
    "evolver/commands.py",
    "pyproject.toml",
)

PROTECTED_PATTERNS = (
    "evolver/storage/*.py",
    ".git/*",
    ".venv/*",
    "*/site-packages/*",
)


class SourceProtector:
    """Checks file paths against protected paths and wildcard patterns."""

    def __init__(
        self,
        project_root: Optional[str] = None,
        extra_paths: Iterable[str] = (),
        patterns: Sequence[str] = PROTECTED_PATTERNS,
    ):
        self.project_root = Path(project_root or Path.cwd()).resolve()
        self.protected_paths: List[str] = list(DEFAULT_PROTECTED_PATHS)
        self.add_protected_paths(extra_paths)
        self.patterns = list(patterns)

    def _relative(self, path: str) -> str:
        p = Path(path)
        if p.is_absolute():
            try:
                p = p.resolve().relative_to(self.project_root)
            except ValueError:
                return p.as_posix()
        return PurePosixPath(*p.parts).as_posix() if p.parts else ""

    def add_protected_paths(self, paths: Iterable[str]) -> None:
        for path in paths:
            rel = self._relative(path)
            if rel and rel not in self.protected_paths:
                self.protected_paths.append(rel)

    def is_protected(self, path: str) -> bool:
        rel = self._relative(path)
        if rel in self.protected_paths:
            return True
        return any(fnmatch.fnmatch(rel, pattern) for pattern in self.patterns)

    def protected_files(self, files: Iterable[str]) -> List[str]:
        return [f for f in files if self.is_protected(f)]

    def report(self) -> Dict[str, Any]:
        return {
            "project_root": str(self.project_root),
            "protected_paths": list(self.protected_paths),
            "patterns": list(self.patterns),
        }


def match_forbidden_paths(files: Iterable[str], forbidden: Sequence[str]) -> List[str]:
    """Files that fall under any of a gene's ``forbidden_paths`` (prefix or glob)."""
    hits = []
    for f in files:
        rel = PurePosixPath(f).as_posix()
        for pattern in forbidden:
            prefix = pattern.rstrip("/")
            if fnmatch.fnmatch(rel, pattern) or rel == prefix or rel.startswith(prefix + "/"):
                hits.append(f)
                break
    return hits


class SafetyController:
    def __init__(self, mode: Optional[str] = None, protector: Optional[SourceProtector] = None):
        resolved = (mode or MODE_ALWAYS).strip().lower()
        if resolved not in SAFETY_MODES:
            logger.warning(f"Unknown self-modify mode {mode!r}, using {MODE_ALWAYS}")
            resolved = MODE_ALWAYS
        self.mode = resolved
        self.protector = protector or SourceProtector()

    @property
    def self_modify_allowed(self) -> bool:
        return self.mode != MODE_NEVER

    @property
    def review_required(self) -> bool:
        return self.mode == MODE_REVIEW

    def is_operation_allowed(self, operation: str) -> bool:
        """``read``/``diagnose`` always; ``propose`` unless never; ``modify`` only in always."""
        if operation in ("read", "diagnose"):
            return True
        if operation == "propose":
            return self.mode != MODE_NEVER
        if operation == "modify":
            return self.mode == MODE_ALWAYS
        return False

    def validate_modification(
        self,
        files: Sequence[str] = (),
        lines: int = 0,
        gene: Optional[Gene] = None,
        mutation: Optional[Dict[str, Any]] = None,
    ) -> List[str]:
        """Return policy violations for a proposed change (empty when allowed)."""
        if self.mode == MODE_NEVER:
            return [NEVER_MODE_VIOLATION]

        violations = []
        if lines > MAX_LINES:
            violations.append(f"Blast radius exceeds {MAX_LINES} lines limit")
        if gene is not None and len(files) > gene.constraints.max_files:
            violations.append(
                f"File count ({len(files)}) exceeds gene constraint ({gene.constraints.max_files})"
            )
        violations.extend(self.policy_violations(files, gene, mutation))
        return violations

    def policy_violations(
        self,
        files: Sequence[str] = (),
        gene: Optional[Gene] = None,
        mutation: Optional[Dict[str, Any]] = None,
    ) -> List[str]:
        """Path protection and mutation-risk checks, independent of size limits."""
        violations = []
        protected = self.protector.protected_files(files)
        if protected:
            violations.append("Protected files: " + ", ".join(protected))

        if gene is not None:
            forbidden = match_forbidden_paths(files, gene.constraints.forbidden_paths)
            if forbidden:
                violations.append(f"Forbidden paths for gene {gene.id}: " + ", ".join(forbidden))

        if mutation and mutation.get("risk_level") == "high" and self.mode != MODE_ALWAYS:
            violations.append("High-risk mutations require always mode or manual review")

        return violations

    def status_report(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "self_modify_allowed": self.self_modify_allowed,
            "review_required": self.review_required,
            "source_protection": self.protector.report(),
            "operations": {
                op: self.is_operation_allowed(op) for op in ("read", "diagnose", "propose", "modify")
            },
        }
