"""Tests for the self-modification policy and source protection."""

import pytest

from evolver.safety import (
    NEVER_MODE_VIOLATION,
    SafetyController,
    SourceProtector,
    match_forbidden_paths,
)
from evolver.types import Gene, GeneConstraints


@pytest.fixture
def protector(tmp_path):
    return SourceProtector(str(tmp_path))


class TestSourceProtector:
    def test_default_protected_files(self, protector):
        assert protector.is_protected("evolver/canonical.py")
        assert protector.is_protected("pyproject.toml")
        assert not protector.is_protected("evolver/selector.py")

    def test_patterns(self, protector):
        assert protector.is_protected("evolver/storage/sqlite.py")
        assert protector.is_protected(".git/config")
        assert protector.is_protected("lib/python3.12/site-packages/jsonschema/__init__.py")

    def test_dot_prefixed_paths_normalized(self, protector):
        assert protector.is_protected("./evolver/safety.py")
        assert protector.is_protected(".git/HEAD")

    def test_absolute_paths_inside_root(self, protector, tmp_path):
        assert protector.is_protected(str(tmp_path / "evolver" / "commands.py"))

    def test_extra_paths(self, tmp_path):
        protector = SourceProtector(str(tmp_path), extra_paths=["config/prod.yaml"])
        assert protector.is_protected("config/prod.yaml")
        assert protector.protected_files(["a.py", "config/prod.yaml"]) == ["config/prod.yaml"]

    def test_report(self, protector, tmp_path):
        report = protector.report()
        assert report["project_root"] == str(tmp_path.resolve())
        assert "evolver/safety.py" in report["protected_paths"]


class TestMatchForbiddenPaths:
    def test_prefix(self):
        assert match_forbidden_paths(["node_modules/x/index.js", "src/a.py"], ["node_modules"]) == [
            "node_modules/x/index.js"
        ]

    def test_trailing_slash_and_exact(self):
        assert match_forbidden_paths(["secrets"], ["secrets/"]) == ["secrets"]

    def test_glob(self):
        assert match_forbidden_paths(["build/a.min.js"], ["*.min.js"]) == ["build/a.min.js"]

    def test_similar_prefix_not_matched(self):
        assert match_forbidden_paths(["secrets_backup/a"], ["secrets"]) == []


class TestSafetyController:
    def test_default_mode_is_always(self, protector):
        controller = SafetyController(protector=protector)
        assert controller.mode == "always"
        assert controller.self_modify_allowed
        assert not controller.review_required

    def test_invalid_mode_falls_back_to_always(self, protector):
        assert SafetyController("sometimes", protector).mode == "always"

    def test_mode_normalized(self, protector):
        assert SafetyController(" Review ", protector).mode == "review"

    @pytest.mark.parametrize(
        "mode,expected",
        [
            ("never", {"read": True, "diagnose": True, "propose": False, "modify": False}),
            ("review", {"read": True, "diagnose": True, "propose": True, "modify": False}),
            ("always", {"read": True, "diagnose": True, "propose": True, "modify": True}),
        ],
    )
    def test_operations(self, protector, mode, expected):
        controller = SafetyController(mode, protector)
        assert {op: controller.is_operation_allowed(op) for op in expected} == expected
        assert not controller.is_operation_allowed("delete_everything")

    def test_never_mode_rejects_everything(self, protector):
        assert SafetyController("never", protector).validate_modification(["a.py"]) == [
            NEVER_MODE_VIOLATION
        ]

    def test_clean_modification(self, protector):
        assert SafetyController("always", protector).validate_modification(["src/a.py"], 10) == []

    def test_line_limit(self, protector):
        violations = SafetyController("always", protector).validate_modification(["a.py"], 20001)
        assert violations == ["Blast radius exceeds 20000 lines limit"]

    def test_gene_file_limit_and_forbidden(self, protector):
        gene = Gene(
            id="g1",
            category="repair",
            constraints=GeneConstraints(max_files=1, forbidden_paths=["vendor"]),
        )
        violations = SafetyController("always", protector).validate_modification(
            ["src/a.py", "vendor/lib.py"], gene=gene
        )
        assert "File count (2) exceeds gene constraint (1)" in violations
        assert "Forbidden paths for gene g1: vendor/lib.py" in violations

    def test_protected_file(self, protector):
        violations = SafetyController("always", protector).validate_modification(
            ["evolver/safety.py"]
        )
        assert violations == ["Protected files: evolver/safety.py"]

    def test_high_risk_mutation(self, protector):
        mutation = {"risk_level": "high"}
        assert SafetyController("review", protector).policy_violations(mutation=mutation)
        assert SafetyController("always", protector).policy_violations(mutation=mutation) == []

    def test_status_report(self, protector):
        report = SafetyController("review", protector).status_report()
        assert report["mode"] == "review"
        assert report["review_required"] is True
        assert report["operations"]["modify"] is False
        assert "protected_paths" in report["source_protection"]
