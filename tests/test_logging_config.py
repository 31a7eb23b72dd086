"""Tests for evolver.logging_config module."""

import logging

import pytest

from evolver.logging_config import (
    log_evolution_event,
    log_failure,
    log_selection,
    log_solidify,
    setup_evolver_logging,
)


@pytest.fixture(autouse=True)
def clean_evolver_logger():
    """Remove all handlers from the evolver logger before/after each test."""
    logger = logging.getLogger("evolver")
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
    yield
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)


@pytest.fixture
def log_dir(isolated_data_dir):
    return isolated_data_dir / "logs"


def _events_text(log_dir):
    files = list(log_dir.glob("evolution-events-*.log"))
    assert len(files) == 1
    return files[0].read_text()


class TestSetupEvolverLogging:
    """Tests for setup_evolver_logging."""

    def test_returns_logger(self, log_dir):
        logger = setup_evolver_logging()
        assert isinstance(logger, logging.Logger)
        assert logger.name == "evolver"

    def test_creates_log_directory(self, log_dir):
        assert not log_dir.exists()
        setup_evolver_logging()
        assert log_dir.exists()

    def test_log_file_named_with_date(self, log_dir):
        setup_evolver_logging()
        log_files = list(log_dir.glob("local-*.log"))
        assert len(log_files) == 1

    def test_levels(self, log_dir):
        assert setup_evolver_logging().level == logging.INFO
        assert setup_evolver_logging("warning").level == logging.WARNING

    def test_invalid_level_falls_back_to_info(self, log_dir):
        assert setup_evolver_logging("INVALID").level == logging.INFO

    def test_debug_adds_console_handler(self, log_dir):
        logger = setup_evolver_logging("DEBUG")
        stream_handlers = [
            h
            for h in logger.handlers
            if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        ]
        assert len(stream_handlers) == 1

    def test_info_no_console_handler(self, log_dir):
        logger = setup_evolver_logging("INFO")
        assert all(isinstance(h, logging.FileHandler) for h in logger.handlers)

    def test_no_duplicate_handlers(self, log_dir):
        logger1 = setup_evolver_logging()
        logger2 = setup_evolver_logging()
        assert logger1 is logger2
        file_handlers = [h for h in logger1.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1

    def test_explicit_log_dir(self, log_dir, tmp_path):
        target = tmp_path / "elsewhere"
        setup_evolver_logging(log_dir=target)
        assert list(target.glob("local-*.log"))
        assert not log_dir.exists()

    def test_new_log_dir_adds_handler(self, log_dir, tmp_path):
        setup_evolver_logging()
        logger = setup_evolver_logging(log_dir=tmp_path / "second")
        file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 2

    def test_writes_module_logs_to_file(self, log_dir):
        setup_evolver_logging("INFO")
        logging.getLogger("evolver.selector").info("selector message from unit test")
        for handler in logging.getLogger("evolver").handlers:
            handler.flush()
        content = list(log_dir.glob("local-*.log"))[0].read_text()
        assert "selector message from unit test" in content
        assert "| INFO | evolver.selector |" in content


class TestEvolutionEventLog:
    def test_line_format(self, log_dir):
        log_evolution_event("custom", "key=value", node_id="node_1")
        line = _events_text(log_dir).strip()
        parts = line.split(" | ")
        assert parts[1:] == ["custom", "node=node_1", "key=value"]

    def test_appends(self, log_dir):
        log_evolution_event("a", "one")
        log_evolution_event("b", "two")
        assert len(_events_text(log_dir).splitlines()) == 2

    def test_log_selection(self, log_dir):
        log_selection("n1", ["log_error", "errsig:x"], "gene_a", None, 0.7)
        assert "select | node=n1 | tags=2, gene=gene_a, capsule=none, drift=0.700" in _events_text(
            log_dir
        )

    def test_log_solidify(self, log_dir):
        log_solidify("n1", "evt_1", "repair", "success", dry_run=True)
        assert "event=evt_1, intent=repair, status=success, dry_run=True" in _events_text(log_dir)

    def test_log_failure_truncates_reason(self, log_dir):
        log_failure("n1", "gene_a", "x" * 200)
        text = _events_text(log_dir)
        assert "gene=gene_a, reason=" + "x" * 77 + "..." in text
        assert "x" * 78 not in text

    def test_explicit_audit_log_dir(self, log_dir, tmp_path):
        target = tmp_path / "audit"
        log_failure("n1", "gene_a", "flaky", log_dir=target)
        files = list(target.glob("evolution-events-*.log"))
        assert len(files) == 1
        assert "failure | node=n1 | gene=gene_a, reason=flaky" in files[0].read_text()
        assert not log_dir.exists()
