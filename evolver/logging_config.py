"""Local logging for Evolver.

Writes operational logs to ``<data_dir>/logs/local-<date>.log`` and a
separate, line-oriented audit trail of evolution cycles to
``<data_dir>/logs/evolution-events-<date>.log``. Every entry point takes an
optional ``log_dir``; without one the logs go under the Evolver home
directory.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Union

from .utils import get_evolver_home

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

PathLike = Union[str, Path]


def _log_dir(log_dir: Optional[PathLike] = None) -> Path:
    path = Path(log_dir) if log_dir is not None else get_evolver_home() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def setup_evolver_logging(
    level: str = "INFO", log_dir: Optional[PathLike] = None
) -> logging.Logger:
    """Configure the ``evolver`` logger with a dated file handler.

    DEBUG also echoes to the console. Repeated calls reuse existing handlers
    for the same file. Unknown level names fall back to INFO.
    """
    logger = logging.getLogger("evolver")
    resolved = getattr(logging, str(level).upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logger.setLevel(resolved)

    log_file = Path(os.path.abspath(_log_dir(log_dir) / f"local-{_today()}.log"))
    formatter = logging.Formatter(LOG_FORMAT)

    has_file = any(
        isinstance(h, logging.FileHandler) and Path(h.baseFilename) == log_file
        for h in logger.handlers
    )
    if not has_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in logger.handlers
    )
    if resolved <= logging.DEBUG and not has_console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)

    return logger


def log_evolution_event(
    event_type: str,
    details: str,
    node_id: str = "default",
    log_dir: Optional[PathLike] = None,
) -> None:
    """Append one audit line: ``<ts> | <event_type> | node=<id> | <details>``."""
    path = _log_dir(log_dir) / f"evolution-events-{_today()}.log"
    timestamp = datetime.now(timezone.utc).isoformat()
    with open(path, "a", encoding="utf-8") as f:
        f.write(f"{timestamp} | {event_type} | node={node_id} | {details}\n")


def log_selection(
    node_id: str,
    tags: Iterable[str],
    gene_id: Optional[str],
    capsule_id: Optional[str] = None,
    drift: float = 0.0,
    log_dir: Optional[PathLike] = None,
) -> None:
    tag_list = list(tags)
    log_evolution_event(
        "select",
        f"tags={len(tag_list)}, gene={gene_id or 'none'}, "
        f"capsule={capsule_id or 'none'}, drift={drift:.3f}",
        node_id=node_id,
        log_dir=log_dir,
    )


def log_solidify(
    node_id: str,
    event_id: Optional[str],
    intent: str,
    status: str,
    dry_run: bool = False,
    log_dir: Optional[PathLike] = None,
) -> None:
    log_evolution_event(
        "solidify",
        f"event={event_id or 'none'}, intent={intent}, status={status}, dry_run={dry_run}",
        node_id=node_id,
        log_dir=log_dir,
    )


def log_failure(
    node_id: str, gene_id: str, reason: str, log_dir: Optional[PathLike] = None
) -> None:
    # Reasons can be long diagnostic strings
    short = reason if len(reason) <= 80 else reason[:77] + "..."
    log_evolution_event(
        "failure", f"gene={gene_id}, reason={short}", node_id=node_id, log_dir=log_dir
    )
