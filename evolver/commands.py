"""Allow-listed execution of gene validation commands.

This is a syntactic allow-list, not a sandbox: a permitted command still
runs the named program in the ambient process environment.
"""

import logging
import re
import shlex
import subprocess
from typing import Optional

from .errors import CommandNotAllowedError
from .types import CommandResult

logger = logging.getLogger(__name__)

ALLOWED_COMMAND_PREFIXES = (
    "php",
    "composer",
    "phpunit",
    "phpcs",
    "phpstan",
    "pytest",
)

FORBIDDEN_SHELL_OPERATORS = (";", "&&", "||", "|", ">", "<", "`", "$(")

VALIDATION_TIMEOUT = 60.0

_QUOTED = re.compile(r"\"[^\"]*\"|'[^']*'")


def is_command_allowed(cmd: str) -> bool:
    """Check a command string against the program allow-list and shell-operator rules."""
    cmd = (cmd or "").strip()
    if not any(cmd == p or cmd.startswith(p + " ") for p in ALLOWED_COMMAND_PREFIXES):
        return False

    # Substitution is rejected even inside quotes
    if "`" in cmd or "$(" in cmd:
        return False

    stripped = _QUOTED.sub("", cmd)
    return not any(op in stripped for op in FORBIDDEN_SHELL_OPERATORS)


def ensure_command_allowed(cmd: str) -> None:
    """Raise CommandNotAllowedError unless the command passes the allow-list."""
    if not is_command_allowed(cmd):
        raise CommandNotAllowedError(cmd)


def run_validation_command(
    cmd: str, timeout: float = VALIDATION_TIMEOUT, cwd: Optional[str] = None
) -> CommandResult:
    """Run an allowed command without a shell, stdin closed, output captured.

    Never raises for command failures: a disallowed command, a missing
    program, a non-zero exit and a timeout all come back as ``ok=False``.
    """
    try:
        ensure_command_allowed(cmd)
    except CommandNotAllowedError as e:
        logger.warning(f"Rejected validation command: {e.command!r}")
        return CommandResult(command=cmd, ok=False, err="Command not allowed by safety policy")

    try:
        argv = shlex.split(cmd)
    except ValueError as e:
        return CommandResult(command=cmd, ok=False, err=f"Unparseable command: {e}")

    try:
        proc = subprocess.run(
            argv,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        logger.warning(f"Validation command timed out after {timeout}s: {cmd}")
        out = e.stdout.decode(errors="replace") if isinstance(e.stdout, bytes) else (e.stdout or "")
        return CommandResult(
            command=cmd, ok=False, out=out, err=f"Timed out after {timeout}s", timed_out=True
        )
    except OSError as e:
        logger.warning(f"Validation command failed to start: {cmd}: {e}")
        return CommandResult(command=cmd, ok=False, err=f"Failed to start process: {e}")

    ok = proc.returncode == 0
    if not ok:
        logger.info(f"Validation command exited {proc.returncode}: {cmd}")
    return CommandResult(
        command=cmd, ok=ok, out=proc.stdout, err=proc.stderr, exit_code=proc.returncode
    )
