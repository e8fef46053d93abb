"""
External command execution.

Runs short-lived tools (dependency installs, version checks) to completion with
captured output and a timeout. Callers on the event loop should dispatch these
through an executor; run_command itself blocks.
"""

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .errors import UpstreamToolError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of a finished command."""

    command: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        """Combined output, stderr last, for error reports."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


def run_command(command, cwd: Path = None, timeout: float = None) -> CommandResult:
    """
    Run a command and wait for it.

    ``command`` may be a list or a shell-style string. A missing executable is
    reported as returncode 127 rather than raised, so callers only have to
    inspect the result.
    """
    cmd = shlex.split(command) if isinstance(command, str) else list(command)
    logger.debug(f"Running {cmd} in {cwd or os.getcwd()}")

    try:
        completed = subprocess.run(
            cmd,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=timeout,
            env=os.environ.copy(),
        )
    except subprocess.TimeoutExpired as e:
        logger.warning(f"Command {cmd} timed out after {timeout}s")
        return CommandResult(
            command=cmd,
            returncode=-1,
            stdout=_decode(e.stdout),
            stderr=f"Timeout after {timeout} seconds",
            timed_out=True,
        )
    except OSError as e:
        logger.warning(f"Command {cmd} could not be started: {e}")
        return CommandResult(command=cmd, returncode=127, stderr=str(e))

    return CommandResult(
        command=cmd,
        returncode=completed.returncode,
        stdout=_decode(completed.stdout),
        stderr=_decode(completed.stderr),
    )


def read_version(command, timeout: float = 10) -> str:
    """Run a version command (e.g. ``node -v``) and return its trimmed output."""
    result = run_command(command, timeout=timeout)
    if not result.success:
        raise UpstreamToolError("Failed to get Node.js version", result.output or None)
    return result.stdout.strip()


def _decode(data) -> str:
    if not data:
        return ""
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")
