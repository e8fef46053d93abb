"""Dependency installation for bot workspaces."""

import logging
from pathlib import Path

from .commands import CommandResult, run_command
from .errors import InstallError

logger = logging.getLogger(__name__)


class DependencyInstaller:
    """Runs the package install command inside a workspace."""

    def __init__(self, command: str = "npm install", timeout: float = 300):
        self.command = command
        self.timeout = timeout

    def install(self, workspace: Path) -> CommandResult:
        """Install dependencies. Raises InstallError if the command fails."""
        logger.info(f"Installing dependencies in {workspace}")
        result = run_command(self.command, cwd=workspace, timeout=self.timeout)

        if not result.success:
            logger.error(f"Dependency install failed in {workspace} (exit {result.returncode})")
            raise InstallError("Dependency install failed", result.output or f"exit code {result.returncode}")

        logger.info(f"Dependencies installed in {workspace}")
        return result
