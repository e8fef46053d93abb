"""
Bot deployment.

A deploy request moves through: validate -> allocate name -> prepare workspace
-> install dependencies -> register with the supervisor. Any stage failure stops
the pipeline, is recorded on the Deployment row, and propagates to the caller.
Nothing is retried and failed workspaces are left on disk for inspection.
"""

import asyncio
import functools
import logging
import threading
from pathlib import Path
from typing import Optional

from .errors import (
    BotRunnerError,
    RemoteSourceNotSupportedError,
    StartError,
    ValidationError,
)
from .identity import IdentityAllocator
from .installer import DependencyInstaller
from .models import Deployment
from .process import ProcessSupervisor
from .workspace import WorkspaceManager

logger = logging.getLogger(__name__)


async def run_blocking(func, *args, **kwargs):
    """Run a blocking call in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


class _StartAttempt:
    """Settles the race between a start call and its deadline."""

    def __init__(self):
        self._lock = threading.Lock()
        self.abandoned = False
        self.started = False

    def keep(self) -> bool:
        """Called once the bot is registered. False if the caller gave up first."""
        with self._lock:
            if not self.abandoned:
                self.started = True
            return self.started

    def abandon(self) -> bool:
        """Called on timeout. True if the bot was registered before it."""
        with self._lock:
            self.abandoned = True
            return self.started


class Deployer:
    """Turns submitted source into a supervised bot."""

    def __init__(
        self,
        allocator: IdentityAllocator,
        workspaces: WorkspaceManager,
        installer: DependencyInstaller,
        supervisor: ProcessSupervisor,
        start_timeout: float = 30,
    ):
        self.allocator = allocator
        self.workspaces = workspaces
        self.installer = installer
        self.supervisor = supervisor
        self.start_timeout = start_timeout

    async def deploy(self, code: Optional[str] = None, zip_url: Optional[str] = None) -> str:
        """Deploy a bot and return its name."""
        if not code and not zip_url:
            raise ValidationError("Code or zipUrl required")
        if not code:
            raise RemoteSourceNotSupportedError("Zip URL deploy not implemented")

        name = self.allocator.allocate()
        record = await run_blocking(
            Deployment.create,
            name=name,
            sequence=self.allocator.sequence_of(name),
        )
        logger.info(f"Deploying {name}")

        stage = "workspace"
        try:
            workspace = await run_blocking(self.workspaces.prepare, name, code)

            stage = "install"
            record.workspace_path = str(workspace)
            await run_blocking(record.transition, Deployment.INSTALLING)
            await run_blocking(self.installer.install, workspace)

            stage = "start"
            state = await self._start_with_deadline(name, workspace)
        except BotRunnerError as e:
            await run_blocking(record.fail, stage, e.details or e.message)
            raise
        except Exception as e:
            logger.exception(f"Unexpected error deploying {name} during {stage}")
            await run_blocking(record.fail, stage, str(e))
            raise

        await run_blocking(record.transition, Deployment.RUNNING)
        logger.info(f"Deployed {name} with PID {state['pid']}")
        return name

    async def _start_with_deadline(self, name: str, workspace: Path) -> dict:
        attempt = _StartAttempt()
        try:
            return await asyncio.wait_for(
                run_blocking(self._start, name, workspace, attempt),
                timeout=self.start_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Start of {name} timed out after {self.start_timeout}s")
            if attempt.abandon():
                # Registered just as the deadline passed
                await run_blocking(self._stop_late, name)
            raise StartError("Failed to start bot", f"timed out after {self.start_timeout}s") from e

    def _start(self, name: str, workspace: Path, attempt: _StartAttempt) -> dict:
        with self.supervisor.connect() as session:
            state = session.start(
                name,
                workspace / self.workspaces.entry_point,
                workspace,
                autorestart=True,
            )
            if not attempt.keep():
                logger.warning(f"{name} started after its deadline, stopping it")
                session.stop(name)
                raise StartError("Failed to start bot", "start completed after the deadline")
            return state

    def _stop_late(self, name: str):
        try:
            with self.supervisor.connect() as session:
                session.stop(name)
        except BotRunnerError as e:
            logger.error(f"Could not stop late start of {name}: {e.details or e.message}")
