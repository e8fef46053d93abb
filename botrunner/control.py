"""
Queries and control operations on deployed bots.

Everything here reads the process supervisor's live state; nothing is cached.
"""

import logging
from datetime import datetime

from .commands import read_version
from .identity import IdentityAllocator
from .logs import tail_lines
from .models import Deployment
from .process import ProcessSupervisor

logger = logging.getLogger(__name__)


class BotControl:
    """List, describe, stop and read logs of bots."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        allocator: IdentityAllocator,
        version_command: str = "node -v",
        version_timeout: float = 10,
    ):
        self.supervisor = supervisor
        self.allocator = allocator
        self.version_command = version_command
        self.version_timeout = version_timeout

    def list_bots(self) -> list[dict]:
        """Get every registered bot; processes with other names are excluded."""
        with self.supervisor.connect() as session:
            return session.list(self.allocator.matches)

    def describe(self, name: str) -> dict:
        with self.supervisor.connect() as session:
            return session.describe(name)

    def stop(self, name: str) -> dict:
        """Stop a bot. Its workspace and logs are kept."""
        with self.supervisor.connect() as session:
            state = session.stop(name)

        updated = (
            Deployment.update(state=Deployment.STOPPED, updated_at=datetime.now())
            .where(Deployment.name == name)
            .execute()
        )
        if not updated:
            logger.debug(f"No deployment record for {name}")
        return state

    def tail(self, name: str, lines: int = 100) -> list[str]:
        """Get the last captured output lines of a registered bot."""
        # Raises NotFoundError before any file is read
        self.describe(name)
        return tail_lines(self.supervisor.log_dir(name), lines)

    def runtime_version(self) -> str:
        return read_version(self.version_command, timeout=self.version_timeout)
