"""
Configuration for the botrunner service.

Loads settings from environment variables with sensible defaults.
All persistent data is stored in ~/.botrunner/ unless BOTRUNNER_DATA_DIR is set.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Config:
    """Botrunner configuration."""

    # Paths
    data_dir: Path = Path(os.environ.get("BOTRUNNER_DATA_DIR", str(Path.home() / ".botrunner")))
    workspace_root: Path = None
    db_path: Path = None
    logs_dir: Path = None
    app_log: Path = None

    # Logging
    log_max_bytes: int = int(os.environ.get("LOG_MAX_BYTES", str(10 * 1024 * 1024)))  # 10MB
    log_backup_count: int = int(os.environ.get("LOG_BACKUP_COUNT", "5"))

    # Server
    host: str = os.environ.get("BOTRUNNER_HOST", "0.0.0.0")
    port: int = int(os.environ.get("PORT", "3000"))

    # Bots
    bot_prefix: str = os.environ.get("BOT_PREFIX", "bot")
    entry_point: str = os.environ.get("ENTRY_POINT", "script.js")
    interpreter: str = os.environ.get("INTERPRETER", "node")
    install_command: str = os.environ.get("INSTALL_COMMAND", "npm install")
    install_timeout: int = int(os.environ.get("INSTALL_TIMEOUT", "300"))
    start_timeout: int = int(os.environ.get("START_TIMEOUT", "30"))
    version_command: str = os.environ.get("VERSION_COMMAND", "node -v")
    version_timeout: int = int(os.environ.get("VERSION_TIMEOUT", "10"))

    # Process management
    restart_delay: float = float(os.environ.get("RESTART_DELAY", "1"))
    max_restart_attempts: int = int(os.environ.get("MAX_RESTART_ATTEMPTS", "16"))
    crash_check_interval: float = float(os.environ.get("CRASH_CHECK_INTERVAL", "2"))
    stop_timeout: int = int(os.environ.get("STOP_TIMEOUT", "10"))

    def __post_init__(self):
        """Initialize derived paths and create directories."""
        self.data_dir = Path(self.data_dir)
        if self.workspace_root is None:
            self.workspace_root = Path(os.environ.get("WORKSPACE_ROOT", str(self.data_dir / "temp")))
        self.workspace_root = Path(self.workspace_root)
        self.db_path = self.data_dir / "botrunner.db"
        self.logs_dir = self.data_dir / "logs"
        self.app_log = self.data_dir / "botrunner.log"

        # Create directories
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)


config = Config()
