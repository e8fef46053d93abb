"""
Process supervisor for deployed bots.

Handles starting and stopping bot processes by name. Captures stdout/stderr
to per-bot log files and restarts crashed processes until they are explicitly
stopped or exceed the restart limit. Callers talk to the supervisor through
short-lived sessions opened with connect().
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import psutil

from .errors import (
    NotFoundError,
    StartError,
    StopError,
    SupervisorUnavailableError,
)

logger = logging.getLogger(__name__)


class ProcessStatus:
    ONLINE = "online"
    WAITING_RESTART = "waiting restart"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERRORED = "errored"


@dataclass
class ProcessInfo:
    """A registered process and its restart history."""

    name: str
    command: list[str]
    workdir: Path
    process: subprocess.Popen
    autorestart: bool = True
    started_at: datetime = field(default_factory=datetime.now)
    restart_count: int = 0
    last_restart: datetime = None
    restart_due: float = None  # monotonic deadline for a pending restart
    stopping: bool = False
    errored: bool = False

    @property
    def alive(self) -> bool:
        return self.process.poll() is None

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.alive else None

    @property
    def status(self) -> str:
        if self.stopping:
            return ProcessStatus.STOPPING
        if self.alive:
            return ProcessStatus.ONLINE
        if self.errored:
            return ProcessStatus.ERRORED
        if self.autorestart:
            return ProcessStatus.WAITING_RESTART
        return ProcessStatus.STOPPED

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "pid": self.pid,
            "status": self.status,
            "restart_count": self.restart_count,
        }


class ProcessSupervisor:
    """Supervises named bot processes."""

    def __init__(
        self,
        logs_dir: Path,
        interpreter: str = "node",
        restart_delay: float = 1,
        max_restart_attempts: int = 16,
        stop_timeout: float = 10,
    ):
        self.logs_dir = Path(logs_dir)
        self.interpreter = interpreter
        self.restart_delay = restart_delay
        self.max_restart_attempts = max_restart_attempts
        self.stop_timeout = stop_timeout
        self._processes: dict[str, ProcessInfo] = {}
        self._lock = threading.Lock()
        self._sessions = 0
        self._closed = False

    # Sessions

    def connect(self) -> "SupervisorSession":
        """Open a session. Use as a context manager so it is always released."""
        with self._lock:
            if self._closed:
                raise SupervisorUnavailableError("Supervisor connect error", "supervisor is shut down")
            self._sessions += 1
        return SupervisorSession(self)

    def _release(self):
        with self._lock:
            self._sessions -= 1

    @property
    def open_sessions(self) -> int:
        with self._lock:
            return self._sessions

    # Process control

    def start(
        self,
        name: str,
        script: Path,
        workdir: Path,
        autorestart: bool = True,
        interpreter: str = None,
    ) -> dict:
        """Launch and register a process. Raises StartError on collision or spawn failure."""
        command = [interpreter or self.interpreter, str(script)]

        with self._lock:
            if self._closed:
                raise SupervisorUnavailableError("Supervisor connect error", "supervisor is shut down")
            if name in self._processes:
                raise StartError("Failed to start bot", f"process '{name}' is already registered")

            try:
                process = self._spawn(name, command, workdir)
            except (OSError, ValueError) as e:
                logger.error(f"Failed to start {name}: {e}")
                raise StartError("Failed to start bot", str(e)) from e

            info = ProcessInfo(
                name=name,
                command=command,
                workdir=Path(workdir),
                process=process,
                autorestart=autorestart,
            )
            self._processes[name] = info
            state = info.to_dict()

        logger.info(f"Started {name} with PID {process.pid}")
        return state

    def stop(self, name: str) -> dict:
        """Terminate and deregister a process. It is never restarted afterwards."""
        with self._lock:
            info = self._processes.get(name)
            if not info:
                raise NotFoundError("Bot not found", f"no process named '{name}'")
            if info.stopping:
                raise StopError("Failed to stop bot", f"'{name}' is already stopping")
            info.stopping = True
            process = info.process

        try:
            self._terminate(name, process)
        except (OSError, subprocess.SubprocessError, psutil.Error) as e:
            logger.error(f"Failed to stop {name}: {e}")
            with self._lock:
                info.stopping = False
            raise StopError("Failed to stop bot", str(e)) from e

        with self._lock:
            self._processes.pop(name, None)

        logger.info(f"Stopped {name}")
        return {
            "name": name,
            "pid": None,
            "status": ProcessStatus.STOPPED,
            "restart_count": info.restart_count,
        }

    def describe(self, name: str) -> dict:
        """Get the live state of one process."""
        with self._lock:
            info = self._processes.get(name)
            if not info:
                raise NotFoundError("Bot not found", f"no process named '{name}'")
            return info.to_dict()

    def list(self, predicate: Optional[Callable[[str], bool]] = None) -> list[dict]:
        """Get the live state of every registered process accepted by predicate."""
        with self._lock:
            return [
                info.to_dict()
                for name, info in self._processes.items()
                if predicate is None or predicate(name)
            ]

    def log_dir(self, name: str) -> Path:
        return self.logs_dir / name

    def _spawn(self, name: str, command: list[str], workdir: Path) -> subprocess.Popen:
        """Start the OS process with its output wired to the log files."""
        log_dir = self.log_dir(name)
        log_dir.mkdir(parents=True, exist_ok=True)

        stdout_log = open(log_dir / "stdout.log", "a", encoding="utf-8")
        stderr_log = open(log_dir / "stderr.log", "a", encoding="utf-8")

        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=workdir,
                env=os.environ.copy(),
                start_new_session=True,  # Own process group, so stop reaches children
            )
        except (OSError, ValueError):
            stdout_log.close()
            stderr_log.close()
            raise

        for stream, log_file in ((process.stdout, stdout_log), (process.stderr, stderr_log)):
            threading.Thread(
                target=self._capture_output,
                args=(name, stream, log_file),
                daemon=True,
            ).start()

        return process

    def _capture_output(self, name: str, stream, log_file):
        """Copy process output to a log file until the stream closes."""
        try:
            for line in iter(stream.readline, b""):
                decoded = line.decode("utf-8", errors="replace").rstrip()
                if not decoded:
                    continue
                timestamp = datetime.now().isoformat()
                log_file.write(f"[{timestamp}] {decoded}\n")
                log_file.flush()
        except (OSError, ValueError) as e:
            logger.error(f"Error in log capture for {name}: {e}")
        finally:
            log_file.close()
            stream.close()

    def _terminate(self, name: str, process: subprocess.Popen):
        """SIGTERM the process group, escalate to SIGKILL, then reap strays."""
        if process.poll() is not None:
            # Already reaped; its pid may belong to someone else by now
            return

        try:
            children = psutil.Process(process.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            children = []

        try:
            os.killpg(os.getpgid(process.pid), signal.SIGTERM)
        except ProcessLookupError:
            pass

        try:
            process.wait(timeout=self.stop_timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"{name} did not stop gracefully, forcing kill")
            try:
                os.killpg(os.getpgid(process.pid), signal.SIGKILL)
            except ProcessLookupError:
                pass
            process.wait(timeout=5)

        # Children that moved to another process group survive killpg
        _, alive = psutil.wait_procs(children, timeout=1)
        for child in alive:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                pass

    # Crash handling

    def check_and_restart_crashed(self) -> list[str]:
        """Restart crashed autorestart processes whose delay has passed."""
        now = time.monotonic()
        restarted = []

        with self._lock:
            for name, info in self._processes.items():
                if info.stopping or info.errored or not info.autorestart or info.alive:
                    continue

                if info.restart_due is None:
                    if info.restart_count >= self.max_restart_attempts:
                        logger.error(f"{name} exceeded max restart attempts, giving up")
                        info.errored = True
                        continue
                    logger.warning(
                        f"{name} exited with code {info.process.returncode}, "
                        f"restarting in {self.restart_delay}s"
                    )
                    info.restart_due = now + self.restart_delay

                if now < info.restart_due:
                    continue

                try:
                    info.process = self._spawn(name, info.command, info.workdir)
                except (OSError, ValueError) as e:
                    logger.error(f"Failed to restart {name}: {e}")
                    info.errored = True
                    continue

                info.restart_due = None
                info.restart_count += 1
                info.last_restart = datetime.now()
                restarted.append(name)
                logger.info(f"Restarted {name} with PID {info.process.pid} (restart {info.restart_count})")

        return restarted

    def shutdown_all(self):
        """Stop all processes and refuse new sessions."""
        with self._lock:
            self._closed = True
            names = list(self._processes.keys())

        for name in names:
            try:
                self.stop(name)
            except (NotFoundError, StopError) as e:
                logger.error(f"Error stopping {name} during shutdown: {e.details}")


class SupervisorSession:
    """A scoped handle on the supervisor; closed on exit from its with block."""

    def __init__(self, supervisor: ProcessSupervisor):
        self._supervisor = supervisor
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        if not self.closed:
            self.closed = True
            self._supervisor._release()

    def _checked(self) -> ProcessSupervisor:
        if self.closed:
            raise SupervisorUnavailableError("Supervisor session is closed")
        return self._supervisor

    def start(self, name: str, script: Path, workdir: Path, autorestart: bool = True, interpreter: str = None) -> dict:
        return self._checked().start(name, script, workdir, autorestart=autorestart, interpreter=interpreter)

    def stop(self, name: str) -> dict:
        return self._checked().stop(name)

    def describe(self, name: str) -> dict:
        return self._checked().describe(name)

    def list(self, predicate: Optional[Callable[[str], bool]] = None) -> list[dict]:
        return self._checked().list(predicate)
