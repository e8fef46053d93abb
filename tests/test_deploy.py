import asyncio
import threading
import time
from pathlib import Path

import pytest
from helpers import LONG_RUNNING, python_command, wait_until

from botrunner.config import Config
from botrunner.deploy import Deployer
from botrunner.errors import (
    InstallError,
    RemoteSourceNotSupportedError,
    StartError,
    ValidationError,
)
from botrunner.identity import IdentityAllocator
from botrunner.installer import DependencyInstaller
from botrunner.models import Deployment
from botrunner.process import ProcessStatus, ProcessSupervisor
from botrunner.workspace import WorkspaceManager


def make_deployer(cfg: Config, supervisor: ProcessSupervisor, install_command: str = None) -> Deployer:
    workspaces = WorkspaceManager(cfg.workspace_root, entry_point=cfg.entry_point)
    workspaces.ensure_root()
    return Deployer(
        IdentityAllocator(),
        workspaces,
        DependencyInstaller(install_command or cfg.install_command, timeout=30),
        supervisor,
        start_timeout=10,
    )


def test_deploy_starts_supervised_bot(cfg: Config, db: Path, supervisor: ProcessSupervisor) -> None:
    deployer = make_deployer(cfg, supervisor)

    name = asyncio.run(deployer.deploy(code=LONG_RUNNING))

    assert name == "bot1"
    state = supervisor.describe("bot1")
    assert state["status"] == ProcessStatus.ONLINE
    assert state["pid"] is not None
    assert state["restart_count"] == 0
    assert (cfg.workspace_root / "bot1" / "script.py").read_text() == LONG_RUNNING
    assert supervisor.open_sessions == 0

    record = Deployment.get(Deployment.name == "bot1")
    assert record.state == Deployment.RUNNING
    assert record.sequence == 1
    assert record.workspace_path == str(cfg.workspace_root / "bot1")


def test_deploy_without_source_has_no_side_effects(cfg: Config, db: Path, supervisor: ProcessSupervisor) -> None:
    deployer = make_deployer(cfg, supervisor)

    with pytest.raises(ValidationError):
        asyncio.run(deployer.deploy())
    with pytest.raises(ValidationError):
        asyncio.run(deployer.deploy(code="", zip_url=""))

    assert list(cfg.workspace_root.iterdir()) == []
    assert Deployment.select().count() == 0
    assert deployer.allocator.allocate() == "bot1"


def test_deploy_from_zip_url_is_not_implemented(cfg: Config, db: Path, supervisor: ProcessSupervisor) -> None:
    deployer = make_deployer(cfg, supervisor)

    with pytest.raises(RemoteSourceNotSupportedError) as excinfo:
        asyncio.run(deployer.deploy(zip_url="https://example.com/bot.zip"))

    assert excinfo.value.status_code == 501
    assert list(cfg.workspace_root.iterdir()) == []
    assert deployer.allocator.allocate() == "bot1"


def test_inline_code_wins_over_zip_url(cfg: Config, db: Path, supervisor: ProcessSupervisor) -> None:
    deployer = make_deployer(cfg, supervisor)

    name = asyncio.run(deployer.deploy(code=LONG_RUNNING, zip_url="https://example.com/bot.zip"))

    assert supervisor.describe(name)["status"] == ProcessStatus.ONLINE


def test_failed_install_never_reaches_supervisor(cfg: Config, db: Path, supervisor: ProcessSupervisor) -> None:
    failing = python_command("import sys; print('npm ERR! 404'); sys.exit(1)")
    deployer = make_deployer(cfg, supervisor, install_command=failing)

    with pytest.raises(InstallError) as excinfo:
        asyncio.run(deployer.deploy(code=LONG_RUNNING))

    assert "npm ERR! 404" in excinfo.value.details
    assert supervisor.list() == []
    assert supervisor.open_sessions == 0
    record = Deployment.get(Deployment.name == "bot1")
    assert record.state == Deployment.FAILED
    assert record.failed_stage == "install"
    assert (cfg.workspace_root / "bot1" / "script.py").exists()


def test_failed_start_keeps_workspace(cfg: Config, db: Path, supervisor: ProcessSupervisor) -> None:
    supervisor.interpreter = "/nonexistent/interpreter"
    deployer = make_deployer(cfg, supervisor)

    with pytest.raises(StartError):
        asyncio.run(deployer.deploy(code=LONG_RUNNING))

    assert supervisor.open_sessions == 0
    assert supervisor.list() == []
    record = Deployment.get(Deployment.name == "bot1")
    assert record.failed_stage == "start"
    assert (cfg.workspace_root / "bot1" / "script.py").exists()


def test_start_collision_is_a_start_failure(cfg: Config, db: Path, supervisor: ProcessSupervisor) -> None:
    deployer = make_deployer(cfg, supervisor)
    squatter = cfg.workspace_root / "squatter"
    squatter.mkdir()
    (squatter / "script.py").write_text(LONG_RUNNING)
    supervisor.start("bot1", squatter / "script.py", squatter)

    with pytest.raises(StartError):
        asyncio.run(deployer.deploy(code=LONG_RUNNING))

    assert Deployment.get(Deployment.name == "bot1").failed_stage == "start"
    assert supervisor.open_sessions == 0


def test_concurrent_deploys_get_distinct_names(cfg: Config, db: Path, supervisor: ProcessSupervisor) -> None:
    deployer = make_deployer(cfg, supervisor)

    async def deploy_many() -> list[str]:
        return await asyncio.gather(*(deployer.deploy(code=LONG_RUNNING) for _ in range(8)))

    names = asyncio.run(deploy_many())

    assert len(set(names)) == 8
    assert {p["name"] for p in supervisor.list()} == set(names)
    assert all(p["status"] == ProcessStatus.ONLINE for p in supervisor.list())
    assert Deployment.select().where(Deployment.state == Deployment.RUNNING).count() == 8


def test_unexpected_error_is_recorded_on_the_row(
    cfg: Config, db: Path, supervisor: ProcessSupervisor, monkeypatch: pytest.MonkeyPatch
) -> None:
    deployer = make_deployer(cfg, supervisor)

    def broken_install(workspace: Path) -> None:
        raise RuntimeError("installer crashed")

    monkeypatch.setattr(deployer.installer, "install", broken_install)

    with pytest.raises(RuntimeError):
        asyncio.run(deployer.deploy(code=LONG_RUNNING))

    record = Deployment.get(Deployment.name == "bot1")
    assert record.state == Deployment.FAILED
    assert record.failed_stage == "install"
    assert record.error == "installer crashed"
    assert supervisor.list() == []


def test_start_finishing_after_timeout_is_rolled_back(
    cfg: Config, db: Path, supervisor: ProcessSupervisor, monkeypatch: pytest.MonkeyPatch
) -> None:
    deployer = make_deployer(cfg, supervisor)
    deployer.start_timeout = 0.2
    real_start = supervisor.start
    registered = threading.Event()

    def slow_start(*args, **kwargs) -> dict:
        time.sleep(0.5)
        state = real_start(*args, **kwargs)
        registered.set()
        return state

    monkeypatch.setattr(supervisor, "start", slow_start)

    with pytest.raises(StartError) as excinfo:
        asyncio.run(deployer.deploy(code=LONG_RUNNING))

    assert "timed out" in excinfo.value.details
    assert wait_until(registered.is_set)
    assert wait_until(lambda: supervisor.list() == [] and supervisor.open_sessions == 0)
    record = Deployment.get(Deployment.name == "bot1")
    assert record.state == Deployment.FAILED
    assert record.failed_stage == "start"
