import os
import shlex
import tempfile
from collections.abc import Iterator
from pathlib import Path

# Must be set before botrunner.config is imported
os.environ.setdefault("BOTRUNNER_DATA_DIR", tempfile.mkdtemp(prefix="botrunner-tests-"))

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from botrunner.config import Config
from botrunner.main import create_app
from botrunner.models import initialize_db
from botrunner.process import ProcessSupervisor
from helpers import PYTHON, python_command


@pytest.fixture
def cfg(tmp_path: Path) -> Config:
    return Config(
        data_dir=tmp_path / "data",
        entry_point="script.py",
        interpreter=PYTHON,
        install_command=python_command("pass"),
        install_timeout=30,
        start_timeout=10,
        version_command=f"{shlex.quote(PYTHON)} --version",
        restart_delay=0,
        max_restart_attempts=3,
        crash_check_interval=0.1,
        stop_timeout=5,
    )


@pytest.fixture
def db(tmp_path: Path) -> Path:
    db_path = tmp_path / "botrunner-test.db"
    initialize_db(db_path)
    return db_path


@pytest.fixture
def supervisor(tmp_path: Path) -> Iterator[ProcessSupervisor]:
    sup = ProcessSupervisor(
        tmp_path / "logs",
        interpreter=PYTHON,
        restart_delay=0,
        max_restart_attempts=2,
        stop_timeout=5,
    )
    yield sup
    sup.shutdown_all()


@pytest.fixture
def app(cfg: Config) -> FastAPI:
    return create_app(cfg)


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client
