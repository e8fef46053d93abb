"""
Botrunner FastAPI application.

Provides a REST API to deploy submitted code as supervised bots, list them,
read their logs, stop them, and report the runtime version. A background task
restarts crashed bots.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from typing import Optional

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from . import __version__
from .config import Config, config
from .control import BotControl
from .deploy import Deployer, run_blocking
from .errors import BotRunnerError, ValidationError
from .identity import IdentityAllocator
from .installer import DependencyInstaller
from .models import Deployment, initialize_db
from .process import ProcessSupervisor
from .workspace import WorkspaceManager

# Configure logging with rotation
log_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

file_handler = RotatingFileHandler(
    config.app_log,
    maxBytes=config.log_max_bytes,
    backupCount=config.log_backup_count,
)
file_handler.setFormatter(log_formatter)

console_handler = logging.StreamHandler()
console_handler.setFormatter(log_formatter)

logging.basicConfig(
    level=logging.INFO,
    handlers=[file_handler, console_handler],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting botrunner...")
    state = app.state

    initialize_db(state.config.db_path)
    state.workspaces.ensure_root()

    # Never hand out a name recorded by a previous run
    state.allocator.seed(Deployment.next_sequence())

    crash_monitor_task = asyncio.create_task(
        crash_monitor_loop(state.supervisor, state.config.crash_check_interval)
    )

    yield

    logger.info("Shutting down botrunner...")
    crash_monitor_task.cancel()
    await run_blocking(state.supervisor.shutdown_all)


async def crash_monitor_loop(supervisor: ProcessSupervisor, interval: float):
    """Background task to restart crashed bots."""
    while True:
        try:
            await run_blocking(supervisor.check_and_restart_crashed)
        except Exception as e:
            logger.error(f"Error in crash monitor: {e}")
        await asyncio.sleep(interval)


# Pydantic models for API
class DeployRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: Optional[str] = Field(None, description="Source of the bot entry point")
    zip_url: Optional[str] = Field(None, alias="zipUrl", description="URL of a zipped project")


class StopRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    bot_name: Optional[str] = Field(None, alias="botName", description="Name of the bot to stop")


router = APIRouter()


@router.post("/deploy")
async def deploy_bot(request: Request, data: Optional[DeployRequest] = None):
    """Deploy code as a new bot and start it."""
    data = data or DeployRequest()
    name = await request.app.state.deployer.deploy(code=data.code, zip_url=data.zip_url)
    return {"message": "Bot deployed and running", "botName": name}


@router.get("/bots")
async def list_bots(request: Request):
    """List running bots."""
    bots = await run_blocking(request.app.state.control.list_bots)
    return {"bots": bots}


@router.get("/logs/{bot_name}")
async def get_bot_logs(
    request: Request,
    bot_name: str,
    lines: int = Query(100, ge=1, le=1000),
):
    """Get recent output of a bot."""
    log_lines = await run_blocking(request.app.state.control.tail, bot_name, lines)
    return {"message": f"Logs for {bot_name}", "botName": bot_name, "lines": log_lines}


@router.post("/stop")
async def stop_bot(request: Request, data: Optional[StopRequest] = None):
    """Stop a bot."""
    if not data or not data.bot_name:
        raise ValidationError("botName is required")

    await run_blocking(request.app.state.control.stop, data.bot_name)
    return {"message": f"{data.bot_name} stopped successfully"}


@router.get("/node-version")
async def get_node_version(request: Request):
    """Report the version of the bot runtime."""
    version = await run_blocking(request.app.state.control.runtime_version)
    return {"nodeVersion": version}


async def botrunner_error_handler(request: Request, exc: BotRunnerError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message} ({exc.details})")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    error = ValidationError("Invalid request", details)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error in {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "code": "internal_error", "details": str(exc)},
    )


def create_app(cfg: Config = None) -> FastAPI:
    """Build the application and the components it drives."""
    cfg = cfg or config

    app = FastAPI(
        title="Botrunner",
        description="Deploy and supervise submitted bots",
        version=__version__,
        lifespan=lifespan,
    )

    allocator = IdentityAllocator(prefix=cfg.bot_prefix)
    workspaces = WorkspaceManager(cfg.workspace_root, entry_point=cfg.entry_point)
    supervisor = ProcessSupervisor(
        cfg.logs_dir,
        interpreter=cfg.interpreter,
        restart_delay=cfg.restart_delay,
        max_restart_attempts=cfg.max_restart_attempts,
        stop_timeout=cfg.stop_timeout,
    )

    app.state.config = cfg
    app.state.allocator = allocator
    app.state.workspaces = workspaces
    app.state.supervisor = supervisor
    app.state.deployer = Deployer(
        allocator,
        workspaces,
        DependencyInstaller(cfg.install_command, timeout=cfg.install_timeout),
        supervisor,
        start_timeout=cfg.start_timeout,
    )
    app.state.control = BotControl(
        supervisor,
        allocator,
        version_command=cfg.version_command,
        version_timeout=cfg.version_timeout,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BotRunnerError, botrunner_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(router)
    return app


app = create_app()
