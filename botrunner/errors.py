"""
Error classes for botrunner.

Every failure a request can hit maps to one subclass of BotRunnerError. Each
subclass carries a stable machine-readable ``code`` and the HTTP status the
API layer answers with; ``details`` holds the underlying tool's message.

Errors are raised where they happen and rendered once, at the API boundary.
Nothing here is retried: a failed install or start is reported, not repeated.
"""


class BotRunnerError(Exception):
    """Base exception for botrunner."""

    code = "botrunner_error"
    status_code = 500

    def __init__(self, message: str, details: str = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class ValidationError(BotRunnerError):
    """Request is missing required input. Raised before any side effect."""

    code = "validation_error"
    status_code = 400


class RemoteSourceNotSupportedError(BotRunnerError):
    """Deploying from a remote archive URL is not implemented."""

    code = "not_implemented"
    status_code = 501


class WorkspaceError(BotRunnerError):
    """Filesystem failure while preparing a bot workspace."""

    code = "workspace_error"


class InstallError(BotRunnerError):
    """Dependency installation failed or timed out."""

    code = "install_error"


class StartError(BotRunnerError):
    """Supervisor refused or failed to launch the process."""

    code = "start_error"


class NotFoundError(BotRunnerError):
    """No process with the given identity is registered."""

    code = "not_found"
    status_code = 404


class StopError(BotRunnerError):
    """Stopping a registered process failed."""

    code = "stop_error"
    status_code = 404


class SupervisorUnavailableError(BotRunnerError):
    """A session could not be opened against the process supervisor."""

    code = "supervisor_unavailable"


class UpstreamToolError(BotRunnerError):
    """An auxiliary command (such as the version check) failed."""

    code = "upstream_tool_error"
