"""Exception types raised while verifying and dispatching deployments."""

from __future__ import annotations

from pathlib import Path


class DeployHookError(Exception):
    """Base class for every error raised by the dispatcher."""


class SignatureInvalid(DeployHookError):
    def __init__(self, message: str = "Invalid signature") -> None:
        super().__init__(message)


class ConfigLoadFailure(DeployHookError):
    """The apps config file could not be read or parsed."""

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Could not load config {self.path}: {reason}")


class DeployError(DeployHookError):
    """A single deployment did not complete successfully."""

    def __init__(self, app_name: str, message: str) -> None:
        self.app_name = app_name
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"app": self.app_name, "error": self.message}


class ScriptNotFound(DeployError):
    def __init__(self, app_name: str, script_path: Path | str) -> None:
        self.script_path = str(script_path)
        super().__init__(app_name, f"Deploy script not found: {self.script_path}")


class SpawnError(DeployError):
    def __init__(self, app_name: str, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(app_name, f"Failed to start deploy script: {cause}")


class NonZeroExit(DeployError):
    def __init__(self, app_name: str, code: int, stderr: str) -> None:
        self.code = code
        self.stderr = stderr
        detail = stderr.strip() or "no error output"
        super().__init__(app_name, f"Deploy script exited with code {code}: {detail}")
