"""Run deploy scripts as child processes and collect their outcome.

Each deployment is a ``bash`` invocation of a script that lives in the
service's base directory. Both output pipes are drained by reader threads
so a chatty script never blocks on a full pipe, and every line is handed to
an ``OutputSink`` as it arrives. The caller gets back a
``RunningDeployment`` it can ``wait()`` on for the final result.

There is no timeout: a script that hangs keeps its caller waiting until the
process is killed from outside.
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
import threading
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path, PureWindowsPath
from typing import IO, Dict, List, Mapping, Optional, Protocol

from .config import ServiceConfig
from .errors import NonZeroExit, ScriptNotFound, SpawnError
from .events import Action

logger = logging.getLogger(__name__)

APP_NAME_ENV = "REPO_NAME"


@dataclass
class DeploymentResult:
    app_name: str
    success: bool
    output: str
    exit_code: int = 0


class OutputSink(Protocol):
    def on_stdout(self, app_name: str, line: str) -> None: ...

    def on_stderr(self, app_name: str, line: str) -> None: ...

    def on_exit(self, app_name: str, code: int) -> None: ...


class LoggingSink:
    """Default sink: forwards script output to the log as it streams in."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self.log = log or logger

    def on_stdout(self, app_name: str, line: str) -> None:
        self.log.info("[%s] %s", app_name, line.rstrip("\n"))

    def on_stderr(self, app_name: str, line: str) -> None:
        self.log.warning("[%s] %s", app_name, line.rstrip("\n"))

    def on_exit(self, app_name: str, code: int) -> None:
        if code == 0:
            self.log.info("[%s] deploy script finished with exit code 0", app_name)
        else:
            self.log.error("[%s] deploy script finished with exit code %s", app_name, code)


def to_wsl_path(path: str | Path) -> str:
    """Translate a Windows path into the ``/mnt/<drive>/...`` form WSL uses."""

    windows_path = PureWindowsPath(path)
    drive = windows_path.drive
    if len(drive) == 2 and drive[1] == ":":
        rest = windows_path.as_posix()[len(drive):]
        return f"/mnt/{drive[0].lower()}{rest}"
    return str(path).replace("\\", "/")


def build_command(script_path: str | Path, use_wsl: bool) -> List[str]:
    if use_wsl:
        return ["wsl", "bash", to_wsl_path(script_path)]
    return ["bash", str(script_path)]


class RunningDeployment:
    """A spawned deploy script whose output is still being collected."""

    def __init__(
        self,
        app_name: str,
        process: subprocess.Popen,
        sink: OutputSink,
        lock: Optional[threading.Lock] = None,
    ) -> None:
        self.app_name = app_name
        self.process = process
        self.sink = sink
        self._lock = lock
        self._stdout: List[str] = []
        self._stderr: List[str] = []
        self._result: Optional[DeploymentResult] = None
        self._error: Optional[NonZeroExit] = None
        self._finished = threading.Lock()
        self._readers = [
            self._spawn_reader(process.stdout, self._stdout, sink.on_stdout),
            self._spawn_reader(process.stderr, self._stderr, sink.on_stderr),
        ]

    def _spawn_reader(self, stream: Optional[IO[str]], buffer: List[str], hook) -> threading.Thread:
        thread = threading.Thread(
            target=self._drain,
            args=(stream, buffer, hook),
            name=f"deploy-{self.app_name}-reader",
            daemon=True,
        )
        thread.start()
        return thread

    def _drain(self, stream: Optional[IO[str]], buffer: List[str], hook) -> None:
        if stream is None:
            return
        with stream:
            for line in stream:
                buffer.append(line)
                try:
                    hook(self.app_name, line)
                except Exception:
                    logger.exception("Output sink failed for %s", self.app_name)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def stdout(self) -> str:
        return "".join(self._stdout)

    @property
    def stderr(self) -> str:
        return "".join(self._stderr)

    def wait(self) -> DeploymentResult:
        """Block until the script exits and both pipes are drained.

        Raises ``NonZeroExit`` carrying the collected stderr when the script
        fails; repeated calls return (or raise) the same outcome.
        """

        with self._finished:
            if self._result is None and self._error is None:
                self._collect()
        if self._error is not None:
            raise self._error
        assert self._result is not None
        return self._result

    def _collect(self) -> None:
        try:
            code = self.process.wait()
            for reader in self._readers:
                reader.join()
        finally:
            if self._lock is not None:
                self._lock.release()

        self.sink.on_exit(self.app_name, code)
        if code == 0:
            self._result = DeploymentResult(
                app_name=self.app_name, success=True, output=self.stdout, exit_code=0
            )
        else:
            self._error = NonZeroExit(self.app_name, code, self.stderr)


class DeploymentExecutor:
    """Resolve and run the deploy script registered for an ``Action``."""

    def __init__(
        self,
        base_dir: Path | str,
        scripts: Mapping[Action, str],
        use_wsl: Optional[bool] = None,
        sink: Optional[OutputSink] = None,
        serialize_per_app: bool = False,
    ) -> None:
        self.base_dir = Path(base_dir)
        self.scripts: Dict[Action, str] = dict(scripts)
        self.use_wsl = sys.platform == "win32" if use_wsl is None else use_wsl
        self.sink = sink or LoggingSink()
        self.serialize_per_app = serialize_per_app
        self._app_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, config: ServiceConfig, sink: Optional[OutputSink] = None) -> "DeploymentExecutor":
        return cls(
            base_dir=config.base_dir,
            scripts={
                Action.DEPLOY_BLUE_GREEN: config.blue_green_script,
                Action.DEPLOY_DIRECT: config.direct_script,
            },
            use_wsl=config.wsl_enabled,
            sink=sink,
            serialize_per_app=config.serialize_per_app,
        )

    def script_path(self, action: Action) -> Path:
        try:
            script = self.scripts[action]
        except KeyError:
            raise ValueError(f"No deploy script registered for {action.name}") from None
        path = Path(script)
        return path if path.is_absolute() else self.base_dir / path

    def _lock_for(self, app_name: str) -> Optional[threading.Lock]:
        if not self.serialize_per_app:
            return None
        with self._locks_guard:
            return self._app_locks[app_name]

    def start(
        self,
        action: Action,
        app_name: str,
        extra_env: Optional[Mapping[str, str]] = None,
    ) -> RunningDeployment:
        """Spawn the script for ``action`` without waiting for it to finish."""

        script_path = self.script_path(action)
        if not script_path.exists():
            logger.error("Deploy script not found: %s", script_path)
            raise ScriptNotFound(app_name, script_path)

        command = build_command(script_path.resolve(), self.use_wsl)
        env = {**os.environ, APP_NAME_ENV: app_name}
        if extra_env:
            env.update(extra_env)

        lock = self._lock_for(app_name)
        if lock is not None:
            if lock.locked():
                logger.info("Waiting for the running deployment of %s to finish", app_name)
            lock.acquire()

        logger.info("Running %s for %s: %s", action.name, app_name, " ".join(command))
        try:
            process = subprocess.Popen(
                command,
                cwd=str(self.base_dir),
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as exc:
            if lock is not None:
                lock.release()
            logger.error("Could not start %s for %s: %s", command[0], app_name, exc)
            raise SpawnError(app_name, exc) from exc

        running = RunningDeployment(app_name, process, self.sink, lock=lock)
        logger.info("Started deploy script for %s (pid %s)", app_name, running.pid)
        return running

    def execute(
        self,
        action: Action,
        app_name: str,
        extra_env: Optional[Mapping[str, str]] = None,
    ) -> DeploymentResult:
        """Run the script for ``action`` to completion."""

        return self.start(action, app_name, extra_env=extra_env).wait()
