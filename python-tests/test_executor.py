import os
import sys
import threading
import time
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from deploy_hook.errors import NonZeroExit, ScriptNotFound, SpawnError  # noqa: E402
from deploy_hook.events import Action  # noqa: E402
from deploy_hook.executor import (  # noqa: E402
    DeploymentExecutor,
    LoggingSink,
    build_command,
    to_wsl_path,
)

pytestmark = pytest.mark.skipif(os.name == "nt", reason="requires bash")


class RecordingSink:
    def __init__(self):
        self.events = []

    def on_stdout(self, app_name, line):
        self.events.append(("stdout", app_name, line))

    def on_stderr(self, app_name, line):
        self.events.append(("stderr", app_name, line))

    def on_exit(self, app_name, code):
        self.events.append(("exit", app_name, code))


def write_script(directory: Path, name: str, body: str) -> Path:
    path = directory / name
    path.write_text("#!/usr/bin/env bash\n" + body + "\n", encoding="utf-8")
    return path


def make_executor(tmp_path, sink=None, **kwargs):
    return DeploymentExecutor(
        base_dir=tmp_path,
        scripts={Action.DEPLOY_BLUE_GREEN: "deploy.sh", Action.DEPLOY_DIRECT: "deploy2.sh"},
        use_wsl=False,
        sink=sink,
        **kwargs,
    )


def test_missing_script_raises_without_spawning(tmp_path, monkeypatch):
    def fail_popen(*args, **kwargs):
        raise AssertionError("Popen must not be called")

    monkeypatch.setattr("deploy_hook.executor.subprocess.Popen", fail_popen)
    executor = make_executor(tmp_path)

    with pytest.raises(ScriptNotFound) as excinfo:
        executor.execute(Action.DEPLOY_BLUE_GREEN, "web")
    assert excinfo.value.app_name == "web"
    assert excinfo.value.script_path.endswith("deploy.sh")


def test_successful_script_returns_stdout(tmp_path):
    write_script(tmp_path, "deploy.sh", 'echo "building"\necho "warn" >&2\necho "done"')
    sink = RecordingSink()

    result = make_executor(tmp_path, sink=sink).execute(Action.DEPLOY_BLUE_GREEN, "web")

    assert result.success is True
    assert result.app_name == "web"
    assert result.exit_code == 0
    assert result.output == "building\ndone\n"
    assert ("stdout", "web", "building\n") in sink.events
    assert ("stderr", "web", "warn\n") in sink.events
    assert sink.events[-1] == ("exit", "web", 0)


def test_non_zero_exit_carries_code_and_stderr(tmp_path):
    write_script(tmp_path, "deploy.sh", 'echo "partial"\necho "disk full" >&2\nexit 7')

    with pytest.raises(NonZeroExit) as excinfo:
        make_executor(tmp_path).execute(Action.DEPLOY_BLUE_GREEN, "web")

    assert excinfo.value.code == 7
    assert excinfo.value.stderr == "disk full\n"
    assert excinfo.value.to_dict() == {"app": "web", "error": excinfo.value.message}


def test_direct_action_uses_second_script(tmp_path):
    write_script(tmp_path, "deploy.sh", "echo blue-green")
    write_script(tmp_path, "deploy2.sh", "echo direct")

    result = make_executor(tmp_path).execute(Action.DEPLOY_DIRECT, "web")

    assert result.output == "direct\n"


def test_environment_carries_app_name_and_extras(tmp_path, monkeypatch):
    monkeypatch.setenv("INHERITED_VALUE", "from-parent")
    write_script(
        tmp_path,
        "deploy.sh",
        'echo "$REPO_NAME|$BRANCH|$INHERITED_VALUE"',
    )

    result = make_executor(tmp_path).execute(
        Action.DEPLOY_BLUE_GREEN, "shop-api", extra_env={"BRANCH": "main"}
    )

    assert result.output == "shop-api|main|from-parent\n"


def test_spawn_failure_is_reported_separately(tmp_path, monkeypatch):
    write_script(tmp_path, "deploy.sh", "exit 0")

    def missing_interpreter(*args, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", "bash")

    monkeypatch.setattr("deploy_hook.executor.subprocess.Popen", missing_interpreter)

    with pytest.raises(SpawnError) as excinfo:
        make_executor(tmp_path).execute(Action.DEPLOY_BLUE_GREEN, "web")
    assert isinstance(excinfo.value.cause, FileNotFoundError)


def test_wait_is_repeatable(tmp_path):
    write_script(tmp_path, "deploy.sh", "echo once")
    running = make_executor(tmp_path).start(Action.DEPLOY_BLUE_GREEN, "web")

    first = running.wait()
    second = running.wait()

    assert first is second
    assert running.stdout == "once\n"


def test_large_output_does_not_block(tmp_path):
    write_script(tmp_path, "deploy.sh", "for i in $(seq 1 20000); do echo line-$i; echo err-$i >&2; done")

    result = make_executor(tmp_path, sink=RecordingSink()).execute(Action.DEPLOY_BLUE_GREEN, "web")

    assert result.output.count("\n") == 20000
    assert result.output.endswith("line-20000\n")


def test_serialized_runs_for_same_app_do_not_overlap(tmp_path):
    marker = tmp_path / "running"
    write_script(
        tmp_path,
        "deploy.sh",
        f'if [ -e "{marker}" ]; then echo overlap >&2; exit 3; fi\n'
        f'touch "{marker}"\nsleep 0.3\nrm "{marker}"',
    )
    executor = make_executor(tmp_path, serialize_per_app=True)
    outcomes = []

    def run():
        try:
            outcomes.append(executor.execute(Action.DEPLOY_BLUE_GREEN, "web").success)
        except NonZeroExit as exc:
            outcomes.append(exc.code)

    threads = [threading.Thread(target=run) for _ in range(2)]
    for thread in threads:
        thread.start()
        time.sleep(0.05)
    for thread in threads:
        thread.join(timeout=10)

    assert outcomes == [True, True]


def test_unknown_action_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        make_executor(tmp_path).script_path(Action.IGNORE)


def test_logging_sink_levels(caplog):
    sink = LoggingSink()
    with caplog.at_level("INFO", logger="deploy_hook.executor"):
        sink.on_stdout("web", "hello\n")
        sink.on_stderr("web", "careful\n")
        sink.on_exit("web", 1)

    levels = [record.levelname for record in caplog.records]
    assert levels == ["INFO", "WARNING", "ERROR"]
    assert "[web] hello" in caplog.text


@pytest.mark.parametrize(
    "source, expected",
    [
        ("C:\\deploy\\deploy.sh", "/mnt/c/deploy/deploy.sh"),
        ("D:\\Apps\\Shop\\deploy2.sh", "/mnt/d/Apps/Shop/deploy2.sh"),
        ("scripts\\deploy.sh", "scripts/deploy.sh"),
    ],
)
def test_to_wsl_path(source, expected):
    assert to_wsl_path(source) == expected


def test_build_command_routes_through_wsl():
    assert build_command("/srv/deploy.sh", use_wsl=False) == ["bash", "/srv/deploy.sh"]
    assert build_command("C:\\srv\\deploy.sh", use_wsl=True) == ["wsl", "bash", "/mnt/c/srv/deploy.sh"]


def test_started_process_pid_is_logged(tmp_path, caplog):
    write_script(tmp_path, "deploy.sh", "echo ok")

    with caplog.at_level("INFO", logger="deploy_hook.executor"):
        running = make_executor(tmp_path, sink=RecordingSink()).start(Action.DEPLOY_BLUE_GREEN, "web")
        running.wait()

    assert running.pid == running.process.pid
    assert f"Started deploy script for web (pid {running.pid})" in caplog.text
