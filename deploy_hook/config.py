"""Service settings and the apps config file."""
from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import ConfigLoadFailure

logger = logging.getLogger(__name__)

DEFAULT_BRANCHES: Tuple[str, ...] = ("main", "develop", "release")
DEFAULT_PORTS: Dict[str, int] = {"targetPort": 3000, "nodePort": 30000}

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class ServiceConfig:
    """Settings the dispatcher is started with."""

    secret: str = ""
    host: str = "0.0.0.0"
    port: int = 9999
    base_dir: Path = field(default_factory=Path.cwd)
    blue_green_script: str = "deploy.sh"
    direct_script: str = "deploy2.sh"
    apps_config_path: str = "apps.json"
    enforce_branch_filter: bool = False
    allowed_branches: Tuple[str, ...] = DEFAULT_BRANCHES
    pass_push_context: bool = False
    wait_for_webhook_deploy: bool = True
    serialize_per_app: bool = False
    use_wsl: Optional[bool] = None
    log_path: Optional[str] = None
    debug: bool = False

    def resolve(self, relative: str) -> Path:
        path = Path(relative)
        return path if path.is_absolute() else Path(self.base_dir) / path

    @property
    def apps_config_file(self) -> Path:
        return self.resolve(self.apps_config_path)

    @property
    def wsl_enabled(self) -> bool:
        if self.use_wsl is None:
            return sys.platform == "win32"
        return self.use_wsl


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_optional_bool(value: Optional[str]) -> Optional[bool]:
    if value is None or value.strip() == "":
        return None
    return value.strip().lower() in _TRUE_VALUES


def _env_list(value: Optional[str], default: Tuple[str, ...]) -> Tuple[str, ...]:
    if not value:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


def load_service_config(environ: Optional[Mapping[str, str]] = None) -> ServiceConfig:
    """Load configuration from ``DEPLOY_HOOK_*`` environment variables."""

    env = os.environ if environ is None else environ
    defaults = ServiceConfig()

    return ServiceConfig(
        secret=env.get("DEPLOY_HOOK_SECRET", defaults.secret),
        host=env.get("DEPLOY_HOOK_HOST", defaults.host),
        port=int(env.get("DEPLOY_HOOK_PORT", str(defaults.port))),
        base_dir=Path(env.get("DEPLOY_HOOK_BASE_DIR") or defaults.base_dir),
        blue_green_script=env.get("DEPLOY_HOOK_BLUE_GREEN_SCRIPT", defaults.blue_green_script),
        direct_script=env.get("DEPLOY_HOOK_DIRECT_SCRIPT", defaults.direct_script),
        apps_config_path=env.get("DEPLOY_HOOK_APPS_CONFIG", defaults.apps_config_path),
        enforce_branch_filter=_env_bool(
            env.get("DEPLOY_HOOK_ENFORCE_BRANCHES"), defaults.enforce_branch_filter
        ),
        allowed_branches=_env_list(
            env.get("DEPLOY_HOOK_ALLOWED_BRANCHES"), defaults.allowed_branches
        ),
        pass_push_context=_env_bool(
            env.get("DEPLOY_HOOK_PASS_PUSH_CONTEXT"), defaults.pass_push_context
        ),
        wait_for_webhook_deploy=_env_bool(
            env.get("DEPLOY_HOOK_WAIT_FOR_DEPLOY"), defaults.wait_for_webhook_deploy
        ),
        serialize_per_app=_env_bool(
            env.get("DEPLOY_HOOK_SERIALIZE_PER_APP"), defaults.serialize_per_app
        ),
        use_wsl=_env_optional_bool(env.get("DEPLOY_HOOK_USE_WSL")),
        log_path=env.get("DEPLOY_HOOK_LOG_PATH") or None,
        debug=_env_bool(env.get("DEPLOY_HOOK_DEBUG"), defaults.debug),
    )


@dataclass
class AppsConfig:
    """Applications the batch endpoints deploy, keyed by name."""

    apps: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    defaults: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_PORTS))

    def app_names(self) -> List[str]:
        return list(self.apps.keys())


def read_apps_config(path: Path | str) -> AppsConfig:
    """Parse the apps config file, raising ``ConfigLoadFailure`` on any problem."""

    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigLoadFailure(path, "file does not exist") from None
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadFailure(path, str(exc)) from exc

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigLoadFailure(path, f"invalid JSON ({exc.msg} at line {exc.lineno})") from exc

    if not isinstance(data, dict):
        raise ConfigLoadFailure(path, "top-level value must be an object")

    apps = data.get("apps") or {}
    if not isinstance(apps, dict):
        raise ConfigLoadFailure(path, "'apps' must be an object")

    defaults = dict(DEFAULT_PORTS)
    if isinstance(data.get("defaults"), dict):
        defaults.update(data["defaults"])

    return AppsConfig(apps=apps, defaults=defaults)


def load_apps_config(path: Path | str) -> AppsConfig:
    """Return the apps config, or an empty one when it cannot be loaded."""

    try:
        return read_apps_config(path)
    except ConfigLoadFailure as exc:
        logger.warning("%s; continuing with an empty app list", exc)
        return AppsConfig()
