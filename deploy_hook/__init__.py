"""Webhook-triggered deployment dispatcher.

GitHub push deliveries are verified against a shared HMAC secret, classified
into a deployment mode and handed to an external deploy script.
"""

from .config import AppsConfig, ServiceConfig, load_apps_config, load_service_config
from .events import Action, BranchPolicy, PushEvent, classify
from .executor import DeploymentExecutor, DeploymentResult
from .server import create_app
from .signature import compute_signature, verify_signature

__all__ = [
    "Action",
    "AppsConfig",
    "BranchPolicy",
    "DeploymentExecutor",
    "DeploymentResult",
    "PushEvent",
    "ServiceConfig",
    "classify",
    "compute_signature",
    "create_app",
    "load_apps_config",
    "load_service_config",
    "verify_signature",
]
