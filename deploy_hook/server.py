"""Flask endpoints that receive GitHub deliveries and trigger deploys."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from flask import Flask, jsonify, request

from .config import ServiceConfig, load_apps_config, load_service_config
from .errors import DeployError, NonZeroExit, ScriptNotFound, SignatureInvalid, SpawnError
from .events import Action, BranchPolicy, PushEvent, classify
from .executor import DeploymentExecutor, RunningDeployment
from .logs import setup_logger
from .signature import verify_signature

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"
EVENT_HEADER = "X-GitHub-Event"


def _watch(running: RunningDeployment) -> None:
    try:
        running.wait()
    except NonZeroExit as exc:
        logger.error("Deployment of %s failed: %s", exc.app_name, exc.message)


def _log_push(event_type: str, event: PushEvent) -> None:
    logger.info("Received GitHub event: %s", event_type or "unknown")
    logger.info("Repository: %s", event.repo_full_name or "-")
    logger.info("Pushed by: %s", event.pusher or "-")
    logger.info("Branch: %s", event.ref or "-")
    if event.commit_messages:
        logger.info("Commits:\n%s", "\n".join(f"- {m}" for m in event.commit_messages))


def create_app(
    config: Optional[ServiceConfig] = None,
    executor: Optional[DeploymentExecutor] = None,
) -> Flask:
    """Build the webhook application.

    ``executor`` defaults to one built from ``config``; tests pass a double
    in its place.
    """

    config = config or load_service_config()
    setup_logger(debug=config.debug, log_path=config.log_path)
    executor = executor or DeploymentExecutor.from_config(config)
    branch_policy = BranchPolicy(
        enabled=config.enforce_branch_filter, allowed=config.allowed_branches
    )

    app = Flask(__name__)
    app.config["DEPLOY_HOOK"] = config
    app.extensions["deploy_hook_executor"] = executor

    if not config.secret:
        logger.warning("No webhook secret configured; signatures will not be checked")

    @app.errorhandler(SignatureInvalid)
    def signature_invalid(exc: SignatureInvalid):
        logger.warning("Rejected webhook from %s: %s", request.remote_addr, exc)
        return "Invalid signature", 403

    @app.post("/webhook")
    def webhook():
        raw_body = request.get_data()
        if not verify_signature(config.secret, raw_body, request.headers.get(SIGNATURE_HEADER)):
            raise SignatureInvalid()

        event_type = request.headers.get(EVENT_HEADER, "")
        if event_type == "ping":
            logger.info("Ping event received")
            return "Ping event received", 200

        payload = request.get_json(force=True, silent=True)
        event = PushEvent.from_payload(payload)
        _log_push(event_type, event)

        action = classify(event_type, event)
        if action is Action.IGNORE:
            logger.info("No commits in %s event, nothing to deploy", event_type or "unknown")
            return "Webhook received", 200

        if not event.repo_name:
            logger.info("No repository name in payload, nothing to deploy")
            return "Webhook received", 200

        if not branch_policy.allows(event.ref):
            logger.info("Branch %s is not handled. Skipped.", event.ref or "-")
            return "Webhook received", 200

        extra_env: Optional[Dict[str, str]] = None
        if config.pass_push_context:
            extra_env = {"BRANCH": event.branch, "COMMITS": event.commits_text}

        app_name = event.repo_name
        try:
            running = executor.start(action, app_name, extra_env=extra_env)
        except ScriptNotFound:
            return "Deploy script not found", 500
        except SpawnError as exc:
            return f"Failed to start deploy script: {exc.cause}", 500

        if config.wait_for_webhook_deploy:
            _watch(running)
        else:
            threading.Thread(
                target=_watch, args=(running,), name=f"deploy-{app_name}-watch", daemon=True
            ).start()
        return "Webhook received", 200

    def deploy_all(action: Action):
        try:
            apps = load_apps_config(config.apps_config_file)
            names = apps.app_names()
            if not names:
                return (
                    jsonify({"success": False, "message": "No apps found in config"}),
                    400,
                )

            deployed: List[str] = []
            failed: List[str] = []
            errors: List[dict] = []
            for name in names:
                logger.info("Deploying %s (%s)", name, action.name)
                try:
                    executor.execute(action, name)
                except DeployError as exc:
                    logger.error("Deployment of %s failed: %s", name, exc.message)
                    failed.append(name)
                    errors.append(exc.to_dict())
                else:
                    deployed.append(name)

            logger.info("Batch finished: %d deployed, %d failed", len(deployed), len(failed))
            return jsonify(
                {"success": True, "deployed": deployed, "failed": failed, "errors": errors}
            )
        except Exception as exc:
            logger.exception("Batch deployment aborted")
            return jsonify({"success": False, "message": str(exc)}), 500

    @app.post("/init")
    def init():
        return deploy_all(Action.DEPLOY_BLUE_GREEN)

    @app.post("/init2")
    def init2():
        return deploy_all(Action.DEPLOY_DIRECT)

    @app.get("/ping")
    def ping():
        return jsonify(
            {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
        )

    @app.get("/")
    def index():
        return "Webhook server is running"

    return app
