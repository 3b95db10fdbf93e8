"""Command line entry point for the webhook server."""
from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional, Sequence

from .config import load_service_config
from .logs import setup_logger
from .server import create_app

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Receive GitHub push webhooks and run deploy scripts"
    )
    parser.add_argument("--host", default=None, help="Interface to bind (default: DEPLOY_HOOK_HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: DEPLOY_HOOK_PORT or 9999)")
    parser.add_argument(
        "--base-dir",
        type=Path,
        default=None,
        help="Directory holding the deploy scripts and apps.json",
    )
    parser.add_argument("--debug", action="store_true", help="Enable verbose debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)
    config = load_service_config()

    overrides = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.base_dir is not None:
        overrides["base_dir"] = args.base_dir
    if args.debug:
        overrides["debug"] = True
    config = replace(config, **overrides)

    setup_logger(debug=config.debug, log_path=config.log_path)
    app = create_app(config)
    logger.info("Server is listening on port %s", config.port)
    app.run(host=config.host, port=config.port, debug=False)


if __name__ == "__main__":  # pragma: no cover
    main()
