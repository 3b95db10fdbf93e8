"""WSGI entry point: serve ``scripts.webhook.server:app`` or run this file directly."""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from deploy_hook.config import load_service_config  # noqa: E402
from deploy_hook.server import create_app  # noqa: E402

config = load_service_config()
app = create_app(config)


if __name__ == "__main__":
    app.run(host=config.host, port=config.port)
