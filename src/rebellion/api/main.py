"""
Standalone uvicorn launcher for the rebellion API.

    python -m rebellion.api.main --config-dir campaign/ --reload
    uvicorn rebellion.api.main:get_app --factory --port 8000

The app is always built through `get_app` so that `--reload` workers can
rebuild it; they find the config directory in REBELLION_CONFIG_DIR.
"""

import argparse
import logging
import os

import uvicorn
from fastapi import FastAPI

from ..interface.config import build_actors, build_service, load_config
from .server import create_app

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "REBELLION_CONFIG_DIR"


def get_app() -> FastAPI:
    """App factory reading the config directory from the environment."""
    config = load_config(os.environ.get(CONFIG_DIR_ENV, "."))
    return create_app(build_service(config), build_actors(config))


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Rebellion tracker HTTP API")
    parser.add_argument("--config-dir", default=".", help="Directory holding .rebellion_config.json")
    parser.add_argument("--host", help="Bind address (default: config host)")
    parser.add_argument("--port", type=int, help="Bind port (default: config api_port)")
    parser.add_argument("--reload", action="store_true", help="Restart on source changes")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(level=level, format='%(asctime)s [%(levelname)s] %(message)s')

    config = load_config(args.config_dir)
    host = args.host or config["host"]
    port = args.port or config["api_port"]
    os.environ[CONFIG_DIR_ENV] = args.config_dir

    logger.info(f"Rebellion API on http://{host}:{port} (config in {args.config_dir})")
    uvicorn.run(
        "rebellion.api.main:get_app",
        factory=True,
        host=host,
        port=port,
        reload=args.reload,
        log_level=logging.getLevelName(level).lower(),
    )


if __name__ == "__main__":
    main()
