"""
Rebellion tracker command line.

Usage:
    python -m rebellion.interface status
    python -m rebellion.interface bonuses --context knowledge
    python -m rebellion.interface week
    python -m rebellion.interface serve
    python -m rebellion.interface api
    python -m rebellion.interface reset
"""

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError
from rich.console import Console

from ..errors import RebellionError
from ..state import StateService
from ..systems.bonuses import get_roll_bonuses
from ..systems.phases import PhaseController
from ..tools.dice import RandomDice
from .cli import render_bonuses, render_status, render_week_report
from .config import Config, build_actors, build_service, load_config

logger = logging.getLogger(__name__)
console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rebellion",
        description="Track a rebellion organization week by week",
    )
    parser.add_argument(
        "--config-dir",
        default=".",
        help="Directory holding .rebellion_config.json (default: .)",
    )
    parser.add_argument("--state", help="State file (overrides config)")
    parser.add_argument("--seed", type=int, help="Dice seed (overrides config)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides config)",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Show resources, teams and active events")

    bonuses = sub.add_parser("bonuses", help="Show aggregated roll bonuses")
    bonuses.add_argument("--context", help="Action context, e.g. knowledge or sabotage")

    sub.add_parser("week", help="Roll events, run maintenance and advance the week")

    serve = sub.add_parser("serve", help="Run the websocket authority")
    serve.add_argument("--host", help="Host to bind to (overrides config)")
    serve.add_argument("--port", type=int, help="Port to bind to (overrides config)")

    api = sub.add_parser("api", help="Run the HTTP API")
    api.add_argument("--host", help="Host to bind to (overrides config)")
    api.add_argument("--port", type=int, help="Port to bind to (overrides config)")

    sub.add_parser("reset", help="Restore the default state")
    return parser


def resolve_config(args: argparse.Namespace) -> Config:
    """Config file values with command-line overrides on top."""
    config = load_config(args.config_dir)
    if args.state:
        config["state_path"] = args.state
    if args.seed is not None:
        config["seed"] = args.seed
    if args.log_level:
        config["log_level"] = args.log_level
    return config


def build_controller(service: StateService, config: Config) -> PhaseController:
    return PhaseController(service, RandomDice(config.get("seed")), build_actors(config))


def run_command(args: argparse.Namespace, config: Config) -> int:
    service = build_service(config)

    if args.command == "status":
        console.print(render_status(service.get(), build_actors(config)))

    elif args.command == "bonuses":
        bonuses = get_roll_bonuses(service.get(), args.context, build_actors(config))
        console.print(render_bonuses(bonuses, args.context))

    elif args.command == "week":
        controller = build_controller(service, config)
        report = controller.run_week()
        console.print(render_week_report(report))
        console.print(render_status(service.get(), build_actors(config)))

    elif args.command == "serve":
        from .websocket_server import run_server

        host = args.host or config["host"]
        port = args.port or config["port"]
        logger.info(f"Rebellion authority on ws://{host}:{port}")
        logger.info("Press Ctrl+C to stop")
        try:
            asyncio.run(run_server(service, host, port))
        except KeyboardInterrupt:
            logger.info("Shutting down...")

    elif args.command == "api":
        import uvicorn

        from ..api.server import create_app

        host = args.host or config["host"]
        port = args.port or config["api_port"]
        uvicorn.run(create_app(service, build_actors(config)), host=host, port=port)

    elif args.command == "reset":
        service.reset()
        console.print("[green]Rebellion state reset to defaults.[/green]")

    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the rebellion CLI."""
    args = build_parser().parse_args(argv)
    config = resolve_config(args)

    logging.basicConfig(
        level=getattr(logging, str(config["log_level"]).upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(message)s',
    )

    try:
        return run_command(args, config)
    except RebellionError as e:
        console.print(f"[red]{e}[/red]")
        return 1
    except ValidationError as e:
        console.print(f"[red]The state file is invalid:[/red]\n{e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
