"""Command line entry point: build the context and serve the HTTP API."""

from __future__ import annotations

import argparse
import sys
from typing import Optional, Sequence

import uvicorn

from .api import create_app
from .core.config import Config, config
from .core.context import AppContext
from .core.logger import Logger, log


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ScreenSense semantic screen index")
    parser.add_argument("--host", default=None, help="Host to bind to (default: API_HOST)")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to (default: API_PORT)")
    parser.add_argument("--db-path", default=None, help="Semantic index database file")
    parser.add_argument("--fps", type=float, default=None, help="Screen watcher ticks per second")
    parser.add_argument("--no-watcher", action="store_true", help="Do not start the screen watcher")
    parser.add_argument("--no-cleanup", action="store_true", help="Do not run periodic retention jobs")
    parser.add_argument("--no-owlv2", action="store_true", help="Use heuristic detection only")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    return parser


def build_config(args: argparse.Namespace, base: Config = config) -> Config:
    """Apply command line overrides on top of the environment configuration."""
    overrides = {
        "api_host": args.host,
        "api_port": args.port,
        "db_path": args.db_path,
        "watcher_fps": args.fps,
        "use_owlv2": False if args.no_owlv2 else None,
        "log_level": "DEBUG" if args.debug else None,
    }
    updated = base.model_copy(update={key: value for key, value in overrides.items() if value is not None})
    updated.validate_config()
    return updated


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = build_config(args)
    except ValueError as e:
        log.error(f"Invalid configuration: {e}")
        return 2

    Logger.configure(level=settings.log_level, log_dir=settings.log_dir, to_file=settings.log_to_file)
    context = AppContext(settings)
    app = create_app(
        context,
        start_watcher=settings.watcher_enabled and not args.no_watcher,
        start_cleanup=not args.no_cleanup,
    )

    log.info(f"Starting ScreenSense API on {settings.api_host}:{settings.api_port}")
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level="debug" if args.debug else "info",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
