# src/sitewatch/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs until a signal (or /exit on
the console):
- request queue worker and task scheduler on the asyncio loop,
- Matrix connector on the same loop (optional),
- console reader in a daemon thread (optional).
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import dataclasses
import logging
import signal
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from ..config import Settings, get_settings, write_new_config
from ..errors import ConfigError, StoreOpenError
from ..logging_setup import setup_logging
from ..tasks.registry import default_registry
from ..tasks.task_scheduler import install_fallback_handler
from .bootstrap import create_initial_state, shutdown, start_services

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _version() -> str:
    try:
        return version("sitewatch")
    except PackageNotFoundError:
        return "0+unknown"


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="sitewatch", description="Scheduled site scraping with deduplicated notifications.")
    p.add_argument("--task", metavar="SLUG", help="run only this task (testing mode)")
    p.add_argument("--level", choices=LOG_LEVELS, type=str.upper, help="console log level")
    p.add_argument("--config", metavar="PATH", type=Path, help="task config file (default: config.json)")
    p.add_argument("--new-config", action="store_true", help="write a fresh config file and exit")
    p.add_argument("--list-tasks", action="store_true", help="list registered tasks and exit")
    p.add_argument("--version", action="version", version=f"%(prog)s {_version()}")
    return p


def _report_config_error(e: ConfigError) -> None:
    where = f" ({e.path})" if e.path is not None else ""
    logger.error("Config error%s: %s", where, e)
    for line in e.details:
        logger.error("  %s", line)
    logger.error("Run `sitewatch --new-config` to generate a fresh config file.")


def new_config(settings: Settings) -> int:
    try:
        path = write_new_config(settings.config_path, default_registry().config_templates())
    except ConfigError as e:
        logger.error("%s (%s)", e, e.path)
        return 1
    except OSError as e:
        logger.error("Could not write config file %s: %s", settings.config_path, e)
        return 1
    logger.info("Wrote a new config file to %s. Fill in the task sections and restart.", path)
    return 0


def list_tasks() -> int:
    registry = default_registry()
    for slug in registry.slugs():
        task = registry.build(slug)
        print(f"{slug}\t{task.display_name} v{task.version}")
    return 0


async def serve(settings: Settings, *, only_task: str | None = None) -> int:
    loop = asyncio.get_running_loop()
    install_fallback_handler(loop)

    try:
        state = create_initial_state(settings=settings, only_task=only_task)
    except ConfigError as e:
        _report_config_error(e)
        return 1
    except StoreOpenError as e:
        logger.error("%s", e)
        return 1

    stop = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        logger.info("Signal %s received, shutting down...", signal.Signals(signum).name)
        stop.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler is not available on Windows event loops.
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signum, _handle_signal, signum)

    try:
        await start_services(state)

        if settings.console_enabled:
            from ..connectors.console_connector import start_console_in_background

            start_console_in_background(state, loop, stop)
        else:
            logger.info("Console disabled. Press Ctrl+C to stop.")

        await stop.wait()
    finally:
        await shutdown(state)
        logger.info("Bye.")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    settings = get_settings()
    if args.config is not None:
        settings = dataclasses.replace(settings, config_path=args.config)

    level_name = (args.level or settings.log_level or "INFO").upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.log_dir, console_level=console_level)

    if args.list_tasks:
        return list_tasks()

    if args.new_config:
        return new_config(settings)

    logger.info("Starting %s %s...", settings.app_name, _version())
    try:
        return asyncio.run(serve(settings, only_task=args.task))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
