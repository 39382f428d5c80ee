"""Command line entrypoint for berth."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Awaitable, Callable

from loguru import logger

from .app import Application
from .config import BERTH_VERSION, CONFIG_ENV, load_config
from .errors import BerthError
from .logging_utils import configure_logging
from .paths import display_path
from .runtime import BerthRuntime

APP_COMMANDS = ("start", "stop", "restart", "rebuild", "destroy", "uninstall", "info")


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="berth")
    p.add_argument(
        "--config",
        default=os.environ.get(CONFIG_ENV),
        help="Path to berth config YAML (default: <BERTH_HOME>/config.yml or BERTH_CONFIG).",
    )
    p.add_argument("--log-level", default=None, help="Override the console log level.")
    sub = p.add_subparsers(dest="cmd", required=True)

    for name, help_text in (
        ("start", "Start an app."),
        ("stop", "Stop an app."),
        ("restart", "Stop then start an app."),
        ("rebuild", "Rebuild an app's containers from scratch."),
        ("info", "Print service info for an app."),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("app", nargs="?", help="App name (default: app in current directory).")

    destroy = sub.add_parser("destroy", help="Destroy an app and forget it.")
    destroy.add_argument("app", nargs="?")
    destroy.add_argument("-y", "--yes", action="store_true", help="Do not prompt.")

    uninstall = sub.add_parser("uninstall", help="Remove an app's containers.")
    uninstall.add_argument("app", nargs="?")
    uninstall.add_argument("--purge", action="store_true", help="Also remove volumes.")

    sub.add_parser("list", help="List registered apps.")
    sub.add_parser("cleanup", help="Remove containers of apps that no longer exist.")
    sub.add_parser("version", help="Print the version and check for updates.")

    return p.parse_args(argv)


def _print_app_report(app: Application) -> None:
    for item in app.urls:
        state = "ready" if item.status else "not ready"
        if item.assumed:
            state = "not scanned"
        print(f"  {item.url} ({state})")
    for warning in app.warnings:
        print(f"WARNING: {warning.title}", file=sys.stderr)
        for line in warning.detail:
            print(f"  {line}", file=sys.stderr)
        if warning.command:
            print(f"  {warning.command}", file=sys.stderr)
        if warning.url:
            print(f"  {warning.url}", file=sys.stderr)


def _confirm(question: str) -> bool:
    try:
        answer = input(f"{question} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


async def _run_app_command(runtime: BerthRuntime, args: argparse.Namespace) -> int:
    app = await runtime.get_app(args.app, cwd=Path.cwd())
    if app is None:
        target = args.app or display_path(Path.cwd())
        logger.error("Could not find an app for {}", target)
        return 1

    lifecycle = runtime.lifecycle
    actions: dict[str, Callable[[], Awaitable[object]]] = {
        "start": lambda: lifecycle.start(app),
        "stop": lambda: lifecycle.stop(app),
        "restart": lambda: lifecycle.restart(app),
        "rebuild": lambda: lifecycle.rebuild(app),
        "destroy": lambda: lifecycle.destroy(app),
        "uninstall": lambda: lifecycle.uninstall(app, purge=args.purge),
        "info": lambda: lifecycle.info(app),
    }
    if args.cmd == "destroy" and not args.yes:
        if not _confirm(f"Are you sure you want to DESTROY {app.name}?"):
            logger.info("DESTRUCTION AVERTED!")
            return 0

    await actions[args.cmd]()
    if args.cmd == "info":
        print(json.dumps(app.summary(), indent=2))
        return 0
    _print_app_report(app)
    return 0


async def _run_async(runtime: BerthRuntime, args: argparse.Namespace) -> int:
    if args.cmd in APP_COMMANDS:
        return await _run_app_command(runtime, args)
    if args.cmd == "list":
        for entry in runtime.apps.list(use_cache=False):
            print(f"{entry.name}\t{display_path(Path(entry.dir))}")
        return 0
    if args.cmd == "cleanup":
        removed = await runtime.lifecycle.cleanup()
        print(f"Removed {len(removed)} orphaned container(s)")
        return 0
    if args.cmd == "version":
        print(BERTH_VERSION)
        if runtime.config.updates.enabled:
            update = await runtime.updates.check(BERTH_VERSION)
            if update["available"]:
                print(f"Update available: {update['version']} {update['url']}".rstrip())
        return 0
    raise SystemExit(f"unknown command {args.cmd}")


def main(argv: list[str] | None = None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)
    args = _parse_args(argv)

    try:
        config = load_config(args.config)
    except BerthError as exc:
        print(f"berth: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc
    configure_logging(config.resolved_log_dir, args.log_level or config.log_level)

    try:
        runtime = BerthRuntime(config)
        raise SystemExit(asyncio.run(_run_async(runtime, args)))
    except BerthError as exc:
        logger.error("{}", exc)
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        logger.info("Interrupted")
        raise SystemExit(130)


if __name__ == "__main__":
    main()
