"""Command line entrypoint: ``preview-agent serve|backup|backups|restore|version``."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from preview_agent import __version__
from preview_agent.agent import Agent
from preview_agent.api.app import run
from preview_agent.config import AgentConfig, load_config, parse_config
from preview_agent.errors import ConfigError
from preview_agent.logging import configure_logging
from preview_agent.models.backup import BackupOutcome


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="preview-agent",
        description="Forward auth, wake-on-demand and idle eviction for preview environments",
    )
    parser.add_argument("-c", "--config", type=Path, default=None, help="Config file path")
    parser.add_argument("--log-level", default=None, help="Override log_level from config")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the agent HTTP server and loops")
    serve.add_argument("-p", "--port", type=int, default=None, help="Override port from config")

    backup = subparsers.add_parser("backup", help="Back up project databases now")
    backup.add_argument("--name", default=None, help="Only back up this project")
    backup.add_argument(
        "--force-start",
        action="store_true",
        help="Start stopped projects so they can be backed up",
    )

    subparsers.add_parser("backups", help="List available backups")

    restore = subparsers.add_parser("restore", help="Restore a project database")
    restore.add_argument("name", help="Project name")
    source = restore.add_mutually_exclusive_group()
    source.add_argument("--date", default=None, help="Backup date (YYYY-MM-DD)")
    source.add_argument("--file", type=Path, default=None, help="Backup file to import")

    subparsers.add_parser("version", help="Show version")
    return parser


def _load(args: argparse.Namespace) -> AgentConfig:
    config = load_config(args.config)
    updates: dict[str, object] = {}
    if getattr(args, "port", None) is not None:
        updates["port"] = args.port
    if args.log_level:
        updates["log_level"] = args.log_level
    if updates:
        config = parse_config({**config.model_dump(), **updates}, config_path=config.config_path)
    configure_logging(config.log_level)
    return config


async def _backup(config: AgentConfig, name: str | None, force_start: bool) -> int:
    agent = Agent(config)
    await agent.registry.open()
    try:
        if name is not None:
            results = [await agent.backups.backup_project(name, force_start=force_start)]
        else:
            results = await agent.backups.backup_all(force_start=force_start)
    finally:
        await agent.registry.close()
    for result in results:
        detail = str(result.file) if result.file else result.error or ""
        sys.stdout.write(f"{result.outcome.value:8} {result.project} {detail}\n")
    return 1 if any(result.outcome is BackupOutcome.FAILED for result in results) else 0


async def _restore(config: AgentConfig, name: str, date: str | None, file: Path | None) -> int:
    agent = Agent(config)
    backup_file = file or agent.backups.find_backup(name, date)
    if backup_file is None:
        sys.stderr.write(f"No backup found for {name}\n")
        return 1
    ok = await agent.backups.restore_project(name, backup_file)
    return 0 if ok else 1


def _list_backups(config: AgentConfig) -> int:
    entries = Agent(config).backups.list_backups()
    if not entries:
        sys.stdout.write("No backups found\n")
        return 0
    for entry in entries:
        sys.stdout.write(f"{entry.date}  {entry.project:30} {entry.size_bytes:>12}  {entry.file}\n")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    command = args.command or "serve"

    if command == "version":
        sys.stdout.write(f"{__version__}\n")
        return 0

    try:
        config = _load(args)
    except ConfigError as exc:
        sys.stderr.write("Configuration errors:\n")
        for error in exc.errors:
            sys.stderr.write(f"  - {error}\n")
        return 1

    if command == "serve":
        run(config)
        return 0

    if command == "backup":
        return asyncio.run(_backup(config, args.name, args.force_start))

    if command == "backups":
        return _list_backups(config)

    if command == "restore":
        return asyncio.run(_restore(config, args.name, args.date, args.file))

    raise ValueError(f"Unsupported command: {command}")


if __name__ == "__main__":
    raise SystemExit(main())
