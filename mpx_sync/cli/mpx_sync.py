"""Command line entry point for the mpx sync pipeline.

Each command runs one unit of work (one listen cycle, one queue drain, ...)
and prints its result as JSON, so the commands can be driven from cron or a
process supervisor.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from contextlib import AsyncExitStack
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

from mpx_sync.adapters.mpx.cache_strategy import CachingTransport
from mpx_sync.adapters.mpx.client import MpxClient
from mpx_sync.adapters.mpx.errors import MpxClientError, SyncError
from mpx_sync.adapters.mpx.sync.constants import IMPORTER_QUEUE, NOTIFICATION_QUEUE
from mpx_sync.adapters.mpx.sync.service import build_sync_service
from mpx_sync.config import load_config
from mpx_sync.core.logging_utils import setup_json_logging
from mpx_sync.db.session import DatabaseSessionManager
from mpx_sync.infrastructure.cache.entity_cache import EntityCache
from mpx_sync.infrastructure.messaging.event_bus import EventBus
from mpx_sync.infrastructure.persistence.sqlite.repositories.http_cache_repository import (
    SqliteHttpCacheRepositoryAdapter,
)

if TYPE_CHECKING:
    from mpx_sync.adapters.mpx.sync.service import MpxSyncService
    from mpx_sync.config import AppConfig

logger = logging.getLogger(__name__)

__all__ = ["main", "parse_args", "run_command"]

# Commands that never call the remote API.
_LOCAL_COMMANDS = frozenset(
    {"reset-cursor", "show-cursor", "status", "clear-queue", "purge-cache"}
)


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        msg = f"expected an integer, got {value!r}"
        raise argparse.ArgumentTypeError(msg) from exc
    if number < 1:
        msg = "must be at least 1"
        raise argparse.ArgumentTypeError(msg)
    return number


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        msg = f"expected an integer, got {value!r}"
        raise argparse.ArgumentTypeError(msg) from exc
    if number < 0:
        msg = "cannot be negative"
        raise argparse.ArgumentTypeError(msg)
    return number


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="mpx-sync",
        description="Synchronize mpx media objects into the local database",
        allow_abbrev=False,
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        help="Override the configured SQLite path for this run.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override the configured log level for this run.",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        help="Read environment variables from this file instead of ./.env.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    listen = commands.add_parser("listen", help="Run one notification listen cycle.")
    listen.add_argument("collection", help="Configured collection key.")

    notifications = commands.add_parser(
        "process-notifications", help="Drain the notification queue."
    )
    notifications.add_argument("--max-items", type=_positive_int)
    notifications.add_argument("--lease-seconds", type=_positive_int)

    queue_import = commands.add_parser(
        "queue-import", help="Queue an import task for every object of a collection."
    )
    queue_import.add_argument("collection", help="Configured collection key.")
    queue_import.add_argument("--limit", type=_positive_int)
    queue_import.add_argument("--offset", type=_non_negative_int, default=0)

    imports = commands.add_parser("process-imports", help="Drain the full-import queue.")
    imports.add_argument("--max-items", type=_positive_int)
    imports.add_argument("--lease-seconds", type=_positive_int)

    import_item = commands.add_parser("import-item", help="Import one object right away.")
    import_item.add_argument("collection", help="Configured collection key.")
    import_item.add_argument("remote_id", help="Object id, numeric or full URI.")
    import_item.add_argument(
        "--use-cache",
        action="store_true",
        help="Allow the response cache to serve the object.",
    )

    reset = commands.add_parser("reset-cursor", help="Forget the notification cursor.")
    reset.add_argument("collection", help="Configured collection key.")

    show = commands.add_parser("show-cursor", help="Print the notification cursor.")
    show.add_argument("collection", help="Configured collection key.")

    commands.add_parser("status", help="Print the number of queued messages per queue.")

    clear = commands.add_parser("clear-queue", help="Delete every message of one queue.")
    clear.add_argument("queue", choices=[NOTIFICATION_QUEUE, IMPORTER_QUEUE])

    purge = commands.add_parser("purge-cache", help="Drop stale HTTP response cache entries.")
    purge.add_argument(
        "--older-than-seconds",
        type=_non_negative_int,
        help="Age limit for kept entries. Defaults to the configured cache TTL.",
    )

    return parser.parse_args(argv)


def _load_env_file(path: Path) -> None:
    """Load ``KEY=value`` lines into the process environment without overriding it."""
    if not path.is_file():
        return

    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue
        if len(value) > 1 and value[0] == value[-1] and value[0] in {'"', "'"}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _prepare_config(args: argparse.Namespace) -> AppConfig:
    """Load configuration and apply CLI overrides."""
    env_file = args.env_file or Path.cwd() / ".env"
    _load_env_file(env_file)

    try:
        cfg = load_config(require_token=args.command not in _LOCAL_COMMANDS)
    except RuntimeError as exc:
        msg = f"Configuration error: {exc}"
        raise SystemExit(msg) from exc

    if args.db_path:
        cfg = replace(cfg, database=cfg.database.model_copy(update={"path": str(args.db_path)}))
    if args.log_level:
        cfg = replace(cfg, runtime=cfg.runtime.model_copy(update={"log_level": args.log_level}))
    return cfg


async def _dispatch(service: MpxSyncService, args: argparse.Namespace) -> Any:
    command = args.command
    if command == "listen":
        return await service.listen(args.collection)
    if command == "process-notifications":
        return await service.process_notification_queue(args.max_items, args.lease_seconds)
    if command == "queue-import":
        return await service.queue_full_import(args.collection, args.limit, args.offset)
    if command == "process-imports":
        return await service.process_import_queue(args.max_items, args.lease_seconds)
    if command == "import-item":
        records = await service.import_by_id(
            args.collection, args.remote_id, bypass_cache=not args.use_cache
        )
        return {
            "collection": args.collection,
            "remote_id": args.remote_id,
            "record_ids": [record.id for record in records],
        }
    if command == "reset-cursor":
        await service.reset_cursor(args.collection)
        return {"collection": args.collection, "cursor": await service.get_cursor(args.collection)}
    if command == "show-cursor":
        return {"collection": args.collection, "cursor": await service.get_cursor(args.collection)}
    if command == "status":
        return {"queues": await service.queue_sizes()}
    if command == "clear-queue":
        return {"queue": args.queue, "deleted": await service.clear_queue(args.queue)}
    msg = f"Unknown command: {command}"
    raise SystemExit(msg)


def _to_json(result: Any) -> str:
    if hasattr(result, "model_dump"):
        result = result.model_dump(mode="json")
    return json.dumps(result, ensure_ascii=False, indent=2, default=str)


async def _purge_cache(
    repository: SqliteHttpCacheRepositoryAdapter, args: argparse.Namespace, cfg: AppConfig
) -> dict[str, int]:
    max_age = args.older_than_seconds
    if max_age is None:
        max_age = cfg.mpx.cache_ttl_seconds
    purged = await repository.async_purge_older_than(max_age)
    logger.info("http_cache_purged", extra={"max_age_seconds": max_age, "purged": purged})
    return {"max_age_seconds": max_age, "purged": purged}


async def run_command(args: argparse.Namespace, cfg: AppConfig) -> Any:
    """Build the pipeline for ``cfg`` and run the parsed command once."""
    session = DatabaseSessionManager(
        cfg.database.path,
        operation_timeout=cfg.database.operation_timeout,
        max_retries=cfg.database.max_retries,
    )
    session.migrate()

    cache_repository = SqliteHttpCacheRepositoryAdapter(session)
    if args.command == "purge-cache":
        try:
            return await _purge_cache(cache_repository, args, cfg)
        finally:
            session.close()

    http_cache = CachingTransport(cache_repository, ttl_seconds=cfg.mpx.cache_ttl_seconds)
    entity_cache = EntityCache()
    try:
        async with AsyncExitStack() as stack:
            client = await stack.enter_async_context(
                MpxClient.from_config(cfg.mpx, transport=http_cache)
            )
            service = build_sync_service(
                cfg,
                session,
                client,
                event_bus=EventBus(),
                entity_cache=entity_cache,
            )
            return await _dispatch(service, args)
    finally:
        logger.debug("http_cache_stats", extra=dict(http_cache.stats))
        logger.debug("entity_cache_stats", extra=entity_cache.get_stats())
        session.close()


def main(argv: list[str] | None = None) -> int:
    """Entry point for ``mpx-sync`` and ``python -m mpx_sync``."""
    args = parse_args(argv)
    cfg = _prepare_config(args)
    setup_json_logging(
        cfg.runtime.log_level,
        use_loguru=cfg.runtime.use_loguru,
        log_file=cfg.runtime.log_file,
    )

    try:
        result = asyncio.run(run_command(args, cfg))
    except KeyboardInterrupt:  # pragma: no cover - user cancelled
        return 1
    except (MpxClientError, SyncError) as exc:
        logger.error(
            "cli_command_failed",
            extra={"command": args.command, "error": str(exc), "error_type": type(exc).__name__},
        )
        return 1
    except Exception as exc:
        logger.exception("cli_command_crashed", exc_info=exc, extra={"command": args.command})
        return 1

    sys.stdout.write(_to_json(result) + "\n")
    sys.stdout.flush()
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
