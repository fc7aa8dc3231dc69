# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Command-line entry point.

Runs the pipeline once in the current process and exits with the code
of its outcome: 0 completed, 2 completed with errors, 3 skipped, 1 failed.

Usage:
    python -m classpulse run [--force-refresh] [--cron]
    python -m classpulse status
    python -m classpulse store-token TENANT PRINCIPAL [--expires-at ISO] < token.txt
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from datetime import datetime

from classpulse.core.config import Settings, get_settings
from classpulse.domains.batch.runtime import build_runtime
from classpulse.domains.credentials import TokenCipher, save_personal_token
from classpulse.infrastructure.cache import close_redis, get_redis, init_redis
from classpulse.infrastructure.cache.redis_client import RedisError
from classpulse.infrastructure.database.connection import (
    close_database,
    get_sessionmaker,
    init_database,
)
from classpulse.infrastructure.database.models import JobTrigger
from classpulse.utils.datetime import ensure_utc, format_iso, utc_now
from classpulse.utils.logging import setup_logging

logger = logging.getLogger(__name__)


async def _store_token(args: argparse.Namespace, settings: Settings) -> int:
    cipher = TokenCipher.from_settings(settings.lms)
    if cipher is None:
        print("LMS_TOKEN_ENCRYPTION_KEY is not set", file=sys.stderr)
        return 1

    token = sys.stdin.readline().strip()
    if not token:
        print("No token given on standard input", file=sys.stderr)
        return 1

    expires_at = ensure_utc(datetime.fromisoformat(args.expires_at)) if args.expires_at else None
    await save_personal_token(
        get_sessionmaker(), cipher, args.tenant, args.principal, token, expires_at
    )
    print(json.dumps({"tenant": args.tenant, "principal": args.principal, "stored": True}))
    return 0


async def _main(args: argparse.Namespace) -> int:
    settings = get_settings()
    setup_logging(settings)
    await init_database(settings)

    if args.command == "store-token":
        try:
            return await _store_token(args, settings)
        finally:
            await close_database()

    redis = None
    if settings.batch.lease_backend == "redis":
        try:
            await init_redis(settings)
            redis = get_redis()
        except RedisError as e:
            logger.warning("Redis unavailable, using local lease: %s", str(e))

    runtime = build_runtime(settings, get_sessionmaker(), redis=redis)
    try:
        if args.command == "status":
            progress = await runtime.orchestrator.get_progress()
            print(json.dumps(asdict(progress) if progress else None, indent=2))
            return 0

        trigger = JobTrigger.CRON if args.cron else JobTrigger.MANUAL
        planned = None
        if trigger == JobTrigger.CRON:
            now = utc_now()
            planned = runtime.window.matching_run(now)
            if planned is None:
                next_run = runtime.window.next_run(now)
                print(json.dumps({"outcome": "NOT_SCHEDULED", "next_run": format_iso(next_run)}))
                return 0

        result = await runtime.orchestrator.start_run(
            trigger,
            force_refresh=args.force_refresh,
            scheduled_for=planned,
        )
        print(json.dumps(result.to_dict(), indent=2))
        return result.outcome.exit_code
    finally:
        await runtime.close()
        await close_redis()
        await close_database()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="classpulse")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run the batch pipeline once")
    run.add_argument("--force-refresh", action="store_true", help="Regenerate every analysis")
    run.add_argument("--cron", action="store_true", help="Run only if a scheduled time is due")

    subparsers.add_parser("status", help="Show progress of the current or last job")

    store = subparsers.add_parser(
        "store-token", help="Store a personal LMS token read from standard input"
    )
    store.add_argument("tenant", help="Tenant id the token was issued by")
    store.add_argument("principal", help="Principal the token belongs to")
    store.add_argument("--expires-at", help="ISO 8601 expiry of the token")

    return asyncio.run(_main(parser.parse_args(argv)))


if __name__ == "__main__":
    sys.exit(main())
