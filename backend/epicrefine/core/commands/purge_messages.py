#!/usr/bin/env python3
"""
Conversation Message Purge Utility.

Deletes superseded conversation messages, keeping the last assistant reply
(and optionally the user message before it). Runs as a dry run unless
--execute is given; the per-analysis summaries are printed as JSON.

Usage:
    # Preview purging every COMPLETED analysis
    python -m epicrefine.core.commands.purge_messages

    # Purge every COMPLETED analysis, keeping the final question/answer pair
    python -m epicrefine.core.commands.purge_messages --execute --keep-last-user

    # Purge one analysis (any status)
    python -m epicrefine.core.commands.purge_messages --analysis-id <id> --execute

    # Wipe one analysis's conversation entirely
    python -m epicrefine.core.commands.purge_messages --analysis-id <id> --no-keep-last-assistant --execute

Run it from cron (or any scheduler) for periodic retention.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from epicrefine.config import settings
from epicrefine.core.conversation.retention_service import RetentionService, retention_service
from epicrefine.core.models.conversation_models import PurgeSummary
from epicrefine.core.shared.database_service import database_service

logger = logging.getLogger("epicrefine.commands.purge_messages")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Purge superseded conversation messages (dry run by default)"
    )
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Actually delete messages (default: dry run)",
    )
    parser.add_argument(
        "--analysis-id",
        type=str,
        default=None,
        help="Purge a single analysis instead of every COMPLETED analysis",
    )
    parser.add_argument(
        "--keep-last-user",
        action="store_true",
        default=settings.purge_keep_last_user,
        help="Also keep the user message before the last assistant message",
    )
    parser.add_argument(
        "--no-keep-last-assistant",
        dest="keep_last_assistant",
        action="store_false",
        help="Keep nothing (only with --analysis-id)",
    )
    return parser


async def run_purge(
    args: argparse.Namespace,
    service: Optional[RetentionService] = None,
) -> List[PurgeSummary]:
    """Run the purge described by parsed arguments."""
    service = service or retention_service
    dry_run = not args.execute

    if args.analysis_id:
        summary = await service.purge_one(
            args.analysis_id,
            dry_run=dry_run,
            keep_last_assistant=args.keep_last_assistant,
            keep_last_user=args.keep_last_user,
        )
        return [summary]

    if not args.keep_last_assistant:
        logger.warning("--no-keep-last-assistant only applies with --analysis-id; ignoring it")

    return await service.purge_completed_batch(dry_run=dry_run, keep_last_user=args.keep_last_user)


async def _main(args: argparse.Namespace) -> int:
    try:
        summaries = await run_purge(args)
    except Exception as e:
        logger.error(f"Purge failed: {e}")
        return 1
    finally:
        await database_service.close()

    print(json.dumps([s.model_dump() for s in summaries], indent=2))
    return 1 if any(s.error for s in summaries) else 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(levelname)s: %(message)s",
    )

    if args.execute:
        logger.info("Running purge in EXECUTE mode")
    else:
        logger.info("Running purge in DRY RUN mode (pass --execute to delete)")

    return asyncio.run(_main(args))


if __name__ == "__main__":
    sys.exit(main())
