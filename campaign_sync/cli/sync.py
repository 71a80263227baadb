#!/usr/bin/env python3
"""One-shot runs of the sync jobs."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os

from sqlalchemy import func, select

from campaign_sync.config import database_dsn_safe, settings
from campaign_sync.execution.pipeline import (
    build_components,
    run_fund_reconciliation,
    run_ingest_cycle,
    run_status_reconciliation,
    run_token_issuance,
)
from campaign_sync.models.database import Campaign, ProcessStatus, SellProgress
from campaign_sync.services.database import create_session_factory, init_models

COMMANDS = ("init-db", "ingest", "reconcile-funds", "issue-tokens", "claims", "status")


async def _status_report(session_factory) -> dict:
    async with session_factory() as db:
        campaigns = (await db.execute(select(func.count(Campaign.id)))).scalar_one()
        sell_progress = (await db.execute(select(func.count(SellProgress.id)))).scalar_one()
        rows = await db.execute(
            select(ProcessStatus.status, func.count(ProcessStatus.id)).group_by(ProcessStatus.status)
        )
        return {
            "campaigns": campaigns,
            "sell_progress": sell_progress,
            "statuses": {status: count for status, count in rows.all()},
        }


async def _run(args: argparse.Namespace) -> dict:
    if args.command == "init-db":
        session_factory = create_session_factory(settings.database_url)
        await init_models(session_factory)
        return {"database": database_dsn_safe(), "status": "initialized"}

    components = build_components(settings)
    try:
        if args.command == "ingest":
            return await run_ingest_cycle(components)
        if args.command == "reconcile-funds":
            return await run_fund_reconciliation(components)
        if args.command == "issue-tokens":
            return await run_token_issuance(components)
        if args.command == "claims":
            if components.claims.wallet is None:
                return {"status": "disabled"}
            return await components.claims.run_claim_updates()
        if args.reconcile:
            await run_status_reconciliation(components)
        return await _status_report(components.session_factory)
    finally:
        await components.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run campaign sync jobs once")
    parser.add_argument("command", choices=COMMANDS, help="Job to run")
    parser.add_argument(
        "--reconcile",
        action="store_true",
        help="Re-derive campaign statuses before printing the status report",
    )
    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    )
    result = asyncio.run(_run(args))
    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
