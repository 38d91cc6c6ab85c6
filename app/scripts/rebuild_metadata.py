"""Rebuild lifecycle metadata for every ticket.

Usage: ``python -m app.scripts.rebuild_metadata``
"""

from __future__ import annotations

import asyncio
import sys

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core.config import get_settings
from app.core.logging import configure_logging
from app.main import build_lifecycle_service, to_asyncpg_dsn
from app.tickets.repository import TicketRepository
from app.tickets.service import BatchReport


def format_report(report: BatchReport) -> str:
    lines = [f"Processed {report.processed} tickets: {report.succeeded} succeeded, {len(report.failed)} failed"]
    for ticket_id, reason in sorted(report.failed.items()):
        lines.append(f"  FAILED {ticket_id}: {reason}")
    for ticket_id, warnings in sorted(report.warnings.items()):
        for warning in warnings:
            lines.append(f"  WARNING {ticket_id}: {warning}")
    return "\n".join(lines)


async def run() -> BatchReport:
    settings = get_settings()
    configure_logging(settings)
    engine = create_async_engine(to_asyncpg_dsn(settings.postgres_dsn), future=True)
    try:
        repository = TicketRepository(async_sessionmaker(engine, expire_on_commit=False), engine=engine)
        service = build_lifecycle_service(repository, settings)
        return await service.reconstruct_all(actor="rebuild-script")
    finally:
        await engine.dispose()


def main() -> int:
    report = asyncio.run(run())
    print(format_report(report))
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
