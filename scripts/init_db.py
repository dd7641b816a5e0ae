"""
Create the FlowInvest ``records`` table and report its layout.

Run:
    python scripts/init_db.py
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy import func, inspect, select
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncEngine

from flowinvest.config import Settings, get_settings
from flowinvest.database.models import Record
from flowinvest.database.session import create_engine_from_settings, init_models

logger = logging.getLogger(__name__)


def configure_logging(log_level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )


def _describe_records(sync_conn) -> tuple[list[dict], list[dict]]:
    inspector = inspect(sync_conn)
    table = Record.__tablename__
    return inspector.get_columns(table), inspector.get_indexes(table)


async def report_records_table(engine: AsyncEngine) -> None:
    """Log the live columns and indexes of ``records`` and flag drift from the model."""
    async with engine.connect() as conn:
        columns, indexes = await conn.run_sync(_describe_records)
        counts = (
            await conn.execute(select(Record.collection, func.count()).group_by(Record.collection))
        ).all()

    for column in columns:
        logger.info(
            "records.%s %s %s", column["name"], column["type"], "NULL" if column["nullable"] else "NOT NULL"
        )
    logger.info("records indexes: %s", ", ".join(index["name"] for index in indexes) or "none")

    missing = set(Record.__table__.columns.keys()) - {column["name"] for column in columns}
    if missing:
        logger.warning("records is missing columns %s; drop and recreate the table", ", ".join(sorted(missing)))

    for collection, count in counts:
        logger.info("%s: %s records", collection, count)


async def initialize_database(settings: Settings) -> None:
    if not settings.DATABASE_URL:
        raise SystemExit("DATABASE_URL is not set; nothing to initialize.")

    engine = create_engine_from_settings(settings)
    logger.info("Connecting to %s", make_url(settings.DATABASE_URL).render_as_string(hide_password=True))
    try:
        await init_models(engine)
        await report_records_table(engine)
    finally:
        await engine.dispose()
    logger.info("records table ready.")


def main() -> None:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    asyncio.run(initialize_database(settings))


if __name__ == "__main__":
    main()
