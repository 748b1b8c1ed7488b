"""
Ordered schema migrations.

Each migration module exposes ``NAME`` and ``async upgrade(conn)``. Applied
names are recorded in the ``migrations`` table in the same transaction as
the migration, so a failed migration is never marked as applied.
"""

from typing import List, Optional, Sequence

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncEngine

from minno_server.database import utcnow
from minno_server.models.migration import MigrationModel
from minno_server.utils.logging import get_logger

from . import m001_initial_schema, m002_add_indexes, m003_unique_slack_message

logger = get_logger("migration")

MIGRATIONS = [m001_initial_schema, m002_add_indexes, m003_unique_slack_message]


async def get_applied_migrations(engine: AsyncEngine) -> List[str]:
    """Return applied migration names in application order."""
    async with engine.begin() as conn:
        await conn.run_sync(MigrationModel.__table__.create, checkfirst=True)
        result = await conn.execute(
            select(MigrationModel.name).order_by(MigrationModel.id)
        )
        return list(result.scalars().all())


async def apply_migrations(engine: AsyncEngine, migrations: Optional[Sequence] = None) -> List[str]:
    """
    Apply every pending migration in name order.

    Args:
        engine: Engine to migrate
        migrations: Migration modules (defaults to MIGRATIONS)

    Returns:
        list: Names of the migrations applied by this call

    Raises:
        Exception: Whatever the failing migration raised, after rollback
    """
    pending_source = MIGRATIONS if migrations is None else migrations
    applied = set(await get_applied_migrations(engine))
    newly_applied = []

    for migration in sorted(pending_source, key=lambda m: m.NAME):
        if migration.NAME in applied:
            continue

        logger.info("Running migration", migration=migration.NAME)

        try:
            async with engine.begin() as conn:
                await migration.upgrade(conn)
                await conn.execute(
                    insert(MigrationModel.__table__).values(name=migration.NAME, applied_at=utcnow())
                )
        except Exception as e:
            logger.error("Migration failed, rolled back", migration=migration.NAME, error=str(e))
            raise

        newly_applied.append(migration.NAME)
        logger.info("Migration completed", migration=migration.NAME)

    if not newly_applied:
        logger.info("No pending migrations")

    return newly_applied
