from __future__ import annotations

import logging
from typing import Callable, Sequence

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine

from servicebroker.core.errors import MigrationError
from servicebroker.domain.models import AutoIncrementId, JsonDocument, Migration


logger = logging.getLogger(__name__)

MigrationStep = Callable[[Operations], None]

# Oldest ledger position this build can upgrade from; older schemas need an intermediate release.
BASELINE_MIGRATION = 0


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _initial_tables(op: Operations) -> None:
    op.create_table(
        "service_instance_details",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("url", sa.String(), nullable=True),
        sa.Column("other_details", JsonDocument, nullable=True),
        sa.Column("service_id", sa.String(), nullable=False),
        sa.Column("plan_id", sa.String(), nullable=False),
        sa.Column("organization_guid", sa.String(), nullable=True),
        sa.Column("space_guid", sa.String(), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "service_binding_credentials",
        sa.Column("id", AutoIncrementId, primary_key=True, autoincrement=True),
        sa.Column("service_instance_id", sa.String(255), nullable=False),
        sa.Column("binding_id", sa.String(255), nullable=False),
        sa.Column("service_id", sa.String(), nullable=False),
        sa.Column("other_details", JsonDocument, nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_service_binding_credentials_service_instance_id",
        "service_binding_credentials",
        ["service_instance_id"],
    )
    op.create_table(
        "provision_request_details",
        sa.Column("id", AutoIncrementId, primary_key=True, autoincrement=True),
        sa.Column("service_instance_id", sa.String(255), nullable=False),
        sa.Column("request_details", JsonDocument, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_provision_request_details_service_instance_id",
        "provision_request_details",
        ["service_instance_id"],
    )
    op.create_table(
        "plan_details",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("service_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("features", JsonDocument, nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_plan_details_service_id", "plan_details", ["service_id"])
    op.create_table(
        "migrations",
        sa.Column("id", AutoIncrementId, primary_key=True, autoincrement=True),
        sa.Column("migration_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def _instance_status(op: Operations) -> None:
    # Rows written before explicit lifecycle tracking are all finished instances.
    op.add_column(
        "service_instance_details",
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
    )


def _live_binding_indexes(op: Operations) -> None:
    op.create_index(
        "uq_service_binding_credentials_live",
        "service_binding_credentials",
        ["service_instance_id", "binding_id"],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL"),
        sqlite_where=sa.text("deleted_at IS NULL"),
    )
    op.create_index(
        "ix_service_instance_details_deleted_at",
        "service_instance_details",
        ["deleted_at"],
    )


# Append only; the list index is the migration id recorded in the ledger.
MIGRATIONS: list[MigrationStep] = [
    _initial_tables,
    _instance_status,
    _live_binding_indexes,
]


def _read_last_applied(connection: Connection) -> int:
    if not sa.inspect(connection).has_table(Migration.__tablename__):
        return -1
    value = connection.execute(sa.select(sa.func.max(Migration.migration_id))).scalar()
    return -1 if value is None else int(value)


async def last_applied_migration(engine: AsyncEngine) -> int:
    async with engine.connect() as conn:
        return await conn.run_sync(_read_last_applied)


def _apply(connection: Connection, step: MigrationStep) -> None:
    context = MigrationContext.configure(connection)
    step(Operations(context))


async def run_migrations(
    engine: AsyncEngine,
    migrations: Sequence[MigrationStep] | None = None,
    *,
    baseline: int = BASELINE_MIGRATION,
) -> int:
    """Bring the schema up to date and return the number of migrations applied.

    The ledger holds the index of every applied migration. An empty or missing ledger
    means a fresh database. A ledger ahead of this build, or behind the supported
    baseline, is refused before any DDL runs.
    """
    steps = list(MIGRATIONS if migrations is None else migrations)
    last_applied = await last_applied_migration(engine)
    if last_applied >= len(steps):
        raise MigrationError(
            f"database schema is at migration {last_applied} but this build only knows "
            f"{len(steps) - 1}; upgrade the broker before starting it"
        )
    if last_applied != -1 and last_applied < baseline:
        raise MigrationError(
            f"database schema is at migration {last_applied}, older than the supported "
            f"baseline {baseline}; upgrade through an intermediate release first"
        )

    applied = 0
    for index in range(last_applied + 1, len(steps)):
        logger.info("migration_apply migration_id=%s name=%s", index, steps[index].__name__)
        # Each step and its ledger row commit together so a crash resumes at the next step.
        async with engine.begin() as conn:
            await conn.run_sync(_apply, steps[index])
            await conn.execute(sa.insert(Migration.__table__).values(migration_id=index))
        applied += 1
    if applied == 0:
        logger.info("migration_noop last_applied=%s", last_applied)
    return applied
