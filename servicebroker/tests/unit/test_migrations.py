from __future__ import annotations

import pytest
import sqlalchemy as sa

from servicebroker.core.errors import MigrationError
from servicebroker.persistence.migrations import MIGRATIONS, last_applied_migration, run_migrations


async def _table_names(engine) -> set[str]:
    async with engine.connect() as conn:
        return set(await conn.run_sync(lambda sync_conn: sa.inspect(sync_conn).get_table_names()))


@pytest.mark.asyncio
async def test_fresh_database_applies_every_migration(bare_engine) -> None:
    assert await last_applied_migration(bare_engine) == -1

    applied = await run_migrations(bare_engine)

    assert applied == len(MIGRATIONS)
    assert await last_applied_migration(bare_engine) == len(MIGRATIONS) - 1
    assert {
        "service_instance_details",
        "service_binding_credentials",
        "provision_request_details",
        "plan_details",
        "migrations",
    } <= await _table_names(bare_engine)
    async with bare_engine.connect() as conn:
        ledger = (await conn.execute(sa.text("SELECT migration_id FROM migrations ORDER BY id"))).scalars().all()
    assert ledger == list(range(len(MIGRATIONS)))


@pytest.mark.asyncio
async def test_rerun_is_a_noop(engine) -> None:
    assert await run_migrations(engine) == 0
    assert await last_applied_migration(engine) == len(MIGRATIONS) - 1


@pytest.mark.asyncio
async def test_resumes_from_partial_ledger_and_backfills_status(bare_engine) -> None:
    await run_migrations(bare_engine, MIGRATIONS[:1])
    async with bare_engine.begin() as conn:
        await conn.execute(
            sa.text("INSERT INTO service_instance_details (id, service_id, plan_id) VALUES ('old', 'svc', 'plan')")
        )

    applied = await run_migrations(bare_engine)

    assert applied == len(MIGRATIONS) - 1
    async with bare_engine.connect() as conn:
        status = (
            await conn.execute(sa.text("SELECT status FROM service_instance_details WHERE id = 'old'"))
        ).scalar_one()
    # Rows written before status tracking are finished instances.
    assert status == "active"


@pytest.mark.asyncio
async def test_refuses_schema_newer_than_code(engine) -> None:
    async with engine.begin() as conn:
        await conn.execute(sa.text("INSERT INTO migrations (migration_id) VALUES (:mid)"), {"mid": len(MIGRATIONS)})

    with pytest.raises(MigrationError):
        await run_migrations(engine)


@pytest.mark.asyncio
async def test_refuses_schema_older_than_baseline(bare_engine) -> None:
    await run_migrations(bare_engine, MIGRATIONS[:1])

    with pytest.raises(MigrationError):
        await run_migrations(bare_engine, baseline=1)
    # Nothing past the refused point was applied.
    assert await last_applied_migration(bare_engine) == 0


@pytest.mark.asyncio
async def test_empty_ledger_counts_as_fresh_database_regardless_of_baseline(bare_engine) -> None:
    applied = await run_migrations(bare_engine, baseline=2)
    assert applied == len(MIGRATIONS)
