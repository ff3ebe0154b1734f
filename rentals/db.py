from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from loguru import logger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from rentals.settings import DB_URL

# Name shared by the PostgreSQL exclusion constraint and the SQLite triggers
# (raised as their message), so an IntegrityError can be recognised as a
# calendar clash.
OVERLAP_GUARD = "bookings_no_overlap"
BLOCK_GUARD = "blocked_dates_no_overlap"


class Base(DeclarativeBase):
    pass


engine = create_async_engine(DB_URL)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request."""
    async with SessionLocal() as session:
        yield session


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Commit everything done inside the block, or roll all of it back.

    Usage:
        async with unit_of_work(session):
            session.add(booking)
            session.add(history)
    """
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise


def _active_status_list() -> str:
    from rentals.models import ACTIVE_STATUSES

    return ", ".join(f"'{s.value}'" for s in sorted(ACTIVE_STATUSES))


async def install_overlap_guard(conn: AsyncConnection) -> None:
    """
    Enforce "no two active bookings overlap per apartment" in the database
    itself, so the invariant holds even if two transactions pass the
    application-level availability check at the same time.

    On PostgreSQL blocked days are serialised against bookings by the
    apartment row lock. SQLite ignores FOR UPDATE, so there a second trigger
    also keeps blocked days and active bookings apart.
    """
    statuses = _active_status_list()
    dialect = conn.dialect.name

    if dialect == "postgresql":
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS btree_gist"))
        await conn.execute(
            text(
                f"""
                DO $$
                BEGIN
                    IF NOT EXISTS (
                        SELECT 1 FROM pg_constraint WHERE conname = '{OVERLAP_GUARD}'
                    ) THEN
                        ALTER TABLE bookings ADD CONSTRAINT {OVERLAP_GUARD}
                        EXCLUDE USING gist (
                            apartment_id WITH =,
                            daterange(check_in, check_out, '[)') WITH &&
                        ) WHERE (status IN ({statuses}));
                    END IF;
                END $$;
                """
            )
        )
    elif dialect == "sqlite":
        await conn.execute(
            text(
                f"""
                CREATE TRIGGER IF NOT EXISTS {OVERLAP_GUARD}
                BEFORE INSERT ON bookings
                WHEN NEW.status IN ({statuses})
                BEGIN
                    SELECT RAISE(ABORT, '{OVERLAP_GUARD}')
                    WHERE EXISTS (
                        SELECT 1 FROM bookings
                        WHERE apartment_id = NEW.apartment_id
                          AND status IN ({statuses})
                          AND check_in < NEW.check_out
                          AND check_out > NEW.check_in
                    )
                    OR EXISTS (
                        SELECT 1 FROM blocked_dates
                        WHERE apartment_id = NEW.apartment_id
                          AND date >= NEW.check_in
                          AND date < NEW.check_out
                    );
                END
                """
            )
        )
        # SQLite has no row locks, so blocks and bookings guard each other here
        await conn.execute(
            text(
                f"""
                CREATE TRIGGER IF NOT EXISTS {BLOCK_GUARD}
                BEFORE INSERT ON blocked_dates
                BEGIN
                    SELECT RAISE(ABORT, '{OVERLAP_GUARD}')
                    WHERE EXISTS (
                        SELECT 1 FROM bookings
                        WHERE apartment_id = NEW.apartment_id
                          AND status IN ({statuses})
                          AND check_in <= NEW.date
                          AND check_out > NEW.date
                    );
                END
                """
            )
        )
    else:
        logger.warning(
            "No overlap guard available for dialect {}; relying on row locks",
            dialect,
        )


async def init_models() -> None:
    """Create tables and the overlap guard. Safe to run on every start-up."""
    from rentals import models  # noqa: F401  (register tables on Base.metadata)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await install_overlap_guard(conn)
    logger.info("Database schema ready ({})", engine.dialect.name)
