"""
Shared pytest configuration for match engine tests.

Runs against an in-memory SQLite database by default so the suite needs no
server. Set TEST_DATABASE_URL to run against PostgreSQL instead.

SAFETY: a server database is only used when its name contains "test".
"""

import os
from datetime import datetime
from typing import List, Optional

import pytest_asyncio
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from deuce.database import db
from deuce.database.db import Base
from deuce.database.models import Division, MatchInvitation, MatchType, User, UserRole
from deuce.services.engine import MatchEngine
from deuce.services.engine_config import EngineConfig
from deuce.tests.factories import LeagueSetup, make_division, make_user


def _resolve_test_database_url() -> str:
    url = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite://")
    if url.startswith("sqlite"):
        return url

    # ── Safety gate: database name MUST contain "test" ──────────────────
    db_name = url.rsplit("/", 1)[-1].split("?")[0]
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"SAFETY: Refusing to run tests against database '{db_name}'. "
            f"Set TEST_DATABASE_URL to a database whose name contains 'test'."
        )
    return url


TEST_DATABASE_URL = _resolve_test_database_url()


def _build_engine():
    if not TEST_DATABASE_URL.startswith("sqlite"):
        return create_async_engine(TEST_DATABASE_URL, poolclass=NullPool, pool_pre_ping=True)

    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Fresh database with every table created."""
    engine = _build_engine()
    async with engine.begin() as conn:
        if not TEST_DATABASE_URL.startswith("sqlite"):
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # Code that opens its own sessions through db.AsyncSessionLocal
    # (maintenance worker, API dependency) must hit the test database
    test_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = test_session_maker

    yield engine

    db.AsyncSessionLocal = original_async_session_local
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    async with db.AsyncSessionLocal() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def engine_config():
    return EngineConfig()


@pytest_asyncio.fixture
async def match_engine(engine_config):
    """Engine that logs notifications instead of storing them."""
    return MatchEngine.with_defaults(engine_config)


@pytest_asyncio.fixture
async def league(db_session) -> LeagueSetup:
    """Tennis division with six members and an admin."""
    players = [
        await make_user(db_session, name)
        for name in ("Ana Ruiz", "Ben Cole", "Cara Diaz", "Dev Patel", "Eli Moss", "Fay Lin")
    ]
    admin = await make_user(db_session, "League Admin", UserRole.ADMIN)
    division = await make_division(db_session, players)
    return LeagueSetup(division=division, players=players, admin=admin)


@pytest_asyncio.fixture
async def ready_match(db_session, match_engine, league):
    """
    Factory for SCHEDULED matches with every invitation accepted.

    Singles seat players[0] vs players[1]; doubles seat players[0] and
    players[2] against players[1] and players[3].
    """

    async def _create(
        match_type: MatchType = MatchType.SINGLES,
        start: Optional[datetime] = None,
        division: Optional[Division] = None,
        players: Optional[List[User]] = None,
    ) -> int:
        division = division or league.division
        players = players or league.players
        kwargs = {"opponent_id": players[1].id}
        if match_type == MatchType.DOUBLES:
            kwargs["partner_id"] = players[2].id
            kwargs["opponent_partner_id"] = players[3].id
        details = await match_engine.scheduling.create_match(
            db_session,
            players[0].id,
            division.id,
            match_type,
            proposed_times=[start] if start else None,
            **kwargs,
        )
        invitations = await db_session.execute(
            select(MatchInvitation).where(MatchInvitation.match_id == details["id"])
        )
        for invitation in invitations.scalars().all():
            await match_engine.invitations.respond_to_invitation(
                db_session, invitation.id, invitation.invitee_id, True
            )
        if start:
            await match_engine.scheduling.confirm_time_slot(
                db_session, details["time_slots"][0]["id"], players[0].id
            )
        return details["id"]

    return _create

