"""Shared fixtures: a fresh in-memory SQLite database per test."""

import pytest_asyncio
from sqlmodel import SQLModel

from clubstats import models  # noqa: F401  (registers tables)
from clubstats.database import create_engine_for, create_session_factory
from clubstats.models import Club, Keyword, Performance


@pytest_asyncio.fixture
async def engine():
    engine = create_engine_for("sqlite+aiosqlite://")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def club(session):
    club = Club(user_id=1, name="Rolling Hall")
    session.add(club)
    await session.commit()
    return club


@pytest_asyncio.fixture
async def keywords(session):
    rows = [
        Keyword(name="good sound", icon_path="/icons/sound.svg"),
        Keyword(name="friendly staff", icon_path="/icons/staff.svg"),
        Keyword(name="cheap drinks", icon_path="/icons/drinks.svg"),
    ]
    session.add_all(rows)
    await session.commit()
    return rows


@pytest_asyncio.fixture
async def performance(session):
    performance = Performance(title="Friday Night Live")
    session.add(performance)
    await session.commit()
    return performance
