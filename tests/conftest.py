"""
tests/conftest.py
Shared fixtures for the test suite.
"""

from collections.abc import AsyncGenerator

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

import database.models as _models  # noqa: F401, registers table metadata
from database.models import (
    ChallengeAccount,
    ChallengeState,
    MarketType,
    Ruleset,
    SubscriptionPlan,
)


def make_ruleset(**overrides) -> Ruleset:
    """Helper to create a Ruleset with the standard test limits."""
    defaults = dict(
        name="Standard Plan Rules",
        plan=SubscriptionPlan.STANDARD,
        profit_target_pct=10.0,
        max_daily_loss_pct=5.0,
        max_drawdown_pct=15.0,
        max_stake_pct=5.0,
        allowed_markets=[MarketType.MONEYLINE.value, MarketType.SPREAD.value],
        max_odds=500.0,
        consistency_rule=False,
        consistency_pct=None,
    )
    defaults.update(overrides)
    return Ruleset(**defaults)


def make_account(ruleset_id: int, **overrides) -> ChallengeAccount:
    """Helper to create a fresh $10,000 ACTIVE ChallengeAccount."""
    defaults = dict(
        user_id="user-1",
        ruleset_id=ruleset_id,
        start_balance=10_000.0,
        equity=10_000.0,
        high_water_mark=10_000.0,
        state=ChallengeState.ACTIVE,
    )
    defaults.update(overrides)
    return ChallengeAccount(**defaults)


@pytest_asyncio.fixture
async def async_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide an in-memory SQLite async session for tests."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    async_session_factory = sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session_factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def seeded_account(async_db_session: AsyncSession) -> ChallengeAccount:
    """A stored ruleset plus one ACTIVE $10,000 account on it."""
    ruleset = make_ruleset()
    async_db_session.add(ruleset)
    await async_db_session.commit()
    await async_db_session.refresh(ruleset)

    account = make_account(ruleset.id)
    async_db_session.add(account)
    await async_db_session.commit()
    await async_db_session.refresh(account)
    return account
