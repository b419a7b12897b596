"""
database/repository.py
Read models and the narrow storage contract the rules engine depends on.

The engine only ever sees the frozen snapshots defined here; the SQL
implementation maps SQLModel rows onto them.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select, col

from database.models import (
    Bet,
    BetStatus,
    ChallengeAccount,
    ChallengeState,
    Ruleset,
    SETTLED_STATUSES,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RulesetSnapshot:
    profit_target_pct: float
    max_daily_loss_pct: float
    max_drawdown_pct: float
    max_stake_pct: float
    allowed_markets: tuple[str, ...]
    max_odds: float | None = None
    consistency_rule: bool = False
    consistency_pct: float | None = None


@dataclass(frozen=True)
class ChallengeAccountSnapshot:
    """Account figures at one instant. high_water_mark must already include equity."""
    id: int
    start_balance: float
    equity: float
    high_water_mark: float
    state: ChallengeState
    ruleset: RulesetSnapshot


@dataclass(frozen=True)
class BetSettlementRecord:
    status: str
    stake: float
    potential_payout: float


class ChallengeRepository(Protocol):
    """Storage contract used by the rules engine."""

    async def get_account_snapshot(self, account_id: int) -> ChallengeAccountSnapshot | None: ...

    async def list_bets_settled_between(
        self, account_id: int, start: datetime, end: datetime
    ) -> list[BetSettlementRecord]: ...

    async def set_account_state(
        self,
        account_id: int,
        state: ChallengeState,
        updated_at: datetime,
        completed_at: datetime | None = None,
    ) -> bool: ...

    async def commit(self) -> None: ...


# ---------------------------------------------------------------------------
# SQL implementation
# ---------------------------------------------------------------------------

def ruleset_snapshot(ruleset: Ruleset) -> RulesetSnapshot:
    return RulesetSnapshot(
        profit_target_pct=ruleset.profit_target_pct,
        max_daily_loss_pct=ruleset.max_daily_loss_pct,
        max_drawdown_pct=ruleset.max_drawdown_pct,
        max_stake_pct=ruleset.max_stake_pct,
        allowed_markets=tuple(ruleset.allowed_markets or ()),
        max_odds=ruleset.max_odds,
        consistency_rule=ruleset.consistency_rule,
        consistency_pct=ruleset.consistency_pct,
    )


class SqlChallengeRepository:
    """ChallengeRepository over a SQLModel AsyncSession.

    Writes are flushed, not committed; the unit of work belongs to the caller.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_account_snapshot(self, account_id: int) -> ChallengeAccountSnapshot | None:
        row = (await self.session.execute(
            select(ChallengeAccount, Ruleset)
            .join(Ruleset, ChallengeAccount.ruleset_id == Ruleset.id)
            .where(ChallengeAccount.id == account_id)
        )).first()

        if row is None:
            return None

        account, ruleset = row
        return ChallengeAccountSnapshot(
            id=account.id,
            start_balance=account.start_balance,
            equity=account.equity,
            high_water_mark=account.high_water_mark,
            state=ChallengeState(account.state),
            ruleset=ruleset_snapshot(ruleset),
        )

    async def list_bets_settled_between(
        self, account_id: int, start: datetime, end: datetime
    ) -> list[BetSettlementRecord]:
        bets = (await self.session.execute(
            select(Bet).where(
                Bet.challenge_account_id == account_id,
                col(Bet.settled_at) >= start,
                col(Bet.settled_at) < end,
                col(Bet.status).in_(SETTLED_STATUSES),
            )
        )).scalars().all()

        return [
            BetSettlementRecord(
                status=BetStatus(b.status).value,
                stake=b.stake,
                potential_payout=b.potential_payout,
            )
            for b in bets
        ]

    async def set_account_state(
        self,
        account_id: int,
        state: ChallengeState,
        updated_at: datetime,
        completed_at: datetime | None = None,
    ) -> bool:
        account = await self.session.get(ChallengeAccount, account_id)
        if account is None:
            return False

        account.state = state
        account.updated_at = updated_at
        if completed_at is not None:
            account.completed_at = completed_at

        self.session.add(account)
        await self.session.flush()
        logger.debug("Challenge account %d state set to %s", account_id, state.value)
        return True

    async def commit(self) -> None:
        await self.session.commit()
