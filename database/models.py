"""
database/models.py
SQLModel table definitions for the betting challenge service.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


def _utcnow() -> datetime:
    """Timezone-aware UTC now (replaces the deprecated utcnow call)."""
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ChallengeState(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    PASSED = "PASSED"
    FAILED = "FAILED"


class BetStatus(str, Enum):
    OPEN = "OPEN"
    WON = "WON"
    LOST = "LOST"
    PUSH = "PUSH"


SETTLED_STATUSES = (BetStatus.WON, BetStatus.LOST, BetStatus.PUSH)


class MarketType(str, Enum):
    MONEYLINE = "MONEYLINE"
    SPREAD = "SPREAD"
    TOTAL = "TOTAL"
    PROPS = "PROPS"


class SubscriptionPlan(str, Enum):
    STARTER = "STARTER"
    STANDARD = "STANDARD"
    PRO = "PRO"


class SettlementSource(str, Enum):
    MANUAL = "manual"
    API = "api"


class AuditAction(str, Enum):
    CHALLENGE_ACCOUNT_CREATED = "CHALLENGE_ACCOUNT_CREATED"
    CHALLENGE_ACCOUNT_UPDATED = "CHALLENGE_ACCOUNT_UPDATED"
    BET_PLACED = "BET_PLACED"
    BET_SETTLED = "BET_SETTLED"
    RULE_VIOLATION = "RULE_VIOLATION"
    CHALLENGE_PASSED = "CHALLENGE_PASSED"
    CHALLENGE_FAILED = "CHALLENGE_FAILED"
    CHALLENGE_PAUSED = "CHALLENGE_PAUSED"
    ADMIN_ACTION = "ADMIN_ACTION"


# ---------------------------------------------------------------------------
# Ruleset: the limits attached to a subscription plan
# ---------------------------------------------------------------------------

class Ruleset(SQLModel, table=True):
    """Percentage-based limits for a plan. Never mutated by the engine."""

    id: Optional[int] = Field(default=None, primary_key=True)

    name: str
    plan: SubscriptionPlan = Field(index=True, unique=True)

    profit_target_pct: float
    max_daily_loss_pct: float
    max_drawdown_pct: float
    max_stake_pct: float

    allowed_markets: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    max_odds: Optional[float] = None

    consistency_rule: bool = False
    consistency_pct: Optional[float] = None

    created_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# ChallengeAccount: a simulated bankroll under evaluation
# ---------------------------------------------------------------------------

class ChallengeAccount(SQLModel, table=True):
    """A user's evaluation account; equity moves with every settlement."""

    id: Optional[int] = Field(default=None, primary_key=True)

    user_id: str = Field(index=True)
    ruleset_id: int = Field(foreign_key="ruleset.id", index=True)

    start_balance: float
    equity: float
    high_water_mark: float

    state: ChallengeState = ChallengeState.ACTIVE

    started_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Bet: a simulated wager against a challenge account
# ---------------------------------------------------------------------------

class Bet(SQLModel, table=True):
    """A single bet. Created OPEN, settled to WON / LOST / PUSH."""

    id: Optional[int] = Field(default=None, primary_key=True)

    challenge_account_id: int = Field(foreign_key="challengeaccount.id", index=True)

    market_type: MarketType
    selection: str
    odds_at_placement: float

    stake: float
    potential_payout: float

    status: BetStatus = Field(default=BetStatus.OPEN, index=True)

    # Legs of one parlay share parlay_id; each leg carries the full stake and payout.
    parlay_id: Optional[str] = Field(default=None, index=True)
    parlay_multiplier: Optional[float] = None

    placed_at: datetime = Field(default_factory=_utcnow)
    settled_at: Optional[datetime] = Field(default=None, index=True)


# ---------------------------------------------------------------------------
# Settlement: result record written when a bet is graded
# ---------------------------------------------------------------------------

class Settlement(SQLModel, table=True):
    """How and when a bet was graded, and the P&L it realized."""

    id: Optional[int] = Field(default=None, primary_key=True)

    bet_id: int = Field(foreign_key="bet.id", index=True)

    result: BetStatus
    pnl: float
    source: SettlementSource = SettlementSource.MANUAL

    settled_at: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# AuditLog: append-only trail of engine and admin effects
# ---------------------------------------------------------------------------

class AuditLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    user_id: Optional[str] = Field(default=None, index=True)
    action: AuditAction = Field(index=True)
    payload: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    ip: Optional[str] = None

    created_at: datetime = Field(default_factory=_utcnow)
