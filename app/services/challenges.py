"""
app/services/challenges.py
Ruleset and challenge-account lifecycle: plan rulesets, opening a
challenge for a user, and reading accounts back.
"""

import logging

from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select, col

from app.services.audit import record_audit
from core.config import get_settings
from core.constants import (
    CONSISTENCY_PCT_RANGE,
    MAX_DAILY_LOSS_PCT_RANGE,
    MAX_DRAWDOWN_PCT_RANGE,
    MAX_STAKE_PCT_RANGE,
    MAX_START_BALANCE,
    MIN_MAX_ODDS,
    MIN_START_BALANCE,
    PROFIT_TARGET_PCT_RANGE,
)
from core.exceptions import ConflictError, NotFoundError, ValidationError
from database.models import (
    AuditAction,
    ChallengeAccount,
    ChallengeState,
    MarketType,
    Ruleset,
    SubscriptionPlan,
)

logger = logging.getLogger(__name__)


class RulesetCreate(BaseModel):
    """Plan ruleset as submitted by an operator, with the allowed bounds."""
    name: str = Field(min_length=1, max_length=100)
    plan: SubscriptionPlan
    profit_target_pct: float = Field(ge=PROFIT_TARGET_PCT_RANGE[0], le=PROFIT_TARGET_PCT_RANGE[1])
    max_daily_loss_pct: float = Field(ge=MAX_DAILY_LOSS_PCT_RANGE[0], le=MAX_DAILY_LOSS_PCT_RANGE[1])
    max_drawdown_pct: float = Field(ge=MAX_DRAWDOWN_PCT_RANGE[0], le=MAX_DRAWDOWN_PCT_RANGE[1])
    max_stake_pct: float = Field(ge=MAX_STAKE_PCT_RANGE[0], le=MAX_STAKE_PCT_RANGE[1])
    allowed_markets: list[MarketType] = Field(min_length=1)
    max_odds: float | None = Field(default=None, ge=MIN_MAX_ODDS)
    consistency_rule: bool = False
    consistency_pct: float | None = Field(
        default=None, ge=CONSISTENCY_PCT_RANGE[0], le=CONSISTENCY_PCT_RANGE[1]
    )

    @model_validator(mode="after")
    def _consistency_pct_required(self) -> "RulesetCreate":
        if self.consistency_rule and self.consistency_pct is None:
            raise ValueError("consistency_pct is required when consistency_rule is enabled")
        return self


async def create_ruleset(data: RulesetCreate, session: AsyncSession) -> Ruleset:
    """Store the ruleset for a plan. One ruleset per plan."""
    existing = (await session.execute(
        select(Ruleset).where(Ruleset.plan == data.plan)
    )).scalars().first()
    if existing:
        raise ConflictError(f"A ruleset for plan {data.plan.value} already exists")

    ruleset = Ruleset(
        name=data.name,
        plan=data.plan,
        profit_target_pct=data.profit_target_pct,
        max_daily_loss_pct=data.max_daily_loss_pct,
        max_drawdown_pct=data.max_drawdown_pct,
        max_stake_pct=data.max_stake_pct,
        allowed_markets=[m.value for m in data.allowed_markets],
        max_odds=data.max_odds,
        consistency_rule=data.consistency_rule,
        consistency_pct=data.consistency_pct,
    )
    session.add(ruleset)
    await session.commit()
    await session.refresh(ruleset)

    logger.info("Ruleset %d created for plan %s", ruleset.id, ruleset.plan.value)
    return ruleset


async def list_rulesets(session: AsyncSession) -> list[Ruleset]:
    return list((await session.execute(
        select(Ruleset).order_by(col(Ruleset.id))
    )).scalars().all())


async def create_challenge_account(
    user_id: str,
    plan: str,
    session: AsyncSession,
    start_balance: float | None = None,
) -> ChallengeAccount:
    """
    Open an ACTIVE challenge for a user on the ruleset of `plan`.

    equity and high_water_mark start at the start balance.
    """
    existing = (await session.execute(
        select(ChallengeAccount).where(
            ChallengeAccount.user_id == user_id,
            ChallengeAccount.state == ChallengeState.ACTIVE,
        )
    )).scalars().first()
    if existing:
        raise ConflictError("User already has an active challenge")

    try:
        plan_enum = SubscriptionPlan(plan.upper())
    except ValueError:
        raise ValidationError("Invalid subscription plan") from None

    ruleset = (await session.execute(
        select(Ruleset).where(Ruleset.plan == plan_enum)
    )).scalars().first()
    if ruleset is None:
        raise ValidationError("Invalid subscription plan")

    if start_balance is None:
        start_balance = get_settings().DEFAULT_START_BALANCE
    if not MIN_START_BALANCE <= start_balance <= MAX_START_BALANCE:
        raise ValidationError(
            f"Start balance must be between ${MIN_START_BALANCE:,.0f} and ${MAX_START_BALANCE:,.0f}"
        )

    account = ChallengeAccount(
        user_id=user_id,
        ruleset_id=ruleset.id,
        start_balance=start_balance,
        equity=start_balance,
        high_water_mark=start_balance,
        state=ChallengeState.ACTIVE,
    )
    session.add(account)
    await session.commit()
    await session.refresh(account)

    logger.info(
        "Challenge account %d opened: user=%s plan=%s start_balance=$%.2f",
        account.id, user_id, plan_enum.value, start_balance,
    )

    await record_audit(
        session,
        AuditAction.CHALLENGE_ACCOUNT_CREATED,
        {
            "challenge_account_id": account.id,
            "plan": plan_enum.value,
            "start_balance": start_balance,
            "ruleset_id": ruleset.id,
        },
        user_id=user_id,
    )
    return account


async def get_challenge_account(challenge_account_id: int, session: AsyncSession) -> ChallengeAccount:
    account = await session.get(ChallengeAccount, challenge_account_id)
    if account is None:
        raise NotFoundError("Challenge account")
    return account


async def list_challenge_accounts(
    user_id: str,
    session: AsyncSession,
    state: ChallengeState | None = None,
) -> list[ChallengeAccount]:
    """A user's challenge accounts, most recently started first."""
    query = (
        select(ChallengeAccount)
        .where(ChallengeAccount.user_id == user_id)
        .order_by(col(ChallengeAccount.started_at).desc(), col(ChallengeAccount.id).desc())
    )
    if state:
        query = query.where(ChallengeAccount.state == state)

    return list((await session.execute(query)).scalars().all())
