"""
app/routes/challenges.py
Challenge account endpoints: open a challenge, list and view them, run the rules.
"""

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.challenges import (
    create_challenge_account,
    get_challenge_account,
    list_challenge_accounts,
)
from app.services.rules_engine import apply_rule_check, check_challenge_rules
from database.connection import get_session
from database.models import ChallengeAccount, ChallengeState
from database.repository import SqlChallengeRepository

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/challenges", tags=["challenges"])


# ------------------------------------------------------------------
# Request / response models
# ------------------------------------------------------------------

class ChallengeCreateRequest(BaseModel):
    user_id: str = Field(min_length=1)
    plan: str = Field(min_length=1)
    start_balance: float | None = None


class RuleCheckRequest(BaseModel):
    daily_pnl: float | None = None
    apply: bool = False


class ChallengeRow(BaseModel):
    """A single challenge account."""
    id: int
    user_id: str
    ruleset_id: int
    start_balance: float
    equity: float
    high_water_mark: float
    state: str
    started_at: str
    updated_at: str
    completed_at: str | None


class ChallengesResponse(BaseModel):
    count: int
    challenges: list[ChallengeRow]


class RuleCheckResponse(BaseModel):
    passed: bool
    violations: list[str]
    new_state: str | None
    applied: bool


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _account_to_row(a: ChallengeAccount) -> ChallengeRow:
    return ChallengeRow(
        id=a.id,
        user_id=a.user_id,
        ruleset_id=a.ruleset_id,
        start_balance=round(a.start_balance, 2),
        equity=round(a.equity, 2),
        high_water_mark=round(a.high_water_mark, 2),
        state=a.state.value,
        started_at=a.started_at.isoformat() if a.started_at else "",
        updated_at=a.updated_at.isoformat() if a.updated_at else "",
        completed_at=a.completed_at.isoformat() if a.completed_at else None,
    )


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.post("", response_model=ChallengeRow, status_code=201)
async def open_challenge(
    body: ChallengeCreateRequest,
    session: AsyncSession = Depends(get_session),
) -> ChallengeRow:
    """Open an ACTIVE challenge for a user on the plan's ruleset."""
    account = await create_challenge_account(
        body.user_id, body.plan, session, start_balance=body.start_balance
    )
    return _account_to_row(account)


@router.get("", response_model=ChallengesResponse)
async def get_challenges(
    user_id: str = Query(..., min_length=1, description="Owner of the challenges"),
    state: ChallengeState | None = Query(None, description="Filter by state: ACTIVE, PAUSED, PASSED, FAILED"),
    session: AsyncSession = Depends(get_session),
) -> ChallengesResponse:
    rows = await list_challenge_accounts(user_id, session, state=state)
    challenges = [_account_to_row(a) for a in rows]
    return ChallengesResponse(count=len(challenges), challenges=challenges)


@router.get("/{challenge_account_id}", response_model=ChallengeRow)
async def get_challenge(
    challenge_account_id: int,
    session: AsyncSession = Depends(get_session),
) -> ChallengeRow:
    account = await get_challenge_account(challenge_account_id, session)
    return _account_to_row(account)


@router.post("/{challenge_account_id}/check", response_model=RuleCheckResponse)
async def check_rules(
    challenge_account_id: int,
    body: RuleCheckRequest | None = None,
    session: AsyncSession = Depends(get_session),
) -> RuleCheckResponse:
    """Evaluate the account's rules; with `apply`, persist the resulting state unless the account is final."""
    body = body or RuleCheckRequest()
    repo = SqlChallengeRepository(session)

    result = await check_challenge_rules(challenge_account_id, repo, daily_pnl=body.daily_pnl)

    applied = False
    if body.apply:
        account = await repo.get_account_snapshot(challenge_account_id)
        applied_state = await apply_rule_check(challenge_account_id, account.state, result, repo)
        applied = applied_state is not None

    return RuleCheckResponse(
        passed=result.passed,
        violations=result.violations,
        new_state=result.new_state.value if result.new_state else None,
        applied=applied,
    )
