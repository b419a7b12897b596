"""
app/routes/settlements.py
Admin settlement endpoints: the queue of bets to grade, grading open bets
and correcting graded ones.
"""

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.routes.bets import BetsResponse, bet_to_row
from app.services.settlement import SettlementOutcome, list_settlement_queue, regrade_bet, settle_bet
from database.connection import get_session
from database.models import BetStatus

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/settlements", tags=["settlements"])


class SettleRequest(BaseModel):
    bet_id: int
    result: str = Field(min_length=1)
    admin_user_id: str | None = None


class RegradeRequest(BaseModel):
    bet_id: int
    new_result: str = Field(min_length=1)
    admin_user_id: str | None = None


class SettlementResponse(BaseModel):
    bet_id: int
    status: str
    pnl: float
    new_equity: float
    passed: bool
    violations: list[str]
    new_state: str | None
    applied_state: str | None


def _outcome_to_response(outcome: SettlementOutcome) -> SettlementResponse:
    return SettlementResponse(
        bet_id=outcome.bet.id,
        status=outcome.bet.status.value,
        pnl=round(outcome.pnl, 2),
        new_equity=round(outcome.new_equity, 2),
        passed=outcome.rule_check.passed,
        violations=outcome.rule_check.violations,
        new_state=outcome.rule_check.new_state.value if outcome.rule_check.new_state else None,
        applied_state=outcome.applied_state.value if outcome.applied_state else None,
    )


@router.post("", response_model=SettlementResponse)
async def settle(
    body: SettleRequest,
    session: AsyncSession = Depends(get_session),
) -> SettlementResponse:
    """Grade an OPEN bet WON / LOST / PUSH."""
    outcome = await settle_bet(body.bet_id, body.result, session, admin_user_id=body.admin_user_id)
    return _outcome_to_response(outcome)


@router.put("", response_model=SettlementResponse)
async def regrade(
    body: RegradeRequest,
    session: AsyncSession = Depends(get_session),
) -> SettlementResponse:
    """Change the result of an already graded bet."""
    outcome = await regrade_bet(body.bet_id, body.new_result, session, admin_user_id=body.admin_user_id)
    return _outcome_to_response(outcome)


@router.get("", response_model=BetsResponse)
async def settlement_queue(
    status: BetStatus = Query(BetStatus.OPEN, description="Bets in this status, OPEN by default"),
    session: AsyncSession = Depends(get_session),
) -> BetsResponse:
    """Bets across all accounts awaiting (or past) grading, newest first."""
    rows = await list_settlement_queue(session, status=status)
    bets = [bet_to_row(b) for b in rows]
    return BetsResponse(count=len(bets), bets=bets)
