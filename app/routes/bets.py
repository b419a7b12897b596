"""
app/routes/bets.py
Bet endpoints: place a single bet or a parlay on a challenge account, list its bets.
"""

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.execution import MIN_PARLAY_PICKS, ParlayPick, list_bets, place_bet, place_parlay
from core.payouts import american_to_decimal, is_valid_american_odds
from database.connection import get_session
from database.models import Bet, BetStatus

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/bets", tags=["bets"])


# ------------------------------------------------------------------
# Request / response models
# ------------------------------------------------------------------

def _check_american_odds(v: float) -> float:
    if not is_valid_american_odds(v):
        raise ValueError("odds must be <= -100 or >= 100")
    return v


class BetPlacementRequest(BaseModel):
    challenge_account_id: int
    market_type: str = Field(min_length=1)
    selection: str = Field(min_length=1)
    odds: float
    stake: float = Field(gt=0)

    @field_validator("odds")
    @classmethod
    def _american_odds(cls, v: float) -> float:
        return _check_american_odds(v)


class ParlayPickRequest(BaseModel):
    market_type: str = Field(min_length=1)
    selection: str = Field(min_length=1)
    odds: float

    @field_validator("odds")
    @classmethod
    def _american_odds(cls, v: float) -> float:
        return _check_american_odds(v)


class ParlayPlacementRequest(BaseModel):
    challenge_account_id: int
    parlay_id: str | None = Field(default=None, min_length=1, max_length=64)
    picks: list[ParlayPickRequest] = Field(min_length=MIN_PARLAY_PICKS)
    stake: float = Field(gt=0)
    multiplier: float = Field(gt=1)


class BetRow(BaseModel):
    """A single bet, or one leg of a parlay."""
    id: int
    challenge_account_id: int
    market_type: str
    selection: str
    odds_at_placement: float
    decimal_odds: float
    stake: float
    potential_payout: float
    status: str
    parlay_id: str | None
    parlay_multiplier: float | None
    placed_at: str
    settled_at: str | None


class BetsResponse(BaseModel):
    count: int
    bets: list[BetRow]


class ParlayResponse(BaseModel):
    parlay_id: str
    stake: float
    multiplier: float
    potential_payout: float
    bets: list[BetRow]


def bet_to_row(b: Bet) -> BetRow:
    return BetRow(
        id=b.id,
        challenge_account_id=b.challenge_account_id,
        market_type=b.market_type.value,
        selection=b.selection,
        odds_at_placement=b.odds_at_placement,
        decimal_odds=american_to_decimal(b.odds_at_placement),
        stake=round(b.stake, 2),
        potential_payout=round(b.potential_payout, 2),
        status=b.status.value,
        parlay_id=b.parlay_id,
        parlay_multiplier=b.parlay_multiplier,
        placed_at=b.placed_at.isoformat() if b.placed_at else "",
        settled_at=b.settled_at.isoformat() if b.settled_at else None,
    )


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.post("", response_model=BetRow, status_code=201)
async def create_bet(
    body: BetPlacementRequest,
    session: AsyncSession = Depends(get_session),
) -> BetRow:
    """Validate a bet against the account's ruleset and place it."""
    bet = await place_bet(
        body.challenge_account_id,
        body.market_type,
        body.selection,
        body.odds,
        body.stake,
        session,
    )
    return bet_to_row(bet)


@router.post("/parlay", response_model=ParlayResponse, status_code=201)
async def create_parlay(
    body: ParlayPlacementRequest,
    session: AsyncSession = Depends(get_session),
) -> ParlayResponse:
    """Place a parlay of two or more picks paying stake * multiplier."""
    placement = await place_parlay(
        body.challenge_account_id,
        [ParlayPick(p.market_type, p.selection, p.odds) for p in body.picks],
        body.stake,
        body.multiplier,
        session,
        parlay_id=body.parlay_id,
    )
    return ParlayResponse(
        parlay_id=placement.parlay_id,
        stake=round(placement.stake, 2),
        multiplier=placement.multiplier,
        potential_payout=round(placement.potential_payout, 2),
        bets=[bet_to_row(b) for b in placement.bets],
    )


@router.get("", response_model=BetsResponse)
async def get_bets(
    challenge_account_id: int = Query(..., description="Challenge account to list bets for"),
    status: BetStatus | None = Query(None, description="Filter by status: OPEN, WON, LOST, PUSH"),
    session: AsyncSession = Depends(get_session),
) -> BetsResponse:
    rows = await list_bets(challenge_account_id, session, status=status)
    bets = [bet_to_row(b) for b in rows]
    return BetsResponse(count=len(bets), bets=bets)
