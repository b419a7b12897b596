"""
app/services/execution.py
Bet placement service: admits single bets and parlays through the rules
engine and records them.

Equity is not reserved at placement; the stake only moves equity when the
bet is settled.
"""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select, col

from app.services.audit import record_audit
from app.services.rules_engine import validate_bet_placement
from core.exceptions import ConflictError, ValidationError
from core.payouts import calculate_potential_payout, is_valid_american_odds
from database.models import AuditAction, Bet, BetStatus, ChallengeAccount, MarketType
from database.repository import SqlChallengeRepository

logger = logging.getLogger(__name__)

MIN_PARLAY_PICKS = 2


@dataclass(frozen=True)
class ParlayPick:
    market_type: str
    selection: str
    odds: float


@dataclass
class ParlayPlacement:
    """The legs stored for one parlay and its shared figures."""
    parlay_id: str
    bets: list[Bet]
    stake: float
    multiplier: float
    potential_payout: float


def _require_valid_odds(odds: float) -> None:
    if not is_valid_american_odds(odds):
        raise ValidationError(f"Invalid American odds: {odds:g}")


async def place_bet(
    challenge_account_id: int,
    market_type: str,
    selection: str,
    odds: float,
    stake: float,
    session: AsyncSession,
) -> Bet:
    """
    Validate and place a bet on a challenge account.

    Raises
    ------
    ValidationError
        If the odds are not a valid American price, or if any admission
        check fails; `details` then holds every failing reason.
    """
    _require_valid_odds(odds)
    validation = await validate_bet_placement(
        challenge_account_id, stake, market_type, odds, SqlChallengeRepository(session)
    )
    if not validation.valid:
        raise ValidationError("Bet validation failed", details=validation.errors)

    potential_payout = calculate_potential_payout(stake, odds)

    bet = Bet(
        challenge_account_id=challenge_account_id,
        market_type=MarketType(market_type),
        selection=selection,
        odds_at_placement=odds,
        stake=stake,
        potential_payout=potential_payout,
        status=BetStatus.OPEN,
    )
    session.add(bet)
    await session.commit()
    await session.refresh(bet)

    logger.info(
        "Bet %d placed: account=%d market=%s selection=%s odds=%s stake=$%.2f payout=$%.2f",
        bet.id, challenge_account_id, market_type, selection, odds, stake, potential_payout,
    )

    account = await session.get(ChallengeAccount, challenge_account_id)
    await record_audit(
        session,
        AuditAction.BET_PLACED,
        {
            "bet_id": bet.id,
            "challenge_account_id": challenge_account_id,
            "market_type": market_type,
            "selection": selection,
            "stake": stake,
            "potential_payout": potential_payout,
            "odds": odds,
        },
        user_id=account.user_id if account else None,
    )
    return bet


async def place_parlay(
    challenge_account_id: int,
    picks: list[ParlayPick],
    stake: float,
    multiplier: float,
    session: AsyncSession,
    parlay_id: str | None = None,
) -> ParlayPlacement:
    """
    Validate and place a parlay: one OPEN bet per pick under a shared parlay_id.

    Every leg carries the full stake and the parlay payout (stake * multiplier).
    Each pick goes through the same admission checks as a single bet; the
    failures of all legs are reported together.
    """
    if len(picks) < MIN_PARLAY_PICKS:
        raise ValidationError(f"A parlay needs at least {MIN_PARLAY_PICKS} picks")
    if multiplier <= 1:
        raise ValidationError("Parlay multiplier must be greater than 1")
    for pick in picks:
        _require_valid_odds(pick.odds)

    parlay_id = parlay_id or uuid.uuid4().hex
    existing = (await session.execute(
        select(Bet).where(Bet.parlay_id == parlay_id)
    )).scalars().first()
    if existing:
        raise ConflictError(f"Parlay {parlay_id} already exists")

    repo = SqlChallengeRepository(session)
    errors: list[str] = []
    for pick in picks:
        validation = await validate_bet_placement(
            challenge_account_id, stake, pick.market_type, pick.odds, repo
        )
        errors.extend(e for e in validation.errors if e not in errors)
    if errors:
        raise ValidationError("Bet validation failed", details=errors)

    potential_payout = stake * multiplier
    bets = [
        Bet(
            challenge_account_id=challenge_account_id,
            market_type=MarketType(pick.market_type),
            selection=pick.selection,
            odds_at_placement=pick.odds,
            stake=stake,
            potential_payout=potential_payout,
            status=BetStatus.OPEN,
            parlay_id=parlay_id,
            parlay_multiplier=multiplier,
        )
        for pick in picks
    ]
    session.add_all(bets)
    await session.commit()
    for bet in bets:
        await session.refresh(bet)

    logger.info(
        "Parlay %s placed: account=%d legs=%d stake=$%.2f multiplier=%s payout=$%.2f",
        parlay_id, challenge_account_id, len(bets), stake, multiplier, potential_payout,
    )

    account = await session.get(ChallengeAccount, challenge_account_id)
    await record_audit(
        session,
        AuditAction.BET_PLACED,
        {
            "parlay_id": parlay_id,
            "bet_ids": [b.id for b in bets],
            "stake": stake,
            "multiplier": multiplier,
            "potential_payout": potential_payout,
            "pick_count": len(picks),
        },
        user_id=account.user_id if account else None,
    )
    return ParlayPlacement(
        parlay_id=parlay_id,
        bets=bets,
        stake=stake,
        multiplier=multiplier,
        potential_payout=potential_payout,
    )


async def list_bets(
    challenge_account_id: int,
    session: AsyncSession,
    status: BetStatus | None = None,
) -> list[Bet]:
    """Bets of an account, newest first, optionally filtered by status."""
    query = (
        select(Bet)
        .where(Bet.challenge_account_id == challenge_account_id)
        .order_by(col(Bet.placed_at).desc(), col(Bet.id).desc())
    )
    if status:
        query = query.where(Bet.status == status)

    return list((await session.execute(query)).scalars().all())
