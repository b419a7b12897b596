"""
app/services/settlement.py
Grades bets, moves account equity and high-water mark, re-runs the
challenge rules and applies the resulting state transition.

Each call is a single unit of work: every write up to and including the
state transition commits together. Audit entries are written afterwards.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select, col

from app.services.audit import record_audit
from app.services.rules_engine import RuleCheckResult, apply_rule_check, check_challenge_rules
from core.exceptions import NotFoundError, ValidationError
from core.payouts import calculate_pnl_from_bet
from database.models import (
    AuditAction,
    Bet,
    BetStatus,
    ChallengeAccount,
    ChallengeState,
    SETTLED_STATUSES,
    Settlement,
    SettlementSource,
)
from database.repository import SqlChallengeRepository

logger = logging.getLogger(__name__)

_TRANSITION_AUDIT = {
    ChallengeState.PASSED: AuditAction.CHALLENGE_PASSED,
    ChallengeState.FAILED: AuditAction.CHALLENGE_FAILED,
    ChallengeState.PAUSED: AuditAction.CHALLENGE_PAUSED,
}


@dataclass
class SettlementOutcome:
    """What a settlement or re-grade did to the bet and its account."""
    bet: Bet
    pnl: float
    new_equity: float
    rule_check: RuleCheckResult
    applied_state: ChallengeState | None = None


def _parse_result(result: str) -> BetStatus:
    try:
        status = BetStatus(result)
    except ValueError:
        raise ValidationError("Result must be WON, LOST, or PUSH") from None
    if status not in SETTLED_STATUSES:
        raise ValidationError("Result must be WON, LOST, or PUSH")
    return status


def _as_utc(now: datetime | None) -> datetime:
    """Aware UTC timestamp. SQLite keeps wall time only, so store everything in UTC."""
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


async def _load_bet_and_account(bet_id: int, session: AsyncSession) -> tuple[Bet, ChallengeAccount]:
    bet = await session.get(Bet, bet_id)
    if bet is None:
        raise NotFoundError("Bet")
    account = await session.get(ChallengeAccount, bet.challenge_account_id)
    if account is None:
        raise NotFoundError("Challenge account")
    return bet, account


def _apply_pnl(account: ChallengeAccount, pnl: float) -> None:
    """Move equity, then lift the high-water mark so drawdown sees the new peak."""
    account.equity = account.equity + pnl
    account.high_water_mark = max(account.high_water_mark, account.equity)


async def _audit_rule_effects(
    session: AsyncSession,
    account: ChallengeAccount,
    bet: Bet,
    rule_check: RuleCheckResult,
    applied_state: ChallengeState | None,
) -> None:
    if rule_check.violations:
        await record_audit(
            session,
            AuditAction.RULE_VIOLATION,
            {"challenge_account_id": account.id, "bet_id": bet.id, "violations": rule_check.violations},
            user_id=account.user_id,
        )
    if applied_state is not None:
        await record_audit(
            session,
            _TRANSITION_AUDIT[applied_state],
            {"challenge_account_id": account.id, "bet_id": bet.id, "equity": account.equity},
            user_id=account.user_id,
        )


async def settle_bet(
    bet_id: int,
    result: str,
    session: AsyncSession,
    admin_user_id: str | None = None,
    source: SettlementSource = SettlementSource.MANUAL,
    now: datetime | None = None,
) -> SettlementOutcome:
    """
    Grade an OPEN bet and re-evaluate its challenge account.

    The rules see the day's P&L aggregated from every bet the account has
    settled today, this one included.
    """
    status = _parse_result(result)
    bet, account = await _load_bet_and_account(bet_id, session)
    if bet.status != BetStatus.OPEN:
        raise ValidationError("Bet is already settled")

    now = _as_utc(now)
    pnl = calculate_pnl_from_bet(bet.stake, bet.potential_payout, status)

    bet.status = status
    bet.settled_at = now
    session.add(bet)
    session.add(Settlement(bet_id=bet.id, result=status, pnl=pnl, source=source, settled_at=now))

    _apply_pnl(account, pnl)
    session.add(account)
    await session.flush()

    repo = SqlChallengeRepository(session)
    rule_check = await check_challenge_rules(account.id, repo, now=now)
    applied_state = await apply_rule_check(
        account.id, account.state, rule_check, repo, now=now, commit=False
    )

    await session.commit()

    logger.info(
        "Bet %d settled %s: pnl=$%.2f equity=$%.2f hwm=$%.2f state=%s",
        bet.id, status.value, pnl, account.equity, account.high_water_mark, account.state.value,
    )

    await record_audit(
        session,
        AuditAction.BET_SETTLED,
        {
            "bet_id": bet.id,
            "result": status.value,
            "pnl": pnl,
            "new_equity": account.equity,
            "rule_violations": rule_check.violations,
        },
        user_id=admin_user_id,
    )
    await _audit_rule_effects(session, account, bet, rule_check, applied_state)

    return SettlementOutcome(
        bet=bet,
        pnl=pnl,
        new_equity=account.equity,
        rule_check=rule_check,
        applied_state=applied_state,
    )


async def regrade_bet(
    bet_id: int,
    new_result: str,
    session: AsyncSession,
    admin_user_id: str | None = None,
    now: datetime | None = None,
) -> SettlementOutcome:
    """
    Correct the result of an already settled bet.

    Only the P&L difference moves equity, and that difference is what the
    rules evaluate as the day's P&L.
    """
    status = _parse_result(new_result)
    bet, account = await _load_bet_and_account(bet_id, session)
    if bet.status == BetStatus.OPEN:
        raise ValidationError("Bet is not settled yet")

    now = _as_utc(now)
    old_status = bet.status
    old_pnl = calculate_pnl_from_bet(bet.stake, bet.potential_payout, old_status)
    new_pnl = calculate_pnl_from_bet(bet.stake, bet.potential_payout, status)
    pnl_difference = new_pnl - old_pnl

    bet.status = status
    session.add(bet)

    settlements = (await session.execute(
        select(Settlement).where(Settlement.bet_id == bet.id)
    )).scalars().all()
    for record in settlements:
        record.result = status
        record.pnl = new_pnl
        record.updated_at = now
        session.add(record)

    _apply_pnl(account, pnl_difference)
    session.add(account)
    await session.flush()

    repo = SqlChallengeRepository(session)
    rule_check = await check_challenge_rules(account.id, repo, daily_pnl=pnl_difference, now=now)
    applied_state = await apply_rule_check(
        account.id, account.state, rule_check, repo, now=now, commit=False
    )

    await session.commit()

    logger.info(
        "Bet %d regraded %s -> %s: pnl_difference=$%.2f equity=$%.2f",
        bet.id, old_status.value, status.value, pnl_difference, account.equity,
    )

    await record_audit(
        session,
        AuditAction.ADMIN_ACTION,
        {
            "action": "BET_SETTLEMENT_UPDATED",
            "bet_id": bet.id,
            "old_result": old_status.value,
            "new_result": status.value,
            "pnl_difference": pnl_difference,
            "new_equity": account.equity,
            "rule_violations": rule_check.violations,
        },
        user_id=admin_user_id,
    )
    await _audit_rule_effects(session, account, bet, rule_check, applied_state)

    return SettlementOutcome(
        bet=bet,
        pnl=pnl_difference,
        new_equity=account.equity,
        rule_check=rule_check,
        applied_state=applied_state,
    )


async def list_settlement_queue(
    session: AsyncSession,
    status: BetStatus = BetStatus.OPEN,
) -> list[Bet]:
    """Bets across every account in `status` (OPEN by default), newest first."""
    query = (
        select(Bet)
        .where(Bet.status == status)
        .order_by(col(Bet.placed_at).desc(), col(Bet.id).desc())
    )
    return list((await session.execute(query)).scalars().all())
