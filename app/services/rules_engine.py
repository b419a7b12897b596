"""
app/services/rules_engine.py
Challenge rules engine: bet admission and challenge-state evaluation.

Two layers:
  * pure evaluators (`evaluate_bet_placement`, `evaluate_challenge_rules`)
    working on read-model snapshots, no I/O;
  * async entry points (`validate_bet_placement`, `check_challenge_rules`,
    `update_challenge_account_state`, `apply_rule_check`) that fetch
    snapshots through a ChallengeRepository and delegate.

Rule checks run in a fixed order: daily loss, drawdown, profit target,
consistency. Every check runs; each one that fires appends its violation,
and the LAST firing check's proposed state becomes the verdict.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Final
from zoneinfo import ZoneInfo

from core.config import get_settings
from core.exceptions import NotFoundError
from core.payouts import calculate_pnl_from_bet
from database.models import ChallengeState
from database.repository import (
    BetSettlementRecord,
    ChallengeAccountSnapshot,
    ChallengeRepository,
)

logger = logging.getLogger(__name__)

# PASSED and FAILED accounts never change state again.
TERMINAL_STATES: Final = (ChallengeState.PASSED, ChallengeState.FAILED)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class RuleCheckResult:
    """Verdict of a rule evaluation. new_state is None when no transition applies."""
    passed: bool
    violations: list[str] = field(default_factory=list)
    new_state: ChallengeState | None = None


@dataclass
class ValidationResult:
    """Bet admission verdict. The bet is rejected iff errors is non-empty."""
    valid: bool
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RuleOutcome:
    """What a single rule check contributes when it fires."""
    violation: str | None = None
    proposed_state: ChallengeState | None = None


def _num(value: float) -> str:
    """Plain number rendering: 15.0 -> '15', 12.5 -> '12.5'."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


# ---------------------------------------------------------------------------
# Rule checks (account, today_pnl, violations so far) -> RuleOutcome | None
# ---------------------------------------------------------------------------

def _check_daily_loss(
    account: ChallengeAccountSnapshot, today_pnl: float, violations: tuple[str, ...]
) -> RuleOutcome | None:
    max_daily_loss = account.start_balance * (account.ruleset.max_daily_loss_pct / 100)
    if today_pnl < -max_daily_loss:
        return RuleOutcome(
            violation=f"Daily loss limit exceeded: ${abs(today_pnl):.2f} > ${max_daily_loss:.2f}",
            proposed_state=ChallengeState.PAUSED,
        )
    return None


def _check_drawdown(
    account: ChallengeAccountSnapshot, today_pnl: float, violations: tuple[str, ...]
) -> RuleOutcome | None:
    if account.high_water_mark <= 0:
        return None
    current_drawdown = (account.high_water_mark - account.equity) / account.high_water_mark
    max_drawdown = account.ruleset.max_drawdown_pct / 100
    if current_drawdown > max_drawdown:
        return RuleOutcome(
            violation=(
                f"Maximum drawdown exceeded: {current_drawdown * 100:.2f}% "
                f"> {_num(account.ruleset.max_drawdown_pct)}%"
            ),
            proposed_state=ChallengeState.FAILED,
        )
    return None


def _check_profit_target(
    account: ChallengeAccountSnapshot, today_pnl: float, violations: tuple[str, ...]
) -> RuleOutcome | None:
    # A pass is voided by any earlier violation; it never overrides one.
    profit_target = account.start_balance * (account.ruleset.profit_target_pct / 100)
    current_profit = account.equity - account.start_balance
    if current_profit >= profit_target and not violations:
        return RuleOutcome(proposed_state=ChallengeState.PASSED)
    return None


def _check_consistency(
    account: ChallengeAccountSnapshot, today_pnl: float, violations: tuple[str, ...]
) -> RuleOutcome | None:
    ruleset = account.ruleset
    if not (ruleset.consistency_rule and ruleset.consistency_pct):
        return None

    total_profit = account.equity - account.start_balance
    if total_profit <= 0:
        return None

    max_single_day_profit = total_profit * (ruleset.consistency_pct / 100)
    if today_pnl > max_single_day_profit:
        return RuleOutcome(
            violation=(
                f"Consistency rule violated: single day profit ${today_pnl:.2f} "
                f"> ${max_single_day_profit:.2f}"
            ),
            proposed_state=ChallengeState.PAUSED,
        )
    return None


RuleCheck = Callable[[ChallengeAccountSnapshot, float, tuple[str, ...]], RuleOutcome | None]

RULE_CHECKS: Final[tuple[tuple[str, RuleCheck], ...]] = (
    ("daily_loss", _check_daily_loss),
    ("drawdown", _check_drawdown),
    ("profit_target", _check_profit_target),
    ("consistency", _check_consistency),
)


# ---------------------------------------------------------------------------
# Pure evaluators
# ---------------------------------------------------------------------------

def evaluate_challenge_rules(account: ChallengeAccountSnapshot, today_pnl: float) -> RuleCheckResult:
    """
    Evaluate every rule against an account snapshot and the day's realized P&L.

    Later firing checks overwrite the state proposed by earlier ones, so a
    consistency violation (PAUSED) replaces a drawdown breach (FAILED).
    """
    violations: list[str] = []
    new_state: ChallengeState | None = None

    for name, check in RULE_CHECKS:
        outcome = check(account, today_pnl, tuple(violations))
        if outcome is None:
            continue
        if outcome.violation is not None:
            violations.append(outcome.violation)
        if outcome.proposed_state is not None:
            logger.debug("Rule %s proposes %s for account %s", name, outcome.proposed_state.value, account.id)
            new_state = outcome.proposed_state

    return RuleCheckResult(passed=not violations, violations=violations, new_state=new_state)


def evaluate_bet_placement(
    account: ChallengeAccountSnapshot,
    stake: float,
    market_type: str,
    odds: float,
) -> ValidationResult:
    """Run every admission check against the snapshot and collect all failures."""
    errors: list[str] = []
    ruleset = account.ruleset

    if account.state != ChallengeState.ACTIVE:
        errors.append("Challenge account is not active")

    max_stake = account.equity * (ruleset.max_stake_pct / 100)
    if stake > max_stake:
        errors.append(f"Stake exceeds maximum allowed: ${stake:.2f} > ${max_stake:.2f}")

    if market_type not in ruleset.allowed_markets:
        errors.append(f"Market type '{market_type}' is not allowed for this plan")

    if ruleset.max_odds and odds > ruleset.max_odds:
        errors.append(f"Odds exceed maximum allowed: {_num(odds)} > {_num(ruleset.max_odds)}")

    if stake > account.equity:
        errors.append("Insufficient balance for this stake")

    return ValidationResult(valid=not errors, errors=errors)


def sum_settled_pnl(bets: Iterable[BetSettlementRecord]) -> float:
    """Total realized P&L of settled bets (WON, LOST and PUSH)."""
    return sum(
        (calculate_pnl_from_bet(b.stake, b.potential_payout, b.status) for b in bets),
        0.0,
    )


def day_bounds(tz_name: str, now: datetime | None = None) -> tuple[datetime, datetime]:
    """
    UTC bounds [start, end) of the calendar day containing `now` in `tz_name`.

    `now` should be timezone-aware; it defaults to the current instant.
    """
    tz = ZoneInfo(tz_name)
    local_now = (now or datetime.now(timezone.utc)).astimezone(tz)
    start_local = datetime.combine(local_now.date(), time.min, tzinfo=tz)
    end_local = datetime.combine(local_now.date() + timedelta(days=1), time.min, tzinfo=tz)
    return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Repository-backed entry points
# ---------------------------------------------------------------------------

async def validate_bet_placement(
    challenge_account_id: int,
    stake: float,
    market_type: str,
    odds: float,
    repo: ChallengeRepository,
) -> ValidationResult:
    """
    Decide whether a proposed bet may be placed. Read-only.

    An unknown account is reported as a validation error rather than raised.
    """
    account = await repo.get_account_snapshot(challenge_account_id)
    if account is None:
        return ValidationResult(valid=False, errors=["Challenge account not found"])

    result = evaluate_bet_placement(account, stake, market_type, odds)
    if not result.valid:
        logger.warning(
            "Bet rejected for account %s: stake=%.2f market=%s odds=%s errors=%s",
            challenge_account_id, stake, market_type, _num(odds), result.errors,
        )
    return result


async def check_challenge_rules(
    challenge_account_id: int,
    repo: ChallengeRepository,
    daily_pnl: float | None = None,
    now: datetime | None = None,
    tz_name: str | None = None,
) -> RuleCheckResult:
    """
    Evaluate an account's rules. Read-only; apply `new_state` separately.

    When `daily_pnl` is omitted, the P&L of bets settled today (in
    `tz_name`, default CHALLENGE_TIMEZONE) is aggregated.

    Raises
    ------
    NotFoundError
        If the account does not exist.
    """
    account = await repo.get_account_snapshot(challenge_account_id)
    if account is None:
        raise NotFoundError("Challenge account")

    today_pnl = daily_pnl
    if today_pnl is None:
        start, end = day_bounds(tz_name or get_settings().CHALLENGE_TIMEZONE, now)
        bets = await repo.list_bets_settled_between(challenge_account_id, start, end)
        today_pnl = sum_settled_pnl(bets)

    result = evaluate_challenge_rules(account, today_pnl)

    if result.violations:
        logger.warning(
            "Rule violations for account %s (today_pnl=%.2f): %s",
            challenge_account_id, today_pnl, "; ".join(result.violations),
        )
    return result


async def update_challenge_account_state(
    challenge_account_id: int,
    new_state: ChallengeState,
    repo: ChallengeRepository,
    completed_at: datetime | None = None,
    commit: bool = True,
) -> None:
    """
    Persist a state transition: state, updated_at and, when given, completed_at.

    Setting the same state twice is harmless.
    """
    updated = await repo.set_account_state(
        challenge_account_id,
        new_state,
        updated_at=datetime.now(timezone.utc),
        completed_at=completed_at,
    )
    if not updated:
        raise NotFoundError("Challenge account")

    if commit:
        await repo.commit()

    logger.info("Challenge account %s -> %s", challenge_account_id, new_state.value)


async def apply_rule_check(
    challenge_account_id: int,
    current_state: ChallengeState,
    result: RuleCheckResult,
    repo: ChallengeRepository,
    now: datetime | None = None,
    commit: bool = True,
) -> ChallengeState | None:
    """
    Move the account to result.new_state and return it.

    Nothing is written, and None returned, when no state is proposed, the
    account is already in it, or the account is PASSED / FAILED.
    completed_at is stamped only on PASSED.
    """
    new_state = result.new_state
    if new_state is None or new_state == current_state:
        return None
    if current_state in TERMINAL_STATES:
        logger.info(
            "Account %s is %s; ignoring proposed transition to %s",
            challenge_account_id, current_state.value, new_state.value,
        )
        return None

    now = now or datetime.now(timezone.utc)
    await update_challenge_account_state(
        challenge_account_id,
        new_state,
        repo,
        completed_at=now if new_state == ChallengeState.PASSED else None,
        commit=commit,
    )
    return new_state
