"""
tests/test_rules_engine.py
Tests for bet admission and challenge-rule evaluation.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.rules_engine import (
    RULE_CHECKS,
    RuleCheckResult,
    apply_rule_check,
    check_challenge_rules,
    day_bounds,
    evaluate_bet_placement,
    evaluate_challenge_rules,
    sum_settled_pnl,
    update_challenge_account_state,
    validate_bet_placement,
)
from core.exceptions import NotFoundError
from database.models import Bet, BetStatus, ChallengeAccount, ChallengeState, MarketType
from database.repository import (
    BetSettlementRecord,
    ChallengeAccountSnapshot,
    RulesetSnapshot,
    SqlChallengeRepository,
)

NOW = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)


def _snapshot(ruleset: RulesetSnapshot | None = None, **overrides) -> ChallengeAccountSnapshot:
    """Helper to create an account snapshot with sensible defaults."""
    defaults = dict(
        id=1,
        start_balance=10_000.0,
        equity=10_000.0,
        high_water_mark=10_000.0,
        state=ChallengeState.ACTIVE,
        ruleset=ruleset or RulesetSnapshot(
            profit_target_pct=10.0,
            max_daily_loss_pct=5.0,
            max_drawdown_pct=15.0,
            max_stake_pct=5.0,
            allowed_markets=("MONEYLINE", "SPREAD"),
            max_odds=500.0,
            consistency_rule=False,
        ),
    )
    defaults.update(overrides)
    return ChallengeAccountSnapshot(**defaults)


def _with_consistency(account: ChallengeAccountSnapshot, pct: float = 40.0) -> ChallengeAccountSnapshot:
    return replace(account, ruleset=replace(account.ruleset, consistency_rule=True, consistency_pct=pct))


class FakeRepository:
    """In-memory ChallengeRepository."""

    def __init__(self, account: ChallengeAccountSnapshot | None, bets: list[BetSettlementRecord] | None = None):
        self.account = account
        self.bets = bets or []
        self.bet_queries: list[tuple[datetime, datetime]] = []
        self.state_updates: list[tuple] = []
        self.commits = 0

    async def get_account_snapshot(self, account_id):
        if self.account is None or self.account.id != account_id:
            return None
        return self.account

    async def list_bets_settled_between(self, account_id, start, end):
        self.bet_queries.append((start, end))
        return list(self.bets)

    async def set_account_state(self, account_id, state, updated_at, completed_at=None):
        if self.account is None or self.account.id != account_id:
            return False
        self.state_updates.append((account_id, state, updated_at, completed_at))
        return True

    async def commit(self):
        self.commits += 1


# ---------------------------------------------------------------------------
# evaluate_bet_placement
# ---------------------------------------------------------------------------

class TestEvaluateBetPlacement:
    def test_valid_bet(self):
        result = evaluate_bet_placement(_snapshot(), 100, "MONEYLINE", 150)
        assert result.valid is True
        assert result.errors == []

    def test_stake_too_high(self):
        result = evaluate_bet_placement(_snapshot(), 600, "MONEYLINE", 150)
        assert result.valid is False
        assert "Stake exceeds maximum allowed: $600.00 > $500.00" in result.errors

    def test_market_not_allowed(self):
        result = evaluate_bet_placement(_snapshot(), 100, "PROPS", 150)
        assert result.valid is False
        assert "Market type 'PROPS' is not allowed for this plan" in result.errors

    def test_odds_too_high(self):
        result = evaluate_bet_placement(_snapshot(), 100, "MONEYLINE", 600)
        assert result.valid is False
        assert "Odds exceed maximum allowed: 600 > 500" in result.errors

    def test_fractional_odds_rendered_plainly(self):
        result = evaluate_bet_placement(_snapshot(), 100, "MONEYLINE", 512.5)
        assert "Odds exceed maximum allowed: 512.5 > 500" in result.errors

    def test_no_odds_cap_when_unset(self):
        account = _snapshot()
        account = replace(account, ruleset=replace(account.ruleset, max_odds=None))
        assert evaluate_bet_placement(account, 100, "MONEYLINE", 5000).valid is True

    def test_insufficient_balance(self):
        result = evaluate_bet_placement(_snapshot(equity=50.0), 100, "MONEYLINE", 150)
        assert result.valid is False
        assert "Insufficient balance for this stake" in result.errors

    def test_inactive_account(self):
        result = evaluate_bet_placement(_snapshot(state=ChallengeState.PAUSED), 100, "MONEYLINE", 150)
        assert result.errors == ["Challenge account is not active"]

    def test_all_failures_collected_in_order(self):
        """Every check runs; errors follow the fixed check order."""
        account = _snapshot(state=ChallengeState.FAILED, equity=400.0)
        result = evaluate_bet_placement(account, 600, "PROPS", 600)
        assert result.valid is False
        assert result.errors == [
            "Challenge account is not active",
            "Stake exceeds maximum allowed: $600.00 > $20.00",
            "Market type 'PROPS' is not allowed for this plan",
            "Odds exceed maximum allowed: 600 > 500",
            "Insufficient balance for this stake",
        ]

    def test_stake_cap_scales_with_equity(self):
        """Max stake is a percentage of current equity, not start balance."""
        result = evaluate_bet_placement(_snapshot(equity=12_000.0), 600, "SPREAD", -110)
        assert result.valid is True


# ---------------------------------------------------------------------------
# evaluate_challenge_rules
# ---------------------------------------------------------------------------

class TestEvaluateChallengeRules:
    def test_clean_account(self):
        result = evaluate_challenge_rules(_snapshot(), 0.0)
        assert result.passed is True
        assert result.violations == []
        assert result.new_state is None

    def test_daily_loss(self):
        result = evaluate_challenge_rules(_snapshot(), -600.0)
        assert result.passed is False
        assert result.violations == ["Daily loss limit exceeded: $600.00 > $500.00"]
        assert result.new_state == ChallengeState.PAUSED

    def test_daily_loss_at_limit_is_allowed(self):
        assert evaluate_challenge_rules(_snapshot(), -500.0).passed is True

    def test_drawdown(self):
        result = evaluate_challenge_rules(_snapshot(equity=8_000.0), 0.0)
        assert result.passed is False
        assert result.violations == ["Maximum drawdown exceeded: 20.00% > 15%"]
        assert result.new_state == ChallengeState.FAILED

    def test_drawdown_measured_from_high_water_mark(self):
        """11,000 peak -> 9,300 is a 15.45% drawdown even though equity is near start."""
        result = evaluate_challenge_rules(_snapshot(equity=9_300.0, high_water_mark=11_000.0), 0.0)
        assert result.violations == ["Maximum drawdown exceeded: 15.45% > 15%"]
        assert result.new_state == ChallengeState.FAILED

    def test_profit_target(self):
        result = evaluate_challenge_rules(_snapshot(equity=11_000.0, high_water_mark=11_000.0), 0.0)
        assert result.passed is True
        assert result.violations == []
        assert result.new_state == ChallengeState.PASSED

    def test_profit_target_not_reached(self):
        result = evaluate_challenge_rules(_snapshot(equity=10_999.0, high_water_mark=10_999.0), 0.0)
        assert result.new_state is None

    def test_daily_loss_voids_profit_target(self):
        account = _snapshot(equity=11_000.0, high_water_mark=11_000.0)
        result = evaluate_challenge_rules(account, -600.0)
        assert result.passed is False
        assert result.new_state == ChallengeState.PAUSED

    def test_drawdown_overrides_daily_loss(self):
        result = evaluate_challenge_rules(_snapshot(equity=8_000.0), -600.0)
        assert result.violations == [
            "Daily loss limit exceeded: $600.00 > $500.00",
            "Maximum drawdown exceeded: 20.00% > 15%",
        ]
        assert result.new_state == ChallengeState.FAILED

    def test_consistency_revokes_pass(self):
        account = _with_consistency(_snapshot(equity=11_000.0, high_water_mark=11_000.0))
        result = evaluate_challenge_rules(account, 1_000.0)
        assert result.passed is False
        assert result.violations == ["Consistency rule violated: single day profit $1000.00 > $400.00"]
        assert result.new_state == ChallengeState.PAUSED

    def test_consistency_within_cap_keeps_pass(self):
        account = _with_consistency(_snapshot(equity=11_000.0, high_water_mark=11_000.0))
        result = evaluate_challenge_rules(account, 300.0)
        assert result.passed is True
        assert result.new_state == ChallengeState.PASSED

    def test_consistency_ignored_without_total_profit(self):
        account = _with_consistency(_snapshot(equity=9_900.0))
        assert evaluate_challenge_rules(account, 400.0).passed is True

    def test_consistency_disabled_without_pct(self):
        account = _snapshot(equity=11_000.0, high_water_mark=11_000.0)
        account = replace(account, ruleset=replace(account.ruleset, consistency_rule=True, consistency_pct=None))
        assert evaluate_challenge_rules(account, 1_000.0).new_state == ChallengeState.PASSED

    def test_consistency_overrides_drawdown(self):
        """The last firing check wins: consistency's PAUSED replaces drawdown's FAILED."""
        account = _with_consistency(_snapshot(equity=11_000.0, high_water_mark=14_000.0))
        result = evaluate_challenge_rules(account, 600.0)
        assert result.violations == [
            "Maximum drawdown exceeded: 21.43% > 15%",
            "Consistency rule violated: single day profit $600.00 > $400.00",
        ]
        assert result.new_state == ChallengeState.PAUSED

    def test_fixed_check_order(self):
        assert [name for name, _ in RULE_CHECKS] == [
            "daily_loss", "drawdown", "profit_target", "consistency",
        ]

    def test_idempotent(self):
        account = _with_consistency(_snapshot(equity=8_000.0))
        assert evaluate_challenge_rules(account, -600.0) == evaluate_challenge_rules(account, -600.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestSumSettledPnl:
    def test_mixed_results(self):
        bets = [
            BetSettlementRecord(status="WON", stake=100, potential_payout=250),
            BetSettlementRecord(status="LOST", stake=200, potential_payout=180),
            BetSettlementRecord(status="PUSH", stake=300, potential_payout=300),
        ]
        assert sum_settled_pnl(bets) == pytest.approx(150 - 200)

    def test_empty(self):
        assert sum_settled_pnl([]) == 0.0


class TestDayBounds:
    def test_utc_day(self):
        start, end = day_bounds("UTC", NOW)
        assert start == datetime(2026, 10, 19, tzinfo=timezone.utc)
        assert end == datetime(2026, 10, 20, tzinfo=timezone.utc)

    def test_named_zone(self):
        """03:00 UTC on Mar 10 is still Mar 9 in New York (EDT, UTC-4)."""
        start, end = day_bounds("America/New_York", datetime(2026, 3, 10, 3, 0, tzinfo=timezone.utc))
        assert start == datetime(2026, 3, 9, 4, 0, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 10, 4, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Repository-backed entry points
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestEntryPointsWithFakeRepository:
    async def test_validate_unknown_account(self):
        result = await validate_bet_placement(99, 100, "MONEYLINE", 150, FakeRepository(None))
        assert result.valid is False
        assert result.errors == ["Challenge account not found"]

    async def test_validate_valid_bet(self):
        result = await validate_bet_placement(1, 100, "MONEYLINE", 150, FakeRepository(_snapshot()))
        assert result.valid is True

    async def test_check_unknown_account_raises(self):
        with pytest.raises(NotFoundError, match="Challenge account not found"):
            await check_challenge_rules(99, FakeRepository(None))

    async def test_check_aggregates_todays_bets(self):
        repo = FakeRepository(_snapshot(), bets=[
            BetSettlementRecord(status="LOST", stake=100, potential_payout=0),
            BetSettlementRecord(status="LOST", stake=200, potential_payout=0),
            BetSettlementRecord(status="LOST", stake=300, potential_payout=0),
        ])
        result = await check_challenge_rules(1, repo, now=NOW, tz_name="UTC")
        assert result.passed is False
        assert "Daily loss limit exceeded: $600.00 > $500.00" in result.violations
        assert result.new_state == ChallengeState.PAUSED
        assert repo.bet_queries == [(
            datetime(2026, 10, 19, tzinfo=timezone.utc),
            datetime(2026, 10, 20, tzinfo=timezone.utc),
        )]

    async def test_check_uses_supplied_daily_pnl(self):
        repo = FakeRepository(_snapshot(), bets=[
            BetSettlementRecord(status="LOST", stake=5_000, potential_payout=0),
        ])
        result = await check_challenge_rules(1, repo, daily_pnl=-100.0)
        assert result.passed is True
        assert repo.bet_queries == []

    async def test_check_has_no_side_effects(self):
        repo = FakeRepository(_snapshot(equity=8_000.0))
        first = await check_challenge_rules(1, repo, daily_pnl=0.0)
        second = await check_challenge_rules(1, repo, daily_pnl=0.0)
        assert first == second
        assert repo.state_updates == []
        assert repo.commits == 0

    async def test_update_state(self):
        repo = FakeRepository(_snapshot())
        completed = datetime(2026, 10, 19, 16, 0, tzinfo=timezone.utc)
        await update_challenge_account_state(1, ChallengeState.PASSED, repo, completed_at=completed)
        assert len(repo.state_updates) == 1
        _, state, updated_at, completed_at = repo.state_updates[0]
        assert state == ChallengeState.PASSED
        assert updated_at.tzinfo is not None
        assert completed_at == completed
        assert repo.commits == 1

    async def test_update_state_without_commit(self):
        repo = FakeRepository(_snapshot())
        await update_challenge_account_state(1, ChallengeState.PAUSED, repo, commit=False)
        assert repo.commits == 0

    async def test_update_unknown_account_raises(self):
        with pytest.raises(NotFoundError):
            await update_challenge_account_state(99, ChallengeState.PAUSED, FakeRepository(None))

    async def test_apply_moves_active_account(self):
        repo = FakeRepository(_snapshot())
        result = RuleCheckResult(passed=True, violations=[], new_state=ChallengeState.PASSED)

        applied = await apply_rule_check(1, ChallengeState.ACTIVE, result, repo, now=NOW)

        assert applied == ChallengeState.PASSED
        assert repo.state_updates[0][1] == ChallengeState.PASSED
        assert repo.state_updates[0][3] == NOW
        assert repo.commits == 1

    async def test_apply_pause_leaves_completed_at_unset(self):
        repo = FakeRepository(_snapshot())
        result = RuleCheckResult(passed=False, violations=["x"], new_state=ChallengeState.PAUSED)

        assert await apply_rule_check(1, ChallengeState.ACTIVE, result, repo, commit=False) == ChallengeState.PAUSED
        assert repo.state_updates[0][3] is None
        assert repo.commits == 0

    @pytest.mark.parametrize("final_state", [ChallengeState.FAILED, ChallengeState.PASSED])
    async def test_apply_never_leaves_a_final_state(self, final_state):
        repo = FakeRepository(_snapshot(state=final_state))
        result = RuleCheckResult(passed=False, violations=["x"], new_state=ChallengeState.PAUSED)

        assert await apply_rule_check(1, final_state, result, repo) is None
        assert repo.state_updates == []
        assert repo.commits == 0

    async def test_apply_skips_same_state_and_no_proposal(self):
        repo = FakeRepository(_snapshot(state=ChallengeState.PAUSED))
        same = RuleCheckResult(passed=False, violations=["x"], new_state=ChallengeState.PAUSED)
        clean = RuleCheckResult(passed=True, violations=[], new_state=None)

        assert await apply_rule_check(1, ChallengeState.PAUSED, same, repo) is None
        assert await apply_rule_check(1, ChallengeState.PAUSED, clean, repo) is None
        assert repo.state_updates == []


@pytest.mark.asyncio
class TestEntryPointsWithDatabase:
    async def test_today_window_filters_bets(self, async_db_session: AsyncSession, seeded_account: ChallengeAccount):
        """Only bets settled inside today's window count toward the daily loss."""
        today = NOW.replace(hour=9)
        for stake in (100, 200, 300):
            async_db_session.add(Bet(
                challenge_account_id=seeded_account.id, market_type=MarketType.MONEYLINE,
                selection="home", odds_at_placement=150, stake=stake, potential_payout=stake * 1.5,
                status=BetStatus.LOST, settled_at=today,
            ))
        async_db_session.add(Bet(
            challenge_account_id=seeded_account.id, market_type=MarketType.MONEYLINE,
            selection="away", odds_at_placement=150, stake=400, potential_payout=600,
            status=BetStatus.LOST, settled_at=NOW - timedelta(days=1),
        ))
        async_db_session.add(Bet(
            challenge_account_id=seeded_account.id, market_type=MarketType.MONEYLINE,
            selection="away", odds_at_placement=150, stake=400, potential_payout=600,
            status=BetStatus.OPEN,
        ))
        await async_db_session.commit()

        repo = SqlChallengeRepository(async_db_session)
        result = await check_challenge_rules(seeded_account.id, repo, now=NOW, tz_name="UTC")

        assert result.violations == ["Daily loss limit exceeded: $600.00 > $500.00"]
        assert result.new_state == ChallengeState.PAUSED

    async def test_snapshot_reads_ruleset(self, async_db_session: AsyncSession, seeded_account: ChallengeAccount):
        snapshot = await SqlChallengeRepository(async_db_session).get_account_snapshot(seeded_account.id)
        assert snapshot.ruleset.allowed_markets == ("MONEYLINE", "SPREAD")
        assert snapshot.ruleset.max_odds == 500.0
        assert snapshot.state == ChallengeState.ACTIVE

    async def test_update_state_persists(self, async_db_session: AsyncSession, seeded_account: ChallengeAccount):
        repo = SqlChallengeRepository(async_db_session)
        completed = datetime(2026, 10, 19, 16, 0, tzinfo=timezone.utc)
        await update_challenge_account_state(seeded_account.id, ChallengeState.PASSED, repo, completed_at=completed)

        account = await async_db_session.get(ChallengeAccount, seeded_account.id)
        assert account.state == ChallengeState.PASSED
        assert account.completed_at is not None
