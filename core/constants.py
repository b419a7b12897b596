"""
core/constants.py
Hard-coded plan limits and system constants.
These values are NOT configurable via environment.
"""

from typing import Final

# ---------------------------------------------------------------------------
# Ruleset bounds (percent) enforced when a plan's ruleset is created
# ---------------------------------------------------------------------------
PROFIT_TARGET_PCT_RANGE: Final[tuple[float, float]] = (1.0, 50.0)
MAX_DAILY_LOSS_PCT_RANGE: Final[tuple[float, float]] = (1.0, 20.0)
MAX_DRAWDOWN_PCT_RANGE: Final[tuple[float, float]] = (5.0, 50.0)
MAX_STAKE_PCT_RANGE: Final[tuple[float, float]] = (0.5, 10.0)
CONSISTENCY_PCT_RANGE: Final[tuple[float, float]] = (10.0, 90.0)
MIN_MAX_ODDS: Final[float] = 100.0

# ---------------------------------------------------------------------------
# Challenge accounts
# ---------------------------------------------------------------------------
MIN_START_BALANCE: Final[float] = 1_000.0
MAX_START_BALANCE: Final[float] = 100_000.0

# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------
SYSTEM_VERSION: Final[str] = "v1.0-challenge-engine"
