"""
core/payouts.py
American-odds payout and settled-bet P&L math.

Pure functions, no rounding. Callers round for display and storage.
"""

import logging

logger = logging.getLogger(__name__)


def is_valid_american_odds(american_odds: float) -> bool:
    """American odds live at or beyond +/-100; anything strictly between is not a price."""
    return abs(american_odds) >= 100


def _profit_per_unit(american_odds: float) -> float:
    # +150 wins 1.5 per unit staked, -200 wins 0.5
    if american_odds > 0:
        return american_odds / 100
    return 100 / abs(american_odds)


def calculate_potential_payout(stake: float, american_odds: float) -> float:
    """
    Winnings (profit only, stake excluded) for a stake at American odds.

    Positive odds quote the profit on a 100 stake, negative odds the stake
    needed to win 100.

    >>> calculate_potential_payout(100, 150)
    150.0
    """
    return stake * _profit_per_unit(american_odds)


def calculate_pnl_from_bet(stake: float, potential_payout: float, status: str) -> float:
    """
    Realized P&L of a settled bet.

    WON  -> potential_payout - stake
    LOST -> -stake
    PUSH -> 0
    Any other status has not realized anything and yields 0.
    """
    status = getattr(status, "value", status)
    if status == "WON":
        return potential_payout - stake
    if status == "LOST":
        return -stake
    if status != "PUSH":
        logger.debug("P&L requested for unsettled status %s, returning 0", status)
    return 0.0


def american_to_decimal(american_odds: float) -> float:
    """Decimal price (stake returned included), to three places."""
    return round(1 + _profit_per_unit(american_odds), 3)
