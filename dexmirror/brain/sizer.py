"""
Copy Trade Sizing

Computes the USD size of a mirrored trade from the original trade's USD
value and the copier's sizing mode:
- PERCENTAGE: usd_value * amount / 100
- FIXED: amount, whatever the trade size
- PROPORTIONAL: usd_value * amount (amount is a multiplier)
"""
from decimal import Decimal, ROUND_HALF_UP
import logging

from dexmirror.models.subscription import (
    Sizing, PercentageSizing, FixedSizing, ProportionalSizing
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def calculate_copy_amount(usd_value: Decimal, sizing: Sizing) -> Decimal:
    """
    Calculate the raw copy amount for one copier.

    The sign of `usd_value` is carried through unchanged; callers decide
    what to do with negative amounts.
    """
    if isinstance(sizing, PercentageSizing):
        amount = usd_value * sizing.amount / HUNDRED
    elif isinstance(sizing, FixedSizing):
        amount = sizing.amount
    elif isinstance(sizing, ProportionalSizing):
        amount = usd_value * sizing.amount
    else:
        raise TypeError(f"Unsupported sizing: {type(sizing).__name__}")

    logger.debug(f"Sizing: {sizing.mode} {sizing.amount} of ${usd_value} => ${amount}")
    return amount


def format_usd(amount: Decimal) -> str:
    """Render an amount as dollars and cents, e.g. 1234.5 -> '1234.50'"""
    return str(amount.quantize(CENT, rounding=ROUND_HALF_UP))
