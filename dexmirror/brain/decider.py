"""
Copy Eligibility Decision

Decides whether one copier mirrors a trade, and how much, from the trade and
the copier's copy settings alone:
1. Copying enabled
2. Token filters (deny-list first, then allow-list)
3. The trade has a USD value to size against
4. Size by the copier's sizing mode
5. Copy amount within the copier's min/max bounds

`evaluate` is pure: no I/O, no hidden state.
"""
from decimal import Decimal
from typing import Optional

from dexmirror.models.trade import Trade
from dexmirror.models.subscription import CopySettings
from dexmirror.models.decision import Copy, Skip, Decision, SkipReason, NegativeValuePolicy
from dexmirror.brain.sizer import calculate_copy_amount

ZERO = Decimal("0")


def check_tokens(token_in: str, token_out: str, settings: CopySettings) -> Optional[Skip]:
    """Apply deny/allow token filters; None means the pair passes"""
    tokens = {token_in.strip().upper(), token_out.strip().upper()}

    if tokens & settings.excluded_tokens:
        return Skip(reason=SkipReason.TOKEN_EXCLUDED)

    # Empty allow-list permits every token
    if settings.allowed_tokens and not tokens & settings.allowed_tokens:
        return Skip(reason=SkipReason.TOKEN_NOT_ALLOWED)

    return None


def evaluate(
    trade: Trade,
    settings: CopySettings,
    negative_value_policy: NegativeValuePolicy = NegativeValuePolicy.PROPAGATE
) -> Decision:
    """
    Main decision function - should this copier mirror this trade?

    Args:
        trade: The trader's recorded trade
        settings: The copier's copy settings for this subscription
        negative_value_policy: Sizing rule for trades with a negative USD value

    Returns:
        Copy(amount) or Skip(reason)
    """
    # Check 1: Is copying switched on?
    if not settings.copy_enabled:
        return Skip(reason=SkipReason.COPYING_DISABLED)

    # Check 2: Token filters
    token_skip = check_tokens(trade.token_in, trade.token_out, settings)
    if token_skip is not None:
        return token_skip

    # Check 3: Is there anything to size against?
    usd_value = trade.usd_value
    if usd_value is None or usd_value == ZERO:
        return Skip(reason=SkipReason.NO_USD_VALUE)
    if usd_value < ZERO and negative_value_policy == NegativeValuePolicy.SKIP:
        return Skip(reason=SkipReason.NEGATIVE_USD_VALUE)

    # Check 4: Size the copy
    amount = calculate_copy_amount(usd_value, settings.sizing)
    if negative_value_policy == NegativeValuePolicy.CLAMP:
        amount = max(amount, ZERO)

    # Check 5: Bounds are inclusive
    if settings.min_trade_size is not None and amount < settings.min_trade_size:
        return Skip(reason=SkipReason.BELOW_MIN_SIZE)
    if settings.max_trade_size is not None and amount > settings.max_trade_size:
        return Skip(reason=SkipReason.ABOVE_MAX_SIZE)

    return Copy(amount=amount)
