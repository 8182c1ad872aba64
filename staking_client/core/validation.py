"""
Amount and time helpers for the staking client.

Provides amount validation, the micro unit display conversion and the
unlock-time comparison used for unbonding entries.
"""

import time
from decimal import Decimal
from typing import Optional, Union

from ..exceptions import InvalidAmountError

# Type definitions
Amount = Union[int, str]

MICRO_UNITS = 1_000_000
APR_DENOMINATOR = 1_000_000


def validate_amount(amount: Amount) -> bool:
    """
    Validate that an amount is a whole number of units greater than 0.

    Args:
        amount: Amount to validate

    Returns:
        True if amount is valid (greater than 0)
    """
    if isinstance(amount, bool):
        return False
    try:
        amount_int = int(amount) if isinstance(amount, str) else amount
    except ValueError:
        return False
    return isinstance(amount_int, int) and amount_int > 0


def normalize_amount(amount: Amount) -> int:
    """
    Convert an amount to a positive integer.

    Raises:
        InvalidAmountError: If the amount is not a positive whole number
    """
    if not validate_amount(amount):
        raise InvalidAmountError(amount if isinstance(amount, (int, str)) else None)
    return int(amount)


def from_micro_units(amount: int, micro_units: int = MICRO_UNITS) -> Decimal:
    """Convert integer micro units to a display amount."""
    return Decimal(amount) / micro_units


def apr_percent(apr: int) -> Decimal:
    """Contract APR (scaled by 1e6) as a percentage."""
    return Decimal(apr) * 100 / APR_DENOMINATOR


def current_timestamp() -> int:
    """Current unix time in whole seconds, as the contract measures it."""
    return int(time.time())


def is_unlocked(unlock_timestamp: int, now: Optional[int] = None) -> bool:
    """True once ``now`` has reached the unlock second (inclusive)."""
    if now is None:
        now = current_timestamp()
    return now >= unlock_timestamp


def seconds_until_unlock(unlock_timestamp: int, now: Optional[int] = None) -> int:
    if now is None:
        now = current_timestamp()
    return max(0, unlock_timestamp - now)
