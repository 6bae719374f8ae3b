"""Amount and fee arithmetic.

On-chain amounts are integers in the asset's smallest unit; user-facing amounts
are Decimals. These helpers are the only place the two are converted.
"""

from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal, localcontext
from typing import Union

LAMPORTS_PER_SIGNATURE = 5000
MICRO_LAMPORTS_PER_LAMPORT = 1_000_000
MAX_SLIPPAGE_BPS = 5000
# Rent-exempt minimum for a token account
TOKEN_ACCOUNT_RENT_LAMPORTS = 2_039_280

Number = Union[Decimal, int, str]


def to_base_units(amount: Number, decimals: int) -> int:
    """Convert a user amount to base units, rounding down.

    1.5 at 9 decimals is 1500000000; 1.9999999999 at 9 decimals is 1999999999.
    """
    value = Decimal(str(amount))
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")
    # Exact scaling: the default 28-digit context would round before the floor
    with localcontext() as exact:
        exact.prec = len(value.as_tuple().digits) + decimals + 1
        scaled = value.scaleb(decimals)
        return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def from_base_units(amount: int, decimals: int) -> Decimal:
    """Convert base units back to a user amount."""
    return Decimal(int(amount)).scaleb(-decimals)


def percent_to_bps(percent: Number) -> int:
    """Convert a slippage percentage (0.5 means 0.5%) to basis points."""
    value = Decimal(str(percent)) * 100
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


def estimate_fee_lamports(
    signatures: int,
    priority_fee_micro_lamports: int,
    compute_unit_limit: int,
) -> int:
    """Estimate the network fee for one transaction.

    Base fee per signature plus the priority fee over the compute unit limit.
    """
    priority = Decimal(priority_fee_micro_lamports * compute_unit_limit) / MICRO_LAMPORTS_PER_LAMPORT
    return signatures * LAMPORTS_PER_SIGNATURE + int(priority.to_integral_value(rounding=ROUND_CEILING))
