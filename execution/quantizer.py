"""Quantizer — fixed-precision amount math for both venues.

All operations use ``Decimal`` exclusively; floats are never accepted.
Polymarket amounts are integers in 6-decimal base units; Kalshi sizes are
whole contracts and limit prices whole cents.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP

USDC_DECIMALS = 6
SHARE_DECIMALS = 6

_ONE = Decimal("1")
_HUNDRED = Decimal("100")


def to_base_units(amount: Decimal, decimals: int = USDC_DECIMALS) -> int:
    """Decimal token amount -> integer base units, truncated.

    Raises
    ------
    ValueError
        If *amount* is negative.
    TypeError
        If *amount* is not ``Decimal``.
    """
    _validate_decimal_non_negative(amount, "amount")
    return int(amount.scaleb(decimals).quantize(_ONE, rounding=ROUND_DOWN))


def from_base_units(raw: int, decimals: int = USDC_DECIMALS) -> Decimal:
    """Integer base units -> Decimal token amount."""
    return Decimal(raw).scaleb(-decimals)


def share_quantity(amount: Decimal, price: Decimal) -> Decimal:
    """Shares bought by *amount* USD at *price*, truncated to share precision.

    Parameters
    ----------
    amount:
        Notional in USD.  Must be > 0.
    price:
        Probability price, strictly inside (0, 1).
    """
    _validate_decimal_positive(amount, "amount")
    _validate_price(price)
    return (amount / price).quantize(Decimal(1).scaleb(-SHARE_DECIMALS), rounding=ROUND_DOWN)


def polymarket_amounts(is_buy: bool, amount: Decimal, price: Decimal) -> tuple[int, int, Decimal]:
    """Maker / taker amounts for a signed CLOB order.

    A buy gives USDC (maker) for shares (taker); a sell gives shares for
    USDC.

    Returns
    -------
    tuple[int, int, Decimal]
        ``(maker_amount, taker_amount, shares)`` with the amounts in base
        units.
    """
    shares = share_quantity(amount, price)
    usdc_raw = to_base_units(amount, USDC_DECIMALS)
    shares_raw = to_base_units(shares, SHARE_DECIMALS)
    if is_buy:
        return usdc_raw, shares_raw, shares
    return shares_raw, usdc_raw, shares


def kalshi_contract_count(amount: Decimal, price: Decimal) -> int:
    """Whole contracts affordable with *amount* at *price* (floor)."""
    _validate_decimal_positive(amount, "amount")
    _validate_price(price)
    return int((amount / price).quantize(_ONE, rounding=ROUND_DOWN))


def kalshi_price_cents(price: Decimal) -> int:
    """Probability price -> integer cents, half-up.

    Raises
    ------
    ValueError
        If the rounded price falls outside Kalshi's 1-99 cent range.
    """
    _validate_price(price)
    cents = int((price * _HUNDRED).quantize(_ONE, rounding=ROUND_HALF_UP))
    if not 1 <= cents <= 99:
        raise ValueError(f"price {price} rounds to {cents} cents, outside 1-99")
    return cents


# ── Internal validators ──────────────────────────────────────────────


def _validate_price(price: Decimal) -> None:
    _validate_decimal_positive(price, "price")
    if price >= _ONE:
        raise ValueError(f"price must be < 1, got {price}")


def _validate_decimal_positive(value: Decimal, name: str) -> None:
    if not isinstance(value, Decimal):
        raise TypeError(f"{name} must be a Decimal, got {type(value).__name__}")
    if value <= Decimal("0"):
        raise ValueError(f"{name} must be positive, got {value}")


def _validate_decimal_non_negative(value: Decimal, name: str) -> None:
    if not isinstance(value, Decimal):
        raise TypeError(f"{name} must be a Decimal, got {type(value).__name__}")
    if value < Decimal("0"):
        raise ValueError(f"{name} must be non-negative, got {value}")
