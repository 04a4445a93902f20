"""Fixed-point decimal helpers — amounts, rates and ray-scaled indices.

Every monetary value in the engine is a ``Decimal``. Arithmetic goes through
a dedicated 78-digit context so that values at 18-decimal amount scale (and
27-decimal ray scale) never pick up intermediate rounding.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation
from typing import Union

from .errors import InvalidAmount

DecimalLike = Union[str, int, Decimal]

AMOUNT_DECIMALS = 18
RAY_DECIMALS = 27
RATE_DECIMALS = 4

AMOUNT_QUANTUM = Decimal(1).scaleb(-AMOUNT_DECIMALS)
RAY_QUANTUM = Decimal(1).scaleb(-RAY_DECIMALS)
RATE_QUANTUM = Decimal(1).scaleb(-RATE_DECIMALS)
PERCENT_QUANTUM = Decimal("0.01")

# Stored amounts are NUMERIC(36, 18): 18 integer digits. Values must stay below this.
MAX_AMOUNT = Decimal(10) ** (36 - AMOUNT_DECIMALS)

ZERO = Decimal(0)
ONE = Decimal(1)
HUNDRED = Decimal(100)

_CTX = Context(prec=78, rounding=ROUND_HALF_UP)


def to_decimal(value: DecimalLike) -> Decimal:
    """Parse ``value`` into a finite Decimal.

    Floats are refused outright: a binary float has already lost the exact
    value the caller meant.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmount(f"Amount must be a decimal string or integer, got {type(value).__name__}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidAmount(f"Not a decimal number: {value!r}") from None
    else:
        raise InvalidAmount(f"Unsupported amount type: {type(value).__name__}")

    if not result.is_finite():
        raise InvalidAmount(f"Amount must be finite, got {value!r}")
    return result


def to_amount(value: DecimalLike) -> Decimal:
    """Parse an amount with at most 18 fractional digits, normalized to 18 dp."""
    result = to_decimal(value)
    try:
        quantized = quantize_amount(result)
    except InvalidOperation:
        raise InvalidAmount(f"Amount out of range: {value!r}") from None
    if abs(quantized) >= MAX_AMOUNT:
        raise InvalidAmount(f"Amount must be less than {MAX_AMOUNT}: {value!r}")
    # Trailing zeros beyond 18 dp are harmless; anything else is not.
    if quantized != result:
        raise InvalidAmount(
            f"Amount has more than {AMOUNT_DECIMALS} decimal places: {value!r}"
        )
    return quantized


def add(a: Decimal, b: Decimal) -> Decimal:
    return _CTX.add(a, b)


def sub(a: Decimal, b: Decimal) -> Decimal:
    return _CTX.subtract(a, b)


def mul(a: Decimal, b: Decimal) -> Decimal:
    return _CTX.multiply(a, b)


def div(a: Decimal, b: Decimal) -> Decimal:
    return _CTX.divide(a, b)


def quantize_amount(value: Decimal) -> Decimal:
    return value.quantize(AMOUNT_QUANTUM, context=_CTX)


def quantize_ray(value: Decimal) -> Decimal:
    return value.quantize(RAY_QUANTUM, context=_CTX)


def quantize_rate(value: Decimal) -> Decimal:
    return value.quantize(RATE_QUANTUM, context=_CTX)


def format_percent(fraction: Decimal) -> str:
    """0.0534 → '5.34%'."""
    return f"{mul(fraction, HUNDRED).quantize(PERCENT_QUANTUM, context=_CTX)}%"


def format_decimal(value: Decimal) -> str:
    """Plain (non-scientific) string with trailing zeros stripped."""
    if value == ZERO:
        return "0"
    text = f"{value:f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text
