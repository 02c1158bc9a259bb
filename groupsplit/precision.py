from __future__ import annotations

import math
from decimal import Context, Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, List, Sequence

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")
TOLERANCE = Decimal("0.01")
EXTERNAL_DIGITS = 10

MONEY_CONTEXT = Context(prec=28, rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("Cannot convert bool to Decimal")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValueError("Cannot convert non-finite float to Decimal")
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"Cannot convert {value!r} to Decimal") from None
    else:
        raise ValueError("Cannot convert value to Decimal")

    if not result.is_finite():
        raise ValueError("Cannot use a non-finite Decimal")
    return result


def add(a: Any, b: Any) -> Decimal:
    return MONEY_CONTEXT.add(to_decimal(a), to_decimal(b))


def subtract(a: Any, b: Any) -> Decimal:
    return MONEY_CONTEXT.subtract(to_decimal(a), to_decimal(b))


def multiply(a: Any, b: Any) -> Decimal:
    return MONEY_CONTEXT.multiply(to_decimal(a), to_decimal(b))


def divide(a: Any, b: Any) -> Decimal:
    divisor = to_decimal(b)
    if divisor == 0:
        raise ZeroDivisionError("cannot divide by zero")
    return MONEY_CONTEXT.divide(to_decimal(a), divisor)


def total(values: Sequence[Any]) -> Decimal:
    result = Decimal("0")
    for value in values:
        result = add(result, value)
    return result


def round_half_up(value: Any, places: int = 2) -> Decimal:
    exponent = Decimal(1).scaleb(-places)
    return to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def quantize_money(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_significant(value: Any, digits: int = EXTERNAL_DIGITS) -> Decimal:
    number = to_decimal(value)
    if number == 0:
        return Decimal("0")
    return Context(prec=digits, rounding=ROUND_HALF_UP).plus(number)


def externalize(value: Any) -> float:
    return float(round_significant(value))


def amounts_close(a: Any, b: Any, tolerance: Decimal = TOLERANCE) -> bool:
    return abs(subtract(a, b)) <= tolerance


def allocate(amount: Any, weights: Sequence[Any]) -> List[Decimal]:
    """Split a cent amount proportionally to ``weights``.

    Each part is rounded half-up to cents; whatever the rounding leaves over
    goes to the first part so the parts add up to ``amount`` exactly.
    """
    if not weights:
        raise ValueError("weights must not be empty")

    amount_decimal = quantize_money(amount)
    weight_total = total(weights)
    parts = [quantize_money(divide(multiply(amount_decimal, weight), weight_total)) for weight in weights]
    residual = subtract(amount_decimal, total(parts))
    if residual != 0:
        parts[0] = add(parts[0], residual)
    return parts
