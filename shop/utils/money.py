from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """
    Приводит число/строку к Decimal.
    float идёт через str(), чтобы 0.1 не превращался в 0.1000000000000000055...
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not a money value: {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Not a money value: {value!r}") from e


def round_money(amount: Any) -> Decimal:
    # half-up до центов: 33.335 -> 33.34
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(amount: Any, currency: str = "USD") -> str:
    value = round_money(amount)
    if currency.upper() == "USD":
        return f"${value}"
    return f"{value} {currency.upper()}"


def format_number(value: Any) -> str:
    # 50 -> "50", 49.50 -> "49.5"
    value = to_decimal(value)
    if value == value.to_integral_value():
        return str(int(value))
    return str(value.normalize())
