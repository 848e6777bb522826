# tonescrow/utils/money.py
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

from tonescrow.core.exceptions import ValidationError

CURRENCIES = ("TON", "MMK")

# TON хранится с точностью 4 знака, MMK - целые кьяты
_PRECISION = {
    "TON": Decimal("0.0001"),
    "MMK": Decimal("1"),
}


def to_decimal(value: Union[str, int, float, Decimal, None]) -> Decimal:
    """Приводит значение к Decimal через строку, чтобы не тащить погрешность float."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"Invalid amount: {value!r}")


def quantize(amount: Union[str, int, float, Decimal], currency: str) -> Decimal:
    """Округляет сумму до хранимой точности валюты (ROUND_HALF_UP)."""
    if currency not in _PRECISION:
        raise ValidationError(f"Unsupported currency: {currency}", currency=currency)
    return to_decimal(amount).quantize(_PRECISION[currency], rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, rate: Decimal, currency: str) -> Decimal:
    # Промежуточное произведение не округляется, только итог
    return quantize(to_decimal(amount) * to_decimal(rate) / Decimal(100), currency)


def validate_currency(currency: str) -> str:
    if currency not in CURRENCIES:
        raise ValidationError(f"Unsupported currency: {currency}", currency=currency)
    return currency
