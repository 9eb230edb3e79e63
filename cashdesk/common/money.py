"""
Monetary helpers

Amounts travel as Decimal everywhere. Rounding to cents only happens when a
value is stored or presented.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional
import re

CENT = Decimal("0.01")
ZERO = Decimal("0")
# Largest value a Numeric(15, 2) column holds
MAX_AMOUNT = Decimal("9999999999999.99")

# pt-BR amounts always carry a decimal comma: "1.234,56", "12,5"
_BR_AMOUNT = re.compile(r'^-?\d{1,3}(\.\d{3})*,\d+$|^-?\d+,\d+$')


def to_decimal(value) -> Decimal:
    """
    Convert user/store input into a finite Decimal.

    Accepts Decimal, int, float (converted through str to avoid binary
    artifacts) and numeric strings, including pt-BR formatted ones.

    Raises:
        ValueError: missing, non-numeric or non-finite input
    """
    if value is None or isinstance(value, bool):
        raise ValueError("Amount is required")

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = re.sub(r'[\sR$]', '', value)
        if not cleaned:
            raise ValueError("Amount is required")
        if _BR_AMOUNT.match(cleaned):
            cleaned = cleaned.replace('.', '').replace(',', '.')
        else:
            cleaned = cleaned.replace(',', '')
        try:
            result = Decimal(cleaned)
        except InvalidOperation:
            raise ValueError(f"Invalid amount: {value!r}")
    else:
        raise ValueError(f"Invalid amount: {value!r}")

    if not result.is_finite():
        raise ValueError("Amount must be a finite number")
    return result


def quantize_money(value) -> Decimal:
    """Round to cents (half up)"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable, start: Optional[Decimal] = None) -> Decimal:
    total = ZERO if start is None else start
    for value in values:
        total += to_decimal(value)
    return total
