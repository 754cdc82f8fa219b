from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from fractions import Fraction
from typing import Any, Optional, Union

from .config import config
from .errors import ValidationError


def _quantum(exponent: int) -> Decimal:
    return Decimal(1).scaleb(-exponent)


def to_decimal(value: Any, exponent: Optional[int] = None) -> Decimal:
    """Parse a wire or database amount into a Decimal quantized to the currency's subunit."""
    if exponent is None:
        exponent = config.CURRENCY_EXPONENT
    if isinstance(value, bool):
        raise ValidationError("invalid_amount")
    try:
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, (int, float)):
            amount = Decimal(str(value))
        elif isinstance(value, str):
            amount = Decimal(value.strip())
        else:
            raise ValidationError("invalid_amount")
        if not amount.is_finite():
            raise ValidationError("invalid_amount")
        return amount.quantize(_quantum(exponent), rounding=ROUND_HALF_EVEN)
    except InvalidOperation:
        raise ValidationError("invalid_amount") from None


def to_minor(value: Any, exponent: Optional[int] = None) -> int:
    if exponent is None:
        exponent = config.CURRENCY_EXPONENT
    return int(to_decimal(value, exponent).scaleb(exponent))


def from_minor(amount: int, exponent: Optional[int] = None) -> Decimal:
    if exponent is None:
        exponent = config.CURRENCY_EXPONENT
    return Decimal(amount).scaleb(-exponent).quantize(_quantum(exponent))


def to_wire(amount: int, exponent: Optional[int] = None) -> float:
    return float(from_minor(amount, exponent))


def round_minor(value: Union[Decimal, Fraction]) -> int:
    """Round an exact minor-unit quantity to a whole subunit, half to even."""
    if isinstance(value, Fraction):
        return round(value)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_EVEN))
