from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from .exceptions import ValidationError

CENT = Decimal('0.01')


def to_decimal(value, field='amount'):
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValidationError({field: 'Must be a number'})
    if isinstance(value, float):
        value = repr(value)
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError({field: 'Must be a number'})
    if not result.is_finite():
        raise ValidationError({field: 'Must be a number'})
    return result


def quantize(amount):
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount):
    """Amount in paise/cents, as payment gateways expect."""
    return int((amount * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_minor_units(value):
    return quantize(Decimal(int(value)) / 100)
