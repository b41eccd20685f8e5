"""
Final price calculation for catalog services.

A service price is its base price, reduced by a time-bounded discount
(percentage or fixed amount), then increased by percentage taxes computed on
the discounted amount and by flat other charges. The result is rounded once,
half-up, to two decimal places.

Every stored pricing shape is first converted to a ``PricingInput`` so there
is exactly one calculation path. Calculations never read the clock: callers
pass ``now`` explicitly.
"""
from dataclasses import dataclass, fields
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from typing import Optional

from django.utils.dateparse import parse_datetime, parse_date

from core.exceptions import ValidationError
from core.money import quantize, to_decimal

CURRENCIES = ('INR', 'USD')
CURRENCY_SYMBOLS = {'INR': '₹', 'USD': '$'}

ZERO = Decimal('0')
HUNDRED = Decimal('100')

_MONEY_FIELDS = ('base_price', 'discount_percentage', 'discount_amount', 'gst', 'service_tax', 'other_charges')


@dataclass(frozen=True)
class PricingInput:
    base_price: Decimal
    currency: str = 'INR'
    discount_percentage: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    discount_valid_until: Optional[datetime] = None
    gst: Decimal = ZERO
    service_tax: Decimal = ZERO
    other_charges: Decimal = ZERO

    def __post_init__(self):
        for name in _MONEY_FIELDS:
            value = to_decimal(getattr(self, name), field=name)
            if value is None and name in ('gst', 'service_tax', 'other_charges'):
                value = ZERO
            object.__setattr__(self, name, value)
        object.__setattr__(self, 'discount_valid_until', _parse_datetime(self.discount_valid_until))

    def as_dict(self):
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _parse_datetime(value):
    if value is None or value == '':
        return None
    if isinstance(value, str):
        parsed = parse_datetime(value)
        if parsed is None:
            day = parse_date(value)
            if day is None:
                raise ValidationError({'discount_valid_until': 'Must be an ISO 8601 date or datetime'})
            parsed = datetime(day.year, day.month, day.day)
        value = parsed
    if not isinstance(value, datetime):
        raise ValidationError({'discount_valid_until': 'Must be an ISO 8601 date or datetime'})
    return _aware(value)


def _aware(value):
    if value.tzinfo is None:
        return value.replace(tzinfo=dt_timezone.utc)
    return value


def validate_pricing(pricing):
    errors = {}
    if pricing.base_price is None:
        errors['base_price'] = 'Base price is required'
    elif pricing.base_price < 0:
        errors['base_price'] = 'Base price must be greater than or equal to 0'

    if pricing.currency not in CURRENCIES:
        errors['currency'] = f"Currency must be one of {', '.join(CURRENCIES)}"

    pct = pricing.discount_percentage
    amount = pricing.discount_amount
    if pct is not None and amount is not None:
        errors['discount'] = 'Provide either a discount percentage or a discount amount, not both'
    if pct is not None and not ZERO <= pct <= HUNDRED:
        errors['discount_percentage'] = 'Discount percentage must be between 0 and 100'
    if amount is not None and amount < 0:
        errors['discount_amount'] = 'Discount amount must be greater than or equal to 0'

    for name in ('gst', 'service_tax', 'other_charges'):
        if getattr(pricing, name) < 0:
            errors[name] = 'Must be greater than or equal to 0'

    if errors:
        raise ValidationError(errors)


def discount_is_active(pricing, now):
    if pricing.discount_percentage is None and pricing.discount_amount is None:
        return False
    if pricing.discount_valid_until is None:
        return True
    return _aware(now) < pricing.discount_valid_until


def discounted_price(pricing, now):
    base = pricing.base_price
    if not discount_is_active(pricing, now):
        return base
    if pricing.discount_percentage is not None:
        return base - base * pricing.discount_percentage / HUNDRED
    return max(base - pricing.discount_amount, ZERO)


def compute_final_price(pricing, now):
    validate_pricing(pricing)

    subtotal = discounted_price(pricing, now)
    total = subtotal
    for rate in (pricing.gst, pricing.service_tax):
        total += subtotal * rate / HUNDRED
    total += pricing.other_charges

    return max(quantize(total), quantize(ZERO))


def discount_savings(pricing, now):
    """How much the active discount takes off the base price, before taxes."""
    validate_pricing(pricing)
    return quantize(pricing.base_price - discounted_price(pricing, now))


def pricing_from_document(doc):
    """
    Build a ``PricingInput`` from a stored pricing mapping.

    Two shapes exist in stored data. Enhanced documents carry
    ``isDiscounted`` and ``discountPrice`` (the discounted base); legacy
    documents carry ``discountPercentage`` next to a cached ``finalPrice``.
    Any cached ``finalPrice`` is ignored.
    """
    if not doc:
        raise ValidationError({'pricing': 'Pricing is required'})

    taxes = doc.get('taxes') or {}
    kwargs = {
        'base_price': doc.get('basePrice', doc.get('base_price')),
        'currency': doc.get('currency') or 'INR',
        'discount_valid_until': doc.get('discountValidUntil', doc.get('discount_valid_until')),
        'gst': taxes.get('gst'),
        'service_tax': taxes.get('serviceTax', taxes.get('service_tax')),
        'other_charges': taxes.get('otherCharges', taxes.get('other_charges')),
    }

    if 'isDiscounted' in doc or 'discountPrice' in doc:
        discount_price = to_decimal(doc.get('discountPrice'), field='discount_price')
        base = to_decimal(kwargs['base_price'], field='base_price')
        if doc.get('isDiscounted') and discount_price is not None and base is not None:
            kwargs['discount_amount'] = base - discount_price
    elif doc.get('discountPercentage'):
        kwargs['discount_percentage'] = doc['discountPercentage']
    elif doc.get('discountAmount'):
        kwargs['discount_amount'] = doc['discountAmount']

    return PricingInput(**kwargs)


def format_price(amount, currency='INR'):
    amount = to_decimal(amount)
    if not amount or amount <= 0:
        return 'Free'

    whole, _, frac = f'{quantize(amount):f}'.partition('.')
    if currency == 'INR':
        head, tail = whole[:-3], whole[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        grouped = ','.join(groups + [tail])
    else:
        grouped = f'{int(whole):,}'

    if frac and frac != '00':
        grouped = f'{grouped}.{frac}'
    return f"{CURRENCY_SYMBOLS.get(currency, currency + ' ')}{grouped}"
