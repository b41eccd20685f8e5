"""
Booking form validation.

Whole-form and single-field validation share one rule per field, so the
message shown on blur is the message shown on submit.
"""
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email
from django.utils.dateparse import parse_date, parse_datetime

from core.exceptions import ValidationError

NAME_RE = re.compile(r'[a-zA-Z\s]+')
PHONE_RE = re.compile(r'(?:\+91|91)?([6-9]\d{9})')

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50
EMAIL_MAX_LENGTH = 100
ADDRESS_MAX_LENGTH = 200
NOTES_MAX_LENGTH = 500

FIELDS = ('customer_name', 'customer_email', 'customer_phone', 'scheduled_date', 'customer_address', 'notes')


@dataclass(frozen=True)
class BookingFormData:
    customer_name: str
    customer_email: str
    customer_phone: str
    customer_address: str = ''
    notes: str = ''
    scheduled_date: Optional[date] = None

    @property
    def customer_info(self):
        return {
            'name': self.customer_name,
            'email': self.customer_email,
            'phone': self.customer_phone,
            'address': self.customer_address,
        }


def _text(value):
    return '' if value is None else str(value)


def _compact(phone):
    return re.sub(r'\s', '', _text(phone))


def normalize_phone(value):
    """Return the bare 10-digit mobile number, or None if it is not one."""
    match = PHONE_RE.fullmatch(_compact(value))
    return match.group(1) if match else None


def parse_scheduled_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = _text(value).strip()
    parsed = parse_date(text)
    if parsed is None:
        try:
            moment = parse_datetime(text)
        except ValueError:
            moment = None
        parsed = moment.date() if moment else None
    return parsed


def _check_name(value, is_scheduled_service):
    name = _text(value).strip()
    if not name:
        return 'Full name is required'
    if len(name) < NAME_MIN_LENGTH:
        return 'Name must be at least 2 characters'
    if len(name) > NAME_MAX_LENGTH:
        return 'Name must be less than 50 characters'
    if not NAME_RE.fullmatch(name):
        return 'Name can only contain letters and spaces'
    return None


def _check_email(value, is_scheduled_service):
    email = _text(value).strip()
    if not email:
        return 'Email address is required'
    if len(email) > EMAIL_MAX_LENGTH:
        return 'Email must be less than 100 characters'
    try:
        validate_email(email)
    except DjangoValidationError:
        return 'Please enter a valid email address'
    return None


def _check_phone(value, is_scheduled_service):
    if not _text(value).strip():
        return 'Phone number is required'
    if normalize_phone(value) is None:
        return 'Please enter a valid Indian phone number'
    return None


def _check_scheduled_date(value, is_scheduled_service):
    if not is_scheduled_service:
        return None
    if value is None or not _text(value).strip():
        return 'Please select a preferred date'
    try:
        parsed = parse_scheduled_date(value)
    except ValueError:
        parsed = None
    if parsed is None:
        return 'Please select a valid date'
    return None


def _check_address(value, is_scheduled_service):
    if len(_text(value)) > ADDRESS_MAX_LENGTH:
        return 'Address must be less than 200 characters'
    return None


def _check_notes(value, is_scheduled_service):
    if len(_text(value)) > NOTES_MAX_LENGTH:
        return 'Notes must be less than 500 characters'
    return None


RULES = {
    'customer_name': _check_name,
    'customer_email': _check_email,
    'customer_phone': _check_phone,
    'scheduled_date': _check_scheduled_date,
    'customer_address': _check_address,
    'notes': _check_notes,
}


def validate_field(field, value, is_scheduled_service=False):
    try:
        rule = RULES[field]
    except KeyError:
        raise ValidationError({field: 'Unknown field'})
    return rule(value, is_scheduled_service)


def validate(form, is_scheduled_service):
    errors = {}
    for field in FIELDS:
        message = validate_field(field, form.get(field), is_scheduled_service)
        if message:
            errors[field] = message
    return errors


def clean(form, is_scheduled_service):
    errors = validate(form, is_scheduled_service)
    if errors:
        raise ValidationError(errors)

    scheduled_date = None
    if is_scheduled_service:
        scheduled_date = parse_scheduled_date(form.get('scheduled_date'))

    return BookingFormData(
        customer_name=' '.join(_text(form.get('customer_name')).split()),
        customer_email=_text(form.get('customer_email')).strip(),
        customer_phone=normalize_phone(form.get('customer_phone')),
        customer_address=_text(form.get('customer_address')).strip(),
        notes=_text(form.get('notes')).strip(),
        scheduled_date=scheduled_date,
    )
