import json
import logging

from django.http import JsonResponse

from .exceptions import (
    BookingStateError, NotFoundError, PaymentProviderError, StoreUnavailableError, ValidationError,
)

logger = logging.getLogger(__name__)

GENERIC_ERROR = 'Something went wrong. Please try again.'


class InvalidJSON(ValueError):
    pass


def parse_json(request):
    try:
        data = json.loads(request.body or b'{}')
    except json.JSONDecodeError as e:
        raise InvalidJSON('Invalid JSON') from e
    if not isinstance(data, dict):
        raise InvalidJSON('Invalid JSON')
    return data


def request_metadata(request, extra=None):
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR', '')
    metadata = {
        'client_ip': forwarded.split(',')[0].strip() or request.META.get('REMOTE_ADDR'),
        'user_agent': request.META.get('HTTP_USER_AGENT'),
    }
    if isinstance(extra, dict) and extra:
        metadata['additional_info'] = dict(extra)
    return metadata


def error_response(exc, not_found='Booking not found', **extra):
    """Map a core error onto a JSON response; internal details stay in the log."""
    if isinstance(exc, ValidationError):
        return JsonResponse({'errors': exc.errors, **extra}, status=400)
    if isinstance(exc, NotFoundError):
        return JsonResponse({'error': not_found, **extra}, status=404)
    if isinstance(exc, BookingStateError):
        return JsonResponse({'error': str(exc), **extra}, status=409)
    if isinstance(exc, PaymentProviderError):
        logger.error('Payment provider error: %s', exc, exc_info=exc)
        return JsonResponse({'error': GENERIC_ERROR, **extra}, status=502)
    if isinstance(exc, StoreUnavailableError):
        logger.error('Store unavailable: %s', exc, exc_info=exc)
        return JsonResponse({'error': GENERIC_ERROR, **extra}, status=503)
    raise exc
