import logging

from django.http import HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from bookings.models import Booking
from bookings.orchestrator import BookingOrchestrator
from bookings.views import booking_payload
from core.exceptions import (
    BookingError, BookingStateError, NotFoundError, PaymentProviderError, StoreUnavailableError, ValidationError,
)
from core.http import GENERIC_ERROR, InvalidJSON, error_response, parse_json, request_metadata
from core.store import DocumentStore
from .providers import InvalidWebhookError, get_provider

logger = logging.getLogger(__name__)


def _handle_webhook(request, gateway, signature):
    provider = get_provider(gateway)
    try:
        result = provider.parse_webhook(request.body, signature)
    except InvalidWebhookError as e:
        return JsonResponse({'error': str(e)}, status=400)
    except PaymentProviderError:
        logger.exception('%s webhook could not be processed', gateway)
        return JsonResponse({'error': GENERIC_ERROR}, status=500)

    if result is None:
        return HttpResponse(status=200)

    orchestrator = BookingOrchestrator.for_provider(provider)
    try:
        orchestrator.handle_result(result, metadata=request_metadata(request, {'source': f'{gateway}_webhook'}))
    except StoreUnavailableError:
        # Non-2xx so the gateway redelivers.
        logger.exception('Store unavailable while handling %s webhook for booking %s', gateway, result.booking_id)
        return JsonResponse({'error': GENERIC_ERROR}, status=503)
    except (NotFoundError, BookingStateError, PaymentProviderError, ValidationError) as e:
        logger.warning('%s webhook for booking %s not applied: %s', gateway, result.booking_id, e)

    return HttpResponse(status=200)


@csrf_exempt
@require_http_methods(["POST"])
def stripe_webhook(request):
    return _handle_webhook(request, 'stripe', request.META.get('HTTP_STRIPE_SIGNATURE'))


@csrf_exempt
@require_http_methods(["POST"])
def razorpay_webhook(request):
    return _handle_webhook(request, 'razorpay', request.META.get('HTTP_X_RAZORPAY_SIGNATURE'))


@csrf_exempt
@require_http_methods(["POST"])
def razorpay_verify(request):
    """Called by the checkout modal's success handler."""
    try:
        data = parse_json(request)
    except InvalidJSON:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    booking_id = data.get('booking_id')
    order_id = data.get('razorpay_order_id')
    payment_id = data.get('razorpay_payment_id')
    signature = data.get('razorpay_signature')

    if not all([booking_id, order_id, payment_id, signature]):
        return JsonResponse({
            'error': 'Missing required fields: booking_id, razorpay_order_id, razorpay_payment_id, razorpay_signature'
        }, status=400)

    booking = DocumentStore().get(Booking, booking_id)
    if booking is None:
        return JsonResponse({'error': 'Booking not found'}, status=404)
    if booking.payment_gateway != 'razorpay' or order_id != booking.gateway_session_id:
        logger.warning('Rejected Razorpay order %s for booking %s: not the booking\'s order', order_id, booking_id)
        return JsonResponse({'error': 'Payment verification failed'}, status=400)

    provider = get_provider('razorpay')
    try:
        result = provider.verify_checkout(booking_id, order_id, payment_id, signature)
    except InvalidWebhookError as e:
        logger.warning('Rejected Razorpay payment %s for booking %s: %s', payment_id, booking_id, e)
        return JsonResponse({'error': 'Payment verification failed'}, status=400)
    except PaymentProviderError as e:
        return error_response(e, booking_id=booking_id)

    if result is None:
        payload = booking_payload(booking)
        payload['message'] = 'Payment authorised, waiting for capture'
        return JsonResponse(payload, status=202)

    orchestrator = BookingOrchestrator.for_provider(provider)
    try:
        booking = orchestrator.handle_result(result, metadata=request_metadata(request, {'source': 'razorpay_modal'}))
    except BookingError as e:
        return error_response(e, booking_id=booking_id)

    return JsonResponse(booking_payload(booking), status=200 if booking.payment_status == 'paid' else 402)
