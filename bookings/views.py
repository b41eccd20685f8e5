from django.conf import settings
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from catalog.services import ServiceCatalog
from core.exceptions import (
    BookingError, NotFoundError, PaymentProviderError, StoreUnavailableError, ValidationError,
)
from core.http import InvalidJSON, error_response, parse_json, request_metadata
from core.store import DocumentStore
from payments.providers import check_cancel_token
from .models import Booking
from .orchestrator import BookingOrchestrator
from .validation import FIELDS, validate_field

SERVICE_UNAVAILABLE = 'This service is currently unavailable'


def booking_payload(booking, session=None):
    payload = {
        'booking_id': booking.id,
        'service_id': booking.service_id,
        'service_type': booking.service_type,
        'customer_name': booking.customer_name,
        'customer_email': booking.customer_email,
        'scheduled_date': booking.scheduled_date.isoformat() if booking.scheduled_date else None,
        'amount': str(booking.amount_due),
        'currency': booking.currency,
        'status': booking.status,
        'payment_status': booking.payment_status,
        'gateway': booking.payment_gateway,
    }
    details = booking.payment_details
    if details:
        payload['payment_details'] = {
            **details,
            'paid_amount': str(details['paid_amount']),
            'payment_date': details['payment_date'].isoformat() if details['payment_date'] else None,
        }
    if session is not None:
        payload.update({
            'session_id': session.handle,
            'checkout_url': session.redirect_url,
            'client_options': session.client_options,
        })
    return payload


def _staff_only(request):
    if not (request.user.is_authenticated and request.user.is_staff):
        return JsonResponse({'error': 'Staff access required'}, status=403)
    return None


def _load_booking(booking_id):
    booking = DocumentStore().get(Booking, booking_id)
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found")
    return booking


def _orchestrator_for(booking_id):
    booking = _load_booking(booking_id)
    return BookingOrchestrator.for_gateway(booking.payment_gateway or None)


@csrf_exempt
@require_http_methods(["POST"])
def create_booking(request):
    if not settings.PAYMENTS_ENABLED:
        return JsonResponse({
            'error': 'Payments are not enabled for this instance'
        }, status=400)

    try:
        data = parse_json(request)
    except InvalidJSON:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    service_id = data.get('service_id')
    if service_id is None:
        return JsonResponse({'errors': {'service_id': 'Please choose a service'}}, status=400)

    form = {field: data.get(field) for field in FIELDS}
    metadata = request_metadata(request, data.get('metadata'))

    try:
        orchestrator = BookingOrchestrator.for_gateway(data.get('gateway'))
        result = orchestrator.create_booking(form, service_id, metadata=metadata)
    except PaymentProviderError as e:
        return error_response(e, booking_id=e.booking_id)
    except BookingError as e:
        return error_response(e, not_found=SERVICE_UNAVAILABLE)

    return JsonResponse(booking_payload(result.booking, result.session), status=201)


@require_http_methods(["GET"])
def get_booking(request, booking_id):
    try:
        booking = _load_booking(booking_id)
    except BookingError as e:
        return error_response(e)
    return JsonResponse(booking_payload(booking))


@csrf_exempt
@require_http_methods(["POST"])
def retry_payment(request, booking_id):
    try:
        result = _orchestrator_for(booking_id).retry_payment(booking_id, metadata=request_metadata(request))
    except BookingError as e:
        return error_response(e, booking_id=booking_id)
    return JsonResponse(booking_payload(result.booking, result.session))


@csrf_exempt
@require_http_methods(["POST"])
def cancel_booking(request, booking_id):
    denied = _staff_only(request)
    if denied:
        return denied
    try:
        data = parse_json(request)
    except InvalidJSON:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    try:
        booking = _orchestrator_for(booking_id).cancel_booking(
            booking_id, reason=data.get('reason', ''), metadata=request_metadata(request))
    except BookingError as e:
        return error_response(e)
    return JsonResponse(booking_payload(booking))


@csrf_exempt
@require_http_methods(["POST"])
def refund_booking(request, booking_id):
    denied = _staff_only(request)
    if denied:
        return denied
    try:
        data = parse_json(request)
    except InvalidJSON:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    try:
        booking = _orchestrator_for(booking_id).refund_booking(
            booking_id,
            amount=data.get('amount'),
            reason=data.get('reason', ''),
            metadata=request_metadata(request),
        )
    except BookingError as e:
        return error_response(e)
    return JsonResponse(booking_payload(booking))


@csrf_exempt
@require_http_methods(["POST"])
def validate_booking_field(request):
    try:
        data = parse_json(request)
    except InvalidJSON:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    field = data.get('field')
    is_scheduled = bool(data.get('is_scheduled_service'))
    service_id = data.get('service_id')
    if service_id is not None:
        try:
            is_scheduled = ServiceCatalog.from_settings().get_bookable_service(service_id).is_scheduled
        except NotFoundError:
            return JsonResponse({'error': SERVICE_UNAVAILABLE}, status=404)
        except StoreUnavailableError as e:
            return error_response(e)

    try:
        message = validate_field(field, data.get('value'), is_scheduled)
    except ValidationError as e:
        return JsonResponse({'errors': e.errors}, status=400)
    return JsonResponse({'field': field, 'valid': message is None, 'error': message})


@require_http_methods(["GET"])
def payment_success(request, booking_id):
    try:
        booking = _load_booking(booking_id)
    except BookingError as e:
        return error_response(e)

    payload = booking_payload(booking)
    payload['session_id'] = request.GET.get('session_id')
    payload['message'] = (
        'Payment successful' if booking.payment_status == 'paid'
        else 'Payment received, waiting for confirmation from the payment provider'
    )
    return JsonResponse(payload)


@require_http_methods(["GET"])
def payment_cancel(request, booking_id):
    if not check_cancel_token(booking_id, request.GET.get('token')):
        return JsonResponse({'error': 'Invalid or missing cancel token'}, status=400)

    try:
        booking = _orchestrator_for(booking_id).fail_payment(
            booking_id, reason='Payment cancelled by user', metadata=request_metadata(request))
    except BookingError as e:
        return error_response(e)

    payload = booking_payload(booking)
    payload['message'] = 'Payment cancelled'
    return JsonResponse(payload)
