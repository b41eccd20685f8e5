import json
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from smtplib import SMTPException
from unittest.mock import MagicMock, patch

from django.contrib.auth.models import User
from django.core import mail
from django.test import SimpleTestCase, TestCase, Client

from catalog.services import ServiceCatalog
from core.exceptions import (
    BookingStateError, NotFoundError, PaymentProviderError, ValidationError,
)
from payments.models import TransactionRecord
from payments.providers import PaymentProvider, PaymentResult, PaymentSession, cancel_token
from payments.recorder import TransactionRecorder
from .models import Booking
from .orchestrator import BookingOrchestrator
from .validation import clean, normalize_phone, validate, validate_field

NOW = datetime(2026, 3, 1, 10, 0, tzinfo=dt_timezone.utc)

VALID_FORM = {
    'customer_name': 'Asha  Verma',
    'customer_email': 'asha@example.com',
    'customer_phone': '+91 98765 43210',
    'scheduled_date': '2026-03-10',
    'customer_address': '12 MG Road, Pune',
    'notes': 'Mornings preferred',
}


class FakeProvider(PaymentProvider):
    name = 'razorpay'

    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.sessions = []
        self.refunds = []

    def create_payment_session(self, amount, currency, customer_info, reference, metadata=None):
        if self.fail_with:
            raise PaymentProviderError(self.fail_with, gateway=self.name)
        self.sessions.append({'amount': amount, 'currency': currency, 'reference': reference})
        return PaymentSession(gateway=self.name, handle=f'order_{len(self.sessions)}',
                              client_options={'order_id': f'order_{len(self.sessions)}'})

    def refund(self, gateway_transaction_id, amount, currency):
        self.refunds.append((gateway_transaction_id, amount))
        return f'rfnd_{len(self.refunds)}'


def make_service(**overrides):
    data = {'kind': 'training', 'title': 'LMV Training (Basic)', 'base_price': 6000, 'gst': 18}
    data.update(overrides)
    return ServiceCatalog(clock=lambda: NOW).upsert_service(data)


def make_orchestrator(provider=None):
    return BookingOrchestrator(
        catalog=ServiceCatalog(clock=lambda: NOW),
        recorder=TransactionRecorder(),
        provider=provider or FakeProvider(),
        clock=lambda: NOW,
    )


class BookingFormValidationTest(SimpleTestCase):
    def test_empty_form_for_scheduled_service(self):
        errors = validate({}, is_scheduled_service=True)
        self.assertEqual(
            set(errors),
            {'customer_name', 'customer_email', 'customer_phone', 'scheduled_date'},
        )
        self.assertEqual(errors['customer_name'], 'Full name is required')
        self.assertEqual(errors['scheduled_date'], 'Please select a preferred date')

    def test_empty_form_for_online_service_skips_date(self):
        errors = validate({}, is_scheduled_service=False)
        self.assertEqual(set(errors), {'customer_name', 'customer_email', 'customer_phone'})

    def test_phone_formats_normalize_to_same_number(self):
        for phone in ('+919876543210', '919876543210', '9876543210', '98765 43210'):
            with self.subTest(phone=phone):
                self.assertIsNone(validate_field('customer_phone', phone))
                self.assertEqual(normalize_phone(phone), '9876543210')

    def test_invalid_phones(self):
        for phone in ('12345', '5876543210', '+1 202 555 0147', '98765432101'):
            with self.subTest(phone=phone):
                self.assertEqual(validate_field('customer_phone', phone), 'Please enter a valid Indian phone number')

    def test_name_rules(self):
        self.assertEqual(validate_field('customer_name', 'A'), 'Name must be at least 2 characters')
        self.assertEqual(validate_field('customer_name', 'A' * 51), 'Name must be less than 50 characters')
        self.assertEqual(validate_field('customer_name', 'R2D2'), 'Name can only contain letters and spaces')

    def test_email_rules(self):
        self.assertEqual(validate_field('customer_email', 'not-an-email'), 'Please enter a valid email address')
        self.assertEqual(
            validate_field('customer_email', 'a' * 95 + '@x.com'),
            'Email must be less than 100 characters',
        )

    def test_unparseable_date(self):
        self.assertEqual(
            validate_field('scheduled_date', '31/02/2026', is_scheduled_service=True),
            'Please select a valid date',
        )

    def test_optional_field_limits(self):
        self.assertEqual(validate_field('customer_address', 'x' * 201), 'Address must be less than 200 characters')
        self.assertEqual(validate_field('notes', 'x' * 501), 'Notes must be less than 500 characters')
        self.assertIsNone(validate_field('notes', ''))

    def test_unknown_field(self):
        with self.assertRaises(ValidationError):
            validate_field('favourite_colour', 'blue')

    def test_clean_normalizes(self):
        data = clean(VALID_FORM, is_scheduled_service=True)
        self.assertEqual(data.customer_name, 'Asha Verma')
        self.assertEqual(data.customer_phone, '9876543210')
        self.assertEqual(str(data.scheduled_date), '2026-03-10')

    def test_clean_drops_date_for_online_service(self):
        data = clean(VALID_FORM, is_scheduled_service=False)
        self.assertIsNone(data.scheduled_date)

    def test_clean_raises_with_every_error(self):
        with self.assertRaises(ValidationError) as ctx:
            clean({'customer_name': 'Asha Verma'}, is_scheduled_service=True)
        self.assertEqual(set(ctx.exception.errors), {'customer_email', 'customer_phone', 'scheduled_date'})


class CreateBookingTest(TestCase):
    def setUp(self):
        self.service_id = make_service()
        self.provider = FakeProvider()
        self.orchestrator = make_orchestrator(self.provider)

    def test_booking_is_priced_server_side(self):
        result = self.orchestrator.create_booking(VALID_FORM, self.service_id)

        booking = result.booking
        self.assertEqual((booking.status, booking.payment_status), ('pending', 'pending'))
        self.assertEqual(booking.amount_due, Decimal('7080.00'))
        self.assertEqual(booking.currency, 'INR')
        self.assertEqual(booking.customer_phone, '9876543210')
        self.assertEqual(booking.gateway_session_id, 'order_1')
        self.assertEqual(result.session.handle, 'order_1')
        self.assertEqual(self.provider.sessions[0]['amount'], Decimal('7080.00'))
        self.assertEqual(self.provider.sessions[0]['reference'], booking.pk)
        self.assertIsNone(booking.payment_details)

    def test_invalid_form_writes_nothing(self):
        with self.assertRaises(ValidationError):
            self.orchestrator.create_booking({}, self.service_id)
        self.assertEqual(Booking.objects.count(), 0)
        self.assertEqual(self.provider.sessions, [])

    def test_unknown_or_inactive_service(self):
        with self.assertRaises(NotFoundError):
            self.orchestrator.create_booking(VALID_FORM, 9999)

        ServiceCatalog().deactivate_service(self.service_id)
        with self.assertRaises(NotFoundError):
            self.orchestrator.create_booking(VALID_FORM, self.service_id)

    def test_free_service_is_not_booked(self):
        free_id = make_service(kind='online', title='License Download (Free)', base_price=0, gst=0)
        with self.assertRaises(ValidationError):
            self.orchestrator.create_booking(VALID_FORM, free_id)

    def test_provider_failure_leaves_failed_booking_and_ledger_entry(self):
        orchestrator = make_orchestrator(FakeProvider(fail_with='gateway timeout'))

        with self.assertRaises(PaymentProviderError) as ctx:
            orchestrator.create_booking(VALID_FORM, self.service_id)

        booking = Booking.objects.get()
        self.assertEqual(ctx.exception.booking_id, booking.pk)
        self.assertEqual((booking.status, booking.payment_status), ('pending', 'failed'))
        record = TransactionRecord.objects.get()
        self.assertEqual(record.status, 'failed')
        self.assertEqual(record.amount, Decimal('7080.00'))
        self.assertEqual(record.metadata['additional_info']['reason'], 'gateway timeout')

    def test_retry_after_failure_opens_new_session(self):
        failing = make_orchestrator(FakeProvider(fail_with='gateway timeout'))
        with self.assertRaises(PaymentProviderError):
            failing.create_booking(VALID_FORM, self.service_id)
        booking = Booking.objects.get()

        result = self.orchestrator.retry_payment(booking.pk)

        self.assertEqual(result.booking.payment_status, 'pending')
        self.assertEqual(result.booking.gateway_session_id, 'order_1')

    def test_retry_refused_once_paid(self):
        booking = self.orchestrator.create_booking(VALID_FORM, self.service_id).booking
        self.orchestrator.confirm_payment(booking.pk, 'pay_1', paid_amount=Decimal('7080.00'))

        with self.assertRaises(BookingStateError):
            self.orchestrator.retry_payment(booking.pk)


class ConfirmPaymentTest(TestCase):
    def setUp(self):
        self.service_id = make_service()
        self.provider = FakeProvider()
        self.orchestrator = make_orchestrator(self.provider)
        self.booking = self.orchestrator.create_booking(VALID_FORM, self.service_id).booking

    def test_confirming_twice_records_one_payment(self):
        first = self.orchestrator.confirm_payment(self.booking.pk, 'pay_1', paid_amount=Decimal('7080.00'),
                                                  payment_method='upi')
        second = self.orchestrator.confirm_payment(self.booking.pk, 'pay_1', paid_amount=Decimal('7080.00'),
                                                   payment_method='upi')

        self.assertEqual(TransactionRecord.objects.filter(status='success').count(), 1)
        for booking in (first, second, Booking.objects.get(pk=self.booking.pk)):
            self.assertEqual((booking.status, booking.payment_status), ('confirmed', 'paid'))
        self.assertEqual(len(mail.outbox), 1)

    def test_payment_details_set_when_paid(self):
        booking = self.orchestrator.confirm_payment(self.booking.pk, 'pay_1', payment_method='upi')

        details = booking.payment_details
        self.assertEqual(details['transaction_id'], 'pay_1')
        self.assertEqual(details['payment_method'], 'upi')
        self.assertEqual(details['paid_amount'], Decimal('7080.00'))
        self.assertEqual(details['gateway'], 'razorpay')
        self.assertIsNotNone(details['payment_date'])

    def assert_rejected_payment_recorded(self, reason):
        records = TransactionRecord.objects.filter(status='success', gateway_transaction_id='pay_2')
        self.assertEqual(records.count(), 1)
        record = records.get()
        self.assertTrue(record.is_rejected)
        self.assertEqual(record.metadata['additional_info']['reason'], reason)
        self.assertEqual(record.amount, Decimal('7080.00'))
        return record

    def test_inactive_service_fails_closed(self):
        ServiceCatalog().deactivate_service(self.service_id)

        with self.assertRaises(NotFoundError):
            self.orchestrator.confirm_payment(self.booking.pk, 'pay_2', paid_amount=Decimal('7080.00'))
        with self.assertRaises(BookingStateError):
            self.orchestrator.confirm_payment(self.booking.pk, 'pay_2', paid_amount=Decimal('7080.00'))

        booking = Booking.objects.get(pk=self.booking.pk)
        self.assertEqual((booking.status, booking.payment_status), ('pending', 'pending'))
        self.assert_rejected_payment_recorded(f'rejected: service {self.service_id} unavailable')

    def test_payment_for_cancelled_booking_stays_on_ledger(self):
        self.orchestrator.cancel_booking(self.booking.pk, reason='customer request')

        for _ in range(2):
            with self.assertRaises(BookingStateError):
                self.orchestrator.confirm_payment(self.booking.pk, 'pay_2')

        booking = Booking.objects.get(pk=self.booking.pk)
        self.assertEqual((booking.status, booking.payment_status), ('cancelled', 'pending'))
        self.assertIsNone(booking.payment_details)
        self.assert_rejected_payment_recorded('rejected: booking cancelled')

    def test_second_payment_for_paid_booking_stays_on_ledger(self):
        self.orchestrator.confirm_payment(self.booking.pk, 'pay_1')

        for _ in range(2):
            with self.assertRaises(BookingStateError):
                self.orchestrator.confirm_payment(self.booking.pk, 'pay_2')

        booking = Booking.objects.get(pk=self.booking.pk)
        self.assertEqual(booking.gateway_transaction_id, 'pay_1')
        self.assert_rejected_payment_recorded('rejected: booking already paid')
        self.assertEqual(TransactionRecord.objects.filter(status='success').count(), 2)
        self.assertEqual(len(mail.outbox), 1)

    def test_rejected_payment_is_never_used_to_confirm(self):
        ServiceCatalog().deactivate_service(self.service_id)
        with self.assertRaises(NotFoundError):
            self.orchestrator.confirm_payment(self.booking.pk, 'pay_2')
        ServiceCatalog(clock=lambda: NOW).upsert_service({'id': self.service_id, 'is_active': True})

        with self.assertRaises(BookingStateError):
            self.orchestrator.confirm_payment(self.booking.pk, 'pay_2')
        self.assertEqual(Booking.objects.get(pk=self.booking.pk).payment_status, 'pending')

    def test_unknown_booking(self):
        with self.assertRaises(NotFoundError):
            self.orchestrator.confirm_payment(9999, 'pay_1')

    def test_amount_mismatch_marks_failed(self):
        with self.assertRaises(PaymentProviderError):
            self.orchestrator.confirm_payment(self.booking.pk, 'pay_1', paid_amount='1.00')

        booking = Booking.objects.get(pk=self.booking.pk)
        self.assertEqual((booking.status, booking.payment_status), ('pending', 'failed'))
        self.assertFalse(TransactionRecord.objects.filter(status='success').exists())

    def test_interrupted_confirmation_is_completed(self):
        TransactionRecorder().record(TransactionRecord(
            booking=self.booking,
            service_id=self.service_id,
            service_type='training',
            amount=Decimal('7080.00'),
            status='success',
            payment_gateway='razorpay',
            gateway_transaction_id='pay_1',
        ))

        booking = self.orchestrator.confirm_payment(self.booking.pk, 'pay_1')

        self.assertEqual((booking.status, booking.payment_status), ('confirmed', 'paid'))
        self.assertEqual(TransactionRecord.objects.filter(status='success').count(), 1)

    def test_cancelled_booking_cannot_be_confirmed(self):
        self.orchestrator.cancel_booking(self.booking.pk, reason='customer request')

        with self.assertRaises(BookingStateError):
            self.orchestrator.confirm_payment(self.booking.pk, 'pay_1')

    def test_email_failure_does_not_undo_confirmation(self):
        with patch('bookings.notifications.send_mail', side_effect=SMTPException('relay down')):
            with self.assertLogs('bookings.notifications', level='ERROR'):
                booking = self.orchestrator.confirm_payment(self.booking.pk, 'pay_1')

        self.assertEqual(booking.payment_status, 'paid')

    def test_handle_result_dispatches_on_status(self):
        failed = self.orchestrator.handle_result(PaymentResult(
            gateway='razorpay', booking_id=str(self.booking.pk), status='failed',
            gateway_transaction_id='pay_0', reason='card declined',
        ))
        self.assertEqual(failed.payment_status, 'failed')

        paid = self.orchestrator.handle_result(PaymentResult(
            gateway='razorpay', booking_id=str(self.booking.pk), status='success',
            gateway_transaction_id='pay_1', paid_amount=Decimal('7080.00'), payment_method='card',
        ))
        self.assertEqual((paid.status, paid.payment_status), ('confirmed', 'paid'))

    def test_failure_after_payment_is_ignored(self):
        self.orchestrator.confirm_payment(self.booking.pk, 'pay_1')

        booking = self.orchestrator.fail_payment(self.booking.pk, 'pay_2', reason='late webhook')

        self.assertEqual(booking.payment_status, 'paid')
        self.assertFalse(TransactionRecord.objects.filter(status='failed').exists())

    def test_repeated_failure_is_recorded_once(self):
        self.orchestrator.fail_payment(self.booking.pk, 'pay_0', reason='card declined')
        self.orchestrator.fail_payment(self.booking.pk, 'pay_0', reason='card declined')

        self.assertEqual(TransactionRecord.objects.filter(status='failed').count(), 1)

    def test_failure_from_replaced_session_is_ignored(self):
        self.orchestrator.fail_payment(self.booking.pk, 'pay_0', reason='card declined', session_handle='order_1')
        self.orchestrator.retry_payment(self.booking.pk)

        booking = self.orchestrator.handle_result(PaymentResult(
            gateway='razorpay', booking_id=str(self.booking.pk), status='failed',
            gateway_transaction_id='order_1', session_handle='order_1', reason='Checkout session expired',
        ))

        self.assertEqual(booking.gateway_session_id, 'order_2')
        self.assertEqual((booking.status, booking.payment_status), ('pending', 'pending'))
        self.assertEqual(TransactionRecord.objects.filter(status='failed').count(), 1)

        booking = self.orchestrator.fail_payment(self.booking.pk, 'pay_3', reason='card declined',
                                                 session_handle='order_2')
        self.assertEqual(booking.payment_status, 'failed')


class CancelAndRefundTest(TestCase):
    def setUp(self):
        self.service_id = make_service()
        self.provider = FakeProvider()
        self.orchestrator = make_orchestrator(self.provider)
        booking = self.orchestrator.create_booking(VALID_FORM, self.service_id).booking
        self.booking = self.orchestrator.confirm_payment(booking.pk, 'pay_1', payment_method='upi')

    def test_cancel_appends_ledger_entry(self):
        booking = self.orchestrator.cancel_booking(self.booking.pk, reason='instructor unavailable')

        self.assertEqual(booking.status, 'cancelled')
        record = TransactionRecord.objects.get(status='cancelled')
        self.assertEqual(record.metadata['additional_info']['reason'], 'instructor unavailable')

        with self.assertRaises(BookingStateError):
            self.orchestrator.cancel_booking(self.booking.pk)

    def test_full_refund_clears_payment_details(self):
        booking = self.orchestrator.refund_booking(self.booking.pk, reason='duplicate booking')

        self.assertEqual((booking.status, booking.payment_status), ('refunded', 'refunded'))
        self.assertIsNone(booking.payment_details)
        self.assertEqual(self.provider.refunds, [('pay_1', Decimal('7080.00'))])
        refund = TransactionRecord.objects.get(transaction_type='refund')
        self.assertEqual(refund.gateway_transaction_id, 'rfnd_1')
        self.assertEqual(refund.metadata['additional_info']['payment_id'], 'pay_1')

    def test_partial_refunds_up_to_paid_amount(self):
        booking = self.orchestrator.refund_booking(self.booking.pk, amount='1000.00')
        self.assertEqual(booking.payment_status, 'paid')
        self.assertEqual(TransactionRecord.objects.filter(transaction_type='partial_refund').count(), 1)

        with self.assertRaises(ValidationError):
            self.orchestrator.refund_booking(self.booking.pk, amount='6080.01')

        booking = self.orchestrator.refund_booking(self.booking.pk, amount='6080.00')
        self.assertEqual((booking.status, booking.payment_status), ('refunded', 'refunded'))

    def test_unpaid_booking_cannot_be_refunded(self):
        other = self.orchestrator.create_booking(VALID_FORM, self.service_id).booking
        with self.assertRaises(BookingStateError):
            self.orchestrator.refund_booking(other.pk)

    def test_cancelled_paid_booking_can_still_be_refunded(self):
        self.orchestrator.cancel_booking(self.booking.pk)
        booking = self.orchestrator.refund_booking(self.booking.pk)
        self.assertEqual(booking.status, 'refunded')


class BookingApiTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.service_id = ServiceCatalog().upsert_service(
            {'kind': 'training', 'title': 'LMV Training (Basic)', 'base_price': 6000, 'gst': 18})

    def post(self, url, payload):
        return self.client.post(url, data=json.dumps(payload), content_type='application/json')

    def razorpay_order(self, status_code=200, body=None):
        response = MagicMock(status_code=status_code)
        response.json.return_value = body or {'id': 'order_test123'}
        return response

    @patch('payments.providers.requests.request')
    def test_create_booking_returns_modal_options(self, mock_request):
        mock_request.return_value = self.razorpay_order()

        response = self.post('/api/bookings/', {'service_id': self.service_id, **VALID_FORM})

        self.assertEqual(response.status_code, 201)
        data = response.json()
        self.assertEqual(data['status'], 'pending')
        self.assertEqual(data['amount'], '7080.00')
        self.assertEqual(data['session_id'], 'order_test123')
        self.assertEqual(data['client_options']['amount'], 708000)
        self.assertEqual(data['client_options']['prefill']['contact'], '9876543210')
        self.assertEqual(mock_request.call_args.kwargs['json']['amount'], 708000)

    def test_client_supplied_amount_is_ignored(self):
        with patch('payments.providers.requests.request', return_value=self.razorpay_order()):
            response = self.post('/api/bookings/', {'service_id': self.service_id, 'amount': 1, **VALID_FORM})
        self.assertEqual(response.json()['amount'], '7080.00')

    def test_validation_errors(self):
        response = self.post('/api/bookings/', {'service_id': self.service_id})
        self.assertEqual(response.status_code, 400)
        self.assertIn('customer_phone', response.json()['errors'])

    def test_unknown_service(self):
        response = self.post('/api/bookings/', {'service_id': 9999, **VALID_FORM})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'This service is currently unavailable')

    def test_invalid_json(self):
        response = self.client.post('/api/bookings/', data='not json', content_type='application/json')
        self.assertEqual(response.status_code, 400)

    @patch('payments.providers.requests.request')
    def test_gateway_error_is_not_leaked(self, mock_request):
        mock_request.return_value = self.razorpay_order(
            status_code=500, body={'error': {'description': 'internal stack trace'}})

        with self.assertLogs('core.http', level='ERROR'):
            response = self.post('/api/bookings/', {'service_id': self.service_id, **VALID_FORM})

        self.assertEqual(response.status_code, 502)
        data = response.json()
        self.assertEqual(data['error'], 'Something went wrong. Please try again.')
        self.assertEqual(data['booking_id'], Booking.objects.get().pk)

    def test_validate_field(self):
        response = self.post('/api/bookings/validate-field/', {'field': 'customer_phone', 'value': '12345'})
        self.assertEqual(response.json(), {
            'field': 'customer_phone', 'valid': False, 'error': 'Please enter a valid Indian phone number',
        })

        response = self.post('/api/bookings/validate-field/', {
            'field': 'scheduled_date', 'value': '', 'service_id': self.service_id,
        })
        self.assertEqual(response.json()['error'], 'Please select a preferred date')

    def test_get_booking_not_found(self):
        response = self.client.get('/api/bookings/9999/')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'Booking not found')

    @patch('payments.providers.requests.request')
    def test_cancel_requires_staff(self, mock_request):
        mock_request.return_value = self.razorpay_order()
        booking_id = self.post('/api/bookings/', {'service_id': self.service_id, **VALID_FORM}).json()['booking_id']

        response = self.post(f'/api/bookings/{booking_id}/cancel/', {'reason': 'test'})
        self.assertEqual(response.status_code, 403)

        staff = User.objects.create_user('staff', 'staff@example.com', 'pw', is_staff=True)
        self.client.force_login(staff)
        response = self.post(f'/api/bookings/{booking_id}/cancel/', {'reason': 'test'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'cancelled')

        response = self.post(f'/api/bookings/{booking_id}/cancel/', {'reason': 'test'})
        self.assertEqual(response.status_code, 409)

    def test_payment_cancel_requires_signed_token(self):
        booking = make_orchestrator().create_booking(VALID_FORM, self.service_id).booking
        url = f'/api/bookings/{booking.pk}/payment-cancel/'

        for query in ('', '?token=forged', f'?token={cancel_token(booking.pk + 1)}'):
            response = self.client.get(url + query)
            self.assertEqual(response.status_code, 400)
        self.assertEqual(Booking.objects.get(pk=booking.pk).payment_status, 'pending')
        self.assertFalse(TransactionRecord.objects.filter(status='failed').exists())

        response = self.client.get(url, {'token': cancel_token(booking.pk)})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['message'], 'Payment cancelled')
        self.assertEqual(Booking.objects.get(pk=booking.pk).payment_status, 'failed')
