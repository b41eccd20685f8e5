import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import requests
import stripe
from django.test import SimpleTestCase, TestCase, Client

from bookings.models import Booking
from catalog.services import ServiceCatalog
from core.exceptions import (
    DuplicateConfirmationError, DuplicateKeyError, ImmutableRecordError, PaymentProviderError, ValidationError,
)
from core.store import DocumentStore
from .models import TransactionRecord
from .providers import RazorpayProvider, StripeCheckoutProvider, check_cancel_token, get_provider
from .recorder import TransactionRecorder, normalize_metadata

RAZORPAY_WEBHOOK_SECRET = b'rzp_fake_webhook_secret'
RAZORPAY_KEY_SECRET = b'rzp_fake_secret_for_testing'


def make_booking(gateway='stripe', **overrides):
    service_id = ServiceCatalog().upsert_service(
        {'kind': 'training', 'title': 'LMV Training (Basic)', 'base_price': 6000, 'gst': 18})
    fields = {
        'service_id': service_id,
        'service_type': 'training',
        'customer_name': 'Asha Verma',
        'customer_email': 'asha@example.com',
        'customer_phone': '9876543210',
        'amount_due': Decimal('7080.00'),
        'payment_gateway': gateway,
        'gateway_session_id': 'cs_test123' if gateway == 'stripe' else 'order_test123',
    }
    fields.update(overrides)
    return Booking.objects.create(**fields)


def make_record(booking, **overrides):
    fields = {
        'booking': booking,
        'service_id': booking.service_id,
        'service_type': booking.service_type,
        'amount': booking.amount_due,
        'status': 'success',
        'payment_gateway': booking.payment_gateway,
        'gateway_transaction_id': 'pi_test123',
    }
    fields.update(overrides)
    return TransactionRecord(**fields)


class MetadataTest(SimpleTestCase):
    def test_missing_client_details_become_unknown(self):
        self.assertEqual(normalize_metadata(None), {
            'client_ip': 'unknown',
            'user_agent': 'unknown',
            'additional_info': {},
        })

    def test_extra_keys_move_to_additional_info(self):
        metadata = normalize_metadata({
            'client_ip': '203.0.113.9',
            'user_agent': '',
            'additional_info': {'source': 'web'},
            'reason': 'card declined',
        })
        self.assertEqual(metadata['client_ip'], '203.0.113.9')
        self.assertEqual(metadata['user_agent'], 'unknown')
        self.assertEqual(metadata['additional_info'], {'source': 'web', 'reason': 'card declined'})


class TransactionRecorderTest(TestCase):
    def setUp(self):
        self.booking = make_booking()
        self.recorder = TransactionRecorder()

    def test_records_are_append_only(self):
        self.recorder.record(make_record(self.booking))
        record = TransactionRecord.objects.get()

        record.status = 'failed'
        with self.assertRaises(ImmutableRecordError):
            record.save()
        with self.assertRaises(ImmutableRecordError):
            record.delete()
        self.assertEqual(TransactionRecord.objects.get().status, 'success')

    def test_metadata_is_normalized_on_write(self):
        self.recorder.record(make_record(self.booking, metadata={'client_ip': '203.0.113.9'}))
        metadata = TransactionRecord.objects.get().metadata
        self.assertEqual(metadata['client_ip'], '203.0.113.9')
        self.assertEqual(metadata['user_agent'], 'unknown')

    def test_record_payment_once(self):
        self.recorder.record_payment_once(make_record(self.booking))

        with self.assertRaises(DuplicateConfirmationError):
            self.recorder.record_payment_once(make_record(self.booking))
        self.assertEqual(TransactionRecord.objects.count(), 1)
        self.assertTrue(self.recorder.has_successful_payment('stripe', 'pi_test123'))
        self.assertFalse(self.recorder.has_successful_payment('razorpay', 'pi_test123'))

    def test_database_rejects_second_successful_payment(self):
        DocumentStore().add(make_record(self.booking))
        with self.assertRaises(DuplicateKeyError):
            DocumentStore().add(make_record(self.booking))

    def test_failed_attempts_may_share_gateway_id(self):
        self.recorder.record(make_record(self.booking, status='failed'))
        self.recorder.record(make_record(self.booking, status='failed'))
        self.assertEqual(TransactionRecord.objects.count(), 2)

    def test_refunded_total(self):
        self.recorder.record(make_record(self.booking))
        self.recorder.record(make_record(
            self.booking, transaction_type='partial_refund', amount=Decimal('1000.00'),
            gateway_transaction_id='re_1'))
        self.recorder.record(make_record(
            self.booking, transaction_type='partial_refund', amount=Decimal('500.00'),
            gateway_transaction_id='re_2', status='failed'))

        self.assertEqual(self.recorder.refunded_total(self.booking), Decimal('1000.00'))
        self.assertEqual(len(self.recorder.history(self.booking)), 3)


class StripeCheckoutProviderTest(SimpleTestCase):
    @patch('payments.providers.stripe.checkout.Session.create')
    def test_creates_checkout_session_in_minor_units(self, mock_create):
        mock_create.return_value = MagicMock(id='cs_test123', url='https://checkout.stripe.com/test')

        session = StripeCheckoutProvider().create_payment_session(
            Decimal('7080.00'), 'INR', {'email': 'asha@example.com'}, 42, {'service_title': 'LMV Training'})

        self.assertEqual(session.handle, 'cs_test123')
        self.assertEqual(session.redirect_url, 'https://checkout.stripe.com/test')
        kwargs = mock_create.call_args.kwargs
        price_data = kwargs['line_items'][0]['price_data']
        self.assertEqual(price_data['unit_amount'], 708000)
        self.assertEqual(price_data['currency'], 'inr')
        self.assertEqual(kwargs['metadata']['booking_id'], '42')
        self.assertIn('/api/bookings/42/payment-success/', kwargs['success_url'])
        cancel_url, token = kwargs['cancel_url'].split('?token=')
        self.assertTrue(cancel_url.endswith('/api/bookings/42/payment-cancel/'))
        self.assertTrue(check_cancel_token(42, token))
        self.assertFalse(check_cancel_token(43, token))

    @patch('payments.providers.stripe.checkout.Session.create')
    def test_stripe_errors_become_provider_errors(self, mock_create):
        mock_create.side_effect = stripe.StripeError('Your card was declined')

        with self.assertRaises(PaymentProviderError) as ctx:
            StripeCheckoutProvider().create_payment_session(Decimal('10.00'), 'INR', {}, 1)
        self.assertEqual(ctx.exception.gateway, 'stripe')


class RazorpayProviderTest(SimpleTestCase):
    @patch('payments.providers.requests.request')
    def test_http_errors_become_provider_errors(self, mock_request):
        mock_request.side_effect = requests.ConnectionError('connection refused')

        with self.assertRaises(PaymentProviderError):
            RazorpayProvider().create_payment_session(Decimal('450.00'), 'INR', {}, 1)

    @patch('payments.providers.requests.request')
    def test_verify_checkout_rejects_bad_signature_without_calling_api(self, mock_request):
        with self.assertRaises(PaymentProviderError):
            RazorpayProvider().verify_checkout('1', 'order_1', 'pay_1', 'forged')
        mock_request.assert_not_called()

    @patch('payments.providers.requests.request')
    def test_orders_are_created_with_automatic_capture(self, mock_request):
        mock_request.return_value = MagicMock(status_code=200)
        mock_request.return_value.json.return_value = {'id': 'order_1'}

        session = RazorpayProvider().create_payment_session(Decimal('450.00'), 'INR', {}, 7)

        self.assertEqual(session.handle, 'order_1')
        order = mock_request.call_args.kwargs['json']
        self.assertEqual(order['payment_capture'], 1)
        self.assertEqual(order['amount'], 45000)
        self.assertEqual(order['notes'], {'booking_id': '7'})

    def test_only_captured_or_failed_payments_settle(self):
        provider = RazorpayProvider()
        payment = {'id': 'pay_1', 'order_id': 'order_1', 'amount': 45000, 'method': 'upi'}

        for status in ('created', 'authorized'):
            self.assertIsNone(provider._result('7', {**payment, 'status': status}))

        failed = provider._result('7', {**payment, 'status': 'failed', 'error_description': 'Bank declined'})
        self.assertEqual((failed.status, failed.reason, failed.session_handle), ('failed', 'Bank declined', 'order_1'))
        captured = provider._result('7', {**payment, 'status': 'captured'})
        self.assertTrue(captured.succeeded)
        self.assertEqual(captured.paid_amount, Decimal('450.00'))

    def test_unsupported_gateway(self):
        with self.assertRaises(ValidationError):
            get_provider('paypal')


class StripeWebhookTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.booking = make_booking()

    def completed_event(self):
        return {
            'id': 'evt_test123',
            'type': 'checkout.session.completed',
            'data': {'object': {
                'id': 'cs_test123',
                'client_reference_id': str(self.booking.pk),
                'metadata': {'booking_id': str(self.booking.pk)},
                'payment_status': 'paid',
                'payment_intent': 'pi_test123',
                'amount_total': 708000,
            }},
        }

    def post(self):
        return self.client.post(
            '/api/payments/webhook/stripe/',
            data=b'{}',
            content_type='application/json',
            HTTP_STRIPE_SIGNATURE='t=1,v1=test',
        )

    @patch('payments.providers.stripe.Webhook.construct_event')
    def test_invalid_signature_rejected(self, mock_construct):
        mock_construct.side_effect = stripe.SignatureVerificationError('Invalid signature', 't=1,v1=test')

        response = self.post()

        self.assertEqual(response.status_code, 400)
        self.assertEqual(Booking.objects.get().payment_status, 'pending')

    @patch('payments.providers.stripe.Webhook.construct_event')
    def test_redelivered_event_confirms_once(self, mock_construct):
        mock_construct.return_value = self.completed_event()

        self.assertEqual(self.post().status_code, 200)
        self.assertEqual(self.post().status_code, 200)

        booking = Booking.objects.get()
        self.assertEqual((booking.status, booking.payment_status), ('confirmed', 'paid'))
        self.assertEqual(booking.gateway_transaction_id, 'pi_test123')
        record = TransactionRecord.objects.get()
        self.assertEqual(record.gateway_order_id, 'cs_test123')
        self.assertEqual(record.metadata['additional_info']['source'], 'stripe_webhook')

    @patch('payments.providers.stripe.Webhook.construct_event')
    def test_expired_session_marks_payment_failed(self, mock_construct):
        event = self.completed_event()
        event['type'] = 'checkout.session.expired'
        event['data']['object']['payment_status'] = 'unpaid'
        mock_construct.return_value = event

        self.assertEqual(self.post().status_code, 200)

        booking = Booking.objects.get()
        self.assertEqual((booking.status, booking.payment_status), ('pending', 'failed'))
        self.assertEqual(TransactionRecord.objects.get().status, 'failed')

    @patch('payments.providers.stripe.Webhook.construct_event')
    def test_expiry_of_replaced_session_is_ignored(self, mock_construct):
        event = self.completed_event()
        event['type'] = 'checkout.session.expired'
        event['data']['object']['payment_status'] = 'unpaid'
        mock_construct.return_value = event
        Booking.objects.filter(pk=self.booking.pk).update(gateway_session_id='cs_retry456')

        self.assertEqual(self.post().status_code, 200)

        self.assertEqual(Booking.objects.get().payment_status, 'pending')
        self.assertFalse(TransactionRecord.objects.exists())

    @patch('payments.providers.stripe.Webhook.construct_event')
    def test_unrelated_events_acknowledged(self, mock_construct):
        mock_construct.return_value = {'id': 'evt_1', 'type': 'customer.created', 'data': {'object': {}}}
        self.assertEqual(self.post().status_code, 200)
        self.assertFalse(TransactionRecord.objects.exists())

    @patch('payments.providers.stripe.Webhook.construct_event')
    def test_inactive_service_leaves_booking_unconfirmed(self, mock_construct):
        mock_construct.return_value = self.completed_event()
        ServiceCatalog().deactivate_service(self.booking.service_id)

        with self.assertLogs('payments.views', level='WARNING'):
            response = self.post()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(Booking.objects.get().status, 'pending')
        record = TransactionRecord.objects.get()
        self.assertTrue(record.is_rejected)
        self.assertEqual(record.gateway_transaction_id, 'pi_test123')


class RazorpayWebhookTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.booking = make_booking(gateway='razorpay')

    def payload(self, event='payment.captured', status='captured'):
        return json.dumps({
            'event': event,
            'payload': {'payment': {'entity': {
                'id': 'pay_test123',
                'order_id': 'order_test123',
                'amount': 708000,
                'currency': 'INR',
                'status': status,
                'method': 'upi',
                'notes': {'booking_id': str(self.booking.pk)},
            }}},
        }).encode()

    def post(self, payload, signature):
        return self.client.post(
            '/api/payments/webhook/razorpay/',
            data=payload,
            content_type='application/json',
            HTTP_X_RAZORPAY_SIGNATURE=signature,
        )

    def test_bad_signature_rejected(self):
        response = self.post(self.payload(), 'forged')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(Booking.objects.get().payment_status, 'pending')

    def test_captured_payment_confirms_booking(self):
        payload = self.payload()
        signature = hmac.new(RAZORPAY_WEBHOOK_SECRET, payload, hashlib.sha256).hexdigest()

        response = self.post(payload, signature)

        self.assertEqual(response.status_code, 200)
        booking = Booking.objects.get()
        self.assertEqual((booking.status, booking.payment_status), ('confirmed', 'paid'))
        self.assertEqual(booking.payment_method, 'upi')

    def test_failed_payment(self):
        payload = self.payload(event='payment.failed', status='failed')
        signature = hmac.new(RAZORPAY_WEBHOOK_SECRET, payload, hashlib.sha256).hexdigest()

        self.assertEqual(self.post(payload, signature).status_code, 200)
        self.assertEqual(Booking.objects.get().payment_status, 'failed')


class RazorpayVerifyTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.booking = make_booking(gateway='razorpay')

    def post(self, signature, order_id='order_test123', payment_id='pay_test123', booking_id=None):
        return self.client.post('/api/payments/razorpay/verify/', data=json.dumps({
            'booking_id': booking_id or self.booking.pk,
            'razorpay_order_id': order_id,
            'razorpay_payment_id': payment_id,
            'razorpay_signature': signature,
        }), content_type='application/json')

    @staticmethod
    def sign(order_id, payment_id):
        return hmac.new(RAZORPAY_KEY_SECRET, f'{order_id}|{payment_id}'.encode(), hashlib.sha256).hexdigest()

    @staticmethod
    def payment_response(**overrides):
        payment = {
            'id': 'pay_test123', 'order_id': 'order_test123', 'amount': 708000,
            'status': 'captured', 'method': 'card', 'notes': {},
        }
        payment.update(overrides)
        response = MagicMock(status_code=200)
        response.json.return_value = payment
        return response

    def test_forged_signature_rejected(self):
        response = self.post('forged')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(Booking.objects.get().payment_status, 'pending')

    @patch('payments.providers.requests.request')
    def test_verified_payment_confirms_booking(self, mock_request):
        mock_request.return_value = self.payment_response(notes={'booking_id': str(self.booking.pk)})

        response = self.post(self.sign('order_test123', 'pay_test123'))

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['payment_status'], 'paid')
        self.assertEqual(data['payment_details']['transaction_id'], 'pay_test123')
        self.assertEqual(data['payment_details']['paid_amount'], '7080.00')

    @patch('payments.providers.requests.request')
    def test_payment_for_another_booking_rejected(self, mock_request):
        other = make_booking(gateway='razorpay', gateway_session_id='order_other')
        mock_request.return_value = self.payment_response(
            id='pay_other', order_id='order_other', notes={'booking_id': str(other.pk)})

        with self.assertLogs('payments.views', level='WARNING'):
            response = self.post(self.sign('order_other', 'pay_other'), order_id='order_other', payment_id='pay_other')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Payment verification failed')
        mock_request.assert_not_called()
        booking = Booking.objects.get(pk=self.booking.pk)
        self.assertEqual((booking.status, booking.payment_status), ('pending', 'pending'))
        self.assertFalse(TransactionRecord.objects.exists())

    @patch('payments.providers.requests.request')
    def test_payment_on_a_different_order_rejected(self, mock_request):
        mock_request.return_value = self.payment_response(order_id='order_other')

        response = self.post(self.sign('order_test123', 'pay_test123'))

        self.assertEqual(response.status_code, 400)
        self.assertEqual(Booking.objects.get().payment_status, 'pending')
        self.assertFalse(TransactionRecord.objects.exists())

    @patch('payments.providers.requests.request')
    def test_authorized_payment_waits_for_capture(self, mock_request):
        mock_request.return_value = self.payment_response(status='authorized')

        response = self.post(self.sign('order_test123', 'pay_test123'))

        self.assertEqual(response.status_code, 202)
        self.assertEqual(response.json()['payment_status'], 'pending')
        booking = Booking.objects.get()
        self.assertEqual((booking.status, booking.payment_status), ('pending', 'pending'))
        self.assertFalse(TransactionRecord.objects.exists())

    def test_unknown_booking(self):
        response = self.post(self.sign('order_test123', 'pay_test123'), booking_id=9999)
        self.assertEqual(response.status_code, 404)

    def test_missing_fields(self):
        response = self.client.post('/api/payments/razorpay/verify/', data=json.dumps({}),
                                    content_type='application/json')
        self.assertEqual(response.status_code, 400)
