"""
Payment gateways.

Stripe Checkout redirects the customer to a hosted page; Razorpay opens a
modal in the browser from ``client_options``. Both report back through
``PaymentResult`` so the booking flow never branches on the gateway.
"""
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

import requests
import stripe
from django.conf import settings
from django.core import signing

from core.exceptions import PaymentProviderError, ValidationError
from core.money import from_minor_units, to_minor_units

logger = logging.getLogger(__name__)


class InvalidWebhookError(PaymentProviderError):
    """Payload or signature could not be verified."""


@dataclass
class PaymentSession:
    gateway: str
    handle: str
    redirect_url: Optional[str] = None
    client_options: dict = field(default_factory=dict)


@dataclass
class PaymentResult:
    gateway: str
    booking_id: str
    status: str
    gateway_transaction_id: str = ''
    paid_amount: Optional[Decimal] = None
    payment_method: str = ''
    reason: str = ''
    session_handle: str = ''

    @property
    def succeeded(self):
        return self.status == 'success'


class PaymentProvider:
    name = None

    def create_payment_session(self, amount, currency, customer_info, reference, metadata=None):
        raise NotImplementedError

    def parse_webhook(self, payload, signature):
        """Return a ``PaymentResult``, or None for events that do not settle a payment."""
        raise NotImplementedError

    def refund(self, gateway_transaction_id, amount, currency):
        """Refund ``amount`` and return the gateway's refund id."""
        raise NotImplementedError


CANCEL_TOKEN_SALT = 'bookings.payment-cancel'


def cancel_token(reference):
    """Signed token the hosted checkout carries back on its cancel link."""
    return signing.dumps(str(reference), salt=CANCEL_TOKEN_SALT)


def check_cancel_token(reference, token):
    try:
        return signing.loads(token or '', salt=CANCEL_TOKEN_SALT) == str(reference)
    except signing.BadSignature:
        return False


def _field(obj, key, default=None):
    try:
        value = obj[key]
    except (KeyError, TypeError):
        return default
    return default if value is None else value


class StripeCheckoutProvider(PaymentProvider):
    name = 'stripe'

    def __init__(self, secret_key=None, webhook_secret=None, success_url=None, cancel_url=None):
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        self.success_url = success_url or f"{settings.SITE_URL}/api/bookings/{{booking_id}}/payment-success/"
        self.cancel_url = cancel_url or f"{settings.SITE_URL}/api/bookings/{{booking_id}}/payment-cancel/"

    def create_payment_session(self, amount, currency, customer_info, reference, metadata=None):
        if not self.secret_key:
            raise PaymentProviderError('Stripe is not configured', gateway=self.name)

        metadata = metadata or {}
        checkout_metadata = {k: str(v) for k, v in metadata.items()}
        checkout_metadata['booking_id'] = str(reference)

        params = {
            'payment_method_types': ['card'],
            'line_items': [{
                'price_data': {
                    'currency': currency.lower(),
                    'unit_amount': to_minor_units(amount),
                    'product_data': {
                        'name': metadata.get('service_title') or 'Booking',
                        'description': f'Payment for booking #{reference}',
                    },
                },
                'quantity': 1,
            }],
            'mode': 'payment',
            'success_url': self.success_url.format(booking_id=reference) + '?session_id={CHECKOUT_SESSION_ID}',
            'cancel_url': self.cancel_url.format(booking_id=reference) + f'?token={cancel_token(reference)}',
            'client_reference_id': str(reference),
            'metadata': checkout_metadata,
        }
        if customer_info.get('email'):
            params['customer_email'] = customer_info['email']

        try:
            checkout_session = stripe.checkout.Session.create(api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            raise PaymentProviderError(f'Stripe error: {e}', gateway=self.name) from e

        return PaymentSession(gateway=self.name, handle=checkout_session.id, redirect_url=checkout_session.url)

    def parse_webhook(self, payload, signature):
        if not self.webhook_secret:
            raise PaymentProviderError('Webhook secret not configured', gateway=self.name)

        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            raise InvalidWebhookError('Invalid payload', gateway=self.name) from e
        except stripe.SignatureVerificationError as e:
            raise InvalidWebhookError('Invalid signature', gateway=self.name) from e

        event_type = event['type']
        session = event['data']['object']

        if event_type not in ('checkout.session.completed', 'checkout.session.expired',
                              'checkout.session.async_payment_failed'):
            return None

        booking_id = _field(_field(session, 'metadata', {}), 'booking_id') or _field(session, 'client_reference_id')
        if not booking_id:
            logger.warning('Stripe event %s has no booking reference', event['id'])
            return None

        if event_type == 'checkout.session.completed' and _field(session, 'payment_status') == 'paid':
            amount_total = _field(session, 'amount_total')
            return PaymentResult(
                gateway=self.name,
                booking_id=str(booking_id),
                status='success',
                gateway_transaction_id=_field(session, 'payment_intent') or session['id'],
                session_handle=session['id'],
                paid_amount=from_minor_units(amount_total) if amount_total is not None else None,
                payment_method='card',
            )
        if event_type == 'checkout.session.completed':
            # Delayed methods settle later through async_payment_succeeded/failed.
            return None

        return PaymentResult(
            gateway=self.name,
            booking_id=str(booking_id),
            status='failed',
            gateway_transaction_id=session['id'],
            session_handle=session['id'],
            reason='Checkout session expired' if event_type == 'checkout.session.expired' else 'Payment failed',
        )

    def refund(self, gateway_transaction_id, amount, currency):
        try:
            refund = stripe.Refund.create(
                api_key=self.secret_key,
                payment_intent=gateway_transaction_id,
                amount=to_minor_units(amount),
            )
        except stripe.StripeError as e:
            raise PaymentProviderError(f'Stripe error: {e}', gateway=self.name) from e
        return refund.id


class RazorpayProvider(PaymentProvider):
    name = 'razorpay'
    api_base = 'https://api.razorpay.com/v1'

    def __init__(self, key_id=None, key_secret=None, webhook_secret=None, timeout=10):
        self.key_id = key_id or settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret or settings.RAZORPAY_KEY_SECRET
        self.webhook_secret = webhook_secret or settings.RAZORPAY_WEBHOOK_SECRET
        self.timeout = timeout

    def _request(self, method, path, **kwargs):
        if not (self.key_id and self.key_secret):
            raise PaymentProviderError('Razorpay is not configured', gateway=self.name)
        try:
            response = requests.request(
                method,
                f'{self.api_base}{path}',
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
                **kwargs
            )
        except requests.RequestException as e:
            raise PaymentProviderError(f'Razorpay request failed: {e}', gateway=self.name) from e

        if response.status_code >= 400:
            try:
                description = response.json()['error']['description']
            except (ValueError, KeyError, TypeError):
                description = response.text[:200]
            raise PaymentProviderError(f'Razorpay error: {description}', gateway=self.name)
        return response.json()

    @staticmethod
    def _sign(secret, message):
        return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()

    def create_payment_session(self, amount, currency, customer_info, reference, metadata=None):
        amount_minor = to_minor_units(amount)
        notes = {'booking_id': str(reference)}
        order = self._request('post', '/orders', json={
            'amount': amount_minor,
            'currency': currency,
            'receipt': f'BK_{reference}_{int(time.time())}'[:40],
            'payment_capture': 1,
            'notes': notes,
        })
        return PaymentSession(
            gateway=self.name,
            handle=order['id'],
            client_options={
                'key': self.key_id,
                'amount': amount_minor,
                'currency': currency,
                'order_id': order['id'],
                'name': settings.SITE_NAME,
                'description': (metadata or {}).get('service_title', ''),
                'prefill': {
                    'name': customer_info.get('name', ''),
                    'email': customer_info.get('email', ''),
                    'contact': customer_info.get('phone', ''),
                },
                'notes': notes,
            },
        )

    def verify_checkout(self, booking_id, order_id, payment_id, signature):
        """
        Check the modal's handler signature, then read the payment back from
        the API. The payment must belong to ``order_id`` and, when it carries
        a booking reference, to ``booking_id``.

        Returns None while the payment is authorised but not yet captured.
        """
        if not self.key_secret:
            raise PaymentProviderError('Razorpay is not configured', gateway=self.name)
        expected = self._sign(self.key_secret, f'{order_id}|{payment_id}'.encode())
        if not hmac.compare_digest(expected, signature or ''):
            raise InvalidWebhookError('Invalid signature', gateway=self.name)

        payment = self._request('get', f'/payments/{payment_id}')
        noted_booking = (payment.get('notes') or {}).get('booking_id')
        if payment.get('order_id') != order_id or (noted_booking and str(noted_booking) != str(booking_id)):
            raise InvalidWebhookError('Payment does not belong to this booking', gateway=self.name)
        return self._result(booking_id, payment)

    def parse_webhook(self, payload, signature):
        if not self.webhook_secret:
            raise PaymentProviderError('Webhook secret not configured', gateway=self.name)
        expected = self._sign(self.webhook_secret, payload)
        if not hmac.compare_digest(expected, signature or ''):
            raise InvalidWebhookError('Invalid signature', gateway=self.name)

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise InvalidWebhookError('Invalid payload', gateway=self.name) from e

        if event.get('event') not in ('payment.captured', 'payment.failed'):
            return None

        payment = event['payload']['payment']['entity']
        booking_id = (payment.get('notes') or {}).get('booking_id')
        if not booking_id:
            logger.warning('Razorpay payment %s has no booking reference', payment.get('id'))
            return None
        return self._result(booking_id, payment)

    def _result(self, booking_id, payment):
        status = payment.get('status')
        if status == 'captured':
            return PaymentResult(
                gateway=self.name,
                booking_id=str(booking_id),
                status='success',
                gateway_transaction_id=payment['id'],
                session_handle=payment.get('order_id') or '',
                paid_amount=from_minor_units(payment['amount']),
                payment_method=payment.get('method') or '',
            )
        if status != 'failed':
            # created/authorized: settled later by the payment.captured webhook.
            logger.info('Razorpay payment %s for booking %s is %s', payment.get('id'), booking_id, status)
            return None
        return PaymentResult(
            gateway=self.name,
            booking_id=str(booking_id),
            status='failed',
            gateway_transaction_id=payment['id'],
            session_handle=payment.get('order_id') or '',
            payment_method=payment.get('method') or '',
            reason=payment.get('error_description') or 'Payment failed',
        )

    def refund(self, gateway_transaction_id, amount, currency):
        refund = self._request('post', f'/payments/{gateway_transaction_id}/refund', json={
            'amount': to_minor_units(amount),
        })
        return refund['id']


PROVIDERS = {
    StripeCheckoutProvider.name: StripeCheckoutProvider,
    RazorpayProvider.name: RazorpayProvider,
}


def get_provider(name=None):
    name = name or settings.DEFAULT_PAYMENT_GATEWAY
    if name not in settings.PAYMENT_GATEWAYS or name not in PROVIDERS:
        raise ValidationError({'gateway': 'Unsupported payment gateway'})
    return PROVIDERS[name]()
