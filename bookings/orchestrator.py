"""
Booking lifecycle: create, pay, confirm, fail, cancel, refund.

A booking moves through ``status/payment_status`` pairs:

    pending/pending --session--> pending/pending --paid--> confirmed/paid
                  \\--failure--> pending/failed  --retry--> pending/pending
    confirmed/paid --refund (full)--> refunded/refunded
    any except refunded --cancel--> cancelled/*

Every payment attempt, cancellation and refund appends a
``TransactionRecord``; the ledger is written before the booking is flipped,
so a crash in between is repaired by the next confirmation for the same
gateway transaction id.
"""
import logging
from dataclasses import dataclass

from django.utils import timezone

from audit.log import AuditLog
from catalog.services import ServiceCatalog
from core.exceptions import (
    BookingStateError, DuplicateConfirmationError, NotFoundError, PaymentProviderError, ValidationError,
)
from core.money import quantize, to_decimal
from core.store import DocumentStore
from payments.models import REJECTED_PREFIX, TransactionRecord
from payments.providers import PaymentSession, get_provider
from payments.recorder import TransactionRecorder
from . import validation
from .models import Booking
from .notifications import send_booking_confirmation

logger = logging.getLogger(__name__)


@dataclass
class BookingSession:
    booking: Booking
    session: PaymentSession


class BookingOrchestrator:
    def __init__(self, catalog, recorder, provider, audit=None, clock=timezone.now, store=None):
        self.catalog = catalog
        self.recorder = recorder
        self.provider = provider
        self.store = store or DocumentStore()
        self.audit = audit or AuditLog(self.store)
        self.clock = clock

    @classmethod
    def for_provider(cls, provider):
        store = DocumentStore()
        audit = AuditLog(store)
        catalog = ServiceCatalog.from_settings()
        return cls(
            catalog=catalog,
            recorder=TransactionRecorder(store, audit),
            provider=provider,
            audit=audit,
            store=store,
        )

    @classmethod
    def for_gateway(cls, name=None):
        return cls.for_provider(get_provider(name))

    def get_booking(self, booking_id):
        booking = self.store.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError(f'Booking {booking_id} not found')
        return booking

    def create_booking(self, form, service_id, metadata=None):
        service = self.catalog.get_bookable_service(service_id)
        data = validation.clean(form, service.is_scheduled)

        amount = service.current_price(self.clock())
        if amount <= 0:
            raise ValidationError({'service_id': 'This service does not require payment'})

        booking = Booking(
            service=service,
            service_type=service.kind,
            customer_name=data.customer_name,
            customer_email=data.customer_email,
            customer_phone=data.customer_phone,
            customer_address=data.customer_address,
            scheduled_date=data.scheduled_date,
            notes=data.notes,
            amount_due=amount,
            currency=service.currency,
            payment_gateway=self.provider.name,
        )
        self.store.add(booking)
        self.audit.record(
            'booking_created',
            f'Booking ID: {booking.pk} for {service.kind} service: {service.title} (ID: {service.pk}), '
            f'Amount: {amount} {service.currency}',
        )

        session = self._open_session(booking, service, metadata)
        return BookingSession(booking=self.get_booking(booking.pk), session=session)

    def retry_payment(self, booking_id, metadata=None):
        booking = self.get_booking(booking_id)
        if not booking.is_retryable():
            raise BookingStateError(f'Booking {booking.pk} cannot be paid again')

        service = self.catalog.get_bookable_service(booking.service_id)
        amount = service.current_price(self.clock())
        booking = self.store.update(
            Booking, booking.pk,
            amount_due=amount,
            currency=service.currency,
            payment_status='pending',
            payment_gateway=self.provider.name,
        )
        self.audit.record('booking_payment_retried', f'Booking ID: {booking.pk}, Amount: {amount} {service.currency}')

        session = self._open_session(booking, service, metadata)
        return BookingSession(booking=self.get_booking(booking.pk), session=session)

    def confirm_payment(self, booking_id, gateway_transaction_id, paid_amount=None,
                        payment_method=None, metadata=None):
        if not gateway_transaction_id:
            raise ValidationError({'gateway_transaction_id': 'Gateway transaction id is required'})

        booking = self.get_booking(booking_id)
        gateway = self.provider.name

        existing = self.recorder.find_successful_payment(gateway, gateway_transaction_id)
        if existing is not None:
            return self._confirm_recorded(booking, existing, payment_method)

        amount = booking.amount_due if paid_amount is None else quantize(to_decimal(paid_amount, 'paid_amount'))

        try:
            service = self.catalog.get_bookable_service(booking.service_id)
        except NotFoundError:
            logger.warning('Refusing to confirm booking %s: service %s is unavailable',
                           booking.pk, booking.service_id)
            self._reject_payment(booking, gateway_transaction_id, amount,
                                 f'service {booking.service_id} unavailable', metadata)
            raise

        if booking.status in ('cancelled', 'refunded', 'completed'):
            self._reject_payment(booking, gateway_transaction_id, amount, f'booking {booking.status}', metadata)
            raise BookingStateError(f'Booking {booking.pk} is {booking.status} and cannot be confirmed')
        if booking.payment_status == 'paid':
            self._reject_payment(booking, gateway_transaction_id, amount, 'booking already paid', metadata)
            raise BookingStateError(f'Booking {booking.pk} is already paid')

        if amount != booking.amount_due:
            reason = f'Paid amount {amount} does not match amount due {booking.amount_due}'
            self._record_failure(booking, gateway_transaction_id, reason, metadata)
            raise PaymentProviderError(reason, gateway=gateway)

        record = TransactionRecord(
            booking=booking,
            service=service,
            service_type=booking.service_type,
            transaction_type='payment',
            amount=amount,
            currency=booking.currency,
            status='success',
            payment_gateway=gateway,
            gateway_transaction_id=gateway_transaction_id,
            gateway_order_id=booking.gateway_session_id,
            metadata=metadata,
        )
        try:
            self.recorder.record_payment_once(record)
        except DuplicateConfirmationError:
            record = self.recorder.find_successful_payment(gateway, gateway_transaction_id)
            return self._confirm_recorded(self.get_booking(booking.pk), record, payment_method)

        return self._mark_paid(booking, record, payment_method)

    def fail_payment(self, booking_id, gateway_transaction_id='', reason='', metadata=None, session_handle=''):
        """
        Mark the current payment attempt failed. Failures reported for an
        older session (one replaced by ``retry_payment``) are ignored.
        """
        booking = self.get_booking(booking_id)
        if booking.status != 'pending' or booking.payment_status in ('paid', 'refunded'):
            logger.info('Ignoring payment failure for booking %s in state %s/%s',
                        booking.pk, booking.status, booking.payment_status)
            return booking
        if session_handle and booking.gateway_session_id and session_handle != booking.gateway_session_id:
            logger.info('Ignoring payment failure for booking %s from stale session %s',
                        booking.pk, session_handle)
            return booking
        if gateway_transaction_id and self.recorder.has_failed_attempt(
                booking, self.provider.name, gateway_transaction_id):
            return booking
        return self._record_failure(booking, gateway_transaction_id, reason, metadata)

    def handle_result(self, result, metadata=None):
        if result.succeeded:
            return self.confirm_payment(
                result.booking_id,
                result.gateway_transaction_id,
                paid_amount=result.paid_amount,
                payment_method=result.payment_method,
                metadata=metadata,
            )
        return self.fail_payment(
            result.booking_id, result.gateway_transaction_id, result.reason, metadata,
            session_handle=result.session_handle,
        )

    def cancel_booking(self, booking_id, reason='', metadata=None):
        booking = self.get_booking(booking_id)
        if booking.status in ('cancelled', 'refunded'):
            raise BookingStateError(f'Booking {booking.pk} is already {booking.status}')

        self.recorder.record(self._transaction(
            booking,
            transaction_type='payment',
            amount=booking.amount_due,
            status='cancelled',
            metadata={**(metadata or {}), 'reason': reason},
        ))
        booking = self.store.update(Booking, booking.pk, status='cancelled')
        self.audit.record('booking_cancelled', f'Booking ID: {booking.pk}, reason: {reason or "-"}')
        return booking

    def refund_booking(self, booking_id, amount=None, reason='', metadata=None):
        booking = self.get_booking(booking_id)
        if booking.payment_status != 'paid':
            raise BookingStateError(f'Booking {booking.pk} has no payment to refund')
        if booking.payment_gateway != self.provider.name:
            raise BookingStateError(f'Booking {booking.pk} was paid through {booking.payment_gateway}')

        remaining = booking.paid_amount - self.recorder.refunded_total(booking)
        amount = remaining if amount is None else quantize(to_decimal(amount, 'amount'))
        if amount <= 0 or amount > remaining:
            raise ValidationError({'amount': f'Refund amount must be between 0.01 and {remaining}'})

        refund_id = self.provider.refund(booking.gateway_transaction_id, amount, booking.currency)

        self.recorder.record(self._transaction(
            booking,
            transaction_type='refund' if amount == booking.paid_amount else 'partial_refund',
            amount=amount,
            status='success',
            gateway_transaction_id=refund_id,
            metadata={**(metadata or {}), 'reason': reason, 'payment_id': booking.gateway_transaction_id},
        ))

        if amount == remaining:
            booking = self.store.update(
                Booking, booking.pk,
                status='refunded',
                payment_status='refunded',
                gateway_transaction_id='',
                payment_method='',
                paid_amount=None,
                paid_at=None,
            )
        self.audit.record(
            'booking_refunded',
            f'Booking ID: {booking.pk}, Amount: {amount} {booking.currency}, refund {refund_id}',
        )
        return booking

    def _open_session(self, booking, service, metadata):
        try:
            session = self.provider.create_payment_session(
                amount=booking.amount_due,
                currency=booking.currency,
                customer_info=booking.customer_info,
                reference=booking.pk,
                metadata={'service_id': service.pk, 'service_title': service.title},
            )
        except PaymentProviderError as e:
            logger.warning('Could not open %s session for booking %s: %s', self.provider.name, booking.pk, e)
            self._record_failure(booking, '', str(e), metadata)
            e.booking_id = booking.pk
            raise

        self.store.update(Booking, booking.pk, gateway_session_id=session.handle)
        return session

    def _confirm_recorded(self, booking, record, payment_method):
        if record.booking_id != booking.pk:
            raise BookingStateError(
                f'Transaction {record.gateway_transaction_id} belongs to booking {record.booking_id}')
        if record.is_rejected:
            raise BookingStateError(
                f'Transaction {record.gateway_transaction_id} was rejected for booking {booking.pk}')
        if booking.payment_status in ('paid', 'refunded') or booking.status in ('cancelled', 'refunded'):
            logger.info('Duplicate confirmation for booking %s ignored', booking.pk)
            return booking
        logger.warning('Completing interrupted confirmation for booking %s', booking.pk)
        return self._mark_paid(booking, record, payment_method)

    def _mark_paid(self, booking, record, payment_method):
        booking = self.store.update(
            Booking, booking.pk,
            status='confirmed',
            payment_status='paid',
            gateway_transaction_id=record.gateway_transaction_id,
            payment_method=payment_method or record.payment_gateway,
            paid_amount=record.amount,
            paid_at=record.created_at or self.clock(),
        )
        self.audit.record(
            'booking_confirmed',
            f'Booking ID: {booking.pk}, transaction {record.gateway_transaction_id}, '
            f'Amount: {record.amount} {record.currency}',
        )
        send_booking_confirmation(booking)
        return booking

    def _reject_payment(self, booking, gateway_transaction_id, amount, why, metadata):
        """Keep captured money on the ledger even though the booking stays unconfirmed."""
        record = self._transaction(
            booking,
            transaction_type='payment',
            amount=amount,
            status='success',
            gateway_transaction_id=gateway_transaction_id,
            metadata={**(metadata or {}), 'reason': f'{REJECTED_PREFIX} {why}'},
        )
        try:
            self.recorder.record_payment_once(record)
        except DuplicateConfirmationError:
            return
        self.audit.record(
            'payment_rejected',
            f'Booking ID: {booking.pk}, transaction {gateway_transaction_id}, '
            f'Amount: {amount} {booking.currency}, {why}',
        )

    def _record_failure(self, booking, gateway_transaction_id, reason, metadata):
        self.recorder.record(self._transaction(
            booking,
            transaction_type='payment',
            amount=booking.amount_due,
            status='failed',
            gateway_transaction_id=gateway_transaction_id or '',
            metadata={**(metadata or {}), 'reason': reason},
        ))
        booking = self.store.update(Booking, booking.pk, payment_status='failed')
        self.audit.record('booking_payment_failed', f'Booking ID: {booking.pk}, reason: {reason or "-"}')
        return booking

    def _transaction(self, booking, **fields):
        fields.setdefault('payment_gateway', self.provider.name)
        fields.setdefault('gateway_order_id', booking.gateway_session_id)
        return TransactionRecord(
            booking=booking,
            service_id=booking.service_id,
            service_type=booking.service_type,
            currency=booking.currency,
            **fields
        )
