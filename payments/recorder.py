import logging
from decimal import Decimal

from audit.log import AuditLog
from core.exceptions import DuplicateConfirmationError, DuplicateKeyError
from core.store import DocumentStore
from .models import TransactionRecord

logger = logging.getLogger(__name__)

UNKNOWN = 'unknown'


def normalize_metadata(metadata):
    """Client IP and user agent are always present; missing values become ``unknown``."""
    metadata = dict(metadata or {})
    additional_info = dict(metadata.pop('additional_info', None) or {})
    client_ip = metadata.pop('client_ip', None) or UNKNOWN
    user_agent = metadata.pop('user_agent', None) or UNKNOWN
    additional_info.update({k: v for k, v in metadata.items() if v not in (None, '')})
    return {
        'client_ip': client_ip,
        'user_agent': user_agent,
        'additional_info': additional_info,
    }


class TransactionRecorder:
    def __init__(self, store=None, audit=None):
        self.store = store or DocumentStore()
        self.audit = audit or AuditLog(self.store)

    def record(self, transaction):
        transaction.metadata = normalize_metadata(transaction.metadata)
        transaction_id = self.store.add(transaction)
        self._audit(transaction)
        return transaction_id

    def record_payment_once(self, transaction):
        """
        Insert a successful payment unless one is already recorded for the
        same gateway transaction id. The unique constraint settles races the
        existence check cannot see.
        """
        transaction.metadata = normalize_metadata(transaction.metadata)
        try:
            transaction_id = self.store.add_unique(transaction, self._payment_key(
                transaction.payment_gateway, transaction.gateway_transaction_id))
        except DuplicateKeyError as e:
            logger.info('Payment %s/%s already recorded',
                        transaction.payment_gateway, transaction.gateway_transaction_id)
            raise DuplicateConfirmationError(transaction.gateway_transaction_id) from e
        self._audit(transaction)
        return transaction_id

    def has_successful_payment(self, gateway, gateway_transaction_id):
        return self.find_successful_payment(gateway, gateway_transaction_id) is not None

    def find_successful_payment(self, gateway, gateway_transaction_id):
        matches = self.store.query(
            TransactionRecord, self._payment_key(gateway, gateway_transaction_id), limit=1)
        return matches[0] if matches else None

    def has_failed_attempt(self, booking, gateway, gateway_transaction_id):
        return self.store.exists(TransactionRecord, {
            'booking': booking,
            'payment_gateway': gateway,
            'gateway_transaction_id': gateway_transaction_id,
            'status': 'failed',
        })

    def refunded_total(self, booking):
        records = self.store.query(TransactionRecord, {'booking': booking, 'status': 'success'})
        return sum(
            (r.amount for r in records if r.transaction_type in ('refund', 'partial_refund')),
            Decimal('0.00'),
        )

    def history(self, booking):
        records = self.store.query(TransactionRecord, {'booking': booking})
        return sorted(records, key=lambda r: (r.created_at, r.pk))

    @staticmethod
    def _payment_key(gateway, gateway_transaction_id):
        return {
            'payment_gateway': gateway,
            'gateway_transaction_id': gateway_transaction_id,
            'transaction_type': 'payment',
            'status': 'success',
        }

    def _audit(self, transaction):
        self.audit.record(
            'transaction_recorded',
            f'Transaction ID: {transaction.pk} for booking: {transaction.booking_id}, '
            f'{transaction.transaction_type} {transaction.status}, '
            f'Amount: {transaction.amount} {transaction.currency}',
        )
