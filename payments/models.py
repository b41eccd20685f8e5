from django.core.serializers.json import DjangoJSONEncoder
from django.db import models

from core.exceptions import ImmutableRecordError

REJECTED_PREFIX = 'rejected:'


class TransactionRecord(models.Model):
    """One ledger entry per payment attempt, cancellation or refund. Never edited."""

    TYPE_CHOICES = [
        ('payment', 'Payment'),
        ('refund', 'Refund'),
        ('partial_refund', 'Partial Refund'),
    ]
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('success', 'Success'),
        ('failed', 'Failed'),
        ('cancelled', 'Cancelled'),
    ]

    booking = models.ForeignKey('bookings.Booking', on_delete=models.PROTECT, related_name='transactions')
    service = models.ForeignKey('catalog.Service', on_delete=models.PROTECT, related_name='transactions')
    service_type = models.CharField(max_length=20)
    transaction_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default='payment')
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default='INR')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, db_index=True)
    payment_gateway = models.CharField(max_length=20)
    gateway_transaction_id = models.CharField(max_length=255, blank=True, db_index=True)
    gateway_order_id = models.CharField(max_length=255, blank=True)
    metadata = models.JSONField(default=dict, encoder=DjangoJSONEncoder)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'payments_transactionrecord'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['payment_gateway', 'gateway_transaction_id', 'transaction_type'],
                condition=models.Q(status='success') & ~models.Q(gateway_transaction_id=''),
                name='unique_successful_gateway_transaction',
            )
        ]

    def __str__(self):
        return f"{self.transaction_type} {self.amount} {self.currency} ({self.status}) - booking {self.booking_id}"

    @property
    def is_rejected(self):
        """Money was taken but the booking could not be confirmed with it."""
        info = (self.metadata or {}).get('additional_info') or {}
        return str(info.get('reason', '')).startswith(REJECTED_PREFIX)

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableRecordError(f'Transaction {self.pk} is append-only')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableRecordError(f'Transaction {self.pk} is append-only')
