from django.db import models


class Booking(models.Model):
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('confirmed', 'Confirmed'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
        ('refunded', 'Refunded'),
    ]
    PAYMENT_STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('paid', 'Paid'),
        ('failed', 'Failed'),
        ('refunded', 'Refunded'),
    ]
    SERVICE_TYPE_CHOICES = [
        ('training', 'Training'),
        ('online', 'Online'),
    ]

    service = models.ForeignKey('catalog.Service', on_delete=models.PROTECT, related_name='bookings')
    service_type = models.CharField(max_length=20, choices=SERVICE_TYPE_CHOICES)

    customer_name = models.CharField(max_length=255)
    customer_email = models.EmailField()
    customer_phone = models.CharField(max_length=20)
    customer_address = models.CharField(max_length=200, blank=True)
    scheduled_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)

    amount_due = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default='INR')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending', db_index=True)
    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, default='pending', db_index=True)
    payment_gateway = models.CharField(max_length=20, blank=True)
    gateway_session_id = models.CharField(max_length=255, blank=True, db_index=True)

    gateway_transaction_id = models.CharField(max_length=255, blank=True)
    payment_method = models.CharField(max_length=50, blank=True)
    paid_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'bookings_booking'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.customer_name} - {self.service_id} - {self.status}/{self.payment_status}"

    @property
    def customer_info(self):
        return {
            'name': self.customer_name,
            'email': self.customer_email,
            'phone': self.customer_phone,
            'address': self.customer_address,
        }

    @property
    def payment_details(self):
        if self.payment_status != 'paid':
            return None
        return {
            'transaction_id': self.gateway_transaction_id,
            'payment_method': self.payment_method,
            'paid_amount': self.paid_amount,
            'payment_date': self.paid_at,
            'gateway': self.payment_gateway,
        }

    def is_retryable(self):
        return self.status == 'pending' and self.payment_status in ('pending', 'failed')
