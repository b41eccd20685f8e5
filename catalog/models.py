from django.db import models

from .pricing import PricingInput, compute_final_price


class Service(models.Model):
    KIND_TRAINING = 'training'
    KIND_ONLINE = 'online'
    KIND_CHOICES = [
        (KIND_TRAINING, 'Training'),
        (KIND_ONLINE, 'Online'),
    ]

    CURRENCY_CHOICES = [
        ('INR', 'Indian Rupee'),
        ('USD', 'US Dollar'),
    ]

    kind = models.CharField(max_length=20, choices=KIND_CHOICES, db_index=True)
    title = models.CharField(max_length=255)
    short_description = models.CharField(max_length=500, blank=True)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=50, blank=True)
    icon = models.CharField(max_length=50, blank=True)
    cta_text = models.CharField(max_length=50, default='Book Now')
    features = models.JSONField(default=list, blank=True)
    details = models.JSONField(default=dict, blank=True)

    base_price = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, choices=CURRENCY_CHOICES, default='INR')
    discount_percentage = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    discount_valid_until = models.DateTimeField(null=True, blank=True)
    gst = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    service_tax = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    other_charges = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    final_price = models.DecimalField(max_digits=10, decimal_places=2, editable=False, default=0)

    is_active = models.BooleanField(default=True, db_index=True)
    priority = models.IntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'catalog_service'
        ordering = ['priority', '-created_at']

    def __str__(self):
        return f"{self.title} ({self.get_kind_display()})"

    @property
    def is_scheduled(self):
        return self.kind == self.KIND_TRAINING

    def pricing_input(self):
        return PricingInput(
            base_price=self.base_price,
            currency=self.currency,
            discount_percentage=self.discount_percentage,
            discount_amount=self.discount_amount,
            discount_valid_until=self.discount_valid_until,
            gst=self.gst,
            service_tax=self.service_tax,
            other_charges=self.other_charges,
        )

    def current_price(self, now):
        """Price payable at ``now``; ``final_price`` is only a cache of this."""
        return compute_final_price(self.pricing_input(), now)
