from django.utils import timezone
from rest_framework import serializers

from .models import Service
from .pricing import discount_is_active, discount_savings, format_price


class ServiceSerializer(serializers.ModelSerializer):
    price = serializers.SerializerMethodField()
    price_display = serializers.SerializerMethodField()
    discount_active = serializers.SerializerMethodField()
    savings = serializers.SerializerMethodField()

    class Meta:
        model = Service
        fields = [
            'id', 'kind', 'title', 'short_description', 'description', 'category',
            'icon', 'cta_text', 'features', 'details', 'base_price', 'currency',
            'discount_percentage', 'discount_amount', 'discount_valid_until',
            'gst', 'service_tax', 'other_charges', 'price', 'price_display',
            'discount_active', 'savings', 'is_active', 'priority', 'created_at',
        ]

    def _now(self):
        return self.context.get('now') or timezone.now()

    def get_price(self, obj):
        return str(obj.current_price(self._now()))

    def get_price_display(self, obj):
        return format_price(obj.current_price(self._now()), obj.currency)

    def get_discount_active(self, obj):
        return discount_is_active(obj.pricing_input(), self._now())

    def get_savings(self, obj):
        return str(discount_savings(obj.pricing_input(), self._now()))
