from django.contrib import admin

from catalog.pricing import format_price
from .models import TransactionRecord


@admin.register(TransactionRecord)
class TransactionRecordAdmin(admin.ModelAdmin):
    list_display = ['id', 'booking', 'transaction_type', 'amount_display', 'status', 'payment_gateway', 'created_at']
    list_filter = ['transaction_type', 'status', 'payment_gateway', 'service_type', 'created_at']
    search_fields = ['gateway_transaction_id', 'gateway_order_id', 'booking__customer_email']
    raw_id_fields = ['booking', 'service']

    fieldsets = (
        ('Booking', {
            'fields': ('booking', 'service', 'service_type')
        }),
        ('Transaction', {
            'fields': ('transaction_type', 'amount', 'currency', 'status')
        }),
        ('Gateway', {
            'fields': ('payment_gateway', 'gateway_transaction_id', 'gateway_order_id')
        }),
        ('Metadata', {
            'fields': ('metadata', 'created_at')
        }),
    )

    def amount_display(self, obj):
        return format_price(obj.amount, obj.currency)
    amount_display.short_description = 'Amount'

    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
