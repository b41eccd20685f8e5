from django.contrib import admin, messages

from catalog.pricing import format_price
from core.exceptions import BookingError
from payments.models import TransactionRecord
from .models import Booking
from .orchestrator import BookingOrchestrator


class TransactionRecordInline(admin.TabularInline):
    model = TransactionRecord
    fields = ['created_at', 'transaction_type', 'status', 'amount', 'payment_gateway', 'gateway_transaction_id']
    readonly_fields = fields
    extra = 0
    can_delete = False
    ordering = ['created_at']

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ['id', 'customer_name', 'service', 'scheduled_date', 'status', 'payment_status', 'amount_display', 'created_at']
    list_filter = ['status', 'payment_status', 'service_type', 'payment_gateway', 'created_at']
    search_fields = ['customer_name', 'customer_email', 'customer_phone', 'gateway_transaction_id']
    readonly_fields = [
        'service', 'service_type', 'amount_due', 'currency', 'status', 'payment_status', 'payment_gateway',
        'gateway_session_id', 'gateway_transaction_id', 'payment_method', 'paid_amount', 'paid_at',
        'created_at', 'updated_at',
    ]
    inlines = [TransactionRecordInline]
    actions = ['cancel_bookings', 'refund_bookings']

    fieldsets = (
        ('Customer', {
            'fields': ('customer_name', 'customer_email', 'customer_phone', 'customer_address')
        }),
        ('Booking', {
            'fields': ('service', 'service_type', 'scheduled_date', 'notes', 'status')
        }),
        ('Payment', {
            'fields': ('amount_due', 'currency', 'payment_status', 'payment_gateway', 'gateway_session_id',
                       'gateway_transaction_id', 'payment_method', 'paid_amount', 'paid_at')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        }),
    )

    def amount_display(self, obj):
        return format_price(obj.amount_due, obj.currency)
    amount_display.short_description = 'Amount'

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def _apply(self, request, queryset, verb, operation):
        done = 0
        for booking in queryset:
            try:
                orchestrator = BookingOrchestrator.for_gateway(booking.payment_gateway or None)
                operation(orchestrator, booking)
                done += 1
            except BookingError as e:
                self.message_user(request, f'Booking #{booking.pk}: {e}', level=messages.ERROR)
        if done:
            self.message_user(request, f'{done} booking(s) {verb}.')

    @admin.action(description='Cancel selected bookings')
    def cancel_bookings(self, request, queryset):
        self._apply(request, queryset, 'cancelled', lambda o, b: o.cancel_booking(
            b.pk, reason=f'Cancelled by {request.user}'))

    @admin.action(description='Refund selected bookings in full')
    def refund_bookings(self, request, queryset):
        self._apply(request, queryset, 'refunded', lambda o, b: o.refund_booking(
            b.pk, reason=f'Refunded by {request.user}'))
