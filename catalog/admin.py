from django import forms
from django.contrib import admin
from django.utils import timezone

from core.exceptions import ValidationError
from .models import Service
from .pricing import PricingInput, format_price, validate_pricing
from .services import DESCRIPTIVE_FIELDS, PRICING_FIELDS, ServiceCatalog


class ServiceAdminForm(forms.ModelForm):
    class Meta:
        model = Service
        fields = '__all__'

    def clean(self):
        cleaned_data = super().clean()
        values = {name: cleaned_data.get(name) for name in PRICING_FIELDS}
        try:
            validate_pricing(PricingInput(**values))
        except ValidationError as e:
            for field, message in e.errors.items():
                self.add_error(field if field in self.fields else None, message)
        return cleaned_data


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    form = ServiceAdminForm
    list_display = ['title', 'kind', 'category', 'price_display', 'is_active', 'priority', 'created_at']
    list_filter = ['kind', 'is_active', 'category', 'created_at']
    search_fields = ['title', 'description', 'category']
    readonly_fields = ['final_price', 'created_at', 'updated_at']
    actions = ['deactivate_services']

    fieldsets = (
        ('Service', {
            'fields': ('kind', 'title', 'short_description', 'description', 'category', 'icon', 'cta_text')
        }),
        ('Content', {
            'fields': ('features', 'details')
        }),
        ('Pricing', {
            'fields': ('base_price', 'currency', 'discount_percentage', 'discount_amount',
                       'discount_valid_until', 'gst', 'service_tax', 'other_charges', 'final_price')
        }),
        ('Visibility', {
            'fields': ('is_active', 'priority')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        }),
    )

    def price_display(self, obj):
        return format_price(obj.current_price(timezone.now()), obj.currency)
    price_display.short_description = 'Price'

    def save_model(self, request, obj, form, change):
        data = {name: form.cleaned_data[name] for name in DESCRIPTIVE_FIELDS + PRICING_FIELDS if name in form.cleaned_data}
        if change:
            data['id'] = obj.pk
        obj.pk = ServiceCatalog.from_settings().upsert_service(data)

    def has_delete_permission(self, request, obj=None):
        return False

    @admin.action(description='Deactivate selected services')
    def deactivate_services(self, request, queryset):
        catalog = ServiceCatalog.from_settings()
        for service in queryset:
            catalog.deactivate_service(service.pk)
        self.message_user(request, f'{queryset.count()} service(s) deactivated.')
