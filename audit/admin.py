from django.contrib import admin
from .models import AuditLogEntry


@admin.register(AuditLogEntry)
class AuditLogEntryAdmin(admin.ModelAdmin):
    list_display = ['timestamp', 'action', 'target', 'user']
    list_filter = ['action', 'timestamp']
    search_fields = ['action', 'target', 'user']
    readonly_fields = ['timestamp', 'action', 'target', 'user']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
