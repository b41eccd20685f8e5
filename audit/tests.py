from django.test import TestCase
from unittest.mock import MagicMock

from core.exceptions import StoreUnavailableError
from .log import AuditLog, AuditResult
from .models import AuditLogEntry


class AuditLogTest(TestCase):
    def test_record_persists_entry(self):
        result = AuditLog().record('service_deactivated', 'Service: LMV Training (ID: 1)')

        self.assertIs(result, AuditResult.OK)
        entry = AuditLogEntry.objects.get()
        self.assertEqual(entry.action, 'service_deactivated')
        self.assertEqual(entry.target, 'Service: LMV Training (ID: 1)')
        self.assertEqual(entry.user, 'system')

    def test_store_failure_is_reported_not_raised(self):
        store = MagicMock()
        store.add.side_effect = StoreUnavailableError('database down')

        with self.assertLogs('audit.log', level='ERROR'):
            result = AuditLog(store=store).record('booking_created', 'Booking 1')

        self.assertIs(result, AuditResult.FAILED)
        self.assertFalse(result)
        self.assertEqual(AuditLogEntry.objects.count(), 0)

    def test_long_targets_are_truncated(self):
        AuditLog().record('transaction_recorded', 'x' * 800)
        self.assertEqual(len(AuditLogEntry.objects.get().target), 500)
