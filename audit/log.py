import enum
import logging

from django.db import DatabaseError

from core.exceptions import BookingError
from core.store import DocumentStore
from .models import AuditLogEntry

logger = logging.getLogger(__name__)


class AuditResult(enum.Enum):
    OK = 'ok'
    FAILED = 'failed'

    def __bool__(self):
        return self is AuditResult.OK


class AuditLog:
    """Writes audit entries without ever failing the caller's operation."""

    def __init__(self, store=None, user='system'):
        self.store = store or DocumentStore()
        self.user = user

    def record(self, action, target, user=None):
        entry = AuditLogEntry(action=action, target=str(target)[:500], user=user or self.user)
        try:
            self.store.add(entry)
        except (BookingError, DatabaseError):
            logger.exception('Audit log write failed: %s - %s', action, target)
            return AuditResult.FAILED
        logger.info('audit: %s - %s', action, target)
        return AuditResult.OK
