from django.db import models


class AuditLogEntry(models.Model):
    action = models.CharField(max_length=100, db_index=True)
    target = models.CharField(max_length=500)
    user = models.CharField(max_length=255, default='system')
    timestamp = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        db_table = 'audit_logentry'
        ordering = ['-timestamp']
        verbose_name_plural = 'audit log entries'

    def __str__(self):
        return f"{self.action} - {self.target}"
