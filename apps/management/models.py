from django.db import models
from django.conf import settings
from core.constants import AUDIT_ACTION_CHOICES
from core.exceptions import InvariantViolation


class AuditLog(models.Model):
    """
    Append-only record of privileged financial actions (refunds, voids).
    Rows are written once and never mutated or deleted.
    """
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, null=True, blank=True, related_name='audit_entries'
    )
    action = models.CharField(max_length=20, choices=AUDIT_ACTION_CHOICES)
    resource_type = models.CharField(max_length=50)
    resource_id = models.CharField(max_length=100)
    details = models.JSONField(default=dict)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        actor = self.actor.username if self.actor else 'system'
        return f"{actor} - {self.action} {self.resource_type}#{self.resource_id}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise InvariantViolation("Audit log entries are write-once", details={'audit_id': self.pk})
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise InvariantViolation("Audit log entries cannot be deleted", details={'audit_id': self.pk})

    @classmethod
    def record(cls, action, resource, actor_id=None, **details):
        return cls.objects.create(
            actor_id=actor_id,
            action=action,
            resource_type=resource._meta.model_name,
            resource_id=str(resource.pk),
            details=details,
        )
