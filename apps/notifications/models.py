from django.db import models
from django.conf import settings
from django.utils import timezone

CHANNEL_EMAIL = 'email'
CHANNEL_SMS = 'sms'
CHANNEL_BOTH = 'both'

DELIVERY_PENDING = 'pending'
DELIVERY_SENT = 'sent'
DELIVERY_FAILED = 'failed'


class NotificationLog(models.Model):
    """One row per lifecycle notification attempt, kept for support lookups."""
    CHANNEL_CHOICES = [
        (CHANNEL_EMAIL, 'Email'),
        (CHANNEL_SMS, 'SMS'),
        (CHANNEL_BOTH, 'Email and SMS'),
    ]
    STATUS_CHOICES = [
        (DELIVERY_PENDING, 'Pending'),
        (DELIVERY_SENT, 'Delivered'),
        (DELIVERY_FAILED, 'Failed'),
    ]

    recipient = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='notifications')
    event_type = models.CharField(max_length=50, db_index=True)
    subject = models.CharField(max_length=200)
    message = models.TextField()
    channel = models.CharField(max_length=10, choices=CHANNEL_CHOICES)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=DELIVERY_PENDING)
    error_message = models.TextField(blank=True, default='')
    sent_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [models.Index(fields=['recipient', '-created_at'])]

    def __str__(self):
        return f"{self.event_type} for user {self.recipient_id} ({self.status})"

    def mark_as_sent(self, channel):
        self.channel = channel
        self.status = DELIVERY_SENT
        self.sent_at = timezone.now()
        self.save(update_fields=['channel', 'status', 'sent_at'])

    def mark_as_failed(self, error_message):
        self.status = DELIVERY_FAILED
        self.error_message = error_message[:2000]
        self.save(update_fields=['status', 'error_message'])
