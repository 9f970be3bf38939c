from django.db import models
from django.conf import settings
from core.constants import (
    PAYMENT_STATUS_CHOICES, PAYMENT_PREAUTHORIZED,
    PAYOUT_STATUS_CHOICES, PAYOUT_PENDING,
)


class Payment(models.Model):
    """Escrow record attached one-to-one to an assigned job."""
    job = models.OneToOneField('jobs.Job', on_delete=models.PROTECT, related_name='payment')
    customer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='customer_payments')
    hustler = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='hustler_payments')
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    tip = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    fee_customer = models.DecimalField(max_digits=10, decimal_places=2)
    fee_hustler = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    total = models.DecimalField(max_digits=10, decimal_places=2)
    captured_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, default=PAYMENT_PREAUTHORIZED)
    provider_id = models.CharField(max_length=100, unique=True)
    refund_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    refund_reason = models.TextField(blank=True, default='')
    receipt_url = models.URLField(max_length=500, blank=True, default='')
    needs_reconciliation = models.BooleanField(default=False)
    reconciliation_note = models.TextField(blank=True, default='')
    preauthorized_at = models.DateTimeField(auto_now_add=True)
    capture_started_at = models.DateTimeField(null=True, blank=True)
    captured_at = models.DateTimeField(null=True, blank=True)
    voided_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-preauthorized_at']

    def __str__(self):
        return f"Payment {self.provider_id} for job {self.job_id} ({self.status})"


class Payout(models.Model):
    """Funds owed or transferred to the hustler. One per job, upserted on job."""
    job = models.OneToOneField('jobs.Job', on_delete=models.PROTECT, related_name='payout')
    hustler = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='payouts')
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    platform_fee = models.DecimalField(max_digits=10, decimal_places=2)
    net_amount = models.DecimalField(max_digits=10, decimal_places=2)
    status = models.CharField(max_length=20, choices=PAYOUT_STATUS_CHOICES, default=PAYOUT_PENDING)
    provider_id = models.CharField(max_length=100, blank=True, default='')
    failure_reason = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"Payout for job {self.job_id} to {self.hustler_id} ({self.status})"


class Tip(models.Model):
    """
    Tip a customer adds after the job is paid. Charged on its own and
    transferred to the hustler in full, with no platform fee. The status
    tracks the transfer, the same way a Payout does.
    """
    job = models.OneToOneField('jobs.Job', on_delete=models.PROTECT, related_name='added_tip')
    customer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='tips_given')
    hustler = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='tips_received')
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    charge_id = models.CharField(max_length=100, blank=True, default='')
    captured_at = models.DateTimeField(null=True, blank=True)
    status = models.CharField(max_length=20, choices=PAYOUT_STATUS_CHOICES, default=PAYOUT_PENDING)
    provider_id = models.CharField(max_length=100, blank=True, default='')
    failure_reason = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"${self.amount} tip for job {self.job_id} ({self.status})"
