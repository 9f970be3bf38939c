from django.db import models
from django.conf import settings
from django.db.models import Q
from core.constants import (
    JOB_STATUS_CHOICES, JOB_OPEN, PAY_TYPE_CHOICES, PAY_TYPE_FLAT,
    OFFER_STATUS_CHOICES, OFFER_PENDING, VERIFICATION_KIND_CHOICES,
    DISPUTE_STATUS_CHOICES, DISPUTE_OPEN, DISPUTE_REASON_CHOICES,
)


class Job(models.Model):
    customer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='posted_jobs')
    hustler = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, null=True, blank=True, related_name='assigned_jobs'
    )
    title = models.CharField(max_length=200)
    category = models.CharField(max_length=100)
    description = models.TextField(blank=True, default='')
    address = models.CharField(max_length=255)
    zip_code = models.CharField(max_length=10)
    latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    scheduled_date = models.DateField()
    start_time = models.DateTimeField()
    end_time = models.DateTimeField()
    pay_type = models.CharField(max_length=10, choices=PAY_TYPE_CHOICES, default=PAY_TYPE_FLAT)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    hourly_rate = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    estimated_hours = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    authorized_hours = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    actual_hours = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    status = models.CharField(max_length=30, choices=JOB_STATUS_CHOICES, default=JOB_OPEN, db_index=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.title} - {self.customer.username}"

    @property
    def has_active_dispute(self):
        return self.disputes.filter(status=DISPUTE_OPEN).exists()

    def is_participant(self, user_id):
        return user_id is not None and user_id in (self.customer_id, self.hustler_id)


class Offer(models.Model):
    job = models.ForeignKey(Job, on_delete=models.CASCADE, related_name='offers')
    hustler = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='offers')
    note = models.TextField(blank=True, default='')
    proposed_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    status = models.CharField(max_length=10, choices=OFFER_STATUS_CHOICES, default=OFFER_PENDING)
    created_at = models.DateTimeField(auto_now_add=True)
    responded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['job', 'hustler'],
                condition=Q(status=OFFER_PENDING),
                name='one_pending_offer_per_hustler',
            ),
        ]

    def __str__(self):
        return f"{self.hustler.username} offered on {self.job.title} ({self.status})"


class JobVerification(models.Model):
    """A start or completion code for a job. Single use: used_at is set once."""
    job = models.ForeignKey(Job, on_delete=models.CASCADE, related_name='verifications')
    kind = models.CharField(max_length=10, choices=VERIFICATION_KIND_CHOICES)
    code = models.CharField(max_length=6)
    generated_at = models.DateTimeField()
    used_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        unique_together = ('job', 'kind')

    def __str__(self):
        return f"{self.kind} code for job {self.job_id}"

    @property
    def is_used(self):
        return self.used_at is not None


class JobDispute(models.Model):
    job = models.ForeignKey(Job, on_delete=models.CASCADE, related_name='disputes')
    reported_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='reported_disputes')
    reason = models.CharField(max_length=20, choices=DISPUTE_REASON_CHOICES)
    description = models.TextField()
    status = models.CharField(max_length=10, choices=DISPUTE_STATUS_CHOICES, default=DISPUTE_OPEN)
    resolution = models.TextField(blank=True, default='')
    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='resolved_disputes'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"Dispute #{self.id} - {self.job.title}"


class Review(models.Model):
    """One review per participant per job, of the other participant."""
    job = models.ForeignKey(Job, on_delete=models.CASCADE, related_name='reviews')
    reviewer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='reviews_written')
    reviewee = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='reviews_received')
    stars = models.PositiveSmallIntegerField(choices=[(i, i) for i in range(1, 6)])  # 1 to 5 stars
    text = models.TextField()
    is_hidden = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        unique_together = ('job', 'reviewer')

    def __str__(self):
        return f"Review of {self.reviewee.username} on {self.job.title} ({self.stars}/5)"
