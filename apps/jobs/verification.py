"""
Start and completion codes for the job handshake.

The customer gives the hustler a 4-digit start code on arrival; when the
work is done the customer receives a 6-digit completion code to release
payment. Codes are single use.
"""
import hmac
import re
import secrets
from django.utils import timezone
from core.constants import CODE_START, CODE_COMPLETION
from core.exceptions import ConflictError, ValidationError
from .models import JobVerification

CODE_WIDTHS = {
    CODE_START: 4,
    CODE_COMPLETION: 6,
}


def generate_code(width):
    return f"{secrets.randbelow(10 ** width):0{width}d}"


def normalize_code(value):
    return re.sub(r'\D', '', str(value or ''))


def issue_code(job, kind):
    """Create or replace the job's code of the given kind."""
    verification, _ = JobVerification.objects.update_or_create(
        job=job,
        kind=kind,
        defaults={
            'code': generate_code(CODE_WIDTHS[kind]),
            'generated_at': timezone.now(),
            'used_at': None,
        }
    )
    return verification


def get_verification(job, kind):
    return JobVerification.objects.filter(job=job, kind=kind).first()


def check_code(job, kind, submitted):
    """
    Validate a submitted code against the stored one. Returns the
    verification row; raises if the code is missing, consumed, or wrong.
    """
    verification = get_verification(job, kind)
    if verification is None:
        raise ConflictError(f"No {kind} code has been generated for this job", code='NO_CODE_GENERATED', field='code')
    if verification.is_used:
        raise ConflictError(f"This {kind} code has already been used", code='CODE_ALREADY_USED', field='code')
    normalized = normalize_code(submitted)
    if not normalized:
        raise ValidationError("A numeric code is required", code='INVALID_CODE', field='code')
    if not hmac.compare_digest(normalized, verification.code):
        raise ValidationError(f"Invalid {kind} code", code='INVALID_CODE', field='code')
    return verification


def consume_code(verification, now=None):
    """Mark a code used. Returns False when another request consumed it first."""
    now = now or timezone.now()
    updated = JobVerification.objects.filter(pk=verification.pk, used_at__isnull=True).update(used_at=now)
    if updated:
        verification.used_at = now
    return bool(updated)


def regenerate_code(job, kind):
    """
    Replace an unused code with a fresh one. The update only touches a row
    that is still unused, so a concurrent redemption is never undone.
    """
    existing = get_verification(job, kind)
    if existing is None:
        return issue_code(job, kind)
    now = timezone.now()
    updated = JobVerification.objects.filter(pk=existing.pk, used_at__isnull=True).update(
        code=generate_code(CODE_WIDTHS[kind]),
        generated_at=now,
    )
    if not updated:
        raise ConflictError(f"This {kind} code has already been used", code='CODE_ALREADY_USED', field='code')
    existing.refresh_from_db()
    return existing
