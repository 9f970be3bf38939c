"""
Stripe webhook reconciliation.

Events are verified against STRIPE_WEBHOOK_SECRET and applied with the same
conditional updates the lifecycle engine uses, so an event that arrives
after our own API call already recorded the change is a no-op. Captures
seen here only mark the Payment; marking the job PAID is left to the
customer's confirmation or the auto-release sweep.
"""
import json
import logging
import stripe
from django.conf import settings
from django.db import transaction
from django.utils import timezone
from core.constants import (
    JOB_CANCELLED, PAYMENT_PREAUTHORIZED, PAYMENT_CAPTURED, PAYMENT_REFUNDED, PAYMENT_VOIDED,
    PAYOUT_COMPLETED, PAYOUT_FAILED, AUDIT_REFUND, AUDIT_VOID,
)
from core.exceptions import ValidationError
from apps.management.models import AuditLog
from .fees import from_cents
from .models import Payment, Payout, Tip

logger = logging.getLogger(__name__)


def verify_event(payload, signature, secret=None):
    """Check the Stripe-Signature header and return the decoded event."""
    secret = secret or settings.STRIPE_WEBHOOK_SECRET
    if not secret:
        raise ValidationError("Webhook signing secret is not configured", code='WEBHOOK_NOT_CONFIGURED')
    try:
        stripe.WebhookSignature.verify_header(payload, signature or '', secret, stripe.Webhook.DEFAULT_TOLERANCE)
    except stripe.SignatureVerificationError as e:
        logger.error(f"Invalid Stripe webhook signature: {str(e)}")
        raise ValidationError("Invalid webhook signature", code='INVALID_SIGNATURE')
    try:
        return json.loads(payload)
    except ValueError:
        raise ValidationError("Webhook payload is not valid JSON", code='INVALID_PAYLOAD')


def _payment_for(intent_id):
    payment = Payment.objects.select_related('job').filter(provider_id=intent_id).first()
    if payment is None:
        logger.info(f"No payment for intent {intent_id}, ignoring")
    return payment


def payment_intent_succeeded(intent):
    payment = _payment_for(intent['id'])
    if payment is None:
        return
    now = timezone.now()
    captured = Payment.objects.filter(pk=payment.pk, status=PAYMENT_PREAUTHORIZED).update(
        status=PAYMENT_CAPTURED,
        captured_at=now,
        captured_amount=from_cents(intent.get('amount_received') or 0),
        updated_at=now,
    )
    if captured:
        logger.info(f"Payment {payment.pk} marked captured from webhook")


def payment_intent_canceled(intent):
    payment = _payment_for(intent['id'])
    if payment is None:
        return
    now = timezone.now()
    with transaction.atomic():
        voided = Payment.objects.filter(pk=payment.pk, status=PAYMENT_PREAUTHORIZED).update(
            status=PAYMENT_VOIDED, voided_at=now, updated_at=now
        )
        if not voided:
            return
        AuditLog.record(
            AUDIT_VOID, payment, job_id=payment.job_id, amount=str(payment.total),
            reason='Canceled at the payment provider',
        )
        if payment.job.status == JOB_CANCELLED:
            Payment.objects.filter(pk=payment.pk).update(needs_reconciliation=False)
        else:
            note = f"Hold canceled at the provider while job was {payment.job.status}"
            logger.error(f"Payment {payment.pk} needs manual reconciliation: {note}")
            Payment.objects.filter(pk=payment.pk).update(needs_reconciliation=True, reconciliation_note=note)
    logger.info(f"Payment {payment.pk} marked voided from webhook")


def payment_intent_payment_failed(intent):
    error = intent.get('last_payment_error') or {}
    logger.warning(f"Payment failed for intent {intent['id']}: {error.get('message', 'unknown error')}")


def charge_refunded(charge):
    payment = _payment_for(charge.get('payment_intent'))
    if payment is None:
        return
    now = timezone.now()
    amount = from_cents(charge.get('amount_refunded') or 0)
    with transaction.atomic():
        refunded = Payment.objects.filter(pk=payment.pk, status=PAYMENT_CAPTURED).update(
            status=PAYMENT_REFUNDED, refund_amount=amount, refund_reason='Refunded at the payment provider',
            refunded_at=now, updated_at=now,
        )
        if refunded:
            AuditLog.record(
                AUDIT_REFUND, payment, job_id=payment.job_id, amount=str(amount),
                reason='Refunded at the payment provider',
            )
            logger.info(f"Payment {payment.pk} marked refunded from webhook: ${amount}")


def _transfer_record(transfer):
    metadata = transfer.get('metadata') or {}
    if metadata.get('payout_id'):
        return Payout, metadata['payout_id']
    if metadata.get('tip_id'):
        return Tip, metadata['tip_id']
    logger.info(f"Transfer {transfer['id']} carries no payout or tip id, ignoring")
    return None, None


def transfer_created(transfer):
    model, pk = _transfer_record(transfer)
    if model is None:
        return
    model.objects.filter(pk=pk).exclude(status=PAYOUT_COMPLETED).update(
        status=PAYOUT_COMPLETED, provider_id=transfer['id'], failure_reason='', updated_at=timezone.now()
    )


def transfer_reversed(transfer):
    model, pk = _transfer_record(transfer)
    if model is None:
        return
    # The sweep never re-sends a payout or tip that has a provider_id
    model.objects.filter(pk=pk).update(
        status=PAYOUT_FAILED, provider_id=transfer['id'],
        failure_reason='Transfer reversed at the payment provider', updated_at=timezone.now()
    )
    logger.error(f"Transfer {transfer['id']} for {model.__name__.lower()} {pk} was reversed")


HANDLERS = {
    'payment_intent.succeeded': payment_intent_succeeded,
    'payment_intent.canceled': payment_intent_canceled,
    'payment_intent.payment_failed': payment_intent_payment_failed,
    'charge.refunded': charge_refunded,
    'transfer.created': transfer_created,
    'transfer.paid': transfer_created,
    'transfer.reversed': transfer_reversed,
    'transfer.failed': transfer_reversed,
}


def handle_event(event):
    """Apply a verified event. Returns False for event types we do not track."""
    handler = HANDLERS.get(event.get('type'))
    if handler is None:
        logger.info(f"Ignoring Stripe event {event.get('type')}")
        return False
    logger.info(f"Handling Stripe event {event.get('id')} ({event['type']})")
    handler(event['data']['object'])
    return True
