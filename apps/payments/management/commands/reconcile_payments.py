import logging
from django.core.management.base import BaseCommand
from core.constants import PAYMENT_PREAUTHORIZED, PAYMENT_CAPTURED, PAYMENT_REFUNDED, PAYMENT_VOIDED
from core.exceptions import PaymentGatewayError
from apps.payments.gateway import get_gateway
from apps.payments.models import Payment

logger = logging.getLogger(__name__)

# Intent statuses the provider reports for each local payment status
EXPECTED_INTENT_STATUS = {
    PAYMENT_PREAUTHORIZED: {'requires_capture'},
    PAYMENT_CAPTURED: {'succeeded'},
    PAYMENT_REFUNDED: {'succeeded'},
    PAYMENT_VOIDED: {'canceled'},
}


class Command(BaseCommand):
    help = "Compare local payment status with the gateway and list mismatches. Read-only."

    def add_arguments(self, parser):
        parser.add_argument('--status', help="Only check payments in this local status")
        parser.add_argument('--limit', type=int, default=500)

    def handle(self, *args, **options):
        gateway = get_gateway()
        payments = Payment.objects.order_by('-updated_at')
        if options['status']:
            payments = payments.filter(status=options['status'].upper())

        mismatches = 0
        for payment in payments[:options['limit']]:
            try:
                intent = gateway.retrieve(payment.provider_id)
            except PaymentGatewayError as e:
                mismatches += 1
                self.stdout.write(f"payment {payment.pk} (job {payment.job_id}): lookup failed: {e.message}")
                continue
            if intent['status'] not in EXPECTED_INTENT_STATUS.get(payment.status, set()):
                mismatches += 1
                self.stdout.write(
                    f"payment {payment.pk} (job {payment.job_id}): local {payment.status}, gateway {intent['status']}"
                )

        flagged = Payment.objects.filter(needs_reconciliation=True)
        for payment in flagged:
            self.stdout.write(f"payment {payment.pk} (job {payment.job_id}) flagged: {payment.reconciliation_note}")

        summary = f"{mismatches} mismatches, {flagged.count()} flagged for manual reconciliation"
        if mismatches:
            logger.warning(f"Payment reconciliation: {summary}")
            self.stdout.write(self.style.WARNING(summary))
        else:
            self.stdout.write(self.style.SUCCESS(summary))
