"""
Job lifecycle and escrow state machine.

    OPEN -> ASSIGNED -> IN_PROGRESS -> COMPLETED_BY_HUSTLER
         -> AWAITING_CUSTOMER_CONFIRM -> PAID
    OPEN | ASSIGNED -> CANCELLED

Every transition goes through JobLifecycleEngine. Status changes are
conditional updates (`filter(status__in=...).update(...)`) inside a
transaction, so two racing callers can never both apply the same edge.
Money-moving gateway calls use idempotency keys derived from the operation
and the resource, so retries and overlapping sweeps collapse into a single
effect at the provider.
"""
import logging
from datetime import timedelta
from decimal import Decimal
from functools import partial
from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from core.constants import (
    JOB_OPEN, JOB_ASSIGNED, JOB_IN_PROGRESS, JOB_COMPLETED_BY_HUSTLER,
    JOB_AWAITING_CUSTOMER_CONFIRM, JOB_PAID, JOB_CANCELLED,
    AWAITING_RELEASE_STATUSES, ASSIGNED_OR_LATER_STATUSES,
    PAY_TYPE_FLAT, PAY_TYPE_HOURLY, OFFER_PENDING, OFFER_ACCEPTED, OFFER_DECLINED,
    PAYMENT_PREAUTHORIZED, PAYMENT_CAPTURED, PAYMENT_REFUNDED, PAYMENT_VOIDED,
    PAYOUT_PENDING, PAYOUT_PROCESSING, PAYOUT_COMPLETED, PAYOUT_FAILED,
    CODE_START, CODE_COMPLETION, DISPUTE_OPEN, DISPUTE_RESOLVED, DISPUTE_REASON_CHOICES,
    AUDIT_REFUND, AUDIT_VOID,
)
from core.exceptions import (
    ValidationError, NotFoundError, ForbiddenError, ConflictError,
    PaymentGatewayError, InvariantViolation, HustlError,
)
from apps.management.models import AuditLog
from apps.messaging.models import Thread
from apps.notifications.dispatcher import notify
from apps.payments.fees import calculate_fees, round2, to_cents, to_decimal
from apps.payments.gateway import get_gateway, idempotency_key
from apps.payments.models import Payment, Payout, Tip
from apps.jobs import verification
from apps.jobs.models import Job, Offer, JobDispute, JobVerification

logger = logging.getLogger(__name__)

MAX_TIP_PERCENT = Decimal('25')
MAX_TIP_AMOUNT = Decimal('50.00')
EARLIEST_COMPLETION = timedelta(hours=24)
STALE_PAYOUT_AFTER = timedelta(hours=1)
STALE_CAPTURE_AFTER = timedelta(minutes=15)


def _owed_payouts(stale_before):
    """Payouts still owed to a hustler, including transfers stuck in PROCESSING."""
    return Q(status__in=[PAYOUT_PENDING, PAYOUT_FAILED]) | Q(status=PAYOUT_PROCESSING, updated_at__lte=stale_before)


class JobLifecycleEngine:

    def __init__(self, gateway=None, notifier=None, payment_mode=None, require_payout_account=None):
        self.payment_mode = payment_mode or settings.PAYMENT_MODE
        self.gateway = gateway or get_gateway(self.payment_mode)
        self.notifier = notifier or notify
        if require_payout_account is None:
            require_payout_account = settings.REQUIRE_PAYOUT_ACCOUNT
        self.require_payout_account = require_payout_account

    # ------------------------------------------------------------------
    # helpers

    def _get_job(self, job_id, for_update=False):
        queryset = Job.objects.select_related('customer', 'hustler')
        if for_update:
            queryset = queryset.select_for_update()
        try:
            return queryset.get(pk=job_id)
        except Job.DoesNotExist:
            raise NotFoundError(f"Job {job_id} not found", code='JOB_NOT_FOUND', field='job_id')

    def _get_offer(self, offer_id):
        try:
            return Offer.objects.select_related('job', 'job__customer', 'hustler').get(pk=offer_id)
        except Offer.DoesNotExist:
            raise NotFoundError(f"Offer {offer_id} not found", code='OFFER_NOT_FOUND', field='offer_id')

    def _get_payment(self, job):
        payment = Payment.objects.filter(job=job).first()
        if payment is None:
            raise InvariantViolation(
                f"Job {job.pk} is {job.status} but has no payment",
                code='PAYMENT_MISSING', details={'job_id': job.pk, 'status': job.status}
            )
        return payment

    def _require_owner(self, actor, job):
        if not actor.can_act_as_customer or job.customer_id != actor.actor_id:
            raise ForbiddenError("Only the customer who posted this job can do that", code='NOT_JOB_OWNER')

    def _require_assigned_hustler(self, actor, job):
        if not actor.can_act_as_hustler or job.hustler_id is None or job.hustler_id != actor.actor_id:
            raise ForbiddenError("Only the hustler assigned to this job can do that", code='NOT_ASSIGNED_HUSTLER')

    def _transition(self, job, from_statuses, to_status, unless_disputed=False, **fields):
        """
        Atomically move a job between statuses. False when the job was no
        longer in from_statuses, or had an open dispute when unless_disputed.
        """
        now = timezone.now()
        queryset = Job.objects.filter(pk=job.pk, status__in=from_statuses)
        if unless_disputed:
            queryset = queryset.exclude(disputes__status=DISPUTE_OPEN)
        updated = queryset.update(status=to_status, updated_at=now, **fields)
        if updated:
            job.status = to_status
            job.updated_at = now
            for name, value in fields.items():
                setattr(job, name, value)
            logger.info(f"Job {job.pk} -> {to_status}")
        return bool(updated)

    def _notify(self, event_type, recipient, **context):
        if recipient is None:
            return
        transaction.on_commit(partial(self.notifier, event_type, recipient, **context))

    # ------------------------------------------------------------------
    # jobs

    def create_job(self, actor, data):
        if not actor.can_act_as_customer:
            raise ForbiddenError("Enable the customer role to post jobs", code='NOT_A_CUSTOMER')

        zip_code = str(data.get('zip_code') or '').strip()
        prefixes = settings.SERVICE_AREA_ZIP_PREFIXES
        if prefixes and not any(zip_code.startswith(prefix) for prefix in prefixes):
            raise ValidationError("This location is outside our service area", code='OUTSIDE_SERVICE_AREA', field='zip_code')
        if data['end_time'] <= data['start_time']:
            raise ValidationError("End time must be after start time", code='INVALID_SCHEDULE', field='end_time')

        pay_type = data.get('pay_type') or PAY_TYPE_FLAT
        fields = {
            'customer_id': actor.actor_id,
            'title': data['title'],
            'category': data['category'],
            'description': data.get('description', ''),
            'address': data['address'],
            'zip_code': zip_code,
            'latitude': data.get('latitude'),
            'longitude': data.get('longitude'),
            'scheduled_date': data.get('scheduled_date') or timezone.localdate(data['start_time']),
            'start_time': data['start_time'],
            'end_time': data['end_time'],
            'pay_type': pay_type,
        }
        if pay_type == PAY_TYPE_HOURLY:
            rate = to_decimal(data.get('hourly_rate'), field='hourly_rate')
            hours = to_decimal(data.get('estimated_hours'), field='estimated_hours')
            if rate <= 0 or hours <= 0:
                raise ValidationError(
                    "Hourly jobs need a positive hourly rate and estimated hours", code='INVALID_HOURLY_TERMS',
                    field='hourly_rate' if rate <= 0 else 'estimated_hours'
                )
            fields.update(hourly_rate=round2(rate), estimated_hours=hours, amount=round2(rate * hours))
        else:
            amount = to_decimal(data.get('amount'), field='amount')
            if amount <= 0:
                raise ValidationError("Job amount must be greater than zero", code='INVALID_AMOUNT', field='amount')
            fields['amount'] = round2(amount)

        job = Job.objects.create(**fields)
        logger.info(f"Customer {actor.actor_id} created job {job.pk} ({pay_type}, ${job.amount})")
        return job

    def delete_job(self, actor, job_id):
        with transaction.atomic():
            job = self._get_job(job_id, for_update=True)
            self._require_owner(actor, job)
            if job.status != JOB_OPEN:
                raise ConflictError("Only open jobs can be deleted", code='JOB_NOT_OPEN')
            if job.offers.exists():
                raise ConflictError("Jobs with offers cannot be deleted, cancel instead", code='JOB_HAS_OFFERS')
            job.delete()
        logger.info(f"Customer {actor.actor_id} deleted job {job_id}")

    # ------------------------------------------------------------------
    # offers

    def create_offer(self, actor, job_id, note='', proposed_amount=None):
        if not actor.can_act_as_hustler:
            raise ForbiddenError("Enable the hustler role to make offers", code='NOT_A_HUSTLER')
        if proposed_amount is not None:
            proposed_amount = round2(to_decimal(proposed_amount, field='proposed_amount'))

        with transaction.atomic():
            job = self._get_job(job_id, for_update=True)
            if job.customer_id == actor.actor_id:
                raise ForbiddenError("You cannot make an offer on your own job", code='OWN_JOB')
            if job.status != JOB_OPEN:
                raise ConflictError("This job is no longer accepting offers", code='JOB_NOT_OPEN')
            if Offer.objects.filter(job=job, hustler_id=actor.actor_id, status=OFFER_PENDING).exists():
                raise ConflictError("You already have a pending offer on this job", code='DUPLICATE_OFFER')
            try:
                with transaction.atomic():
                    offer = Offer.objects.create(
                        job=job, hustler_id=actor.actor_id, note=note or '', proposed_amount=proposed_amount
                    )
            except IntegrityError:
                raise ConflictError("You already have a pending offer on this job", code='DUPLICATE_OFFER')
            Thread.objects.get_or_create(
                job=job, defaults={'customer_id': job.customer_id, 'hustler_id': actor.actor_id}
            )
            self._notify('offer_received', job.customer, job_title=job.title, hustler_name=offer.hustler.username)
        logger.info(f"Hustler {actor.actor_id} made offer {offer.pk} on job {job.pk}")
        return offer

    def decline_offer(self, actor, offer_id):
        offer = self._get_offer(offer_id)
        self._require_owner(actor, offer.job)
        now = timezone.now()
        declined = Offer.objects.filter(pk=offer.pk, status=OFFER_PENDING).update(
            status=OFFER_DECLINED, responded_at=now
        )
        if not declined:
            raise ConflictError("This offer has already been answered", code='OFFER_NOT_PENDING')
        offer.status = OFFER_DECLINED
        offer.responded_at = now
        self._notify('offer_declined', offer.hustler, job_title=offer.job.title)
        return offer

    def _tip_for(self, job_amount, tip_percent):
        if tip_percent in (None, ''):
            return Decimal('0.00')
        percent = min(to_decimal(tip_percent, field='tip_percent'), MAX_TIP_PERCENT)
        return round2(min(job_amount * percent / 100, MAX_TIP_AMOUNT))

    def _authorization_terms(self, job):
        """Amount to hold for the job and, for hourly jobs, the hours it covers."""
        if job.pay_type != PAY_TYPE_HOURLY:
            return job.amount, None
        hours = round2(job.estimated_hours * settings.HOURLY_AUTHORIZATION_BUFFER)
        return round2(job.hourly_rate * hours), hours

    def accept_offer(self, actor, offer_id, tip_percent=None):
        offer = self._get_offer(offer_id)
        job = offer.job
        self._require_owner(actor, job)
        if offer.status != OFFER_PENDING:
            raise ConflictError("This offer has already been answered", code='OFFER_NOT_PENDING')
        if job.status != JOB_OPEN:
            raise ConflictError("This job is no longer open", code='JOB_NOT_OPEN')
        hustler = offer.hustler
        if self.require_payout_account and not hustler.payout_account_id:
            raise ConflictError(
                "This hustler has not set up payouts yet", code='PAYEE_NOT_ONBOARDED', details={'hustler_id': hustler.pk}
            )
        active_jobs = Job.objects.filter(hustler=hustler, status__in=[JOB_ASSIGNED, JOB_IN_PROGRESS]).count()
        if active_jobs >= settings.MAX_ACTIVE_JOBS_PER_HUSTLER:
            raise ConflictError(
                "This hustler cannot take more jobs right now", code='HUSTLER_AT_CAPACITY',
                details={'max_active_jobs': settings.MAX_ACTIVE_JOBS_PER_HUSTLER}
            )

        authorized_amount, authorized_hours = self._authorization_terms(job)
        tip = self._tip_for(job.amount, tip_percent)
        fees = calculate_fees(authorized_amount, tip_amount=tip)
        total = fees['total'] + tip

        # Gateway first: a failure here leaves nothing persisted and the offer pending
        hold = self.gateway.preauthorize(
            to_cents(total),
            idempotency_key('preauthorize', 'offer', offer.pk),
            metadata={'job_id': str(job.pk), 'offer_id': str(offer.pk), 'customer_id': str(job.customer_id)},
        )

        try:
            with transaction.atomic():
                now = timezone.now()
                if not self._transition(job, [JOB_OPEN], JOB_ASSIGNED, hustler_id=hustler.pk,
                                        authorized_hours=authorized_hours):
                    raise ConflictError("This job is no longer open", code='JOB_NOT_OPEN')
                accepted = Offer.objects.filter(pk=offer.pk, status=OFFER_PENDING).update(
                    status=OFFER_ACCEPTED, responded_at=now
                )
                if not accepted:
                    raise ConflictError("This offer has already been answered", code='OFFER_NOT_PENDING')
                siblings = Offer.objects.filter(job=job, status=OFFER_PENDING).exclude(pk=offer.pk)
                declined = list(siblings.select_related('hustler'))
                siblings.update(status=OFFER_DECLINED, responded_at=now)
                payment = Payment.objects.create(
                    job=job,
                    customer_id=job.customer_id,
                    hustler_id=hustler.pk,
                    amount=fees['job_amount'],
                    tip=tip,
                    fee_customer=fees['customer_fee'],
                    total=total,
                    provider_id=hold['intent_id'],
                )
                verification.issue_code(job, CODE_START)
                Thread.objects.update_or_create(
                    job=job, defaults={'customer_id': job.customer_id, 'hustler_id': hustler.pk}
                )
                self._notify('offer_accepted', hustler, job_title=job.title, start_time=job.start_time)
                for sibling in declined:
                    self._notify('offer_declined', sibling.hustler, job_title=job.title)
        except ConflictError:
            self._release_orphan_hold(hold, offer)
            raise

        offer.status = OFFER_ACCEPTED
        offer.responded_at = now
        logger.info(f"Offer {offer.pk} accepted: job {job.pk} assigned to {hustler.pk}, payment {payment.pk} held ${total}")
        return job, payment

    def _release_orphan_hold(self, hold, offer):
        # Another request attached this intent (same offer, same key): it is not ours to void
        if Payment.objects.filter(provider_id=hold['intent_id']).exists():
            return
        try:
            self.gateway.void(hold['intent_id'], idempotency_key('void', 'offer', offer.pk))
            logger.info(f"Voided hold {hold['intent_id']} after losing the race for offer {offer.pk}")
        except PaymentGatewayError as e:
            logger.error(f"Could not void orphaned hold {hold['intent_id']} for offer {offer.pk}: {e.message}")

    # ------------------------------------------------------------------
    # verification handshake

    def get_codes(self, actor, job_id):
        job = self._get_job(job_id)
        codes = {}
        if actor.can_act_as_customer and job.customer_id == actor.actor_id:
            start = verification.get_verification(job, CODE_START)
            if start is not None:
                codes['start_code'] = {'code': start.code, 'used': start.is_used, 'generated_at': start.generated_at}
        elif actor.can_act_as_hustler and job.hustler_id == actor.actor_id:
            completion = verification.get_verification(job, CODE_COMPLETION)
            if completion is not None:
                codes['completion_code'] = {
                    'code': completion.code, 'used': completion.is_used, 'generated_at': completion.generated_at
                }
        else:
            raise ForbiddenError("Only participants can view job codes", code='NOT_PARTICIPANT')
        return codes

    def regenerate_start_code(self, actor, job_id):
        job = self._get_job(job_id)
        self._require_owner(actor, job)
        if job.status != JOB_ASSIGNED:
            raise ConflictError("Start codes can only be regenerated before the job starts", code='JOB_NOT_ASSIGNED')
        code = verification.regenerate_code(job, CODE_START)
        logger.info(f"Start code regenerated for job {job.pk}")
        return code

    def start_job(self, actor, job_id, code):
        job = self._get_job(job_id)
        self._require_assigned_hustler(actor, job)
        start = verification.check_code(job, CODE_START, code)
        if job.status != JOB_ASSIGNED:
            raise ConflictError("Only assigned jobs can be started", code='JOB_NOT_ASSIGNED')
        busy = Job.objects.filter(hustler_id=actor.actor_id, status=JOB_IN_PROGRESS).exclude(pk=job.pk).exists()
        if busy:
            raise ConflictError("Finish your job in progress before starting another", code='HUSTLER_BUSY')

        with transaction.atomic():
            now = timezone.now()
            if not verification.consume_code(start, now):
                raise ConflictError("This start code has already been used", code='CODE_ALREADY_USED', field='code')
            if not self._transition(job, [JOB_ASSIGNED], JOB_IN_PROGRESS, started_at=now):
                raise ConflictError("Only assigned jobs can be started", code='JOB_NOT_ASSIGNED')
            self._notify('job_started', job.customer, job_title=job.title)
        return job

    def _resolve_actual_hours(self, job, actual_hours, now):
        if job.pay_type != PAY_TYPE_HOURLY:
            return None
        if actual_hours not in (None, ''):
            hours = to_decimal(actual_hours, field='actual_hours')
            if hours <= 0:
                raise ValidationError("Actual hours must be greater than zero", code='INVALID_HOURS', field='actual_hours')
            return round2(hours)
        if job.started_at:
            elapsed = Decimal((now - job.started_at).total_seconds()) / Decimal(3600)
            return max(round2(elapsed), Decimal('0.01'))
        return job.estimated_hours

    def complete_job(self, actor, job_id, actual_hours=None):
        job = self._get_job(job_id)
        self._require_assigned_hustler(actor, job)
        if job.status not in (JOB_ASSIGNED, JOB_IN_PROGRESS):
            raise ConflictError("Only assigned or in-progress jobs can be completed", code='JOB_NOT_ACTIVE')
        now = timezone.now()
        if now < job.start_time - EARLIEST_COMPLETION:
            raise ConflictError("This job cannot be completed this far ahead of its start time", code='TOO_EARLY_TO_COMPLETE')
        hours = self._resolve_actual_hours(job, actual_hours, now)

        with transaction.atomic():
            if not self._transition(job, [JOB_ASSIGNED, JOB_IN_PROGRESS], JOB_COMPLETED_BY_HUSTLER,
                                    completed_at=now, actual_hours=hours):
                raise ConflictError("Only assigned or in-progress jobs can be completed", code='JOB_NOT_ACTIVE')
            completion = verification.issue_code(job, CODE_COMPLETION)
            transaction.on_commit(partial(self._announce_completion, job, completion.code))
        logger.info(f"Job {job.pk} completed by hustler {actor.actor_id}")
        return job, completion

    def _announce_completion(self, job, code):
        self.notifier(
            'job_completed', job.customer,
            job_title=job.title, code=code, auto_release_hours=settings.AUTO_RELEASE_HOURS,
        )
        self._transition(job, [JOB_COMPLETED_BY_HUSTLER], JOB_AWAITING_CUSTOMER_CONFIRM)

    # ------------------------------------------------------------------
    # release

    def confirm_completion(self, actor, job_id, code):
        job = self._get_job(job_id)
        self._require_owner(actor, job)
        if job.status == JOB_PAID:
            return job
        verification.check_code(job, CODE_COMPLETION, code)
        if job.status not in AWAITING_RELEASE_STATUSES:
            raise ConflictError("This job is not awaiting confirmation", code='JOB_NOT_AWAITING_CONFIRMATION')
        job, _ = self._release(job, actor_id=actor.actor_id)
        return job

    def regenerate_completion_code(self, actor, job_id):
        job = self._get_job(job_id)
        self._require_owner(actor, job)
        if job.status not in AWAITING_RELEASE_STATUSES:
            raise ConflictError("This job is not awaiting confirmation", code='JOB_NOT_AWAITING_CONFIRMATION')
        code = verification.regenerate_code(job, CODE_COMPLETION)
        logger.info(f"Completion code regenerated for job {job.pk}")
        return code

    def _capture_terms(self, job, payment):
        """Job amount to capture: the authorized amount, or hours actually worked for hourly jobs."""
        if job.pay_type != PAY_TYPE_HOURLY or not job.authorized_hours:
            return payment.amount
        worked = job.actual_hours if job.actual_hours is not None else job.authorized_hours
        hours = min(worked, job.authorized_hours)
        return min(round2(hours * job.hourly_rate), payment.amount)

    def _release(self, job, actor_id=None, hold_for_disputes=False):
        """
        Capture the held funds, mark the job PAID and pay the hustler.
        Returns (job, released) where released is False when another caller
        is releasing or has released this job, or when the sweep found an
        issue opened while it was capturing.
        """
        payment = self._get_payment(job)
        if payment.status == PAYMENT_REFUNDED:
            job.refresh_from_db()
            return job, False
        if payment.status not in (PAYMENT_PREAUTHORIZED, PAYMENT_CAPTURED):
            raise ConflictError(f"Payment is {payment.status} and cannot be captured", code='PAYMENT_NOT_CAPTURABLE')

        job_amount = self._capture_terms(job, payment)
        fees = calculate_fees(job_amount, tip_amount=payment.tip)
        capture_total = fees['total'] + payment.tip

        if payment.status == PAYMENT_PREAUTHORIZED:
            result = self._capture(job, payment, capture_total)
            if result is None:
                job.refresh_from_db()
                return job, False
            now = timezone.now()
            recorded = Payment.objects.filter(
                pk=payment.pk, status__in=[PAYMENT_PREAUTHORIZED, PAYMENT_CAPTURED]
            ).update(
                status=PAYMENT_CAPTURED,
                captured_at=now,
                captured_amount=capture_total,
                receipt_url=result.get('receipt_url') or '',
                capture_started_at=None,
                updated_at=now,
            )
            if not recorded:
                job.refresh_from_db()
                return job, False
            logger.info(f"Captured ${capture_total} for job {job.pk} (actor={actor_id or 'system'})")
        return self._settle(job, payment, fees, hold_for_disputes)

    def _claim_capture(self, payment):
        """Reserve the capture of a held payment. Claims left behind by a crashed caller expire."""
        now = timezone.now()
        claimed = Payment.objects.filter(pk=payment.pk, status=PAYMENT_PREAUTHORIZED).filter(
            Q(capture_started_at__isnull=True) | Q(capture_started_at__lte=now - STALE_CAPTURE_AFTER)
        ).update(capture_started_at=now)
        return bool(claimed)

    def _capture(self, job, payment, capture_total):
        """
        Capture the hold at the provider. Returns the provider result, or
        None when another caller already holds the capture claim.
        """
        if not self._claim_capture(payment):
            logger.info(f"Payment {payment.pk} for job {job.pk} is already being captured by another request")
            return None
        try:
            return self.gateway.capture(
                payment.provider_id, to_cents(capture_total), idempotency_key('capture', 'payment', payment.pk)
            )
        except PaymentGatewayError as e:
            # The provider may have captured before the error reached us
            try:
                intent = self.gateway.retrieve(payment.provider_id)
            except PaymentGatewayError:
                logger.error(f"Capture of payment {payment.pk} failed and its intent could not be checked: {e.message}")
                raise e
            if intent['status'] == 'succeeded':
                logger.warning(f"Capture call for payment {payment.pk} failed but the provider shows it captured")
                return {'status': intent['status'], 'amount_received': intent['amount_received'], 'receipt_url': None}
            Payment.objects.filter(pk=payment.pk).update(capture_started_at=None)
            raise

    def _settle(self, job, payment, fees, hold_for_disputes):
        """Mark a captured job PAID, record the payout and transfer it."""
        now = timezone.now()
        with transaction.atomic():
            settled = self._transition(
                job, AWAITING_RELEASE_STATUSES, JOB_PAID, unless_disputed=hold_for_disputes, paid_at=now
            )
            if settled:
                Payment.objects.filter(pk=payment.pk).update(fee_hustler=fees['platform_fee'])
                JobVerification.objects.filter(job=job, kind=CODE_COMPLETION, used_at__isnull=True).update(used_at=now)
                payout, _ = Payout.objects.update_or_create(
                    job=job,
                    defaults={
                        'hustler_id': job.hustler_id,
                        'amount': fees['job_amount'] + payment.tip,
                        'platform_fee': fees['platform_fee'],
                        'net_amount': fees['hustler_payout'] + payment.tip,
                        'status': PAYOUT_PENDING,
                    }
                )
                self._notify('payment_released', job.hustler, job_title=job.title, amount=payout.net_amount)

        if not settled:
            job.refresh_from_db()
            if job.status == JOB_PAID:
                return job, False
            if hold_for_disputes and job.status in AWAITING_RELEASE_STATUSES and job.has_active_dispute:
                self._flag_for_reconciliation(payment, f"Captured while an issue was open on job {job.pk}, payout held")
                return job, False
            raise InvariantViolation(
                f"Captured payment {payment.pk} but job {job.pk} was not awaiting release",
                code='CAPTURE_STATE_MISMATCH', details={'job_id': job.pk, 'payment_id': payment.pk}
            )
        self._transfer_payout(payout)
        return job, True

    def _send_transfer(self, record, amount, key, metadata):
        """
        Transfer a Payout or Tip to the hustler's account. The record is
        claimed first, so overlapping sweeps send it once; failures are
        recorded and retried by the sweep.
        """
        model = type(record)
        label = f"{model.__name__.lower()} {record.pk}"
        destination = record.hustler.payout_account_id
        if not destination:
            logger.info(f"{label.capitalize()} left pending: hustler {record.hustler_id} has no payout account")
            return record
        stale = timezone.now() - STALE_PAYOUT_AFTER
        claimed = model.objects.filter(pk=record.pk).filter(
            _owed_payouts(stale)
        ).update(status=PAYOUT_PROCESSING, updated_at=timezone.now())
        if not claimed:
            return record
        try:
            result = self.gateway.transfer(destination, to_cents(amount), key, metadata=metadata)
        except PaymentGatewayError as e:
            logger.error(f"Transfer for {label} (job {record.job_id}) failed: {e.message}")
            model.objects.filter(pk=record.pk).update(
                status=PAYOUT_FAILED, failure_reason=e.message, updated_at=timezone.now()
            )
            record.refresh_from_db()
            return record
        model.objects.filter(pk=record.pk).update(
            status=PAYOUT_COMPLETED, provider_id=result['transfer_id'], failure_reason='', updated_at=timezone.now()
        )
        record.refresh_from_db()
        logger.info(f"{label.capitalize()} transferred as {result['transfer_id']}")
        return record

    def _transfer_payout(self, payout):
        return self._send_transfer(
            payout, payout.net_amount, idempotency_key('transfer', 'job', payout.job_id),
            metadata={'job_id': str(payout.job_id), 'payout_id': str(payout.pk)},
        )

    def _transfer_tip(self, tip):
        return self._send_transfer(
            tip, tip.amount, idempotency_key('transfer', 'tip', tip.pk),
            metadata={'job_id': str(tip.job_id), 'tip_id': str(tip.pk)},
        )

    def auto_release(self, now=None):
        """
        Release payment for jobs whose customer has not confirmed within
        AUTO_RELEASE_HOURS of completion, skipping jobs with an open
        dispute. Safe to run concurrently with itself and with confirm.
        """
        now = now or timezone.now()
        deadline = now - timedelta(hours=settings.AUTO_RELEASE_HOURS)
        candidates = list(
            Job.objects.filter(status__in=AWAITING_RELEASE_STATUSES, completed_at__lte=deadline)
            .exclude(disputes__status=DISPUTE_OPEN)
            .exclude(payment__status=PAYMENT_REFUNDED)
            .values_list('pk', flat=True)
        )
        summary = {'candidates': len(candidates), 'released': 0, 'skipped': 0, 'failed': 0, 'payouts_retried': 0}
        for job_id in candidates:
            job = Job.objects.select_related('customer', 'hustler').get(pk=job_id)
            if job.has_active_dispute:
                summary['skipped'] += 1
                continue
            try:
                _, released = self._release(job, hold_for_disputes=True)
            except HustlError as e:
                logger.error(f"Auto-release failed for job {job_id}: {e.message}")
                summary['failed'] += 1
                continue
            summary['released' if released else 'skipped'] += 1
        summary['payouts_retried'] = self.retry_payouts(now)
        logger.info(f"Auto-release sweep: {summary}")
        return summary

    def retry_payouts(self, now=None):
        """Retry transfers still owed for payouts and captured tips. Returns how many went through."""
        now = now or timezone.now()
        owed = _owed_payouts(now - STALE_PAYOUT_AFTER) & Q(provider_id='')
        retried = 0
        payouts = Payout.objects.select_related('hustler__hustler_profile').filter(owed).exclude(
            hustler__hustler_profile__payout_account_id=''
        )
        for payout in payouts:
            if self._transfer_payout(payout).status == PAYOUT_COMPLETED:
                retried += 1
        tips = Tip.objects.select_related('hustler__hustler_profile').filter(owed, captured_at__isnull=False).exclude(
            hustler__hustler_profile__payout_account_id=''
        )
        for tip in tips:
            if self._transfer_tip(tip).status == PAYOUT_COMPLETED:
                retried += 1
        return retried

    # ------------------------------------------------------------------
    # tips after completion

    def _added_tip_amount(self, job_amount, tip_amount, tip_percent):
        if tip_percent not in (None, ''):
            amount = self._tip_for(job_amount, tip_percent)
        elif tip_amount not in (None, ''):
            amount = round2(min(to_decimal(tip_amount, field='tip_amount'), MAX_TIP_AMOUNT))
        else:
            raise ValidationError("Give a tip amount or a tip percentage", code='TIP_REQUIRED', field='tip_amount')
        if amount <= 0:
            raise ValidationError("Tip must be greater than zero", code='INVALID_TIP', field='tip_amount')
        return amount

    def add_tip(self, actor, job_id, tip_amount=None, tip_percent=None):
        """
        Charge a tip on a paid job and pass it to the hustler in full. A job
        takes one tip, either at acceptance or here.
        """
        job = self._get_job(job_id)
        self._require_owner(actor, job)
        if job.status != JOB_PAID:
            raise ConflictError("Tips can be added once the job is paid", code='JOB_NOT_PAID')
        payment = self._get_payment(job)
        if payment.tip > 0 or Tip.objects.filter(job=job).exists():
            raise ConflictError("A tip has already been added for this job", code='TIP_ALREADY_ADDED')
        if not job.hustler.payout_account_id:
            raise ConflictError(
                "This hustler has not set up payouts yet", code='PAYEE_NOT_ONBOARDED', details={'hustler_id': job.hustler_id}
            )
        amount = self._added_tip_amount(job.amount, tip_amount, tip_percent)

        try:
            with transaction.atomic():
                tip = Tip.objects.create(job=job, customer_id=job.customer_id, hustler_id=job.hustler_id, amount=amount)
        except IntegrityError:
            raise ConflictError("A tip has already been added for this job", code='TIP_ALREADY_ADDED')

        # A failed charge removes the tip row so the customer can try again under fresh keys
        try:
            hold = self.gateway.preauthorize(
                to_cents(amount), idempotency_key('preauthorize', 'tip', tip.pk),
                metadata={'job_id': str(job.pk), 'tip_id': str(tip.pk), 'customer_id': str(job.customer_id)},
            )
        except PaymentGatewayError:
            tip.delete()
            raise
        try:
            self.gateway.capture(hold['intent_id'], to_cents(amount), idempotency_key('capture', 'tip', tip.pk))
        except PaymentGatewayError:
            try:
                self.gateway.void(hold['intent_id'], idempotency_key('void', 'tip', tip.pk))
            except PaymentGatewayError as e:
                logger.error(f"Could not void tip hold {hold['intent_id']} for job {job.pk}: {e.message}")
            tip.delete()
            raise

        now = timezone.now()
        Tip.objects.filter(pk=tip.pk).update(charge_id=hold['intent_id'], captured_at=now, updated_at=now)
        tip.refresh_from_db()
        self._notify('tip_received', job.hustler, job_title=job.title, amount=amount)
        logger.info(f"Customer {actor.actor_id} tipped ${amount} on job {job.pk}")
        return self._transfer_tip(tip)

    # ------------------------------------------------------------------
    # cancellation and refunds

    def cancel_job(self, actor, job_id, reason=''):
        job = self._get_job(job_id)
        self._require_owner(actor, job)
        if job.status not in (JOB_OPEN, JOB_ASSIGNED):
            raise ConflictError(f"A job that is {job.status} cannot be cancelled", code='JOB_NOT_CANCELLABLE')
        now = timezone.now()
        if job.status == JOB_ASSIGNED:
            if timezone.localdate(now) > job.scheduled_date:
                raise ConflictError("This job's date has passed", code='JOB_DATE_PASSED')
            if now >= job.start_time - timedelta(hours=settings.CANCEL_CUTOFF_HOURS):
                raise ConflictError(
                    f"Jobs cannot be cancelled within {settings.CANCEL_CUTOFF_HOURS} hours of the start time",
                    code='CANCEL_WINDOW_CLOSED'
                )

        with transaction.atomic():
            if not self._transition(job, [job.status], JOB_CANCELLED, cancelled_at=now, cancellation_reason=reason or ''):
                raise ConflictError("This job changed while cancelling, please retry", code='JOB_STATUS_CHANGED')
            pending = Offer.objects.filter(job=job, status=OFFER_PENDING)
            for offer in pending.select_related('hustler'):
                self._notify('offer_declined', offer.hustler, job_title=job.title)
            pending.update(status=OFFER_DECLINED, responded_at=now)
            self._notify('job_cancelled', job.hustler, job_title=job.title)

        payment = Payment.objects.filter(job=job).first()
        if payment is not None:
            self._unwind_payment(payment, actor.actor_id, reason or 'Job cancelled')
        logger.info(f"Job {job.pk} cancelled by customer {actor.actor_id}")
        return job

    def _flag_for_reconciliation(self, payment, note):
        logger.error(f"Payment {payment.pk} needs manual reconciliation: {note}")
        Payment.objects.filter(pk=payment.pk).update(needs_reconciliation=True, reconciliation_note=note)
        payment.needs_reconciliation = True
        payment.reconciliation_note = note

    def _unwind_payment(self, payment, actor_id, reason):
        """Void or refund a cancelled job's payment. The cancellation stands even if the gateway fails."""
        if payment.status == PAYMENT_PREAUTHORIZED:
            try:
                self._void(payment, actor_id, reason)
            except PaymentGatewayError as e:
                self._flag_for_reconciliation(payment, f"Void failed: {e.message}")
        elif payment.status == PAYMENT_CAPTURED:
            try:
                self._refund(payment, payment.captured_amount or payment.total, reason, actor_id)
            except PaymentGatewayError as e:
                self._flag_for_reconciliation(payment, f"Refund failed: {e.message}")
        return payment

    def _void(self, payment, actor_id, reason):
        self.gateway.void(payment.provider_id, idempotency_key('void', 'payment', payment.pk))
        now = timezone.now()
        with transaction.atomic():
            voided = Payment.objects.filter(pk=payment.pk, status=PAYMENT_PREAUTHORIZED).update(
                status=PAYMENT_VOIDED, voided_at=now, needs_reconciliation=False, updated_at=now
            )
            if voided:
                AuditLog.record(
                    AUDIT_VOID, payment, actor_id=actor_id,
                    job_id=payment.job_id, amount=str(payment.total), reason=reason,
                )
        payment.refresh_from_db()
        return payment

    def admin_void(self, actor, payment_id, reason=''):
        """Retry releasing the hold of a cancelled job whose void failed at cancellation."""
        if not actor.is_admin:
            raise ForbiddenError("Only administrators can void payments", code='NOT_ADMIN')
        try:
            payment = Payment.objects.select_related('job').get(pk=payment_id)
        except Payment.DoesNotExist:
            raise NotFoundError(f"Payment {payment_id} not found", code='PAYMENT_NOT_FOUND', field='payment_id')
        if payment.status != PAYMENT_PREAUTHORIZED:
            raise ConflictError(f"A {payment.status} payment cannot be voided", code='PAYMENT_NOT_VOIDABLE')
        if payment.job.status != JOB_CANCELLED:
            raise ConflictError("Only holds on cancelled jobs can be voided", code='JOB_NOT_CANCELLED')
        try:
            return self._void(payment, actor.actor_id, reason or 'Void retried after cancellation')
        except PaymentGatewayError as e:
            self._flag_for_reconciliation(payment, f"Void failed: {e.message}")
            raise

    def _refund(self, payment, amount, reason, actor_id):
        self.gateway.refund(
            payment.provider_id, to_cents(amount), idempotency_key('refund', 'payment', payment.pk)
        )
        now = timezone.now()
        with transaction.atomic():
            refunded = Payment.objects.filter(pk=payment.pk, status=PAYMENT_CAPTURED).update(
                status=PAYMENT_REFUNDED, refund_amount=amount, refund_reason=reason,
                refunded_at=now, updated_at=now,
            )
            if refunded:
                AuditLog.record(
                    AUDIT_REFUND, payment, actor_id=actor_id,
                    job_id=payment.job_id, amount=str(amount), reason=reason,
                )
                self._notify('refund_issued', payment.customer, job_title=payment.job.title, amount=amount)
        payment.refresh_from_db()
        return payment

    def admin_refund(self, actor, payment_id, amount=None, reason=''):
        if not actor.is_admin:
            raise ForbiddenError("Only administrators can issue refunds", code='NOT_ADMIN')
        try:
            payment = Payment.objects.select_related('job', 'customer').get(pk=payment_id)
        except Payment.DoesNotExist:
            raise NotFoundError(f"Payment {payment_id} not found", code='PAYMENT_NOT_FOUND', field='payment_id')
        if payment.status != PAYMENT_CAPTURED:
            raise ConflictError(f"A {payment.status} payment cannot be refunded", code='PAYMENT_NOT_REFUNDABLE')
        captured = payment.captured_amount or payment.total
        amount = captured if amount in (None, '') else round2(to_decimal(amount, field='amount'))
        if amount <= 0 or amount > captured:
            raise ValidationError(f"Refund amount must be between 0.01 and {captured}", code='INVALID_AMOUNT', field='amount')
        if not reason:
            raise ValidationError("A refund reason is required", code='REASON_REQUIRED', field='reason')
        return self._refund(payment, amount, reason, actor.actor_id)

    # ------------------------------------------------------------------
    # disputes

    def report_issue(self, actor, job_id, reason, description):
        valid_reasons = [choice[0] for choice in DISPUTE_REASON_CHOICES]
        if reason not in valid_reasons:
            raise ValidationError(f"Reason must be one of {', '.join(valid_reasons)}", code='INVALID_REASON', field='reason')
        if not description:
            raise ValidationError("Please describe the issue", code='DESCRIPTION_REQUIRED', field='description')

        with transaction.atomic():
            job = self._get_job(job_id, for_update=True)
            if not job.is_participant(actor.actor_id):
                raise ForbiddenError("Only the customer or assigned hustler can report an issue", code='NOT_PARTICIPANT')
            if job.status not in ASSIGNED_OR_LATER_STATUSES:
                raise ConflictError("Issues can only be reported on assigned jobs", code='JOB_NOT_ASSIGNED')
            if job.disputes.filter(status=DISPUTE_OPEN).exists():
                raise ConflictError("An issue is already open for this job", code='DISPUTE_OPEN')
            dispute = JobDispute.objects.create(
                job=job, reported_by_id=actor.actor_id, reason=reason, description=description
            )
            other = job.hustler if actor.actor_id == job.customer_id else job.customer
            self._notify('issue_reported', other, job_title=job.title)
        logger.warning(f"Issue reported on job {job.pk} by user {actor.actor_id}: {reason}")
        return dispute

    def resolve_dispute(self, actor, dispute_id, resolution):
        if not actor.is_admin:
            raise ForbiddenError("Only administrators can resolve disputes", code='NOT_ADMIN')
        if not resolution:
            raise ValidationError("Resolution text is required", code='RESOLUTION_REQUIRED', field='resolution')
        try:
            dispute = JobDispute.objects.select_related('job', 'job__customer', 'job__hustler').get(pk=dispute_id)
        except JobDispute.DoesNotExist:
            raise NotFoundError(f"Dispute {dispute_id} not found", code='DISPUTE_NOT_FOUND', field='dispute_id')
        now = timezone.now()
        with transaction.atomic():
            resolved = JobDispute.objects.filter(pk=dispute.pk, status=DISPUTE_OPEN).update(
                status=DISPUTE_RESOLVED, resolution=resolution, resolved_by_id=actor.actor_id, resolved_at=now
            )
            if not resolved:
                raise ConflictError("This dispute has already been resolved", code='DISPUTE_RESOLVED')
            for party in (dispute.job.customer, dispute.job.hustler):
                self._notify('dispute_resolved', party, job_title=dispute.job.title, resolution=resolution)
        dispute.refresh_from_db()
        return dispute

    # ------------------------------------------------------------------
    # housekeeping

    def expire_stale_jobs(self, now=None):
        """Cancel OPEN jobs nobody was assigned to within STALE_JOB_HOURS."""
        now = now or timezone.now()
        cutoff = now - timedelta(hours=settings.STALE_JOB_HOURS)
        expired = 0
        for job in Job.objects.filter(status=JOB_OPEN, created_at__lte=cutoff):
            with transaction.atomic():
                if self._transition(job, [JOB_OPEN], JOB_CANCELLED, cancelled_at=now,
                                    cancellation_reason='Expired without an accepted offer'):
                    Offer.objects.filter(job=job, status=OFFER_PENDING).update(
                        status=OFFER_DECLINED, responded_at=now
                    )
                    expired += 1
        logger.info(f"Expired {expired} stale open jobs")
        return expired


def get_engine():
    return JobLifecycleEngine()
