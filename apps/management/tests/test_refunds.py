"""Tests for admin refunds, disputes and the audit log."""
from decimal import Decimal

import pytest
from rest_framework import status

from core.constants import JOB_PAID, PAYMENT_REFUNDED, PAYMENT_VOIDED, AUDIT_REFUND, AUDIT_VOID, CODE_START, CODE_COMPLETION
from core.exceptions import ForbiddenError, ConflictError, ValidationError, InvariantViolation
from core.utils import Actor
from apps.jobs.models import JobVerification
from apps.management.models import AuditLog
from apps.payments.models import Payment

as_actor = Actor.from_user


@pytest.fixture
def paid(engine, make_job, assign, customer, hustler):
    job, payment = assign(make_job(customer), hustler)
    engine.start_job(as_actor(hustler), job.pk, JobVerification.objects.get(job=job, kind=CODE_START).code)
    engine.complete_job(as_actor(hustler), job.pk)
    code = JobVerification.objects.get(job=job, kind=CODE_COMPLETION).code
    job = engine.confirm_completion(as_actor(customer), job.pk, code)
    assert job.status == JOB_PAID
    payment.refresh_from_db()
    return job, payment


class TestAdminRefund:

    def test_partial_refund(self, engine, gateway, paid, admin_user):
        _, payment = paid

        payment = engine.admin_refund(as_actor(admin_user), payment.pk, amount='20', reason="Arrived late")

        assert payment.status == PAYMENT_REFUNDED
        assert payment.refund_amount == Decimal('20.00')
        assert gateway.calls_for('refund') == [('refund', f"refund:payment:{payment.pk}", 2000)]
        entry = AuditLog.objects.get(action=AUDIT_REFUND)
        assert entry.actor_id == admin_user.pk
        assert entry.details['amount'] == '20.00'
        assert entry.details['reason'] == "Arrived late"

    def test_full_refund_by_default(self, engine, paid, admin_user):
        _, payment = paid

        payment = engine.admin_refund(as_actor(admin_user), payment.pk, reason="Job never happened")

        assert payment.refund_amount == Decimal('106.50')

    def test_requires_admin(self, engine, paid, customer):
        _, payment = paid

        with pytest.raises(ForbiddenError) as excinfo:
            engine.admin_refund(as_actor(customer), payment.pk, reason="Please")

        assert excinfo.value.code == 'NOT_ADMIN'

    def test_requires_reason(self, engine, paid, admin_user):
        _, payment = paid

        with pytest.raises(ValidationError) as excinfo:
            engine.admin_refund(as_actor(admin_user), payment.pk)

        assert excinfo.value.code == 'REASON_REQUIRED'

    def test_cannot_exceed_captured_amount(self, engine, paid, admin_user):
        _, payment = paid

        with pytest.raises(ValidationError) as excinfo:
            engine.admin_refund(as_actor(admin_user), payment.pk, amount='500', reason="Too much")

        assert excinfo.value.code == 'INVALID_AMOUNT'

    def test_refund_only_once(self, engine, paid, admin_user):
        _, payment = paid
        engine.admin_refund(as_actor(admin_user), payment.pk, reason="Refund")

        with pytest.raises(ConflictError) as excinfo:
            engine.admin_refund(as_actor(admin_user), payment.pk, reason="Refund again")

        assert excinfo.value.code == 'PAYMENT_NOT_REFUNDABLE'
        assert AuditLog.objects.filter(action=AUDIT_REFUND).count() == 1

    def test_held_payment_is_not_refundable(self, engine, make_job, assign, customer, hustler, admin_user):
        _, payment = assign(make_job(customer), hustler)

        with pytest.raises(ConflictError):
            engine.admin_refund(as_actor(admin_user), payment.pk, reason="Cancel instead")


class TestAuditLog:

    def test_entries_are_write_once(self, engine, make_job, assign, customer, hustler):
        job, _ = assign(make_job(customer), hustler)
        engine.cancel_job(as_actor(customer), job.pk)
        entry = AuditLog.objects.get(action=AUDIT_VOID)

        entry.details = {'amount': '0.00'}
        with pytest.raises(InvariantViolation):
            entry.save()
        with pytest.raises(InvariantViolation):
            entry.delete()

        assert AuditLog.objects.get(pk=entry.pk).details['amount'] == '106.50'


class TestAdminApi:

    def test_refund_endpoint(self, api_client, paid, admin_user):
        _, payment = paid

        response = api_client(admin_user).post(
            f'/management/payments/{payment.pk}/refund/', {'amount': '10.00', 'reason': "Goodwill"}, format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == PAYMENT_REFUNDED
        response = api_client(admin_user).get('/management/audit-logs/', {'action': 'refund'})
        assert [entry['resource_id'] for entry in response.data] == [str(payment.pk)]

    def test_non_admins_are_rejected(self, api_client, customer):
        response = api_client(customer).get('/management/audit-logs/')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_resolve_dispute_endpoint(self, api_client, engine, paid, customer, admin_user):
        job, _ = paid
        dispute = engine.report_issue(as_actor(customer), job.pk, 'quality', "Scratched the floor")

        response = api_client(admin_user).get('/management/disputes/', {'status': 'open'})
        assert [item['id'] for item in response.data] == [dispute.pk]

        response = api_client(admin_user).post(
            f'/management/disputes/{dispute.pk}/resolve/', {'resolution': "Partial refund issued"}, format='json'
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'resolved'

        response = api_client(admin_user).post(
            f'/management/disputes/{dispute.pk}/resolve/', {'resolution': "Again"}, format='json'
        )
        assert response.status_code == status.HTTP_409_CONFLICT

    def test_reconciliation_list(self, api_client, paid, admin_user):
        _, payment = paid
        Payment.objects.filter(pk=payment.pk).update(needs_reconciliation=True, reconciliation_note="Check me")

        response = api_client(admin_user).get('/management/payments/reconciliation/')

        assert [item['id'] for item in response.data] == [payment.pk]
        assert response.data[0]['reconciliation_note'] == "Check me"

    def test_void_endpoint_retries_failed_void(self, api_client, engine, gateway, make_job, assign, customer, hustler, admin_user):
        job, payment = assign(make_job(customer), hustler)
        gateway.failing.add('void')
        engine.cancel_job(as_actor(customer), job.pk, reason="Found someone else")
        assert Payment.objects.get(pk=payment.pk).needs_reconciliation is True

        response = api_client(admin_user).post(f'/management/payments/{payment.pk}/void/', {}, format='json')

        assert response.status_code == status.HTTP_200_OK, response.data
        assert response.data['status'] == PAYMENT_VOIDED
        assert response.data['needs_reconciliation'] is False
        entry = AuditLog.objects.get(action=AUDIT_VOID)
        assert entry.details['reason'] == 'Void retried after cancellation'

        response = api_client(admin_user).post(f'/management/payments/{payment.pk}/void/', {}, format='json')
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['code'] == 'PAYMENT_NOT_VOIDABLE'
