"""End-to-end tests through the HTTP API."""
from datetime import timedelta
from unittest.mock import patch

from django.utils import timezone
from rest_framework import status

from core.constants import JOB_PAID, PAYOUT_COMPLETED, CODE_START, CODE_COMPLETION
from core.exceptions import InvariantViolation, exception_handler
from core.utils import Actor
from apps.jobs.models import JobVerification

as_actor = Actor.from_user


def job_payload(**overrides):
    start = timezone.now() + timedelta(hours=6)
    payload = {
        'title': 'Mount a TV',
        'category': 'Handyman',
        'address': '5 Oak Ave',
        'zip_code': '10001',
        'start_time': start.isoformat(),
        'end_time': (start + timedelta(hours=2)).isoformat(),
        'pay_type': 'flat',
        'amount': '100.00',
    }
    payload.update(overrides)
    return payload


class TestJobFlow:

    def test_post_offer_accept_start_complete_confirm(self, api_client, customer, hustler):
        as_customer = api_client(customer)
        as_hustler = api_client(hustler)

        response = as_customer.post('/jobs/', job_payload(), format='json')
        assert response.status_code == status.HTTP_201_CREATED, response.data
        job_id = response.data['id']

        response = as_hustler.get('/jobs/open/')
        assert [job['id'] for job in response.data] == [job_id]

        response = as_hustler.post(f'/jobs/{job_id}/offers/', {'note': "On my way"}, format='json')
        assert response.status_code == status.HTTP_201_CREATED
        offer_id = response.data['id']

        response = as_customer.post(f'/jobs/offers/{offer_id}/accept/', {}, format='json')
        assert response.status_code == status.HTTP_200_OK, response.data
        assert response.data['status'] == 'ASSIGNED'
        assert response.data['payment']['total'] == '106.50'

        response = as_customer.get(f'/jobs/{job_id}/codes/')
        code = response.data['start_code']['code']
        assert code == JobVerification.objects.get(job_id=job_id, kind=CODE_START).code

        response = as_hustler.post(f'/jobs/{job_id}/start/', {'code': code}, format='json')
        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'IN_PROGRESS'

        response = as_hustler.post(f'/jobs/{job_id}/complete/', {}, format='json')
        assert response.status_code == status.HTTP_200_OK
        completion = response.data['completion_code']

        response = as_customer.post(f'/jobs/{job_id}/confirm/', {'code': completion}, format='json')
        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == JOB_PAID
        assert response.data['payment']['status'] == 'CAPTURED'

        response = as_hustler.get('/payments/')
        assert response.data['payouts'][0]['net_amount'] == '88.00'

    def test_job_detail_hides_other_customers_jobs(self, api_client, make_job, make_user, customer):
        job = make_job(customer)
        outsider = make_user('otto', 'customer')

        response = api_client(outsider).get(f'/jobs/{job.pk}/')

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data['code'] == 'NOT_PARTICIPANT'

    def test_invalid_zip_is_a_serializer_error(self, api_client, customer):
        response = api_client(customer).post('/jobs/', job_payload(zip_code='ABCDE'), format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'zip_code' in response.data

    def test_regenerated_completion_code_then_tip(self, api_client, engine, make_job, assign, customer, hustler):
        job, _ = assign(make_job(customer), hustler)
        engine.complete_job(as_actor(hustler), job.pk)
        as_customer = api_client(customer)

        response = as_customer.post(f'/jobs/{job.pk}/regenerate-completion-code/', {}, format='json')
        assert response.status_code == status.HTTP_200_OK
        fresh = response.data['code']
        assert fresh == JobVerification.objects.get(job=job, kind=CODE_COMPLETION).code

        response = as_customer.post(f'/jobs/{job.pk}/confirm/', {'code': fresh}, format='json')
        assert response.data['status'] == JOB_PAID

        response = as_customer.post(f'/jobs/{job.pk}/tip/', {'tip_percent': '15'}, format='json')
        assert response.status_code == status.HTTP_201_CREATED, response.data
        assert response.data['amount'] == '15.00'
        assert response.data['status'] == PAYOUT_COMPLETED

        response = as_customer.post(f'/jobs/{job.pk}/tip/', {'tip_amount': '5'}, format='json')
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['code'] == 'TIP_ALREADY_ADDED'



class TestErrorRendering:

    def test_not_found(self, api_client, customer):
        response = api_client(customer).post('/jobs/offers/424242/accept/', {}, format='json')

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data == {
            'error': 'Offer 424242 not found', 'code': 'OFFER_NOT_FOUND', 'field': 'offer_id',
        }

    def test_wrong_code(self, api_client, make_job, assign, customer, hustler):
        job, _ = assign(make_job(customer), hustler)
        code = JobVerification.objects.get(job=job, kind=CODE_START).code
        wrong = '0000' if code != '0000' else '1111'

        response = api_client(hustler).post(f'/jobs/{job.pk}/start/', {'code': wrong}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'INVALID_CODE'
        assert response.data['field'] == 'code'

    def test_role_is_checked_at_the_boundary(self, api_client, make_job, assign, customer, hustler):
        job, _ = assign(make_job(customer), hustler)

        response = api_client(customer).post(f'/jobs/{job.pk}/start/', {'code': '1234'}, format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_gateway_error_reports_charged(self, api_client, engine, gateway, make_job, customer, hustler):
        job = make_job(customer)
        offer = engine.create_offer(as_actor(hustler), job.pk)
        gateway.failing.add('preauthorize')

        with patch('apps.jobs.views.get_engine', return_value=engine):
            response = api_client(customer).post(f'/jobs/offers/{offer.pk}/accept/', {}, format='json')

        assert response.status_code == status.HTTP_402_PAYMENT_REQUIRED
        assert response.data['code'] == 'GATEWAY_ERROR'
        assert response.data['charged'] is False

    def test_invariant_violation_hides_details(self):
        response = exception_handler(InvariantViolation("payment 7 vanished", details={'payment_id': 7}), {})

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert 'payment 7' not in response.data['error']
        assert response.data['code'] == 'INVARIANT_VIOLATION'

    def test_unauthenticated(self, api_client, db):
        response = api_client().get('/jobs/')

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestMessaging:

    def test_participants_can_message_once_assigned(self, api_client, make_job, assign, customer, hustler):
        job, _ = assign(make_job(customer), hustler)

        response = api_client(customer).post(
            f'/messaging/jobs/{job.pk}/messages/', {'body': "Gate code is 1942"}, format='json'
        )
        assert response.status_code == status.HTTP_201_CREATED

        response = api_client(hustler).get(f'/messaging/jobs/{job.pk}/messages/')
        assert [message['body'] for message in response.data] == ["Gate code is 1942"]

    def test_outsiders_cannot_read(self, api_client, make_job, assign, customer, hustler, other_hustler):
        job, _ = assign(make_job(customer), hustler)

        response = api_client(other_hustler).get(f'/messaging/jobs/{job.pk}/messages/')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_thread_is_closed_until_assignment(self, api_client, engine, make_job, customer, hustler):
        job = make_job(customer)
        engine.create_offer(as_actor(hustler), job.pk)

        response = api_client(customer).get(f'/messaging/jobs/{job.pk}/messages/')

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['code'] == 'JOB_NOT_ASSIGNED'


class TestFees:

    def test_quote_is_public(self, api_client, db):
        response = api_client().get('/payments/fees/', {'amount': '100', 'tip': '5'})

        assert response.status_code == status.HTTP_200_OK
        assert response.data['total'] == '106.50'
        assert response.data['hustler_payout'] == '88.00'
        assert response.data['tip_amount'] == '5.00'

    def test_negative_amount(self, api_client, db):
        response = api_client().get('/payments/fees/', {'amount': '-1'})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
