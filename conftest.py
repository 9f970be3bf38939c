from datetime import timedelta
from decimal import Decimal

import pytest
from django.core.cache import cache
from django.utils import timezone
from rest_framework.authtoken.models import Token
from rest_framework.test import APIClient

from core.constants import PAY_TYPE_FLAT, PAY_TYPE_HOURLY
from core.exceptions import PaymentGatewayError
from core.utils import Actor
from apps.jobs.lifecycle import JobLifecycleEngine
from apps.payments.gateway import TestBypassGateway
from apps.users.models import User, ROLE_CUSTOMER, ROLE_HUSTLER


class RecordingGateway(TestBypassGateway):
    """Test-bypass gateway that records every call and can be told to fail an operation."""

    def __init__(self):
        self.calls = []
        self.failing = set()

    def _record(self, operation, key, amount_cents=None):
        self.calls.append((operation, key, amount_cents))
        if operation in self.failing:
            raise PaymentGatewayError(
                f"Simulated {operation} failure", details={'operation': operation},
                charged=operation in ('refund', 'transfer'),
            )

    def calls_for(self, operation):
        return [call for call in self.calls if call[0] == operation]

    def preauthorize(self, amount_cents, idempotency_key, metadata=None):
        self._record('preauthorize', idempotency_key, amount_cents)
        return super().preauthorize(amount_cents, idempotency_key, metadata=metadata)

    def capture(self, intent_id, amount_cents=None, idempotency_key=None):
        self._record('capture', idempotency_key, amount_cents)
        return super().capture(intent_id, amount_cents=amount_cents, idempotency_key=idempotency_key)

    def void(self, intent_id, idempotency_key=None):
        self._record('void', idempotency_key)
        return super().void(intent_id, idempotency_key=idempotency_key)

    def refund(self, intent_id, amount_cents=None, idempotency_key=None):
        self._record('refund', idempotency_key, amount_cents)
        return super().refund(intent_id, amount_cents=amount_cents, idempotency_key=idempotency_key)

    def transfer(self, destination, amount_cents, idempotency_key, metadata=None):
        self._record('transfer', idempotency_key, amount_cents)
        return super().transfer(destination, amount_cents, idempotency_key, metadata=metadata)


@pytest.fixture(autouse=True)
def marketplace_settings(settings):
    settings.PAYMENT_MODE = 'test_bypass'
    settings.REQUIRE_PAYOUT_ACCOUNT = False
    settings.SERVICE_AREA_ZIP_PREFIXES = []
    settings.HOURLY_AUTHORIZATION_BUFFER = Decimal('1.25')
    settings.AUTO_RELEASE_HOURS = 48
    settings.CANCEL_CUTOFF_HOURS = 2
    settings.MAX_ACTIVE_JOBS_PER_HUSTLER = 2
    settings.STALE_JOB_HOURS = 48
    settings.TWILIO_ACCOUNT_SID = ''
    cache.clear()
    yield settings
    cache.clear()


@pytest.fixture
def make_user(db):
    def _make_user(username, *roles, payout_account_id='', is_superuser=False):
        user = User.objects.create_user(
            username=username, email=f"{username}@example.com", password='s3cure-pass-123',
            first_name=username.title(), is_superuser=is_superuser, is_staff=is_superuser,
        )
        for role in roles:
            user.enable_role(role)
        if payout_account_id:
            user.hustler_profile.payout_account_id = payout_account_id
            user.hustler_profile.save()
        return User.objects.get(pk=user.pk)
    return _make_user


@pytest.fixture
def customer(make_user):
    return make_user('carla', ROLE_CUSTOMER)


@pytest.fixture
def hustler(make_user):
    return make_user('hank', ROLE_HUSTLER, payout_account_id='acct_hank123')


@pytest.fixture
def other_hustler(make_user):
    return make_user('olive', ROLE_HUSTLER, payout_account_id='acct_olive456')


@pytest.fixture
def admin_user(make_user):
    return make_user('root', is_superuser=True)


def actor(user):
    return Actor.from_user(user)


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def sent():
    """Notifications handed to the engine's notifier (only after commit)."""
    return []


@pytest.fixture
def engine(gateway, sent):
    def notifier(event_type, recipient, **context):
        sent.append((event_type, recipient.pk, context))
        return True
    return JobLifecycleEngine(gateway=gateway, notifier=notifier)


@pytest.fixture
def make_job(engine):
    def _make_job(customer, pay_type=PAY_TYPE_FLAT, starts_in=timedelta(hours=6), **overrides):
        start = timezone.now() + starts_in
        data = {
            'title': 'Assemble a bookshelf',
            'category': 'Furniture assembly',
            'description': 'Two IKEA bookshelves',
            'address': '12 Elm St',
            'zip_code': '10001',
            'start_time': start,
            'end_time': start + timedelta(hours=3),
            'pay_type': pay_type,
        }
        if pay_type == PAY_TYPE_HOURLY:
            data.update(hourly_rate=Decimal('40.00'), estimated_hours=Decimal('3'))
        else:
            data['amount'] = Decimal('100.00')
        data.update(overrides)
        return engine.create_job(actor(customer), data)
    return _make_job


@pytest.fixture
def assign(engine):
    """Offer on a job as the hustler and accept it as the customer. Returns (job, payment)."""
    def _assign(job, hustler, tip_percent=None):
        offer = engine.create_offer(actor(hustler), job.pk, note="I can do it")
        return engine.accept_offer(actor(job.customer), offer.pk, tip_percent=tip_percent)
    return _assign


@pytest.fixture
def api_client():
    def _client(user=None):
        client = APIClient()
        if user is not None:
            token, _ = Token.objects.get_or_create(user=user)
            client.credentials(HTTP_AUTHORIZATION=f"Token {token.key}")
        return client
    return _client
