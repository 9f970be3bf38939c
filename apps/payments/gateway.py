import logging
import uuid
import stripe
from django.conf import settings
from django.core.cache import cache
from core.constants import PAYMENT_MODE_LIVE, PAYMENT_MODE_TEST_BYPASS
from core.exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)


def idempotency_key(operation, resource_type, resource_id):
    """
    Stable key for a money-moving call. The same operation on the same
    resource always yields the same key, so retries and crash-recovery
    replays are collapsed by the provider into the original result.
    """
    return f"{operation}:{resource_type}:{resource_id}"


class PaymentGateway:
    """Escrow capability used by the job lifecycle. All amounts are integer cents."""

    def preauthorize(self, amount_cents, idempotency_key, metadata=None):
        raise NotImplementedError

    def capture(self, intent_id, amount_cents=None, idempotency_key=None):
        raise NotImplementedError

    def void(self, intent_id, idempotency_key=None):
        raise NotImplementedError

    def refund(self, intent_id, amount_cents=None, idempotency_key=None):
        raise NotImplementedError

    def transfer(self, destination, amount_cents, idempotency_key, metadata=None):
        raise NotImplementedError

    def retrieve(self, intent_id):
        raise NotImplementedError

    # Connect onboarding for hustler payout accounts

    def create_connected_account(self, email, idempotency_key, metadata=None):
        raise NotImplementedError

    def create_onboarding_link(self, account_id, return_url, refresh_url):
        raise NotImplementedError

    def retrieve_account(self, account_id):
        raise NotImplementedError


class StripeGateway(PaymentGateway):
    """Live gateway: manual-capture PaymentIntents and Connect transfers."""

    def __init__(self, api_key=None, currency=None):
        self.api_key = api_key or settings.STRIPE_SECRET_KEY
        self.currency = currency or settings.PAYMENT_CURRENCY

    def _call(self, operation, func, *args, charged=False, **kwargs):
        try:
            return func(*args, api_key=self.api_key, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"Stripe {operation} failed: {str(e)} (key={kwargs.get('idempotency_key')})")
            raise PaymentGatewayError(
                f"Payment provider rejected {operation}: {e.user_message or str(e)}",
                code='GATEWAY_ERROR',
                details={'operation': operation, 'provider_code': getattr(e, 'code', None)},
                charged=charged,
            )

    def preauthorize(self, amount_cents, idempotency_key, metadata=None):
        logger.info(f"Pre-authorizing {amount_cents} cents (key={idempotency_key})")
        intent = self._call(
            'preauthorize',
            stripe.PaymentIntent.create,
            amount=amount_cents,
            currency=self.currency,
            capture_method='manual',
            metadata=metadata or {},
            idempotency_key=idempotency_key,
        )
        return {
            'intent_id': intent['id'],
            'status': intent['status'],
            'client_secret': intent.get('client_secret'),
        }

    def capture(self, intent_id, amount_cents=None, idempotency_key=None):
        params = {'idempotency_key': idempotency_key, 'expand': ['latest_charge']}
        if amount_cents is not None:
            # Capturing less than the authorized amount releases the remainder of the hold
            params['amount_to_capture'] = amount_cents
        logger.info(f"Capturing {intent_id} amount={amount_cents} (key={idempotency_key})")
        intent = self._call('capture', stripe.PaymentIntent.capture, intent_id, **params)
        charge = intent.get('latest_charge') or {}
        return {
            'status': intent['status'],
            'amount_received': intent.get('amount_received'),
            'receipt_url': charge.get('receipt_url') if hasattr(charge, 'get') else None,
        }

    def void(self, intent_id, idempotency_key=None):
        logger.info(f"Voiding {intent_id} (key={idempotency_key})")
        intent = self._call('void', stripe.PaymentIntent.cancel, intent_id, idempotency_key=idempotency_key)
        return {'status': intent['status']}

    def refund(self, intent_id, amount_cents=None, idempotency_key=None):
        params = {'payment_intent': intent_id, 'idempotency_key': idempotency_key}
        if amount_cents is not None:
            params['amount'] = amount_cents
        logger.info(f"Refunding {intent_id} amount={amount_cents} (key={idempotency_key})")
        refund = self._call('refund', stripe.Refund.create, charged=True, **params)
        return {'refund_id': refund['id'], 'status': refund['status']}

    def transfer(self, destination, amount_cents, idempotency_key, metadata=None):
        logger.info(f"Transferring {amount_cents} cents to {destination} (key={idempotency_key})")
        transfer = self._call(
            'transfer',
            stripe.Transfer.create,
            charged=True,
            amount=amount_cents,
            currency=self.currency,
            destination=destination,
            metadata=metadata or {},
            idempotency_key=idempotency_key,
        )
        return {'transfer_id': transfer['id']}

    def retrieve(self, intent_id):
        intent = self._call('retrieve', stripe.PaymentIntent.retrieve, intent_id)
        return {
            'status': intent['status'],
            'amount': intent.get('amount'),
            'amount_received': intent.get('amount_received'),
        }

    def create_connected_account(self, email, idempotency_key, metadata=None):
        logger.info(f"Creating Express account for {email} (key={idempotency_key})")
        account = self._call(
            'create_account',
            stripe.Account.create,
            type='express',
            country=settings.CONNECT_ACCOUNT_COUNTRY,
            email=email,
            capabilities={'card_payments': {'requested': True}, 'transfers': {'requested': True}},
            metadata=metadata or {},
            idempotency_key=idempotency_key,
        )
        return {'account_id': account['id']}

    def create_onboarding_link(self, account_id, return_url, refresh_url):
        link = self._call(
            'onboarding_link',
            stripe.AccountLink.create,
            account=account_id,
            return_url=return_url,
            refresh_url=refresh_url,
            type='account_onboarding',
        )
        return {'url': link['url'], 'expires_at': link.get('expires_at')}

    def retrieve_account(self, account_id):
        account = self._call('retrieve_account', stripe.Account.retrieve, account_id)
        return {
            'account_id': account['id'],
            'charges_enabled': bool(account.get('charges_enabled')),
            'payouts_enabled': bool(account.get('payouts_enabled')),
            'details_submitted': bool(account.get('details_submitted')),
        }


class TestBypassGateway(PaymentGateway):
    """
    Fake gateway for staging and tests. Results are stored in the Django
    cache per idempotency key, so replays return the original result the
    way the live provider does.
    """
    __test__ = False
    cache_prefix = 'test-bypass-gateway'
    lock_timeout = 30

    def _replay(self, key, produce):
        if key is None:
            return produce()
        result_key = f"{self.cache_prefix}:key:{key}"
        result = cache.get(result_key)
        if result is not None:
            return result
        # The first request with a key reserves it; concurrent requests are refused like the live provider does
        lock_key = f"{self.cache_prefix}:lock:{key}"
        if not cache.add(lock_key, True, timeout=self.lock_timeout):
            result = cache.get(result_key)
            if result is not None:
                return result
            raise PaymentGatewayError(
                f"Another request with idempotency key {key} is in progress",
                code='IDEMPOTENCY_IN_PROGRESS', details={'idempotency_key': key},
            )
        try:
            result = produce()
            cache.set(result_key, result, timeout=None)
            return result
        finally:
            cache.delete(lock_key)

    def _intent(self, intent_id):
        intent = cache.get(f"{self.cache_prefix}:intent:{intent_id}")
        if intent is None:
            raise PaymentGatewayError(f"No such payment intent: {intent_id}", details={'intent_id': intent_id})
        return intent

    def _save_intent(self, intent):
        cache.set(f"{self.cache_prefix}:intent:{intent['id']}", intent, timeout=None)

    def preauthorize(self, amount_cents, idempotency_key, metadata=None):
        def produce():
            intent = {
                'id': f"pi_test_{uuid.uuid4().hex[:24]}",
                'status': 'requires_capture',
                'amount': amount_cents,
                'amount_received': 0,
            }
            self._save_intent(intent)
            logger.info(f"[test bypass] Pre-authorized {amount_cents} cents as {intent['id']}")
            return {'intent_id': intent['id'], 'status': intent['status'], 'client_secret': None}
        return self._replay(idempotency_key, produce)

    def capture(self, intent_id, amount_cents=None, idempotency_key=None):
        def produce():
            intent = self._intent(intent_id)
            if intent['status'] != 'requires_capture':
                raise PaymentGatewayError(f"Payment intent {intent_id} cannot be captured ({intent['status']})")
            captured = intent['amount'] if amount_cents is None else amount_cents
            if captured > intent['amount']:
                raise PaymentGatewayError(f"Capture of {captured} exceeds authorized {intent['amount']}")
            intent.update(status='succeeded', amount_received=captured)
            self._save_intent(intent)
            return {'status': 'succeeded', 'amount_received': captured, 'receipt_url': None}
        return self._replay(idempotency_key, produce)

    def void(self, intent_id, idempotency_key=None):
        def produce():
            intent = self._intent(intent_id)
            if intent['status'] != 'requires_capture':
                raise PaymentGatewayError(f"Payment intent {intent_id} cannot be voided ({intent['status']})")
            intent['status'] = 'canceled'
            self._save_intent(intent)
            return {'status': 'canceled'}
        return self._replay(idempotency_key, produce)

    def refund(self, intent_id, amount_cents=None, idempotency_key=None):
        def produce():
            intent = self._intent(intent_id)
            if intent['status'] != 'succeeded':
                raise PaymentGatewayError(f"Payment intent {intent_id} has no captured funds", charged=False)
            return {'refund_id': f"re_test_{uuid.uuid4().hex[:24]}", 'status': 'succeeded'}
        return self._replay(idempotency_key, produce)

    def transfer(self, destination, amount_cents, idempotency_key, metadata=None):
        def produce():
            logger.info(f"[test bypass] Transferred {amount_cents} cents to {destination}")
            return {'transfer_id': f"tr_test_{uuid.uuid4().hex[:24]}"}
        return self._replay(idempotency_key, produce)

    def retrieve(self, intent_id):
        intent = self._intent(intent_id)
        return {'status': intent['status'], 'amount': intent['amount'], 'amount_received': intent['amount_received']}

    def create_connected_account(self, email, idempotency_key, metadata=None):
        def produce():
            account_id = f"acct_test{uuid.uuid4().hex[:16]}"
            logger.info(f"[test bypass] Created connected account {account_id} for {email}")
            return {'account_id': account_id}
        return self._replay(idempotency_key, produce)

    def create_onboarding_link(self, account_id, return_url, refresh_url):
        # No hosted flow in test mode: send the user straight back as onboarded
        separator = '&' if '?' in return_url else '?'
        return {'url': f"{return_url}{separator}test_mode=true", 'expires_at': None}

    def retrieve_account(self, account_id):
        return {
            'account_id': account_id,
            'charges_enabled': True,
            'payouts_enabled': True,
            'details_submitted': True,
        }


def get_gateway(mode=None):
    mode = mode or settings.PAYMENT_MODE
    if mode == PAYMENT_MODE_LIVE:
        return StripeGateway()
    if mode == PAYMENT_MODE_TEST_BYPASS:
        return TestBypassGateway()
    raise ValueError(f"Unknown PAYMENT_MODE: {mode}")
