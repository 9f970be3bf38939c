"""Hosted payout-account onboarding for hustlers (Stripe Connect Express)."""
import logging
from django.conf import settings
from core.exceptions import ConflictError
from apps.users.models import HustlerProfile
from .gateway import get_gateway, idempotency_key

logger = logging.getLogger(__name__)


def _onboarding_urls():
    base = settings.FRONTEND_BASE_URL.rstrip('/')
    return f"{base}/profile?stripe_onboarding=success", f"{base}/profile?stripe_onboarding=refresh"


def ensure_payout_account(user, gateway=None):
    """
    Return the hustler's connected account, creating it on first use. The
    creation key is per user, so concurrent requests share one account.
    """
    profile = user.hustler_profile
    if profile.payout_account_id:
        return profile.payout_account_id
    gateway = gateway or get_gateway()
    account = gateway.create_connected_account(
        user.email, idempotency_key('create_account', 'user', user.pk), metadata={'user_id': str(user.pk)}
    )
    HustlerProfile.objects.filter(pk=profile.pk, payout_account_id='').update(payout_account_id=account['account_id'])
    profile.refresh_from_db()
    logger.info(f"Hustler {user.pk} connected payout account {profile.payout_account_id}")
    return profile.payout_account_id


def create_payout_account(user, gateway=None):
    if user.hustler_profile.payout_account_id:
        raise ConflictError("A payout account is already connected", code='PAYOUT_ACCOUNT_EXISTS')
    return ensure_payout_account(user, gateway)


def onboarding_link(user, gateway=None):
    gateway = gateway or get_gateway()
    account_id = ensure_payout_account(user, gateway)
    return_url, refresh_url = _onboarding_urls()
    link = gateway.create_onboarding_link(account_id, return_url=return_url, refresh_url=refresh_url)
    return {'account_id': account_id, 'url': link['url'], 'expires_at': link.get('expires_at')}


def payout_account_status(user, gateway=None):
    account_id = user.hustler_profile.payout_account_id
    if not account_id:
        return {
            'connected': False, 'account_id': None,
            'charges_enabled': False, 'payouts_enabled': False, 'details_submitted': False,
        }
    account = (gateway or get_gateway()).retrieve_account(account_id)
    return {
        'connected': True,
        'account_id': account_id,
        'charges_enabled': account['charges_enabled'],
        'payouts_enabled': account['payouts_enabled'],
        'details_submitted': account['details_submitted'],
    }
