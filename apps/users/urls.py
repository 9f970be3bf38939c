from django.urls import path
from .views import (
    RegisterView, LoginView, MeView, EnableRoleView, PayoutAccountView,
    PayoutAccountConnectView, PayoutOnboardingLinkView, PayoutAccountStatusView,
)

urlpatterns = [
    path('register/', RegisterView.as_view(), name='user_register'),
    path('token/', LoginView.as_view(), name='user_token'),
    path('me/', MeView.as_view(), name='user_me'),
    path('roles/', EnableRoleView.as_view(), name='user_enable_role'),
    path('payout-account/', PayoutAccountView.as_view(), name='user_payout_account'),
    path('payout-account/connect/', PayoutAccountConnectView.as_view(), name='user_payout_account_connect'),
    path('payout-account/onboarding-link/', PayoutOnboardingLinkView.as_view(), name='user_payout_onboarding_link'),
    path('payout-account/status/', PayoutAccountStatusView.as_view(), name='user_payout_account_status'),
]
