from django.urls import path
from .views import FeeQuoteView, MyPaymentsView, StripeWebhookView

urlpatterns = [
    path('', MyPaymentsView.as_view(), name='my_payments'),
    path('fees/', FeeQuoteView.as_view(), name='fee_quote'),
    path('webhooks/stripe/', StripeWebhookView.as_view(), name='stripe_webhook'),
]
