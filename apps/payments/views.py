from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status
from rest_framework.permissions import IsAuthenticated, AllowAny
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi
from django.db.models import Q
from . import webhooks
from .fees import calculate_fees, get_fee_rates
from .models import Payment, Payout
from .serializers import FeeQuoteSerializer, PaymentSerializer, PayoutSerializer


class FeeQuoteView(APIView):
    permission_classes = [AllowAny]

    @swagger_auto_schema(
        operation_description="Quote the customer total and hustler payout for a job amount and optional tip.",
        manual_parameters=[
            openapi.Parameter('amount', openapi.IN_QUERY, type=openapi.TYPE_NUMBER, required=True),
            openapi.Parameter('tip', openapi.IN_QUERY, type=openapi.TYPE_NUMBER),
        ],
        responses={200: 'Fee breakdown', 400: 'Bad Request'}
    )
    def get(self, request):
        serializer = FeeQuoteSerializer(data=request.query_params)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        fees = calculate_fees(serializer.validated_data['amount'], serializer.validated_data['tip'])
        rates = get_fee_rates()
        return Response({
            **{key: str(value) for key, value in fees.items()},
            'platform_fee_percent': rates['platform_fee_percent'],
            'customer_fee_percent': rates['customer_fee_percent'],
        })


class MyPaymentsView(APIView):
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="Payments you made as a customer and payouts you received as a hustler.",
        responses={200: 'payments and payouts', 401: 'Unauthorized'}
    )
    def get(self, request):
        payments = Payment.objects.filter(Q(customer=request.user) | Q(hustler=request.user)).order_by('-preauthorized_at')
        payouts = Payout.objects.filter(hustler=request.user).order_by('-created_at')
        return Response({
            'payments': PaymentSerializer(payments, many=True).data,
            'payouts': PayoutSerializer(payouts, many=True).data,
        })


class StripeWebhookView(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    @swagger_auto_schema(
        operation_description="Stripe event receiver. Requests must carry a valid Stripe-Signature header.",
        responses={200: 'Event received', 400: 'Invalid signature or payload'}
    )
    def post(self, request):
        payload = request.body.decode('utf-8')
        event = webhooks.verify_event(payload, request.headers.get('Stripe-Signature'))
        webhooks.handle_event(event)
        return Response({'received': True})
