from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status
from rest_framework.authtoken.models import Token
from rest_framework.permissions import IsAuthenticated
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi
from core.utils import IsHustler
from apps.payments import connect
from .serializers import (
    RegisterSerializer, LoginSerializer, UserSerializer,
    EnableRoleSerializer, PayoutAccountSerializer
)
import logging

logger = logging.getLogger(__name__)

token_response = openapi.Response(
    description='Authenticated',
    schema=openapi.Schema(
        type=openapi.TYPE_OBJECT,
        properties={
            'token': openapi.Schema(type=openapi.TYPE_STRING),
            'user': openapi.Schema(type=openapi.TYPE_OBJECT),
        }
    )
)

payout_status_response = openapi.Response(
    description='Payout account',
    schema=openapi.Schema(
        type=openapi.TYPE_OBJECT,
        properties={
            'connected': openapi.Schema(type=openapi.TYPE_BOOLEAN),
            'account_id': openapi.Schema(type=openapi.TYPE_STRING),
            'payouts_enabled': openapi.Schema(type=openapi.TYPE_BOOLEAN),
            'details_submitted': openapi.Schema(type=openapi.TYPE_BOOLEAN),
        }
    )
)


class RegisterView(APIView):
    permission_classes = []

    @swagger_auto_schema(
        operation_description="Create an account with an initial role (customer or hustler).",
        request_body=RegisterSerializer,
        responses={201: token_response, 400: 'Bad Request'}
    )
    def post(self, request):
        serializer = RegisterSerializer(data=request.data)
        if serializer.is_valid():
            user = serializer.save()
            token, _ = Token.objects.get_or_create(user=user)
            return Response({"token": token.key, "user": UserSerializer(user).data}, status=status.HTTP_201_CREATED)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


class LoginView(APIView):
    permission_classes = []

    @swagger_auto_schema(request_body=LoginSerializer, responses={200: token_response, 400: 'Bad Request'})
    def post(self, request):
        serializer = LoginSerializer(data=request.data)
        if serializer.is_valid():
            user = serializer.validated_data['user']
            token, _ = Token.objects.get_or_create(user=user)
            return Response({"token": token.key, "user": UserSerializer(user).data})
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


class MeView(APIView):
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(responses={200: UserSerializer, 401: 'Unauthorized'})
    def get(self, request):
        return Response(UserSerializer(request.user).data)


class EnableRoleView(APIView):
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="Opt into an additional marketplace role.",
        request_body=EnableRoleSerializer,
        responses={200: UserSerializer, 400: 'Bad Request', 401: 'Unauthorized'}
    )
    def post(self, request):
        serializer = EnableRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        request.user.enable_role(serializer.validated_data['role'])
        logger.info(f"User {request.user.id} enabled role {serializer.validated_data['role']}")
        # Drop cached reverse one-to-one lookups so the response reflects the new profile
        request.user.refresh_from_db()
        return Response(UserSerializer(request.user).data)


class PayoutAccountView(APIView):
    permission_classes = [IsAuthenticated, IsHustler]

    @swagger_auto_schema(
        operation_description="Register the connected payout account that receives hustler transfers.",
        request_body=PayoutAccountSerializer,
        responses={200: UserSerializer, 400: 'Bad Request', 403: 'Forbidden'}
    )
    def post(self, request):
        serializer = PayoutAccountSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        profile = request.user.hustler_profile
        profile.payout_account_id = serializer.validated_data['payout_account_id']
        profile.save(update_fields=['payout_account_id'])
        return Response(UserSerializer(request.user).data)


class PayoutAccountConnectView(APIView):
    permission_classes = [IsAuthenticated, IsHustler]

    @swagger_auto_schema(
        operation_description="Create the hustler's connected payout account with the payment provider.",
        responses={201: payout_status_response, 402: 'Payment provider error', 403: 'Forbidden', 409: 'Conflict'}
    )
    def post(self, request):
        account_id = connect.create_payout_account(request.user)
        return Response({'account_id': account_id}, status=status.HTTP_201_CREATED)


class PayoutOnboardingLinkView(APIView):
    permission_classes = [IsAuthenticated, IsHustler]

    @swagger_auto_schema(
        operation_description=(
            "Link to the provider's hosted onboarding. Creates the payout account first if needed. "
            "The provider sends the hustler back to the profile page when done."
        ),
        responses={200: 'account_id, url, expires_at', 402: 'Payment provider error', 403: 'Forbidden'}
    )
    def get(self, request):
        return Response(connect.onboarding_link(request.user))


class PayoutAccountStatusView(APIView):
    permission_classes = [IsAuthenticated, IsHustler]

    @swagger_auto_schema(responses={200: payout_status_response, 402: 'Payment provider error', 403: 'Forbidden'})
    def get(self, request):
        return Response(connect.payout_account_status(request.user))
