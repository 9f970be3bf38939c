from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema
from core.constants import AUDIT_ACTION_CHOICES, DISPUTE_STATUS_CHOICES
from core.utils import actor_from_request
from apps.jobs.lifecycle import get_engine
from apps.jobs.models import JobDispute
from apps.jobs.serializers import JobDisputeSerializer
from apps.payments.models import Payment
from apps.payments.serializers import AdminPaymentSerializer
from .models import AuditLog
from .permissions import IsSuperuser
from .serializers import AuditLogSerializer, RefundSerializer, VoidSerializer, ResolveDisputeSerializer
import logging

logger = logging.getLogger(__name__)


class AuditLogListView(APIView):
    permission_classes = [IsAuthenticated, IsSuperuser]

    @swagger_auto_schema(
        operation_description="List refund and void audit entries (admin only)",
        manual_parameters=[
            openapi.Parameter('action', openapi.IN_QUERY, type=openapi.TYPE_STRING,
                              enum=[choice[0] for choice in AUDIT_ACTION_CHOICES]),
            openapi.Parameter('resource_id', openapi.IN_QUERY, type=openapi.TYPE_STRING),
        ],
        responses={200: AuditLogSerializer(many=True), 401: 'Unauthorized', 403: 'Forbidden'}
    )
    def get(self, request):
        entries = AuditLog.objects.select_related('actor')
        action = request.query_params.get('action')
        if action:
            entries = entries.filter(action=action.upper())
        resource_id = request.query_params.get('resource_id')
        if resource_id:
            entries = entries.filter(resource_id=resource_id)
        return Response(AuditLogSerializer(entries, many=True).data)


class ReconciliationListView(APIView):
    permission_classes = [IsAuthenticated, IsSuperuser]

    @swagger_auto_schema(
        operation_description="Payments whose gateway state could not be confirmed and need manual review",
        responses={200: AdminPaymentSerializer(many=True), 401: 'Unauthorized', 403: 'Forbidden'}
    )
    def get(self, request):
        payments = Payment.objects.filter(needs_reconciliation=True).order_by('-updated_at')
        return Response(AdminPaymentSerializer(payments, many=True).data)


class AdminRefundView(APIView):
    permission_classes = [IsAuthenticated, IsSuperuser]

    @swagger_auto_schema(
        operation_description="Refund a captured payment in full or in part (admin only)",
        request_body=RefundSerializer,
        responses={
            200: AdminPaymentSerializer,
            400: 'Bad Request',
            402: 'Payment provider error',
            403: 'Forbidden',
            404: 'Not Found',
            409: 'Conflict'
        }
    )
    def post(self, request, payment_id):
        serializer = RefundSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        payment = get_engine().admin_refund(
            actor_from_request(request), payment_id,
            amount=serializer.validated_data.get('amount'),
            reason=serializer.validated_data['reason'],
        )
        logger.warning(f"Admin {request.user.username} refunded payment {payment.pk}: ${payment.refund_amount}")
        return Response(AdminPaymentSerializer(payment).data)


class AdminVoidView(APIView):
    permission_classes = [IsAuthenticated, IsSuperuser]

    @swagger_auto_schema(
        operation_description=(
            "Retry releasing the card hold of a cancelled job whose void failed (admin only). "
            "Uses the same idempotency key as the original void."
        ),
        request_body=VoidSerializer,
        responses={
            200: AdminPaymentSerializer,
            402: 'Payment provider error',
            403: 'Forbidden',
            404: 'Not Found',
            409: 'Conflict'
        }
    )
    def post(self, request, payment_id):
        serializer = VoidSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        payment = get_engine().admin_void(
            actor_from_request(request), payment_id, reason=serializer.validated_data['reason']
        )
        logger.warning(f"Admin {request.user.username} voided payment {payment.pk}")
        return Response(AdminPaymentSerializer(payment).data)


class AdminDisputeListView(APIView):
    permission_classes = [IsAuthenticated, IsSuperuser]

    @swagger_auto_schema(
        operation_description="List all disputes (admin only)",
        manual_parameters=[
            openapi.Parameter('status', openapi.IN_QUERY, type=openapi.TYPE_STRING,
                              enum=[choice[0] for choice in DISPUTE_STATUS_CHOICES]),
        ],
        responses={
            200: JobDisputeSerializer(many=True),
            401: 'Unauthorized',
            403: 'Forbidden'
        }
    )
    def get(self, request):
        disputes = JobDispute.objects.select_related('reported_by').order_by('-created_at')
        dispute_status = request.query_params.get('status')
        if dispute_status:
            disputes = disputes.filter(status=dispute_status)
        serializer = JobDisputeSerializer(disputes, many=True)
        return Response(serializer.data)


class AdminDisputeResolveView(APIView):
    permission_classes = [IsAuthenticated, IsSuperuser]

    @swagger_auto_schema(
        operation_description="Resolve a dispute (admin only). Resolved jobs become eligible for auto-release again.",
        request_body=ResolveDisputeSerializer,
        responses={
            200: JobDisputeSerializer,
            400: 'Bad Request',
            401: 'Unauthorized',
            403: 'Forbidden',
            404: 'Not Found',
            409: 'Conflict'
        }
    )
    def post(self, request, dispute_id):
        serializer = ResolveDisputeSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        dispute = get_engine().resolve_dispute(
            actor_from_request(request), dispute_id, serializer.validated_data['resolution']
        )
        return Response(JobDisputeSerializer(dispute).data)
