from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi
from django.contrib.auth import get_user_model
from django.db.models import Q
from core.constants import JOB_OPEN
from core.exceptions import NotFoundError, ForbiddenError
from core.utils import IsCustomer, IsHustler, actor_from_request
from apps.management.permissions import IsSuperuser
from apps.payments.serializers import PaymentSerializer, TipSerializer
from . import reviews
from .lifecycle import get_engine
from .models import Job, Offer
from .serializers import (
    JobCreateSerializer, JobSerializer, JobDetailSerializer, OfferSerializer, OfferCreateSerializer,
    AcceptOfferSerializer, AddTipSerializer, CodeSerializer, CompleteJobSerializer, CancelJobSerializer,
    ReportIssueSerializer, JobVerificationSerializer, JobDisputeSerializer,
)
from .review_serializers import ReviewSerializer, ReviewCreateSerializer
import logging

User = get_user_model()
logger = logging.getLogger(__name__)

error_response = openapi.Schema(
    type=openapi.TYPE_OBJECT,
    properties={
        'error': openapi.Schema(type=openapi.TYPE_STRING),
        'code': openapi.Schema(type=openapi.TYPE_STRING),
        'field': openapi.Schema(type=openapi.TYPE_STRING),
        'details': openapi.Schema(type=openapi.TYPE_OBJECT),
    }
)
payment_error_response = openapi.Response('Payment provider error', openapi.Schema(
    type=openapi.TYPE_OBJECT,
    properties={
        'error': openapi.Schema(type=openapi.TYPE_STRING),
        'code': openapi.Schema(type=openapi.TYPE_STRING),
        'charged': openapi.Schema(type=openapi.TYPE_BOOLEAN),
    }
))


def visible_job(request, job_id):
    """Open jobs are visible to every hustler; anything else only to its participants."""
    try:
        job = Job.objects.select_related('customer', 'hustler').get(pk=job_id)
    except Job.DoesNotExist:
        raise NotFoundError(f"Job {job_id} not found", code='JOB_NOT_FOUND', field='job_id')
    if job.is_participant(request.user.id) or request.user.is_superuser:
        return job
    if job.status == JOB_OPEN and request.user.is_hustler:
        return job
    raise ForbiddenError("You do not have access to this job", code='NOT_PARTICIPANT')


class JobListCreateView(APIView):
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="List jobs you posted or are assigned to. Filter with ?status=.",
        manual_parameters=[openapi.Parameter('status', openapi.IN_QUERY, type=openapi.TYPE_STRING)],
        responses={200: JobSerializer(many=True), 401: 'Unauthorized'}
    )
    def get(self, request):
        jobs = Job.objects.select_related('customer', 'hustler').filter(
            Q(customer=request.user) | Q(hustler=request.user)
        )
        status_filter = request.query_params.get('status')
        if status_filter:
            jobs = jobs.filter(status=status_filter.upper())
        return Response(JobSerializer(jobs, many=True).data)

    @swagger_auto_schema(
        operation_description="Post a new job. Hourly jobs take hourly_rate and estimated_hours instead of amount.",
        request_body=JobCreateSerializer,
        responses={201: JobSerializer, 400: error_response, 401: 'Unauthorized', 403: error_response}
    )
    def post(self, request):
        serializer = JobCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        job = get_engine().create_job(actor_from_request(request), serializer.validated_data)
        return Response(JobSerializer(job).data, status=status.HTTP_201_CREATED)


class OpenJobListView(APIView):
    permission_classes = [IsAuthenticated, IsHustler]

    @swagger_auto_schema(
        operation_description="List open jobs hustlers can make offers on.",
        responses={200: JobSerializer(many=True), 401: 'Unauthorized'}
    )
    def get(self, request):
        jobs = Job.objects.select_related('customer').filter(status=JOB_OPEN).exclude(customer=request.user)
        category = request.query_params.get('category')
        if category:
            jobs = jobs.filter(category__iexact=category)
        return Response(JobSerializer(jobs, many=True).data)


class JobDetailView(APIView):
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(responses={200: JobDetailSerializer, 403: error_response, 404: error_response})
    def get(self, request, pk):
        job = visible_job(request, pk)
        return Response(JobDetailSerializer(job, context={'user': request.user}).data)

    @swagger_auto_schema(
        operation_description="Delete an open job that has no offers.",
        responses={204: 'No Content', 403: error_response, 404: error_response, 409: error_response}
    )
    def delete(self, request, pk):
        get_engine().delete_job(actor_from_request(request), pk)
        return Response(status=status.HTTP_204_NO_CONTENT)


class JobOffersView(APIView):
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="List offers on a job. Customers see all offers, hustlers only their own.",
        responses={200: OfferSerializer(many=True), 403: error_response, 404: error_response}
    )
    def get(self, request, pk):
        job = visible_job(request, pk)
        offers = job.offers.select_related('hustler')
        if job.customer_id != request.user.id:
            offers = offers.filter(hustler=request.user)
        return Response(OfferSerializer(offers, many=True).data)

    @swagger_auto_schema(
        operation_description="Make an offer on an open job.",
        request_body=OfferCreateSerializer,
        responses={201: OfferSerializer, 403: error_response, 404: error_response, 409: error_response}
    )
    def post(self, request, pk):
        serializer = OfferCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        offer = get_engine().create_offer(
            actor_from_request(request), pk,
            note=serializer.validated_data['note'],
            proposed_amount=serializer.validated_data.get('proposed_amount'),
        )
        return Response(OfferSerializer(offer).data, status=status.HTTP_201_CREATED)


class OfferAcceptView(APIView):
    permission_classes = [IsAuthenticated, IsCustomer]

    @swagger_auto_schema(
        operation_description=(
            "Accept an offer. Pre-authorizes the job total (plus optional tip, capped at 25% and $50) "
            "on the customer's card, assigns the hustler and declines every other pending offer."
        ),
        request_body=AcceptOfferSerializer,
        responses={
            200: JobDetailSerializer,
            402: payment_error_response,
            403: error_response,
            404: error_response,
            409: error_response,
        }
    )
    def post(self, request, offer_id):
        serializer = AcceptOfferSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        job, payment = get_engine().accept_offer(
            actor_from_request(request), offer_id, tip_percent=serializer.validated_data.get('tip_percent')
        )
        data = JobDetailSerializer(job, context={'user': request.user}).data
        data['payment'] = PaymentSerializer(payment).data
        return Response(data)


class OfferDeclineView(APIView):
    permission_classes = [IsAuthenticated, IsCustomer]

    @swagger_auto_schema(responses={200: OfferSerializer, 403: error_response, 404: error_response, 409: error_response})
    def post(self, request, offer_id):
        offer = get_engine().decline_offer(actor_from_request(request), offer_id)
        return Response(OfferSerializer(offer).data)


class JobStartView(APIView):
    permission_classes = [IsAuthenticated, IsHustler]

    @swagger_auto_schema(
        operation_description="Start an assigned job with the 4-digit code the customer gave you.",
        request_body=CodeSerializer,
        responses={200: JobSerializer, 400: error_response, 403: error_response, 409: error_response}
    )
    def post(self, request, pk):
        serializer = CodeSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        job = get_engine().start_job(actor_from_request(request), pk, serializer.validated_data['code'])
        return Response(JobSerializer(job).data)


class JobCompleteView(APIView):
    permission_classes = [IsAuthenticated, IsHustler]

    @swagger_auto_schema(
        operation_description=(
            "Mark a job done. Issues the 6-digit completion code, which is also sent to the customer. "
            "Hourly jobs may report actual_hours."
        ),
        request_body=CompleteJobSerializer,
        responses={200: JobSerializer, 400: error_response, 403: error_response, 409: error_response}
    )
    def post(self, request, pk):
        serializer = CompleteJobSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        job, completion = get_engine().complete_job(
            actor_from_request(request), pk, actual_hours=serializer.validated_data.get('actual_hours')
        )
        data = JobSerializer(job).data
        data['completion_code'] = completion.code
        return Response(data)


class JobConfirmView(APIView):
    permission_classes = [IsAuthenticated, IsCustomer]

    @swagger_auto_schema(
        operation_description="Confirm completion with the 6-digit code and release payment to the hustler.",
        request_body=CodeSerializer,
        responses={
            200: JobDetailSerializer,
            400: error_response,
            402: payment_error_response,
            403: error_response,
            409: error_response,
        }
    )
    def post(self, request, pk):
        serializer = CodeSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        job = get_engine().confirm_completion(actor_from_request(request), pk, serializer.validated_data['code'])
        return Response(JobDetailSerializer(job, context={'user': request.user}).data)


class JobCancelView(APIView):
    permission_classes = [IsAuthenticated, IsCustomer]

    @swagger_auto_schema(
        operation_description=(
            "Cancel an open or assigned job. Assigned jobs cannot be cancelled within the cutoff "
            "before their start time or after their date. Any card hold is released."
        ),
        request_body=CancelJobSerializer,
        responses={200: JobDetailSerializer, 403: error_response, 404: error_response, 409: error_response}
    )
    def post(self, request, pk):
        serializer = CancelJobSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        job = get_engine().cancel_job(actor_from_request(request), pk, reason=serializer.validated_data['reason'])
        return Response(JobDetailSerializer(job, context={'user': request.user}).data)


class JobReportIssueView(APIView):
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="Report a problem with a job. Automatic payment release is paused until resolved.",
        request_body=ReportIssueSerializer,
        responses={201: JobDisputeSerializer, 403: error_response, 404: error_response, 409: error_response}
    )
    def post(self, request, pk):
        serializer = ReportIssueSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        dispute = get_engine().report_issue(
            actor_from_request(request), pk,
            reason=serializer.validated_data['reason'],
            description=serializer.validated_data['description'],
        )
        return Response(JobDisputeSerializer(dispute).data, status=status.HTTP_201_CREATED)


class RegenerateStartCodeView(APIView):
    permission_classes = [IsAuthenticated, IsCustomer]

    @swagger_auto_schema(responses={200: JobVerificationSerializer, 403: error_response, 409: error_response})
    def post(self, request, pk):
        code = get_engine().regenerate_start_code(actor_from_request(request), pk)
        return Response(JobVerificationSerializer(code).data)


class JobCodesView(APIView):
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="Customers see the start code; the assigned hustler sees the completion code.",
        responses={200: 'Codes visible to the caller', 403: error_response, 404: error_response}
    )
    def get(self, request, pk):
        return Response(get_engine().get_codes(actor_from_request(request), pk))


class AutoReleaseView(APIView):
    permission_classes = [IsAuthenticated, IsSuperuser]

    @swagger_auto_schema(
        operation_description="Run the auto-release sweep now (normally run by the release_payments command).",
        responses={200: 'Sweep summary', 403: 'Forbidden'}
    )
    def post(self, request):
        summary = get_engine().auto_release()
        return Response(summary)


class RegenerateCompletionCodeView(APIView):
    permission_classes = [IsAuthenticated, IsCustomer]

    @swagger_auto_schema(
        operation_description="Replace an unused completion code, for example when the customer lost it.",
        responses={200: JobVerificationSerializer, 403: error_response, 409: error_response}
    )
    def post(self, request, pk):
        code = get_engine().regenerate_completion_code(actor_from_request(request), pk)
        return Response(JobVerificationSerializer(code).data)


class JobTipView(APIView):
    permission_classes = [IsAuthenticated, IsCustomer]

    @swagger_auto_schema(
        operation_description=(
            "Tip the hustler on a paid job. Charged separately and passed on in full; "
            "capped at 25% of the job amount and $50. One tip per job."
        ),
        request_body=AddTipSerializer,
        responses={
            201: TipSerializer,
            400: error_response,
            402: payment_error_response,
            403: error_response,
            409: error_response,
        }
    )
    def post(self, request, pk):
        serializer = AddTipSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        tip = get_engine().add_tip(
            actor_from_request(request), pk,
            tip_amount=serializer.validated_data.get('tip_amount'),
            tip_percent=serializer.validated_data.get('tip_percent'),
        )
        return Response(TipSerializer(tip).data, status=status.HTTP_201_CREATED)


class JobReviewsView(APIView):
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="Reviews left on a job by its customer and hustler.",
        responses={200: ReviewSerializer(many=True), 403: error_response, 404: error_response}
    )
    def get(self, request, pk):
        job = visible_job(request, pk)
        return Response(ReviewSerializer(reviews.visible_reviews().filter(job=job), many=True).data)

    @swagger_auto_schema(
        operation_description="Review the other party of a completed job. One review per participant per job.",
        request_body=ReviewCreateSerializer,
        responses={201: ReviewSerializer, 403: error_response, 404: error_response, 409: error_response}
    )
    def post(self, request, pk):
        serializer = ReviewCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        review = reviews.create_review(
            actor_from_request(request), pk,
            stars=serializer.validated_data['stars'],
            text=serializer.validated_data['text'],
        )
        return Response(ReviewSerializer(review).data, status=status.HTTP_201_CREATED)


class UserReviewsView(APIView):
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="Reviews a user received, newest first, with their average rating.",
        manual_parameters=[
            openapi.Parameter('limit', openapi.IN_QUERY, type=openapi.TYPE_INTEGER, description='Default 6, max 50'),
            openapi.Parameter('offset', openapi.IN_QUERY, type=openapi.TYPE_INTEGER),
        ],
        responses={200: 'reviews page with rating stats', 404: error_response}
    )
    def get(self, request, user_id):
        if not User.objects.filter(pk=user_id).exists():
            raise NotFoundError(f"User {user_id} not found", code='USER_NOT_FOUND', field='user_id')
        limit, offset = reviews.page_bounds(request.query_params.get('limit'), request.query_params.get('offset'))
        received = reviews.visible_reviews().filter(reviewee_id=user_id)
        total = received.count()
        page = received[offset:offset + limit]
        return Response({
            'reviews': ReviewSerializer(page, many=True).data,
            'total': total,
            'limit': limit,
            'offset': offset,
            'has_more': offset + limit < total,
            'rating_stats': reviews.rating_stats(user_id),
        })
