from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from drf_yasg.utils import swagger_auto_schema
from django.db import transaction
from django.utils import timezone
from core.constants import ASSIGNED_OR_LATER_STATUSES
from core.exceptions import NotFoundError, ForbiddenError, ConflictError
from .models import Thread, Message
from .serializers import MessageSerializer
import logging

logger = logging.getLogger(__name__)


def thread_for(request, job_id):
    try:
        thread = Thread.objects.select_related('job').get(job_id=job_id)
    except Thread.DoesNotExist:
        raise NotFoundError(f"No conversation exists for job {job_id}", code='THREAD_NOT_FOUND', field='job_id')
    if not thread.is_participant(request.user.id):
        raise ForbiddenError("Only the customer and assigned hustler can read this conversation", code='NOT_PARTICIPANT')
    if thread.job.status not in ASSIGNED_OR_LATER_STATUSES:
        raise ConflictError("Messaging opens once the job is assigned", code='JOB_NOT_ASSIGNED')
    return thread


class JobMessagesView(APIView):
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="Messages between the customer and the assigned hustler, oldest first.",
        responses={200: MessageSerializer(many=True), 403: 'Forbidden', 404: 'Not Found', 409: 'Conflict'}
    )
    def get(self, request, job_id):
        thread = thread_for(request, job_id)
        messages = thread.messages.select_related('sender')
        return Response(MessageSerializer(messages, many=True).data)

    @swagger_auto_schema(
        request_body=MessageSerializer,
        responses={201: MessageSerializer, 400: 'Bad Request', 403: 'Forbidden', 404: 'Not Found', 409: 'Conflict'}
    )
    def post(self, request, job_id):
        thread = thread_for(request, job_id)
        serializer = MessageSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        with transaction.atomic():
            message = Message.objects.create(thread=thread, sender=request.user, body=serializer.validated_data['body'])
            Thread.objects.filter(pk=thread.pk).update(last_message_at=message.created_at or timezone.now())
        logger.info(f"User {request.user.id} posted message {message.pk} on job {job_id}")
        return Response(MessageSerializer(message).data, status=status.HTTP_201_CREATED)
