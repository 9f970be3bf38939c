"""
Reviews between the two parties of a job.

Either participant may review the other once the work is done, one review
per participant per job. Ratings are aggregated on read from visible
reviews; admins hide abusive reviews through the Django admin.
"""
import logging
from functools import partial
from django.db import IntegrityError, transaction
from django.db.models import Avg, Count
from core.constants import JOB_PAID, AWAITING_RELEASE_STATUSES
from core.exceptions import NotFoundError, ForbiddenError, ConflictError
from apps.notifications.dispatcher import notify
from .models import Job, Review

logger = logging.getLogger(__name__)

REVIEWABLE_STATUSES = AWAITING_RELEASE_STATUSES + (JOB_PAID,)
DEFAULT_PAGE_SIZE = 6
MAX_PAGE_SIZE = 50


def create_review(actor, job_id, stars, text, notifier=notify):
    try:
        job = Job.objects.select_related('customer', 'hustler').get(pk=job_id)
    except Job.DoesNotExist:
        raise NotFoundError(f"Job {job_id} not found", code='JOB_NOT_FOUND', field='job_id')
    if job.hustler_id is None or not job.is_participant(actor.actor_id):
        raise ForbiddenError("Only the customer and the assigned hustler can review this job", code='NOT_PARTICIPANT')
    if job.status not in REVIEWABLE_STATUSES:
        raise ConflictError("Reviews open once the job is completed", code='JOB_NOT_COMPLETED')
    reviewee = job.hustler if actor.actor_id == job.customer_id else job.customer

    try:
        with transaction.atomic():
            review = Review.objects.create(
                job=job, reviewer_id=actor.actor_id, reviewee=reviewee, stars=stars, text=text
            )
            transaction.on_commit(partial(
                notifier, 'review_received', reviewee,
                job_title=job.title, stars=stars, reviewer_name=review.reviewer.first_name or review.reviewer.username,
            ))
    except IntegrityError:
        raise ConflictError("You have already reviewed this job", code='REVIEW_EXISTS')
    logger.info(f"User {actor.actor_id} reviewed user {reviewee.pk} on job {job.pk}: {stars}/5")
    return review


def visible_reviews():
    return Review.objects.select_related('reviewer', 'job').filter(is_hidden=False)


def rating_stats(user_id):
    stats = visible_reviews().filter(reviewee_id=user_id).aggregate(
        average_rating=Avg('stars'), rating_count=Count('id')
    )
    average = stats['average_rating']
    return {
        'average_rating': round(float(average), 1) if average is not None else 0.0,
        'rating_count': stats['rating_count'],
    }


def page_bounds(limit, offset):
    """Clamp client paging parameters to sane values."""
    try:
        limit = int(limit) if limit not in (None, '') else DEFAULT_PAGE_SIZE
    except (TypeError, ValueError):
        limit = DEFAULT_PAGE_SIZE
    try:
        offset = int(offset) if offset not in (None, '') else 0
    except (TypeError, ValueError):
        offset = 0
    return max(1, min(limit, MAX_PAGE_SIZE)), max(0, offset)
