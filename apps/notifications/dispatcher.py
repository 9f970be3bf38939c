import logging
import re
from django.conf import settings
from django.core.mail import send_mail
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client as TwilioClient
from .models import NotificationLog, CHANNEL_EMAIL, CHANNEL_SMS, CHANNEL_BOTH

logger = logging.getLogger(__name__)

# event type -> (subject, email body, sms body)
EVENT_TEMPLATES = {
    'offer_received': (
        "New offer on {job_title}",
        "Hi {name},\n\n{hustler_name} made an offer on your job '{job_title}'.\n"
        "Review it in the Hustl app.\n\nThe Hustl Team",
        "New offer on '{job_title}' from {hustler_name}.",
    ),
    'offer_accepted': (
        "Your offer for {job_title} was accepted",
        "Hi {name},\n\nYour offer for '{job_title}' was accepted. The customer will give you "
        "a start code when you arrive.\nScheduled: {start_time}\n\nThe Hustl Team",
        "Your offer for '{job_title}' was accepted.",
    ),
    'offer_declined': (
        "Update on {job_title}",
        "Hi {name},\n\nYour offer for '{job_title}' was not selected.\n\nThe Hustl Team",
        "Your offer for '{job_title}' was not selected.",
    ),
    'job_started': (
        "{job_title} has started",
        "Hi {name},\n\nYour hustler entered the start code and '{job_title}' is now in progress.\n\nThe Hustl Team",
        "'{job_title}' is now in progress.",
    ),
    'job_completed': (
        "{job_title} is complete",
        "Hi {name},\n\nYour hustler marked '{job_title}' as complete.\n"
        "Your completion code is {code}. Enter it in the app to release payment.\n"
        "If you do nothing, payment is released automatically after {auto_release_hours} hours "
        "unless you report an issue.\n\nThe Hustl Team",
        "'{job_title}' is complete. Completion code: {code}",
    ),
    'payment_released': (
        "Payment released for {job_title}",
        "Hi {name},\n\nPayment of ${amount} for '{job_title}' has been released.\n\nThe Hustl Team",
        "Payment of ${amount} released for '{job_title}'.",
    ),
    'job_cancelled': (
        "Job cancelled: {job_title}",
        "Hi {name},\n\nThe job '{job_title}' has been cancelled by the customer.\n\nThe Hustl Team",
        "Job '{job_title}' has been cancelled.",
    ),
    'issue_reported': (
        "Issue reported on {job_title}",
        "Hi {name},\n\nAn issue was reported on '{job_title}'. Payment is on hold until "
        "our team reviews it.\n\nThe Hustl Team",
        "An issue was reported on '{job_title}'. Payment is on hold.",
    ),
    'dispute_resolved': (
        "Issue resolved on {job_title}",
        "Hi {name},\n\nThe issue reported on '{job_title}' has been resolved:\n{resolution}\n\nThe Hustl Team",
        "The issue on '{job_title}' has been resolved.",
    ),
    'refund_issued': (
        "Refund issued for {job_title}",
        "Hi {name},\n\nA refund of ${amount} for '{job_title}' has been issued.\n\nThe Hustl Team",
        "Refund of ${amount} issued for '{job_title}'.",
    ),
    'tip_received': (
        "You received a tip for {job_title}",
        "Hi {name},\n\nYour customer added a ${amount} tip for '{job_title}'. It goes to you in full.\n\nThe Hustl Team",
        "You received a ${amount} tip for '{job_title}'.",
    ),
    'review_received': (
        "New review for {job_title}",
        "Hi {name},\n\n{reviewer_name} left you a {stars}/5 review for '{job_title}'.\n\nThe Hustl Team",
        "New {stars}/5 review for '{job_title}'.",
    ),
}


def render(event_type, recipient, context):
    subject, email_body, sms_body = EVENT_TEMPLATES[event_type]
    context = dict(context, name=recipient.first_name or recipient.username)
    return subject.format(**context), email_body.format(**context), sms_body.format(**context)


def send_notification(user, subject, email_message, sms_message):
    """
    Send a notification via email and, when Twilio is configured and the
    user has a valid phone number, SMS. Returns the channel used.
    """
    channels = []
    if user.email:
        send_mail(
            subject=subject,
            message=email_message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[user.email],
            fail_silently=False,
        )
        channels.append(CHANNEL_EMAIL)

    if user.phone_number and settings.TWILIO_ACCOUNT_SID:
        if not re.match(r'^\+\d{9,15}$', user.phone_number):
            logger.warning(f"Invalid phone number format for user {user.id}: {user.phone_number}")
        else:
            try:
                twilio_client = TwilioClient(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
                twilio_client.messages.create(
                    body=sms_message,
                    from_=settings.TWILIO_PHONE_NUMBER,
                    to=user.phone_number
                )
                channels.append(CHANNEL_SMS)
            except TwilioRestException as e:
                logger.error(f"Failed to send SMS to {user.phone_number}: {str(e)}")

    if len(channels) == 2:
        return CHANNEL_BOTH
    return channels[0] if channels else None


def notify(event_type, recipient, **context):
    """
    Fire-and-forget notification for a lifecycle event. Never raises: a
    failed notification must not affect the transition that triggered it.
    """
    log = None
    try:
        subject, email_message, sms_message = render(event_type, recipient, context)
        log = NotificationLog.objects.create(
            recipient=recipient,
            event_type=event_type,
            subject=subject,
            message=email_message,
            channel=CHANNEL_EMAIL if recipient.email else CHANNEL_SMS,
        )
        channel = send_notification(recipient, subject, email_message, sms_message)
        if channel is None:
            log.mark_as_failed("Recipient has no reachable email or phone number")
            return False
        log.mark_as_sent(channel)
        logger.info(f"Sent {event_type} notification to user {recipient.id} via {channel}")
        return True
    except Exception as e:
        logger.error(f"Failed to send {event_type} notification to user {getattr(recipient, 'id', None)}: {str(e)}")
        if log is not None:
            try:
                log.mark_as_failed(str(e))
            except Exception as log_error:
                logger.error(f"Failed to record notification failure: {str(log_error)}")
        return False
