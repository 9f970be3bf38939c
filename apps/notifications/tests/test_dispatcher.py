"""Tests for lifecycle notifications."""
from smtplib import SMTPException
from unittest.mock import patch

import pytest
from django.core import mail

from apps.notifications.dispatcher import notify, render, EVENT_TEMPLATES
from apps.notifications.models import NotificationLog


@pytest.fixture
def recipient(make_user):
    return make_user('rita', 'customer')


def test_every_template_renders(recipient):
    context = {
        'job_title': 'Fix sink', 'hustler_name': 'hank', 'start_time': 'tomorrow', 'code': '123456',
        'auto_release_hours': 48, 'amount': '88.00', 'resolution': 'Refunded',
    }
    for event_type in EVENT_TEMPLATES:
        subject, email_body, _ = render(event_type, recipient, context)
        assert 'Fix sink' in subject + email_body


def test_sends_email_and_logs(recipient):
    assert notify('job_started', recipient, job_title='Fix sink') is True

    assert len(mail.outbox) == 1
    assert mail.outbox[0].to == ['rita@example.com']
    log = NotificationLog.objects.get(recipient=recipient)
    assert log.status == 'sent'
    assert log.channel == 'email'


def test_completion_code_reaches_customer(recipient):
    notify('job_completed', recipient, job_title='Fix sink', code='654321', auto_release_hours=48)

    assert '654321' in mail.outbox[0].body


def test_mail_failure_is_swallowed(recipient):
    with patch('apps.notifications.dispatcher.send_mail', side_effect=SMTPException("relay down")):
        assert notify('job_started', recipient, job_title='Fix sink') is False

    log = NotificationLog.objects.get(recipient=recipient)
    assert log.status == 'failed'
    assert 'relay down' in log.error_message


def test_missing_context_is_swallowed(recipient):
    assert notify('payment_released', recipient, job_title='Fix sink') is False
    assert not NotificationLog.objects.exists()


def test_sms_when_twilio_is_configured(recipient, settings):
    settings.TWILIO_ACCOUNT_SID = 'AC123'
    settings.TWILIO_AUTH_TOKEN = 'token'
    settings.TWILIO_PHONE_NUMBER = '+15550000000'
    recipient.phone_number = '+15551234567'
    recipient.save()

    with patch('apps.notifications.dispatcher.TwilioClient') as client:
        assert notify('job_started', recipient, job_title='Fix sink') is True

    client.return_value.messages.create.assert_called_once()
    assert NotificationLog.objects.get(recipient=recipient).channel == 'both'
