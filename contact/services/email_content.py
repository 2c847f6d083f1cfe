"""
Contact Email Content

Builds the owner notification and the submitter acknowledgment from the
templates in contact/templates/contact/emails/.
"""
from django.conf import settings
from django.template.loader import render_to_string
from django.utils import timezone

from .email_providers import OutgoingEmail

NOTIFICATION_SENDER_NAME = 'Portfolio Contact Form'


def _header_value(value):
    """Collapse line breaks so user input can be used in a mail header."""
    return ' '.join(value.split())


def _base_context(submission):
    return {
        'name': submission['name'],
        'email': submission['email'],
        'subject': submission['subject'],
        'message': submission['message'],
        'received_at': timezone.localtime(timezone.now()).strftime('%Y-%m-%d %H:%M:%S %Z'),
    }


def build_notification(submission, recipient):
    """
    Notification sent to the portfolio owner.

    Reply-To points at the submitter so the owner can answer directly.
    """
    context = _base_context(submission)

    return OutgoingEmail(
        to=recipient,
        subject=f"Portfolio Contact: {_header_value(submission['subject'])}",
        text=render_to_string('contact/emails/notification.txt', context).strip(),
        html=render_to_string('contact/emails/notification.html', context),
        from_name=NOTIFICATION_SENDER_NAME,
        reply_to_email=submission['email'],
        reply_to_name=_header_value(submission['name']),
    )


def build_auto_reply(submission):
    """Acknowledgment sent back to the submitter."""
    context = _base_context(submission)
    context.update({
        'owner_name': settings.PORTFOLIO_OWNER_NAME,
        'owner_title': settings.PORTFOLIO_OWNER_TITLE,
        'owner_phone': getattr(settings, 'PORTFOLIO_OWNER_PHONE', ''),
        'portfolio_url': settings.PORTFOLIO_URL,
    })

    return OutgoingEmail(
        to=submission['email'],
        subject=f"Re: {_header_value(submission['subject'])} - Message Received",
        text=render_to_string('contact/emails/auto_reply.txt', context).strip(),
        html=render_to_string('contact/emails/auto_reply.html', context),
        from_name=settings.PORTFOLIO_OWNER_NAME,
    )
