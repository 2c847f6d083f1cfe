"""
Contact Submission Handler

Validates a contact form submission, delivers it to the portfolio owner
through the first email provider that succeeds, then sends a best-effort
acknowledgment to the submitter.

Flow per request (nothing persists between requests):
1. Validate name, email, subject, message -> 400 on failure
2. Try each configured provider in order until one accepts the message
3. No provider succeeded -> 500 with a per-provider failure breakdown
4. Send the auto-reply through the provider that succeeded (non-fatal)
5. Respond 200 with the delivery receipt and auto-reply outcome
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.utils import timezone
from rest_framework import status

from contact.exceptions import AutoReplyError, ProviderError, ProviderUnknownError
from contact.serializers import ContactSubmissionSerializer, flatten_errors
from .email_content import build_auto_reply, build_notification
from .email_providers import EmailProvider, get_providers, resolve_recipient

logger = logging.getLogger(__name__)


@dataclass
class DeliveryAttempt:
    """Outcome of one provider for the main notification."""
    provider: EmailProvider
    configured: bool
    attempted: bool = False
    succeeded: bool = False
    error: Optional[ProviderError] = None


class ContactSubmissionHandler:
    """
    Handles a single contact form submission.

    Usage:
        handler = ContactSubmissionHandler()
        status_code, envelope = handler.handle(request.data)
    """

    def __init__(self, providers=None):
        self.providers = providers if providers is not None else get_providers()
        self.fallback_email = settings.CONTACT_FALLBACK_EMAIL
        self.auto_reply_enabled = getattr(settings, 'CONTACT_AUTO_REPLY_ENABLED', True)
        self.attempts = []

    def handle(self, data):
        """
        Process one submission.

        Returns:
            tuple: (status_code, envelope)
        """
        try:
            return self._process(data)
        except Exception as e:
            logger.exception(f"Unexpected error in contact handler: {e}")
            return status.HTTP_500_INTERNAL_SERVER_ERROR, self._envelope(
                success=False,
                message=f"An unexpected error occurred. Please contact me directly at {self.fallback_email}",
                errors=[{'field': 'server', 'message': 'Internal server error.'}],
                debug={
                    'error': str(e),
                    'timestamp': timezone.now().isoformat(),
                },
            )

    def _process(self, data):
        serializer = ContactSubmissionSerializer(data=data)
        if not serializer.is_valid():
            return status.HTTP_400_BAD_REQUEST, self._envelope(
                success=False,
                message='Please check your input and try again.',
                errors=flatten_errors(serializer.errors),
            )

        submission = serializer.validated_data
        recipient = resolve_recipient()
        notification = build_notification(submission, recipient)

        self.attempts = [
            DeliveryAttempt(provider=provider, configured=provider.is_configured())
            for provider in self.providers
        ]

        receipt, provider = self._deliver(notification)
        if receipt is None:
            return status.HTTP_500_INTERNAL_SERVER_ERROR, self._failure_envelope()

        auto_reply = self._auto_reply(provider, submission)

        return status.HTTP_200_OK, self._envelope(
            success=True,
            message="Thank you for your message! I'll get back to you soon.",
            data={
                'mainEmail': receipt.to_dict(),
                'autoReply': auto_reply,
            },
        )

    def _deliver(self, notification):
        """Try providers in order; stop at the first success."""
        for attempt in self.attempts:
            if not attempt.configured:
                continue

            attempt.attempted = True
            provider = attempt.provider
            try:
                receipt = provider.send(notification)
            except ProviderError as e:
                logger.error(f"{provider.label} delivery failed ({e.reason}): {e}")
                attempt.error = e
                continue
            except Exception as e:
                logger.exception(f"{provider.label} delivery raised unexpectedly: {e}")
                attempt.error = ProviderUnknownError(str(e) or e.__class__.__name__, provider=provider.key)
                continue

            attempt.succeeded = True
            return receipt, provider

        return None, None

    def _auto_reply(self, provider, submission):
        result = {
            'status': 'not_attempted',
            'service': provider.service_name,
            'error': None,
        }

        if self.auto_reply_enabled:
            logger.info(f"Sending auto-reply using {provider.service_name}...")
            try:
                self._send_auto_reply(provider, submission)
            except AutoReplyError as e:
                logger.warning(f"Auto-reply failed (non-blocking): {e}")
                result['status'] = 'failed'
                result['error'] = str(e)
            else:
                logger.info(f"Auto-reply sent successfully via {provider.service_name}")
                result['status'] = 'sent'

        result['timestamp'] = timezone.now().isoformat()
        return result

    @staticmethod
    def _send_auto_reply(provider, submission):
        try:
            provider.send(build_auto_reply(submission))
        except Exception as e:
            raise AutoReplyError(str(e) or e.__class__.__name__) from e

    def _failure_envelope(self):
        configured = [attempt for attempt in self.attempts if attempt.configured]

        if not configured:
            message = f"Email service is not configured. Please contact me directly at {self.fallback_email}"
            errors = [{'field': 'server', 'message': 'No email service configuration found.'}]
        else:
            message = f"Failed to send email. Please contact me directly at {self.fallback_email}"
            errors = []
            any_attempted = False
            for attempt in self.attempts:
                provider = attempt.provider
                if attempt.attempted and attempt.error:
                    any_attempted = True
                    errors.append({
                        'field': provider.key,
                        'message': self.describe_failure(provider, attempt.error),
                    })
                elif not attempt.configured and any_attempted:
                    errors.append({
                        'field': provider.key,
                        'message': f"{provider.label} not configured as fallback",
                    })

        debug = {}
        for attempt in self.attempts:
            debug[f"{attempt.provider.debug_key}Configured"] = attempt.configured
        for attempt in self.attempts:
            debug[f"{attempt.provider.debug_key}Attempted"] = attempt.attempted
        debug['timestamp'] = timezone.now().isoformat()

        return self._envelope(success=False, message=message, errors=errors, debug=debug)

    @staticmethod
    def describe_failure(provider, error):
        """Human-readable reason for one provider failure."""
        if error.reason == 'auth':
            return f"{provider.label} authentication failed - {provider.auth_hint}"
        if error.reason == 'connection':
            return f"{provider.label} connection failed - network/firewall issue"
        return f"{provider.label} error: {str(error) or 'Unknown error'}"

    @staticmethod
    def _envelope(success, message, errors=None, data=None, debug=None):
        envelope = {
            'success': success,
            'message': message,
            'errors': errors or [],
        }
        if data is not None:
            envelope['data'] = data
        if debug is not None:
            envelope['debug'] = debug
        return envelope
