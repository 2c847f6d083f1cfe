"""
Email Delivery Providers

Two interchangeable channels for delivering contact form mail:
- SendGrid v3 Web API (primary, API key + verified sender)
- Gmail SMTP relay (secondary, username + app password)

Credentials are read from Django settings, which load them from the
process environment at startup.
"""
import logging
import smtplib
from dataclasses import dataclass
from email.utils import formataddr, make_msgid
from typing import Optional

import requests
from django.conf import settings
from django.core.mail import EmailMultiAlternatives, get_connection
from django.utils import timezone

from contact.exceptions import (
    ProviderAuthError,
    ProviderConnectionError,
    ProviderNotConfigured,
    ProviderUnknownError,
)

logger = logging.getLogger(__name__)


@dataclass
class OutgoingEmail:
    """Provider-neutral message. The sender address is owned by the provider."""
    to: str
    subject: str
    text: str
    html: str
    from_name: str
    reply_to_email: Optional[str] = None
    reply_to_name: Optional[str] = None


@dataclass
class DeliveryReceipt:
    """What a provider reports back for an accepted message."""
    service: str
    message_id: Optional[str]
    recipient: str
    timestamp: str
    status_code: Optional[int] = None
    response: Optional[str] = None

    def to_dict(self):
        data = {
            'service': self.service,
            'messageId': self.message_id,
        }
        if self.status_code is not None:
            data['statusCode'] = self.status_code
        if self.response is not None:
            data['response'] = self.response
        data['recipient'] = self.recipient
        data['timestamp'] = self.timestamp
        return data


class EmailProvider:
    """
    Base class for delivery channels.

    Subclasses set the identifiers below and implement `is_configured`,
    `send` and `verify`. Every failure surfaces as a `ProviderError`
    subclass so callers can tell auth, connection and unknown errors apart.
    """

    key = None           # short identifier used in error breakdowns
    debug_key = None     # prefix for the debug block flags
    label = None         # human name used in error messages
    service_name = None  # reported as data.mainEmail.service
    auth_hint = 'check credentials'

    def is_configured(self) -> bool:
        raise NotImplementedError

    def send(self, email: OutgoingEmail) -> DeliveryReceipt:
        raise NotImplementedError

    def verify(self) -> None:
        raise NotImplementedError

    def _require_configured(self):
        if not self.is_configured():
            raise ProviderNotConfigured(f"{self.label} is not configured", provider=self.key)

    def __repr__(self):
        return f"<{self.__class__.__name__} configured={self.is_configured()}>"


class SendGridProvider(EmailProvider):
    """
    Service for sending mail through the SendGrid v3 Web API.

    Usage:
        provider = SendGridProvider()
        if provider.is_configured():
            receipt = provider.send(outgoing_email)

    Documentation: https://docs.sendgrid.com/api-reference/mail-send/mail-send
    """

    key = 'sendgrid'
    debug_key = 'sendGrid'
    label = 'SendGrid'
    service_name = 'SendGrid'
    auth_hint = 'check API key'

    def __init__(self):
        self.api_key = getattr(settings, 'SENDGRID_API_KEY', '')
        self.from_email = getattr(settings, 'SENDGRID_FROM_EMAIL', '')
        self.api_url = getattr(settings, 'SENDGRID_API_URL', 'https://api.sendgrid.com/v3').rstrip('/')
        self.timeout = getattr(settings, 'EMAIL_TIMEOUT', 30)

    def is_configured(self) -> bool:
        return bool(self.api_key and self.from_email)

    def send(self, email: OutgoingEmail) -> DeliveryReceipt:
        """
        Send one message.

        Returns:
            DeliveryReceipt carrying the X-Message-Id header and HTTP status

        Raises:
            ProviderAuthError: 401/403 from SendGrid
            ProviderConnectionError: Timeout or network failure
            ProviderUnknownError: Any other non-2xx status
        """
        self._require_configured()

        payload = {
            'personalizations': [{'to': [{'email': email.to}]}],
            'from': {'email': self.from_email, 'name': email.from_name},
            'subject': email.subject,
            # SendGrid requires text/plain before text/html
            'content': [
                {'type': 'text/plain', 'value': email.text},
                {'type': 'text/html', 'value': email.html},
            ],
        }
        if email.reply_to_email:
            payload['reply_to'] = {'email': email.reply_to_email}
            if email.reply_to_name:
                payload['reply_to']['name'] = email.reply_to_name

        response = self._request('post', '/mail/send', json=payload)

        message_id = response.headers.get('X-Message-Id')
        logger.info(
            f"SendGrid accepted message for {email.to}. "
            f"Status: {response.status_code}, MessageId: {message_id}"
        )

        return DeliveryReceipt(
            service=self.service_name,
            message_id=message_id,
            status_code=response.status_code,
            recipient=email.to,
            timestamp=timezone.now().isoformat(),
        )

    def verify(self) -> None:
        """Check the API key against the scopes endpoint without sending mail."""
        self._require_configured()
        self._request('get', '/scopes')

    def _request(self, method, path, **kwargs):
        try:
            response = requests.request(
                method,
                f"{self.api_url}{path}",
                headers={
                    'Authorization': f'Bearer {self.api_key}',
                    'Content-Type': 'application/json',
                },
                timeout=self.timeout,
                **kwargs
            )
        except requests.exceptions.Timeout as e:
            raise ProviderConnectionError(
                f"SendGrid request timed out after {self.timeout}s", provider=self.key
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise ProviderConnectionError(f"SendGrid connection error: {e}", provider=self.key) from e
        except requests.exceptions.RequestException as e:
            raise ProviderUnknownError(str(e), provider=self.key) from e

        if 200 <= response.status_code < 300:
            return response

        detail = self._error_detail(response)
        if response.status_code in (401, 403):
            raise ProviderAuthError(
                f"SendGrid rejected the API key (status {response.status_code}){detail}",
                provider=self.key
            )
        raise ProviderUnknownError(
            f"SendGrid returned status code: {response.status_code}{detail}",
            provider=self.key
        )

    @staticmethod
    def _error_detail(response):
        """First error message from a SendGrid error body, if any."""
        try:
            errors = response.json().get('errors') or []
        except ValueError:
            return ''
        if errors and isinstance(errors[0], dict) and errors[0].get('message'):
            return f": {errors[0]['message']}"
        return ''


class GmailSMTPProvider(EmailProvider):
    """
    Service for sending mail through Gmail's SMTP relay.

    Opens an authenticated session first (connect, STARTTLS, login) so bad
    credentials fail before a message is built, then sends on that session.
    """

    key = 'gmail'
    debug_key = 'gmail'
    label = 'Gmail'
    service_name = 'Gmail SMTP'
    auth_hint = 'check app password'

    def __init__(self):
        self.user = getattr(settings, 'MAIL_USER', '')
        self.password = getattr(settings, 'MAIL_PASS', '')
        self.host = getattr(settings, 'MAIL_HOST', 'smtp.gmail.com')
        self.port = getattr(settings, 'MAIL_PORT', 587)
        self.backend = getattr(settings, 'MAIL_BACKEND', 'django.core.mail.backends.smtp.EmailBackend')
        self.timeout = getattr(settings, 'EMAIL_TIMEOUT', 30)

    def is_configured(self) -> bool:
        return bool(self.user and self.password)

    def send(self, email: OutgoingEmail) -> DeliveryReceipt:
        self._require_configured()

        message_id = make_msgid(domain=self.user.rsplit('@', 1)[-1])
        reply_to = []
        if email.reply_to_email:
            reply_to = [formataddr((email.reply_to_name or '', email.reply_to_email))]

        try:
            connection = self._open_connection()
            try:
                message = EmailMultiAlternatives(
                    subject=email.subject,
                    body=email.text,
                    from_email=formataddr((email.from_name, self.user)),
                    to=[email.to],
                    reply_to=reply_to,
                    headers={'Message-ID': message_id},
                    connection=connection,
                )
                message.attach_alternative(email.html, 'text/html')
                sent = message.send(fail_silently=False)
            finally:
                self._close(connection)
        except (smtplib.SMTPException, OSError, ValueError) as exc:
            raise self._classify(exc) from exc

        if not sent:
            raise ProviderUnknownError("Gmail SMTP accepted no recipients", provider=self.key)

        logger.info(f"Gmail SMTP accepted message for {email.to}. MessageId: {message_id}")

        return DeliveryReceipt(
            service=self.service_name,
            message_id=message_id,
            response=f"{sent} message(s) accepted by {self.host}",
            recipient=email.to,
            timestamp=timezone.now().isoformat(),
        )

    def verify(self) -> None:
        """Open and close an authenticated session; nothing is sent."""
        self._require_configured()
        try:
            connection = self._open_connection()
        except (smtplib.SMTPException, OSError) as exc:
            raise self._classify(exc) from exc
        self._close(connection)

    def _open_connection(self):
        connection = get_connection(
            self.backend,
            host=self.host,
            port=self.port,
            username=self.user,
            password=self.password,
            use_tls=True,
            timeout=self.timeout,
            fail_silently=False,
        )
        connection.open()
        return connection

    def _close(self, connection):
        """QUIT failures after the DATA phase do not undo an accepted message."""
        try:
            connection.close()
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning(f"Gmail SMTP session did not close cleanly: {exc}")

    def _classify(self, exc):
        """Map smtplib/socket failures onto the provider error taxonomy."""
        if isinstance(exc, smtplib.SMTPAuthenticationError):
            return ProviderAuthError(str(exc), provider=self.key)
        if isinstance(exc, smtplib.SMTPResponseException) and exc.smtp_code == 535:
            return ProviderAuthError(str(exc), provider=self.key)
        if isinstance(exc, (smtplib.SMTPConnectError, smtplib.SMTPServerDisconnected)):
            return ProviderConnectionError(str(exc), provider=self.key)
        if isinstance(exc, (smtplib.SMTPException, ValueError)):
            # ValueError covers BadHeaderError from message construction
            return ProviderUnknownError(str(exc) or exc.__class__.__name__, provider=self.key)
        # socket timeouts, refused connections, DNS failures
        return ProviderConnectionError(str(exc) or exc.__class__.__name__, provider=self.key)


def get_providers():
    """Delivery channels in the order they are tried."""
    return [SendGridProvider(), GmailSMTPProvider()]


def resolve_recipient():
    """Explicit override, then provider sender addresses, then the fallback."""
    return (
        getattr(settings, 'CONTACT_EMAIL', '')
        or getattr(settings, 'SENDGRID_FROM_EMAIL', '')
        or getattr(settings, 'MAIL_USER', '')
        or settings.CONTACT_FALLBACK_EMAIL
    )
