"""
Tests for email providers, message content and the provider check command.
"""
import smtplib
from io import StringIO
from unittest.mock import Mock, patch

import pytest
import requests
from django.core import mail as django_mail
from django.core.management import call_command
from django.core.management.base import CommandError

from contact.exceptions import (
    ProviderAuthError,
    ProviderConnectionError,
    ProviderNotConfigured,
    ProviderUnknownError,
)
from contact.services.email_content import build_auto_reply, build_notification
from contact.services.email_providers import (
    GmailSMTPProvider,
    OutgoingEmail,
    SendGridProvider,
    get_providers,
    resolve_recipient,
)

REQUESTS_PATH = 'contact.services.email_providers.requests.request'


@pytest.fixture
def outgoing():
    return OutgoingEmail(
        to='owner@portfolio.dev',
        subject='Portfolio Contact: Hello',
        text='plain body',
        html='<p>html body</p>',
        from_name='Portfolio Contact Form',
    )


class TestProviderConfiguration:

    def test_sendgrid_needs_key_and_sender(self, email_settings):
        email_settings.SENDGRID_API_KEY = 'SG.key'
        assert SendGridProvider().is_configured() is False

        email_settings.SENDGRID_FROM_EMAIL = 'owner@portfolio.dev'
        assert SendGridProvider().is_configured() is True

    def test_gmail_needs_user_and_password(self, email_settings):
        email_settings.MAIL_PASS = 'app-password'
        assert GmailSMTPProvider().is_configured() is False

        email_settings.MAIL_USER = 'owner@gmail.com'
        assert GmailSMTPProvider().is_configured() is True

    def test_provider_order(self):
        assert [provider.key for provider in get_providers()] == ['sendgrid', 'gmail']

    def test_unconfigured_send_raises(self, outgoing):
        with pytest.raises(ProviderNotConfigured):
            SendGridProvider().send(outgoing)
        with pytest.raises(ProviderNotConfigured):
            GmailSMTPProvider().send(outgoing)

    @pytest.mark.parametrize('overrides, expected', [
        ({'CONTACT_EMAIL': 'inbox@portfolio.dev', 'SENDGRID_FROM_EMAIL': 'sg@portfolio.dev',
          'MAIL_USER': 'owner@gmail.com'}, 'inbox@portfolio.dev'),
        ({'SENDGRID_FROM_EMAIL': 'sg@portfolio.dev', 'MAIL_USER': 'owner@gmail.com'}, 'sg@portfolio.dev'),
        ({'MAIL_USER': 'owner@gmail.com'}, 'owner@gmail.com'),
        ({}, 'hello@example.com'),
    ])
    def test_recipient_resolution(self, email_settings, overrides, expected):
        for name, value in overrides.items():
            setattr(email_settings, name, value)

        assert resolve_recipient() == expected


class TestSendGridProvider:

    def test_status_codes(self, sendgrid_configured, outgoing, sendgrid_response):
        provider = SendGridProvider()

        with patch(REQUESTS_PATH, return_value=sendgrid_response(403, None)):
            with pytest.raises(ProviderAuthError):
                provider.send(outgoing)

        with patch(REQUESTS_PATH, return_value=sendgrid_response(
                400, None, errors=[{'message': 'The from address does not match a verified Sender Identity'}])):
            with pytest.raises(ProviderUnknownError) as excinfo:
                provider.send(outgoing)

        assert 'status code: 400' in str(excinfo.value)
        assert 'verified Sender Identity' in str(excinfo.value)

    def test_unparseable_error_body(self, sendgrid_configured, outgoing):
        response = Mock(status_code=502, headers={})
        response.json.side_effect = ValueError('no json')

        with patch(REQUESTS_PATH, return_value=response):
            with pytest.raises(ProviderUnknownError) as excinfo:
                SendGridProvider().send(outgoing)

        assert str(excinfo.value) == 'SendGrid returned status code: 502'

    @pytest.mark.parametrize('exc, expected', [
        (requests.exceptions.Timeout('slow'), ProviderConnectionError),
        (requests.exceptions.ConnectionError('dns'), ProviderConnectionError),
        (requests.exceptions.TooManyRedirects('loop'), ProviderUnknownError),
    ])
    def test_transport_errors(self, sendgrid_configured, outgoing, exc, expected):
        with patch(REQUESTS_PATH, side_effect=exc):
            with pytest.raises(expected):
                SendGridProvider().send(outgoing)

    def test_receipt(self, sendgrid_configured, outgoing, sendgrid_response):
        with patch(REQUESTS_PATH, return_value=sendgrid_response(202, 'abc123')):
            receipt = SendGridProvider().send(outgoing)

        data = receipt.to_dict()
        assert data['service'] == 'SendGrid'
        assert data['messageId'] == 'abc123'
        assert data['statusCode'] == 202
        assert data['recipient'] == 'owner@portfolio.dev'
        assert 'response' not in data

    def test_verify_hits_scopes(self, sendgrid_configured, sendgrid_response):
        with patch(REQUESTS_PATH, return_value=sendgrid_response(200, None)) as mock_request:
            SendGridProvider().verify()

        assert mock_request.call_args.args == ('get', 'https://api.sendgrid.com/v3/scopes')


class TestGmailSMTPProvider:

    def test_connection_uses_settings(self, gmail_configured, outgoing, mailoutbox):
        with patch('contact.services.email_providers.get_connection', wraps=django_mail.get_connection) as mock_conn:
            GmailSMTPProvider().send(outgoing)

        args, kwargs = mock_conn.call_args
        assert args == ('django.core.mail.backends.locmem.EmailBackend',)
        assert kwargs['host'] == 'smtp.gmail.com'
        assert kwargs['port'] == 587
        assert kwargs['username'] == 'owner@gmail.com'
        assert kwargs['password'] == 'abcd efgh ijkl mnop'
        assert kwargs['use_tls'] is True
        assert kwargs['timeout'] == 5
        assert len(mailoutbox) == 1

    def test_verify_before_send(self, gmail_configured, outgoing, mailoutbox):
        connection = Mock()
        connection.open.side_effect = smtplib.SMTPAuthenticationError(535, b'bad credentials')

        with patch('contact.services.email_providers.get_connection', return_value=connection):
            with pytest.raises(ProviderAuthError):
                GmailSMTPProvider().send(outgoing)

        assert mailoutbox == []

    def test_535_response_is_auth_failure(self, gmail_configured, outgoing):
        error = smtplib.SMTPSenderRefused(535, b'5.7.8 BadCredentials', 'owner@gmail.com')

        with patch('contact.services.email_providers.GmailSMTPProvider._open_connection', side_effect=error):
            with pytest.raises(ProviderAuthError):
                GmailSMTPProvider().send(outgoing)

    def test_connection_closed_after_send(self, gmail_configured, outgoing):
        connection = Mock()
        connection.send_messages.return_value = 1

        with patch('contact.services.email_providers.get_connection', return_value=connection):
            receipt = GmailSMTPProvider().send(outgoing)

        connection.open.assert_called_once()
        connection.close.assert_called_once()
        assert receipt.service == 'Gmail SMTP'
        assert receipt.message_id.endswith('@gmail.com>')

    def test_no_recipients_accepted(self, gmail_configured, outgoing):
        connection = Mock()
        connection.send_messages.return_value = 0

        with patch('contact.services.email_providers.get_connection', return_value=connection):
            with pytest.raises(ProviderUnknownError):
                GmailSMTPProvider().send(outgoing)

        connection.close.assert_called_once()

    def test_close_failure_after_send_keeps_receipt(self, gmail_configured, outgoing):
        connection = Mock()
        connection.send_messages.return_value = 1
        connection.close.side_effect = smtplib.SMTPResponseException(421, b'closing channel')

        with patch('contact.services.email_providers.get_connection', return_value=connection):
            receipt = GmailSMTPProvider().send(outgoing)

        assert receipt.service == 'Gmail SMTP'
        assert receipt.response == '1 message(s) accepted by smtp.gmail.com'

    def test_close_failure_does_not_mask_send_error(self, gmail_configured, outgoing):
        connection = Mock()
        connection.send_messages.side_effect = smtplib.SMTPAuthenticationError(535, b'bad credentials')
        connection.close.side_effect = smtplib.SMTPServerDisconnected('gone')

        with patch('contact.services.email_providers.get_connection', return_value=connection):
            with pytest.raises(ProviderAuthError):
                GmailSMTPProvider().send(outgoing)

    def test_header_with_newline_is_unknown_error(self, gmail_configured, outgoing, mailoutbox):
        outgoing.subject = 'Portfolio Contact: Hello\nBcc: victim@example.com'

        with pytest.raises(ProviderUnknownError):
            GmailSMTPProvider().send(outgoing)

        assert mailoutbox == []


class TestEmailContent:

    @pytest.fixture
    def submission(self):
        return {
            'name': 'Mallory <b>',
            'email': 'mallory@example.com',
            'subject': 'Hello & welcome',
            'message': 'Line one\n<script>alert(1)</script>',
        }

    def test_notification_escapes_html(self, submission):
        email = build_notification(submission, 'owner@portfolio.dev')

        assert email.to == 'owner@portfolio.dev'
        assert email.subject == 'Portfolio Contact: Hello & welcome'
        assert email.reply_to_email == 'mallory@example.com'
        assert email.reply_to_name == 'Mallory <b>'
        assert '<script>' not in email.html
        assert '&lt;script&gt;' in email.html
        assert 'Line one<br>' in email.html
        assert 'Hello%20%26%20welcome' in email.html

    def test_notification_text_is_raw(self, submission):
        email = build_notification(submission, 'owner@portfolio.dev')

        assert '<script>alert(1)</script>' in email.text
        assert 'Name: Mallory <b>' in email.text
        assert 'Subject: Hello & welcome' in email.text

    def test_header_values_are_single_line(self, submission):
        submission['name'] = 'Mallory\r\nBcc: victim@example.com'
        submission['subject'] = 'Hello\n  world'

        notification = build_notification(submission, 'owner@portfolio.dev')
        auto_reply = build_auto_reply(submission)

        assert notification.subject == 'Portfolio Contact: Hello world'
        assert notification.reply_to_name == 'Mallory Bcc: victim@example.com'
        assert auto_reply.subject == 'Re: Hello world - Message Received'
        assert 'Hello\n  world' in notification.text

    def test_auto_reply(self, email_settings, submission):
        email_settings.PORTFOLIO_OWNER_PHONE = '+1-555-0100'
        email_settings.PORTFOLIO_URL = 'https://jane.dev'

        email = build_auto_reply(submission)

        assert email.to == 'mallory@example.com'
        assert email.subject == 'Re: Hello & welcome - Message Received'
        assert email.from_name == 'Jane Portfolio'
        assert email.reply_to_email is None
        assert 'Hi Mallory <b>,' in email.text
        assert '+1-555-0100' in email.text
        assert 'https://jane.dev' in email.html

    def test_auto_reply_without_phone(self, submission):
        email = build_auto_reply(submission)

        assert 'call me' not in email.text
        assert 'call me' not in email.html


class TestCheckEmailProvidersCommand:

    def test_fails_without_providers(self):
        with pytest.raises(CommandError):
            call_command('check_email_providers', stdout=StringIO())

    def test_reports_configuration(self, gmail_configured):
        out = StringIO()
        call_command('check_email_providers', stdout=out)

        output = out.getvalue()
        assert 'Recipient: owner@gmail.com' in output
        assert 'SendGrid: not configured' in output
        assert 'Gmail: configured' in output

    def test_verify(self, sendgrid_configured, gmail_configured, sendgrid_response):
        out = StringIO()
        with patch(REQUESTS_PATH, return_value=sendgrid_response(401, None)):
            call_command('check_email_providers', '--verify', stdout=out)

        output = out.getvalue()
        assert 'SendGrid authentication failed - check API key' in output
        assert 'Gmail: credentials verified' in output
