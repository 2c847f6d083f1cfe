"""
Tests for the Portfolio Contact Form

Covers validation, provider fallback, failure breakdowns and the
non-fatal auto-reply.

Run with: pytest contact -v
"""
import smtplib
from unittest.mock import patch

import pytest
import requests
from rest_framework import status

from contact.services import ContactSubmissionHandler

SUBMIT_URL = '/api/contact/'
REQUESTS_PATH = 'contact.services.email_providers.requests.request'


class TestContactFormValidation:
    """Submissions missing data never reach a provider."""

    @pytest.mark.parametrize('field', ['name', 'email', 'subject', 'message'])
    def test_missing_field_rejected(self, api_client, sendgrid_configured, valid_submission, field):
        del valid_submission[field]

        with patch(REQUESTS_PATH) as mock_request:
            response = api_client.post(SUBMIT_URL, valid_submission, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['success'] is False
        assert [error['field'] for error in response.data['errors']] == [field]
        mock_request.assert_not_called()

    @pytest.mark.parametrize('field', ['name', 'subject', 'message'])
    def test_whitespace_only_field_rejected(self, api_client, valid_submission, field):
        valid_submission[field] = '   '

        response = api_client.post(SUBMIT_URL, valid_submission, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['errors'][0]['field'] == field

    def test_empty_payload_reports_every_field(self, api_client):
        response = api_client.post(SUBMIT_URL, {}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        fields = {error['field'] for error in response.data['errors']}
        assert fields == {'name', 'email', 'subject', 'message'}
        assert response.data['message'] == 'Please check your input and try again.'

    def test_invalid_email_rejected(self, api_client, valid_submission):
        valid_submission['email'] = 'not-an-email'

        response = api_client.post(SUBMIT_URL, valid_submission, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['errors'][0]['field'] == 'email'

    def test_malformed_json_rejected(self, api_client):
        response = api_client.generic(
            'POST', SUBMIT_URL, '{"name": ', content_type='application/json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['success'] is False
        assert response.data['errors'][0]['field'] == 'non_field_errors'

    def test_non_object_body_rejected(self, api_client, gmail_configured, mailoutbox):
        response = api_client.post(SUBMIT_URL, [1, 2], format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['success'] is False
        assert len(response.data['errors']) == 1
        assert response.data['errors'][0]['field'] == 'non_field_errors'
        assert 'Expected a dictionary' in response.data['errors'][0]['message']
        assert mailoutbox == []

    def test_form_encoded_submission_accepted(
        self, api_client, gmail_configured, valid_submission, mailoutbox
    ):
        response = api_client.post(SUBMIT_URL, valid_submission)

        assert response.status_code == status.HTTP_200_OK
        assert len(mailoutbox) == 2


class TestPrimaryDelivery:
    """SendGrid is tried first and short-circuits on success."""

    def test_sendgrid_success(
        self, api_client, sendgrid_configured, gmail_configured,
        valid_submission, sendgrid_response, mailoutbox
    ):
        with patch(REQUESTS_PATH, return_value=sendgrid_response()) as mock_request:
            response = api_client.post(SUBMIT_URL, valid_submission, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['success'] is True
        assert response.data['message'] == "Thank you for your message! I'll get back to you soon."

        main_email = response.data['data']['mainEmail']
        assert main_email['service'] == 'SendGrid'
        assert main_email['messageId'] == 'sg-msg-123'
        assert main_email['statusCode'] == 202
        assert main_email['recipient'] == 'owner@portfolio.dev'
        assert main_email['timestamp']

        # Gmail is never touched
        assert mailoutbox == []
        assert mock_request.call_count == 2

    def test_sendgrid_payload(self, api_client, sendgrid_configured, valid_submission, sendgrid_response):
        with patch(REQUESTS_PATH, return_value=sendgrid_response()) as mock_request:
            api_client.post(SUBMIT_URL, valid_submission, format='json')

        method, url = mock_request.call_args_list[0].args
        kwargs = mock_request.call_args_list[0].kwargs
        payload = kwargs['json']

        assert method == 'post'
        assert url == 'https://api.sendgrid.com/v3/mail/send'
        assert kwargs['headers']['Authorization'] == 'Bearer SG.test-key'
        assert kwargs['timeout'] == 5
        assert payload['personalizations'] == [{'to': [{'email': 'owner@portfolio.dev'}]}]
        assert payload['from'] == {'email': 'owner@portfolio.dev', 'name': 'Portfolio Contact Form'}
        assert payload['reply_to'] == {'email': 'ada@example.com', 'name': 'Ada Lovelace'}
        assert payload['subject'] == 'Portfolio Contact: Collaboration'
        assert [part['type'] for part in payload['content']] == ['text/plain', 'text/html']

    def test_auto_reply_goes_to_submitter(
        self, api_client, sendgrid_configured, valid_submission, sendgrid_response
    ):
        with patch(REQUESTS_PATH, return_value=sendgrid_response()) as mock_request:
            response = api_client.post(SUBMIT_URL, valid_submission, format='json')

        payload = mock_request.call_args_list[1].kwargs['json']
        assert payload['personalizations'] == [{'to': [{'email': 'ada@example.com'}]}]
        assert payload['from'] == {'email': 'owner@portfolio.dev', 'name': 'Jane Portfolio'}
        assert payload['subject'] == 'Re: Collaboration - Message Received'
        assert 'reply_to' not in payload

        auto_reply = response.data['data']['autoReply']
        assert auto_reply['status'] == 'sent'
        assert auto_reply['service'] == 'SendGrid'
        assert auto_reply['error'] is None

    def test_contact_email_overrides_recipient(
        self, api_client, sendgrid_configured, valid_submission, sendgrid_response
    ):
        sendgrid_configured.CONTACT_EMAIL = 'inbox@portfolio.dev'

        with patch(REQUESTS_PATH, return_value=sendgrid_response()) as mock_request:
            response = api_client.post(SUBMIT_URL, valid_submission, format='json')

        payload = mock_request.call_args_list[0].kwargs['json']
        assert payload['personalizations'] == [{'to': [{'email': 'inbox@portfolio.dev'}]}]
        assert response.data['data']['mainEmail']['recipient'] == 'inbox@portfolio.dev'


class TestSecondaryFallback:
    """Gmail SMTP takes over when SendGrid fails or is absent."""

    def test_falls_back_to_gmail(
        self, sendgrid_configured, gmail_configured, valid_submission,
        sendgrid_response, mailoutbox
    ):
        handler = ContactSubmissionHandler()

        with patch(REQUESTS_PATH, return_value=sendgrid_response(500, None)) as mock_request:
            status_code, envelope = handler.handle(valid_submission)

        assert status_code == status.HTTP_200_OK
        assert envelope['success'] is True
        assert envelope['data']['mainEmail']['service'] == 'Gmail SMTP'
        assert envelope['data']['autoReply']['service'] == 'Gmail SMTP'
        assert envelope['data']['autoReply']['status'] == 'sent'

        sendgrid_attempt, gmail_attempt = handler.attempts
        assert sendgrid_attempt.attempted and not sendgrid_attempt.succeeded
        assert 'status code: 500' in str(sendgrid_attempt.error)
        assert gmail_attempt.attempted and gmail_attempt.succeeded

        # Auto-reply uses Gmail too, so SendGrid is called exactly once
        assert mock_request.call_count == 1
        assert len(mailoutbox) == 2

    def test_gmail_message_contents(self, gmail_configured, valid_submission, mailoutbox):
        status_code, envelope = ContactSubmissionHandler().handle(valid_submission)

        assert status_code == status.HTTP_200_OK
        notification, auto_reply = mailoutbox

        assert notification.to == ['owner@gmail.com']
        assert notification.from_email == 'Portfolio Contact Form <owner@gmail.com>'
        assert notification.reply_to == ['Ada Lovelace <ada@example.com>']
        assert notification.subject == 'Portfolio Contact: Collaboration'
        assert notification.extra_headers['Message-ID'] == envelope['data']['mainEmail']['messageId']
        assert notification.alternatives[0][1] == 'text/html'

        assert auto_reply.to == ['ada@example.com']
        assert auto_reply.from_email == 'Jane Portfolio <owner@gmail.com>'
        assert auto_reply.subject == 'Re: Collaboration - Message Received'

        main_email = envelope['data']['mainEmail']
        assert main_email['response'] == '1 message(s) accepted by smtp.gmail.com'
        assert 'statusCode' not in main_email

    def test_gmail_only(self, api_client, gmail_configured, valid_submission):
        with patch(REQUESTS_PATH) as mock_request:
            response = api_client.post(SUBMIT_URL, valid_submission, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['data']['mainEmail']['service'] == 'Gmail SMTP'
        mock_request.assert_not_called()

    def test_unexpected_sendgrid_exception_falls_back(
        self, sendgrid_configured, gmail_configured, valid_submission, mailoutbox
    ):
        handler = ContactSubmissionHandler()

        with patch(REQUESTS_PATH, side_effect=ValueError('Invalid header value')):
            status_code, envelope = handler.handle(valid_submission)

        assert status_code == status.HTTP_200_OK
        assert envelope['data']['mainEmail']['service'] == 'Gmail SMTP'
        assert str(handler.attempts[0].error) == 'Invalid header value'
        assert handler.attempts[0].error.reason == 'unknown'
        assert len(mailoutbox) == 2

    def test_multiline_subject_and_name_delivered(self, gmail_configured, valid_submission, mailoutbox):
        valid_submission['subject'] = 'Hello\nthere'
        valid_submission['name'] = 'Ada\r\nLovelace'

        status_code, envelope = ContactSubmissionHandler().handle(valid_submission)

        assert status_code == status.HTTP_200_OK
        notification, auto_reply = mailoutbox
        assert notification.subject == 'Portfolio Contact: Hello there'
        assert notification.reply_to == ['Ada Lovelace <ada@example.com>']
        assert auto_reply.subject == 'Re: Hello there - Message Received'


class TestDeliveryFailure:
    """No provider succeeded: 500 with a breakdown and the fallback address."""

    def test_nothing_configured(self, api_client, valid_submission, mailoutbox):
        with patch(REQUESTS_PATH) as mock_request:
            response = api_client.post(SUBMIT_URL, valid_submission, format='json')

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.data['success'] is False
        assert response.data['message'] == (
            'Email service is not configured. Please contact me directly at hello@example.com'
        )
        assert response.data['errors'] == [
            {'field': 'server', 'message': 'No email service configuration found.'}
        ]
        assert response.data['debug']['sendGridConfigured'] is False
        assert response.data['debug']['gmailConfigured'] is False
        assert response.data['debug']['sendGridAttempted'] is False
        assert response.data['debug']['gmailAttempted'] is False
        mock_request.assert_not_called()
        assert mailoutbox == []

    def test_sendgrid_auth_failure_without_fallback(
        self, api_client, sendgrid_configured, valid_submission, sendgrid_response
    ):
        rejected = sendgrid_response(401, None, errors=[{'message': 'The provided authorization grant is invalid'}])

        with patch(REQUESTS_PATH, return_value=rejected):
            response = api_client.post(SUBMIT_URL, valid_submission, format='json')

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.data['message'] == (
            'Failed to send email. Please contact me directly at hello@example.com'
        )
        assert response.data['errors'] == [
            {'field': 'sendgrid', 'message': 'SendGrid authentication failed - check API key'},
            {'field': 'gmail', 'message': 'Gmail not configured as fallback'},
        ]
        assert response.data['debug']['sendGridAttempted'] is True
        assert response.data['debug']['gmailAttempted'] is False

    def test_both_providers_fail(self, api_client, sendgrid_configured, gmail_configured, valid_submission):
        auth_error = smtplib.SMTPAuthenticationError(535, b'5.7.8 Username and Password not accepted')

        with patch(REQUESTS_PATH, side_effect=requests.exceptions.Timeout('read timed out')), \
                patch('contact.services.email_providers.GmailSMTPProvider._open_connection',
                      side_effect=auth_error):
            response = api_client.post(SUBMIT_URL, valid_submission, format='json')

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.data['errors'] == [
            {'field': 'sendgrid', 'message': 'SendGrid connection failed - network/firewall issue'},
            {'field': 'gmail', 'message': 'Gmail authentication failed - check app password'},
        ]
        assert response.data['debug']['sendGridAttempted'] is True
        assert response.data['debug']['gmailAttempted'] is True

    @pytest.mark.parametrize('exc, expected', [
        (TimeoutError('timed out'), 'Gmail connection failed - network/firewall issue'),
        (ConnectionRefusedError(111, 'Connection refused'), 'Gmail connection failed - network/firewall issue'),
        (smtplib.SMTPServerDisconnected('Connection unexpectedly closed'),
         'Gmail connection failed - network/firewall issue'),
        (smtplib.SMTPDataError(554, b'Message rejected'), "Gmail error: (554, b'Message rejected')"),
    ])
    def test_gmail_failure_reasons(self, gmail_configured, valid_submission, exc, expected):
        with patch('contact.services.email_providers.GmailSMTPProvider._open_connection', side_effect=exc):
            status_code, envelope = ContactSubmissionHandler().handle(valid_submission)

        assert status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert envelope['errors'] == [{'field': 'gmail', 'message': expected}]

    def test_unexpected_provider_exception_keeps_breakdown(
        self, sendgrid_configured, gmail_configured, valid_submission, sendgrid_response
    ):
        with patch(REQUESTS_PATH, return_value=sendgrid_response(400, None)), \
                patch('contact.services.email_providers.GmailSMTPProvider.send',
                      side_effect=RuntimeError('backend exploded')):
            status_code, envelope = ContactSubmissionHandler().handle(valid_submission)

        assert status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert envelope['message'] == 'Failed to send email. Please contact me directly at hello@example.com'
        assert envelope['errors'] == [
            {'field': 'sendgrid', 'message': 'SendGrid error: SendGrid returned status code: 400'},
            {'field': 'gmail', 'message': 'Gmail error: backend exploded'},
        ]
        assert envelope['debug']['gmailAttempted'] is True


class TestAutoReply:
    """The acknowledgment never changes the outcome of the main delivery."""

    def test_auto_reply_failure_is_non_fatal(
        self, api_client, sendgrid_configured, valid_submission, sendgrid_response
    ):
        side_effect = [sendgrid_response(), requests.exceptions.ConnectionError('connection reset')]

        with patch(REQUESTS_PATH, side_effect=side_effect):
            response = api_client.post(SUBMIT_URL, valid_submission, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['success'] is True
        assert response.data['data']['mainEmail']['service'] == 'SendGrid'

        auto_reply = response.data['data']['autoReply']
        assert auto_reply['status'] == 'failed'
        assert 'connection reset' in auto_reply['error']

    def test_unexpected_auto_reply_exception_is_non_fatal(
        self, gmail_configured, valid_submission, mailoutbox
    ):
        with patch('contact.services.submission_handler.build_auto_reply',
                   side_effect=KeyError('owner_name')):
            status_code, envelope = ContactSubmissionHandler().handle(valid_submission)

        assert status_code == status.HTTP_200_OK
        assert envelope['data']['autoReply']['status'] == 'failed'
        assert envelope['data']['autoReply']['error']
        assert len(mailoutbox) == 1

    def test_auto_reply_disabled(self, gmail_configured, valid_submission, mailoutbox):
        gmail_configured.CONTACT_AUTO_REPLY_ENABLED = False

        status_code, envelope = ContactSubmissionHandler().handle(valid_submission)

        assert status_code == status.HTTP_200_OK
        assert envelope['data']['autoReply']['status'] == 'not_attempted'
        assert len(mailoutbox) == 1


class TestUnexpectedErrors:

    def test_unexpected_exception_returns_generic_500(self, api_client, gmail_configured, valid_submission):
        with patch('contact.services.submission_handler.build_notification',
                   side_effect=RuntimeError('template exploded')):
            response = api_client.post(SUBMIT_URL, valid_submission, format='json')

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.data['success'] is False
        assert response.data['message'] == (
            'An unexpected error occurred. Please contact me directly at hello@example.com'
        )
        assert response.data['errors'] == [{'field': 'server', 'message': 'Internal server error.'}]
        assert response.data['debug']['error'] == 'template exploded'
        assert response.data['debug']['timestamp']


class TestStatelessSubmissions:

    def test_same_payload_twice_sends_twice(
        self, api_client, sendgrid_configured, valid_submission, sendgrid_response
    ):
        with patch(REQUESTS_PATH, return_value=sendgrid_response()) as mock_request:
            first = api_client.post(SUBMIT_URL, valid_submission, format='json')
            second = api_client.post(SUBMIT_URL, valid_submission, format='json')

        assert first.status_code == second.status_code == status.HTTP_200_OK
        # main + auto-reply for each submission
        assert mock_request.call_count == 4

    def test_legacy_submit_path(self, api_client, gmail_configured, valid_submission):
        response = api_client.post('/api/contact/submit', valid_submission, format='json')

        assert response.status_code == status.HTTP_200_OK


class TestHealthCheck:

    def test_reports_configured_providers(self, api_client, gmail_configured):
        response = api_client.get('/api/health')

        assert response.status_code == status.HTTP_200_OK
        assert response.data == {
            'status': 'ok',
            'emailServices': {'sendgrid': False, 'gmail': True},
        }
