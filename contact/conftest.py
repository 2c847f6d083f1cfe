"""
Shared pytest fixtures for contact tests.
"""
import pytest
from unittest.mock import Mock
from rest_framework.test import APIClient


@pytest.fixture(autouse=True)
def email_settings(settings):
    """Start every test with no provider configured, whatever the environment holds."""
    settings.SENDGRID_API_KEY = ''
    settings.SENDGRID_FROM_EMAIL = ''
    settings.SENDGRID_API_URL = 'https://api.sendgrid.com/v3'
    settings.MAIL_USER = ''
    settings.MAIL_PASS = ''
    settings.MAIL_HOST = 'smtp.gmail.com'
    settings.MAIL_PORT = 587
    settings.MAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
    settings.EMAIL_TIMEOUT = 5
    settings.CONTACT_EMAIL = ''
    settings.CONTACT_FALLBACK_EMAIL = 'hello@example.com'
    settings.CONTACT_AUTO_REPLY_ENABLED = True
    settings.PORTFOLIO_OWNER_NAME = 'Jane Portfolio'
    settings.PORTFOLIO_OWNER_PHONE = ''
    return settings


@pytest.fixture
def sendgrid_configured(email_settings):
    email_settings.SENDGRID_API_KEY = 'SG.test-key'
    email_settings.SENDGRID_FROM_EMAIL = 'owner@portfolio.dev'
    return email_settings


@pytest.fixture
def gmail_configured(email_settings):
    email_settings.MAIL_USER = 'owner@gmail.com'
    email_settings.MAIL_PASS = 'abcd efgh ijkl mnop'
    return email_settings


@pytest.fixture
def api_client():
    """API client for making requests."""
    return APIClient()


@pytest.fixture
def valid_submission():
    return {
        'name': 'Ada Lovelace',
        'email': 'ada@example.com',
        'subject': 'Collaboration',
        'message': 'Hi!\nI would love to work with you on an analytical engine project.',
    }


def _sendgrid_response(status_code=202, message_id='sg-msg-123', errors=None):
    response = Mock()
    response.status_code = status_code
    response.headers = {'X-Message-Id': message_id} if message_id else {}
    response.json.return_value = {'errors': errors or []}
    return response


@pytest.fixture
def sendgrid_response():
    """Factory for stand-in requests.Response objects from the SendGrid API."""
    return _sendgrid_response
