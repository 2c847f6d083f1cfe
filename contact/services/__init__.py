"""
Contact Services

Email delivery providers and the submission handler that drives them.
"""

from .email_providers import GmailSMTPProvider, SendGridProvider, get_providers
from .submission_handler import ContactSubmissionHandler

__all__ = [
    'ContactSubmissionHandler',
    'GmailSMTPProvider',
    'SendGridProvider',
    'get_providers',
]
