"""
Contact Delivery Exceptions

Error taxonomy for email delivery. Field validation errors are raised by the
DRF serializer and never reach this module.
"""


class ProviderError(Exception):
    """Base class for email provider failures."""

    reason = 'unknown'

    def __init__(self, message, provider=None):
        super().__init__(message)
        self.provider = provider


class ProviderNotConfigured(ProviderError):
    """Raised when a provider is used without its credential pair."""

    reason = 'not_configured'


class ProviderAuthError(ProviderError):
    """Raised when the provider rejects our credentials."""

    reason = 'auth'


class ProviderConnectionError(ProviderError):
    """Raised on network failures and timeouts."""

    reason = 'connection'


class ProviderUnknownError(ProviderError):
    """Raised for any other provider-reported failure."""

    reason = 'unknown'


class AutoReplyError(Exception):
    """
    Raised when the acknowledgment email fails.

    Always non-fatal: the handler folds it into the auto-reply status.
    """
    pass
