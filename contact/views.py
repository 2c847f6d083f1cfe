"""
Contact Views

Public API endpoints for the portfolio contact form.
"""
import logging

from rest_framework import status
from rest_framework.exceptions import ParseError
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from .services import ContactSubmissionHandler, get_providers

logger = logging.getLogger(__name__)


class ContactFormSubmitView(APIView):
    """
    Public endpoint for contact form submissions.

    POST /api/contact/
    POST /api/contact/submit

    No authentication required. Accepts JSON or form-encoded bodies.
    """

    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        """Submit a contact form."""
        try:
            data = request.data
        except ParseError as e:
            logger.warning(f"Unparseable contact submission: {e}")
            return Response(
                {
                    'success': False,
                    'message': 'Please check your input and try again.',
                    'errors': [{'field': 'non_field_errors', 'message': str(e.detail)}],
                },
                status=status.HTTP_400_BAD_REQUEST
            )

        status_code, envelope = ContactSubmissionHandler().handle(data)
        return Response(envelope, status=status_code)


class HealthCheckView(APIView):
    """
    Health check endpoint.

    GET /api/health

    Reports which email providers are configured, never their credentials.
    """

    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request):
        return Response({
            'status': 'ok',
            'emailServices': {
                provider.key: provider.is_configured()
                for provider in get_providers()
            },
        })
