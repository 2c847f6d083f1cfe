"""
Contact Form Serializers

Validation for portfolio contact form submissions.
"""
from rest_framework import serializers


class ContactSubmissionSerializer(serializers.Serializer):
    """
    Public contact form submission serializer.

    All four fields are required and must be non-empty after trimming.
    """

    name = serializers.CharField(
        max_length=100,
        required=True,
        help_text="Name of the person getting in touch"
    )

    email = serializers.EmailField(
        max_length=254,
        required=True,
        help_text="Address the acknowledgment is sent to"
    )

    subject = serializers.CharField(
        max_length=200,
        required=True,
        help_text="Subject line of the inquiry"
    )

    message = serializers.CharField(
        max_length=5000,
        required=True,
        help_text="Message content"
    )

    def validate_email(self, value):
        return value.lower()


def flatten_errors(errors):
    """
    Turn DRF's {field: [messages]} mapping into a list of
    {'field': ..., 'message': ...} descriptors, one per message.
    """
    flattened = []
    for field, messages in errors.items():
        if not isinstance(messages, (list, tuple)):
            messages = [messages]
        for message in messages:
            flattened.append({'field': field, 'message': str(message)})
    return flattened
