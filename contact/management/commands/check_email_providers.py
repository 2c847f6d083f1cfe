"""
Check Email Providers Management Command

Reports which contact form email providers are configured and, with
--verify, checks their credentials without sending any mail:

    python manage.py check_email_providers --verify
"""

from django.core.management.base import BaseCommand, CommandError

from contact.exceptions import ProviderError
from contact.services import ContactSubmissionHandler, get_providers
from contact.services.email_providers import resolve_recipient


class Command(BaseCommand):
    help = 'Report contact form email provider configuration'

    def add_arguments(self, parser):
        parser.add_argument(
            '--verify',
            action='store_true',
            help='Authenticate against each configured provider (no mail is sent)',
        )

    def handle(self, *args, **options):
        providers = get_providers()
        configured = [provider for provider in providers if provider.is_configured()]

        self.stdout.write(f'Recipient: {resolve_recipient()}')

        for provider in providers:
            if not provider.is_configured():
                self.stdout.write(self.style.WARNING(f'✗ {provider.label}: not configured'))
                continue

            if not options['verify']:
                self.stdout.write(self.style.SUCCESS(f'✓ {provider.label}: configured'))
                continue

            try:
                provider.verify()
            except ProviderError as e:
                reason = ContactSubmissionHandler.describe_failure(provider, e)
                self.stdout.write(self.style.ERROR(f'✗ {reason} ({e})'))
            else:
                self.stdout.write(self.style.SUCCESS(f'✓ {provider.label}: credentials verified'))

        if not configured:
            raise CommandError('No email service configuration found.')
