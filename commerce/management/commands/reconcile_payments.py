"""Settle checkout payments and refunds whose gateway outcome never arrived.

Run periodically (cron, a scheduler) alongside webhook delivery:

    python manage.py reconcile_payments --older-than 30
"""
from datetime import timedelta

from django.core.management.base import BaseCommand

from commerce.models import WebhookEvent, WebhookOutcome
from commerce.services import payment_ledger


class Command(BaseCommand):
    help = 'Reconcile pending checkout payments and unfinished refunds with the payment gateway.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--older-than',
            type=int,
            default=None,
            help='Only check pending payments created more than this many minutes ago.',
        )

    def handle(self, *args, **options):
        older_than = options['older_than']
        summary = payment_ledger().reconcile(
            older_than=timedelta(minutes=older_than) if older_than is not None else None
        )
        self.stdout.write(
            'completed={completed} expired={expired} refunded={refunded} '
            'unchanged={unchanged} errors={errors}'.format(**summary)
        )

        unresolved = WebhookEvent.objects.filter(
            outcome=WebhookOutcome.UNRESOLVED, resolved_at__isnull=True
        ).count()
        if unresolved:
            self.stdout.write(self.style.WARNING(f"{unresolved} webhook event(s) could not be matched to a payment."))
        if summary['errors']:
            self.stdout.write(self.style.ERROR('Some payments could not be reconciled; see the logs.'))
