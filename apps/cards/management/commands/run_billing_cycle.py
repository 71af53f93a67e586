"""
Management command running one billing scheduler pass.

Closes OPEN invoices past their closing date (opening the next month's
invoice) and flags CLOSED invoices past their due date as overdue.
Meant to be run daily from cron.

Usage:
    python manage.py run_billing_cycle
    python manage.py run_billing_cycle --date 2025-03-11
    python manage.py run_billing_cycle --dry-run
"""

from datetime import date

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from apps.cards.services import run_billing_pass
from apps.cards.services.billing_scheduler import (
    invoices_due_for_closing,
    invoices_due_for_overdue,
)


class Command(BaseCommand):
    help = 'Advance credit card invoices (close cycles, flag overdue invoices)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--date',
            help='Run as if today were this date (YYYY-MM-DD)',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would change without making changes',
        )

    def handle(self, *args, **options):
        if options['date']:
            try:
                today = date.fromisoformat(options['date'])
            except ValueError:
                raise CommandError(f"Invalid --date {options['date']!r}, expected YYYY-MM-DD")
        else:
            today = timezone.localdate()

        if options['dry_run']:
            to_close = invoices_due_for_closing(today).select_related('card')
            to_flag = invoices_due_for_overdue(today).select_related('card')

            self.stdout.write(f'\nBilling pass for {today} (dry run):\n')
            for invoice in to_close:
                self.stdout.write(f'  - close   {invoice.card.name} {invoice.period_label} (closing {invoice.closing_date})')
            for invoice in to_flag:
                self.stdout.write(f'  - overdue {invoice.card.name} {invoice.period_label} (due {invoice.due_date})')

            self.stdout.write(
                self.style.WARNING('\n--dry-run mode: No changes made.')
            )
            return

        report = run_billing_pass(today=today)

        if report.failed:
            self.stdout.write(
                self.style.ERROR(f'{len(report.failed)} invoice(s) skipped, see the log for details.')
            )

        if not report.changed:
            if not report.failed:
                self.stdout.write(
                    self.style.SUCCESS(f'Nothing to do for {today}. All invoices are up to date.')
                )
            return

        self.stdout.write(
            self.style.SUCCESS(
                f'Billing pass for {today}: {len(report.closed)} closed, '
                f'{len(report.opened)} opened, {len(report.overdue)} overdue.'
            )
        )
