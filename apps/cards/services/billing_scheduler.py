"""
Billing scheduler.

Periodic pass that moves invoices forward on their own:

- OPEN invoices whose closing date has passed are closed, and the next
  month's invoice is opened if it does not exist yet.
- CLOSED invoices whose due date has passed become OVERDUE.

Each invoice is handled in its own transaction with a row lock, and its
status is re-checked under the lock, so overlapping or repeated passes
are harmless. Nothing here ever moves an invoice backwards or pays it.
"""

import logging
from dataclasses import dataclass, field
from datetime import date as date_type
from typing import List, Optional
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from apps.cards.models import Invoice, InvoiceStatus

from .billing_calendar import add_months
from .exceptions import CardsServiceError
from .invoice_lifecycle import close_invoice, ensure_invoice, mark_invoice_overdue
from .locks import lock_card, lock_invoice

logger = logging.getLogger(__name__)


@dataclass
class BillingPassReport:
    run_date: date_type
    closed: List[UUID] = field(default_factory=list)
    opened: List[UUID] = field(default_factory=list)
    overdue: List[UUID] = field(default_factory=list)
    failed: List[UUID] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.closed or self.opened or self.overdue)


def invoices_due_for_closing(today: date_type):
    return (
        Invoice.objects
        .filter(status=InvoiceStatus.OPEN, closing_date__lt=today)
        .order_by('reference_month')
    )


def invoices_due_for_overdue(today: date_type):
    return (
        Invoice.objects
        .filter(status=InvoiceStatus.CLOSED, due_date__lt=today)
        .order_by('due_date')
    )


def _close_and_roll_over(invoice_id: UUID, report: BillingPassReport) -> None:
    card_id = Invoice.objects.filter(id=invoice_id).values_list('card_id', flat=True).first()
    if card_id is None:
        return

    next_invoice = None
    # Card before invoice, the order every writer takes them in.
    with transaction.atomic():
        card = lock_card(card_id)
        invoice = lock_invoice(invoice_id)
        if invoice.status != InvoiceStatus.OPEN or invoice.closing_date >= report.run_date:
            return

        close_invoice(invoice_id=invoice.id)

        if card.is_active:
            next_invoice, created = ensure_invoice(
                card=card,
                reference_month=add_months(invoice.reference_month, 1),
            )
            if not created:
                next_invoice = None

    report.closed.append(invoice.id)
    if next_invoice is not None:
        report.opened.append(next_invoice.id)


def _flag_overdue(invoice_id: UUID, report: BillingPassReport) -> None:
    with transaction.atomic():
        invoice = lock_invoice(invoice_id)
        if invoice.status != InvoiceStatus.CLOSED or invoice.due_date >= report.run_date:
            return

        mark_invoice_overdue(invoice_id=invoice.id)

    report.overdue.append(invoice.id)


def _run_step(step, invoice_id: UUID, report: BillingPassReport) -> None:
    try:
        step(invoice_id, report)
    except CardsServiceError as e:
        logger.warning("Billing pass %s skipped invoice %s: %s", report.run_date, invoice_id, e)
        report.failed.append(invoice_id)


def run_billing_pass(*, today: Optional[date_type] = None) -> BillingPassReport:
    """
    Run one scheduler pass.

    Closing runs before the overdue sweep, so an invoice whose closing
    and due dates both lie in the past goes OPEN -> CLOSED -> OVERDUE in
    a single pass. An invoice that fails is skipped and listed in
    ``failed``; the rest of the pass carries on.

    Args:
        today: Reference date (defaults to the local date)

    Returns:
        BillingPassReport listing the invoices that changed
    """
    report = BillingPassReport(run_date=today or timezone.localdate())

    for invoice_id in list(invoices_due_for_closing(report.run_date).values_list('id', flat=True)):
        _run_step(_close_and_roll_over, invoice_id, report)

    for invoice_id in list(invoices_due_for_overdue(report.run_date).values_list('id', flat=True)):
        _run_step(_flag_overdue, invoice_id, report)

    logger.info(
        "Billing pass %s: %s closed, %s opened, %s overdue, %s failed",
        report.run_date, len(report.closed), len(report.opened), len(report.overdue), len(report.failed),
    )
    return report
