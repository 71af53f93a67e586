"""
Service layer unit tests for cards app.

Tests cover:
- Derived totals and available limit
- Invoice state machine and its payable mirror
- Installment allocation (rounding, atomicity)
- Statement ordering
- Billing scheduler passes
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4
from unittest.mock import patch
from django.db import DatabaseError

from apps.cards.models import CardCredit, CardExpense, Invoice, InvoiceStatus
from apps.cards.services import (
    create_card,
    update_card,
    deactivate_card,
    delete_card,
    get_card_overview,
    create_invoice,
    close_invoice,
    mark_invoice_overdue,
    pay_invoice,
    reopen_invoice,
    delete_invoice,
    get_current_open_invoice,
    available_limit,
    compute_invoice_total,
    get_limit_summary,
    allocate_installments,
    add_expense,
    split_installments,
    update_expense,
    move_expense,
    delete_expense,
    add_credit,
    delete_credit,
    reorder_expense,
    list_invoice_expenses,
    run_billing_pass,
)
from apps.cards.services import billing_scheduler, ledger_entries
from apps.cards.services.billing_calendar import (
    add_months,
    billing_month_for,
    closing_date_for,
    due_date_for,
)
from apps.cards.services.exceptions import (
    CardNotFoundError,
    InvoiceNotFoundError,
    EntryNotFoundError,
    DuplicateInvoiceError,
    InvalidTransitionError,
    CannotDeleteSettledError,
    InvoiceNotEditableError,
    PartialAllocationFailure,
    SettlementFailedError,
    CardInUseError,
    CreditLimitExceededError,
    LedgerValidationError,
    EntryMovedError,
)
from apps.treasury.models import BankTransaction, Payable, PayableStatus
from apps.treasury.services import BankAccountNotFoundError


def orders_of(invoice):
    return list(
        CardExpense.objects
        .filter(invoice=invoice)
        .order_by('display_order')
        .values_list('display_order', flat=True)
    )


def assert_totals_consistent(card):
    """Stored snapshots match the entries and the limit matches the invoices."""
    unsettled = Decimal('0.00')
    for invoice in Invoice.objects.filter(card=card):
        assert invoice.total_amount == compute_invoice_total(invoice_id=invoice.id)
        assert orders_of(invoice) == list(range(1, invoice.expenses.count() + 1))
        if invoice.status != InvoiceStatus.PAID:
            unsettled += invoice.total_amount
    card.refresh_from_db()
    assert available_limit(card_id=card.id) == card.limit - unsettled


# =============================================================================
# Billing Calendar Tests
# =============================================================================

class TestBillingCalendar:

    def test_add_months_wraps_year(self):
        assert add_months(date(2025, 11, 1), 3) == date(2026, 2, 1)
        assert add_months(date(2025, 1, 1), -1) == date(2024, 12, 1)

    def test_closing_day_is_clamped_to_month_end(self):
        assert closing_date_for(closing_day=31, reference_month=date(2025, 2, 1)) == date(2025, 2, 28)
        assert closing_date_for(closing_day=31, reference_month=date(2024, 2, 1)) == date(2024, 2, 29)

    def test_due_date_same_month_when_after_closing(self):
        assert due_date_for(closing_day=10, due_day=20, reference_month=date(2025, 3, 1)) == date(2025, 3, 20)

    def test_due_date_next_month_when_on_or_before_closing(self):
        assert due_date_for(closing_day=25, due_day=5, reference_month=date(2025, 12, 1)) == date(2026, 1, 5)
        assert due_date_for(closing_day=10, due_day=10, reference_month=date(2025, 3, 1)) == date(2025, 4, 10)

    def test_billing_month_rolls_after_closing_date(self):
        assert billing_month_for(closing_day=10, on_date=date(2025, 3, 10)) == date(2025, 3, 1)
        assert billing_month_for(closing_day=10, on_date=date(2025, 3, 11)) == date(2025, 4, 1)
        assert billing_month_for(closing_day=10, on_date=date(2025, 12, 31)) == date(2026, 1, 1)


# =============================================================================
# Card Management Tests
# =============================================================================

@pytest.mark.django_db
class TestCardManagement:

    def test_create_card(self, card):
        assert card.is_active is True
        assert card.limit == Decimal('1000.00')
        assert available_limit(card_id=card.id) == Decimal('1000.00')

    @pytest.mark.parametrize('closing_day, due_day', [(0, 10), (10, 32)])
    def test_create_card_rejects_invalid_days(self, closing_day, due_day):
        with pytest.raises(LedgerValidationError):
            create_card(name='Bad', limit=100, closing_day=closing_day, due_day=due_day)

    def test_create_card_rejects_negative_limit(self):
        with pytest.raises(LedgerValidationError):
            create_card(name='Bad', limit='-1.00', closing_day=5, due_day=15)

    def test_update_card_only_changes_given_fields(self, card):
        updated = update_card(card_id=card.id, limit=Decimal('2500.00'))

        assert updated.limit == Decimal('2500.00')
        assert updated.name == 'Corporate Visa'
        assert updated.closing_day == 10

    def test_update_card_not_found(self):
        with pytest.raises(CardNotFoundError):
            update_card(card_id=uuid4(), name='Ghost')

    def test_deactivated_card_rejects_purchases(self, card):
        deactivate_card(card_id=card.id)

        with pytest.raises(LedgerValidationError):
            add_expense(
                card_id=card.id,
                amount=Decimal('10.00'),
                purchase_date=date(2025, 3, 5),
                description='Late purchase',
            )

    def test_delete_card_with_entries_is_refused(self, invoice, post_expense):
        post_expense(invoice, '10.00')

        with pytest.raises(CardInUseError):
            delete_card(card_id=invoice.card_id)

    def test_delete_card_removes_empty_invoices(self, card, invoice):
        delete_card(card_id=card.id)

        assert not Invoice.objects.filter(id=invoice.id).exists()

    def test_overview(self, card, invoice, post_expense):
        post_expense(invoice, '300.00')
        add_expense(
            card_id=card.id,
            amount=Decimal('50.00'),
            purchase_date=date(2025, 4, 2),
            description='Next cycle',
        )

        overview = get_card_overview(card_id=card.id)

        assert overview['card'] == card
        assert overview['current_invoice'] == invoice
        assert overview['used'] == Decimal('350.00')
        assert overview['available'] == Decimal('650.00')
        assert overview['over_limit'] is False
        assert [i.reference_month for i in overview['invoices']] == [date(2025, 4, 1), date(2025, 3, 1)]
        assert overview['invoices'][1].expenses_count == 1
        assert overview['unassigned_count'] == 0


# =============================================================================
# Limit Accounting Tests
# =============================================================================

@pytest.mark.django_db
class TestLimitAccounting:

    def test_scenario_a_expense_consumes_limit(self, card):
        """Card with limit 1000 and no invoices; a 300 expense leaves 700."""
        assert available_limit(card_id=card.id) == Decimal('1000.00')

        add_expense(
            card_id=card.id,
            amount=Decimal('300.00'),
            purchase_date=date(2025, 3, 5),
            description='Laptop stand',
        )

        assert available_limit(card_id=card.id) == Decimal('700.00')
        assert_totals_consistent(card)

    def test_scenario_b_credit_offsets_expenses(self, card, invoice, post_expense):
        """Expenses of 500 and a credit of 120 leave a total of 380."""
        post_expense(invoice, '200.00')
        post_expense(invoice, '300.00')

        add_credit(
            card_id=card.id,
            invoice_id=invoice.id,
            amount=Decimal('120.00'),
            credit_date=date(2025, 3, 6),
            description='Partial refund',
        )

        invoice.refresh_from_db()
        assert invoice.total_amount == Decimal('380.00')
        assert compute_invoice_total(invoice_id=invoice.id) == Decimal('380.00')
        assert available_limit(card_id=card.id) == Decimal('620.00')

    def test_closed_and_overdue_invoices_still_consume_limit(self, card, invoice, post_expense):
        post_expense(invoice, '400.00')

        close_invoice(invoice_id=invoice.id)
        assert available_limit(card_id=card.id) == Decimal('600.00')

        mark_invoice_overdue(invoice_id=invoice.id)
        assert available_limit(card_id=card.id) == Decimal('600.00')

    def test_over_limit_is_reported_under_warn_policy(self, card, settings):
        settings.CARD_LIMIT_POLICY = 'warn'

        result = allocate_installments(
            card_id=card.id,
            total_amount=Decimal('1200.00'),
            installment_count=1,
            purchase_date=date(2025, 3, 5),
            description='Conference booth',
        )

        assert result.available_limit == Decimal('-200.00')
        assert result.over_limit is True
        assert get_limit_summary(card_id=card.id)['over_limit'] is True

    def test_over_limit_is_refused_under_block_policy(self, card, settings):
        settings.CARD_LIMIT_POLICY = 'block'

        with pytest.raises(CreditLimitExceededError) as exc_info:
            allocate_installments(
                card_id=card.id,
                total_amount=Decimal('1200.00'),
                installment_count=3,
                purchase_date=date(2025, 3, 5),
                description='Conference booth',
            )

        assert exc_info.value.available_limit == Decimal('-200.00')
        assert CardExpense.objects.count() == 0
        assert Invoice.objects.count() == 0
        assert available_limit(card_id=card.id) == Decimal('1000.00')

    def test_available_limit_card_not_found(self):
        with pytest.raises(CardNotFoundError):
            available_limit(card_id=uuid4())


# =============================================================================
# Invoice Lifecycle Tests
# =============================================================================

@pytest.mark.django_db
class TestInvoiceLifecycle:

    def test_create_invoice(self, card, invoice):
        assert invoice.status == InvoiceStatus.OPEN
        assert invoice.total_amount == Decimal('0.00')
        assert invoice.reference_month == date(2025, 3, 1)
        assert invoice.closing_date == date(2025, 3, 10)
        assert invoice.due_date == date(2025, 3, 20)

    def test_create_invoice_duplicate(self, card, invoice):
        with pytest.raises(DuplicateInvoiceError):
            create_invoice(card_id=card.id, month=3, year=2025)

    def test_create_invoice_invalid_month(self, card):
        with pytest.raises(LedgerValidationError):
            create_invoice(card_id=card.id, month=13, year=2025)

    def test_create_invoice_card_not_found(self):
        with pytest.raises(CardNotFoundError):
            create_invoice(card_id=uuid4(), month=3, year=2025)

    def test_close_creates_payable_mirror(self, invoice, post_expense):
        post_expense(invoice, '250.00')

        closed = close_invoice(invoice_id=invoice.id)

        assert closed.status == InvoiceStatus.CLOSED
        payable = Payable.objects.get(id=closed.payable_id)
        assert payable.amount == Decimal('250.00')
        assert payable.due_date == invoice.due_date
        assert payable.status == PayableStatus.PENDING

    def test_close_twice_fails_and_leaves_state(self, invoice, post_expense):
        post_expense(invoice, '80.00')
        close_invoice(invoice_id=invoice.id)

        with pytest.raises(InvalidTransitionError):
            close_invoice(invoice_id=invoice.id)

        invoice.refresh_from_db()
        assert invoice.status == InvoiceStatus.CLOSED
        assert invoice.total_amount == Decimal('80.00')
        assert Payable.objects.count() == 1

    def test_reopen_after_close_restores_invoice(self, invoice, post_expense):
        post_expense(invoice, '40.00')
        post_expense(invoice, '60.00')
        entries_before = list(
            CardExpense.objects.filter(invoice=invoice).values_list('id', 'amount', 'display_order')
        )

        close_invoice(invoice_id=invoice.id)
        reopened = reopen_invoice(invoice_id=invoice.id)

        assert reopened.status == InvoiceStatus.OPEN
        assert reopened.total_amount == Decimal('100.00')
        assert reopened.payable_id is None
        assert Payable.objects.count() == 0
        entries_after = list(
            CardExpense.objects.filter(invoice=invoice).values_list('id', 'amount', 'display_order')
        )
        assert entries_after == entries_before

    def test_reopen_open_invoice_fails(self, invoice):
        with pytest.raises(InvalidTransitionError):
            reopen_invoice(invoice_id=invoice.id)

    def test_overdue_requires_closed(self, invoice):
        with pytest.raises(InvalidTransitionError):
            mark_invoice_overdue(invoice_id=invoice.id)

    def test_overdue_updates_payable(self, invoice, post_expense):
        post_expense(invoice, '10.00')
        close_invoice(invoice_id=invoice.id)

        overdue = mark_invoice_overdue(invoice_id=invoice.id)

        assert overdue.status == InvoiceStatus.OVERDUE
        assert overdue.payable.status == PayableStatus.OVERDUE

    def test_scenario_c_pay_frees_limit(self, card, invoice, bank_account, post_expense):
        """Paying an invoice of 380 frees exactly 380 of limit."""
        post_expense(invoice, '500.00')
        add_credit(
            card_id=card.id,
            invoice_id=invoice.id,
            amount=Decimal('120.00'),
            credit_date=date(2025, 3, 6),
            description='Refund',
        )
        close_invoice(invoice_id=invoice.id)
        before = available_limit(card_id=card.id)

        paid = pay_invoice(
            invoice_id=invoice.id,
            bank_account_id=bank_account.id,
            payment_date=date(2025, 3, 18),
        )

        assert paid.status == InvoiceStatus.PAID
        assert paid.paid_amount == Decimal('380.00')
        assert paid.payment_date == date(2025, 3, 18)
        assert available_limit(card_id=card.id) - before == Decimal('380.00')

        bank_account.refresh_from_db()
        assert bank_account.balance == Decimal('4620.00')
        movement = BankTransaction.objects.get(reference_id=str(invoice.id))
        assert movement.amount == Decimal('380.00')
        assert Payable.objects.get(id=paid.payable_id).status == PayableStatus.PAID

    def test_pay_from_overdue(self, invoice, bank_account, post_expense):
        post_expense(invoice, '10.00')
        close_invoice(invoice_id=invoice.id)
        mark_invoice_overdue(invoice_id=invoice.id)

        paid = pay_invoice(invoice_id=invoice.id, bank_account_id=bank_account.id, payment_date=date(2025, 3, 25))

        assert paid.status == InvoiceStatus.PAID

    def test_pay_open_invoice_fails(self, invoice, bank_account):
        with pytest.raises(InvalidTransitionError):
            pay_invoice(invoice_id=invoice.id, bank_account_id=bank_account.id, payment_date=date(2025, 3, 18))

    def test_pay_requires_bank_account_and_date(self, invoice, bank_account):
        close_invoice(invoice_id=invoice.id)

        with pytest.raises(LedgerValidationError):
            pay_invoice(invoice_id=invoice.id, bank_account_id=None, payment_date=date(2025, 3, 18))
        with pytest.raises(LedgerValidationError):
            pay_invoice(invoice_id=invoice.id, bank_account_id=bank_account.id, payment_date=None)

    def test_paid_invoice_cannot_be_reopened(self, invoice, bank_account):
        close_invoice(invoice_id=invoice.id)
        pay_invoice(invoice_id=invoice.id, bank_account_id=bank_account.id, payment_date=date(2025, 3, 18))

        with pytest.raises(InvalidTransitionError):
            reopen_invoice(invoice_id=invoice.id)

    def test_settlement_failure_keeps_invoice_closed(self, invoice, bank_account, post_expense):
        post_expense(invoice, '90.00')
        close_invoice(invoice_id=invoice.id)

        with patch(
            'apps.cards.services.invoice_lifecycle.record_settlement',
            side_effect=BankAccountNotFoundError('Bank ledger unavailable'),
        ):
            with pytest.raises(SettlementFailedError):
                pay_invoice(invoice_id=invoice.id, bank_account_id=bank_account.id, payment_date=date(2025, 3, 18))

        invoice.refresh_from_db()
        assert invoice.status == InvoiceStatus.CLOSED
        assert invoice.paid_amount is None

    def test_inactive_bank_account_fails_settlement(self, invoice, bank_account):
        bank_account.is_active = False
        bank_account.save()
        close_invoice(invoice_id=invoice.id)

        with pytest.raises(SettlementFailedError):
            pay_invoice(invoice_id=invoice.id, bank_account_id=bank_account.id, payment_date=date(2025, 3, 18))

        assert BankTransaction.objects.count() == 0

    def test_scenario_e_delete_overdue_invoice_releases_limit(self, card, invoice, post_expense):
        """Deleting an OVERDUE invoice of 250 frees 250 and removes its entries."""
        post_expense(invoice, '100.00')
        post_expense(invoice, '150.00')
        close_invoice(invoice_id=invoice.id)
        mark_invoice_overdue(invoice_id=invoice.id)
        before = available_limit(card_id=card.id)

        result = delete_invoice(invoice_id=invoice.id)

        assert result['deleted_expenses'] == 2
        assert result['released_amount'] == Decimal('250.00')
        assert available_limit(card_id=card.id) - before == Decimal('250.00')
        assert not Invoice.objects.filter(id=invoice.id).exists()
        assert not CardExpense.objects.filter(card=card).exists()
        assert Payable.objects.count() == 0

    def test_delete_removes_credits(self, card, invoice, post_expense):
        post_expense(invoice, '100.00')
        add_credit(card_id=card.id, invoice_id=invoice.id, amount='30.00',
                   credit_date=date(2025, 3, 7), description='Refund')

        result = delete_invoice(invoice_id=invoice.id)

        assert result['deleted_credits'] == 1
        assert CardCredit.objects.count() == 0

    def test_delete_paid_invoice_is_refused(self, invoice, bank_account, post_expense):
        post_expense(invoice, '10.00')
        close_invoice(invoice_id=invoice.id)
        pay_invoice(invoice_id=invoice.id, bank_account_id=bank_account.id, payment_date=date(2025, 3, 18))

        with pytest.raises(CannotDeleteSettledError):
            delete_invoice(invoice_id=invoice.id)

        assert Invoice.objects.filter(id=invoice.id).exists()

    def test_delete_invoice_not_found(self):
        with pytest.raises(InvoiceNotFoundError):
            delete_invoice(invoice_id=uuid4())

    def test_current_open_invoice_is_earliest_open(self, card, invoice):
        create_invoice(card_id=card.id, month=4, year=2025)

        assert get_current_open_invoice(card_id=card.id) == invoice

        close_invoice(invoice_id=invoice.id)
        assert get_current_open_invoice(card_id=card.id).reference_month == date(2025, 4, 1)


# =============================================================================
# Installment Allocator Tests
# =============================================================================

@pytest.mark.django_db
class TestInstallments:

    def test_split_gives_remainder_to_first_installment(self):
        assert split_installments(Decimal('100.00'), 3) == [
            Decimal('33.34'), Decimal('33.33'), Decimal('33.33'),
        ]

    def test_split_sum_is_exact(self):
        parts = split_installments(Decimal('1000.01'), 7)

        assert sum(parts) == Decimal('1000.01')
        assert len(set(parts[1:])) == 1

    def test_split_rejects_zero_installments(self):
        with pytest.raises(LedgerValidationError):
            split_installments(Decimal('0.02'), 3)
        with pytest.raises(LedgerValidationError):
            split_installments(Decimal('10.00'), 0)

    def test_scenario_d_three_installments_from_march(self, card, invoice, post_expense):
        """300 over 3 installments: March, April and May each gain 100."""
        post_expense(invoice, '45.00', description='Existing entry')

        result = allocate_installments(
            card_id=card.id,
            total_amount=Decimal('300.00'),
            installment_count=3,
            purchase_date=date(2025, 3, 5),
            description='Monitor',
        )

        months = [i.reference_month for i in result.invoices]
        assert months == [date(2025, 3, 1), date(2025, 4, 1), date(2025, 5, 1)]
        assert result.invoices[0].id == invoice.id
        assert len(result.created_invoices) == 2

        for number, expense in enumerate(result.expenses, start=1):
            assert expense.amount == Decimal('100.00')
            assert expense.installment_number == number
            assert expense.installments == 3
            assert expense.description == f'Monitor ({number}/3)'

        invoice.refresh_from_db()
        assert invoice.total_amount == Decimal('145.00')
        assert result.expenses[0].display_order == 2
        assert available_limit(card_id=card.id) == Decimal('655.00')
        assert_totals_consistent(card)

    def test_purchase_after_closing_day_starts_next_month(self, card):
        result = allocate_installments(
            card_id=card.id,
            total_amount=Decimal('20.00'),
            installment_count=2,
            purchase_date=date(2025, 12, 15),
            description='Subscription',
        )

        assert [i.reference_month for i in result.invoices] == [date(2026, 1, 1), date(2026, 2, 1)]

    def test_installments_reuse_closed_invoice(self, card, invoice):
        close_invoice(invoice_id=invoice.id)

        result = allocate_installments(
            card_id=card.id,
            total_amount=Decimal('50.00'),
            installment_count=2,
            purchase_date=date(2025, 3, 1),
            description='Late posting',
            first_reference_month=date(2025, 3, 1),
        )

        assert result.invoices[0].id == invoice.id
        invoice.refresh_from_db()
        assert invoice.status == InvoiceStatus.CLOSED
        assert invoice.total_amount == Decimal('25.00')

    def test_failed_installment_rolls_back_everything(self, card):
        real_insert = ledger_entries.insert_expense
        calls = []

        def flaky_insert(**kwargs):
            calls.append(kwargs['installment_number'])
            if len(calls) == 2:
                raise DatabaseError('connection lost')
            return real_insert(**kwargs)

        with patch('apps.cards.services.installments.insert_expense', side_effect=flaky_insert):
            with pytest.raises(PartialAllocationFailure):
                allocate_installments(
                    card_id=card.id,
                    total_amount=Decimal('300.00'),
                    installment_count=3,
                    purchase_date=date(2025, 3, 5),
                    description='Monitor',
                )

        assert calls == [1, 2]
        assert CardExpense.objects.count() == 0
        assert Invoice.objects.count() == 0
        assert available_limit(card_id=card.id) == Decimal('1000.00')

    def test_allocation_card_not_found(self):
        with pytest.raises(CardNotFoundError):
            add_expense(card_id=uuid4(), amount='10.00', purchase_date=date(2025, 3, 5), description='x')

    @pytest.mark.parametrize('amount', ['0', '-5.00', 'abc'])
    def test_allocation_rejects_invalid_amount(self, card, amount):
        with pytest.raises(LedgerValidationError):
            add_expense(card_id=card.id, amount=amount, purchase_date=date(2025, 3, 5), description='x')


# =============================================================================
# Ledger Entry Tests
# =============================================================================

@pytest.mark.django_db
class TestLedgerEntries:

    def test_update_expense_recomputes_total(self, invoice, post_expense, category):
        expense = post_expense(invoice, '20.00')

        updated = update_expense(
            expense_id=expense.id,
            amount=Decimal('35.50'),
            description='Corrected',
            category_id=category.id,
        )

        invoice.refresh_from_db()
        assert updated.description == 'Corrected'
        assert updated.category_id == category.id
        assert invoice.total_amount == Decimal('35.50')

    def test_update_expense_on_closed_invoice_fails(self, invoice, post_expense):
        expense = post_expense(invoice, '20.00')
        close_invoice(invoice_id=invoice.id)

        with pytest.raises(InvoiceNotEditableError):
            update_expense(expense_id=expense.id, amount=Decimal('1.00'))

    def test_update_expense_not_found(self):
        with pytest.raises(EntryNotFoundError):
            update_expense(expense_id=uuid4(), description='x')

    def test_delete_expense_closes_gap(self, card, invoice, post_expense):
        first = post_expense(invoice, '10.00', description='first')
        middle = post_expense(invoice, '20.00', description='middle')
        last = post_expense(invoice, '30.00', description='last')

        delete_expense(expense_id=middle.id)

        first.refresh_from_db()
        last.refresh_from_db()
        assert (first.display_order, last.display_order) == (1, 2)
        invoice.refresh_from_db()
        assert invoice.total_amount == Decimal('40.00')
        assert_totals_consistent(card)

    def test_delete_expense_allowed_on_closed_invoice(self, invoice, post_expense):
        expense = post_expense(invoice, '10.00')
        post_expense(invoice, '5.00')
        close_invoice(invoice_id=invoice.id)

        delete_expense(expense_id=expense.id)

        invoice.refresh_from_db()
        assert invoice.total_amount == Decimal('5.00')
        assert orders_of(invoice) == [1]

    def test_move_expense_between_invoices(self, card, invoice, post_expense):
        april = create_invoice(card_id=card.id, month=4, year=2025)
        post_expense(april, '5.00')
        first = post_expense(invoice, '10.00')
        second = post_expense(invoice, '20.00')

        moved = move_expense(expense_id=first.id, target_invoice_id=april.id)

        assert moved.invoice_id == april.id
        assert moved.display_order == 2
        second.refresh_from_db()
        assert second.display_order == 1
        invoice.refresh_from_db()
        april.refresh_from_db()
        assert invoice.total_amount == Decimal('20.00')
        assert april.total_amount == Decimal('15.00')
        assert_totals_consistent(card)

    def test_move_expense_to_other_card_fails(self, invoice, other_card, post_expense):
        foreign = create_invoice(card_id=other_card.id, month=3, year=2025)
        expense = post_expense(invoice, '10.00')

        with pytest.raises(LedgerValidationError):
            move_expense(expense_id=expense.id, target_invoice_id=foreign.id)

    def test_move_expense_into_closed_invoice_fails(self, card, invoice, post_expense):
        april = create_invoice(card_id=card.id, month=4, year=2025)
        close_invoice(invoice_id=april.id)
        expense = post_expense(invoice, '10.00')

        with pytest.raises(InvoiceNotEditableError):
            move_expense(expense_id=expense.id, target_invoice_id=april.id)

    def test_unassigned_expense_does_not_consume_limit(self, card, invoice, post_expense):
        expense = post_expense(invoice, '100.00')

        moved = move_expense(expense_id=expense.id, target_invoice_id=None)

        assert moved.invoice_id is None
        assert moved.display_order is None
        assert available_limit(card_id=card.id) == Decimal('1000.00')
        assert get_card_overview(card_id=card.id)['unassigned_amount'] == Decimal('100.00')

    def test_update_expense_can_clear_category(self, invoice, post_expense, category):
        expense = post_expense(invoice, '20.00')
        update_expense(expense_id=expense.id, category_id=category.id)

        kept = update_expense(expense_id=expense.id, description='Renamed')
        assert kept.category_id == category.id

        cleared = update_expense(expense_id=expense.id, category_id=None)
        cleared.refresh_from_db()
        assert cleared.category_id is None

    def test_delete_follows_expense_moved_before_lock(self, card, invoice, post_expense):
        april = create_invoice(card_id=card.id, month=4, year=2025)
        moving = post_expense(invoice, '10.00')
        post_expense(invoice, '20.00')
        post_expense(april, '5.00')
        post_expense(april, '6.00')

        real_lock = ledger_entries.lock_invoice
        calls = []

        def move_then_lock(invoice_id):
            # A concurrent move commits between the owner read and the lock.
            if not calls:
                calls.append(invoice_id)
                move_expense(expense_id=moving.id, target_invoice_id=april.id)
            return real_lock(invoice_id)

        with patch.object(ledger_entries, 'lock_invoice', side_effect=move_then_lock):
            delete_expense(expense_id=moving.id)

        assert not CardExpense.objects.filter(id=moving.id).exists()
        invoice.refresh_from_db()
        april.refresh_from_db()
        assert invoice.total_amount == Decimal('20.00')
        assert april.total_amount == Decimal('11.00')
        assert orders_of(invoice) == [1]
        assert orders_of(april) == [1, 2]
        assert_totals_consistent(card)

    def test_update_rechecks_invoice_after_concurrent_move(self, card, invoice, post_expense):
        april = create_invoice(card_id=card.id, month=4, year=2025)
        moving = post_expense(invoice, '10.00')

        real_lock = ledger_entries.lock_invoice
        calls = []

        def move_close_then_lock(invoice_id):
            if not calls:
                calls.append(invoice_id)
                move_expense(expense_id=moving.id, target_invoice_id=april.id)
                close_invoice(invoice_id=april.id)
            return real_lock(invoice_id)

        with patch.object(ledger_entries, 'lock_invoice', side_effect=move_close_then_lock):
            with pytest.raises(InvoiceNotEditableError):
                update_expense(expense_id=moving.id, amount=Decimal('99.00'))

        moving.refresh_from_db()
        assert moving.amount == Decimal('10.00')
        assert_totals_consistent(card)

    def test_expense_that_keeps_moving_is_reported(self, card, invoice, post_expense):
        april = create_invoice(card_id=card.id, month=4, year=2025)
        moving = post_expense(invoice, '10.00')

        real_lock = ledger_entries.lock_invoice
        busy = []

        def move_away_then_lock(invoice_id):
            if not busy:
                busy.append(invoice_id)
                other = april.id if invoice_id == invoice.id else invoice.id
                move_expense(expense_id=moving.id, target_invoice_id=other)
                busy.pop()
            return real_lock(invoice_id)

        with patch.object(ledger_entries, 'lock_invoice', side_effect=move_away_then_lock):
            with pytest.raises(EntryMovedError):
                delete_expense(expense_id=moving.id)

        assert CardExpense.objects.filter(id=moving.id).exists()

    def test_credit_without_invoice_goes_to_billing_month(self, card):
        credit = add_credit(
            card_id=card.id,
            amount=Decimal('15.00'),
            credit_date=date(2025, 3, 12),
            description='Cashback',
        )

        assert credit.invoice.reference_month == date(2025, 4, 1)
        assert credit.invoice.total_amount == Decimal('-15.00')

    def test_credit_on_closed_invoice_fails(self, card, invoice):
        close_invoice(invoice_id=invoice.id)

        with pytest.raises(InvoiceNotEditableError):
            add_credit(card_id=card.id, invoice_id=invoice.id, amount='5.00',
                       credit_date=date(2025, 3, 12), description='Refund')

    def test_credit_on_other_cards_invoice_fails(self, other_card, invoice):
        with pytest.raises(LedgerValidationError):
            add_credit(card_id=other_card.id, invoice_id=invoice.id, amount='5.00',
                       credit_date=date(2025, 3, 5), description='Refund')

    def test_delete_credit_restores_total(self, card, invoice, post_expense):
        post_expense(invoice, '50.00')
        credit = add_credit(card_id=card.id, invoice_id=invoice.id, amount='20.00',
                            credit_date=date(2025, 3, 6), description='Refund')

        delete_credit(credit_id=credit.id)

        invoice.refresh_from_db()
        assert invoice.total_amount == Decimal('50.00')

    def test_delete_credit_not_found(self):
        with pytest.raises(EntryNotFoundError):
            delete_credit(credit_id=uuid4())


# =============================================================================
# Ordering Tests
# =============================================================================

@pytest.mark.django_db
class TestOrdering:

    def test_scenario_f_reorder_up(self, invoice, post_expense):
        """Moving the second of three entries up swaps it with the first."""
        entry1 = post_expense(invoice, '1.00', description='one')
        entry2 = post_expense(invoice, '2.00', description='two')
        entry3 = post_expense(invoice, '3.00', description='three')

        reorder_expense(expense_id=entry2.id, direction='up')

        for entry in (entry1, entry2, entry3):
            entry.refresh_from_db()
        assert (entry2.display_order, entry1.display_order, entry3.display_order) == (1, 2, 3)

        reorder_expense(expense_id=entry2.id, direction='up')

        for entry in (entry1, entry2, entry3):
            entry.refresh_from_db()
        assert (entry2.display_order, entry1.display_order, entry3.display_order) == (1, 2, 3)

    def test_reorder_last_down_is_noop(self, invoice, post_expense):
        post_expense(invoice, '1.00')
        last = post_expense(invoice, '2.00')

        result = reorder_expense(expense_id=last.id, direction='down')

        assert result.display_order == 2
        assert orders_of(invoice) == [1, 2]

    def test_list_invoice_expenses_in_display_order(self, invoice, post_expense):
        first = post_expense(invoice, '1.00')
        second = post_expense(invoice, '2.00')
        reorder_expense(expense_id=second.id, direction='up')

        assert [e.id for e in list_invoice_expenses(invoice_id=invoice.id)] == [second.id, first.id]

    def test_reorder_on_closed_invoice_fails(self, invoice, post_expense):
        post_expense(invoice, '1.00')
        second = post_expense(invoice, '2.00')
        close_invoice(invoice_id=invoice.id)

        with pytest.raises(InvoiceNotEditableError):
            reorder_expense(expense_id=second.id, direction='up')

    def test_reorder_invalid_direction(self, invoice, post_expense):
        expense = post_expense(invoice, '1.00')

        with pytest.raises(LedgerValidationError):
            reorder_expense(expense_id=expense.id, direction='sideways')

    def test_reorder_not_found(self):
        with pytest.raises(EntryNotFoundError):
            reorder_expense(expense_id=uuid4(), direction='up')


# =============================================================================
# Billing Scheduler Tests
# =============================================================================

@pytest.mark.django_db
class TestBillingScheduler:

    def test_closes_invoice_and_opens_next_month(self, card, invoice, post_expense):
        post_expense(invoice, '70.00')

        report = run_billing_pass(today=date(2025, 3, 11))

        invoice.refresh_from_db()
        assert invoice.status == InvoiceStatus.CLOSED
        assert invoice.payable is not None
        assert report.closed == [invoice.id]
        april = Invoice.objects.get(card=card, reference_month=date(2025, 4, 1))
        assert april.status == InvoiceStatus.OPEN
        assert report.opened == [april.id]

    def test_nothing_happens_before_closing_date(self, invoice):
        report = run_billing_pass(today=date(2025, 3, 10))

        assert report.changed is False
        invoice.refresh_from_db()
        assert invoice.status == InvoiceStatus.OPEN

    def test_pass_is_idempotent(self, card, invoice):
        run_billing_pass(today=date(2025, 3, 11))
        second = run_billing_pass(today=date(2025, 3, 11))

        assert second.changed is False
        assert Invoice.objects.filter(card=card).count() == 2

    def test_existing_next_invoice_is_reused(self, card, invoice):
        april = create_invoice(card_id=card.id, month=4, year=2025)

        report = run_billing_pass(today=date(2025, 3, 11))

        assert report.opened == []
        assert Invoice.objects.filter(card=card, reference_month=april.reference_month).count() == 1

    def test_flags_overdue_after_due_date(self, invoice):
        run_billing_pass(today=date(2025, 3, 11))

        report = run_billing_pass(today=date(2025, 3, 21))

        invoice.refresh_from_db()
        assert invoice.status == InvoiceStatus.OVERDUE
        assert report.overdue == [invoice.id]

    def test_single_late_pass_closes_and_flags(self, invoice):
        report = run_billing_pass(today=date(2025, 3, 25))

        invoice.refresh_from_db()
        assert invoice.status == InvoiceStatus.OVERDUE
        assert invoice.id in report.closed
        assert invoice.id in report.overdue

    def test_paid_and_open_invoices_are_not_flagged(self, card, invoice, bank_account):
        close_invoice(invoice_id=invoice.id)
        pay_invoice(invoice_id=invoice.id, bank_account_id=bank_account.id, payment_date=date(2025, 3, 15))

        report = run_billing_pass(today=date(2025, 3, 25))

        invoice.refresh_from_db()
        assert invoice.status == InvoiceStatus.PAID
        assert report.overdue == []

    def test_inactive_card_gets_no_new_invoice(self, card, invoice):
        deactivate_card(card_id=card.id)

        report = run_billing_pass(today=date(2025, 3, 11))

        assert report.closed == [invoice.id]
        assert report.opened == []
        assert Invoice.objects.filter(card=card).count() == 1

    def test_card_is_locked_before_invoice_when_closing(self, card, invoice):
        taken = []
        real_card = billing_scheduler.lock_card
        real_invoice = billing_scheduler.lock_invoice

        def track_card(card_id):
            taken.append('card')
            return real_card(card_id)

        def track_invoice(invoice_id):
            taken.append('invoice')
            return real_invoice(invoice_id)

        with patch.object(billing_scheduler, 'lock_card', side_effect=track_card), \
                patch.object(billing_scheduler, 'lock_invoice', side_effect=track_invoice):
            run_billing_pass(today=date(2025, 3, 11))

        assert taken == ['card', 'invoice']

    def test_failing_invoice_does_not_stop_the_pass(self, card, invoice, other_card):
        february = create_invoice(card_id=other_card.id, month=2, year=2025)
        real_close = billing_scheduler.close_invoice

        def close_or_fail(*, invoice_id):
            if invoice_id == february.id:
                raise InvoiceNotFoundError(f"Invoice with ID {invoice_id} not found")
            return real_close(invoice_id=invoice_id)

        with patch.object(billing_scheduler, 'close_invoice', side_effect=close_or_fail):
            report = run_billing_pass(today=date(2025, 3, 11))

        assert report.failed == [february.id]
        assert report.closed == [invoice.id]
        february.refresh_from_db()
        invoice.refresh_from_db()
        assert february.status == InvoiceStatus.OPEN
        assert invoice.status == InvoiceStatus.CLOSED
