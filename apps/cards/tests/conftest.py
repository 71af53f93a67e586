import pytest
from datetime import date
from decimal import Decimal
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from apps.cards.services import add_expense, create_card, create_invoice
from apps.treasury.models import BankAccount, ExpenseCategory, ExpenseType


User = get_user_model()


@pytest.fixture
def api_client():
    """Return an unauthenticated API client."""
    return APIClient()


@pytest.fixture
def staff_user(db):
    """Back-office user allowed to use the card endpoints."""
    return User.objects.create_user(
        username='finance',
        email='finance@example.com',
        password='TestPass123!',
        is_staff=True,
    )


@pytest.fixture
def regular_user(db):
    return User.objects.create_user(
        username='employee',
        email='employee@example.com',
        password='TestPass123!',
    )


@pytest.fixture
def admin_client(api_client, staff_user):
    """Return API client authenticated as a staff user."""
    refresh = RefreshToken.for_user(staff_user)
    api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
    return api_client


@pytest.fixture
def user_client(regular_user):
    """Return API client authenticated as a non-staff user."""
    client = APIClient()
    refresh = RefreshToken.for_user(regular_user)
    client.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
    return client


@pytest.fixture
def card(db):
    """Card with limit 1000.00, closing on the 10th, due on the 20th."""
    return create_card(
        name='Corporate Visa',
        limit=Decimal('1000.00'),
        closing_day=10,
        due_day=20,
        card_number='4242',
        card_flag='Visa',
    )


@pytest.fixture
def other_card(db):
    return create_card(
        name='Travel Master',
        limit=Decimal('500.00'),
        closing_day=25,
        due_day=5,
    )


@pytest.fixture
def invoice(card):
    """OPEN invoice for March 2025 (closes 2025-03-10, due 2025-03-20)."""
    return create_invoice(card_id=card.id, month=3, year=2025)


@pytest.fixture
def bank_account(db):
    return BankAccount.objects.create(
        name='Operating account',
        bank_name='Test Bank',
        balance=Decimal('5000.00'),
    )


@pytest.fixture
def category(db):
    return ExpenseCategory.objects.create(
        name='Software',
        expense_type=ExpenseType.VARIABLE,
    )


@pytest.fixture
def post_expense(db):
    """Post a single purchase of ``amount`` into ``invoice``."""
    def _post(invoice, amount, description='Purchase'):
        return add_expense(
            card_id=invoice.card_id,
            amount=Decimal(amount),
            purchase_date=date(2025, 3, 5),
            description=description,
            first_reference_month=invoice.reference_month,
        )
    return _post
