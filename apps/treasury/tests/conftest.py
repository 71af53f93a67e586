import pytest
from decimal import Decimal

from apps.treasury.models import BankAccount


@pytest.fixture
def bank_account(db):
    return BankAccount.objects.create(
        name='Operating account',
        bank_name='Test Bank',
        balance=Decimal('1000.00'),
    )
