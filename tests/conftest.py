"""Shared test helpers."""

from datetime import date
from decimal import Decimal

import pytest

from lifeos_ledger.models.accounts import AccountHierarchy
from lifeos_ledger.models.ledger import Direction, Transaction


def make_tx(
    id: str,
    amount,
    direction: str = "expense",
    account: str = "Cash",
    occurred_at: date = date(2024, 1, 1),
    description: str = "",
) -> Transaction:
    return Transaction(
        id=id,
        account=account,
        direction=Direction(direction),
        amount=Decimal(str(amount)),
        occurred_at=occurred_at,
        description=description,
    )


@pytest.fixture
def hierarchy() -> AccountHierarchy:
    """The household's accounts: cash, three bank accounts, two mobile wallets."""
    return AccountHierarchy.from_mapping(
        groups={
            "Bank": ["NMB Main A/C", "Selcom", "NMB Virtual Card"],
            "Mobile": ["Mobile", "Airtel Money"],
        },
        accounts=["Cash"],
    )
