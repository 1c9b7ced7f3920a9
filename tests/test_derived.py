from datetime import date, timedelta
from decimal import Decimal

import pytest

from app.core.derived import (
    add_months,
    derive_fee_fields,
    derive_installment_status,
    split_amount,
    to_money,
)
from app.core.enums import FeeStatus, InstallmentStatus


@pytest.mark.parametrize(
    "amount, discount, paid, balance, status",
    [
        (1000, 100, 900, Decimal("0"), FeeStatus.paid),
        (1000, 0, 400, Decimal("600"), FeeStatus.partial),
        (1000, 0, 0, Decimal("1000"), FeeStatus.unpaid),
        (0, 0, 0, Decimal("0"), FeeStatus.paid),
    ],
)
def test_fee_balance_and_status(amount, discount, paid, balance, status) -> None:
    fields = derive_fee_fields(amount, discount, paid)
    assert fields["balance"] == balance
    assert fields["status"] == status


def test_overpayment_counts_as_paid() -> None:
    fields = derive_fee_fields("100", "0", "150")
    assert fields["balance"] == Decimal("-50")
    assert fields["status"] == FeeStatus.paid


def test_installment_status_against_today() -> None:
    today = date(2024, 5, 10)
    yesterday = today - timedelta(days=1)
    tomorrow = today + timedelta(days=1)

    assert derive_installment_status(None, yesterday, today) == InstallmentStatus.overdue
    assert derive_installment_status(None, tomorrow, today) == InstallmentStatus.upcoming
    # Due today is not yet overdue.
    assert derive_installment_status(None, today, today) == InstallmentStatus.upcoming
    assert derive_installment_status(yesterday, tomorrow, today) == InstallmentStatus.paid
    assert derive_installment_status("2024-01-01", "2020-01-01", today) == InstallmentStatus.paid


def test_add_months_clamps_to_month_end() -> None:
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
    assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)
    assert add_months(date(2024, 3, 1), 0) == date(2024, 3, 1)


@pytest.mark.parametrize(
    "total, count, expected",
    [
        ("1000", 4, ["250", "250", "250", "250"]),
        ("1000", 3, ["334", "333", "333"]),
        ("100.5", 4, ["25.5", "25", "25", "25"]),
        ("7", 1, ["7"]),
    ],
)
def test_split_amount_sums_exactly(total, count, expected) -> None:
    parts = split_amount(Decimal(total), count)
    assert parts == [Decimal(e) for e in expected]
    assert sum(parts) == Decimal(total)


def test_split_amount_with_no_parts() -> None:
    assert split_amount(Decimal("100"), 0) == []


def test_to_money_quantizes_to_baisa() -> None:
    assert to_money("12.3456") == Decimal("12.346")
    assert to_money(None) == Decimal("0")
    with pytest.raises(ValueError):
        to_money("twelve")
