"""Derived fields: fee balance/status, installment status, installment partitioning.

Fee status depends only on stored numbers and is computed once per write.
Installment status depends on the wall clock and is recomputed on every read.
"""

import calendar
from datetime import date, datetime
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from app.core.constants import MONEY_QUANT
from app.core.enums import FeeStatus, InstallmentStatus


def to_money(val: Any) -> Decimal:
    if val is None or val == "":
        return Decimal("0")
    try:
        amount = val if isinstance(val, Decimal) else Decimal(str(val))
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {val!r}")
    return amount.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def as_date(val: Any) -> Optional[date]:
    if val is None or val == "":
        return None
    if isinstance(val, datetime):
        return val.date()
    if isinstance(val, date):
        return val
    return date.fromisoformat(str(val)[:10])


def derive_fee_status(balance: Decimal, paid: Decimal) -> FeeStatus:
    if balance <= 0:
        return FeeStatus.paid
    if paid > 0:
        return FeeStatus.partial
    return FeeStatus.unpaid


def derive_fee_fields(amount: Any, discount: Any, paid: Any) -> Dict[str, Any]:
    """Return normalized amount/discount/paid plus the balance and status derived from them."""
    amount, discount, paid = to_money(amount), to_money(discount), to_money(paid)
    balance = amount - discount - paid
    return {
        "amount": amount,
        "discount": discount,
        "paid": paid,
        "balance": balance,
        "status": derive_fee_status(balance, paid),
    }


def derive_installment_status(
    paid_date: Any,
    due_date: Any,
    today: Optional[date] = None,
) -> InstallmentStatus:
    if as_date(paid_date) is not None:
        return InstallmentStatus.paid
    today = today or date.today()
    due = as_date(due_date)
    if due is not None and due < today:
        return InstallmentStatus.overdue
    return InstallmentStatus.upcoming


def add_months(start: date, months: int) -> date:
    """Shift ``start`` by whole months, clamping the day to the target month's length."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def split_amount(total: Decimal, count: int) -> List[Decimal]:
    """Partition ``total`` into ``count`` whole-unit parts; the first part absorbs the remainder."""
    if count <= 0:
        return []
    total = to_money(total)
    base = (total / count).to_integral_value(rounding=ROUND_FLOOR)
    remainder = total - base * count
    return [base + remainder] + [base] * (count - 1)
