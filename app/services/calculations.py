"""
Pure billing arithmetic shared by the assessment and discount services.

Nothing here touches the database: functions take ORM rows or plain values and
either return amounts or update the derived columns of an assessment in place.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Union

from app.config import settings

ZERO = Decimal("0")

Number = Union[Decimal, int, float, str, None]


def to_decimal(value: Number) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


def to_money(value: Number) -> Decimal:
    """Round to the currency's minor unit, half away from zero."""
    exponent = Decimal(1).scaleb(-settings.CURRENCY_DECIMAL_PLACES)
    return to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def compute_total(amounts: Iterable[Number]) -> Decimal:
    """Sum of line amounts; used for template previews and bill totals."""
    return to_money(sum((to_decimal(a) for a in amounts), ZERO))


def derive_status(balance: Number, total_paid: Number, is_closed: bool = False) -> str:
    if is_closed:
        return "closed"
    balance = to_decimal(balance)
    total_paid = to_decimal(total_paid)
    if balance < 0:
        return "overpaid"
    if balance == 0:
        return "paid"
    if total_paid > 0:
        return "partial"
    return "pending"


def discount_amount_for(
    discount_type: str,
    value: Number,
    total_amount: Number,
    max_cap: Optional[Number] = None,
) -> Decimal:
    """
    Deduction a discount rule yields against a bill total (unrounded).

    percentage: value% of the total, limited by max_cap when set
    fixed: the value itself
    coverage: the whole total
    """
    total_amount = to_decimal(total_amount)
    if discount_type == "percentage":
        raw = to_decimal(value) / Decimal(100) * total_amount
        if max_cap is not None:
            raw = min(raw, to_decimal(max_cap))
        return raw
    if discount_type == "fixed":
        return to_decimal(value)
    if discount_type == "coverage":
        return total_amount
    return ZERO


def recalculate(assessment) -> None:
    """
    Re-derive net_amount, balance and status from total_amount,
    discount_amount and total_paid.
    """
    total = to_money(assessment.total_amount)
    discount = to_money(assessment.discount_amount)
    paid = to_money(assessment.total_paid)

    net = max(ZERO, total - discount)
    balance = net - paid

    assessment.total_amount = total
    assessment.discount_amount = discount
    assessment.total_paid = paid
    assessment.net_amount = net
    assessment.balance = balance
    assessment.status = derive_status(balance, paid, assessment.is_closed)
