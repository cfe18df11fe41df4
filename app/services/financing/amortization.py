"""Trade-profit amortization.

Profit is simple (non-compounding): ``finance_amount * rate% * months``.
Every figure is rounded to cents and the last installment absorbs the
rounding remainder so the schedule sums exactly to the future value.
"""

from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_DOWN, Decimal

from app.services.common import MONEY_QUANT, round_money
from app.services.errors import LedgerValidationError


@dataclass(frozen=True)
class Schedule:
    per_installment_amount: Decimal
    total_profit: Decimal
    future_value: Decimal
    total_months: int

    @property
    def profit_per_installment(self) -> Decimal:
        return self.total_profit / self.total_months


@dataclass(frozen=True)
class ScheduledInstallment:
    installment_number: int
    due_date: date
    amount_due: Decimal
    principal_due: Decimal


def _add_months(value: date, months: int) -> date:
    total = value.month - 1 + months
    year = value.year + total // 12
    month = total % 12 + 1
    day = min(value.day, monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def compute_schedule(finance_amount, monthly_rate, total_months: int) -> Schedule:
    """Compute profit, future value and the per-period amount for a plan.

    Args:
        finance_amount: Principal being financed (>= 0)
        monthly_rate: Monthly profit rate as a percentage (5 means 5%)
        total_months: Number of monthly installments (> 0)

    Raises:
        LedgerValidationError: on non-positive months, negative amount or rate
    """
    if total_months is None or int(total_months) <= 0:
        raise LedgerValidationError("Total months must be greater than zero")
    months = int(total_months)
    principal = Decimal(str(finance_amount))
    rate = Decimal(str(monthly_rate or 0))
    if principal < 0:
        raise LedgerValidationError("Finance amount cannot be negative")
    if rate < 0:
        raise LedgerValidationError("Monthly profit rate cannot be negative")

    total_profit = round_money(principal * rate / Decimal("100") * months)
    future_value = round_money(principal) + total_profit
    return Schedule(
        per_installment_amount=round_money(future_value / months),
        total_profit=total_profit,
        future_value=future_value,
        total_months=months,
    )


def _split(total: Decimal, parts: int) -> list[Decimal]:
    share = round_money(total / parts)
    if share * (parts - 1) > total:
        share = (total / parts).quantize(MONEY_QUANT, rounding=ROUND_DOWN)
    amounts = [share] * (parts - 1)
    amounts.append(total - share * (parts - 1))
    return amounts


def generate_installments(
    start_date: date, finance_amount, schedule: Schedule
) -> list[ScheduledInstallment]:
    """Lay out the schedule as monthly rows due from ``start_date + 1 month``.

    The principal share of each row is tracked alongside the amount due so
    capital deployed can be computed per installment.
    """
    months = schedule.total_months
    amounts = _split(schedule.future_value, months)
    principals = _split(round_money(finance_amount), months)
    return [
        ScheduledInstallment(
            installment_number=number,
            due_date=_add_months(start_date, number),
            amount_due=amounts[number - 1],
            principal_due=principals[number - 1],
        )
        for number in range(1, months + 1)
    ]
