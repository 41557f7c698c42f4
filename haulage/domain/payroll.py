"""
Salary payout planning
======================

Salaried drivers are paid on the day-of-month they were hired (clamped to
the month's length).  A payout becomes *due* ``lead_days`` before its pay
date and stays due for ``catchup_days`` after it, so a scheduler that was
down over the pay date still generates it when it comes back.

Drivers on the biweekly plan receive half the salary on the 15th and the
other half on the pay day; each half is planned independently.

A driver hired fewer than ``lead_days`` before a pay date is not owed that
pay date yet (the first payout falls on the next cycle).

The planner is pure: it answers "which payouts are owed around *today*",
and the scheduler tick decides whether each one already exists.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from .entities import SalaryPayout
from .ledger import clamped_date, money, month_label, shift_month

MID_MONTH_DAY = 15

MONTHLY_TAG = "Monthly salary"
FIRST_HALF_TAG = "Biweekly payout (1st half)"
SECOND_HALF_TAG = "Biweekly payout (2nd half)"


def salary_payouts_due(
    driver_id: int,
    monthly_salary: Decimal,
    hired_on: date,
    biweekly: bool,
    today: date,
    lead_days: int = 3,
    catchup_days: int = 7,
) -> list[SalaryPayout]:
    salary = money(monthly_salary)
    first_half = money(salary / 2)
    second_half = salary - first_half
    lead = timedelta(days=lead_days)

    due: list[SalaryPayout] = []
    # Pay dates near a month boundary can belong to the neighbouring month.
    for offset in (-1, 0, 1):
        anchor = shift_month(today.replace(day=1), offset)

        if biweekly:
            mid = anchor.replace(day=MID_MONTH_DAY)
            if _is_due(mid, today, lead_days, catchup_days) and hired_on < mid - lead:
                due.append(
                    _payout(driver_id, "first-half", mid, first_half, FIRST_HALF_TAG)
                )

        pay_date = clamped_date(anchor.year, anchor.month, hired_on.day)
        if not _is_due(pay_date, today, lead_days, catchup_days):
            continue
        if hired_on >= pay_date - lead:
            continue
        if biweekly:
            due.append(
                _payout(driver_id, "second-half", pay_date, second_half, SECOND_HALF_TAG)
            )
        else:
            due.append(_payout(driver_id, "monthly", pay_date, salary, MONTHLY_TAG))

    return due


def _is_due(pay_date: date, today: date, lead_days: int, catchup_days: int) -> bool:
    days_until = (pay_date - today).days
    return -catchup_days <= days_until <= lead_days


def _payout(
    driver_id: int, slot: str, pay_date: date, amount: Decimal, tag: str
) -> SalaryPayout:
    # A payout settles the month worked before its pay date.
    worked = shift_month(pay_date, -1)
    return SalaryPayout(
        driver_id=driver_id,
        slot=slot,
        pay_date=pay_date,
        amount=amount,
        tag=tag,
        description=f"{tag} - {month_label(worked)}",
    )
