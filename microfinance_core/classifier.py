"""
Schedule Classifier Module

Assigns a status to each schedule entry from its due date, the linked
repayment and the reference date. Every function is pure: "today" is always
passed in.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List, Optional

from .currency import Money, max_money
from .loans import LoanStatus
from .periods import DateLike, to_date
from .schedule import (
    ScheduleEntry, ScheduleStatus, RepaymentClassification, principal_portion
)

DEFAULT_GRACE_DAYS = 3
DEFAULT_DUE_SOON_DAYS = 7


@dataclass(frozen=True)
class ArrearsSummary:
    """Loan-level arrears derived from a classified schedule"""
    overdue_amount: Money
    missed_payments: int


def grace_elapsed(entry: ScheduleEntry, as_of: date, grace_days: int = DEFAULT_GRACE_DAYS) -> bool:
    """True once the grace window after the due date has passed"""
    return as_of > entry.due_date + timedelta(days=grace_days)


def classify_entry(entry: ScheduleEntry, as_of: DateLike,
                   grace_days: int = DEFAULT_GRACE_DAYS) -> ScheduleStatus:
    """Status of a single entry as of a date"""
    today = to_date(as_of)

    if entry.is_linked:
        if entry.repayment_classification == RepaymentClassification.INTEREST_ONLY:
            return ScheduleStatus.INTEREST_ONLY
        if (entry.repayment_classification == RepaymentClassification.PARTIAL
                and entry.paid_amount is not None
                and entry.paid_amount < entry.amount_due):
            if grace_elapsed(entry, today, grace_days):
                return ScheduleStatus.OVERDUE
            return ScheduleStatus.PENDING
        return ScheduleStatus.PAID

    if grace_elapsed(entry, today, grace_days):
        return ScheduleStatus.MISSED
    return ScheduleStatus.PENDING


def classify(entries: Iterable[ScheduleEntry], as_of: DateLike,
             grace_days: int = DEFAULT_GRACE_DAYS) -> List[ScheduleEntry]:
    """
    Status-annotated copies of schedule entries, ordered by period

    The input entries are not modified.
    """
    today = to_date(as_of)
    classified = [entry.with_status(classify_entry(entry, today, grace_days)) for entry in entries]
    classified.sort(key=lambda e: e.period)
    return classified


def next_pending(entries: Iterable[ScheduleEntry], as_of: DateLike,
                 grace_days: int = DEFAULT_GRACE_DAYS) -> Optional[ScheduleEntry]:
    """The lowest-period Pending entry, the next obligation of the loan"""
    for entry in classify(entries, as_of, grace_days):
        if entry.status == ScheduleStatus.PENDING:
            return entry
    return None


def is_due_soon(entry: ScheduleEntry, as_of: DateLike,
                days: int = DEFAULT_DUE_SOON_DAYS) -> bool:
    """Pending entry falling due within the next few days"""
    today = to_date(as_of)
    return (entry.status == ScheduleStatus.PENDING
            and today <= entry.due_date <= today + timedelta(days=days))


def visible_entries(entries: Iterable[ScheduleEntry], as_of: DateLike,
                    due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
                    grace_days: int = DEFAULT_GRACE_DAYS,
                    status: Optional[ScheduleStatus] = None) -> List[ScheduleEntry]:
    """
    Entries a schedule view should show, newest period first

    Settled, missed and overdue entries are always shown, as are entries
    already past due or falling due within the window. Far-future entries are
    hidden, except the next pending one, which is never dropped.
    """
    today = to_date(as_of)
    horizon = today + timedelta(days=due_soon_days)
    classified = classify(entries, today, grace_days)

    upcoming = None
    for entry in classified:
        if entry.status == ScheduleStatus.PENDING:
            upcoming = entry
            break

    visible = []
    for entry in classified:
        shown = (
            entry.status != ScheduleStatus.PENDING
            or entry.due_date <= horizon
            or (upcoming is not None and entry.id == upcoming.id)
        )
        if not shown:
            continue
        if status is not None and entry.status != status:
            continue
        visible.append(entry)

    visible.sort(key=lambda e: e.period, reverse=True)
    return visible


def next_payment_date(entries: Iterable[ScheduleEntry], as_of: DateLike,
                      grace_days: int = DEFAULT_GRACE_DAYS) -> Optional[date]:
    """Earliest missed or overdue due date, else the next pending due date"""
    classified = classify(entries, as_of, grace_days)
    in_arrears = [
        e.due_date for e in classified
        if e.status in (ScheduleStatus.MISSED, ScheduleStatus.OVERDUE)
    ]
    if in_arrears:
        return min(in_arrears)
    for entry in classified:
        if entry.status == ScheduleStatus.PENDING:
            return entry.due_date
    return None


def summarize_arrears(loan, entries: Iterable[ScheduleEntry], as_of: DateLike,
                      grace_days: int = DEFAULT_GRACE_DAYS) -> ArrearsSummary:
    """
    Overdue amount and missed-payment count of a loan

    Missed entries owe their full amount. Interest-only entries past grace
    still owe the principal part of the installment. Overdue partial entries
    owe their shortfall and are not counted as missed. Loans that are not
    active carry no arrears.
    """
    currency = loan.principal.currency
    overdue = Money.zero(currency)
    missed = 0

    if loan.status != LoanStatus.ACTIVE:
        return ArrearsSummary(overdue, missed)

    today = to_date(as_of)
    for entry in classify(entries, today, grace_days):
        if entry.status == ScheduleStatus.MISSED:
            overdue = overdue + entry.amount_due
            missed += 1
        elif entry.status == ScheduleStatus.INTEREST_ONLY and grace_elapsed(entry, today, grace_days):
            overdue = overdue + principal_portion(
                loan.principal, loan.duration, loan.interest_amount, loan.cadence
            )
            missed += 1
        elif entry.status == ScheduleStatus.OVERDUE:
            shortfall = entry.amount_due - (entry.paid_amount or Money.zero(currency))
            overdue = overdue + max_money(shortfall, Money.zero(currency))

    return ArrearsSummary(overdue, missed)
