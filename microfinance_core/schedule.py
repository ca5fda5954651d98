"""
Schedule Generator Module

Derives the period-by-period payment schedule of a loan from its principal,
flat interest amount, duration and cadence.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone, date
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Any

from .currency import Money, Currency
from .errors import ValidationError
from .periods import Cadence, due_date_for_period, to_date
from .storage import StorageRecord


class ScheduleStatus(Enum):
    """Status of a single schedule entry"""
    PENDING = "Pending"
    PAID = "Paid"
    OVERDUE = "Overdue"
    MISSED = "Missed"
    INTEREST_ONLY = "InterestOnly"


class RepaymentClassification(Enum):
    """How a repayment settles its schedule entry"""
    REGULAR = "Regular"
    INTEREST_ONLY = "InterestOnly"
    PARTIAL = "Partial"


@dataclass
class ScheduleEntry(StorageRecord):
    """One due obligation for a single period of a loan"""
    loan_id: str
    period: int
    due_date: date
    amount_due: Money
    status: ScheduleStatus = ScheduleStatus.PENDING

    # Link to the repayment that satisfied this entry
    repayment_id: Optional[str] = None
    repayment_classification: Optional[RepaymentClassification] = None
    paid_amount: Optional[Money] = None
    actual_payment_date: Optional[date] = None

    @property
    def is_linked(self) -> bool:
        return self.repayment_id is not None

    def link(self, repayment_id: str, classification: RepaymentClassification,
             amount: Money, paid_date: date) -> None:
        self.repayment_id = repayment_id
        self.repayment_classification = classification
        self.paid_amount = amount
        self.actual_payment_date = paid_date
        self.updated_at = datetime.now(timezone.utc)

    def unlink(self) -> None:
        self.repayment_id = None
        self.repayment_classification = None
        self.paid_amount = None
        self.actual_payment_date = None
        self.updated_at = datetime.now(timezone.utc)

    def with_status(self, status: ScheduleStatus) -> 'ScheduleEntry':
        return replace(self, status=status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'loan_id': self.loan_id,
            'period': self.period,
            'due_date': self.due_date.isoformat(),
            'amount_due': str(self.amount_due.amount),
            'currency': self.amount_due.currency.code,
            'status': self.status.value,
            'repayment_id': self.repayment_id,
            'repayment_classification': (
                self.repayment_classification.value if self.repayment_classification else None
            ),
            'paid_amount': str(self.paid_amount.amount) if self.paid_amount else None,
            'actual_payment_date': (
                self.actual_payment_date.isoformat() if self.actual_payment_date else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScheduleEntry':
        currency = Currency[data.get('currency', 'INR')]
        classification = data.get('repayment_classification')
        paid_amount = data.get('paid_amount')
        actual_date = data.get('actual_payment_date')
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            period=int(data['period']),
            due_date=date.fromisoformat(data['due_date']),
            amount_due=Money(Decimal(data['amount_due']), currency),
            status=ScheduleStatus(data['status']),
            repayment_id=data.get('repayment_id'),
            repayment_classification=(
                RepaymentClassification(classification) if classification else None
            ),
            paid_amount=Money(Decimal(paid_amount), currency) if paid_amount is not None else None,
            actual_payment_date=date.fromisoformat(actual_date) if actual_date else None,
        )


def installment_amount(principal: Money, duration: int, interest_amount: Money,
                       cadence: Cadence) -> Money:
    """
    Amount due each period

    Monthly loans repay an equal share of principal plus the flat interest
    amount. Weekly loans spread the principal over one period fewer than the
    duration and carry no separate interest component.
    """
    if cadence == Cadence.WEEKLY:
        return principal / max(1, duration - 1)
    return principal / max(1, duration) + interest_amount


def principal_portion(principal: Money, duration: int, interest_amount: Money,
                      cadence: Cadence) -> Money:
    """Principal part of one installment"""
    if cadence == Cadence.WEEKLY:
        return installment_amount(principal, duration, interest_amount, cadence)
    return principal / max(1, duration)


def schedule_entry_id(loan_id: str, period: int) -> str:
    return f"{loan_id}_{period}"


def validate_loan_terms(principal: Money, duration: int, interest_amount: Money) -> None:
    if not principal.is_positive():
        raise ValidationError(f"Principal must be positive, got {principal.to_string()}")
    if not isinstance(duration, int) or isinstance(duration, bool) or duration < 1:
        raise ValidationError(f"Duration must be at least 1 period, got {duration!r}")
    if interest_amount.is_negative():
        raise ValidationError("Interest amount cannot be negative")
    if interest_amount.currency != principal.currency:
        raise ValidationError("Interest amount currency must match principal currency")


def generate_schedule(loan) -> List[ScheduleEntry]:
    """
    Generate one Pending entry per period for a loan

    Args:
        loan: Loan record (principal, interest_amount, duration,
            disbursement_date, cadence)

    Returns:
        Schedule entries ordered by period
    """
    validate_loan_terms(loan.principal, loan.duration, loan.interest_amount)

    amount = installment_amount(loan.principal, loan.duration, loan.interest_amount, loan.cadence)
    disbursed = to_date(loan.disbursement_date)
    now = datetime.now(timezone.utc)

    return [
        ScheduleEntry(
            id=schedule_entry_id(loan.id, period),
            created_at=now,
            updated_at=now,
            loan_id=loan.id,
            period=period,
            due_date=due_date_for_period(disbursed, period, loan.cadence),
            amount_due=amount,
        )
        for period in range(1, loan.duration + 1)
    ]
