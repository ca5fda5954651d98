"""
Loan Module

Loan and repayment records, loan creation with schedule materialisation,
persistence and status changes. Repayment application lives in the ledger.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Dict, List, Optional, Union
from enum import Enum
import uuid

from .currency import Money, Currency, to_money
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import ValidationError, NotFoundError, ConflictError
from .periods import Cadence, DateLike, to_date, current_period
from .schedule import (
    ScheduleEntry, RepaymentClassification, generate_schedule, installment_amount,
    validate_loan_terms
)


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "Active"
    COMPLETED = "Completed"
    DEFAULTED = "Defaulted"


@dataclass
class Loan(StorageRecord):
    """Loan with its terms and cached derived state"""
    borrower_id: str
    principal: Money
    interest_amount: Money              # Flat amount per period, not a rate
    duration: int                       # Number of periods
    disbursement_date: date
    cadence: Cadence = Cadence.MONTHLY
    document_charge: Money = None       # One-time charge at disbursement
    status: LoanStatus = LoanStatus.ACTIVE

    # Derived state, refreshed by the ledger
    current_period: int = 0
    remaining_balance: Money = None
    overdue_amount: Money = None
    missed_payments: int = 0
    next_payment_date: Optional[date] = None
    completed_from: Optional[LoanStatus] = None  # Status before a repayment completed it

    purpose: Optional[str] = None
    version: int = 0

    def __post_init__(self):
        currency = self.principal.currency
        if self.document_charge is None:
            self.document_charge = Money.zero(currency)
        if self.remaining_balance is None:
            self.remaining_balance = self.principal
        if self.overdue_amount is None:
            self.overdue_amount = Money.zero(currency)

    @property
    def currency(self) -> Currency:
        return self.principal.currency

    @property
    def installment_amount(self) -> Money:
        return installment_amount(self.principal, self.duration, self.interest_amount, self.cadence)

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE


@dataclass
class Repayment(StorageRecord):
    """A payment collected against one schedule entry of a loan"""
    loan_id: str
    amount: Money
    paid_date: date
    classification: RepaymentClassification
    collected_by: str
    schedule_entry_id: Optional[str] = None
    period: Optional[int] = None
    note: Optional[str] = None


class LoanManager:
    """
    Manages loan records, their schedules and repayment persistence
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 currency: Currency = Currency.INR):
        self.storage = storage
        self.audit_trail = audit_trail
        self.currency = currency

        self.loans_table = "loans"
        self.schedule_table = "schedule_entries"
        self.repayments_table = "repayments"

    def create_loan(
        self,
        borrower_id: str,
        principal: Union[Money, Decimal, int, str],
        interest_amount: Union[Money, Decimal, int, str],
        duration: int,
        disbursement_date: DateLike,
        cadence: Cadence = Cadence.MONTHLY,
        document_charge: Union[Money, Decimal, int, str, None] = None,
        purpose: Optional[str] = None,
        created_by: Optional[str] = None,
        as_of: Optional[DateLike] = None
    ) -> Loan:
        """
        Create a loan and materialise its payment schedule

        Args:
            borrower_id: Borrower identifier
            principal: Amount disbursed
            interest_amount: Flat interest per period
            duration: Number of periods
            disbursement_date: Date the principal was handed over
            cadence: Monthly or Weekly
            document_charge: One-time charge, zero when omitted
            purpose: Free-form purpose of the loan
            created_by: Operator creating the loan
            as_of: Reference date for the initial current period

        Returns:
            Created Loan
        """
        if not borrower_id:
            raise ValidationError("Borrower ID is required")
        if isinstance(cadence, str):
            try:
                cadence = Cadence(cadence)
            except ValueError:
                raise ValidationError(f"Unknown cadence: {cadence}")

        principal = to_money(principal, self.currency)
        interest_amount = to_money(interest_amount, self.currency)
        document_charge = to_money(document_charge, self.currency)
        validate_loan_terms(principal, duration, interest_amount)
        if document_charge.is_negative():
            raise ValidationError("Document charge cannot be negative")

        disbursed = to_date(disbursement_date)
        today = to_date(as_of) if as_of is not None else date.today()
        now = datetime.now(timezone.utc)

        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            borrower_id=borrower_id,
            principal=principal,
            interest_amount=interest_amount,
            duration=duration,
            disbursement_date=disbursed,
            cadence=cadence,
            document_charge=document_charge,
            current_period=current_period(disbursed, today, cadence, duration),
            purpose=purpose
        )
        entries = generate_schedule(loan)
        loan.next_payment_date = entries[0].due_date

        with self.storage.atomic():
            self.save_loan(loan)
            for entry in entries:
                self.save_schedule_entry(entry)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_CREATED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "borrower_id": borrower_id,
                    "principal": principal.to_string(),
                    "interest_amount": interest_amount.to_string(),
                    "document_charge": document_charge.to_string(),
                    "duration": duration,
                    "cadence": cadence.value,
                    "disbursement_date": disbursed.isoformat()
                },
                user_id=created_by
            )
            self.audit_trail.log_event(
                event_type=AuditEventType.SCHEDULE_GENERATED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "periods": len(entries),
                    "installment_amount": loan.installment_amount.to_string()
                },
                user_id=created_by
            )

        return loan

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID"""
        data = self.storage.load(self.loans_table, loan_id)
        if data:
            return self._loan_from_dict(data)
        return None

    def require_loan(self, loan_id: str) -> Loan:
        """Get loan by ID or raise NotFoundError"""
        loan = self.get_loan(loan_id)
        if not loan:
            raise NotFoundError(f"Loan {loan_id} not found")
        return loan

    def get_all_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        """Get all loans, optionally filtered by status"""
        if status:
            rows = self.storage.find(self.loans_table, {"status": status.value})
        else:
            rows = self.storage.load_all(self.loans_table)
        return [self._loan_from_dict(row) for row in rows]

    def get_borrower_loans(self, borrower_id: str) -> List[Loan]:
        """Get all loans of a borrower"""
        rows = self.storage.find(self.loans_table, {"borrower_id": borrower_id})
        return [self._loan_from_dict(row) for row in rows]

    def save_loan(self, loan: Loan, expected_version: Optional[int] = None) -> None:
        """
        Persist a loan

        When expected_version is given the stored record must still carry that
        version, otherwise another writer got there first and ConflictError is
        raised. The saved loan carries the next version.
        """
        if expected_version is not None:
            stored = self.storage.load(self.loans_table, loan.id)
            stored_version = stored.get('version', 0) if stored else None
            if stored_version != expected_version:
                raise ConflictError(
                    f"Loan {loan.id} changed concurrently "
                    f"(expected version {expected_version}, found {stored_version})"
                )
            loan.version = expected_version + 1
        loan.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.loans_table, loan.id, self._loan_to_dict(loan))

    def set_status(self, loan_id: str, status: LoanStatus, reason: Optional[str] = None,
                   user_id: Optional[str] = None) -> Loan:
        """Change a loan's status"""
        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            if loan.status == status:
                return loan
            previous = loan.status
            loan.status = status
            if status != LoanStatus.ACTIVE:
                loan.overdue_amount = Money.zero(loan.currency)
                loan.missed_payments = 0
            self.save_loan(loan, expected_version=loan.version)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_STATUS_CHANGED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "old_status": previous.value,
                    "new_status": status.value,
                    "reason": reason
                },
                user_id=user_id
            )
        return loan

    def mark_defaulted(self, loan_id: str, reason: Optional[str] = None,
                       user_id: Optional[str] = None) -> Loan:
        return self.set_status(loan_id, LoanStatus.DEFAULTED, reason, user_id)

    # Schedule persistence

    def get_schedule(self, loan_id: str) -> List[ScheduleEntry]:
        """Stored schedule entries of a loan, ordered by period"""
        rows = self.storage.find(self.schedule_table, {"loan_id": loan_id})
        entries = [ScheduleEntry.from_dict(row) for row in rows]
        entries.sort(key=lambda e: e.period)
        return entries

    def get_schedule_entry(self, entry_id: str) -> Optional[ScheduleEntry]:
        data = self.storage.load(self.schedule_table, entry_id)
        if data:
            return ScheduleEntry.from_dict(data)
        return None

    def save_schedule_entry(self, entry: ScheduleEntry) -> None:
        self.storage.save(self.schedule_table, entry.id, entry.to_dict())

    def ensure_schedule(self, loan_id: str, user_id: Optional[str] = None) -> List[ScheduleEntry]:
        """Generate and store the schedule of a loan that has none"""
        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            entries = self.get_schedule(loan_id)
            if entries:
                return entries

            entries = generate_schedule(loan)
            for entry in entries:
                self.save_schedule_entry(entry)

            self.audit_trail.log_event(
                event_type=AuditEventType.SCHEDULE_GENERATED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "periods": len(entries),
                    "installment_amount": loan.installment_amount.to_string()
                },
                user_id=user_id
            )
        return entries

    # Repayment persistence

    def get_repayment(self, repayment_id: str) -> Optional[Repayment]:
        data = self.storage.load(self.repayments_table, repayment_id)
        if data:
            return self._repayment_from_dict(data)
        return None

    def get_repayments(self, loan_id: Optional[str] = None) -> List[Repayment]:
        """Repayments of one loan (or of all loans), ordered by paid date"""
        if loan_id:
            rows = self.storage.find(self.repayments_table, {"loan_id": loan_id})
        else:
            rows = self.storage.load_all(self.repayments_table)
        repayments = [self._repayment_from_dict(row) for row in rows]
        repayments.sort(key=lambda r: (r.paid_date, r.created_at))
        return repayments

    def save_repayment(self, repayment: Repayment) -> None:
        self.storage.save(self.repayments_table, repayment.id, self._repayment_to_dict(repayment))

    def delete_repayment_record(self, repayment_id: str) -> bool:
        return self.storage.delete(self.repayments_table, repayment_id)

    # Serialization

    def _loan_to_dict(self, loan: Loan) -> Dict:
        """Convert loan to dictionary"""
        result = {
            'id': loan.id,
            'created_at': loan.created_at.isoformat(),
            'updated_at': loan.updated_at.isoformat(),
            'borrower_id': loan.borrower_id,
            'currency': loan.currency.code,
            'duration': loan.duration,
            'disbursement_date': loan.disbursement_date.isoformat(),
            'cadence': loan.cadence.value,
            'status': loan.status.value,
            'current_period': loan.current_period,
            'missed_payments': loan.missed_payments,
            'next_payment_date': (
                loan.next_payment_date.isoformat() if loan.next_payment_date else None
            ),
            'completed_from': loan.completed_from.value if loan.completed_from else None,
            'purpose': loan.purpose,
            'version': loan.version
        }

        # Convert money amounts
        for field in ['principal', 'interest_amount', 'document_charge',
                      'remaining_balance', 'overdue_amount']:
            result[field] = str(getattr(loan, field).amount)

        return result

    def _loan_from_dict(self, data: Dict) -> Loan:
        """Convert dictionary to loan"""
        currency = Currency[data.get('currency', 'INR')]

        def get_money(field: str) -> Money:
            return Money(Decimal(data.get(field) or '0'), currency)

        next_payment = data.get('next_payment_date')
        completed_from = data.get('completed_from')

        return Loan(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            borrower_id=data['borrower_id'],
            principal=get_money('principal'),
            interest_amount=get_money('interest_amount'),
            duration=int(data['duration']),
            disbursement_date=date.fromisoformat(data['disbursement_date']),
            cadence=Cadence(data['cadence']),
            document_charge=get_money('document_charge'),
            status=LoanStatus(data['status']),
            current_period=int(data.get('current_period', 0)),
            remaining_balance=get_money('remaining_balance'),
            overdue_amount=get_money('overdue_amount'),
            missed_payments=int(data.get('missed_payments', 0)),
            next_payment_date=date.fromisoformat(next_payment) if next_payment else None,
            completed_from=LoanStatus(completed_from) if completed_from else None,
            purpose=data.get('purpose'),
            version=int(data.get('version', 0))
        )

    def _repayment_to_dict(self, repayment: Repayment) -> Dict:
        """Convert repayment to dictionary"""
        return {
            'id': repayment.id,
            'created_at': repayment.created_at.isoformat(),
            'updated_at': repayment.updated_at.isoformat(),
            'loan_id': repayment.loan_id,
            'amount': str(repayment.amount.amount),
            'currency': repayment.amount.currency.code,
            'paid_date': repayment.paid_date.isoformat(),
            'classification': repayment.classification.value,
            'collected_by': repayment.collected_by,
            'schedule_entry_id': repayment.schedule_entry_id,
            'period': repayment.period,
            'note': repayment.note
        }

    def _repayment_from_dict(self, data: Dict) -> Repayment:
        """Convert dictionary to repayment"""
        return Repayment(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            amount=Money(Decimal(data['amount']), Currency[data.get('currency', 'INR')]),
            paid_date=date.fromisoformat(data['paid_date']),
            classification=RepaymentClassification(data['classification']),
            collected_by=data['collected_by'],
            schedule_entry_id=data.get('schedule_entry_id'),
            period=data.get('period'),
            note=data.get('note')
        )
