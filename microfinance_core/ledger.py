"""
Repayment Ledger Module

Records and deletes repayments against schedule entries and keeps the loan's
derived state (remaining balance, arrears, current period, next payment date)
in step with the schedule.

Every mutation runs under the loan's lock inside one storage transaction and
finishes with a version compare-and-swap on the loan record, so two writers
can never both satisfy the same schedule entry and a failure part-way leaves
nothing behind.
"""

import threading
import uuid
import weakref
from datetime import datetime, timezone, date
from decimal import Decimal
from typing import Callable, List, Optional, Union

from .audit import AuditTrail, AuditEventType
from .classifier import classify, classify_entry, summarize_arrears, next_payment_date, visible_entries
from .config import get_config
from .currency import Money, max_money, sum_money, to_money
from .errors import ValidationError, NotFoundError, ConflictError, ConsistencyError
from .loans import LoanManager, Loan, LoanStatus, Repayment
from .logging_config import get_logger, log_action
from .periods import DateLike, to_date, loan_current_period
from .schedule import ScheduleEntry, ScheduleStatus, RepaymentClassification, schedule_entry_id
from .storage import StorageInterface


class LoanLockRegistry:
    """
    One lock per loan; operations on different loans never wait on each other

    A lock lives only while some caller holds a reference to it.
    """

    def __init__(self):
        self._locks = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def lock_for(self, loan_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(loan_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[loan_id] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)


def _awaits_top_up(entry: ScheduleEntry) -> bool:
    """Linked to a Partial repayment that still falls short of the amount due"""
    return (entry.is_linked
            and entry.repayment_classification == RepaymentClassification.PARTIAL
            and entry.paid_amount is not None
            and entry.paid_amount < entry.amount_due)


class RepaymentLedger:
    """
    Applies repayments to loan schedules
    """

    def __init__(
        self,
        storage: StorageInterface,
        loan_manager: LoanManager,
        audit_trail: AuditTrail,
        clock: Callable[[], date] = date.today,
        grace_days: Optional[int] = None,
        due_soon_days: Optional[int] = None
    ):
        settings = get_config()
        self.storage = storage
        self.loan_manager = loan_manager
        self.audit_trail = audit_trail
        self.clock = clock
        self.grace_days = settings.grace_period_days if grace_days is None else grace_days
        self.due_soon_days = settings.due_soon_days if due_soon_days is None else due_soon_days
        self.locks = LoanLockRegistry()
        self.logger = get_logger("microfinance.ledger")

    def _today(self, as_of: Optional[DateLike]) -> date:
        return to_date(as_of) if as_of is not None else self.clock()

    def _resolve_entry(self, loan: Loan, target: Union[str, int]) -> ScheduleEntry:
        """Schedule entry addressed by entry id or by period number"""
        if isinstance(target, bool):
            raise ValidationError(f"Invalid schedule target: {target!r}")
        if isinstance(target, int):
            if target < 1 or target > loan.duration:
                raise ValidationError(
                    f"Period {target} is outside loan {loan.id} (1..{loan.duration})"
                )
            entry_id = schedule_entry_id(loan.id, target)
        elif isinstance(target, str) and target:
            entry_id = target
        else:
            raise ValidationError(f"Invalid schedule target: {target!r}")

        entry = self.loan_manager.get_schedule_entry(entry_id)
        if entry is None:
            raise ValidationError(f"Schedule entry {entry_id} not found for loan {loan.id}")
        if entry.loan_id != loan.id:
            raise ValidationError(f"Schedule entry {entry_id} does not belong to loan {loan.id}")
        return entry

    def _relink_entry(self, entry: ScheduleEntry, remaining: List[Repayment]) -> None:
        """Point an entry at the repayments still recorded against it, or free it"""
        if not remaining:
            entry.unlink()
            return
        remaining.sort(key=lambda r: r.created_at)
        latest = remaining[-1]
        classification = (
            latest.classification if len(remaining) == 1 else RepaymentClassification.PARTIAL
        )
        total = sum_money((r.amount for r in remaining), entry.amount_due.currency)
        entry.link(latest.id, classification, total, latest.paid_date)

    def _refresh_derived_state(self, loan: Loan, today: date) -> List[ScheduleEntry]:
        """
        Re-run the classifier over the whole schedule and store the results

        Updates entry statuses that changed plus the loan's current period,
        overdue amount, missed count and next payment date. Returns the
        classified schedule.
        """
        entries = self.loan_manager.get_schedule(loan.id)
        classified = classify(entries, today, self.grace_days)
        for stored, fresh in zip(entries, classified):
            if stored.status != fresh.status:
                fresh.updated_at = datetime.now(timezone.utc)
                self.loan_manager.save_schedule_entry(fresh)

        arrears = summarize_arrears(loan, classified, today, self.grace_days)
        loan.overdue_amount = arrears.overdue_amount
        loan.missed_payments = arrears.missed_payments
        loan.current_period = loan_current_period(loan, today)
        loan.next_payment_date = (
            next_payment_date(classified, today, self.grace_days) if loan.is_active else None
        )
        return classified

    def record_repayment(
        self,
        loan_id: str,
        target: Union[str, int],
        amount: Union[Money, Decimal, int, str],
        paid_date: DateLike,
        classification: Union[RepaymentClassification, str] = RepaymentClassification.REGULAR,
        collected_by: str = "system",
        note: Optional[str] = None,
        as_of: Optional[DateLike] = None
    ) -> Repayment:
        """
        Record a repayment against one schedule entry

        Args:
            loan_id: Loan being repaid
            target: Schedule entry ID or 1-indexed period number
            amount: Amount collected
            paid_date: Date the money was received
            classification: Regular, InterestOnly or Partial
            collected_by: Collector or operator entering the payment
            note: Optional free-form note
            as_of: Reference date for reclassification, the ledger clock when omitted

        Returns:
            Created Repayment

        Raises:
            NotFoundError: Unknown loan
            ValidationError: Bad amount, date or target
            ConflictError: Entry already satisfied or loan changed concurrently
        """
        if isinstance(classification, str):
            try:
                classification = RepaymentClassification(classification)
            except ValueError:
                raise ValidationError(f"Unknown repayment classification: {classification}")
        if not collected_by:
            raise ValidationError("Collector identity is required")

        paid = to_date(paid_date)
        today = self._today(as_of)

        with self.locks.lock_for(loan_id):
            try:
                with self.storage.atomic():
                    loan = self.loan_manager.require_loan(loan_id)
                    expected_version = loan.version

                    money = to_money(amount, loan.currency)
                    if not money.is_positive():
                        raise ValidationError("Repayment amount must be positive")
                    if loan.status == LoanStatus.COMPLETED:
                        raise ValidationError(f"Loan {loan_id} is already completed")
                    if paid < loan.disbursement_date:
                        raise ValidationError(
                            f"Paid date {paid.isoformat()} is before disbursement "
                            f"{loan.disbursement_date.isoformat()}"
                        )

                    self.loan_manager.ensure_schedule(loan.id, user_id=collected_by)
                    entry = self._resolve_entry(loan, target)
                    top_up = _awaits_top_up(entry)
                    if entry.is_linked and not top_up:
                        raise ConflictError(
                            f"Schedule entry {entry.id} is already satisfied by repayment {entry.repayment_id}"
                        )
                    if top_up and classification == RepaymentClassification.INTEREST_ONLY:
                        raise ValidationError(
                            f"Schedule entry {entry.id} is partially paid; the shortfall needs "
                            f"a Regular or Partial repayment"
                        )

                    if classification == RepaymentClassification.INTEREST_ONLY:
                        if money != loan.interest_amount:
                            raise ValidationError(
                                f"Interest-only amount must equal the interest amount "
                                f"{loan.interest_amount.to_string()}"
                            )
                    elif money > loan.remaining_balance:
                        raise ValidationError(
                            f"Amount {money.to_string()} exceeds remaining balance "
                            f"{loan.remaining_balance.to_string()}"
                        )

                    now = datetime.now(timezone.utc)
                    repayment = Repayment(
                        id=str(uuid.uuid4()),
                        created_at=now,
                        updated_at=now,
                        loan_id=loan.id,
                        amount=money,
                        paid_date=paid,
                        classification=classification,
                        collected_by=collected_by,
                        schedule_entry_id=entry.id,
                        period=entry.period,
                        note=note
                    )
                    self.loan_manager.save_repayment(repayment)

                    if top_up:
                        entry.link(repayment.id, RepaymentClassification.PARTIAL,
                                   entry.paid_amount + money, paid)
                    else:
                        entry.link(repayment.id, classification, money, paid)
                    entry.status = classify_entry(entry, today, self.grace_days)
                    self.loan_manager.save_schedule_entry(entry)

                    previous_balance = loan.remaining_balance
                    if classification != RepaymentClassification.INTEREST_ONLY:
                        loan.remaining_balance = max_money(
                            loan.remaining_balance - money, Money.zero(loan.currency)
                        )
                    if loan.remaining_balance.is_zero() and loan.status != LoanStatus.COMPLETED:
                        loan.completed_from = loan.status
                        loan.status = LoanStatus.COMPLETED

                    self._refresh_derived_state(loan, today)
                    self.loan_manager.save_loan(loan, expected_version=expected_version)

                    self.audit_trail.log_event(
                        event_type=AuditEventType.REPAYMENT_RECORDED,
                        entity_type="repayment",
                        entity_id=repayment.id,
                        metadata={
                            "loan_id": loan.id,
                            "schedule_entry_id": entry.id,
                            "period": entry.period,
                            "amount": money.to_string(),
                            "classification": classification.value,
                            "top_up": top_up,
                            "paid_date": paid.isoformat(),
                            "previous_balance": previous_balance.to_string(),
                            "remaining_balance": loan.remaining_balance.to_string(),
                            "loan_status": loan.status.value
                        },
                        user_id=collected_by
                    )
            except ConflictError as e:
                log_action(
                    self.logger, "warning", "Repayment rejected: conflict",
                    user_id=collected_by, action="record_repayment",
                    resource=f"loan:{loan_id}", extra={"error": str(e)}
                )
                raise

        log_action(
            self.logger, "info", "Repayment recorded",
            user_id=collected_by, action="record_repayment",
            resource=f"loan:{loan_id}",
            extra={
                "repayment_id": repayment.id,
                "period": repayment.period,
                "amount": str(repayment.amount.amount),
                "classification": classification.value,
                "remaining_balance": str(loan.remaining_balance.amount)
            }
        )
        return repayment

    def delete_repayment(self, repayment_id: str, as_of: Optional[DateLike] = None,
                         user_id: Optional[str] = None) -> None:
        """
        Delete a repayment and reverse its effect on the loan

        The linked entry is freed and reclassified (Pending or Missed), or,
        when other partial payments remain on it, relinked to those. The
        balance it reduced is restored and a completed loan with a positive
        balance becomes active again.

        Raises:
            NotFoundError: Unknown repayment
            ConsistencyError: The repayment and its schedule entry disagree
        """
        repayment = self.loan_manager.get_repayment(repayment_id)
        if repayment is None:
            raise NotFoundError(f"Repayment {repayment_id} not found")

        loan_id = repayment.loan_id
        today = self._today(as_of)

        with self.locks.lock_for(loan_id):
            try:
                with self.storage.atomic():
                    repayment = self.loan_manager.get_repayment(repayment_id)
                    if repayment is None:
                        raise NotFoundError(f"Repayment {repayment_id} not found")
                    loan = self.loan_manager.get_loan(loan_id)
                    if loan is None:
                        raise ConsistencyError(
                            f"Repayment {repayment_id} references missing loan {loan_id}"
                        )
                    expected_version = loan.version

                    entry = None
                    if repayment.schedule_entry_id:
                        entry = self.loan_manager.get_schedule_entry(repayment.schedule_entry_id)
                    recorded = [] if entry is None else [
                        r for r in self.loan_manager.get_repayments(loan_id)
                        if r.schedule_entry_id == entry.id
                    ]
                    if entry is None or entry.repayment_id not in {r.id for r in recorded}:
                        raise ConsistencyError(
                            f"Repayment {repayment_id} is not linked from schedule entry "
                            f"{repayment.schedule_entry_id}"
                        )

                    self.loan_manager.delete_repayment_record(repayment.id)

                    self._relink_entry(entry, [r for r in recorded if r.id != repayment.id])
                    entry.status = classify_entry(entry, today, self.grace_days)
                    self.loan_manager.save_schedule_entry(entry)

                    previous_balance = loan.remaining_balance
                    if repayment.classification != RepaymentClassification.INTEREST_ONLY:
                        loan.remaining_balance = loan.remaining_balance + repayment.amount
                    if loan.status == LoanStatus.COMPLETED and loan.remaining_balance.is_positive():
                        loan.status = loan.completed_from or LoanStatus.ACTIVE
                        loan.completed_from = None

                    self._refresh_derived_state(loan, today)
                    self.loan_manager.save_loan(loan, expected_version=expected_version)

                    self.audit_trail.log_event(
                        event_type=AuditEventType.REPAYMENT_DELETED,
                        entity_type="repayment",
                        entity_id=repayment.id,
                        metadata={
                            "loan_id": loan.id,
                            "schedule_entry_id": entry.id,
                            "period": entry.period,
                            "amount": repayment.amount.to_string(),
                            "classification": repayment.classification.value,
                            "previous_balance": previous_balance.to_string(),
                            "remaining_balance": loan.remaining_balance.to_string(),
                            "loan_status": loan.status.value,
                            "entry_status": entry.status.value
                        },
                        user_id=user_id
                    )
            except ConsistencyError as e:
                log_action(
                    self.logger, "error", "Repayment deletion aborted: ledger inconsistency",
                    user_id=user_id, action="delete_repayment",
                    resource=f"repayment:{repayment_id}", extra={"error": str(e)}
                )
                # Recorded after the rollback so the violation itself survives
                self.audit_trail.log_event(
                    event_type=AuditEventType.CONSISTENCY_VIOLATION,
                    entity_type="repayment",
                    entity_id=repayment_id,
                    metadata={"loan_id": loan_id, "error": str(e)},
                    user_id=user_id
                )
                raise
            except ConflictError as e:
                log_action(
                    self.logger, "warning", "Repayment deletion rejected: conflict",
                    user_id=user_id, action="delete_repayment",
                    resource=f"repayment:{repayment_id}", extra={"error": str(e)}
                )
                raise

        log_action(
            self.logger, "info", "Repayment deleted",
            user_id=user_id, action="delete_repayment",
            resource=f"loan:{loan_id}",
            extra={
                "repayment_id": repayment_id,
                "remaining_balance": str(loan.remaining_balance.amount)
            }
        )

    def recompute_loan(self, loan_id: str, as_of: Optional[DateLike] = None,
                       user_id: Optional[str] = None) -> Loan:
        """Reconcile a loan's cached current period and arrears with the schedule"""
        today = self._today(as_of)

        with self.locks.lock_for(loan_id):
            with self.storage.atomic():
                loan = self.loan_manager.require_loan(loan_id)
                expected_version = loan.version
                before = {
                    "current_period": loan.current_period,
                    "overdue_amount": loan.overdue_amount.to_string(),
                    "missed_payments": loan.missed_payments
                }

                self._refresh_derived_state(loan, today)
                self.loan_manager.save_loan(loan, expected_version=expected_version)

                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_RECOMPUTED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={
                        "as_of": today.isoformat(),
                        "before": before,
                        "after": {
                            "current_period": loan.current_period,
                            "overdue_amount": loan.overdue_amount.to_string(),
                            "missed_payments": loan.missed_payments
                        }
                    },
                    user_id=user_id
                )

        log_action(
            self.logger, "debug", "Loan recomputed",
            user_id=user_id, action="recompute_loan", resource=f"loan:{loan_id}",
            extra={"current_period": loan.current_period, "missed_payments": loan.missed_payments}
        )
        return loan

    def recompute_all(self, as_of: Optional[DateLike] = None,
                      user_id: Optional[str] = None) -> List[Loan]:
        """Recompute every active loan; each loan is its own transaction"""
        today = self._today(as_of)
        return [
            self.recompute_loan(loan.id, today, user_id)
            for loan in self.loan_manager.get_all_loans(LoanStatus.ACTIVE)
        ]

    def get_schedule(self, loan_id: str, as_of: Optional[DateLike] = None,
                     visible_only: bool = False,
                     status: Optional[ScheduleStatus] = None) -> List[ScheduleEntry]:
        """
        Classified schedule of a loan, generated first if it was never stored

        With visible_only the entries are filtered the way a schedule view
        shows them (newest first); otherwise every entry is returned by period.
        """
        today = self._today(as_of)
        entries = self.loan_manager.ensure_schedule(loan_id)
        if visible_only:
            return visible_entries(entries, today, self.due_soon_days, self.grace_days, status)
        classified = classify(entries, today, self.grace_days)
        if status is not None:
            classified = [e for e in classified if e.status == status]
        return classified
