"""
Test suite for schedule generation

Tests installment math for both cadences, generated due dates and input
validation. All amounts must be exact Decimal values.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, date

from microfinance_core.currency import Money
from microfinance_core.errors import ValidationError
from microfinance_core.loans import Loan
from microfinance_core.periods import Cadence
from microfinance_core.schedule import (
    ScheduleEntry, ScheduleStatus, RepaymentClassification,
    installment_amount, principal_portion, generate_schedule
)


def make_loan(principal="40000", interest="800", duration=10, cadence=Cadence.MONTHLY,
              disbursed=date(2025, 1, 15)):
    now = datetime.now(timezone.utc)
    return Loan(
        id="LOAN001",
        created_at=now,
        updated_at=now,
        borrower_id="BORROWER001",
        principal=Money(Decimal(principal)),
        interest_amount=Money(Decimal(interest)),
        duration=duration,
        disbursement_date=disbursed,
        cadence=cadence
    )


class TestInstallmentAmount:
    """Test per-period installment math"""

    def test_monthly_installment(self):
        """Test monthly installment is principal/duration plus flat interest"""
        amount = installment_amount(
            Money(Decimal('40000')), 10, Money(Decimal('800')), Cadence.MONTHLY
        )
        assert amount == Money(Decimal('4800'))

    def test_monthly_installment_rounds_to_paise(self):
        amount = installment_amount(Money(Decimal('10000')), 3, Money.zero(), Cadence.MONTHLY)
        assert amount == Money(Decimal('3333.33'))

    def test_weekly_installment(self):
        """Test weekly installment spreads principal over one period fewer"""
        amount = installment_amount(
            Money(Decimal('10000')), 11, Money(Decimal('500')), Cadence.WEEKLY
        )
        assert amount == Money(Decimal('1000'))

    def test_weekly_single_period(self):
        amount = installment_amount(Money(Decimal('10000')), 1, Money.zero(), Cadence.WEEKLY)
        assert amount == Money(Decimal('10000'))

    def test_principal_portion(self):
        assert principal_portion(
            Money(Decimal('40000')), 10, Money(Decimal('800')), Cadence.MONTHLY
        ) == Money(Decimal('4000'))
        assert principal_portion(
            Money(Decimal('10000')), 11, Money.zero(), Cadence.WEEKLY
        ) == Money(Decimal('1000'))

    def test_loan_property_matches_function(self):
        loan = make_loan()
        assert loan.installment_amount == Money(Decimal('4800'))


class TestGenerateSchedule:
    """Test schedule generation"""

    def test_monthly_schedule(self):
        loan = make_loan()
        entries = generate_schedule(loan)

        assert len(entries) == 10
        assert [e.period for e in entries] == list(range(1, 11))
        assert entries[0].id == "LOAN001_1"
        assert entries[0].due_date == date(2025, 2, 15)
        assert entries[-1].due_date == date(2025, 11, 15)
        assert all(e.status == ScheduleStatus.PENDING for e in entries)
        assert all(e.amount_due == Money(Decimal('4800')) for e in entries)
        assert all(e.repayment_id is None for e in entries)

    def test_weekly_schedule(self):
        loan = make_loan(principal="12000", interest="0", duration=13, cadence=Cadence.WEEKLY,
                         disbursed=date(2025, 1, 1))
        entries = generate_schedule(loan)

        assert len(entries) == 13
        assert entries[0].due_date == date(2025, 1, 8)
        assert entries[12].due_date == date(2025, 4, 2)
        assert entries[0].amount_due == Money(Decimal('1000'))

    def test_rejects_non_positive_principal(self):
        with pytest.raises(ValidationError):
            generate_schedule(make_loan(principal="0"))

    def test_rejects_zero_duration(self):
        with pytest.raises(ValidationError):
            generate_schedule(make_loan(duration=0))

    def test_rejects_negative_interest(self):
        with pytest.raises(ValidationError):
            generate_schedule(make_loan(interest="-1"))


class TestScheduleEntrySerialization:
    """Test schedule entries survive storage"""

    def test_linked_entry_round_trip(self):
        entry = generate_schedule(make_loan())[0]
        entry.link("REPAY001", RepaymentClassification.PARTIAL, Money(Decimal('2000')), date(2025, 2, 14))
        entry.status = ScheduleStatus.PENDING

        restored = ScheduleEntry.from_dict(entry.to_dict())

        assert restored.repayment_id == "REPAY001"
        assert restored.repayment_classification == RepaymentClassification.PARTIAL
        assert restored.paid_amount == Money(Decimal('2000'))
        assert restored.actual_payment_date == date(2025, 2, 14)
        assert restored.amount_due == entry.amount_due
        assert restored.due_date == entry.due_date
