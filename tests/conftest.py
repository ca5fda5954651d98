"""
Shared fixtures: every test runs against a fresh in-memory storage with a
pinned clock.
"""

import pytest
from datetime import date

from microfinance_core.storage import InMemoryStorage
from microfinance_core.audit import AuditTrail
from microfinance_core.loans import LoanManager
from microfinance_core.chit_funds import ChitFundManager
from microfinance_core.ledger import RepaymentLedger
from microfinance_core.reporting import ReportingEngine


TODAY = date(2025, 4, 20)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def audit_trail(storage):
    return AuditTrail(storage)


@pytest.fixture
def loan_manager(storage, audit_trail):
    return LoanManager(storage, audit_trail)


@pytest.fixture
def chit_fund_manager(storage, audit_trail):
    return ChitFundManager(storage, audit_trail)


@pytest.fixture
def ledger(storage, loan_manager, audit_trail):
    return RepaymentLedger(
        storage, loan_manager, audit_trail,
        clock=lambda: TODAY, grace_days=3, due_soon_days=7
    )


@pytest.fixture
def reporting(loan_manager, chit_fund_manager):
    return ReportingEngine(loan_manager, chit_fund_manager)


@pytest.fixture
def standard_loan(loan_manager):
    """Monthly loan: 40,000 over 10 months, 800 interest per month, disbursed 2025-01-15"""
    return loan_manager.create_loan(
        borrower_id="BORROWER001",
        principal="40000",
        interest_amount="800",
        duration=10,
        disbursement_date=date(2025, 1, 15),
        as_of=date(2025, 1, 15)
    )
