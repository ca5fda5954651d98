"""
Test suite for chit fund management
"""

import pytest
from decimal import Decimal
from datetime import date

from microfinance_core.audit import AuditEventType
from microfinance_core.chit_funds import ChitFundType, ChitFundStatus
from microfinance_core.currency import Money
from microfinance_core.errors import ValidationError, NotFoundError, ConflictError


@pytest.fixture
def chit_fund(chit_fund_manager):
    return chit_fund_manager.create_chit_fund(
        name="Market Traders Chit",
        total_amount="50000",
        monthly_contribution="5000",
        duration=3,
        members_count=10,
        start_date=date(2025, 1, 10),
        as_of=date(2025, 1, 10)
    )


class TestCreateChitFund:
    """Test chit fund creation"""

    def test_create(self, chit_fund_manager, audit_trail, chit_fund):
        loaded = chit_fund_manager.get_chit_fund(chit_fund.id)

        assert loaded.name == "Market Traders Chit"
        assert loaded.monthly_total == Money(Decimal('50000'))
        assert loaded.fund_type == ChitFundType.AUCTION
        assert loaded.current_month == 1
        assert loaded.status == ChitFundStatus.ACTIVE
        assert len(audit_trail.get_events_by_type(AuditEventType.CHIT_FUND_CREATED)) == 1

    def test_fixed_fund_first_month(self, chit_fund_manager):
        fund = chit_fund_manager.create_chit_fund(
            name="Fixed Chit", total_amount="48200", monthly_contribution="4800",
            duration=10, members_count=10, start_date="2025-01-10",
            fund_type="Fixed", first_month_contribution="5000", as_of=date(2025, 3, 10)
        )
        loaded = chit_fund_manager.get_chit_fund(fund.id)

        assert loaded.fund_type == ChitFundType.FIXED
        assert loaded.first_month_contribution == Money(Decimal('5000'))
        assert loaded.month_total(1) == Money(Decimal('48200'))
        assert loaded.month_total(2) == Money(Decimal('48000'))
        assert loaded.current_month == 3

    @pytest.mark.parametrize("overrides", [
        {"name": ""},
        {"total_amount": "0"},
        {"monthly_contribution": "-5"},
        {"duration": 0},
        {"members_count": 0},
    ])
    def test_rejects_bad_terms(self, chit_fund_manager, overrides):
        terms = dict(
            name="Chit", total_amount="50000", monthly_contribution="5000",
            duration=10, members_count=10, start_date=date(2025, 1, 10)
        )
        terms.update(overrides)
        with pytest.raises(ValidationError):
            chit_fund_manager.create_chit_fund(**terms)

    def test_unknown_fund(self, chit_fund_manager):
        assert chit_fund_manager.get_chit_fund("missing") is None
        with pytest.raises(NotFoundError):
            chit_fund_manager.require_chit_fund("missing")


class TestContributionsAndAuctions:
    """Test recording chit fund history"""

    def test_record_contribution(self, chit_fund_manager, chit_fund):
        chit_fund_manager.record_contribution(chit_fund.id, "MEMBER001", 1, "5000", date(2025, 1, 12))
        chit_fund_manager.record_contribution(chit_fund.id, "MEMBER002", 1, "5000", date(2025, 1, 11))

        contributions = chit_fund_manager.get_contributions(chit_fund.id)
        assert [c.member_id for c in contributions] == ["MEMBER002", "MEMBER001"]
        assert contributions[0].amount == Money(Decimal('5000'))

    def test_contribution_month_out_of_range(self, chit_fund_manager, chit_fund):
        with pytest.raises(ValidationError):
            chit_fund_manager.record_contribution(chit_fund.id, "MEMBER001", 4, "5000", date(2025, 4, 12))

    def test_contribution_to_unknown_fund(self, chit_fund_manager):
        with pytest.raises(NotFoundError):
            chit_fund_manager.record_contribution("missing", "MEMBER001", 1, "5000", date(2025, 1, 12))

    def test_record_auction(self, chit_fund_manager, chit_fund):
        auction = chit_fund_manager.record_auction(chit_fund.id, 1, "MEMBER003", "45000", date(2025, 1, 20))
        assert chit_fund_manager.get_auctions(chit_fund.id)[0].id == auction.id

    def test_one_auction_per_month(self, chit_fund_manager, chit_fund):
        chit_fund_manager.record_auction(chit_fund.id, 1, "MEMBER003", "45000", date(2025, 1, 20))
        with pytest.raises(ConflictError):
            chit_fund_manager.record_auction(chit_fund.id, 1, "MEMBER004", "44000", date(2025, 1, 21))
        assert len(chit_fund_manager.get_auctions(chit_fund.id)) == 1

    def test_completes_after_last_auction(self, chit_fund_manager, chit_fund):
        for month in range(1, 4):
            chit_fund_manager.record_auction(
                chit_fund.id, month, f"MEMBER00{month}", "45000", date(2025, month, 20)
            )
        fund = chit_fund_manager.refresh_current_month(chit_fund.id, date(2025, 3, 25))
        assert fund.current_month == 3
        assert fund.status == ChitFundStatus.COMPLETED
