"""
Test suite for profit and outside-amount calculations

Tests loan profit for both cadences, chit fund profit including the
contribution fallback and Fixed funds, and outside amounts.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, date

from microfinance_core.chit_funds import ChitFund, ChitFundType, Contribution, Auction
from microfinance_core.currency import Money
from microfinance_core.loans import Loan, Repayment
from microfinance_core.periods import Cadence
from microfinance_core.profit import (
    ChitFundHistory, loan_profit, loan_profit_between, loan_balance_as_of,
    chit_fund_profit, chit_fund_profit_to_date, chit_fund_profit_between, fixed_chit_fund_profit,
    loan_outside_amount, chit_fund_outside_amount, outside_amount
)
from microfinance_core.schedule import RepaymentClassification

NOW = datetime.now(timezone.utc)


def make_loan(principal="40000", interest="800", duration=10, cadence=Cadence.MONTHLY,
              document_charge="0", disbursed=date(2025, 1, 15)):
    return Loan(
        id="LOAN001", created_at=NOW, updated_at=NOW,
        borrower_id="BORROWER001",
        principal=Money(Decimal(principal)),
        interest_amount=Money(Decimal(interest)),
        duration=duration,
        disbursement_date=disbursed,
        cadence=cadence,
        document_charge=Money(Decimal(document_charge))
    )


def repayment(amount, paid, classification=RepaymentClassification.REGULAR, index=1):
    return Repayment(
        id=f"REPAY{index:03d}", created_at=NOW, updated_at=NOW,
        loan_id="LOAN001",
        amount=Money(Decimal(amount)),
        paid_date=paid,
        classification=classification,
        collected_by="COLLECTOR001",
        period=index
    )


def make_chit_fund(fund_type=ChitFundType.AUCTION, monthly="5000", members=10, duration=10,
                   first_month=None):
    return ChitFund(
        id="CHIT001", created_at=NOW, updated_at=NOW,
        name="Market Traders Chit",
        total_amount=Money(Decimal('50000')),
        monthly_contribution=Money(Decimal(monthly)),
        duration=duration,
        members_count=members,
        start_date=date(2025, 1, 10),
        fund_type=fund_type,
        first_month_contribution=Money(Decimal(first_month)) if first_month else None
    )


def contribution(amount, month, paid, index=1):
    return Contribution(
        id=f"CONTRIB{index:03d}", created_at=NOW, updated_at=NOW,
        chit_fund_id="CHIT001", member_id=f"MEMBER{index:03d}",
        month=month, amount=Money(Decimal(amount)), paid_date=paid
    )


def auction(amount, month, held, index=1):
    return Auction(
        id=f"AUCTION{index:03d}", created_at=NOW, updated_at=NOW,
        chit_fund_id="CHIT001", month=month, winner_id=f"MEMBER{index:03d}",
        amount=Money(Decimal(amount)), auction_date=held
    )


class TestLoanProfit:
    """Test loan profit"""

    def test_monthly_interest_only_and_regular(self):
        """Test interest-only and regular repayments each earn one unit of interest"""
        loan = make_loan()
        history = [
            repayment("800", date(2025, 2, 15), RepaymentClassification.INTEREST_ONLY, 1),
            repayment("4800", date(2025, 3, 15), RepaymentClassification.REGULAR, 2),
        ]
        assert loan_profit(loan, history) == Money(Decimal('1600'))

    def test_monthly_all_interest_only(self):
        loan = make_loan()
        history = [
            repayment("800", date(2025, 2, 15), RepaymentClassification.INTEREST_ONLY, i)
            for i in range(1, 4)
        ]
        assert loan_profit(loan, history) == Money(Decimal('2400'))

    def test_monthly_includes_document_charge(self):
        loan = make_loan(document_charge="500")
        history = [repayment("4800", date(2025, 2, 15), index=i) for i in range(1, 4)]
        assert loan_profit(loan, history) == Money(Decimal('2900'))

    def test_top_up_earns_interest_once(self):
        """Test a partial payment and its top-up on one entry earn one unit of interest"""
        loan = make_loan()
        history = [
            repayment("2000", date(2025, 2, 15), RepaymentClassification.PARTIAL, 1),
            repayment("2800", date(2025, 2, 20), RepaymentClassification.PARTIAL, 2),
        ]
        for r in history:
            r.schedule_entry_id = "LOAN001_1"
        assert loan_profit(loan, history) == Money(Decimal('800'))
        assert loan_profit_between(loan, history, date(2025, 2, 16), date(2025, 3, 1)).is_zero()

    def test_no_repayments(self):
        assert loan_profit(make_loan(document_charge="500")) == Money(Decimal('500'))

    def test_weekly_profit_is_excess_over_principal(self):
        loan = make_loan(principal="10000", interest="0", duration=11, cadence=Cadence.WEEKLY)
        history = [
            repayment("6000", date(2025, 1, 22), index=1),
            repayment("5000", date(2025, 1, 29), index=2),
            repayment("200", date(2025, 2, 5), RepaymentClassification.INTEREST_ONLY, 3),
        ]
        assert loan_profit(loan, history) == Money(Decimal('1000'))

    def test_weekly_profit_never_negative(self):
        loan = make_loan(principal="10000", interest="0", duration=11, cadence=Cadence.WEEKLY)
        assert loan_profit(loan, [repayment("3000", date(2025, 1, 22))]).is_zero()

    def test_monthly_profit_between(self):
        loan = make_loan(document_charge="500")
        history = [
            repayment("4800", date(2025, 2, 15), index=1),
            repayment("4800", date(2025, 3, 15), index=2),
        ]
        assert loan_profit_between(loan, history, date(2025, 1, 1), date(2025, 2, 1)) == Money(Decimal('500'))
        assert loan_profit_between(loan, history, date(2025, 2, 1), date(2025, 3, 1)) == Money(Decimal('800'))

    def test_weekly_profit_between_adds_up(self):
        loan = make_loan(principal="10000", interest="0", duration=11, cadence=Cadence.WEEKLY)
        history = [
            repayment("6000", date(2025, 1, 22), index=1),
            repayment("5000", date(2025, 2, 3), index=2),
        ]
        january = loan_profit_between(loan, history, date(2025, 1, 1), date(2025, 2, 1))
        february = loan_profit_between(loan, history, date(2025, 2, 1), date(2025, 3, 1))
        assert january.is_zero()
        assert february == Money(Decimal('1000'))


class TestLoanBalance:
    """Test point-in-time balance reconstruction"""

    def test_before_disbursement(self):
        assert loan_balance_as_of(make_loan(), [], date(2025, 1, 15)).is_zero()

    def test_after_repayments(self):
        history = [
            repayment("4000", date(2025, 2, 15), index=1),
            repayment("800", date(2025, 3, 15), RepaymentClassification.INTEREST_ONLY, 2),
            repayment("4000", date(2025, 4, 15), index=3),
        ]
        loan = make_loan()
        assert loan_balance_as_of(loan, history, date(2025, 4, 1)) == Money(Decimal('36000'))
        assert loan_balance_as_of(loan, history, date(2025, 5, 1)) == Money(Decimal('32000'))

    def test_loan_outside_amount_is_remaining_balance(self):
        loan = make_loan()
        loan.remaining_balance = Money(Decimal('28000'))
        assert loan_outside_amount(loan) == Money(Decimal('28000'))
        assert outside_amount(loan) == Money(Decimal('28000'))


class TestChitFundProfit:
    """Test chit fund profit"""

    def test_auction_commission(self):
        """Test each underbid auction earns the pot less the payout"""
        fund = make_chit_fund()
        auctions = [
            auction("45000", 1, date(2025, 1, 20), 1),
            auction("48000", 2, date(2025, 2, 20), 2),
            auction("52000", 3, date(2025, 3, 20), 3),
        ]
        assert chit_fund_profit(fund, [], auctions) == Money(Decimal('7000'))

    def test_contribution_fallback_without_auctions(self):
        fund = make_chit_fund()
        contributions = [contribution("50000", 1, date(2025, 1, 12))]
        assert chit_fund_profit(fund, contributions, []) == Money(Decimal('50000'))

    def test_contribution_fallback_when_auctions_earn_nothing(self):
        fund = make_chit_fund()
        contributions = [contribution("60000", 1, date(2025, 1, 12))]
        auctions = [auction("52000", 1, date(2025, 1, 20))]
        assert chit_fund_profit(fund, contributions, auctions) == Money(Decimal('8000'))

    def test_empty_history(self):
        assert chit_fund_profit(make_chit_fund()).is_zero()

    def test_profit_to_date_ignores_future_months(self):
        fund = make_chit_fund()
        auctions = [
            auction("45000", 1, date(2025, 1, 20), 1),
            auction("48000", 2, date(2025, 2, 20), 2),
            auction("40000", 5, date(2025, 5, 20), 3),
        ]
        profit = chit_fund_profit_to_date(fund, [], auctions, as_of=date(2025, 2, 15))
        assert profit == Money(Decimal('7000'))

    def test_fixed_fund_distributed_profit(self):
        """Test a Fixed fund spreads each auction's profit over its duration"""
        fund = make_chit_fund(ChitFundType.FIXED, monthly="4800", first_month="5000")
        auctions = [auction("40000", 1, date(2025, 1, 20))]
        # Pot of month 1 is 5,000 + 4,800 x 9 = 48,200; 8,200 spread over 10 months
        assert fixed_chit_fund_profit(fund, 1, auctions) == Money(Decimal('820'))
        assert chit_fund_profit_to_date(fund, [], auctions, as_of=date(2025, 3, 10)) == Money(Decimal('2460'))

    def test_fixed_fund_loss_floored(self):
        fund = make_chit_fund(ChitFundType.FIXED, monthly="4800", first_month="5000")
        assert fixed_chit_fund_profit(fund, 3, [auction("49000", 2, date(2025, 2, 20))]).is_zero()

    def test_profit_between_books_auctions_in_their_window(self):
        """Test windows without an auction earn nothing even when contributions arrive"""
        fund = make_chit_fund()
        auctions = [
            auction("45000", 1, date(2025, 1, 20), 1),
            auction("45000", 2, date(2025, 3, 2), 2),
        ]
        windows = [
            (date(2025, 1, 1), date(2025, 2, 1)),
            (date(2025, 2, 1), date(2025, 3, 1)),
            (date(2025, 3, 1), date(2025, 4, 1)),
        ]
        profits = [chit_fund_profit_between(fund, auctions, start, end) for start, end in windows]

        assert profits == [Money(Decimal('5000')), Money.zero(), Money(Decimal('5000'))]
        assert profits[0] + profits[1] + profits[2] == chit_fund_profit(fund, [], auctions)


class TestChitFundOutsideAmount:
    """Test chit fund outside amount"""

    def test_payouts_exceed_contributions(self):
        fund = make_chit_fund()
        contributions = [contribution("60000", 1, date(2025, 1, 12))]
        auctions = [
            auction("50000", 1, date(2025, 1, 20), 1),
            auction("50000", 2, date(2025, 2, 20), 2),
        ]
        assert chit_fund_outside_amount(fund, contributions, auctions) == Money(Decimal('40000'))
        history = ChitFundHistory(contributions=contributions, auctions=auctions)
        assert outside_amount(fund, history) == Money(Decimal('40000'))

    def test_contributions_exceed_payouts(self):
        fund = make_chit_fund()
        contributions = [contribution("60000", 1, date(2025, 1, 12))]
        auctions = [auction("50000", 1, date(2025, 1, 20))]
        assert chit_fund_outside_amount(fund, contributions, auctions).is_zero()

    def test_cutoff(self):
        fund = make_chit_fund()
        auctions = [auction("50000", 1, date(2025, 1, 20))]
        assert chit_fund_outside_amount(fund, [], auctions, cutoff=date(2025, 1, 20)).is_zero()
        assert chit_fund_outside_amount(fund, [], auctions, cutoff=date(2025, 1, 21)) == Money(Decimal('50000'))

    def test_unsupported_subject(self):
        with pytest.raises(TypeError):
            outside_amount("not a loan")
