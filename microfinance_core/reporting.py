"""
Reporting Engine Module

Buckets every loan and chit fund into trailing weekly, monthly or yearly
periods and sums cash inflow, cash outflow, profit and outside amount per
bucket. Summaries are rebuilt from the ledgers on every request and never
persisted.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .chit_funds import ChitFundManager
from .config import get_config
from .currency import Money, Currency, sum_money
from .errors import ValidationError
from .loans import LoanManager, LoanStatus
from .logging_config import get_logger
from .periods import DateLike, to_date, add_months
from .profit import (
    loan_profit, loan_profit_between, loan_balance_as_of, chit_fund_profit_between,
    chit_fund_profit_to_date, chit_fund_outside_amount
)


class ReportPeriod(Enum):
    """Reporting bucket cadence"""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


@dataclass(frozen=True)
class PeriodRange:
    """Half-open date range [start, end) of one reporting bucket"""
    label: str
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value < self.end

    @property
    def start_datetime(self) -> datetime:
        return datetime.combine(self.start, time.min)

    @property
    def end_datetime(self) -> datetime:
        return datetime.combine(self.end, time.min)


@dataclass
class PeriodSummary:
    """Aggregated figures of one reporting bucket"""
    period: PeriodRange
    currency: Currency = Currency.INR

    # Cash flow breakdown
    loan_repayments: Money = None
    contributions: Money = None
    disbursements: Money = None
    auction_payouts: Money = None

    loan_profit: Money = None
    chit_fund_profit: Money = None
    loan_outside_amount: Money = None
    chit_fund_outside_amount: Money = None

    repayment_count: int = 0
    contribution_count: int = 0
    disbursement_count: int = 0
    auction_count: int = 0

    is_fallback: bool = False

    def __post_init__(self):
        for name in ('loan_repayments', 'contributions', 'disbursements', 'auction_payouts',
                     'loan_profit', 'chit_fund_profit', 'loan_outside_amount',
                     'chit_fund_outside_amount'):
            if getattr(self, name) is None:
                setattr(self, name, Money.zero(self.currency))

    @property
    def cash_inflow(self) -> Money:
        return self.loan_repayments + self.contributions

    @property
    def cash_outflow(self) -> Money:
        return self.disbursements + self.auction_payouts

    @property
    def net_cash_flow(self) -> Money:
        return self.cash_inflow - self.cash_outflow

    @property
    def profit(self) -> Money:
        return self.loan_profit + self.chit_fund_profit

    @property
    def outside_amount(self) -> Money:
        return self.loan_outside_amount + self.chit_fund_outside_amount

    @property
    def transaction_count(self) -> int:
        return (self.repayment_count + self.contribution_count
                + self.disbursement_count + self.auction_count)

    def is_empty(self) -> bool:
        """True when nothing happened and nothing is outstanding"""
        return (self.transaction_count == 0
                and self.cash_inflow.is_zero()
                and self.cash_outflow.is_zero()
                and self.profit.is_zero()
                and self.outside_amount.is_zero())

    def to_dict(self) -> Dict[str, Any]:
        """Whole currency units, as shown on dashboards"""
        return {
            'period': self.period.label,
            'period_start': self.period.start_datetime.isoformat(),
            'period_end': self.period.end_datetime.isoformat(),
            'cash_inflow': self.cash_inflow.whole_units(),
            'cash_outflow': self.cash_outflow.whole_units(),
            'net_cash_flow': self.net_cash_flow.whole_units(),
            'profit': self.profit.whole_units(),
            'loan_profit': self.loan_profit.whole_units(),
            'chit_fund_profit': self.chit_fund_profit.whole_units(),
            'outside_amount': self.outside_amount.whole_units(),
            'loan_outside_amount': self.loan_outside_amount.whole_units(),
            'chit_fund_outside_amount': self.chit_fund_outside_amount.whole_units(),
            'cash_flow': {
                'loan_repayments': self.loan_repayments.whole_units(),
                'contributions': self.contributions.whole_units(),
                'disbursements': self.disbursements.whole_units(),
                'auction_payouts': self.auction_payouts.whole_units()
            },
            'transactions': {
                'repayments': self.repayment_count,
                'contributions': self.contribution_count,
                'disbursements': self.disbursement_count,
                'auctions': self.auction_count,
                'total': self.transaction_count
            },
            'currency': self.currency.code,
            'is_fallback': self.is_fallback
        }


def _week_label(start: date, end: date) -> str:
    last = end - timedelta(days=1)
    return f"{start.strftime('%b')} {start.day} - {last.strftime('%b')} {last.day}"


def build_period_ranges(cadence: ReportPeriod, bucket_count: int, as_of: DateLike) -> List[PeriodRange]:
    """
    Trailing bucket ranges ending with the one containing as_of, oldest first

    Weekly buckets are 7-day windows whose last day is as_of. Monthly and
    yearly buckets follow the calendar.
    """
    if bucket_count < 1:
        raise ValidationError(f"Bucket count must be at least 1, got {bucket_count}")
    today = to_date(as_of)
    ranges = []

    if cadence == ReportPeriod.WEEKLY:
        end = today + timedelta(days=1)
        for _ in range(bucket_count):
            start = end - timedelta(days=7)
            ranges.append(PeriodRange(_week_label(start, end), start, end))
            end = start
    elif cadence == ReportPeriod.MONTHLY:
        first = today.replace(day=1)
        for offset in range(bucket_count):
            start = add_months(first, -offset)
            ranges.append(PeriodRange(start.strftime('%b %Y'), start, add_months(start, 1)))
    elif cadence == ReportPeriod.YEARLY:
        for offset in range(bucket_count):
            year = today.year - offset
            ranges.append(PeriodRange(str(year), date(year, 1, 1), date(year + 1, 1, 1)))
    else:
        raise ValidationError(f"Unsupported report period: {cadence}")

    ranges.reverse()
    return ranges


class ReportingEngine:
    """
    Periodic financial summaries across loans and chit funds
    """

    def __init__(
        self,
        loan_manager: LoanManager,
        chit_fund_manager: ChitFundManager,
        currency: Currency = Currency.INR
    ):
        self.loan_manager = loan_manager
        self.chit_fund_manager = chit_fund_manager
        self.currency = currency
        self.logger = get_logger("microfinance.reporting")

    def _load_snapshot(self):
        """Read every ledger once; later writes are simply not seen by this report"""
        loans = self.loan_manager.get_all_loans()
        repayments = defaultdict(list)
        for repayment in self.loan_manager.get_repayments():
            repayments[repayment.loan_id].append(repayment)

        chit_funds = self.chit_fund_manager.get_all_chit_funds()
        contributions = defaultdict(list)
        for contribution in self.chit_fund_manager.get_contributions():
            contributions[contribution.chit_fund_id].append(contribution)
        auctions = defaultdict(list)
        for auction in self.chit_fund_manager.get_auctions():
            auctions[auction.chit_fund_id].append(auction)

        return loans, repayments, chit_funds, contributions, auctions

    def _summarize_range(self, period: PeriodRange, snapshot) -> PeriodSummary:
        loans, repayments, chit_funds, contributions, auctions = snapshot
        currency = self.currency
        summary = PeriodSummary(period=period, currency=currency)

        for loan in loans:
            history = repayments.get(loan.id, [])
            in_bucket = [r for r in history if period.contains(r.paid_date)]
            summary.loan_repayments = summary.loan_repayments + sum_money(
                (r.amount for r in in_bucket), currency
            )
            summary.repayment_count += len(in_bucket)

            if period.contains(loan.disbursement_date):
                summary.disbursements = summary.disbursements + loan.principal
                summary.disbursement_count += 1

            summary.loan_profit = summary.loan_profit + loan_profit_between(
                loan, history, period.start, period.end
            )
            summary.loan_outside_amount = summary.loan_outside_amount + loan_balance_as_of(
                loan, history, period.end
            )

        for chit_fund in chit_funds:
            fund_contributions = contributions.get(chit_fund.id, [])
            fund_auctions = auctions.get(chit_fund.id, [])

            bucket_contributions = [c for c in fund_contributions if period.contains(c.paid_date)]
            bucket_auctions = [a for a in fund_auctions if period.contains(a.auction_date)]
            summary.contributions = summary.contributions + sum_money(
                (c.amount for c in bucket_contributions), currency
            )
            summary.auction_payouts = summary.auction_payouts + sum_money(
                (a.amount for a in bucket_auctions), currency
            )
            summary.contribution_count += len(bucket_contributions)
            summary.auction_count += len(bucket_auctions)

            summary.chit_fund_profit = summary.chit_fund_profit + chit_fund_profit_between(
                chit_fund, fund_auctions, period.start, period.end
            )
            summary.chit_fund_outside_amount = summary.chit_fund_outside_amount + chit_fund_outside_amount(
                chit_fund, fund_contributions, fund_auctions, cutoff=period.end
            )

        return summary

    def _live_summary(self, period: PeriodRange, snapshot, as_of: date) -> PeriodSummary:
        """Lifetime totals and current balances, presented as one bucket"""
        loans, repayments, chit_funds, contributions, auctions = snapshot
        currency = self.currency
        summary = PeriodSummary(period=period, currency=currency, is_fallback=True)

        for loan in loans:
            history = repayments.get(loan.id, [])
            summary.loan_repayments = summary.loan_repayments + sum_money(
                (r.amount for r in history), currency
            )
            summary.repayment_count += len(history)
            summary.disbursements = summary.disbursements + loan.principal
            summary.disbursement_count += 1
            summary.loan_profit = summary.loan_profit + loan_profit(loan, history)
            summary.loan_outside_amount = summary.loan_outside_amount + loan.remaining_balance

        for chit_fund in chit_funds:
            fund_contributions = contributions.get(chit_fund.id, [])
            fund_auctions = auctions.get(chit_fund.id, [])
            summary.contributions = summary.contributions + sum_money(
                (c.amount for c in fund_contributions), currency
            )
            summary.auction_payouts = summary.auction_payouts + sum_money(
                (a.amount for a in fund_auctions), currency
            )
            summary.contribution_count += len(fund_contributions)
            summary.auction_count += len(fund_auctions)
            summary.chit_fund_profit = summary.chit_fund_profit + chit_fund_profit_to_date(
                chit_fund, fund_contributions, fund_auctions, as_of
            )
            summary.chit_fund_outside_amount = summary.chit_fund_outside_amount + chit_fund_outside_amount(
                chit_fund, fund_contributions, fund_auctions
            )

        return summary

    def aggregate_periods(
        self,
        cadence: Union[ReportPeriod, str] = ReportPeriod.MONTHLY,
        bucket_count: Optional[int] = None,
        as_of: Optional[DateLike] = None
    ) -> List[PeriodSummary]:
        """
        Trailing period summaries, oldest first

        Args:
            cadence: weekly, monthly or yearly
            bucket_count: Number of buckets, the configured default when omitted
            as_of: Reference date, today when omitted

        Returns:
            bucket_count contiguous summaries; or a single fallback summary of
            live totals over the current period when every bucket is empty
        """
        if isinstance(cadence, str):
            try:
                cadence = ReportPeriod(cadence.lower())
            except ValueError:
                raise ValidationError(f"Unsupported report period: {cadence}")
        if bucket_count is None:
            bucket_count = get_config().default_report_buckets
        today = to_date(as_of) if as_of is not None else date.today()

        ranges = build_period_ranges(cadence, bucket_count, today)
        snapshot = self._load_snapshot()
        summaries = [self._summarize_range(period, snapshot) for period in ranges]

        if all(summary.is_empty() for summary in summaries):
            self.logger.info(
                "All %d %s buckets empty, falling back to live totals", bucket_count, cadence.value
            )
            return [self._live_summary(ranges[-1], snapshot, today)]

        return summaries

    def portfolio_summary(self, as_of: Optional[DateLike] = None) -> Dict[str, Any]:
        """Live portfolio totals"""
        today = to_date(as_of) if as_of is not None else date.today()
        snapshot = self._load_snapshot()
        loans, _, chit_funds, _, _ = snapshot
        live = self._live_summary(PeriodRange("All time", date.min, today + timedelta(days=1)),
                                  snapshot, today)

        active = [loan for loan in loans if loan.status == LoanStatus.ACTIVE]
        overdue = sum_money((loan.overdue_amount for loan in active), self.currency)

        return {
            'as_of': today.isoformat(),
            'currency': self.currency.code,
            'loans': {
                'total': len(loans),
                'active': len(active),
                'completed': sum(1 for loan in loans if loan.status == LoanStatus.COMPLETED),
                'defaulted': sum(1 for loan in loans if loan.status == LoanStatus.DEFAULTED),
                'disbursed': live.disbursements.whole_units(),
                'repaid': live.loan_repayments.whole_units(),
                'profit': live.loan_profit.whole_units(),
                'outside_amount': live.loan_outside_amount.whole_units(),
                'overdue_amount': overdue.whole_units(),
                'missed_payments': sum(loan.missed_payments for loan in active)
            },
            'chit_funds': {
                'total': len(chit_funds),
                'contributions': live.contributions.whole_units(),
                'auction_payouts': live.auction_payouts.whole_units(),
                'profit': live.chit_fund_profit.whole_units(),
                'outside_amount': live.chit_fund_outside_amount.whole_units()
            },
            'cash_inflow': live.cash_inflow.whole_units(),
            'cash_outflow': live.cash_outflow.whole_units(),
            'profit': live.profit.whole_units(),
            'outside_amount': live.outside_amount.whole_units()
        }
