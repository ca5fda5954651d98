"""
Profit & Outside-Amount Module

Pure functions deriving loan and chit fund profit and the "outside amount"
(capital currently out of the lender's hands) from recorded history. Results
are recomputed on every call and never stored. Missing optional inputs count
as zero.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, List, Optional

from .chit_funds import ChitFund, ChitFundType, Contribution, Auction
from .currency import Money, max_money, sum_money
from .loans import Loan, Repayment
from .periods import Cadence, DateLike, to_date, chit_fund_current_month
from .schedule import RepaymentClassification


@dataclass
class ChitFundHistory:
    """Contributions and auctions of one chit fund"""
    contributions: List[Contribution] = field(default_factory=list)
    auctions: List[Auction] = field(default_factory=list)


def _principal_repayments(repayments: Iterable[Repayment]) -> List[Repayment]:
    return [r for r in repayments if r.classification != RepaymentClassification.INTEREST_ONLY]


def _interest_earning(repayments: Iterable[Repayment]) -> List[Repayment]:
    """First repayment of each schedule entry; top-ups of a partial payment earn no more interest"""
    first = {}
    for r in sorted(repayments, key=lambda r: (r.paid_date, r.created_at)):
        first.setdefault(r.schedule_entry_id or r.id, r)
    return list(first.values())


def _in_range(value: date, start: date, end: date) -> bool:
    return start <= value < end


def loan_profit(loan: Loan, repayments: Optional[Iterable[Repayment]] = None) -> Money:
    """
    Profit realised on a loan

    Monthly loans earn the flat interest once per repaid schedule entry,
    whatever the classification, plus the document charge. Weekly loans only
    turn a profit once collections exceed the principal.
    """
    repayments = list(repayments or [])
    currency = loan.currency

    if loan.cadence == Cadence.WEEKLY:
        collected = sum_money((r.amount for r in _principal_repayments(repayments)), currency)
        return max_money(collected - loan.principal, Money.zero(currency))

    document_charge = loan.document_charge or Money.zero(currency)
    return loan.interest_amount * len(_interest_earning(repayments)) + document_charge


def loan_profit_between(loan: Loan, repayments: Optional[Iterable[Repayment]],
                        start: DateLike, end: DateLike) -> Money:
    """
    Profit a loan realised within [start, end)

    For weekly loans this is the growth of the excess over principal across
    the window, so windows add up to the lifetime profit.
    """
    repayments = list(repayments or [])
    start, end = to_date(start), to_date(end)

    if loan.cadence == Cadence.WEEKLY:
        before_end = [r for r in repayments if r.paid_date < end]
        before_start = [r for r in repayments if r.paid_date < start]
        return loan_profit(loan, before_end) - loan_profit(loan, before_start)

    in_window = [r for r in _interest_earning(repayments) if _in_range(r.paid_date, start, end)]
    profit = loan.interest_amount * len(in_window)
    if _in_range(loan.disbursement_date, start, end):
        profit = profit + (loan.document_charge or Money.zero(loan.currency))
    return profit


def loan_balance_as_of(loan: Loan, repayments: Optional[Iterable[Repayment]],
                       cutoff: DateLike) -> Money:
    """
    Remaining balance of a loan just before a cutoff date

    Zero for loans not yet disbursed by the cutoff. Interest-only repayments
    never reduce the balance.
    """
    cutoff = to_date(cutoff)
    currency = loan.currency
    if loan.disbursement_date >= cutoff:
        return Money.zero(currency)
    repaid = sum_money(
        (r.amount for r in _principal_repayments(repayments or []) if r.paid_date < cutoff),
        currency
    )
    return max_money(loan.principal - repaid, Money.zero(currency))


def chit_fund_profit(chit_fund: ChitFund,
                     contributions: Optional[Iterable[Contribution]] = None,
                     auctions: Optional[Iterable[Auction]] = None) -> Money:
    """
    Profit of a chit fund

    Each auction earns the difference between the month's pot and the payout
    when the winner underbid. Without auctions, or when they earned nothing,
    any surplus of contributions over payouts is the profit instead.
    """
    contributions = list(contributions or [])
    auctions = list(auctions or [])
    currency = chit_fund.currency
    zero = Money.zero(currency)

    inflow = sum_money((c.amount for c in contributions), currency)
    outflow = sum_money((a.amount for a in auctions), currency)

    auction_profit = zero
    for auction in auctions:
        auction_profit = auction_profit + max_money(chit_fund.monthly_total - auction.amount, zero)

    if (not auctions or auction_profit.is_zero()) and inflow > outflow:
        return auction_profit + (inflow - outflow)
    return auction_profit


def fixed_chit_fund_profit(chit_fund: ChitFund, current_month: int,
                           auctions: Optional[Iterable[Auction]] = None) -> Money:
    """
    Profit of a Fixed chit fund up to a month

    Each auction's profit (the month's pot less the payout) is spread evenly
    over the fund's duration and accrues once per elapsed month.
    """
    currency = chit_fund.currency
    zero = Money.zero(currency)
    duration = max(chit_fund.duration, 1)

    total = zero
    for auction in auctions or []:
        per_month = (chit_fund.month_total(auction.month) - auction.amount) / duration
        if per_month.is_positive():
            total = total + per_month * current_month
    return max_money(total, zero)


def chit_fund_profit_to_date(chit_fund: ChitFund,
                             contributions: Optional[Iterable[Contribution]] = None,
                             auctions: Optional[Iterable[Auction]] = None,
                             as_of: Optional[DateLike] = None) -> Money:
    """
    Chit fund profit counting only months up to the current one

    The current month is derived from as_of when given, otherwise the cached
    value on the fund is used.
    """
    if as_of is not None:
        current_month = chit_fund_current_month(chit_fund.start_date, as_of, chit_fund.duration)
    else:
        current_month = max(1, chit_fund.current_month)

    to_date_contributions = [c for c in contributions or [] if c.month <= current_month]
    to_date_auctions = [a for a in auctions or [] if a.month <= current_month]

    if (chit_fund.fund_type == ChitFundType.FIXED
            and chit_fund.first_month_contribution is not None
            and chit_fund.first_month_contribution.is_positive()):
        return fixed_chit_fund_profit(chit_fund, current_month, to_date_auctions)

    return chit_fund_profit(chit_fund, to_date_contributions, to_date_auctions)


def chit_fund_profit_between(chit_fund: ChitFund,
                             auctions: Optional[Iterable[Auction]],
                             start: DateLike, end: DateLike) -> Money:
    """
    Auction profit earned within [start, end)

    Each auction's underbid is booked in the window of its auction date, so
    consecutive windows add up to the fund's auction profit. Contributions
    collected ahead of their auction earn nothing on their own.
    """
    start, end = to_date(start), to_date(end)
    currency = chit_fund.currency
    zero = Money.zero(currency)

    total = zero
    for auction in auctions or []:
        if _in_range(auction.auction_date, start, end):
            total = total + max_money(chit_fund.monthly_total - auction.amount, zero)
    return total


def loan_outside_amount(loan: Loan) -> Money:
    """Balance still owed on a loan"""
    return loan.remaining_balance


def chit_fund_outside_amount(chit_fund: ChitFund,
                             contributions: Optional[Iterable[Contribution]] = None,
                             auctions: Optional[Iterable[Auction]] = None,
                             cutoff: Optional[DateLike] = None) -> Money:
    """
    Payouts not yet recovered from contributions

    With a cutoff only history dated before it is counted.
    """
    currency = chit_fund.currency
    contributions = list(contributions or [])
    auctions = list(auctions or [])
    if cutoff is not None:
        cutoff = to_date(cutoff)
        contributions = [c for c in contributions if c.paid_date < cutoff]
        auctions = [a for a in auctions if a.auction_date < cutoff]

    inflow = sum_money((c.amount for c in contributions), currency)
    outflow = sum_money((a.amount for a in auctions), currency)
    return max_money(outflow - inflow, Money.zero(currency))


def outside_amount(subject, history: Optional[ChitFundHistory] = None) -> Money:
    """Outside amount of a loan or of a chit fund with its history"""
    if isinstance(subject, Loan):
        return loan_outside_amount(subject)
    if isinstance(subject, ChitFund):
        history = history or ChitFundHistory()
        return chit_fund_outside_amount(subject, history.contributions, history.auctions)
    raise TypeError(f"Cannot compute outside amount of {type(subject).__name__}")
