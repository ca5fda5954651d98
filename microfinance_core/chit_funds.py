"""
Chit Fund Module

Chit funds (rotating savings groups), member contributions and monthly
auction outcomes. The bidding workflow itself happens elsewhere; only its
result is recorded here for the profit and reporting calculators.
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
from .periods import DateLike, to_date, chit_fund_current_month


class ChitFundType(Enum):
    """How the monthly pot is allotted"""
    AUCTION = "Auction"  # Members bid; the lowest payout wins
    FIXED = "Fixed"      # Payout fixed in advance, first month collected differently


class ChitFundStatus(Enum):
    ACTIVE = "Active"
    COMPLETED = "Completed"


@dataclass
class ChitFund(StorageRecord):
    """A chit fund and its terms"""
    name: str
    total_amount: Money
    monthly_contribution: Money
    duration: int                   # Months
    members_count: int
    start_date: date
    fund_type: ChitFundType = ChitFundType.AUCTION
    first_month_contribution: Optional[Money] = None
    current_month: int = 1
    status: ChitFundStatus = ChitFundStatus.ACTIVE

    @property
    def currency(self) -> Currency:
        return self.total_amount.currency

    @property
    def monthly_total(self) -> Money:
        """Pot collected in a regular month"""
        return self.monthly_contribution * self.members_count

    def month_total(self, month: int) -> Money:
        """Pot collected in a given month; Fixed funds collect the first month differently"""
        if month == 1 and self.first_month_contribution is not None:
            return self.first_month_contribution + self.monthly_contribution * (self.members_count - 1)
        return self.monthly_total


@dataclass
class Contribution(StorageRecord):
    """A member's contribution for one month"""
    chit_fund_id: str
    member_id: str
    month: int
    amount: Money
    paid_date: date


@dataclass
class Auction(StorageRecord):
    """Outcome of one month's auction: the payout to the winner"""
    chit_fund_id: str
    month: int
    winner_id: str
    amount: Money
    auction_date: date


class ChitFundManager:
    """
    Manages chit funds, contributions and auction outcomes
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 currency: Currency = Currency.INR):
        self.storage = storage
        self.audit_trail = audit_trail
        self.currency = currency

        self.chit_funds_table = "chit_funds"
        self.contributions_table = "chit_contributions"
        self.auctions_table = "chit_auctions"

    def create_chit_fund(
        self,
        name: str,
        total_amount: Union[Money, Decimal, int, str],
        monthly_contribution: Union[Money, Decimal, int, str],
        duration: int,
        members_count: int,
        start_date: DateLike,
        fund_type: Union[ChitFundType, str] = ChitFundType.AUCTION,
        first_month_contribution: Union[Money, Decimal, int, str, None] = None,
        created_by: Optional[str] = None,
        as_of: Optional[DateLike] = None
    ) -> ChitFund:
        """
        Create a chit fund

        Args:
            name: Display name
            total_amount: Value of the fund
            monthly_contribution: Amount each member pays per month
            duration: Number of months
            members_count: Number of members
            start_date: First month's date
            fund_type: Auction or Fixed
            first_month_contribution: First month contribution of Fixed funds
            created_by: Operator creating the fund
            as_of: Reference date for the initial current month

        Returns:
            Created ChitFund
        """
        if not name:
            raise ValidationError("Chit fund name is required")
        if isinstance(fund_type, str):
            try:
                fund_type = ChitFundType(fund_type)
            except ValueError:
                raise ValidationError(f"Unknown chit fund type: {fund_type}")

        total = to_money(total_amount, self.currency)
        monthly = to_money(monthly_contribution, self.currency)
        first_month = (
            to_money(first_month_contribution, self.currency)
            if first_month_contribution is not None else None
        )

        if not total.is_positive():
            raise ValidationError("Total amount must be positive")
        if not monthly.is_positive():
            raise ValidationError("Monthly contribution must be positive")
        if first_month is not None and first_month.is_negative():
            raise ValidationError("First month contribution cannot be negative")
        if duration < 1:
            raise ValidationError(f"Duration must be at least 1 month, got {duration}")
        if members_count < 1:
            raise ValidationError(f"Members count must be at least 1, got {members_count}")

        start = to_date(start_date)
        today = to_date(as_of) if as_of is not None else date.today()
        now = datetime.now(timezone.utc)

        chit_fund = ChitFund(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            total_amount=total,
            monthly_contribution=monthly,
            duration=duration,
            members_count=members_count,
            start_date=start,
            fund_type=fund_type,
            first_month_contribution=first_month,
            current_month=chit_fund_current_month(start, today, duration)
        )

        with self.storage.atomic():
            self._save_chit_fund(chit_fund)
            self.audit_trail.log_event(
                event_type=AuditEventType.CHIT_FUND_CREATED,
                entity_type="chit_fund",
                entity_id=chit_fund.id,
                metadata={
                    "name": name,
                    "total_amount": total.to_string(),
                    "monthly_contribution": monthly.to_string(),
                    "duration": duration,
                    "members_count": members_count,
                    "fund_type": fund_type.value,
                    "start_date": start.isoformat()
                },
                user_id=created_by
            )

        return chit_fund

    def get_chit_fund(self, chit_fund_id: str) -> Optional[ChitFund]:
        """Get chit fund by ID"""
        data = self.storage.load(self.chit_funds_table, chit_fund_id)
        if data:
            return self._chit_fund_from_dict(data)
        return None

    def require_chit_fund(self, chit_fund_id: str) -> ChitFund:
        chit_fund = self.get_chit_fund(chit_fund_id)
        if not chit_fund:
            raise NotFoundError(f"Chit fund {chit_fund_id} not found")
        return chit_fund

    def get_all_chit_funds(self) -> List[ChitFund]:
        return [self._chit_fund_from_dict(row) for row in self.storage.load_all(self.chit_funds_table)]

    def refresh_current_month(self, chit_fund_id: str, as_of: DateLike) -> ChitFund:
        """Advance the cached current month and complete the fund after its last month"""
        with self.storage.atomic():
            chit_fund = self.require_chit_fund(chit_fund_id)
            today = to_date(as_of)
            chit_fund.current_month = chit_fund_current_month(
                chit_fund.start_date, today, chit_fund.duration
            )
            auctions = self.get_auctions(chit_fund_id)
            if len(auctions) >= chit_fund.duration:
                chit_fund.status = ChitFundStatus.COMPLETED
            chit_fund.updated_at = datetime.now(timezone.utc)
            self._save_chit_fund(chit_fund)
        return chit_fund

    def _check_month(self, chit_fund: ChitFund, month: int) -> None:
        if month < 1 or month > chit_fund.duration:
            raise ValidationError(
                f"Month {month} is outside chit fund {chit_fund.id} (1..{chit_fund.duration})"
            )

    def record_contribution(
        self,
        chit_fund_id: str,
        member_id: str,
        month: int,
        amount: Union[Money, Decimal, int, str],
        paid_date: DateLike,
        recorded_by: Optional[str] = None
    ) -> Contribution:
        """Record a member's contribution for a month"""
        if not member_id:
            raise ValidationError("Member ID is required")

        with self.storage.atomic():
            chit_fund = self.require_chit_fund(chit_fund_id)
            self._check_month(chit_fund, month)
            money = to_money(amount, chit_fund.currency)
            if not money.is_positive():
                raise ValidationError("Contribution amount must be positive")

            now = datetime.now(timezone.utc)
            contribution = Contribution(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                chit_fund_id=chit_fund_id,
                member_id=member_id,
                month=month,
                amount=money,
                paid_date=to_date(paid_date)
            )
            self.storage.save(self.contributions_table, contribution.id,
                              self._contribution_to_dict(contribution))

            self.audit_trail.log_event(
                event_type=AuditEventType.CONTRIBUTION_RECORDED,
                entity_type="chit_fund",
                entity_id=chit_fund_id,
                metadata={
                    "contribution_id": contribution.id,
                    "member_id": member_id,
                    "month": month,
                    "amount": money.to_string()
                },
                user_id=recorded_by
            )

        return contribution

    def record_auction(
        self,
        chit_fund_id: str,
        month: int,
        winner_id: str,
        amount: Union[Money, Decimal, int, str],
        auction_date: DateLike,
        recorded_by: Optional[str] = None
    ) -> Auction:
        """Record the outcome of a month's auction"""
        if not winner_id:
            raise ValidationError("Winner ID is required")

        with self.storage.atomic():
            chit_fund = self.require_chit_fund(chit_fund_id)
            self._check_month(chit_fund, month)
            money = to_money(amount, chit_fund.currency)
            if not money.is_positive():
                raise ValidationError("Auction amount must be positive")
            if self.storage.find(self.auctions_table, {"chit_fund_id": chit_fund_id, "month": month}):
                raise ConflictError(f"Month {month} of chit fund {chit_fund_id} already has an auction")

            now = datetime.now(timezone.utc)
            auction = Auction(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                chit_fund_id=chit_fund_id,
                month=month,
                winner_id=winner_id,
                amount=money,
                auction_date=to_date(auction_date)
            )
            self.storage.save(self.auctions_table, auction.id, self._auction_to_dict(auction))

            self.audit_trail.log_event(
                event_type=AuditEventType.AUCTION_RECORDED,
                entity_type="chit_fund",
                entity_id=chit_fund_id,
                metadata={
                    "auction_id": auction.id,
                    "month": month,
                    "winner_id": winner_id,
                    "amount": money.to_string()
                },
                user_id=recorded_by
            )

        return auction

    def get_contributions(self, chit_fund_id: Optional[str] = None) -> List[Contribution]:
        if chit_fund_id:
            rows = self.storage.find(self.contributions_table, {"chit_fund_id": chit_fund_id})
        else:
            rows = self.storage.load_all(self.contributions_table)
        contributions = [self._contribution_from_dict(row) for row in rows]
        contributions.sort(key=lambda c: (c.month, c.paid_date))
        return contributions

    def get_auctions(self, chit_fund_id: Optional[str] = None) -> List[Auction]:
        if chit_fund_id:
            rows = self.storage.find(self.auctions_table, {"chit_fund_id": chit_fund_id})
        else:
            rows = self.storage.load_all(self.auctions_table)
        auctions = [self._auction_from_dict(row) for row in rows]
        auctions.sort(key=lambda a: (a.month, a.auction_date))
        return auctions

    # Serialization

    def _save_chit_fund(self, chit_fund: ChitFund) -> None:
        self.storage.save(self.chit_funds_table, chit_fund.id, self._chit_fund_to_dict(chit_fund))

    def _chit_fund_to_dict(self, chit_fund: ChitFund) -> Dict:
        return {
            'id': chit_fund.id,
            'created_at': chit_fund.created_at.isoformat(),
            'updated_at': chit_fund.updated_at.isoformat(),
            'name': chit_fund.name,
            'currency': chit_fund.currency.code,
            'total_amount': str(chit_fund.total_amount.amount),
            'monthly_contribution': str(chit_fund.monthly_contribution.amount),
            'first_month_contribution': (
                str(chit_fund.first_month_contribution.amount)
                if chit_fund.first_month_contribution is not None else None
            ),
            'duration': chit_fund.duration,
            'members_count': chit_fund.members_count,
            'start_date': chit_fund.start_date.isoformat(),
            'fund_type': chit_fund.fund_type.value,
            'current_month': chit_fund.current_month,
            'status': chit_fund.status.value
        }

    def _chit_fund_from_dict(self, data: Dict) -> ChitFund:
        currency = Currency[data.get('currency', 'INR')]
        first_month = data.get('first_month_contribution')
        return ChitFund(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            name=data['name'],
            total_amount=Money(Decimal(data['total_amount']), currency),
            monthly_contribution=Money(Decimal(data['monthly_contribution']), currency),
            duration=int(data['duration']),
            members_count=int(data['members_count']),
            start_date=date.fromisoformat(data['start_date']),
            fund_type=ChitFundType(data['fund_type']),
            first_month_contribution=(
                Money(Decimal(first_month), currency) if first_month is not None else None
            ),
            current_month=int(data.get('current_month', 1)),
            status=ChitFundStatus(data.get('status', 'Active'))
        )

    def _contribution_to_dict(self, contribution: Contribution) -> Dict:
        return {
            'id': contribution.id,
            'created_at': contribution.created_at.isoformat(),
            'updated_at': contribution.updated_at.isoformat(),
            'chit_fund_id': contribution.chit_fund_id,
            'member_id': contribution.member_id,
            'month': contribution.month,
            'amount': str(contribution.amount.amount),
            'currency': contribution.amount.currency.code,
            'paid_date': contribution.paid_date.isoformat()
        }

    def _contribution_from_dict(self, data: Dict) -> Contribution:
        return Contribution(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            chit_fund_id=data['chit_fund_id'],
            member_id=data['member_id'],
            month=int(data['month']),
            amount=Money(Decimal(data['amount']), Currency[data.get('currency', 'INR')]),
            paid_date=date.fromisoformat(data['paid_date'])
        )

    def _auction_to_dict(self, auction: Auction) -> Dict:
        return {
            'id': auction.id,
            'created_at': auction.created_at.isoformat(),
            'updated_at': auction.updated_at.isoformat(),
            'chit_fund_id': auction.chit_fund_id,
            'month': auction.month,
            'winner_id': auction.winner_id,
            'amount': str(auction.amount.amount),
            'currency': auction.amount.currency.code,
            'auction_date': auction.auction_date.isoformat()
        }

    def _auction_from_dict(self, data: Dict) -> Auction:
        return Auction(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            chit_fund_id=data['chit_fund_id'],
            month=int(data['month']),
            winner_id=data['winner_id'],
            amount=Money(Decimal(data['amount']), Currency[data.get('currency', 'INR')]),
            auction_date=date.fromisoformat(data['auction_date'])
        )
