"""
FastAPI REST API Module

Thin HTTP layer over the schedule, ledger, profit and reporting components.
Runs on port 8090 by default.
"""

from datetime import datetime, timezone, date
from typing import Callable, Dict, Optional, Any
from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import uvicorn

from .audit import AuditTrail
from .chit_funds import ChitFundManager, ChitFund
from .config import MicrofinanceConfig, get_config
from .currency import Money, Currency
from .errors import LedgerError, ValidationError, NotFoundError, ConflictError, ConsistencyError
from .ledger import RepaymentLedger
from .loans import LoanManager, Loan, Repayment
from .logging_config import setup_logging
from .profit import loan_profit, chit_fund_profit, chit_fund_profit_to_date, chit_fund_outside_amount
from .reporting import ReportingEngine
from .schedule import ScheduleEntry, ScheduleStatus
from .storage import InMemoryStorage, SQLiteStorage


# Pydantic models for API requests
class CreateLoanRequest(BaseModel):
    borrower_id: str
    principal: str = Field(..., description="Decimal amount as string")
    interest_amount: str = Field(..., description="Flat interest per period")
    duration: int = Field(..., ge=1)
    disbursement_date: str = Field(..., description="ISO date")
    cadence: str = "Monthly"
    document_charge: Optional[str] = None
    purpose: Optional[str] = None
    created_by: Optional[str] = None


class RecordRepaymentRequest(BaseModel):
    period: Optional[int] = Field(None, description="1-indexed period; alternative to schedule_entry_id")
    schedule_entry_id: Optional[str] = None
    amount: str = Field(..., description="Decimal amount as string")
    paid_date: str = Field(..., description="ISO date")
    classification: str = Field("Regular", description="Regular, InterestOnly or Partial")
    collected_by: str
    note: Optional[str] = None


class CreateChitFundRequest(BaseModel):
    name: str
    total_amount: str
    monthly_contribution: str
    duration: int = Field(..., ge=1)
    members_count: int = Field(..., ge=1)
    start_date: str
    fund_type: str = "Auction"
    first_month_contribution: Optional[str] = None
    created_by: Optional[str] = None


class ContributionRequest(BaseModel):
    member_id: str
    month: int
    amount: str
    paid_date: str
    recorded_by: Optional[str] = None


class AuctionRequest(BaseModel):
    month: int
    winner_id: str
    amount: str
    auction_date: str
    recorded_by: Optional[str] = None


# Microfinance System Context
class MicrofinanceSystem:
    """Ledger engine with all components initialized"""

    def __init__(self, use_sqlite: bool = True, settings: Optional[MicrofinanceConfig] = None,
                 clock: Callable[[], date] = date.today):
        settings = settings or get_config()
        self.settings = settings
        self.clock = clock
        self.currency = Currency[settings.currency.upper()]

        # Initialize storage
        if use_sqlite:
            self.storage = SQLiteStorage.from_url(settings.database_url)
        else:
            self.storage = InMemoryStorage()

        # Initialize core components
        self.audit_trail = AuditTrail(self.storage, enabled=settings.enable_audit_logging)
        self.loan_manager = LoanManager(self.storage, self.audit_trail, self.currency)
        self.chit_fund_manager = ChitFundManager(self.storage, self.audit_trail, self.currency)
        self.ledger = RepaymentLedger(
            self.storage, self.loan_manager, self.audit_trail, clock=clock,
            grace_days=settings.grace_period_days, due_soon_days=settings.due_soon_days
        )
        self.reporting = ReportingEngine(self.loan_manager, self.chit_fund_manager, self.currency)

    def close(self) -> None:
        self.storage.close()


def _http_error(error: LedgerError) -> HTTPException:
    """Map ledger errors onto HTTP status codes"""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, ConflictError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ConsistencyError):
        return HTTPException(status_code=500, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


def _money(value: Money) -> Dict[str, str]:
    return {"amount": str(value.amount), "currency": value.currency.code}


def _loan_response(loan: Loan) -> Dict[str, Any]:
    return {
        "id": loan.id,
        "borrower_id": loan.borrower_id,
        "principal": _money(loan.principal),
        "interest_amount": _money(loan.interest_amount),
        "document_charge": _money(loan.document_charge),
        "installment_amount": _money(loan.installment_amount),
        "duration": loan.duration,
        "cadence": loan.cadence.value,
        "disbursement_date": loan.disbursement_date.isoformat(),
        "status": loan.status.value,
        "current_period": loan.current_period,
        "remaining_balance": _money(loan.remaining_balance),
        "overdue_amount": _money(loan.overdue_amount),
        "missed_payments": loan.missed_payments,
        "next_payment_date": loan.next_payment_date.isoformat() if loan.next_payment_date else None,
        "purpose": loan.purpose,
        "version": loan.version
    }


def _entry_response(entry: ScheduleEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "period": entry.period,
        "due_date": entry.due_date.isoformat(),
        "amount_due": _money(entry.amount_due),
        "status": entry.status.value,
        "repayment_id": entry.repayment_id,
        "paid_amount": _money(entry.paid_amount) if entry.paid_amount is not None else None,
        "actual_payment_date": (
            entry.actual_payment_date.isoformat() if entry.actual_payment_date else None
        )
    }


def _repayment_response(repayment: Repayment) -> Dict[str, Any]:
    return {
        "id": repayment.id,
        "loan_id": repayment.loan_id,
        "schedule_entry_id": repayment.schedule_entry_id,
        "period": repayment.period,
        "amount": _money(repayment.amount),
        "paid_date": repayment.paid_date.isoformat(),
        "classification": repayment.classification.value,
        "collected_by": repayment.collected_by,
        "note": repayment.note
    }


def _chit_fund_response(chit_fund: ChitFund) -> Dict[str, Any]:
    return {
        "id": chit_fund.id,
        "name": chit_fund.name,
        "total_amount": _money(chit_fund.total_amount),
        "monthly_contribution": _money(chit_fund.monthly_contribution),
        "duration": chit_fund.duration,
        "members_count": chit_fund.members_count,
        "fund_type": chit_fund.fund_type.value,
        "start_date": chit_fund.start_date.isoformat(),
        "current_month": chit_fund.current_month,
        "status": chit_fund.status.value
    }


def create_app(system: Optional[MicrofinanceSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    system = system or MicrofinanceSystem(use_sqlite=True)

    app = FastAPI(
        title="Microfinance Ledger API",
        description="Loan schedules, repayment ledger and chit fund reporting",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.system = system

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    # Loan endpoints

    @app.post("/loans", status_code=status.HTTP_201_CREATED)
    def create_loan(request: CreateLoanRequest):
        """Create a loan and its payment schedule"""
        try:
            loan = system.loan_manager.create_loan(
                borrower_id=request.borrower_id,
                principal=request.principal,
                interest_amount=request.interest_amount,
                duration=request.duration,
                disbursement_date=request.disbursement_date,
                cadence=request.cadence,
                document_charge=request.document_charge,
                purpose=request.purpose,
                created_by=request.created_by,
                as_of=system.clock()
            )
        except ValueError as e:
            if isinstance(e, LedgerError):
                raise _http_error(e)
            raise HTTPException(status_code=400, detail=str(e))
        return _loan_response(loan)

    @app.get("/loans/{loan_id}")
    def get_loan(loan_id: str):
        """Get loan by ID"""
        loan = system.loan_manager.get_loan(loan_id)
        if not loan:
            raise HTTPException(status_code=404, detail="Loan not found")
        return _loan_response(loan)

    @app.get("/borrowers/{borrower_id}/loans")
    def list_borrower_loans(borrower_id: str):
        """Loans of one borrower"""
        loans = system.loan_manager.get_borrower_loans(borrower_id)
        return {"borrower_id": borrower_id, "loans": [_loan_response(loan) for loan in loans]}

    @app.get("/loans/{loan_id}/schedule")
    def get_schedule(loan_id: str, as_of: Optional[str] = None, all_entries: bool = False,
                     entry_status: Optional[str] = None):
        """Classified payment schedule; by default only the entries a collector needs to see"""
        try:
            status_filter = ScheduleStatus(entry_status) if entry_status else None
            entries = system.ledger.get_schedule(
                loan_id, as_of=as_of, visible_only=not all_entries, status=status_filter
            )
        except LedgerError as e:
            raise _http_error(e)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"loan_id": loan_id, "entries": [_entry_response(e) for e in entries]}

    @app.post("/loans/{loan_id}/repayments", status_code=status.HTTP_201_CREATED)
    def record_repayment(loan_id: str, request: RecordRepaymentRequest):
        """Record a repayment against a schedule entry"""
        target = request.schedule_entry_id if request.schedule_entry_id else request.period
        if target is None:
            raise HTTPException(status_code=400, detail="Either period or schedule_entry_id is required")
        try:
            repayment = system.ledger.record_repayment(
                loan_id=loan_id,
                target=target,
                amount=request.amount,
                paid_date=request.paid_date,
                classification=request.classification,
                collected_by=request.collected_by,
                note=request.note
            )
        except LedgerError as e:
            raise _http_error(e)
        loan = system.loan_manager.require_loan(loan_id)
        return {"repayment": _repayment_response(repayment), "loan": _loan_response(loan)}

    @app.get("/loans/{loan_id}/repayments")
    def list_repayments(loan_id: str):
        """Repayments of a loan, oldest first"""
        if not system.loan_manager.get_loan(loan_id):
            raise HTTPException(status_code=404, detail="Loan not found")
        repayments = system.loan_manager.get_repayments(loan_id)
        return {"loan_id": loan_id, "repayments": [_repayment_response(r) for r in repayments]}

    @app.delete("/repayments/{repayment_id}")
    def delete_repayment(repayment_id: str, user_id: Optional[str] = None):
        """Delete a repayment and reverse its effect"""
        try:
            system.ledger.delete_repayment(repayment_id, user_id=user_id)
        except LedgerError as e:
            raise _http_error(e)
        return {"message": "Repayment deleted successfully"}

    @app.post("/loans/{loan_id}/recompute")
    def recompute_loan(loan_id: str, user_id: Optional[str] = None):
        """Reconcile the cached current period and arrears of a loan"""
        try:
            loan = system.ledger.recompute_loan(loan_id, user_id=user_id)
        except LedgerError as e:
            raise _http_error(e)
        return _loan_response(loan)

    @app.get("/loans/{loan_id}/profit")
    def get_loan_profit(loan_id: str):
        """Profit and outside amount of a loan"""
        loan = system.loan_manager.get_loan(loan_id)
        if not loan:
            raise HTTPException(status_code=404, detail="Loan not found")
        repayments = system.loan_manager.get_repayments(loan_id)
        return {
            "loan_id": loan_id,
            "profit": loan_profit(loan, repayments).whole_units(),
            "outside_amount": loan.remaining_balance.whole_units(),
            "repayment_count": len(repayments),
            "currency": loan.currency.code
        }

    # Chit fund endpoints

    @app.post("/chit-funds", status_code=status.HTTP_201_CREATED)
    def create_chit_fund(request: CreateChitFundRequest):
        """Create a chit fund"""
        try:
            chit_fund = system.chit_fund_manager.create_chit_fund(
                name=request.name,
                total_amount=request.total_amount,
                monthly_contribution=request.monthly_contribution,
                duration=request.duration,
                members_count=request.members_count,
                start_date=request.start_date,
                fund_type=request.fund_type,
                first_month_contribution=request.first_month_contribution,
                created_by=request.created_by,
                as_of=system.clock()
            )
        except ValueError as e:
            if isinstance(e, LedgerError):
                raise _http_error(e)
            raise HTTPException(status_code=400, detail=str(e))
        return _chit_fund_response(chit_fund)

    @app.post("/chit-funds/{chit_fund_id}/contributions", status_code=status.HTTP_201_CREATED)
    def record_contribution(chit_fund_id: str, request: ContributionRequest):
        """Record a member contribution"""
        try:
            contribution = system.chit_fund_manager.record_contribution(
                chit_fund_id, request.member_id, request.month, request.amount,
                request.paid_date, recorded_by=request.recorded_by
            )
        except LedgerError as e:
            raise _http_error(e)
        return {"contribution_id": contribution.id, "amount": _money(contribution.amount)}

    @app.post("/chit-funds/{chit_fund_id}/auctions", status_code=status.HTTP_201_CREATED)
    def record_auction(chit_fund_id: str, request: AuctionRequest):
        """Record an auction outcome"""
        try:
            auction = system.chit_fund_manager.record_auction(
                chit_fund_id, request.month, request.winner_id, request.amount,
                request.auction_date, recorded_by=request.recorded_by
            )
        except LedgerError as e:
            raise _http_error(e)
        return {"auction_id": auction.id, "amount": _money(auction.amount)}

    @app.get("/chit-funds/{chit_fund_id}/profit")
    def get_chit_fund_profit(chit_fund_id: str):
        """Profit and outside amount of a chit fund"""
        chit_fund = system.chit_fund_manager.get_chit_fund(chit_fund_id)
        if not chit_fund:
            raise HTTPException(status_code=404, detail="Chit fund not found")
        contributions = system.chit_fund_manager.get_contributions(chit_fund_id)
        auctions = system.chit_fund_manager.get_auctions(chit_fund_id)
        return {
            "chit_fund_id": chit_fund_id,
            "profit": chit_fund_profit(chit_fund, contributions, auctions).whole_units(),
            "profit_to_date": chit_fund_profit_to_date(
                chit_fund, contributions, auctions, system.clock()
            ).whole_units(),
            "outside_amount": chit_fund_outside_amount(chit_fund, contributions, auctions).whole_units(),
            "currency": chit_fund.currency.code
        }

    # Reporting endpoints

    @app.get("/reports/financial-data")
    def financial_data(duration: str = "monthly", limit: Optional[int] = None,
                       as_of: Optional[str] = None):
        """Trailing weekly, monthly or yearly summaries, oldest first"""
        try:
            summaries = system.reporting.aggregate_periods(
                duration, limit, as_of if as_of is not None else system.clock()
            )
        except LedgerError as e:
            raise _http_error(e)
        return {
            "duration": duration,
            "is_fallback": any(s.is_fallback for s in summaries),
            "periods": [s.to_dict() for s in summaries]
        }

    @app.get("/reports/portfolio")
    def portfolio(as_of: Optional[str] = None):
        """Live portfolio totals"""
        try:
            return system.reporting.portfolio_summary(as_of if as_of is not None else system.clock())
        except LedgerError as e:
            raise _http_error(e)

    @app.get("/audit/verify")
    def verify_audit(record: bool = False, user_id: Optional[str] = None):
        """Verify the audit hash chain, optionally logging the check itself"""
        return system.audit_trail.verify_integrity(record_check=record, user_id=user_id)

    return app


# Run server function
def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    settings = get_config()
    setup_logging(settings.log_level, "microfinance", settings.log_format, settings.log_file)
    uvicorn.run(
        "microfinance_core.api:create_app",
        factory=True,
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=debug,
        log_level="info"
    )
