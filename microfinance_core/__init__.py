"""
Microfinance Ledger Engine

Payment schedules, repayment ledger, profit and outside-amount calculations
and periodic reporting for individual loans and chit funds. All financial
math uses Decimal and every ledger mutation is audited.
"""

__version__ = "1.0.0"
