"""
Error Taxonomy

Exceptions raised by the schedule and ledger engine. ValidationError is also a
ValueError so callers that only expect ValueError keep working.
"""


class LedgerError(Exception):
    """Base class for all engine errors"""


class ValidationError(LedgerError, ValueError):
    """Bad amount, bad date or a schedule entry that does not match the loan"""


class NotFoundError(ValidationError):
    """Referenced loan, schedule entry, repayment or chit fund does not exist"""


class ConflictError(LedgerError):
    """Target already satisfied or modified by a concurrent write; re-fetch and retry"""


class ConsistencyError(LedgerError):
    """Repayment and schedule entry disagree about their link; nothing was applied"""
