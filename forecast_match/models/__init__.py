"""SQLAlchemy models package."""

from forecast_match.models.ledger import Account, Category, Transaction, TransactionStatus
from forecast_match.models.matching import DismissedMatch, MatchedTransaction, MatchMethod
from forecast_match.models.planned import (
    DEFAULT_MATCH_WINDOW_DAYS,
    PlannedOccurrence,
    PlannedTemplate,
    PlannedType,
)

__all__ = [
    "DEFAULT_MATCH_WINDOW_DAYS",
    "Account",
    "Category",
    "DismissedMatch",
    "MatchMethod",
    "MatchedTransaction",
    "PlannedOccurrence",
    "PlannedTemplate",
    "PlannedType",
    "Transaction",
    "TransactionStatus",
]
