"""Pydantic schemas package."""

from forecast_match.schemas.base import BaseResponse, ListResponse
from forecast_match.schemas.matching import (
    AutoMatchResult,
    BatchAutoMatchItem,
    BatchAutoMatchRequest,
    BatchAutoMatchResult,
    MatchHistoryItem,
    MatchHistoryQuery,
    MatchHistoryResponse,
    MatchHistoryTransaction,
    PendingMatch,
    PendingMatchesQuery,
    PlannedOccurrenceSummary,
    TransactionSummary,
)

__all__ = [
    "AutoMatchResult",
    "BaseResponse",
    "BatchAutoMatchItem",
    "BatchAutoMatchRequest",
    "BatchAutoMatchResult",
    "ListResponse",
    "MatchHistoryItem",
    "MatchHistoryQuery",
    "MatchHistoryResponse",
    "MatchHistoryTransaction",
    "PendingMatch",
    "PendingMatchesQuery",
    "PlannedOccurrenceSummary",
    "TransactionSummary",
]
