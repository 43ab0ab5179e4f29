"""Pydantic schemas for matching results and read filters."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from forecast_match.models import MatchMethod, PlannedType, Transaction, TransactionStatus
from forecast_match.schemas.base import BaseResponse, ListResponse
from forecast_match.services.occurrences import PlannedOccurrenceView

MAX_PAGE_SIZE = 100
MAX_BATCH_SIZE = 100


class TransactionSummary(BaseResponse):
    """Summary of an actual transaction."""

    id: UUID
    account_id: UUID
    account_name: str
    category_id: UUID | None
    category_name: str | None
    amount: Decimal
    txn_date: date
    description: str
    status: TransactionStatus

    @classmethod
    def from_transaction(cls, txn: Transaction) -> TransactionSummary:
        return cls(
            id=txn.id,
            account_id=txn.account_id,
            account_name=txn.account.name if txn.account else "",
            category_id=txn.category_id,
            category_name=txn.category.name if txn.category else None,
            amount=txn.amount,
            txn_date=txn.txn_date,
            description=txn.description,
            status=txn.status,
        )


class PlannedOccurrenceSummary(BaseModel):
    """Planned side of a suggestion, stored or virtual."""

    id: str
    template_id: UUID | None
    name: str
    amount: Decimal
    type: PlannedType
    expected_date: date
    account_id: UUID
    account_name: str
    category_id: UUID | None
    category_name: str | None
    is_virtual: bool

    @classmethod
    def from_view(cls, occurrence: PlannedOccurrenceView) -> PlannedOccurrenceSummary:
        return cls(
            id=occurrence.id,
            template_id=occurrence.template_id,
            name=occurrence.name,
            amount=occurrence.amount,
            type=occurrence.type,
            expected_date=occurrence.expected_date,
            account_id=occurrence.account_id,
            account_name=occurrence.account_name,
            category_id=occurrence.category_id,
            category_name=occurrence.category_name,
            is_virtual=occurrence.is_virtual,
        )


class PendingMatch(BaseModel):
    """Suggested pairing awaiting human review. Computed on demand, never stored."""

    id: str  # {transactionId}_{occurrenceId}
    transaction_id: UUID
    planned_occurrence_id: str
    transaction: TransactionSummary
    planned_occurrence: PlannedOccurrenceSummary
    confidence: int = Field(ge=0, le=100)
    reasons: list[str]
    suggested_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class AutoMatchResult(BaseModel):
    matched: bool
    match_id: UUID | None = None
    confidence: int | None = None


class BatchAutoMatchItem(AutoMatchResult):
    transaction_id: UUID


class BatchAutoMatchResult(BaseModel):
    matched: int
    unmatched: int
    results: list[BatchAutoMatchItem]


class MatchHistoryTransaction(BaseModel):
    id: UUID
    description: str
    amount: Decimal
    txn_date: date
    account_id: UUID
    account_name: str


class MatchHistoryItem(BaseModel):
    """Past match with the planned-side snapshot."""

    id: UUID
    transaction_id: UUID
    transaction: MatchHistoryTransaction
    planned_template_id: UUID | None
    planned_expected_date: date
    planned_amount: Decimal
    match_confidence: Decimal
    matched_at: datetime
    match_method: MatchMethod


MatchHistoryResponse = ListResponse[MatchHistoryItem]


# ================================================================
# Read filters and batch requests
# ================================================================


class PendingMatchesQuery(BaseModel):
    limit: int = Field(default=50, ge=1, le=MAX_PAGE_SIZE)


class MatchHistoryQuery(BaseModel):
    """History filter; date bounds apply to matched_at and are inclusive."""

    start_date: date | datetime | None = None
    end_date: date | datetime | None = None
    limit: int = Field(default=50, ge=1, le=MAX_PAGE_SIZE)
    offset: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def check_range(self) -> MatchHistoryQuery:
        start = self.start_bound()
        end = self.end_bound()
        if start and end and start > end:
            raise ValueError("start_date must not be after end_date")
        return self

    def start_bound(self) -> datetime | None:
        return _as_utc(self.start_date, end_of_day=False)

    def end_bound(self) -> datetime | None:
        return _as_utc(self.end_date, end_of_day=True)


class BatchAutoMatchRequest(BaseModel):
    transaction_ids: list[UUID] = Field(min_length=1, max_length=MAX_BATCH_SIZE)


def _as_utc(value: date | datetime | None, *, end_of_day: bool) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    if end_of_day:
        return datetime.combine(value, datetime.max.time(), tzinfo=UTC)
    return datetime.combine(value, datetime.min.time(), tzinfo=UTC)
