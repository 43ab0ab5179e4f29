"""Review queue generation for medium-confidence matches."""

from collections.abc import Iterable, Sequence
from datetime import UTC, date, datetime, timedelta
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from forecast_match.logger import async_log_timing, get_logger
from forecast_match.models import DismissedMatch, MatchedTransaction, Transaction
from forecast_match.schemas.matching import (
    PendingMatch,
    PendingMatchesQuery,
    PlannedOccurrenceSummary,
    TransactionSummary,
)
from forecast_match.services.errors import raise_invalid_argument
from forecast_match.services.occurrences import OccurrenceSource, PlannedOccurrenceView
from forecast_match.services.scoring import (
    MatchingConfig,
    find_match_candidates,
    in_review_band,
    load_matching_config,
)

logger = get_logger(__name__)

DismissedPairs = set[tuple[UUID, str]]


def assemble_pending_matches(
    transactions: Sequence[Transaction],
    occurrences: Sequence[PlannedOccurrenceView],
    dismissed: DismissedPairs,
    *,
    limit: int,
    config: MatchingConfig,
) -> list[PendingMatch]:
    """Pick at most one review suggestion per transaction, in the given order.

    An occurrence proposed for one transaction is claimed and not offered to
    later transactions in the same pass. The claim set lives only for this
    call; nothing is persisted.
    """
    claimed: set[str] = set()
    suggestions: list[PendingMatch] = []
    suggested_at = datetime.now(UTC)

    for txn in transactions:
        available = [occ for occ in occurrences if occ.id not in claimed]
        candidates = find_match_candidates(txn, available, config)
        reviewable = [
            c
            for c in candidates
            if in_review_band(c.confidence, config) and (txn.id, c.occurrence.id) not in dismissed
        ]

        if reviewable:
            best = reviewable[0]
            claimed.add(best.occurrence.id)
            suggestions.append(
                PendingMatch(
                    id=f"{txn.id}_{best.occurrence.id}",
                    transaction_id=txn.id,
                    planned_occurrence_id=best.occurrence.id,
                    transaction=TransactionSummary.from_transaction(txn),
                    planned_occurrence=PlannedOccurrenceSummary.from_view(best.occurrence),
                    confidence=best.confidence,
                    reasons=best.reasons,
                    suggested_at=suggested_at,
                )
            )

        if len(suggestions) >= limit:
            break

    return suggestions


async def load_unmatched_transactions(
    db: AsyncSession,
    user_id: UUID,
    *,
    since: date,
    limit: int,
) -> list[Transaction]:
    """Most recent first; only transactions without a match record."""
    matched = select(MatchedTransaction.transaction_id)
    result = await db.execute(
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .where(Transaction.txn_date >= since)
        .where(Transaction.id.notin_(matched))
        .order_by(Transaction.txn_date.desc(), Transaction.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def load_dismissed_pairs(db: AsyncSession, transaction_ids: Iterable[UUID]) -> DismissedPairs:
    ids = list(transaction_ids)
    if not ids:
        return set()
    result = await db.execute(
        select(DismissedMatch.transaction_id, DismissedMatch.planned_occurrence_id).where(
            DismissedMatch.transaction_id.in_(ids)
        )
    )
    return {(txn_id, occurrence_id) for txn_id, occurrence_id in result.all()}


async def get_pending_matches(
    db: AsyncSession,
    user_id: UUID,
    *,
    source: OccurrenceSource,
    limit: int = 50,
    today: date | None = None,
    config: MatchingConfig | None = None,
) -> list[PendingMatch]:
    """Build the review queue for a user.

    Raises:
        InvalidArgumentError: If limit is outside 1..100.
    """
    try:
        query = PendingMatchesQuery(limit=limit)
    except ValidationError as exc:
        raise_invalid_argument(f"Invalid pending matches query: {exc.errors()[0]['msg']}", cause=exc)

    config = config or load_matching_config()
    today = today or datetime.now(UTC).date()

    transactions = await load_unmatched_transactions(
        db,
        user_id,
        since=today - timedelta(days=config.pending_lookback_days),
        limit=config.pending_batch_size,
    )
    if not transactions:
        return []

    padding = timedelta(days=config.pending_window_padding_days)
    window_start = min(txn.txn_date for txn in transactions) - padding
    window_end = max(txn.txn_date for txn in transactions) + padding

    async with async_log_timing(
        "assemble_pending_matches", logger=logger, user_id=str(user_id)
    ) as timing:
        occurrences = await source.list_occurrences(
            db,
            user_id,
            start_date=window_start,
            end_date=window_end,
            include_virtual=True,
        )
        dismissed = await load_dismissed_pairs(db, (txn.id for txn in transactions))
        suggestions = assemble_pending_matches(
            transactions,
            occurrences,
            dismissed,
            limit=query.limit,
            config=config,
        )
        timing.update(
            transactions=len(transactions),
            occurrences=len(occurrences),
            dismissed=len(dismissed),
            suggestions=len(suggestions),
        )

    return suggestions
