"""Match lifecycle: confirm, manual, dismiss, unmatch, auto and batch auto-match.

Every write operation runs as one database transaction. The transaction row
is locked first, a stored occurrence is consumed with a compare-and-delete,
and the unique constraints on ``matched_transactions`` reject whatever a
concurrent writer slipped in; any failure rolls the whole unit back.
"""

from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from forecast_match.database import get_session_maker, session_scope
from forecast_match.logger import get_logger, log_exception
from forecast_match.models import (
    DismissedMatch,
    MatchedTransaction,
    MatchMethod,
    PlannedOccurrence,
    PlannedTemplate,
    Transaction,
)
from forecast_match.schemas.matching import (
    AutoMatchResult,
    BatchAutoMatchItem,
    BatchAutoMatchRequest,
    BatchAutoMatchResult,
    MatchHistoryResponse,
    PendingMatch,
)
from forecast_match.services import history, pending
from forecast_match.services.errors import (
    raise_already_matched,
    raise_invalid_argument,
    raise_not_found,
)
from forecast_match.services.occurrence_ref import (
    OccurrenceRef,
    StoredOccurrenceRef,
    coerce_occurrence_ref,
)
from forecast_match.services.occurrences import DatabaseOccurrenceSource, OccurrenceSource
from forecast_match.services.scoring import (
    MatchingConfig,
    find_match_candidates,
    is_auto_match,
    load_matching_config,
)

logger = get_logger(__name__)

MANUAL_CONFIDENCE = 100
TEMPLATE_DATE_CONSTRAINT = "uq_matched_transactions_template_date"


@dataclass(frozen=True)
class _PlannedSnapshot:
    template_id: UUID | None
    expected_date: date
    amount: Decimal


async def _lock_transaction(db: AsyncSession, transaction_id: UUID, user_id: UUID) -> Transaction:
    result = await db.execute(
        select(Transaction)
        .where(Transaction.id == transaction_id)
        .where(Transaction.user_id == user_id)
        .with_for_update()
    )
    txn = result.scalar_one_or_none()
    if txn is None:
        raise_not_found("Transaction")
    return txn


async def _existing_match(db: AsyncSession, transaction_id: UUID) -> MatchedTransaction | None:
    result = await db.execute(
        select(MatchedTransaction).where(MatchedTransaction.transaction_id == transaction_id)
    )
    return result.scalar_one_or_none()


async def _template_date_consumed(db: AsyncSession, template_id: UUID, expected_date: date) -> bool:
    result = await db.execute(
        select(MatchedTransaction.id)
        .where(MatchedTransaction.planned_template_id == template_id)
        .where(MatchedTransaction.planned_expected_date == expected_date)
    )
    return result.first() is not None


def _violates_template_date(exc: IntegrityError) -> bool:
    """True when the unique template date key rejected the insert.

    PostgreSQL names the constraint; SQLite lists the columns.
    """
    message = str(exc.orig)
    return TEMPLATE_DATE_CONSTRAINT in message or "planned_template_id" in message


async def _consume_occurrence(db: AsyncSession, ref: OccurrenceRef, user_id: UUID) -> _PlannedSnapshot:
    """Resolve the planned side and consume it if it is stored."""
    if isinstance(ref, StoredOccurrenceRef):
        result = await db.execute(
            select(PlannedOccurrence)
            .where(PlannedOccurrence.id == ref.occurrence_id)
            .where(PlannedOccurrence.user_id == user_id)
            .with_for_update()
        )
        planned = result.scalar_one_or_none()
        if planned is None:
            raise_not_found("Planned occurrence")
        # An override for a template date that a match already consumed
        if planned.template_id and await _template_date_consumed(db, planned.template_id, planned.expected_date):
            raise_not_found("Planned occurrence")

        snapshot = _PlannedSnapshot(planned.template_id, planned.expected_date, planned.amount)
        # The actual transaction becomes the source of truth
        deleted = await db.execute(
            delete(PlannedOccurrence)
            .where(PlannedOccurrence.id == ref.occurrence_id)
            .where(PlannedOccurrence.user_id == user_id)
        )
        if deleted.rowcount != 1:
            raise_not_found("Planned occurrence")
        return snapshot

    result = await db.execute(
        select(PlannedTemplate)
        .where(PlannedTemplate.id == ref.template_id)
        .where(PlannedTemplate.user_id == user_id)
    )
    template = result.scalar_one_or_none()
    if template is None:
        raise_not_found("Planned occurrence template")

    if await _template_date_consumed(db, ref.template_id, ref.expected_date):
        raise_not_found("Planned occurrence")
    return _PlannedSnapshot(template.id, ref.expected_date, template.amount)


async def _create_match(
    db: AsyncSession,
    txn: Transaction,
    ref: OccurrenceRef,
    *,
    confidence: int,
    method: MatchMethod,
    user_id: UUID,
) -> MatchedTransaction:
    if await _existing_match(db, txn.id) is not None:
        raise_already_matched()

    snapshot = await _consume_occurrence(db, ref, user_id)
    match = MatchedTransaction(
        transaction_id=txn.id,
        planned_template_id=snapshot.template_id,
        planned_expected_date=snapshot.expected_date,
        planned_amount=snapshot.amount,
        match_confidence=Decimal(confidence),
        match_method=method,
    )
    db.add(match)
    try:
        await db.flush()
    except IntegrityError as exc:
        if _violates_template_date(exc):
            raise_not_found("Planned occurrence", cause=exc)
        raise_already_matched(cause=exc)
    return match


class MatchingService:
    """Stateful matching operations, each isolated per user."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        source: OccurrenceSource | None = None,
        config: MatchingConfig | None = None,
    ) -> None:
        self.session_maker = session_maker or get_session_maker()
        self.source = source or DatabaseOccurrenceSource()
        self._config = config

    @property
    def config(self) -> MatchingConfig:
        return self._config or load_matching_config()

    async def confirm_match(
        self,
        transaction_id: UUID,
        occurrence: OccurrenceRef | str,
        confidence: int,
        method: MatchMethod,
        user_id: UUID,
    ) -> UUID:
        """Link a transaction to a planned occurrence and consume the occurrence.

        Raises:
            NotFoundError: Transaction, template or stored occurrence missing.
            AlreadyMatchedError: The transaction already has a match.
            InvalidArgumentError: The occurrence id cannot be parsed.
        """
        ref = coerce_occurrence_ref(occurrence)
        async with session_scope(self.session_maker) as db:
            txn = await _lock_transaction(db, transaction_id, user_id)
            match = await _create_match(
                db, txn, ref, confidence=confidence, method=method, user_id=user_id
            )
            match_id = match.id

        logger.info(
            "Match confirmed",
            user_id=str(user_id),
            transaction_id=str(transaction_id),
            occurrence_id=ref.to_token(),
            match_id=str(match_id),
            confidence=confidence,
            method=method.value,
        )
        return match_id

    async def confirm_reviewed_match(
        self,
        transaction_id: UUID,
        occurrence: OccurrenceRef | str,
        user_id: UUID,
        confidence: int | None = None,
    ) -> UUID:
        """Confirm a suggestion accepted from the review queue."""
        return await self.confirm_match(
            transaction_id,
            occurrence,
            confidence if confidence is not None else self.config.reviewed_confidence,
            MatchMethod.AUTO_REVIEWED,
            user_id,
        )

    async def manual_match(
        self,
        transaction_id: UUID,
        occurrence: OccurrenceRef | str,
        user_id: UUID,
    ) -> UUID:
        """Explicit user override: full confidence, no scoring."""
        return await self.confirm_match(
            transaction_id, occurrence, MANUAL_CONFIDENCE, MatchMethod.MANUAL, user_id
        )

    async def auto_match(self, transaction_id: UUID, user_id: UUID) -> AutoMatchResult:
        """Match a transaction when its best candidate clears the auto-match threshold.

        Nothing is written when no candidate qualifies.
        """
        config = self.config
        async with session_scope(self.session_maker) as db:
            txn = await _lock_transaction(db, transaction_id, user_id)
            existing = await _existing_match(db, txn.id)
            if existing is not None:
                return AutoMatchResult(
                    matched=True,
                    match_id=existing.id,
                    confidence=int(existing.match_confidence),
                )

            window = timedelta(days=config.auto_match_window_days)
            occurrences = await self.source.list_occurrences(
                db,
                user_id,
                start_date=txn.txn_date - window,
                end_date=txn.txn_date + window,
                account_id=txn.account_id,
                include_virtual=True,
            )
            candidates = find_match_candidates(txn, occurrences, config)
            if not candidates or not is_auto_match(candidates[0].confidence, config):
                return AutoMatchResult(matched=False)

            best = candidates[0]
            match = await _create_match(
                db,
                txn,
                best.occurrence.ref,
                confidence=best.confidence,
                method=MatchMethod.AUTO,
                user_id=user_id,
            )
            match_id = match.id

        logger.info(
            "Transaction auto-matched",
            user_id=str(user_id),
            transaction_id=str(transaction_id),
            occurrence_id=best.occurrence.id,
            match_id=str(match_id),
            confidence=best.confidence,
            skip_review=best.occurrence.skip_review,
        )
        return AutoMatchResult(matched=True, match_id=match_id, confidence=best.confidence)

    async def batch_auto_match(self, transaction_ids: list[UUID], user_id: UUID) -> BatchAutoMatchResult:
        """Auto-match each transaction in turn.

        A failure on one transaction is recorded as unmatched and never stops
        the rest of the batch.

        Raises:
            InvalidArgumentError: If the batch is empty or larger than 100.
        """
        try:
            request = BatchAutoMatchRequest(transaction_ids=transaction_ids)
        except ValidationError as exc:
            raise_invalid_argument(f"Invalid batch: {exc.errors()[0]['msg']}", cause=exc)

        results: list[BatchAutoMatchItem] = []
        matched = 0
        unmatched = 0

        for transaction_id in request.transaction_ids:
            try:
                result = await self.auto_match(transaction_id, user_id)
            except Exception as exc:
                log_exception(
                    logger,
                    exc,
                    "Auto-match failed for batch item",
                    level="warning",
                    include_traceback=False,
                    user_id=str(user_id),
                    transaction_id=str(transaction_id),
                )
                result = AutoMatchResult(matched=False)

            if result.matched:
                matched += 1
            else:
                unmatched += 1
            results.append(BatchAutoMatchItem(transaction_id=transaction_id, **result.model_dump()))

        logger.info(
            "Batch auto-match complete",
            user_id=str(user_id),
            requested=len(request.transaction_ids),
            matched=matched,
            unmatched=unmatched,
        )
        return BatchAutoMatchResult(matched=matched, unmatched=unmatched, results=results)

    async def dismiss_match(
        self,
        transaction_id: UUID,
        occurrence: OccurrenceRef | str,
        user_id: UUID,
    ) -> None:
        """Stop suggesting this pairing. Repeated calls only refresh the timestamp."""
        token = coerce_occurrence_ref(occurrence).to_token()
        async with session_scope(self.session_maker) as db:
            await _lock_transaction(db, transaction_id, user_id)

            result = await db.execute(
                select(DismissedMatch)
                .where(DismissedMatch.transaction_id == transaction_id)
                .where(DismissedMatch.planned_occurrence_id == token)
            )
            dismissal = result.scalar_one_or_none()
            if dismissal is None:
                db.add(DismissedMatch(transaction_id=transaction_id, planned_occurrence_id=token))
            else:
                dismissal.dismissed_at = datetime.now(UTC)
            await db.flush()

        logger.info(
            "Match suggestion dismissed",
            user_id=str(user_id),
            transaction_id=str(transaction_id),
            occurrence_id=token,
        )

    async def unmatch(self, match_id: UUID, user_id: UUID) -> None:
        """Delete a match record.

        A consumed stored occurrence is not restored; a virtual occurrence
        simply becomes matchable again.
        """
        async with session_scope(self.session_maker) as db:
            result = await db.execute(
                select(MatchedTransaction)
                .join(Transaction, MatchedTransaction.transaction_id == Transaction.id)
                .where(MatchedTransaction.id == match_id)
                .where(Transaction.user_id == user_id)
                .with_for_update()
            )
            match = result.scalar_one_or_none()
            if match is None:
                raise_not_found("Match record")
            transaction_id = match.transaction_id
            await db.delete(match)
            await db.flush()

        logger.info(
            "Match removed",
            user_id=str(user_id),
            match_id=str(match_id),
            transaction_id=str(transaction_id),
        )

    async def get_pending_matches(
        self, user_id: UUID, limit: int = 50, today: date | None = None
    ) -> list[PendingMatch]:
        async with self.session_maker() as db:
            return await pending.get_pending_matches(
                db, user_id, source=self.source, limit=limit, today=today, config=self.config
            )

    async def get_match_history(
        self,
        user_id: UUID,
        start_date: date | datetime | None = None,
        end_date: date | datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> MatchHistoryResponse:
        async with self.session_maker() as db:
            return await history.get_match_history(
                db, user_id, start_date=start_date, end_date=end_date, limit=limit, offset=offset
            )
