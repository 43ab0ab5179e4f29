"""Match history reads."""

from datetime import date, datetime
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from forecast_match.models import MatchedTransaction, Transaction
from forecast_match.schemas.matching import (
    MatchHistoryItem,
    MatchHistoryQuery,
    MatchHistoryResponse,
    MatchHistoryTransaction,
)
from forecast_match.services.errors import raise_invalid_argument


def _build_history_item(match: MatchedTransaction) -> MatchHistoryItem:
    txn = match.transaction
    return MatchHistoryItem(
        id=match.id,
        transaction_id=match.transaction_id,
        transaction=MatchHistoryTransaction(
            id=txn.id,
            description=txn.description,
            amount=txn.amount,
            txn_date=txn.txn_date,
            account_id=txn.account_id,
            account_name=txn.account.name if txn.account else "",
        ),
        planned_template_id=match.planned_template_id,
        planned_expected_date=match.planned_expected_date,
        planned_amount=match.planned_amount,
        match_confidence=match.match_confidence,
        matched_at=match.matched_at,
        match_method=match.match_method,
    )


async def get_match_history(
    db: AsyncSession,
    user_id: UUID,
    *,
    start_date: date | datetime | None = None,
    end_date: date | datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> MatchHistoryResponse:
    """Return the user's matches, newest first, with the total for pagination.

    Raises:
        InvalidArgumentError: On out-of-range paging or an inverted date range.
    """
    try:
        query = MatchHistoryQuery(start_date=start_date, end_date=end_date, limit=limit, offset=offset)
    except ValidationError as exc:
        raise_invalid_argument(f"Invalid match history query: {exc.errors()[0]['msg']}", cause=exc)

    base = (
        select(MatchedTransaction)
        .join(Transaction, MatchedTransaction.transaction_id == Transaction.id)
        .where(Transaction.user_id == user_id)
    )
    start = query.start_bound()
    end = query.end_bound()
    if start is not None:
        base = base.where(MatchedTransaction.matched_at >= start)
    if end is not None:
        base = base.where(MatchedTransaction.matched_at <= end)

    total_result = await db.execute(select(func.count()).select_from(base.subquery()))
    total = total_result.scalar_one()

    result = await db.execute(
        base.order_by(MatchedTransaction.matched_at.desc(), MatchedTransaction.id.desc())
        .limit(query.limit)
        .offset(query.offset)
        .options(selectinload(MatchedTransaction.transaction))
    )
    items = [_build_history_item(match) for match in result.scalars().all()]
    return MatchHistoryResponse(items=items, total=total)
