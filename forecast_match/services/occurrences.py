"""Planned occurrence source.

Supplies candidate expected entries for a date window: stored one-off and
override rows plus virtual occurrences computed from recurring templates.
Working out *which* dates a template recurs on belongs to the forecasting
subsystem; it is plugged in through ``TemplateScheduler``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from forecast_match.logger import get_logger, log_timing
from forecast_match.models import (
    DEFAULT_MATCH_WINDOW_DAYS,
    MatchedTransaction,
    PlannedOccurrence,
    PlannedTemplate,
    PlannedType,
    Transaction,
)
from forecast_match.services.occurrence_ref import (
    OccurrenceRef,
    StoredOccurrenceRef,
    VirtualOccurrenceRef,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class PlannedOccurrenceView:
    """A planned occurrence as seen by the scorer, stored or virtual."""

    ref: OccurrenceRef
    template_id: UUID | None
    name: str
    amount: Decimal
    type: PlannedType
    expected_date: date
    account_id: UUID
    account_name: str = ""
    category_id: UUID | None = None
    category_name: str | None = None
    match_tolerance: Decimal | None = None
    match_window_days: int = DEFAULT_MATCH_WINDOW_DAYS
    auto_match_enabled: bool = True
    skip_review: bool = False

    @property
    def id(self) -> str:
        return self.ref.to_token()

    @property
    def is_virtual(self) -> bool:
        return self.ref.is_virtual

    @classmethod
    def from_stored(cls, row: PlannedOccurrence) -> PlannedOccurrenceView:
        return cls(
            ref=StoredOccurrenceRef(row.id),
            template_id=row.template_id,
            name=row.name,
            amount=row.amount,
            type=row.type,
            expected_date=row.expected_date,
            account_id=row.account_id,
            account_name=row.account.name if row.account else "",
            category_id=row.category_id,
            category_name=row.category.name if row.category else None,
            match_tolerance=row.match_tolerance,
            match_window_days=row.match_window_days,
            auto_match_enabled=row.auto_match_enabled,
            skip_review=row.skip_review,
        )

    @classmethod
    def from_template(cls, template: PlannedTemplate, expected_date: date) -> PlannedOccurrenceView:
        return cls(
            ref=VirtualOccurrenceRef(template.id, expected_date),
            template_id=template.id,
            name=template.name,
            amount=template.amount,
            type=template.type,
            expected_date=expected_date,
            account_id=template.account_id,
            account_name=template.account.name if template.account else "",
            category_id=template.category_id,
            category_name=template.category.name if template.category else None,
            match_tolerance=template.match_tolerance,
            match_window_days=template.match_window_days,
            auto_match_enabled=template.auto_match_enabled,
            skip_review=template.skip_review,
        )


class TemplateScheduler(Protocol):
    """Yields the dates a template is expected to occur on within a window."""

    def occurrence_dates(
        self, template: PlannedTemplate, start_date: date, end_date: date
    ) -> Iterable[date]: ...


class OccurrenceSource(Protocol):
    async def list_occurrences(
        self,
        db: AsyncSession,
        user_id: UUID,
        *,
        start_date: date,
        end_date: date,
        account_id: UUID | None = None,
        include_virtual: bool = True,
    ) -> list[PlannedOccurrenceView]: ...


async def consumed_template_dates(
    db: AsyncSession,
    user_id: UUID,
    template_ids: Iterable[UUID],
    *,
    start_date: date,
    end_date: date,
) -> set[tuple[UUID, date]]:
    """Template dates already referenced by one of the user's match records."""
    ids = list(template_ids)
    if not ids:
        return set()
    result = await db.execute(
        select(MatchedTransaction.planned_template_id, MatchedTransaction.planned_expected_date)
        .join(Transaction, MatchedTransaction.transaction_id == Transaction.id)
        .where(Transaction.user_id == user_id)
        .where(MatchedTransaction.planned_template_id.in_(ids))
        .where(MatchedTransaction.planned_expected_date.between(start_date, end_date))
    )
    return {(template_id, expected) for template_id, expected in result.all()}


class DatabaseOccurrenceSource:
    """Occurrence source backed by the planned_* tables.

    A template date referenced by a match record is consumed: neither a
    virtual occurrence nor a stored override for it is returned. Virtual
    occurrences are also skipped when a stored override covers the date.
    """

    def __init__(self, scheduler: TemplateScheduler | None = None) -> None:
        self.scheduler = scheduler

    async def list_occurrences(
        self,
        db: AsyncSession,
        user_id: UUID,
        *,
        start_date: date,
        end_date: date,
        account_id: UUID | None = None,
        include_virtual: bool = True,
    ) -> list[PlannedOccurrenceView]:
        query = (
            select(PlannedOccurrence)
            .where(PlannedOccurrence.user_id == user_id)
            .where(PlannedOccurrence.expected_date.between(start_date, end_date))
            .order_by(PlannedOccurrence.expected_date)
        )
        if account_id is not None:
            query = query.where(PlannedOccurrence.account_id == account_id)
        result = await db.execute(query)
        stored = result.scalars().all()

        templates: list[PlannedTemplate] = []
        if include_virtual and self.scheduler is not None:
            templates = await self._active_templates(db, user_id, account_id)

        template_ids = {row.template_id for row in stored if row.template_id} | {t.id for t in templates}
        consumed = await consumed_template_dates(
            db, user_id, template_ids, start_date=start_date, end_date=end_date
        )

        occurrences = [
            PlannedOccurrenceView.from_stored(row)
            for row in stored
            if (row.template_id, row.expected_date) not in consumed
        ]
        if templates:
            occurrences.extend(
                self._virtual_occurrences(
                    templates, stored, consumed, start_date=start_date, end_date=end_date, user_id=user_id
                )
            )

        # Stable: stored rows precede virtual ones on the same date
        occurrences.sort(key=lambda occ: occ.expected_date)
        return occurrences

    async def _active_templates(
        self, db: AsyncSession, user_id: UUID, account_id: UUID | None
    ) -> list[PlannedTemplate]:
        query = (
            select(PlannedTemplate)
            .where(PlannedTemplate.user_id == user_id)
            .where(PlannedTemplate.is_active.is_(True))
        )
        if account_id is not None:
            query = query.where(PlannedTemplate.account_id == account_id)
        result = await db.execute(query)
        return list(result.scalars().all())

    def _virtual_occurrences(
        self,
        templates: Iterable[PlannedTemplate],
        stored: Iterable[PlannedOccurrence],
        consumed: set[tuple[UUID, date]],
        *,
        start_date: date,
        end_date: date,
        user_id: UUID,
    ) -> list[PlannedOccurrenceView]:
        overridden = {
            (row.template_id, row.expected_date) for row in stored if row.is_override and row.template_id
        }

        virtual: list[PlannedOccurrenceView] = []
        with log_timing(
            "expand_virtual_occurrences", logger=logger, level="debug", user_id=str(user_id)
        ) as timing:
            for template in templates:
                for expected_date in self.scheduler.occurrence_dates(template, start_date, end_date):
                    key = (template.id, expected_date)
                    if key in overridden or key in consumed:
                        continue
                    virtual.append(PlannedOccurrenceView.from_template(template, expected_date))
            timing.update(occurrences=len(virtual), skipped_consumed=len(consumed))
        return virtual
