"""Match records linking transactions to planned occurrences."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Date, DateTime, ForeignKey, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from forecast_match.database import Base
from forecast_match.models.base import UUIDMixin

if TYPE_CHECKING:
    from forecast_match.models.ledger import Transaction


class MatchMethod(str, Enum):
    """How a match was made."""

    AUTO = "AUTO"
    AUTO_REVIEWED = "AUTO_REVIEWED"
    MANUAL = "MANUAL"


class MatchedTransaction(UUIDMixin, Base):
    """Persisted link between a transaction and a planned occurrence.

    The planned side is a snapshot, so history survives deletion of the
    stored occurrence it consumed.
    """

    __tablename__ = "matched_transactions"
    __table_args__ = (
        # NULL template ids (one-off occurrences) never collide
        UniqueConstraint(
            "planned_template_id",
            "planned_expected_date",
            name="uq_matched_transactions_template_date",
        ),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    planned_template_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    planned_expected_date: Mapped[date] = mapped_column(Date, nullable=False)
    planned_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    match_confidence: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    match_method: Mapped[MatchMethod] = mapped_column(
        SQLEnum(MatchMethod, name="match_method_enum"), nullable=False
    )
    matched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        index=True,
    )

    transaction: Mapped[Transaction] = relationship("Transaction", back_populates="match")


class DismissedMatch(UUIDMixin, Base):
    """Suppresses a transaction/occurrence pairing from future suggestions. Never expires."""

    __tablename__ = "dismissed_matches"
    __table_args__ = (
        UniqueConstraint(
            "transaction_id",
            "planned_occurrence_id",
            name="uq_dismissed_matches_transaction_occurrence",
        ),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Occurrence token: stored row id or virtual_{templateId}_{date}
    planned_occurrence_id: Mapped[str] = mapped_column(String(100), nullable=False)
    dismissed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
