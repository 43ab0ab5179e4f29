"""Planned cash-flow models: recurring templates and stored occurrences."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from forecast_match.database import Base
from forecast_match.models.base import TimestampMixin, UserOwnedMixin, UUIDMixin
from forecast_match.models.ledger import Account, Category

DEFAULT_MATCH_WINDOW_DAYS = 7


class PlannedType(str, Enum):
    """Direction of an expected cash flow."""

    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class MatchSettingsMixin:
    """Matching parameters shared by templates and stored occurrences."""

    # Currency units; NULL means exact amounts only
    match_tolerance: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    match_window_days: Mapped[int] = mapped_column(
        Integer, nullable=False, default=DEFAULT_MATCH_WINDOW_DAYS
    )
    auto_match_enabled: Mapped[bool] = mapped_column(default=True)
    skip_review: Mapped[bool] = mapped_column(default=False)


class PlannedTemplate(UUIDMixin, UserOwnedMixin, MatchSettingsMixin, TimestampMixin, Base):
    """Recurring definition backing virtual occurrences."""

    __tablename__ = "planned_templates"

    account_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    type: Mapped[PlannedType] = mapped_column(
        SQLEnum(PlannedType, name="planned_type_enum"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(default=True, index=True)

    account: Mapped[Account] = relationship("Account", lazy="selectin")
    category: Mapped[Category | None] = relationship("Category", lazy="selectin")


class PlannedOccurrence(UUIDMixin, UserOwnedMixin, MatchSettingsMixin, TimestampMixin, Base):
    """Stored planned occurrence: a one-off entry or an override of a template date.

    Deleted once a transaction is matched against it.
    """

    __tablename__ = "planned_occurrences"

    template_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("planned_templates.id", ondelete="CASCADE"), nullable=True, index=True
    )
    account_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    type: Mapped[PlannedType] = mapped_column(
        SQLEnum(PlannedType, name="planned_type_enum"), nullable=False
    )
    expected_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    is_override: Mapped[bool] = mapped_column(default=False)

    account: Mapped[Account] = relationship("Account", lazy="selectin")
    category: Mapped[Category | None] = relationship("Category", lazy="selectin")
