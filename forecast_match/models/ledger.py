"""Ledger models read by the matching engine.

Accounts, categories and transactions are owned by the surrounding ledger;
matching only reads them and attaches or detaches a match.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Numeric, String, Uuid
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from forecast_match.database import Base
from forecast_match.models.base import TimestampMixin, UserOwnedMixin, UUIDMixin

if TYPE_CHECKING:
    from forecast_match.models.matching import MatchedTransaction


class TransactionStatus(str, Enum):
    """Clearing status reported by the bank feed."""

    PENDING = "pending"
    CLEARED = "cleared"


class Account(UUIDMixin, UserOwnedMixin, TimestampMixin, Base):
    """Bank or cash account a transaction posts to."""

    __tablename__ = "accounts"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True)


class Category(UUIDMixin, UserOwnedMixin, TimestampMixin, Base):
    """Spending or income category."""

    __tablename__ = "categories"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    color: Mapped[str | None] = mapped_column(String(20), nullable=True)


class Transaction(UUIDMixin, UserOwnedMixin, TimestampMixin, Base):
    """Actual financial event imported from a bank feed or entered by hand."""

    __tablename__ = "transactions"

    account_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    # Signed: negative for money out
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    txn_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    status: Mapped[TransactionStatus] = mapped_column(
        SQLEnum(TransactionStatus, name="transaction_status_enum"),
        default=TransactionStatus.CLEARED,
    )

    account: Mapped[Account] = relationship("Account", lazy="selectin")
    category: Mapped[Category | None] = relationship("Category", lazy="selectin")
    match: Mapped[MatchedTransaction | None] = relationship(
        "MatchedTransaction",
        back_populates="transaction",
        uselist=False,
        passive_deletes=True,
    )
