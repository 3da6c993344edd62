"""
Finance Models: FinanceEntry, Expense.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Float, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, SyncMixin, UtcDateTime, sync_constraint, utcnow


class FinanceEntry(SyncMixin, Base):
    """Append-only income/expense record."""

    __tablename__ = "finance_entry"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    branch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("branch.id"), nullable=False, index=True
    )
    entry_type: Mapped[str] = mapped_column(Text, nullable=False)  # income, expense
    category: Mapped[Optional[str]] = mapped_column(Text)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    reference: Mapped[Optional[str]] = mapped_column(Text)
    entry_date: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        sync_constraint("finance_entry"),
        Index("ix_finance_entry_branch_date", "branch_id", "entry_date"),
    )


class Expense(SyncMixin, Base):
    __tablename__ = "expense"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    branch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("branch.id"), nullable=False, index=True
    )
    category: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    payment_method: Mapped[Optional[str]] = mapped_column(Text)
    expense_date: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)
    created_by_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_user.id"))

    __table_args__ = (sync_constraint("expense"),)
