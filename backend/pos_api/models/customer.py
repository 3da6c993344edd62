"""
Customer Models: Customer, CustomerLedgerEntry.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Float, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, SyncMixin, UtcDateTime, sync_constraint, utcnow

if TYPE_CHECKING:
    from .order import Order


class Customer(SyncMixin, Base):
    """
    Customer identified by phone within a branch.
    Created lazily during order placement.
    """

    __tablename__ = "customer"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    branch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("branch.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(Text)
    email: Mapped[Optional[str]] = mapped_column(Text)
    current_balance: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_debit: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_credit: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_spent: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    loyalty_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_order_at: Mapped[Optional[datetime]] = mapped_column(UtcDateTime)

    orders: Mapped[list["Order"]] = relationship(back_populates="customer")

    __table_args__ = (
        sync_constraint("customer"),
        UniqueConstraint("branch_id", "phone", name="uq_customer_branch_phone"),
    )


class CustomerLedgerEntry(SyncMixin, Base):
    """
    Append-only ledger line. ``balance`` is the running balance after this
    entry: debit subtracts, credit adds.
    """

    __tablename__ = "customer_ledger"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    branch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("branch.id"), nullable=False, index=True
    )
    customer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("customer.id"), nullable=False, index=True
    )
    transaction_type: Mapped[str] = mapped_column(Text, nullable=False)  # debit, credit
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    balance: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    entry_date: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        sync_constraint("customer_ledger"),
        Index("ix_customer_ledger_customer_date", "customer_id", "entry_date"),
    )
