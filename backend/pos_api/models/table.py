"""
DiningTable: physical table in a branch.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pos_shared.config.constants import TableStatus

from .base import Base, SyncMixin, UtcDateTime, sync_constraint


class DiningTable(SyncMixin, Base):
    """
    A table's status toggles between available and occupied as dine-in
    orders are opened and closed. The session_* columns hold the current
    seating and are cleared when the table is freed.
    """

    # "table" is a reserved SQL keyword
    __tablename__ = "dining_table"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    branch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("branch.id"), nullable=False, index=True
    )
    number: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(Text)
    capacity: Mapped[int] = mapped_column(Integer, default=4, nullable=False)
    location: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text, default=TableStatus.AVAILABLE, nullable=False)
    session_started_at: Mapped[Optional[datetime]] = mapped_column(UtcDateTime)
    session_customers: Mapped[Optional[int]] = mapped_column(Integer)
    session_waiter_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("app_user.id")
    )

    __table_args__ = (
        sync_constraint("dining_table"),
        UniqueConstraint("branch_id", "number", name="uq_dining_table_branch_number"),
        Index("ix_dining_table_branch_status", "branch_id", "status"),
    )

    def clear_session(self) -> None:
        self.session_started_at = None
        self.session_customers = None
        self.session_waiter_id = None
