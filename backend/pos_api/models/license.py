"""
License: device activation record. Only stored and mirrored here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, SyncMixin, UtcDateTime, sync_constraint


class License(SyncMixin, Base):
    __tablename__ = "license"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    license_key: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    device_id: Mapped[Optional[str]] = mapped_column(Text)
    branch_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("branch.id"))
    start_date: Mapped[Optional[datetime]] = mapped_column(UtcDateTime)
    expiry_date: Mapped[Optional[datetime]] = mapped_column(UtcDateTime)
    status: Mapped[str] = mapped_column(Text, default="active", nullable=False)
    last_check: Mapped[Optional[datetime]] = mapped_column(UtcDateTime)

    __table_args__ = (sync_constraint("license"),)
