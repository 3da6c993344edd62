"""
User: staff account scoped to a branch.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from pos_shared.config.constants import Roles

from .base import Base, SyncMixin, UtcDateTime, sync_constraint


class User(SyncMixin, Base):
    """Staff member. Either email or username is required."""

    __tablename__ = "app_user"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(Text, unique=True)
    username: Mapped[Optional[str]] = mapped_column(Text, unique=True)
    # bcrypt hash produced by the auth layer
    password: Mapped[Optional[str]] = mapped_column(Text)
    role: Mapped[str] = mapped_column(Text, default=Roles.CASHIER, nullable=False)
    branch_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("branch.id"), index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login: Mapped[Optional[datetime]] = mapped_column(UtcDateTime)

    __table_args__ = (
        sync_constraint("app_user"),
        CheckConstraint(
            "email IS NOT NULL OR username IS NOT NULL",
            name="ck_app_user_email_or_username",
        ),
    )
