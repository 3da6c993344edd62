"""
Branch: root scoping entity.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import JSON, Boolean, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from pos_shared.config.settings import settings as app_settings

from .base import Base, SyncMixin, sync_constraint


class Branch(SyncMixin, Base):
    """
    A restaurant location. Every other entity carries a branch reference.

    ``settings`` holds the blob read by the order engine:
    taxRate, serviceCharge (percentages), currency, timezone.
    """

    __tablename__ = "branch"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    address: Mapped[Optional[str]] = mapped_column(Text)
    phone: Mapped[Optional[str]] = mapped_column(Text)
    email: Mapped[Optional[str]] = mapped_column(Text)
    settings: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    logo: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (sync_constraint("branch"),)

    @property
    def tax_rate(self) -> float:
        return float((self.settings or {}).get("taxRate", app_settings.default_tax_rate))

    @property
    def service_charge_rate(self) -> float:
        return float((self.settings or {}).get("serviceCharge", app_settings.default_service_charge))

    @property
    def currency(self) -> str:
        return (self.settings or {}).get("currency") or app_settings.default_currency

    @property
    def timezone(self) -> str:
        return (self.settings or {}).get("timezone") or app_settings.default_timezone
