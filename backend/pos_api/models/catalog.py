"""
Catalog: Product (menu item and inventory item).
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Float, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, SyncMixin, sync_constraint


class Product(SyncMixin, Base):
    """
    Sellable product with on-hand stock.

    Stock is mutated by order creation/cancellation, purchase receipt and
    manual restock. It can never go negative.
    """

    __tablename__ = "product"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    branch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("branch.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    category: Mapped[Optional[str]] = mapped_column(Text)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(Text)
    barcode: Mapped[Optional[str]] = mapped_column(Text)
    image: Mapped[Optional[str]] = mapped_column(Text)
    sales_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        sync_constraint("product"),
        CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),
        UniqueConstraint("branch_id", "sku", name="uq_product_branch_sku"),
        Index("ix_product_branch_category", "branch_id", "category"),
    )

    @property
    def low_stock(self) -> bool:
        return self.stock <= self.min_stock
