"""
Purchasing Models: Supplier, Purchase, PurchaseItem, PurchaseOrder, PurchaseOrderItem.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Float, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pos_shared.config.constants import PurchaseOrderStatus, PurchaseStatus

from .base import Base, SyncMixin, UtcDateTime, sync_constraint


class Supplier(SyncMixin, Base):
    __tablename__ = "supplier"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    branch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("branch.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    contact_person: Mapped[Optional[str]] = mapped_column(Text)
    phone: Mapped[Optional[str]] = mapped_column(Text)
    email: Mapped[Optional[str]] = mapped_column(Text)
    address: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        sync_constraint("supplier"),
        UniqueConstraint("branch_id", "name", name="uq_supplier_branch_name"),
    )


class Purchase(SyncMixin, Base):
    """
    Direct purchase (goods received on the spot). Stock is incremented when
    the purchase is recorded.
    """

    __tablename__ = "purchase"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    purchase_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    branch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("branch.id"), nullable=False, index=True
    )
    supplier_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("supplier.id"), index=True
    )
    subtotal: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    discount_total: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    tax_total: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    grand_total: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text, default=PurchaseStatus.RECEIVED, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_user.id"))

    items: Mapped[list["PurchaseItem"]] = relationship(
        back_populates="purchase",
        cascade="all, delete-orphan",
        order_by="PurchaseItem.position",
    )

    __table_args__ = (sync_constraint("purchase"),)


class PurchaseItem(Base):
    __tablename__ = "purchase_item"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    purchase_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("purchase.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(Integer, ForeignKey("product.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[float] = mapped_column(Float, nullable=False)
    discount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)  # percent
    tax: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)  # percent
    total: Mapped[float] = mapped_column(Float, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    purchase: Mapped["Purchase"] = relationship(back_populates="items")


class PurchaseOrder(SyncMixin, Base):
    """
    Purchase order with approval flow:
    draft -> pending -> approved -> received, or cancelled from any non-terminal state.
    """

    __tablename__ = "purchase_order"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    branch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("branch.id"), nullable=False, index=True
    )
    supplier_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("supplier.id"), index=True
    )
    status: Mapped[str] = mapped_column(Text, default=PurchaseOrderStatus.DRAFT, nullable=False)
    subtotal: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    discount_total: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    tax_total: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    grand_total: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    approved_by_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_user.id"))
    approved_at: Mapped[Optional[datetime]] = mapped_column(UtcDateTime)
    expected_delivery: Mapped[Optional[datetime]] = mapped_column(UtcDateTime)
    received_at: Mapped[Optional[datetime]] = mapped_column(UtcDateTime)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_user.id"))

    items: Mapped[list["PurchaseOrderItem"]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.position",
    )

    __table_args__ = (sync_constraint("purchase_order"),)


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_item"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("purchase_order.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(Integer, ForeignKey("product.id"), nullable=False)
    ordered_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    received_qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unit_cost: Mapped[float] = mapped_column(Float, nullable=False)
    discount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    tax: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total: Mapped[float] = mapped_column(Float, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    purchase_order: Mapped["PurchaseOrder"] = relationship(back_populates="items")
