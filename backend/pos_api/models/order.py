"""
Order Models: Order, OrderItem.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Float, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pos_shared.config.constants import KitchenStatus, OrderStatus, OrderType, PaymentStatus

from .base import Base, SyncMixin, UtcDateTime, sync_constraint

if TYPE_CHECKING:
    from .customer import Customer


class Order(SyncMixin, Base):
    """
    Customer order. Totals are always recomputed from the items:
    final_total = subtotal + tax + service_charge - discount + tip.
    """

    # "order" is a reserved SQL keyword
    __tablename__ = "pos_order"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    branch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("branch.id"), nullable=False, index=True
    )
    order_type: Mapped[str] = mapped_column(Text, default=OrderType.DINE_IN, nullable=False)
    status: Mapped[str] = mapped_column(Text, default=OrderStatus.PENDING, nullable=False)
    kitchen_status: Mapped[str] = mapped_column(Text, default=KitchenStatus.PENDING, nullable=False)

    customer_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("customer.id"), index=True
    )
    customer_name: Mapped[Optional[str]] = mapped_column(Text)
    customer_phone: Mapped[Optional[str]] = mapped_column(Text)
    table_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("dining_table.id"), index=True
    )
    table_number: Mapped[Optional[str]] = mapped_column(Text)

    subtotal: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    tax: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    service_charge: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    discount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    tip: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    final_total: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    payment_method: Mapped[Optional[str]] = mapped_column(Text)
    payment_status: Mapped[str] = mapped_column(Text, default=PaymentStatus.PENDING, nullable=False)
    cashier_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_user.id"))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    kitchen_notes: Mapped[Optional[str]] = mapped_column(Text)

    served_at: Mapped[Optional[datetime]] = mapped_column(UtcDateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UtcDateTime)
    paid_at: Mapped[Optional[datetime]] = mapped_column(UtcDateTime)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )
    customer: Mapped[Optional["Customer"]] = relationship(back_populates="orders")

    __table_args__ = (
        sync_constraint("pos_order"),
        Index("ix_pos_order_branch_status", "branch_id", "status"),
        Index("ix_pos_order_table_status", "table_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, number='{self.order_number}', status='{self.status}')>"


class OrderItem(Base):
    """
    Line of an order. Price is captured at order time.
    Owned by the order: mirrored as part of the order document.
    """

    __tablename__ = "order_item"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("pos_order.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("product.id"), nullable=False, index=True
    )
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    total: Mapped[float] = mapped_column(Float, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    order: Mapped["Order"] = relationship(back_populates="items")
