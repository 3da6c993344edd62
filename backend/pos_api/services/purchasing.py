"""
Purchasing: direct purchases and purchase orders with an approval flow.

Purchase orders move draft -> pending -> approved -> received; any
non-terminal order can be cancelled. Stock only moves when goods arrive:
on a direct purchase, or when a purchase order is received.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import select, update

from pos_shared.config.constants import Events, PurchaseOrderStatus, PurchaseStatus
from pos_shared.config.logging import get_logger
from pos_shared.utils.exceptions import ConflictError, ValidationError
from pos_shared.utils.schemas import (
    CreatePurchaseInput,
    CreatePurchaseOrderInput,
    ReceivePurchaseOrderInput,
    parse_payload,
)

from pos_api.models import Product, Purchase, PurchaseItem, PurchaseOrder, PurchaseOrderItem, Supplier, User, utcnow

from .base_service import BranchScope, BranchScopedService
from .orders.numbering import next_number, purchase_number_prefix
from .orders.totals import money, purchase_line_totals

logger = get_logger(__name__)

PURCHASE_NUMBER_KIND = "PUR"
PURCHASE_ORDER_NUMBER_KIND = "PO"

# target status -> statuses it may be reached from
_PO_TRANSITIONS: dict[str, frozenset[str]] = {
    PurchaseOrderStatus.PENDING: frozenset({PurchaseOrderStatus.DRAFT}),
    PurchaseOrderStatus.APPROVED: frozenset({PurchaseOrderStatus.PENDING}),
    PurchaseOrderStatus.RECEIVED: frozenset({PurchaseOrderStatus.APPROVED}),
    PurchaseOrderStatus.CANCELLED: frozenset(
        {PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.PENDING, PurchaseOrderStatus.APPROVED}
    ),
}


def _check_po_transition(order: PurchaseOrder, target: str) -> None:
    if order.status not in _PO_TRANSITIONS[target]:
        raise ConflictError(
            f"Purchase order {order.order_number} is {order.status}, cannot become {target}",
            purchase_order=order.order_number,
        )


def _document_totals(lines: Iterable) -> dict[str, float]:
    """grandTotal = subtotal - discountTotal + taxTotal"""
    subtotal = discount = tax = Decimal("0")
    for line in lines:
        subtotal += line.gross
        discount += line.discount
        tax += line.tax
    return {
        "subtotal": float(money(subtotal)),
        "discount_total": float(money(discount)),
        "tax_total": float(money(tax)),
        "grand_total": float(money(subtotal - discount + tax)),
    }


class PurchaseService(BranchScopedService):
    # Helpers ----------------------------------------------------------------

    def _next_number(self, scope: BranchScope, column, kind: str) -> str:
        prefix = purchase_number_prefix(scope.branch.code, kind, self._clock(), scope.branch.timezone)
        existing = scope.db.scalars(select(column).where(column.startswith(prefix, autoescape=True)))
        return next_number(prefix, existing)

    def _user_key(self, scope: BranchScope, user_id: str | None) -> int | None:
        if user_id is None:
            return None
        return scope.get(User, "users", "User", user_id).id

    def _restock(self, scope: BranchScope, product_id: int, quantity: int) -> None:
        if quantity <= 0:
            return
        scope.db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity, synced=False, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        scope.touch("products", scope.db.get(Product, product_id))

    def _load_po(self, scope: BranchScope, purchase_order_id: str) -> PurchaseOrder:
        return scope.get(PurchaseOrder, "purchase_orders", "Purchase order", purchase_order_id)

    # Direct purchases -------------------------------------------------------

    def create_purchase(
        self, branch_id: str, payload: dict[str, Any], created_by: str | None = None
    ) -> dict[str, Any]:
        """
        Record goods bought and received on the spot.

        Every line's product must belong to the branch. Stock is incremented
        by each line's quantity in the same transaction.
        """
        data = parse_payload(CreatePurchaseInput, payload)
        with self.transaction(branch_id, "create_purchase") as scope:
            supplier = (
                scope.get(Supplier, "suppliers", "Supplier", data.supplier) if data.supplier else None
            )
            items: list[PurchaseItem] = []
            totals = []
            for position, line in enumerate(data.items):
                product = scope.get(Product, "products", "Product", line.product)
                line_totals = purchase_line_totals(line.quantity, line.unit_cost, line.discount, line.tax)
                totals.append(line_totals)
                items.append(
                    PurchaseItem(
                        product_id=product.id,
                        quantity=line.quantity,
                        unit_cost=line.unit_cost,
                        discount=line.discount,
                        tax=line.tax,
                        total=float(line_totals.total),
                        position=position,
                    )
                )

            purchase = Purchase(
                purchase_number=self._next_number(scope, Purchase.purchase_number, PURCHASE_NUMBER_KIND),
                branch_id=scope.branch.id,
                supplier_id=supplier.id if supplier else None,
                payment_method=data.payment_method,
                status=PurchaseStatus.RECEIVED,
                notes=data.notes,
                created_by_id=self._user_key(scope, created_by),
                items=items,
                synced=False,
                **_document_totals(totals),
            )
            scope.db.add(purchase)
            scope.touch("purchases", purchase)

            for item in items:
                self._restock(scope, item.product_id, item.quantity)

            document = scope.document("purchases", purchase)
            scope.emit(Events.PURCHASE_CREATED, "purchase", document)

        logger.info(
            "Purchase recorded",
            purchase_number=document["purchaseNumber"],
            branch=scope.branch.code,
            lines=len(items),
            grand_total=document["grandTotal"],
        )
        return document

    # Purchase orders --------------------------------------------------------

    def create_purchase_order(
        self, branch_id: str, payload: dict[str, Any], created_by: str | None = None
    ) -> dict[str, Any]:
        data = parse_payload(CreatePurchaseOrderInput, payload)
        with self.transaction(branch_id, "create_purchase_order") as scope:
            supplier = scope.get(Supplier, "suppliers", "Supplier", data.supplier)
            items: list[PurchaseOrderItem] = []
            totals = []
            for position, line in enumerate(data.items):
                product = scope.get(Product, "products", "Product", line.product)
                line_totals = purchase_line_totals(line.ordered_qty, line.unit_cost, line.discount, line.tax)
                totals.append(line_totals)
                items.append(
                    PurchaseOrderItem(
                        product_id=product.id,
                        ordered_qty=line.ordered_qty,
                        received_qty=0,
                        unit_cost=line.unit_cost,
                        discount=line.discount,
                        tax=line.tax,
                        total=float(line_totals.total),
                        position=position,
                    )
                )

            order = PurchaseOrder(
                order_number=self._next_number(scope, PurchaseOrder.order_number, PURCHASE_ORDER_NUMBER_KIND),
                branch_id=scope.branch.id,
                supplier_id=supplier.id,
                status=data.status,
                expected_delivery=data.expected_delivery,
                notes=data.notes,
                created_by_id=self._user_key(scope, created_by),
                items=items,
                synced=False,
                **_document_totals(totals),
            )
            scope.db.add(order)
            scope.touch("purchase_orders", order)
            document = scope.document("purchase_orders", order)
            scope.emit(Events.PURCHASE_ORDER_CREATED, "purchase_order", document)

        logger.info("Purchase order created", order_number=document["orderNumber"], status=data.status)
        return document

    def submit_purchase_order(self, branch_id: str, purchase_order_id: str) -> dict[str, Any]:
        with self.transaction(branch_id, "submit_purchase_order") as scope:
            order = self._load_po(scope, purchase_order_id)
            _check_po_transition(order, PurchaseOrderStatus.PENDING)
            order.status = PurchaseOrderStatus.PENDING
            scope.touch("purchase_orders", order)
            document = scope.document("purchase_orders", order)
            scope.emit(Events.PURCHASE_ORDER_SUBMITTED, "purchase_order", document)
        return document

    def approve_purchase_order(
        self, branch_id: str, purchase_order_id: str, approved_by: str | None = None
    ) -> dict[str, Any]:
        with self.transaction(branch_id, "approve_purchase_order") as scope:
            order = self._load_po(scope, purchase_order_id)
            _check_po_transition(order, PurchaseOrderStatus.APPROVED)
            order.status = PurchaseOrderStatus.APPROVED
            order.approved_by_id = self._user_key(scope, approved_by)
            order.approved_at = self._clock()
            scope.touch("purchase_orders", order)
            document = scope.document("purchase_orders", order)
            scope.emit(Events.PURCHASE_ORDER_APPROVED, "purchase_order", document)

        logger.info("Purchase order approved", order_number=document["orderNumber"])
        return document

    def receive_purchase_order(
        self, branch_id: str, purchase_order_id: str, payload: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """
        Receive an approved purchase order.

        ``payload["items"]`` may list ``{product, receivedQty}`` per line;
        lines not listed are received in full. Stock grows by the received
        quantity of each line.

        Raises:
            ConflictError: the order is not approved.
            ValidationError: a listed product is not on the order, or more
                is received than was ordered.
        """
        data = parse_payload(ReceivePurchaseOrderInput, payload or {})
        with self.transaction(branch_id, "receive_purchase_order") as scope:
            order = self._load_po(scope, purchase_order_id)
            _check_po_transition(order, PurchaseOrderStatus.RECEIVED)

            by_product = {item.product_id: item for item in order.items}
            received: dict[int, int] = {}
            for line in data.items:
                product = scope.get(Product, "products", "Product", line.product)
                item = by_product.get(product.id)
                if item is None:
                    raise ValidationError(
                        f"Product {product.name} is not on purchase order {order.order_number}",
                        product=line.product,
                    )
                if line.received_qty > item.ordered_qty:
                    raise ValidationError(
                        f"Received quantity {line.received_qty} of {product.name} "
                        f"exceeds ordered quantity {item.ordered_qty}",
                        product=line.product,
                    )
                received[item.product_id] = line.received_qty

            for item in order.items:
                item.received_qty = received.get(item.product_id, item.ordered_qty)
                self._restock(scope, item.product_id, item.received_qty)

            order.status = PurchaseOrderStatus.RECEIVED
            order.received_at = self._clock()
            scope.touch("purchase_orders", order)
            document = scope.document("purchase_orders", order)
            scope.emit(Events.STOCK_UPDATED, "purchase_order", document)

        logger.info(
            "Purchase order received",
            order_number=document["orderNumber"],
            units=sum(item["receivedQty"] for item in document["items"]),
        )
        return document

    def cancel_purchase_order(self, branch_id: str, purchase_order_id: str) -> dict[str, Any]:
        with self.transaction(branch_id, "cancel_purchase_order") as scope:
            order = self._load_po(scope, purchase_order_id)
            _check_po_transition(order, PurchaseOrderStatus.CANCELLED)
            order.status = PurchaseOrderStatus.CANCELLED
            scope.touch("purchase_orders", order)
            document = scope.document("purchase_orders", order)
            scope.emit(Events.PURCHASE_ORDER_CANCELLED, "purchase_order", document)
        return document
