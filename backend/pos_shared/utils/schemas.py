"""
Input schemas for the order, purchasing and ledger operations.

Payloads arrive in the document vocabulary (camelCase); snake_case names
are accepted as well. ``parse_payload`` turns pydantic errors into a
ValidationError with one message per offending field.
"""

from datetime import datetime
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from pos_shared.utils.exceptions import ValidationError

# =============================================================================
# Common Types
# =============================================================================

OrderTypeValue = Literal["dine-in", "takeaway", "delivery"]
OrderStatusValue = Literal["pending", "confirmed", "preparing", "ready", "served", "completed", "cancelled"]
KitchenStatusValue = Literal["pending", "preparing", "ready", "served"]
PaymentMethodValue = Literal["cash", "card", "mobile", "credit", "bank"]
PurchaseOrderInitialStatus = Literal["draft", "pending"]
LedgerTransactionValue = Literal["debit", "credit"]
FinanceTypeValue = Literal["income", "expense"]

Model = TypeVar("Model", bound=BaseModel)


def parse_payload(model: type[Model], payload: Any) -> Model:
    """
    Validate ``payload`` against ``model``.

    Raises:
        ValidationError: with field-level messages, e.g.
            "items.0.quantity: Input should be greater than 0"
    """
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload or {})
    except PydanticValidationError as e:
        messages = []
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"]) or "payload"
            messages.append(f"{location}: {error['msg']}")
        raise ValidationError("; ".join(messages), fields=[m.split(":", 1)[0] for m in messages]) from None


# =============================================================================
# Order Schemas
# =============================================================================


class OrderItemInput(BaseModel):
    """One requested line. ``product`` is the product's external id."""

    product: str = Field(min_length=1)
    quantity: int = Field(gt=0, le=10_000)
    notes: str | None = Field(default=None, max_length=500)

    model_config = {"populate_by_name": True}


class CreateOrderInput(BaseModel):
    items: list[OrderItemInput] = Field(min_length=1)
    order_type: OrderTypeValue = Field(default="dine-in", alias="orderType")
    table: str | None = None
    customer: str | None = None
    customer_name: str | None = Field(default=None, max_length=120, alias="customerName")
    customer_phone: str | None = Field(default=None, max_length=40, alias="customerPhone")
    guests: int | None = Field(default=None, ge=1, le=100)
    discount: float = Field(default=0.0, ge=0)
    tip: float = Field(default=0.0, ge=0)
    notes: str | None = Field(default=None, max_length=1000)
    kitchen_notes: str | None = Field(default=None, max_length=1000, alias="kitchenNotes")
    payment_method: PaymentMethodValue | None = Field(default=None, alias="paymentMethod")

    model_config = {"populate_by_name": True}


class OrderStatusInput(BaseModel):
    status: OrderStatusValue | None = None
    kitchen_status: KitchenStatusValue | None = Field(default=None, alias="kitchenStatus")

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def require_change(self) -> "OrderStatusInput":
        if self.status is None and self.kitchen_status is None:
            raise ValueError("status or kitchenStatus is required")
        return self


class PaymentInput(BaseModel):
    amount: float = Field(ge=0)
    method: PaymentMethodValue = Field(default="cash", alias="paymentMethod")

    model_config = {"populate_by_name": True}


class UpdateOrderInput(BaseModel):
    items: list[OrderItemInput] | None = Field(default=None, min_length=1)
    notes: str | None = Field(default=None, max_length=1000)
    kitchen_notes: str | None = Field(default=None, max_length=1000, alias="kitchenNotes")
    discount: float | None = Field(default=None, ge=0)
    tip: float | None = Field(default=None, ge=0)

    model_config = {"populate_by_name": True}


# =============================================================================
# Purchasing Schemas
# =============================================================================


class PurchaseItemInput(BaseModel):
    product: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    unit_cost: float = Field(gt=0, alias="unitCost")
    discount: float = Field(default=0.0, ge=0, le=100)  # percent
    tax: float = Field(default=0.0, ge=0, le=100)  # percent

    model_config = {"populate_by_name": True}


class CreatePurchaseInput(BaseModel):
    supplier: str | None = None
    items: list[PurchaseItemInput] = Field(min_length=1)
    payment_method: PaymentMethodValue | None = Field(default=None, alias="paymentMethod")
    notes: str | None = Field(default=None, max_length=1000)

    model_config = {"populate_by_name": True}


class PurchaseOrderItemInput(BaseModel):
    product: str = Field(min_length=1)
    ordered_qty: int = Field(gt=0, alias="orderedQty")
    unit_cost: float = Field(gt=0, alias="unitCost")
    discount: float = Field(default=0.0, ge=0, le=100)
    tax: float = Field(default=0.0, ge=0, le=100)

    model_config = {"populate_by_name": True}


class CreatePurchaseOrderInput(BaseModel):
    supplier: str = Field(min_length=1)
    items: list[PurchaseOrderItemInput] = Field(min_length=1)
    status: PurchaseOrderInitialStatus = "draft"
    expected_delivery: datetime | None = Field(default=None, alias="expectedDelivery")
    notes: str | None = Field(default=None, max_length=1000)

    model_config = {"populate_by_name": True}


class ReceivedLineInput(BaseModel):
    product: str = Field(min_length=1)
    received_qty: int = Field(ge=0, alias="receivedQty")

    model_config = {"populate_by_name": True}


class ReceivePurchaseOrderInput(BaseModel):
    """Lines not listed are received in full."""

    items: list[ReceivedLineInput] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


# =============================================================================
# Ledger / Finance Schemas
# =============================================================================


class LedgerEntryInput(BaseModel):
    customer: str = Field(min_length=1)
    transaction_type: LedgerTransactionValue = Field(alias="transactionType")
    amount: float = Field(gt=0)
    description: str | None = Field(default=None, max_length=500)
    date: datetime | None = None

    model_config = {"populate_by_name": True}


class FinanceEntryInput(BaseModel):
    type: FinanceTypeValue
    amount: float = Field(gt=0)
    category: str | None = Field(default=None, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    reference: str | None = Field(default=None, max_length=100)
    date: datetime | None = None


class ExpenseInput(BaseModel):
    category: str = Field(min_length=1, max_length=100)
    amount: float = Field(gt=0)
    description: str | None = Field(default=None, max_length=500)
    payment_method: PaymentMethodValue | None = Field(default=None, alias="paymentMethod")
    created_by: str | None = Field(default=None, alias="createdBy")
    date: datetime | None = None

    model_config = {"populate_by_name": True}
