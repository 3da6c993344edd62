"""
Entity mapping between local rows and remote documents.

Local rows are relational: snake_case columns, integer foreign keys, line
items in their own tables. Remote documents are nested: camelCase keys,
ObjectId references, line items embedded under ``items``. Every entity the
system mirrors is described once here and both directions are derived from
that description.

External ids: a row is identified outside the local store by its remote id
when it has one, otherwise by ``local-<id>``.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from pos_shared.config.constants import LOCAL_ID_PREFIX
from pos_shared.utils.exceptions import ValidationError

from pos_api.models import (
    Branch,
    Customer,
    CustomerLedgerEntry,
    DiningTable,
    Expense,
    FinanceEntry,
    License,
    Order,
    OrderItem,
    Product,
    Purchase,
    PurchaseItem,
    PurchaseOrder,
    PurchaseOrderItem,
    Supplier,
    User,
)

SCALAR = "scalar"
BOOL = "bool"
DATETIME = "datetime"
JSON = "json"
REF = "ref"


class UnresolvedReferenceError(Exception):
    """A reference points at a row/document the other side does not know."""

    def __init__(self, target: str, value: Any):
        self.target = target
        self.value = value
        super().__init__(f"Unresolved reference to {target}: {value!r}")


class RefResolver(Protocol):
    def to_external(self, target: str, local_id: int) -> str: ...

    def to_local(self, target: str, external: str) -> int | None: ...


@dataclass(frozen=True)
class FieldSpec:
    doc: str
    attr: str
    kind: str = SCALAR
    target: str | None = None


@dataclass(frozen=True)
class ChildSpec:
    """Line items embedded in the parent document."""

    relation: str
    model: type
    doc: str
    fields: tuple[FieldSpec, ...]


@dataclass(frozen=True)
class EntityMapping:
    name: str
    model: type
    fields: tuple[FieldSpec, ...]
    # Alternatives tried in order; each is a tuple of document keys
    natural_keys: tuple[tuple[str, ...], ...] = ()
    children: ChildSpec | None = None
    _by_doc: dict[str, FieldSpec] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        self._by_doc.update({spec.doc: spec for spec in self.fields})

    @property
    def collection(self) -> str:
        return self.name

    def spec_for(self, doc_key: str) -> FieldSpec | None:
        return self._by_doc.get(doc_key)

    @property
    def refs(self) -> tuple[FieldSpec, ...]:
        return tuple(spec for spec in self.fields if spec.kind == REF)

    @property
    def child_refs(self) -> tuple[FieldSpec, ...]:
        if self.children is None:
            return ()
        return tuple(spec for spec in self.children.fields if spec.kind == REF)


def _f(doc: str, attr: str, kind: str = SCALAR, target: str | None = None) -> FieldSpec:
    return FieldSpec(doc=doc, attr=attr, kind=kind, target=target)


def _branch_ref() -> FieldSpec:
    return _f("branch", "branch_id", REF, "branches")


# =============================================================================
# Registry
# =============================================================================


BRANCHES = EntityMapping(
    name="branches",
    model=Branch,
    fields=(
        _f("name", "name"),
        _f("branchCode", "code"),
        _f("address", "address"),
        _f("phone", "phone"),
        _f("email", "email"),
        _f("settings", "settings", JSON),
        _f("isActive", "is_active", BOOL),
        _f("logo", "logo"),
    ),
    natural_keys=(("branchCode",),),
)

USERS = EntityMapping(
    name="users",
    model=User,
    fields=(
        _f("name", "name"),
        _f("email", "email"),
        _f("username", "username"),
        _f("password", "password"),
        _f("role", "role"),
        _branch_ref(),
        _f("isActive", "is_active", BOOL),
        _f("lastLogin", "last_login", DATETIME),
    ),
    natural_keys=(("email",), ("username",)),
)

CUSTOMERS = EntityMapping(
    name="customers",
    model=Customer,
    fields=(
        _f("name", "name"),
        _f("phone", "phone"),
        _f("email", "email"),
        _branch_ref(),
        _f("currentBalance", "current_balance"),
        _f("totalDebit", "total_debit"),
        _f("totalCredit", "total_credit"),
        _f("totalOrders", "total_orders"),
        _f("totalSpent", "total_spent"),
        _f("loyaltyPoints", "loyalty_points"),
        _f("lastOrder", "last_order_at", DATETIME),
    ),
    natural_keys=(("phone", "branch"),),
)

TABLES = EntityMapping(
    name="tables",
    model=DiningTable,
    fields=(
        _f("number", "number"),
        _f("name", "name"),
        _f("capacity", "capacity"),
        _f("location", "location"),
        _f("status", "status"),
        _branch_ref(),
        _f("currentSession.startedAt", "session_started_at", DATETIME),
        _f("currentSession.customers", "session_customers"),
        _f("currentSession.waiter", "session_waiter_id", REF, "users"),
    ),
    natural_keys=(("number", "branch"),),
)

PRODUCTS = EntityMapping(
    name="products",
    model=Product,
    fields=(
        _f("name", "name"),
        _f("description", "description"),
        _f("price", "price"),
        _f("cost", "cost"),
        _f("category", "category"),
        _f("stock", "stock"),
        _f("minStock", "min_stock"),
        _f("isAvailable", "is_available", BOOL),
        _f("active", "active", BOOL),
        _f("sku", "sku"),
        _f("barcode", "barcode"),
        _f("image", "image"),
        _f("salesCount", "sales_count"),
        _branch_ref(),
    ),
    natural_keys=(("sku", "branch"),),
)

SUPPLIERS = EntityMapping(
    name="suppliers",
    model=Supplier,
    fields=(
        _f("name", "name"),
        _f("contactPerson", "contact_person"),
        _f("phone", "phone"),
        _f("email", "email"),
        _f("address", "address"),
        _f("isActive", "is_active", BOOL),
        _branch_ref(),
    ),
    natural_keys=(("name", "branch"),),
)

ORDERS = EntityMapping(
    name="orders",
    model=Order,
    fields=(
        _f("orderNumber", "order_number"),
        _f("orderType", "order_type"),
        _f("status", "status"),
        _f("kitchenStatus", "kitchen_status"),
        _f("customer", "customer_id", REF, "customers"),
        _f("customerName", "customer_name"),
        _f("customerPhone", "customer_phone"),
        _f("table", "table_id", REF, "tables"),
        _f("tableNumber", "table_number"),
        _f("subtotal", "subtotal"),
        _f("tax", "tax"),
        _f("serviceCharge", "service_charge"),
        _f("discount", "discount"),
        _f("tip", "tip"),
        _f("finalTotal", "final_total"),
        _f("paymentMethod", "payment_method"),
        _f("paymentStatus", "payment_status"),
        _f("cashier", "cashier_id", REF, "users"),
        _f("notes", "notes"),
        _f("kitchenNotes", "kitchen_notes"),
        _f("servedAt", "served_at", DATETIME),
        _f("completedAt", "completed_at", DATETIME),
        _f("paidAt", "paid_at", DATETIME),
        _branch_ref(),
    ),
    natural_keys=(("orderNumber",),),
    children=ChildSpec(
        relation="items",
        model=OrderItem,
        doc="items",
        fields=(
            _f("product", "product_id", REF, "products"),
            _f("productName", "product_name"),
            _f("quantity", "quantity"),
            _f("price", "price"),
            _f("total", "total"),
            _f("notes", "notes"),
        ),
    ),
)

PURCHASES = EntityMapping(
    name="purchases",
    model=Purchase,
    fields=(
        _f("purchaseNumber", "purchase_number"),
        _f("supplier", "supplier_id", REF, "suppliers"),
        _f("subtotal", "subtotal"),
        _f("discountTotal", "discount_total"),
        _f("taxTotal", "tax_total"),
        _f("grandTotal", "grand_total"),
        _f("paymentMethod", "payment_method"),
        _f("status", "status"),
        _f("notes", "notes"),
        _f("createdBy", "created_by_id", REF, "users"),
        _branch_ref(),
    ),
    natural_keys=(("purchaseNumber",),),
    children=ChildSpec(
        relation="items",
        model=PurchaseItem,
        doc="items",
        fields=(
            _f("product", "product_id", REF, "products"),
            _f("quantity", "quantity"),
            _f("unitCost", "unit_cost"),
            _f("discount", "discount"),
            _f("tax", "tax"),
            _f("total", "total"),
        ),
    ),
)

PURCHASE_ORDERS = EntityMapping(
    name="purchase_orders",
    model=PurchaseOrder,
    fields=(
        _f("orderNumber", "order_number"),
        _f("supplier", "supplier_id", REF, "suppliers"),
        _f("status", "status"),
        _f("subtotal", "subtotal"),
        _f("discountTotal", "discount_total"),
        _f("taxTotal", "tax_total"),
        _f("grandTotal", "grand_total"),
        _f("approvedBy", "approved_by_id", REF, "users"),
        _f("approvedAt", "approved_at", DATETIME),
        _f("expectedDelivery", "expected_delivery", DATETIME),
        _f("receivedAt", "received_at", DATETIME),
        _f("notes", "notes"),
        _f("createdBy", "created_by_id", REF, "users"),
        _branch_ref(),
    ),
    natural_keys=(("orderNumber",),),
    children=ChildSpec(
        relation="items",
        model=PurchaseOrderItem,
        doc="items",
        fields=(
            _f("product", "product_id", REF, "products"),
            _f("orderedQty", "ordered_qty"),
            _f("receivedQty", "received_qty"),
            _f("unitCost", "unit_cost"),
            _f("discount", "discount"),
            _f("tax", "tax"),
            _f("total", "total"),
        ),
    ),
)

CUSTOMER_LEDGER = EntityMapping(
    name="customer_ledger",
    model=CustomerLedgerEntry,
    fields=(
        _f("customer", "customer_id", REF, "customers"),
        _f("transactionType", "transaction_type"),
        _f("amount", "amount"),
        _f("balance", "balance"),
        _f("description", "description"),
        _f("date", "entry_date", DATETIME),
        _branch_ref(),
    ),
)

FINANCE = EntityMapping(
    name="finance",
    model=FinanceEntry,
    fields=(
        _f("type", "entry_type"),
        _f("category", "category"),
        _f("amount", "amount"),
        _f("description", "description"),
        _f("reference", "reference"),
        _f("date", "entry_date", DATETIME),
        _branch_ref(),
    ),
)

EXPENSES = EntityMapping(
    name="expenses",
    model=Expense,
    fields=(
        _f("category", "category"),
        _f("amount", "amount"),
        _f("description", "description"),
        _f("paymentMethod", "payment_method"),
        _f("date", "expense_date", DATETIME),
        _f("createdBy", "created_by_id", REF, "users"),
        _branch_ref(),
    ),
)

LICENSES = EntityMapping(
    name="licenses",
    model=License,
    fields=(
        _f("licenseKey", "license_key"),
        _f("deviceId", "device_id"),
        _f("startDate", "start_date", DATETIME),
        _f("expiryDate", "expiry_date", DATETIME),
        _f("status", "status"),
        _f("lastCheck", "last_check", DATETIME),
        _branch_ref(),
    ),
    natural_keys=(("licenseKey",),),
)

# Parents before children so references resolve on both push and pull
SYNC_ORDER: tuple[EntityMapping, ...] = (
    BRANCHES,
    USERS,
    CUSTOMERS,
    TABLES,
    PRODUCTS,
    SUPPLIERS,
    ORDERS,
    PURCHASES,
    PURCHASE_ORDERS,
    CUSTOMER_LEDGER,
    FINANCE,
    EXPENSES,
    LICENSES,
)

MAPPINGS: dict[str, EntityMapping] = {mapping.name: mapping for mapping in SYNC_ORDER}


def get_mapping(entity: str) -> EntityMapping:
    try:
        return MAPPINGS[entity]
    except KeyError:
        raise ValidationError(f"Unknown entity '{entity}'", entity=entity) from None


def mapping_for_model(model: type) -> EntityMapping:
    for mapping in SYNC_ORDER:
        if mapping.model is model:
            return mapping
    raise KeyError(model)


# =============================================================================
# Ids and values
# =============================================================================


def local_marker(local_id: int) -> str:
    return f"{LOCAL_ID_PREFIX}{local_id}"


def parse_local_marker(value: Any) -> int | None:
    """Return the local id encoded in ``local-<n>``, or None."""
    if isinstance(value, str) and value.startswith(LOCAL_ID_PREFIX):
        suffix = value[len(LOCAL_ID_PREFIX):]
        if suffix.isdigit():
            return int(suffix)
    return None


def external_id(row: Any) -> str:
    return row.remote_id or local_marker(row.id)


def coerce_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid datetime: {value!r}") from None
        return coerce_datetime(parsed)
    raise ValidationError(f"Invalid datetime: {value!r}")


def get_path(doc: dict[str, Any], path: str) -> tuple[bool, Any]:
    current: Any = doc
    for part in path.split("."):
        if current is None:
            return True, None
        if not isinstance(current, dict) or part not in current:
            return False, None
        current = current[part]
    return True, current


def set_path(doc: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value


def _collapse_empty_groups(doc: dict[str, Any], specs: tuple[FieldSpec, ...]) -> None:
    groups = {spec.doc.split(".", 1)[0] for spec in specs if "." in spec.doc}
    for group in groups:
        value = doc.get(group)
        if isinstance(value, dict) and all(v is None for v in value.values()):
            doc[group] = None


def _value_out(spec: FieldSpec, value: Any, refs: RefResolver) -> Any:
    if value is None:
        return None
    if spec.kind == REF:
        return refs.to_external(spec.target, value)
    if spec.kind == JSON:
        return copy.deepcopy(value)
    if spec.kind == DATETIME:
        return coerce_datetime(value)
    return value


def _value_in(spec: FieldSpec, value: Any, refs: RefResolver) -> Any:
    if value is None:
        return {} if spec.kind == JSON else None
    if spec.kind == REF:
        local_id = refs.to_local(spec.target, str(value))
        if local_id is None:
            raise UnresolvedReferenceError(spec.target, value)
        return local_id
    if spec.kind == BOOL:
        return bool(value)
    if spec.kind == DATETIME:
        return coerce_datetime(value)
    if spec.kind == JSON:
        if not isinstance(value, dict):
            raise ValidationError(f"Field '{spec.doc}' must be an object")
        return copy.deepcopy(value)
    return value


# =============================================================================
# Row <-> document
# =============================================================================


def to_document(
    mapping: EntityMapping,
    row: Any,
    refs: RefResolver,
    *,
    include_id: bool = True,
) -> dict[str, Any]:
    """Render a local row in document shape."""
    doc: dict[str, Any] = {}
    if include_id:
        doc["_id"] = external_id(row)
    for spec in mapping.fields:
        set_path(doc, spec.doc, _value_out(spec, getattr(row, spec.attr), refs))
    _collapse_empty_groups(doc, mapping.fields)

    if mapping.children is not None:
        child_spec = mapping.children
        doc[child_spec.doc] = [
            {
                spec.doc: _value_out(spec, getattr(child, spec.attr), refs)
                for spec in child_spec.fields
            }
            for child in getattr(row, child_spec.relation)
        ]

    doc["createdAt"] = coerce_datetime(row.created_at)
    doc["updatedAt"] = coerce_datetime(row.updated_at)
    return doc


def apply_document(
    mapping: EntityMapping,
    row: Any,
    doc: dict[str, Any],
    refs: RefResolver,
) -> Any:
    """
    Copy the keys present in ``doc`` onto ``row``. Missing keys are left
    untouched; embedded items, when present, replace the row's children.

    Raises:
        UnresolvedReferenceError: a reference cannot be mapped to a local row.
    """
    for spec in mapping.fields:
        found, value = get_path(doc, spec.doc)
        if found:
            setattr(row, spec.attr, _value_in(spec, value, refs))

    child_spec = mapping.children
    if child_spec is not None and child_spec.doc in doc:
        children = []
        for position, item in enumerate(doc[child_spec.doc] or []):
            child = child_spec.model(position=position)
            for spec in child_spec.fields:
                found, value = get_path(item, spec.doc)
                if found:
                    setattr(child, spec.attr, _value_in(spec, value, refs))
            children.append(child)
        setattr(row, child_spec.relation, children)
    return row


def natural_key_values(
    mapping: EntityMapping, doc: dict[str, Any]
) -> list[dict[str, Any]]:
    """
    Candidate natural-key filters for ``doc``, one per alternative whose
    values are all present.
    """
    candidates = []
    for key in mapping.natural_keys:
        values = {}
        for doc_key in key:
            found, value = get_path(doc, doc_key)
            if not found or value in (None, ""):
                break
            values[doc_key] = value
        else:
            candidates.append(values)
    return candidates


def unknown_keys(mapping: EntityMapping, data: dict[str, Any]) -> list[str]:
    """Keys in ``data`` that the mapping does not know about."""
    known = {spec.doc.split(".", 1)[0] for spec in mapping.fields}
    known.update({"_id", "createdAt", "updatedAt"})
    if mapping.children is not None:
        known.add(mapping.children.doc)
    return sorted(key for key in data if key not in known)


def check_references(mapping: EntityMapping, doc: dict[str, Any], refs: RefResolver) -> None:
    """
    Resolve every reference in ``doc`` without touching any row.

    Raises:
        UnresolvedReferenceError: on the first reference that cannot be mapped.
    """
    for spec in mapping.refs:
        found, value = get_path(doc, spec.doc)
        if found and value is not None and refs.to_local(spec.target, str(value)) is None:
            raise UnresolvedReferenceError(spec.target, value)
    if mapping.children is None:
        return
    for item in doc.get(mapping.children.doc) or []:
        for spec in mapping.child_refs:
            value = item.get(spec.doc)
            if value is not None and refs.to_local(spec.target, str(value)) is None:
                raise UnresolvedReferenceError(spec.target, value)
