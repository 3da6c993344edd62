"""
Local store adapter.

Document-shaped CRUD over the SQLite mirror. Filters use the same
vocabulary as the remote store; the subset that translates to SQL is:

    equality on any mapped field, ``_id``/``id``, reference fields,
    $in, $nin, $ne, $eq, $gt, $gte, $lt, $lte, $or, $and

Anything else raises UnsupportedFilterError instead of being ignored.
"""

from __future__ import annotations

import copy
from typing import Any, Callable, Iterable

from sqlalchemy import ColumnElement, Select, and_, false, not_, or_, select, true
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from pos_shared.config.logging import get_logger
from pos_shared.utils.exceptions import UnsupportedFilterError, ValidationError

from pos_api.models import utcnow
from pos_api.stores import sync_queue
from pos_api.stores.mapping import (
    BOOL,
    DATETIME,
    JSON,
    REF,
    EntityMapping,
    UnresolvedReferenceError,
    apply_document,
    check_references,
    coerce_datetime,
    get_mapping,
    get_path,
    local_marker,
    natural_key_values,
    parse_local_marker,
    set_path,
    to_document,
    unknown_keys,
)

logger = get_logger(__name__)

# Document fields no write may set below zero
NON_NEGATIVE: dict[str, tuple[str, ...]] = {"products": ("stock",)}

_UNRESOLVED = object()

_COMPARISONS: dict[str, Callable[[Any, Any], ColumnElement]] = {
    "$gt": lambda column, value: column > value,
    "$gte": lambda column, value: column >= value,
    "$lt": lambda column, value: column < value,
    "$lte": lambda column, value: column <= value,
}


# =============================================================================
# Reference resolution
# =============================================================================


class LocalRefs:
    """
    Resolves references between local ids and external ids.

    With ``strict=True`` a referenced row without a remote id raises
    UnresolvedReferenceError instead of rendering ``local-<n>``; the push
    phase uses this to defer children of unmirrored parents.
    """

    def __init__(self, db: Session, strict: bool = False):
        self._db = db
        self._strict = strict

    def to_external(self, target: str, local_id: int) -> str:
        model = get_mapping(target).model
        remote_id = self._db.scalar(select(model.remote_id).where(model.id == local_id))
        if remote_id:
            return remote_id
        if self._strict:
            raise UnresolvedReferenceError(target, local_marker(local_id))
        return local_marker(local_id)

    def to_local(self, target: str, external: str) -> int | None:
        model = get_mapping(target).model
        local_id = parse_local_marker(external)
        if local_id is not None:
            return self._db.scalar(select(model.id).where(model.id == local_id))
        if isinstance(external, int) or (isinstance(external, str) and external.isdigit()):
            return self._db.scalar(select(model.id).where(model.id == int(external)))
        return self._db.scalar(select(model.id).where(model.remote_id == str(external)))


# =============================================================================
# Filter translation
# =============================================================================


def compile_filter(
    mapping: EntityMapping,
    flt: dict[str, Any] | None,
    refs: LocalRefs,
) -> ColumnElement[bool]:
    """Translate a document filter into a SQL WHERE clause."""
    if not flt:
        return true()
    if not isinstance(flt, dict):
        raise UnsupportedFilterError(mapping.name, flt)
    clauses = [_compile_key(mapping, key, value, refs) for key, value in flt.items()]
    return and_(*clauses)


def _compile_key(mapping: EntityMapping, key: str, value: Any, refs: LocalRefs) -> ColumnElement:
    model = mapping.model

    if key in ("$or", "$and"):
        if not isinstance(value, list) or not value:
            raise UnsupportedFilterError(mapping.name, {key: value})
        parts = [compile_filter(mapping, sub, refs) for sub in value]
        return or_(*parts) if key == "$or" else and_(*parts)
    if key.startswith("$"):
        raise UnsupportedFilterError(mapping.name, {key: value})

    if key in ("_id", "id"):
        column = model.id
        convert = lambda v: _id_to_local(mapping, v, refs)  # noqa: E731
    elif key in ("createdAt", "updatedAt"):
        column = model.created_at if key == "createdAt" else model.updated_at
        convert = coerce_datetime
    else:
        spec = mapping.spec_for(key)
        if spec is None or spec.kind == JSON:
            raise UnsupportedFilterError(mapping.name, {key: value})
        column = getattr(model, spec.attr)
        convert = _converter(spec.kind, spec.target, refs)

    if isinstance(value, dict):
        if not value or not all(isinstance(op, str) and op.startswith("$") for op in value):
            raise UnsupportedFilterError(mapping.name, {key: value})
        return and_(*[_compile_op(mapping, column, op, operand, convert) for op, operand in value.items()])
    return _compile_op(mapping, column, "$eq", value, convert)


def _converter(kind: str, target: str | None, refs: LocalRefs) -> Callable[[Any], Any]:
    if kind == REF:
        def convert_ref(value: Any) -> Any:
            if value is None:
                return None
            local_id = refs.to_local(target, str(value))
            return _UNRESOLVED if local_id is None else local_id
        return convert_ref
    if kind == DATETIME:
        return coerce_datetime
    if kind == BOOL:
        return lambda value: None if value is None else bool(value)
    return lambda value: value


def _id_to_local(mapping: EntityMapping, value: Any, refs: LocalRefs) -> Any:
    if value is None:
        return _UNRESOLVED
    if isinstance(value, int):
        return value
    local_id = refs.to_local(mapping.name, str(value))
    return _UNRESOLVED if local_id is None else local_id


def _compile_op(
    mapping: EntityMapping,
    column: Any,
    op: str,
    operand: Any,
    convert: Callable[[Any], Any],
) -> ColumnElement:
    if op == "$eq":
        value = convert(operand)
        if value is _UNRESOLVED:
            return false()
        return column.is_(None) if value is None else column == value

    if op == "$ne":
        value = convert(operand)
        if value is _UNRESOLVED:
            return true()
        if value is None:
            return column.is_not(None)
        return or_(column != value, column.is_(None))

    if op in ("$in", "$nin"):
        if not isinstance(operand, (list, tuple, set)):
            raise UnsupportedFilterError(mapping.name, {op: operand})
        values = [convert(item) for item in operand]
        wants_null = None in values
        concrete = [v for v in values if v is not None and v is not _UNRESOLVED]
        matched = column.in_(concrete) if concrete else false()
        if wants_null:
            matched = or_(matched, column.is_(None))
        if op == "$in":
            return matched
        if wants_null:
            return not_(matched)
        return or_(not_(matched), column.is_(None))

    if op in _COMPARISONS:
        value = convert(operand)
        if value is None or value is _UNRESOLVED:
            raise UnsupportedFilterError(mapping.name, {op: operand})
        return _COMPARISONS[op](column, value)

    raise UnsupportedFilterError(mapping.name, {op: operand})


def apply_sort(mapping: EntityMapping, query: Select, sort: Any) -> Select:
    """
    Apply ``sort`` given as "name -price", a list of (field, 1|-1) pairs
    or a dict {field: 1|-1}.
    """
    if not sort:
        return query.order_by(mapping.model.id)
    if isinstance(sort, str):
        pairs = [(part.lstrip("-"), -1 if part.startswith("-") else 1) for part in sort.split()]
    elif isinstance(sort, dict):
        pairs = list(sort.items())
    else:
        pairs = [tuple(pair) for pair in sort]

    model = mapping.model
    for doc_key, direction in pairs:
        if doc_key in ("_id", "id"):
            column = model.id
        elif doc_key in ("createdAt", "updatedAt"):
            column = model.created_at if doc_key == "createdAt" else model.updated_at
        else:
            spec = mapping.spec_for(doc_key)
            if spec is None or spec.kind == JSON:
                raise UnsupportedFilterError(mapping.name, {"sort": doc_key})
            column = getattr(model, spec.attr)
        query = query.order_by(column.desc() if direction in (-1, "desc") else column.asc())
    return query


# =============================================================================
# Session-level helpers (shared with the sync service and order stores)
# =============================================================================


def select_rows(
    db: Session,
    mapping: EntityMapping,
    flt: dict[str, Any] | None = None,
    sort: Any = None,
    limit: int | None = None,
    skip: int | None = None,
) -> list[Any]:
    refs = LocalRefs(db)
    query = select(mapping.model).where(compile_filter(mapping, flt, refs))
    query = apply_sort(mapping, query, sort)
    if skip:
        query = query.offset(skip)
    if limit:
        query = query.limit(limit)
    return list(db.scalars(query))


def row_document(db: Session, mapping: EntityMapping, row: Any, strict: bool = False) -> dict[str, Any]:
    return to_document(mapping, row, LocalRefs(db, strict=strict))


def find_adoptable_row(db: Session, mapping: EntityMapping, doc: dict[str, Any]) -> Any | None:
    """Un-mirrored local row with the same natural key as ``doc``."""
    refs = LocalRefs(db)
    for candidate in natural_key_values(mapping, doc):
        clause = compile_filter(mapping, candidate, refs)
        row = db.scalar(
            select(mapping.model).where(clause, mapping.model.remote_id.is_(None)).limit(1)
        )
        if row is not None:
            return row
    return None


def upsert_remote_document(db: Session, mapping: EntityMapping, doc: dict[str, Any]) -> tuple[Any, bool]:
    """
    Write a remote document into the local mirror keyed on its remote id.

    Returns (row, created). The row ends up ``synced`` with ``updated_at``
    taken from the document.

    Raises:
        UnresolvedReferenceError: a referenced parent is not mirrored locally.
            Nothing has been modified in that case.
    """
    refs = LocalRefs(db)
    remote_id = str(doc["_id"])
    check_references(mapping, doc, refs)

    row = db.scalar(select(mapping.model).where(mapping.model.remote_id == remote_id))
    if row is None:
        row = find_adoptable_row(db, mapping, doc)
    created = row is None
    if created:
        row = mapping.model()
        db.add(row)

    apply_document(mapping, row, doc, refs)
    row.mark_synced(remote_id)
    created_at = coerce_datetime(doc.get("createdAt"))
    if created_at is not None:
        row.created_at = created_at
    row.stamp(coerce_datetime(doc.get("updatedAt")) or utcnow())
    db.flush()
    sync_queue.complete_upserts(db, mapping.name, row.id)
    return row, created


# =============================================================================
# Adapter
# =============================================================================


class LocalStore:
    """Document-shaped CRUD over the local mirror. One short transaction per call."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> sessionmaker:
        return self._session_factory

    def find(
        self,
        entity: str,
        flt: dict[str, Any] | None = None,
        sort: Any = None,
        limit: int | None = None,
        skip: int | None = None,
        populate: Iterable[str] = (),
    ) -> list[dict[str, Any]]:
        mapping = get_mapping(entity)
        with self._session_factory() as db:
            rows = select_rows(db, mapping, flt, sort, limit, skip)
            docs = [row_document(db, mapping, row) for row in rows]
            for doc in docs:
                self._populate(db, mapping, doc, populate)
            return docs

    def find_one(
        self,
        entity: str,
        flt: dict[str, Any] | None = None,
        populate: Iterable[str] = (),
    ) -> dict[str, Any] | None:
        mapping = get_mapping(entity)
        with self._session_factory() as db:
            rows = select_rows(db, mapping, flt, limit=1)
            if not rows:
                return None
            doc = row_document(db, mapping, rows[0])
            self._populate(db, mapping, doc, populate)
            return doc

    def create(
        self,
        entity: str,
        data: dict[str, Any],
        remote_doc: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Insert a row. With ``remote_doc`` the row mirrors that document and
        is synced; otherwise it is queued for the next push.
        """
        mapping = get_mapping(entity)
        self.check_write(entity, data)
        try:
            with self._session_factory() as db, db.begin():
                if remote_doc is not None:
                    row, _ = upsert_remote_document(db, mapping, remote_doc)
                else:
                    row = mapping.model()
                    apply_document(mapping, row, _strip_meta(data), LocalRefs(db))
                    row.synced = False
                    db.add(row)
                    db.flush()
                    sync_queue.queue_upsert(db, mapping.name, row.id)
                doc = row_document(db, mapping, row)
        except UnresolvedReferenceError as exc:
            raise ValidationError(str(exc), entity=entity) from exc
        except IntegrityError as exc:
            raise ValidationError(f"Could not store {entity}: {exc.orig}", entity=entity) from exc
        return doc

    def update(self, entity: str, flt: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any] | None:
        """Patch the first matching row and queue it for push. None if no match."""
        mapping = get_mapping(entity)
        patch = _unwrap_set(patch)
        self.check_write(entity, patch)
        try:
            with self._session_factory() as db, db.begin():
                rows = select_rows(db, mapping, flt, limit=1)
                if not rows:
                    return None
                row = rows[0]
                apply_document(mapping, row, _strip_meta(patch), LocalRefs(db))
                row.mark_dirty()
                sync_queue.queue_upsert(db, mapping.name, row.id)
                db.flush()
                doc = row_document(db, mapping, row)
        except UnresolvedReferenceError as exc:
            raise ValidationError(str(exc), entity=entity) from exc
        except IntegrityError as exc:
            raise ValidationError(f"Could not store {entity}: {exc.orig}", entity=entity) from exc
        return doc

    def mirror(self, entity: str, remote_doc: dict[str, Any]) -> dict[str, Any] | None:
        """
        Mirror a document the remote store just wrote. Returns None (and
        logs) when its references cannot be resolved yet; the next pull
        repairs it.
        """
        mapping = get_mapping(entity)
        try:
            with self._session_factory() as db, db.begin():
                row, _ = upsert_remote_document(db, mapping, remote_doc)
                return row_document(db, mapping, row)
        except UnresolvedReferenceError as exc:
            logger.warning(
                "Local mirror deferred",
                entity=entity,
                remote_id=str(remote_doc.get("_id")),
                error=str(exc),
            )
            return None

    def delete(
        self,
        entity: str,
        flt: dict[str, Any],
        queue_remote_delete: bool = True,
    ) -> dict[str, Any] | None:
        """
        Delete the first matching row. A mirrored row deleted while the
        remote was not reachable leaves a pending remote delete behind.
        """
        mapping = get_mapping(entity)
        with self._session_factory() as db, db.begin():
            rows = select_rows(db, mapping, flt, limit=1)
            if not rows:
                return None
            row = rows[0]
            doc = row_document(db, mapping, row)
            if row.remote_id and queue_remote_delete:
                sync_queue.queue_delete(db, mapping.name, row.id, row.remote_id)
            else:
                sync_queue.complete_upserts(db, mapping.name, row.id)
            db.delete(row)
        return doc

    def delete_by_remote_id(self, entity: str, remote_id: str) -> bool:
        mapping = get_mapping(entity)
        with self._session_factory() as db, db.begin():
            row = db.scalar(select(mapping.model).where(mapping.model.remote_id == remote_id))
            if row is None:
                return False
            sync_queue.complete_upserts(db, mapping.name, row.id)
            db.delete(row)
        return True

    def externalize(self, entity: str, data: dict[str, Any]) -> dict[str, Any]:
        """
        Copy of ``data`` with every reference rewritten to a remote id.

        Raises:
            UnresolvedReferenceError: a referenced row is unknown or not mirrored yet.
        """
        mapping = get_mapping(entity)
        out = copy.deepcopy(data)
        with self._session_factory() as db:
            refs = LocalRefs(db, strict=True)

            def remote_ref(target: str, value: Any) -> str:
                local_id = refs.to_local(target, str(value))
                if local_id is None:
                    raise UnresolvedReferenceError(target, value)
                return refs.to_external(target, local_id)

            for spec in mapping.refs:
                found, value = get_path(out, spec.doc)
                if found and value is not None:
                    set_path(out, spec.doc, remote_ref(spec.target, value))
            if mapping.children is not None:
                for item in out.get(mapping.children.doc) or []:
                    for spec in mapping.child_refs:
                        if item.get(spec.doc) is not None:
                            item[spec.doc] = remote_ref(spec.target, item[spec.doc])
        return out

    # -------------------------------------------------------------------------

    def _populate(self, db: Session, mapping: EntityMapping, doc: dict[str, Any], populate: Iterable[str]) -> None:
        for field_name in populate or ():
            spec = mapping.spec_for(field_name)
            if spec is None or spec.kind != REF:
                raise ValidationError(
                    f"Cannot populate '{field_name}' on {mapping.name}", entity=mapping.name
                )
            value = doc.get(field_name)
            if value is None:
                continue
            target = get_mapping(spec.target)
            rows = select_rows(db, target, {"_id": value}, limit=1)
            doc[field_name] = row_document(db, target, rows[0]) if rows else None

    def check_write(self, entity: str, data: dict[str, Any]) -> None:
        """
        Reject a create or patch before it reaches either store.

        Raises:
            ValidationError: unknown fields, or a negative value for a
                field that must stay non-negative (product stock).
        """
        mapping = get_mapping(entity)
        data = _unwrap_set(data)
        self._reject_unknown(mapping, data)
        for key in NON_NEGATIVE.get(mapping.name, ()):
            value = data.get(key)
            if value is None:
                continue
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise ValidationError(f"{mapping.name}.{key} must be a number", entity=mapping.name) from None
            if number < 0:
                raise ValidationError(f"{mapping.name}.{key} cannot be negative", entity=mapping.name, value=value)

    @staticmethod
    def _reject_unknown(mapping: EntityMapping, data: dict[str, Any]) -> None:
        unknown = unknown_keys(mapping, data)
        if unknown:
            raise ValidationError(
                f"Unknown fields for {mapping.name}: {', '.join(unknown)}",
                entity=mapping.name,
            )


def _strip_meta(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k not in ("_id", "createdAt", "updatedAt")}


def _unwrap_set(patch: dict[str, Any]) -> dict[str, Any]:
    if set(patch) == {"$set"}:
        return dict(patch["$set"])
    if any(key.startswith("$") for key in patch):
        raise ValidationError(f"Unsupported update operators: {sorted(patch)}")
    return patch
