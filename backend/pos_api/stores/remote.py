"""
Remote store adapter (pymongo).

Documents leave this module with string ids and timezone-aware datetimes,
and enter it with ``_id`` and reference fields converted back to ObjectId.
Every driver error, including timeouts, becomes StoreUnavailableError.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

from pos_shared.config.logging import get_logger
from pos_shared.utils.exceptions import StoreUnavailableError, ValidationError

from pos_api.models import utcnow
from pos_api.stores.mapping import EntityMapping, get_mapping, get_path, set_path

logger = get_logger(__name__)

_ID_OPERATORS = ("$in", "$nin")


def to_object_id(value: Any) -> Any:
    """ObjectId for valid hex strings, the value unchanged otherwise."""
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


def from_bson(value: Any) -> Any:
    """Recursively convert ObjectIds to str and naive datetimes to UTC."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value
    if isinstance(value, dict):
        return {key: from_bson(item) for key, item in value.items()}
    if isinstance(value, list):
        return [from_bson(item) for item in value]
    return value


def to_remote_datetime(value: datetime) -> datetime:
    """The server keeps milliseconds; truncate so returned documents match what is stored."""
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def _id_paths(mapping: EntityMapping) -> list[str]:
    return ["_id"] + [spec.doc for spec in mapping.refs]


def document_to_bson(mapping: EntityMapping, doc: dict[str, Any]) -> dict[str, Any]:
    out = dict(doc)
    for key in ("createdAt", "updatedAt"):
        if isinstance(out.get(key), datetime):
            out[key] = to_remote_datetime(out[key])
    for path in _id_paths(mapping):
        found, value = get_path(out, path)
        if found and value is not None:
            if "." in path:
                parent = path.split(".", 1)[0]
                out[parent] = dict(out[parent])
            set_path(out, path, to_object_id(value))
    if mapping.children is not None and mapping.children.doc in out:
        items = []
        for item in out[mapping.children.doc] or []:
            item = dict(item)
            for spec in mapping.child_refs:
                if item.get(spec.doc) is not None:
                    item[spec.doc] = to_object_id(item[spec.doc])
            items.append(item)
        out[mapping.children.doc] = items
    return out


def filter_to_bson(mapping: EntityMapping, flt: dict[str, Any] | None) -> dict[str, Any]:
    if not flt:
        return {}
    id_paths = set(_id_paths(mapping)) | {"id"}
    out: dict[str, Any] = {}
    for key, value in flt.items():
        if key in ("$or", "$and") and isinstance(value, list):
            out[key] = [filter_to_bson(mapping, sub) for sub in value]
        elif key in id_paths:
            target_key = "_id" if key == "id" else key
            out[target_key] = _convert_id_operand(value)
        else:
            out[key] = value
    return out


def _convert_id_operand(value: Any) -> Any:
    if isinstance(value, dict):
        converted = {}
        for op, operand in value.items():
            if op in _ID_OPERATORS and isinstance(operand, (list, tuple)):
                converted[op] = [to_object_id(item) for item in operand]
            else:
                converted[op] = to_object_id(operand)
        return converted
    return to_object_id(value)


def _sort_spec(sort: Any) -> list[tuple[str, int]] | None:
    if not sort:
        return None
    if isinstance(sort, str):
        return [
            (part.lstrip("-"), DESCENDING if part.startswith("-") else ASCENDING)
            for part in sort.split()
        ]
    if isinstance(sort, dict):
        return [(key, DESCENDING if direction in (-1, "desc") else ASCENDING) for key, direction in sort.items()]
    return [(key, DESCENDING if direction in (-1, "desc") else ASCENDING) for key, direction in sort]


class RemoteStore:
    """CRUD over the remote collections using the nested document schema."""

    def __init__(self, database: Database):
        self._db = database

    @property
    def database(self) -> Database:
        return self._db

    @property
    def client(self):
        return self._db.client

    def collection(self, entity: str) -> Collection:
        return self._db[get_mapping(entity).collection]

    @contextmanager
    def guard(self, operation: str) -> Iterator[None]:
        """Convert driver failures into StoreUnavailableError."""
        try:
            yield
        except PyMongoError as exc:
            logger.warning("Remote store call failed", operation=operation, error=str(exc))
            raise StoreUnavailableError(operation, str(exc)) from exc

    def ensure_indexes(self) -> None:
        """Unique indexes backing natural keys that must never duplicate."""
        with self.guard("ensure_indexes"):
            self.collection("orders").create_index("orderNumber", unique=True)
            self.collection("purchases").create_index("purchaseNumber", unique=True)
            self.collection("purchase_orders").create_index("orderNumber", unique=True)
            self.collection("branches").create_index("branchCode", unique=True)
            self.collection("products").create_index([("branch", ASCENDING), ("sku", ASCENDING)])

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def find(
        self,
        entity: str,
        flt: dict[str, Any] | None = None,
        sort: Any = None,
        limit: int | None = None,
        skip: int | None = None,
        session=None,
    ) -> list[dict[str, Any]]:
        mapping = get_mapping(entity)
        with self.guard(f"find {entity}"):
            cursor = self.collection(entity).find(filter_to_bson(mapping, flt), session=session)
            spec = _sort_spec(sort)
            if spec:
                cursor = cursor.sort(spec)
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return [from_bson(doc) for doc in cursor]

    def find_one(
        self,
        entity: str,
        flt: dict[str, Any] | None = None,
        session=None,
    ) -> dict[str, Any] | None:
        mapping = get_mapping(entity)
        with self.guard(f"find_one {entity}"):
            doc = self.collection(entity).find_one(filter_to_bson(mapping, flt), session=session)
        return from_bson(doc) if doc is not None else None

    def find_all(self, entity: str) -> list[dict[str, Any]]:
        return self.find(entity, {}, sort=[("_id", 1)])

    def populate(self, entity: str, doc: dict[str, Any], fields: Iterable[str]) -> dict[str, Any]:
        """Replace reference ids named in ``fields`` with the referenced documents."""
        mapping = get_mapping(entity)
        for field_name in fields or ():
            spec = mapping.spec_for(field_name)
            if spec is None or spec.target is None:
                raise ValidationError(f"Cannot populate '{field_name}' on {entity}", entity=entity)
            value = doc.get(field_name)
            if value is not None:
                doc[field_name] = self.find_one(spec.target, {"_id": value})
        return doc

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def insert(self, entity: str, data: dict[str, Any], session=None) -> dict[str, Any]:
        mapping = get_mapping(entity)
        now = utcnow()
        doc = {key: value for key, value in data.items() if key != "_id"}
        doc.setdefault("createdAt", now)
        doc["updatedAt"] = now
        bson_doc = document_to_bson(mapping, doc)
        with self.guard(f"insert {entity}"):
            result = self.collection(entity).insert_one(bson_doc, session=session)
        bson_doc["_id"] = result.inserted_id
        return from_bson(bson_doc)

    def update(
        self,
        entity: str,
        flt: dict[str, Any],
        patch: dict[str, Any],
        session=None,
    ) -> dict[str, Any] | None:
        """Apply ``patch`` ($set) to the first match; return the updated document."""
        mapping = get_mapping(entity)
        changes = dict(patch.get("$set", patch))
        changes.pop("_id", None)
        changes.pop("createdAt", None)
        changes["updatedAt"] = utcnow()
        with self.guard(f"update {entity}"):
            doc = self.collection(entity).find_one_and_update(
                filter_to_bson(mapping, flt),
                {"$set": document_to_bson(mapping, changes)},
                return_document=ReturnDocument.AFTER,
                session=session,
            )
        return from_bson(doc) if doc is not None else None

    def replace(
        self,
        entity: str,
        remote_id: str,
        doc: dict[str, Any],
        upsert: bool = True,
        session=None,
    ) -> dict[str, Any]:
        """Replace the document stored under ``remote_id`` (upsert by id)."""
        mapping = get_mapping(entity)
        body = {key: value for key, value in doc.items() if key != "_id"}
        body.setdefault("updatedAt", utcnow())
        bson_doc = document_to_bson(mapping, body)
        with self.guard(f"replace {entity}"):
            self.collection(entity).replace_one(
                {"_id": to_object_id(remote_id)}, bson_doc, upsert=upsert, session=session
            )
        bson_doc["_id"] = to_object_id(remote_id)
        return from_bson(bson_doc)

    def delete(self, entity: str, flt: dict[str, Any], session=None) -> dict[str, Any] | None:
        mapping = get_mapping(entity)
        with self.guard(f"delete {entity}"):
            doc = self.collection(entity).find_one_and_delete(
                filter_to_bson(mapping, flt), session=session
            )
        return from_bson(doc) if doc is not None else None

    def delete_by_id(self, entity: str, remote_id: str) -> bool:
        with self.guard(f"delete {entity}"):
            result = self.collection(entity).delete_one({"_id": to_object_id(remote_id)})
        return result.deleted_count > 0

    def ping(self) -> None:
        with self.guard("ping"):
            self._db.client.admin.command("ping")
