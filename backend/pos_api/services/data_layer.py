"""
Unified data layer.

One find/find_one/create/update/delete contract per entity regardless of
the backing store:

- remote first when the selector says the remote engine is active
- any StoreUnavailableError degrades that single call to the local store
- every successful remote write is mirrored locally; local-only writes are
  marked unsynced and queued for the next push

A write is never lost: if the remote write fails, the local write still
happens. Remote failures never change global engine state; that is the
connectivity monitor's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy.exc import SQLAlchemyError

from pos_shared.config.constants import Engines, LOCAL_ID_PREFIX, Limits
from pos_shared.config.logging import get_logger
from pos_shared.utils.exceptions import NotFoundError, StoreUnavailableError, ValidationError

from pos_api.stores.local import LocalStore
from pos_api.stores.mapping import REF, UnresolvedReferenceError, get_mapping
from pos_api.stores.remote import RemoteStore
from pos_api.stores.selector import EngineSelector

logger = get_logger(__name__)


@dataclass
class FindOptions:
    sort: Any = None
    limit: int | None = None
    skip: int | None = None
    populate: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if isinstance(self.populate, str):
            self.populate = tuple(self.populate.split())
        else:
            self.populate = tuple(self.populate or ())
        if self.limit is not None:
            self.limit = min(max(1, int(self.limit)), Limits.MAX_PAGE_SIZE)
        if self.skip is not None:
            self.skip = max(0, int(self.skip))

    @classmethod
    def parse(cls, options: "FindOptions | dict[str, Any] | None") -> "FindOptions":
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        unknown = set(options) - {"sort", "limit", "skip", "populate"}
        if unknown:
            raise ValidationError(f"Unknown find options: {', '.join(sorted(unknown))}")
        return cls(**options)


def mentions_local_ids(value: Any) -> bool:
    """True if a filter refers to rows only the local store knows."""
    if isinstance(value, str):
        return value.startswith(LOCAL_ID_PREFIX)
    if isinstance(value, dict):
        return any(mentions_local_ids(item) for item in value.values())
    if isinstance(value, (list, tuple, set)):
        return any(mentions_local_ids(item) for item in value)
    return False


class UnifiedDataLayer:
    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore | None,
        selector: EngineSelector,
    ):
        self._local = local
        self._remote = remote
        self._selector = selector

    @property
    def local(self) -> LocalStore:
        return self._local

    @property
    def remote(self) -> RemoteStore | None:
        return self._remote

    def active_engine(self) -> str:
        if self._remote is None:
            return Engines.SQLITE
        return self._selector.active_engine()

    def _use_remote(self, flt: Any = None) -> bool:
        return self.active_engine() == Engines.MONGO and not mentions_local_ids(flt)

    def repository(self, entity: str) -> "EntityRepository":
        get_mapping(entity)
        return EntityRepository(self, entity)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def find(
        self,
        entity: str,
        flt: dict[str, Any] | None = None,
        options: FindOptions | dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        get_mapping(entity)
        opts = FindOptions.parse(options)
        if self._use_remote(flt):
            try:
                docs = self._remote.find(entity, flt, opts.sort, opts.limit, opts.skip)
                return [self._remote.populate(entity, doc, opts.populate) for doc in docs]
            except StoreUnavailableError as exc:
                self._log_fallback("find", entity, exc)
        return self._local.find(entity, flt, opts.sort, opts.limit, opts.skip, opts.populate)

    def find_one(
        self,
        entity: str,
        flt: dict[str, Any] | None = None,
        options: FindOptions | dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """
        First match or None. A remote miss still consults the local store,
        which may hold rows that have not been pushed yet.
        """
        get_mapping(entity)
        opts = FindOptions.parse(options)
        if self._use_remote(flt):
            try:
                doc = self._remote.find_one(entity, flt)
                if doc is not None:
                    return self._remote.populate(entity, doc, opts.populate)
            except StoreUnavailableError as exc:
                self._log_fallback("find_one", entity, exc)
        return self._local.find_one(entity, flt, opts.populate)

    def with_related(self, entity: str, doc: dict[str, Any], field_name: str) -> dict[str, Any] | None:
        """Referenced document for ``field_name``, looked up through the active engine."""
        spec = get_mapping(entity).spec_for(field_name)
        if spec is None or spec.kind != REF:
            raise ValidationError(f"'{field_name}' is not a reference of {entity}", entity=entity)
        value = doc.get(field_name)
        if value is None:
            return None
        if isinstance(value, dict):
            return value
        return self.find_one(spec.target, {"_id": value})

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create(self, entity: str, data: dict[str, Any]) -> dict[str, Any]:
        """
        Raises:
            ValidationError: unknown fields or a negative stock, whichever store is active.
        """
        self._local.check_write(entity, data)
        if self._use_remote():
            remote_data = self._externalize(entity, data)
            if remote_data is not None:
                try:
                    doc = self._remote.insert(entity, remote_data)
                except StoreUnavailableError as exc:
                    self._log_fallback("create", entity, exc)
                else:
                    self._mirror(entity, doc)
                    return doc
        return self._local.create(entity, data)

    def update(self, entity: str, flt: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
        """
        Raises:
            NotFoundError: nothing matched in either store.
            ValidationError: unknown fields or a negative stock.
        """
        self._local.check_write(entity, patch)
        if self._use_remote(flt):
            remote_patch = self._externalize(entity, patch.get("$set", patch))
            if remote_patch is not None:
                try:
                    doc = self._remote.update(entity, flt, remote_patch)
                except StoreUnavailableError as exc:
                    self._log_fallback("update", entity, exc)
                else:
                    if doc is not None:
                        self._mirror(entity, doc)
                        return doc
        doc = self._local.update(entity, flt, patch)
        if doc is None:
            raise NotFoundError(entity, _describe(flt))
        return doc

    def delete(self, entity: str, flt: dict[str, Any]) -> dict[str, Any]:
        """
        Raises:
            NotFoundError: nothing matched in either store.
        """
        get_mapping(entity)
        if self._use_remote(flt):
            try:
                doc = self._remote.delete(entity, flt)
            except StoreUnavailableError as exc:
                self._log_fallback("delete", entity, exc)
            else:
                if doc is not None:
                    self._local.delete_by_remote_id(entity, doc["_id"])
                    return doc
        doc = self._local.delete(entity, flt, queue_remote_delete=True)
        if doc is None:
            raise NotFoundError(entity, _describe(flt))
        return doc

    # -------------------------------------------------------------------------

    def _externalize(self, entity: str, data: dict[str, Any]) -> dict[str, Any] | None:
        try:
            return self._local.externalize(entity, data)
        except UnresolvedReferenceError as exc:
            logger.info(
                "References not mirrored yet, writing locally",
                entity=entity,
                target=exc.target,
            )
            return None

    def _mirror(self, entity: str, doc: dict[str, Any]) -> None:
        try:
            self._local.mirror(entity, doc)
        except SQLAlchemyError as exc:
            # The next pull rewrites the row from the remote document
            logger.error(
                "Local mirror write failed",
                entity=entity,
                remote_id=doc.get("_id"),
                error=str(exc),
            )

    @staticmethod
    def _log_fallback(operation: str, entity: str, exc: StoreUnavailableError) -> None:
        logger.warning(
            "Remote store unavailable, using local store",
            operation=operation,
            entity=entity,
            reason=exc.reason,
        )


def _describe(flt: dict[str, Any] | None) -> str | None:
    if not flt:
        return None
    if set(flt) == {"_id"}:
        return str(flt["_id"])
    return str(flt)


class EntityRepository:
    """Per-entity view of the data layer."""

    def __init__(self, layer: UnifiedDataLayer, entity: str):
        self._layer = layer
        self.entity = entity

    def find(self, flt: dict[str, Any] | None = None, **options: Any) -> list[dict[str, Any]]:
        return self._layer.find(self.entity, flt, options or None)

    def find_one(self, flt: dict[str, Any] | None = None, **options: Any) -> dict[str, Any] | None:
        return self._layer.find_one(self.entity, flt, options or None)

    def get(self, entity_id: str) -> dict[str, Any]:
        doc = self.find_one({"_id": entity_id})
        if doc is None:
            raise NotFoundError(self.entity, entity_id)
        return doc

    def create(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._layer.create(self.entity, data)

    def update(self, entity_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        return self._layer.update(self.entity, {"_id": entity_id}, patch)

    def delete(self, entity_id: str) -> dict[str, Any]:
        return self._layer.delete(self.entity, {"_id": entity_id})

    def with_related(self, doc: dict[str, Any], *fields: str) -> dict[str, Any]:
        """Copy of ``doc`` with the named references replaced by their documents."""
        out = dict(doc)
        for field_name in fields:
            out[field_name] = self._layer.with_related(self.entity, doc, field_name)
        return out
