from __future__ import annotations

import asyncio
import copy
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from app.core.config import Settings

logger = logging.getLogger(__name__)

VERSION_FIELD = "_version"


class DocumentStoreError(Exception):
    pass


class DocumentNotFoundError(DocumentStoreError):
    pass


class VersionConflictError(DocumentStoreError):
    pass


@dataclass(frozen=True)
class StoreChange:
    collection: str
    doc_id: str
    kind: str
    document: dict[str, Any] | None
    version: int


ChangeCallback = Callable[[StoreChange], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class DocumentStore(ABC):
    """Async key-value store with equality queries and per-collection change feeds.

    Every write stamps the stored document with an increasing ``_version``.
    ``update`` accepts ``expected_version`` so callers can reject writes that
    raced with another writer instead of silently overwriting them.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, collection: str, doc_id: str, document: Mapping[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    async def update(
        self,
        collection: str,
        doc_id: str,
        partial: Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def find(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        raise NotImplementedError


class InMemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._version = 0
        self._next_subscription_id = 1
        self._subscribers: dict[str, dict[int, tuple[ChangeCallback, ErrorCallback]]] = {}
        self._connected = True

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        self._assert_connected()
        document = self._collections.get(collection, {}).get(doc_id)
        if document is None:
            return None
        return copy.deepcopy(document)

    async def set(self, collection: str, doc_id: str, document: Mapping[str, Any]) -> dict[str, Any]:
        self._assert_connected()
        stored = copy.deepcopy(dict(document))
        stored["_id"] = doc_id
        stored[VERSION_FIELD] = self._next_version()
        self._collections.setdefault(collection, {})[doc_id] = stored
        self._publish(collection, doc_id, "set", stored)
        return copy.deepcopy(stored)

    async def update(
        self,
        collection: str,
        doc_id: str,
        partial: Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        self._assert_connected()
        existing = self._collections.get(collection, {}).get(doc_id)
        if existing is None:
            raise DocumentNotFoundError(f"{collection}/{doc_id} does not exist.")
        if expected_version is not None and existing.get(VERSION_FIELD) != expected_version:
            raise VersionConflictError(
                f"{collection}/{doc_id} is at version {existing.get(VERSION_FIELD)}, "
                f"expected {expected_version}.",
            )
        for key, value in partial.items():
            if key in {"_id", VERSION_FIELD}:
                continue
            existing[key] = copy.deepcopy(value)
        existing[VERSION_FIELD] = self._next_version()
        self._publish(collection, doc_id, "update", existing)
        return copy.deepcopy(existing)

    async def delete(self, collection: str, doc_id: str) -> bool:
        self._assert_connected()
        removed = self._collections.get(collection, {}).pop(doc_id, None)
        if removed is None:
            return False
        self._publish(collection, doc_id, "delete", None)
        return True

    async def find(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        self._assert_connected()
        matches: list[dict[str, Any]] = []
        for document in self._collections.get(collection, {}).values():
            if not _matches_filters(document, filters):
                continue
            matches.append(copy.deepcopy(document))
        return matches

    def subscribe(
        self,
        collection: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        subscription_id = self._next_subscription_id
        self._next_subscription_id += 1
        if not self._connected:
            on_error(DocumentStoreError("Document store connection is closed."))
            return lambda: None
        self._subscribers.setdefault(collection, {})[subscription_id] = (on_change, on_error)

        def unsubscribe() -> None:
            self._subscribers.get(collection, {}).pop(subscription_id, None)

        return unsubscribe

    def disconnect(self, error: Exception | None = None) -> None:
        """Simulate a dropped connection: every live subscription receives ``error``."""
        self._connected = False
        reason = error or DocumentStoreError("Document store connection was lost.")
        subscribers = [
            callbacks
            for collection_subscribers in self._subscribers.values()
            for callbacks in collection_subscribers.values()
        ]
        self._subscribers.clear()
        for _, on_error in subscribers:
            on_error(reason)

    def reconnect(self) -> None:
        self._connected = True

    def _assert_connected(self) -> None:
        if not self._connected:
            raise DocumentStoreError("Document store connection is closed.")

    def _next_version(self) -> int:
        self._version += 1
        return self._version

    def _publish(
        self,
        collection: str,
        doc_id: str,
        kind: str,
        document: dict[str, Any] | None,
    ) -> None:
        subscribers = list(self._subscribers.get(collection, {}).values())
        if not subscribers:
            return
        version = int(document[VERSION_FIELD]) if document else self._next_version()
        for on_change, _ in subscribers:
            change = StoreChange(
                collection=collection,
                doc_id=doc_id,
                kind=kind,
                document=copy.deepcopy(document) if document else None,
                version=version,
            )
            try:
                on_change(change)
            except Exception:
                logger.exception(
                    "Store subscriber failed collection=%s doc_id=%s kind=%s",
                    collection,
                    doc_id,
                    kind,
                )


class MongoDocumentStore(DocumentStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        self._db = self._client[db_name]
        self._db["action_items"].create_index([("assignee_id", 1)])
        self._db["action_items"].create_index([("meeting_id", 1)])
        self._db["notifications"].create_index([("user_id", 1), ("created_at", -1)])

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._db[collection].find_one, {"_id": doc_id})

    async def set(self, collection: str, doc_id: str, document: Mapping[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self._set_sync, collection, doc_id, document)

    async def update(
        self,
        collection: str,
        doc_id: str,
        partial: Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        return await asyncio.to_thread(
            self._update_sync,
            collection,
            doc_id,
            partial,
            expected_version,
        )

    async def delete(self, collection: str, doc_id: str) -> bool:
        result = await asyncio.to_thread(self._db[collection].delete_one, {"_id": doc_id})
        return result.deleted_count > 0

    async def find(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        query = dict(filters or {})
        return await asyncio.to_thread(lambda: list(self._db[collection].find(query)))

    def subscribe(
        self,
        collection: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        from pymongo.errors import PyMongoError

        loop = asyncio.get_running_loop()
        stopped = threading.Event()

        def _deliver(callback: Callable[..., None], *args: Any) -> None:
            if stopped.is_set() or loop.is_closed():
                return
            loop.call_soon_threadsafe(callback, *args)

        def _watch() -> None:
            try:
                with self._db[collection].watch(
                    full_document="updateLookup",
                    max_await_time_ms=500,
                ) as stream:
                    while not stopped.is_set():
                        event = stream.try_next()
                        if event is None:
                            continue
                        change = _change_from_stream_event(collection, event)
                        if change:
                            _deliver(on_change, change)
            except PyMongoError as exc:
                logger.warning("Mongo change stream failed collection=%s error=%s", collection, exc)
                _deliver(on_error, exc)

        watcher = loop.create_task(asyncio.to_thread(_watch))

        def unsubscribe() -> None:
            stopped.set()
            watcher.cancel()

        return unsubscribe

    def _set_sync(self, collection: str, doc_id: str, document: Mapping[str, Any]) -> dict[str, Any]:
        from pymongo import ReturnDocument

        payload = {
            key: value
            for key, value in document.items()
            if key not in {"_id", VERSION_FIELD}
        }
        existing = self._db[collection].find_one({"_id": doc_id})
        update: dict[str, Any] = {"$set": payload, "$inc": {VERSION_FIELD: 1}}
        if existing:
            stale_fields = {
                key: ""
                for key in existing
                if key not in payload and key not in {"_id", VERSION_FIELD}
            }
            if stale_fields:
                update["$unset"] = stale_fields
        return self._db[collection].find_one_and_update(
            {"_id": doc_id},
            update,
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    def _update_sync(
        self,
        collection: str,
        doc_id: str,
        partial: Mapping[str, Any],
        expected_version: int | None,
    ) -> dict[str, Any]:
        from pymongo import ReturnDocument

        query: dict[str, Any] = {"_id": doc_id}
        if expected_version is not None:
            query[VERSION_FIELD] = expected_version
        payload = {
            key: value
            for key, value in partial.items()
            if key not in {"_id", VERSION_FIELD}
        }
        updated = self._db[collection].find_one_and_update(
            query,
            {"$set": payload, "$inc": {VERSION_FIELD: 1}},
            return_document=ReturnDocument.AFTER,
        )
        if updated:
            return updated
        if self._db[collection].find_one({"_id": doc_id}, projection={"_id": 1}) is None:
            raise DocumentNotFoundError(f"{collection}/{doc_id} does not exist.")
        raise VersionConflictError(f"{collection}/{doc_id} changed since version {expected_version}.")


def create_document_store(settings: Settings) -> DocumentStore:
    return _create_document_store_cached(
        store_name=settings.document_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_document_store_cached(
    *,
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_connect_timeout_ms: int,
) -> DocumentStore:
    if store_name == "mongodb":
        return MongoDocumentStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    if store_name != "memory":
        logger.warning("Unknown document store=%s, falling back to memory", store_name)
    return InMemoryDocumentStore()


def clear_document_store_cache() -> None:
    _create_document_store_cached.cache_clear()


def _matches_filters(document: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
    if not filters:
        return True
    return all(document.get(field) == expected for field, expected in filters.items())


def _change_from_stream_event(collection: str, event: Mapping[str, Any]) -> StoreChange | None:
    operation = event.get("operationType")
    document_key = event.get("documentKey") or {}
    doc_id = str(document_key.get("_id", ""))
    if not doc_id:
        return None
    if operation == "delete":
        return StoreChange(collection=collection, doc_id=doc_id, kind="delete", document=None, version=0)
    if operation not in {"insert", "replace", "update"}:
        return None
    document = event.get("fullDocument")
    if not isinstance(document, Mapping):
        return None
    kind = "update" if operation == "update" else "set"
    return StoreChange(
        collection=collection,
        doc_id=doc_id,
        kind=kind,
        document=dict(document),
        version=int(document.get(VERSION_FIELD, 0)),
    )
