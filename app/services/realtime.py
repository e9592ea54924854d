"""Live views over the document store.

A view is keyed by ``(entity_type, filter_key)``. The first subscriber of a
key opens one store subscription for it; every later subscriber shares that
view. Each callback receives the full snapshot first and then one delta per
committed change, in commit order. Store failures are delivered as ``error``
events and leave the key degraded until someone subscribes again.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from functools import partial
from typing import Any

from app.services.action_item_models import ActionItem, Notification
from app.services.assignment_engine import ACTION_ITEMS_COLLECTION, sort_action_items
from app.services.document_store import (
    VERSION_FIELD,
    DocumentStore,
    DocumentStoreError,
    StoreChange,
    Unsubscribe,
)
from app.services.notification_dispatcher import NOTIFICATIONS_COLLECTION

logger = logging.getLogger(__name__)


class EntityType(StrEnum):
    tasks = "tasks"
    notifications = "notifications"


class EventKind(StrEnum):
    snapshot = "snapshot"
    delta = "delta"
    error = "error"


class UnknownEntityTypeError(ValueError):
    pass


@dataclass(frozen=True)
class SubscriptionKey:
    entity_type: EntityType
    filter_key: str

    @classmethod
    def parse(cls, entity_type: str, filter_key: str) -> SubscriptionKey:
        try:
            resolved_type = EntityType(entity_type.strip().lower())
        except ValueError as exc:
            raise UnknownEntityTypeError(f"Unknown entity type: {entity_type!r}.") from exc
        normalized_filter = filter_key.strip()
        if not normalized_filter:
            raise ValueError("Subscription filter key is required.")
        return cls(entity_type=resolved_type, filter_key=normalized_filter)


@dataclass(frozen=True)
class SubscriptionEvent:
    key: SubscriptionKey
    kind: EventKind
    items: tuple[Any, ...] = ()
    change: StoreChange | None = None
    error: str | None = None


SubscriptionCallback = Callable[[SubscriptionEvent], None]


@dataclass(frozen=True)
class _EntitySource:
    collection: str
    filter_field: str
    build_view: Callable[[list[dict[str, Any]]], tuple[Any, ...]]


def _task_view(documents: list[dict[str, Any]]) -> tuple[ActionItem, ...]:
    return tuple(sort_action_items(ActionItem.from_document(document) for document in documents))


def _notification_view(documents: list[dict[str, Any]]) -> tuple[Notification, ...]:
    notifications = [Notification.from_document(document) for document in documents]
    notifications.sort(key=lambda notification: (notification.created_at, notification.id), reverse=True)
    return tuple(notifications)


_ENTITY_SOURCES: dict[EntityType, _EntitySource] = {
    EntityType.tasks: _EntitySource(ACTION_ITEMS_COLLECTION, "assignee_id", _task_view),
    EntityType.notifications: _EntitySource(NOTIFICATIONS_COLLECTION, "user_id", _notification_view),
}


@dataclass
class _Channel:
    key: SubscriptionKey
    source: _EntitySource
    subscribers: dict[int, SubscriptionCallback] = field(default_factory=dict)
    documents: dict[str, dict[str, Any]] = field(default_factory=dict)
    pending: list[StoreChange] = field(default_factory=list)
    store_unsubscribe: Unsubscribe | None = None
    generation: int = 0
    ready: bool = False
    degraded: bool = False
    last_error: str | None = None
    closed: bool = False

    def view(self) -> tuple[Any, ...]:
        return self.source.build_view(list(self.documents.values()))

    def apply(self, change: StoreChange) -> bool:
        document = change.document
        belongs = document is not None and document.get(self.source.filter_field) == self.key.filter_key
        if not belongs:
            return self.documents.pop(change.doc_id, None) is not None

        current = self.documents.get(change.doc_id)
        if current is not None and change.version and change.version <= int(current.get(VERSION_FIELD, 0)):
            return False
        self.documents[change.doc_id] = dict(document)
        return True

    def release_store(self) -> None:
        store_unsubscribe = self.store_unsubscribe
        self.store_unsubscribe = None
        if store_unsubscribe is not None:
            store_unsubscribe()


class RealtimeHub:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self._channels: dict[SubscriptionKey, _Channel] = {}
        self._next_subscriber_id = 1

    async def subscribe(self, key: SubscriptionKey, callback: SubscriptionCallback) -> Unsubscribe:
        source = _ENTITY_SOURCES.get(key.entity_type)
        if source is None:
            raise UnknownEntityTypeError(f"Unknown entity type: {key.entity_type!r}.")

        channel = self._channels.get(key)
        needs_open = channel is None or channel.degraded
        if channel is None:
            channel = _Channel(key=key, source=source)
            self._channels[key] = channel

        subscriber_id = self._next_subscriber_id
        self._next_subscriber_id += 1
        channel.subscribers[subscriber_id] = callback

        if needs_open:
            await self._open(channel)
        elif channel.ready:
            _deliver(callback, SubscriptionEvent(key=key, kind=EventKind.snapshot, items=channel.view()))

        def unsubscribe() -> None:
            if channel.subscribers.pop(subscriber_id, None) is None:
                return
            if channel.subscribers:
                return
            channel.closed = True
            channel.release_store()
            if self._channels.get(key) is channel:
                del self._channels[key]
            logger.info("Live view released entity=%s filter=%s", key.entity_type.value, key.filter_key)

        return unsubscribe

    def subscriber_count(self, key: SubscriptionKey) -> int:
        channel = self._channels.get(key)
        return len(channel.subscribers) if channel else 0

    def is_degraded(self, key: SubscriptionKey) -> bool:
        channel = self._channels.get(key)
        return bool(channel and channel.degraded)

    def close(self) -> None:
        channels = list(self._channels.values())
        self._channels.clear()
        for channel in channels:
            channel.closed = True
            channel.subscribers.clear()
            channel.release_store()

    async def _open(self, channel: _Channel) -> None:
        channel.release_store()
        channel.generation += 1
        channel.documents.clear()
        channel.pending.clear()
        channel.ready = False
        channel.degraded = False
        channel.last_error = None
        generation = channel.generation

        channel.store_unsubscribe = self.store.subscribe(
            channel.source.collection,
            partial(self._on_change, channel, generation),
            partial(self._on_error, channel, generation),
        )
        if channel.degraded:
            return

        try:
            documents = await self.store.find(
                channel.source.collection,
                {channel.source.filter_field: channel.key.filter_key},
            )
        except DocumentStoreError as exc:
            self._on_error(channel, generation, exc)
            return
        if channel.closed or channel.generation != generation or channel.degraded:
            return

        for document in documents:
            channel.documents[str(document["_id"])] = document
        for change in channel.pending:
            channel.apply(change)
        channel.pending.clear()
        channel.ready = True
        logger.info(
            "Live view opened entity=%s filter=%s items=%s",
            channel.key.entity_type.value,
            channel.key.filter_key,
            len(channel.documents),
        )
        self._broadcast(channel, SubscriptionEvent(key=channel.key, kind=EventKind.snapshot, items=channel.view()))

    def _on_change(self, channel: _Channel, generation: int, change: StoreChange) -> None:
        if channel.closed or channel.generation != generation or channel.degraded:
            return
        if not channel.ready:
            channel.pending.append(change)
            return
        if not channel.apply(change):
            return
        self._broadcast(
            channel,
            SubscriptionEvent(key=channel.key, kind=EventKind.delta, items=channel.view(), change=change),
        )

    def _on_error(self, channel: _Channel, generation: int, error: Exception) -> None:
        if channel.closed or channel.generation != generation or channel.degraded:
            return
        channel.degraded = True
        channel.ready = False
        channel.last_error = str(error) or type(error).__name__
        channel.release_store()
        logger.warning(
            "Live view degraded entity=%s filter=%s error=%s",
            channel.key.entity_type.value,
            channel.key.filter_key,
            channel.last_error,
        )
        self._broadcast(
            channel,
            SubscriptionEvent(key=channel.key, kind=EventKind.error, error=channel.last_error),
        )

    def _broadcast(self, channel: _Channel, event: SubscriptionEvent) -> None:
        for callback in list(channel.subscribers.values()):
            _deliver(callback, event)


def _deliver(callback: SubscriptionCallback, event: SubscriptionEvent) -> None:
    try:
        callback(event)
    except Exception:
        logger.exception(
            "Live view subscriber failed entity=%s filter=%s kind=%s",
            event.key.entity_type.value,
            event.key.filter_key,
            event.kind.value,
        )


def event_to_payload(event: SubscriptionEvent) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "entity_type": event.key.entity_type.value,
        "filter_key": event.key.filter_key,
        "kind": event.kind.value,
        "items": [_item_payload(item) for item in event.items],
    }
    if event.change is not None:
        payload["change"] = {"doc_id": event.change.doc_id, "kind": event.change.kind}
    if event.error is not None:
        payload["error"] = event.error
    return payload


def _item_payload(item: Any) -> Mapping[str, Any]:
    document = item.to_document()
    document["id"] = item.id
    return {
        key: value.isoformat() if hasattr(value, "isoformat") else value
        for key, value in document.items()
    }
