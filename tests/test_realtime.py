import asyncio
from datetime import UTC, datetime

from app.services.action_item_models import ActionItem
from app.services.document_store import DocumentStoreError, InMemoryDocumentStore
from app.services.realtime import (
    EntityType,
    EventKind,
    RealtimeHub,
    SubscriptionEvent,
    SubscriptionKey,
    event_to_payload,
)

_KEY = SubscriptionKey(EntityType.tasks, "u-sarah")


def _task(item_id: str, assignee_id: str | None, description: str = "Task") -> dict:
    return ActionItem(
        id=item_id,
        meeting_id="meeting-1",
        description=description,
        team_id="team-1",
        assignee_id=assignee_id,
        assignee_name="Someone" if assignee_id else None,
        created_at=datetime(2025, 3, 1, tzinfo=UTC),
        updated_at=datetime(2025, 3, 1, tzinfo=UTC),
    ).to_document()


def _ids(event: SubscriptionEvent) -> list[str]:
    return [item.id for item in event.items]


def test_subscriber_receives_snapshot_then_ordered_deltas() -> None:
    store = InMemoryDocumentStore()
    hub = RealtimeHub(store)
    events: list[SubscriptionEvent] = []

    async def run() -> None:
        await store.set("action_items", "a", _task("a", "u-sarah"))
        await store.set("action_items", "x", _task("x", "u-mike"))
        await hub.subscribe(_KEY, events.append)
        await store.set("action_items", "b", _task("b", "u-sarah"))
        await store.update("action_items", "a", {"description": "Edited"})
        await store.update("action_items", "a", {"assignee_id": "u-mike"})
        await store.set("action_items", "y", _task("y", "u-mike"))

    asyncio.run(run())

    assert [event.kind for event in events] == [
        EventKind.snapshot,
        EventKind.delta,
        EventKind.delta,
        EventKind.delta,
    ]
    assert _ids(events[0]) == ["a"]
    assert sorted(_ids(events[1])) == ["a", "b"]
    assert [item.description for item in events[2].items if item.id == "a"] == ["Edited"]
    assert _ids(events[3]) == ["b"]
    assert [event.change.doc_id for event in events[1:]] == ["b", "a", "a"]


def test_late_subscriber_converges_with_early_subscriber() -> None:
    store = InMemoryDocumentStore()
    hub = RealtimeHub(store)
    early: list[SubscriptionEvent] = []
    late: list[SubscriptionEvent] = []

    async def run() -> None:
        await hub.subscribe(_KEY, early.append)
        await store.set("action_items", "a", _task("a", "u-sarah"))
        await hub.subscribe(_KEY, late.append)
        await store.set("action_items", "b", _task("b", "u-sarah"))

    asyncio.run(run())

    assert hub.subscriber_count(_KEY) == 2
    assert sorted(_ids(early[-1])) == sorted(_ids(late[-1])) == ["a", "b"]
    assert late[0].kind == EventKind.snapshot
    assert _ids(late[0]) == ["a"]


def test_unsubscribe_is_idempotent_and_releases_store_subscription() -> None:
    store = InMemoryDocumentStore()
    hub = RealtimeHub(store)
    events: list[SubscriptionEvent] = []

    async def run() -> None:
        unsubscribe = await hub.subscribe(_KEY, events.append)
        unsubscribe()
        unsubscribe()
        await store.set("action_items", "a", _task("a", "u-sarah"))

    asyncio.run(run())

    assert [event.kind for event in events] == [EventKind.snapshot]
    assert hub.subscriber_count(_KEY) == 0
    assert store._subscribers.get("action_items") == {}


def test_store_disconnect_surfaces_error_event_and_recovers_on_resubscribe() -> None:
    store = InMemoryDocumentStore()
    hub = RealtimeHub(store)
    events: list[SubscriptionEvent] = []

    async def run() -> None:
        unsubscribe = await hub.subscribe(_KEY, events.append)
        store.disconnect(DocumentStoreError("connection reset"))
        assert hub.is_degraded(_KEY)
        unsubscribe()
        unsubscribe()

        store.reconnect()
        await store.set("action_items", "a", _task("a", "u-sarah"))
        await hub.subscribe(_KEY, events.append)

    asyncio.run(run())

    assert [event.kind for event in events] == [EventKind.snapshot, EventKind.error, EventKind.snapshot]
    assert events[1].error == "connection reset"
    assert _ids(events[2]) == ["a"]


def test_subscribing_while_store_is_down_reports_error() -> None:
    store = InMemoryDocumentStore()
    hub = RealtimeHub(store)
    events: list[SubscriptionEvent] = []
    store.disconnect()

    asyncio.run(hub.subscribe(_KEY, events.append))

    assert [event.kind for event in events] == [EventKind.error]
    assert hub.is_degraded(_KEY)


def test_raising_callback_does_not_starve_other_subscribers() -> None:
    store = InMemoryDocumentStore()
    hub = RealtimeHub(store)
    received: list[SubscriptionEvent] = []

    def broken(event: SubscriptionEvent) -> None:
        raise RuntimeError("ui crashed")

    async def run() -> None:
        await hub.subscribe(_KEY, broken)
        await hub.subscribe(_KEY, received.append)
        await store.set("action_items", "a", _task("a", "u-sarah"))

    asyncio.run(run())

    assert [event.kind for event in received] == [EventKind.snapshot, EventKind.delta]


def test_notification_views_are_filtered_by_user() -> None:
    store = InMemoryDocumentStore()
    hub = RealtimeHub(store)
    events: list[SubscriptionEvent] = []
    key = SubscriptionKey.parse("notifications", "u-sarah")

    async def run() -> None:
        await hub.subscribe(key, events.append)
        await store.set(
            "notifications",
            "n-1",
            {"user_id": "u-sarah", "type": "meeting_update", "title": "t", "message": "m", "read": False},
        )
        await store.set(
            "notifications",
            "n-2",
            {"user_id": "u-mike", "type": "meeting_update", "title": "t", "message": "m", "read": False},
        )

    asyncio.run(run())

    assert [event.kind for event in events] == [EventKind.snapshot, EventKind.delta]
    payload = event_to_payload(events[-1])
    assert payload["kind"] == "delta"
    assert payload["entity_type"] == "notifications"
    assert [item["id"] for item in payload["items"]] == ["n-1"]
