import asyncio
from datetime import date

import pytest

from app.services.action_item_models import (
    SYSTEM_ASSIGNER,
    ExtractedItem,
    ExtractionResult,
    MemberRole,
    MemberStatus,
    Notification,
    NotificationType,
    Priority,
    TaskStatus,
    TeamMember,
)
from app.services.assignment_engine import (
    ActionItemNotFoundError,
    AssigneeNotEligibleError,
    AssignmentEngine,
    AssignmentNotPermittedError,
    ConcurrentModificationError,
    InvalidTaskStatusError,
)
from app.services.document_store import InMemoryDocumentStore
from app.services.notification_dispatcher import NotificationDispatcher, NotificationPayload
from app.services.speaker_resolver import match_label
from app.services.team_roster import TeamRoster

_MEMBERS = [
    TeamMember(user_id="u-lead", display_name="Lead User", email="lead@co.com", role=MemberRole.admin),
    TeamMember(user_id="u-sarah", display_name="Sarah Johnson", email="sarah@co.com"),
    TeamMember(user_id="u-mike", display_name="Michael Chen", email="mchen@co.com"),
    TeamMember(
        user_id="u-old",
        display_name="Old Timer",
        email="old@co.com",
        status=MemberStatus.inactive,
    ),
]


class _RacingStore(InMemoryDocumentStore):
    def __init__(self) -> None:
        super().__init__()
        self.race_next_read = False

    async def get(self, collection: str, doc_id: str):
        document = await super().get(collection, doc_id)
        if self.race_next_read and collection == "action_items" and document:
            self.race_next_read = False
            await self.update(collection, doc_id, {"description": "edited elsewhere"})
        return document


class _FailingDispatcher(NotificationDispatcher):
    async def dispatch(
        self,
        notification_type: NotificationType | str,
        recipient_user_id: str,
        payload: NotificationPayload,
        *,
        dedup_key: str | None = None,
    ) -> Notification:
        raise RuntimeError("notification backend unavailable")


def _engine(
    store: InMemoryDocumentStore | None = None,
    dispatcher_cls: type[NotificationDispatcher] = NotificationDispatcher,
) -> tuple[AssignmentEngine, InMemoryDocumentStore]:
    store = store or InMemoryDocumentStore()
    roster = TeamRoster(store)
    asyncio.run(roster.save_team("team-1", name="Platform", members=_MEMBERS))
    return AssignmentEngine(store, roster, dispatcher_cls(store, roster)), store


def _create_items(engine: AssignmentEngine, *extracted: ExtractedItem) -> list:
    labels = {item.suggested_owner_label for item in extracted if item.suggested_owner_label}
    speaker_map = {label: match_label(label, _MEMBERS) for label in labels}
    items = engine.auto_assign(
        ExtractionResult(summary="Summary", action_items=tuple(extracted)),
        speaker_map,
        meeting_id="meeting-1",
        team_id="team-1",
    )
    return asyncio.run(engine.save_new_items(items))


def _notifications_for(store: InMemoryDocumentStore, user_id: str) -> list[dict]:
    return asyncio.run(store.find("notifications", {"user_id": user_id}))


def test_auto_assign_uses_confidence_threshold() -> None:
    engine, _ = _engine()

    exact, unmatched, fuzzy, email_prefix, ownerless = _create_items(
        engine,
        ExtractedItem(description="Send the deck", suggested_owner_label="Sarah Johnson"),
        ExtractedItem(description="Book the room", suggested_owner_label="Stranger"),
        ExtractedItem(description="Fix the build", suggested_owner_label="Sara Jonson"),
        ExtractedItem(description="Review budget", suggested_owner_label="mchen"),
        ExtractedItem(description="Write notes"),
    )

    assert exact.assignee_id == "u-sarah"
    assert exact.assignee_name == "Sarah Johnson"
    assert exact.assigned_by == SYSTEM_ASSIGNER
    assert exact.match_confidence == 1.0
    assert email_prefix.assignee_id == "u-mike"
    assert email_prefix.match_confidence == 0.5
    for item in (unmatched, fuzzy, ownerless):
        assert item.assignee_id is None
        assert item.assignee_name is None
        assert item.status == TaskStatus.pending
    assert 0 < fuzzy.match_confidence < 0.5


def test_deadlines_survive_persistence() -> None:
    engine, _ = _engine()

    dated, undated = _create_items(
        engine,
        ExtractedItem(description="Ship", suggested_deadline=date(2025, 3, 1)),
        ExtractedItem(description="Someday"),
    )

    assert asyncio.run(engine.get_item(dated.id)).deadline == date(2025, 3, 1)
    assert asyncio.run(engine.get_item(undated.id)).deadline is None


def test_manual_assign_by_admin_notifies_new_and_previous_assignee() -> None:
    engine, store = _engine()
    (item,) = _create_items(
        engine,
        ExtractedItem(description="Send the deck", suggested_owner_label="Sarah Johnson"),
    )

    updated = asyncio.run(engine.manual_assign(item.id, "u-mike", "u-lead"))

    assert updated.assignee_id == "u-mike"
    assert updated.assignee_name == "Michael Chen"
    assert updated.assigned_by == "u-lead"
    assert updated.assigned_at is not None
    assert [document["title"] for document in _notifications_for(store, "u-mike")] == ["New Task Assignment"]
    assert [document["title"] for document in _notifications_for(store, "u-sarah")] == ["Task Reassigned"]


def test_manual_assign_requires_admin_or_current_assignee() -> None:
    engine, _ = _engine()
    (item,) = _create_items(
        engine,
        ExtractedItem(description="Send the deck", suggested_owner_label="Sarah Johnson"),
    )

    with pytest.raises(AssignmentNotPermittedError):
        asyncio.run(engine.manual_assign(item.id, "u-mike", "u-mike"))

    assert asyncio.run(engine.get_item(item.id)).assignee_id == "u-sarah"
    handed_over = asyncio.run(engine.manual_assign(item.id, "u-mike", "u-sarah"))
    assert handed_over.assignee_id == "u-mike"


def test_manual_assign_rejects_ineligible_assignees() -> None:
    engine, _ = _engine()
    (item,) = _create_items(engine, ExtractedItem(description="Write notes"))

    with pytest.raises(AssigneeNotEligibleError):
        asyncio.run(engine.manual_assign(item.id, "u-old", "u-lead"))
    with pytest.raises(AssigneeNotEligibleError):
        asyncio.run(engine.manual_assign(item.id, "u-nobody", "u-lead"))
    with pytest.raises(ActionItemNotFoundError):
        asyncio.run(engine.manual_assign("missing", "u-mike", "u-lead"))


def test_bulk_assign_isolates_failures() -> None:
    engine, _ = _engine()
    first, taken, third = _create_items(
        engine,
        ExtractedItem(description="A"),
        ExtractedItem(description="B", suggested_owner_label="Sarah Johnson"),
        ExtractedItem(description="C"),
    )

    result = asyncio.run(
        engine.bulk_assign([first.id, taken.id, third.id, "missing"], "u-mike", "u-mike"),
    )

    assert [item.id for item in result.succeeded] == [first.id, third.id]
    assert [(failure.item_id, failure.error) for failure in result.failed] == [
        (taken.id, "AssignmentNotPermittedError"),
        ("missing", "ActionItemNotFoundError"),
    ]
    assert asyncio.run(engine.get_item(first.id)).assignee_id == "u-mike"
    assert asyncio.run(engine.get_item(third.id)).assignee_id == "u-mike"
    assert asyncio.run(engine.get_item(taken.id)).assignee_id == "u-sarah"


def test_unassign_clears_assignee_fields() -> None:
    engine, store = _engine()
    (item,) = _create_items(
        engine,
        ExtractedItem(description="Send the deck", suggested_owner_label="Sarah Johnson"),
    )

    updated = asyncio.run(engine.unassign(item.id, "u-lead"))

    assert updated.assignee_id is None
    assert updated.assignee_name is None
    assert updated.assigned_by is None
    titles = [document["title"] for document in _notifications_for(store, "u-sarah")]
    assert titles == ["Task Unassigned"]


def test_update_status_allows_any_transition_and_notifies_on_completion() -> None:
    engine, store = _engine()
    (item,) = _create_items(engine, ExtractedItem(description="Write notes"))
    asyncio.run(engine.manual_assign(item.id, "u-sarah", "u-mike"))

    in_progress = asyncio.run(engine.update_status(item.id, "in_progress", "u-sarah"))
    assert in_progress.status == TaskStatus.in_progress
    assert _notifications_for(store, "u-lead") == []

    completed = asyncio.run(engine.update_status(item.id, TaskStatus.completed, "u-sarah"))
    assert completed.status == TaskStatus.completed
    lead_titles = [document["title"] for document in _notifications_for(store, "u-lead")]
    mike_titles = [document["title"] for document in _notifications_for(store, "u-mike")]
    sarah_types = [document["type"] for document in _notifications_for(store, "u-sarah")]
    assert lead_titles == ["Task Completed"]
    assert mike_titles == ["Task Completed"]
    assert "task_completed" not in sarah_types

    reopened = asyncio.run(engine.update_status(item.id, "pending", "u-sarah"))
    assert reopened.status == TaskStatus.pending


def test_update_status_rejects_unknown_status() -> None:
    engine, _ = _engine()
    (item,) = _create_items(engine, ExtractedItem(description="Write notes"))

    with pytest.raises(InvalidTaskStatusError):
        asyncio.run(engine.update_status(item.id, "archived", "u-lead"))

    assert asyncio.run(engine.get_item(item.id)).status == TaskStatus.pending


def test_concurrent_write_is_reported_instead_of_lost() -> None:
    store = _RacingStore()
    engine, _ = _engine(store)
    (item,) = _create_items(engine, ExtractedItem(description="Write notes"))

    store.race_next_read = True
    with pytest.raises(ConcurrentModificationError):
        asyncio.run(engine.manual_assign(item.id, "u-mike", "u-lead"))

    reloaded = asyncio.run(engine.get_item(item.id))
    assert reloaded.description == "edited elsewhere"
    assert reloaded.assignee_id is None


def test_notification_failure_does_not_roll_back_assignment() -> None:
    engine, _ = _engine(dispatcher_cls=_FailingDispatcher)
    (item,) = _create_items(engine, ExtractedItem(description="Write notes"))

    updated = asyncio.run(engine.manual_assign(item.id, "u-mike", "u-lead"))
    completed = asyncio.run(engine.update_status(item.id, "completed", "u-mike"))

    assert updated.assignee_id == "u-mike"
    assert completed.status == TaskStatus.completed


def test_notify_overdue_is_deduplicated_per_day() -> None:
    engine, store = _engine()
    late, done, future = _create_items(
        engine,
        ExtractedItem(description="Late", suggested_owner_label="Sarah Johnson", suggested_deadline=date(2025, 3, 1)),
        ExtractedItem(description="Done", suggested_owner_label="Sarah Johnson", suggested_deadline=date(2025, 3, 1)),
        ExtractedItem(description="Future", suggested_owner_label="Sarah Johnson", suggested_deadline=date(2025, 4, 1)),
    )
    asyncio.run(engine.update_status(done.id, "completed", "u-sarah"))

    first = asyncio.run(engine.notify_overdue(date(2025, 3, 2)))
    second = asyncio.run(engine.notify_overdue(date(2025, 3, 2)))

    assert [notification.data["action_item_id"] for notification in first] == [late.id]
    assert [notification.id for notification in second] == [notification.id for notification in first]
    overdue = [
        document
        for document in _notifications_for(store, "u-sarah")
        if document["type"] == NotificationType.task_overdue.value
    ]
    assert len(overdue) == 1


def test_list_for_assignee_sorts_by_priority_then_deadline() -> None:
    engine, _ = _engine()
    low, high_late, high_undated, high_soon = _create_items(
        engine,
        ExtractedItem(description="low", suggested_owner_label="Sarah Johnson", priority=Priority.low),
        ExtractedItem(
            description="high late",
            suggested_owner_label="Sarah Johnson",
            priority=Priority.high,
            suggested_deadline=date(2025, 5, 1),
        ),
        ExtractedItem(description="high undated", suggested_owner_label="Sarah Johnson", priority=Priority.high),
        ExtractedItem(
            description="high soon",
            suggested_owner_label="Sarah Johnson",
            priority=Priority.high,
            suggested_deadline=date(2025, 4, 1),
        ),
    )

    tasks = asyncio.run(engine.list_for_assignee("u-sarah"))

    assert [task.id for task in tasks] == [high_soon.id, high_late.id, high_undated.id, low.id]
