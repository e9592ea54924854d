from __future__ import annotations

import logging
from collections.abc import Awaitable, Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any
from uuid import uuid4

from app.services.action_item_models import (
    SYSTEM_ASSIGNER,
    ActionItem,
    ExtractionResult,
    MatchMethod,
    Notification,
    SpeakerMatch,
    TaskStatus,
    TeamMember,
)
from app.services.document_store import (
    DocumentNotFoundError,
    DocumentStore,
    DocumentStoreError,
    VersionConflictError,
)
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.team_roster import TeamMemberNotFoundError, TeamNotFoundError, TeamRoster

logger = logging.getLogger(__name__)

ACTION_ITEMS_COLLECTION = "action_items"
AUTO_ASSIGN_THRESHOLD = 0.5


class ActionItemNotFoundError(LookupError):
    pass


class AssigneeNotEligibleError(ValueError):
    pass


class AssignmentNotPermittedError(PermissionError):
    pass


class InvalidTaskStatusError(ValueError):
    pass


class ConcurrentModificationError(RuntimeError):
    pass


_BULK_ITEM_ERRORS = (
    ActionItemNotFoundError,
    AssigneeNotEligibleError,
    AssignmentNotPermittedError,
    ConcurrentModificationError,
    DocumentStoreError,
)


@dataclass(frozen=True)
class BulkAssignmentFailure:
    item_id: str
    error: str
    message: str


@dataclass(frozen=True)
class BulkAssignmentResult:
    succeeded: tuple[ActionItem, ...]
    failed: tuple[BulkAssignmentFailure, ...]


class AssignmentEngine:
    """Creates action items and applies every assignment or status change.

    Writes are optimistic: each update carries the version the item was read
    at, and a concurrent writer surfaces as ``ConcurrentModificationError``.
    Notifications are sent after the write commits and never undo it.
    """

    def __init__(
        self,
        store: DocumentStore,
        roster: TeamRoster,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self.store = store
        self.roster = roster
        self.dispatcher = dispatcher

    def auto_assign(
        self,
        extraction: ExtractionResult,
        speaker_map: Mapping[str, SpeakerMatch],
        *,
        meeting_id: str,
        team_id: str | None = None,
    ) -> list[ActionItem]:
        folded_map = {label.casefold(): match for label, match in speaker_map.items()}
        now = datetime.now(UTC)
        items: list[ActionItem] = []
        for extracted in extraction.action_items:
            label = extracted.suggested_owner_label
            match = None
            if label:
                match = speaker_map.get(label) or folded_map.get(label.strip().casefold())

            item = ActionItem(
                id=uuid4().hex,
                meeting_id=meeting_id,
                team_id=team_id,
                description=extracted.description,
                priority=extracted.priority,
                deadline=extracted.suggested_deadline,
                suggested_owner_label=label,
                match_method=match.method if match else MatchMethod.none,
                match_confidence=match.confidence if match else 0.0,
                created_at=now,
                updated_at=now,
            )
            member = match.matched_member if match else None
            if member is not None and match.confidence >= AUTO_ASSIGN_THRESHOLD:
                item.assignee_id = member.user_id
                item.assignee_name = member.display_name
                item.assigned_by = SYSTEM_ASSIGNER
                item.assigned_at = now
            items.append(item)
        return items

    async def save_new_items(self, items: Iterable[ActionItem]) -> list[ActionItem]:
        saved: list[ActionItem] = []
        for item in items:
            stored = await self.store.set(ACTION_ITEMS_COLLECTION, item.id, item.to_document())
            saved.append(ActionItem.from_document(stored))
        return saved

    async def notify_auto_assigned(self, items: Iterable[ActionItem]) -> None:
        for item in items:
            if not item.is_assigned:
                continue
            await self._notify_best_effort(
                "auto-assign",
                item.id,
                self.dispatcher.notify_task_assigned(item, assigned_by=SYSTEM_ASSIGNER),
            )

    async def get_item(self, item_id: str) -> ActionItem:
        document = await self.store.get(ACTION_ITEMS_COLLECTION, item_id.strip())
        if not document:
            raise ActionItemNotFoundError(f"Action item {item_id} was not found.")
        return ActionItem.from_document(document)

    async def list_for_assignee(
        self,
        user_id: str,
        *,
        team_id: str | None = None,
        status: TaskStatus | str | None = None,
    ) -> list[ActionItem]:
        filters: dict[str, Any] = {"assignee_id": user_id.strip()}
        if team_id:
            filters["team_id"] = team_id
        if status is not None:
            filters["status"] = parse_task_status(status).value
        documents = await self.store.find(ACTION_ITEMS_COLLECTION, filters)
        return sort_action_items(ActionItem.from_document(document) for document in documents)

    async def list_for_meeting(self, meeting_id: str) -> list[ActionItem]:
        documents = await self.store.find(ACTION_ITEMS_COLLECTION, {"meeting_id": meeting_id})
        return sort_action_items(ActionItem.from_document(document) for document in documents)

    async def delete_items_for_meeting(self, meeting_id: str) -> int:
        deleted = 0
        for item in await self.list_for_meeting(meeting_id):
            if await self.store.delete(ACTION_ITEMS_COLLECTION, item.id):
                deleted += 1
        return deleted

    async def manual_assign(
        self,
        item_id: str,
        assignee_id: str,
        acting_user_id: str,
    ) -> ActionItem:
        item = await self.get_item(item_id)
        await self._assert_can_modify(item, acting_user_id)
        assignee = await self._eligible_assignee(item, assignee_id)

        previous_assignee_id = item.assignee_id
        now = datetime.now(UTC)
        updated = await self._write(
            item,
            {
                "assignee_id": assignee.user_id,
                "assignee_name": assignee.display_name,
                "assigned_by": acting_user_id.strip(),
                "assigned_at": now,
                "updated_at": now,
            },
        )
        logger.info(
            "Action item assigned item_id=%s assignee_id=%s by=%s",
            updated.id,
            assignee.user_id,
            acting_user_id,
        )

        if previous_assignee_id == assignee.user_id:
            return updated
        await self._notify_best_effort(
            "assign",
            updated.id,
            self.dispatcher.notify_task_assigned(updated, assigned_by=acting_user_id.strip()),
        )
        if previous_assignee_id:
            await self._notify_best_effort(
                "reassign",
                updated.id,
                self.dispatcher.notify_task_reassigned(updated, previous_assignee_id),
            )
        return updated

    async def unassign(self, item_id: str, acting_user_id: str) -> ActionItem:
        item = await self.get_item(item_id)
        if not item.is_assigned:
            return item
        await self._assert_can_modify(item, acting_user_id)

        previous_assignee_id = item.assignee_id or ""
        updated = await self._write(
            item,
            {
                "assignee_id": None,
                "assignee_name": None,
                "assigned_by": None,
                "assigned_at": None,
                "updated_at": datetime.now(UTC),
            },
        )
        logger.info("Action item unassigned item_id=%s by=%s", updated.id, acting_user_id)
        if previous_assignee_id != acting_user_id.strip():
            await self._notify_best_effort(
                "unassign",
                updated.id,
                self.dispatcher.notify_task_unassigned(updated, previous_assignee_id),
            )
        return updated

    async def bulk_assign(
        self,
        item_ids: Iterable[str],
        assignee_id: str,
        acting_user_id: str,
    ) -> BulkAssignmentResult:
        succeeded: list[ActionItem] = []
        failed: list[BulkAssignmentFailure] = []
        seen: set[str] = set()
        for item_id in item_ids:
            if item_id in seen:
                continue
            seen.add(item_id)
            try:
                succeeded.append(await self.manual_assign(item_id, assignee_id, acting_user_id))
            except _BULK_ITEM_ERRORS as exc:
                logger.warning(
                    "Bulk assignment item failed item_id=%s error=%s",
                    item_id,
                    exc,
                )
                failed.append(
                    BulkAssignmentFailure(
                        item_id=item_id,
                        error=type(exc).__name__,
                        message=str(exc),
                    ),
                )
        return BulkAssignmentResult(succeeded=tuple(succeeded), failed=tuple(failed))

    async def update_status(
        self,
        item_id: str,
        new_status: TaskStatus | str,
        acting_user_id: str,
    ) -> ActionItem:
        status = parse_task_status(new_status)
        item = await self.get_item(item_id)
        await self._assert_can_modify(item, acting_user_id)
        if item.status == status:
            return item

        previous_status = item.status
        now = datetime.now(UTC)
        updated = await self._write(
            item,
            {
                "status": status.value,
                "completed_at": now if status == TaskStatus.completed else None,
                "updated_at": now,
            },
        )
        logger.info(
            "Action item status changed item_id=%s from=%s to=%s by=%s",
            updated.id,
            previous_status.value,
            status.value,
            acting_user_id,
        )

        if status == TaskStatus.completed:
            await self._notify_completion(updated, acting_user_id.strip())
        return updated

    async def notify_overdue(self, today: date) -> list[Notification]:
        documents = await self.store.find(ACTION_ITEMS_COLLECTION)
        notifications: list[Notification] = []
        for document in documents:
            item = ActionItem.from_document(document)
            if not item.is_assigned or not item.is_overdue(today):
                continue
            try:
                notifications.append(await self.dispatcher.notify_task_overdue(item, today))
            except Exception:
                logger.exception("Overdue notification failed item_id=%s", item.id)
        return notifications

    async def _notify_completion(self, item: ActionItem, acting_user_id: str) -> None:
        recipients: list[str] = []
        completed_by_name: str | None = None
        if item.team_id:
            try:
                members = await self.roster.get_active_members(item.team_id)
            except TeamNotFoundError:
                members = []
            recipients.extend(member.user_id for member in members if member.is_admin)
            completed_by_name = next(
                (member.display_name for member in members if member.user_id == acting_user_id),
                None,
            )
        if item.assigned_by and item.assigned_by != SYSTEM_ASSIGNER:
            recipients.append(item.assigned_by)

        notified: set[str] = set()
        for recipient in recipients:
            if recipient == acting_user_id or recipient in notified:
                continue
            notified.add(recipient)
            await self._notify_best_effort(
                "complete",
                item.id,
                self.dispatcher.notify_task_completed(
                    item,
                    recipient,
                    completed_by=acting_user_id,
                    completed_by_name=completed_by_name,
                ),
            )

    async def _assert_can_modify(self, item: ActionItem, acting_user_id: str) -> None:
        actor = acting_user_id.strip() if isinstance(acting_user_id, str) else ""
        if not actor:
            raise AssignmentNotPermittedError("An acting user is required.")
        if not item.is_assigned or item.assignee_id == actor:
            return
        if item.team_id and await self._is_team_admin(item.team_id, actor):
            return
        raise AssignmentNotPermittedError(
            f"User {actor} may not modify action item {item.id}: "
            "only a team admin or the current assignee can.",
        )

    async def _is_team_admin(self, team_id: str, user_id: str) -> bool:
        try:
            return await self.roster.is_admin(team_id, user_id)
        except TeamNotFoundError:
            return False

    async def _eligible_assignee(self, item: ActionItem, assignee_id: str) -> TeamMember:
        normalized_assignee_id = assignee_id.strip() if isinstance(assignee_id, str) else ""
        if not normalized_assignee_id:
            raise AssigneeNotEligibleError("Assignee is required.")
        if not item.team_id:
            raise AssigneeNotEligibleError(f"Action item {item.id} does not belong to a team.")
        try:
            member = await self.roster.get_member(item.team_id, normalized_assignee_id)
        except (TeamNotFoundError, TeamMemberNotFoundError) as exc:
            raise AssigneeNotEligibleError(str(exc)) from exc
        if not member.is_active:
            raise AssigneeNotEligibleError(
                f"User {normalized_assignee_id} is not an active member of team {item.team_id}.",
            )
        return member

    async def _write(self, item: ActionItem, changes: Mapping[str, Any]) -> ActionItem:
        try:
            updated = await self.store.update(
                ACTION_ITEMS_COLLECTION,
                item.id,
                changes,
                expected_version=item.version,
            )
        except VersionConflictError as exc:
            raise ConcurrentModificationError(
                f"Action item {item.id} was changed by another request. Reload and try again.",
            ) from exc
        except DocumentNotFoundError as exc:
            raise ActionItemNotFoundError(f"Action item {item.id} was not found.") from exc
        return ActionItem.from_document(updated)

    async def _notify_best_effort(
        self,
        action: str,
        item_id: str,
        notification: Awaitable[Notification],
    ) -> None:
        try:
            await notification
        except Exception:
            logger.exception("Notification failed action=%s item_id=%s", action, item_id)


def parse_task_status(value: TaskStatus | str) -> TaskStatus:
    if isinstance(value, TaskStatus):
        return value
    normalized = value.strip().lower() if isinstance(value, str) else ""
    try:
        return TaskStatus(normalized)
    except ValueError as exc:
        raise InvalidTaskStatusError(
            f"Unknown task status {value!r}; expected pending, in_progress, or completed.",
        ) from exc


def sort_action_items(items: Iterable[ActionItem]) -> list[ActionItem]:
    return sorted(items, key=lambda item: (*item.sort_key(), item.created_at, item.id))
