from __future__ import annotations

import hashlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any
from uuid import uuid4

from app.services.action_item_models import (
    ActionItem,
    MemberStatus,
    Notification,
    NotificationType,
    TeamMember,
)
from app.services.document_store import DocumentStore
from app.services.team_roster import TeamRoster

logger = logging.getLogger(__name__)

NOTIFICATIONS_COLLECTION = "notifications"


class InvalidNotificationType(ValueError):
    pass


class InvalidNotificationRecipient(ValueError):
    pass


class NotificationNotFoundError(LookupError):
    pass


@dataclass(frozen=True)
class NotificationPayload:
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class InvitationResponse:
    member: TeamMember
    notification: Notification | None


class NotificationDispatcher:
    def __init__(self, store: DocumentStore, roster: TeamRoster) -> None:
        self.store = store
        self.roster = roster

    async def dispatch(
        self,
        notification_type: NotificationType | str,
        recipient_user_id: str,
        payload: NotificationPayload,
        *,
        dedup_key: str | None = None,
    ) -> Notification:
        resolved_type = _resolve_notification_type(notification_type)
        recipient = recipient_user_id.strip() if isinstance(recipient_user_id, str) else ""
        if not recipient:
            raise InvalidNotificationRecipient("Notification recipient is required.")

        normalized_dedup_key = dedup_key.strip() if isinstance(dedup_key, str) else ""
        if normalized_dedup_key:
            notification_id = _dedup_notification_id(resolved_type, recipient, normalized_dedup_key)
            existing = await self.store.get(NOTIFICATIONS_COLLECTION, notification_id)
            if existing:
                logger.info(
                    "Notification replay ignored id=%s type=%s user_id=%s",
                    notification_id,
                    resolved_type.value,
                    recipient,
                )
                return Notification.from_document(existing)
        else:
            notification_id = uuid4().hex

        notification = Notification(
            id=notification_id,
            user_id=recipient,
            type=resolved_type,
            title=payload.title.strip(),
            message=payload.message.strip(),
            data=dict(payload.data),
            dedup_key=normalized_dedup_key or None,
        )
        stored = await self.store.set(
            NOTIFICATIONS_COLLECTION,
            notification_id,
            notification.to_document(),
        )
        logger.info(
            "Notification dispatched id=%s type=%s user_id=%s",
            notification_id,
            resolved_type.value,
            recipient,
        )
        return Notification.from_document(stored)

    async def notify_task_assigned(self, item: ActionItem, *, assigned_by: str) -> Notification:
        return await self.dispatch(
            NotificationType.task_assignment,
            item.assignee_id or "",
            NotificationPayload(
                title="New Task Assignment",
                message=f'You have been assigned: "{item.description}"',
                data={**_task_data(item), "assigned_by": assigned_by},
            ),
        )

    async def notify_task_reassigned(
        self,
        item: ActionItem,
        previous_assignee_id: str,
    ) -> Notification:
        new_owner = item.assignee_name or "someone else"
        return await self.dispatch(
            NotificationType.task_assignment,
            previous_assignee_id,
            NotificationPayload(
                title="Task Reassigned",
                message=f'"{item.description}" has been reassigned to {new_owner}',
                data={**_task_data(item), "reassigned": True, "new_assignee_id": item.assignee_id},
            ),
        )

    async def notify_task_unassigned(
        self,
        item: ActionItem,
        previous_assignee_id: str,
    ) -> Notification:
        return await self.dispatch(
            NotificationType.task_assignment,
            previous_assignee_id,
            NotificationPayload(
                title="Task Unassigned",
                message=f'You are no longer assigned to "{item.description}"',
                data={**_task_data(item), "unassigned": True},
            ),
        )

    async def notify_task_completed(
        self,
        item: ActionItem,
        recipient_user_id: str,
        *,
        completed_by: str,
        completed_by_name: str | None = None,
    ) -> Notification:
        actor = completed_by_name or completed_by
        return await self.dispatch(
            NotificationType.task_completed,
            recipient_user_id,
            NotificationPayload(
                title="Task Completed",
                message=f'{actor} completed: "{item.description}"',
                data={**_task_data(item), "completed_by": completed_by},
            ),
        )

    async def notify_task_overdue(self, item: ActionItem, today: date) -> Notification:
        due_on = item.deadline.isoformat() if item.deadline else "an earlier date"
        return await self.dispatch(
            NotificationType.task_overdue,
            item.assignee_id or "",
            NotificationPayload(
                title="Overdue Task Reminder",
                message=f'"{item.description}" was due on {due_on}',
                data=_task_data(item),
            ),
            dedup_key=f"{item.id}:{today.isoformat()}",
        )

    async def notify_team_invitation(
        self,
        recipient_user_id: str,
        *,
        team_id: str,
        team_name: str,
        invited_by: str,
    ) -> Notification:
        return await self.dispatch(
            NotificationType.team_invitation,
            recipient_user_id,
            NotificationPayload(
                title=f"Team Invitation: {team_name}",
                message=f"{invited_by} invited you to join {team_name}",
                data={"team_id": team_id, "team_name": team_name, "invited_by": invited_by},
            ),
        )

    async def notify_meeting_update(
        self,
        recipient_user_id: str,
        *,
        meeting_id: str,
        title: str,
        message: str,
        data: Mapping[str, Any] | None = None,
    ) -> Notification:
        return await self.dispatch(
            NotificationType.meeting_update,
            recipient_user_id,
            NotificationPayload(
                title=title,
                message=message,
                data={"meeting_id": meeting_id, **dict(data or {})},
            ),
            dedup_key=f"meeting:{meeting_id}",
        )

    async def invite_member(
        self,
        team_id: str,
        invitee: TeamMember,
        *,
        invited_by_user_id: str,
    ) -> InvitationResponse:
        """Add ``invitee`` as an invited member, then notify them.

        The membership write happens first; a failed notification is logged
        and leaves the invitation in place.
        """
        member = await self.roster.invite_member(team_id, invitee, invited_by_user_id=invited_by_user_id)
        try:
            inviter = await self.roster.get_member(team_id, invited_by_user_id)
            notification = await self.notify_team_invitation(
                member.user_id,
                team_id=team_id,
                team_name=await self.roster.get_team_name(team_id),
                invited_by=inviter.display_name,
            )
        except Exception:
            logger.exception(
                "Invitation notification failed team_id=%s user_id=%s inviter_id=%s",
                team_id,
                member.user_id,
                invited_by_user_id,
            )
            notification = None
        return InvitationResponse(member=member, notification=notification)

    async def accept_invitation(self, team_id: str, user_id: str) -> InvitationResponse:
        return await self._respond_to_invitation(team_id, user_id, accepted=True)

    async def decline_invitation(self, team_id: str, user_id: str) -> InvitationResponse:
        return await self._respond_to_invitation(team_id, user_id, accepted=False)

    async def list_for_user(
        self,
        user_id: str,
        *,
        unread_only: bool = False,
        limit: int | None = None,
    ) -> list[Notification]:
        filters: dict[str, Any] = {"user_id": user_id.strip()}
        if unread_only:
            filters["read"] = False
        documents = await self.store.find(NOTIFICATIONS_COLLECTION, filters)
        notifications = [Notification.from_document(document) for document in documents]
        notifications.sort(key=lambda notification: (notification.created_at, notification.id), reverse=True)
        if limit is not None and limit > 0:
            return notifications[:limit]
        return notifications

    async def unread_count(self, user_id: str) -> int:
        return len(await self.list_for_user(user_id, unread_only=True))

    async def mark_read(self, notification_id: str, *, user_id: str | None = None) -> Notification:
        existing = await self._get_owned(notification_id, user_id)
        if existing.read:
            return existing
        updated = await self.store.update(
            NOTIFICATIONS_COLLECTION,
            existing.id,
            {"read": True, "read_at": datetime.now(UTC)},
        )
        return Notification.from_document(updated)

    async def mark_all_read(self, user_id: str) -> int:
        unread = await self.list_for_user(user_id, unread_only=True)
        read_at = datetime.now(UTC)
        for notification in unread:
            await self.store.update(
                NOTIFICATIONS_COLLECTION,
                notification.id,
                {"read": True, "read_at": read_at},
            )
        return len(unread)

    async def delete(self, notification_id: str, *, user_id: str | None = None) -> None:
        existing = await self._get_owned(notification_id, user_id)
        await self.store.delete(NOTIFICATIONS_COLLECTION, existing.id)

    async def _get_owned(self, notification_id: str, user_id: str | None) -> Notification:
        document = await self.store.get(NOTIFICATIONS_COLLECTION, notification_id.strip())
        if not document:
            raise NotificationNotFoundError(f"Notification {notification_id} was not found.")
        notification = Notification.from_document(document)
        if user_id is not None and notification.user_id != user_id.strip():
            raise NotificationNotFoundError(f"Notification {notification_id} was not found.")
        return notification

    async def _respond_to_invitation(
        self,
        team_id: str,
        user_id: str,
        *,
        accepted: bool,
    ) -> InvitationResponse:
        new_status = MemberStatus.active if accepted else MemberStatus.inactive
        member = await self.roster.set_member_status(
            team_id,
            user_id,
            new_status,
            allowed_current=frozenset({MemberStatus.invited}),
        )

        inviter_id = member.invited_by_user_id
        if not inviter_id or inviter_id == member.user_id:
            return InvitationResponse(member=member, notification=None)

        response = "accepted" if accepted else "declined"
        team_name = await self.roster.get_team_name(team_id)
        try:
            notification = await self.dispatch(
                NotificationType.team_invitation,
                inviter_id,
                NotificationPayload(
                    title=f"Team Invitation: {team_name}",
                    message=f"{member.display_name} {response} your invitation to {team_name}",
                    data={
                        "team_id": team_id,
                        "team_name": team_name,
                        "user_id": member.user_id,
                        "response": response,
                    },
                ),
                dedup_key=f"invite-response:{team_id}:{member.user_id}:{response}",
            )
        except Exception:
            logger.exception(
                "Invitation response notification failed team_id=%s user_id=%s inviter_id=%s",
                team_id,
                member.user_id,
                inviter_id,
            )
            notification = None
        return InvitationResponse(member=member, notification=notification)


def _resolve_notification_type(value: NotificationType | str) -> NotificationType:
    if isinstance(value, NotificationType):
        return value
    try:
        return NotificationType(str(value).strip())
    except ValueError as exc:
        raise InvalidNotificationType(f"Unknown notification type: {value!r}.") from exc


def _dedup_notification_id(notification_type: NotificationType, recipient: str, dedup_key: str) -> str:
    digest = hashlib.sha256(f"{notification_type.value}|{recipient}|{dedup_key}".encode("utf-8"))
    return digest.hexdigest()[:32]


def _task_data(item: ActionItem) -> dict[str, Any]:
    return {
        "action_item_id": item.id,
        "meeting_id": item.meeting_id,
        "team_id": item.team_id,
        "priority": item.priority.value,
        "deadline": item.deadline.isoformat() if item.deadline else None,
    }
