from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.services.action_item_models import MemberRole, MemberStatus, Notification, NotificationType


class NotificationResponse(BaseModel):
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime

    @classmethod
    def from_notification(cls, notification: Notification) -> NotificationResponse:
        return cls(
            id=notification.id,
            user_id=notification.user_id,
            type=notification.type,
            title=notification.title,
            message=notification.message,
            data=notification.data,
            read=notification.read,
            created_at=notification.created_at,
        )


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse] = Field(default_factory=list)
    unread_count: int = 0


class NotificationsMarkedReadResponse(BaseModel):
    updated: int


class InvitationResponseResult(BaseModel):
    team_id: str
    user_id: str
    status: MemberStatus
    notification_id: str | None = None


class TeamInvitationRequest(BaseModel):
    user_id: str = Field(min_length=1)
    display_name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    role: MemberRole = MemberRole.member
