from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any

SYSTEM_ASSIGNER = "system"

_ISO_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")


class Priority(StrEnum):
    high = "high"
    medium = "medium"
    low = "low"


class TaskStatus(StrEnum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"


class MemberRole(StrEnum):
    admin = "admin"
    member = "member"


class MemberStatus(StrEnum):
    active = "active"
    invited = "invited"
    inactive = "inactive"


class MatchMethod(StrEnum):
    exact = "exact"
    partial = "partial"
    first_name = "first-name"
    email_prefix = "email-prefix"
    fuzzy = "fuzzy"
    none = "none"


class NotificationType(StrEnum):
    team_invitation = "team_invitation"
    task_assignment = "task_assignment"
    task_completed = "task_completed"
    task_overdue = "task_overdue"
    meeting_update = "meeting_update"


_PRIORITY_RANK = {Priority.high: 0, Priority.medium: 1, Priority.low: 2}


@dataclass(frozen=True)
class Transcript:
    text: str
    byte_length: int
    source_filename: str | None = None


@dataclass(frozen=True)
class ExtractedItem:
    description: str
    suggested_owner_label: str | None = None
    suggested_deadline: date | None = None
    priority: Priority = Priority.medium


@dataclass(frozen=True)
class ExtractionResult:
    summary: str
    action_items: tuple[ExtractedItem, ...] = ()


@dataclass(frozen=True)
class TeamMember:
    user_id: str
    display_name: str
    email: str
    role: MemberRole = MemberRole.member
    status: MemberStatus = MemberStatus.active
    invited_by_user_id: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.active

    @property
    def is_admin(self) -> bool:
        return self.role == MemberRole.admin

    def to_document(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "display_name": self.display_name,
            "email": self.email,
            "role": self.role.value,
            "status": self.status.value,
            "invited_by_user_id": self.invited_by_user_id,
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> TeamMember | None:
        user_id = _normalize_optional_text(document.get("user_id"))
        if not user_id:
            return None
        email = (_normalize_optional_text(document.get("email")) or "").lower()
        return cls(
            user_id=user_id,
            display_name=_normalize_optional_text(document.get("display_name")) or email or user_id,
            email=email,
            role=_coerce_enum(MemberRole, document.get("role"), MemberRole.member),
            status=_coerce_enum(MemberStatus, document.get("status"), MemberStatus.inactive),
            invited_by_user_id=_normalize_optional_text(document.get("invited_by_user_id")),
        )


@dataclass(frozen=True)
class SpeakerMatch:
    raw_label: str
    matched_member: TeamMember | None
    confidence: float
    method: MatchMethod

    @classmethod
    def unmatched(cls, raw_label: str) -> SpeakerMatch:
        return cls(raw_label=raw_label, matched_member=None, confidence=0.0, method=MatchMethod.none)


@dataclass
class ActionItem:
    id: str
    meeting_id: str
    description: str
    team_id: str | None = None
    priority: Priority = Priority.medium
    status: TaskStatus = TaskStatus.pending
    assignee_id: str | None = None
    assignee_name: str | None = None
    assigned_by: str | None = None
    assigned_at: datetime | None = None
    deadline: date | None = None
    suggested_owner_label: str | None = None
    match_method: MatchMethod = MatchMethod.none
    match_confidence: float = 0.0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    version: int | None = None

    @property
    def is_assigned(self) -> bool:
        return bool(self.assignee_id)

    def is_overdue(self, today: date) -> bool:
        return (
            self.deadline is not None
            and self.deadline < today
            and self.status != TaskStatus.completed
        )

    def sort_key(self) -> tuple[int, int, date]:
        return (
            _PRIORITY_RANK.get(self.priority, 1),
            0 if self.deadline else 1,
            self.deadline or date.max,
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "meeting_id": self.meeting_id,
            "team_id": self.team_id,
            "description": self.description,
            "priority": self.priority.value,
            "status": self.status.value,
            "assignee_id": self.assignee_id,
            "assignee_name": self.assignee_name,
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "suggested_owner_label": self.suggested_owner_label,
            "match_method": self.match_method.value,
            "match_confidence": self.match_confidence,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> ActionItem:
        version = document.get("_version")
        return cls(
            id=str(document.get("_id", "")),
            meeting_id=str(document.get("meeting_id", "")),
            team_id=_normalize_optional_text(document.get("team_id")),
            description=str(document.get("description", "")),
            priority=_coerce_enum(Priority, document.get("priority"), Priority.medium),
            status=_coerce_enum(TaskStatus, document.get("status"), TaskStatus.pending),
            assignee_id=_normalize_optional_text(document.get("assignee_id")),
            assignee_name=_normalize_optional_text(document.get("assignee_name")),
            assigned_by=_normalize_optional_text(document.get("assigned_by")),
            assigned_at=_coerce_datetime(document.get("assigned_at")),
            deadline=parse_deadline(document.get("deadline")),
            suggested_owner_label=_normalize_optional_text(document.get("suggested_owner_label")),
            match_method=_coerce_enum(MatchMethod, document.get("match_method"), MatchMethod.none),
            match_confidence=float(document.get("match_confidence") or 0.0),
            created_at=_coerce_datetime(document.get("created_at")) or datetime.now(UTC),
            updated_at=_coerce_datetime(document.get("updated_at")) or datetime.now(UTC),
            version=int(version) if isinstance(version, int) else None,
        )


@dataclass
class Notification:
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    read: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    dedup_key: str | None = None

    def to_document(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "data": dict(self.data),
            "read": self.read,
            "created_at": self.created_at,
            "dedup_key": self.dedup_key,
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> Notification:
        data = document.get("data")
        return cls(
            id=str(document.get("_id", "")),
            user_id=str(document.get("user_id", "")),
            type=NotificationType(str(document.get("type"))),
            title=str(document.get("title", "")),
            message=str(document.get("message", "")),
            data=dict(data) if isinstance(data, Mapping) else {},
            read=bool(document.get("read", False)),
            created_at=_coerce_datetime(document.get("created_at")) or datetime.now(UTC),
            dedup_key=_normalize_optional_text(document.get("dedup_key")),
        )


def parse_deadline(value: Any) -> date | None:
    """Return the calendar date for ``value`` or ``None`` when it cannot be read as one."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = _normalize_optional_text(value)
    if not text:
        return None
    if _ISO_DATE_PATTERN.fullmatch(text):
        try:
            return date.fromisoformat(text)
        except ValueError:
            return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _normalize_optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def _coerce_enum(enum_cls: type[StrEnum], value: Any, default: Any) -> Any:
    text = _normalize_optional_text(value)
    if not text:
        return default
    try:
        return enum_cls(text.lower())
    except ValueError:
        return default


def _coerce_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
    text = _normalize_optional_text(value)
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed
