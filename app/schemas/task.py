from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field

from app.services.action_item_models import ActionItem, MatchMethod, Priority, TaskStatus


class ActionItemResponse(BaseModel):
    id: str
    meeting_id: str
    team_id: str | None = None
    description: str
    priority: Priority
    status: TaskStatus
    assignee_id: str | None = None
    assignee_name: str | None = None
    assigned_by: str | None = None
    assigned_at: datetime | None = None
    deadline: date | None = None
    suggested_owner_label: str | None = None
    match_method: MatchMethod = MatchMethod.none
    match_confidence: float = 0.0
    is_assigned: bool = False
    created_at: datetime
    updated_at: datetime
    version: int | None = None

    @classmethod
    def from_action_item(cls, item: ActionItem) -> ActionItemResponse:
        return cls(
            id=item.id,
            meeting_id=item.meeting_id,
            team_id=item.team_id,
            description=item.description,
            priority=item.priority,
            status=item.status,
            assignee_id=item.assignee_id,
            assignee_name=item.assignee_name,
            assigned_by=item.assigned_by,
            assigned_at=item.assigned_at,
            deadline=item.deadline,
            suggested_owner_label=item.suggested_owner_label,
            match_method=item.match_method,
            match_confidence=item.match_confidence,
            is_assigned=item.is_assigned,
            created_at=item.created_at,
            updated_at=item.updated_at,
            version=item.version,
        )


class TaskListResponse(BaseModel):
    items: list[ActionItemResponse] = Field(default_factory=list)
    total: int = 0


class TaskAssignRequest(BaseModel):
    assignee_id: str = Field(min_length=1)


class TaskStatusUpdateRequest(BaseModel):
    status: str


class BulkAssignRequest(BaseModel):
    item_ids: list[str] = Field(min_length=1)
    assignee_id: str = Field(min_length=1)


class BulkAssignFailure(BaseModel):
    item_id: str
    error: str
    message: str


class BulkAssignResponse(BaseModel):
    succeeded: list[ActionItemResponse] = Field(default_factory=list)
    failed: list[BulkAssignFailure] = Field(default_factory=list)
