from pydantic import BaseModel, Field

from app.schemas.task import ActionItemResponse


class MeetingProcessRequest(BaseModel):
    team_id: str = Field(min_length=1)
    transcript: str
    title: str | None = None
    source_filename: str | None = None


class MeetingProcessResponse(BaseModel):
    meeting_id: str
    summary: str
    item_count: int
    auto_assigned_count: int
    action_items: list[ActionItemResponse] = Field(default_factory=list)


class MeetingDeleteResponse(BaseModel):
    meeting_id: str
    deleted_action_items: int
