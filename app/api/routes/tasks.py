from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_services, require_acting_user_id
from app.api.errors import DOMAIN_ERRORS, http_error_for
from app.schemas.task import (
    ActionItemResponse,
    BulkAssignFailure,
    BulkAssignRequest,
    BulkAssignResponse,
    TaskAssignRequest,
    TaskListResponse,
    TaskStatusUpdateRequest,
)
from app.services.service_container import ServiceContainer

router = APIRouter(tags=["tasks"])


@router.get("/users/{user_id}/tasks", response_model=TaskListResponse)
async def list_user_tasks(
    user_id: str,
    team_id: str | None = Query(default=None),
    task_status: str | None = Query(default=None, alias="status"),
    overdue: bool = Query(default=False),
    services: ServiceContainer = Depends(get_services),
) -> TaskListResponse:
    try:
        if overdue:
            tasks = await services.processing.get_overdue_tasks(user_id, team_id=team_id, status=task_status)
        else:
            tasks = await services.processing.get_user_tasks(user_id, team_id=team_id, status=task_status)
    except DOMAIN_ERRORS as exc:
        raise http_error_for(exc) from exc
    return TaskListResponse(
        items=[ActionItemResponse.from_action_item(task) for task in tasks],
        total=len(tasks),
    )


@router.post("/tasks/bulk-assign", response_model=BulkAssignResponse)
async def bulk_assign_tasks(
    payload: BulkAssignRequest,
    acting_user_id: str = Depends(require_acting_user_id),
    services: ServiceContainer = Depends(get_services),
) -> BulkAssignResponse:
    result = await services.processing.bulk_assign_tasks(
        payload.item_ids,
        payload.assignee_id,
        acting_user_id,
    )
    return BulkAssignResponse(
        succeeded=[ActionItemResponse.from_action_item(item) for item in result.succeeded],
        failed=[
            BulkAssignFailure(item_id=failure.item_id, error=failure.error, message=failure.message)
            for failure in result.failed
        ],
    )


@router.post("/tasks/{item_id}/assign", response_model=ActionItemResponse)
async def assign_task(
    item_id: str,
    payload: TaskAssignRequest,
    acting_user_id: str = Depends(require_acting_user_id),
    services: ServiceContainer = Depends(get_services),
) -> ActionItemResponse:
    try:
        item = await services.processing.assign_task(item_id, payload.assignee_id, acting_user_id)
    except DOMAIN_ERRORS as exc:
        raise http_error_for(exc) from exc
    return ActionItemResponse.from_action_item(item)


@router.post("/tasks/{item_id}/unassign", response_model=ActionItemResponse)
async def unassign_task(
    item_id: str,
    acting_user_id: str = Depends(require_acting_user_id),
    services: ServiceContainer = Depends(get_services),
) -> ActionItemResponse:
    try:
        item = await services.processing.unassign_task(item_id, acting_user_id)
    except DOMAIN_ERRORS as exc:
        raise http_error_for(exc) from exc
    return ActionItemResponse.from_action_item(item)


@router.patch("/tasks/{item_id}/status", response_model=ActionItemResponse)
async def update_task_status(
    item_id: str,
    payload: TaskStatusUpdateRequest,
    acting_user_id: str = Depends(require_acting_user_id),
    services: ServiceContainer = Depends(get_services),
) -> ActionItemResponse:
    try:
        item = await services.processing.update_task_status(item_id, payload.status, acting_user_id)
    except DOMAIN_ERRORS as exc:
        raise http_error_for(exc) from exc
    return ActionItemResponse.from_action_item(item)
