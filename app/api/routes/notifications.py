from fastapi import APIRouter, Depends, Query, status

from app.api.dependencies import get_services, require_acting_user_id
from app.api.errors import DOMAIN_ERRORS, http_error_for
from app.schemas.notification import (
    NotificationListResponse,
    NotificationResponse,
    NotificationsMarkedReadResponse,
)
from app.services.service_container import ServiceContainer

router = APIRouter(tags=["notifications"])


@router.get("/users/{user_id}/notifications", response_model=NotificationListResponse)
async def list_user_notifications(
    user_id: str,
    unread_only: bool = Query(default=False),
    limit: int | None = Query(default=None, ge=1, le=500),
    services: ServiceContainer = Depends(get_services),
) -> NotificationListResponse:
    notifications = await services.dispatcher.list_for_user(
        user_id,
        unread_only=unread_only,
        limit=limit,
    )
    return NotificationListResponse(
        items=[NotificationResponse.from_notification(notification) for notification in notifications],
        unread_count=await services.dispatcher.unread_count(user_id),
    )


@router.post("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: str,
    acting_user_id: str = Depends(require_acting_user_id),
    services: ServiceContainer = Depends(get_services),
) -> NotificationResponse:
    try:
        notification = await services.dispatcher.mark_read(notification_id, user_id=acting_user_id)
    except DOMAIN_ERRORS as exc:
        raise http_error_for(exc) from exc
    return NotificationResponse.from_notification(notification)


@router.post(
    "/users/{user_id}/notifications/read-all",
    response_model=NotificationsMarkedReadResponse,
)
async def mark_all_notifications_read(
    user_id: str,
    services: ServiceContainer = Depends(get_services),
) -> NotificationsMarkedReadResponse:
    updated = await services.dispatcher.mark_all_read(user_id)
    return NotificationsMarkedReadResponse(updated=updated)


@router.delete("/notifications/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: str,
    acting_user_id: str = Depends(require_acting_user_id),
    services: ServiceContainer = Depends(get_services),
) -> None:
    try:
        await services.dispatcher.delete(notification_id, user_id=acting_user_id)
    except DOMAIN_ERRORS as exc:
        raise http_error_for(exc) from exc
