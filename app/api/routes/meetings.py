import logging

from fastapi import APIRouter, Depends, status

from app.api.dependencies import get_services, require_acting_user_id
from app.api.errors import DOMAIN_ERRORS, http_error_for
from app.schemas.meeting import MeetingDeleteResponse, MeetingProcessRequest, MeetingProcessResponse
from app.schemas.task import ActionItemResponse
from app.services.extraction_client import ExtractionError
from app.services.service_container import ServiceContainer

router = APIRouter(prefix="/meetings", tags=["meetings"])
logger = logging.getLogger(__name__)


@router.post(
    "/process",
    response_model=MeetingProcessResponse,
    status_code=status.HTTP_201_CREATED,
)
async def process_meeting_transcript(
    payload: MeetingProcessRequest,
    acting_user_id: str = Depends(require_acting_user_id),
    services: ServiceContainer = Depends(get_services),
) -> MeetingProcessResponse:
    try:
        result = await services.processing.process_transcript(
            payload.transcript,
            payload.team_id,
            acting_user_id,
            title=payload.title,
            source_filename=payload.source_filename,
        )
    except ExtractionError as exc:
        logger.warning(
            "Transcript extraction failed team_id=%s reason=%s attempts=%s",
            payload.team_id,
            exc.reason.value,
            exc.attempts,
        )
        raise http_error_for(exc) from exc
    except DOMAIN_ERRORS as exc:
        raise http_error_for(exc) from exc

    return MeetingProcessResponse(
        meeting_id=result.meeting_id,
        summary=result.summary,
        item_count=result.item_count,
        auto_assigned_count=result.auto_assigned_count,
        action_items=[ActionItemResponse.from_action_item(item) for item in result.action_items],
    )


@router.delete("/{meeting_id}", response_model=MeetingDeleteResponse)
async def delete_meeting(
    meeting_id: str,
    services: ServiceContainer = Depends(get_services),
) -> MeetingDeleteResponse:
    try:
        deleted = await services.processing.delete_meeting(meeting_id)
    except DOMAIN_ERRORS as exc:
        raise http_error_for(exc) from exc
    return MeetingDeleteResponse(meeting_id=meeting_id, deleted_action_items=deleted)
