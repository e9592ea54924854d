from fastapi import APIRouter, Depends, status

from app.api.dependencies import get_services, require_acting_user_id
from app.api.errors import DOMAIN_ERRORS, http_error_for
from app.schemas.notification import InvitationResponseResult, TeamInvitationRequest
from app.services.action_item_models import TeamMember
from app.services.notification_dispatcher import InvitationResponse
from app.services.service_container import ServiceContainer

router = APIRouter(prefix="/teams", tags=["teams"])


@router.post(
    "/{team_id}/invitations",
    response_model=InvitationResponseResult,
    status_code=status.HTTP_201_CREATED,
)
async def invite_team_member(
    team_id: str,
    payload: TeamInvitationRequest,
    acting_user_id: str = Depends(require_acting_user_id),
    services: ServiceContainer = Depends(get_services),
) -> InvitationResponseResult:
    invitee = TeamMember(
        user_id=payload.user_id.strip(),
        display_name=payload.display_name.strip(),
        email=payload.email.strip().lower(),
        role=payload.role,
    )
    try:
        response = await services.dispatcher.invite_member(
            team_id,
            invitee,
            invited_by_user_id=acting_user_id,
        )
    except DOMAIN_ERRORS as exc:
        raise http_error_for(exc) from exc
    return _map_invitation_response(team_id, response)


@router.post("/{team_id}/invitation/accept", response_model=InvitationResponseResult)
async def accept_team_invitation(
    team_id: str,
    acting_user_id: str = Depends(require_acting_user_id),
    services: ServiceContainer = Depends(get_services),
) -> InvitationResponseResult:
    try:
        response = await services.dispatcher.accept_invitation(team_id, acting_user_id)
    except DOMAIN_ERRORS as exc:
        raise http_error_for(exc) from exc
    return _map_invitation_response(team_id, response)


@router.post("/{team_id}/invitation/decline", response_model=InvitationResponseResult)
async def decline_team_invitation(
    team_id: str,
    acting_user_id: str = Depends(require_acting_user_id),
    services: ServiceContainer = Depends(get_services),
) -> InvitationResponseResult:
    try:
        response = await services.dispatcher.decline_invitation(team_id, acting_user_id)
    except DOMAIN_ERRORS as exc:
        raise http_error_for(exc) from exc
    return _map_invitation_response(team_id, response)


def _map_invitation_response(team_id: str, response: InvitationResponse) -> InvitationResponseResult:
    return InvitationResponseResult(
        team_id=team_id,
        user_id=response.member.user_id,
        status=response.member.status,
        notification_id=response.notification.id if response.notification else None,
    )
