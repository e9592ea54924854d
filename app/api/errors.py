from fastapi import HTTPException, status

from app.services.assignment_engine import (
    ActionItemNotFoundError,
    AssigneeNotEligibleError,
    AssignmentNotPermittedError,
    ConcurrentModificationError,
    InvalidTaskStatusError,
)
from app.services.document_store import DocumentStoreError
from app.services.extraction_client import ExtractionError, ExtractionReason
from app.services.meeting_processing_service import (
    ExtractionUnavailableError,
    MeetingNotFoundError,
    ProcessingCancelledError,
)
from app.services.notification_dispatcher import (
    InvalidNotificationRecipient,
    InvalidNotificationType,
    NotificationNotFoundError,
)
from app.services.team_roster import (
    InvitationNotPermittedError,
    InvitationStateError,
    TeamMemberNotFoundError,
    TeamNotFoundError,
)
from app.services.transcript_validator import TranscriptValidationError

DOMAIN_ERRORS = (
    ActionItemNotFoundError,
    AssigneeNotEligibleError,
    AssignmentNotPermittedError,
    ConcurrentModificationError,
    DocumentStoreError,
    ExtractionError,
    ExtractionUnavailableError,
    InvalidNotificationRecipient,
    InvalidNotificationType,
    InvalidTaskStatusError,
    InvitationNotPermittedError,
    InvitationStateError,
    MeetingNotFoundError,
    NotificationNotFoundError,
    ProcessingCancelledError,
    TeamMemberNotFoundError,
    TeamNotFoundError,
    TranscriptValidationError,
)

_EXTRACTION_STATUS_CODES = {
    ExtractionReason.transient_exhausted: status.HTTP_503_SERVICE_UNAVAILABLE,
    ExtractionReason.invalid_response: status.HTTP_502_BAD_GATEWAY,
    ExtractionReason.rejected_input: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ExtractionReason.permanent_failure: status.HTTP_502_BAD_GATEWAY,
    ExtractionReason.cancelled: status.HTTP_409_CONFLICT,
}

_STATUS_CODES: tuple[tuple[type[Exception], int], ...] = (
    (TranscriptValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidNotificationType, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidNotificationRecipient, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidTaskStatusError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (AssigneeNotEligibleError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (AssignmentNotPermittedError, status.HTTP_403_FORBIDDEN),
    (InvitationNotPermittedError, status.HTTP_403_FORBIDDEN),
    (ActionItemNotFoundError, status.HTTP_404_NOT_FOUND),
    (NotificationNotFoundError, status.HTTP_404_NOT_FOUND),
    (MeetingNotFoundError, status.HTTP_404_NOT_FOUND),
    (TeamNotFoundError, status.HTTP_404_NOT_FOUND),
    (TeamMemberNotFoundError, status.HTTP_404_NOT_FOUND),
    (ConcurrentModificationError, status.HTTP_409_CONFLICT),
    (InvitationStateError, status.HTTP_409_CONFLICT),
    (ProcessingCancelledError, status.HTTP_409_CONFLICT),
    (ExtractionUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (DocumentStoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def http_error_for(exc: Exception) -> HTTPException:
    if isinstance(exc, ExtractionError):
        return HTTPException(
            status_code=_EXTRACTION_STATUS_CODES.get(exc.reason, status.HTTP_502_BAD_GATEWAY),
            detail={"reason": exc.reason.value, "message": str(exc)},
        )
    if isinstance(exc, TranscriptValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"reason": exc.code, "message": str(exc)},
        )
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Unexpected error.",
    )
