from __future__ import annotations

import logging
from dataclasses import dataclass

from app.core.config import Settings
from app.services.assignment_engine import AssignmentEngine
from app.services.document_store import DocumentStore, create_document_store
from app.services.extraction_client import ExtractionClient
from app.services.gemini_completion_client import CompletionService, GeminiCompletionClient
from app.services.meeting_processing_service import MeetingProcessingService
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.realtime import RealtimeHub
from app.services.team_roster import TeamRoster

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    store: DocumentStore
    roster: TeamRoster
    dispatcher: NotificationDispatcher
    assignment_engine: AssignmentEngine
    realtime: RealtimeHub
    extraction_client: ExtractionClient | None
    processing: MeetingProcessingService

    @property
    def ai_configured(self) -> bool:
        return self.extraction_client is not None


def build_service_container(
    settings: Settings,
    *,
    store: DocumentStore | None = None,
    completion_service: CompletionService | None = None,
) -> ServiceContainer:
    document_store = store or create_document_store(settings)
    roster = TeamRoster(document_store)
    dispatcher = NotificationDispatcher(document_store, roster)
    assignment_engine = AssignmentEngine(document_store, roster, dispatcher)
    realtime = RealtimeHub(document_store)

    if completion_service is None and settings.gemini_api_key:
        completion_service = GeminiCompletionClient(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            timeout_seconds=settings.gemini_api_timeout_seconds,
            api_base_url=settings.gemini_api_base_url,
        )
    extraction_client = None
    if completion_service is not None:
        extraction_client = ExtractionClient(
            completion_service,
            max_retries=settings.extraction_max_retries,
            backoff_base_seconds=settings.extraction_backoff_base_seconds,
            backoff_cap_seconds=settings.extraction_backoff_cap_seconds,
            timeout_seconds=settings.gemini_api_timeout_seconds,
        )
    else:
        logger.warning("GEMINI_API_KEY is not configured; transcript processing is disabled")

    processing = MeetingProcessingService(
        store=document_store,
        roster=roster,
        extraction_client=extraction_client,
        assignment_engine=assignment_engine,
        dispatcher=dispatcher,
        realtime=realtime,
        max_transcript_bytes=settings.transcript_max_bytes,
    )
    return ServiceContainer(
        settings=settings,
        store=document_store,
        roster=roster,
        dispatcher=dispatcher,
        assignment_engine=assignment_engine,
        realtime=realtime,
        extraction_client=extraction_client,
        processing=processing,
    )
