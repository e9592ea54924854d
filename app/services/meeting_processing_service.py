from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime
from uuid import uuid4

from app.services.action_item_models import ActionItem, Notification, SpeakerMatch, TaskStatus, TeamMember
from app.services.assignment_engine import ACTION_ITEMS_COLLECTION, AssignmentEngine, BulkAssignmentResult
from app.services.document_store import DocumentStore, DocumentStoreError, Unsubscribe
from app.services.extraction_client import ExtractionClient, ExtractionError, ExtractionReason
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.realtime import EntityType, RealtimeHub, SubscriptionCallback, SubscriptionKey
from app.services.speaker_resolver import match_label, resolve
from app.services.team_roster import TeamRoster
from app.services.transcript_validator import DEFAULT_MAX_TRANSCRIPT_BYTES, validate_transcript

logger = logging.getLogger(__name__)

MEETINGS_COLLECTION = "meetings"


class MeetingNotFoundError(LookupError):
    pass


class ProcessingCancelledError(Exception):
    pass


class ExtractionUnavailableError(RuntimeError):
    pass


@dataclass(frozen=True)
class ProcessingResult:
    meeting_id: str
    summary: str
    item_count: int
    auto_assigned_count: int
    action_items: tuple[ActionItem, ...] = ()


class MeetingProcessingService:
    """Entry points used by the HTTP layer.

    A processing run is strictly sequential: validate, load the roster,
    extract, resolve speakers, auto-assign, persist, then notify. Nothing is
    written until extraction and resolution have finished, so a cancelled or
    failed run leaves no partial meeting behind. Items are stored before the
    meeting that lists them; a store failure while persisting removes what the
    run already wrote.
    """

    def __init__(
        self,
        *,
        store: DocumentStore,
        roster: TeamRoster,
        extraction_client: ExtractionClient | None,
        assignment_engine: AssignmentEngine,
        dispatcher: NotificationDispatcher,
        realtime: RealtimeHub,
        max_transcript_bytes: int = DEFAULT_MAX_TRANSCRIPT_BYTES,
    ) -> None:
        self.store = store
        self.roster = roster
        self.extraction_client = extraction_client
        self.assignment_engine = assignment_engine
        self.dispatcher = dispatcher
        self.realtime = realtime
        self.max_transcript_bytes = max_transcript_bytes

    async def process_transcript(
        self,
        raw: str | bytes,
        team_id: str,
        acting_user_id: str,
        *,
        title: str | None = None,
        source_filename: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ProcessingResult:
        transcript = validate_transcript(
            raw,
            source_filename=source_filename,
            max_bytes=self.max_transcript_bytes,
        )
        if self.extraction_client is None:
            raise ExtractionUnavailableError("AI extraction is not configured.")
        members = await self.roster.get_members(team_id)
        active_members = [member for member in members if member.is_active]

        try:
            extraction = await self.extraction_client.extract(
                transcript.text,
                active_members,
                cancel_event=cancel_event,
            )
        except ExtractionError as exc:
            if exc.reason == ExtractionReason.cancelled:
                raise ProcessingCancelledError(str(exc)) from exc
            raise

        speaker_map = resolve(transcript.text, active_members)
        owner_map = _with_owner_labels(
            speaker_map,
            (item.suggested_owner_label for item in extraction.action_items),
            active_members,
        )
        meeting_id = uuid4().hex
        items = self.assignment_engine.auto_assign(
            extraction,
            owner_map,
            meeting_id=meeting_id,
            team_id=team_id,
        )

        _raise_if_cancelled(cancel_event)
        meeting_title = (title or "").strip() or transcript.source_filename or "Meeting"
        try:
            saved_items = await self.assignment_engine.save_new_items(items)
            await self.store.set(
                MEETINGS_COLLECTION,
                meeting_id,
                {
                    "team_id": team_id,
                    "title": meeting_title,
                    "summary": extraction.summary,
                    "source_filename": transcript.source_filename,
                    "created_by": acting_user_id,
                    "action_item_ids": [item.id for item in saved_items],
                    "speakers": {
                        label: {
                            "user_id": match.matched_member.user_id if match.matched_member else None,
                            "method": match.method.value,
                            "confidence": match.confidence,
                        }
                        for label, match in speaker_map.items()
                    },
                    "created_at": datetime.now(UTC),
                },
            )
        except DocumentStoreError:
            await self._discard_partial_run(meeting_id, items)
            raise
        auto_assigned_count = sum(1 for item in saved_items if item.is_assigned)
        logger.info(
            "Transcript processed meeting_id=%s team_id=%s items=%s auto_assigned=%s",
            meeting_id,
            team_id,
            len(saved_items),
            auto_assigned_count,
        )

        await self.assignment_engine.notify_auto_assigned(saved_items)
        await self._notify_meeting_update(
            meeting_id,
            meeting_title,
            active_members,
            acting_user_id,
            item_count=len(saved_items),
        )
        return ProcessingResult(
            meeting_id=meeting_id,
            summary=extraction.summary,
            item_count=len(saved_items),
            auto_assigned_count=auto_assigned_count,
            action_items=tuple(saved_items),
        )

    async def assign_task(self, item_id: str, assignee_id: str, acting_user_id: str) -> ActionItem:
        return await self.assignment_engine.manual_assign(item_id, assignee_id, acting_user_id)

    async def bulk_assign_tasks(
        self,
        item_ids: Sequence[str],
        assignee_id: str,
        acting_user_id: str,
    ) -> BulkAssignmentResult:
        return await self.assignment_engine.bulk_assign(item_ids, assignee_id, acting_user_id)

    async def unassign_task(self, item_id: str, acting_user_id: str) -> ActionItem:
        return await self.assignment_engine.unassign(item_id, acting_user_id)

    async def update_task_status(
        self,
        item_id: str,
        status: TaskStatus | str,
        acting_user_id: str,
    ) -> ActionItem:
        return await self.assignment_engine.update_status(item_id, status, acting_user_id)

    async def get_user_tasks(
        self,
        user_id: str,
        *,
        team_id: str | None = None,
        status: TaskStatus | str | None = None,
    ) -> list[ActionItem]:
        return await self.assignment_engine.list_for_assignee(user_id, team_id=team_id, status=status)

    async def get_overdue_tasks(
        self,
        user_id: str,
        today: date | None = None,
        *,
        team_id: str | None = None,
        status: TaskStatus | str | None = None,
    ) -> list[ActionItem]:
        reference_day = today or datetime.now(UTC).date()
        tasks = await self.assignment_engine.list_for_assignee(user_id, team_id=team_id, status=status)
        return [task for task in tasks if task.is_overdue(reference_day)]

    async def notify_overdue_tasks(self, today: date | None = None) -> list[Notification]:
        return await self.assignment_engine.notify_overdue(today or datetime.now(UTC).date())

    async def subscribe_to_user_tasks(self, user_id: str, callback: SubscriptionCallback) -> Unsubscribe:
        return await self.realtime.subscribe(SubscriptionKey(EntityType.tasks, user_id), callback)

    async def subscribe_to_notifications(self, user_id: str, callback: SubscriptionCallback) -> Unsubscribe:
        return await self.realtime.subscribe(SubscriptionKey(EntityType.notifications, user_id), callback)

    async def delete_meeting(self, meeting_id: str) -> int:
        meeting = await self.store.get(MEETINGS_COLLECTION, meeting_id)
        if not meeting:
            raise MeetingNotFoundError(f"Meeting {meeting_id} was not found.")
        deleted_items = await self.assignment_engine.delete_items_for_meeting(meeting_id)
        await self.store.delete(MEETINGS_COLLECTION, meeting_id)
        logger.info("Meeting deleted meeting_id=%s action_items=%s", meeting_id, deleted_items)
        return deleted_items

    async def _discard_partial_run(self, meeting_id: str, items: Iterable[ActionItem]) -> None:
        targets = [(ACTION_ITEMS_COLLECTION, item.id) for item in items]
        targets.append((MEETINGS_COLLECTION, meeting_id))
        for collection, doc_id in targets:
            try:
                await self.store.delete(collection, doc_id)
            except DocumentStoreError:
                logger.exception(
                    "Partial meeting cleanup failed meeting_id=%s collection=%s doc_id=%s",
                    meeting_id,
                    collection,
                    doc_id,
                )

    async def _notify_meeting_update(
        self,
        meeting_id: str,
        meeting_title: str,
        members: Iterable[TeamMember],
        acting_user_id: str,
        *,
        item_count: int,
    ) -> None:
        for member in members:
            if member.user_id == acting_user_id:
                continue
            try:
                await self.dispatcher.notify_meeting_update(
                    member.user_id,
                    meeting_id=meeting_id,
                    title=f"Meeting processed: {meeting_title}",
                    message=f"{item_count} action item(s) were extracted from {meeting_title}",
                    data={"item_count": item_count},
                )
            except Exception:
                logger.exception(
                    "Meeting update notification failed meeting_id=%s user_id=%s",
                    meeting_id,
                    member.user_id,
                )


def _with_owner_labels(
    speaker_map: dict[str, SpeakerMatch],
    owner_labels: Iterable[str | None],
    roster: Sequence[TeamMember],
) -> dict[str, SpeakerMatch]:
    combined = dict(speaker_map)
    known = {label.casefold() for label in combined}
    for label in owner_labels:
        if not label or label.casefold() in known:
            continue
        combined[label] = match_label(label, roster)
        known.add(label.casefold())
    return combined


def _raise_if_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ProcessingCancelledError("Processing was cancelled before results were saved.")
