"""AI extraction of a meeting summary and action items.

The client owns prompt construction, retry with jittered exponential backoff,
and strict validation of the model output. It never invents a result: any
response that does not match the expected shape raises ``ExtractionError``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from asyncio import sleep
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from random import uniform
from typing import Any

from app.services.action_item_models import (
    ExtractedItem,
    ExtractionResult,
    Priority,
    TeamMember,
    parse_deadline,
)
from app.services.gemini_completion_client import CompletionService, CompletionServiceError

logger = logging.getLogger(__name__)

_CODE_FENCE_PATTERN = re.compile(r"^```[\w-]*[ \t]*\n?(?P<body>.*?)\n?[ \t]*```$", re.DOTALL)
_REJECTED_INPUT_STATUS_CODES = frozenset({400, 413, 422})


class ExtractionReason(StrEnum):
    transient_exhausted = "transient-exhausted"
    invalid_response = "invalid-response"
    rejected_input = "rejected-input"
    permanent_failure = "permanent-failure"
    cancelled = "cancelled"


class ExtractionError(Exception):
    def __init__(self, reason: ExtractionReason, message: str, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.reason = reason
        self.attempts = attempts


@dataclass(frozen=True)
class ExtractionOk:
    result: ExtractionResult


@dataclass(frozen=True)
class ExtractionFailed:
    error: ExtractionError


ExtractionOutcome = ExtractionOk | ExtractionFailed


class ExtractionClient:
    def __init__(
        self,
        completion_service: CompletionService,
        *,
        max_retries: int = 3,
        backoff_base_seconds: float = 0.5,
        backoff_cap_seconds: float = 4.0,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.completion_service = completion_service
        self.max_retries = max(0, max_retries)
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_cap_seconds = backoff_cap_seconds
        self.timeout_seconds = timeout_seconds

    async def extract(
        self,
        transcript: str,
        roster: Sequence[TeamMember],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ExtractionResult:
        if not transcript or not transcript.strip():
            raise ExtractionError(ExtractionReason.rejected_input, "Transcript content is required.")

        prompt = self.build_prompt(transcript, roster)
        raw_text, attempts = await self._complete_with_retry(prompt, cancel_event)
        try:
            return parse_extraction_response(raw_text)
        except ExtractionError as exc:
            exc.attempts = attempts
            raise

    async def extract_outcome(
        self,
        transcript: str,
        roster: Sequence[TeamMember],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ExtractionOutcome:
        try:
            result = await self.extract(transcript, roster, cancel_event=cancel_event)
        except ExtractionError as exc:
            return ExtractionFailed(error=exc)
        return ExtractionOk(result=result)

    def build_prompt(self, transcript: str, roster: Sequence[TeamMember]) -> str:
        active_members = [member for member in roster if member.is_active]
        team_context = ""
        owner_guideline = ""
        if active_members:
            roster_lines = "\n".join(
                f"- {member.display_name} ({member.email})" for member in active_members
            )
            team_context = (
                "\n\nTeam members context:\n"
                "The following team members may have participated in this meeting. "
                "Match speaker names to them when suggesting owners:\n"
                f"{roster_lines}\n"
                "Prefer the exact display names from this list when naming an owner."
            )
            owner_guideline = "\n- When suggesting owners, match speaker names to the team members listed above"

        return (
            "Analyze this meeting transcript and produce:\n"
            "1. A summary of the meeting in 2-3 paragraphs\n"
            "2. Action items with suggested owners and deadlines\n"
            "3. A priority for each action item"
            f"{team_context}\n\n"
            "Respond with a single JSON object containing exactly the keys "
            '"summary" and "actionItems", in this format:\n'
            "{\n"
            '  "summary": "string",\n'
            '  "actionItems": [\n'
            "    {\n"
            '      "description": "string",\n'
            '      "owner": "string|null",\n'
            '      "deadline": "YYYY-MM-DD|null",\n'
            '      "priority": "high|medium|low"\n'
            "    }\n"
            "  ]\n"
            "}\n\n"
            "Guidelines:\n"
            "- Extract only actionable items that require follow-up\n"
            '- Use "high" for urgent items, "medium" for important items, "low" for nice-to-have items\n'
            "- If no owner is mentioned, set owner to null\n"
            "- If no deadline is mentioned, set deadline to null"
            f"{owner_guideline}\n"
            "- Do not wrap the JSON in Markdown\n\n"
            f"Meeting transcript:\n{transcript.strip()}"
        )

    def backoff_delay(self, attempt: int) -> float:
        base_delay = self.backoff_base_seconds * (2 ** max(0, attempt - 1))
        jittered = base_delay * uniform(0.8, 1.2)
        return min(self.backoff_cap_seconds, jittered)

    async def _complete_with_retry(
        self,
        prompt: str,
        cancel_event: asyncio.Event | None,
    ) -> tuple[str, int]:
        last_error: Exception | None = None
        max_attempts = self.max_retries + 1
        for attempt in range(1, max_attempts + 1):
            _raise_if_cancelled(cancel_event, attempts=attempt - 1)
            try:
                raw_text = await asyncio.wait_for(
                    self.completion_service.complete(prompt),
                    timeout=self.timeout_seconds,
                )
                return raw_text, attempt
            except TimeoutError as exc:
                last_error = exc
            except ConnectionError as exc:
                last_error = exc
            except CompletionServiceError as exc:
                if not exc.retryable:
                    raise ExtractionError(
                        _reason_for_permanent_error(exc),
                        str(exc),
                        attempts=attempt,
                    ) from exc
                last_error = exc

            if attempt >= max_attempts:
                break
            delay = self.backoff_delay(attempt)
            logger.warning(
                "AI completion failed attempt=%s/%s retry_in=%.2fs error=%s",
                attempt,
                max_attempts,
                delay,
                last_error or "timeout",
            )
            await _wait_backoff(delay, cancel_event, attempts=attempt)

        raise ExtractionError(
            ExtractionReason.transient_exhausted,
            f"AI completion failed after {max_attempts} attempts: {last_error or 'timeout'}",
            attempts=max_attempts,
        ) from last_error


def parse_extraction_response(raw_text: str) -> ExtractionResult:
    parsed = _load_json_object(_strip_code_fence(raw_text))

    summary = parsed.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        raise ExtractionError(
            ExtractionReason.invalid_response,
            "Invalid response: summary is required and must be a string.",
        )

    raw_items = parsed.get("actionItems")
    if not isinstance(raw_items, list):
        raise ExtractionError(
            ExtractionReason.invalid_response,
            "Invalid response: actionItems must be an array.",
        )

    items = tuple(_parse_extracted_item(raw_item, index) for index, raw_item in enumerate(raw_items))
    return ExtractionResult(summary=summary.strip(), action_items=items)


def _parse_extracted_item(raw_item: Any, index: int) -> ExtractedItem:
    if not isinstance(raw_item, dict):
        raise ExtractionError(
            ExtractionReason.invalid_response,
            f"Invalid action item at index {index}: expected an object.",
        )

    description = raw_item.get("description")
    if not isinstance(description, str) or not description.strip():
        raise ExtractionError(
            ExtractionReason.invalid_response,
            f"Invalid action item at index {index}: description is required.",
        )

    owner = raw_item.get("owner")
    if owner is not None and not isinstance(owner, str):
        raise ExtractionError(
            ExtractionReason.invalid_response,
            f"Invalid action item at index {index}: owner must be a string or null.",
        )

    raw_priority = raw_item.get("priority")
    if raw_priority is None or (isinstance(raw_priority, str) and not raw_priority.strip()):
        priority = Priority.medium
    elif isinstance(raw_priority, str) and raw_priority.strip().lower() in {p.value for p in Priority}:
        priority = Priority(raw_priority.strip().lower())
    else:
        raise ExtractionError(
            ExtractionReason.invalid_response,
            f"Invalid action item at index {index}: priority must be high, medium, or low.",
        )

    raw_deadline = raw_item.get("deadline")
    deadline = parse_deadline(raw_deadline) if isinstance(raw_deadline, str) else None
    owner_label = owner.strip() if isinstance(owner, str) else ""

    return ExtractedItem(
        description=description.strip(),
        suggested_owner_label=owner_label or None,
        suggested_deadline=deadline,
        priority=priority,
    )


def _strip_code_fence(raw_text: str) -> str:
    text = raw_text.strip()
    match = _CODE_FENCE_PATTERN.match(text)
    if match:
        return match.group("body").strip()
    return text


def _load_json_object(text: str) -> dict[str, Any]:
    direct = _loads_json_if_possible(text)
    if direct is not None:
        return direct

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise ExtractionError(
            ExtractionReason.invalid_response,
            f"AI response is not valid JSON: {text[:200]}",
        )

    candidate = _loads_json_if_possible(text[start : end + 1])
    if candidate is None:
        raise ExtractionError(
            ExtractionReason.invalid_response,
            f"AI response could not be parsed as a JSON object: {text[:200]}",
        )
    return candidate


def _loads_json_if_possible(value: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return None

    if not isinstance(parsed, dict):
        return None
    return parsed


def _reason_for_permanent_error(exc: CompletionServiceError) -> ExtractionReason:
    if exc.status_code in _REJECTED_INPUT_STATUS_CODES:
        return ExtractionReason.rejected_input
    if exc.status_code is None:
        return ExtractionReason.invalid_response
    return ExtractionReason.permanent_failure


def _raise_if_cancelled(cancel_event: asyncio.Event | None, *, attempts: int) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ExtractionError(
            ExtractionReason.cancelled,
            "Extraction was cancelled by the caller.",
            attempts=attempts,
        )


async def _wait_backoff(
    delay: float,
    cancel_event: asyncio.Event | None,
    *,
    attempts: int,
) -> None:
    if cancel_event is None:
        await sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except TimeoutError:
        return
    _raise_if_cancelled(cancel_event, attempts=attempts)
