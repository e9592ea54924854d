"""Match free-text speaker labels from a transcript to team members.

Tiers are tried in order and the first tier with a candidate wins:
exact (1.0), partial (0.8), first-name (0.6), email-prefix (0.5) and
fuzzy (at most 0.4). Only active members are eligible.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Callable, Iterable, Sequence

from app.services.action_item_models import MatchMethod, SpeakerMatch, TeamMember

EXACT_CONFIDENCE = 1.0
PARTIAL_CONFIDENCE = 0.8
FIRST_NAME_CONFIDENCE = 0.6
EMAIL_PREFIX_CONFIDENCE = 0.5
FUZZY_CONFIDENCE_CAP = 0.4
FUZZY_MAX_RELATIVE_DISTANCE = 0.3
_MIN_PARTIAL_LENGTH = 3
_MAX_LABEL_LENGTH = 50

_SPEAKER_LINE_PATTERN = re.compile(
    r"^[ \t]*"
    r"(?:\[[^\]\n]*\][ \t]*|\(?\d{1,2}:\d{2}(?::\d{2})?\)?[ \t]+)?"
    r"(?P<label>[A-Z][\w'.-]*(?:[ \t]+[A-Z][\w'.-]*)*)"
    r"[ \t]*:(?:[ \t]|$)",
    re.MULTILINE,
)
_NON_SPEAKER_TOKENS = frozenset(
    {
        "action",
        "agenda",
        "attendees",
        "audio",
        "call",
        "conference",
        "date",
        "discussion",
        "location",
        "meeting",
        "minutes",
        "note",
        "notes",
        "participants",
        "recording",
        "session",
        "subject",
        "summary",
        "time",
        "topic",
        "transcript",
        "video",
    },
)


def resolve(transcript: str, roster: Sequence[TeamMember]) -> dict[str, SpeakerMatch]:
    return resolve_labels(extract_speaker_labels(transcript), roster)


def resolve_labels(labels: Iterable[str], roster: Sequence[TeamMember]) -> dict[str, SpeakerMatch]:
    matches: dict[str, SpeakerMatch] = {}
    for label in labels:
        if label in matches:
            continue
        matches[label] = match_label(label, roster)
    return matches


def extract_speaker_labels(transcript: str) -> list[str]:
    labels: list[str] = []
    seen: set[str] = set()
    for match in _SPEAKER_LINE_PATTERN.finditer(transcript or ""):
        label = " ".join(match.group("label").split())
        if label in seen or not _looks_like_speaker_name(label):
            continue
        seen.add(label)
        labels.append(label)
    return labels


def match_label(label: str, roster: Sequence[TeamMember]) -> SpeakerMatch:
    raw_label = label.strip() if isinstance(label, str) else ""
    eligible = [member for member in roster if member.is_active]
    if not raw_label or not eligible:
        return SpeakerMatch.unmatched(raw_label)

    tiers: tuple[tuple[MatchMethod, float, Callable[[str, TeamMember], bool]], ...] = (
        (MatchMethod.exact, EXACT_CONFIDENCE, _is_exact_match),
        (MatchMethod.partial, PARTIAL_CONFIDENCE, _is_partial_match),
        (MatchMethod.first_name, FIRST_NAME_CONFIDENCE, _is_first_name_match),
        (MatchMethod.email_prefix, EMAIL_PREFIX_CONFIDENCE, _is_email_prefix_match),
    )
    for method, confidence, predicate in tiers:
        candidates = [member for member in eligible if predicate(raw_label, member)]
        if not candidates:
            continue
        chosen = min(candidates, key=lambda member: _tie_break_key(raw_label, member))
        return SpeakerMatch(
            raw_label=raw_label,
            matched_member=chosen,
            confidence=confidence,
            method=method,
        )

    return _fuzzy_match(raw_label, eligible)


def normalize_name(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value.lower())
    without_marks = "".join(char for char in decomposed if unicodedata.category(char) != "Mn")
    without_punctuation = re.sub(r"[^\w\s]", "", without_marks).replace("_", "")
    return " ".join(without_punctuation.split())


def edit_distance(left: str, right: str) -> int:
    if left == right:
        return 0
    if not left:
        return len(right)
    if not right:
        return len(left)

    previous_row = list(range(len(right) + 1))
    for row_index, left_char in enumerate(left, start=1):
        current_row = [row_index]
        for column_index, right_char in enumerate(right, start=1):
            substitution_cost = 0 if left_char == right_char else 1
            current_row.append(
                min(
                    previous_row[column_index] + 1,
                    current_row[column_index - 1] + 1,
                    previous_row[column_index - 1] + substitution_cost,
                ),
            )
        previous_row = current_row
    return previous_row[-1]


def _fuzzy_match(raw_label: str, eligible: Sequence[TeamMember]) -> SpeakerMatch:
    normalized_label = normalize_name(raw_label)
    if not normalized_label:
        return SpeakerMatch.unmatched(raw_label)

    best: tuple[tuple[int, int, str, str], TeamMember, float] | None = None
    for member in eligible:
        normalized_name = normalize_name(member.display_name)
        if not normalized_name:
            continue
        longest = max(len(normalized_label), len(normalized_name))
        distance = edit_distance(normalized_label, normalized_name)
        if distance > FUZZY_MAX_RELATIVE_DISTANCE * longest:
            continue
        confidence = round(FUZZY_CONFIDENCE_CAP * (1 - distance / longest), 4)
        ranking = (distance, *_tie_break_key(raw_label, member))
        if best is None or ranking < best[0]:
            best = (ranking, member, confidence)

    if best is None:
        return SpeakerMatch.unmatched(raw_label)
    _, member, confidence = best
    return SpeakerMatch(
        raw_label=raw_label,
        matched_member=member,
        confidence=confidence,
        method=MatchMethod.fuzzy,
    )


def _is_exact_match(label: str, member: TeamMember) -> bool:
    return " ".join(label.split()).casefold() == " ".join(member.display_name.split()).casefold()


def _is_partial_match(label: str, member: TeamMember) -> bool:
    normalized_label = normalize_name(label)
    normalized_name = normalize_name(member.display_name)
    if min(len(normalized_label), len(normalized_name)) < _MIN_PARTIAL_LENGTH:
        return False
    return normalized_label in normalized_name or normalized_name in normalized_label


def _is_first_name_match(label: str, member: TeamMember) -> bool:
    label_tokens = normalize_name(label).split()
    name_tokens = normalize_name(member.display_name).split()
    if not label_tokens or not name_tokens:
        return False
    return label_tokens[0] == name_tokens[0]


def _is_email_prefix_match(label: str, member: TeamMember) -> bool:
    local_part = member.email.split("@", 1)[0]
    compact_prefix = re.sub(r"[^a-z0-9]", "", local_part.lower())
    compact_label = normalize_name(label).replace(" ", "")
    return bool(compact_prefix) and compact_label == compact_prefix


def _tie_break_key(label: str, member: TeamMember) -> tuple[int, str, str]:
    return (
        abs(len(member.display_name) - len(label)),
        member.display_name.casefold(),
        member.user_id,
    )


def _looks_like_speaker_name(label: str) -> bool:
    if len(label) < 2 or len(label) > _MAX_LABEL_LENGTH:
        return False
    tokens = normalize_name(label).split()
    if not tokens:
        return False
    return not any(token in _NON_SPEAKER_TOKENS for token in tokens)
