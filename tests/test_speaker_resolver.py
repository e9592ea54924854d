import pytest

from app.services.action_item_models import MatchMethod, MemberStatus, TeamMember
from app.services.speaker_resolver import (
    edit_distance,
    extract_speaker_labels,
    match_label,
    normalize_name,
    resolve,
)

_SARAH = TeamMember(user_id="u-sarah", display_name="Sarah Johnson", email="sarah@co.com")


def _roster() -> list[TeamMember]:
    return [
        _SARAH,
        TeamMember(user_id="u-mike", display_name="Michael Chen", email="mchen@co.com"),
        TeamMember(user_id="u-ana", display_name="Ana María López", email="ana.lopez@co.com"),
    ]


def test_exact_match_scores_full_confidence() -> None:
    match = match_label("Sarah Johnson", [_SARAH])

    assert match.method == MatchMethod.exact
    assert match.confidence == 1.0
    assert match.matched_member == _SARAH


def test_exact_match_ignores_case_and_extra_whitespace() -> None:
    match = match_label("  sarah   JOHNSON ", [_SARAH])

    assert match.method == MatchMethod.exact


def test_fuzzy_match_for_two_typos_scores_below_partial_tiers() -> None:
    match = match_label("Sara Jonson", [_SARAH])

    assert match.method == MatchMethod.fuzzy
    assert match.matched_member == _SARAH
    assert 0 < match.confidence < 0.4


def test_unknown_label_is_unmatched() -> None:
    match = match_label("Unknown Person", [_SARAH])

    assert match.matched_member is None
    assert match.method == MatchMethod.none
    assert match.confidence == 0


@pytest.mark.parametrize(
    ("label", "method", "confidence", "user_id"),
    [
        ("Michael", MatchMethod.partial, 0.8, "u-mike"),
        ("Sarah K.", MatchMethod.first_name, 0.6, "u-sarah"),
        ("mchen", MatchMethod.email_prefix, 0.5, "u-mike"),
        ("Ana Lopez", MatchMethod.first_name, 0.6, "u-ana"),
        ("Ana Maria Lopez", MatchMethod.partial, 0.8, "u-ana"),
    ],
)
def test_tiers_assign_expected_method_and_confidence(
    label: str,
    method: MatchMethod,
    confidence: float,
    user_id: str,
) -> None:
    match = match_label(label, _roster())

    assert match.method == method
    assert match.confidence == confidence
    assert match.matched_member is not None
    assert match.matched_member.user_id == user_id


def test_exact_tier_wins_over_lower_tiers() -> None:
    roster = [
        TeamMember(user_id="u-1", display_name="Sam", email="samuel@co.com"),
        TeamMember(user_id="u-2", display_name="Sam Smith", email="sam@co.com"),
    ]

    match = match_label("Sam", roster)

    assert match.method == MatchMethod.exact
    assert match.matched_member is not None
    assert match.matched_member.user_id == "u-1"


def test_partial_match_accepts_short_forms_inside_a_name() -> None:
    roster = [TeamMember(user_id="u-1", display_name="Jonathan Lee", email="jlee@co.com")]

    match = match_label("Jon", roster)

    assert match.method == MatchMethod.partial
    assert match.confidence == 0.8
    assert match.matched_member is not None
    assert match.matched_member.user_id == "u-1"


def test_partial_match_needs_at_least_three_characters() -> None:
    roster = [TeamMember(user_id="u-1", display_name="Jonathan Lee", email="jlee@co.com")]

    match = match_label("Jo", roster)

    assert match.method != MatchMethod.partial


def test_inactive_members_are_never_matched() -> None:
    roster = [
        TeamMember(
            user_id="u-old",
            display_name="Sarah Johnson",
            email="sarah@co.com",
            status=MemberStatus.inactive,
        ),
        TeamMember(
            user_id="u-invited",
            display_name="Sarah Johnson",
            email="sj@co.com",
            status=MemberStatus.invited,
        ),
    ]

    match = match_label("Sarah Johnson", roster)

    assert match.matched_member is None
    assert match.method == MatchMethod.none


def test_ties_within_a_tier_are_broken_deterministically() -> None:
    roster = [
        TeamMember(user_id="u-b", display_name="Chris Zimmerman", email="cz@co.com"),
        TeamMember(user_id="u-a", display_name="Chris Adams", email="ca@co.com"),
    ]

    first = match_label("Chris", roster)
    second = match_label("Chris", list(reversed(roster)))

    assert first.method == MatchMethod.partial
    assert first.matched_member is not None
    assert first.matched_member.user_id == "u-a"
    assert second == first


def test_extract_speaker_labels_keeps_first_seen_order_and_filters_noise() -> None:
    transcript = "\n".join(
        [
            "Meeting Notes: weekly sync",
            "[00:00:05] Sarah Johnson: Morning all.",
            "Michael Chen: Morning.",
            "Sarah Johnson: Let's start.",
            "10:32 Ana María López: I have the numbers.",
            "Agenda: budget",
            "the time was 10:30: late",
            "Date: 2025-03-01",
        ],
    )

    assert extract_speaker_labels(transcript) == ["Sarah Johnson", "Michael Chen", "Ana María López"]


def test_resolve_is_idempotent_and_maps_every_label() -> None:
    transcript = "Sarah Johnson: hi\nMike: hello\nStranger Danger: who am I\n"

    first = resolve(transcript, _roster())
    second = resolve(transcript, _roster())

    assert first == second
    assert list(first) == ["Sarah Johnson", "Mike", "Stranger Danger"]
    assert first["Sarah Johnson"].method == MatchMethod.exact
    assert first["Stranger Danger"].method == MatchMethod.none


def test_confidence_never_increases_down_the_tiers() -> None:
    order = [
        MatchMethod.exact,
        MatchMethod.partial,
        MatchMethod.first_name,
        MatchMethod.email_prefix,
        MatchMethod.fuzzy,
        MatchMethod.none,
    ]
    labels = ["Sarah Johnson", "Michael", "Sarah K.", "mchen", "Sara Jonson", "Nobody Here", "Micheal Chen"]

    matches = [match_label(label, _roster()) for label in labels]
    for match in matches:
        for other in matches:
            if order.index(match.method) < order.index(other.method):
                assert match.confidence > other.confidence


def test_normalize_name_strips_accents_and_punctuation() -> None:
    assert normalize_name("  Ána-María  O'Neil ") == "anamaria oneil"


def test_edit_distance() -> None:
    assert edit_distance("kitten", "sitting") == 3
    assert edit_distance("", "abc") == 3
    assert edit_distance("same", "same") == 0
