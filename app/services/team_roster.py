from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from app.services.action_item_models import MemberStatus, TeamMember
from app.services.document_store import VERSION_FIELD, DocumentStore, VersionConflictError

logger = logging.getLogger(__name__)

TEAMS_COLLECTION = "teams"


class TeamNotFoundError(LookupError):
    pass


class TeamMemberNotFoundError(LookupError):
    pass


class InvitationStateError(Exception):
    pass


class InvitationNotPermittedError(PermissionError):
    pass


class TeamRoster:
    """Team documents with an embedded ``members`` array.

    The processing pipeline only reads the roster. Membership changes are
    limited to admin invitations and the invitee's accept or decline.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def save_team(
        self,
        team_id: str,
        *,
        name: str,
        members: Iterable[TeamMember],
        created_by_user_id: str | None = None,
    ) -> dict[str, Any]:
        normalized_team_id = team_id.strip()
        if not normalized_team_id:
            raise ValueError("team_id is required.")
        document = {
            "name": name.strip() or normalized_team_id,
            "created_by_user_id": created_by_user_id,
            "members": [member.to_document() for member in members],
            "created_at": datetime.now(UTC),
        }
        return await self.store.set(TEAMS_COLLECTION, normalized_team_id, document)

    async def get_team(self, team_id: str) -> dict[str, Any]:
        team = await self.store.get(TEAMS_COLLECTION, team_id.strip())
        if not team:
            raise TeamNotFoundError(f"Team {team_id} was not found.")
        return team

    async def get_team_name(self, team_id: str) -> str:
        team = await self.get_team(team_id)
        return str(team.get("name") or team_id)

    async def get_members(self, team_id: str) -> list[TeamMember]:
        team = await self.get_team(team_id)
        return _members_from_team(team)

    async def get_active_members(self, team_id: str) -> list[TeamMember]:
        return [member for member in await self.get_members(team_id) if member.is_active]

    async def get_member(self, team_id: str, user_id: str) -> TeamMember:
        normalized_user_id = user_id.strip()
        for member in await self.get_members(team_id):
            if member.user_id == normalized_user_id:
                return member
        raise TeamMemberNotFoundError(f"User {user_id} is not a member of team {team_id}.")

    async def is_admin(self, team_id: str, user_id: str) -> bool:
        try:
            member = await self.get_member(team_id, user_id)
        except TeamMemberNotFoundError:
            return False
        return member.is_active and member.is_admin

    async def invite_member(
        self,
        team_id: str,
        invitee: TeamMember,
        *,
        invited_by_user_id: str,
    ) -> TeamMember:
        if not await self.is_admin(team_id, invited_by_user_id):
            raise InvitationNotPermittedError(
                f"User {invited_by_user_id} cannot invite members to team {team_id}.",
            )
        team = await self.get_team(team_id)
        members = _members_from_team(team)
        existing = next((member for member in members if member.user_id == invitee.user_id), None)
        if existing is not None and existing.status != MemberStatus.inactive:
            raise InvitationStateError(
                f"Membership for user {invitee.user_id} in team {team_id} is {existing.status.value}.",
            )

        invited_member = TeamMember(
            user_id=invitee.user_id,
            display_name=invitee.display_name,
            email=invitee.email,
            role=invitee.role,
            status=MemberStatus.invited,
            invited_by_user_id=invited_by_user_id,
        )
        members = [member for member in members if member.user_id != invited_member.user_id]
        members.append(invited_member)
        await self._write_members(team_id, team, members)
        logger.info(
            "Team member invited team_id=%s user_id=%s invited_by=%s",
            team_id,
            invited_member.user_id,
            invited_by_user_id,
        )
        return invited_member

    async def set_member_status(
        self,
        team_id: str,
        user_id: str,
        status: MemberStatus,
        *,
        allowed_current: frozenset[MemberStatus] | None = None,
    ) -> TeamMember:
        team = await self.get_team(team_id)
        members = _members_from_team(team)
        target = next((member for member in members if member.user_id == user_id.strip()), None)
        if target is None:
            raise TeamMemberNotFoundError(f"User {user_id} is not a member of team {team_id}.")
        if allowed_current is not None and target.status not in allowed_current:
            raise InvitationStateError(
                f"Membership for user {user_id} in team {team_id} is {target.status.value}.",
            )

        updated_member = TeamMember(
            user_id=target.user_id,
            display_name=target.display_name,
            email=target.email,
            role=target.role,
            status=status,
            invited_by_user_id=target.invited_by_user_id,
        )
        updated_members = [
            updated_member if member.user_id == target.user_id else member
            for member in members
        ]
        await self._write_members(team_id, team, updated_members)
        logger.info(
            "Team member status changed team_id=%s user_id=%s from=%s to=%s",
            team_id,
            user_id,
            target.status.value,
            status.value,
        )
        return updated_member

    async def _write_members(self, team_id: str, team: dict[str, Any], members: list[TeamMember]) -> None:
        try:
            await self.store.update(
                TEAMS_COLLECTION,
                str(team["_id"]),
                {"members": [member.to_document() for member in members]},
                expected_version=team.get(VERSION_FIELD),
            )
        except VersionConflictError as exc:
            raise InvitationStateError(
                f"Team {team_id} was modified concurrently; reload the membership and retry.",
            ) from exc


def _members_from_team(team: dict[str, Any]) -> list[TeamMember]:
    raw_members = team.get("members")
    if not isinstance(raw_members, list):
        return []
    members: list[TeamMember] = []
    for raw_member in raw_members:
        if not isinstance(raw_member, dict):
            continue
        member = TeamMember.from_document(raw_member)
        if member:
            members.append(member)
    return members
