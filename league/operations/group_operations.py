"""
Group Operations

Business workflows for groups: creation with invite codes, joining and
leaving, member roles, group settings and soft deletion. Membership checks
go through Group.members_by_user(), a dict keyed by user id.

Roles:
- admin: the group's creator; cannot leave or be removed
- moderator: can remove regular members and manage the game catalog
- member: can schedule matches and add games
"""

import secrets
from typing import List, Optional

from sqlalchemy import select, exists
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from league.config import Config
from league.constants import GroupConstants
from league.database.models import Group, GroupMember, GroupRole, User
from league.utils.exceptions import (
    NotFoundError, PermissionDeniedError, ValidationError, DatabaseError
)
from league.utils.logger import setup_logger

logger = setup_logger(__name__)


def generate_invite_code(length: int = None) -> str:
    """Random uppercase invite code"""
    length = length or Config.INVITE_CODE_LENGTH
    return ''.join(secrets.choice(GroupConstants.INVITE_CODE_ALPHABET) for _ in range(length))


def _validate_max_members(max_members, current_members: int = 0) -> int:
    if not isinstance(max_members, int) or isinstance(max_members, bool):
        raise ValidationError(f"max_members must be a whole number, got {max_members!r}")
    if max_members < GroupConstants.MIN_MAX_MEMBERS:
        raise ValidationError(
            f"max_members must be at least {GroupConstants.MIN_MAX_MEMBERS}, got {max_members}",
            f"A group must allow at least {GroupConstants.MIN_MAX_MEMBERS} members."
        )
    if max_members < current_members:
        raise ValidationError(
            f"max_members {max_members} is below the current member count {current_members}",
            f"The limit cannot be lower than the current number of members ({current_members})."
        )
    return max_members


async def require_member(session: AsyncSession, group_id: int, user_id: int) -> Group:
    """
    Load an active group and check that user_id belongs to it.

    Raises:
        NotFoundError: If the group does not exist or was deleted
        PermissionDeniedError: If the user is not a member
    """
    group = await session.get(Group, group_id)
    if not group or not group.is_active:
        raise NotFoundError("Group", group_id)
    if not group.is_member(user_id):
        raise PermissionDeniedError("access this group")
    return group


async def require_admin(session: AsyncSession, group_id: int, user_id: int,
                        action: str) -> Group:
    group = await require_member(session, group_id, user_id)
    if group.admin_id != user_id:
        raise PermissionDeniedError(action)
    return group


class GroupOperations:
    """Group lifecycle and membership workflows."""

    def __init__(self, database):
        self.db = database
        self.logger = logger

    async def _generate_unique_invite_code(self, session: AsyncSession) -> str:
        for _ in range(Config.INVITE_CODE_MAX_ATTEMPTS):
            code = generate_invite_code()
            taken = await session.scalar(select(exists().where(Group.invite_code == code)))
            if not taken:
                return code
        raise DatabaseError("invite code generation",
                            f"no unique code after {Config.INVITE_CODE_MAX_ATTEMPTS} attempts")

    async def create_group(self, name: str, admin_id: int, description: str = None,
                           avatar: str = None, max_members: int = None) -> Group:
        """
        Create a group; the creator joins as its admin.

        Raises:
            ValidationError: If the name is empty or the member limit is invalid
            NotFoundError: If the creator does not exist
        """
        if not name or not name.strip():
            raise ValidationError("Group name is required")
        if max_members is None:
            max_members = GroupConstants.DEFAULT_MAX_MEMBERS
        _validate_max_members(max_members)

        async with self.db.get_session("create group") as session:
            admin = await session.get(User, admin_id)
            if not admin or not admin.is_active:
                raise NotFoundError("User", admin_id)

            group = Group(
                name=name.strip(),
                description=description,
                avatar=avatar,
                admin_id=admin_id,
                invite_code=await self._generate_unique_invite_code(session),
                max_members=max_members,
                total_matches=0
            )
            group.members.append(GroupMember(user_id=admin_id, role=GroupRole.ADMIN))
            session.add(group)
            await session.commit()

            self.logger.info(f"Created group {group.id} '{group.name}' with admin {admin_id}")
            return group

    async def get_group(self, group_id: int, user_id: int) -> Group:
        """Get a group the user belongs to"""
        async with self.db.get_session("get group") as session:
            return await require_member(session, group_id, user_id)

    async def list_user_groups(self, user_id: int) -> List[Group]:
        """Active groups the user belongs to, by name"""
        async with self.db.get_session("list groups") as session:
            result = await session.execute(
                select(Group)
                .join(GroupMember, GroupMember.group_id == Group.id)
                .where((GroupMember.user_id == user_id) & (Group.is_active == True))
                .order_by(Group.name)
            )
            return list(result.scalars().all())

    async def list_members(self, group_id: int, user_id: int) -> List[GroupMember]:
        """Members of a group with their roles and users, in join order"""
        async with self.db.get_session("list members") as session:
            await require_member(session, group_id, user_id)
            result = await session.execute(
                select(GroupMember)
                .options(selectinload(GroupMember.user))
                .where(GroupMember.group_id == group_id)
                .order_by(GroupMember.id)
            )
            return list(result.scalars().all())

    async def update_group(self, group_id: int, actor_id: int, name: str = None,
                           description: str = None, avatar: str = None,
                           max_members: int = None) -> Group:
        """
        Edit a group's details. Admin only.

        Raises:
            ValidationError: For an empty name, or a member limit below the
                minimum or below the current member count
        """
        if name is not None and not name.strip():
            raise ValidationError("Group name is required")

        async with self.db.get_session("update group") as session:
            group = await require_admin(session, group_id, actor_id, "edit this group")

            if max_members is not None:
                group.max_members = _validate_max_members(max_members, group.member_count)
            if name is not None:
                group.name = name.strip()
            if description is not None:
                group.description = description
            if avatar is not None:
                group.avatar = avatar

            await session.commit()
            self.logger.info(f"Group {group_id} updated by {actor_id}")
            return group

    async def regenerate_invite_code(self, group_id: int, actor_id: int) -> str:
        """Replace the invite code; the old one stops working. Admin only."""
        async with self.db.get_session("regenerate invite code") as session:
            group = await require_admin(session, group_id, actor_id,
                                        "regenerate the invite code")
            group.invite_code = await self._generate_unique_invite_code(session)
            await session.commit()
            self.logger.info(f"Group {group_id} has a new invite code")
            return group.invite_code

    async def join_group(self, invite_code: str, user_id: int) -> Group:
        """
        Join a group by invite code as a regular member.

        Raises:
            NotFoundError: If no active group has this code, or the user is unknown
            ValidationError: If the user is already a member or the group is full
        """
        code = (invite_code or '').strip().upper()

        async with self.db.get_session("join group") as session:
            result = await session.execute(
                select(Group).where((Group.invite_code == code) & (Group.is_active == True))
            )
            group = result.scalar_one_or_none()
            if not group:
                raise NotFoundError("Group", code)

            user = await session.get(User, user_id)
            if not user or not user.is_active:
                raise NotFoundError("User", user_id)

            if group.is_member(user_id):
                raise ValidationError(
                    f"User {user_id} is already a member of group {group.id}",
                    "You are already a member of this group."
                )
            if not group.can_accept_members():
                raise ValidationError(
                    f"Group {group.id} is full ({group.max_members} members)",
                    "This group has reached its member limit."
                )

            group.members.append(GroupMember(user_id=user_id, role=GroupRole.MEMBER))
            await session.commit()

            self.logger.info(f"User {user_id} joined group {group.id}")
            return group

    async def leave_group(self, group_id: int, user_id: int) -> None:
        """Leave a group. The admin cannot leave their own group."""
        async with self.db.get_session("leave group") as session:
            group = await require_member(session, group_id, user_id)
            if group.admin_id == user_id:
                raise ValidationError(
                    f"Admin {user_id} cannot leave group {group_id}",
                    "The group admin cannot leave the group."
                )

            group.members.remove(group.members_by_user()[user_id])
            await session.commit()
            self.logger.info(f"User {user_id} left group {group_id}")

    async def update_member_role(self, group_id: int, actor_id: int, target_id: int,
                                 role: GroupRole) -> GroupMember:
        """
        Change a member's role. Only the admin may do this, and the admin's
        own role is fixed.
        """
        if role == GroupRole.ADMIN:
            raise ValidationError("Admin role cannot be assigned", "A group has exactly one admin.")

        async with self.db.get_session("update member role") as session:
            group = await require_admin(session, group_id, actor_id, "change member roles")
            if target_id == group.admin_id:
                raise ValidationError("The admin's role cannot be changed")

            member = group.members_by_user().get(target_id)
            if not member:
                raise NotFoundError("Member", target_id)

            member.role = role
            await session.commit()
            self.logger.info(f"Group {group_id}: user {target_id} is now {role.value}")
            return member

    async def remove_member(self, group_id: int, actor_id: int, target_id: int) -> None:
        """Remove a member. Admins and moderators only; nobody removes the admin."""
        async with self.db.get_session("remove member") as session:
            group = await require_member(session, group_id, actor_id)
            if not group.is_manager(actor_id):
                raise PermissionDeniedError("remove members")
            if target_id == group.admin_id:
                raise PermissionDeniedError("remove the group admin")

            members = group.members_by_user()
            member = members.get(target_id)
            if not member:
                raise NotFoundError("Member", target_id)

            # Moderators may only remove regular members
            if members[actor_id].role == GroupRole.MODERATOR and member.role != GroupRole.MEMBER:
                raise PermissionDeniedError("remove another moderator")

            group.members.remove(member)
            await session.commit()
            self.logger.info(f"User {actor_id} removed user {target_id} from group {group_id}")

    async def delete_group(self, group_id: int, actor_id: int) -> None:
        """Soft delete a group. Admin only."""
        async with self.db.get_session("delete group") as session:
            group = await require_admin(session, group_id, actor_id, "delete this group")
            group.is_active = False
            await session.commit()
            self.logger.info(f"Group {group_id} deleted by {actor_id}")

    async def get_member_role(self, group_id: int, user_id: int) -> Optional[GroupRole]:
        async with self.db.get_session("get member role") as session:
            group = await session.get(Group, group_id)
            if not group or not group.is_active:
                raise NotFoundError("Group", group_id)
            return group.get_member_role(user_id)
