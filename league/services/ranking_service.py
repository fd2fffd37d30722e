"""
Ranking service.

Fetches cumulative stats for a group's members (or all active users)
and projects them into ranking rows with compute_ranking. The query
orders by total points and then by user id, so players with equal
points are always listed in the same order.
"""

from typing import List, Optional

from sqlalchemy import select

from league.database.models import User, Group, GroupMember
from league.services.base import BaseService
from league.utils.exceptions import NotFoundError, PermissionDeniedError
from league.utils.ranking import PlayerCumulativeStats, RankingEntry, compute_ranking
from league.utils.logger import setup_logger

logger = setup_logger(__name__)


class RankingService(BaseService):
    """Group and global leaderboards."""

    @staticmethod
    def _to_stats(user: User) -> PlayerCumulativeStats:
        return PlayerCumulativeStats(
            player_id=user.id,
            total_matches=user.total_matches,
            total_wins=user.total_wins,
            total_points=user.total_points,
            name=user.name,
            nickname=user.nickname,
            avatar=user.avatar
        )

    async def get_group_ranking(self, group_id: int, user_id: int) -> List[RankingEntry]:
        """
        Rank the members of a group by cumulative points.

        Raises:
            NotFoundError: If the group does not exist or was deleted
            PermissionDeniedError: If the requesting user is not a member
        """
        async def _load_members() -> List[User]:
            async with self.get_session() as session:
                group = await session.get(Group, group_id)
                if not group or not group.is_active:
                    raise NotFoundError("Group", group_id)
                if not group.is_member(user_id):
                    raise PermissionDeniedError("view this group's ranking")

                result = await session.execute(
                    select(User)
                    .join(GroupMember, GroupMember.user_id == User.id)
                    .where(GroupMember.group_id == group_id)
                    .order_by(User.total_points.desc(), User.id.asc())
                )
                return list(result.scalars().all())

        users = await self.execute_with_retry(_load_members, f"load ranking of group {group_id}")

        ranking = compute_ranking(self._to_stats(user) for user in users)
        logger.debug(f"Computed ranking for group {group_id}: {len(ranking)} players")
        return ranking

    async def get_global_ranking(self, limit: Optional[int] = None) -> List[RankingEntry]:
        """Rank all active users by cumulative points."""
        query = (
            select(User)
            .where(User.is_active == True)
            .order_by(User.total_points.desc(), User.id.asc())
        )
        if limit is not None:
            query = query.limit(limit)

        async def _load_users() -> List[User]:
            async with self.get_session() as session:
                result = await session.execute(query)
                return list(result.scalars().all())

        users = await self.execute_with_retry(_load_users, "load global ranking")

        return compute_ranking(self._to_stats(user) for user in users)
