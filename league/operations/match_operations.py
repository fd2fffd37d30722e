"""
Match Operations

Operational layer for the match lifecycle: scheduling, attendance,
editing, cancelling and finishing matches with results.

Finishing a match runs the scoring pipeline:
- Positions and scores from the payload are applied to the match players
- resolve_points turns positions into point awards (duplicates reject
  the whole operation and nothing is committed)
- The match, its players' points_earned and the group/game counters are
  committed in one transaction; the status change is a conditional
  update so a match can only be finished once
- StatsAggregator then applies the awards to each player's cumulative
  stats, one isolated atomic increment per player
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Union

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from league.config import Config
from league.constants import PaginationConstants
from league.database.models import Game, Group, GroupMember, Match, MatchPlayer, MatchStatus
from league.operations.group_operations import require_member
from league.services.stats_aggregator import DatabaseStatsStore, StatsAggregator, UpdateReport
from league.utils.exceptions import (
    NotFoundError, PermissionDeniedError, ValidationError, MatchStateError
)
from league.utils.scoring import (
    DEFAULT_POINTS_TABLE, MatchPlayerResult, PointAward, PointsTable,
    find_position_winner, resolve_points
)
from league.utils.time_utils import parse_datetime, utcnow
from league.utils.logger import setup_logger

logger = setup_logger(__name__)

OPEN_STATUSES = (MatchStatus.SCHEDULED, MatchStatus.IN_PROGRESS)


@dataclass
class FinishMatchResult:
    """Finished match together with its awards and stats update report"""
    match: Match
    awards: List[PointAward]
    ranking_report: UpdateReport


@dataclass
class MatchPage:
    """Paginated match listing"""
    matches: List[Match]
    total: int
    pages: int
    current_page: int

    @property
    def count(self) -> int:
        return len(self.matches)


def _parse_position(value) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(
            f"Position must be a positive integer, got {value!r}",
            "Positions must be 1 or higher."
        )
    return value


def _parse_score(value) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(f"Score must be a number, got {value!r}")
    return float(value)


class MatchOperations:
    """
    Core service class for Match and MatchPlayer operations.

    Permission model: any group member can schedule a match with other
    members; the match creator or the group admin can edit, start,
    finish, cancel or delete it.
    """

    def __init__(self, database, aggregator: StatsAggregator = None,
                 points_table: PointsTable = DEFAULT_POINTS_TABLE):
        self.db = database
        self.points_table = points_table
        self._aggregator = aggregator
        self.logger = logger

    @property
    def aggregator(self) -> StatsAggregator:
        if self._aggregator is None:
            self._aggregator = StatsAggregator(DatabaseStatsStore(self.db.async_session))
        return self._aggregator

    async def _require_match_manager(self, session: AsyncSession, match: Match,
                                     user_id: int, action: str) -> None:
        """Creator or group admin only"""
        if match.created_by == user_id:
            return
        group = await session.get(Group, match.group_id)
        if not group or group.admin_id != user_id:
            raise PermissionDeniedError(action)

    async def _load_match(self, session: AsyncSession, match_id: int) -> Match:
        match = await session.get(Match, match_id)
        if not match:
            raise NotFoundError("Match", match_id)
        return match

    # ============================================================================
    # Scheduling
    # ============================================================================

    async def create_match(
        self,
        game_id: int,
        group_id: int,
        scheduled_date: Union[str, datetime],
        user_id: int,
        player_ids: Iterable[int] = (),
        location: str = '',
        notes: str = ''
    ) -> Match:
        """
        Schedule a match among group members.

        The creator is always a player and is auto-confirmed. Player ids are
        deduplicated, keeping first-seen order.

        Raises:
            NotFoundError: If the game or group does not exist
            PermissionDeniedError: If the creator or any player is not a member
            ValidationError: For a past date, a game of another group or fewer
                             than MIN_MATCH_PLAYERS players
        """
        if not game_id or not group_id or not scheduled_date:
            raise ValidationError("game_id, group_id and scheduled_date are required")

        try:
            when = parse_datetime(scheduled_date)
        except ValueError as e:
            raise ValidationError(str(e))
        if when < utcnow():
            raise ValidationError(
                f"Scheduled date {when.isoformat()} is in the past",
                "The match date cannot be in the past."
            )

        async with self.db.get_session("create match") as session:
            game = await session.get(Game, game_id)
            if not game or not game.is_active:
                raise NotFoundError("Game", game_id)

            group = await require_member(session, group_id, user_id)
            if game.group_id != group.id:
                raise ValidationError(
                    f"Game {game_id} does not belong to group {group_id}",
                    "That game is not in this group's catalog."
                )

            members = group.members_by_user()
            unique_ids = list(dict.fromkeys([user_id, *player_ids]))
            for player_id in unique_ids:
                if player_id not in members:
                    raise PermissionDeniedError(f"add user {player_id}, who is not a group member")

            if len(unique_ids) < Config.MIN_MATCH_PLAYERS:
                raise ValidationError(
                    f"Match needs at least {Config.MIN_MATCH_PLAYERS} players, got {len(unique_ids)}",
                    f"A match must have at least {Config.MIN_MATCH_PLAYERS} players."
                )

            match = Match(
                game_id=game_id,
                group_id=group_id,
                scheduled_date=when,
                status=MatchStatus.SCHEDULED,
                location=location or '',
                notes=notes or '',
                created_by=user_id,
                players=[
                    MatchPlayer(user_id=player_id, confirmed=(player_id == user_id), points_earned=0)
                    for player_id in unique_ids
                ]
            )
            session.add(match)
            await session.commit()

            self.logger.info(
                f"Created match {match.id} in group {group_id} for game {game_id} "
                f"with players {unique_ids}"
            )
            return match

    async def get_match(self, match_id: int, user_id: int) -> Match:
        """Get a match; the user must belong to its group"""
        async with self.db.get_session("get match") as session:
            match = await self._load_match(session, match_id)
            group = await session.get(Group, match.group_id)
            if not group or not group.is_member(user_id):
                raise PermissionDeniedError("view this match")
            return match

    async def list_matches(self, user_id: int, group_id: int = None,
                           status: MatchStatus = None, page: int = 1,
                           limit: int = None) -> MatchPage:
        """
        List matches newest-scheduled first.

        With group_id, the user must be a member of that group; without it,
        matches from every active group the user belongs to are listed.
        """
        limit = limit or Config.DEFAULT_PAGE_SIZE
        if page < PaginationConstants.DEFAULT_PAGE or limit < 1:
            raise ValidationError(f"Invalid pagination: page={page}, limit={limit}")
        limit = min(limit, PaginationConstants.MAX_PAGE_SIZE)

        async with self.db.get_session("list matches") as session:
            if group_id is not None:
                await require_member(session, group_id, user_id)
                condition = Match.group_id == group_id
            else:
                user_groups = (
                    select(GroupMember.group_id)
                    .join(Group, Group.id == GroupMember.group_id)
                    .where((GroupMember.user_id == user_id) & (Group.is_active == True))
                )
                condition = Match.group_id.in_(user_groups)

            if status is not None:
                condition = condition & (Match.status == status)

            total = await session.scalar(select(func.count(Match.id)).where(condition)) or 0
            result = await session.execute(
                select(Match)
                .where(condition)
                .order_by(Match.scheduled_date.desc(), Match.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            matches = list(result.scalars().all())

        return MatchPage(
            matches=matches,
            total=total,
            pages=math.ceil(total / limit) if total else 0,
            current_page=page
        )

    async def update_match(self, match_id: int, user_id: int,
                           scheduled_date: Union[str, datetime] = None,
                           location: str = None, notes: str = None) -> Match:
        """
        Edit a scheduled match. A new date resets every other player's
        confirmation; the editor's own confirmation is kept.
        """
        new_date = None
        if scheduled_date is not None:
            try:
                new_date = parse_datetime(scheduled_date)
            except ValueError as e:
                raise ValidationError(str(e))
            if new_date < utcnow():
                raise ValidationError("The match date cannot be in the past")

        async with self.db.get_session("update match") as session:
            match = await self._load_match(session, match_id)
            await self._require_match_manager(session, match, user_id, "edit this match")

            if match.status != MatchStatus.SCHEDULED:
                raise MatchStateError(match.id, match.status.value, "edit")

            if new_date is not None and new_date != match.scheduled_date:
                for player in match.players:
                    if player.user_id != user_id:
                        player.confirmed = False
                match.scheduled_date = new_date
            if location is not None:
                match.location = location
            if notes is not None:
                match.notes = notes

            await session.commit()
            self.logger.info(f"Updated match {match_id} by user {user_id}")
            return match

    async def start_match(self, match_id: int, user_id: int) -> Match:
        """Mark a scheduled match as in progress"""
        async with self.db.get_session("start match") as session:
            match = await self._load_match(session, match_id)
            await self._require_match_manager(session, match, user_id, "start this match")
            if match.status != MatchStatus.SCHEDULED:
                raise MatchStateError(match.id, match.status.value, "start")

            match.status = MatchStatus.IN_PROGRESS
            await session.commit()
            self.logger.info(f"Match {match_id} started")
            return match

    # ============================================================================
    # Results
    # ============================================================================

    async def finish_match(
        self,
        match_id: int,
        user_id: int,
        winner_id: Optional[int] = None,
        results: Iterable[Mapping] = (),
        duration_minutes: Optional[int] = None,
        notes: Optional[str] = None
    ) -> FinishMatchResult:
        """
        Record results for a match, award points and update player stats.

        Args:
            match_id: Match to finish
            user_id: Acting user (creator or group admin)
            winner_id: Optional winner; defaults to the position-1 player
            results: Dicts with keys:
                    - player_id (int)
                    - Optional: position (int, 1 = first) and score (number)
                    Entries for users who are not players are ignored.
            duration_minutes: Optional duration, 1 to MAX_MATCH_DURATION_MINUTES
            notes: Optional notes replacing the current ones

        Returns:
            FinishMatchResult with the reloaded match, the point awards and
            the stats update report

        Raises:
            DuplicatePositionError: If two players share a position
            MatchStateError: If the match is already finished or cancelled
            ValidationError: For a winner who is not a player or bad values
            PermissionDeniedError: If the user may not finish this match
        """
        if duration_minutes is not None and not (
            1 <= duration_minutes <= Config.MAX_MATCH_DURATION_MINUTES
        ):
            raise ValidationError(
                f"Duration must be between 1 and {Config.MAX_MATCH_DURATION_MINUTES} minutes, "
                f"got {duration_minutes}"
            )

        async with self.db.transaction("finish match") as session:
            match = await self._load_match(session, match_id)
            await self._require_match_manager(session, match, user_id, "finish this match")

            if match.is_closed:
                raise MatchStateError(match.id, match.status.value, "finish")

            players: Dict[int, MatchPlayer] = {p.user_id: p for p in match.players}

            if winner_id is not None and winner_id not in players:
                raise ValidationError(
                    f"Winner {winner_id} is not a player of match {match_id}",
                    "The winner must be one of the match players."
                )

            for result in results or ():
                if "player_id" not in result:
                    raise ValidationError("Each result needs a 'player_id'")
                player = players.get(result["player_id"])
                if player is None:
                    continue
                if "score" in result:
                    player.score = _parse_score(result["score"])
                if "position" in result:
                    player.position = _parse_position(result["position"])

            player_results = [
                MatchPlayerResult(p.user_id, p.position, p.score) for p in match.players
            ]
            awards = resolve_points(player_results, self.points_table)

            points_by_player = {award.player_id: award.points for award in awards}
            for player in match.players:
                player.points_earned = points_by_player.get(player.user_id, 0)

            if winner_id is None:
                winner_id = find_position_winner(player_results)

            values = {
                'status': MatchStatus.FINISHED,
                'finished_at': utcnow(),
                'winner_id': winner_id,
            }
            if duration_minutes is not None:
                values['duration_minutes'] = duration_minutes
            if notes is not None:
                values['notes'] = notes

            # Conditional transition: only one concurrent finish can match
            transition = await session.execute(
                update(Match)
                .where((Match.id == match.id) & (Match.status.in_(OPEN_STATUSES)))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if transition.rowcount != 1:
                raise MatchStateError(match.id, MatchStatus.FINISHED.value, "finish")

            await session.execute(
                update(Group)
                .where(Group.id == match.group_id)
                .values(total_matches=Group.total_matches + 1)
            )
            await session.execute(
                update(Game)
                .where(Game.id == match.game_id)
                .values(times_played=Game.times_played + 1)
            )

        report = await self.aggregator.apply_match_result(awards, winner_id)

        async with self.db.get_session("load finished match") as session:
            finished = await self._load_match(session, match_id)

        self.logger.info(
            f"Finished match {match_id}: winner={winner_id}, "
            f"awards={[(a.player_id, a.points) for a in awards]}, "
            f"stats errors={len(report.errors)}"
        )
        return FinishMatchResult(match=finished, awards=awards, ranking_report=report)

    # ============================================================================
    # Attendance
    # ============================================================================

    async def confirm_attendance(self, match_id: int, user_id: int) -> Match:
        """A player confirms they will attend"""
        async with self.db.get_session("confirm attendance") as session:
            match = await self._load_match(session, match_id)
            player = match.get_player(user_id)
            if player is None:
                raise PermissionDeniedError("confirm a match you are not invited to")
            if match.is_closed:
                raise MatchStateError(match.id, match.status.value, "confirm attendance for")

            player.confirmed = True
            await session.commit()
            return match

    async def cancel_attendance(self, match_id: int, user_id: int) -> Optional[Match]:
        """
        A player withdraws from a match.

        The creator only withdraws their confirmation. Anyone else leaves the
        match; if that leaves fewer than MIN_MATCH_PLAYERS players the match
        is deleted and None is returned.
        """
        async with self.db.get_session("cancel attendance") as session:
            match = await self._load_match(session, match_id)
            player = match.get_player(user_id)
            if player is None:
                raise PermissionDeniedError("leave a match you are not invited to")
            if match.is_closed:
                raise MatchStateError(match.id, match.status.value, "cancel attendance for")

            if match.created_by == user_id:
                player.confirmed = False
            else:
                match.players.remove(player)
                if len(match.players) < Config.MIN_MATCH_PLAYERS:
                    await session.delete(match)
                    await session.commit()
                    self.logger.info(f"Match {match_id} deleted: not enough players left")
                    return None

            await session.commit()
            return match

    # ============================================================================
    # Cancellation and deletion
    # ============================================================================

    async def cancel_match(self, match_id: int, user_id: int) -> Match:
        """Call off a match that has not finished"""
        async with self.db.get_session("cancel match") as session:
            match = await self._load_match(session, match_id)
            await self._require_match_manager(session, match, user_id, "cancel this match")
            if match.is_closed:
                raise MatchStateError(match.id, match.status.value, "cancel")

            match.status = MatchStatus.CANCELLED
            await session.commit()
            self.logger.info(f"Match {match_id} cancelled by {user_id}")
            return match

    async def delete_match(self, match_id: int, user_id: int) -> bool:
        """Delete a match. Finished matches are part of history and are kept."""
        async with self.db.get_session("delete match") as session:
            match = await self._load_match(session, match_id)
            await self._require_match_manager(session, match, user_id, "delete this match")
            if match.status == MatchStatus.FINISHED:
                raise MatchStateError(match.id, match.status.value, "delete")

            await session.delete(match)
            await session.commit()
            self.logger.info(f"Match {match_id} deleted by {user_id}")
            return True
