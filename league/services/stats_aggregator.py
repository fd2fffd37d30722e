"""
Statistics Aggregator

Applies a finished match's point awards to each player's cumulative
statistics (matches played, wins, points).

Every player is updated with a single atomic increment in its own
transaction. Failures are isolated per player: a player whose record
cannot be updated is reported in UpdateReport.errors while the other
players' increments still go through and are never rolled back.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from sqlalchemy import update

from league.database.models import User
from league.services.base import BaseService
from league.utils.exceptions import LeagueException, PlayerNotFoundError
from league.utils.ranking import PlayerCumulativeStats
from league.utils.scoring import PointAward
from league.utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class PlayerUpdate:
    """Successful stats update for one player"""
    player_id: int
    points: int
    is_winner: bool
    stats: PlayerCumulativeStats


@dataclass(frozen=True)
class PlayerUpdateError:
    """Failed stats update for one player"""
    player_id: int
    points: int
    is_winner: bool
    error: str


@dataclass
class UpdateReport:
    """Outcome of applying one match's awards"""
    updated_players: List[PlayerUpdate] = field(default_factory=list)
    errors: List[PlayerUpdateError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def is_empty(self) -> bool:
        return not self.updated_players and not self.errors

    def get_update(self, player_id: int) -> Optional[PlayerUpdate]:
        for player_update in self.updated_players:
            if player_update.player_id == player_id:
                return player_update
        return None


class StatsStore(ABC):
    """
    Per-player cumulative statistics keyed by player id.

    Implementations must apply increment() as one atomic add on the
    stored values, never as a separate read followed by a write.
    """

    @abstractmethod
    async def increment(self, player_id: int, matches: int = 0, wins: int = 0,
                        points: int = 0) -> PlayerCumulativeStats:
        """
        Atomically add to a player's totals.

        Returns:
            The player's stats after the increment

        Raises:
            PlayerNotFoundError: If the player has no record
        """
        pass

    @abstractmethod
    async def get(self, player_id: int) -> Optional[PlayerCumulativeStats]:
        """Current stats for a player, or None"""
        pass


class DatabaseStatsStore(BaseService, StatsStore):
    """Stats store backed by the users table."""

    async def increment(self, player_id: int, matches: int = 0, wins: int = 0,
                        points: int = 0) -> PlayerCumulativeStats:
        async def _apply() -> PlayerCumulativeStats:
            async with self.get_session() as session:
                result = await session.execute(
                    update(User)
                    .where(User.id == player_id)
                    .values(
                        total_matches=User.total_matches + matches,
                        total_wins=User.total_wins + wins,
                        total_points=User.total_points + points
                    )
                    .returning(User.id, User.total_matches, User.total_wins, User.total_points)
                    .execution_options(synchronize_session=False)
                )
                row = result.one_or_none()
                if row is None:
                    raise PlayerNotFoundError(player_id)
                return PlayerCumulativeStats(
                    player_id=row.id,
                    total_matches=row.total_matches,
                    total_wins=row.total_wins,
                    total_points=row.total_points
                )

        return await self.execute_with_retry(_apply, f"increment stats of player {player_id}")

    async def get(self, player_id: int) -> Optional[PlayerCumulativeStats]:
        async def _load() -> Optional[PlayerCumulativeStats]:
            async with self.get_session() as session:
                user = await session.get(User, player_id)
                if not user:
                    return None
                return PlayerCumulativeStats(
                    player_id=user.id,
                    total_matches=user.total_matches,
                    total_wins=user.total_wins,
                    total_points=user.total_points,
                    name=user.name,
                    nickname=user.nickname,
                    avatar=user.avatar
                )

        return await self.execute_with_retry(_load, f"load stats of player {player_id}")


class InMemoryStatsStore(StatsStore):
    """
    Dict-backed stats store.

    Each increment runs without an await between read and write, so it is
    atomic with respect to other coroutines on the same event loop.
    """

    def __init__(self, player_ids: Iterable[int] = (), auto_create: bool = False):
        self.auto_create = auto_create
        self._stats: Dict[int, PlayerCumulativeStats] = {
            player_id: PlayerCumulativeStats(player_id) for player_id in player_ids
        }

    async def increment(self, player_id: int, matches: int = 0, wins: int = 0,
                        points: int = 0) -> PlayerCumulativeStats:
        current = self._stats.get(player_id)
        if current is None:
            if not self.auto_create:
                raise PlayerNotFoundError(player_id)
            current = PlayerCumulativeStats(player_id)

        updated = PlayerCumulativeStats(
            player_id=player_id,
            total_matches=current.total_matches + matches,
            total_wins=current.total_wins + wins,
            total_points=current.total_points + points
        )
        self._stats[player_id] = updated
        return updated

    async def get(self, player_id: int) -> Optional[PlayerCumulativeStats]:
        return self._stats.get(player_id)

    def all_stats(self) -> List[PlayerCumulativeStats]:
        return list(self._stats.values())


class StatsAggregator:
    """Applies point awards to cumulative player statistics."""

    def __init__(self, store: StatsStore):
        self.store = store
        self.logger = logger

    async def apply_match_result(self, awards: List[PointAward],
                                 winner_id: Optional[int] = None) -> UpdateReport:
        """
        Apply one match's awards to the stats store.

        Each awarded player gets total_matches +1 and total_points +points;
        the winner, when given and awarded, also gets total_wins +1.

        Args:
            awards: Point awards from resolve_points
            winner_id: Optional winning player id

        Returns:
            UpdateReport with the new stats per player and per-player errors
        """
        report = UpdateReport()

        if not awards:
            return report

        if winner_id is not None and all(a.player_id != winner_id for a in awards):
            self.logger.warning(f"Winner {winner_id} has no award; no win will be recorded")

        for award in awards:
            is_winner = winner_id is not None and award.player_id == winner_id
            try:
                stats = await self.store.increment(
                    award.player_id,
                    matches=1,
                    wins=1 if is_winner else 0,
                    points=award.points
                )
            except LeagueException as e:
                self.logger.error(f"Failed to update stats for player {award.player_id}: {e}")
                report.errors.append(PlayerUpdateError(
                    player_id=award.player_id,
                    points=award.points,
                    is_winner=is_winner,
                    error=str(e)
                ))
                continue

            report.updated_players.append(PlayerUpdate(
                player_id=award.player_id,
                points=award.points,
                is_winner=is_winner,
                stats=stats
            ))

        self.logger.info(
            f"Applied match result: {len(report.updated_players)} updated, "
            f"{len(report.errors)} failed"
        )
        return report
