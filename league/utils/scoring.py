"""
Position-based point resolution for finished matches.

Turns the recorded finishing positions of a match into point awards.
Positions are validated first: two players may never share a position,
and a match where nobody has a position yields no awards at all. When
some players are ranked and others are not, the unranked ones are treated
as tied for last and earn UNRANKED_POINTS.

Points come from a PointsTable: a non-increasing table indexed by
position with a floor for positions past its end, so awards are
monotonic in position and never negative.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from league.constants import PointsConstants
from league.utils.exceptions import DuplicatePositionError
import logging

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class MatchPlayerResult:
    """A player's recorded result in a finished match"""
    player_id: int
    position: Optional[int] = None  # 1 = first place, None = unranked
    score: Optional[float] = None   # Informational only

@dataclass(frozen=True)
class PointAward:
    """Points earned by one player for one match"""
    player_id: int
    points: int

class PointsTable:
    """
    Maps a finishing position to points.

    Positions inside the table take their listed value; positions past
    the end get `floor`. The table must be non-increasing and the floor
    must not exceed its last entry.
    """

    def __init__(self, position_points: Sequence[int] = PointsConstants.POSITION_POINTS,
                 floor: int = PointsConstants.MIN_RANKED_POINTS,
                 unranked: int = PointsConstants.UNRANKED_POINTS):
        self.position_points: Tuple[int, ...] = tuple(position_points)
        self.floor = floor
        self.unranked = unranked
        self._validate()

    def _validate(self) -> None:
        values = list(self.position_points) + [self.floor, self.unranked]
        if any(v < 0 for v in values):
            raise ValueError("Point values must be non-negative")
        if any(a < b for a, b in zip(values, values[1:])):
            raise ValueError("Point values must not increase with position")

    def points_for(self, position: Optional[int]) -> int:
        """Points for a position; None means unranked"""
        if position is None:
            return self.unranked
        if position < 1:
            raise ValueError(f"Position must be a positive integer, got {position}")
        if position <= len(self.position_points):
            return self.position_points[position - 1]
        return self.floor

DEFAULT_POINTS_TABLE = PointsTable()

def find_duplicate_positions(results: Iterable[MatchPlayerResult]) -> List[int]:
    """Positions held by more than one player, ascending"""
    counts = Counter(r.position for r in results if r.position is not None)
    return sorted(position for position, count in counts.items() if count > 1)

def validate_positions(results: Iterable[MatchPlayerResult]) -> bool:
    """True when no two players share a non-null position"""
    return not find_duplicate_positions(results)

def find_position_winner(results: Iterable[MatchPlayerResult]) -> Optional[int]:
    """Player id holding position 1, if any"""
    for result in results:
        if result.position == 1:
            return result.player_id
    return None

def resolve_points(results: Sequence[MatchPlayerResult],
                   table: PointsTable = DEFAULT_POINTS_TABLE) -> List[PointAward]:
    """
    Resolve the point award for every player in a finished match.

    Args:
        results: All players of the match with their optional positions
        table: Position-to-points table

    Returns:
        One PointAward per player in input order, or an empty list when
        no player has a position

    Raises:
        DuplicatePositionError: If two players share a position
    """
    duplicates = find_duplicate_positions(results)
    if duplicates:
        raise DuplicatePositionError(duplicates)

    if all(r.position is None for r in results):
        logger.debug("No positions recorded; no points awarded")
        return []

    awards = [PointAward(r.player_id, table.points_for(r.position)) for r in results]

    logger.debug(f"Resolved points for {len(awards)} players: "
                 f"{[(a.player_id, a.points) for a in awards]}")
    return awards
