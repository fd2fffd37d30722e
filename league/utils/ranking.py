"""
Ranking projection over cumulative player statistics.

compute_ranking is a pure function: it orders players by total points
(highest first), keeps the incoming order for ties and hands out
distinct 1-based positions. Callers that need a deterministic tie-break
must order their input accordingly before projecting.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional


@dataclass(frozen=True)
class PlayerCumulativeStats:
    """Running totals for one player."""
    player_id: int
    total_matches: int = 0
    total_wins: int = 0
    total_points: int = 0
    name: Optional[str] = None
    nickname: Optional[str] = None
    avatar: Optional[str] = None


@dataclass(frozen=True)
class RankingEntry:
    """Single ranking row."""
    position: int
    player_id: int
    total_points: int
    total_matches: int
    total_wins: int
    win_rate: float
    name: Optional[str] = None
    nickname: Optional[str] = None
    avatar: Optional[str] = None


def calculate_win_rate(total_wins: int, total_matches: int) -> float:
    """Win percentage rounded to two decimals, 0.0 without matches."""
    if total_matches <= 0:
        return 0.0
    return round((total_wins / total_matches) * 100, 2)


def compute_ranking(players: Iterable[PlayerCumulativeStats]) -> List[RankingEntry]:
    # sorted() is stable, so equal totals keep input order
    ordered = sorted(players, key=lambda p: p.total_points, reverse=True)
    return [
        RankingEntry(
            position=index,
            player_id=stats.player_id,
            total_points=stats.total_points,
            total_matches=stats.total_matches,
            total_wins=stats.total_wins,
            win_rate=calculate_win_rate(stats.total_wins, stats.total_matches),
            name=stats.name,
            nickname=stats.nickname,
            avatar=stats.avatar,
        )
        for index, stats in enumerate(ordered, start=1)
    ]
