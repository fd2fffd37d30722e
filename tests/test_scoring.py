"""Tests for position-based point resolution."""

import itertools

import pytest

from league.utils.exceptions import DuplicatePositionError, ValidationError
from league.utils.scoring import (
    MatchPlayerResult, PointAward, PointsTable,
    find_duplicate_positions, find_position_winner, resolve_points, validate_positions
)


def _results(*positions):
    return [MatchPlayerResult(player_id=index, position=p) for index, p in enumerate(positions, start=1)]


def test_four_player_match_gets_strictly_decreasing_points():
    awards = resolve_points(_results(1, 2, 3, 4))

    assert [a.player_id for a in awards] == [1, 2, 3, 4]
    points = [a.points for a in awards]
    assert points == [10, 7, 5, 3]
    assert all(a > b for a, b in zip(points, points[1:]))


def test_awards_follow_input_order_not_position_order():
    awards = resolve_points(_results(3, 1, 2))

    assert awards == [PointAward(1, 5), PointAward(2, 10), PointAward(3, 7)]


@pytest.mark.parametrize("size", [2, 3, 5, 8, 12])
def test_points_are_monotonic_in_position(size):
    positions = list(range(1, size + 1))
    awards = {a.player_id: a.points for a in resolve_points(_results(*positions))}

    for (id1, p1), (id2, p2) in itertools.combinations(enumerate(positions, start=1), 2):
        if p1 < p2:
            assert awards[id1] >= awards[id2]


def test_points_are_never_negative():
    awards = resolve_points(_results(1, 2, 3, 4, 5, 6, 7, 20, None))

    assert all(a.points >= 0 for a in awards)


def test_positions_past_the_table_get_the_floor():
    table = PointsTable()

    assert table.points_for(6) == 1
    assert table.points_for(50) == 1


def test_duplicate_positions_are_rejected():
    with pytest.raises(DuplicatePositionError) as exc_info:
        resolve_points(_results(1, 1, 2))

    assert exc_info.value.positions == [1]
    assert isinstance(exc_info.value, ValidationError)


def test_duplicate_error_lists_every_shared_position():
    with pytest.raises(DuplicatePositionError) as exc_info:
        resolve_points(_results(2, 1, 2, 3, 3))

    assert exc_info.value.positions == [2, 3]


def test_unranked_players_do_not_count_as_duplicates():
    results = _results(None, None, 1)

    assert validate_positions(results)
    assert find_duplicate_positions(results) == []


def test_no_positions_means_no_awards():
    assert resolve_points(_results(None, None, None, None)) == []
    assert resolve_points([]) == []


def test_unranked_players_are_treated_as_last_with_zero_points():
    awards = resolve_points(_results(1, None, 2, None))

    assert [a.points for a in awards] == [10, 0, 7, 0]


def test_resolution_is_deterministic():
    results = _results(2, 4, 1, None, 3)

    assert resolve_points(results) == resolve_points(results)


def test_score_does_not_affect_points():
    low = [MatchPlayerResult(1, 1, score=3.0), MatchPlayerResult(2, 2, score=99.0)]

    assert [a.points for a in resolve_points(low)] == [10, 7]


def test_find_position_winner():
    assert find_position_winner(_results(2, 1, 3)) == 2
    assert find_position_winner(_results(None, 2)) is None


def test_custom_points_table():
    table = PointsTable((3, 1), floor=0)

    awards = resolve_points(_results(1, 2, 3), table)

    assert [a.points for a in awards] == [3, 1, 0]


@pytest.mark.parametrize("table_args", [
    {"position_points": (5, 7)},
    {"position_points": (5, 3), "floor": 4},
    {"position_points": (5, -1)},
])
def test_points_table_rejects_increasing_or_negative_values(table_args):
    with pytest.raises(ValueError):
        PointsTable(**table_args)


def test_points_table_rejects_non_positive_position():
    with pytest.raises(ValueError):
        PointsTable().points_for(0)
