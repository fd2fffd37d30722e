"""Tests for the match lifecycle and the finish-match scoring pipeline."""

import asyncio
from datetime import timedelta

import pytest

from league.database.models import MatchStatus
from league.operations.match_operations import MatchOperations
from league.services.stats_aggregator import InMemoryStatsStore, StatsAggregator
from league.utils.exceptions import (
    DuplicatePositionError, MatchStateError, NotFoundError, PermissionDeniedError, ValidationError
)
from league.utils.time_utils import utcnow


async def _four_player_match(match_ops, league, tomorrow):
    return await match_ops.create_match(
        league.game.id, league.group.id, tomorrow, league.alice.id,
        player_ids=[league.bob.id, league.carol.id, league.dave.id]
    )


# ============================================================================
# Scheduling
# ============================================================================

@pytest.mark.asyncio
async def test_create_match_adds_and_confirms_creator(match_ops, league, tomorrow):
    match = await match_ops.create_match(
        league.game.id, league.group.id, tomorrow, league.bob.id,
        player_ids=[league.carol.id, league.carol.id]
    )

    assert match.status == MatchStatus.SCHEDULED
    assert sorted(match.player_ids) == sorted([league.bob.id, league.carol.id])
    assert match.get_player(league.bob.id).confirmed
    assert not match.get_player(league.carol.id).confirmed


@pytest.mark.asyncio
async def test_create_match_accepts_iso_dates(match_ops, league):
    when = (utcnow() + timedelta(days=2)).replace(microsecond=0)

    match = await match_ops.create_match(
        league.game.id, league.group.id, when.isoformat() + "Z", league.alice.id,
        player_ids=[league.bob.id]
    )

    assert match.scheduled_date == when


@pytest.mark.asyncio
async def test_create_match_needs_two_players(match_ops, league, tomorrow):
    with pytest.raises(ValidationError):
        await match_ops.create_match(league.game.id, league.group.id, tomorrow, league.alice.id)


@pytest.mark.asyncio
async def test_create_match_rejects_past_dates(match_ops, league):
    with pytest.raises(ValidationError):
        await match_ops.create_match(
            league.game.id, league.group.id, utcnow() - timedelta(hours=1), league.alice.id,
            player_ids=[league.bob.id]
        )


@pytest.mark.asyncio
async def test_create_match_rejects_non_member_players(db, match_ops, league, tomorrow):
    outsider = await db.create_user("Eve", "eve@example.com")

    with pytest.raises(PermissionDeniedError):
        await match_ops.create_match(
            league.game.id, league.group.id, tomorrow, league.alice.id,
            player_ids=[outsider.id]
        )
    with pytest.raises(PermissionDeniedError):
        await match_ops.create_match(
            league.game.id, league.group.id, tomorrow, outsider.id,
            player_ids=[league.alice.id]
        )


@pytest.mark.asyncio
async def test_create_match_rejects_game_from_another_group(db, group_ops, game_ops, match_ops, league, tomorrow):
    other = await group_ops.create_group("Other Group", league.bob.id)
    other_game = await game_ops.add_game(other.id, league.bob.id, "Azul")

    with pytest.raises(ValidationError):
        await match_ops.create_match(
            other_game.id, league.group.id, tomorrow, league.alice.id,
            player_ids=[league.bob.id]
        )


@pytest.mark.asyncio
async def test_get_match_requires_membership(db, match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)
    outsider = await db.create_user("Eve", "eve@example.com")

    assert (await match_ops.get_match(match.id, league.dave.id)).id == match.id
    with pytest.raises(PermissionDeniedError):
        await match_ops.get_match(match.id, outsider.id)
    with pytest.raises(NotFoundError):
        await match_ops.get_match(match.id + 100, league.alice.id)


@pytest.mark.asyncio
async def test_list_matches_paginates_newest_first(match_ops, league, tomorrow):
    created = []
    for day in range(3):
        created.append(await match_ops.create_match(
            league.game.id, league.group.id, tomorrow + timedelta(days=day), league.alice.id,
            player_ids=[league.bob.id]
        ))

    first = await match_ops.list_matches(league.bob.id, group_id=league.group.id, limit=2)
    second = await match_ops.list_matches(league.bob.id, page=2, limit=2)

    assert (first.total, first.pages, first.count) == (3, 2, 2)
    assert [m.id for m in first.matches] == [created[2].id, created[1].id]
    assert [m.id for m in second.matches] == [created[0].id]


@pytest.mark.asyncio
async def test_list_matches_filters_by_status(match_ops, league, tomorrow):
    kept = await _four_player_match(match_ops, league, tomorrow)
    cancelled = await _four_player_match(match_ops, league, tomorrow)
    await match_ops.cancel_match(cancelled.id, league.alice.id)

    page = await match_ops.list_matches(league.alice.id, status=MatchStatus.SCHEDULED)

    assert [m.id for m in page.matches] == [kept.id]


@pytest.mark.asyncio
async def test_update_match_resets_other_confirmations_on_new_date(match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)
    await match_ops.confirm_attendance(match.id, league.bob.id)

    updated = await match_ops.update_match(
        match.id, league.alice.id, scheduled_date=tomorrow + timedelta(days=3), location="Carol's"
    )

    assert updated.location == "Carol's"
    assert updated.get_player(league.alice.id).confirmed
    assert not updated.get_player(league.bob.id).confirmed


@pytest.mark.asyncio
async def test_only_creator_or_admin_can_edit(match_ops, league, tomorrow):
    match = await match_ops.create_match(
        league.game.id, league.group.id, tomorrow, league.bob.id, player_ids=[league.carol.id]
    )

    with pytest.raises(PermissionDeniedError):
        await match_ops.update_match(match.id, league.carol.id, notes="mine now")

    # alice administers the group
    updated = await match_ops.update_match(match.id, league.alice.id, notes="bring snacks")
    assert updated.notes == "bring snacks"


@pytest.mark.asyncio
async def test_in_progress_match_cannot_be_edited(match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)
    started = await match_ops.start_match(match.id, league.alice.id)

    assert started.status == MatchStatus.IN_PROGRESS
    with pytest.raises(MatchStateError):
        await match_ops.update_match(match.id, league.alice.id, notes="late")


# ============================================================================
# Finishing
# ============================================================================

@pytest.mark.asyncio
async def test_finish_match_awards_points_and_updates_stats(db, match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)
    results = [
        {"player_id": league.alice.id, "position": 2, "score": 8},
        {"player_id": league.bob.id, "position": 1, "score": 10},
        {"player_id": league.carol.id, "position": 4, "score": 5},
        {"player_id": league.dave.id, "position": 3, "score": 7},
    ]

    outcome = await match_ops.finish_match(match.id, league.alice.id, results=results, duration_minutes=90)

    finished = outcome.match
    assert finished.status == MatchStatus.FINISHED
    assert finished.finished_at is not None
    assert finished.duration_minutes == 90
    assert finished.winner_id == league.bob.id  # inferred from position 1
    assert {p.user_id: p.points_earned for p in finished.players} == {
        league.alice.id: 7, league.bob.id: 10, league.carol.id: 3, league.dave.id: 5
    }
    assert finished.get_player(league.bob.id).score == 10.0

    assert outcome.ranking_report.success
    bob = await db.get_user(league.bob.id)
    carol = await db.get_user(league.carol.id)
    assert (bob.total_matches, bob.total_wins, bob.total_points) == (1, 1, 10)
    assert (carol.total_matches, carol.total_wins, carol.total_points) == (1, 0, 3)


@pytest.mark.asyncio
async def test_finish_match_increments_group_and_game_counters(db, group_ops, game_ops, match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)

    await match_ops.finish_match(match.id, league.alice.id, results=[
        {"player_id": league.alice.id, "position": 1},
    ])

    group = await group_ops.get_group(league.group.id, league.alice.id)
    game = await game_ops.get_game(league.game.id, league.alice.id)
    assert group.total_matches == 1
    assert game.times_played == 1
    assert await db.count_finished_matches(league.group.id) == 1


@pytest.mark.asyncio
async def test_duplicate_positions_reject_the_finish(db, match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)

    with pytest.raises(DuplicatePositionError):
        await match_ops.finish_match(match.id, league.alice.id, results=[
            {"player_id": league.alice.id, "position": 1},
            {"player_id": league.bob.id, "position": 1},
        ])

    unchanged = await match_ops.get_match(match.id, league.alice.id)
    assert unchanged.status == MatchStatus.SCHEDULED
    assert all(p.position is None for p in unchanged.players)
    assert (await db.get_user(league.alice.id)).total_matches == 0


@pytest.mark.asyncio
async def test_finish_without_positions_awards_nothing(db, match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)

    outcome = await match_ops.finish_match(match.id, league.alice.id, winner_id=league.carol.id)

    assert outcome.match.status == MatchStatus.FINISHED
    assert outcome.match.winner_id == league.carol.id
    assert outcome.awards == []
    assert outcome.ranking_report.is_empty
    assert (await db.get_user(league.carol.id)).total_matches == 0


@pytest.mark.asyncio
async def test_explicit_winner_overrides_position_one(db, match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)

    outcome = await match_ops.finish_match(match.id, league.alice.id, winner_id=league.dave.id, results=[
        {"player_id": league.alice.id, "position": 1},
        {"player_id": league.dave.id, "position": 2},
    ])

    assert outcome.match.winner_id == league.dave.id
    assert (await db.get_user(league.dave.id)).total_wins == 1
    assert (await db.get_user(league.alice.id)).total_wins == 0
    # bob and carol were unranked in a graded match
    assert (await db.get_user(league.bob.id)).total_matches == 1
    assert (await db.get_user(league.bob.id)).total_points == 0


@pytest.mark.asyncio
async def test_winner_must_be_a_player(db, match_ops, league, tomorrow):
    match = await match_ops.create_match(
        league.game.id, league.group.id, tomorrow, league.alice.id, player_ids=[league.bob.id]
    )

    with pytest.raises(ValidationError):
        await match_ops.finish_match(match.id, league.alice.id, winner_id=league.dave.id)


@pytest.mark.asyncio
async def test_results_for_non_players_are_ignored(match_ops, league, tomorrow):
    match = await match_ops.create_match(
        league.game.id, league.group.id, tomorrow, league.alice.id, player_ids=[league.bob.id]
    )

    outcome = await match_ops.finish_match(match.id, league.alice.id, results=[
        {"player_id": league.alice.id, "position": 1},
        {"player_id": league.dave.id, "position": 2},
    ])

    assert [a.player_id for a in outcome.awards] == [league.alice.id, league.bob.id]


@pytest.mark.asyncio
async def test_invalid_position_is_rejected(match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)

    with pytest.raises(ValidationError):
        await match_ops.finish_match(match.id, league.alice.id, results=[
            {"player_id": league.alice.id, "position": 0},
        ])


@pytest.mark.asyncio
async def test_match_cannot_be_finished_twice(db, match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)
    results = [{"player_id": league.alice.id, "position": 1}]
    await match_ops.finish_match(match.id, league.alice.id, results=results)

    with pytest.raises(MatchStateError):
        await match_ops.finish_match(match.id, league.alice.id, results=results)

    assert (await db.get_user(league.alice.id)).total_matches == 1


@pytest.mark.asyncio
async def test_concurrent_finishes_succeed_only_once(db, group_ops, match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)
    results = [
        {"player_id": league.alice.id, "position": 1},
        {"player_id": league.bob.id, "position": 2},
    ]

    outcomes = await asyncio.gather(
        *[match_ops.finish_match(match.id, league.alice.id, results=results) for _ in range(5)],
        return_exceptions=True
    )

    finished = [o for o in outcomes if not isinstance(o, Exception)]
    rejected = [o for o in outcomes if isinstance(o, Exception)]
    assert len(finished) == 1
    assert len(rejected) == 4
    assert all(isinstance(e, MatchStateError) for e in rejected)

    alice = await db.get_user(league.alice.id)
    bob = await db.get_user(league.bob.id)
    assert (alice.total_matches, alice.total_wins, alice.total_points) == (1, 1, 10)
    assert (bob.total_matches, bob.total_points) == (1, 7)
    group = await group_ops.get_group(league.group.id, league.alice.id)
    assert group.total_matches == 1


@pytest.mark.asyncio
async def test_only_creator_or_admin_can_finish(match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)

    with pytest.raises(PermissionDeniedError):
        await match_ops.finish_match(match.id, league.bob.id)


@pytest.mark.asyncio
async def test_duration_out_of_range_is_rejected(match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)

    with pytest.raises(ValidationError):
        await match_ops.finish_match(match.id, league.alice.id, duration_minutes=0)
    with pytest.raises(ValidationError):
        await match_ops.finish_match(match.id, league.alice.id, duration_minutes=1441)


@pytest.mark.asyncio
async def test_stats_failures_are_reported_without_undoing_the_finish(db, league, tomorrow):
    store = InMemoryStatsStore([league.alice.id, league.bob.id, league.carol.id])
    match_ops = MatchOperations(db, aggregator=StatsAggregator(store))
    match = await _four_player_match(match_ops, league, tomorrow)

    outcome = await match_ops.finish_match(match.id, league.alice.id, results=[
        {"player_id": league.alice.id, "position": 1},
        {"player_id": league.bob.id, "position": 2},
        {"player_id": league.carol.id, "position": 3},
        {"player_id": league.dave.id, "position": 4},
    ])

    assert outcome.match.status == MatchStatus.FINISHED
    assert [e.player_id for e in outcome.ranking_report.errors] == [league.dave.id]
    assert (await store.get(league.alice.id)).total_wins == 1


# ============================================================================
# Attendance, cancellation and deletion
# ============================================================================

@pytest.mark.asyncio
async def test_confirm_attendance_requires_invitation(match_ops, league, tomorrow):
    match = await match_ops.create_match(
        league.game.id, league.group.id, tomorrow, league.alice.id, player_ids=[league.bob.id]
    )

    confirmed = await match_ops.confirm_attendance(match.id, league.bob.id)

    assert confirmed.get_player(league.bob.id).confirmed
    with pytest.raises(PermissionDeniedError):
        await match_ops.confirm_attendance(match.id, league.carol.id)


@pytest.mark.asyncio
async def test_leaving_below_two_players_deletes_match(match_ops, league, tomorrow):
    match = await match_ops.create_match(
        league.game.id, league.group.id, tomorrow, league.alice.id, player_ids=[league.bob.id]
    )

    assert await match_ops.cancel_attendance(match.id, league.bob.id) is None
    with pytest.raises(NotFoundError):
        await match_ops.get_match(match.id, league.alice.id)


@pytest.mark.asyncio
async def test_creator_cancelling_attendance_only_unconfirms(match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)

    updated = await match_ops.cancel_attendance(match.id, league.alice.id)

    assert league.alice.id in updated.player_ids
    assert not updated.get_player(league.alice.id).confirmed


@pytest.mark.asyncio
async def test_player_leaving_keeps_match_with_enough_players(match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)

    updated = await match_ops.cancel_attendance(match.id, league.dave.id)

    assert league.dave.id not in updated.player_ids
    assert len(updated.players) == 3


@pytest.mark.asyncio
async def test_cancelled_match_cannot_be_finished(match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)
    cancelled = await match_ops.cancel_match(match.id, league.alice.id)

    assert cancelled.status == MatchStatus.CANCELLED
    with pytest.raises(MatchStateError):
        await match_ops.finish_match(match.id, league.alice.id)
    with pytest.raises(MatchStateError):
        await match_ops.confirm_attendance(match.id, league.bob.id)


@pytest.mark.asyncio
async def test_finished_match_cannot_be_deleted(match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)
    await match_ops.finish_match(match.id, league.alice.id)

    with pytest.raises(MatchStateError):
        await match_ops.delete_match(match.id, league.alice.id)


@pytest.mark.asyncio
async def test_delete_scheduled_match(match_ops, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)

    assert await match_ops.delete_match(match.id, league.alice.id)
    with pytest.raises(NotFoundError):
        await match_ops.get_match(match.id, league.alice.id)


# ============================================================================
# Rankings
# ============================================================================

@pytest.mark.asyncio
async def test_group_ranking_after_matches(match_ops, ranking_service, league, tomorrow):
    first = await _four_player_match(match_ops, league, tomorrow)
    await match_ops.finish_match(first.id, league.alice.id, results=[
        {"player_id": league.carol.id, "position": 1},
        {"player_id": league.bob.id, "position": 2},
        {"player_id": league.alice.id, "position": 3},
        {"player_id": league.dave.id, "position": 4},
    ])
    second = await _four_player_match(match_ops, league, tomorrow)
    await match_ops.finish_match(second.id, league.alice.id, results=[
        {"player_id": league.bob.id, "position": 1},
        {"player_id": league.carol.id, "position": 2},
        {"player_id": league.dave.id, "position": 3},
        {"player_id": league.alice.id, "position": 4},
    ])

    ranking = await ranking_service.get_group_ranking(league.group.id, league.dave.id)

    # Equal points are listed by user id
    assert [(e.player_id, e.total_points, e.position) for e in ranking] == [
        (league.bob.id, 17, 1),
        (league.carol.id, 17, 2),
        (league.alice.id, 8, 3),
        (league.dave.id, 8, 4),
    ]
    assert ranking[0].win_rate == 50.0
    assert ranking[2].nickname == "ali"


@pytest.mark.asyncio
async def test_group_ranking_requires_membership(db, ranking_service, league):
    outsider = await db.create_user("Eve", "eve@example.com")

    with pytest.raises(PermissionDeniedError):
        await ranking_service.get_group_ranking(league.group.id, outsider.id)
    with pytest.raises(NotFoundError):
        await ranking_service.get_group_ranking(league.group.id + 100, league.alice.id)


@pytest.mark.asyncio
async def test_global_ranking_skips_inactive_users(db, match_ops, ranking_service, league, tomorrow):
    match = await _four_player_match(match_ops, league, tomorrow)
    await match_ops.finish_match(match.id, league.alice.id, results=[
        {"player_id": league.dave.id, "position": 1},
        {"player_id": league.alice.id, "position": 2},
    ])
    await db.deactivate_user(league.dave.id)

    ranking = await ranking_service.get_global_ranking()

    assert league.dave.id not in [e.player_id for e in ranking]
    assert ranking[0].player_id == league.alice.id
    assert len(await ranking_service.get_global_ranking(limit=2)) == 2
