"""Pytest configuration and fixtures for league tests."""

from datetime import timedelta
from types import SimpleNamespace

import pytest
import pytest_asyncio

from league.config import Config

# Keep test runs from writing log files
Config.LOG_TO_FILE = False

from league.database.database import Database
from league.operations.game_operations import GameOperations
from league.operations.group_operations import GroupOperations
from league.operations.match_operations import MatchOperations
from league.services.ranking_service import RankingService
from league.utils.time_utils import utcnow


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh SQLite database per test."""
    database = Database(f"sqlite:///{tmp_path / 'test_league.db'}")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def group_ops(db):
    return GroupOperations(db)


@pytest.fixture
def game_ops(db):
    return GameOperations(db)


@pytest.fixture
def match_ops(db):
    return MatchOperations(db)


@pytest.fixture
def ranking_service(db):
    return RankingService(db.async_session)


@pytest.fixture
def tomorrow():
    return utcnow() + timedelta(days=1)


@pytest_asyncio.fixture
async def league(db, group_ops, game_ops):
    """
    A group of four players with one game in its catalog.

    alice is the group admin; bob, carol and dave joined by invite code.
    """
    alice = await db.create_user("Alice", "alice@example.com", nickname="ali")
    bob = await db.create_user("Bob", "bob@example.com")
    carol = await db.create_user("Carol", "carol@example.com")
    dave = await db.create_user("Dave", "dave@example.com")

    group = await group_ops.create_group("Friday Boardgames", alice.id)
    for user in (bob, carol, dave):
        await group_ops.join_group(group.invite_code, user.id)

    game = await game_ops.add_game(group.id, alice.id, "Catan", min_players=3, max_players=4)

    return SimpleNamespace(
        alice=alice, bob=bob, carol=carol, dave=dave,
        group=group, game=game
    )
