"""
Game catalog operations.

Each group keeps its own catalog of games. Any member can add a game;
the game's creator and the group's admins/moderators can edit or remove
it. Removal is a soft delete so finished matches keep their game.
"""

from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from league.database.models import Game
from league.operations.group_operations import require_member
from league.utils.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from league.utils.logger import setup_logger

logger = setup_logger(__name__)

EDITABLE_FIELDS = ('name', 'description', 'image', 'min_players', 'max_players', 'playing_time')


def _validate_player_range(min_players: int, max_players: int) -> None:
    for label, value in (("min_players", min_players), ("max_players", max_players)):
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValidationError(f"{label} must be a whole number, got {value!r}")
    if min_players < 1:
        raise ValidationError(f"min_players must be at least 1, got {min_players}")
    if max_players < min_players:
        raise ValidationError(
            f"max_players ({max_players}) cannot be lower than min_players ({min_players})"
        )


def _validate_playing_time(playing_time: Optional[int]) -> None:
    if playing_time is None:
        return
    if not isinstance(playing_time, int) or isinstance(playing_time, bool) or playing_time <= 0:
        raise ValidationError(f"playing_time must be a positive number of minutes, got {playing_time!r}")


class GameOperations:
    """Per-group game catalog."""

    def __init__(self, database):
        self.db = database
        self.logger = logger

    async def _name_taken(self, session: AsyncSession, group_id: int, name: str,
                          exclude_id: Optional[int] = None) -> bool:
        query = select(Game.id).where(
            (Game.group_id == group_id)
            & (Game.is_active == True)
            & (func.lower(Game.name) == name.lower())
        )
        if exclude_id is not None:
            query = query.where(Game.id != exclude_id)
        result = await session.execute(query.limit(1))
        return result.first() is not None

    async def _get_game_for_edit(self, session: AsyncSession, game_id: int,
                                 user_id: int) -> Game:
        game = await session.get(Game, game_id)
        if not game or not game.is_active:
            raise NotFoundError("Game", game_id)

        group = await require_member(session, game.group_id, user_id)
        if game.created_by != user_id and not group.is_manager(user_id):
            raise PermissionDeniedError("edit this game")
        return game

    async def add_game(self, group_id: int, user_id: int, name: str, min_players: int = 2,
                       max_players: int = 4, playing_time: int = None,
                       description: str = None, image: str = None) -> Game:
        """Add a game to a group's catalog"""
        if not name or not name.strip():
            raise ValidationError("Game name is required")
        _validate_player_range(min_players, max_players)
        _validate_playing_time(playing_time)

        async with self.db.get_session("add game") as session:
            await require_member(session, group_id, user_id)

            if await self._name_taken(session, group_id, name.strip()):
                raise ValidationError(
                    f"Game '{name}' already exists in group {group_id}",
                    "This game is already in the group's catalog."
                )

            game = Game(
                group_id=group_id,
                name=name.strip(),
                description=description,
                image=image,
                min_players=min_players,
                max_players=max_players,
                playing_time=playing_time,
                times_played=0,
                created_by=user_id
            )
            session.add(game)
            await session.commit()

            self.logger.info(f"Added game {game.id} '{game.name}' to group {group_id}")
            return game

    async def list_games(self, group_id: int, user_id: int) -> List[Game]:
        """Active games of a group, by name"""
        async with self.db.get_session("list games") as session:
            await require_member(session, group_id, user_id)
            result = await session.execute(
                select(Game)
                .where((Game.group_id == group_id) & (Game.is_active == True))
                .order_by(Game.name)
            )
            return list(result.scalars().all())

    async def get_game(self, game_id: int, user_id: int) -> Game:
        async with self.db.get_session("get game") as session:
            game = await session.get(Game, game_id)
            if not game:
                raise NotFoundError("Game", game_id)
            await require_member(session, game.group_id, user_id)
            return game

    async def update_game(self, game_id: int, user_id: int, **fields) -> Game:
        """
        Update catalog fields of a game.

        Raises:
            ValidationError: For unknown fields, a duplicate name or a bad player range
            PermissionDeniedError: If the user is neither creator nor group manager
        """
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        async with self.db.get_session("update game") as session:
            game = await self._get_game_for_edit(session, game_id, user_id)

            if 'name' in fields:
                name = (fields['name'] or '').strip()
                if not name:
                    raise ValidationError("Game name is required")
                if await self._name_taken(session, game.group_id, name, exclude_id=game.id):
                    raise ValidationError(f"Game '{name}' already exists in group {game.group_id}")
                fields['name'] = name

            _validate_player_range(
                fields.get('min_players', game.min_players),
                fields.get('max_players', game.max_players)
            )
            if 'playing_time' in fields:
                _validate_playing_time(fields['playing_time'])

            for key, value in fields.items():
                setattr(game, key, value)
            await session.commit()

            self.logger.info(f"Updated game {game_id}: {sorted(fields)}")
            return game

    async def delete_game(self, game_id: int, user_id: int) -> None:
        """Soft delete a game from the catalog"""
        async with self.db.get_session("delete game") as session:
            game = await self._get_game_for_edit(session, game_id, user_id)
            game.is_active = False
            await session.commit()
            self.logger.info(f"Game {game_id} removed from group {game.group_id} by {user_id}")
