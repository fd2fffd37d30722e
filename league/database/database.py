from typing import Optional
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from contextlib import asynccontextmanager

from league.config import Config
from league.database.models import Base, User, Match, MatchStatus
from league.utils.exceptions import DatabaseError, NotFoundError, ValidationError
from league.utils.logger import setup_logger

class Database:
    def __init__(self, database_url: str = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url
        self.engine = None
        self.async_session = None

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        database_url = Config.get_async_database_url(self.database_url)

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
            future=True
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        # Create all tables
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @asynccontextmanager
    async def get_session(self, operation: str = "database operation"):
        """
        Get a database session.

        SQLAlchemy errors escaping the block roll the session back and are
        re-raised as DatabaseError labelled with `operation`.
        """
        async with self.async_session() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                await session.rollback()
                self.logger.error(f"Failed to {operation}: {e}")
                raise DatabaseError(operation, str(e)) from e
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self, operation: str = "database transaction"):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context are committed together on success,
        or rolled back together on failure.

        Usage:
            async with db.transaction("finish match") as session:
                session.add(match)
                await session.execute(update(Group)...)
                # Both commit together here

        The caller is responsible for passing the yielded session to all
        participating operations. Exceptions must be allowed to propagate
        out of the context for rollback to occur; SQLAlchemy errors come
        out as DatabaseError.
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                self.logger.error(f"Failed to {operation}: {e}")
                raise DatabaseError(operation, str(e)) from e
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")

    # User operations
    async def create_user(self, name: str, email: str, nickname: str = None,
                          avatar: str = None) -> User:
        """Create a new user with zeroed stats"""
        if not name or not name.strip():
            raise ValidationError("User name is required")
        if not email or '@' not in email:
            raise ValidationError(f"Invalid email address: {email!r}")

        async with self.get_session("create user") as session:
            user = User(
                name=name.strip(),
                email=email.strip().lower(),
                nickname=nickname,
                avatar=avatar,
                total_matches=0,
                total_wins=0,
                total_points=0
            )
            session.add(user)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise ValidationError(
                    f"Email {email} is already registered",
                    "That email is already registered."
                )
            await session.refresh(user)
            self.logger.info(f"Created user {user.id} ({user.email})")
            return user

    async def get_user(self, user_id: int) -> Optional[User]:
        """Get a user by ID"""
        async with self.get_session("get user") as session:
            return await session.get(User, user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Get a user by email (case insensitive)"""
        async with self.get_session("get user by email") as session:
            result = await session.execute(
                select(User).where(User.email == email.strip().lower())
            )
            return result.scalar_one_or_none()

    async def update_user(self, user_id: int, name: str = None, nickname: str = None,
                          avatar: str = None, email: str = None) -> User:
        """
        Update a user's profile fields. Only arguments that are not None
        change; cumulative stats are never touched here.

        Raises:
            NotFoundError: If the user does not exist or is deactivated
            ValidationError: For an empty name, a bad email or an email in use
        """
        if name is not None and not name.strip():
            raise ValidationError("User name is required")
        if email is not None and '@' not in email:
            raise ValidationError(f"Invalid email address: {email!r}")

        async with self.get_session("update user") as session:
            user = await session.get(User, user_id)
            if not user or not user.is_active:
                raise NotFoundError("User", user_id)

            if name is not None:
                user.name = name.strip()
            if nickname is not None:
                user.nickname = nickname.strip() or None
            if avatar is not None:
                user.avatar = avatar
            if email is not None:
                user.email = email.strip().lower()

            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise ValidationError(
                    f"Email {email} is already registered",
                    "That email is already registered."
                )
            await session.refresh(user)
            self.logger.info(f"Updated profile of user {user_id}")
            return user

    async def deactivate_user(self, user_id: int) -> None:
        """Soft delete a user; their stats and match history are kept"""
        async with self.get_session("deactivate user") as session:
            result = await session.execute(
                update(User)
                .where(User.id == user_id)
                .values(is_active=False)
            )
            if result.rowcount == 0:
                raise NotFoundError("User", user_id)
            await session.commit()
            self.logger.info(f"Deactivated user {user_id}")

    async def count_finished_matches(self, group_id: int) -> int:
        """Number of finished matches in a group"""
        async with self.get_session("count finished matches") as session:
            result = await session.execute(
                select(func.count(Match.id)).where(
                    (Match.group_id == group_id) & (Match.status == MatchStatus.FINISHED)
                )
            )
            return result.scalar() or 0
