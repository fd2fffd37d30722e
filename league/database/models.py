from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, Float,
    ForeignKey, Enum as SQLEnum, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from enum import Enum
from typing import Optional, List, Dict

Base = declarative_base()

class GroupRole(Enum):
    ADMIN = "admin"
    MODERATOR = "moderator"
    MEMBER = "member"

class MatchStatus(Enum):
    """Status of a match from scheduling to completion"""
    SCHEDULED = "scheduled"      # Created, waiting for the play date
    IN_PROGRESS = "in_progress"  # Being played right now
    FINISHED = "finished"        # Results recorded and points awarded
    CANCELLED = "cancelled"      # Called off by creator or group admin

class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    nickname = Column(String(50))
    avatar = Column(String(500))

    # Cumulative stats, only ever incremented by the stats aggregator
    total_matches = Column(Integer, nullable=False, default=0, server_default='0')
    total_wins = Column(Integer, nullable=False, default=0, server_default='0')
    total_points = Column(Integer, nullable=False, default=0, server_default='0')

    # Metadata
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    memberships = relationship("GroupMember", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        Index('ix_users_total_points', 'total_points'),
        Index('ix_users_active_points', 'is_active', 'total_points'),
    )

    @property
    def win_rate(self) -> float:
        if not self.total_matches:
            return 0.0
        return round((self.total_wins / self.total_matches) * 100, 2)

    @property
    def display_name(self) -> str:
        return self.nickname or self.name

    def __repr__(self):
        return f"<User(id={self.id}, name='{self.name}', points={self.total_points})>"

class Group(Base):
    __tablename__ = 'groups'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    avatar = Column(String(500))
    admin_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    invite_code = Column(String(20), nullable=False, unique=True, index=True)
    max_members = Column(Integer, nullable=False, default=50, server_default='50')

    # Stats
    total_matches = Column(Integer, nullable=False, default=0, server_default='0')

    # Metadata
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    admin = relationship("User", foreign_keys=[admin_id])
    members = relationship(
        "GroupMember", back_populates="group",
        cascade="all, delete-orphan", lazy="selectin"
    )

    __table_args__ = (
        CheckConstraint('max_members >= 2', name='ck_group_max_members'),
    )

    def members_by_user(self) -> Dict[int, 'GroupMember']:
        """Membership rows keyed by user id"""
        return {member.user_id: member for member in self.members}

    def is_member(self, user_id: int) -> bool:
        return user_id in self.members_by_user()

    def get_member_role(self, user_id: int) -> Optional[GroupRole]:
        member = self.members_by_user().get(user_id)
        return member.role if member else None

    def is_manager(self, user_id: int) -> bool:
        """Admins and moderators can manage members and the game catalog"""
        return self.get_member_role(user_id) in (GroupRole.ADMIN, GroupRole.MODERATOR)

    @property
    def member_ids(self) -> List[int]:
        return [member.user_id for member in self.members]

    @property
    def member_count(self) -> int:
        return len(self.members)

    def can_accept_members(self) -> bool:
        return self.member_count < self.max_members

    def __repr__(self):
        return f"<Group(id={self.id}, name='{self.name}', members={len(self.members)})>"

class GroupMember(Base):
    __tablename__ = 'group_members'

    id = Column(Integer, primary_key=True)
    group_id = Column(Integer, ForeignKey('groups.id'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    role = Column(SQLEnum(GroupRole), nullable=False, default=GroupRole.MEMBER)
    joined_at = Column(DateTime, default=func.now())

    group = relationship("Group", back_populates="members")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint('group_id', 'user_id', name='uq_group_member'),
        Index('ix_group_members_user', 'user_id'),
    )

    def __repr__(self):
        return f"<GroupMember(group_id={self.group_id}, user_id={self.user_id}, role={self.role.value})>"

class Game(Base):
    __tablename__ = 'games'

    id = Column(Integer, primary_key=True)
    group_id = Column(Integer, ForeignKey('groups.id'), nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    image = Column(String(500))

    # Game configuration
    min_players = Column(Integer, default=2)
    max_players = Column(Integer, default=4)
    playing_time = Column(Integer, nullable=True)  # Minutes

    # Stats
    times_played = Column(Integer, nullable=False, default=0, server_default='0')

    # Metadata
    is_active = Column(Boolean, default=True)
    created_by = Column(Integer, ForeignKey('users.id'), nullable=False)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    group = relationship("Group")

    __table_args__ = (
        CheckConstraint('min_players >= 1', name='ck_game_min_players'),
        CheckConstraint('max_players >= min_players', name='ck_game_player_range'),
        Index('ix_games_group_active', 'group_id', 'is_active'),
    )

    def __repr__(self):
        return f"<Game(id={self.id}, name='{self.name}', group_id={self.group_id})>"

class Match(Base):
    """
    A scheduled or played session of a game among members of one group.

    Players, their finishing positions and the points they earned live in
    MatchPlayer rows; the winner is optional and must be one of the players.
    """
    __tablename__ = 'matches'

    id = Column(Integer, primary_key=True)
    game_id = Column(Integer, ForeignKey('games.id'), nullable=False)
    group_id = Column(Integer, ForeignKey('groups.id'), nullable=False)
    status = Column(SQLEnum(MatchStatus), nullable=False, default=MatchStatus.SCHEDULED)

    # Timing
    scheduled_date = Column(DateTime, nullable=False)
    finished_at = Column(DateTime, nullable=True)
    duration_minutes = Column(Integer, nullable=True)

    location = Column(String(200), default='')
    notes = Column(Text, default='')

    winner_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    created_by = Column(Integer, ForeignKey('users.id'), nullable=False)

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    game = relationship("Game")
    group = relationship("Group")
    winner = relationship("User", foreign_keys=[winner_id])
    created_by_user = relationship("User", foreign_keys=[created_by])
    players = relationship(
        "MatchPlayer", back_populates="match",
        cascade="all, delete-orphan", lazy="selectin",
        order_by="MatchPlayer.id"
    )

    __table_args__ = (
        Index('ix_matches_group_date', 'group_id', 'scheduled_date'),
        Index('ix_matches_group_status_date', 'group_id', 'status', 'scheduled_date'),
        Index('ix_matches_status_date', 'status', 'scheduled_date'),
    )

    @property
    def is_closed(self) -> bool:
        """Finished and cancelled matches accept no further changes"""
        return self.status in (MatchStatus.FINISHED, MatchStatus.CANCELLED)

    @property
    def player_ids(self) -> List[int]:
        return [player.user_id for player in self.players]

    def get_player(self, user_id: int) -> Optional['MatchPlayer']:
        for player in self.players:
            if player.user_id == user_id:
                return player
        return None

    def __repr__(self):
        return f"<Match(id={self.id}, status={self.status.value}, players={len(self.players)})>"

class MatchPlayer(Base):
    """A single player's participation and result in a match."""
    __tablename__ = 'match_players'

    id = Column(Integer, primary_key=True)
    match_id = Column(Integer, ForeignKey('matches.id'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)

    confirmed = Column(Boolean, default=False)

    # Results
    score = Column(Float, nullable=True)      # Raw in-game score, informational
    position = Column(Integer, nullable=True)  # 1 = first place, null when unranked
    points_earned = Column(Integer, nullable=False, default=0, server_default='0')

    match = relationship("Match", back_populates="players")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint('match_id', 'user_id', name='uq_match_player'),
        CheckConstraint('position IS NULL OR position >= 1', name='ck_match_player_position'),
        Index('ix_match_players_user', 'user_id'),
    )

    def __repr__(self):
        return f"<MatchPlayer(match_id={self.match_id}, user_id={self.user_id}, position={self.position}, points={self.points_earned})>"
