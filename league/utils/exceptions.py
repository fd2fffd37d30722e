"""
Custom exceptions for the league with user-friendly error messages.
"""

from typing import Iterable


class LeagueException(Exception):
    """Base exception for league errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class NotFoundError(LeagueException):
    """Raised when a user, group, game or match does not exist or is inactive."""
    def __init__(self, entity: str, identifier):
        super().__init__(
            f"{entity} {identifier} not found",
            f"{entity} not found."
        )
        self.entity = entity
        self.identifier = identifier

class PermissionDeniedError(LeagueException):
    """Raised when the acting user is not allowed to perform an action."""
    def __init__(self, action: str):
        super().__init__(
            f"Permission denied: {action}",
            f"You do not have permission to {action}."
        )
        self.action = action

class ValidationError(LeagueException):
    """Raised when input data fails validation."""
    pass

class DuplicatePositionError(ValidationError):
    """Raised when two players in one match share a finishing position."""
    def __init__(self, positions: Iterable[int]):
        self.positions = sorted(set(positions))
        listed = ", ".join(str(p) for p in self.positions)
        super().__init__(
            f"Duplicate positions in match results: {listed}",
            "Two players cannot share the same position."
        )

class MatchStateError(LeagueException):
    """Raised when a match is in the wrong status for an operation."""
    def __init__(self, match_id: int, status: str, action: str):
        super().__init__(
            f"Cannot {action} match {match_id} with status '{status}'",
            f"You cannot {action} a match that is {status}."
        )
        self.match_id = match_id
        self.status = status

class PlayerNotFoundError(LeagueException):
    """Raised by a stats store when a player's record does not exist."""
    def __init__(self, player_id: int):
        super().__init__(
            f"Player {player_id} not found in stats store",
            "Player not found."
        )
        self.player_id = player_id

class DatabaseError(LeagueException):
    """Raised when database operations fail."""
    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Database error during {operation}: {details}",
            "Database error occurred. Please try again later."
        )
