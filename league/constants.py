"""
League-wide constants.

Point tables and listing limits used across the scoring, ranking and
match workflows live here so they are tuned in one place.
"""

class PointsConstants:
    """Constants for position-based point awards."""
    
    # Points for positions 1..5; must be non-increasing
    POSITION_POINTS = (10, 7, 5, 3, 2)
    
    # Any ranked position past the table
    MIN_RANKED_POINTS = 1
    
    # Players without a recorded position in a graded match
    UNRANKED_POINTS = 0

class PaginationConstants:
    """Constants for paginated listings."""
    
    DEFAULT_PAGE = 1
    MAX_PAGE_SIZE = 100

class GroupConstants:
    """Constants for group invitations and capacity."""
    
    # Uppercase letters and digits without look-alikes (0/O, 1/I)
    INVITE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
    
    DEFAULT_MAX_MEMBERS = 50
    MIN_MAX_MEMBERS = 2
