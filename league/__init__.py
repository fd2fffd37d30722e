"""
Tabletop game group league.

Groups of players schedule matches of games from their catalog, record
finishing positions and earn points towards a group and global ranking.
"""

__version__ = "1.0.0"
