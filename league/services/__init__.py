"""
Services package for the league.

Session-managed services over the database: statistics aggregation and
ranking queries.
"""

from .base import BaseService
from .ranking_service import RankingService
from .stats_aggregator import (
    StatsAggregator, StatsStore, DatabaseStatsStore, InMemoryStatsStore,
    UpdateReport, PlayerUpdate, PlayerUpdateError
)

__all__ = [
    'BaseService', 'RankingService', 'StatsAggregator', 'StatsStore',
    'DatabaseStatsStore', 'InMemoryStatsStore', 'UpdateReport',
    'PlayerUpdate', 'PlayerUpdateError'
]
