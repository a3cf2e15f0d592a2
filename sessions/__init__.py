# Sessions Package
from sessions.types import SessionAggregate
from sessions.stats_store import SessionStatsStore

__all__ = ["SessionAggregate", "SessionStatsStore"]
