"""
Persistence interface for the progress engine

Two kinds of storage sit behind this interface:

- Shared mutable rows (UserProgress, GameStat, DailyReport). These are
  only changed through a ProgressUnitOfWork, which is bound to one user,
  holds that user's rows locked until it exits, and commits all of its
  writes together or none of them.
- Append-only logs (activity log, insights, conversation). These are
  written directly without row locks.

Implementations: PostgresProgressRepository (psycopg, SELECT ... FOR
UPDATE) and MemoryProgressRepository (per-user asyncio.Lock).
"""
from abc import ABC, abstractmethod
from datetime import date
from typing import AsyncContextManager, List, Optional, Tuple

from src.models.activity import ActivityType
from src.models.progress import (
    ActivityLogEntry,
    ConversationEntry,
    DailyReport,
    GameStat,
    Insight,
    UserProgress,
)


class ProgressUnitOfWork(ABC):
    """
    Transactional view over one user's mutable rows

    Lock order when several rows are needed: user progress, then game
    stat, then daily report.
    """

    def __init__(self, user_id: str):
        self.user_id = user_id

    @abstractmethod
    async def lock_user_progress(self) -> UserProgress:
        """Load (creating if missing) and lock the user's progress row"""

    @abstractmethod
    async def save_user_progress(self, progress: UserProgress) -> None:
        ...

    @abstractmethod
    async def lock_game_stat(self, game_kind: str) -> GameStat:
        """Load (creating if missing) and lock the stat row for *game_kind*"""

    @abstractmethod
    async def get_game_stat_for_update(self, game_kind: str) -> Optional[GameStat]:
        """Load and lock the stat row for *game_kind* without creating it"""

    @abstractmethod
    async def save_game_stat(self, stat: GameStat) -> None:
        ...

    @abstractmethod
    async def count_completed_games(self) -> int:
        ...

    @abstractmethod
    async def lock_daily_report(self, report_date: date) -> DailyReport:
        """Load (creating if missing) and lock the report row for *report_date*"""

    @abstractmethod
    async def save_daily_report(self, report: DailyReport) -> None:
        ...

    @abstractmethod
    async def list_unfolded_activities(self, report_date: date) -> List[ActivityLogEntry]:
        """Activities of *report_date* not yet folded into its report, oldest first"""

    @abstractmethod
    async def mark_activity_folded(self, activity_id: int) -> None:
        ...


class ProgressRepository(ABC):
    """Storage for progress state, injected into the engine components"""

    @abstractmethod
    def transaction(self, user_id: str) -> AsyncContextManager[ProgressUnitOfWork]:
        """
        Open a unit of work for *user_id*

        Usage:
            async with repository.transaction(user_id) as uow:
                progress = await uow.lock_user_progress()
                ...
                await uow.save_user_progress(progress)

        Writes are committed when the block exits normally and discarded
        if it raises.
        """

    # Append-only logs

    @abstractmethod
    async def append_activity(self, entry: ActivityLogEntry) -> Tuple[ActivityLogEntry, bool]:
        """
        Durably append an activity

        Returns:
            (stored entry, created). When the entry carries an
            idempotency_key already used by this user, the original entry
            is returned with created=False and nothing is written.
        """

    @abstractmethod
    async def add_insight(self, insight: Insight) -> Optional[Insight]:
        """Append an insight; None if its source_key already exists for the user"""

    @abstractmethod
    async def append_conversation(self, entry: ConversationEntry) -> ConversationEntry:
        ...

    # Reads

    @abstractmethod
    async def get_user_progress(self, user_id: str) -> Optional[UserProgress]:
        ...

    @abstractmethod
    async def get_game_stats(self, user_id: str) -> List[GameStat]:
        """All game stats for the user, most recently played first"""

    @abstractmethod
    async def get_leaderboard(self, limit: int) -> List[UserProgress]:
        """Users with points, highest total_points first (ties by user_id)"""

    @abstractmethod
    async def get_daily_report(self, user_id: str, report_date: date) -> Optional[DailyReport]:
        ...

    @abstractmethod
    async def get_or_create_daily_report(self, user_id: str, report_date: date) -> DailyReport:
        """Return the report row for the day, creating an empty one if missing"""

    @abstractmethod
    async def list_daily_reports(self, user_id: str, start: date, end: date) -> List[DailyReport]:
        """Report rows in [start, end], newest first"""

    @abstractmethod
    async def list_activities(self, user_id: str, activity_date: date) -> List[ActivityLogEntry]:
        """Activities of one day, newest first"""

    @abstractmethod
    async def list_recent_activities(
        self,
        user_id: str,
        activity_type: ActivityType,
        limit: int
    ) -> List[ActivityLogEntry]:
        """The user's latest *limit* activities of one type across all days, newest first"""

    @abstractmethod
    async def list_insights(self, user_id: str, insight_date: date) -> List[Insight]:
        """Insights of one day, newest first"""

    @abstractmethod
    async def mark_insight_read(self, user_id: str, insight_id: int) -> bool:
        """Flip is_read; False if the insight does not exist for this user"""

    @abstractmethod
    async def list_conversation(self, user_id: str, limit: int, offset: int = 0) -> List[ConversationEntry]:
        """Conversation entries, newest first"""
