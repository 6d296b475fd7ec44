"""
In-process progress repository

Used by the test suite and by STORAGE_BACKEND=memory for local
development. Nothing is persisted across restarts.

Same-user writes are serialized with one asyncio.Lock per user. A unit of
work stages copies of the rows it touches and only publishes them when the
block exits without an exception, so a failed or cancelled request leaves
no partial multi-row write behind.
"""
import asyncio
import itertools
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncGenerator, Dict, List, Optional, Set, Tuple

from src.db.repository import ProgressRepository, ProgressUnitOfWork
from src.models.activity import ActivityType
from src.models.progress import (
    ActivityLogEntry,
    ConversationEntry,
    DailyReport,
    GameStat,
    Insight,
    UserProgress,
)
from src.utils.datetime_helpers import now_utc

logger = logging.getLogger(__name__)


class _MemoryUnitOfWork(ProgressUnitOfWork):
    """Stages row changes for one user until commit()"""

    def __init__(self, repo: "MemoryProgressRepository", user_id: str):
        super().__init__(user_id)
        self._repo = repo
        self._progress: Optional[UserProgress] = None
        self._stats: Dict[str, GameStat] = {}
        self._reports: Dict[date, DailyReport] = {}
        self._folded: Set[int] = set()

    async def lock_user_progress(self) -> UserProgress:
        if self._progress is None:
            stored = self._repo._progress.get(self.user_id)
            self._progress = (
                stored.model_copy(deep=True) if stored else UserProgress(user_id=self.user_id)
            )
        return self._progress

    async def save_user_progress(self, progress: UserProgress) -> None:
        self._progress = progress.model_copy(deep=True)

    async def get_game_stat_for_update(self, game_kind: str) -> Optional[GameStat]:
        if game_kind not in self._stats:
            stored = self._repo._game_stats.get((self.user_id, game_kind))
            if stored is None:
                return None
            self._stats[game_kind] = stored.model_copy(deep=True)
        return self._stats[game_kind]

    async def lock_game_stat(self, game_kind: str) -> GameStat:
        stat = await self.get_game_stat_for_update(game_kind)
        if stat is None:
            stat = GameStat(user_id=self.user_id, game_kind=game_kind)
            self._stats[game_kind] = stat
        return stat

    async def save_game_stat(self, stat: GameStat) -> None:
        self._stats[stat.game_kind] = stat.model_copy(deep=True)

    async def count_completed_games(self) -> int:
        merged = {
            kind: stat for (uid, kind), stat in self._repo._game_stats.items()
            if uid == self.user_id
        }
        merged.update(self._stats)
        return sum(1 for stat in merged.values() if stat.is_completed)

    async def lock_daily_report(self, report_date: date) -> DailyReport:
        if report_date not in self._reports:
            stored = self._repo._reports.get((self.user_id, report_date))
            if stored is None:
                stored = self._repo._new_report(self.user_id, report_date)
            self._reports[report_date] = stored.model_copy(deep=True)
        return self._reports[report_date]

    async def save_daily_report(self, report: DailyReport) -> None:
        report = report.model_copy(deep=True)
        report.updated_at = now_utc()
        self._reports[report.report_date] = report

    async def list_unfolded_activities(self, report_date: date) -> List[ActivityLogEntry]:
        folded = self._folded | self._repo._folded
        return [
            a.model_copy(deep=True) for a in self._repo._activities
            if a.user_id == self.user_id
            and a.activity_date == report_date
            and a.id not in folded
        ]

    async def mark_activity_folded(self, activity_id: int) -> None:
        self._folded.add(activity_id)

    def commit(self) -> None:
        repo = self._repo
        if self._progress is not None:
            repo._progress[self.user_id] = self._progress.model_copy(deep=True)
        for kind, stat in self._stats.items():
            repo._game_stats[(self.user_id, kind)] = stat.model_copy(deep=True)
        for report_date, report in self._reports.items():
            repo._reports[(self.user_id, report_date)] = report.model_copy(deep=True)
        repo._folded.update(self._folded)


class MemoryProgressRepository(ProgressRepository):
    """Dict-backed repository with per-user locking"""

    def __init__(self):
        self._progress: Dict[str, UserProgress] = {}
        self._game_stats: Dict[Tuple[str, str], GameStat] = {}
        self._reports: Dict[Tuple[str, date], DailyReport] = {}
        self._folded: Set[int] = set()
        self._activities: List[ActivityLogEntry] = []
        self._activity_keys: Dict[Tuple[str, str], ActivityLogEntry] = {}
        self._insights: List[Insight] = []
        self._insight_keys: Set[Tuple[str, str]] = set()
        self._conversation: List[ConversationEntry] = []

        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._report_ids = itertools.count(1)
        self._activity_ids = itertools.count(1)
        self._insight_ids = itertools.count(1)
        self._conversation_ids = itertools.count(1)

    def _new_report(self, user_id: str, report_date: date) -> DailyReport:
        now = now_utc()
        return DailyReport(
            id=next(self._report_ids),
            user_id=user_id,
            report_date=report_date,
            created_at=now,
            updated_at=now,
        )

    @asynccontextmanager
    async def transaction(self, user_id: str) -> AsyncGenerator[ProgressUnitOfWork, None]:
        # Not re-entrant: do not open a second transaction for the same user inside one
        async with self._locks[user_id]:
            uow = _MemoryUnitOfWork(self, user_id)
            yield uow
            uow.commit()

    # ------------------------------------------------------------------
    # Append-only logs
    # ------------------------------------------------------------------

    async def append_activity(self, entry: ActivityLogEntry) -> Tuple[ActivityLogEntry, bool]:
        if entry.idempotency_key:
            existing = self._activity_keys.get((entry.user_id, entry.idempotency_key))
            if existing is not None:
                logger.info(
                    f"Activity replay for {entry.user_id} "
                    f"(key={entry.idempotency_key}), returning entry {existing.id}"
                )
                return existing.model_copy(deep=True), False

        stored = entry.model_copy(update={
            "id": next(self._activity_ids),
            "created_at": entry.created_at or now_utc(),
        })
        self._activities.append(stored)
        if stored.idempotency_key:
            self._activity_keys[(stored.user_id, stored.idempotency_key)] = stored
        return stored.model_copy(deep=True), True

    async def add_insight(self, insight: Insight) -> Optional[Insight]:
        if insight.source_key:
            key = (insight.user_id, insight.source_key)
            if key in self._insight_keys:
                return None
            self._insight_keys.add(key)

        stored = insight.model_copy(update={
            "id": next(self._insight_ids),
            "created_at": insight.created_at or now_utc(),
        })
        self._insights.append(stored)
        return stored.model_copy(deep=True)

    async def append_conversation(self, entry: ConversationEntry) -> ConversationEntry:
        stored = entry.model_copy(update={
            "id": next(self._conversation_ids),
            "created_at": entry.created_at or now_utc(),
        })
        self._conversation.append(stored)
        return stored.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_user_progress(self, user_id: str) -> Optional[UserProgress]:
        progress = self._progress.get(user_id)
        return progress.model_copy(deep=True) if progress else None

    async def get_game_stats(self, user_id: str) -> List[GameStat]:
        stats = [s for (uid, _), s in self._game_stats.items() if uid == user_id]
        stats.sort(key=lambda s: (s.last_played_at is not None, s.last_played_at), reverse=True)
        return [s.model_copy(deep=True) for s in stats]

    async def get_leaderboard(self, limit: int) -> List[UserProgress]:
        ranked = [p for p in self._progress.values() if p.total_points > 0]
        ranked.sort(key=lambda p: (-p.total_points, p.user_id))
        return [p.model_copy(deep=True) for p in ranked[:max(limit, 0)]]

    async def get_daily_report(self, user_id: str, report_date: date) -> Optional[DailyReport]:
        report = self._reports.get((user_id, report_date))
        return report.model_copy(deep=True) if report else None

    async def get_or_create_daily_report(self, user_id: str, report_date: date) -> DailyReport:
        async with self._locks[user_id]:
            key = (user_id, report_date)
            if key not in self._reports:
                self._reports[key] = self._new_report(user_id, report_date)
                logger.debug(f"Created daily report for {user_id} on {report_date}")
            return self._reports[key].model_copy(deep=True)

    async def list_daily_reports(self, user_id: str, start: date, end: date) -> List[DailyReport]:
        reports = [
            r for (uid, d), r in self._reports.items()
            if uid == user_id and start <= d <= end
        ]
        reports.sort(key=lambda r: r.report_date, reverse=True)
        return [r.model_copy(deep=True) for r in reports]

    async def list_activities(self, user_id: str, activity_date: date) -> List[ActivityLogEntry]:
        return [
            a.model_copy(deep=True) for a in reversed(self._activities)
            if a.user_id == user_id and a.activity_date == activity_date
        ]

    async def list_recent_activities(
        self,
        user_id: str,
        activity_type: ActivityType,
        limit: int
    ) -> List[ActivityLogEntry]:
        matches = [
            a for a in reversed(self._activities)
            if a.user_id == user_id and a.activity_type == activity_type
        ]
        return [a.model_copy(deep=True) for a in matches[:max(limit, 0)]]

    async def list_insights(self, user_id: str, insight_date: date) -> List[Insight]:
        return [
            i.model_copy(deep=True) for i in reversed(self._insights)
            if i.user_id == user_id and i.insight_date == insight_date
        ]

    async def mark_insight_read(self, user_id: str, insight_id: int) -> bool:
        for index, insight in enumerate(self._insights):
            if insight.id == insight_id and insight.user_id == user_id:
                self._insights[index] = insight.model_copy(update={"is_read": True})
                return True
        return False

    async def list_conversation(self, user_id: str, limit: int, offset: int = 0) -> List[ConversationEntry]:
        if limit <= 0:
            return []
        entries = [e for e in reversed(self._conversation) if e.user_id == user_id]
        return [e.model_copy(deep=True) for e in entries[offset:offset + limit]]
