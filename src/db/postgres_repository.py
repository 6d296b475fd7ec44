"""
PostgreSQL progress repository (psycopg 3, async)

Shared rows are read with SELECT ... FOR UPDATE inside one transaction per
unit of work, and created with INSERT ... ON CONFLICT DO NOTHING so that
two concurrent first events of a day still end up on the same row.
Lock waits are bounded by a per-transaction lock_timeout; a timeout,
deadlock or serialization failure surfaces as ConcurrentUpdateError.
"""
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncGenerator, List, Optional, Tuple

import psycopg
from psycopg.types.json import Jsonb

from src.db.connection import Database
from src.db.repository import ProgressRepository, ProgressUnitOfWork
from src.exceptions import wrap_external_exception
from src.models.activity import ActivityType, dump_activity_data, parse_activity_data
from src.models.progress import (
    ActivityLogEntry,
    ConversationEntry,
    DailyReport,
    GameStat,
    Insight,
    UserProgress,
)

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = "5s"

_PROGRESS_COLUMNS = (
    "user_id, total_points, games_completed, current_streak, "
    "longest_streak, last_active_date, total_play_time_minutes"
)
_GAME_STAT_COLUMNS = (
    "user_id, game_kind, total_plays, total_points, best_score, "
    "is_completed, last_played_at"
)
_REPORT_COLUMNS = (
    "id, user_id, report_date, games_played, total_points_earned, "
    "total_play_time_minutes, focus_score, mood_score, "
    "achievements_unlocked, streak_maintained, created_at, updated_at"
)
_ACTIVITY_COLUMNS = (
    "id, user_id, activity_date, activity_type, activity_data, "
    "points_earned, idempotency_key, created_at"
)
_ACTIVITY_COLUMNS_A = ", ".join(f"a.{column.strip()}" for column in _ACTIVITY_COLUMNS.split(","))
_INSIGHT_COLUMNS = (
    "id, user_id, insight_date, insight_type, title, description, "
    "is_read, source_key, created_at"
)
_CONVERSATION_COLUMNS = "id, user_id, message, ai_response, risk_tier, created_at"


def _activity_from_row(row: dict) -> ActivityLogEntry:
    data = parse_activity_data(row["activity_type"], row["activity_data"] or {})
    return ActivityLogEntry(**{**row, "activity_data": data})


class _PostgresUnitOfWork(ProgressUnitOfWork):
    """Row-locking unit of work bound to one open transaction"""

    def __init__(self, cur: psycopg.AsyncCursor, user_id: str):
        super().__init__(user_id)
        self._cur = cur

    async def _fetchone(self, query: str, params: Tuple[Any, ...]) -> Optional[dict]:
        await self._cur.execute(query, params)
        return await self._cur.fetchone()

    async def lock_user_progress(self) -> UserProgress:
        await self._cur.execute(
            "INSERT INTO user_progress (user_id) VALUES (%s) ON CONFLICT (user_id) DO NOTHING",
            (self.user_id,)
        )
        row = await self._fetchone(
            f"SELECT {_PROGRESS_COLUMNS} FROM user_progress WHERE user_id = %s FOR UPDATE",
            (self.user_id,)
        )
        return UserProgress(**row)

    async def save_user_progress(self, progress: UserProgress) -> None:
        await self._cur.execute(
            """
            UPDATE user_progress
            SET total_points = %s, games_completed = %s, current_streak = %s,
                longest_streak = %s, last_active_date = %s,
                total_play_time_minutes = %s, updated_at = NOW()
            WHERE user_id = %s
            """,
            (
                progress.total_points, progress.games_completed,
                progress.current_streak, progress.longest_streak,
                progress.last_active_date, progress.total_play_time_minutes,
                self.user_id,
            )
        )

    async def get_game_stat_for_update(self, game_kind: str) -> Optional[GameStat]:
        row = await self._fetchone(
            f"""
            SELECT {_GAME_STAT_COLUMNS} FROM game_stats
            WHERE user_id = %s AND game_kind = %s
            FOR UPDATE
            """,
            (self.user_id, game_kind)
        )
        return GameStat(**row) if row else None

    async def lock_game_stat(self, game_kind: str) -> GameStat:
        await self._cur.execute(
            """
            INSERT INTO game_stats (user_id, game_kind) VALUES (%s, %s)
            ON CONFLICT (user_id, game_kind) DO NOTHING
            """,
            (self.user_id, game_kind)
        )
        return await self.get_game_stat_for_update(game_kind)

    async def save_game_stat(self, stat: GameStat) -> None:
        await self._cur.execute(
            """
            UPDATE game_stats
            SET total_plays = %s, total_points = %s, best_score = %s,
                is_completed = %s, last_played_at = %s
            WHERE user_id = %s AND game_kind = %s
            """,
            (
                stat.total_plays, stat.total_points, stat.best_score,
                stat.is_completed, stat.last_played_at,
                self.user_id, stat.game_kind,
            )
        )

    async def count_completed_games(self) -> int:
        row = await self._fetchone(
            "SELECT COUNT(*) AS completed FROM game_stats WHERE user_id = %s AND is_completed",
            (self.user_id,)
        )
        return row["completed"] if row else 0

    async def lock_daily_report(self, report_date: date) -> DailyReport:
        await self._cur.execute(
            """
            INSERT INTO daily_reports (user_id, report_date) VALUES (%s, %s)
            ON CONFLICT (user_id, report_date) DO NOTHING
            """,
            (self.user_id, report_date)
        )
        row = await self._fetchone(
            f"""
            SELECT {_REPORT_COLUMNS} FROM daily_reports
            WHERE user_id = %s AND report_date = %s
            FOR UPDATE
            """,
            (self.user_id, report_date)
        )
        return DailyReport(**row)

    async def save_daily_report(self, report: DailyReport) -> None:
        await self._cur.execute(
            """
            UPDATE daily_reports
            SET games_played = %s, total_points_earned = %s,
                total_play_time_minutes = %s, focus_score = %s, mood_score = %s,
                achievements_unlocked = %s, streak_maintained = %s,
                updated_at = NOW()
            WHERE user_id = %s AND report_date = %s
            """,
            (
                report.games_played, report.total_points_earned,
                report.total_play_time_minutes, report.focus_score,
                report.mood_score, report.achievements_unlocked,
                report.streak_maintained, self.user_id, report.report_date,
            )
        )

    async def list_unfolded_activities(self, report_date: date) -> List[ActivityLogEntry]:
        await self._cur.execute(
            f"""
            SELECT {_ACTIVITY_COLUMNS_A} FROM activity_logs a
            LEFT JOIN activity_folds f ON f.activity_id = a.id
            WHERE a.user_id = %s AND a.activity_date = %s AND f.activity_id IS NULL
            ORDER BY a.id
            """,
            (self.user_id, report_date)
        )
        return [_activity_from_row(row) for row in await self._cur.fetchall()]

    async def mark_activity_folded(self, activity_id: int) -> None:
        await self._cur.execute(
            "INSERT INTO activity_folds (activity_id) VALUES (%s) ON CONFLICT DO NOTHING",
            (activity_id,)
        )


class PostgresProgressRepository(ProgressRepository):
    """Repository over the progress engine schema (migrations/001_progress_engine.sql)"""

    def __init__(self, database: Database, lock_timeout: str = DEFAULT_LOCK_TIMEOUT):
        self._db = database
        self._lock_timeout = lock_timeout

    @asynccontextmanager
    async def transaction(self, user_id: str) -> AsyncGenerator[ProgressUnitOfWork, None]:
        try:
            async with self._db.connection() as conn:
                async with conn.transaction():
                    async with conn.cursor() as cur:
                        await cur.execute(
                            "SELECT set_config('lock_timeout', %s, true)",
                            (self._lock_timeout,)
                        )
                        yield _PostgresUnitOfWork(cur, user_id)
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="progress_transaction", user_id=user_id)

    async def _fetchall(self, query: str, params: Tuple[Any, ...], operation: str) -> List[dict]:
        try:
            async with self._db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    return await cur.fetchall()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation=operation)

    async def _fetchone(self, query: str, params: Tuple[Any, ...], operation: str) -> Optional[dict]:
        rows = await self._fetchall(query, params, operation)
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Append-only logs
    # ------------------------------------------------------------------

    async def append_activity(self, entry: ActivityLogEntry) -> Tuple[ActivityLogEntry, bool]:
        try:
            async with self._db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"""
                        INSERT INTO activity_logs
                        (user_id, activity_date, activity_type, activity_data,
                         points_earned, idempotency_key)
                        VALUES (%s, %s, %s, %s, %s, %s)
                        ON CONFLICT (user_id, idempotency_key) DO NOTHING
                        RETURNING {_ACTIVITY_COLUMNS}
                        """,
                        (
                            entry.user_id, entry.activity_date,
                            entry.activity_type.value,
                            Jsonb(dump_activity_data(entry.activity_data)),
                            entry.points_earned, entry.idempotency_key,
                        )
                    )
                    row = await cur.fetchone()
                    created = row is not None
                    if not created:
                        await cur.execute(
                            f"""
                            SELECT {_ACTIVITY_COLUMNS} FROM activity_logs
                            WHERE user_id = %s AND idempotency_key = %s
                            """,
                            (entry.user_id, entry.idempotency_key)
                        )
                        row = await cur.fetchone()
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(
                e, operation="append_activity", user_id=entry.user_id,
                context={"activity_type": entry.activity_type.value}
            )

        if not created:
            logger.info(
                f"Activity replay for {entry.user_id} "
                f"(key={entry.idempotency_key}), returning entry {row['id']}"
            )
        return _activity_from_row(row), created

    async def add_insight(self, insight: Insight) -> Optional[Insight]:
        try:
            async with self._db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"""
                        INSERT INTO insights
                        (user_id, insight_date, insight_type, title, description, source_key)
                        VALUES (%s, %s, %s, %s, %s, %s)
                        ON CONFLICT (user_id, source_key) DO NOTHING
                        RETURNING {_INSIGHT_COLUMNS}
                        """,
                        (
                            insight.user_id, insight.insight_date,
                            insight.insight_type.value, insight.title,
                            insight.description, insight.source_key,
                        )
                    )
                    row = await cur.fetchone()
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="add_insight", user_id=insight.user_id)

        return Insight(**row) if row else None

    async def append_conversation(self, entry: ConversationEntry) -> ConversationEntry:
        try:
            async with self._db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"""
                        INSERT INTO conversation_entries
                        (user_id, message, ai_response, risk_tier)
                        VALUES (%s, %s, %s, %s)
                        RETURNING {_CONVERSATION_COLUMNS}
                        """,
                        (entry.user_id, entry.message, entry.ai_response, entry.risk_tier.value)
                    )
                    row = await cur.fetchone()
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="append_conversation", user_id=entry.user_id)

        logger.debug(f"Saved conversation turn for user {entry.user_id}")
        return ConversationEntry(**row)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_user_progress(self, user_id: str) -> Optional[UserProgress]:
        row = await self._fetchone(
            f"SELECT {_PROGRESS_COLUMNS} FROM user_progress WHERE user_id = %s",
            (user_id,), "get_user_progress"
        )
        return UserProgress(**row) if row else None

    async def get_game_stats(self, user_id: str) -> List[GameStat]:
        rows = await self._fetchall(
            f"""
            SELECT {_GAME_STAT_COLUMNS} FROM game_stats
            WHERE user_id = %s
            ORDER BY last_played_at DESC NULLS LAST
            """,
            (user_id,), "get_game_stats"
        )
        return [GameStat(**row) for row in rows]

    async def get_leaderboard(self, limit: int) -> List[UserProgress]:
        rows = await self._fetchall(
            f"""
            SELECT {_PROGRESS_COLUMNS} FROM user_progress
            WHERE total_points > 0
            ORDER BY total_points DESC, user_id
            LIMIT %s
            """,
            (limit,), "get_leaderboard"
        )
        return [UserProgress(**row) for row in rows]

    async def get_daily_report(self, user_id: str, report_date: date) -> Optional[DailyReport]:
        row = await self._fetchone(
            f"SELECT {_REPORT_COLUMNS} FROM daily_reports WHERE user_id = %s AND report_date = %s",
            (user_id, report_date), "get_daily_report"
        )
        return DailyReport(**row) if row else None

    async def get_or_create_daily_report(self, user_id: str, report_date: date) -> DailyReport:
        try:
            async with self._db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        INSERT INTO daily_reports (user_id, report_date) VALUES (%s, %s)
                        ON CONFLICT (user_id, report_date) DO NOTHING
                        """,
                        (user_id, report_date)
                    )
                    await cur.execute(
                        f"""
                        SELECT {_REPORT_COLUMNS} FROM daily_reports
                        WHERE user_id = %s AND report_date = %s
                        """,
                        (user_id, report_date)
                    )
                    row = await cur.fetchone()
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(
                e, operation="get_or_create_daily_report", user_id=user_id,
                context={"report_date": report_date.isoformat()}
            )
        return DailyReport(**row)

    async def list_daily_reports(self, user_id: str, start: date, end: date) -> List[DailyReport]:
        rows = await self._fetchall(
            f"""
            SELECT {_REPORT_COLUMNS} FROM daily_reports
            WHERE user_id = %s AND report_date BETWEEN %s AND %s
            ORDER BY report_date DESC
            """,
            (user_id, start, end), "list_daily_reports"
        )
        return [DailyReport(**row) for row in rows]

    async def list_activities(self, user_id: str, activity_date: date) -> List[ActivityLogEntry]:
        rows = await self._fetchall(
            f"""
            SELECT {_ACTIVITY_COLUMNS} FROM activity_logs
            WHERE user_id = %s AND activity_date = %s
            ORDER BY created_at DESC, id DESC
            """,
            (user_id, activity_date), "list_activities"
        )
        return [_activity_from_row(row) for row in rows]

    async def list_recent_activities(
        self,
        user_id: str,
        activity_type: ActivityType,
        limit: int
    ) -> List[ActivityLogEntry]:
        rows = await self._fetchall(
            f"""
            SELECT {_ACTIVITY_COLUMNS} FROM activity_logs
            WHERE user_id = %s AND activity_type = %s
            ORDER BY created_at DESC, id DESC
            LIMIT %s
            """,
            (user_id, activity_type.value, limit), "list_recent_activities"
        )
        return [_activity_from_row(row) for row in rows]

    async def list_insights(self, user_id: str, insight_date: date) -> List[Insight]:
        rows = await self._fetchall(
            f"""
            SELECT {_INSIGHT_COLUMNS} FROM insights
            WHERE user_id = %s AND insight_date = %s
            ORDER BY created_at DESC, id DESC
            """,
            (user_id, insight_date), "list_insights"
        )
        return [Insight(**row) for row in rows]

    async def mark_insight_read(self, user_id: str, insight_id: int) -> bool:
        try:
            async with self._db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        "UPDATE insights SET is_read = TRUE WHERE id = %s AND user_id = %s",
                        (insight_id, user_id)
                    )
                    updated = cur.rowcount
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="mark_insight_read", user_id=user_id)
        return updated > 0

    async def list_conversation(self, user_id: str, limit: int, offset: int = 0) -> List[ConversationEntry]:
        if limit <= 0:
            return []
        rows = await self._fetchall(
            f"""
            SELECT {_CONVERSATION_COLUMNS} FROM conversation_entries
            WHERE user_id = %s
            ORDER BY created_at DESC, id DESC
            LIMIT %s OFFSET %s
            """,
            (user_id, limit, offset), "list_conversation"
        )
        return [ConversationEntry(**row) for row in rows]
