"""
ProgressService - Games, Activities and Reports

Operation-level entry points used by the API routes. Wires the Points
Ledger, Daily Report Aggregator, Insight Generator and Weekly Summary
Builder together for one repository.

Mutating operations return an OperationResult instead of raising, so the
caller always sees an explicit failure with its reason code. Reads raise
CompanionError subclasses.
"""

import logging
from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional

from src.config import DEFAULT_MEDITATION_MINUTES, MAX_UPDATE_RETRIES
from src.db.repository import ProgressRepository
from src.exceptions import CompanionError, MissingFieldError, RecordNotFoundError, ValidationError
from src.gamification.daily_reports import DailyReportAggregator
from src.gamification.insights import InsightGenerator
from src.gamification.points_ledger import PointsLedger
from src.gamification.weekly_summary import WeeklySummaryBuilder
from src.models.activity import ActivityType
from src.models.progress import (
    DailyReportView,
    GameStatsView,
    LeaderboardEntry,
    RealTimeStats,
    UserProgress,
    WeeklySummary,
)
from src.models.result import OperationResult
from src.utils.datetime_helpers import parse_report_date, today_utc, week_window

logger = logging.getLogger(__name__)

RECENT_SESSIONS_LIMIT = 10
DEFAULT_LEADERBOARD_SIZE = 10
MAX_LEADERBOARD_SIZE = 100


def streak_milestone_key(user_id: str, day: date, streak: int) -> str:
    """Idempotency key of the streak_milestone activity for a day"""
    return f"streak:{user_id}:{day.isoformat()}:{streak}"


class ProgressService:
    """
    Service for game sessions, activity logging and progress reports.

    Responsibilities:
    - Apply finished games to points, game stats and streaks
    - Log activities into the daily report
    - Emit streak milestone activities
    - Serve today's, a past day's and the weekly report
    """

    def __init__(
        self,
        repository: ProgressRepository,
        today_provider: Callable[[], date] = today_utc,
        max_retries: int = MAX_UPDATE_RETRIES,
        default_meditation_minutes: int = DEFAULT_MEDITATION_MINUTES
    ):
        self.repository = repository
        self.today = today_provider
        self.ledger = PointsLedger(repository, max_retries=max_retries)
        self.insight_generator = InsightGenerator(repository)
        self.aggregator = DailyReportAggregator(
            repository,
            insight_generator=self.insight_generator,
            max_retries=max_retries,
            default_meditation_minutes=default_meditation_minutes
        )
        self.weekly_builder = WeeklySummaryBuilder(repository)
        logger.debug("ProgressService initialized")

    # ==========================================
    # Games
    # ==========================================

    async def record_game_session(
        self,
        user_id: str,
        game_kind: str,
        score: int,
        points_earned: int
    ) -> OperationResult[Dict[str, Any]]:
        """
        Record a finished game.

        The ledger update (points, game stat, streak) is the primary write.
        The game_played activity and any streak milestone are logged after
        it; if that logging fails the ledger update still stands and
        activity_id is None.

        The ledger has committed by the time the report fold runs, so a
        failed fold is not turned into a failure (a client retry would
        credit the points twice). It is reported as fold_applied=False and
        repaired by the next fold of the day or the next report read.

        Returns:
            OperationResult with {
                'points_earned': int,
                'score': int,
                'game_kind': str,
                'total_points': int,
                'current_streak': int,
                'longest_streak': int,
                'activity_id': Optional[int],
                'fold_applied': bool
            }
        """
        today = self.today()
        try:
            update = await self.ledger.apply_points(user_id, game_kind, points_earned, score, today)
        except CompanionError as e:
            return OperationResult.failure(e)

        activity_id = None
        fold_applied = False
        try:
            record = await self.aggregator.record_activity(
                user_id=user_id,
                report_date=today,
                activity_type=ActivityType.GAME_PLAYED,
                points_earned=points_earned,
                activity_data={"score": score, "game_kind": update.game_stat.game_kind},
            )
            activity_id = record.entry.id
            fold_applied = record.fold_applied
        except CompanionError as e:
            logger.error(f"Game for {user_id} applied but its activity was not logged: {e.reason_code}")

        if update.streak.milestone:
            await self._log_streak_milestone(user_id, today, update.streak.milestone)

        return OperationResult.success({
            'points_earned': points_earned,
            'score': score,
            'game_kind': update.game_stat.game_kind,
            'total_points': update.progress.total_points,
            'current_streak': update.streak.current,
            'longest_streak': update.streak.longest,
            'activity_id': activity_id,
            'fold_applied': fold_applied,
        })

    async def _log_streak_milestone(self, user_id: str, today: date, streak: int) -> None:
        try:
            await self.aggregator.record_activity(
                user_id=user_id,
                report_date=today,
                activity_type=ActivityType.STREAK_MILESTONE,
                points_earned=0,
                activity_data={"streak": streak},
                idempotency_key=streak_milestone_key(user_id, today, streak),
            )
        except CompanionError as e:
            logger.error(f"Failed to log {streak}-day streak milestone for {user_id}: {e.reason_code}")

    async def mark_game_completed(self, user_id: str, game_kind: str) -> OperationResult[Dict[str, Any]]:
        """Flag a game as completed; returns {'game_kind', 'games_completed'}"""
        try:
            progress = await self.ledger.mark_game_completed(user_id, game_kind)
        except CompanionError as e:
            return OperationResult.failure(e)
        return OperationResult.success({
            'game_kind': game_kind.strip(),
            'games_completed': progress.games_completed,
        })

    async def get_game_stats(self, user_id: str, recent_limit: int = RECENT_SESSIONS_LIMIT) -> GameStatsView:
        """Overall progress (zeroes for a new user), per-game stats and the latest game sessions"""
        if not user_id:
            raise MissingFieldError("user_id")
        progress = await self.repository.get_user_progress(user_id)
        return GameStatsView(
            user_progress=progress or UserProgress(user_id=user_id),
            game_stats=await self.repository.get_game_stats(user_id),
            recent_sessions=await self.repository.list_recent_activities(
                user_id, ActivityType.GAME_PLAYED, recent_limit
            ),
        )

    async def get_leaderboard(self, limit: int = DEFAULT_LEADERBOARD_SIZE) -> List[LeaderboardEntry]:
        """
        Users ranked by total points (users without points are left out)

        Raises:
            ValidationError: limit outside 1..MAX_LEADERBOARD_SIZE
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LEADERBOARD_SIZE:
            raise ValidationError(
                f"limit must be between 1 and {MAX_LEADERBOARD_SIZE}",
                field="limit",
                value=limit
            )

        rows = await self.repository.get_leaderboard(limit)
        return [
            LeaderboardEntry(
                rank=rank,
                user_id=progress.user_id,
                total_points=progress.total_points,
                games_completed=progress.games_completed,
                current_streak=progress.current_streak,
            )
            for rank, progress in enumerate(rows, start=1)
        ]

    # ==========================================
    # Activities
    # ==========================================

    async def record_activity(
        self,
        user_id: str,
        activity_type: Any,
        activity_data: Optional[Mapping[str, Any]] = None,
        points_earned: int = 0,
        idempotency_key: Optional[str] = None
    ) -> OperationResult[Dict[str, Any]]:
        """
        Log a wellness activity on today's report.

        Returns:
            OperationResult with {
                'activity_id': int,
                'points_earned': int,
                'created': bool,        # False on idempotency key replay
                'fold_applied': bool,
                'insights': List[Insight]
            }
        """
        try:
            record = await self.aggregator.record_activity(
                user_id=user_id,
                report_date=self.today(),
                activity_type=activity_type,
                points_earned=points_earned,
                activity_data=activity_data,
                idempotency_key=idempotency_key,
            )
        except CompanionError as e:
            return OperationResult.failure(e)

        return OperationResult.success({
            'activity_id': record.entry.id,
            'points_earned': record.entry.points_earned,
            'created': record.created,
            'fold_applied': record.fold_applied,
            'insights': record.insights,
        })

    # ==========================================
    # Reports
    # ==========================================

    async def get_today_report(self, user_id: str) -> DailyReportView:
        """Today's report (created if missing) with activities, insights and live stats"""
        if not user_id:
            raise MissingFieldError("user_id")

        today = self.today()
        # Folding also creates today's row; fall back to a plain get-or-create if it fails
        report = await self.aggregator.fold_pending(user_id, today)
        if report is None:
            report = await self.repository.get_or_create_daily_report(user_id, today)
        activities = await self.repository.list_activities(user_id, today)
        insights = await self.repository.list_insights(user_id, today)
        progress = await self.repository.get_user_progress(user_id)

        return DailyReportView(
            report=report,
            activities=activities,
            insights=insights,
            real_time_stats=RealTimeStats(
                games_played=report.games_played,
                points_earned=report.total_points_earned,
                total_activities=len(activities),
                current_streak=progress.current_streak if progress else 0,
                total_play_time_minutes=progress.total_play_time_minutes if progress else 0,
                mood_score=report.mood_score or None,
            ),
        )

    async def get_report_for_date(self, user_id: str, date_str: Any) -> Optional[DailyReportView]:
        """
        Report for a past day, or None when that day has no data

        Raises:
            InvalidDateError: date_str is not YYYY-MM-DD
        """
        if not user_id:
            raise MissingFieldError("user_id")
        day = parse_report_date(date_str)

        report = await self.repository.get_daily_report(user_id, day)
        if report is None:
            logger.debug(f"No report for {user_id} on {day}")
            return None
        report = await self.aggregator.fold_pending(user_id, day) or report

        return DailyReportView(
            report=report,
            activities=await self.repository.list_activities(user_id, day),
            insights=await self.repository.list_insights(user_id, day),
        )

    async def get_weekly_summary(self, user_id: str) -> WeeklySummary:
        """Summary of the seven days ending today"""
        if not user_id:
            raise MissingFieldError("user_id")
        start, end = week_window(self.today())
        return await self.weekly_builder.build(user_id, start, end)

    async def mark_insight_read(self, user_id: str, insight_id: int) -> OperationResult[Dict[str, Any]]:
        """Acknowledge an insight; unknown or foreign ids fail with not_found"""
        try:
            if not user_id:
                raise MissingFieldError("user_id")
            if not await self.repository.mark_insight_read(user_id, insight_id):
                raise RecordNotFoundError(
                    f"Insight {insight_id} not found",
                    record_type="Insight",
                    record_id=str(insight_id),
                    user_id=user_id
                )
        except CompanionError as e:
            return OperationResult.failure(e)
        return OperationResult.success({'insight_id': insight_id, 'is_read': True})
