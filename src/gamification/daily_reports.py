"""
Daily Report Aggregator

Owns the single report row per user per UTC day and folds logged
activities into it.

Recording an activity runs four steps:
1. Get-or-create the day's report row
2. Append the activity to the log (committed on its own, before anything
   derived from it)
3. Fold every not-yet-folded activity of that day into the report row
4. Run the insight rules

Steps 3 and 4 are derived from the stored activity. A fold that still
fails after its retries is reported as fold_applied=False instead of
failing the request; insight failures are logged and skipped.

A fold runs in its own unit of work that marks each activity it applies
as folded, so an activity is applied at most once. Because a fold picks
up every pending activity of the day, an activity whose own fold failed
is applied by the next fold of that day (the next activity, a replay of
the same idempotency key, or fold_pending() from a report read).

Meditation minutes are also added to UserProgress.total_play_time_minutes
in the same unit of work.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
import logging

from pydantic import BaseModel

from src.config import DEFAULT_MEDITATION_MINUTES, MAX_UPDATE_RETRIES
from src.db.repository import ProgressRepository
from src.exceptions import CompanionError, InvalidPointsError, MissingFieldError
from src.gamification.insights import InsightGenerator
from src.models.activity import ActivityType, parse_activity_data, parse_activity_type
from src.models.progress import ActivityLogEntry, DailyReport, Insight, UserProgress
from src.resilience.retry import retry_with_backoff
from src.utils.datetime_helpers import parse_report_date

logger = logging.getLogger(__name__)

FOLD_RETRY_BASE_DELAY = 0.05


@dataclass(frozen=True)
class FoldSettings:
    default_meditation_minutes: int = DEFAULT_MEDITATION_MINUTES


FoldFn = Callable[[DailyReport, ActivityLogEntry, FoldSettings], None]


def _fold_game_played(report: DailyReport, entry: ActivityLogEntry, settings: FoldSettings) -> None:
    report.games_played += 1
    report.total_points_earned += entry.points_earned


def play_time_minutes(entry: ActivityLogEntry, settings: FoldSettings) -> int:
    """Minutes an activity adds to play time (meditation only)"""
    if entry.activity_type != ActivityType.MEDITATION_COMPLETED:
        return 0
    # A missing or zero duration counts as the default session length
    return entry.activity_data.duration or settings.default_meditation_minutes


def _fold_meditation_completed(report: DailyReport, entry: ActivityLogEntry, settings: FoldSettings) -> None:
    report.total_play_time_minutes += play_time_minutes(entry, settings)


def _fold_streak_milestone(report: DailyReport, entry: ActivityLogEntry, settings: FoldSettings) -> None:
    report.streak_maintained = True


def _fold_achievement_unlocked(report: DailyReport, entry: ActivityLogEntry, settings: FoldSettings) -> None:
    report.achievements_unlocked += 1


# Types without an entry (mood_logged) are log-only
REPORT_FOLDS: Dict[ActivityType, FoldFn] = {
    ActivityType.GAME_PLAYED: _fold_game_played,
    ActivityType.MEDITATION_COMPLETED: _fold_meditation_completed,
    ActivityType.STREAK_MILESTONE: _fold_streak_milestone,
    ActivityType.ACHIEVEMENT_UNLOCKED: _fold_achievement_unlocked,
}


@dataclass
class ActivityRecordResult:
    """
    Outcome of record_activity

    Attributes:
        entry: The stored activity log entry
        created: False when an idempotency key replay returned an earlier entry
        fold_applied: Whether the report row reflects this activity
        report: Report row after the fold (None if the fold failed)
        insights: Insights created by this call
    """
    entry: ActivityLogEntry
    created: bool
    fold_applied: bool
    report: Optional[DailyReport] = None
    insights: List[Insight] = field(default_factory=list)


class DailyReportAggregator:
    """Logs activities and keeps the daily report rows in step with them"""

    def __init__(
        self,
        repository: ProgressRepository,
        insight_generator: Optional[InsightGenerator] = None,
        max_retries: int = MAX_UPDATE_RETRIES,
        default_meditation_minutes: int = DEFAULT_MEDITATION_MINUTES,
        retry_base_delay: float = FOLD_RETRY_BASE_DELAY
    ):
        self.repository = repository
        self.insight_generator = insight_generator
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.settings = FoldSettings(default_meditation_minutes=default_meditation_minutes)

    async def record_activity(
        self,
        user_id: str,
        report_date: Union[str, date],
        activity_type: Union[str, ActivityType],
        points_earned: int,
        activity_data: Union[Mapping[str, Any], BaseModel, None],
        idempotency_key: Optional[str] = None
    ) -> ActivityRecordResult:
        """
        Log an activity and fold it into the day's report

        Args:
            user_id: Activity owner
            report_date: UTC day the activity belongs to
            activity_type: ActivityType or its string value
            points_earned: Points attached to the activity, >= 0
            activity_data: Payload for the activity type (mapping or typed payload)
            idempotency_key: Client key; a repeat returns the original entry

        Returns:
            ActivityRecordResult

        Raises:
            ValidationError: Invalid input (nothing written)
            DatabaseError: The activity itself could not be stored
        """
        if not user_id:
            raise MissingFieldError("user_id")
        if isinstance(points_earned, bool) or not isinstance(points_earned, int) or points_earned < 0:
            raise InvalidPointsError(points_earned, user_id=user_id)

        day = parse_report_date(report_date)
        kind = parse_activity_type(activity_type)
        if isinstance(activity_data, BaseModel):
            activity_data = activity_data.model_dump(exclude={"activity_type"})
        data = parse_activity_data(kind, activity_data)

        await self.repository.get_or_create_daily_report(user_id, day)

        entry, created = await self.repository.append_activity(ActivityLogEntry(
            user_id=user_id,
            activity_date=day,
            activity_type=kind,
            activity_data=data,
            points_earned=points_earned,
            idempotency_key=idempotency_key,
        ))
        if created:
            self._record_metric("activity", kind.value)
            logger.info(f"Logged {kind.value} activity {entry.id} for {user_id} on {day}")

        report = await self._fold(entry.user_id, entry.activity_date, trigger_id=entry.id)

        insights: List[Insight] = []
        if self.insight_generator is not None:
            insights = await self.insight_generator.generate(entry)

        return ActivityRecordResult(
            entry=entry,
            created=created,
            fold_applied=report is not None,
            report=report,
            insights=insights,
        )

    async def fold_pending(self, user_id: str, report_date: Union[str, date]) -> Optional[DailyReport]:
        """
        Fold any activities of the day that are still missing from its report

        Used by report reads so a day whose last fold failed is repaired
        without waiting for another activity. Returns None if the fold
        failed again.
        """
        if not user_id:
            raise MissingFieldError("user_id")
        return await self._fold(user_id, parse_report_date(report_date))

    async def _fold(
        self,
        user_id: str,
        day: date,
        trigger_id: Optional[int] = None
    ) -> Optional[DailyReport]:
        try:
            return await retry_with_backoff(
                self._fold_once,
                user_id, day, trigger_id,
                max_retries=self.max_retries,
                base_delay=self.retry_base_delay
            )
        except CompanionError as e:
            logger.error(
                f"Activities of {day} for {user_id} not folded into the report "
                f"(trigger={trigger_id}): {e.reason_code}"
            )
            self._record_metric("fold_failure", "fold")
            return None

    async def _fold_once(self, user_id: str, day: date, trigger_id: Optional[int]) -> DailyReport:
        async with self.repository.transaction(user_id) as uow:
            pending = await uow.list_unfolded_activities(day)

            # Lock order: user progress before the report row
            progress: Optional[UserProgress] = None
            if any(play_time_minutes(e, self.settings) for e in pending):
                progress = await uow.lock_user_progress()
            report = await uow.lock_daily_report(day)

            # Activities appended after the first read are left to their own fold
            pending_ids = {e.id for e in pending}
            batch = [e for e in await uow.list_unfolded_activities(day) if e.id in pending_ids]
            if not batch:
                return report

            for entry in batch:
                fold = REPORT_FOLDS.get(entry.activity_type)
                if fold is not None:
                    fold(report, entry, self.settings)
                await uow.mark_activity_folded(entry.id)
            await uow.save_daily_report(report)

            if progress is not None:
                progress.total_play_time_minutes += sum(
                    play_time_minutes(e, self.settings) for e in batch
                )
                await uow.save_user_progress(progress)

        caught_up = [e.id for e in batch if e.id != trigger_id]
        if caught_up:
            logger.info(f"Folded earlier pending activities {caught_up} into {day} for {user_id}")
        return report

    @staticmethod
    def _record_metric(kind: str, label: str) -> None:
        try:
            from src.resilience.metrics import record_activity, record_derived_failure
            if kind == "activity":
                record_activity(label)
            else:
                record_derived_failure(label)
        except Exception as e:
            logger.debug(f"Failed to record metric: {e}")
