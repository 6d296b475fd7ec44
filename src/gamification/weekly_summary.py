"""
Weekly Summary Builder

Read-only rollup over the daily report rows of a date window. Has no
state of its own; the same rows always give the same totals.
"""

from datetime import date
from typing import List, Sequence
import logging

from src.db.repository import ProgressRepository
from src.models.progress import DailyReport, WeeklySummary, WeeklyTotals

logger = logging.getLogger(__name__)


def summarize(reports: Sequence[DailyReport]) -> WeeklyTotals:
    """
    Fold report rows into weekly totals

    Focus and mood are averaged over the rows present (every stored row
    is a day with data). Both averages are 0 when there are no rows.
    """
    if not reports:
        return WeeklyTotals()

    days = len(reports)
    return WeeklyTotals(
        total_games=sum(r.games_played for r in reports),
        total_points=sum(r.total_points_earned for r in reports),
        total_play_time=sum(r.total_play_time_minutes for r in reports),
        avg_focus_score=sum(r.focus_score for r in reports) / days,
        avg_mood_score=sum(r.mood_score for r in reports) / days,
        streak_days=sum(1 for r in reports if r.streak_maintained),
    )


class WeeklySummaryBuilder:
    """Loads a window of report rows and summarizes them"""

    def __init__(self, repository: ProgressRepository):
        self.repository = repository

    async def build(self, user_id: str, start: date, end: date) -> WeeklySummary:
        reports: List[DailyReport] = await self.repository.list_daily_reports(user_id, start, end)
        logger.debug(f"Weekly summary for {user_id} {start}..{end}: {len(reports)} rows")
        return WeeklySummary(
            start_date=start,
            end_date=end,
            weekly_data=reports,
            weekly_totals=summarize(reports),
            days_tracked=len(reports),
        )
