"""
Daily Play Streak

A streak counts consecutive UTC calendar days with at least one
qualifying activity.

Logic:
- No previous activity: streak starts at 1
- Activity already counted today: unchanged
- Last activity yesterday: streak continues (+1)
- Any other gap, or a last date in the future: reset to 1

Milestones (7, 14, 30, 100 days) are reported when a streak first
reaches them so the caller can log a streak_milestone activity.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional
import logging

from src.models.progress import UserProgress

logger = logging.getLogger(__name__)

STREAK_MILESTONES = (7, 14, 30, 100)


@dataclass
class StreakUpdate:
    """Result of applying today's activity to a user's streak"""
    previous: int
    current: int
    longest: int
    changed: bool
    milestone: Optional[int] = None


def calculate_streak(
    last_active_date: Optional[date],
    current_streak: int,
    today: date
) -> int:
    """
    New streak value for an activity on *today*

    Args:
        last_active_date: Date the streak was last counted (None if never)
        current_streak: Streak value stored with that date
        today: Current UTC calendar day

    Returns:
        The new streak
    """
    if last_active_date is None:
        return 1

    if last_active_date == today:
        # Playing twice in a day does not double-count
        return max(current_streak, 1)

    if last_active_date == today - timedelta(days=1):
        return current_streak + 1

    return 1


def streak_milestone_reached(previous: int, current: int) -> Optional[int]:
    """Milestone crossed by moving from *previous* to *current*, if any"""
    if current == previous:
        return None
    for milestone in STREAK_MILESTONES:
        if previous < milestone <= current:
            return milestone
    return None


def apply_streak(progress: UserProgress, today: date) -> StreakUpdate:
    """
    Apply today's activity to a progress row in place

    Updates current_streak, longest_streak and last_active_date. The
    caller persists the row inside the same transaction as the points
    update.
    """
    previous = progress.current_streak
    new_streak = calculate_streak(progress.last_active_date, previous, today)

    progress.current_streak = new_streak
    progress.longest_streak = max(progress.longest_streak, new_streak)

    # A future last_active_date resets the streak and is replaced by today
    if progress.last_active_date != today:
        progress.last_active_date = today

    milestone = streak_milestone_reached(previous, new_streak)
    if milestone:
        logger.info(f"{progress.user_id} reached a {milestone}-day streak")

    return StreakUpdate(
        previous=previous,
        current=new_streak,
        longest=progress.longest_streak,
        changed=new_streak != previous,
        milestone=milestone,
    )
