"""Progress engine models: per-user counters, report rows and append-only logs"""
from datetime import date, datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field

from src.models.activity import ActivityData, ActivityType


class InsightType(str, Enum):
    """Kinds of rule-generated insight"""
    ACHIEVEMENT = "achievement"
    CELEBRATION = "celebration"
    IMPROVEMENT = "improvement"
    MOTIVATIONAL = "motivational"


class RiskTier(str, Enum):
    """Coarse distress signal of a chat message (not a clinical diagnosis)"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class UserProgress(BaseModel):
    """Overall progress for one user"""
    user_id: str
    total_points: int = Field(default=0, ge=0)
    games_completed: int = Field(default=0, ge=0)
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    last_active_date: Optional[date] = None
    total_play_time_minutes: int = Field(default=0, ge=0)


class GameStat(BaseModel):
    """Per user x game kind statistics"""
    user_id: str
    game_kind: str
    total_plays: int = Field(default=0, ge=0)
    total_points: int = Field(default=0, ge=0)
    best_score: int = 0
    is_completed: bool = False
    last_played_at: Optional[datetime] = None


class DailyReport(BaseModel):
    """The single aggregate row for one user on one UTC calendar day"""
    id: Optional[int] = None
    user_id: str
    report_date: date
    games_played: int = 0
    total_points_earned: int = 0
    total_play_time_minutes: int = 0
    focus_score: float = 0.0
    mood_score: float = 0.0
    achievements_unlocked: int = 0
    streak_maintained: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ActivityLogEntry(BaseModel):
    """Immutable record of one user action"""
    id: Optional[int] = None
    user_id: str
    activity_date: date
    activity_type: ActivityType
    activity_data: ActivityData
    points_earned: int = Field(default=0, ge=0)
    idempotency_key: Optional[str] = None
    created_at: Optional[datetime] = None


class Insight(BaseModel):
    """Short rule-generated message tied to the event that triggered it"""
    id: Optional[int] = None
    user_id: str
    insight_date: date
    insight_type: InsightType
    title: str
    description: str
    is_read: bool = False
    source_key: Optional[str] = None  # one insight per (activity, rule)
    created_at: Optional[datetime] = None


class ConversationEntry(BaseModel):
    """One chat turn: user message, companion reply and classified risk"""
    id: Optional[int] = None
    user_id: str
    message: str
    ai_response: str
    risk_tier: RiskTier = RiskTier.LOW
    created_at: Optional[datetime] = None


# ==========================================
# Read models
# ==========================================

class RealTimeStats(BaseModel):
    """Live counters shown next to today's report"""
    games_played: int = 0
    points_earned: int = 0
    total_activities: int = 0
    current_streak: int = 0
    total_play_time_minutes: int = 0
    mood_score: Optional[float] = None


class DailyReportView(BaseModel):
    """A report row together with the activity and insights of that day"""
    report: DailyReport
    activities: List[ActivityLogEntry] = Field(default_factory=list)
    insights: List[Insight] = Field(default_factory=list)
    real_time_stats: Optional[RealTimeStats] = None


class WeeklyTotals(BaseModel):
    """Rollup over a window of daily reports"""
    total_games: int = 0
    total_points: int = 0
    total_play_time: int = 0
    avg_focus_score: float = 0.0
    avg_mood_score: float = 0.0
    streak_days: int = 0


class WeeklySummary(BaseModel):
    """Weekly rollup plus the rows it was computed from (newest first)"""
    start_date: date
    end_date: date
    weekly_data: List[DailyReport] = Field(default_factory=list)
    weekly_totals: WeeklyTotals = Field(default_factory=WeeklyTotals)
    days_tracked: int = 0


class GameStatsView(BaseModel):
    """Overall progress, per-game statistics and the latest game_played activities"""
    user_progress: UserProgress
    game_stats: List[GameStat] = Field(default_factory=list)
    recent_sessions: List[ActivityLogEntry] = Field(default_factory=list)


class LeaderboardEntry(BaseModel):
    """One ranked user on the points leaderboard"""
    rank: int = Field(..., ge=1)
    user_id: str
    total_points: int = 0
    games_completed: int = 0
    current_streak: int = 0
