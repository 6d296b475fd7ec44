"""
Engagement and progress engine

Turns user actions into durable progress state:
- Risk classification of chat messages
- Daily play streaks
- Points ledger (points, per-game stats, streak in one unit of work)
- Daily report rows and the activity log
- Rule-based insights
- Weekly summaries
- Conversation log and context window
"""

from src.gamification.risk_classifier import classify_risk
from src.gamification.streak_system import apply_streak, calculate_streak, streak_milestone_reached
from src.gamification.points_ledger import PointsLedger
from src.gamification.daily_reports import DailyReportAggregator
from src.gamification.insights import InsightGenerator, evaluate_rules
from src.gamification.weekly_summary import WeeklySummaryBuilder, summarize
from src.gamification.conversation_logger import ConversationLogger

__all__ = [
    "classify_risk",
    "apply_streak",
    "calculate_streak",
    "streak_milestone_reached",
    "PointsLedger",
    "DailyReportAggregator",
    "InsightGenerator",
    "evaluate_rules",
    "WeeklySummaryBuilder",
    "summarize",
    "ConversationLogger",
]
