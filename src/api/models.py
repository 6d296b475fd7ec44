"""Pydantic models for API request/response validation

Numeric fields are deliberately unconstrained here: the services validate
them and answer with stable reason codes (e.g. invalid_points) instead of
a generic 422.
"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field
from datetime import datetime

from src.models.progress import (
    ConversationEntry,
    DailyReportView,
    Insight,
    LeaderboardEntry,
    RiskTier,
)


class GameSessionRequest(BaseModel):
    """A finished game"""
    game_kind: str = Field(..., description="Game identifier, e.g. memory_cards")
    score: int = Field(..., description="Final score (>= 0)")
    points_earned: int = Field(default=0, description="Points awarded (>= 0)")


class GameSessionResponse(BaseModel):
    """Progress after a game was recorded"""
    points_earned: int
    score: int
    game_kind: str
    total_points: int
    current_streak: int
    longest_streak: int
    activity_id: Optional[int] = Field(
        default=None,
        description="Logged game_played activity (None if only the ledger was updated)"
    )
    fold_applied: bool = Field(
        default=True,
        description="Whether today's report reflects the game (repaired on the next fold when False)"
    )


class GameCompletedResponse(BaseModel):
    """Response after marking a game completed"""
    game_kind: str
    games_completed: int


class ActivityRequest(BaseModel):
    """Request to log a wellness activity"""
    activity_type: str = Field(..., description="game_played, meditation_completed, mood_logged, ...")
    activity_data: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Payload for the activity type (e.g. {'duration': 10})"
    )
    points_earned: int = Field(default=0, description="Points attached to the activity (>= 0)")
    idempotency_key: Optional[str] = Field(
        default=None,
        max_length=255,
        description="Client key; resending the same key does not log the activity twice"
    )


class ActivityResponse(BaseModel):
    """Response after logging an activity"""
    activity_id: int
    points_earned: int
    created: bool = Field(..., description="False when the idempotency key was seen before")
    fold_applied: bool = Field(..., description="Whether today's report reflects the activity")
    insights: List[Insight] = Field(default_factory=list)


class ReportForDateResponse(BaseModel):
    """A past day's report, or a no-data marker"""
    date: str
    data: Optional[DailyReportView] = None
    message: Optional[str] = None


class InsightReadResponse(BaseModel):
    insight_id: int
    is_read: bool


class LeaderboardResponse(BaseModel):
    """Top users by total points"""
    entries: List[LeaderboardEntry]
    limit: int


class ChatRequest(BaseModel):
    """Request model for chat endpoint"""
    message: str = Field(..., description="User message text")


class ChatResponse(BaseModel):
    """Response model for chat endpoint"""
    user_id: str = Field(..., description="User identifier")
    response: str = Field(..., description="Companion's reply")
    risk_tier: RiskTier = Field(..., description="Classified risk of the user's message")
    degraded: bool = Field(default=False, description="True when the fallback reply was used")
    timestamp: datetime = Field(..., description="Response timestamp")


class ChatHistoryResponse(BaseModel):
    """Paginated chat history, newest first"""
    user_id: str
    messages: List[ConversationEntry]
    limit: int
    offset: int


class HealthCheckResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Service status")
    storage: str = Field(..., description="Storage backend status")
    timestamp: datetime = Field(..., description="Check timestamp")


class ErrorResponse(BaseModel):
    """Error response model (CompanionError.to_dict)"""
    error: str = Field(..., description="Error class")
    reason_code: str = Field(..., description="Stable machine-readable reason")
    retryable: bool = Field(..., description="Whether the caller should try again")
    message: str
    user_message: str
    request_id: str
    timestamp: str
    detail: Optional[Any] = None
