"""API routes for the progress engine

Thin glue over ProgressService and ConversationService. Routes do not
catch CompanionError: failures propagate (directly, or via
OperationResult.unwrap()) to the handler in server.py, which maps the
reason code to an HTTP status.
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from src.api.models import (
    ActivityRequest, ActivityResponse,
    ChatHistoryResponse, ChatRequest, ChatResponse,
    GameCompletedResponse, GameSessionRequest, GameSessionResponse,
    HealthCheckResponse, InsightReadResponse, LeaderboardResponse, ReportForDateResponse,
)
from src.api.auth import verify_api_key
from src.api.middleware import limiter
from src.models.progress import DailyReportView, GameStatsView, WeeklySummary
from src.services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter()


def get_container(request: Request) -> ServiceContainer:
    """Service container created by the application lifespan"""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized"
        )
    return container


# ==========================================
# Games
# ==========================================

@router.post("/api/v1/users/{user_id}/games/sessions", response_model=GameSessionResponse)
@limiter.limit("60/minute")
async def record_game_session(
    request: Request,
    user_id: str,
    body: GameSessionRequest,
    container: ServiceContainer = Depends(get_container),
    api_key: str = Depends(verify_api_key)
):
    """Record a finished game: points, game stats, streak and the game_played activity"""
    result = await container.progress_service.record_game_session(
        user_id=user_id,
        game_kind=body.game_kind,
        score=body.score,
        points_earned=body.points_earned
    )
    return GameSessionResponse(**result.unwrap())


@router.post("/api/v1/users/{user_id}/games/{game_kind}/complete", response_model=GameCompletedResponse)
@limiter.limit("30/minute")
async def complete_game(
    request: Request,
    user_id: str,
    game_kind: str,
    container: ServiceContainer = Depends(get_container),
    api_key: str = Depends(verify_api_key)
):
    """Mark a game as completed"""
    result = await container.progress_service.mark_game_completed(user_id, game_kind)
    return GameCompletedResponse(**result.unwrap())


@router.get("/api/v1/users/{user_id}/games/stats", response_model=GameStatsView)
@limiter.limit("30/minute")
async def get_game_stats(
    request: Request,
    user_id: str,
    container: ServiceContainer = Depends(get_container),
    api_key: str = Depends(verify_api_key)
):
    """Overall progress, per-game statistics and the latest game sessions"""
    return await container.progress_service.get_game_stats(user_id)


@router.get("/api/v1/leaderboard", response_model=LeaderboardResponse)
@limiter.limit("30/minute")
async def get_leaderboard(
    request: Request,
    limit: int = Query(default=10),
    container: ServiceContainer = Depends(get_container),
    api_key: str = Depends(verify_api_key)
):
    """Users ranked by total points"""
    entries = await container.progress_service.get_leaderboard(limit)
    return LeaderboardResponse(entries=entries, limit=limit)


# ==========================================
# Activities and reports
# ==========================================

@router.post(
    "/api/v1/users/{user_id}/activities",
    response_model=ActivityResponse,
    status_code=status.HTTP_201_CREATED
)
@limiter.limit("60/minute")
async def record_activity(
    request: Request,
    user_id: str,
    body: ActivityRequest,
    container: ServiceContainer = Depends(get_container),
    api_key: str = Depends(verify_api_key)
):
    """Log a wellness activity on today's report"""
    result = await container.progress_service.record_activity(
        user_id=user_id,
        activity_type=body.activity_type,
        activity_data=body.activity_data,
        points_earned=body.points_earned,
        idempotency_key=body.idempotency_key
    )
    return ActivityResponse(**result.unwrap())


@router.get("/api/v1/users/{user_id}/reports/today", response_model=DailyReportView)
@limiter.limit("60/minute")
async def get_today_report(
    request: Request,
    user_id: str,
    container: ServiceContainer = Depends(get_container),
    api_key: str = Depends(verify_api_key)
):
    """Today's report with activities, insights and real-time stats"""
    return await container.progress_service.get_today_report(user_id)


@router.get("/api/v1/users/{user_id}/reports/weekly", response_model=WeeklySummary)
@limiter.limit("30/minute")
async def get_weekly_summary(
    request: Request,
    user_id: str,
    container: ServiceContainer = Depends(get_container),
    api_key: str = Depends(verify_api_key)
):
    """Summary of the last seven days"""
    return await container.progress_service.get_weekly_summary(user_id)


# Registered after /today and /weekly so those paths are not read as dates
@router.get("/api/v1/users/{user_id}/reports/{report_date}", response_model=ReportForDateResponse)
@limiter.limit("30/minute")
async def get_report_for_date(
    request: Request,
    user_id: str,
    report_date: str,
    container: ServiceContainer = Depends(get_container),
    api_key: str = Depends(verify_api_key)
):
    """Report for a specific day (YYYY-MM-DD)"""
    view = await container.progress_service.get_report_for_date(user_id, report_date)
    if view is None:
        return ReportForDateResponse(date=report_date, data=None, message="No data found for this date")
    return ReportForDateResponse(date=report_date, data=view)


@router.put("/api/v1/users/{user_id}/insights/{insight_id}/read", response_model=InsightReadResponse)
@limiter.limit("60/minute")
async def mark_insight_read(
    request: Request,
    user_id: str,
    insight_id: int,
    container: ServiceContainer = Depends(get_container),
    api_key: str = Depends(verify_api_key)
):
    """Mark an insight as read"""
    result = await container.progress_service.mark_insight_read(user_id, insight_id)
    return InsightReadResponse(**result.unwrap())


# ==========================================
# Chat
# ==========================================

@router.post("/api/v1/users/{user_id}/chat", response_model=ChatResponse)
@limiter.limit("20/minute")
async def chat(
    request: Request,
    user_id: str,
    body: ChatRequest,
    container: ServiceContainer = Depends(get_container),
    api_key: str = Depends(verify_api_key)
):
    """
    Send a message to the companion

    Rate limit: 20 requests per minute (provider calls are expensive).
    The turn is logged even when the provider fails (fallback reply).
    """
    result = await container.conversation_service.log_conversation_turn(user_id, body.message)
    turn = result.unwrap()
    return ChatResponse(
        user_id=user_id,
        response=turn['ai_response_text'],
        risk_tier=turn['risk_tier'],
        degraded=turn['degraded'],
        timestamp=datetime.now(timezone.utc)
    )


@router.get("/api/v1/users/{user_id}/chat/history", response_model=ChatHistoryResponse)
@limiter.limit("30/minute")
async def chat_history(
    request: Request,
    user_id: str,
    limit: int = Query(default=50),
    offset: int = Query(default=0),
    container: ServiceContainer = Depends(get_container),
    api_key: str = Depends(verify_api_key)
):
    """Chat history, newest first"""
    messages = await container.conversation_service.get_conversation_history(
        user_id, limit=limit, offset=offset
    )
    return ChatHistoryResponse(user_id=user_id, messages=messages, limit=limit, offset=offset)


# ==========================================
# Operations
# ==========================================

@router.get("/api/health", response_model=HealthCheckResponse)
@limiter.limit("60/minute")
async def health_check(request: Request, container: ServiceContainer = Depends(get_container)):
    """Health check endpoint"""
    if container.database is None:
        storage_status = "memory"
    else:
        try:
            async with container.database.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("SELECT 1")
                    await cur.fetchone()
            storage_status = "connected"
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            storage_status = "disconnected"

    return HealthCheckResponse(
        status="degraded" if storage_status == "disconnected" else "healthy",
        storage=storage_status,
        timestamp=datetime.now(timezone.utc)
    )


@router.get("/metrics")
async def metrics():
    """Prometheus metrics in text exposition format"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
