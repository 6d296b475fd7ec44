"""Unit tests for ProgressService (src/services/progress_service.py)"""
import pytest
from datetime import date, timedelta
from unittest.mock import AsyncMock, patch

from src.exceptions import ConcurrentUpdateError, QueryError, ValidationError
from src.models.activity import ActivityType
from src.models.progress import InsightType
from src.services.progress_service import ProgressService, streak_milestone_key


DAY = date(2024, 1, 15)


class Clock:
    """Mutable 'today' for streak tests"""

    def __init__(self, today):
        self.today = today

    def __call__(self):
        return self.today


@pytest.fixture
def clock():
    return Clock(DAY)


@pytest.fixture
def service(memory_repo, clock):
    return ProgressService(memory_repo, today_provider=clock)


# ============================================================================
# Game sessions
# ============================================================================

@pytest.mark.asyncio
async def test_record_game_session(service, memory_repo):
    result = await service.record_game_session("user_123", "memory_cards", score=85, points_earned=10)

    assert result.ok
    value = result.value
    assert value['points_earned'] == 10
    assert value['score'] == 85
    assert value['game_kind'] == "memory_cards"
    assert value['total_points'] == 10
    assert value['current_streak'] == 1
    assert value['longest_streak'] == 1
    assert value['activity_id'] is not None
    assert value['fold_applied'] is True

    report = await memory_repo.get_daily_report("user_123", DAY)
    assert report.games_played == 1
    assert report.total_points_earned == 10

    # 85 > 80 fires the high score insight
    insights = await memory_repo.list_insights("user_123", DAY)
    assert [i.insight_type for i in insights] == [InsightType.ACHIEVEMENT]


@pytest.mark.asyncio
async def test_record_game_session_invalid_points(service, memory_repo):
    result = await service.record_game_session("user_123", "memory_cards", score=10, points_earned=-5)

    assert not result.ok
    assert result.reason_code == "invalid_points"
    assert result.retryable is False
    assert await memory_repo.get_user_progress("user_123") is None
    assert await memory_repo.list_activities("user_123", DAY) == []


@pytest.mark.asyncio
async def test_record_game_session_activity_failure_keeps_ledger(service, memory_repo):
    with patch.object(
        memory_repo,
        "append_activity",
        AsyncMock(side_effect=QueryError("insert failed"))
    ):
        result = await service.record_game_session("user_123", "memory_cards", score=10, points_earned=10)

    assert result.ok
    assert result.value['activity_id'] is None
    assert (await memory_repo.get_user_progress("user_123")).total_points == 10


@pytest.mark.asyncio
async def test_record_game_session_fold_failure_is_reported_and_repaired(service, memory_repo):
    real_transaction = memory_repo.transaction
    calls = []

    def ledger_only(user_id):
        calls.append(user_id)
        if len(calls) == 1:
            return real_transaction(user_id)
        raise ConcurrentUpdateError("lock timeout")

    with patch.object(memory_repo, "transaction", side_effect=ledger_only):
        with patch("src.resilience.retry.asyncio.sleep", AsyncMock()):
            result = await service.record_game_session("user_123", "memory_cards", score=90, points_earned=10)

    assert result.ok
    assert result.value['fold_applied'] is False
    assert result.value['activity_id'] is not None
    assert (await memory_repo.get_daily_report("user_123", DAY)).games_played == 0

    view = await service.get_today_report("user_123")

    assert view.report.games_played == 1
    assert view.report.total_points_earned == 10
    assert view.real_time_stats.games_played == 1
    assert (await memory_repo.get_daily_report("user_123", DAY)).games_played == 1


@pytest.mark.asyncio
async def test_seven_day_streak_logs_milestone_and_insight(service, memory_repo, clock):
    start = DAY - timedelta(days=6)
    for offset in range(7):
        clock.today = start + timedelta(days=offset)
        result = await service.record_game_session("user_123", "memory_cards", score=10, points_earned=1)

    assert result.value['current_streak'] == 7

    activities = await memory_repo.list_activities("user_123", DAY)
    milestones = [a for a in activities if a.activity_type == ActivityType.STREAK_MILESTONE]
    assert len(milestones) == 1
    assert milestones[0].activity_data.streak == 7
    assert milestones[0].idempotency_key == streak_milestone_key("user_123", DAY, 7)

    report = await memory_repo.get_daily_report("user_123", DAY)
    assert report.streak_maintained is True

    insights = await memory_repo.list_insights("user_123", DAY)
    assert [i.title for i in insights] == ["Amazing Streak!"]

    # Playing again the same day emits no second milestone
    await service.record_game_session("user_123", "memory_cards", score=10, points_earned=1)
    activities = await memory_repo.list_activities("user_123", DAY)
    assert sum(1 for a in activities if a.activity_type == ActivityType.STREAK_MILESTONE) == 1


@pytest.mark.asyncio
async def test_mark_game_completed(service):
    await service.record_game_session("user_123", "memory_cards", score=10, points_earned=10)

    result = await service.mark_game_completed("user_123", "memory_cards")

    assert result.ok
    assert result.value == {'game_kind': "memory_cards", 'games_completed': 1}


@pytest.mark.asyncio
async def test_mark_unknown_game_completed(service):
    result = await service.mark_game_completed("user_123", "never_played")

    assert not result.ok
    assert result.reason_code == "not_found"


@pytest.mark.asyncio
async def test_get_game_stats_new_user(service):
    view = await service.get_game_stats("user_new")

    assert view.user_progress.total_points == 0
    assert view.user_progress.current_streak == 0
    assert view.game_stats == []
    assert view.recent_sessions == []


@pytest.mark.asyncio
async def test_get_game_stats_recent_sessions(service, memory_repo, clock):
    for offset in range(12):
        clock.today = DAY + timedelta(days=offset)
        await service.record_game_session("user_123", "memory_cards", score=offset, points_earned=1)
    await service.record_activity("user_123", "mood_logged", {"mood": "calm"})

    view = await service.get_game_stats("user_123")

    assert len(view.recent_sessions) == 10
    assert all(s.activity_type == ActivityType.GAME_PLAYED for s in view.recent_sessions)
    # Newest first, across days
    assert view.recent_sessions[0].activity_data.score == 11
    assert view.recent_sessions[-1].activity_data.score == 2

    view = await service.get_game_stats("user_123", recent_limit=3)
    assert [s.activity_data.score for s in view.recent_sessions] == [11, 10, 9]


@pytest.mark.asyncio
async def test_get_leaderboard(service):
    await service.record_game_session("user_a", "memory_cards", score=10, points_earned=30)
    await service.record_game_session("user_b", "memory_cards", score=10, points_earned=50)
    await service.record_game_session("user_c", "memory_cards", score=10, points_earned=30)
    await service.mark_game_completed("user_c", "memory_cards")
    # Only a logged activity, no points
    await service.record_activity("user_d", "mood_logged", {"mood": "calm"})

    entries = await service.get_leaderboard()

    assert [(e.rank, e.user_id, e.total_points) for e in entries] == [
        (1, "user_b", 50),
        (2, "user_a", 30),
        (3, "user_c", 30),
    ]
    assert entries[2].games_completed == 1
    assert entries[0].current_streak == 1

    top = await service.get_leaderboard(limit=1)
    assert [e.user_id for e in top] == ["user_b"]


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [0, -1, 101, "5", True])
async def test_get_leaderboard_invalid_limit(service, limit):
    with pytest.raises(ValidationError) as exc_info:
        await service.get_leaderboard(limit)

    assert exc_info.value.reason_code == "validation_error"
    assert exc_info.value.field == "limit"


# ============================================================================
# Activities
# ============================================================================

@pytest.mark.asyncio
async def test_record_activity(service):
    result = await service.record_activity("user_123", "meditation_completed", {"duration": 10})

    assert result.ok
    assert result.value['created'] is True
    assert result.value['fold_applied'] is True
    assert result.value['points_earned'] == 0


@pytest.mark.asyncio
async def test_record_activity_does_not_credit_ledger(service, memory_repo):
    await service.record_activity("user_123", "game_played", {"score": 10}, points_earned=25)

    assert await memory_repo.get_user_progress("user_123") is None
    report = await memory_repo.get_daily_report("user_123", DAY)
    assert report.total_points_earned == 25


@pytest.mark.asyncio
async def test_record_activity_replay(service):
    first = await service.record_activity("user_123", "mood_logged", {"mood": "calm"}, idempotency_key="mood-1")
    second = await service.record_activity("user_123", "mood_logged", {"mood": "calm"}, idempotency_key="mood-1")

    assert first.value['activity_id'] == second.value['activity_id']
    assert second.value['created'] is False


@pytest.mark.asyncio
async def test_record_activity_invalid_type(service):
    result = await service.record_activity("user_123", "sleep_logged", {})

    assert not result.ok
    assert result.reason_code == "invalid_activity"


# ============================================================================
# Reports
# ============================================================================

@pytest.mark.asyncio
async def test_today_report_for_new_user(service):
    view = await service.get_today_report("user_new")

    assert view.report.report_date == DAY
    assert view.report.games_played == 0
    assert view.activities == []
    assert view.real_time_stats.total_activities == 0
    assert view.real_time_stats.current_streak == 0
    assert view.real_time_stats.mood_score is None


@pytest.mark.asyncio
async def test_today_report_real_time_stats(service):
    await service.record_game_session("user_123", "memory_cards", score=90, points_earned=10)
    await service.record_activity("user_123", "meditation_completed", {"duration": 10})

    view = await service.get_today_report("user_123")

    stats = view.real_time_stats
    assert stats.games_played == 1
    assert stats.points_earned == 10
    assert stats.total_activities == 2
    assert stats.current_streak == 1
    assert view.report.total_play_time_minutes == 10
    assert stats.total_play_time_minutes == 10
    # Newest first
    assert view.activities[0].activity_type == ActivityType.MEDITATION_COMPLETED
    assert len(view.insights) == 1


@pytest.mark.asyncio
async def test_report_for_date(service):
    await service.record_activity("user_123", "mood_logged", {"mood": "ok"})

    view = await service.get_report_for_date("user_123", "2024-01-15")

    assert view is not None
    assert len(view.activities) == 1
    assert view.real_time_stats is None


@pytest.mark.asyncio
async def test_report_for_date_without_data(service):
    assert await service.get_report_for_date("user_123", "2024-01-10") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("value", ["2024-13-01", "2024-02-30", "15-01-2024", "yesterday"])
async def test_report_for_date_invalid(service, value):
    from src.exceptions import InvalidDateError

    with pytest.raises(InvalidDateError):
        await service.get_report_for_date("user_123", value)


@pytest.mark.asyncio
async def test_weekly_summary_window(service, clock):
    clock.today = DAY - timedelta(days=8)
    await service.record_game_session("user_123", "memory_cards", score=10, points_earned=100)
    clock.today = DAY - timedelta(days=6)
    await service.record_game_session("user_123", "memory_cards", score=10, points_earned=10)
    clock.today = DAY
    await service.record_game_session("user_123", "memory_cards", score=10, points_earned=15)

    summary = await service.get_weekly_summary("user_123")

    assert summary.start_date == DAY - timedelta(days=6)
    assert summary.end_date == DAY
    assert summary.days_tracked == 2
    assert summary.weekly_totals.total_points == 25
    assert summary.weekly_totals.total_games == 2


@pytest.mark.asyncio
async def test_mark_insight_read(service, memory_repo):
    await service.record_game_session("user_123", "memory_cards", score=95, points_earned=10)
    insight = (await memory_repo.list_insights("user_123", DAY))[0]

    result = await service.mark_insight_read("user_123", insight.id)

    assert result.ok
    assert result.value == {'insight_id': insight.id, 'is_read': True}
    assert (await memory_repo.list_insights("user_123", DAY))[0].is_read is True


@pytest.mark.asyncio
async def test_mark_foreign_insight_read(service, memory_repo):
    await service.record_game_session("user_123", "memory_cards", score=95, points_earned=10)
    insight = (await memory_repo.list_insights("user_123", DAY))[0]

    result = await service.mark_insight_read("user_456", insight.id)

    assert not result.ok
    assert result.reason_code == "not_found"
