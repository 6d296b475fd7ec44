"""Unit tests for the insight generator (src/gamification/insights.py)"""
import pytest
from datetime import date
from unittest.mock import AsyncMock, patch

from src.exceptions import QueryError
from src.gamification.insights import (
    HIGH_SCORE_THRESHOLD,
    INSIGHT_RULES,
    InsightGenerator,
    InsightRule,
    evaluate_rules,
    insight_source_key,
)
from src.models.activity import ActivityType, parse_activity_data
from src.models.progress import ActivityLogEntry, InsightType


DAY = date(2024, 1, 15)


def make_entry(activity_type, data, entry_id=1, user_id="user_123"):
    return ActivityLogEntry(
        id=entry_id,
        user_id=user_id,
        activity_date=DAY,
        activity_type=activity_type,
        activity_data=parse_activity_data(activity_type, data),
    )


# ============================================================================
# Rule evaluation
# ============================================================================

class TestHighScoreRule:

    def test_score_above_threshold_fires(self):
        insights = evaluate_rules(make_entry(ActivityType.GAME_PLAYED, {"score": 81}))

        assert len(insights) == 1
        insight = insights[0]
        assert insight.insight_type == InsightType.ACHIEVEMENT
        assert insight.title == "Great Performance!"
        assert insight.description == "You scored 81 points! Keep up the excellent work!"
        assert insight.source_key == "1:high_score"
        assert insight.insight_date == DAY

    def test_threshold_itself_does_not_fire(self):
        assert HIGH_SCORE_THRESHOLD == 80
        assert evaluate_rules(make_entry(ActivityType.GAME_PLAYED, {"score": 80})) == []

    def test_fractional_score_above_threshold_fires(self):
        insights = evaluate_rules(make_entry(ActivityType.GAME_PLAYED, {"score": 80.5}))

        assert len(insights) == 1
        assert insights[0].description == "You scored 80.5 points! Keep up the excellent work!"


class TestLongStreakRule:

    def test_seven_day_streak_fires(self):
        insights = evaluate_rules(make_entry(ActivityType.STREAK_MILESTONE, {"streak": 7}))

        assert len(insights) == 1
        assert insights[0].insight_type == InsightType.CELEBRATION
        assert insights[0].title == "Amazing Streak!"
        assert "7-day streak" in insights[0].description

    def test_short_streak_does_not_fire(self):
        assert evaluate_rules(make_entry(ActivityType.STREAK_MILESTONE, {"streak": 6})) == []


def test_other_activity_types_emit_nothing():
    assert evaluate_rules(make_entry(ActivityType.MOOD_LOGGED, {"mood": "happy"})) == []
    assert evaluate_rules(make_entry(ActivityType.MEDITATION_COMPLETED, {"duration": 30})) == []


def test_failing_rule_is_skipped():
    def explode(data):
        raise RuntimeError("bad rule")

    rules = [
        InsightRule(
            name="broken",
            activity_type=ActivityType.GAME_PLAYED,
            insight_type=InsightType.MOTIVATIONAL,
            applies=explode,
            title="Never",
            describe=lambda data: "never",
        ),
        INSIGHT_RULES[0],
    ]

    insights = evaluate_rules(make_entry(ActivityType.GAME_PLAYED, {"score": 99}), rules)

    assert [i.source_key for i in insights] == ["1:high_score"]


def test_source_key_format():
    assert insight_source_key(42, "high_score") == "42:high_score"


# ============================================================================
# InsightGenerator
# ============================================================================

@pytest.mark.asyncio
async def test_generate_stores_insight(memory_repo):
    generator = InsightGenerator(memory_repo)

    created = await generator.generate(make_entry(ActivityType.GAME_PLAYED, {"score": 95}))

    assert len(created) == 1
    assert created[0].id is not None
    stored = await memory_repo.list_insights("user_123", DAY)
    assert len(stored) == 1
    assert stored[0].is_read is False


@pytest.mark.asyncio
async def test_generate_twice_does_not_duplicate(memory_repo):
    generator = InsightGenerator(memory_repo)
    entry = make_entry(ActivityType.GAME_PLAYED, {"score": 95})

    first = await generator.generate(entry)
    second = await generator.generate(entry)

    assert len(first) == 1
    assert second == []
    assert len(await memory_repo.list_insights("user_123", DAY)) == 1


@pytest.mark.asyncio
async def test_generate_distinct_activities(memory_repo):
    generator = InsightGenerator(memory_repo)

    await generator.generate(make_entry(ActivityType.GAME_PLAYED, {"score": 95}, entry_id=1))
    await generator.generate(make_entry(ActivityType.GAME_PLAYED, {"score": 90}, entry_id=2))

    assert len(await memory_repo.list_insights("user_123", DAY)) == 2


@pytest.mark.asyncio
async def test_generate_skips_failed_write(memory_repo):
    generator = InsightGenerator(memory_repo)

    with patch.object(
        memory_repo,
        "add_insight",
        AsyncMock(side_effect=QueryError("insert failed"))
    ):
        created = await generator.generate(make_entry(ActivityType.GAME_PLAYED, {"score": 95}))

    assert created == []
