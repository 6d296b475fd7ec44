"""Unit tests for the points ledger (src/gamification/points_ledger.py)"""
import asyncio
import pytest
from contextlib import asynccontextmanager
from datetime import date, timedelta
from unittest.mock import patch, AsyncMock

from src.exceptions import (
    ConcurrentUpdateError,
    InvalidPointsError,
    MissingFieldError,
    RecordNotFoundError,
    ValidationError,
)
from src.gamification.points_ledger import PointsLedger, validate_game_input


DAY = date(2024, 1, 15)


# ============================================================================
# Input validation
# ============================================================================

class TestValidateGameInput:

    def test_valid_input(self):
        validate_game_input("user_123", "memory_cards", 10, 85)

    def test_missing_user(self):
        with pytest.raises(MissingFieldError) as exc_info:
            validate_game_input("", "memory_cards", 10, 85)
        assert exc_info.value.field == "user_id"

    @pytest.mark.parametrize("game_kind", ["", "   ", None, 5])
    def test_missing_game_kind(self, game_kind):
        with pytest.raises(MissingFieldError):
            validate_game_input("user_123", game_kind, 10, 85)

    @pytest.mark.parametrize("points", [-1, 1.5, "10", True, None])
    def test_invalid_points(self, points):
        with pytest.raises(InvalidPointsError) as exc_info:
            validate_game_input("user_123", "memory_cards", points, 85)
        assert exc_info.value.reason_code == "invalid_points"

    @pytest.mark.parametrize("score", [-5, 2.5, False])
    def test_invalid_score(self, score):
        with pytest.raises(ValidationError) as exc_info:
            validate_game_input("user_123", "memory_cards", 10, score)
        assert exc_info.value.field == "score"


# ============================================================================
# apply_points
# ============================================================================

@pytest.mark.asyncio
async def test_first_game_creates_rows(memory_repo):
    ledger = PointsLedger(memory_repo)

    update = await ledger.apply_points("user_123", "memory_cards", 10, 85, DAY)

    assert update.progress.total_points == 10
    assert update.progress.current_streak == 1
    assert update.game_stat.total_plays == 1
    assert update.game_stat.total_points == 10
    assert update.game_stat.best_score == 85
    assert update.game_stat.last_played_at is not None

    stored = await memory_repo.get_user_progress("user_123")
    assert stored.total_points == 10


@pytest.mark.asyncio
async def test_same_day_games_accumulate_without_double_counting_streak(memory_repo):
    ledger = PointsLedger(memory_repo)

    await ledger.apply_points("user_123", "memory_cards", 10, 50, DAY)
    update = await ledger.apply_points("user_123", "memory_cards", 5, 40, DAY)

    assert update.progress.total_points == 15
    assert update.progress.current_streak == 1
    assert update.streak.changed is False
    assert update.game_stat.total_plays == 2
    assert update.game_stat.best_score == 50  # never decreases


@pytest.mark.asyncio
async def test_streak_continues_on_next_day(memory_repo):
    ledger = PointsLedger(memory_repo)

    await ledger.apply_points("user_123", "memory_cards", 10, 50, DAY)
    update = await ledger.apply_points("user_123", "memory_cards", 10, 50, DAY + timedelta(days=1))

    assert update.progress.current_streak == 2
    assert update.progress.longest_streak == 2


@pytest.mark.asyncio
async def test_streak_resets_after_gap(memory_repo):
    ledger = PointsLedger(memory_repo)

    await ledger.apply_points("user_123", "memory_cards", 10, 50, DAY)
    await ledger.apply_points("user_123", "memory_cards", 10, 50, DAY + timedelta(days=1))
    update = await ledger.apply_points("user_123", "memory_cards", 10, 50, DAY + timedelta(days=4))

    assert update.progress.current_streak == 1
    assert update.progress.longest_streak == 2


@pytest.mark.asyncio
async def test_game_kinds_tracked_separately(memory_repo):
    ledger = PointsLedger(memory_repo)

    await ledger.apply_points("user_123", "memory_cards", 10, 50, DAY)
    await ledger.apply_points("user_123", "breathing", 20, 90, DAY)

    stats = {s.game_kind: s for s in await memory_repo.get_game_stats("user_123")}
    assert stats["memory_cards"].total_points == 10
    assert stats["breathing"].total_points == 20
    assert stats["breathing"].best_score == 90

    progress = await memory_repo.get_user_progress("user_123")
    assert progress.total_points == 30


@pytest.mark.asyncio
async def test_zero_points_still_counts_a_play(memory_repo):
    ledger = PointsLedger(memory_repo)

    update = await ledger.apply_points("user_123", "memory_cards", 0, 0, DAY)

    assert update.game_stat.total_plays == 1
    assert update.progress.total_points == 0
    assert update.progress.current_streak == 1


@pytest.mark.asyncio
async def test_invalid_points_writes_nothing(memory_repo):
    ledger = PointsLedger(memory_repo)

    with pytest.raises(InvalidPointsError):
        await ledger.apply_points("user_123", "memory_cards", -10, 50, DAY)

    assert await memory_repo.get_user_progress("user_123") is None
    assert await memory_repo.get_game_stats("user_123") == []


@pytest.mark.asyncio
async def test_concurrent_games_lose_no_increments(memory_repo):
    """Twenty concurrent games of one user all land"""
    ledger = PointsLedger(memory_repo)

    await asyncio.gather(*[
        ledger.apply_points("user_123", "memory_cards", 5, i, DAY)
        for i in range(20)
    ])

    progress = await memory_repo.get_user_progress("user_123")
    stats = await memory_repo.get_game_stats("user_123")
    assert progress.total_points == 100
    assert progress.current_streak == 1
    assert stats[0].total_plays == 20
    assert stats[0].best_score == 19


@pytest.mark.asyncio
async def test_conflict_is_retried(memory_repo):
    """A conflict on the first attempt is retried and the update lands once"""
    ledger = PointsLedger(memory_repo, max_retries=3, retry_base_delay=0)
    original = memory_repo.transaction
    attempts = 0

    @asynccontextmanager
    async def flaky_transaction(user_id):
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise ConcurrentUpdateError("lock timeout", user_id=user_id)
        async with original(user_id) as uow:
            yield uow

    with patch.object(memory_repo, "transaction", flaky_transaction):
        update = await ledger.apply_points("user_123", "memory_cards", 10, 50, DAY)

    assert attempts == 2
    assert update.progress.total_points == 10
    assert (await memory_repo.get_user_progress("user_123")).total_points == 10


@pytest.mark.asyncio
async def test_conflict_exhausts_retries(memory_repo):
    ledger = PointsLedger(memory_repo, max_retries=2, retry_base_delay=0)

    @asynccontextmanager
    async def always_conflicts(user_id):
        raise ConcurrentUpdateError("lock timeout", user_id=user_id)
        yield

    with patch.object(memory_repo, "transaction", always_conflicts):
        with patch("src.resilience.retry.asyncio.sleep", AsyncMock()) as mock_sleep:
            with pytest.raises(ConcurrentUpdateError) as exc_info:
                await ledger.apply_points("user_123", "memory_cards", 10, 50, DAY)

    assert exc_info.value.retryable is True
    assert mock_sleep.await_count == 2
    assert await memory_repo.get_user_progress("user_123") is None


@pytest.mark.asyncio
async def test_failure_inside_transaction_leaves_no_partial_write(memory_repo):
    ledger = PointsLedger(memory_repo, max_retries=0)

    with patch(
        "src.gamification.points_ledger.apply_streak",
        side_effect=RuntimeError("boom")
    ):
        with pytest.raises(RuntimeError):
            await ledger.apply_points("user_123", "memory_cards", 10, 50, DAY)

    assert await memory_repo.get_user_progress("user_123") is None
    assert await memory_repo.get_game_stats("user_123") == []


# ============================================================================
# mark_game_completed
# ============================================================================

@pytest.mark.asyncio
async def test_mark_game_completed_counts_completed_games(memory_repo):
    ledger = PointsLedger(memory_repo)
    await ledger.apply_points("user_123", "memory_cards", 10, 50, DAY)
    await ledger.apply_points("user_123", "breathing", 10, 50, DAY)

    progress = await ledger.mark_game_completed("user_123", "memory_cards")
    assert progress.games_completed == 1

    # Completing again does not double count
    progress = await ledger.mark_game_completed("user_123", "memory_cards")
    assert progress.games_completed == 1

    progress = await ledger.mark_game_completed("user_123", "breathing")
    assert progress.games_completed == 2


@pytest.mark.asyncio
async def test_mark_unknown_game_completed(memory_repo):
    ledger = PointsLedger(memory_repo)

    with pytest.raises(RecordNotFoundError) as exc_info:
        await ledger.mark_game_completed("user_123", "never_played")

    assert exc_info.value.reason_code == "not_found"
