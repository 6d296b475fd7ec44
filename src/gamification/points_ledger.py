"""
Points Ledger

Applies a finished game to a user's progress. One call makes four
sub-updates in a single unit of work:

1. GameStat: +1 play, +points, best_score = max(best_score, score),
   last_played_at = now
2. UserProgress.total_points += points
3. Streak recomputed for today
4. Both rows persisted

Rows are locked for the whole unit of work (user progress first, then the
game stat), so concurrent games of one user serialize instead of losing
increments. A lock conflict rolls everything back and the whole unit of
work is retried a bounded number of times; once retries run out the
caller gets the retryable ConcurrentUpdateError.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Optional
import logging

from src.config import MAX_UPDATE_RETRIES
from src.db.repository import ProgressRepository
from src.exceptions import (
    InvalidPointsError,
    MissingFieldError,
    RecordNotFoundError,
    ValidationError,
)
from src.gamification.streak_system import StreakUpdate, apply_streak
from src.models.progress import GameStat, UserProgress
from src.resilience.retry import retry_with_backoff
from src.utils.datetime_helpers import now_utc

logger = logging.getLogger(__name__)

# Lock conflicts clear quickly; retry fast
CONFLICT_RETRY_BASE_DELAY = 0.05


@dataclass
class LedgerUpdate:
    """State after a game was applied"""
    progress: UserProgress
    game_stat: GameStat
    streak: StreakUpdate
    points_earned: int
    score: int


def _is_non_negative_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def validate_game_input(user_id: Any, game_kind: Any, points: Any, score: Any) -> None:
    """
    Reject bad input before anything is written

    Raises:
        MissingFieldError: Empty user_id or game_kind
        InvalidPointsError: points is negative or not an integer
        ValidationError: score is negative or not an integer
    """
    if not user_id:
        raise MissingFieldError("user_id")
    if not isinstance(game_kind, str) or not game_kind.strip():
        raise MissingFieldError("game_kind", user_id=user_id)
    if not _is_non_negative_int(points):
        raise InvalidPointsError(points, user_id=user_id)
    if not _is_non_negative_int(score):
        raise ValidationError(
            "score must be a non-negative integer",
            field="score",
            value=score,
            user_id=user_id
        )


class PointsLedger:
    """Atomic points, game stat and streak updates for one repository"""

    def __init__(
        self,
        repository: ProgressRepository,
        max_retries: int = MAX_UPDATE_RETRIES,
        retry_base_delay: float = CONFLICT_RETRY_BASE_DELAY
    ):
        self.repository = repository
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay

    async def apply_points(
        self,
        user_id: str,
        game_kind: str,
        points: int,
        score: int,
        today: date
    ) -> LedgerUpdate:
        """
        Apply a finished game

        Args:
            user_id: Owner of the progress rows
            game_kind: Game identifier (e.g. "memory_cards")
            points: Points awarded, >= 0
            score: Game score, >= 0
            today: Current UTC day for the streak

        Returns:
            LedgerUpdate with the committed rows

        Raises:
            ValidationError: Invalid input (nothing written)
            ConcurrentUpdateError: Conflicts persisted after all retries
        """
        validate_game_input(user_id, game_kind, points, score)

        update = await retry_with_backoff(
            self._apply_once,
            user_id, game_kind.strip(), points, score, today,
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay
        )

        logger.info(
            f"Applied {points} points to {user_id} for {update.game_stat.game_kind} "
            f"(total={update.progress.total_points}, streak={update.streak.current})"
        )
        return update

    async def _apply_once(
        self,
        user_id: str,
        game_kind: str,
        points: int,
        score: int,
        today: date
    ) -> LedgerUpdate:
        async with self.repository.transaction(user_id) as uow:
            progress = await uow.lock_user_progress()
            stat = await uow.lock_game_stat(game_kind)

            stat.total_plays += 1
            stat.total_points += points
            stat.best_score = max(stat.best_score, score)
            stat.last_played_at = now_utc()

            progress.total_points += points
            streak = apply_streak(progress, today)

            await uow.save_game_stat(stat)
            await uow.save_user_progress(progress)

        return LedgerUpdate(
            progress=progress,
            game_stat=stat,
            streak=streak,
            points_earned=points,
            score=score,
        )

    async def mark_game_completed(self, user_id: str, game_kind: str) -> UserProgress:
        """
        Flag a game as completed and recount completed games

        Raises:
            MissingFieldError: Empty game_kind
            RecordNotFoundError: The user never played this game
        """
        if not user_id:
            raise MissingFieldError("user_id")
        if not isinstance(game_kind, str) or not game_kind.strip():
            raise MissingFieldError("game_kind", user_id=user_id)

        return await retry_with_backoff(
            self._complete_once,
            user_id, game_kind.strip(),
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay
        )

    async def _complete_once(self, user_id: str, game_kind: str) -> UserProgress:
        async with self.repository.transaction(user_id) as uow:
            progress = await uow.lock_user_progress()
            stat: Optional[GameStat] = await uow.get_game_stat_for_update(game_kind)
            if stat is None:
                raise RecordNotFoundError(
                    f"No stats for game '{game_kind}'",
                    record_type="Game",
                    record_id=game_kind,
                    user_id=user_id
                )

            if not stat.is_completed:
                stat.is_completed = True
                await uow.save_game_stat(stat)

            progress.games_completed = await uow.count_completed_games()
            await uow.save_user_progress(progress)

        logger.info(f"{user_id} completed {game_kind} ({progress.games_completed} games completed)")
        return progress
