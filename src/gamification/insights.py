"""
Insight Generator

Rule table evaluated against a single logged activity. A rule looks only
at the activity itself (type and payload), never at other state, so the
same activity always yields the same insights.

Each insight is keyed by "<activity id>:<rule name>". The repository
ignores a key it has already stored, so replaying an activity, or
running the generator twice for it, never duplicates an insight.

Generation is best-effort: a rule that raises, or an insight that fails
to save, is logged and skipped. It never undoes the activity write.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional
import logging

from src.db.repository import ProgressRepository
from src.exceptions import CompanionError, InsightGenerationError
from src.models.activity import ActivityType, GamePlayedData, StreakMilestoneData
from src.models.progress import ActivityLogEntry, Insight, InsightType

logger = logging.getLogger(__name__)

HIGH_SCORE_THRESHOLD = 80
LONG_STREAK_THRESHOLD = 7


def format_score(score: float) -> str:
    """Whole scores without the trailing .0 (80.0 -> 80, 80.5 -> 80.5)"""
    return str(int(score)) if float(score).is_integer() else str(score)


@dataclass(frozen=True)
class InsightRule:
    """
    One insight rule

    Attributes:
        name: Stable rule name (part of the insight source key)
        activity_type: Activity type the rule listens to
        insight_type: Type of the emitted insight
        applies: Predicate over the typed payload
        title: Insight title
        describe: Builds the description from the payload
    """
    name: str
    activity_type: ActivityType
    insight_type: InsightType
    applies: Callable[..., bool]
    title: str
    describe: Callable[..., str]


INSIGHT_RULES: List[InsightRule] = [
    InsightRule(
        name="high_score",
        activity_type=ActivityType.GAME_PLAYED,
        insight_type=InsightType.ACHIEVEMENT,
        applies=lambda data: isinstance(data, GamePlayedData) and data.score > HIGH_SCORE_THRESHOLD,
        title="Great Performance!",
        describe=lambda data: f"You scored {format_score(data.score)} points! Keep up the excellent work!",
    ),
    InsightRule(
        name="long_streak",
        activity_type=ActivityType.STREAK_MILESTONE,
        insight_type=InsightType.CELEBRATION,
        applies=lambda data: isinstance(data, StreakMilestoneData) and data.streak >= LONG_STREAK_THRESHOLD,
        title="Amazing Streak!",
        describe=lambda data: (
            f"You've maintained a {data.streak}-day streak! Your consistency is inspiring!"
        ),
    ),
]


def insight_source_key(activity_id: int, rule_name: str) -> str:
    return f"{activity_id}:{rule_name}"


def _apply_rule(rule: InsightRule, entry: ActivityLogEntry) -> Optional[Insight]:
    try:
        if not rule.applies(entry.activity_data):
            return None
        description = rule.describe(entry.activity_data)
    except Exception as e:
        raise InsightGenerationError(
            f"Insight rule '{rule.name}' failed: {e}",
            rule=rule.name,
            user_id=entry.user_id,
            operation="evaluate_rules",
            cause=e
        )

    return Insight(
        user_id=entry.user_id,
        insight_date=entry.activity_date,
        insight_type=rule.insight_type,
        title=rule.title,
        description=description,
        source_key=insight_source_key(entry.id, rule.name),
    )


def evaluate_rules(
    entry: ActivityLogEntry,
    rules: Optional[List[InsightRule]] = None
) -> List[Insight]:
    """
    Insights the rules emit for one activity (nothing is stored)

    A rule that raises is logged (InsightGenerationError logs itself) and
    skipped; the remaining rules still run.
    """
    insights = []
    for rule in INSIGHT_RULES if rules is None else rules:
        if rule.activity_type != entry.activity_type:
            continue
        try:
            insight = _apply_rule(rule, entry)
        except InsightGenerationError:
            _record_failure()
            continue
        if insight is not None:
            insights.append(insight)
    return insights


def _record_failure() -> None:
    try:
        from src.resilience.metrics import record_derived_failure
        record_derived_failure("insight")
    except Exception as e:
        logger.debug(f"Failed to record insight failure metric: {e}")


class InsightGenerator:
    """Evaluates the rule table and stores the resulting insights"""

    def __init__(self, repository: ProgressRepository, rules: Optional[List[InsightRule]] = None):
        self.repository = repository
        self.rules = INSIGHT_RULES if rules is None else rules

    async def generate(self, entry: ActivityLogEntry) -> List[Insight]:
        """
        Evaluate and store insights for a logged activity

        Args:
            entry: Stored activity log entry (must carry its id)

        Returns:
            Insights newly stored by this call (already-stored keys are skipped)
        """
        created = []
        for insight in evaluate_rules(entry, self.rules):
            try:
                stored = await self.repository.add_insight(insight)
            except CompanionError as e:
                # Already logged by the error itself; the activity stays recorded
                logger.warning(f"Skipping insight {insight.source_key}: {e.reason_code}")
                _record_failure()
                continue

            if stored is None:
                logger.info(f"Insight {insight.source_key} already exists for {entry.user_id}")
                continue

            logger.info(f"Created {stored.insight_type.value} insight for {entry.user_id}: {stored.title}")
            created.append(stored)
        return created
