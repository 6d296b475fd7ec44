"""
Activity payload models

Each activity type carries its own payload model. The payloads form a
tagged union keyed by ``activity_type`` so the daily report fold and the
insight rules can dispatch on the variant instead of probing optional keys.
Unknown extra keys are kept (clients attach free-form context).
"""
import logging
from enum import Enum
from typing import Annotated, Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from src.exceptions import InvalidActivityError

logger = logging.getLogger(__name__)


class ActivityType(str, Enum):
    """Kinds of user action the engine records"""
    GAME_PLAYED = "game_played"
    MEDITATION_COMPLETED = "meditation_completed"
    MOOD_LOGGED = "mood_logged"
    STREAK_MILESTONE = "streak_milestone"
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"


class _ActivityPayload(BaseModel):
    model_config = ConfigDict(extra="allow")


class GamePlayedData(_ActivityPayload):
    """A finished game"""
    activity_type: Literal["game_played"] = "game_played"
    score: float = Field(..., ge=0)
    game_kind: Optional[str] = None


class MeditationCompletedData(_ActivityPayload):
    """A finished meditation; duration in minutes"""
    activity_type: Literal["meditation_completed"] = "meditation_completed"
    duration: Optional[int] = Field(default=None, ge=0)


class MoodLoggedData(_ActivityPayload):
    """A self-reported mood check-in"""
    activity_type: Literal["mood_logged"] = "mood_logged"
    mood: Optional[str] = None
    mood_score: Optional[float] = Field(default=None, ge=0)
    note: Optional[str] = None


class StreakMilestoneData(_ActivityPayload):
    """A streak length worth celebrating"""
    activity_type: Literal["streak_milestone"] = "streak_milestone"
    streak: int = Field(..., ge=1)


class AchievementUnlockedData(_ActivityPayload):
    """An unlocked achievement badge"""
    activity_type: Literal["achievement_unlocked"] = "achievement_unlocked"
    achievement: Optional[str] = None
    title: Optional[str] = None


ActivityData = Annotated[
    Union[
        GamePlayedData,
        MeditationCompletedData,
        MoodLoggedData,
        StreakMilestoneData,
        AchievementUnlockedData,
    ],
    Field(discriminator="activity_type"),
]

_activity_adapter: TypeAdapter = TypeAdapter(ActivityData)


def parse_activity_type(value: Any) -> ActivityType:
    """
    Coerce a raw activity type into the enum

    Raises:
        InvalidActivityError: Unknown or missing activity type
    """
    if isinstance(value, ActivityType):
        return value
    try:
        return ActivityType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in ActivityType)
        raise InvalidActivityError(
            f"Unknown activity type {value!r}. Expected one of: {allowed}",
            activity_type=str(value)
        )


def parse_activity_data(activity_type: Any, raw: Optional[Mapping[str, Any]]) -> ActivityData:
    """
    Validate a raw payload against the variant for *activity_type*

    Args:
        activity_type: ActivityType or its string value
        raw: Client payload (None is treated as an empty payload)

    Returns:
        The typed payload variant

    Raises:
        InvalidActivityError: Unknown type, or payload missing required fields
    """
    kind = parse_activity_type(activity_type)
    if raw is not None and not isinstance(raw, Mapping):
        raise InvalidActivityError(
            f"activity_data must be an object, got {type(raw).__name__}",
            activity_type=kind.value
        )

    payload = dict(raw or {})
    payload["activity_type"] = kind.value

    try:
        return _activity_adapter.validate_python(payload)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:]) or 'activity_data'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidActivityError(
            f"Invalid payload for {kind.value}: {problems}",
            activity_type=kind.value,
            cause=e
        )


def dump_activity_data(data: ActivityData) -> dict:
    """JSON-ready payload without the discriminator (the row stores the type)"""
    return data.model_dump(mode="json", exclude={"activity_type"}, exclude_none=True)
