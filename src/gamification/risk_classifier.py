"""
Risk Classifier

Tiered keyword scan over a chat message. Tiers are checked from most to
least severe and the first tier with a matching phrase wins. Matching is a
case-insensitive substring test, so the result depends on the text alone.

The tier is a coarse distress signal used to open a supportive UI path,
not a clinical assessment.
"""

from typing import Any, Tuple

from src.models.progress import RiskTier

# Ordered: the first tier with a hit wins
RISK_KEYWORDS: Tuple[Tuple[RiskTier, Tuple[str, ...]], ...] = (
    (RiskTier.CRITICAL, (
        "kill myself", "suicide", "end my life", "not worth living",
        "hurt myself", "self harm", "cut myself", "overdose",
    )),
    (RiskTier.HIGH, (
        "depressed", "hopeless", "worthless", "empty", "numb",
        "can't go on", "giving up", "no point", "hate myself",
        "anxiety", "panic", "scared", "overwhelmed",
    )),
    (RiskTier.MEDIUM, (
        "sad", "lonely", "stressed", "worried", "tired",
        "frustrated", "angry", "confused", "lost",
    )),
)


def classify_risk(text: Any) -> RiskTier:
    """
    Classify a message into a risk tier

    Never raises: non-string or empty input is LOW.

    Args:
        text: Raw message text

    Returns:
        RiskTier of the first matching tier, LOW when nothing matches
    """
    if not isinstance(text, str) or not text:
        return RiskTier.LOW

    lowered = text.lower()
    for tier, phrases in RISK_KEYWORDS:
        if any(phrase in lowered for phrase in phrases):
            return tier

    return RiskTier.LOW
