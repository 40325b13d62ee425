"""
Confidence scoring utilities.
Match confidence is expressed in points on a 0-100 scale.
"""

from typing import Tuple


MIN_CONFIDENCE = 0
MAX_CONFIDENCE = 100


def clamp_confidence(score: float) -> int:
    """
    Round and clamp a raw additive score into the reported confidence range.

    Args:
        score: Raw cumulative score (may exceed 100 when channels stack)

    Returns:
        Integer confidence in [0, 100]
    """
    return int(max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, round(score))))


def confidence_level_name(confidence: float) -> str:
    """Convert confidence points to readable level name."""
    if confidence >= 90:
        return "VERY_HIGH"
    elif confidence >= 70:
        return "HIGH"
    elif confidence >= 50:
        return "ACCEPTABLE"
    elif confidence >= 25:
        return "LOW"
    else:
        return "VERY_LOW"


def interpret_confidence(confidence: float) -> Tuple[str, str]:
    """
    Get human-readable interpretation of a match confidence.

    Returns:
        (level_name, description)
    """
    levels = {
        "VERY_HIGH": "Identifier match, safe to approve",
        "HIGH": "Strong match, quick review recommended",
        "ACCEPTABLE": "Plausible match, review recommended",
        "LOW": "Weak match, review required",
        "VERY_LOW": "No usable match",
    }

    level = confidence_level_name(confidence)
    return level, levels.get(level, "Unknown confidence level")
