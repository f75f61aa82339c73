"""Composite fatigue score from subjective feedback.

Higher is more fatigued. Only signals that are actually present count toward
the average; a missing signal is dropped, not replaced by a neutral value.
"""

import math

from coach_context.stores.types import Feedback, WeeklyCheckIn

DEFAULT_FATIGUE_SCORE = 5.0
MIN_FATIGUE_SCORE = 1.0
MAX_FATIGUE_SCORE = 10.0

# Ratings are 1-10, so 11 - rating flips "good sleep" into "low fatigue"
_INVERT_BASE = 11


def calculate_fatigue_score(
    feedback: list[Feedback] | None = None,
    check_in: WeeklyCheckIn | None = None,
) -> float:
    """Calculate composite fatigue score (1-10).

    Factors:
    - A: average effort level across feedback entries that carry one
    - B: 11 - sleep quality
    - C: stress level
    - D: 11 - overall feeling

    Args:
        feedback: Recent run feedback
        check_in: Latest weekly check-in

    Returns:
        Score clamped to [1, 10] and rounded to one decimal, 5.0 without signal
    """
    factors: list[float] = []

    efforts = [f.effort_level for f in feedback or [] if f.effort_level is not None]
    if efforts:
        factors.append(sum(efforts) / len(efforts))

    if check_in is not None:
        if check_in.sleep_quality is not None:
            factors.append(_INVERT_BASE - check_in.sleep_quality)
        if check_in.stress_level is not None:
            factors.append(check_in.stress_level)
        if check_in.overall_feeling is not None:
            factors.append(_INVERT_BASE - check_in.overall_feeling)

    if not factors:
        return DEFAULT_FATIGUE_SCORE

    average = sum(factors) / len(factors)
    rounded = math.floor(average * 10 + 0.5) / 10
    return max(MIN_FATIGUE_SCORE, min(MAX_FATIGUE_SCORE, rounded))


def fatigue_label(score: float) -> str:
    """Short descriptor used in the athlete status section, e.g. ``(Moderate)``."""
    if score <= 3:
        return "(Fresh)"
    if score <= 5:
        return "(Moderate)"
    if score <= 7:
        return "(Tired)"
    return "(Very Fatigued)"


def fatigue_guidance(score: float) -> str:
    """Longer descriptor appended after the athlete section of the combined prompt."""
    if score <= 3:
        return "Fresh - Ready for hard training"
    if score <= 5:
        return "Moderate - Normal training load"
    if score <= 7:
        return "Tired - Consider recovery"
    return "Very Fatigued - Prioritize rest"
