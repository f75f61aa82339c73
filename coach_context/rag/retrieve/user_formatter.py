"""User data layer: profile, training status, recent runs, plan and check-in.

Sections are emitted in a fixed order. Recent runs are packed most recent
first until the remaining character budget runs out; the plan and check-in
sections are only added while a small reserve of budget is left.
"""

import asyncio
from datetime import UTC, date, datetime, timedelta

from loguru import logger

from coach_context.config.settings import settings
from coach_context.rag.budget import accumulate_within, estimate_token_count
from coach_context.rag.fatigue import calculate_fatigue_score, fatigue_label
from coach_context.rag.types import FormattedUserContext, UserContextMetadata
from coach_context.stores.base import AthleteDataStore
from coach_context.stores.types import ActivityRecord, AthleteProfile, TrainingPlan, WeeklyCheckIn

# Characters held back from the run list for the plan section
RUNS_RESERVE_CHARS = 500
PLAN_RESERVE_CHARS = 200
CHECK_IN_RESERVE_CHARS = 100

RECENT_TYPES_WINDOW = 5
HARD_EFFORT_THRESHOLD_PCT = 10

USER_HEADER = "## Athlete Data"
USER_PLACEHOLDER_TEXT = f"{USER_HEADER}\nNo athlete data available."


def user_placeholder(reason: str | None = None) -> FormattedUserContext:
    """Layer returned when athlete data could not be read."""
    text = USER_PLACEHOLDER_TEXT if reason is None else f"{USER_HEADER}\nNo athlete data available ({reason})."
    return FormattedUserContext(
        text=text,
        token_count=0,
        metadata=UserContextMetadata(
            runs_included=0,
            fatigue_score=calculate_fatigue_score(),
            current_phase=None,
            has_active_plan=False,
        ),
    )


def format_profile(profile: AthleteProfile) -> str:
    lines = ["## Athlete Profile"]

    if profile.name:
        lines.append(f"Name: {profile.name}")
    if profile.age:
        lines.append(f"Age: {profile.age}")
    if profile.weight_kg:
        lines.append(f"Weight: {profile.weight_kg} kg")
    if profile.current_goal:
        lines.append(f"Goal: {profile.current_goal}")
    if profile.resting_hr:
        lines.append(f"Resting HR: {profile.resting_hr} bpm")
    if profile.max_hr:
        lines.append(f"Max HR: {profile.max_hr} bpm")
        if profile.lactate_threshold_hr:
            lines.append(f"Lactate Threshold HR: {profile.lactate_threshold_hr} bpm")
    if profile.hr_zones:
        zones = ", ".join(f"{name.upper()} {bounds}" for name, bounds in sorted(profile.hr_zones.items()))
        lines.append(f"HR Zones: {zones}")
    if profile.injury_history:
        lines.append(f"Injury History: {profile.injury_history}")
    if profile.training_days:
        lines.append(f"Available Training Days: {profile.training_days}")

    return "\n".join(lines)


def format_training_status(
    activities: list[ActivityRecord],
    fatigue_score: float,
    current_phase: str | None,
    today: date,
) -> str:
    lines = ["## Current Training Status"]

    week_ago = today - timedelta(days=7)
    this_week = [a for a in activities if a.date >= week_ago]
    weekly_km = sum(a.distance_km or 0.0 for a in this_week)

    lines.append(f"This Week: {len(this_week)} runs, {weekly_km:.1f} km")
    lines.append(f"Fatigue Score: {fatigue_score:.1f}/10 {fatigue_label(fatigue_score)}")

    if current_phase:
        lines.append(f"Current Phase: {current_phase}")

    recent_types = list(dict.fromkeys(a.label for a in activities[:RECENT_TYPES_WINDOW] if a.label))
    if recent_types:
        lines.append(f"Recent Workout Types: {', '.join(recent_types)}")

    return "\n".join(lines)


def format_activity_line(activity: ActivityRecord) -> str:
    """One line per run, e.g. ``- Mon, Oct 19: Tempo 8.0 km 40 min @ 5:00/km HR: 160``."""
    day = activity.date
    parts = [
        f"- {day:%a}, {day:%b} {day.day}:",
        activity.label or "Run",
        f"{activity.distance_km:.1f} km" if activity.distance_km is not None else "? km",
    ]

    if activity.duration_min:
        parts.append(f"{activity.duration_min:.0f} min")
    if activity.avg_pace_str:
        parts.append(f"@ {activity.avg_pace_str}/km")
    if activity.avg_hr:
        parts.append(f"HR: {activity.avg_hr}")

    hard_pct = activity.hard_effort_pct
    if hard_pct is not None and hard_pct > HARD_EFFORT_THRESHOLD_PCT:
        parts.append(f"({hard_pct:.0f}% Z4+)")

    return " ".join(parts)


def format_recent_activities(activities: list[ActivityRecord], max_chars: int, window_days: int) -> tuple[str, int]:
    """Pack run lines until ``max_chars`` would be exceeded.

    At least one line is kept whenever runs exist.

    Returns:
        Tuple of (section text, number of runs included)
    """
    if not activities:
        return "## Recent Runs\nNo recent runs recorded.", 0

    header = f"## Recent Runs (Last {window_days} Days)"
    kept = accumulate_within((format_activity_line(activity) for activity in activities), max_chars, initial_size=len(header))

    lines = [header, *kept]
    included = len(kept)
    if included < len(activities):
        lines.append(f"... and {len(activities) - included} more runs")

    return "\n".join(lines), included


def format_active_plan(plan: TrainingPlan) -> str:
    lines = [
        "## Active Training Plan",
        f"Plan: {plan.plan_type}",
        f"Duration: {plan.duration_weeks} weeks",
        f"Current Week: {plan.current_week}",
    ]

    if plan.methodology:
        lines.append(f"Methodology: {plan.methodology}")

    week = plan.current_plan_week
    if week is not None:
        lines.append(f"Phase: {week.phase}")
        if week.focus:
            lines.append(f"Focus: {week.focus}")
        if week.target_volume_km is not None:
            lines.append(f"Target Volume: {week.target_volume_km:g} km")

    return "\n".join(lines)


def format_check_in(check_in: WeeklyCheckIn) -> str:
    lines = ["## This Week Summary"]

    if check_in.overall_feeling:
        lines.append(f"Overall Feeling: {check_in.overall_feeling}/10")
    if check_in.sleep_quality:
        lines.append(f"Sleep Quality: {check_in.sleep_quality}/10")
    if check_in.stress_level:
        lines.append(f"Stress Level: {check_in.stress_level}/10")
    if check_in.injury_notes:
        lines.append(f"Injuries/Issues: {check_in.injury_notes}")
    if check_in.achievements:
        lines.append(f"Achievements: {check_in.achievements}")

    return "\n".join(lines)


class UserContextFormatter:
    """Formats the athlete's own data into the highest-priority context layer."""

    def __init__(self, store: AthleteDataStore, window_days: int | None = None) -> None:
        self.store = store
        self.window_days = window_days or settings.activity_window_days

    async def format(self, athlete_id: str, max_chars: int, *, today: date | None = None) -> FormattedUserContext:
        """Build the user layer within ``max_chars``.

        Args:
            athlete_id: Athlete identifier
            max_chars: Character budget for the layer
            today: Reference date for the weekly totals, defaults to today (UTC)

        Returns:
            FormattedUserContext with text, token estimate and metadata
        """
        today = today or datetime.now(UTC).date()

        activities, feedback, profile, plan, check_in = await asyncio.gather(
            self.store.get_recent_activities(athlete_id, self.window_days),
            self.store.get_recent_feedback(athlete_id, self.window_days),
            self.store.get_profile(athlete_id),
            self.store.get_active_plan(athlete_id),
            self.store.get_latest_check_in(athlete_id, today - timedelta(days=7)),
        )

        fatigue_score = calculate_fatigue_score(feedback, check_in)
        current_phase = plan.current_phase if plan is not None else None

        sections: list[str] = []
        total_chars = 0

        if profile is not None:
            profile_text = format_profile(profile)
            sections.append(profile_text)
            total_chars += len(profile_text)

        status_text = format_training_status(activities, fatigue_score, current_phase, today)
        sections.append(status_text)
        total_chars += len(status_text)

        runs_text, runs_included = format_recent_activities(
            activities,
            max_chars - total_chars - RUNS_RESERVE_CHARS,
            self.window_days,
        )
        sections.append(runs_text)
        total_chars += len(runs_text)

        if plan is not None and total_chars < max_chars - PLAN_RESERVE_CHARS:
            plan_text = format_active_plan(plan)
            sections.append(plan_text)
            total_chars += len(plan_text)

        if check_in is not None and total_chars < max_chars - CHECK_IN_RESERVE_CHARS:
            sections.append(format_check_in(check_in))

        text = "\n\n".join(sections)

        logger.debug(
            "rag_user_context",
            athlete_id=athlete_id,
            runs_available=len(activities),
            runs_included=runs_included,
            fatigue_score=fatigue_score,
            chars=len(text),
            max_chars=max_chars,
        )

        return FormattedUserContext(
            text=text,
            token_count=estimate_token_count(text),
            metadata=UserContextMetadata(
                runs_included=runs_included,
                fatigue_score=fatigue_score,
                current_phase=current_phase,
                has_active_plan=plan is not None,
            ),
        )
