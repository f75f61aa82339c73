"""Tests for the athlete data layer."""

from datetime import date, timedelta

import pytest

from coach_context.rag.retrieve.user_formatter import (
    UserContextFormatter,
    format_activity_line,
    format_recent_activities,
    user_placeholder,
)
from coach_context.stores.types import (
    ActivityRecord,
    AthleteProfile,
    Feedback,
    PlanWeek,
    TrainingPlan,
    WeeklyCheckIn,
)

TODAY = date(2026, 10, 19)


def _run(days_ago, distance, **kwargs):
    return ActivityRecord(id=f"run-{days_ago}", date=TODAY - timedelta(days=days_ago), distance_km=distance, **kwargs)


class TestActivityFormatting:
    """Tests for recent run lines."""

    def test_activity_line(self):
        """Test the compact one-line run format."""
        run = ActivityRecord(
            id="r1",
            date=TODAY,
            distance_km=8.0,
            duration_min=40,
            avg_hr=160,
            avg_pace_str="5:00",
            run_type="Tempo",
            pct_z4=15.0,
            pct_z5=5.0,
        )
        assert format_activity_line(run) == "- Mon, Oct 19: Tempo 8.0 km 40 min @ 5:00/km HR: 160 (20% Z4+)"

    def test_hard_effort_hidden_below_threshold(self):
        """Test that zone 4+ share is only shown above 10%."""
        run = _run(0, 5.0, run_type="Easy", pct_z4=6.0, pct_z5=4.0)
        assert "Z4+" not in format_activity_line(run)

    def test_workout_name_preferred_over_type(self):
        """Test that a named workout labels the line."""
        run = _run(0, 5.0, run_type="Intervals", workout_name="6x800m")
        assert "6x800m" in format_activity_line(run)

    def test_no_runs(self):
        """Test the empty recent runs section."""
        text, included = format_recent_activities([], 1000, 14)
        assert text == "## Recent Runs\nNo recent runs recorded."
        assert included == 0

    def test_truncation_adds_trailer(self):
        """Test that dropped runs are summarised in a trailer line."""
        runs = [_run(i, 5.0, run_type="Easy") for i in range(10)]
        text, included = format_recent_activities(runs, 150, 14)

        assert 1 <= included < 10
        assert text.endswith(f"... and {10 - included} more runs")

    def test_first_run_kept_even_if_oversize(self):
        """Test that a tiny budget still keeps the most recent run."""
        runs = [_run(0, 5.0, run_type="Easy"), _run(1, 6.0, run_type="Easy")]
        text, included = format_recent_activities(runs, 1, 14)

        assert included == 1
        assert "5.0 km" in text


class TestUserContextFormatter:
    """Tests for the assembled user layer."""

    @pytest.mark.asyncio
    async def test_full_layer(self, athlete_store):
        """Test that all sections appear in order when data and budget allow."""
        athlete_store.profile = AthleteProfile(athlete_id="a1", name="Sam", age=34, max_hr=190, current_goal="Sub-3 marathon")
        athlete_store.activities = [_run(1, 12.0, run_type="Long"), _run(3, 8.0, run_type="Tempo"), _run(5, 5.0, run_type="Easy")]
        athlete_store.feedback = [Feedback(run_date=TODAY - timedelta(days=1), effort_level=5)]
        athlete_store.plan = TrainingPlan(
            id="p1",
            plan_type="Marathon",
            duration_weeks=16,
            current_week=2,
            methodology="Pfitzinger",
            weeks=(PlanWeek(1, "Base"), PlanWeek(2, "Base", focus="Aerobic volume", target_volume_km=60)),
        )
        athlete_store.check_in = WeeklyCheckIn(week_start=TODAY - timedelta(days=2), sleep_quality=6)

        layer = await UserContextFormatter(athlete_store, window_days=14).format("a1", 10_000, today=TODAY)

        text = layer.text
        headers = [
            "## Athlete Profile",
            "## Current Training Status",
            "## Recent Runs (Last 14 Days)",
            "## Active Training Plan",
            "## This Week Summary",
        ]
        positions = [text.index(header) for header in headers]
        assert positions == sorted(positions)
        assert "This Week: 3 runs, 25.0 km" in text
        assert "Fatigue Score: 5.0/10 (Moderate)" in text
        assert "Current Phase: Base" in text
        assert "Focus: Aerobic volume" in text

        assert layer.metadata.runs_included == 3
        assert layer.metadata.fatigue_score == 5.0
        assert layer.metadata.current_phase == "Base"
        assert layer.metadata.has_active_plan is True
        assert layer.token_count > 0

    @pytest.mark.asyncio
    async def test_no_data(self, athlete_store):
        """Test the layer for an athlete with nothing recorded."""
        layer = await UserContextFormatter(athlete_store, window_days=14).format("a1", 10_000, today=TODAY)

        assert "## Athlete Profile" not in layer.text
        assert "No recent runs recorded." in layer.text
        assert layer.metadata.runs_included == 0
        assert layer.metadata.fatigue_score == 5.0
        assert layer.metadata.has_active_plan is False

    @pytest.mark.asyncio
    async def test_stale_check_in_ignored(self, athlete_store):
        """Test that a check-in older than a week is not used."""
        athlete_store.check_in = WeeklyCheckIn(week_start=TODAY - timedelta(days=20), stress_level=10)
        layer = await UserContextFormatter(athlete_store, window_days=14).format("a1", 10_000, today=TODAY)

        assert "## This Week Summary" not in layer.text
        assert layer.metadata.fatigue_score == 5.0

    @pytest.mark.asyncio
    async def test_tight_budget_drops_optional_sections(self, athlete_store):
        """Test that the plan and check-in sections give way under a small budget."""
        athlete_store.activities = [_run(i, 5.0, run_type="Easy") for i in range(14)]
        athlete_store.plan = TrainingPlan(id="p1", plan_type="10K", duration_weeks=8, weeks=(PlanWeek(1, "Build"),))
        athlete_store.check_in = WeeklyCheckIn(week_start=TODAY, overall_feeling=7)

        layer = await UserContextFormatter(athlete_store, window_days=14).format("a1", 250, today=TODAY)

        assert "## Active Training Plan" not in layer.text
        assert "## This Week Summary" not in layer.text
        assert layer.metadata.runs_included >= 1
        assert layer.metadata.has_active_plan is True

    def test_placeholder(self):
        """Test the placeholder layer."""
        layer = user_placeholder("timed out")
        assert layer.text.startswith("## Athlete Data")
        assert "timed out" in layer.text
        assert layer.token_count == 0
        assert layer.metadata.fatigue_score == 5.0
