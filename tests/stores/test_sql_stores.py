"""Tests for the SQLAlchemy-backed stores and ingestion writes."""

from datetime import date, timedelta

import pytest

from coach_context.db.models import (
    Athlete,
    BookInstructionChunk,
    BookSchedule,
    CoachingBook,
    CoachTrainingPhase,
    CoachWorkout,
    Plan,
    Run,
    RunFeedback,
    WeeklySummary,
)
from coach_context.db.session import get_session
from coach_context.rag.retrieve.coach_retriever import CoachPatternRetriever
from coach_context.rag.types import CoachFilters
from coach_context.stores.sql import (
    SqlAthleteDataStore,
    SqlBookLibraryStore,
    SqlCoachLibraryStore,
    get_instructions_missing_embeddings,
    load_book_instructions,
    record_workout_performed,
    upsert_coach_workout,
)
from coach_context.stores.types import CoachWorkoutTemplate

TODAY = date(2026, 10, 19)


@pytest.fixture
def athlete_store(session_factory):
    return SqlAthleteDataStore(session_factory, clock=lambda: TODAY)


@pytest.fixture
def coach_library(session_factory):
    return SqlCoachLibraryStore(session_factory)


@pytest.fixture
def seeded(session_factory):
    with get_session(session_factory) as session:
        session.add(Athlete(id="a1", name="Sam", max_hr=188, hr_zones={"z2": "120-140"}))
        session.add_all(
            [
                Run(user_id="a1", run_date=TODAY - timedelta(days=1), distance_km=5.0, run_type="Easy"),
                Run(user_id="a1", run_date=TODAY - timedelta(days=6), distance_km=10.0, run_type="Tempo"),
                Run(user_id="a1", run_date=TODAY - timedelta(days=30), distance_km=21.1, run_type="Race"),
                Run(user_id="other", run_date=TODAY, distance_km=3.0),
            ]
        )
        session.add_all(
            [
                RunFeedback(user_id="a1", run_date=TODAY - timedelta(days=1), effort_level=4),
                RunFeedback(user_id="a1", run_date=TODAY - timedelta(days=40), effort_level=9),
            ]
        )
        session.add_all(
            [
                WeeklySummary(user_id="a1", week_start=TODAY - timedelta(days=3), sleep_quality=7),
                WeeklySummary(user_id="a1", week_start=TODAY - timedelta(days=10), sleep_quality=2),
            ]
        )
        session.add_all(
            [
                Plan(
                    user_id="a1",
                    plan_type="Marathon",
                    duration_weeks=12,
                    current_week=2,
                    status="active",
                    plan={
                        "methodology": "Daniels",
                        "weeks": [
                            {"week_number": 1, "phase": "Base", "focus": "Volume"},
                            {"week_number": 2, "phase": "Build", "target_volume_km": 55},
                        ],
                    },
                ),
                Plan(user_id="a1", plan_type="10K", duration_weeks=8, status="completed"),
            ]
        )
        session.add_all(
            [
                CoachWorkout(user_id="a1", workout_name="Easy Recovery Run", category="Easy", training_phase="Base", times_performed=15),
                CoachWorkout(user_id="a1", workout_name="Tempo 3x2km", category="Tempo", training_phase="Build", times_performed=4),
                CoachWorkout(user_id="a1", workout_name="Long Tempo", category="Tempo", training_phase="Build", times_performed=0),
                CoachWorkout(user_id="other", workout_name="Tempo Secret", category="Tempo", times_performed=99),
            ]
        )
        session.add_all(
            [
                CoachTrainingPhase(user_id="a1", phase_name="Build", phase_order=2, focus_areas=["Threshold"]),
                CoachTrainingPhase(user_id="a1", phase_name="Base", phase_order=1),
            ]
        )
    return session_factory


class TestSqlAthleteDataStore:
    """Tests for athlete reads."""

    @pytest.mark.asyncio
    async def test_profile(self, seeded, athlete_store):
        """Test that the profile row is converted."""
        profile = await athlete_store.get_profile("a1")
        assert profile.name == "Sam"
        assert profile.hr_zones == {"z2": "120-140"}
        assert await athlete_store.get_profile("missing") is None

    @pytest.mark.asyncio
    async def test_recent_activities_window_and_order(self, seeded, athlete_store):
        """Test that only this athlete's runs within the window come back, newest first."""
        runs = await athlete_store.get_recent_activities("a1", 14)
        assert [r.distance_km for r in runs] == [5.0, 10.0]

    @pytest.mark.asyncio
    async def test_recent_feedback(self, seeded, athlete_store):
        """Test that old feedback is excluded."""
        feedback = await athlete_store.get_recent_feedback("a1", 14)
        assert [f.effort_level for f in feedback] == [4]

    @pytest.mark.asyncio
    async def test_active_plan(self, seeded, athlete_store):
        """Test that the active plan and its JSON structure are read."""
        plan = await athlete_store.get_active_plan("a1")

        assert plan.plan_type == "Marathon"
        assert plan.methodology == "Daniels"
        assert plan.current_phase == "Build"
        assert plan.current_plan_week.target_volume_km == 55.0

    @pytest.mark.asyncio
    async def test_no_active_plan(self, seeded, athlete_store):
        """Test that an athlete without an active plan gets None."""
        assert await athlete_store.get_active_plan("other") is None

    @pytest.mark.asyncio
    async def test_latest_check_in(self, seeded, athlete_store):
        """Test that only check-ins on or after ``since`` qualify."""
        check_in = await athlete_store.get_latest_check_in("a1", TODAY - timedelta(days=7))
        assert check_in.sleep_quality == 7
        assert await athlete_store.get_latest_check_in("a1", TODAY) is None

    @pytest.mark.asyncio
    async def test_workout_history_named_runs_oldest_first(self, session_factory, athlete_store):
        """Test that only this athlete's runs with a workout name come back, oldest first."""
        with get_session(session_factory) as session:
            session.add_all(
                [
                    Run(user_id="a1", run_date=TODAY - timedelta(days=2), workout_name="Tempo 3x2km"),
                    Run(user_id="a1", run_date=TODAY - timedelta(days=9), workout_name="Easy Recovery Run"),
                    Run(user_id="a1", run_date=TODAY - timedelta(days=5)),
                    Run(user_id="other", run_date=TODAY, workout_name="Tempo 3x2km"),
                ]
            )

        runs = await athlete_store.get_workout_history("a1")

        assert [r.workout_name for r in runs] == ["Easy Recovery Run", "Tempo 3x2km"]

    @pytest.mark.asyncio
    async def test_feedback_for_dates(self, seeded, athlete_store):
        """Test that feedback is matched on run date and scoped to the athlete."""
        feedback = await athlete_store.get_feedback_for_dates("a1", [TODAY - timedelta(days=1), TODAY])

        assert [f.effort_level for f in feedback] == [4]
        assert await athlete_store.get_feedback_for_dates("a1", []) == []


class TestSqlCoachLibraryStore:
    """Tests for coach library reads."""

    @pytest.mark.asyncio
    async def test_by_phase_ordered_by_usage(self, seeded, coach_library):
        """Test phase lookups, most performed first."""
        workouts = await coach_library.get_workouts_by_phase("a1", "Build")
        assert [w.workout_name for w in workouts] == ["Tempo 3x2km", "Long Tempo"]

    @pytest.mark.asyncio
    async def test_by_category(self, seeded, coach_library):
        """Test that category lookups are scoped to the athlete."""
        workouts = await coach_library.get_workouts_by_category("a1", "Tempo")
        assert "Tempo Secret" not in [w.workout_name for w in workouts]

    @pytest.mark.asyncio
    async def test_search_is_case_insensitive(self, seeded, coach_library):
        """Test fuzzy name search."""
        workouts = await coach_library.search_workouts("a1", "TEMPO")
        assert [w.workout_name for w in workouts] == ["Tempo 3x2km", "Long Tempo"]

    @pytest.mark.asyncio
    async def test_search_limit(self, seeded, coach_library):
        """Test that search honours the limit."""
        assert len(await coach_library.search_workouts("a1", "tempo", limit=1)) == 1

    @pytest.mark.asyncio
    async def test_most_performed_includes_unused(self, seeded, coach_library):
        """Test that never-performed workouts are listed last rather than dropped."""
        workouts = await coach_library.get_most_performed_workouts("a1")
        assert [w.workout_name for w in workouts] == ["Easy Recovery Run", "Tempo 3x2km", "Long Tempo"]

    @pytest.mark.asyncio
    async def test_phases_ordered(self, seeded, coach_library):
        """Test that phases come back in phase order."""
        phases = await coach_library.get_phases("a1")
        assert [p.phase_name for p in phases] == ["Base", "Build"]
        assert phases[1].focus_areas == ("Threshold",)

    @pytest.mark.asyncio
    async def test_unused_library_still_reaches_coach_layer(self, session_factory):
        """Test that a library where nothing has been performed yet still fills the coach layer."""
        with get_session(session_factory) as session:
            session.add_all(
                [
                    CoachWorkout(user_id="a1", workout_name="Hill Sprints", category="Intervals", times_performed=0),
                    CoachWorkout(user_id="a1", workout_name="Progression Run", category="Tempo", times_performed=0),
                ]
            )
        retriever = CoachPatternRetriever(SqlCoachLibraryStore(session_factory))

        context = await retriever.retrieve("a1", "zzz qqq", CoachFilters(), 800)

        assert sorted(context.workouts_included) == ["Hill Sprints", "Progression Run"]


class TestIngestionWrites:
    """Tests for upsert_coach_workout and record_workout_performed."""

    def test_upsert_inserts_then_updates(self, session_factory):
        """Test that a second upsert updates the same row."""
        template = CoachWorkoutTemplate(id="", workout_name="Fartlek 10x1", category="Intervals")
        with get_session(session_factory) as session:
            upsert_coach_workout(session, "a1", template)
        with get_session(session_factory) as session:
            upsert_coach_workout(
                session,
                "a1",
                CoachWorkoutTemplate(id="", workout_name="Fartlek 10x1", category="Speed", coach_notes="Keep it playful"),
            )

        with get_session(session_factory) as session:
            rows = session.query(CoachWorkout).filter_by(user_id="a1").all()
            assert len(rows) == 1
            assert rows[0].category == "Speed"
            assert rows[0].coach_notes == "Keep it playful"

    def test_record_workout_performed_running_average(self, seeded):
        """Test that usage count and running average feeling are updated."""
        with get_session(seeded) as session:
            row = record_workout_performed(session, "a1", "Tempo 3x2km", feeling=8, performed_on=TODAY)
            assert row.times_performed == 5
            assert row.avg_feeling == 8.0
            assert row.last_performed == TODAY

        with get_session(seeded) as session:
            row = record_workout_performed(session, "a1", "Tempo 3x2km", feeling=6, performed_on=TODAY)
            # (8 * 5 + 6) / 6
            assert row.avg_feeling == pytest.approx(46 / 6)
            assert row.times_performed == 6

    def test_record_unknown_workout(self, session_factory):
        """Test that an unknown workout is not created."""
        with get_session(session_factory) as session:
            assert record_workout_performed(session, "a1", "Nope", feeling=5) is None


class TestBookInstructions:
    """Tests for loading the methodology corpus."""

    def test_load_and_missing_embeddings(self, session_factory):
        """Test that chunks join their book and unembedded chunks are listed."""
        with get_session(session_factory) as session:
            book = CoachingBook(id="b1", title="Advanced Marathoning", methodology="Pfitzinger")
            session.add(book)
            session.flush()
            session.add_all(
                [
                    BookInstructionChunk(id="c1", book_id="b1", content="Threshold work.", embedding=[0.1, 0.2], key_rules=["Rule"]),
                    BookInstructionChunk(id="c2", book_id="b1", content="Recovery matters."),
                ]
            )

        with get_session(session_factory) as session:
            instructions = {i.id: i for i in load_book_instructions(session)}
            missing = [chunk.id for chunk in get_instructions_missing_embeddings(session)]

        assert instructions["c1"].book_title == "Advanced Marathoning"
        assert instructions["c1"].embedding == (0.1, 0.2)
        assert instructions["c1"].key_rules == ("Rule",)
        assert instructions["c2"].embedding is None
        assert missing == ["c2"]


@pytest.fixture
def book_library(session_factory):
    with get_session(session_factory) as session:
        session.add_all(
            [
                CoachingBook(id="b1", title="Advanced Marathoning", methodology="Pfitzinger"),
                CoachingBook(id="b2", title="Daniels' Running Formula", methodology="Daniels"),
                CoachingBook(id="b3", title="Daniels' Running Formula, 4th ed.", methodology="Daniels"),
            ]
        )
        session.flush()
        session.add_all(
            [
                BookSchedule(id="s1", book_id="b1", plan_name="18/55", target_race="Marathon", level="intermediate", duration_weeks=18),
                BookSchedule(id="s2", book_id="b1", plan_name="12/55", target_race="Marathon", level="intermediate", duration_weeks=12),
                BookSchedule(id="s3", book_id="b1", plan_name="18/70", target_race="Marathon", level="advanced", duration_weeks=18),
                BookSchedule(
                    id="s4",
                    book_id="b2",
                    plan_name="Half Marathon Q",
                    target_race="Half Marathon",
                    level="intermediate",
                    duration_weeks=16,
                    weekly_structure={"quality_days": 2},
                ),
                BookSchedule(id="s5", book_id="b2", plan_name="5K Red", target_race="5K", level="beginner", duration_weeks=6),
            ]
        )
        session.add_all(
            [
                BookInstructionChunk(book_id="b1", content="Lactate threshold runs."),
                BookInstructionChunk(book_id="b2", content="E pace."),
            ]
        )
    return SqlBookLibraryStore(session_factory)


class TestSqlBookLibraryStore:
    """Tests for book schedules and corpus summaries."""

    @pytest.mark.asyncio
    async def test_schedules_by_race_substring(self, book_library):
        """Test that the race filter is a case-insensitive substring, shortest plans first."""
        schedules = await book_library.get_matching_schedules(target_race="marathon")

        assert [s.plan_name for s in schedules] == ["12/55", "Half Marathon Q", "18/55"]
        assert schedules[0].book_title == "Advanced Marathoning"
        assert schedules[0].methodology == "Pfitzinger"

    @pytest.mark.asyncio
    async def test_schedules_level_and_duration_tolerance(self, book_library):
        """Test exact level matching and the two-week tolerance on duration."""
        schedules = await book_library.get_matching_schedules(level="intermediate", duration_weeks=17, limit=10)

        assert [s.plan_name for s in schedules] == ["Half Marathon Q", "18/55"]
        assert schedules[0].weekly_structure == {"quality_days": 2}

    @pytest.mark.asyncio
    async def test_schedules_limit(self, book_library):
        """Test that the limit applies when no filter is given."""
        assert len(await book_library.get_matching_schedules(limit=2)) == 2
        assert await book_library.get_matching_schedules(target_race="ultra") == []

    @pytest.mark.asyncio
    async def test_methodologies_distinct(self, book_library):
        """Test that each methodology is listed once, alphabetically."""
        assert await book_library.get_available_methodologies() == ["Daniels", "Pfitzinger"]

    @pytest.mark.asyncio
    async def test_counts(self, book_library):
        """Test the book and instruction counts."""
        assert await book_library.get_books_count() == 3
        assert await book_library.get_instructions_count() == 2

    @pytest.mark.asyncio
    async def test_empty_corpus(self, session_factory):
        """Test an empty library."""
        store = SqlBookLibraryStore(session_factory)

        assert await store.get_books_count() == 0
        assert await store.get_available_methodologies() == []
