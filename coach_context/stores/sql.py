"""SQLAlchemy-backed stores.

Queries are synchronous and run through ``asyncio.to_thread``. Each read
opens its own session, so the reads the user formatter fans out never share
a session across threads.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

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
from coach_context.stores.types import (
    ActivityRecord,
    AthleteProfile,
    BookInstruction,
    CoachPhase,
    CoachWorkoutTemplate,
    Feedback,
    PlanWeek,
    TrainingPlan,
    TrainingSchedule,
    WeeklyCheckIn,
)

SessionFactory = Callable[[], Session]

ACTIVE_PLAN_STATUS = "active"
WORKOUT_SEARCH_LIMIT = 10
SCHEDULE_LIMIT = 3
# Schedules within this many weeks of the requested duration still match
SCHEDULE_DURATION_TOLERANCE_WEEKS = 2


def _today() -> date:
    return datetime.now(UTC).date()


def _to_profile(row: Athlete) -> AthleteProfile:
    return AthleteProfile(
        athlete_id=row.id,
        name=row.name,
        age=row.age,
        weight_kg=row.weight_kg,
        resting_hr=row.resting_hr,
        max_hr=row.max_hr,
        lactate_threshold_hr=row.lactate_threshold_hr,
        hr_zones={str(k): str(v) for k, v in (row.hr_zones or {}).items()},
        current_goal=row.current_goal,
        training_days=row.training_days,
        injury_history=row.injury_history,
    )


def _to_activity(row: Run) -> ActivityRecord:
    return ActivityRecord(
        id=row.id,
        date=row.run_date,
        distance_km=row.distance_km,
        duration_min=row.duration_min,
        avg_hr=row.avg_hr,
        max_hr=row.max_hr,
        avg_pace_str=row.avg_pace_str,
        run_type=row.run_type,
        workout_name=row.workout_name,
        pct_z4=row.pct_z4,
        pct_z5=row.pct_z5,
    )


def _to_feedback(row: RunFeedback) -> Feedback:
    return Feedback(
        run_date=row.run_date,
        rating=row.rating,
        effort_level=row.effort_level,
        feeling=row.feeling,
        comment=row.comment,
    )


def _to_plan(row: Plan) -> TrainingPlan:
    """Convert a plan row, tolerating a missing or partial ``plan`` JSON payload."""
    payload = row.plan or {}
    weeks: list[PlanWeek] = []
    for index, week in enumerate(payload.get("weeks") or [], start=1):
        if not isinstance(week, dict):
            logger.warning(f"Skipping malformed week entry in plan {row.id}")
            continue
        volume = week.get("target_volume_km")
        weeks.append(
            PlanWeek(
                week_number=int(week.get("week_number") or index),
                phase=str(week.get("phase") or ""),
                focus=str(week.get("focus") or ""),
                target_volume_km=float(volume) if volume is not None else None,
                workouts=week.get("workouts") or {},
            )
        )

    return TrainingPlan(
        id=row.id,
        plan_type=row.plan_type,
        duration_weeks=row.duration_weeks,
        current_week=row.current_week or 1,
        methodology=payload.get("methodology"),
        weeks=tuple(weeks),
    )


def _to_workout(row: CoachWorkout) -> CoachWorkoutTemplate:
    return CoachWorkoutTemplate(
        id=row.id,
        workout_name=row.workout_name,
        category=row.category,
        training_phase=row.training_phase,
        description=row.description,
        typical_distance_km=row.typical_distance_km,
        typical_duration_min=row.typical_duration_min,
        target_zone=row.target_zone,
        target_pace=row.target_pace,
        coach_notes=row.coach_notes,
        when_to_use=row.when_to_use,
        when_to_avoid=row.when_to_avoid,
        recovery_needed=row.recovery_needed,
        times_performed=row.times_performed or 0,
        avg_feeling=row.avg_feeling,
    )


def _to_phase(row: CoachTrainingPhase) -> CoachPhase:
    return CoachPhase(
        id=row.id,
        phase_name=row.phase_name,
        phase_order=row.phase_order,
        description=row.description,
        typical_duration_weeks=row.typical_duration_weeks,
        focus_areas=tuple(row.focus_areas or ()),
        key_workouts=tuple(row.key_workouts or ()),
        coach_notes=row.coach_notes,
        volume_progression=row.volume_progression,
    )


class SqlAthleteDataStore:
    """AthleteDataStore and WorkoutHistoryStore over the athlete tables."""

    def __init__(self, session_factory: SessionFactory, clock: Callable[[], date] = _today) -> None:
        self.session_factory = session_factory
        self.clock = clock

    def _get_profile(self, athlete_id: str) -> AthleteProfile | None:
        with self.session_factory() as session:
            row = session.get(Athlete, athlete_id)
            return _to_profile(row) if row is not None else None

    def _get_recent_activities(self, athlete_id: str, days: int) -> list[ActivityRecord]:
        since = self.clock() - timedelta(days=days)
        with self.session_factory() as session:
            rows = session.execute(
                select(Run).where(Run.user_id == athlete_id, Run.run_date >= since).order_by(Run.run_date.desc())
            ).scalars()
            return [_to_activity(row) for row in rows]

    def _get_recent_feedback(self, athlete_id: str, days: int) -> list[Feedback]:
        since = self.clock() - timedelta(days=days)
        with self.session_factory() as session:
            rows = session.execute(
                select(RunFeedback)
                .where(RunFeedback.user_id == athlete_id, RunFeedback.run_date >= since)
                .order_by(RunFeedback.run_date.desc())
            ).scalars()
            return [_to_feedback(row) for row in rows]

    def _get_active_plan(self, athlete_id: str) -> TrainingPlan | None:
        with self.session_factory() as session:
            row = session.execute(
                select(Plan)
                .where(Plan.user_id == athlete_id, Plan.status == ACTIVE_PLAN_STATUS)
                .order_by(Plan.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            return _to_plan(row) if row is not None else None

    def _get_latest_check_in(self, athlete_id: str, since: date) -> WeeklyCheckIn | None:
        with self.session_factory() as session:
            row = session.execute(
                select(WeeklySummary)
                .where(WeeklySummary.user_id == athlete_id, WeeklySummary.week_start >= since)
                .order_by(WeeklySummary.week_start.desc())
                .limit(1)
            ).scalar_one_or_none()
            if row is None:
                return None
            return WeeklyCheckIn(
                week_start=row.week_start,
                overall_feeling=row.overall_feeling,
                sleep_quality=row.sleep_quality,
                stress_level=row.stress_level,
                injury_notes=row.injury_notes,
                achievements=row.achievements,
            )

    def _get_workout_history(self, athlete_id: str) -> list[ActivityRecord]:
        with self.session_factory() as session:
            rows = session.execute(
                select(Run)
                .where(Run.user_id == athlete_id, Run.workout_name.is_not(None))
                .order_by(Run.run_date, Run.id)
            ).scalars()
            return [_to_activity(row) for row in rows]

    def _get_feedback_for_dates(self, athlete_id: str, run_dates: list[date]) -> list[Feedback]:
        if not run_dates:
            return []
        with self.session_factory() as session:
            rows = session.execute(
                select(RunFeedback).where(RunFeedback.user_id == athlete_id, RunFeedback.run_date.in_(set(run_dates)))
            ).scalars()
            return [_to_feedback(row) for row in rows]

    async def get_profile(self, athlete_id: str) -> AthleteProfile | None:
        return await asyncio.to_thread(self._get_profile, athlete_id)

    async def get_recent_activities(self, athlete_id: str, days: int) -> list[ActivityRecord]:
        return await asyncio.to_thread(self._get_recent_activities, athlete_id, days)

    async def get_recent_feedback(self, athlete_id: str, days: int) -> list[Feedback]:
        return await asyncio.to_thread(self._get_recent_feedback, athlete_id, days)

    async def get_active_plan(self, athlete_id: str) -> TrainingPlan | None:
        return await asyncio.to_thread(self._get_active_plan, athlete_id)

    async def get_latest_check_in(self, athlete_id: str, since: date) -> WeeklyCheckIn | None:
        return await asyncio.to_thread(self._get_latest_check_in, athlete_id, since)

    async def get_workout_history(self, athlete_id: str) -> list[ActivityRecord]:
        return await asyncio.to_thread(self._get_workout_history, athlete_id)

    async def get_feedback_for_dates(self, athlete_id: str, run_dates: list[date]) -> list[Feedback]:
        return await asyncio.to_thread(self._get_feedback_for_dates, athlete_id, run_dates)


class SqlCoachLibraryStore:
    """CoachLibraryStore over the coach_workouts and coach_phases tables."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    def _select_workouts(self, athlete_id: str, *conditions, limit: int | None = None) -> list[CoachWorkoutTemplate]:
        query = (
            select(CoachWorkout)
            .where(CoachWorkout.user_id == athlete_id, *conditions)
            .order_by(CoachWorkout.times_performed.desc(), CoachWorkout.workout_name)
        )
        if limit is not None:
            query = query.limit(limit)
        with self.session_factory() as session:
            return [_to_workout(row) for row in session.execute(query).scalars()]

    def _get_phases(self, athlete_id: str) -> list[CoachPhase]:
        with self.session_factory() as session:
            rows = session.execute(
                select(CoachTrainingPhase)
                .where(CoachTrainingPhase.user_id == athlete_id)
                .order_by(CoachTrainingPhase.phase_order)
            ).scalars()
            return [_to_phase(row) for row in rows]

    async def get_workouts_by_phase(self, athlete_id: str, phase: str) -> list[CoachWorkoutTemplate]:
        return await asyncio.to_thread(self._select_workouts, athlete_id, CoachWorkout.training_phase == phase)

    async def get_workouts_by_category(self, athlete_id: str, category: str) -> list[CoachWorkoutTemplate]:
        return await asyncio.to_thread(self._select_workouts, athlete_id, CoachWorkout.category == category)

    async def search_workouts(
        self,
        athlete_id: str,
        term: str,
        limit: int = WORKOUT_SEARCH_LIMIT,
    ) -> list[CoachWorkoutTemplate]:
        return await asyncio.to_thread(
            self._select_workouts,
            athlete_id,
            CoachWorkout.workout_name.ilike(f"%{term}%"),
            limit=limit,
        )

    async def get_most_performed_workouts(self, athlete_id: str) -> list[CoachWorkoutTemplate]:
        """Every workout for the athlete, never-performed ones included, most performed first."""
        return await asyncio.to_thread(self._select_workouts, athlete_id)

    async def get_phases(self, athlete_id: str) -> list[CoachPhase]:
        return await asyncio.to_thread(self._get_phases, athlete_id)


class SqlBookLibraryStore:
    """Book-level reads: published schedules, methodologies and corpus counts."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    def _get_matching_schedules(
        self,
        target_race: str | None,
        level: str | None,
        duration_weeks: int | None,
        limit: int,
    ) -> list[TrainingSchedule]:
        query = select(BookSchedule, CoachingBook).join(CoachingBook, BookSchedule.book_id == CoachingBook.id)
        if target_race:
            query = query.where(BookSchedule.target_race.ilike(f"%{target_race}%"))
        if level:
            query = query.where(BookSchedule.level == level)
        if duration_weeks:
            query = query.where(
                BookSchedule.duration_weeks.between(
                    duration_weeks - SCHEDULE_DURATION_TOLERANCE_WEEKS,
                    duration_weeks + SCHEDULE_DURATION_TOLERANCE_WEEKS,
                )
            )
        query = query.order_by(BookSchedule.duration_weeks, BookSchedule.plan_name).limit(limit)

        with self.session_factory() as session:
            return [
                TrainingSchedule(
                    id=schedule.id,
                    book_title=book.title,
                    methodology=book.methodology,
                    plan_name=schedule.plan_name,
                    target_race=schedule.target_race,
                    level=schedule.level,
                    duration_weeks=schedule.duration_weeks,
                    weekly_structure=schedule.weekly_structure,
                )
                for schedule, book in session.execute(query).all()
            ]

    def _get_available_methodologies(self) -> list[str]:
        with self.session_factory() as session:
            rows = session.execute(select(CoachingBook.methodology).distinct().order_by(CoachingBook.methodology))
            return [methodology for methodology in rows.scalars() if methodology]

    def _count(self, model: type[CoachingBook] | type[BookInstructionChunk]) -> int:
        with self.session_factory() as session:
            return session.execute(select(func.count()).select_from(model)).scalar_one()

    async def get_matching_schedules(
        self,
        *,
        target_race: str | None = None,
        level: str | None = None,
        duration_weeks: int | None = None,
        limit: int = SCHEDULE_LIMIT,
    ) -> list[TrainingSchedule]:
        """Book schedules for plan generation.

        Args:
            target_race: Case-insensitive substring of the schedule's target race
            level: Exact athlete level
            duration_weeks: Plan length, matched within two weeks either way
            limit: Maximum schedules returned

        Returns:
            Matching schedules, shortest first
        """
        return await asyncio.to_thread(self._get_matching_schedules, target_race, level, duration_weeks, limit)

    async def get_available_methodologies(self) -> list[str]:
        """Distinct methodology names across the coaching books."""
        return await asyncio.to_thread(self._get_available_methodologies)

    async def get_books_count(self) -> int:
        return await asyncio.to_thread(self._count, CoachingBook)

    async def get_instructions_count(self) -> int:
        return await asyncio.to_thread(self._count, BookInstructionChunk)


def upsert_coach_workout(session: Session, athlete_id: str, workout: CoachWorkoutTemplate) -> CoachWorkout:
    """Insert or update a previous-coach workout keyed by (athlete, workout name).

    Usage statistics on an existing row are left untouched.
    """
    row = session.execute(
        select(CoachWorkout).where(
            CoachWorkout.user_id == athlete_id,
            CoachWorkout.workout_name == workout.workout_name,
        )
    ).scalar_one_or_none()

    if row is None:
        row = CoachWorkout(
            user_id=athlete_id,
            workout_name=workout.workout_name,
            times_performed=workout.times_performed,
            avg_feeling=workout.avg_feeling,
        )
        session.add(row)
        logger.info(f"Adding coach workout '{workout.workout_name}' for athlete {athlete_id}")
    else:
        logger.debug(f"Updating coach workout '{workout.workout_name}' for athlete {athlete_id}")

    row.category = workout.category
    row.training_phase = workout.training_phase
    row.description = workout.description
    row.typical_distance_km = workout.typical_distance_km
    row.typical_duration_min = workout.typical_duration_min
    row.target_zone = workout.target_zone
    row.target_pace = workout.target_pace
    row.coach_notes = workout.coach_notes
    row.when_to_use = workout.when_to_use
    row.when_to_avoid = workout.when_to_avoid
    row.recovery_needed = workout.recovery_needed
    session.flush()
    return row


def record_workout_performed(
    session: Session,
    athlete_id: str,
    workout_name: str,
    feeling: float | None = None,
    performed_on: date | None = None,
) -> CoachWorkout | None:
    """Bump usage statistics after the athlete repeats a coach workout.

    The average feeling is a running mean over performances that reported one.

    Returns:
        The updated row, or None when the athlete has no workout with that name
    """
    row = session.execute(
        select(CoachWorkout).where(
            CoachWorkout.user_id == athlete_id,
            CoachWorkout.workout_name == workout_name,
        )
    ).scalar_one_or_none()
    if row is None:
        logger.warning(f"No coach workout '{workout_name}' for athlete {athlete_id}, usage not recorded")
        return None

    count = row.times_performed or 0
    if feeling is not None:
        if row.avg_feeling is None or count == 0:
            row.avg_feeling = float(feeling)
        else:
            row.avg_feeling = (row.avg_feeling * count + feeling) / (count + 1)

    row.times_performed = count + 1
    row.last_performed = performed_on or _today()
    session.flush()
    return row


def load_book_instructions(session: Session) -> list[BookInstruction]:
    """All methodology chunks joined with their book, embedding included when present."""
    rows = session.execute(
        select(BookInstructionChunk, CoachingBook).join(CoachingBook, BookInstructionChunk.book_id == CoachingBook.id)
    ).all()

    instructions = [
        BookInstruction(
            id=chunk.id,
            book_title=book.title,
            methodology=book.methodology,
            content=chunk.content,
            chapter_title=chunk.chapter_title,
            section_title=chunk.section_title,
            key_rules=tuple(chunk.key_rules or ()),
            applies_to_phase=chunk.applies_to_phase,
            applies_to_workout_type=chunk.applies_to_workout_type,
            level=chunk.level,
            embedding=tuple(chunk.embedding) if chunk.embedding else None,
        )
        for chunk, book in rows
    ]
    logger.info(f"Loaded {len(instructions)} book instructions")
    return instructions


def get_instructions_missing_embeddings(session: Session) -> list[BookInstructionChunk]:
    return list(
        session.execute(
            select(BookInstructionChunk).where(BookInstructionChunk.embedding.is_(None)).order_by(BookInstructionChunk.id)
        ).scalars()
    )
