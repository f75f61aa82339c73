"""Previous-coach layer: workout templates and training phases.

Workouts are looked up through an ordered fallback chain that stops at the
first non-empty result: current phase, category, query keywords, and finally
the athlete's most performed workouts. With a run history store the
retriever can also summarize how a named workout has gone in practice.
"""

import asyncio
import math
import re
from collections import Counter
from datetime import date

from loguru import logger

from coach_context.rag.budget import BoundedAccumulator, estimate_token_count
from coach_context.rag.logging import log_coach_retrieval
from coach_context.rag.types import CoachFilters, FormattedCoachContext, WorkoutPatternAnalysis
from coach_context.stores.base import CoachLibraryStore, WorkoutHistoryStore
from coach_context.stores.types import CoachPhase, CoachWorkoutTemplate

MAX_WORKOUTS = 5
MAX_PHASES = 3
MAX_KEYWORDS = 3
MIN_KEYWORD_LENGTH = 3

# Characters held back from the workout list for the phase section
PHASES_RESERVE_CHARS = 200
PHASES_MIN_REMAINING_CHARS = 100

COACH_HEADER = "## Previous Coach Data"
COACH_PLACEHOLDER_TEXT = f"{COACH_HEADER}\nNo previous coach workout data available."

STOP_WORDS = frozenset(
    {
        "what", "should", "i", "do", "today", "how", "can", "the", "a", "an",
        "is", "are", "was", "were", "be", "been", "being", "have", "has", "had",
        "my", "your", "we", "they", "this", "that", "these", "those",
    }
)

WORKOUT_VOCABULARY = (
    "easy", "tempo", "interval", "long", "recovery", "threshold",
    "fartlek", "speed", "hill", "track", "race", "warmup", "cooldown",
)

WORKOUT_TYPE_CATEGORIES = {
    "easy": "Easy",
    "recovery": "Easy",
    "tempo": "Tempo",
    "threshold": "Tempo",
    "interval": "Intervals",
    "speed": "Intervals",
    "long": "Long Run",
    "endurance": "Long Run",
}

_NON_WORD = re.compile(r"[^a-z0-9\s]")

# Ties on the typical training day resolve to the earliest day in this order
DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")
DEFAULT_FEELING = 5.0
MAX_FOLLOWED_BY = 3


def coach_placeholder(reason: str | None = None) -> FormattedCoachContext:
    text = COACH_PLACEHOLDER_TEXT if reason is None else f"{COACH_HEADER}\nNo previous coach workout data available ({reason})."
    return FormattedCoachContext(text=text, token_count=estimate_token_count(text))


def extract_keywords(query: str) -> list[str]:
    """Pick up to three search keywords, workout vocabulary first."""
    words = [
        word
        for word in _NON_WORD.sub("", query.lower()).split()
        if len(word) >= MIN_KEYWORD_LENGTH and word not in STOP_WORDS
    ]

    prioritized = [w for w in words if any(k in w or w in k for k in WORKOUT_VOCABULARY)]
    remaining = [w for w in words if w not in prioritized]
    return [*prioritized, *remaining][:MAX_KEYWORDS]


def format_workout(workout: CoachWorkoutTemplate) -> str:
    parts = [f"### {workout.workout_name}"]

    if workout.category:
        parts.append(f"Category: {workout.category}")
    if workout.description:
        parts.append(f"Description: {workout.description}")

    typical: list[str] = []
    if workout.typical_distance_km:
        typical.append(f"{workout.typical_distance_km:g} km")
    if workout.typical_duration_min:
        typical.append(f"{workout.typical_duration_min:g} min")
    if workout.target_zone:
        typical.append(f"Zone: {workout.target_zone}")
    if workout.target_pace:
        typical.append(f"Pace: {workout.target_pace}")
    if typical:
        parts.append(f"Typical: {', '.join(typical)}")

    if workout.coach_notes:
        parts.append(f"Coach Notes: {workout.coach_notes}")
    if workout.when_to_use:
        parts.append(f"When to Use: {workout.when_to_use}")
    if workout.when_to_avoid:
        parts.append(f"When to Avoid: {workout.when_to_avoid}")
    if workout.recovery_needed:
        parts.append(f"Recovery Needed: {workout.recovery_needed}")

    if workout.times_performed > 0:
        feeling = f" (Avg Feeling: {workout.avg_feeling:.1f}/10)" if workout.avg_feeling else ""
        parts.append(f"Times Performed: {workout.times_performed}{feeling}")

    return "\n".join(parts)


def format_phase(phase: CoachPhase) -> str:
    parts = [f"### {phase.phase_name}"]

    if phase.description:
        parts.append(f"Description: {phase.description}")
    if phase.typical_duration_weeks:
        parts.append(f"Duration: {phase.typical_duration_weeks} weeks")
    if phase.focus_areas:
        parts.append(f"Focus: {', '.join(phase.focus_areas)}")
    if phase.key_workouts:
        parts.append(f"Key Workouts: {', '.join(phase.key_workouts)}")
    if phase.coach_notes:
        parts.append(f"Coach Notes: {phase.coach_notes}")
    if phase.volume_progression:
        parts.append(f"Volume: {phase.volume_progression}")

    return "\n".join(parts)


def _pack_entries(header: str, entries: list[tuple[str, str]], max_chars: int) -> tuple[str, list[str]]:
    """Pack (name, text) entries under ``header`` within ``max_chars``.

    Returns:
        Tuple of (section text, names of included entries)
    """
    accumulator: BoundedAccumulator[tuple[str, str]] = BoundedAccumulator(
        max_size=max_chars,
        size_fn=lambda entry: len(entry[1]),
        used=len(header),
    )
    accumulator.extend(entries)

    text = "\n\n".join([header, *(body for _, body in accumulator.items)])
    names = list(dict.fromkeys(name for name, _ in accumulator.items))
    return text, names


def prioritize_phases(phases: list[CoachPhase], current_phase: str | None) -> list[CoachPhase]:
    """Up to three phases, the one matching ``current_phase`` first."""
    if current_phase:
        wanted = current_phase.lower()
        current = next((p for p in phases if wanted in p.phase_name.lower()), None)
        if current is not None:
            others = [p for p in phases if p.id != current.id]
            return [current, *others[: MAX_PHASES - 1]]
    return phases[:MAX_PHASES]


def _round_tenth(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def _day_index(day: date) -> int:
    return (day.weekday() + 1) % 7


class CoachPatternRetriever:
    """Retrieves the previous coach's workouts and phases for one athlete."""

    def __init__(self, store: CoachLibraryStore, history: WorkoutHistoryStore | None = None) -> None:
        """Initialize retriever.

        Args:
            store: Previous coach workouts and phases
            history: Run history, required only for ``analyze_workout_patterns``
        """
        self.store = store
        self.history = history

    async def _fetch_relevant_workouts(
        self,
        athlete_id: str,
        query: str,
        filters: CoachFilters,
    ) -> tuple[list[CoachWorkoutTemplate], str]:
        if filters.phase:
            workouts = await self.store.get_workouts_by_phase(athlete_id, filters.phase)
            if workouts:
                return workouts[:MAX_WORKOUTS], "phase"

        if filters.category:
            workouts = await self.store.get_workouts_by_category(athlete_id, filters.category)
            if workouts:
                return workouts[:MAX_WORKOUTS], "category"

        keywords = extract_keywords(query)
        if keywords:
            results = await asyncio.gather(*(self.store.search_workouts(athlete_id, keyword) for keyword in keywords))
            seen: set[str] = set()
            workouts = []
            for matches in results:
                for workout in matches:
                    if workout.id not in seen:
                        seen.add(workout.id)
                        workouts.append(workout)
            if workouts:
                return workouts[:MAX_WORKOUTS], "keyword"

        workouts = await self.store.get_most_performed_workouts(athlete_id)
        return workouts[:MAX_WORKOUTS], "most_performed" if workouts else "none"

    async def _fetch_relevant_phases(self, athlete_id: str, current_phase: str | None) -> list[CoachPhase]:
        phases = await self.store.get_phases(athlete_id)
        return prioritize_phases(phases, current_phase)

    async def retrieve(
        self,
        athlete_id: str,
        query: str,
        filters: CoachFilters,
        max_chars: int,
    ) -> FormattedCoachContext:
        """Build the coach layer within ``max_chars``.

        Args:
            athlete_id: Athlete identifier
            query: User query, used for keyword search
            filters: Phase / workout type / category hints
            max_chars: Character budget for the layer

        Returns:
            FormattedCoachContext listing the workout and phase names actually included
        """
        (workouts, strategy), phases = await asyncio.gather(
            self._fetch_relevant_workouts(athlete_id, query, filters),
            self._fetch_relevant_phases(athlete_id, filters.phase),
        )

        sections: list[str] = []
        total_chars = 0
        workouts_included: list[str] = []
        phases_included: list[str] = []

        if workouts:
            workouts_text, workouts_included = _pack_entries(
                "## Previous Coach Workouts",
                [(w.workout_name, format_workout(w)) for w in workouts],
                max_chars - PHASES_RESERVE_CHARS,
            )
            sections.append(workouts_text)
            total_chars += len(workouts_text)

        if phases and total_chars < max_chars - PHASES_MIN_REMAINING_CHARS:
            phases_text, phases_included = _pack_entries(
                "## Previous Coach Training Phases",
                [(p.phase_name, format_phase(p)) for p in phases],
                max_chars - total_chars,
            )
            sections.append(phases_text)

        log_coach_retrieval(
            athlete_id,
            filters,
            strategy=strategy,
            workouts=workouts_included,
            phases=phases_included,
        )

        if not sections:
            logger.debug(f"No coach data found for athlete {athlete_id}")
            return coach_placeholder()

        text = "\n\n".join(sections)
        return FormattedCoachContext(
            text=text,
            token_count=estimate_token_count(text),
            workouts_included=workouts_included,
            phases_included=phases_included,
        )

    async def find_workout_by_type(self, athlete_id: str, workout_type: str) -> CoachWorkoutTemplate | None:
        """Match a planned workout type to one of the previous coach's workouts.

        Tries a name search first, then the category the type maps to.
        """
        results = await self.store.search_workouts(athlete_id, workout_type)
        if results:
            return results[0]

        category = WORKOUT_TYPE_CATEGORIES.get(workout_type.lower())
        if category:
            by_category = await self.store.get_workouts_by_category(athlete_id, category)
            if by_category:
                return by_category[0]

        return None

    async def analyze_workout_patterns(self, athlete_id: str, workout_name: str) -> WorkoutPatternAnalysis | None:
        """Summarize how the athlete has performed a named workout.

        Runs match by case-insensitive substring of their workout name. The
        workouts that follow are taken from the next named run in the
        athlete's full history.

        Args:
            athlete_id: Athlete identifier
            workout_name: Workout name, or part of it

        Returns:
            WorkoutPatternAnalysis, or None when no run matches or no history store is configured
        """
        if self.history is None:
            logger.warning("Workout pattern analysis requested without a run history store")
            return None

        runs = await self.history.get_workout_history(athlete_id)
        needle = workout_name.lower()
        matched = [index for index, run in enumerate(runs) if needle in (run.workout_name or "").lower()]
        if not matched:
            logger.debug(f"No runs named like '{workout_name}' for athlete {athlete_id}")
            return None

        matching_runs = [runs[index] for index in matched]
        feedback = await self.history.get_feedback_for_dates(athlete_id, [run.date for run in matching_runs])
        ratings = [f.rating if f.rating is not None else DEFAULT_FEELING for f in feedback]
        avg_feeling = sum(ratings) / len(ratings) if ratings else DEFAULT_FEELING

        avg_duration = sum(run.duration_min or 0 for run in matching_runs) / len(matching_runs)
        avg_distance = sum(run.distance_km or 0 for run in matching_runs) / len(matching_runs)

        day_counts = Counter(_day_index(run.date) for run in matching_runs)
        typical_day = min(day_counts, key=lambda day: (-day_counts[day], day))

        next_names = Counter(runs[index + 1].workout_name for index in matched if index + 1 < len(runs))

        return WorkoutPatternAnalysis(
            workout_name=workout_name,
            occurrences=len(matching_runs),
            avg_duration_min=math.floor(avg_duration + 0.5),
            avg_distance_km=_round_tenth(avg_distance),
            avg_feeling=_round_tenth(avg_feeling),
            typical_day_of_week=DAY_NAMES[typical_day],
            followed_by=[name for name, _ in next_names.most_common(MAX_FOLLOWED_BY)],
        )
