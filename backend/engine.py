"""
In-memory analytics over Users, Exercises and Events.

Everything here is pure: functions take plain collections and return new
objects, they never talk to the database. `AnalyticsService` owns the
cache and decides which participant population a query runs against.

Ordering: every exercise sequence in this module is most-recent-first
(see `models.sort_most_recent_first`). A "window" is a most-recent-first
tuple of catalog exercises; its head is the newest entry.
"""

import logging
import math
from datetime import date
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from errors import DataIntegrityError
from models import (
    DateJoinedCorrection,
    Event,
    Exercise,
    HistoryType,
    Location,
    OneAndDone,
    ParticipantView,
    User,
    exercise_sort_key,
    sort_most_recent_first,
)

logger = logging.getLogger(__name__)

HEAVY_HITTER_RATIO = 0.9


class ParticipantAggregate:
    """One participant joined with every exercise and event they attended.

    Mutated only while `build_aggregates` runs; afterwards treat it as
    read-only and hand out `view()` snapshots instead.
    """

    def __init__(self, user: User):
        self.user = user
        self.exercises: List[Exercise] = []
        self.events: List[Event] = []
        self.last_exercise_date: Optional[date] = None
        self.last_location: Optional[Location] = None

    def update(self, event: Event, exercise: Exercise) -> None:
        # ties keep the first recorded location
        if self.last_exercise_date is None or exercise.date > self.last_exercise_date:
            self.last_exercise_date = exercise.date
            self.last_location = event.location

        self.exercises.append(exercise)
        self.events.append(event)

    def finish(self) -> None:
        """Sort the paired lists once, keeping exercise/event pairs aligned."""

        pairs = sorted(
            zip(self.exercises, self.events),
            key=lambda pair: exercise_sort_key(pair[0]),
            reverse=True,
        )
        self.exercises = [ex for ex, _ in pairs]
        self.events = [ev for _, ev in pairs]

    @property
    def most_recent(self) -> Optional[Exercise]:
        return self.exercises[0] if self.exercises else None

    @property
    def earliest(self) -> Optional[Exercise]:
        return self.exercises[-1] if self.exercises else None

    def attended_ids(self) -> Set[int]:
        return {ex.id for ex in self.exercises}

    def view(
        self,
        evidence: Iterable[Exercise] = (),
        history_type: Optional[HistoryType] = None,
    ) -> ParticipantView:
        return ParticipantView(
            user=self.user,
            exercises=tuple(self.exercises),
            events=tuple(self.events),
            last_exercise_date=self.last_exercise_date,
            last_location=self.last_location,
            evidence=tuple(sort_most_recent_first(evidence)),
            history_type=history_type,
        )


class Aggregates:
    """Result of one full build: participants, catalog and exercise types.

    `active` holds the same aggregate objects as `all`, restricted to
    active users.
    """

    def __init__(
        self,
        joined: Dict[str, ParticipantAggregate],
        catalog: Tuple[Exercise, ...],
    ):
        self.all = joined
        self.active = {call: agg for call, agg in joined.items() if agg.user.active}
        self.catalog = catalog
        self.types: FrozenSet[str] = frozenset(ex.type for ex in catalog)

    def participants(self, only_active: bool) -> Dict[str, ParticipantAggregate]:
        return self.active if only_active else self.all


def build_aggregates(
    users: Iterable[User],
    exercises: Iterable[Exercise],
    events: Iterable[Event],
) -> Aggregates:
    """Join events to their users and exercises.

    Raises `DataIntegrityError` if any event points at an unknown user or
    exercise; nothing is returned in that case.
    """

    id_user_map = {u.id: u for u in users}
    id_exercise_map = {ex.id: ex for ex in exercises}
    join_map: Dict[str, ParticipantAggregate] = {}

    # fixed visiting order so same-date ties resolve the same way every build
    for event in sorted(events, key=lambda e: e.id):
        user = id_user_map.get(event.user_id)
        if user is None:
            raise DataIntegrityError(
                f"event {event.id} references unknown user id {event.user_id}"
            )
        exercise = id_exercise_map.get(event.exercise_id)
        if exercise is None:
            raise DataIntegrityError(
                f"event {event.id} references unknown exercise id {event.exercise_id}"
            )

        entry = join_map.get(user.call)
        if entry is None:
            entry = ParticipantAggregate(user)
            join_map[user.call] = entry
        entry.update(event, exercise)

    for entry in join_map.values():
        entry.finish()

    catalog = tuple(sort_most_recent_first(id_exercise_map.values()))
    aggregates = Aggregates(join_map, catalog)
    logger.info(
        "built aggregates: %d participants (%d active), %d exercises, %d types",
        len(aggregates.all), len(aggregates.active), len(catalog), len(aggregates.types),
    )
    return aggregates


def select_window(
    catalog: Sequence[Exercise],
    all_types: Iterable[str],
    required_types: Optional[Iterable[str]] = None,
    from_exercise: Optional[Exercise] = None,
    epoch_date: Optional[date] = None,
) -> Tuple[Exercise, ...]:
    """Return `from_exercise` and every older catalog exercise of the required types.

    - `required_types` empty or None means every type in `all_types`.
    - `from_exercise` None means the newest catalog exercise.
    - A reference not found in the catalog yields an empty window.
    - `epoch_date`, when set, drops exercises dated before it.

    Raises `ValueError` when the reference exercise has a non-positive id.
    """

    if from_exercise is None and not catalog:
        logger.info("no exercises in catalog")
        return ()

    reference = from_exercise if from_exercise is not None else catalog[0]
    if reference.id <= 0:
        raise ValueError(f"invalid reference exercise id: {reference.id}")

    types = set(required_types or ()) or set(all_types)

    start = next((i for i, ex in enumerate(catalog) if ex.id == reference.id), None)
    if start is None:
        logger.info("reference exercise %s not in catalog", reference.id)
        return ()

    window = []
    for exercise in catalog[start:]:
        if exercise.type not in types:
            logger.debug("skipping exercise type(%s): %s", exercise.type, exercise.id)
            continue
        if epoch_date is not None and exercise.date < epoch_date:
            logger.debug("skipping exercise before epoch %s: %s", epoch_date, exercise.id)
            continue
        window.append(exercise)

    logger.info("window size: %d (types: %s)", len(window), ", ".join(sorted(types)))
    return tuple(window)


def find_missing_participants(
    participants: Iterable[ParticipantAggregate],
    window: Sequence[Exercise],
    miss_limit: int,
) -> List[ParticipantView]:
    """Participants who skipped the window head but attended one of the
    `miss_limit + 1` newest window exercises.

    Each returned view carries the recent exercises they did attend as
    `evidence`. Long-absent participants are not reported.
    """

    if miss_limit < 0:
        raise ValueError(f"miss limit must be non-negative: {miss_limit}")
    if not window:
        logger.info("empty window, no missing participants")
        return []

    most_recent = window[0]
    candidates = {ex.id: ex for ex in window[: miss_limit + 1]}

    found = []
    for agg in participants:
        if most_recent.id in agg.attended_ids():
            logger.debug("skipping %s: attended most recent exercise", agg.user.call)
            continue

        intersection = [candidates[i] for i in agg.attended_ids() & candidates.keys()]
        if not intersection:
            logger.debug("skipping %s: absent from last %d exercises", agg.user.call, len(candidates))
            continue

        found.append(agg.view(evidence=intersection))

    found.sort(key=lambda v: v.call)
    logger.info("missing participants: %d", len(found))
    return found


def heavy_hitter_threshold(window_size: int) -> int:
    # round half up, not Python's round-half-even
    return int(math.floor(window_size * HEAVY_HITTER_RATIO + 0.5))


def classify(
    agg: ParticipantAggregate,
    window: Dict[int, Exercise],
    first_filtered: Exercise,
    threshold: int,
) -> Tuple[HistoryType, List[Exercise]]:
    intersection = [window[i] for i in agg.attended_ids() & window.keys()]
    size = len(intersection)

    if size == 0:
        return HistoryType.FILTERED_OUT, intersection
    if size == 1:
        if agg.most_recent is not None and agg.most_recent.id == first_filtered.id:
            return HistoryType.FIRST_TIME, intersection
        return HistoryType.ONE_AND_DONE, intersection
    if size >= threshold:
        return HistoryType.HEAVY_HITTER, intersection
    return HistoryType.ALL_OTHER, intersection


def classify_history(
    participants: Iterable[ParticipantAggregate],
    window: Sequence[Exercise],
) -> Dict[HistoryType, List[ParticipantView]]:
    """Assign every participant exactly one `HistoryType` for `window`.

    Every category key is present in the result, lists sorted by call.
    """

    partitioned: Dict[HistoryType, List[ParticipantView]] = {t: [] for t in HistoryType}
    if not window:
        logger.info("empty window, no history")
        return partitioned

    threshold = heavy_hitter_threshold(len(window))
    first_filtered = window[0]
    window_map = {ex.id: ex for ex in window}

    for agg in participants:
        history_type, intersection = classify(agg, window_map, first_filtered, threshold)
        partitioned[history_type].append(agg.view(evidence=intersection, history_type=history_type))

    for views in partitioned.values():
        views.sort(key=lambda v: v.call)

    logger.info(
        "history (threshold %d): %s",
        threshold,
        ", ".join(f"{t.value}={len(v)}" for t, v in partitioned.items()),
    )
    return partitioned


def flatten_history(partitioned: Dict[HistoryType, List[ParticipantView]]) -> List[ParticipantView]:
    out: List[ParticipantView] = []
    for history_type in HistoryType:
        out.extend(partitioned.get(history_type, []))
    return out


def one_and_done_rows(views: Iterable[ParticipantView]) -> List[OneAndDone]:
    """Flatten ONE_AND_DONE participants into report rows.

    The row describes the single window exercise they attended, paired with
    their event for it.
    """

    rows = []
    for view in views:
        if view.history_type != HistoryType.ONE_AND_DONE or not view.evidence:
            continue
        exercise = view.evidence[0]
        event = view.events[view.exercises.index(exercise)]
        rows.append(OneAndDone(
            call=view.user.call,
            name=view.user.name,
            date=exercise.date,
            location=event.location,
            exercise_type=exercise.type,
            exercise_name=exercise.name,
            exercise_description=exercise.description,
            feedback_count=event.feedback_count,
            feedback=event.feedback,
            user_id=view.user.id,
            exercise_id=exercise.id,
            event_id=event.id,
        ))
    rows.sort(key=lambda r: (r.date, r.exercise_type, r.call))
    return rows


def compute_date_joined_corrections(
    participants: Iterable[ParticipantAggregate],
) -> List[DateJoinedCorrection]:
    """One correction per participant: their earliest attended exercise date.

    Produced for every participant, whether or not it differs from what is
    stored; the caller writes all of them back.
    """

    corrections = []
    for agg in participants:
        earliest = agg.earliest
        if earliest is None:
            continue
        if earliest.date < agg.user.date_joined:
            logger.info(
                "call %s joined %s but first exercise was %s",
                agg.user.call, agg.user.date_joined, earliest.date,
            )
        corrections.append(DateJoinedCorrection(
            user_id=agg.user.id,
            call=agg.user.call,
            stored=agg.user.date_joined,
            computed=earliest.date,
        ))
    corrections.sort(key=lambda c: c.call)
    return corrections
