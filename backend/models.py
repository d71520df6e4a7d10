"""
Pydantic models used across the backend.

Domain records (`User`, `Exercise`, `Event`) mirror the storage rows and
are frozen, so they can be shared between the cache and callers without
copying. `ParticipantView` is the read-only shape the service hands out;
the mutable aggregate it is taken from never leaves `engine.py`.

Guidelines:
- Keep models minimal and stable. Derived data belongs on views, not on
  the records themselves.
- Exercise ordering is explicit: use `sort_most_recent_first()`, never
  rely on an implicit comparator.
"""

from datetime import date
from enum import Enum
from typing import Any, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float

    @property
    def is_valid(self) -> bool:
        if self == INVALID_LOCATION:
            return False
        return -90.0 <= self.latitude <= 90.0 and -180.0 <= self.longitude <= 180.0


# Sentinel stored when a submission carried no usable position.
INVALID_LOCATION = Location(latitude=0.0, longitude=0.0)


class User(BaseModel):
    """A registered participant, keyed by `id` and by call sign."""

    model_config = ConfigDict(frozen=True)

    id: int
    call: str
    name: str = ""
    active: bool = True
    date_joined: date


class Exercise(BaseModel):
    """One scheduled, dated training exercise of a given `type`."""

    model_config = ConfigDict(frozen=True)

    id: int
    date: date
    type: str
    name: str = ""
    description: str = ""


class Event(BaseModel):
    """One participant's submission for one exercise.

    Fields:
    - `call`: denormalized from the owning User at fetch time.
    - `location`: None when unknown, `INVALID_LOCATION` when explicitly bad.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    exercise_id: int
    call: str = ""
    location: Optional[Location] = None
    feedback_count: int = 0
    feedback: str = ""
    context: str = ""


def exercise_sort_key(exercise: Exercise) -> Tuple[date, int]:
    return (exercise.date, exercise.id)


def sort_most_recent_first(exercises: Iterable[Exercise]) -> List[Exercise]:
    """Return exercises newest first; same-day exercises by descending id."""

    return sorted(exercises, key=exercise_sort_key, reverse=True)


class BulkInsertEntry(BaseModel):
    """One exercise plus every event submitted for it."""

    exercise: Exercise
    events: List[Event] = Field(default_factory=list)


class ReturnStatus(str, Enum):
    OK = "OK"
    ERROR = "ERROR"


class ReturnRecord(BaseModel):
    """Status envelope returned by every `AnalyticsService` operation."""

    status: ReturnStatus
    message: Optional[str] = None
    content: Any = None

    @property
    def ok(self) -> bool:
        return self.status == ReturnStatus.OK


class HistoryType(str, Enum):
    # declaration order is the order flattened history is emitted in
    FILTERED_OUT = "FILTERED_OUT"
    FIRST_TIME = "FIRST_TIME"
    ONE_AND_DONE = "ONE_AND_DONE"
    HEAVY_HITTER = "HEAVY_HITTER"
    ALL_OTHER = "ALL_OTHER"


class ParticipantView(BaseModel):
    """Immutable snapshot of one participant's joined history.

    `exercises` and `events` are paired index-for-index, most-recent-first.
    `evidence` holds the exercises a query matched on (for example the
    recent exercises a missing participant did attend) and `history_type`
    is only set by the history classifier.
    """

    model_config = ConfigDict(frozen=True)

    user: User
    exercises: Tuple[Exercise, ...] = ()
    events: Tuple[Event, ...] = ()
    last_exercise_date: Optional[date] = None
    last_location: Optional[Location] = None
    evidence: Tuple[Exercise, ...] = ()
    history_type: Optional[HistoryType] = None

    @property
    def call(self) -> str:
        return self.user.call


class DateJoinedCorrection(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    call: str
    stored: date
    computed: date

    @computed_field
    @property
    def changed(self) -> bool:
        return self.stored != self.computed


class OneAndDone(BaseModel):
    """A participant who took part in exactly one exercise of a window."""

    model_config = ConfigDict(frozen=True)

    call: str
    name: str
    date: date
    location: Optional[Location] = None
    exercise_type: str
    exercise_name: str
    exercise_description: str
    feedback_count: int
    feedback: str
    user_id: int
    exercise_id: int
    event_id: int
