from datetime import date
from typing import List

from errors import StorageError
from models import BulkInsertEntry, Event, Exercise, Location, User


def make_user(id_, call, active=True, joined=date(2020, 1, 1), name=""):
    return User(id=id_, call=call, name=name or call, active=active, date_joined=joined)


def make_exercise(id_, day, type_="ETO", name=""):
    return Exercise(id=id_, date=day, type=type_, name=name or f"exercise-{id_}")


def make_event(id_, user, exercise, location=None, feedback_count=0, feedback=""):
    return Event(
        id=id_,
        user_id=user.id,
        exercise_id=exercise.id,
        call=user.call,
        location=location,
        feedback_count=feedback_count,
        feedback=feedback,
    )


def attend(users, exercises, pairs, first_id=1) -> List[Event]:
    """Build events from (call, exercise id) pairs."""

    by_call = {u.call: u for u in users}
    by_id = {ex.id: ex for ex in exercises}
    return [
        make_event(first_id + i, by_call[call], by_id[ex_id], Location(latitude=47.0, longitude=-122.0 - i))
        for i, (call, ex_id) in enumerate(pairs)
    ]


class FakeProvider:
    """In-memory stand-in for `AnalyticsRepo`, counting every call."""

    def __init__(self, users=(), exercises=(), events=()):
        self.users = list(users)
        self.exercises = list(exercises)
        self.events = list(events)
        self.fetch_calls = 0
        self.persisted = []
        self.inserted = []
        self.fail_with = None
        self.healthy = True

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    def fetch_all_users(self):
        self._check()
        self.fetch_calls += 1
        return list(self.users)

    def fetch_all_exercises(self):
        self._check()
        return list(self.exercises)

    def fetch_all_events(self):
        self._check()
        return list(self.events)

    def bulk_insert(self, entry: BulkInsertEntry) -> int:
        self._check()
        self.inserted.append(entry)
        self.exercises.append(entry.exercise)
        self.events.extend(entry.events)
        return len(entry.events)

    def persist_date_joined(self, user_id, date_joined):
        self._check()
        self.persisted.append((user_id, date_joined))

    def ping(self):
        if not self.healthy:
            raise StorageError("connection refused")
