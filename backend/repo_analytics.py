"""
Repository: SQL operations for `users`, `exercises` and `events`.

This file contains only DB interaction code. It maps rows to the frozen
Pydantic records in `models.py` and back. Keep business rules out of this
module; the one exception is the future-date guard on `bulk_insert`,
which protects the tables themselves.

Important notes:
- SQL strings use positional parameters for psycopg.
- Locations are stored as two nullable columns; NULL means "unknown".
- `bulk_insert` runs in a single transaction; on error nothing is written.
"""

import logging
from datetime import date
from typing import List, Optional

from db import get_conn
from errors import StorageError
from models import BulkInsertEntry, Event, Exercise, Location, User

logger = logging.getLogger(__name__)


class AnalyticsRepo:
    """DB access only. No analytics here.

    Responsibilities:
    - Map rows -> `User` / `Exercise` / `Event`
    - Upsert an exercise with its events, all or nothing
    - Write back corrected join dates
    """

    def __init__(self, db_url: Optional[str] = None, allow_future: bool = False):
        self.db_url = db_url
        self.allow_future = allow_future

    def fetch_all_users(self) -> List[User]:
        with get_conn(self.db_url) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id, callsign, name, active, date_joined FROM users"
                )
                return [
                    User(id=r[0], call=r[1], name=r[2] or "", active=bool(r[3]), date_joined=r[4])
                    for r in cur.fetchall()
                ]

    def fetch_all_exercises(self) -> List[Exercise]:
        with get_conn(self.db_url) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id, date, type, name, description FROM exercises"
                )
                return [
                    Exercise(id=r[0], date=r[1], type=r[2], name=r[3] or "", description=r[4] or "")
                    for r in cur.fetchall()
                ]

    def fetch_all_events(self) -> List[Event]:
        """Fetch every event, with `call` resolved from the owning user."""

        with get_conn(self.db_url) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT e.id, e.user_id, e.exercise_id, u.callsign, e.latitude, e.longitude, "
                    "e.feedback_count, e.feedback_text, e.context "
                    "FROM events e LEFT JOIN users u ON u.id = e.user_id"
                )
                out: List[Event] = []
                for r in cur.fetchall():
                    location = None
                    if r[4] is not None and r[5] is not None:
                        location = Location(latitude=r[4], longitude=r[5])
                    out.append(Event(
                        id=r[0],
                        user_id=r[1],
                        exercise_id=r[2],
                        call=r[3] or "",
                        location=location,
                        feedback_count=r[6] or 0,
                        feedback=r[7] or "",
                        context=r[8] or "",
                    ))
                return out

    def bulk_insert(self, entry: BulkInsertEntry) -> int:
        """Upsert one exercise, its participants and their events.

        Users are matched by call sign and (re)activated. Events are
        unique per (user, exercise); a resubmission replaces the earlier
        row. Returns the number of events written.

        Raises `StorageError` for exercises dated in the future unless the
        repository was built with `allow_future=True`.
        """

        exercise = entry.exercise
        if exercise.date > date.today() and not self.allow_future:
            raise StorageError(f"exercise date {exercise.date} is in the future")

        with get_conn(self.db_url) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "INSERT INTO exercises (date, type, name, description) VALUES (%s, %s, %s, %s) "
                    "ON CONFLICT (date, type, name) DO UPDATE SET description = EXCLUDED.description "
                    "RETURNING id",
                    (exercise.date, exercise.type, exercise.name, exercise.description),
                )
                exercise_id = cur.fetchone()[0]

                for event in entry.events:
                    cur.execute(
                        "INSERT INTO users (callsign, date_joined) VALUES (%s, %s) "
                        "ON CONFLICT (callsign) DO UPDATE SET active = TRUE "
                        "RETURNING id",
                        (event.call, exercise.date),
                    )
                    user_id = cur.fetchone()[0]
                    location = event.location
                    cur.execute(
                        "INSERT INTO events (user_id, exercise_id, latitude, longitude, "
                        "feedback_count, feedback_text, context) "
                        "VALUES (%s, %s, %s, %s, %s, %s, %s) "
                        "ON CONFLICT (user_id, exercise_id) DO UPDATE SET "
                        "latitude = EXCLUDED.latitude, longitude = EXCLUDED.longitude, "
                        "feedback_count = EXCLUDED.feedback_count, "
                        "feedback_text = EXCLUDED.feedback_text, context = EXCLUDED.context",
                        (
                            user_id,
                            exercise_id,
                            location.latitude if location else None,
                            location.longitude if location else None,
                            event.feedback_count,
                            event.feedback,
                            event.context,
                        ),
                    )
            conn.commit()

        logger.info(
            "persisted exercise %s %s (%s) with %d events",
            exercise.date, exercise.type, exercise.name, len(entry.events),
        )
        return len(entry.events)

    def persist_date_joined(self, user_id: int, date_joined: date) -> None:
        with get_conn(self.db_url) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE users SET date_joined = %s WHERE id = %s",
                    (date_joined, user_id),
                )
                if cur.rowcount != 1:
                    raise StorageError(f"no user with id {user_id}")
            conn.commit()

    def ping(self) -> None:
        """Lightweight DB health check. Raises on error."""

        with get_conn(self.db_url) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                row = cur.fetchone()
                if row is None or row[0] != 1:
                    raise StorageError(f"unexpected health check result: {row}")
