"""
Service / facade layer.

`AnalyticsService` is the only entry point callers should use. It applies
one policy (active users only, or everyone) to every query, keeps the
joined aggregates in an explicit cache, and turns storage failures into
`ReturnRecord(ERROR, ...)` results. All write paths go through here so the
cache is invalidated whenever storage changes.

Key responsibilities:
- lazy, whole-set loading of aggregates (`AggregateCache`)
- window selection with the configured epoch date
- wrapping engine results as immutable views
- escalating a failed health check to `FatalStorageError`
"""

import logging
from datetime import date
from typing import Iterable, List, Optional, Protocol

import psycopg

import engine
from errors import FatalStorageError, StorageError
from models import (
    BulkInsertEntry,
    Event,
    Exercise,
    HistoryType,
    ReturnRecord,
    ReturnStatus,
    User,
)
from settings import settings

logger = logging.getLogger(__name__)

# failures a provider may raise that are reported, not propagated
STORAGE_ERRORS = (psycopg.Error, StorageError)


class StorageProvider(Protocol):
    """What the service needs from storage. `AnalyticsRepo` implements it."""

    def fetch_all_users(self) -> List[User]: ...

    def fetch_all_exercises(self) -> List[Exercise]: ...

    def fetch_all_events(self) -> List[Event]: ...

    def bulk_insert(self, entry: BulkInsertEntry) -> int: ...

    def persist_date_joined(self, user_id: int, date_joined: date) -> None: ...

    def ping(self) -> None: ...


class AggregateCache:
    """Holds the most recent `engine.Aggregates` built from the provider.

    `get()` loads on first use. `reload()` builds a complete new set before
    replacing the old one, so a failed load leaves the previous state (or
    nothing) in place.
    """

    def __init__(self, provider: StorageProvider):
        self.provider = provider
        self._aggregates: Optional[engine.Aggregates] = None

    @property
    def loaded(self) -> bool:
        return self._aggregates is not None

    def get(self) -> engine.Aggregates:
        if self._aggregates is None:
            self.reload()
        return self._aggregates

    def reload(self) -> engine.Aggregates:
        users = self.provider.fetch_all_users()
        exercises = self.provider.fetch_all_exercises()
        events = self.provider.fetch_all_events()
        logger.info(
            "loaded %d users, %d exercises, %d events",
            len(users), len(exercises), len(events),
        )
        aggregates = engine.build_aggregates(users, exercises, events)
        self._aggregates = aggregates
        return aggregates

    def invalidate(self) -> None:
        if self._aggregates is not None:
            logger.debug("invalidating aggregate cache")
        self._aggregates = None


def _error(action: str, e: Exception) -> ReturnRecord:
    logger.error("%s failed: %s", action, e)
    return ReturnRecord(status=ReturnStatus.ERROR, message=str(e))


class AnalyticsService:
    """Participation queries over a storage provider.

    Example usage:
        repo = AnalyticsRepo()
        svc = AnalyticsService(repo)
        svc.get_users_missing_exercises({"ETO"}, None, miss_limit=3)
    """

    def __init__(
        self,
        provider: StorageProvider,
        only_use_active: Optional[bool] = None,
        epoch_date: Optional[date] = None,
    ):
        self.provider = provider
        self.cache = AggregateCache(provider)
        self.only_use_active = (
            settings.only_use_active if only_use_active is None else only_use_active
        )
        self.epoch_date = settings.epoch_date if epoch_date is None else epoch_date

    def _participants(self, aggregates: engine.Aggregates):
        return aggregates.participants(self.only_use_active).values()

    def _window(
        self,
        aggregates: engine.Aggregates,
        required_types: Optional[Iterable[str]],
        from_exercise: Optional[Exercise],
    ):
        return engine.select_window(
            aggregates.catalog,
            aggregates.types,
            required_types=required_types,
            from_exercise=from_exercise,
            epoch_date=self.epoch_date,
        )

    def find_exercise(self, exercise_id: int) -> Optional[Exercise]:
        """Look up a catalog exercise by id (loads the cache if needed)."""

        for exercise in self.cache.get().catalog:
            if exercise.id == exercise_id:
                return exercise
        return None

    def get_all_users(self) -> ReturnRecord:
        try:
            return ReturnRecord(status=ReturnStatus.OK, content=self.provider.fetch_all_users())
        except STORAGE_ERRORS as e:
            return _error("get_all_users", e)

    def get_all_exercises(self) -> ReturnRecord:
        try:
            return ReturnRecord(status=ReturnStatus.OK, content=self.provider.fetch_all_exercises())
        except STORAGE_ERRORS as e:
            return _error("get_all_exercises", e)

    def get_all_events(self) -> ReturnRecord:
        try:
            return ReturnRecord(status=ReturnStatus.OK, content=self.provider.fetch_all_events())
        except STORAGE_ERRORS as e:
            return _error("get_all_events", e)

    def get_filtered_exercises(
        self,
        required_types: Optional[Iterable[str]] = None,
        from_exercise: Optional[Exercise] = None,
    ) -> ReturnRecord:
        """Return the window of exercises the other queries would use."""

        try:
            aggregates = self.cache.get()
        except STORAGE_ERRORS as e:
            return _error("get_filtered_exercises", e)
        window = self._window(aggregates, required_types, from_exercise)
        return ReturnRecord(status=ReturnStatus.OK, content=list(window))

    def get_users_missing_exercises(
        self,
        required_types: Optional[Iterable[str]] = None,
        from_exercise: Optional[Exercise] = None,
        miss_limit: Optional[int] = None,
    ) -> ReturnRecord:
        """Participants who skipped the latest exercise but came recently.

        `miss_limit` is how many of the most recent exercises a participant
        may have missed and still be worth contacting; it defaults to
        `settings.default_miss_limit`. Each returned view lists, as
        `evidence`, the recent exercises the participant did attend.
        """

        if miss_limit is None:
            miss_limit = settings.default_miss_limit
        try:
            aggregates = self.cache.get()
        except STORAGE_ERRORS as e:
            return _error("get_users_missing_exercises", e)

        window = self._window(aggregates, required_types, from_exercise)
        content = engine.find_missing_participants(
            self._participants(aggregates), window, miss_limit
        )
        return ReturnRecord(status=ReturnStatus.OK, content=content)

    def get_users_history(
        self,
        required_types: Optional[Iterable[str]] = None,
        from_exercise: Optional[Exercise] = None,
        partitioned: bool = False,
    ) -> ReturnRecord:
        """Classify every participant's attendance over the window.

        With `partitioned` the content is a dict of `HistoryType` -> views;
        otherwise a single list ordered by `HistoryType` declaration order.
        """

        try:
            aggregates = self.cache.get()
        except STORAGE_ERRORS as e:
            return _error("get_users_history", e)

        window = self._window(aggregates, required_types, from_exercise)
        history = engine.classify_history(self._participants(aggregates), window)
        content = history if partitioned else engine.flatten_history(history)
        return ReturnRecord(status=ReturnStatus.OK, content=content)

    def get_one_and_done(
        self,
        required_types: Optional[Iterable[str]] = None,
        from_exercise: Optional[Exercise] = None,
    ) -> ReturnRecord:
        ret = self.get_users_history(required_types, from_exercise, partitioned=True)
        if not ret.ok:
            return ret
        rows = engine.one_and_done_rows(ret.content[HistoryType.ONE_AND_DONE])
        return ReturnRecord(status=ReturnStatus.OK, content=rows)

    def update_date_joined(self) -> ReturnRecord:
        """Write every participant's first exercise date as their join date.

        Every participant gets exactly one write, even when the stored date
        already matches. Content is the list of `DateJoinedCorrection`s.
        """

        try:
            aggregates = self.cache.get()
        except STORAGE_ERRORS as e:
            return _error("update_date_joined", e)

        corrections = engine.compute_date_joined_corrections(aggregates.all.values())
        try:
            for c in corrections:
                self.provider.persist_date_joined(c.user_id, c.computed)
        except STORAGE_ERRORS as e:
            return _error("update_date_joined", e)
        finally:
            self.cache.invalidate()

        changed = sum(1 for c in corrections if c.changed)
        logger.info("updated date joined for %d users (%d changed)", len(corrections), changed)
        return ReturnRecord(status=ReturnStatus.OK, content=corrections)

    def bulk_insert(self, entry: BulkInsertEntry) -> ReturnRecord:
        try:
            inserted = self.provider.bulk_insert(entry)
        except STORAGE_ERRORS as e:
            return _error("bulk_insert", e)
        finally:
            self.cache.invalidate()
        return ReturnRecord(status=ReturnStatus.OK, content=inserted)

    def get_health(self) -> ReturnRecord:
        """Ping storage; any failure raises `FatalStorageError`."""

        try:
            self.provider.ping()
        except STORAGE_ERRORS as e:
            logger.error("database health error: %s", e)
            raise FatalStorageError(f"database health error: {e}") from e
        return ReturnRecord(status=ReturnStatus.OK)
