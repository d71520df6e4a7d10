from datetime import date

import pytest

import repo_analytics
from errors import StorageError
from factories import make_exercise, make_user, make_event
from models import BulkInsertEntry
from repo_analytics import AnalyticsRepo


class FakeCursor:
    def __init__(self, log):
        self.log = log

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.log.append((sql, params))

    def fetchone(self):
        return (len(self.log),)


class FakeConn:
    def __init__(self):
        self.log = []
        self.committed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def cursor(self):
        return FakeCursor(self.log)

    def commit(self):
        self.committed = True


def test_bulk_insert_rejects_future_exercise():
    entry = BulkInsertEntry(exercise=make_exercise(1, date(2099, 1, 1)))
    with pytest.raises(StorageError):
        AnalyticsRepo(db_url="postgresql://nobody@127.0.0.1:1/none").bulk_insert(entry)


def test_bulk_insert_allows_future_when_configured(monkeypatch):
    conn = FakeConn()
    monkeypatch.setattr(repo_analytics, "get_conn", lambda db_url=None: conn)
    exercise = make_exercise(1, date(2099, 1, 1))
    user = make_user(1, "K1ABC")
    entry = BulkInsertEntry(exercise=exercise, events=[make_event(1, user, exercise)])

    inserted = AnalyticsRepo(allow_future=True).bulk_insert(entry)

    assert inserted == 1
    assert conn.committed
    assert any("INSERT INTO exercises" in sql for sql, _ in conn.log)
    assert any("INSERT INTO events" in sql for sql, _ in conn.log)
