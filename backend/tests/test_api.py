import pytest
from fastapi.testclient import TestClient

import main
from service_analytics import AnalyticsService


@pytest.fixture
def client(provider, monkeypatch):
    monkeypatch.setattr(main, "svc", AnalyticsService(provider, only_use_active=False))
    return TestClient(main.app)


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_health_failure_is_503(client, provider):
    provider.healthy = False
    r = client.get("/health")
    assert r.status_code == 503
    assert "connection refused" in r.json()["detail"]


def test_window_by_type_and_reference(client):
    r = client.get("/exercises/window", params={"from_id": 3})
    assert r.status_code == 200
    assert [e["id"] for e in r.json()] == [3, 2, 1]


def test_unknown_reference_is_404(client):
    r = client.get("/participants/missing", params={"from_id": 999})
    assert r.status_code == 404


def test_missing_participants(client):
    r = client.get("/participants/missing", params={"miss_limit": 1})
    assert r.status_code == 200
    body = r.json()
    assert [p["user"]["call"] for p in body] == ["N3GHI"]
    assert [e["id"] for e in body[0]["evidence"]] == [4]


def test_negative_miss_limit_is_400(client):
    r = client.get("/participants/missing", params={"miss_limit": -1})
    assert r.status_code == 400


def test_history_partitioned(client):
    r = client.get("/participants/history", params={"partitioned": "true"})
    assert r.status_code == 200
    body = r.json()
    assert list(body) == ["FILTERED_OUT", "FIRST_TIME", "ONE_AND_DONE", "HEAVY_HITTER", "ALL_OTHER"]
    assert [p["user"]["call"] for p in body["ONE_AND_DONE"]] == ["N3GHI"]


def test_history_flat_in_category_order(client):
    r = client.get("/participants/history")
    assert r.status_code == 200
    assert [p["history_type"] for p in r.json()] == ["ONE_AND_DONE", "ALL_OTHER", "ALL_OTHER"]


def test_one_and_done(client):
    r = client.get("/participants/one-and-done")
    assert r.status_code == 200
    assert [row["call"] for row in r.json()] == ["N3GHI"]


def test_date_joined(client, provider):
    r = client.post("/participants/date-joined")
    assert r.status_code == 200
    assert len(r.json()) == 3
    assert len(provider.persisted) == 3
    assert all("changed" in c for c in r.json())


def test_bulk_insert(client, provider):
    payload = {
        "exercise": {"id": 6, "date": "2024-02-11", "type": "ETO", "name": "winter drill"},
        "events": [{"id": 50, "user_id": 1, "exercise_id": 6, "call": "K1ABC"}],
    }
    r = client.post("/exercises", json=payload)
    assert r.status_code == 200
    assert r.json() == {"inserted": 1}
    assert client.get("/exercises/window").json()[0]["id"] == 6


def test_storage_error_is_500(client, provider):
    import psycopg

    provider.fail_with = psycopg.OperationalError("db down")
    r = client.get("/participants/history")
    assert r.status_code == 500
    assert "db down" in r.json()["detail"]


def test_non_positive_reference_is_400(client):
    r = client.get("/participants/history", params={"from_id": 0})
    assert r.status_code == 400
