import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query

from errors import FatalStorageError
from models import BulkInsertEntry, ReturnRecord
from repo_analytics import AnalyticsRepo
from service_analytics import AnalyticsService
from settings import settings

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Exercise Analytics Backend")

# Instantiate the repo + service here so the routes remain thin. Tests
# replace `svc` with a service over an in-memory provider.
repo = AnalyticsRepo(allow_future=settings.allow_future)
svc = AnalyticsService(repo)


def _unwrap(ret: ReturnRecord):
    if not ret.ok:
        raise HTTPException(status_code=500, detail=ret.message)
    return ret.content


def _from_exercise(from_id: Optional[int]):
    if from_id is None:
        return None
    if from_id <= 0:
        raise HTTPException(status_code=400, detail=f"Invalid exercise id: {from_id}")
    try:
        exercise = svc.find_exercise(from_id)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Exercise lookup failed: {e}")
    if exercise is None:
        raise HTTPException(status_code=404, detail=f"Unknown exercise id: {from_id}")
    return exercise


@app.get("/health")
def health():
    try:
        svc.get_health()
        return {"ok": True}
    except FatalStorageError as e:
        raise HTTPException(status_code=503, detail=str(e))


@app.get("/exercises/window")
def window(types: List[str] = Query(default=[]), from_id: Optional[int] = None):
    try:
        return _unwrap(svc.get_filtered_exercises(types, _from_exercise(from_id)))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/participants/missing")
def missing(
    types: List[str] = Query(default=[]),
    from_id: Optional[int] = None,
    miss_limit: Optional[int] = None,
):
    try:
        return _unwrap(svc.get_users_missing_exercises(types, _from_exercise(from_id), miss_limit))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/participants/history")
def history(
    types: List[str] = Query(default=[]),
    from_id: Optional[int] = None,
    partitioned: bool = False,
):
    try:
        return _unwrap(svc.get_users_history(types, _from_exercise(from_id), partitioned))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/participants/one-and-done")
def one_and_done(types: List[str] = Query(default=[]), from_id: Optional[int] = None):
    try:
        return _unwrap(svc.get_one_and_done(types, _from_exercise(from_id)))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/participants/date-joined")
def date_joined():
    return _unwrap(svc.update_date_joined())


@app.post("/exercises")
def bulk_insert(entry: BulkInsertEntry):
    # NOTE: go through the service so the aggregate cache is invalidated
    return {"inserted": _unwrap(svc.bulk_insert(entry))}
