"""Session, distill, and journey API routers."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query

from session_distill import config
from session_distill.parsers.events import SessionNotFoundError, enrich_session_summaries, list_sessions
from session_distill.services.distill_service import distill_session
from session_distill.services.journeys import JourneyLookupError, list_journeys, resolve_journey_id


sessions_router = APIRouter(prefix="/api/sessions", tags=["sessions"])
journeys_router = APIRouter(prefix="/api/journeys", tags=["journeys"])


@sessions_router.get("")
def get_sessions(enrich: bool = Query(True, description="Attach agent count, distill status, and name")):
    sessions = list_sessions(config.PROJECT_DIR)
    if enrich:
        sessions = enrich_session_summaries(sessions, config.PROJECT_DIR)
    return [session.model_dump(mode="json", exclude_none=True) for session in sessions]


@sessions_router.get("/{session_id}/distill")
def get_distilled_session(session_id: str, persist: bool = Query(False)):
    try:
        session = distill_session(session_id, config.PROJECT_DIR, persist=persist)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return session.to_json_dict()


@journeys_router.get("")
def get_journeys():
    return [journey.model_dump(mode="json", exclude_none=True) for journey in list_journeys(config.PROJECT_DIR)]


@journeys_router.get("/{journey_id}")
def get_journey(journey_id: str):
    try:
        journey = resolve_journey_id(journey_id, False, config.PROJECT_DIR)
    except JourneyLookupError as exc:
        raise HTTPException(status_code=400 if exc.ambiguous else 404, detail=str(exc)) from exc
    return journey.model_dump(mode="json", exclude_none=True)
