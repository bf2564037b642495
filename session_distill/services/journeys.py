"""Build journeys from the sessions recorded in a project."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from session_distill.distill.journey import chain_sessions, compose_journey
from session_distill.distill.plan_drift import compute_plan_drift
from session_distill.models import Journey, SessionChainInput, StatsResult, StoredEvent
from session_distill.parsers.events import list_sessions, read_distilled, read_session_events

logger = logging.getLogger("session_distill.journeys")

_HEAD_EVENTS = 10


class JourneyLookupError(ValueError):
    """No journey, or more than one, matches the requested id."""

    def __init__(self, message: str, ambiguous: bool = False) -> None:
        super().__init__(message)
        self.ambiguous = ambiguous


def _head_cwd(events: list[StoredEvent]) -> Optional[str]:
    if not events:
        return None
    first = events[0]
    cwd = first.data.get("cwd")
    if isinstance(cwd, str):
        return cwd
    return first.context.cwd if first.context else None


def _head_prompt(events: list[StoredEvent]) -> Optional[str]:
    for event in events:
        if event.event == "UserPromptSubmit":
            prompt = event.data.get("prompt")
            return prompt if isinstance(prompt, str) else None
    return None


def build_session_chain_inputs(project_dir: str | Path) -> list[SessionChainInput]:
    inputs: list[SessionChainInput] = []
    for session in list_sessions(project_dir):
        try:
            head = read_session_events(session.session_id, project_dir)[:_HEAD_EVENTS]
        except OSError as exc:
            logger.debug("Skipping session %s: %s", session.session_id, exc)
            continue

        source = session.source
        if source is None and head and isinstance(head[0].data.get("source"), str):
            source = head[0].data["source"]
        distilled = read_distilled(session.session_id, project_dir)

        inputs.append(
            SessionChainInput(
                session_id=session.session_id,
                start_time=session.start_time,
                end_time=session.end_time,
                cwd=_head_cwd(head),
                source=source,
                end_reason=session.end_reason,
                event_count=session.event_count,
                duration_ms=session.duration_ms,
                git_commit=head[0].context.git_commit if head and head[0].context else None,
                first_prompt=_head_prompt(head),
                tools_by_name=distilled.stats.tools_by_name if distilled else None,
            )
        )
    return inputs


def _load_stats(session_ids: list[str], project_dir: str | Path) -> dict[str, StatsResult]:
    stats: dict[str, StatsResult] = {}
    for session_id in session_ids:
        distilled = read_distilled(session_id, project_dir)
        if distilled is not None:
            stats[session_id] = distilled.stats
    return stats


def _attach_plan_drift(journey: Journey, chain: list[str], project_dir: str | Path) -> Journey:
    if not journey.spec_ref:
        return journey
    spec_path = Path(project_dir) / journey.spec_ref
    if not spec_path.is_file():
        return journey
    try:
        content = spec_path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        logger.warning("Failed to read plan %s: %s", spec_path, exc)
        return journey

    file_maps = []
    for session_id in chain:
        distilled = read_distilled(session_id, project_dir)
        if distilled is not None:
            file_maps.append(distilled.file_map)
    drift = compute_plan_drift(journey.spec_ref, content, file_maps, str(project_dir))
    return journey.model_copy(update={"plan_drift": drift})


def list_journeys(project_dir: str | Path) -> list[Journey]:
    """Journeys, newest first."""
    inputs = build_session_chain_inputs(project_dir)
    if not inputs:
        return []
    input_map = {item.session_id: item for item in inputs}

    journeys = []
    for chain in chain_sessions(inputs):
        journey = compose_journey(chain, input_map, _load_stats(chain, project_dir))
        journeys.append(_attach_plan_drift(journey, chain, project_dir))

    def start_time(journey: Journey) -> int:
        first = input_map.get(journey.phases[0].session_id) if journey.phases else None
        return first.start_time if first else 0

    return sorted(journeys, key=lambda journey: -start_time(journey))


def resolve_journey_id(prefix: Optional[str], last: bool, project_dir: str | Path) -> Journey:
    journeys = list_journeys(project_dir)
    if not journeys:
        raise JourneyLookupError("No journeys found. Distill some sessions first.")
    if last:
        return journeys[0]
    if prefix is None:
        raise JourneyLookupError("No journey id provided.")

    matches = [journey for journey in journeys if journey.id.startswith(prefix)]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        ids = ", ".join(journey.id for journey in matches)
        raise JourneyLookupError(
            f'Ambiguous journey id "{prefix}" matches {len(matches)} journeys: {ids}.', ambiguous=True
        )

    by_session = [j for j in journeys if any(phase.session_id.startswith(prefix) for phase in j.phases)]
    if len(by_session) == 1:
        return by_session[0]
    if len(by_session) > 1:
        raise JourneyLookupError(
            f'Ambiguous session id "{prefix}" matches {len(by_session)} journeys.', ambiguous=True
        )
    raise JourneyLookupError(f'No journey matching "{prefix}".')
