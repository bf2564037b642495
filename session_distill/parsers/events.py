"""Read hook event logs, the shared links log, and distilled session files."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from session_distill import config
from session_distill.distill.utils import (
    compute_effective_duration,
    find_last_meaningful_event,
    is_ghost_session,
    spawn_links,
)
from session_distill.models import (
    BROADCAST_EVENTS,
    LINK_EVENT_TYPES,
    DistilledSession,
    LinkEvent,
    LinkEventAdapter,
    SessionSummary,
    StoredEvent,
)
from session_distill.observability import record_parser_failure
from session_distill.parsers.transcript import read_session_name, resolve_transcript_path

logger = logging.getLogger("session_distill.parsers.events")

_COMPLETE_EVENTS = {"SessionEnd", "Stop"}


class SessionNotFoundError(FileNotFoundError):
    """The event log for a session id does not exist."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session file not found: {session_id}")
        self.session_id = session_id


def _read_lines(path: Path) -> list[str]:
    content = path.read_text(encoding="utf-8", errors="replace").strip()
    return [line for line in content.splitlines() if line.strip()]


def parse_event(line: str) -> Optional[StoredEvent]:
    try:
        raw = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(raw, dict) or "event" not in raw:
        return None
    try:
        return StoredEvent.model_validate(raw)
    except ValidationError:
        return None


def parse_link_event(line: str) -> Optional[LinkEvent]:
    try:
        raw = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(raw, dict) or raw.get("type") not in LINK_EVENT_TYPES:
        return None
    if not isinstance(raw.get("t"), (int, float)) or isinstance(raw.get("t"), bool):
        return None
    try:
        return LinkEventAdapter.validate_python(raw)
    except ValidationError:
        return None


def _parse_events(lines: list[str]) -> list[StoredEvent]:
    return [event for line in lines if (event := parse_event(line)) is not None]


def read_session_events(session_id: str, project_dir: str | Path) -> list[StoredEvent]:
    path = config.sessions_dir(project_dir) / f"{session_id}.jsonl"
    if not path.exists():
        raise SessionNotFoundError(session_id)
    return _parse_events(_read_lines(path))


def read_links(project_dir: str | Path) -> list[LinkEvent]:
    path = config.links_path(project_dir)
    if not path.exists():
        return []
    try:
        lines = _read_lines(path)
    except OSError as exc:
        logger.warning("Failed to read links log %s: %s", path, exc)
        record_parser_failure("links", project_id=str(project_dir))
        return []
    return [link for line in lines if (link := parse_link_event(line)) is not None]


def read_distilled(session_id: str, project_dir: str | Path) -> Optional[DistilledSession]:
    path = config.distilled_dir(project_dir) / f"{session_id}.json"
    if not path.exists():
        return None
    try:
        return DistilledSession.model_validate_json(path.read_text(encoding="utf-8", errors="replace"))
    except (OSError, ValidationError) as exc:
        logger.warning("Failed to read distilled session %s: %s", session_id, exc)
        record_parser_failure("distilled", project_id=str(project_dir))
        return None


def write_distilled(session: DistilledSession, project_dir: str | Path) -> Path:
    out_dir = config.distilled_dir(project_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / f"{session.session_id}.json"
    path.write_text(json.dumps(session.to_json_dict(), indent=2), encoding="utf-8")
    return path


def _summarize_session_file(path: Path) -> Optional[SessionSummary]:
    lines = _read_lines(path)
    if not lines:
        return None

    first = parse_event(lines[0])
    if first is None:
        return None
    events = _parse_events(lines)
    # Only logs opening with a broadcast can be ghosts.
    if first.event in BROADCAST_EVENTS and is_ghost_session(events):
        return None

    last = find_last_meaningful_event(events)
    if last is None:
        return None
    is_complete = last.event in _COMPLETE_EVENTS
    source = first.data.get("source")
    reason = last.data.get("reason")
    context = first.context

    return SessionSummary(
        session_id=path.stem,
        start_time=first.t,
        end_time=last.t if is_complete else None,
        duration_ms=compute_effective_duration(event.t for event in events).effective_duration_ms,
        event_count=len(lines),
        git_branch=(context.git_branch or None) if context else None,
        team_name=(context.team_name or None) if context else None,
        source=source if isinstance(source, str) else None,
        end_reason=reason if isinstance(reason, str) else None,
        status="complete" if is_complete else "incomplete",
        file_size_bytes=path.stat().st_size,
    )


def list_sessions(project_dir: str | Path) -> list[SessionSummary]:
    """Session summaries, newest first, skipping ghost sessions and the links log."""
    directory = config.sessions_dir(project_dir)
    if not directory.exists():
        return []

    sessions: list[SessionSummary] = []
    for path in directory.glob("*.jsonl"):
        if path.name == config.LINKS_FILENAME:
            continue
        try:
            summary = _summarize_session_file(path)
        except OSError as exc:
            logger.warning("Failed to summarize session %s: %s", path.stem, exc)
            record_parser_failure("sessions", project_id=str(project_dir))
            continue
        if summary is not None:
            sessions.append(summary)
    return sorted(sessions, key=lambda session: -session.start_time)


def _agent_counts(links: list[LinkEvent]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for spawn in spawn_links(links):
        counts[spawn.parent_session] = counts.get(spawn.parent_session, 0) + 1
    return counts


def _message_recipient_counts(links: list[LinkEvent]) -> dict[str, int]:
    recipients: dict[str, set[str]] = {}
    for link in links:
        if link.type == "msg_send":
            recipients.setdefault(link.session_id or link.from_, set()).add(link.to)
    return {session_id: len(names) for session_id, names in recipients.items()}


def _session_transcript_path(session_id: str, project_dir: str | Path) -> Optional[str]:
    try:
        return resolve_transcript_path(read_session_events(session_id, project_dir))
    except OSError:
        return None


def enrich_session_summaries(sessions: list[SessionSummary], project_dir: str | Path) -> list[SessionSummary]:
    """Attach agent count, distilled status, plan presence, and custom session name."""
    links = read_links(project_dir)
    spawn_counts = _agent_counts(links)
    recipient_counts = _message_recipient_counts(links)

    enriched = []
    for session in sessions:
        distilled_path = config.distilled_dir(project_dir) / f"{session.session_id}.json"
        is_distilled = distilled_path.exists()
        has_spec = False
        if is_distilled:
            try:
                has_spec = '"plan_drift"' in distilled_path.read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                logger.debug("Failed to read %s: %s", distilled_path, exc)

        transcript_path = _session_transcript_path(session.session_id, project_dir)
        session_name = read_session_name(transcript_path) if transcript_path else None

        update: dict[str, Any] = {
            "agent_count": spawn_counts.get(session.session_id) or recipient_counts.get(session.session_id, 0),
            "is_distilled": is_distilled,
            "has_spec": has_spec,
        }
        if session_name:
            update["session_name"] = session_name
        enriched.append(session.model_copy(update=update))
    return enriched
