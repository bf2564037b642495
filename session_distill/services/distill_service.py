"""Bind the filesystem, git, and telemetry to the pure distill engine."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

from session_distill.distill.engine import distill
from session_distill.models import DistilledSession, StoredEvent
from session_distill.observability import record_distill, record_token_cost, start_span
from session_distill.parsers.events import (
    SessionNotFoundError,
    read_links,
    read_session_events,
    write_distilled,
)
from session_distill.parsers.transcript import read_session_name, read_transcript
from session_distill.services.git_diff import GitDiffProvider

logger = logging.getLogger("session_distill.distill_service")


def _spec_reader(project_dir: Path):
    def read_spec(spec_ref: str) -> Optional[str]:
        path = project_dir / spec_ref
        if not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.warning("Failed to read plan %s: %s", path, exc)
            return None

    return read_spec


def _agent_events_reader(project_dir: Path):
    def read_agent_events(agent_id: str) -> list[StoredEvent]:
        try:
            return read_session_events(agent_id, project_dir)
        except OSError:
            return []

    return read_agent_events


def distill_session(session_id: str, project_dir: str | Path, persist: bool = False) -> DistilledSession:
    """Distill one recorded session.

    Raises ``SessionNotFoundError`` when the session's event log is missing;
    every other degraded input produces a partial result instead.
    """
    root = Path(project_dir)
    started = time.monotonic()
    result = "error"
    try:
        with start_span("session_distill.distill", {"session.id": session_id, "persist": persist}):
            events = read_session_events(session_id, root)
            session = distill(
                session_id,
                str(root),
                events,
                read_links(root),
                read_transcript=read_transcript,
                read_agent_events=_agent_events_reader(root),
                git=GitDiffProvider(root),
                read_spec=_spec_reader(root),
                read_session_name=read_session_name,
            )
            if persist:
                path = write_distilled(session, root)
                logger.info("Wrote distilled session %s to %s", session_id, path)
        result = "ok"
    except SessionNotFoundError:
        result = "not_found"
        raise
    finally:
        record_distill(result, (time.monotonic() - started) * 1000, project_id=str(root))

    cost = session.stats.cost_estimate
    if cost is not None:
        record_token_cost(
            model=cost.model,
            token_input=cost.estimated_input_tokens,
            token_output=cost.estimated_output_tokens,
            cost_usd=cost.estimated_cost_usd,
        )
    return session
