#!/usr/bin/env python3
"""Distill a recorded session and write distilled/<id>.json.

Usage:
  python -m session_distill.scripts.distill_session <session-id-prefix>
  python -m session_distill.scripts.distill_session --last
  python -m session_distill.scripts.distill_session --last --json --project /path/to/project
"""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from session_distill import config
from session_distill.distill.summary import format_duration_human
from session_distill.parsers.events import SessionNotFoundError, list_sessions
from session_distill.services.distill_service import distill_session


def _resolve_session_id(prefix: str | None, last: bool, project_dir: Path) -> str | None:
    sessions = list_sessions(project_dir)
    if last:
        return sessions[0].session_id if sessions else None
    if not prefix:
        return None
    matches = [s.session_id for s in sessions if s.session_id.startswith(prefix)]
    if len(matches) > 1:
        print(f"Ambiguous session id {prefix!r}: {', '.join(m[:8] for m in matches)}")
        return None
    # Fall back to the literal id so a missing log reports as not found.
    return matches[0] if matches else prefix


def main() -> int:
    parser = argparse.ArgumentParser(description="Distill a recorded agent session")
    parser.add_argument("session_id", nargs="?", default=None, help="Session id or unique prefix")
    parser.add_argument("--last", action="store_true", help="Distill the most recent session")
    parser.add_argument("--project", default=str(config.PROJECT_DIR))
    parser.add_argument("--no-write", action="store_true", help="Do not write distilled/<id>.json")
    parser.add_argument("--json", action="store_true", help="Print the distilled session as JSON")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    project_dir = Path(args.project).resolve()

    session_id = _resolve_session_id(args.session_id, args.last, project_dir)
    if session_id is None:
        print("No session selected. Pass a session id or --last.")
        return 2

    try:
        session = distill_session(session_id, project_dir, persist=not args.no_write)
    except SessionNotFoundError as exc:
        print(str(exc))
        return 1

    if args.json:
        print(json.dumps(session.to_json_dict(), indent=2))
        return 0

    print(f"Session: {session.session_id}")
    if session.session_name:
        print(f"Name: {session.session_name}")
    print(f"Duration: {format_duration_human(session.stats.duration_ms)}")
    print(f"Tool calls: {session.stats.tool_call_count} ({session.stats.failure_count} failed)")
    print(f"Backtracks: {len(session.backtracks)}")
    if session.edit_chains is not None:
        print(f"Edit chains: {len(session.edit_chains.chains)}")
    if session.agents:
        print(f"Agents: {len(session.agents)}")
    if session.summary is not None:
        print("")
        print(session.summary.narrative)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
