"""Attribute unified-diff lines to the agent edit that most plausibly wrote them.

Matching is content-addressed: an added line is credited to an Edit/Write
whose new text contains the same trimmed line, a removed line to one whose
old text does. When several edits match, the latest one wins. Context lines
and blank lines are never attributed, and an unmatched line is left alone.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from session_distill.models import (
    DiffLine,
    EditChainsResult,
    FileDiffAttribution,
    StoredEvent,
)

logger = logging.getLogger("session_distill.diff_attribution")

_HUNK_HEADER_PATTERN = re.compile(r"^@@ -(\d+)(?:,\d+)? \+(\d+)(?:,\d+)? @@")
_SKIPPED_PREFIXES = ("diff --git", "---", "+++", "index ")

# (start_commit, relative_paths) -> {relative_path: raw unified diff}
CaptureDiffFn = Callable[[str, list[str]], dict[str, str]]


@dataclass(frozen=True)
class AgentEditEntry:
    agent_name: str
    tool_use_id: str
    new_string_lines: frozenset[str]
    old_string_lines: frozenset[str]
    t: int


def get_start_commit(events: list[StoredEvent]) -> Optional[str]:
    for event in events:
        if event.event == "SessionStart" and event.context and event.context.git_commit:
            return event.context.git_commit
    return None


def to_relative_path(absolute_path: str, project_dir: str) -> str:
    prefix = project_dir if project_dir.endswith("/") else f"{project_dir}/"
    return absolute_path[len(prefix):] if absolute_path.startswith(prefix) else absolute_path


def parse_unified_diff(raw_diff: str) -> list[DiffLine]:
    if not raw_diff.strip() or "Binary files" in raw_diff:
        return []

    lines: list[DiffLine] = []
    old_line = 0
    new_line = 0
    for line in raw_diff.split("\n"):
        if not line or line.startswith(_SKIPPED_PREFIXES):
            continue
        header = _HUNK_HEADER_PATTERN.match(line)
        if header:
            old_line = int(header.group(1))
            new_line = int(header.group(2))
        elif line.startswith("+"):
            lines.append(DiffLine(type="add", content=line[1:], line_number=new_line))
            new_line += 1
        elif line.startswith("-"):
            lines.append(DiffLine(type="remove", content=line[1:], line_number=old_line))
            old_line += 1
        elif line.startswith(" "):
            lines.append(DiffLine(type="context", content=line[1:]))
            old_line += 1
            new_line += 1
        # anything else ("\ No newline at end of file") is skipped
    return lines


def _line_set(text: str) -> frozenset[str]:
    return frozenset(stripped for stripped in (line.strip() for line in text.split("\n")) if stripped)


def build_agent_edit_index(
    events: list[StoredEvent],
    edit_chains: EditChainsResult,
    project_dir: str,
) -> dict[str, list[AgentEditEntry]]:
    """Relative file path -> non-failed Edit/Write steps with their trimmed line sets."""
    failure_ids = {
        event.tool_use_id
        for event in events
        if event.event == "PostToolUseFailure" and event.tool_use_id is not None
    }
    pre_events = {
        event.tool_use_id: event
        for event in events
        if event.event == "PreToolUse" and event.tool_use_id is not None
    }

    index: dict[str, list[AgentEditEntry]] = {}
    for chain in edit_chains.chains:
        relative_path = to_relative_path(chain.file_path, project_dir)
        agent_name = chain.agent_name or "session"
        for step in chain.steps:
            if step.tool_name not in {"Edit", "Write"} or step.tool_use_id in failure_ids:
                continue
            event = pre_events.get(step.tool_use_id)
            if event is None:
                logger.debug("No PreToolUse event for edit step %s", step.tool_use_id)
                continue
            tool_input = event.tool_input
            old_string = tool_input.get("old_string")
            new_string = tool_input.get("new_string")
            if not isinstance(new_string, str):
                new_string = tool_input.get("content")
            index.setdefault(relative_path, []).append(
                AgentEditEntry(
                    agent_name=agent_name,
                    tool_use_id=step.tool_use_id,
                    new_string_lines=_line_set(new_string if isinstance(new_string, str) else ""),
                    old_string_lines=_line_set(old_string if isinstance(old_string, str) else ""),
                    t=step.t,
                )
            )
    return index


def attribute_diff_lines(diff_lines: list[DiffLine], edit_index: list[AgentEditEntry]) -> list[DiffLine]:
    attributed: list[DiffLine] = []
    for line in diff_lines:
        trimmed = line.content.strip()
        if line.type == "context" or not trimmed:
            attributed.append(line)
            continue

        if line.type == "add":
            matches = [entry for entry in edit_index if trimmed in entry.new_string_lines]
        else:
            matches = [entry for entry in edit_index if trimmed in entry.old_string_lines]
        if not matches:
            attributed.append(line)
            continue

        best = matches[0]
        for entry in matches[1:]:
            if entry.t > best.t:
                best = entry
        attributed.append(line.model_copy(update={"agent_name": best.agent_name}))
    return attributed


def _lookup_entries(index: dict[str, list[AgentEditEntry]], relative_path: str) -> list[AgentEditEntry]:
    if relative_path in index:
        return index[relative_path]
    for key, entries in index.items():
        if key.endswith(relative_path) or relative_path.endswith(key):
            return entries
    return []


def extract_diff_attribution(
    project_dir: str,
    events: list[StoredEvent],
    edit_chains: EditChainsResult,
    capture_diff: CaptureDiffFn,
) -> list[FileDiffAttribution]:
    start_commit = get_start_commit(events)
    if start_commit is None or not edit_chains.chains:
        return []

    relative_paths = list(
        dict.fromkeys(to_relative_path(chain.file_path, project_dir) for chain in edit_chains.chains)
    )
    diffs = capture_diff(start_commit, relative_paths)
    if not diffs:
        return []

    index = build_agent_edit_index(events, edit_chains, project_dir)

    results: list[FileDiffAttribution] = []
    for relative_path, raw_diff in diffs.items():
        parsed = parse_unified_diff(raw_diff)
        if not parsed:
            continue
        lines = attribute_diff_lines(parsed, _lookup_entries(index, relative_path))
        results.append(
            FileDiffAttribution(
                file_path=relative_path,
                lines=lines,
                total_additions=sum(1 for line in lines if line.type == "add"),
                total_deletions=sum(1 for line in lines if line.type == "remove"),
            )
        )
    return results
