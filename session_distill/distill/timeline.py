"""Merged, capped timeline of everything notable that happened in a session."""
from __future__ import annotations

import math
from typing import Optional

from session_distill import config
from session_distill.distill.comm_sequence import extract_agent_lifetimes
from session_distill.distill.utils import resolve_name
from session_distill.models import (
    AgentLifetime,
    BacktrackResult,
    LinkEvent,
    PhaseInfo,
    StoredEvent,
    TimelineEntry,
    TranscriptReasoning,
    TranscriptUserMessage,
)

_PREVIEW = 200
_MESSAGE_SUMMARY_PREVIEW = 100

STRUCTURAL_TYPES = frozenset(
    {
        "phase_boundary",
        "user_prompt",
        "teammate_idle",
        "task_complete",
        "agent_spawn",
        "agent_stop",
        "task_create",
        "task_assign",
        "msg_send",
    }
)


def _str(data: dict, key: str) -> Optional[str]:
    value = data.get(key)
    return value if isinstance(value, str) else None


def _event_entries(events: list[StoredEvent]) -> list[TimelineEntry]:
    entries = []
    for event in events:
        if event.event == "PreToolUse":
            entries.append(
                TimelineEntry(t=event.t, type="tool_call", tool_name=event.tool_name, tool_use_id=event.tool_use_id)
            )
        elif event.event == "PostToolUseFailure":
            error = _str(event.data, "error")
            entries.append(
                TimelineEntry(
                    t=event.t,
                    type="failure",
                    tool_name=event.tool_name,
                    tool_use_id=event.tool_use_id,
                    content_preview=error[:_PREVIEW] if error is not None else None,
                )
            )
        elif event.event == "TeammateIdle":
            teammate = _str(event.data, "agent_name") or _str(event.data, "agent_id") or "unknown"
            entries.append(
                TimelineEntry(
                    t=event.t,
                    type="teammate_idle",
                    teammate_name=teammate,
                    content_preview=f"{teammate} idle",
                )
            )
        elif event.event == "TaskCompleted":
            subject = _str(event.data, "subject")
            entries.append(
                TimelineEntry(
                    t=event.t,
                    type="task_complete",
                    task_id=_str(event.data, "task_id"),
                    task_subject=subject,
                    content_preview=f"Task completed: {subject or 'unknown'}",
                )
            )
    return entries


def _agent_event_entries(events: list[StoredEvent], name_map: Optional[dict[str, str]]) -> list[TimelineEntry]:
    entries = []
    for event in events:
        if event.event not in {"SubagentStart", "SubagentStop"}:
            continue
        agent_id = _str(event.data, "agent_id")
        resolved = resolve_name(agent_id, name_map) if agent_id and name_map is not None else None
        label = resolved or (agent_id[:8] if agent_id else "agent")
        if event.event == "SubagentStart":
            agent_name = _str(event.data, "agent_name") or resolved
            label = agent_name or (agent_id[:8] if agent_id else "agent")
            agent_type = _str(event.data, "agent_type") or "unknown"
            entries.append(
                TimelineEntry(
                    t=event.t,
                    type="agent_spawn",
                    agent_id=agent_id,
                    agent_name=agent_name,
                    content_preview=f"Spawned {label} ({agent_type})",
                )
            )
        else:
            entries.append(
                TimelineEntry(
                    t=event.t,
                    type="agent_stop",
                    agent_id=agent_id,
                    agent_name=resolved,
                    content_preview=f"Stopped {label}",
                )
            )
    return entries


def _task_link_entries(links: list[LinkEvent], name_map: Optional[dict[str, str]]) -> list[TimelineEntry]:
    entries = []
    for link in links:
        if link.type != "task":
            continue
        if link.action == "create":
            entries.append(
                TimelineEntry(
                    t=link.t,
                    type="task_create",
                    agent_name=resolve_name(link.agent, name_map or {}) if link.agent else None,
                    content_preview=f"Task created: {link.subject or link.task_id}",
                )
            )
        elif link.action == "assign":
            entries.append(
                TimelineEntry(
                    t=link.t,
                    type="task_assign",
                    agent_name=link.owner,
                    content_preview=f"Task assigned to {link.owner or '?'}: {link.subject or link.task_id}",
                )
            )
    return entries


def _message_link_entries(links: list[LinkEvent], name_map: Optional[dict[str, str]]) -> list[TimelineEntry]:
    entries = []
    for link in links:
        if link.type != "msg_send":
            continue
        from_name = resolve_name(link.from_, name_map) if name_map is not None else link.from_
        to_name = resolve_name(link.to, name_map) if name_map is not None else link.to
        summary = f": {link.summary[:_MESSAGE_SUMMARY_PREVIEW]}" if link.summary else ""
        entries.append(
            TimelineEntry(
                t=link.t,
                type="msg_send",
                agent_name=from_name,
                msg_from=from_name,
                msg_to=to_name,
                content_preview=f"{from_name} -> {to_name}{summary}",
            )
        )
    return entries


def cap_entries(entries: list[TimelineEntry], cap: Optional[int] = None) -> list[TimelineEntry]:
    """Keep every structural entry and evenly sample the rest down to ``cap``."""
    cap = config.TIMELINE_CAP if cap is None else cap
    if len(entries) <= cap:
        return entries

    structural = [entry for entry in entries if entry.type in STRUCTURAL_TYPES]
    other = [entry for entry in entries if entry.type not in STRUCTURAL_TYPES]
    slots = max(0, cap - len(structural))
    step = max(1, math.ceil(len(other) / slots)) if slots > 0 else 1
    sampled = other[::step][:slots]
    return sorted(structural + sampled, key=lambda entry: entry.t)


def _annotate_owner(entry: TimelineEntry, lifetimes: list[AgentLifetime]) -> TimelineEntry:
    if entry.agent_id or entry.agent_name:
        return entry
    owner = next((lt for lt in lifetimes if lt.start_t <= entry.t <= lt.end_t), None)
    if owner is None:
        return entry
    return entry.model_copy(update={"agent_id": owner.agent_id, "agent_name": owner.agent_name})


def _assign_phase(entry: TimelineEntry, phases: list[PhaseInfo]) -> TimelineEntry:
    if entry.phase_index is not None:
        return entry
    # Last matching phase wins where phases touch.
    index = -1
    for position, phase in enumerate(phases):
        if phase.start_t <= entry.t <= phase.end_t:
            index = position
    return entry.model_copy(update={"phase_index": index}) if index >= 0 else entry


def extract_timeline(
    events: list[StoredEvent],
    reasoning: list[TranscriptReasoning],
    user_messages: list[TranscriptUserMessage],
    backtracks: list[BacktrackResult],
    phases: list[PhaseInfo],
    links: Optional[list[LinkEvent]] = None,
    name_map: Optional[dict[str, str]] = None,
) -> list[TimelineEntry]:
    entries = [
        *_event_entries(events),
        *_agent_event_entries(events, name_map),
        *(
            TimelineEntry(
                t=r.t,
                type="thinking",
                content_preview=r.thinking[:_PREVIEW],
                tool_use_id=r.tool_use_id,
                tool_name=r.tool_name,
            )
            for r in reasoning
        ),
        *(
            TimelineEntry(t=m.t, type="user_prompt", content_preview=m.content[:_PREVIEW])
            for m in user_messages
            if m.message_type == "prompt"
        ),
        *(
            TimelineEntry(
                t=bt.start_t,
                type="backtrack",
                tool_name=bt.tool_name,
                content_preview=f"{bt.type}: {bt.attempts} attempts",
            )
            for bt in backtracks
        ),
        *(
            TimelineEntry(t=phase.start_t, type="phase_boundary", content_preview=phase.name, phase_index=index)
            for index, phase in enumerate(phases)
        ),
    ]
    if links:
        entries.extend(_task_link_entries(links, name_map))
        entries.extend(_message_link_entries(links, name_map))

    capped = cap_entries(sorted(entries, key=lambda entry: entry.t))

    lifetimes = extract_agent_lifetimes(links, name_map) if links else []
    if lifetimes:
        capped = [_annotate_owner(entry, lifetimes) for entry in capped]
    return [_assign_phase(entry, phases) for entry in capped]
