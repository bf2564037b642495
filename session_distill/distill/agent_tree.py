"""Attribute events to nested sub-agents and build the agent hierarchy.

Relationships are interval-based: an agent's interval runs from its spawn
link to its stop link (or the last event in the log when it never stopped).
Children are recomputed from ``parent_session`` rather than stored as
back-pointers.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from session_distill.config import IDLE_THRESHOLD_MS
from session_distill.distill.agent_distill import distill_agent
from session_distill.distill.file_map import extract_file_map
from session_distill.distill.stats import extract_stats
from session_distill.distill.utils import compute_effective_duration, deduplicate_spawns, spawn_links
from session_distill.models import (
    AgentNode,
    AgentStats,
    LinkEvent,
    SpawnLink,
    StopLink,
    StoredEvent,
    TranscriptEntry,
)

logger = logging.getLogger("session_distill.agent_tree")

ReadTranscriptFn = Callable[[str], list[TranscriptEntry]]
ReadAgentEventsFn = Callable[[str], list[StoredEvent]]


@dataclass(frozen=True)
class AgentInterval:
    agent_id: str
    start: int
    end: int


def _stop_links(links: list[LinkEvent]) -> list[StopLink]:
    return [link for link in links if link.type == "stop"]


def _find_stop(stops: list[StopLink], agent_id: str) -> Optional[StopLink]:
    return next((stop for stop in stops if stop.agent_id == agent_id), None)


def build_agent_intervals(events: list[StoredEvent], links: list[LinkEvent]) -> list[AgentInterval]:
    """Spawn intervals ordered so the innermost containing interval is found first."""
    stops = _stop_links(links)
    max_event_t = max((event.t for event in events), default=None)

    intervals: list[AgentInterval] = []
    for spawn in deduplicate_spawns(spawn_links(links)):
        stop = _find_stop(stops, spawn.agent_id)
        if stop is not None:
            end = stop.t
        elif max_event_t is not None:
            end = max_event_t
        else:
            end = spawn.t
        intervals.append(AgentInterval(agent_id=spawn.agent_id, start=spawn.t, end=end))

    # Later start first; on equal starts the narrower interval is the inner one.
    return sorted(intervals, key=lambda interval: (-interval.start, interval.end))


def attribute_events_to_agents(
    session_id: str,
    events: list[StoredEvent],
    links: list[LinkEvent],
) -> dict[str, list[StoredEvent]]:
    """Map agent id (or ``session_id`` for the root) to the events inside its interval."""
    intervals = build_agent_intervals(events, links)

    attributed: dict[str, list[StoredEvent]] = {}
    for event in events:
        owner = next(
            (interval.agent_id for interval in intervals if interval.start <= event.t <= interval.end),
            session_id,
        )
        attributed.setdefault(owner, []).append(event)
    return attributed


def compute_link_based_duration(
    agent_id: str,
    agent_name: Optional[str],
    spawn_t: int,
    links: list[LinkEvent],
) -> int:
    """Latest link activity attributable to the agent, measured from its spawn."""

    def is_relevant(link: LinkEvent) -> bool:
        if link.type == "msg_send":
            return link.from_ == agent_id or link.to == agent_id
        if link.type == "task":
            return link.session_id == agent_id
        if link.type == "task_complete":
            return agent_name is not None and link.agent == agent_name
        if link.type == "teammate_idle":
            return agent_name is not None and link.teammate == agent_name
        return False

    timestamps = [link.t for link in links if is_relevant(link)]
    if not timestamps:
        return 0
    return max(0, max(timestamps) - spawn_t)


def enrich_node_with_transcript(
    node: AgentNode,
    transcript_path: str,
    read_transcript: ReadTranscriptFn,
) -> AgentNode:
    result = distill_agent(read_transcript(transcript_path))
    if result is None:
        return node.model_copy(update={"transcript_path": transcript_path})

    return node.model_copy(
        update={
            "transcript_path": transcript_path,
            "model": result.model,
            "stats": result.stats,
            "file_map": result.file_map,
            "cost_estimate": result.cost_estimate,
            "tool_call_count": result.stats.tool_call_count,
            "task_prompt": result.task_prompt or None,
            "edit_chains": result.edit_chains,
            "backtracks": result.backtracks,
            "reasoning": result.reasoning,
        }
    )


def enrich_node_from_session_events(node: AgentNode, agent_events: list[StoredEvent]) -> AgentNode:
    """Fallback enrichment from the agent's own hook log when no transcript helped."""
    if not agent_events:
        return node
    stats = extract_stats(agent_events)
    file_map = extract_file_map(agent_events)
    if stats.tool_call_count == 0 and not file_map.files:
        return node

    return node.model_copy(
        update={
            "tool_call_count": stats.tool_call_count if stats.tool_call_count > 0 else node.tool_call_count,
            "model": stats.model or node.model,
            "stats": AgentStats(
                tool_call_count=stats.tool_call_count,
                failure_count=stats.failure_count,
                tools_by_name=stats.tools_by_name,
                unique_files=stats.unique_files,
            ),
            "file_map": file_map if file_map.files else node.file_map,
            "cost_estimate": stats.cost_estimate or node.cost_estimate,
        }
    )


def _agent_duration(
    spawn: SpawnLink,
    stop: Optional[StopLink],
    events: list[StoredEvent],
    links: list[LinkEvent],
) -> int:
    raw = stop.t - spawn.t if stop is not None else 0

    if raw <= IDLE_THRESHOLD_MS:
        duration = raw
    else:
        window = [event.t for event in events if spawn.t <= event.t <= stop.t]
        duration = raw if len(window) < 2 else compute_effective_duration(window).effective_duration_ms

    if duration <= 0:
        duration = compute_link_based_duration(spawn.agent_id, spawn.agent_name, spawn.t, links)
    if duration <= 0:
        duration = abs(stop.t - spawn.t) if stop is not None else 0
    return duration


def build_agent_tree(
    session_id: str,
    links: list[LinkEvent],
    events: list[StoredEvent],
    read_transcript: ReadTranscriptFn,
    read_agent_events: Optional[ReadAgentEventsFn] = None,
) -> list[AgentNode]:
    spawns = deduplicate_spawns(spawn_links(links))
    stops = _stop_links(links)

    def build_node(spawn: SpawnLink) -> AgentNode:
        stop = _find_stop(stops, spawn.agent_id)

        def in_window(event: StoredEvent) -> bool:
            return event.t >= spawn.t and (stop is None or event.t <= stop.t)

        base = AgentNode(
            session_id=spawn.agent_id,
            agent_type=spawn.agent_type,
            agent_name=spawn.agent_name,
            duration_ms=_agent_duration(spawn, stop, events, links),
            tool_call_count=sum(1 for e in events if e.event == "PreToolUse" and in_window(e)),
            children=[build_node(child) for child in spawns if child.parent_session == spawn.agent_id],
        )

        if stop is not None and stop.transcript_path:
            enriched = enrich_node_with_transcript(base, stop.transcript_path, read_transcript)
            transcript_calls = enriched.stats.tool_call_count if enriched.stats else 0
            if enriched.tool_call_count == 0 and transcript_calls > 0:
                enriched = enriched.model_copy(update={"tool_call_count": transcript_calls})
            if enriched.tool_call_count > 0 or transcript_calls > 0:
                return enriched
            logger.debug("Transcript for agent %s yielded no tool calls", spawn.agent_id)

        if read_agent_events is not None and base.tool_call_count == 0:
            from_events = enrich_node_from_session_events(base, read_agent_events(spawn.agent_id))
            if from_events.tool_call_count > 0:
                return from_events

        return base

    return [build_node(spawn) for spawn in spawns if spawn.parent_session == session_id]


def infer_agents_from_comms(session_id: str, links: list[LinkEvent]) -> list[AgentNode]:
    """Reconstruct teammates from message recipients when no spawn links were captured."""
    recipients: dict[str, None] = {}
    for link in links:
        if link.type == "msg_send" and (link.from_ == session_id or link.session_id == session_id):
            recipients[link.to] = None
    if not recipients:
        return []

    name_to_uuid: dict[str, str] = {}
    for link in links:
        if link.type == "task" and link.owner and link.session_id and link.session_id != session_id:
            name_to_uuid[link.owner] = link.session_id

    def activity(agent_name: str) -> list[int]:
        timestamps: list[int] = []
        for link in links:
            if link.type == "msg_send" and (link.to == agent_name or link.from_name == agent_name):
                timestamps.append(link.t)
            elif link.type == "task" and link.owner == agent_name:
                timestamps.append(link.t)
            elif link.type == "task_complete" and link.agent == agent_name:
                timestamps.append(link.t)
            elif link.type == "teammate_idle" and link.teammate == agent_name:
                timestamps.append(link.t)
        return timestamps

    nodes: list[AgentNode] = []
    for agent_name in recipients:
        timestamps = activity(agent_name)
        nodes.append(
            AgentNode(
                session_id=name_to_uuid.get(agent_name, agent_name),
                agent_type="builder",
                agent_name=agent_name,
                duration_ms=max(timestamps) - min(timestamps) if timestamps else 0,
                tool_call_count=0,
                children=[],
            )
        )
    return nodes
