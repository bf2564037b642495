"""Shared helpers for the distill pipeline: durations, agent names, and link filtering."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from session_distill.config import IDLE_THRESHOLD_MS
from session_distill.models import (
    BROADCAST_EVENTS,
    AgentNode,
    LinkEvent,
    SpawnLink,
    StoredEvent,
)

_UUID_LIKE_PATTERN = re.compile(r"^[0-9a-f]{16,}$", re.IGNORECASE)


@dataclass(frozen=True)
class EffectiveDuration:
    effective_duration_ms: int
    idle_gaps_ms: int
    effective_end_t: int
    wall_duration_ms: int


def compute_effective_duration(
    timestamps: Iterable[int],
    idle_threshold_ms: int = IDLE_THRESHOLD_MS,
) -> EffectiveDuration:
    """Wall-clock span of ``timestamps`` minus every gap longer than the idle threshold."""
    ordered = sorted(timestamps)
    if not ordered:
        return EffectiveDuration(0, 0, 0, 0)
    if len(ordered) == 1:
        return EffectiveDuration(0, 0, ordered[0], 0)

    wall = ordered[-1] - ordered[0]
    idle_gaps = 0
    effective_end = ordered[-1]
    for index in range(len(ordered) - 1, 0, -1):
        gap = ordered[index] - ordered[index - 1]
        if gap > idle_threshold_ms:
            idle_gaps += gap
            effective_end = ordered[index - 1]

    return EffectiveDuration(
        effective_duration_ms=max(0, wall - idle_gaps),
        idle_gaps_ms=idle_gaps,
        effective_end_t=effective_end,
        wall_duration_ms=wall,
    )


def spawn_links(links: Iterable[LinkEvent]) -> list[SpawnLink]:
    return [link for link in links if link.type == "spawn"]


def deduplicate_spawns(spawns: Iterable[SpawnLink]) -> list[SpawnLink]:
    """Keep the first spawn per agent id; resumed agents emit a second spawn."""
    seen: set[str] = set()
    unique: list[SpawnLink] = []
    for spawn in spawns:
        if spawn.agent_id in seen:
            continue
        seen.add(spawn.agent_id)
        unique.append(spawn)
    return unique


def flatten_agents(agents: Iterable[AgentNode]) -> list[AgentNode]:
    flat: list[AgentNode] = []
    for agent in agents:
        flat.append(agent)
        flat.extend(flatten_agents(agent.children))
    return flat


def is_uuid_like(value: str) -> bool:
    return bool(_UUID_LIKE_PATTERN.match(value))


def sanitize_agent_name(raw_name: Optional[str], agent_id: str) -> str:
    """Human-friendly agent label, falling back to the first 8 chars of the id."""
    if raw_name and not is_uuid_like(raw_name):
        return raw_name
    return agent_id[:8]


def find_last_meaningful_event(events: list[StoredEvent]) -> Optional[StoredEvent]:
    for event in reversed(events):
        if event.event not in BROADCAST_EVENTS:
            return event
    return events[-1] if events else None


def is_ghost_session(events: list[StoredEvent]) -> bool:
    """A session file holding only broadcast events was never really used."""
    return bool(events) and all(event.event in BROADCAST_EVENTS for event in events)


# ── Name resolution ─────────────────────────────────────────────────
# Order for any agent reference: explicit field on the link, then the
# session-wide name map, then the raw identifier.

def build_name_map(links: Iterable[LinkEvent]) -> dict[str, str]:
    return {
        spawn.agent_id: spawn.agent_name or spawn.agent_type
        for spawn in deduplicate_spawns(spawn_links(links))
    }


def resolve_name(agent_id: str, name_map: dict[str, str]) -> str:
    return name_map.get(agent_id, agent_id)


def resolve_id(name: str, name_map: dict[str, str]) -> str:
    for agent_id, agent_name in name_map.items():
        if agent_name == name:
            return agent_id
    return name


def resolve_explicit(explicit: Optional[str], agent_id: str, name_map: dict[str, str]) -> str:
    if explicit:
        return explicit
    return resolve_name(agent_id, name_map)


def build_reverse_name_map(name_map: dict[str, str]) -> dict[str, str]:
    return {name: agent_id for agent_id, name in name_map.items()}


def resolve_parent_session(
    agent_name_or_id: str,
    spawns: list[SpawnLink],
    name_map: Optional[dict[str, str]] = None,
) -> tuple[str, str]:
    """Return ``(parent_id, parent_name)`` of the spawn matching the agent, else the leader."""
    for spawn in spawns:
        if spawn.agent_name == agent_name_or_id or spawn.agent_id == agent_name_or_id:
            parent = spawn.parent_session
            parent_name = resolve_name(parent, name_map) if name_map is not None else parent
            return parent, parent_name
    return "leader", "leader"


def filter_links_for_session(session_id: str, links: list[LinkEvent]) -> list[LinkEvent]:
    """Keep links belonging to ``session_id`` or any agent it (transitively) spawned.

    ``task_complete`` and ``teammate_idle`` links may only carry an agent name,
    so they also match by name. Two sessions that spawn agents sharing a name
    will see each other's completions and idle notifications.
    """
    spawns = spawn_links(links)

    agent_ids = {session_id}
    while True:
        expanded = agent_ids | {spawn.agent_id for spawn in spawns if spawn.parent_session in agent_ids}
        if len(expanded) == len(agent_ids):
            break
        agent_ids = expanded

    agent_names = {
        spawn.agent_name
        for spawn in spawns
        if spawn.agent_id in agent_ids and spawn.agent_name is not None
    }

    def matches(link: LinkEvent) -> bool:
        if link.type == "spawn":
            return link.parent_session in agent_ids or link.agent_id in agent_ids
        if link.type == "stop":
            return link.agent_id in agent_ids
        if link.type == "msg_send":
            return link.from_ in agent_ids or link.session_id in agent_ids or link.to in agent_names
        if link.type == "task":
            return link.session_id in agent_ids
        if link.type == "task_complete":
            return (link.session_id is not None and link.session_id in agent_ids) or link.agent in agent_names
        if link.type == "teammate_idle":
            return (link.session_id is not None and link.session_id in agent_ids) or link.teammate in agent_names
        if link.type == "team":
            return link.leader_session in agent_ids
        # session_end, config_change, worktree_create, worktree_remove
        return link.session in agent_ids

    return [link for link in links if matches(link)]
