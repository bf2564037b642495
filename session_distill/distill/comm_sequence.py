"""Chronological inter-agent communication log, conversations, and agent lifetimes."""
from __future__ import annotations

from typing import Optional

from session_distill import config
from session_distill.distill.comm_graph import id_of, name_of
from session_distill.distill.utils import resolve_parent_session, sanitize_agent_name, spawn_links
from session_distill.models import (
    AgentLifetime,
    CommunicationSequenceEntry,
    ConversationGroup,
    LinkEvent,
)

_PREVIEW_LENGTH = 120


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else f"{text[:limit]}…"


def extract_comm_sequence(
    links: list[LinkEvent],
    name_map: Optional[dict[str, str]] = None,
) -> list[CommunicationSequenceEntry]:
    """Messages, completions, and idle notifications sorted by time, oldest kept on overflow."""
    spawns = spawn_links(links)
    messages: list[CommunicationSequenceEntry] = []
    completions: list[CommunicationSequenceEntry] = []
    idles: list[CommunicationSequenceEntry] = []

    for link in links:
        if link.type == "msg_send":
            from_name = link.from_name or name_of(link.from_, name_map)
            to_name = name_of(link.to, name_map)
            messages.append(
                CommunicationSequenceEntry(
                    t=link.t,
                    from_id=link.from_,
                    from_name=from_name,
                    to_id=link.to_id or id_of(link.to, name_map),
                    to_name=to_name,
                    from_=from_name,
                    to=to_name,
                    msg_type=link.msg_type,
                    edge_type="message",
                    summary=_truncate(link.summary, _PREVIEW_LENGTH) if link.summary else None,
                    content_preview=link.content_hash or None,
                )
            )
        elif link.type in {"task_complete", "teammate_idle"}:
            agent = link.agent if link.type == "task_complete" else link.teammate
            parent_id, parent_name = resolve_parent_session(agent, spawns, name_map)
            from_name = name_of(agent, name_map)
            entry = CommunicationSequenceEntry(
                t=link.t,
                from_id=id_of(agent, name_map),
                from_name=from_name,
                to_id=parent_id,
                to_name=parent_name,
                from_=from_name,
                to=parent_name,
                msg_type="task_complete" if link.type == "task_complete" else "teammate_idle",
                edge_type="task_complete" if link.type == "task_complete" else "idle_notify",
                summary=(
                    _truncate(link.subject, _PREVIEW_LENGTH)
                    if link.type == "task_complete" and link.subject
                    else None
                ),
            )
            (completions if link.type == "task_complete" else idles).append(entry)

    ordered = sorted(messages + completions + idles, key=lambda entry: entry.t)
    return ordered[: config.COMM_SEQUENCE_CAP]


def group_by_conversation(sequence: list[CommunicationSequenceEntry]) -> list[ConversationGroup]:
    """Fold consecutive entries sharing an unordered participant pair into one group."""
    groups: list[ConversationGroup] = []
    current_pair: Optional[tuple[str, str]] = None
    for entry in sequence:
        pair = (entry.from_, entry.to) if entry.from_ < entry.to else (entry.to, entry.from_)
        if groups and pair == current_pair:
            groups[-1].messages.append(entry)
            continue
        current_pair = pair
        groups.append(ConversationGroup(participants=pair, messages=[entry]))
    return groups


def _activity_timestamps(agent_name: str, links: list[LinkEvent]) -> list[int]:
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


def infer_lifetimes_from_comms(
    links: list[LinkEvent],
    name_map: Optional[dict[str, str]] = None,
) -> list[AgentLifetime]:
    if name_map is not None:
        agent_names = list(dict.fromkeys(name_map.values()))
        name_to_id = {name: agent_id for agent_id, name in name_map.items()}
    else:
        agent_names = list(dict.fromkeys(link.to for link in links if link.type == "msg_send"))
        name_to_id = {}

    lifetimes: list[AgentLifetime] = []
    for agent_name in agent_names:
        timestamps = _activity_timestamps(agent_name, links)
        if not timestamps:
            continue
        lifetimes.append(
            AgentLifetime(
                agent_id=name_to_id.get(agent_name, agent_name),
                agent_name=agent_name,
                start_t=min(timestamps),
                end_t=max(timestamps),
                agent_type="builder",
            )
        )
    return sorted(lifetimes, key=lambda lifetime: lifetime.start_t)


def extract_agent_lifetimes(
    links: list[LinkEvent],
    name_map: Optional[dict[str, str]] = None,
) -> list[AgentLifetime]:
    """Spawn-to-stop ranges per agent; unstopped agents run to the last link."""
    spawns = spawn_links(links)
    if not spawns:
        return infer_lifetimes_from_comms(links, name_map)

    stop_t = {link.agent_id: link.t for link in links if link.type == "stop"}
    max_t = max((link.t for link in links), default=0)

    lifetimes: list[AgentLifetime] = []
    for spawn in spawns:
        raw_name = spawn.agent_name or (name_of(spawn.agent_id, name_map) if name_map is not None else None)
        lifetimes.append(
            AgentLifetime(
                agent_id=spawn.agent_id,
                agent_name=sanitize_agent_name(raw_name, spawn.agent_id) if raw_name else None,
                start_t=spawn.t,
                end_t=stop_t.get(spawn.agent_id, max_t),
                agent_type=spawn.agent_type,
            )
        )
    return sorted(lifetimes, key=lambda lifetime: lifetime.start_t)
