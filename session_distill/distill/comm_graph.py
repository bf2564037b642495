"""Weighted communication graph between cooperating agents."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from session_distill.distill.utils import resolve_id, resolve_name, resolve_parent_session, spawn_links
from session_distill.models import CommunicationEdge, LinkEvent, SpawnLink


@dataclass(frozen=True)
class RawEdge:
    from_id: str
    from_name: str
    to_id: str
    to_name: str
    edge_type: str
    msg_type: str


def name_of(agent_id: str, name_map: Optional[dict[str, str]]) -> str:
    return resolve_name(agent_id, name_map) if name_map is not None else agent_id


def id_of(name: str, name_map: Optional[dict[str, str]]) -> str:
    return resolve_id(name, name_map) if name_map is not None else name


def message_edges(links: list[LinkEvent], name_map: Optional[dict[str, str]]) -> list[RawEdge]:
    return [
        RawEdge(
            from_id=link.from_,
            from_name=link.from_name or name_of(link.from_, name_map),
            to_id=link.to_id or id_of(link.to, name_map),
            to_name=name_of(link.to, name_map),
            edge_type="message",
            msg_type=link.msg_type,
        )
        for link in links
        if link.type == "msg_send"
    ]


def notify_parent_edges(
    links: list[LinkEvent],
    spawns: list[SpawnLink],
    name_map: Optional[dict[str, str]],
) -> list[RawEdge]:
    """Completion and idle notifications flow from the agent to whoever spawned it."""
    edges: list[RawEdge] = []
    for link in links:
        if link.type == "task_complete":
            agent, edge_type, msg_type = link.agent, "task_complete", "task_complete"
        elif link.type == "teammate_idle":
            agent, edge_type, msg_type = link.teammate, "idle_notify", "teammate_idle"
        else:
            continue
        parent_id, parent_name = resolve_parent_session(agent, spawns, name_map)
        edges.append(
            RawEdge(
                from_id=id_of(agent, name_map),
                from_name=name_of(agent, name_map),
                to_id=parent_id,
                to_name=parent_name,
                edge_type=edge_type,
                msg_type=msg_type,
            )
        )
    return edges


def task_assign_edges(links: list[LinkEvent], name_map: Optional[dict[str, str]]) -> list[RawEdge]:
    edges: list[RawEdge] = []
    for link in links:
        if link.type != "task" or link.action != "assign" or link.owner is None:
            continue
        if link.agent:
            from_name, from_id = link.agent, id_of(link.agent, name_map)
        else:
            from_name, from_id = name_of(link.session_id, name_map), link.session_id
        edges.append(
            RawEdge(
                from_id=from_id,
                from_name=from_name,
                to_id=id_of(link.owner, name_map),
                to_name=link.owner,
                edge_type="task_assign",
                msg_type="task_assign",
            )
        )
    return edges


def build_comm_graph(
    links: list[LinkEvent],
    name_map: Optional[dict[str, str]] = None,
) -> list[CommunicationEdge]:
    notify = notify_parent_edges(links, spawn_links(links), name_map)
    raw_edges = (
        message_edges(links, name_map)
        + [edge for edge in notify if edge.edge_type == "task_complete"]
        + [edge for edge in notify if edge.edge_type == "idle_notify"]
        + task_assign_edges(links, name_map)
    )

    grouped: dict[tuple[str, str, str], list[RawEdge]] = {}
    for edge in raw_edges:
        grouped.setdefault((edge.from_id, edge.to_id, edge.edge_type), []).append(edge)

    graph = []
    for edges in grouped.values():
        first = edges[0]
        graph.append(
            CommunicationEdge(
                from_id=first.from_id,
                from_name=first.from_name,
                to_id=first.to_id,
                to_name=first.to_name,
                from_=first.from_name,
                to=first.to_name,
                count=len(edges),
                msg_types=sorted({edge.msg_type for edge in edges}),
                edge_type=first.edge_type,
            )
        )
    return sorted(graph, key=lambda edge: -edge.count)
