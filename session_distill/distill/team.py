"""Team-level metrics: agent count, completed tasks, idle transitions, utilization."""
from __future__ import annotations

from typing import Optional

from session_distill.distill.utils import spawn_links
from session_distill.models import IdleTransition, LinkEvent, TeamMetrics, TeamTask


def infer_agent_names_from_comms(links: list[LinkEvent], session_id: Optional[str] = None) -> list[str]:
    names: dict[str, None] = {}
    for link in links:
        if link.type == "msg_send":
            if session_id and (link.from_ == session_id or link.session_id == session_id):
                names[link.to] = None
        elif link.type == "task" and link.owner:
            names[link.owner] = None
        elif link.type == "task_complete" and link.agent:
            names[link.agent] = None
        elif link.type == "teammate_idle" and link.teammate:
            names[link.teammate] = None
    return list(names)


def extract_team_metrics(
    links: list[LinkEvent],
    known_agent_ids: Optional[set[str]] = None,
    session_id: Optional[str] = None,
) -> TeamMetrics:
    spawns = spawn_links(links)
    agent_ids = known_agent_ids if known_agent_ids is not None else {s.agent_id for s in spawns}
    agent_names = {s.agent_name for s in spawns if s.agent_id in agent_ids and s.agent_name is not None}

    inferred_names = (
        infer_agent_names_from_comms(links, session_id) if not spawns and not agent_ids else []
    )

    # Idle links may carry the raw agent id when the spawn had no name.
    name_or_id = agent_names | agent_ids | set(inferred_names)
    task_match = name_or_id | {session_id} if session_id else name_or_id

    completions = [
        link
        for link in links
        if link.type == "task_complete"
        and (link.agent in task_match or (session_id is not None and link.session_id == session_id))
    ]
    idles = [link for link in links if link.type == "teammate_idle" and link.teammate in name_or_id]

    spawn_agent_count = len({s.agent_id for s in spawns if s.agent_id in agent_ids})
    agent_count = spawn_agent_count if spawn_agent_count > 0 else len(inferred_names)

    teammate_names = list(
        dict.fromkeys(
            [s.agent_name or s.agent_id for s in spawns if s.agent_id in agent_ids]
            + inferred_names
            + [link.agent for link in completions]
            + [link.teammate for link in idles]
        )
    )

    stops = [link for link in links if link.type == "stop"]
    total_agent_time = 0
    for spawn in spawns:
        stop = next((s for s in stops if s.agent_id == spawn.agent_id), None)
        if stop is not None:
            total_agent_time += stop.t - spawn.t

    # An idle period lasts until the next non-idle link.
    total_idle_time = 0
    for idle in idles:
        following = next((link for link in links if link.t > idle.t and link.type != "teammate_idle"), None)
        if following is not None:
            total_idle_time += following.t - idle.t

    utilization = None
    if total_agent_time > 0:
        utilization = max(0.0, min(1.0, 1 - total_idle_time / total_agent_time))

    return TeamMetrics(
        agent_count=agent_count,
        task_completed_count=len(completions),
        idle_event_count=len(idles),
        teammate_names=teammate_names,
        tasks=[TeamTask(task_id=link.task_id, agent=link.agent, subject=link.subject, t=link.t) for link in completions],
        idle_transitions=[IdleTransition(teammate=link.teammate, t=link.t) for link in idles],
        utilization_ratio=utilization,
    )
