"""Attach link-derived activity (messages, tasks, idle periods, partners) to agent nodes."""
from __future__ import annotations

from typing import Optional

from session_distill.distill.utils import resolve_name
from session_distill.models import (
    AgentCommunicationPartner,
    AgentIdlePeriod,
    AgentMessage,
    AgentNode,
    AgentTaskEvent,
    LinkEvent,
    MessageLink,
)


def _spawn_name(agent_id: str, links: list[LinkEvent]) -> Optional[str]:
    for link in links:
        if link.type == "spawn" and link.agent_id == agent_id:
            return link.agent_name
    return None


def _partner_label(partner_id: str, name_map: Optional[dict[str, str]]) -> str:
    return resolve_name(partner_id, name_map) if name_map is not None else partner_id


def _agent_messages(agent_id: str, links: list[LinkEvent]) -> list[MessageLink]:
    return [
        link
        for link in links
        if link.type == "msg_send" and (link.from_ == agent_id or link.to == agent_id)
    ]


def extract_agent_messages(
    agent_id: str,
    links: list[LinkEvent],
    name_map: Optional[dict[str, str]] = None,
) -> list[AgentMessage]:
    messages = []
    for msg in _agent_messages(agent_id, links):
        sent = msg.from_ == agent_id
        messages.append(
            AgentMessage(
                t=msg.t,
                direction="sent" if sent else "received",
                partner=_partner_label(msg.to if sent else msg.from_, name_map),
                msg_type=msg.msg_type,
                summary=msg.summary or None,
            )
        )
    return sorted(messages, key=lambda message: message.t)


def extract_agent_tasks(agent_id: str, links: list[LinkEvent]) -> list[AgentTaskEvent]:
    """Task actions by session id or owner/agent name, plus completions by name."""
    agent_name = _spawn_name(agent_id, links)

    task_events: list[AgentTaskEvent] = []
    for link in links:
        if link.type != "task":
            continue
        by_name = agent_name is not None and (link.owner == agent_name or link.agent == agent_name)
        if link.session_id != agent_id and not by_name:
            continue
        task_events.append(
            AgentTaskEvent(
                t=link.t,
                action=link.action,
                task_id=link.task_id,
                subject=link.subject or None,
                status=link.status or None,
                owner=link.owner or None,
            )
        )

    if agent_name is not None:
        for link in links:
            if link.type == "task_complete" and link.agent == agent_name:
                task_events.append(
                    AgentTaskEvent(
                        t=link.t,
                        action="complete",
                        task_id=link.task_id,
                        subject=link.subject or None,
                    )
                )

    return sorted(task_events, key=lambda event: event.t)


def extract_agent_idle_periods(agent_id: str, links: list[LinkEvent]) -> list[AgentIdlePeriod]:
    agent_name = _spawn_name(agent_id, links)
    if agent_name is None:
        return []
    return [
        AgentIdlePeriod(t=link.t, teammate=link.teammate)
        for link in links
        if link.type == "teammate_idle" and link.teammate == agent_name
    ]


def extract_agent_communication_partners(
    agent_id: str,
    links: list[LinkEvent],
    name_map: Optional[dict[str, str]] = None,
) -> list[AgentCommunicationPartner]:
    messages = _agent_messages(agent_id, links)
    partner_ids = list(dict.fromkeys(msg.to if msg.from_ == agent_id else msg.from_ for msg in messages))

    partners = []
    for partner_id in partner_ids:
        sent = [m for m in messages if m.from_ == agent_id and m.to == partner_id]
        received = [m for m in messages if m.from_ == partner_id and m.to == agent_id]
        partners.append(
            AgentCommunicationPartner(
                name=_partner_label(partner_id, name_map),
                sent_count=len(sent),
                received_count=len(received),
                total_count=len(sent) + len(received),
                msg_types=sorted({m.msg_type for m in sent + received}),
            )
        )
    return sorted(partners, key=lambda partner: -partner.total_count)


def enrich_node_with_links(
    node: AgentNode,
    links: list[LinkEvent],
    name_map: Optional[dict[str, str]] = None,
) -> AgentNode:
    messages = extract_agent_messages(node.session_id, links, name_map)
    task_events = extract_agent_tasks(node.session_id, links)
    idle_periods = extract_agent_idle_periods(node.session_id, links)
    partners = extract_agent_communication_partners(node.session_id, links, name_map)

    return node.model_copy(
        update={
            "children": [enrich_node_with_links(child, links, name_map) for child in node.children],
            "messages": messages or node.messages,
            "task_events": task_events or node.task_events,
            "idle_periods": idle_periods or node.idle_periods,
            "communication_partners": partners or node.communication_partners,
        }
    )
