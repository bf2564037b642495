"""Orchestrates every extractor into one DistilledSession.

The engine performs no I/O of its own: events and links come in as lists, and
transcripts, sub-agent logs, git, and plan files are read through the injected
callables so the whole pipeline can run against in-memory fixtures.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from session_distill.distill.active_duration import compute_active_duration
from session_distill.distill.agent_distill import extract_agent_model, extract_token_usage
from session_distill.distill.agent_enrich import enrich_node_with_links
from session_distill.distill.agent_tree import (
    ReadAgentEventsFn,
    ReadTranscriptFn,
    build_agent_tree,
    infer_agents_from_comms,
)
from session_distill.distill.aggregate import aggregate_team_data
from session_distill.distill.backtracks import extract_backtracks
from session_distill.distill.comm_graph import build_comm_graph
from session_distill.distill.comm_sequence import extract_agent_lifetimes, extract_comm_sequence
from session_distill.distill.decisions import extract_decisions, extract_phases, extract_raw_timing_gaps
from session_distill.distill.diff_attribution import extract_diff_attribution
from session_distill.distill.edit_chains import extract_edit_chains
from session_distill.distill.file_map import extract_file_map
from session_distill.distill.plan_drift import compute_plan_drift, detect_spec_ref
from session_distill.distill.reasoning import extract_reasoning
from session_distill.distill.stats import estimate_cost_from_tokens, extract_stats
from session_distill.distill.summary import extract_summary
from session_distill.distill.team import extract_team_metrics
from session_distill.distill.timeline import extract_timeline
from session_distill.distill.user_messages import extract_user_messages
from session_distill.distill.utils import build_name_map, filter_links_for_session, spawn_links
from session_distill.models import (
    AgentNode,
    DistilledSession,
    FileMapResult,
    GitDiffResult,
    LinkEvent,
    PlanDriftReport,
    StoredEvent,
    TokenUsage,
    TranscriptReasoning,
    TranscriptUserMessage,
    WorkingTreeChange,
)
from session_distill.parsers.transcript import resolve_transcript_path

logger = logging.getLogger("session_distill.engine")

ReadSpecFn = Callable[[str], Optional[str]]
ReadSessionNameFn = Callable[[str], Optional[str]]

ROOT_AGENT_NAME = "leader"


class GitSource(Protocol):
    def extract_git_diff(self, events: list[StoredEvent]) -> GitDiffResult: ...

    def extract_net_changes(self, events: list[StoredEvent]) -> list[WorkingTreeChange]: ...

    def capture_unified_diff(self, start_commit: str, relative_paths: list[str]) -> dict[str, str]: ...


@dataclass
class _TranscriptData:
    reasoning: list[TranscriptReasoning] = field(default_factory=list)
    user_messages: list[TranscriptUserMessage] = field(default_factory=list)
    transcript_path: Optional[str] = None
    token_usage: Optional[TokenUsage] = None
    model: Optional[str] = None
    session_name: Optional[str] = None


def _load_transcript(
    events: list[StoredEvent],
    read_transcript: ReadTranscriptFn,
    read_session_name: Optional[ReadSessionNameFn],
) -> _TranscriptData:
    data = _TranscriptData()
    path = resolve_transcript_path(events)
    if path is None:
        return data

    data.transcript_path = path
    data.session_name = read_session_name(path) if read_session_name is not None else None
    entries = read_transcript(path)
    if not entries:
        return data

    usage = extract_token_usage(entries)
    data.reasoning = extract_reasoning(entries)
    data.user_messages = extract_user_messages(entries)
    data.token_usage = usage if usage.input_tokens > 0 else None
    data.model = extract_agent_model(entries)
    return data


def _collect_prompts(user_messages: list[TranscriptUserMessage], events: list[StoredEvent]) -> list[str]:
    prompts = [m.content for m in user_messages if m.message_type in {"prompt", "command"}]
    for event in events:
        prompt = event.data.get("prompt")
        if event.event == "UserPromptSubmit" and isinstance(prompt, str):
            prompts.append(prompt)
    return prompts


def _plan_drift(
    prompts: list[str],
    tool_call_count: int,
    file_map: FileMapResult,
    project_dir: str,
    read_spec: Optional[ReadSpecFn],
) -> Optional[PlanDriftReport]:
    spec_ref = detect_spec_ref(prompts)
    if spec_ref is None or tool_call_count == 0 or read_spec is None:
        return None
    content = read_spec(spec_ref)
    if content is None:
        logger.debug("Plan %s referenced but not readable", spec_ref)
        return None
    return compute_plan_drift(spec_ref, content, [file_map], project_dir)


def _resolve_agents(
    session_id: str,
    session_links: list[LinkEvent],
    events: list[StoredEvent],
    name_map: Optional[dict[str, str]],
    read_transcript: ReadTranscriptFn,
    read_agent_events: Optional[ReadAgentEventsFn],
) -> list[AgentNode]:
    if not session_links:
        return []

    tree = build_agent_tree(session_id, session_links, events, read_transcript, read_agent_events)
    if tree:
        return [enrich_node_with_links(node, session_links, name_map) for node in tree]

    inferred = infer_agents_from_comms(session_id, session_links)
    if not inferred:
        return []
    merged = dict(name_map or {})
    merged.update({node.session_id: node.agent_name or node.agent_type for node in inferred})
    return [enrich_node_with_links(node, session_links, merged) for node in inferred]


def _final_name_map(
    session_id: str,
    name_map: Optional[dict[str, str]],
    agents: list[AgentNode],
    has_links: bool,
) -> dict[str, str]:
    merged = dict(name_map or {})
    for agent in agents:
        merged.setdefault(agent.session_id, agent.agent_name or agent.agent_type)
    if has_links:
        merged.setdefault(session_id, ROOT_AGENT_NAME)
    return merged


def distill(
    session_id: str,
    project_dir: str,
    events: list[StoredEvent],
    links: list[LinkEvent],
    *,
    read_transcript: ReadTranscriptFn,
    read_agent_events: Optional[ReadAgentEventsFn] = None,
    git: Optional[GitSource] = None,
    read_spec: Optional[ReadSpecFn] = None,
    read_session_name: Optional[ReadSessionNameFn] = None,
) -> DistilledSession:
    transcript = _load_transcript(events, read_transcript, read_session_name)

    session_links = filter_links_for_session(session_id, links)
    has_links = bool(session_links)
    name_map = build_name_map(session_links) if has_links else None

    stats = extract_stats(events, transcript.reasoning)
    backtracks = extract_backtracks(events)
    decisions = extract_decisions(events, session_links or None)
    file_map = extract_file_map(events)
    git_diff = git.extract_git_diff(events) if git is not None else GitDiffResult()

    plan_drift = _plan_drift(
        _collect_prompts(transcript.user_messages, events),
        stats.tool_call_count,
        file_map,
        project_dir,
        read_spec,
    )

    edit_chains = extract_edit_chains(events, transcript.reasoning, backtracks)
    if git is not None:
        net_changes = git.extract_net_changes(events)
        diff_attribution = extract_diff_attribution(project_dir, events, edit_chains, git.capture_unified_diff)
        edit_chains = edit_chains.model_copy(
            update={
                "net_changes": net_changes or None,
                "diff_attribution": diff_attribution or None,
            }
        )

    agents = _resolve_agents(
        session_id, session_links, events, name_map, read_transcript, read_agent_events
    )
    final_name_map = _final_name_map(session_id, name_map, agents, has_links)

    team_metrics = communication_graph = comm_sequence = agent_lifetimes = None
    if has_links:
        agent_ids = {spawn.agent_id for spawn in spawn_links(session_links)}
        team_metrics = extract_team_metrics(session_links, agent_ids, session_id)
        communication_graph = build_comm_graph(session_links, final_name_map)
        comm_sequence = extract_comm_sequence(session_links, final_name_map)
        agent_lifetimes = extract_agent_lifetimes(session_links, final_name_map)

    # Model: hook events, then the transcript, then the first agent that reported one.
    inferred_model = stats.model or transcript.model or next((a.model for a in agents if a.model), None)
    cost = stats.cost_estimate
    if inferred_model and transcript.token_usage is not None:
        usage = transcript.token_usage
        cost = (
            estimate_cost_from_tokens(
                inferred_model,
                usage.input_tokens,
                usage.output_tokens,
                usage.cache_read_tokens,
                usage.cache_creation_tokens,
            )
            or stats.cost_estimate
        )
    stats = stats.model_copy(update={"model": inferred_model, "cost_estimate": cost})

    effective_file_map = file_map
    effective_edit_chains = edit_chains
    effective_backtracks = backtracks
    effective_reasoning = transcript.reasoning
    if agents:
        aggregated = aggregate_team_data(
            stats, file_map, edit_chains, backtracks, transcript.reasoning, stats.cost_estimate, agents
        )
        stats = aggregated.stats.model_copy(
            update={"cost_estimate": aggregated.cost_estimate or aggregated.stats.cost_estimate}
        )
        effective_file_map = aggregated.file_map
        effective_edit_chains = aggregated.edit_chains
        effective_backtracks = aggregated.backtracks
        effective_reasoning = aggregated.reasoning

    active_duration = compute_active_duration(extract_raw_timing_gaps(events), stats.duration_ms)
    if active_duration.active_ms == 0 and agents:
        # Parent gaps alone can hide team work; fall back to wall time.
        active_duration = active_duration.model_copy(update={"active_ms": stats.duration_ms})

    phases = extract_phases(events, session_links or None)
    summary = extract_summary(
        stats,
        effective_backtracks,
        phases,
        effective_file_map.files,
        effective_reasoning,
        team_metrics=team_metrics,
        active_duration=active_duration,
        agents=agents or None,
        events=events,
        edit_chains=effective_edit_chains,
    )
    timeline = extract_timeline(
        events,
        effective_reasoning,
        transcript.user_messages,
        effective_backtracks,
        phases,
        session_links or None,
        final_name_map,
    )

    return DistilledSession(
        session_id=session_id,
        session_name=transcript.session_name or None,
        start_time=events[0].t if events else None,
        stats=stats,
        backtracks=effective_backtracks,
        decisions=decisions,
        file_map=effective_file_map,
        git_diff=git_diff,
        edit_chains=effective_edit_chains,
        reasoning=effective_reasoning,
        user_messages=transcript.user_messages,
        transcript_path=transcript.transcript_path,
        summary=summary,
        timeline=timeline,
        agents=agents or None,
        team_metrics=team_metrics if team_metrics is not None and team_metrics.agent_count > 0 else None,
        communication_graph=communication_graph or None,
        comm_sequence=comm_sequence or None,
        agent_lifetimes=agent_lifetimes or None,
        plan_drift=plan_drift,
        complete=True,
    )
