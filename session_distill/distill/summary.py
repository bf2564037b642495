"""Narrative summary, key metrics, top errors, and agent workload for a distilled session."""
from __future__ import annotations

import math
from collections import Counter
from typing import Optional

from session_distill.models import (
    ActiveDuration,
    AgentNode,
    AgentWorkload,
    BacktrackResult,
    DistilledSummary,
    EditChainsResult,
    FileMapEntry,
    KeyMetrics,
    PhaseInfo,
    StatsResult,
    StoredEvent,
    TeamMetrics,
    TopError,
    TranscriptReasoning,
)

_TOP_ERROR_LIMIT = 5
_ERROR_PREVIEW = 200


def format_duration_human(ms: int) -> str:
    if ms < 1000:
        return f"{ms}ms"
    total_seconds = ms // 1000
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


def _percent(ratio: float) -> int:
    return math.floor(ratio * 100 + 0.5)


def _top_tools(tools_by_name: dict[str, int], n: int) -> list[str]:
    return [name for name, _ in sorted(tools_by_name.items(), key=lambda item: -item[1])[:n]]


def _files_modified(file_map: list[FileMapEntry]) -> int:
    return sum(1 for entry in file_map if entry.edits > 0 or entry.writes > 0)


def _backtrack_breakdown(backtracks: list[BacktrackResult]) -> str:
    counts = Counter(bt.type for bt in backtracks)
    return ", ".join(f"{count} {kind.replace('_', ' ')}" for kind, count in counts.items())


def _dominant_intent(reasoning: list[TranscriptReasoning]) -> str:
    counts = Counter(r.intent_hint or "general" for r in reasoning)
    if not counts:
        return "general"
    best, best_count = "general", 0
    for intent, count in counts.items():
        if count > best_count:
            best, best_count = intent, count
    return best


def build_team_sentence(
    team_metrics: TeamMetrics,
    agents: Optional[list[AgentNode]] = None,
    stats: Optional[StatsResult] = None,
) -> str:
    utilization = (
        f" Average utilization: {_percent(team_metrics.utilization_ratio)}%."
        if team_metrics.utilization_ratio is not None
        else ""
    )
    if not agents:
        return (
            f" Team session with {team_metrics.agent_count} agents. "
            f"{team_metrics.task_completed_count} tasks completed across "
            f"{team_metrics.idle_event_count} idle transitions.{utilization}"
        )

    type_counts = Counter(agent.agent_type or "unknown" for agent in agents)
    type_breakdown = ", ".join(
        f"{count} {kind}" for kind, count in sorted(type_counts.items(), key=lambda item: -item[1])
    )
    contributors = ", ".join(
        f"{agent.agent_name or agent.agent_type} ({agent.session_id[:8]})"
        for agent in sorted(agents, key=lambda a: -a.tool_call_count)[:3]
    )

    sentence = (
        f" Team session coordinating {team_metrics.agent_count} agents ({type_breakdown}) "
        f"across {team_metrics.task_completed_count} tasks."
    )
    if contributors:
        sentence += f" Top contributors: {contributors}."
    if stats is not None and stats.failures_by_tool:
        failures = ", ".join(
            f"{tool} ({count})"
            for tool, count in sorted(stats.failures_by_tool.items(), key=lambda item: -item[1])
        )
        sentence += f" {stats.failure_count} failures concentrated in {failures}."
    return sentence + utilization


def extract_top_errors(stats: StatsResult, events: Optional[list[StoredEvent]] = None) -> list[TopError]:
    if not stats.failures_by_tool:
        return []
    ranked = sorted(stats.failures_by_tool.items(), key=lambda item: -item[1])[:_TOP_ERROR_LIMIT]
    errors = []
    for tool_name, count in ranked:
        sample = next(
            (e for e in events or [] if e.event == "PostToolUseFailure" and e.tool_name == tool_name),
            None,
        )
        message = sample.data.get("error") if sample is not None else None
        errors.append(
            TopError(
                tool_name=tool_name,
                count=count,
                sample_message=message[:_ERROR_PREVIEW] if isinstance(message, str) and message else None,
            )
        )
    return errors


def _child_tool_calls(agent: AgentNode) -> int:
    return sum(child.tool_call_count + _child_tool_calls(child) for child in agent.children)


def extract_agent_workload(agents: list[AgentNode]) -> list[AgentWorkload]:
    """Per top-level agent workload; coordinators without calls report their children's."""
    return [
        AgentWorkload(
            name=agent.agent_name or agent.agent_type,
            id=agent.session_id[:8],
            tool_calls=agent.tool_call_count if agent.tool_call_count > 0 else _child_tool_calls(agent),
            files_modified=_files_modified(agent.file_map.files) if agent.file_map else 0,
            duration_ms=agent.duration_ms,
        )
        for agent in agents
    ]


def _abandoned_count(edit_chains: EditChainsResult) -> int:
    return sum(len(chain.abandoned_edit_ids) for chain in edit_chains.chains)


def build_narrative(
    stats: StatsResult,
    backtracks: list[BacktrackResult],
    phases: list[PhaseInfo],
    file_map: list[FileMapEntry],
    reasoning: list[TranscriptReasoning],
    team_metrics: Optional[TeamMetrics] = None,
    active_duration: Optional[ActiveDuration] = None,
    agents: Optional[list[AgentNode]] = None,
    edit_chains: Optional[EditChainsResult] = None,
) -> str:
    parts = []

    active_tag = ""
    if active_duration is not None and active_duration.active_ms < stats.duration_ms:
        active_tag = f" ({format_duration_human(active_duration.active_ms)} active)"
    parts.append(
        f"A {format_duration_human(stats.duration_ms)} session{active_tag} using "
        f"{stats.model or 'unknown model'} with {stats.tool_call_count} tool calls."
    )

    if phases:
        names = ", ".join(phase.name for phase in phases)
        parts.append(f" The session had {_plural(len(phases), 'phase')}: {names}.")

    tools = ", ".join(_top_tools(stats.tools_by_name, 3)) or "none"
    parts.append(f" Primary tools: {tools}. {_plural(_files_modified(file_map), 'file')} modified.")

    if backtracks:
        parts.append(
            f" Encountered {_plural(len(backtracks), 'backtrack')} ({_backtrack_breakdown(backtracks)})."
            f" Failure rate: {stats.failure_rate * 100:.1f}%."
        )

    if reasoning:
        parts.append(
            f" {_plural(len(reasoning), 'thinking block')} captured, primarily {_dominant_intent(reasoning)}."
        )

    if edit_chains is not None and edit_chains.chains:
        abandoned = _abandoned_count(edit_chains)
        backtracked = sum(1 for chain in edit_chains.chains if chain.has_backtrack)
        if abandoned > 0 or backtracked > 0:
            parts.append(
                f" {len(edit_chains.chains)} files were modified with {_plural(abandoned, 'abandoned attempt')}"
                f" across {_plural(backtracked, 'backtrack')}."
            )

    if team_metrics is not None and team_metrics.agent_count > 0:
        parts.append(build_team_sentence(team_metrics, agents, stats))

    return "".join(parts)


def extract_summary(
    stats: StatsResult,
    backtracks: list[BacktrackResult],
    phases: list[PhaseInfo],
    file_map: list[FileMapEntry],
    reasoning: list[TranscriptReasoning],
    team_metrics: Optional[TeamMetrics] = None,
    active_duration: Optional[ActiveDuration] = None,
    agents: Optional[list[AgentNode]] = None,
    events: Optional[list[StoredEvent]] = None,
    edit_chains: Optional[EditChainsResult] = None,
) -> DistilledSummary:
    key_metrics = KeyMetrics(
        duration_human=format_duration_human(stats.duration_ms),
        tool_calls=stats.tool_call_count,
        failures=stats.failure_count,
        files_modified=_files_modified(file_map),
        backtrack_count=len(backtracks),
    )
    if active_duration is not None:
        key_metrics.active_duration_ms = active_duration.active_ms
        key_metrics.active_duration_human = format_duration_human(active_duration.active_ms)
    if edit_chains is not None:
        key_metrics.abandoned_edits = _abandoned_count(edit_chains)
        key_metrics.edit_chains_count = len(edit_chains.chains)

    top_errors = extract_top_errors(stats, events)
    tasks = team_metrics.tasks if team_metrics is not None else []

    return DistilledSummary(
        narrative=build_narrative(
            stats,
            backtracks,
            phases,
            file_map,
            reasoning,
            team_metrics=team_metrics,
            active_duration=active_duration,
            agents=agents,
            edit_chains=edit_chains,
        ),
        phases=list(phases),
        key_metrics=key_metrics,
        top_errors=top_errors or None,
        task_summary=tasks or None,
        agent_workload=extract_agent_workload(agents) if agents else None,
    )
