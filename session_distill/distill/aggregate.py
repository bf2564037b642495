"""Merge sub-agent results into session-level totals."""
from __future__ import annotations

import math
from collections import Counter
from typing import Optional

from session_distill.distill.utils import flatten_agents, sanitize_agent_name
from session_distill.models import (
    AgentNode,
    AgentStats,
    AggregatedTeamData,
    BacktrackResult,
    CostEstimate,
    EditChainsResult,
    FileDiffAttribution,
    FileMapEntry,
    FileMapResult,
    StatsResult,
    TranscriptReasoning,
)

_BACKTRACK_OVERLAP_THRESHOLD = 0.5


def merge_file_maps(maps: list[FileMapResult]) -> FileMapResult:
    """Sum counts per path, keeping first-seen path order."""
    merged: dict[str, FileMapEntry] = {}
    for file_map in maps:
        for entry in file_map.files:
            existing = merged.get(entry.file_path)
            if existing is None:
                merged[entry.file_path] = entry
                continue
            merged[entry.file_path] = FileMapEntry(
                file_path=entry.file_path,
                reads=existing.reads + entry.reads,
                edits=existing.edits + entry.edits,
                writes=existing.writes + entry.writes,
                errors=existing.errors + entry.errors,
                tool_use_ids=existing.tool_use_ids + entry.tool_use_ids,
                source=existing.source or entry.source,
            )
    return FileMapResult(files=list(merged.values()))


def merge_stats(parent: StatsResult, agent_stats: list[AgentStats]) -> StatsResult:
    tool_calls = parent.tool_call_count + sum(s.tool_call_count for s in agent_stats)
    failures = parent.failure_count + sum(s.failure_count for s in agent_stats)

    unique_files = dict.fromkeys(parent.unique_files)
    tools_by_name = Counter(parent.tools_by_name)
    for stats in agent_stats:
        unique_files.update(dict.fromkeys(stats.unique_files))
        tools_by_name.update(stats.tools_by_name)

    return parent.model_copy(
        update={
            "tool_call_count": tool_calls,
            "failure_count": failures,
            "failure_rate": failures / tool_calls if tool_calls > 0 else 0.0,
            "unique_files": list(unique_files),
            "tools_by_name": dict(tools_by_name),
        }
    )


def merge_edit_chains(
    parent: EditChainsResult,
    agent_chains: list[tuple[str, EditChainsResult]],
) -> EditChainsResult:
    """Concatenate chains, tagging agent chains; keep the longest diff attribution per file."""
    tagged = [
        chain.model_copy(update={"agent_name": agent_name})
        for agent_name, result in agent_chains
        for chain in result.chains
    ]

    attributions: dict[str, FileDiffAttribution] = {}
    all_attributions = list(parent.diff_attribution or [])
    for _, result in agent_chains:
        all_attributions.extend(result.diff_attribution or [])
    for attribution in all_attributions:
        existing = attributions.get(attribution.file_path)
        if existing is None or len(attribution.lines) > len(existing.lines):
            attributions[attribution.file_path] = attribution

    return EditChainsResult(
        chains=parent.chains + tagged,
        net_changes=parent.net_changes,
        diff_attribution=list(attributions.values()) or None,
    )


def _id_overlap(ids_a: list[str], ids_b: list[str]) -> float:
    if not ids_a or not ids_b:
        return 0.0
    set_b = set(ids_b)
    shared = sum(1 for tool_use_id in ids_a if tool_use_id in set_b)
    return shared / min(len(ids_a), len(ids_b))


def merge_backtracks(
    parent: list[BacktrackResult],
    agent_backtracks: list[list[BacktrackResult]],
) -> list[BacktrackResult]:
    """Time-ordered union; same type and file with >=50% id overlap keeps the larger one."""
    ordered = sorted(parent + [b for group in agent_backtracks for b in group], key=lambda b: b.start_t)
    merged: list[BacktrackResult] = []
    for entry in ordered:
        duplicate = next(
            (
                index
                for index, existing in enumerate(merged)
                if existing.type == entry.type
                and existing.file_path == entry.file_path
                and _id_overlap(existing.tool_use_ids, entry.tool_use_ids) >= _BACKTRACK_OVERLAP_THRESHOLD
            ),
            None,
        )
        if duplicate is None:
            merged.append(entry)
        elif len(entry.tool_use_ids) > len(merged[duplicate].tool_use_ids):
            merged[duplicate] = entry
    return merged


def merge_cost_estimates(
    parent: Optional[CostEstimate],
    agent_costs: list[Optional[CostEstimate]],
) -> Optional[CostEstimate]:
    costs = [cost for cost in [parent, *agent_costs] if cost is not None]
    if not costs:
        return None

    cache_read = sum(cost.cache_read_tokens or 0 for cost in costs)
    cache_creation = sum(cost.cache_creation_tokens or 0 for cost in costs)
    total_usd = sum(cost.estimated_cost_usd for cost in costs)
    return CostEstimate(
        model=parent.model if parent is not None else costs[0].model,
        estimated_input_tokens=sum(cost.estimated_input_tokens for cost in costs),
        estimated_output_tokens=sum(cost.estimated_output_tokens for cost in costs),
        estimated_cost_usd=math.floor(total_usd * 10000 + 0.5) / 10000,
        cache_read_tokens=cache_read or None,
        cache_creation_tokens=cache_creation or None,
    )


def aggregate_team_data(
    parent_stats: StatsResult,
    parent_file_map: FileMapResult,
    parent_edit_chains: EditChainsResult,
    parent_backtracks: list[BacktrackResult],
    parent_reasoning: list[TranscriptReasoning],
    parent_cost: Optional[CostEstimate],
    agents: list[AgentNode],
) -> AggregatedTeamData:
    all_agents = flatten_agents(agents)

    agent_chains = [
        (sanitize_agent_name(agent.agent_name or agent.agent_type, agent.session_id), agent.edit_chains)
        for agent in all_agents
        if agent.edit_chains is not None
    ]

    return AggregatedTeamData(
        stats=merge_stats(parent_stats, [agent.stats for agent in all_agents if agent.stats]),
        file_map=merge_file_maps([parent_file_map] + [agent.file_map for agent in all_agents if agent.file_map]),
        edit_chains=merge_edit_chains(parent_edit_chains, agent_chains),
        backtracks=merge_backtracks(parent_backtracks, [agent.backtracks for agent in all_agents if agent.backtracks]),
        reasoning=parent_reasoning + [r for agent in all_agents for r in (agent.reasoning or [])],
        cost_estimate=merge_cost_estimates(parent_cost, [agent.cost_estimate for agent in all_agents]),
    )
