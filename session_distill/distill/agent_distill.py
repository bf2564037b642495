"""Distill a sub-agent from its own transcript."""
from __future__ import annotations

import json
from typing import Optional

from session_distill.distill.backtracks import extract_backtracks
from session_distill.distill.edit_chains import extract_edit_chains
from session_distill.distill.file_map import extract_file_map
from session_distill.distill.reasoning import extract_reasoning
from session_distill.distill.stats import extract_stats
from session_distill.models import (
    AgentDistillResult,
    AgentStats,
    StoredEvent,
    TokenUsage,
    ToolResultBlock,
    ToolUseBlock,
    TranscriptEntry,
)


def transcript_to_events(entries: list[TranscriptEntry]) -> list[StoredEvent]:
    """Synthesize PreToolUse and PostToolUseFailure events from transcript blocks."""
    tool_uses: dict[str, ToolUseBlock] = {}
    pre_events: list[StoredEvent] = []
    for entry in entries:
        if entry.type != "assistant":
            continue
        for block in entry.blocks:
            if not isinstance(block, ToolUseBlock):
                continue
            tool_uses[block.id] = block
            pre_events.append(
                StoredEvent(
                    t=entry.t,
                    event="PreToolUse",
                    sid=entry.sessionId,
                    data={"tool_name": block.name, "tool_input": block.input, "tool_use_id": block.id},
                )
            )

    failure_events: list[StoredEvent] = []
    for entry in entries:
        if entry.type != "user":
            continue
        for block in entry.blocks:
            if not isinstance(block, ToolResultBlock) or block.is_error is not True:
                continue
            tool_use = tool_uses.get(block.tool_use_id)
            error = block.content if isinstance(block.content, str) else json.dumps(block.content, separators=(",", ":"))
            failure_events.append(
                StoredEvent(
                    t=entry.t,
                    event="PostToolUseFailure",
                    sid=entry.sessionId,
                    data={
                        "tool_name": tool_use.name if tool_use else "unknown",
                        "tool_input": tool_use.input if tool_use else {},
                        "tool_use_id": block.tool_use_id,
                        "error": error,
                    },
                )
            )

    return sorted(pre_events + failure_events, key=lambda event: event.t)


def extract_token_usage(entries: list[TranscriptEntry]) -> TokenUsage:
    """Sum assistant usage; ``input_tokens`` excludes cache reads and cache writes."""
    total = TokenUsage()
    for entry in entries:
        if entry.type != "assistant" or entry.message is None or entry.message.usage is None:
            continue
        usage = entry.message.usage
        total.input_tokens += usage.input_tokens or 0
        total.output_tokens += usage.output_tokens or 0
        total.cache_read_tokens += usage.cache_read_input_tokens or 0
        total.cache_creation_tokens += usage.cache_creation_input_tokens or 0
    return total


def extract_task_prompt(entries: list[TranscriptEntry]) -> Optional[str]:
    first = next(
        (e for e in entries if e.type == "user" and e.message is not None and e.message.role == "user"),
        None,
    )
    if first is None:
        return None
    content = first.message.content
    if isinstance(content, str):
        return content
    for block in content:
        if block.type == "text":
            return block.text
    return None


def extract_agent_model(entries: list[TranscriptEntry]) -> Optional[str]:
    first = next((e for e in entries if e.type == "assistant"), None)
    if first is None or first.message is None:
        return None
    return first.message.model


def distill_agent(entries: list[TranscriptEntry]) -> Optional[AgentDistillResult]:
    if not entries:
        return None

    events = transcript_to_events(entries)
    stats = extract_stats(events)
    token_usage = extract_token_usage(entries)
    reasoning = extract_reasoning(entries)
    backtracks = extract_backtracks(events)
    edit_chains = extract_edit_chains(events, reasoning, backtracks)

    return AgentDistillResult(
        stats=AgentStats(
            tool_call_count=stats.tool_call_count,
            failure_count=stats.failure_count,
            tools_by_name=stats.tools_by_name,
            unique_files=stats.unique_files,
            token_usage=token_usage,
        ),
        file_map=extract_file_map(events),
        model=extract_agent_model(entries),
        token_usage=token_usage,
        cost_estimate=stats.cost_estimate,
        task_prompt=extract_task_prompt(entries),
        reasoning=reasoning or None,
        backtracks=backtracks or None,
        edit_chains=edit_chains if edit_chains.chains else None,
    )
