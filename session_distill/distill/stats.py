"""Tool tallies, failure rates, and cost estimation over a session's events."""
from __future__ import annotations

import math
from collections import Counter
from typing import Any, Optional

from session_distill.distill.utils import compute_effective_duration
from session_distill.models import (
    CostEstimate,
    StatsResult,
    StoredEvent,
    TokenUsage,
    TranscriptReasoning,
)

# USD per million tokens, matched by model-id prefix.
MODEL_PRICING: dict[str, dict[str, float]] = {
    "claude-opus-4": {"input": 15, "output": 75, "cache_read": 1.5, "cache_write": 18.75},
    "claude-sonnet-4": {"input": 3, "output": 15, "cache_read": 0.3, "cache_write": 3.75},
    "claude-haiku-4": {"input": 0.8, "output": 4, "cache_read": 0.08, "cache_write": 1.0},
}

_TOOL_EVENTS = {"PreToolUse", "PostToolUse", "PostToolUseFailure"}


def find_model_pricing(model: str) -> Optional[dict[str, float]]:
    for prefix, pricing in MODEL_PRICING.items():
        if model.startswith(prefix):
            return pricing
    return None


def _round_usd(value: float) -> float:
    return math.floor(value * 10000 + 0.5) / 10000


def _coerce_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


def extract_model(events: list[StoredEvent]) -> Optional[str]:
    """SessionStart context model, else any ``data.model``, else a ConfigChange config model."""
    for event in events:
        if event.event == "SessionStart" and event.context and event.context.model:
            return event.context.model

    for event in events:
        model = event.data.get("model")
        if isinstance(model, str) and model:
            return model

    for event in events:
        if event.event != "ConfigChange":
            continue
        config = event.data.get("config")
        if isinstance(config, dict) and isinstance(config.get("model"), str):
            return config["model"]
    return None


def estimate_cost_from_tokens(
    model: str,
    input_tokens: int,
    output_tokens: int,
    cache_read_tokens: Optional[int] = None,
    cache_creation_tokens: Optional[int] = None,
) -> Optional[CostEstimate]:
    pricing = find_model_pricing(model)
    if pricing is None:
        return None

    cost = (
        input_tokens / 1_000_000 * pricing["input"]
        + output_tokens / 1_000_000 * pricing["output"]
        + (cache_read_tokens or 0) / 1_000_000 * pricing["cache_read"]
        + (cache_creation_tokens or 0) / 1_000_000 * pricing["cache_write"]
    )
    return CostEstimate(
        model=model,
        estimated_input_tokens=input_tokens,
        estimated_output_tokens=output_tokens,
        estimated_cost_usd=_round_usd(cost),
        cache_read_tokens=cache_read_tokens or None,
        cache_creation_tokens=cache_creation_tokens or None,
        is_estimated=False,
    )


def extract_event_token_usage(events: list[StoredEvent]) -> Optional[TokenUsage]:
    """Sum ``usage``/``token_usage`` payloads; None when no event reports tokens."""
    total: Optional[TokenUsage] = None
    for event in events:
        usage = event.data.get("usage")
        if usage is None:
            usage = event.data.get("token_usage")
        if not isinstance(usage, dict):
            continue
        input_tokens = _coerce_int(usage.get("input_tokens"))
        output_tokens = _coerce_int(usage.get("output_tokens"))
        if input_tokens <= 0 and output_tokens <= 0:
            continue
        if total is None:
            total = TokenUsage()
        total.input_tokens += input_tokens
        total.output_tokens += output_tokens
        total.cache_read_tokens += _coerce_int(usage.get("cache_read_tokens"))
        total.cache_creation_tokens += _coerce_int(usage.get("cache_creation_tokens"))
    return total


def estimate_cost_heuristic(
    model: Optional[str],
    total_events: int,
    tool_call_count: int,
    reasoning: list[TranscriptReasoning],
) -> Optional[CostEstimate]:
    # Rough per-event and per-call token allowances, plus ~4 chars per token of thinking.
    if not model:
        return None
    pricing = find_model_pricing(model)
    if pricing is None:
        return None

    reasoning_chars = sum(len(item.thinking) for item in reasoning)
    input_tokens = total_events * 500 + math.ceil(reasoning_chars / 4)
    output_tokens = tool_call_count * 200 + math.ceil(reasoning_chars / 4)
    cost = input_tokens / 1_000_000 * pricing["input"] + output_tokens / 1_000_000 * pricing["output"]
    return CostEstimate(
        model=model,
        estimated_input_tokens=input_tokens,
        estimated_output_tokens=output_tokens,
        estimated_cost_usd=_round_usd(cost),
        is_estimated=True,
    )


def extract_stats(
    events: list[StoredEvent],
    reasoning: Optional[list[TranscriptReasoning]] = None,
) -> StatsResult:
    if not events:
        return StatsResult()

    events_by_type = Counter(event.event for event in events)
    model = extract_model(events)

    tool_events = [event for event in events if event.event in _TOOL_EVENTS]
    tools_by_name: Counter[str] = Counter()
    failures_by_tool: Counter[str] = Counter()
    unique_files: dict[str, None] = {}
    for event in tool_events:
        name = event.tool_name
        if event.event == "PreToolUse" and name:
            tools_by_name[name] += 1
        if event.event == "PostToolUseFailure" and name and not event.is_interrupt:
            failures_by_tool[name] += 1
        if event.file_path is not None:
            unique_files[event.file_path] = None

    tool_call_count = sum(tools_by_name.values())
    failure_count = sum(failures_by_tool.values())

    token_usage = extract_event_token_usage(events)
    if token_usage is not None and model:
        cost_estimate = estimate_cost_from_tokens(
            model,
            token_usage.input_tokens,
            token_usage.output_tokens,
            token_usage.cache_read_tokens,
            token_usage.cache_creation_tokens,
        )
    else:
        cost_estimate = estimate_cost_heuristic(model, len(events), tool_call_count, reasoning or [])

    duration = compute_effective_duration(event.t for event in events)

    return StatsResult(
        total_events=len(events),
        duration_ms=duration.effective_duration_ms,
        events_by_type=dict(events_by_type),
        tools_by_name=dict(tools_by_name),
        tool_call_count=tool_call_count,
        failure_count=failure_count,
        failure_rate=failure_count / tool_call_count if tool_call_count > 0 else 0.0,
        unique_files=list(unique_files),
        model=model,
        cost_estimate=cost_estimate,
        failures_by_tool=dict(failures_by_tool) or None,
    )
