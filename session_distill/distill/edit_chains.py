"""Per-file edit timelines annotated with reasoning and backtrack labels."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from session_distill.models import (
    BacktrackResult,
    EditChain,
    EditChainsResult,
    EditStep,
    StoredEvent,
    TranscriptReasoning,
)

_EDIT_TOOLS = {"Edit", "Write"}
_PREVIEW_LIMIT = 200
_THINKING_PREVIEW_LIMIT = 300
_RECOVERY_READ_WINDOW = 3


@dataclass
class EditLookups:
    reasoning_by_id: dict[str, TranscriptReasoning] = field(default_factory=dict)
    backtrack_by_id: dict[str, BacktrackResult] = field(default_factory=dict)
    failure_ids: set[str] = field(default_factory=set)
    failure_event_by_id: dict[str, StoredEvent] = field(default_factory=dict)


def _preview(value: Any, limit: int) -> Optional[str]:
    return value[:limit] if isinstance(value, str) else None


def _count_lines(value: Any) -> Optional[int]:
    return len(value.split("\n")) if isinstance(value, str) else None


def _is_edit_event(event: StoredEvent) -> bool:
    return event.event in {"PreToolUse", "PostToolUseFailure"} and event.tool_name in _EDIT_TOOLS


def build_edit_lookups(
    events: list[StoredEvent],
    reasoning: list[TranscriptReasoning],
    backtracks: list[BacktrackResult],
) -> EditLookups:
    """Index reasoning, backtracks, and failures by tool-use id, once per run."""
    lookups = EditLookups()
    for entry in reasoning:
        if entry.tool_use_id is not None:
            lookups.reasoning_by_id[entry.tool_use_id] = entry
    # Later backtracks override earlier ones for a shared id.
    for backtrack in backtracks:
        for tool_use_id in backtrack.tool_use_ids:
            lookups.backtrack_by_id[tool_use_id] = backtrack
    for event in events:
        if event.event != "PostToolUseFailure" or event.tool_use_id is None:
            continue
        lookups.failure_ids.add(event.tool_use_id)
        lookups.failure_event_by_id[event.tool_use_id] = event
    return lookups


def _is_recovery_read(file_events: list[StoredEvent], index: int) -> bool:
    has_prior_edit = any(_is_edit_event(e) for e in file_events[:index])
    has_later_edit = any(_is_edit_event(e) for e in file_events[index + 1:])
    if has_prior_edit and has_later_edit:
        return True
    recent = file_events[max(0, index - _RECOVERY_READ_WINDOW):index]
    return any(e.event == "PostToolUseFailure" for e in recent)


def group_and_filter_edit_events(events: list[StoredEvent]) -> list[tuple[str, list[StoredEvent]]]:
    """Group edit-relevant events by file, dropping read-only files and non-recovery reads."""
    grouped: dict[str, list[StoredEvent]] = {}
    for event in events:
        tool_name = event.tool_name
        if tool_name is None:
            continue
        if event.event == "PreToolUse":
            relevant = tool_name in _EDIT_TOOLS or tool_name == "Read"
        elif event.event == "PostToolUseFailure":
            relevant = tool_name in _EDIT_TOOLS
        else:
            relevant = False
        file_path = event.file_path
        if relevant and file_path is not None:
            grouped.setdefault(file_path, []).append(event)

    filtered: list[tuple[str, list[StoredEvent]]] = []
    for file_path, file_events in grouped.items():
        if not any(_is_edit_event(e) for e in file_events):
            continue
        kept = [
            event
            for index, event in enumerate(file_events)
            if not (event.event == "PreToolUse" and event.tool_name == "Read")
            or _is_recovery_read(file_events, index)
        ]
        filtered.append((file_path, kept))
    return filtered


def _build_step(event: StoredEvent, lookups: EditLookups) -> EditStep:
    tool_use_id = event.tool_use_id or ""
    tool_name = event.tool_name or ""
    tool_input = event.tool_input

    if tool_name == "Read":
        outcome = "info"
    elif tool_use_id in lookups.failure_ids:
        outcome = "failure"
    else:
        outcome = "success"

    failure_event = lookups.failure_event_by_id.get(tool_use_id)
    reasoning = lookups.reasoning_by_id.get(tool_use_id)
    backtrack = lookups.backtrack_by_id.get(tool_use_id)

    return EditStep(
        tool_use_id=tool_use_id,
        t=event.t,
        tool_name=tool_name,
        outcome=outcome,
        old_string_preview=_preview(tool_input.get("old_string"), _PREVIEW_LIMIT),
        new_string_preview=_preview(tool_input.get("new_string"), _PREVIEW_LIMIT),
        old_string_lines=_count_lines(tool_input.get("old_string")),
        new_string_lines=_count_lines(tool_input.get("new_string")),
        content_lines=_count_lines(tool_input.get("content")),
        error_preview=_preview(failure_event.data.get("error"), _PREVIEW_LIMIT) if failure_event else None,
        thinking_preview=_preview(reasoning.thinking, _THINKING_PREVIEW_LIMIT) if reasoning else None,
        thinking_intent=reasoning.intent_hint if reasoning else None,
        backtrack_type=backtrack.type if backtrack else None,
    )


def _assemble_chain(file_path: str, steps: list[EditStep]) -> EditChain:
    edit_steps = [step for step in steps if step.tool_name in _EDIT_TOOLS]
    return EditChain(
        file_path=file_path,
        steps=steps,
        total_edits=len(edit_steps),
        total_failures=sum(1 for step in steps if step.outcome == "failure"),
        total_reads=sum(1 for step in steps if step.tool_name == "Read"),
        effort_ms=steps[-1].t - steps[0].t if len(steps) > 1 else 0,
        has_backtrack=any(step.backtrack_type is not None for step in steps),
        surviving_edit_ids=[step.tool_use_id for step in edit_steps if step.outcome == "success"],
        abandoned_edit_ids=[step.tool_use_id for step in edit_steps if step.outcome == "failure"],
    )


def extract_edit_chains(
    events: list[StoredEvent],
    reasoning: list[TranscriptReasoning],
    backtracks: list[BacktrackResult],
) -> EditChainsResult:
    lookups = build_edit_lookups(events, reasoning, backtracks)

    chains: list[EditChain] = []
    for file_path, file_events in group_and_filter_edit_events(events):
        steps = [_build_step(event, lookups) for event in file_events if event.event == "PreToolUse"]
        chains.append(_assemble_chain(file_path, steps))

    # sorted() is stable, so ties keep insertion order.
    chains = sorted(chains, key=lambda chain: -(chain.total_failures + chain.total_edits))
    return EditChainsResult(chains=chains)
