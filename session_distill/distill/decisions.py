"""Timing-gap, tool-pivot, phase, and agent-coordination decision log."""
from __future__ import annotations

from collections import Counter
from typing import Optional

from session_distill.models import (
    AgentSpawnDecision,
    DecisionPoint,
    LinkEvent,
    PhaseBoundaryDecision,
    PhaseInfo,
    StoredEvent,
    TaskCompletionDecision,
    TaskDelegationDecision,
    TimingGapDecision,
    ToolPivotDecision,
)

TIMING_GAP_THRESHOLD_MS = 30_000
SESSION_PAUSE_THRESHOLD_MS = 300_000
NOISE_THRESHOLD_MS = 60_000
PHASE_BOUNDARY_GAP_MS = 300_000
PHASE_TOOL_SHIFT_GAP_MS = 120_000
LOOKAHEAD_WINDOW = 10

_READ_TOOLS = {"Read", "Glob", "Grep"}
_EDIT_TOOLS = {"Edit", "Write"}
_RESEARCH_TOOLS = {"WebSearch", "WebFetch"}


def _tool_counts(events: list[StoredEvent]) -> Counter[str]:
    return Counter(event.tool_name for event in events if event.tool_name)


def _top_tool(events: list[StoredEvent]) -> Optional[str]:
    # Ties go to the tool seen first.
    best: Optional[str] = None
    best_count = 0
    for tool, count in _tool_counts(events).items():
        if count > best_count:
            best, best_count = tool, count
    return best


def _phase_name(tool: Optional[str], has_failures: bool) -> str:
    if tool in _READ_TOOLS:
        return "File Exploration"
    if tool in _EDIT_TOOLS:
        return "Code Modification"
    if tool in _RESEARCH_TOOLS:
        return "Research"
    if tool == "Bash" and has_failures:
        return "Debugging"
    return "General"


# ── Timing gaps ─────────────────────────────────────────────────────

def classify_gap(gap_ms: int, gap_start: int, gap_end: int, prompt_times: list[int]) -> str:
    if any(gap_start < t <= gap_end for t in prompt_times):
        return "user_idle"
    if gap_ms > SESSION_PAUSE_THRESHOLD_MS:
        return "session_pause"
    return "agent_thinking"


def extract_raw_timing_gaps(events: list[StoredEvent]) -> list[TimingGapDecision]:
    """Every inter-event gap over 30s, classified. Feeds the active-duration calculation."""
    prompt_times = [event.t for event in events if event.event == "UserPromptSubmit"]
    gaps: list[TimingGapDecision] = []
    for prev, current in zip(events, events[1:]):
        gap_ms = current.t - prev.t
        if gap_ms <= TIMING_GAP_THRESHOLD_MS:
            continue
        gaps.append(
            TimingGapDecision(
                t=current.t,
                gap_ms=gap_ms,
                classification=classify_gap(gap_ms, prev.t, current.t, prompt_times),
            )
        )
    return gaps


def extract_timing_gaps(events: list[StoredEvent]) -> list[TimingGapDecision]:
    return [
        gap
        for gap in extract_raw_timing_gaps(events)
        if gap.gap_ms >= NOISE_THRESHOLD_MS or gap.classification == "session_pause"
    ]


def extract_tool_pivots(events: list[StoredEvent]) -> list[ToolPivotDecision]:
    pivots: list[ToolPivotDecision] = []
    for index, event in enumerate(events):
        if event.event != "PostToolUseFailure" or not event.tool_name:
            continue
        lookahead = events[index + 1:index + 1 + LOOKAHEAD_WINDOW]
        following = next((e for e in lookahead if e.event == "PreToolUse" and e.tool_name), None)
        if following is None or following.tool_name == event.tool_name:
            continue
        pivots.append(
            ToolPivotDecision(
                t=following.t,
                from_tool=event.tool_name,
                to_tool=following.tool_name,
                after_failure=True,
            )
        )
    return pivots


# ── Phases ──────────────────────────────────────────────────────────

def _is_phase_boundary(events: list[StoredEvent], index: int) -> bool:
    if index == 0:
        return False
    gap_ms = events[index].t - events[index - 1].t
    if gap_ms > PHASE_BOUNDARY_GAP_MS:
        return True
    if gap_ms > PHASE_TOOL_SHIFT_GAP_MS:
        before = _top_tool(events[max(0, index - LOOKAHEAD_WINDOW):index])
        after = _top_tool(events[index:index + LOOKAHEAD_WINDOW])
        return before is not None and after is not None and before != after
    return False


def _build_phase(phase_events: list[StoredEvent]) -> PhaseInfo:
    counts = _tool_counts(phase_events)
    tool_types = [tool for tool, _ in sorted(counts.items(), key=lambda item: -item[1])]
    name = _phase_name(
        tool_types[0] if tool_types else None,
        any(event.event == "PostToolUseFailure" for event in phase_events),
    )
    return PhaseInfo(
        name=name,
        start_t=phase_events[0].t if phase_events else 0,
        end_t=phase_events[-1].t if phase_events else 0,
        tool_types=tool_types,
        description=f"{name} phase with {len(phase_events)} events",
    )


def _unique_tool_types(events: list[StoredEvent]) -> list[str]:
    return list(dict.fromkeys(event.tool_name for event in events if event.tool_name))


def has_task_links(links: list[LinkEvent]) -> bool:
    return any(link.type == "task" for link in links)


def build_team_phases(events: list[StoredEvent], links: list[LinkEvent]) -> list[PhaseInfo]:
    """Planning until the first assignment, Build until a validator spawns, then Validation."""
    session_start = events[0].t if events else 0
    session_end = events[-1].t if events else 0

    task_links = [
        link for link in links if link.type == "task" and session_start <= link.t <= session_end
    ]
    first_assignment = next((link for link in task_links if link.action == "assign"), None)
    validator_spawns = [link.t for link in links if link.type == "spawn" and link.agent_type == "validator"]

    def phase(name: str, start: int, end: int, phase_events: list[StoredEvent]) -> PhaseInfo:
        return PhaseInfo(
            name=name,
            start_t=start,
            end_t=end,
            tool_types=_unique_tool_types(phase_events),
            description=f"{name} phase with {len(phase_events)} events",
        )

    phases: list[PhaseInfo] = []
    planning_end = first_assignment.t if first_assignment else session_start
    if planning_end > session_start:
        planning_events = [e for e in events if session_start <= e.t < planning_end]
        phases.append(phase("Planning", session_start, planning_end, planning_events))

    build_start = first_assignment.t if first_assignment else session_start
    raw_build_end = min(validator_spawns + [session_end]) if validator_spawns else session_end
    build_end = min(max(raw_build_end, build_start), session_end)
    phases.append(phase("Build", build_start, build_end, [e for e in events if build_start <= e.t < build_end]))

    if validator_spawns:
        phases.append(phase("Validation", build_end, session_end, [e for e in events if e.t >= build_end]))

    clamped = []
    for item in phases:
        start = max(item.start_t, session_start)
        end = max(min(item.end_t, session_end), start)
        clamped.append(item.model_copy(update={"start_t": start, "end_t": end}))
    return clamped


def extract_phases(events: list[StoredEvent], links: Optional[list[LinkEvent]] = None) -> list[PhaseInfo]:
    if not events:
        return []
    if links and has_task_links(links):
        return build_team_phases(events, links)

    boundaries = [0] + [index for index in range(len(events)) if _is_phase_boundary(events, index)]
    phases = []
    for position, start in enumerate(boundaries):
        end = boundaries[position + 1] if position + 1 < len(boundaries) else len(events)
        phases.append(_build_phase(events[start:end]))
    return phases


# ── Agent coordination ──────────────────────────────────────────────

def extract_agent_decisions(links: list[LinkEvent]) -> list[DecisionPoint]:
    spawns: list[DecisionPoint] = []
    delegations: list[DecisionPoint] = []
    completions: list[DecisionPoint] = []
    for link in links:
        if link.type == "spawn":
            spawns.append(
                AgentSpawnDecision(
                    t=link.t,
                    agent_id=link.agent_id,
                    agent_name=link.agent_name or link.agent_type,
                    agent_type=link.agent_type,
                    parent_session=link.parent_session,
                )
            )
        elif link.type == "task" and link.action == "assign":
            delegations.append(
                TaskDelegationDecision(
                    t=link.t,
                    task_id=link.task_id,
                    agent_name=link.owner or link.agent or "unknown",
                    subject=link.subject or None,
                )
            )
        elif link.type == "task_complete":
            completions.append(
                TaskCompletionDecision(
                    t=link.t,
                    task_id=link.task_id,
                    agent_name=link.agent,
                    subject=link.subject or None,
                )
            )
    return spawns + delegations + completions


def extract_decisions(
    events: list[StoredEvent],
    links: Optional[list[LinkEvent]] = None,
    phases: Optional[list[PhaseInfo]] = None,
) -> list[DecisionPoint]:
    """All decision kinds merged into one time-ordered log.

    Phase boundaries come from ``phases`` when supplied, otherwise from the
    gap-based segmentation of ``events`` alone.
    """
    if phases is None:
        phases = extract_phases(events)

    boundaries = [
        PhaseBoundaryDecision(t=phase.start_t, phase_name=phase.name, phase_index=index)
        for index, phase in enumerate(phases)
        if index > 0
    ]
    agent_decisions = extract_agent_decisions(links) if links else []

    decisions: list[DecisionPoint] = [
        *extract_timing_gaps(events),
        *extract_tool_pivots(events),
        *boundaries,
        *agent_decisions,
    ]
    return sorted(decisions, key=lambda decision: decision.t)
