"""Chain /clear and /compact continuations into journeys and classify each phase."""
from __future__ import annotations

import re
from typing import Optional

from session_distill import config
from session_distill.models import (
    CumulativeStats,
    Journey,
    JourneyPhase,
    PhaseTransition,
    SessionChainInput,
    StatsResult,
)

_SPEC_REF_PATTERN = re.compile(r"specs/\S+\.md")
_PLAN_WORD_PATTERN = re.compile(r"/plan(?:\b|$)")

_CONTINUATION_SOURCES = {"clear", "compact"}
_PROMPT_PREVIEW = 200
_PROMPT_SHIFT_PREVIEW = 80


def chain_sessions(sessions: list[SessionChainInput]) -> list[list[str]]:
    """Group sessions into chains of continuations.

    A session continues the previous one when it was started by ``clear`` or
    ``compact``, began within ``CHAIN_GAP_THRESHOLD_MS`` of the previous
    session's end, and both ran in the same known working directory.
    """
    if not sessions:
        return []

    ordered = sorted(sessions, key=lambda s: s.start_time)
    groups: list[list[str]] = []
    current = [ordered[0].session_id]
    prev = ordered[0]
    for session in ordered[1:]:
        prev_end = prev.end_time if prev.end_time is not None else prev.start_time
        gap = session.start_time - prev_end
        chainable = (
            session.source in _CONTINUATION_SOURCES
            and gap <= config.CHAIN_GAP_THRESHOLD_MS
            and prev.cwd is not None
            and session.cwd is not None
            and prev.cwd == session.cwd
        )
        if chainable:
            current.append(session.session_id)
        else:
            groups.append(current)
            current = [session.session_id]
        prev = session
    groups.append(current)
    return groups


def classify_phase(chain_input: SessionChainInput) -> tuple[str, Optional[str]]:
    """Return ``(phase_type, spec_ref)`` from the first prompt, tool mix, and size."""
    prompt = chain_input.first_prompt or ""

    if "/prime" in prompt:
        return "prime", None
    if "/brainstorm" in prompt:
        return "brainstorm", None
    if "/plan_w_team" in prompt or _PLAN_WORD_PATTERN.search(prompt):
        return "plan", None
    if "/build" in prompt:
        match = _SPEC_REF_PATTERN.search(prompt)
        return "build", match.group(0) if match else None
    if "/review" in prompt:
        return "review", None
    if "/test" in prompt:
        return "test", None
    if "commit" in prompt:
        return "commit", None

    tools = chain_input.tools_by_name
    if tools:
        read_ops = tools.get("Read", 0) + tools.get("Glob", 0) + tools.get("Grep", 0)
        write_ops = tools.get("Edit", 0) + tools.get("Write", 0)
        if read_ops / max(write_ops, 1) > 3.0:
            return "exploration", None
        if tools.get("TaskCreate", 0) > 3:
            return "orchestrated_build", None

    if chain_input.duration_ms < 30_000 and chain_input.event_count < 15:
        return "abort", None
    return "freeform", None


def build_transition(from_input: SessionChainInput, to_input: SessionChainInput) -> PhaseTransition:
    from_end = from_input.end_time if from_input.end_time is not None else from_input.start_time
    return PhaseTransition(
        from_session=from_input.session_id,
        to_session=to_input.session_id,
        gap_ms=to_input.start_time - from_end,
        trigger="compact_auto" if to_input.source == "compact" else "clear",
        git_changed=(
            from_input.git_commit is not None
            and to_input.git_commit is not None
            and from_input.git_commit != to_input.git_commit
        ),
        prompt_shift=(to_input.first_prompt or "")[:_PROMPT_SHIFT_PREVIEW],
    )


def classify_lifecycle(phases: list[JourneyPhase]) -> str:
    if len(phases) == 1:
        return "single-session"
    phase_types = {phase.phase_type for phase in phases}
    if {"prime", "plan", "build"} <= phase_types:
        return "prime-plan-build"
    if {"prime", "build"} <= phase_types:
        return "prime-build"
    if "build" in phase_types:
        return "build-only"
    return "ad-hoc"


def compute_cumulative_stats(phases: list[JourneyPhase], stats_map: dict[str, StatsResult]) -> CumulativeStats:
    matched = [stats_map[phase.session_id] for phase in phases if phase.session_id in stats_map]
    return CumulativeStats(
        total_duration_ms=sum(phase.duration_ms for phase in phases),
        total_events=sum(phase.event_count for phase in phases),
        total_tool_calls=sum(stats.tool_call_count for stats in matched),
        total_failures=sum(stats.failure_count for stats in matched),
        phase_count=len(phases),
        retry_count=sum(1 for phase in phases if phase.phase_type == "abort"),
    )


def _build_phase(session_id: str, chain_input: Optional[SessionChainInput]) -> JourneyPhase:
    if chain_input is None:
        return JourneyPhase(session_id=session_id, phase_type="freeform", source="startup")
    phase_type, spec_ref = classify_phase(chain_input)
    source = chain_input.source if chain_input.source in _CONTINUATION_SOURCES else "startup"
    return JourneyPhase(
        session_id=session_id,
        phase_type=phase_type,
        prompt=chain_input.first_prompt[:_PROMPT_PREVIEW] if chain_input.first_prompt is not None else None,
        spec_ref=spec_ref,
        source=source,
        duration_ms=chain_input.duration_ms,
        event_count=chain_input.event_count,
    )


def compose_journey(
    chain: list[str],
    input_map: dict[str, SessionChainInput],
    stats_map: dict[str, StatsResult],
) -> Journey:
    phases = [_build_phase(session_id, input_map.get(session_id)) for session_id in chain]

    transitions: list[PhaseTransition] = []
    for from_id, to_id in zip(chain, chain[1:]):
        from_input, to_input = input_map.get(from_id), input_map.get(to_id)
        if from_input is None or to_input is None:
            transitions.append(
                PhaseTransition(
                    from_session=from_id,
                    to_session=to_id,
                    gap_ms=0,
                    trigger="clear",
                    git_changed=False,
                    prompt_shift="",
                )
            )
        else:
            transitions.append(build_transition(from_input, to_input))

    return Journey(
        id=chain[0][:8],
        phases=phases,
        transitions=transitions,
        spec_ref=next((phase.spec_ref for phase in phases if phase.phase_type == "build"), None),
        lifecycle_type=classify_lifecycle(phases),
        cumulative_stats=compute_cumulative_stats(phases, stats_map),
    )
