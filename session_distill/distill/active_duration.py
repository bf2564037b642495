"""Active time: session duration minus user-idle and session-pause gaps."""
from __future__ import annotations

from session_distill.models import ActiveDuration, TimingGapDecision


def compute_active_duration(timing_gaps: list[TimingGapDecision], total_duration_ms: int) -> ActiveDuration:
    idle_ms = sum(gap.gap_ms for gap in timing_gaps if gap.classification == "user_idle")
    pause_ms = sum(gap.gap_ms for gap in timing_gaps if gap.classification == "session_pause")
    return ActiveDuration(
        active_ms=max(0, total_duration_ms - idle_ms - pause_ms),
        idle_ms=idle_ms,
        pause_ms=pause_ms,
    )
