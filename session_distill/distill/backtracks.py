"""Detect unproductive repetition: failure retries, iteration struggles, and debugging loops.

Each detector runs over the same chronologically ordered event stream and is
independent of the others. Results are deduplicated so that one underlying
struggle is reported under a single label: debugging loops win over the
retries and struggles they contain, and no returned result's tool-use ids are
a subset of another's.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from session_distill.models import BacktrackResult, StoredEvent

RETRY_LOOKAHEAD = 10
STRUGGLE_WINDOW_MS = 5 * 60 * 1000
STRUGGLE_MIN_EDITS = 4
LOOP_MAX_CHAIN = 50
LOOP_MAX_GAP_MS = 5 * 60 * 1000
LOOP_MIN_ATTEMPTS = 3


def _error_message(event: StoredEvent) -> Optional[str]:
    error = event.data.get("error")
    return error[:500] if isinstance(error, str) else None


def _command(event: StoredEvent) -> Optional[str]:
    command = event.tool_input.get("command")
    return command[:300] if isinstance(command, str) else None


def detect_failure_retries(events: list[StoredEvent]) -> list[BacktrackResult]:
    """A failure followed, within the next nine events, by a call to the same tool."""
    results: list[BacktrackResult] = []
    for index, failure in enumerate(events):
        if failure.event != "PostToolUseFailure" or failure.is_interrupt:
            continue
        tool_name = failure.tool_name or ""
        window = events[index + 1:min(index + RETRY_LOOKAHEAD, len(events))]
        retry = next(
            (e for e in window if e.event == "PreToolUse" and e.data.get("tool_name") == tool_name),
            None,
        )
        if retry is None:
            continue
        results.append(
            BacktrackResult(
                type="failure_retry",
                tool_name=tool_name,
                file_path=failure.file_path,
                attempts=2,
                start_t=failure.t,
                end_t=retry.t,
                tool_use_ids=[failure.tool_use_id or "", retry.tool_use_id or ""],
                error_message=_error_message(failure),
                command=_command(failure),
            )
        )
    return results


def detect_iteration_struggles(events: list[StoredEvent]) -> list[BacktrackResult]:
    """Four or more Edit/Write calls on one file inside a five-minute window."""
    edits_by_file: dict[str, list[tuple[int, str]]] = {}
    for event in events:
        if event.event != "PreToolUse" or event.tool_name not in {"Edit", "Write"}:
            continue
        file_path = event.file_path
        if not file_path:
            continue
        edits_by_file.setdefault(file_path, []).append((event.t, event.tool_use_id or ""))

    results: list[BacktrackResult] = []
    for file_path, edits in edits_by_file.items():
        window: list[tuple[int, str]] = []
        for start in range(max(0, len(edits) - (STRUGGLE_MIN_EDITS - 1))):
            start_t = edits[start][0]
            window = [edit for edit in edits if start_t <= edit[0] <= start_t + STRUGGLE_WINDOW_MS]
            if len(window) >= STRUGGLE_MIN_EDITS:
                break
        else:
            continue
        results.append(
            BacktrackResult(
                type="iteration_struggle",
                tool_name="Edit",
                file_path=file_path,
                attempts=len(window),
                start_t=window[0][0],
                end_t=window[-1][0],
                tool_use_ids=[tool_use_id for _, tool_use_id in window],
            )
        )
    return results


@dataclass
class _BashEntry:
    event: StoredEvent
    index: int


def _walk_debug_chain(
    events: list[StoredEvent],
    start: _BashEntry,
    subsequent: list[_BashEntry],
) -> list[_BashEntry]:
    items: list[_BashEntry] = []
    last_t = start.event.t
    last_index = start.index
    for entry in subsequent:
        if len(items) >= LOOP_MAX_CHAIN:
            break
        if entry.event.t - last_t > LOOP_MAX_GAP_MS:
            break
        interleaved = any(
            e.event == "PreToolUse" and e.data.get("tool_name") != "Bash"
            for e in events[last_index + 1:entry.index]
        )
        if interleaved:
            break
        # Failures keep the chain alive but are not attempts themselves.
        if entry.event.event == "PreToolUse":
            items.append(entry)
        last_t = entry.event.t
        last_index = entry.index
    return items


def detect_debugging_loops(events: list[StoredEvent]) -> list[BacktrackResult]:
    """A failing Bash command followed by a run of further Bash attempts."""
    bash_entries = [
        _BashEntry(event=event, index=index)
        for index, event in enumerate(events)
        if event.event in {"PreToolUse", "PostToolUseFailure"} and event.data.get("tool_name") == "Bash"
    ]

    results: list[BacktrackResult] = []
    for position, entry in enumerate(bash_entries):
        if entry.event.event != "PostToolUseFailure" or entry.event.is_interrupt:
            continue
        chain = _walk_debug_chain(events, entry, bash_entries[position + 1:])
        attempts = [entry.event.tool_use_id or ""] + [item.event.tool_use_id or "" for item in chain]
        if len(attempts) < LOOP_MIN_ATTEMPTS:
            continue
        results.append(
            BacktrackResult(
                type="debugging_loop",
                tool_name="Bash",
                attempts=len(attempts),
                start_t=entry.event.t,
                end_t=chain[-1].event.t,
                tool_use_ids=attempts,
                error_message=_error_message(entry.event),
                command=_command(entry.event),
            )
        )
    return results


def _drop_subsumed(results: list[BacktrackResult]) -> list[BacktrackResult]:
    id_sets = [set(result.tool_use_ids) for result in results]
    kept: list[int] = []
    for index, ids in enumerate(id_sets):
        if any(ids <= id_sets[earlier] for earlier in kept):
            continue
        if any(ids < id_sets[later] for later in range(index + 1, len(id_sets))):
            continue
        kept.append(index)
    return [results[index] for index in kept]


def deduplicate_backtracks(
    retries: list[BacktrackResult],
    struggles: list[BacktrackResult],
    loops: list[BacktrackResult],
) -> list[BacktrackResult]:
    loop_sets = [set(loop.tool_use_ids) for loop in loops]
    deduped_loops = [
        loop
        for index, loop in enumerate(loops)
        if not any(all(i in loop_sets[other] for i in loop.tool_use_ids[1:]) for other in range(index))
    ]

    loop_ids = {tool_use_id for loop in deduped_loops for tool_use_id in loop.tool_use_ids}
    deduped_retries = [r for r in retries if not all(i in loop_ids for i in r.tool_use_ids)]
    deduped_struggles = [s for s in struggles if not all(i in loop_ids for i in s.tool_use_ids)]

    return _drop_subsumed(deduped_retries + deduped_struggles + deduped_loops)


def extract_backtracks(events: list[StoredEvent]) -> list[BacktrackResult]:
    return deduplicate_backtracks(
        detect_failure_retries(events),
        detect_iteration_struggles(events),
        detect_debugging_loops(events),
    )
