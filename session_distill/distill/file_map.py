"""Per-file read/edit/write/error counts from file tools and Bash commands."""
from __future__ import annotations

import re

from session_distill.models import FileMapEntry, FileMapResult, StoredEvent

FILE_TOOLS = {"Edit", "Read", "Write", "Glob", "Grep"}

_BASH_FILE_PATTERNS = (
    re.compile(r"mkdir\s+(?:-p\s+)?([^\s&|;]+)"),
    re.compile(r"(?:cp|mv|rm)\s+.*?\s+([^\s&|;]+)"),
    re.compile(r">\s*([^\s&|;]+)"),
    re.compile(r"touch\s+([^\s&|;]+)"),
)


def extract_bash_file_paths(command: str) -> list[str]:
    paths: list[str] = []
    for pattern in _BASH_FILE_PATTERNS:
        match = pattern.search(command)
        if match and match.group(1):
            paths.append(match.group(1))
    return paths


def extract_file_map(events: list[StoredEvent]) -> FileMapResult:
    entries: dict[str, FileMapEntry] = {}

    for event in events:
        if event.event not in {"PreToolUse", "PostToolUseFailure"}:
            continue
        tool_name = event.tool_name or ""
        file_path = event.file_path
        if tool_name not in FILE_TOOLS or not file_path:
            continue

        entry = entries.setdefault(file_path, FileMapEntry(file_path=file_path, source="tool"))
        entry.source = "tool"
        if event.tool_use_id:
            entry.tool_use_ids.append(event.tool_use_id)
        if event.event == "PostToolUseFailure":
            entry.errors += 1
        elif tool_name == "Read":
            entry.reads += 1
        elif tool_name == "Edit":
            entry.edits += 1
        elif tool_name == "Write":
            entry.writes += 1

    for event in events:
        if event.event != "PreToolUse" or event.tool_name != "Bash":
            continue
        command = event.tool_input.get("command")
        if not isinstance(command, str) or not command:
            continue
        for path in extract_bash_file_paths(command):
            if path not in entries:
                entries[path] = FileMapEntry(file_path=path, source="bash")

    files = sorted(entries.values(), key=lambda entry: -(entry.edits + entry.writes + entry.errors))
    return FileMapResult(files=files)
