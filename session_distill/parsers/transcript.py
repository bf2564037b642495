"""Read agent transcript JSONL files."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from session_distill.models import TRANSCRIPT_BLOCK_TYPES, StoredEvent, TranscriptEntry

logger = logging.getLogger("session_distill.parsers.transcript")

_KEPT_ENTRY_TYPES = {"user", "assistant"}


def _read_lines(path: Path) -> list[str]:
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        logger.debug("Transcript %s unreadable: %s", path, exc)
        return []
    return [line for line in content.strip().splitlines() if line.strip()]


def _drop_unknown_blocks(raw: dict[str, Any]) -> dict[str, Any]:
    message = raw.get("message")
    if not isinstance(message, dict) or not isinstance(message.get("content"), list):
        return raw
    blocks = [
        block
        for block in message["content"]
        if isinstance(block, dict) and block.get("type") in TRANSCRIPT_BLOCK_TYPES
    ]
    return {**raw, "message": {**message, "content": blocks}}


def parse_transcript_line(line: str) -> Optional[TranscriptEntry]:
    try:
        raw = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(raw, dict) or raw.get("type") not in _KEPT_ENTRY_TYPES:
        return None
    if not isinstance(raw.get("uuid"), str) or not isinstance(raw.get("timestamp"), str):
        return None
    try:
        return TranscriptEntry.model_validate(_drop_unknown_blocks(raw))
    except ValidationError:
        return None


def read_transcript(transcript_path: str | Path) -> list[TranscriptEntry]:
    """User and assistant entries ordered by timestamp; anything unparseable is skipped."""
    entries = [entry for line in _read_lines(Path(transcript_path)) if (entry := parse_transcript_line(line))]
    return sorted(entries, key=lambda entry: entry.t)


def resolve_transcript_path(events: list[StoredEvent]) -> Optional[str]:
    for event in events:
        path = event.data.get("transcript_path")
        if isinstance(path, str) and path:
            return path
    return None


def _strip_title(raw: str) -> str:
    title = raw.strip()
    if len(title) >= 2 and title.startswith('"') and title.endswith('"'):
        title = title[1:-1]
    return title.replace("&amp;", "&")


def read_session_name(transcript_path: str | Path) -> Optional[str]:
    """Last ``custom-title`` set in the transcript; users may rename a session repeatedly."""
    name: Optional[str] = None
    for line in _read_lines(Path(transcript_path)):
        try:
            raw = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(raw, dict) and raw.get("type") == "custom-title" and isinstance(raw.get("customTitle"), str):
            name = _strip_title(raw["customTitle"])
    return name
