"""User-side transcript text, classified by message kind."""
from __future__ import annotations

import re
from typing import Optional

from session_distill.models import TranscriptEntry, TranscriptUserMessage

_CONTENT_LIMIT = 2000
_TEAMMATE_NAME_PATTERN = re.compile(r'<teammate-message[^>]*\bname="([^"]+)"')
_IMAGE_PATH_PATTERN = re.compile(r"\[Image:\s*([^\]]+)\]")


def classify_message_type(content: str) -> str:
    if "<command-name>" in content or "<command-message>" in content:
        return "command"
    if "<teammate-message" in content:
        return "teammate"
    if "[Image:" in content or "screenshot" in content:
        return "image"
    if "<local-command" in content or "<system-reminder" in content:
        return "system"
    return "prompt"


def _build_message(t: int, raw_content: str) -> TranscriptUserMessage:
    message_type = classify_message_type(raw_content)
    teammate_name: Optional[str] = None
    image_path: Optional[str] = None
    if message_type == "teammate":
        match = _TEAMMATE_NAME_PATTERN.search(raw_content)
        teammate_name = match.group(1) if match else None
    elif message_type == "image":
        match = _IMAGE_PATH_PATTERN.search(raw_content)
        image_path = match.group(1).strip() if match else None

    return TranscriptUserMessage(
        t=t,
        content=raw_content[:_CONTENT_LIMIT],
        is_tool_result=False,
        message_type=message_type,
        teammate_name=teammate_name,
        image_path=image_path,
    )


def extract_user_messages(entries: list[TranscriptEntry]) -> list[TranscriptUserMessage]:
    messages: list[TranscriptUserMessage] = []
    for entry in entries:
        if entry.type != "user" or entry.message is None:
            continue
        content = entry.message.content
        if isinstance(content, str):
            messages.append(_build_message(entry.t, content))
            continue
        for block in content:
            if block.type == "text":
                messages.append(_build_message(entry.t, block.text))
    return messages
