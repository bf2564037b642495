"""Thinking blocks from assistant turns, tagged with intent and the tool call they precede."""
from __future__ import annotations

import re
from typing import Optional

from session_distill.models import ToolUseBlock, TranscriptEntry, TranscriptReasoning

THINKING_TRUNCATE_LIMIT = 5000

_INTENT_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("debugging", re.compile(r"\b(error|fix|bug|fail|crash|broken|issue|wrong|debug)\b")),
    ("planning", re.compile(r"\b(plan|approach|strategy|design|architect|phase|step)\b")),
    ("research", re.compile(r"\b(search|look up|check|investigate|find|read|explore)\b")),
    ("deciding", re.compile(r"\b(should|decide|option|choose|between|alternative|trade.?off)\b")),
]


def classify_intent(thinking: str) -> str:
    lowered = thinking.lower()
    for intent, pattern in _INTENT_PATTERNS:
        if pattern.search(lowered):
            return intent
    return "general"


def _first_tool_use(blocks: list) -> Optional[ToolUseBlock]:
    for block in blocks:
        if isinstance(block, ToolUseBlock):
            return block
    return None


def _find_correlated_tool(
    entries: list[TranscriptEntry],
    entry_index: int,
    blocks: list,
    block_index: int,
) -> Optional[ToolUseBlock]:
    same_message = _first_tool_use(blocks[block_index + 1:])
    if same_message is not None:
        return same_message

    for entry in entries[entry_index + 1:]:
        if entry.type != "assistant":
            continue
        tool_use = _first_tool_use(entry.blocks)
        if tool_use is not None:
            return tool_use
    return None


def extract_reasoning(entries: list[TranscriptEntry]) -> list[TranscriptReasoning]:
    reasoning: list[TranscriptReasoning] = []
    for entry_index, entry in enumerate(entries):
        if entry.type != "assistant":
            continue
        blocks = entry.blocks
        for block_index, block in enumerate(blocks):
            if block.type != "thinking":
                continue
            correlated = _find_correlated_tool(entries, entry_index, blocks, block_index)
            reasoning.append(
                TranscriptReasoning(
                    t=entry.t,
                    thinking=block.thinking[:THINKING_TRUNCATE_LIMIT],
                    tool_use_id=correlated.id if correlated else None,
                    tool_name=correlated.name if correlated else None,
                    intent_hint=classify_intent(block.thinking),
                    truncated=len(block.thinking) > THINKING_TRUNCATE_LIMIT,
                )
            )
    return reasoning
