"""Pydantic models for captured events, links, transcripts, and distilled output."""
from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from session_distill.date_utils import iso_to_epoch_ms

# ── Captured hook events ────────────────────────────────────────────

HookEventType = Literal[
    "SessionStart",
    "SessionEnd",
    "UserPromptSubmit",
    "PreToolUse",
    "PostToolUse",
    "PostToolUseFailure",
    "PermissionRequest",
    "Notification",
    "SubagentStart",
    "SubagentStop",
    "Stop",
    "TeammateIdle",
    "TaskCompleted",
    "PreCompact",
    "ConfigChange",
    "WorktreeCreate",
    "WorktreeRemove",
]

HOOK_EVENTS: tuple[str, ...] = HookEventType.__args__

# Claude Code writes these to every session file, not only the originating one.
BROADCAST_EVENTS = frozenset({"ConfigChange", "Notification"})


class SessionContext(BaseModel):
    project_dir: Optional[str] = None
    cwd: Optional[str] = None
    git_branch: Optional[str] = None
    git_remote: Optional[str] = None
    git_commit: Optional[str] = None
    git_worktree: Optional[str] = None
    team_name: Optional[str] = None
    task_list_dir: Optional[str] = None
    claude_entrypoint: Optional[str] = None
    model: Optional[str] = None
    agent_type: Optional[str] = None
    source: Optional[Literal["startup", "resume", "clear", "compact"]] = None
    trigger: Optional[Literal["manual", "auto"]] = None


class StoredEvent(BaseModel):
    t: int
    event: HookEventType
    sid: str = ""
    context: Optional[SessionContext] = None
    data: dict[str, Any] = Field(default_factory=dict)

    # Typed accessors over the loosely-shaped hook payload.
    @property
    def tool_name(self) -> Optional[str]:
        value = self.data.get("tool_name")
        return value if isinstance(value, str) else None

    @property
    def tool_use_id(self) -> Optional[str]:
        value = self.data.get("tool_use_id")
        return value if isinstance(value, str) else None

    @property
    def tool_input(self) -> dict[str, Any]:
        value = self.data.get("tool_input")
        return value if isinstance(value, dict) else {}

    @property
    def file_path(self) -> Optional[str]:
        tool_input = self.tool_input
        raw = tool_input.get("file_path")
        if raw is None:
            raw = tool_input.get("path")
        return raw if isinstance(raw, str) else None

    @property
    def is_interrupt(self) -> bool:
        return bool(self.data.get("is_interrupt"))


# ── Link events ─────────────────────────────────────────────────────

class SpawnLink(BaseModel):
    t: int
    type: Literal["spawn"] = "spawn"
    parent_session: str
    agent_id: str
    agent_type: str
    agent_name: Optional[str] = None


class StopLink(BaseModel):
    t: int
    type: Literal["stop"] = "stop"
    parent_session: str = ""
    agent_id: str
    transcript_path: Optional[str] = None


class MessageLink(BaseModel):
    t: int
    type: Literal["msg_send"] = "msg_send"
    msg_id: Optional[str] = None
    session_id: str = ""
    from_: str = Field(alias="from")
    from_name: Optional[str] = None
    to: str
    to_id: Optional[str] = None
    msg_type: str = "message"
    summary: Optional[str] = None
    content_hash: Optional[str] = None

    model_config = {"populate_by_name": True}


class TaskLink(BaseModel):
    t: int
    type: Literal["task"] = "task"
    action: Literal["create", "assign", "status_change"]
    task_id: str
    session_id: str = ""
    agent: Optional[str] = None
    subject: Optional[str] = None
    owner: Optional[str] = None
    status: Optional[str] = None


class TeamLink(BaseModel):
    t: int
    type: Literal["team"] = "team"
    team_name: str
    leader_session: str


class TeammateIdleLink(BaseModel):
    t: int
    type: Literal["teammate_idle"] = "teammate_idle"
    teammate: str
    session_id: Optional[str] = None
    team: Optional[str] = None


class TaskCompleteLink(BaseModel):
    t: int
    type: Literal["task_complete"] = "task_complete"
    task_id: str
    agent: str
    session_id: Optional[str] = None
    subject: Optional[str] = None


class SessionEndLink(BaseModel):
    t: int
    type: Literal["session_end"] = "session_end"
    session: str
    reason: Optional[str] = None


class ConfigChangeLink(BaseModel):
    t: int
    type: Literal["config_change"] = "config_change"
    session: str
    key: Optional[str] = None


class WorktreeCreateLink(BaseModel):
    t: int
    type: Literal["worktree_create"] = "worktree_create"
    session: str
    worktree_name: Optional[str] = None
    branch: Optional[str] = None


class WorktreeRemoveLink(BaseModel):
    t: int
    type: Literal["worktree_remove"] = "worktree_remove"
    session: str
    worktree_name: Optional[str] = None


LinkEvent = Annotated[
    Union[
        SpawnLink,
        StopLink,
        MessageLink,
        TaskLink,
        TeamLink,
        TeammateIdleLink,
        TaskCompleteLink,
        SessionEndLink,
        ConfigChangeLink,
        WorktreeCreateLink,
        WorktreeRemoveLink,
    ],
    Field(discriminator="type"),
]

LINK_EVENT_TYPES = frozenset(
    {
        "spawn",
        "stop",
        "msg_send",
        "task",
        "team",
        "teammate_idle",
        "task_complete",
        "session_end",
        "config_change",
        "worktree_create",
        "worktree_remove",
    }
)

LinkEventAdapter: TypeAdapter[LinkEvent] = TypeAdapter(LinkEvent)


# ── Transcript entries ──────────────────────────────────────────────

class ThinkingBlock(BaseModel):
    type: Literal["thinking"] = "thinking"
    thinking: str = ""
    signature: Optional[str] = None


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str = ""


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: Union[str, list[dict[str, Any]]] = ""
    is_error: Optional[bool] = None


TranscriptContentBlock = Annotated[
    Union[ThinkingBlock, TextBlock, ToolUseBlock, ToolResultBlock],
    Field(discriminator="type"),
]

TRANSCRIPT_BLOCK_TYPES = frozenset({"thinking", "text", "tool_use", "tool_result"})


class TranscriptUsage(BaseModel):
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    cache_read_input_tokens: Optional[int] = None
    cache_creation_input_tokens: Optional[int] = None


class TranscriptMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: Union[str, list[TranscriptContentBlock]] = ""
    model: Optional[str] = None
    id: Optional[str] = None
    usage: Optional[TranscriptUsage] = None


class TranscriptEntry(BaseModel):
    uuid: str
    parentUuid: Optional[str] = None
    sessionId: str = ""
    type: Literal["user", "assistant"]
    timestamp: str
    message: Optional[TranscriptMessage] = None

    @property
    def t(self) -> int:
        return iso_to_epoch_ms(self.timestamp)

    @property
    def blocks(self) -> list:
        """Content blocks, or an empty list when the message is plain text."""
        if self.message is None or isinstance(self.message.content, str):
            return []
        return list(self.message.content)


IntentHint = Literal["planning", "debugging", "research", "deciding", "general"]


class TranscriptReasoning(BaseModel):
    t: int
    thinking: str
    tool_use_id: Optional[str] = None
    tool_name: Optional[str] = None
    intent_hint: Optional[IntentHint] = None
    truncated: Optional[bool] = None


class TranscriptUserMessage(BaseModel):
    t: int
    content: str
    is_tool_result: bool = False
    message_type: Optional[Literal["prompt", "command", "system", "teammate", "image"]] = None
    teammate_name: Optional[str] = None
    image_path: Optional[str] = None


# ── Stats, cost, and file map ───────────────────────────────────────

class CostEstimate(BaseModel):
    model: str
    estimated_input_tokens: int
    estimated_output_tokens: int
    estimated_cost_usd: float
    cache_read_tokens: Optional[int] = None
    cache_creation_tokens: Optional[int] = None
    is_estimated: Optional[bool] = None


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0


class StatsResult(BaseModel):
    total_events: int = 0
    duration_ms: int = 0
    events_by_type: dict[str, int] = Field(default_factory=dict)
    tools_by_name: dict[str, int] = Field(default_factory=dict)
    tool_call_count: int = 0
    failure_count: int = 0
    failure_rate: float = 0.0
    unique_files: list[str] = Field(default_factory=list)
    model: Optional[str] = None
    cost_estimate: Optional[CostEstimate] = None
    failures_by_tool: Optional[dict[str, int]] = None


class AgentStats(BaseModel):
    tool_call_count: int = 0
    failure_count: int = 0
    tools_by_name: dict[str, int] = Field(default_factory=dict)
    unique_files: list[str] = Field(default_factory=list)
    token_usage: Optional[TokenUsage] = None


class FileMapEntry(BaseModel):
    file_path: str
    reads: int = 0
    edits: int = 0
    writes: int = 0
    errors: int = 0
    tool_use_ids: list[str] = Field(default_factory=list)
    source: Optional[Literal["tool", "bash"]] = None


class FileMapResult(BaseModel):
    files: list[FileMapEntry] = Field(default_factory=list)


# ── Git ─────────────────────────────────────────────────────────────

class GitDiffHunk(BaseModel):
    commit_hash: str
    file_path: str
    additions: int = 0
    deletions: int = 0
    matched_tool_use_id: Optional[str] = None


class WorkingTreeChange(BaseModel):
    file_path: str
    status: Literal["modified", "added", "deleted", "renamed"] = "modified"
    additions: Optional[int] = None
    deletions: Optional[int] = None


class GitDiffResult(BaseModel):
    commits: list[str] = Field(default_factory=list)
    hunks: list[GitDiffHunk] = Field(default_factory=list)
    working_tree_changes: Optional[list[WorkingTreeChange]] = None
    staged_changes: Optional[list[WorkingTreeChange]] = None


# ── Backtracks and edit chains ──────────────────────────────────────

BacktrackType = Literal["failure_retry", "iteration_struggle", "debugging_loop"]


class BacktrackResult(BaseModel):
    type: BacktrackType
    tool_name: str
    file_path: Optional[str] = None
    attempts: int
    start_t: int
    end_t: int
    tool_use_ids: list[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    command: Optional[str] = None


class EditStep(BaseModel):
    tool_use_id: str
    t: int
    tool_name: Literal["Edit", "Write", "Read"]
    outcome: Literal["success", "failure", "info"]
    old_string_preview: Optional[str] = None
    new_string_preview: Optional[str] = None
    old_string_lines: Optional[int] = None
    new_string_lines: Optional[int] = None
    content_lines: Optional[int] = None
    error_preview: Optional[str] = None
    thinking_preview: Optional[str] = None
    thinking_intent: Optional[IntentHint] = None
    backtrack_type: Optional[BacktrackType] = None


class EditChain(BaseModel):
    file_path: str
    steps: list[EditStep] = Field(default_factory=list)
    total_edits: int = 0
    total_failures: int = 0
    total_reads: int = 0
    effort_ms: int = 0
    has_backtrack: bool = False
    surviving_edit_ids: list[str] = Field(default_factory=list)
    abandoned_edit_ids: list[str] = Field(default_factory=list)
    agent_name: Optional[str] = None


class DiffLine(BaseModel):
    type: Literal["add", "remove", "context"]
    content: str
    agent_name: Optional[str] = None
    line_number: Optional[int] = None


class FileDiffAttribution(BaseModel):
    file_path: str
    lines: list[DiffLine] = Field(default_factory=list)
    total_additions: int = 0
    total_deletions: int = 0


class EditChainsResult(BaseModel):
    chains: list[EditChain] = Field(default_factory=list)
    net_changes: Optional[list[WorkingTreeChange]] = None
    diff_attribution: Optional[list[FileDiffAttribution]] = None


# ── Decisions and phases ────────────────────────────────────────────

GapClassification = Literal["user_idle", "session_pause", "agent_thinking"]


class TimingGapDecision(BaseModel):
    type: Literal["timing_gap"] = "timing_gap"
    t: int
    gap_ms: int
    classification: GapClassification


class ToolPivotDecision(BaseModel):
    type: Literal["tool_pivot"] = "tool_pivot"
    t: int
    from_tool: str
    to_tool: str
    after_failure: bool


class PhaseBoundaryDecision(BaseModel):
    type: Literal["phase_boundary"] = "phase_boundary"
    t: int
    phase_name: str
    phase_index: int


class AgentSpawnDecision(BaseModel):
    type: Literal["agent_spawn"] = "agent_spawn"
    t: int
    agent_id: str
    agent_name: str
    agent_type: str
    parent_session: str


class TaskDelegationDecision(BaseModel):
    type: Literal["task_delegation"] = "task_delegation"
    t: int
    task_id: str
    agent_name: str
    subject: Optional[str] = None


class TaskCompletionDecision(BaseModel):
    type: Literal["task_completion"] = "task_completion"
    t: int
    task_id: str
    agent_name: str
    subject: Optional[str] = None


DecisionPoint = Annotated[
    Union[
        TimingGapDecision,
        ToolPivotDecision,
        PhaseBoundaryDecision,
        AgentSpawnDecision,
        TaskDelegationDecision,
        TaskCompletionDecision,
    ],
    Field(discriminator="type"),
]


class PhaseInfo(BaseModel):
    name: str
    start_t: int
    end_t: int
    tool_types: list[str] = Field(default_factory=list)
    description: str = ""


class ActiveDuration(BaseModel):
    active_ms: int = 0
    idle_ms: int = 0
    pause_ms: int = 0


# ── Agents and communication ────────────────────────────────────────

class AgentMessage(BaseModel):
    t: int
    direction: Literal["sent", "received"]
    partner: str
    msg_type: str
    summary: Optional[str] = None


class AgentTaskEvent(BaseModel):
    t: int
    action: Literal["create", "assign", "status_change", "complete"]
    task_id: str
    subject: Optional[str] = None
    status: Optional[str] = None
    owner: Optional[str] = None


class AgentIdlePeriod(BaseModel):
    t: int
    teammate: str


class AgentCommunicationPartner(BaseModel):
    name: str
    sent_count: int = 0
    received_count: int = 0
    total_count: int = 0
    msg_types: list[str] = Field(default_factory=list)


class AgentNode(BaseModel):
    session_id: str
    agent_type: str
    agent_name: Optional[str] = None
    duration_ms: int = 0
    tool_call_count: int = 0
    children: list[AgentNode] = Field(default_factory=list)
    tasks_completed: Optional[int] = None
    idle_count: Optional[int] = None
    model: Optional[str] = None
    transcript_path: Optional[str] = None
    task_prompt: Optional[str] = None
    stats: Optional[AgentStats] = None
    file_map: Optional[FileMapResult] = None
    cost_estimate: Optional[CostEstimate] = None
    messages: Optional[list[AgentMessage]] = None
    task_events: Optional[list[AgentTaskEvent]] = None
    idle_periods: Optional[list[AgentIdlePeriod]] = None
    communication_partners: Optional[list[AgentCommunicationPartner]] = None
    edit_chains: Optional[EditChainsResult] = None
    backtracks: Optional[list[BacktrackResult]] = None
    reasoning: Optional[list[TranscriptReasoning]] = None


class AgentDistillResult(BaseModel):
    stats: AgentStats
    file_map: FileMapResult
    model: Optional[str] = None
    token_usage: TokenUsage
    cost_estimate: Optional[CostEstimate] = None
    task_prompt: Optional[str] = None
    edit_chains: Optional[EditChainsResult] = None
    backtracks: Optional[list[BacktrackResult]] = None
    reasoning: Optional[list[TranscriptReasoning]] = None


CommunicationEdgeType = Literal["message", "task_complete", "idle_notify", "task_assign"]


class CommunicationEdge(BaseModel):
    model_config = {"populate_by_name": True}

    from_id: str
    from_name: str
    to_id: str
    to_name: str
    from_: str = Field(alias="from")
    to: str
    count: int
    msg_types: list[str] = Field(default_factory=list)
    edge_type: Optional[CommunicationEdgeType] = None


class CommunicationSequenceEntry(BaseModel):
    model_config = {"populate_by_name": True}

    t: int
    from_id: str
    from_name: str
    to_id: str
    to_name: str
    from_: str = Field(alias="from")
    to: str
    msg_type: str
    summary: Optional[str] = None
    content_preview: Optional[str] = None
    edge_type: Optional[CommunicationEdgeType] = None


class ConversationGroup(BaseModel):
    participants: tuple[str, str]
    messages: list[CommunicationSequenceEntry] = Field(default_factory=list)


class AgentLifetime(BaseModel):
    agent_id: str
    agent_name: Optional[str] = None
    start_t: int
    end_t: int
    agent_type: str


class TeamTask(BaseModel):
    task_id: str
    agent: str
    subject: Optional[str] = None
    t: int


class IdleTransition(BaseModel):
    teammate: str
    t: int


class TeamMetrics(BaseModel):
    agent_count: int = 0
    task_completed_count: int = 0
    idle_event_count: int = 0
    teammate_names: list[str] = Field(default_factory=list)
    tasks: list[TeamTask] = Field(default_factory=list)
    idle_transitions: list[IdleTransition] = Field(default_factory=list)
    utilization_ratio: Optional[float] = None


class AggregatedTeamData(BaseModel):
    stats: StatsResult
    file_map: FileMapResult
    edit_chains: EditChainsResult
    backtracks: list[BacktrackResult] = Field(default_factory=list)
    reasoning: list[TranscriptReasoning] = Field(default_factory=list)
    cost_estimate: Optional[CostEstimate] = None


# ── Summary and timeline ────────────────────────────────────────────

class KeyMetrics(BaseModel):
    duration_human: str
    tool_calls: int
    failures: int
    files_modified: int
    backtrack_count: int
    active_duration_human: Optional[str] = None
    active_duration_ms: Optional[int] = None
    abandoned_edits: Optional[int] = None
    edit_chains_count: Optional[int] = None


class TopError(BaseModel):
    tool_name: str
    count: int
    sample_message: Optional[str] = None


class AgentWorkload(BaseModel):
    name: str
    id: str
    tool_calls: int
    files_modified: int
    duration_ms: int


class DistilledSummary(BaseModel):
    narrative: str
    phases: list[PhaseInfo] = Field(default_factory=list)
    key_metrics: KeyMetrics
    top_errors: Optional[list[TopError]] = None
    task_summary: Optional[list[TeamTask]] = None
    agent_workload: Optional[list[AgentWorkload]] = None


TimelineEntryType = Literal[
    "user_prompt",
    "thinking",
    "tool_call",
    "tool_result",
    "failure",
    "backtrack",
    "phase_boundary",
    "teammate_idle",
    "task_complete",
    "agent_spawn",
    "agent_stop",
    "task_create",
    "task_assign",
    "msg_send",
]


class TimelineEntry(BaseModel):
    t: int
    type: TimelineEntryType
    tool_name: Optional[str] = None
    tool_use_id: Optional[str] = None
    content_preview: Optional[str] = None
    phase_index: Optional[int] = None
    teammate_name: Optional[str] = None
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    task_id: Optional[str] = None
    task_subject: Optional[str] = None
    msg_from: Optional[str] = None
    msg_to: Optional[str] = None


# ── Journeys ────────────────────────────────────────────────────────

PhaseType = Literal[
    "prime",
    "brainstorm",
    "plan",
    "build",
    "review",
    "test",
    "commit",
    "exploration",
    "orchestrated_build",
    "freeform",
    "abort",
]

LifecycleType = Literal["prime-plan-build", "prime-build", "build-only", "single-session", "ad-hoc"]

TransitionTrigger = Literal["clear", "compact_manual", "compact_auto"]


class SessionChainInput(BaseModel):
    session_id: str
    start_time: int
    end_time: Optional[int] = None
    cwd: Optional[str] = None
    source: Optional[str] = None
    end_reason: Optional[str] = None
    event_count: int = 0
    duration_ms: int = 0
    git_commit: Optional[str] = None
    first_prompt: Optional[str] = None
    tools_by_name: Optional[dict[str, int]] = None


class JourneyPhase(BaseModel):
    session_id: str
    phase_type: PhaseType
    prompt: Optional[str] = None
    spec_ref: Optional[str] = None
    source: Literal["startup", "clear", "compact"] = "startup"
    duration_ms: int = 0
    event_count: int = 0


class PhaseTransition(BaseModel):
    from_session: str
    to_session: str
    gap_ms: int
    trigger: TransitionTrigger
    git_changed: bool
    prompt_shift: str


class PlanDriftReport(BaseModel):
    spec_path: str
    expected_files: list[str] = Field(default_factory=list)
    actual_files: list[str] = Field(default_factory=list)
    unexpected_files: list[str] = Field(default_factory=list)
    missing_files: list[str] = Field(default_factory=list)
    drift_score: float = 0.0


class CumulativeStats(BaseModel):
    total_duration_ms: int = 0
    total_events: int = 0
    total_tool_calls: int = 0
    total_failures: int = 0
    phase_count: int = 0
    retry_count: int = 0


class Journey(BaseModel):
    id: str
    phases: list[JourneyPhase] = Field(default_factory=list)
    transitions: list[PhaseTransition] = Field(default_factory=list)
    spec_ref: Optional[str] = None
    lifecycle_type: LifecycleType
    cumulative_stats: CumulativeStats
    plan_drift: Optional[PlanDriftReport] = None


# ── Session listing and distilled output ────────────────────────────

class SessionSummary(BaseModel):
    session_id: str
    session_name: Optional[str] = None
    start_time: int
    end_time: Optional[int] = None
    duration_ms: int = 0
    event_count: int = 0
    git_branch: Optional[str] = None
    team_name: Optional[str] = None
    source: Optional[str] = None
    end_reason: Optional[str] = None
    status: Literal["complete", "incomplete"] = "incomplete"
    file_size_bytes: int = 0
    agent_count: Optional[int] = None
    is_distilled: Optional[bool] = None
    has_spec: Optional[bool] = None


class DistilledSession(BaseModel):
    session_id: str
    session_name: Optional[str] = None
    start_time: Optional[int] = None
    stats: StatsResult
    backtracks: list[BacktrackResult] = Field(default_factory=list)
    decisions: list[DecisionPoint] = Field(default_factory=list)
    file_map: FileMapResult
    git_diff: GitDiffResult
    complete: bool = True
    reasoning: list[TranscriptReasoning] = Field(default_factory=list)
    user_messages: list[TranscriptUserMessage] = Field(default_factory=list)
    transcript_path: Optional[str] = None
    summary: Optional[DistilledSummary] = None
    timeline: Optional[list[TimelineEntry]] = None
    agents: Optional[list[AgentNode]] = None
    cost_estimate: Optional[CostEstimate] = None
    team_metrics: Optional[TeamMetrics] = None
    communication_graph: Optional[list[CommunicationEdge]] = None
    edit_chains: Optional[EditChainsResult] = None
    comm_sequence: Optional[list[CommunicationSequenceEntry]] = None
    agent_lifetimes: Optional[list[AgentLifetime]] = None
    plan_drift: Optional[PlanDriftReport] = None

    def to_json_dict(self) -> dict[str, Any]:
        """Serialise with absent fields omitted and wire aliases (``from``) applied."""
        return self.model_dump(mode="json", exclude_none=True, by_alias=True)
