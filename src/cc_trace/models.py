"""Data models for cc-trace."""

from dataclasses import dataclass, field
from typing import Any, Literal

ChunkLevel = Literal["turn", "task", "theme"]
SearchMode = Literal["keyword", "smart"]


@dataclass(kw_only=True)
class Block:
    """One event in a session trace.

    Timestamps are epoch milliseconds. Concrete variants set ``type``.
    """

    id: str
    timestamp: int
    type: str = "unknown"
    parent_id: str | None = None
    tokens_in: int | None = None
    tokens_out: int | None = None
    wall_time_ms: int | None = None
    uuid: str | None = None
    source_parent_uuid: str | None = None


@dataclass(kw_only=True)
class UserBlock(Block):
    """A user turn (or a meta message injected on the user's behalf)."""

    content: str
    type: str = "user"
    is_meta: bool = False
    meta_label: str | None = None


@dataclass(kw_only=True)
class AgentBlock(Block):
    """An agent response; ``tool_calls`` holds the ids of child tool uses."""

    content: str
    type: str = "agent"
    thinking: str | None = None
    tool_calls: list[str] = field(default_factory=list)


@dataclass(kw_only=True)
class ToolBlock(Block):
    parent_id: str
    tool_name: str
    type: str = "tool"
    input: Any = None
    output: Any = None
    status: str = "success"  # "pending" | "success" | "error"


@dataclass(kw_only=True)
class McpBlock(Block):
    parent_id: str
    server_name: str
    method: str
    type: str = "mcp"
    input: Any = None
    output: Any = None
    status: str = "success"


@dataclass(kw_only=True)
class TeamMessageBlock(Block):
    """A message sent between agents of a team."""

    sender: str
    content: str
    type: str = "team-message"
    recipient: str | None = None
    message_type: str = "message"  # "message" | "broadcast" | "shutdown_request" | "shutdown_response"


@dataclass(kw_only=True)
class SystemBlock(Block):
    subtype: str
    type: str = "system"
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(kw_only=True)
class ProgressBlock(Block):
    progress_type: str
    type: str = "progress"
    data: dict[str, Any] = field(default_factory=dict)
    parent_tool_use_id: str | None = None


@dataclass(kw_only=True)
class FileSnapshotBlock(Block):
    message_id: str
    type: str = "file-snapshot"
    tracked_files: dict[str, Any] = field(default_factory=dict)


@dataclass(kw_only=True)
class QueueOperationBlock(Block):
    operation: str  # "enqueue" | "remove"
    type: str = "queue-operation"
    content: str | None = None


# Boundary signals: why a chunk was started.


@dataclass(frozen=True)
class TimeGapSignal:
    gap_ms: int
    type: str = "time-gap"


@dataclass(frozen=True)
class GitCommitSignal:
    message: str | None = None
    type: str = "git-commit"


@dataclass(frozen=True)
class GitPushSignal:
    type: str = "git-push"


@dataclass(frozen=True)
class PrCreationSignal:
    pr_number: str | None = None
    title: str | None = None
    body: str | None = None
    type: str = "pr-creation"


@dataclass(frozen=True)
class BranchSwitchSignal:
    from_branch: str
    to_branch: str
    type: str = "branch-switch"


@dataclass(frozen=True)
class UserPatternSignal:
    pattern: str
    type: str = "user-pattern"


@dataclass(frozen=True)
class TaskSpawnSignal:
    agent_id: str
    type: str = "task-spawn"


BoundarySignal = (
    TimeGapSignal
    | GitCommitSignal
    | GitPushSignal
    | PrCreationSignal
    | BranchSwitchSignal
    | UserPatternSignal
    | TaskSpawnSignal
)


@dataclass
class Chunk:
    """A contiguous group of blocks at one granularity.

    ``block_ids`` of a task/theme chunk is the in-order concatenation of its
    children's ``block_ids``. Links between levels are by id only.
    """

    id: str
    level: ChunkLevel
    label: str
    block_ids: list[str] = field(default_factory=list)
    child_chunk_ids: list[str] = field(default_factory=list)
    parent_chunk_id: str | None = None
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_wall_time_ms: int = 0
    boundary_signals: list[BoundarySignal] = field(default_factory=list)
    start_timestamp: int | None = None
    end_timestamp: int | None = None


@dataclass
class ChunkHierarchy:
    """All three chunk layers from one build, linked by id."""

    turns: list[Chunk] = field(default_factory=list)
    tasks: list[Chunk] = field(default_factory=list)
    themes: list[Chunk] = field(default_factory=list)

    def level(self, level: ChunkLevel) -> list[Chunk]:
        if level == "turn":
            return self.turns
        if level == "task":
            return self.tasks
        if level == "theme":
            return self.themes
        raise ValueError(f"Unknown chunk level: {level}")


@dataclass
class SearchMatch:
    """Why a block matched: the field and the terms found in it."""

    field: str
    snippet: str


@dataclass
class SearchResult:
    """A ranked block. Scores compare only within a single search call."""

    block_id: str
    score: float
    matches: list[SearchMatch] | None = None
