"""Multi-level chunking of session blocks: turn -> task -> theme.

Turns open at every non-meta user message. Tasks merge consecutive turns until
a long pause, a finished unit of work (commit, push, PR) or a change of
direction from the user. Themes merge consecutive tasks until a long break.
"""

import logging
from collections.abc import Callable, Iterable

from cc_trace.heuristics import closing_signals, extract_label, generate_label, user_pattern_signal
from cc_trace.models import (
    AgentBlock,
    Block,
    BoundarySignal,
    Chunk,
    ChunkHierarchy,
    ChunkLevel,
    GitCommitSignal,
    GitPushSignal,
    PrCreationSignal,
    TimeGapSignal,
    UserBlock,
    UserPatternSignal,
)

logger = logging.getLogger(__name__)

TURN_GAP_MS = 3 * 60 * 1000
TASK_GAP_MS = 5 * 60 * 1000
THEME_GAP_MS = 30 * 60 * 1000

AGENT_TURN_LABEL = "Agent response"
FALLBACK_LABEL = "Turn"

# Signals on an opening turn that also open a new task.
TASK_BREAK_SIGNALS = (GitCommitSignal, GitPushSignal, PrCreationSignal, UserPatternSignal)

_BoundaryRule = Callable[[Chunk, Chunk], list[BoundarySignal]]


class _Build:
    """State for a single build call: id counters and the open turn."""

    def __init__(self, blocks: list[Block]):
        self.blocks = blocks
        self.counters: dict[str, int] = {}
        self.current: Chunk | None = None
        self.current_blocks: list[Block] = []
        self.turns: list[Chunk] = []

    def new_chunk(self, level: ChunkLevel, label: str) -> Chunk:
        self.counters[level] = self.counters.get(level, 0) + 1
        return Chunk(id=f"{level}-{self.counters[level]}", level=level, label=label)

    def open_turn(self, block: Block, label: str, signals: list[BoundarySignal]) -> None:
        self.close_turn()
        self.current = self.new_chunk("turn", label)
        self.current.boundary_signals = signals
        self.current_blocks = []
        self.append(block)

    def append(self, block: Block) -> None:
        if self.current is None:
            raise RuntimeError(f"No open turn for block {block.id}")
        self.current.block_ids.append(block.id)
        self.current_blocks.append(block)

    def close_turn(self) -> None:
        if self.current is None:
            return
        turn = self.current
        contained = self.current_blocks
        fallback = turn.label
        _aggregate_blocks(turn, contained)
        turn.label = generate_label(contained, fallback=fallback)
        self.turns.append(turn)
        self.current = None
        self.current_blocks = []


def _aggregate_blocks(chunk: Chunk, blocks: list[Block]) -> None:
    chunk.total_tokens_in = sum(b.tokens_in or 0 for b in blocks)
    chunk.total_tokens_out = sum(b.tokens_out or 0 for b in blocks)
    chunk.total_wall_time_ms = sum(b.wall_time_ms or 0 for b in blocks)
    if blocks:
        timestamps = [b.timestamp for b in blocks]
        chunk.start_timestamp = min(timestamps)
        chunk.end_timestamp = max(timestamps)


def _aggregate_children(parent: Chunk, children: list[Chunk]) -> None:
    parent.block_ids = [block_id for child in children for block_id in child.block_ids]
    parent.child_chunk_ids = [child.id for child in children]
    parent.total_tokens_in = sum(c.total_tokens_in for c in children)
    parent.total_tokens_out = sum(c.total_tokens_out for c in children)
    parent.total_wall_time_ms = sum(c.total_wall_time_ms for c in children)
    starts = [c.start_timestamp for c in children if c.start_timestamp is not None]
    ends = [c.end_timestamp for c in children if c.end_timestamp is not None]
    parent.start_timestamp = min(starts) if starts else None
    parent.end_timestamp = max(ends) if ends else None
    for child in children:
        child.parent_chunk_id = parent.id


def _gap(previous: Chunk, following: Chunk) -> int | None:
    if previous.end_timestamp is None or following.start_timestamp is None:
        return None
    return following.start_timestamp - previous.end_timestamp


def _build_turns(state: _Build) -> list[Chunk]:
    for block in state.blocks:
        if isinstance(block, UserBlock):
            if block.is_meta:
                if state.current is not None:
                    state.append(block)
                else:
                    logger.debug("Dropping meta block %s before first turn", block.id)
                continue

            signals: list[BoundarySignal] = []
            if state.current is not None:
                signals.extend(closing_signals(state.current_blocks))
                gap = block.timestamp - state.current_blocks[-1].timestamp
                if gap > TURN_GAP_MS:
                    signals.append(TimeGapSignal(gap_ms=gap))
                pattern = user_pattern_signal(block)
                if pattern is not None:
                    signals.append(pattern)
            label = extract_label(block.content) if block.content.strip() else FALLBACK_LABEL
            state.open_turn(block, label, signals)

        elif isinstance(block, AgentBlock):
            if state.current is None:
                state.open_turn(block, AGENT_TURN_LABEL, [])
            else:
                state.append(block)

        elif state.current is not None:
            # tool, mcp and opaque blocks ride along with the open turn
            state.append(block)

        else:
            logger.debug("Dropping %s block %s before first turn", block.type, block.id)

    state.close_turn()
    return state.turns


def _merge(
    state: _Build,
    children: list[Chunk],
    level: ChunkLevel,
    boundary: _BoundaryRule,
) -> list[Chunk]:
    groups: list[tuple[list[Chunk], list[BoundarySignal]]] = []
    for index, child in enumerate(children):
        if index == 0:
            groups.append(([child], []))
            continue
        signals = boundary(children[index - 1], child)
        if signals:
            groups.append(([child], signals))
        else:
            groups[-1][0].append(child)

    merged: list[Chunk] = []
    for members, signals in groups:
        parent = state.new_chunk(level, members[0].label)
        parent.boundary_signals = signals
        _aggregate_children(parent, members)
        merged.append(parent)
    return merged


def _task_boundary(previous: Chunk, following: Chunk) -> list[BoundarySignal]:
    signals: list[BoundarySignal] = []
    gap = _gap(previous, following)
    if gap is not None and gap > TASK_GAP_MS:
        signals.append(TimeGapSignal(gap_ms=gap))
    signals.extend(s for s in following.boundary_signals if isinstance(s, TASK_BREAK_SIGNALS))
    return signals


def _theme_boundary(previous: Chunk, following: Chunk) -> list[BoundarySignal]:
    gap = _gap(previous, following)
    if gap is not None and gap > THEME_GAP_MS:
        return [TimeGapSignal(gap_ms=gap)]
    return []


def build_hierarchy(blocks: Iterable[Block]) -> ChunkHierarchy:
    """Build turn, task and theme layers in one pass, linked by id."""
    state = _Build(list(blocks))
    turns = _build_turns(state)
    tasks = _merge(state, turns, "task", _task_boundary)
    themes = _merge(state, tasks, "theme", _theme_boundary)
    logger.debug(
        "Built %d turns, %d tasks, %d themes from %d blocks",
        len(turns),
        len(tasks),
        len(themes),
        len(state.blocks),
    )
    return ChunkHierarchy(turns=turns, tasks=tasks, themes=themes)


class Chunker:
    """Entry points for building chunks at each level.

    Every call starts from a fresh build state, so one instance can serve
    any number of independent calls.
    """

    def create_chunks(self, blocks: Iterable[Block]) -> list[Chunk]:
        """Turn-level chunks."""
        return _build_turns(_Build(list(blocks)))

    def create_task_chunks(self, blocks: Iterable[Block]) -> list[Chunk]:
        return build_hierarchy(blocks).tasks

    def create_theme_chunks(self, blocks: Iterable[Block]) -> list[Chunk]:
        return build_hierarchy(blocks).themes

    def create_chunks_at_level(self, blocks: Iterable[Block], level: ChunkLevel) -> list[Chunk]:
        if level == "turn":
            return self.create_chunks(blocks)
        if level == "task":
            return self.create_task_chunks(blocks)
        if level == "theme":
            return self.create_theme_chunks(blocks)
        raise ValueError(f"Unknown chunk level: {level}")
