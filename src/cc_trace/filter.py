"""Visibility filter for bookkeeping block kinds."""

from collections.abc import Iterable
from dataclasses import dataclass

from cc_trace.models import (
    Block,
    FileSnapshotBlock,
    ProgressBlock,
    QueueOperationBlock,
    SystemBlock,
)


@dataclass
class FilterConfig:
    show_system: bool = True
    show_progress: bool = False
    show_file_snapshots: bool = False
    show_queue_ops: bool = False


DEFAULT_FILTER_CONFIG = FilterConfig()


def filter_blocks(blocks: Iterable[Block], config: FilterConfig = DEFAULT_FILTER_CONFIG) -> list[Block]:
    """Drop hidden bookkeeping blocks; conversation blocks always pass."""
    visible: list[Block] = []
    for block in blocks:
        if isinstance(block, SystemBlock) and not config.show_system:
            continue
        if isinstance(block, ProgressBlock) and not config.show_progress:
            continue
        if isinstance(block, FileSnapshotBlock) and not config.show_file_snapshots:
            continue
        if isinstance(block, QueueOperationBlock) and not config.show_queue_ops:
            continue
        visible.append(block)
    return visible
