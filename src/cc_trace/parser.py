"""Claude Code session JSONL parser producing trace blocks."""

import json
import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from cc_trace.models import (
    AgentBlock,
    Block,
    FileSnapshotBlock,
    McpBlock,
    ProgressBlock,
    QueueOperationBlock,
    SystemBlock,
    TeamMessageBlock,
    ToolBlock,
    UserBlock,
)

logger = logging.getLogger(__name__)

META_LABEL_LENGTH = 40
TEAM_MESSAGE_TYPES = {"message", "broadcast", "shutdown_request", "shutdown_response"}


def parse_timestamp(value: Any) -> int:
    """ISO-8601 timestamp -> epoch milliseconds (now, if missing or invalid)."""
    if isinstance(value, str) and value:
        try:
            ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
            if ts.tzinfo is None:
                ts = ts.replace(tzinfo=timezone.utc)
            return int(ts.timestamp() * 1000)
        except ValueError:
            pass
    return int(datetime.now(tz=timezone.utc).timestamp() * 1000)


def _text_parts(content: list[Any]) -> str:
    return "\n".join(
        part.get("text", "")
        for part in content
        if isinstance(part, dict) and part.get("type") == "text" and part.get("text")
    )


class SessionParser:
    """Stateful line-by-line parser.

    Tool uses are remembered until their results arrive in a later user
    record; assistant records sharing a ``requestId`` merge into one agent
    block.
    """

    def __init__(self) -> None:
        self._counter = 0
        self._pending_tools: dict[str, tuple[str, Any, str]] = {}
        self._agents_by_request: dict[str, AgentBlock] = {}
        self._current_agent_id: str | None = None

    def _block_id(self, record: dict[str, Any], suffix: str = "") -> str:
        self._counter += 1
        base = record.get("uuid") or f"block-{self._counter}"
        return f"{base}{suffix}"

    def parse(self, lines: Iterable[str]) -> list[Block]:
        blocks: list[Block] = []
        seen: dict[str, int] = {}

        for line_num, line in enumerate(lines, 1):
            line = line.strip()
            if not line:
                continue

            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                # Skip invalid JSON lines (may be partial records)
                logger.debug("Skipping undecodable line %d", line_num)
                continue

            # Skip if not a dict (invalid record)
            if not isinstance(record, dict):
                continue

            block = self.parse_record(record)
            if block is None:
                continue

            # Merged agent blocks come back with an id we have already emitted
            if block.id in seen:
                blocks[seen[block.id]] = block
            else:
                seen[block.id] = len(blocks)
                blocks.append(block)

        return blocks

    def parse_record(self, record: dict[str, Any]) -> Block | None:
        record_type = record.get("type")
        timestamp = parse_timestamp(record.get("timestamp"))

        if record_type == "user":
            block = self._parse_user(record, timestamp)
        elif record_type == "assistant":
            block = self._parse_assistant(record, timestamp)
        elif record_type == "system":
            block = self._parse_system(record, timestamp)
        elif record_type == "progress":
            data = record.get("data") or {}
            block = ProgressBlock(
                id=self._block_id(record),
                timestamp=timestamp,
                progress_type=data.get("type", "unknown") if isinstance(data, dict) else "unknown",
                data=data if isinstance(data, dict) else {},
                parent_tool_use_id=record.get("parentToolUseID") or record.get("toolUseID"),
            )
        elif record_type == "file-history-snapshot":
            snapshot = record.get("snapshot") or {}
            block = FileSnapshotBlock(
                id=self._block_id(record),
                timestamp=timestamp,
                message_id=record.get("messageId") or snapshot.get("messageId") or "",
                tracked_files=snapshot.get("trackedFileBackups") or {},
            )
        elif record_type == "queue-operation":
            block = QueueOperationBlock(
                id=self._block_id(record),
                timestamp=timestamp,
                operation="remove" if record.get("operation") == "remove" else "enqueue",
                content=record.get("content"),
            )
        else:
            # Skip summary lines and other record types
            return None

        if block is not None:
            block.uuid = record.get("uuid")
            block.source_parent_uuid = record.get("parentUuid")
        return block

    def _parse_user(self, record: dict[str, Any], timestamp: int) -> Block | None:
        message = record.get("message")
        if not isinstance(message, dict):
            return None
        content = message.get("content", "")

        if isinstance(content, list):
            for part in content:
                if not isinstance(part, dict) or part.get("type") != "tool_result":
                    continue
                pending = self._pending_tools.pop(part.get("tool_use_id", ""), None)
                if pending is None:
                    continue
                name, tool_input, agent_id = pending
                return self._tool_block(record, timestamp, name, tool_input, part, agent_id)

        text = content if isinstance(content, str) else _text_parts(content)
        block = UserBlock(id=self._block_id(record), timestamp=timestamp, content=text)
        if record.get("isMeta"):
            block.is_meta = True
            if text:
                block.meta_label = (
                    text if len(text) <= META_LABEL_LENGTH else text[: META_LABEL_LENGTH - 3] + "..."
                )
            else:
                block.meta_label = "System"
        return block

    def _tool_block(
        self,
        record: dict[str, Any],
        timestamp: int,
        name: str,
        tool_input: Any,
        result: dict[str, Any],
        agent_id: str,
    ) -> Block:
        status = "error" if result.get("is_error") else "success"
        output = result.get("content")
        if name.startswith("mcp__"):
            _, server, method = (name.split("__", 2) + ["", ""])[:3]
            return McpBlock(
                id=self._block_id(record, "-tool"),
                timestamp=timestamp,
                parent_id=agent_id,
                server_name=server,
                method=method,
                input=tool_input,
                output=output,
                status=status,
            )
        return ToolBlock(
            id=self._block_id(record, "-tool"),
            timestamp=timestamp,
            parent_id=agent_id,
            tool_name=name,
            input=tool_input,
            output=output,
            status=status,
        )

    def _parse_assistant(self, record: dict[str, Any], timestamp: int) -> Block | None:
        message = record.get("message")
        if not isinstance(message, dict):
            return None
        content = message.get("content", [])
        request_id = record.get("requestId")

        text = ""
        thinking: str | None = None
        tool_uses: list[dict[str, Any]] = []
        team_message: TeamMessageBlock | None = None

        if isinstance(content, str):
            text = content
        elif isinstance(content, list):
            for part in content:
                if not isinstance(part, dict):
                    continue
                part_type = part.get("type")
                if part_type == "text" and part.get("text"):
                    text += part["text"]
                elif part_type == "thinking" and part.get("thinking"):
                    thinking = part["thinking"]
                elif part_type == "tool_use" and part.get("id") and part.get("name"):
                    if part["name"] == "SendMessage":
                        team_message = self._team_message(record, timestamp, part.get("input"))
                    else:
                        tool_uses.append(part)

        usage = message.get("usage") or {}
        tokens_in = usage.get("input_tokens", record.get("inputTokens"))
        tokens_out = usage.get("output_tokens", record.get("outputTokens"))
        existing = self._agents_by_request.get(request_id) if request_id else None

        if team_message is not None and not text and not tool_uses and existing is None:
            return team_message

        if existing is not None:
            if text:
                existing.content += text
            if thinking and not existing.thinking:
                existing.thinking = thinking
            for part in tool_uses:
                self._pending_tools[part["id"]] = (part["name"], part.get("input"), existing.id)
                existing.tool_calls.append(part["id"])
            if tokens_in is not None:
                existing.tokens_in = (existing.tokens_in or 0) + tokens_in
            if tokens_out is not None:
                existing.tokens_out = (existing.tokens_out or 0) + tokens_out
            self._current_agent_id = existing.id
            return existing

        block = AgentBlock(
            id=self._block_id(record),
            timestamp=timestamp,
            content=text,
            thinking=thinking,
            tool_calls=[part["id"] for part in tool_uses],
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            wall_time_ms=record.get("durationMs"),
        )
        for part in tool_uses:
            self._pending_tools[part["id"]] = (part["name"], part.get("input"), block.id)
        if request_id:
            self._agents_by_request[request_id] = block
        self._current_agent_id = block.id
        return block

    def _team_message(self, record: dict[str, Any], timestamp: int, payload: Any) -> TeamMessageBlock | None:
        if not isinstance(payload, dict):
            return None
        message_type = payload.get("type") or "message"
        if message_type not in TEAM_MESSAGE_TYPES:
            return None
        return TeamMessageBlock(
            id=self._block_id(record, "-message"),
            timestamp=timestamp,
            parent_id=self._current_agent_id,
            sender="agent",
            recipient=payload.get("recipient"),
            content=payload.get("content") or payload.get("summary") or "",
            message_type=message_type,
        )

    def _parse_system(self, record: dict[str, Any], timestamp: int) -> Block:
        excluded = {"type", "timestamp", "uuid", "parentUuid", "subtype"}
        block = SystemBlock(
            id=self._block_id(record),
            timestamp=timestamp,
            subtype=record.get("subtype") or "unknown",
            data={k: v for k, v in record.items() if k not in excluded},
        )
        if record.get("durationMs") is not None:
            block.wall_time_ms = record["durationMs"]
        return block


def parse_session(path: Path) -> list[Block]:
    """Parse a JSONL session file into blocks, in file order."""
    with open(path, encoding="utf-8") as f:
        return SessionParser().parse(f)
