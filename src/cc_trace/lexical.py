"""Keyword search over blocks using an in-memory SQLite FTS5 index."""

import json
import logging
import re
import sqlite3
from collections.abc import Iterable
from typing import Any

from cc_trace.models import (
    AgentBlock,
    Block,
    McpBlock,
    SearchMatch,
    SearchResult,
    TeamMessageBlock,
    ToolBlock,
    UserBlock,
)

logger = logging.getLogger(__name__)

# Relative edit distance allowed for fuzzy term matches
FUZZY_RATIO = 0.2
TOOL_NAME_BOOST = 2.0
DEFAULT_LIMIT = 20

# Matches the unicode61 tokenizer: letters and digits, everything else separates
_TOKEN = re.compile(r"[^\W_]+")


def _serialize(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def extract_text(block: Block) -> str:
    """Searchable text of a block; empty for kinds that are not searched."""
    if isinstance(block, UserBlock):
        return block.content
    if isinstance(block, AgentBlock):
        return " ".join(part for part in (block.content, block.thinking) if part)
    if isinstance(block, (ToolBlock, McpBlock)):
        input_text = "" if block.input is None else json.dumps(block.input, default=str)
        return " ".join((input_text, _serialize(block.output)))
    if isinstance(block, TeamMessageBlock):
        return block.content
    return ""


def tokenize(text: str) -> list[str]:
    return _TOKEN.findall(text.lower())


def bounded_edit_distance(a: str, b: str, max_dist: int) -> int:
    """Levenshtein distance, giving up with max_dist + 1 once it is exceeded."""
    if a == b:
        return 0
    if abs(len(a) - len(b)) > max_dist:
        return max_dist + 1
    if not a or not b:
        return max(len(a), len(b))
    if len(a) > len(b):
        a, b = b, a

    prev = list(range(len(a) + 1))
    for i, ch_b in enumerate(b, start=1):
        cur = [i]
        min_row = i
        for j, ch_a in enumerate(a, start=1):
            cost = 0 if ch_a == ch_b else 1
            val = min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + cost)
            cur.append(val)
            min_row = min(min_row, val)
        prev = cur
        if min_row > max_dist:
            return max_dist + 1
    return prev[-1]


def init_schema(conn: sqlite3.Connection) -> None:
    """Create the FTS5 table and its vocabulary view."""
    conn.executescript("""
        CREATE VIRTUAL TABLE IF NOT EXISTS blocks_fts USING fts5(
            block_id UNINDEXED,
            block_type UNINDEXED,
            content,
            tool_name,
            tokenize='unicode61'
        );

        -- One row per distinct indexed term, for fuzzy expansion
        CREATE VIRTUAL TABLE IF NOT EXISTS blocks_vocab USING fts5vocab(blocks_fts, 'row');
    """)
    conn.commit()


def tool_label(block: Block) -> str:
    if isinstance(block, ToolBlock):
        return block.tool_name
    if isinstance(block, McpBlock):
        return f"{block.server_name}:{block.method}"
    return ""


class BlockSearch:
    """Lexical block index with prefix and fuzzy matching.

    Documents carry two fields, ``content`` and ``tool_name``; hits in
    ``tool_name`` weigh TOOL_NAME_BOOST times as much.
    """

    def __init__(self) -> None:
        self.conn = sqlite3.connect(":memory:")
        self.conn.row_factory = sqlite3.Row
        init_schema(self.conn)

    def index(self, blocks: Iterable[Block]) -> None:
        """Add many blocks at once."""
        rows = [(b.id, b.type, extract_text(b), tool_label(b)) for b in blocks]
        self.conn.executemany(
            "INSERT INTO blocks_fts (block_id, block_type, content, tool_name) VALUES (?, ?, ?, ?)",
            rows,
        )
        self.conn.commit()

    def add_block(self, block: Block) -> None:
        """Add a block, replacing any earlier document with the same id."""
        self.conn.execute("DELETE FROM blocks_fts WHERE block_id = ?", (block.id,))
        self.index([block])

    def clear(self) -> None:
        self.conn.execute("DELETE FROM blocks_fts")
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def __len__(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM blocks_fts").fetchone()[0]

    def _expand_terms(self, terms: list[str]) -> set[str]:
        """Indexed terms reachable from the query by prefix or small edits."""
        vocabulary = [row["term"] for row in self.conn.execute("SELECT term FROM blocks_vocab")]
        expanded: set[str] = set()
        for term in terms:
            max_dist = round(len(term) * FUZZY_RATIO)
            for candidate in vocabulary:
                if candidate.startswith(term):
                    expanded.add(candidate)
                elif max_dist > 0 and bounded_edit_distance(term, candidate, max_dist) <= max_dist:
                    expanded.add(candidate)
        return expanded

    def search(
        self,
        query: str,
        limit: int = DEFAULT_LIMIT,
        types: list[str] | None = None,
    ) -> list[SearchResult]:
        """Search indexed blocks.

        Returns results ordered by BM25 relevance (higher is better), each with
        the matched terms per field.
        """
        terms = list(dict.fromkeys(tokenize(query)))
        if not terms:
            return []

        expanded = self._expand_terms(terms)
        if not expanded:
            return []
        match_expr = " OR ".join(f'"{term}"' for term in sorted(expanded))

        sql = f"""
            SELECT block_id, content, tool_name,
                   bm25(blocks_fts, 0.0, 0.0, 1.0, {TOOL_NAME_BOOST}) AS score
            FROM blocks_fts
            WHERE blocks_fts MATCH ?
        """
        params: list[object] = [match_expr]
        if types:
            sql += f" AND block_type IN ({', '.join('?' for _ in types)})"
            params.extend(types)
        sql += " ORDER BY score LIMIT ?"
        params.append(limit)

        rows = self.conn.execute(sql, params).fetchall()

        results: list[SearchResult] = []
        for row in rows:
            matches = []
            for field in ("content", "tool_name"):
                found = [t for t in dict.fromkeys(tokenize(row[field] or "")) if t in expanded]
                if found:
                    matches.append(SearchMatch(field=field, snippet=", ".join(found)))
            # BM25 scores are negative (lower is better), so negate them
            results.append(
                SearchResult(block_id=row["block_id"], score=-row["score"], matches=matches or None)
            )
        logger.debug("Keyword search %r: %d terms expanded, %d hits", query, len(expanded), len(results))
        return results
