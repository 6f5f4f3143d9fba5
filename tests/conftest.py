"""Pytest fixtures for cc-trace tests."""

import hashlib
import json
import re
import tempfile
from pathlib import Path

import numpy as np
import pytest


class StubEmbedder:
    """Deterministic EmbeddingProvider: hashed bag-of-words vectors.

    ``overrides`` maps exact texts to fixed vectors.
    """

    def __init__(self, dims: int = 32, ready: bool = True, overrides: dict | None = None):
        self.dims = dims
        self.ready = ready
        self.overrides = overrides or {}
        self.batch_sizes: list[int] = []
        self.embedded_texts: list[str] = []

    def is_ready(self) -> bool:
        return self.ready

    def _vector(self, text: str) -> np.ndarray:
        if text in self.overrides:
            return np.asarray(self.overrides[text], dtype=np.float32)
        vector = np.zeros(self.dims, dtype=np.float32)
        for token in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dims
            vector[bucket] += 1.0
        norm = np.linalg.norm(vector)
        return vector / norm if norm else vector

    async def embed(self, text: str) -> np.ndarray:
        if not self.ready:
            raise RuntimeError("not ready")
        self.embedded_texts.append(text)
        return self._vector(text)

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        if not self.ready:
            raise RuntimeError("not ready")
        self.batch_sizes.append(len(texts))
        self.embedded_texts.extend(texts)
        return [self._vector(t) for t in texts]


@pytest.fixture
def stub_embedder():
    """A ready stub embedder."""
    return StubEmbedder()


@pytest.fixture
def stub_embedder_factory():
    """Build stub embedders with custom readiness or fixed vectors."""
    return StubEmbedder


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_session_jsonl(temp_dir):
    """Create a sample JSONL session file."""
    session_file = temp_dir / "test-session.jsonl"

    records = [
        {
            "type": "user",
            "uuid": "msg-001",
            "sessionId": "test-session-123",
            "timestamp": "2024-01-15T10:00:00Z",
            "message": {"role": "user", "content": "How do I implement authentication?"},
        },
        {
            "type": "assistant",
            "uuid": "msg-002",
            "requestId": "req-1",
            "sessionId": "test-session-123",
            "timestamp": "2024-01-15T10:00:05Z",
            "message": {
                "role": "assistant",
                "content": [
                    {"type": "thinking", "thinking": "Let me think about JWT..."},
                    {"type": "text", "text": "For authentication, you can use JWT tokens."},
                ],
                "usage": {"input_tokens": 100, "output_tokens": 20},
            },
        },
        {
            "type": "assistant",
            "uuid": "msg-003",
            "requestId": "req-1",
            "sessionId": "test-session-123",
            "timestamp": "2024-01-15T10:00:06Z",
            "message": {
                "role": "assistant",
                "content": [
                    {
                        "type": "tool_use",
                        "id": "toolu_1",
                        "name": "Bash",
                        "input": {"command": 'git commit -m "feat: add jwt auth"'},
                    },
                ],
                "usage": {"input_tokens": 10, "output_tokens": 5},
            },
        },
        {
            "type": "user",
            "uuid": "msg-004",
            "sessionId": "test-session-123",
            "timestamp": "2024-01-15T10:00:07Z",
            "message": {
                "role": "user",
                "content": [
                    {"type": "tool_result", "tool_use_id": "toolu_1", "content": "[main abc123] feat"}
                ],
            },
        },
        "not a record",
        {
            "type": "user",
            "uuid": "msg-005",
            "isMeta": True,
            "sessionId": "test-session-123",
            "timestamp": "2024-01-15T10:00:08Z",
            "message": {"role": "user", "content": "Caveat: local command output follows"},
        },
        {
            "type": "progress",
            "uuid": "msg-006",
            "timestamp": "2024-01-15T10:00:09Z",
            "data": {"type": "hook_progress"},
        },
        {
            "type": "user",
            "uuid": "msg-007",
            "sessionId": "test-session-123",
            "timestamp": "2024-01-15T11:00:00Z",
            "message": {"role": "user", "content": "Now let's write the login page."},
        },
        {
            "type": "assistant",
            "uuid": "msg-008",
            "requestId": "req-2",
            "sessionId": "test-session-123",
            "timestamp": "2024-01-15T11:00:10Z",
            "message": {
                "role": "assistant",
                "content": [{"type": "text", "text": "Here is a login page with a form."}],
            },
        },
    ]

    with open(session_file, "w") as f:
        for record in records:
            f.write(json.dumps(record) + "\n")
        f.write("{truncated json\n")

    return session_file
