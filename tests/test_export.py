"""Tests for export functionality."""

import json
from datetime import datetime, timezone

import pytest

from threadsync.core import Message, ThreadContext
from threadsync.export import thread_to_json, thread_to_markdown


@pytest.fixture
def sample_context():
    return ThreadContext(
        raw_id="0b7f6c1e-6c36-4b8e-9a55-2f1f5b7f0c11",
        token=1,
        execution_id="exec-42",
        persistent_id="0b7f6c1e-6c36-4b8e-9a55-2f1f5b7f0c11",
    )


@pytest.fixture
def sample_messages():
    return [
        Message(
            id="m1",
            role="user",
            content="Summarize the latest climate report",
            created_at=datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc),
        ),
        Message(
            id="m2",
            role="agent",
            content=[{"type": "text", "text": "Let me look it up."}],
            metadata={"tool_calls": [{"id": "call-1", "name": "search"}]},
            created_at=datetime(2025, 1, 15, 10, 0, 30, tzinfo=timezone.utc),
        ),
        Message(
            id="m3",
            role="tool",
            content="Global temperatures rose 1.2°C.",
            tool_call_id="call-1",
        ),
    ]


class TestMarkdownExport:
    def test_header(self, sample_context, sample_messages):
        md = thread_to_markdown(sample_context, "Climate report", sample_messages)
        assert md.startswith("# Climate report")
        assert "**Thread:** 0b7f6c1e-6c36-4b8e-9a55-2f1f5b7f0c11" in md
        assert "**Execution:** exec-42" in md
        assert "**Messages:** 3" in md
        assert "Read-only" not in md

    def test_messages(self, sample_context, sample_messages):
        md = thread_to_markdown(sample_context, "Climate report", sample_messages)
        assert "## User (2025-01-15 10:00)" in md
        assert "## Agent (2025-01-15 10:00)" in md
        assert "## Tool\n" in md
        assert "Let me look it up." in md
        assert "_Result of tool call `call-1`_" in md
        assert md.count("---") == 4

    def test_read_only_flag(self, sample_messages):
        ctx = ThreadContext(raw_id="p-1", token=1, persistent_id="p-1", read_only=True)
        md = thread_to_markdown(ctx, "Old thread", sample_messages)
        assert "**Read-only:** yes" in md
        assert "**Execution:**" not in md


class TestJsonExport:
    def test_structure(self, sample_context, sample_messages):
        data = json.loads(thread_to_json(sample_context, "Climate report", sample_messages))

        assert data["thread"]["title"] == "Climate report"
        assert data["thread"]["execution_id"] == "exec-42"
        assert data["thread"]["message_count"] == 3
        assert [m["role"] for m in data["messages"]] == ["user", "agent", "tool"]
        assert data["messages"][1]["content"] == "Let me look it up."
        assert data["messages"][1]["metadata"]["tool_calls"][0]["id"] == "call-1"
        assert data["messages"][2]["tool_call_id"] == "call-1"
        assert data["messages"][2]["created_at"] is None

    def test_unicode_is_preserved(self, sample_context, sample_messages):
        text = thread_to_json(sample_context, "Climate report", sample_messages)
        assert "1.2°C" in text
