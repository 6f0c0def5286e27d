"""Conversion between execution-native, canonical and persisted message shapes.

Execution-native messages are LangGraph-style dicts::

    {"id": ..., "type": "human" | "ai" | "tool", "content": str | list[block],
     "tool_call_id": ..., "tool_calls": [...], "additional_kwargs": {...}}

Persisted messages are thread service records::

    {"id": ..., "participant_id": ..., "kind": "text" | "tool_call",
     "content": str, "metadata": {...}, "created_at": iso8601}
"""

import logging
from datetime import datetime, timezone
from typing import Any

from .core import ROLES, Message, ThreadSummary

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Deep Research Thread"
NEW_THREAD_TITLE = "New Thread"
PLACEHOLDER_TITLES = ("", DEFAULT_TITLE, "Untitled Thread", NEW_THREAD_TITLE)

TITLE_MAX_CHARS = 50
SUMMARY_MAX_CHARS = 200

EXECUTION_TO_ROLE = {"human": "user", "ai": "agent", "tool": "tool"}
ROLE_TO_EXECUTION = {"user": "human", "agent": "ai", "tool": "tool"}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def extract_text(content: Any) -> str:
    """Flatten message content (string or list of blocks) into plain text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "\n".join(p for p in parts if p)
    return str(content)


def _truncate(text: str, limit: int) -> str:
    return f"{text[:limit]}…" if len(text) > limit else text


def derive_title(messages: list[Message]) -> str:
    """Title from the first user message, or the default placeholder."""
    first_user = next((m for m in messages if m.role == "user"), None)
    if first_user is None:
        return DEFAULT_TITLE
    text = extract_text(first_user.content)
    if not text:
        return DEFAULT_TITLE
    return _truncate(text, TITLE_MAX_CHARS)


def derive_summary(messages: list[Message]) -> str | None:
    """Summary from the first agent message, if any."""
    first_agent = next((m for m in messages if m.role == "agent"), None)
    if first_agent is None:
        return None
    text = extract_text(first_agent.content)
    if not text:
        return None
    return _truncate(text, SUMMARY_MAX_CHARS)


def should_update_title(current: str | None, derived: str) -> bool:
    """Decide whether a persisted title should be replaced by ``derived``."""
    if derived == DEFAULT_TITLE:
        return False
    current = current or ""
    if current in PLACEHOLDER_TITLES:
        return True
    # much more descriptive than what is stored
    return len(derived) > 20 and len(current) < 10


def message_kind(message: Message) -> str:
    return "tool_call" if message.role == "tool" else "text"


# ── Execution-native <-> canonical ───────────────────────────────


def from_execution(raw: dict) -> Message:
    """Convert an execution-native message dict to canonical shape.

    Unknown message types default to the ``agent`` role.
    """
    msg_type = raw.get("type", "")
    role = EXECUTION_TO_ROLE.get(msg_type, "agent")

    metadata: dict = {"source_message_type": msg_type or ROLE_TO_EXECUTION[role]}
    if raw.get("name"):
        metadata["name"] = raw["name"]
    if raw.get("tool_calls"):
        metadata["tool_calls"] = raw["tool_calls"]
    if raw.get("additional_kwargs"):
        metadata["additional_kwargs"] = raw["additional_kwargs"]

    return Message(
        id=raw.get("id") or "",
        role=role,
        content=raw.get("content"),
        tool_call_id=raw.get("tool_call_id") if role == "tool" else None,
        metadata=metadata,
    )


def to_execution(message: Message) -> dict:
    """Convert a canonical message to the execution-native dict used for replay."""
    raw: dict = {
        "id": message.id,
        "type": ROLE_TO_EXECUTION.get(message.role, "ai"),
        "content": message.content if message.content is not None else "",
    }
    if message.role == "tool" and message.tool_call_id:
        raw["tool_call_id"] = message.tool_call_id
    return raw


# ── Canonical -> persisted ───────────────────────────────────────


def _collect_tool_calls(message: Message) -> list[dict]:
    """Gather tool calls from every place an agent message may carry them."""
    calls: list = []
    if isinstance(message.metadata.get("tool_calls"), list):
        calls.extend(message.metadata["tool_calls"])

    extra = message.metadata.get("additional_kwargs") or {}
    if isinstance(extra.get("tool_calls"), list):
        calls.extend(extra["tool_calls"])

    if isinstance(message.content, list):
        calls.extend(
            block for block in message.content
            if isinstance(block, dict) and block.get("type") == "tool_use"
        )

    unique: dict[str, dict] = {}
    for index, call in enumerate(calls):
        if not isinstance(call, dict):
            continue
        function = call.get("function") or {}
        key = call.get("id") or call.get("tool_call_id") or call.get("name") or f"tool-{index}"
        if key in unique:
            continue
        unique[key] = {
            "id": call.get("id") or call.get("tool_call_id"),
            "name": call.get("name") or function.get("name") or "unknown_tool",
            "args": call.get("args") or function.get("arguments") or call.get("input") or {},
            "type": call.get("type") or "function",
        }
    return list(unique.values())


def to_persisted_payload(
    message: Message, participant_id: str | None, assistant_id: str | None
) -> dict:
    """Build the ``POST /threads/{id}/messages`` body for a canonical message."""
    metadata: dict[str, Any] = {
        "source_message_type": ROLE_TO_EXECUTION.get(message.role, "ai"),
        "assistant_id": assistant_id,
    }

    if message.role == "agent":
        tool_calls = _collect_tool_calls(message)
        if tool_calls:
            metadata["tool_calls"] = tool_calls

    if message.role == "tool":
        if message.tool_call_id:
            metadata["tool_call_id"] = message.tool_call_id
        metadata["tool_name"] = message.metadata.get("name") or "unknown_tool"

    extra = message.metadata.get("additional_kwargs") or {}
    for key, value in extra.items():
        if key != "tool_calls" and not metadata.get(key):
            metadata[key] = value

    return {
        "participant_id": participant_id,
        "kind": message_kind(message),
        "content": extract_text(message.content),
        "metadata": metadata,
        "attachments": [],
    }


# ── Persisted -> canonical ───────────────────────────────────────


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    if not value or not isinstance(value, str):
        return None
    try:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        parsed = datetime.fromisoformat(value)
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _persisted_role(record: dict, participants: list[dict]) -> str:
    metadata = record.get("metadata") or {}
    source_type = metadata.get("source_message_type")
    if source_type:
        return EXECUTION_TO_ROLE.get(source_type, "agent")

    participant_id = record.get("participant_id")
    participant = None
    if participant_id:
        participant = next((p for p in participants if p.get("id") == participant_id), None)
    if participant is not None:
        return participant.get("role") if participant.get("role") in ROLES else "agent"

    if record.get("kind") == "tool_call":
        return "tool"
    return "agent"


def from_persisted(record: dict, participants: list[dict] | None = None) -> Message:
    """Convert one persisted message record to canonical shape.

    The role comes from the stored source type first, then from the
    participant role, and defaults to ``agent``.
    """
    role = _persisted_role(record, participants or [])
    metadata = dict(record.get("metadata") or {})
    return Message(
        id=record.get("id") or "",
        role=role,
        content=record.get("content"),
        tool_call_id=metadata.get("tool_call_id") if role == "tool" else None,
        metadata=metadata,
        created_at=parse_timestamp(record.get("created_at")),
    )


def persisted_history(record: dict) -> list[Message]:
    """Return a thread record's messages in canonical shape, oldest first."""
    raw_messages = record.get("messages") or []
    participants = record.get("participants") or []
    converted = [from_persisted(m, participants) for m in raw_messages if isinstance(m, dict)]
    converted.sort(key=lambda m: m.created_at or _EPOCH)
    return converted


# ── Execution-store listing ──────────────────────────────────────


def execution_thread_summary(
    thread_id: str,
    raw_messages: Any,
    updated_at: datetime | None,
    status: str,
    assistant_id: str | None = None,
) -> ThreadSummary:
    """Summarize an execution thread from its raw message values."""
    title = "Untitled Thread"
    description = ""
    if raw_messages is None:
        raw_messages = []
    if isinstance(raw_messages, list):
        raw_messages = [m for m in raw_messages if isinstance(m, dict)]
    else:
        # state values we cannot read
        title = f"Thread {thread_id[:8]}"
        raw_messages = []

    first_human = next((m for m in raw_messages if m.get("type") == "human"), None)
    if first_human is not None:
        text = extract_text(first_human.get("content"))
        if text:
            title = text[:50] + ("..." if len(text) > 50 else "")
    first_ai = next((m for m in raw_messages if m.get("type") == "ai"), None)
    if first_ai is not None:
        description = extract_text(first_ai.get("content"))[:100]

    return ThreadSummary(
        id=thread_id,
        updated_at=updated_at,
        status=status,
        title=title,
        description=description,
        assistant_id=assistant_id,
    )
