"""Core data models for threadsync."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

ROLES = ("user", "agent", "tool")

# Canonical (execution-store) thread status vocabulary; the thread service
# only knows open, paused and closed
CANONICAL_STATUSES = ("idle", "busy", "interrupted", "error")


@dataclass
class Message:
    """A single conversation message in canonical shape."""

    id: str
    role: str  # "user" | "agent" | "tool"
    content: Any = None  # None means "not yet defined" (still streaming)
    tool_call_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None


@dataclass
class ThreadSummary:
    """List-level projection of a thread."""

    id: str
    updated_at: Optional[datetime]
    status: str  # one of CANONICAL_STATUSES
    title: str
    description: str = ""
    assistant_id: Optional[str] = None


@dataclass
class Resolution:
    """Outcome of resolving a raw navigation id."""

    raw_id: Optional[str]
    execution_id: Optional[str] = None
    persistent_id: Optional[str] = None  # sync / fallback target
    read_only: bool = False
    record: Optional[dict] = None  # persisted record, when one was fetched

    @property
    def is_empty(self) -> bool:
        return self.execution_id is None and self.persistent_id is None


@dataclass
class ThreadContext:
    """State of one logical thread, passed through every pending operation.

    ``token`` identifies the open that created the context; work started
    under an older token must not mutate the session.
    """

    raw_id: str
    token: int
    execution_id: Optional[str] = None
    persistent_id: Optional[str] = None
    read_only: bool = False
    execution_messages: list[Message] = field(default_factory=list)
    execution_loading: bool = True
    fallback_attempted: bool = False
    fallback_loading: bool = False
    fallback_messages: list[Message] = field(default_factory=list)
    files: dict[str, str] = field(default_factory=dict)

    @property
    def active_messages(self) -> list[Message]:
        """Messages the rendering layer should show right now."""
        if self.read_only:
            return self.fallback_messages
        if self.execution_messages:
            return self.execution_messages
        if self.fallback_messages and not self.execution_loading:
            return self.fallback_messages
        return self.execution_messages
