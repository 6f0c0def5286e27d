"""In-process execution store.

Keeps thread state in a dict. Used when no execution server is configured
and by the test suite. An optional ``responder`` produces the agent reply
for each submitted user message.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from ..core import Message, ThreadSummary
from ..errors import NotFound
from ..messages import execution_thread_summary, from_execution, to_execution
from ..provider import ExecutionStore

logger = logging.getLogger(__name__)

Responder = Callable[[list[Message]], Optional[str]]


class InMemoryExecutionStore(ExecutionStore):
    """Execution store backed by a dict of thread states."""

    name = "memory"

    def __init__(self, responder: Optional[Responder] = None, assistant_id: str = "agent"):
        self.responder = responder
        self.assistant_id = assistant_id
        self.threads: dict[str, dict] = {}
        self.submitted: list[tuple[str, Message]] = []

    def _thread(self, thread_id: str) -> dict:
        thread = self.threads.get(thread_id)
        if thread is None:
            raise NotFound(f"Thread {thread_id} not found", status_code=404)
        return thread

    def _touch(self, thread: dict) -> None:
        thread["updated_at"] = datetime.now(timezone.utc)

    async def get_messages(self, thread_id: str) -> list[Message]:
        thread = self._thread(thread_id)
        return [from_execution(raw) for raw in thread["values"].get("messages", [])]

    async def get_files(self, thread_id: str) -> dict[str, str]:
        return dict(self._thread(thread_id)["values"].get("files", {}))

    async def create_thread(self, assistant_id: str) -> str:
        thread_id = str(uuid.uuid4())
        self.threads[thread_id] = {
            "assistant_id": assistant_id,
            "status": "idle",
            "values": {"messages": [], "files": {}},
            "updated_at": datetime.now(timezone.utc),
        }
        logger.debug("Created execution thread %s", thread_id)
        return thread_id

    async def submit(self, thread_id: str | None, message: Message) -> str:
        if thread_id is None:
            thread_id = await self.create_thread(self.assistant_id)
        thread = self._thread(thread_id)
        self.submitted.append((thread_id, message))

        values = thread["values"]
        values.setdefault("messages", []).append(to_execution(message))
        if self.responder is not None:
            history = [from_execution(raw) for raw in values["messages"]]
            reply = self.responder(history)
            if reply is not None:
                values["messages"].append(
                    {"id": str(uuid.uuid4()), "type": "ai", "content": reply}
                )
        self._touch(thread)
        return thread_id

    async def update_state(
        self,
        thread_id: str,
        messages: list[Message] | None = None,
        files: dict[str, str] | None = None,
    ) -> None:
        thread = self._thread(thread_id)
        if messages is not None:
            thread["values"]["messages"] = [to_execution(m) for m in messages]
        if files is not None:
            thread["values"]["files"] = dict(files)
        self._touch(thread)

    async def search(
        self, limit: int, offset: int, status: str | None = None
    ) -> list[ThreadSummary]:
        threads = [
            (thread_id, thread) for thread_id, thread in self.threads.items()
            if status is None or thread["status"] == status
        ]
        threads.sort(key=lambda item: item[1]["updated_at"], reverse=True)
        return [
            execution_thread_summary(
                thread_id,
                thread["values"].get("messages"),
                thread["updated_at"],
                thread["status"],
                thread["assistant_id"],
            )
            for thread_id, thread in threads[offset: offset + limit]
        ]
