"""LangGraph server execution store.

Talks to a LangGraph deployment over its REST API:

- ``POST /threads``                    create a thread
- ``GET  /threads/{id}/state``         current values (messages, files)
- ``POST /threads/{id}/state``         overwrite values
- ``POST /threads/{id}/runs/wait``     run the assistant on new input
- ``POST /threads/search``             paginated listing
"""

import logging
from typing import Any, Optional

import httpx

from ..core import Message, ThreadSummary
from ..errors import MalformedResponse, NetworkError, NotFound
from ..jsonutils import safe_response_json
from ..messages import execution_thread_summary, from_execution, parse_timestamp, to_execution
from ..provider import ExecutionStore

logger = logging.getLogger(__name__)

RECURSION_LIMIT = 100
DEFAULT_TIMEOUT = 600.0


class LangGraphExecutionStore(ExecutionStore):
    """Execution store backed by a LangGraph server."""

    name = "langgraph"

    def __init__(
        self,
        url: str,
        assistant_id: str,
        api_key: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.url = url.rstrip("/")
        self.assistant_id = assistant_id
        headers = {"Content-Type": "application/json", "x-auth-scheme": "langsmith"}
        if api_key:
            headers["X-Api-Key"] = api_key
        self._http = httpx.AsyncClient(
            base_url=self.url,
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e
        if response.status_code == 404:
            raise NotFound(f"{method} {path}: not found", status_code=404)
        if not response.is_success:
            raise NetworkError(
                f"{method} {path}: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        data = safe_response_json(response)
        if data is None:
            raise MalformedResponse(f"{method} {path}: undecodable body")
        return data

    async def _values(self, thread_id: str) -> dict:
        state = await self._request("GET", f"/threads/{thread_id}/state")
        values = state.get("values") if isinstance(state, dict) else None
        return values if isinstance(values, dict) else {}

    async def get_messages(self, thread_id: str) -> list[Message]:
        values = await self._values(thread_id)
        raw_messages = values.get("messages") or []
        return [from_execution(raw) for raw in raw_messages if isinstance(raw, dict)]

    async def get_files(self, thread_id: str) -> dict[str, str]:
        files = (await self._values(thread_id)).get("files")
        return dict(files) if isinstance(files, dict) else {}

    async def create_thread(self, assistant_id: str) -> str:
        data = await self._request(
            "POST", "/threads", json={"metadata": {"assistant_id": assistant_id}}
        )
        thread_id = data.get("thread_id") if isinstance(data, dict) else None
        if not thread_id:
            raise MalformedResponse("Thread create response has no thread_id")
        return thread_id

    async def submit(self, thread_id: str | None, message: Message) -> str:
        if thread_id is None:
            thread_id = await self.create_thread(self.assistant_id)
        await self._request(
            "POST",
            f"/threads/{thread_id}/runs/wait",
            json={
                "assistant_id": self.assistant_id,
                "input": {"messages": [to_execution(message)]},
                "config": {
                    "recursion_limit": RECURSION_LIMIT,
                    "configurable": {"thread_id": thread_id},
                },
            },
        )
        return thread_id

    async def update_state(
        self,
        thread_id: str,
        messages: list[Message] | None = None,
        files: dict[str, str] | None = None,
    ) -> None:
        values: dict[str, Any] = {}
        if messages is not None:
            values["messages"] = [to_execution(m) for m in messages]
        if files is not None:
            values["files"] = files
        if not values:
            return
        await self._request("POST", f"/threads/{thread_id}/state", json={"values": values})

    async def search(
        self, limit: int, offset: int, status: str | None = None
    ) -> list[ThreadSummary]:
        body: dict[str, Any] = {
            "limit": limit,
            "offset": offset,
            "sort_by": "updated_at",
            "sort_order": "desc",
            "metadata": {"assistant_id": self.assistant_id},
        }
        if status:
            body["status"] = status
        data = await self._request("POST", "/threads/search", json=body)
        if not isinstance(data, list):
            raise MalformedResponse("Thread search did not return a list")

        summaries = []
        for thread in data:
            if not isinstance(thread, dict) or not thread.get("thread_id"):
                continue
            values = thread.get("values")
            raw_messages = values.get("messages") if isinstance(values, dict) else None
            summaries.append(execution_thread_summary(
                thread["thread_id"],
                raw_messages,
                parse_timestamp(thread.get("updated_at")),
                thread.get("status") or "idle",
                self.assistant_id,
            ))
        return summaries
