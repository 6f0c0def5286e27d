"""FastAPI web server exposing resolved threads to a rendering layer."""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel

from .backends import get_execution_store
from .client import ThreadServiceClient
from .config import (
    get_access_token,
    get_assistant_id,
    get_assistant_name,
    get_page_size,
    get_service_base_url,
    get_store_path,
    is_valid_url,
)
from .core import Message, ThreadContext, ThreadSummary
from .errors import ThreadSyncError
from .export import thread_to_json, thread_to_markdown
from .local_store import LocalStore
from .messages import derive_title, extract_text
from .provider import ExecutionStore
from .session import ThreadSession
from .sync import PersistenceSyncEngine
from .threads import ThreadListAggregator

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Process-wide collaborators shared by every request."""

    execution: ExecutionStore
    client: Optional[ThreadServiceClient]
    store: LocalStore
    engine: PersistenceSyncEngine
    assistant_id: str
    page_size: int
    sessions: dict[str, ThreadSession] = field(default_factory=dict)
    _opening: dict[str, asyncio.Lock] = field(default_factory=dict)

    def new_session(self) -> ThreadSession:
        return ThreadSession(
            self.execution,
            self.client,
            self.store,
            engine=self.engine,
            assistant_id=self.assistant_id,
        )

    async def session_for(self, raw_id: str) -> ThreadSession:
        """Return the open session for ``raw_id``, opening it on first use.

        Concurrent requests for one id share a single session. A thread that
        resolves to nothing is not cached.
        """
        lock = self._opening.setdefault(raw_id, asyncio.Lock())
        async with lock:
            session = self.sessions.get(raw_id)
            if session is not None:
                await session.refresh()
            else:
                session = self.new_session()
                await session.open(raw_id)
                self.sessions[raw_id] = session

            if session.ctx is None:
                del self.sessions[raw_id]
                await session.close()
            return session

    async def aclose(self) -> None:
        for session in self.sessions.values():
            await session.close()
        self.sessions.clear()
        self._opening.clear()
        if self.client is not None:
            await self.client.aclose()
        await self.execution.aclose()
        self.store.close()


def build_runtime() -> Runtime:
    """Assemble the runtime from environment configuration."""
    base_url = get_service_base_url()
    if base_url and not is_valid_url(base_url):
        logger.warning("Ignoring invalid thread service URL %r", base_url)
        base_url = None
    client = ThreadServiceClient(base_url, get_access_token()) if base_url else None
    store = LocalStore(get_store_path())
    assistant_id = get_assistant_id()
    engine = PersistenceSyncEngine(client, store, assistant_id, get_assistant_name())
    return Runtime(
        execution=get_execution_store(),
        client=client,
        store=store,
        engine=engine,
        assistant_id=assistant_id,
        page_size=get_page_size(),
    )


# Runtime cache (populated on first request)
_runtime: Runtime | None = None


def _get_runtime() -> Runtime:
    """Lazily initialize and cache the runtime."""
    global _runtime
    if _runtime is None:
        _runtime = build_runtime()
        logger.info(
            "Execution store: %s; thread service: %s",
            _runtime.execution.name,
            _runtime.client.base_url if _runtime.client else "disabled",
        )
    return _runtime


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    global _runtime
    if _runtime is not None:
        await _runtime.aclose()
        _runtime = None


app = FastAPI(title="threadsync", version="0.1.0", lifespan=lifespan)


class SendRequest(BaseModel):
    content: str


def _summary_to_dict(summary: ThreadSummary) -> dict:
    """Convert a ThreadSummary dataclass to a JSON-serializable dict."""
    return {
        "id": summary.id,
        "title": summary.title,
        "description": summary.description,
        "status": summary.status,
        "updated_at": summary.updated_at.isoformat() if summary.updated_at else None,
        "assistant_id": summary.assistant_id,
    }


def _message_to_dict(msg: Message) -> dict:
    """Convert a Message dataclass to a JSON-serializable dict."""
    return {
        "id": msg.id,
        "role": msg.role,
        "content": extract_text(msg.content),
        "tool_call_id": msg.tool_call_id,
        "created_at": msg.created_at.isoformat() if msg.created_at else None,
        "metadata": msg.metadata,
    }


def _thread_to_dict(ctx: ThreadContext) -> dict:
    return {
        "raw_id": ctx.raw_id,
        "execution_id": ctx.execution_id,
        "persistent_id": ctx.persistent_id,
        "read_only": ctx.read_only,
        "messages": [_message_to_dict(m) for m in ctx.active_messages],
    }


async def _open_thread(raw_id: str) -> ThreadSession:
    session = await _get_runtime().session_for(raw_id)
    if session.ctx is None:
        raise HTTPException(status_code=404, detail="Thread not found")
    return session


# ── Routes ───────────────────────────────────────────────────────


@app.get("/api/health")
async def get_health():
    """Report whether the thread service is usable."""
    client = _get_runtime().client
    healthy = client is not None and client.authenticated and await client.check_health()
    return {"service": healthy}


@app.get("/api/threads")
async def get_threads(
    status: str | None = Query(None, description="Filter by status: idle, busy, interrupted, error"),
    pages: int = Query(1, ge=1, le=50),
):
    """Return the first ``pages`` pages of the thread list."""
    runtime = _get_runtime()
    aggregator = ThreadListAggregator(
        runtime.execution,
        runtime.client,
        page_size=runtime.page_size,
        status=status,
        assistant_id=runtime.assistant_id,
    )
    for _ in range(pages):
        page = await aggregator.load_more()
        if len(page) < aggregator.page_size:
            break
    return {
        "source": aggregator.source,
        "has_more": aggregator.has_more,
        "threads": [_summary_to_dict(s) for s in aggregator.threads],
    }


@app.get("/api/threads/{raw_id}")
async def get_thread(raw_id: str):
    """Resolve a thread id and return the messages to show for it."""
    session = await _open_thread(raw_id)
    return _thread_to_dict(session.ctx)


@app.post("/api/threads/{raw_id}/messages")
async def send_message(raw_id: str, body: SendRequest):
    """Send a user message on a thread, upgrading persistent-only threads first."""
    session = await _open_thread(raw_id)
    try:
        execution_id = await session.send_message(body.content)
    except ThreadSyncError as e:
        raise HTTPException(status_code=502, detail=f"Failed to send message: {e}")

    await session.wait_idle()
    result = _thread_to_dict(session.ctx)
    result["execution_id"] = execution_id
    return result


@app.get("/api/export/{raw_id}")
async def export_thread(
    raw_id: str,
    format: str = Query("md", description="Export format: md or json"),
):
    """Export a thread as Markdown or JSON."""
    session = await _open_thread(raw_id)
    ctx = session.ctx
    messages = ctx.active_messages
    title = derive_title(messages)

    safe_title = "".join(c if c.isalnum() or c in "-_ " else "" for c in title)[:50]

    if format == "json":
        content = thread_to_json(ctx, title, messages)
        return Response(
            content=content,
            media_type="application/json",
            headers={"Content-Disposition": f'attachment; filename="{safe_title}.json"'},
        )
    else:
        content = thread_to_markdown(ctx, title, messages)
        return Response(
            content=content,
            media_type="text/markdown",
            headers={"Content-Disposition": f'attachment; filename="{safe_title}.md"'},
        )
