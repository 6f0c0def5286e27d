"""Shared test fixtures for threadsync."""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from httpx import ASGITransport

from threadsync.backends.memory import InMemoryExecutionStore
from threadsync.client import ThreadServiceClient
from threadsync.local_store import LocalStore

BASE_TIME = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


class FakeThreadService:
    """In-memory thread service that records every request it receives."""

    def __init__(self):
        self.threads: dict[str, dict] = {}
        self.calls: list[str] = []
        self.created: list[dict] = []
        self.patches: list[tuple[str, dict]] = []
        self.appended: list[tuple[str, dict]] = []
        self.healthy = True
        self.conflict_on_create = False
        self.create_delay = 0.0
        # "METHOD /path" -> status code returned instead of handling the request
        self.failures: dict[str, int] = {}
        self._clock = 0
        self.app = self._build_app()

    def _now(self) -> str:
        self._clock += 1
        return (BASE_TIME + timedelta(seconds=self._clock)).isoformat()

    def count(self, method: str, path: str | None = None) -> int:
        if path is None:
            return sum(1 for c in self.calls if c.startswith(f"{method} "))
        return self.calls.count(f"{method} {path}")

    def seed(
        self,
        *,
        title: str = "Seeded thread",
        metadata: dict | None = None,
        messages: list[tuple[str, str]] = (),
        status: str = "open",
        updated_at: str | None = None,
    ) -> str:
        """Insert a thread record directly; messages are ``(role, content)`` pairs."""
        thread_id = str(uuid.uuid4())
        participants = [
            {"id": f"p-{role}-{thread_id[:8]}", "role": role, "display_name": role.title()}
            for role in ("user", "agent", "tool")
        ]
        by_role = {p["role"]: p["id"] for p in participants}
        source_type = {"user": "human", "agent": "ai", "tool": "tool"}
        records = []
        for index, (role, content) in enumerate(messages):
            records.append({
                "id": f"m-{thread_id[:8]}-{index}",
                "participant_id": by_role[role],
                "kind": "tool_call" if role == "tool" else "text",
                "content": content,
                "metadata": {"source_message_type": source_type[role]},
                "created_at": (BASE_TIME + timedelta(minutes=index)).isoformat(),
            })
        now = updated_at or self._now()
        self.threads[thread_id] = {
            "id": thread_id,
            "title": title,
            "summary": None,
            "status": status,
            "metadata": dict(metadata or {}),
            "participants": participants,
            "messages": records,
            "created_at": now,
            "updated_at": now,
        }
        return thread_id

    def _build_app(self) -> FastAPI:
        app = FastAPI()

        @app.middleware("http")
        async def record_calls(request: Request, call_next):
            key = f"{request.method} {request.url.path}"
            self.calls.append(key)
            status = self.failures.get(key)
            if status is not None:
                return JSONResponse({"detail": "injected failure"}, status_code=status)
            return await call_next(request)

        @app.get("/healthz")
        async def healthz():
            if not self.healthy:
                return JSONResponse({"status": "down"}, status_code=503)
            return {"status": "ok"}

        @app.post("/threads")
        async def create_thread(request: Request):
            body = await request.json()
            self.created.append(body)
            if self.create_delay:
                await asyncio.sleep(self.create_delay)
            if self.conflict_on_create:
                return JSONResponse({"detail": "already exists"}, status_code=409)
            thread_id = str(uuid.uuid4())
            participants = [
                {"id": str(uuid.uuid4()), "role": p["role"], "display_name": p.get("display_name")}
                for p in body.get("participants", [])
            ]
            now = self._now()
            record = {
                "id": thread_id,
                "title": body.get("title"),
                "summary": body.get("summary"),
                "status": "open",
                "metadata": dict(body.get("metadata") or {}),
                "participants": participants,
                "messages": [],
                "created_at": now,
                "updated_at": now,
            }
            self.threads[thread_id] = record
            return JSONResponse(record, status_code=201)

        @app.get("/threads")
        async def list_threads(limit: int = 20, offset: int = 0, status: str | None = None):
            records = [
                {k: v for k, v in t.items() if k != "messages"}
                for t in self.threads.values()
                if status is None or t["status"] == status
            ]
            records.sort(key=lambda t: t["updated_at"], reverse=True)
            return {"threads": records[offset: offset + limit], "total": len(records)}

        @app.get("/threads/{thread_id}")
        async def get_thread(thread_id: str):
            record = self.threads.get(thread_id)
            if record is None:
                return JSONResponse({"detail": "not found"}, status_code=404)
            return record

        @app.patch("/threads/{thread_id}")
        async def update_thread(thread_id: str, request: Request):
            record = self.threads.get(thread_id)
            if record is None:
                return JSONResponse({"detail": "not found"}, status_code=404)
            body = await request.json()
            self.patches.append((thread_id, body))
            for key, value in body.items():
                if key == "metadata":
                    record["metadata"].update(value)
                else:
                    record[key] = value
            record["updated_at"] = self._now()
            return record

        @app.post("/threads/{thread_id}/messages")
        async def append_message(thread_id: str, request: Request):
            record = self.threads.get(thread_id)
            if record is None:
                return JSONResponse({"detail": "not found"}, status_code=404)
            body = await request.json()
            self.appended.append((thread_id, body))
            message = dict(body, id=str(uuid.uuid4()), created_at=self._now())
            record["messages"].append(message)
            record["updated_at"] = message["created_at"]
            return JSONResponse(message, status_code=201)

        return app


@pytest.fixture
def service():
    return FakeThreadService()


def make_client(service: FakeThreadService, token: str | None = "test-token") -> ThreadServiceClient:
    return ThreadServiceClient(
        "http://threads.test", token, transport=ASGITransport(app=service.app)
    )


@pytest_asyncio.fixture
async def client(service):
    """Authenticated client wired to the fake thread service."""
    c = make_client(service)
    yield c
    await c.aclose()


@pytest.fixture
def store():
    s = LocalStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def execution():
    """In-memory execution store whose agent answers every user message."""
    return InMemoryExecutionStore(responder=lambda history: f"Answer #{len(history)}")


async def seed_execution(execution: InMemoryExecutionStore, messages: list[tuple[str, str]]) -> str:
    """Create an execution thread holding ``(type, content)`` raw messages."""
    thread_id = await execution.create_thread("agent")
    execution.threads[thread_id]["values"]["messages"] = [
        {"id": f"x-{index}", "type": msg_type, "content": content}
        for index, (msg_type, content) in enumerate(messages)
    ]
    return thread_id
