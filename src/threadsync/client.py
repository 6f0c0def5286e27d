"""HTTP client for the persistent thread service."""

import asyncio
import logging
from typing import Any, Optional

import httpx

from .config import HEALTH_CHECK_TIMEOUT
from .errors import ConflictError, MalformedResponse, NetworkError, NotFound
from .jsonutils import safe_response_json

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class ThreadServiceClient:
    """Async client for the thread service REST API.

    All methods raise the ``threadsync.errors`` taxonomy; callers on the
    sync side channel catch and log them.

    Usage:
        client = ThreadServiceClient("https://threads.example.com", token)
        if await client.check_health():
            record = await client.get_thread(thread_id)
        await client.aclose()
    """

    def __init__(
        self,
        base_url: str,
        access_token: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT,
        health_timeout: float = HEALTH_CHECK_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.health_timeout = health_timeout
        headers = {"Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self._health: Optional[asyncio.Task] = None

    @property
    def authenticated(self) -> bool:
        return bool(self.access_token)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ThreadServiceClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ── Health ───────────────────────────────────────────────────────

    async def check_health(self) -> bool:
        """Probe ``/healthz`` once per client; later calls reuse the first answer."""
        if self._health is None:
            self._health = asyncio.ensure_future(self._probe())
        return await asyncio.shield(self._health)

    async def _probe(self) -> bool:
        try:
            response = await self._http.get("/healthz", timeout=self.health_timeout)
            healthy = response.is_success
        except httpx.HTTPError as e:
            logger.debug("Health probe failed: %s", e)
            healthy = False
        if not healthy:
            logger.error(
                "Thread service is not reachable at %s. Threads will not be persisted. "
                "Please ensure the thread service is running.",
                self.base_url,
            )
        return healthy

    # ── Requests ─────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

        if response.status_code == 404:
            raise NotFound(f"{method} {path}: not found", status_code=404)
        if response.status_code == 409:
            raise ConflictError(f"{method} {path}: already exists", status_code=409)
        if not response.is_success:
            detail = response.text[:200] if response.text else response.reason_phrase
            raise NetworkError(
                f"{method} {path}: {response.status_code} {detail}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _decode(response: httpx.Response) -> dict:
        data = safe_response_json(response)
        if not isinstance(data, dict):
            raise MalformedResponse(
                f"Unexpected response body (status {response.status_code})",
                status_code=response.status_code,
            )
        return data

    async def create_thread(
        self,
        title: str,
        summary: Optional[str],
        metadata: dict[str, Any],
        participants: list[dict[str, str]],
    ) -> dict:
        """``POST /threads``; raises ConflictError on 409."""
        body = {
            "title": title,
            "summary": summary,
            "metadata": metadata,
            "participants": participants,
        }
        response = await self._request("POST", "/threads", json=body)
        return self._decode(response)

    async def get_thread(self, thread_id: str) -> dict:
        """``GET /threads/{id}`` including messages, participants and metadata."""
        response = await self._request("GET", f"/threads/{thread_id}")
        return self._decode(response)

    async def update_thread(self, thread_id: str, **fields: Any) -> None:
        """``PATCH /threads/{id}`` with only the given fields."""
        await self._request("PATCH", f"/threads/{thread_id}", json=fields)

    async def append_message(self, thread_id: str, payload: dict) -> None:
        """``POST /threads/{id}/messages``."""
        await self._request("POST", f"/threads/{thread_id}/messages", json=payload)

    async def list_threads(
        self, limit: int, offset: int, status: Optional[str] = None
    ) -> dict:
        """``GET /threads`` page: ``{"threads": [...], "total": n}``."""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        response = await self._request("GET", "/threads", params=params)
        data = self._decode(response)
        threads = data.get("threads")
        if not isinstance(threads, list):
            data["threads"] = []
        return data


def participant_role_map(participants: Any) -> dict[str, str]:
    """Build ``{role: participant_id}`` from a participants list."""
    role_map: dict[str, str] = {}
    if not isinstance(participants, list):
        return role_map
    for participant in participants:
        if isinstance(participant, dict) and participant.get("role") and participant.get("id"):
            role_map[participant["role"]] = participant["id"]
    return role_map


def record_metadata(record: dict) -> dict:
    """Return a record's metadata; the service may name the field either way."""
    metadata = record.get("metadata") or record.get("custom_metadata") or {}
    return metadata if isinstance(metadata, dict) else {}


LINKED_EXECUTION_KEY = "linked_execution_id"
# written by older clients
LEGACY_LINKED_EXECUTION_KEY = "langgraph_thread_id"


def linked_execution_id(record: dict) -> Optional[str]:
    """Return the execution id linked to a persisted record, if any."""
    metadata = record_metadata(record)
    value = metadata.get(LINKED_EXECUTION_KEY) or metadata.get(LEGACY_LINKED_EXECUTION_KEY)
    return value if isinstance(value, str) and value else None
