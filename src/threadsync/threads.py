"""Paginated thread listing across the thread service and the execution store."""

import logging
from typing import Optional

from .client import ThreadServiceClient, record_metadata
from .config import DEFAULT_PAGE_SIZE
from .core import ThreadSummary
from .errors import ServiceUnavailable, ThreadSyncError
from .messages import parse_timestamp
from .provider import ExecutionStore

logger = logging.getLogger(__name__)

# closed has no canonical counterpart and folds into idle
PERSISTENT_TO_CANONICAL = {
    "open": "idle",
    "paused": "interrupted",
    "closed": "idle",
}

# error has no persistent counterpart; filtering by it is not forwarded
CANONICAL_TO_PERSISTENT = {
    "idle": "open",
    "busy": "open",
    "interrupted": "paused",
    "error": None,
}


def to_canonical_status(status: Optional[str]) -> str:
    return PERSISTENT_TO_CANONICAL.get(status or "", "idle")


def to_persistent_status(status: Optional[str]) -> Optional[str]:
    if not status:
        return None
    return CANONICAL_TO_PERSISTENT.get(status)


def summary_from_record(record: dict, assistant_id: Optional[str] = None) -> ThreadSummary:
    """Project a thread service record onto a list summary."""
    metadata = record_metadata(record)
    return ThreadSummary(
        id=record["id"],
        updated_at=parse_timestamp(record.get("updated_at") or record.get("created_at")),
        status=to_canonical_status(record.get("status")),
        title=record.get("title") or "Untitled Thread",
        description=record.get("summary") or "",
        assistant_id=metadata.get("assistant_id") or assistant_id,
    )


class ThreadListAggregator:
    """Holds the fetched pages of the thread list.

    The source is the thread service when the client is authenticated and
    the execution store otherwise; the two are never mixed. A failed fetch
    yields an empty page.
    """

    def __init__(
        self,
        execution: ExecutionStore,
        client: Optional[ThreadServiceClient] = None,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        status: Optional[str] = None,
        assistant_id: Optional[str] = None,
    ):
        self.execution = execution
        self.client = client
        self.page_size = page_size
        self.status = status
        self.assistant_id = assistant_id
        self.pages: list[list[ThreadSummary]] = []

    @property
    def source(self) -> str:
        if self.client is not None and self.client.authenticated:
            return "service"
        return "execution"

    @property
    def threads(self) -> list[ThreadSummary]:
        return [summary for page in self.pages for summary in page]

    @property
    def has_more(self) -> bool:
        return bool(self.pages) and len(self.pages[-1]) == self.page_size

    async def fetch_page(self, index: int) -> list[ThreadSummary]:
        try:
            return await self._fetch(index)
        except ThreadSyncError as e:
            logger.error("Failed to fetch thread list page %d: %s", index, e)
            return []

    async def _fetch(self, index: int) -> list[ThreadSummary]:
        offset = index * self.page_size
        if self.source == "service":
            return await self._fetch_service(offset)
        return await self.execution.search(self.page_size, offset, self.status)

    async def _fetch_service(self, offset: int) -> list[ThreadSummary]:
        if not await self.client.check_health():
            raise ServiceUnavailable("Thread service is not reachable")
        data = await self.client.list_threads(
            self.page_size, offset, to_persistent_status(self.status)
        )
        summaries = []
        for record in data["threads"]:
            if not isinstance(record, dict) or not record.get("id"):
                continue
            summaries.append(summary_from_record(record, self.assistant_id))
        return summaries

    async def load_more(self) -> list[ThreadSummary]:
        """Fetch the next page and append it."""
        page = await self.fetch_page(len(self.pages))
        self.pages.append(page)
        return page

    async def revalidate(self) -> list[ThreadSummary]:
        """Re-fetch every page held so far (at least one).

        Stops early when a page comes back empty, so pages past the end of
        a shrunk list are dropped. A page that fails to load keeps the
        copy already held.
        """
        count = max(len(self.pages), 1)
        pages: list[list[ThreadSummary]] = []
        for index in range(count):
            try:
                page = await self._fetch(index)
            except ThreadSyncError as e:
                logger.error("Failed to revalidate thread list page %d: %s", index, e)
                page = self.pages[index] if index < len(self.pages) else []
                pages.append(page)
                continue
            pages.append(page)
            if not page:
                break
        self.pages = pages
        return self.threads

    def set_status(self, status: Optional[str]) -> None:
        """Change the status filter; held pages are dropped."""
        if status != self.status:
            self.status = status
            self.pages = []
