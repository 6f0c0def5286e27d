"""Identity resolution between navigation ids, execution ids and thread service ids."""

import logging
from typing import Optional

from .client import ThreadServiceClient, linked_execution_id
from .config import is_valid_uuid
from .core import Resolution
from .errors import NotFound, ThreadSyncError
from .local_store import LocalStore

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Maps a raw thread id to an execution id and/or a persistent id.

    Each call to :meth:`resolve` takes a new token. A response that arrives
    after a newer resolution started is discarded and never touches
    :attr:`current`.
    """

    def __init__(self, client: Optional[ThreadServiceClient], store: LocalStore):
        self.client = client
        self.store = store
        self.token = 0
        self.current = Resolution(raw_id=None)

    def is_current(self, token: int) -> bool:
        return token == self.token

    async def resolve(self, raw_id: Optional[str]) -> Optional[Resolution]:
        """Resolve ``raw_id``; returns None when the result went stale."""
        self.token += 1
        token = self.token

        resolution = await self._resolve(raw_id)

        if not self.is_current(token):
            logger.debug("Discarding stale resolution for %s", raw_id)
            return None
        self.current = resolution
        if resolution.record is not None and resolution.execution_id:
            # link discovered on the thread service; remember it locally
            self.store.set_mapping(resolution.execution_id, resolution.persistent_id)
        return resolution

    async def _resolve(self, raw_id: Optional[str]) -> Resolution:
        if not raw_id:
            return Resolution(raw_id=None)

        if not is_valid_uuid(raw_id):
            # Already an execution id; attach a known persistent link, if any.
            return Resolution(
                raw_id=raw_id,
                execution_id=raw_id,
                persistent_id=self.store.get_persistent_id(raw_id),
            )

        mapped = self.store.get_execution_id(raw_id)
        if mapped:
            return Resolution(raw_id=raw_id, execution_id=mapped, persistent_id=raw_id)

        if self.client is None or not self.client.authenticated:
            return Resolution(raw_id=raw_id, execution_id=raw_id)
        if not await self.client.check_health():
            return Resolution(raw_id=raw_id, execution_id=raw_id)

        try:
            record = await self.client.get_thread(raw_id)
        except NotFound:
            # Execution-only thread that was never persisted.
            return Resolution(raw_id=raw_id, execution_id=raw_id)
        except ThreadSyncError as e:
            logger.warning("Failed to fetch thread %s from thread service: %s", raw_id, e)
            return Resolution(raw_id=raw_id, execution_id=raw_id)

        linked = linked_execution_id(record)
        message_count = len(record.get("messages") or [])
        if linked:
            logger.info(
                "Resolved thread service id %s to execution id %s (%d messages in DB)",
                raw_id, linked, message_count,
            )
            return Resolution(
                raw_id=raw_id, execution_id=linked, persistent_id=raw_id, record=record
            )

        logger.info(
            "Thread %s is thread-service-only (%d messages in DB). Marking as read-only.",
            raw_id, message_count,
        )
        return Resolution(raw_id=raw_id, persistent_id=raw_id, read_only=True, record=record)
