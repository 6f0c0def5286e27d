"""Outbound synchronization of execution threads into the thread service.

The thread service is a side channel: nothing here raises to the caller.
Failures are logged and picked up again by the next natural trigger
(a new message, a new file change).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from .client import (
    LINKED_EXECUTION_KEY,
    ThreadServiceClient,
    linked_execution_id,
    participant_role_map,
)
from .config import CREATION_POLL_INTERVAL, FILE_SYNC_DEBOUNCE_SECONDS
from .core import Message
from .errors import ConflictError, MalformedResponse, ThreadSyncError
from .local_store import LocalStore
from .messages import (
    NEW_THREAD_TITLE,
    derive_summary,
    derive_title,
    should_update_title,
    to_persisted_payload,
)

logger = logging.getLogger(__name__)

SOURCE_NAME = "threadsync"
DISCOVERY_LIMIT = 100


class CreationState(str, Enum):
    """Lifecycle of the persistent record behind one execution thread."""

    UNRESOLVED = "unresolved"
    CREATING = "creating"
    CREATED = "created"
    FAILED = "failed"


@dataclass
class SyncState:
    """Per-thread sync bookkeeping.

    ``synced_ids`` and ``in_flight_ids`` never overlap: an id leaves
    ``in_flight_ids`` before (or without) entering ``synced_ids``.
    """

    execution_id: str
    persistent_id: Optional[str] = None
    creation: CreationState = CreationState.UNRESOLVED
    synced_ids: set[str] = field(default_factory=set)
    in_flight_ids: set[str] = field(default_factory=set)
    file_snapshot: dict[str, str] = field(default_factory=dict)
    participant_role_map: dict[str, str] = field(default_factory=dict)
    title_settled: bool = False
    sync_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    file_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class PersistenceSyncEngine:
    """Pushes messages, file snapshots and titles to the thread service."""

    def __init__(
        self,
        client: Optional[ThreadServiceClient],
        store: LocalStore,
        assistant_id: str,
        assistant_name: str,
        *,
        poll_interval: float = CREATION_POLL_INTERVAL,
    ):
        self.client = client
        self.store = store
        self.assistant_id = assistant_id
        self.assistant_name = assistant_name
        self.poll_interval = poll_interval
        self._states: dict[str, SyncState] = {}

    @property
    def enabled(self) -> bool:
        return self.client is not None and self.client.authenticated

    async def available(self) -> bool:
        """True when persistence is configured, authenticated and the service is healthy."""
        if not self.enabled:
            return False
        return await self.client.check_health()

    def state_for(self, execution_id: str) -> SyncState:
        state = self._states.get(execution_id)
        if state is None:
            state = SyncState(
                execution_id=execution_id,
                persistent_id=self.store.get_persistent_id(execution_id),
                synced_ids=self.store.load_synced_ids(execution_id),
                file_snapshot=self.store.load_synced_files(execution_id),
            )
            if state.persistent_id:
                state.creation = CreationState.CREATED
            self._states[execution_id] = state
        return state

    def link(self, execution_id: str, persistent_id: str) -> None:
        """Record an execution id -> persistent id link made elsewhere."""
        state = self.state_for(execution_id)
        state.persistent_id = persistent_id
        state.creation = CreationState.CREATED
        self.store.set_mapping(execution_id, persistent_id)

    def mark_synced(self, execution_id: str, message_ids: Iterable[str]) -> None:
        """Record messages that already exist in the thread service."""
        state = self.state_for(execution_id)
        state.synced_ids.update(i for i in message_ids if i)
        self.store.save_synced_ids(execution_id, state.synced_ids)

    async def _wait_for_creation(self, execution_id: str) -> None:
        state = self.state_for(execution_id)
        while state.creation is CreationState.CREATING:
            await asyncio.sleep(self.poll_interval)

    # ── Thread creation ──────────────────────────────────────────────

    async def ensure_thread(
        self, execution_id: str, messages: list[Message] | None = None
    ) -> Optional[str]:
        """Return the persistent id for ``execution_id``, creating the record once.

        Concurrent callers for the same thread wait for the one create
        request in progress instead of issuing their own.
        """
        if not await self.available():
            return None

        state = self.state_for(execution_id)
        if state.creation is CreationState.CREATED:
            if not state.participant_role_map:
                await self._load_participants(state)
            return state.persistent_id

        if state.creation is CreationState.CREATING:
            await self._wait_for_creation(execution_id)
            return state.persistent_id

        # UNRESOLVED, or FAILED on an earlier attempt: this caller creates
        state.creation = CreationState.CREATING
        try:
            await self._create(state, messages or [])
        finally:
            state.creation = CreationState.CREATED if state.persistent_id else CreationState.FAILED
        return state.persistent_id

    async def _create(self, state: SyncState, messages: list[Message]) -> Optional[str]:
        title = derive_title(messages) if messages else NEW_THREAD_TITLE
        summary = derive_summary(messages) if messages else None
        try:
            data = await self.client.create_thread(
                title=title,
                summary=summary,
                metadata={
                    "assistant_id": self.assistant_id,
                    "source": SOURCE_NAME,
                    LINKED_EXECUTION_KEY: state.execution_id,
                },
                participants=[
                    {"role": "user", "display_name": "User"},
                    {"role": "agent", "display_name": self.assistant_name},
                    {"role": "tool", "display_name": "Tools"},
                ],
            )
        except ConflictError:
            logger.info("Thread for %s already exists; discovering it", state.execution_id)
            return await self._discover(state)
        except MalformedResponse as e:
            logger.warning("Create response for %s unreadable (%s); discovering it", state.execution_id, e)
            return await self._discover(state)
        except ThreadSyncError as e:
            logger.error("Failed to create thread for %s: %s", state.execution_id, e)
            return None

        persistent_id = data.get("id")
        if not persistent_id:
            return await self._discover(state)

        await self._adopt(state, persistent_id, data.get("participants"))
        logger.info("Created thread in database for execution id %s", state.execution_id)
        return persistent_id

    async def _discover(self, state: SyncState) -> Optional[str]:
        """Find an existing record by its linked execution id."""
        try:
            page = await self.client.list_threads(limit=DISCOVERY_LIMIT, offset=0)
        except ThreadSyncError as e:
            logger.warning("Failed to resolve existing thread for %s: %s", state.execution_id, e)
            return None

        match = next(
            (t for t in page["threads"]
             if isinstance(t, dict) and linked_execution_id(t) == state.execution_id),
            None,
        )
        if match is None or not match.get("id"):
            logger.warning("No existing thread links execution id %s", state.execution_id)
            return None
        await self._adopt(state, match["id"], match.get("participants"))
        return match["id"]

    async def _adopt(self, state: SyncState, persistent_id: str, participants) -> None:
        state.persistent_id = persistent_id
        self.store.set_mapping(state.execution_id, persistent_id)
        role_map = participant_role_map(participants)
        if role_map:
            state.participant_role_map = role_map
        else:
            await self._load_participants(state)

    async def _load_participants(self, state: SyncState) -> None:
        try:
            record = await self.client.get_thread(state.persistent_id)
        except ThreadSyncError as e:
            logger.warning("Failed to load participant mapping for %s: %s", state.persistent_id, e)
            return
        role_map = participant_role_map(record.get("participants"))
        if role_map:
            state.participant_role_map = role_map

    # ── Message sync ─────────────────────────────────────────────────

    async def sync_messages(self, execution_id: str, messages: list[Message]) -> int:
        """Push messages not yet acknowledged, in order. Returns the number pushed.

        Passes for the same thread run one at a time; a pass started while
        another is running waits for it to finish.
        """
        if not await self.available():
            return 0

        state = self.state_for(execution_id)
        async with state.sync_lock:
            pending = [
                m for m in messages
                if m.id
                and m.id not in state.synced_ids
                and m.id not in state.in_flight_ids
                and m.content is not None
            ]
            if not pending:
                persistent_id = state.persistent_id
                pushed = 0
            else:
                persistent_id = await self.ensure_thread(execution_id, messages)
                if not persistent_id:
                    logger.error(
                        "Cannot sync messages for %s: thread service id is unknown. "
                        "Messages will not be persisted.",
                        execution_id,
                    )
                    return 0
                pushed = await self._push(state, persistent_id, pending)

        if persistent_id:
            await self.update_title_if_needed(state, messages)
        return pushed

    async def _push(self, state: SyncState, persistent_id: str, pending: list[Message]) -> int:
        state.in_flight_ids.update(m.id for m in pending)
        if not state.participant_role_map:
            await self._load_participants(state)

        pushed = 0
        for message in pending:
            payload = to_persisted_payload(
                message, state.participant_role_map.get(message.role), self.assistant_id
            )
            try:
                await self.client.append_message(persistent_id, payload)
            except ThreadSyncError as e:
                logger.error("Failed to persist message %s: %s", message.id, e)
            else:
                state.synced_ids.add(message.id)
                self.store.save_synced_ids(state.execution_id, state.synced_ids)
                pushed += 1
            finally:
                state.in_flight_ids.discard(message.id)
        return pushed

    # ── Title maintenance ────────────────────────────────────────────

    async def update_title_if_needed(self, state: SyncState, messages: list[Message]) -> bool:
        """Replace a placeholder title with one derived from the messages."""
        if state.title_settled or not state.persistent_id:
            return False
        derived = derive_title(messages)
        if not should_update_title("", derived):
            return False

        try:
            record = await self.client.get_thread(state.persistent_id)
        except ThreadSyncError as e:
            logger.warning("Failed to fetch thread %s for title update: %s", state.persistent_id, e)
            return False

        current = record.get("title") or ""
        if not should_update_title(current, derived):
            logger.debug("Thread already has title %r, skipping update", current)
            state.title_settled = True
            return False

        logger.info("Updating thread title from %r to %r", current, derived)
        try:
            await self.client.update_thread(
                state.persistent_id, title=derived, summary=derive_summary(messages)
            )
        except ThreadSyncError as e:
            logger.warning("Failed to update thread title: %s", e)
            return False
        state.title_settled = True
        return True

    # ── File sync ────────────────────────────────────────────────────

    async def sync_files(self, execution_id: str, files: dict[str, str]) -> bool:
        """Replace the persisted file snapshot with ``files`` unless it is unchanged."""
        if not await self.available():
            return False

        state = self.state_for(execution_id)
        # pushes for one thread land in the order they were requested
        async with state.file_lock:
            if files == state.file_snapshot:
                return False

            await self._wait_for_creation(execution_id)
            if not state.persistent_id:
                logger.debug("No thread service record for %s yet; skipping file sync", execution_id)
                return False

            try:
                await self.client.update_thread(state.persistent_id, metadata={"files": files})
            except ThreadSyncError as e:
                logger.error("Failed to persist files for %s: %s", execution_id, e)
                return False

            state.file_snapshot = dict(files)
            self.store.save_synced_files(execution_id, state.file_snapshot)
            return True


class FileSync:
    """Debounced file-snapshot push for one thread.

    Changes scheduled within ``delay`` seconds coalesce into one push of the
    latest snapshot. Leaving the ``async with`` block (or calling
    :meth:`aclose`) cancels the timer and flushes a pending snapshot.
    A process killed before that loses the pending change.
    """

    def __init__(
        self,
        engine: PersistenceSyncEngine,
        execution_id: str,
        delay: float = FILE_SYNC_DEBOUNCE_SECONDS,
    ):
        self.engine = engine
        self.execution_id = execution_id
        self.delay = delay
        self._pending: Optional[dict[str, str]] = None
        self._timer: Optional[asyncio.Task] = None
        self._flush_lock = asyncio.Lock()
        self._closed = False

    @property
    def pending(self) -> Optional[dict[str, str]]:
        return self._pending

    def schedule(self, files: dict[str, str]) -> None:
        if self._closed:
            return
        self._pending = dict(files)
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.ensure_future(self._fire())

    async def _fire(self) -> None:
        await asyncio.sleep(self.delay)
        # past this point a new schedule() must not cancel the push
        self._timer = None
        await self.flush()

    async def flush(self) -> bool:
        """Push the latest pending snapshot, after any push already under way."""
        async with self._flush_lock:
            files, self._pending = self._pending, None
            if files is None:
                return False
            return await self.engine.sync_files(self.execution_id, files)

    async def aclose(self) -> None:
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._pending is None:
            return
        try:
            await self.flush()
        except Exception:
            logger.exception("Failed to sync files on close for %s", self.execution_id)

    async def __aenter__(self) -> "FileSync":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
