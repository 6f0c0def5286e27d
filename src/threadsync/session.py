"""Per-view orchestration of one active thread.

A :class:`ThreadSession` owns the identity resolver, the sync engine and
the fallback loader, and feeds them from the execution store. Each opened
thread gets a fresh :class:`ThreadContext`; background work checks that its
context is still the active one before touching session state.
"""

import asyncio
import logging
import uuid
from typing import Callable, Optional

from .client import ThreadServiceClient, record_metadata
from .config import (
    CREATION_POLL_INTERVAL,
    DEFAULT_ASSISTANT_ID,
    DEFAULT_ASSISTANT_NAME,
    FALLBACK_RECHECK_DELAY,
    FILE_SYNC_DEBOUNCE_SECONDS,
    is_valid_uuid,
)
from .core import Message, Resolution, ThreadContext
from .errors import NotFound, ThreadSyncError
from .fallback import FallbackLoader
from .local_store import LocalStore
from .provider import ExecutionStore
from .resolver import IdentityResolver
from .sync import FileSync, PersistenceSyncEngine

logger = logging.getLogger(__name__)


class ThreadSession:
    """Drives one view of a conversation across both stores."""

    def __init__(
        self,
        execution: ExecutionStore,
        client: Optional[ThreadServiceClient] = None,
        store: Optional[LocalStore] = None,
        *,
        engine: Optional[PersistenceSyncEngine] = None,
        assistant_id: str = DEFAULT_ASSISTANT_ID,
        assistant_name: str = DEFAULT_ASSISTANT_NAME,
        notify: Optional[Callable[[str], None]] = None,
        debounce: float = FILE_SYNC_DEBOUNCE_SECONDS,
        poll_interval: float = CREATION_POLL_INTERVAL,
        recheck_delay: float = FALLBACK_RECHECK_DELAY,
    ):
        self.execution = execution
        self.client = client
        self.store = store if store is not None else LocalStore(":memory:")
        self.assistant_id = assistant_id
        self.debounce = debounce
        self.notify = notify or self._log_notify
        self.resolver = IdentityResolver(client, self.store)
        # one engine per process keeps thread creation single-flight across sessions
        self.engine = engine or PersistenceSyncEngine(
            client, self.store, assistant_id, assistant_name, poll_interval=poll_interval
        )
        self.loader = FallbackLoader(client, recheck_delay=recheck_delay, notify=self.notify)
        self.ctx: Optional[ThreadContext] = None
        self._file_sync: Optional[FileSync] = None
        self._tasks: set[asyncio.Task] = set()

    @staticmethod
    def _log_notify(message: str) -> None:
        logger.warning(message)

    def is_current(self, ctx: ThreadContext) -> bool:
        return ctx is self.ctx and self.resolver.is_current(ctx.token)

    @property
    def messages(self) -> list[Message]:
        return self.ctx.active_messages if self.ctx is not None else []

    # ── Opening ──────────────────────────────────────────────────────

    async def open(self, raw_id: Optional[str]) -> Optional[ThreadContext]:
        """Make ``raw_id`` the active thread and load what can be shown for it.

        If another open starts before this one resolves, this call returns
        None and leaves the session alone.
        """
        await self._teardown()
        resolution = await self.resolver.resolve(raw_id)
        if resolution is None:
            return None
        if resolution.is_empty:
            self.ctx = None
            return None

        ctx = ThreadContext(
            raw_id=resolution.raw_id,
            token=self.resolver.token,
            execution_id=resolution.execution_id,
            persistent_id=resolution.persistent_id,
            read_only=resolution.read_only,
        )
        self.ctx = ctx

        if ctx.read_only:
            ctx.execution_loading = False
            await self.loader.load(ctx, self.is_current)
            return ctx

        self._file_sync = FileSync(self.engine, ctx.execution_id, self.debounce)
        if resolution.record is not None:
            await self._restore_files(ctx, resolution.record)
        await self.refresh()
        return self.ctx

    async def _restore_files(self, ctx: ThreadContext, record: dict) -> None:
        files = record_metadata(record).get("files")
        if not isinstance(files, dict) or not files:
            return
        try:
            await self.execution.update_state(ctx.execution_id, files=files)
        except ThreadSyncError as e:
            logger.warning("Failed to restore files into %s: %s", ctx.execution_id, e)
            return
        ctx.files = dict(files)
        self.engine.state_for(ctx.execution_id).file_snapshot = dict(files)
        logger.info("Restored %d files into execution thread %s", len(files), ctx.execution_id)

    # ── Execution-store updates ──────────────────────────────────────

    async def refresh(self) -> list[Message]:
        """Pull the current execution state and feed it through the session."""
        ctx = self.ctx
        if ctx is None or not ctx.execution_id:
            return self.messages

        try:
            messages = await self.execution.get_messages(ctx.execution_id)
            files = await self.execution.get_files(ctx.execution_id)
        except NotFound:
            if self.is_current(ctx):
                await self._execution_missing(ctx)
            return self.messages
        except ThreadSyncError as e:
            logger.error("Failed to load execution thread %s: %s", ctx.execution_id, e)
            if self.is_current(ctx):
                self.notify("Failed to load thread")
            return self.messages

        if not self.is_current(ctx):
            return []
        self.on_execution_update(messages, loading=False)
        if files != ctx.files:
            self.update_files(files)
        return ctx.active_messages

    async def _execution_missing(self, ctx: ThreadContext) -> None:
        persistent_id = ctx.persistent_id
        if not persistent_id and is_valid_uuid(ctx.raw_id):
            persistent_id = ctx.raw_id
        if not persistent_id:
            logger.warning("Execution thread %s not found; clearing active thread", ctx.execution_id)
            await self._teardown()
            self.ctx = None
            return

        logger.warning(
            "Execution thread %s not found; showing persisted thread %s read-only",
            ctx.execution_id, persistent_id,
        )
        await self._close_file_sync()
        ctx.execution_id = None
        ctx.persistent_id = persistent_id
        ctx.read_only = True
        ctx.execution_loading = False
        ctx.execution_messages = []
        await self.loader.load(ctx, self.is_current)

    def on_execution_update(self, messages: list[Message], loading: bool = False) -> None:
        """Apply an execution-store snapshot: fallback check and background sync."""
        ctx = self.ctx
        if ctx is None or ctx.read_only:
            return
        ctx.execution_messages = list(messages)
        ctx.execution_loading = loading
        self.loader.observe(ctx, self.is_current)
        if not loading and messages and ctx.execution_id:
            self._spawn(self._sync(ctx, ctx.execution_id, list(messages)))

    async def _sync(self, ctx: ThreadContext, execution_id: str, messages: list[Message]) -> None:
        await self.engine.sync_messages(execution_id, messages)
        persistent_id = self.engine.state_for(execution_id).persistent_id
        if persistent_id and self.is_current(ctx) and not ctx.persistent_id:
            ctx.persistent_id = persistent_id

    def update_files(self, files: dict[str, str]) -> None:
        """Record a new file set; the push to the thread service is debounced."""
        ctx = self.ctx
        if ctx is None or self._file_sync is None:
            return
        ctx.files = dict(files)
        self._file_sync.schedule(files)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for background sync passes started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Sending ──────────────────────────────────────────────────────

    async def send_message(self, content: str) -> str:
        """Submit a user message to the execution store.

        A persistent-only thread is upgraded first. Submission failures are
        reported through ``notify`` and re-raised.
        """
        message = Message(id=str(uuid.uuid4()), role="user", content=content)
        ctx = self.ctx
        try:
            if ctx is None:
                execution_id = await self.execution.submit(None, message)
            elif ctx.read_only:
                execution_id = await self.loader.upgrade_and_submit(
                    ctx, message, self.execution, self.engine, self.assistant_id
                )
            else:
                execution_id = await self.execution.submit(ctx.execution_id, message)
        except Exception as e:
            logger.error("Failed to send message: %s", e)
            self.notify(f"Failed to send message: {e}")
            raise

        self._adopt_execution(ctx, execution_id)
        await self.refresh()
        return execution_id

    def _adopt_execution(self, ctx: Optional[ThreadContext], execution_id: str) -> None:
        """Follow the execution id a submission landed on."""
        if ctx is not None and ctx.execution_id == execution_id:
            return
        if ctx is None:
            ctx = ThreadContext(
                raw_id=execution_id,
                token=self.resolver.token,
                persistent_id=self.store.get_persistent_id(execution_id),
            )
            self.ctx = ctx
        ctx.execution_id = execution_id
        ctx.read_only = False
        ctx.execution_loading = True
        self.resolver.current = Resolution(
            raw_id=ctx.raw_id, execution_id=execution_id, persistent_id=ctx.persistent_id
        )
        self._file_sync = FileSync(self.engine, execution_id, self.debounce)
        logger.info("Active thread now runs on execution thread %s", execution_id)

    # ── Teardown ─────────────────────────────────────────────────────

    async def _close_file_sync(self) -> None:
        file_sync, self._file_sync = self._file_sync, None
        if file_sync is not None:
            await file_sync.aclose()

    async def _teardown(self) -> None:
        await self.loader.cancel_pending()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._close_file_sync()

    async def close(self) -> None:
        """Abandon pending work for the active thread and flush its files."""
        await self._teardown()
        self.ctx = None

    async def __aenter__(self) -> "ThreadSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
