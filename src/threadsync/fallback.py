"""Inbound history recovery from the thread service.

When the execution store finishes loading a thread with no messages but the
thread is linked to a persisted record, the persisted history is loaded once
and rendered until the execution store produces messages of its own.
"""

import asyncio
import logging
from typing import Callable, Optional

from .client import LINKED_EXECUTION_KEY, ThreadServiceClient
from .config import FALLBACK_RECHECK_DELAY
from .core import Message, ThreadContext
from .errors import ThreadSyncError
from .messages import persisted_history
from .provider import ExecutionStore
from .sync import PersistenceSyncEngine

logger = logging.getLogger(__name__)

IsCurrent = Callable[[ThreadContext], bool]
Notify = Callable[[str], None]


def _log_notify(message: str) -> None:
    logger.warning(message)


class FallbackLoader:
    """Loads persisted history at most once per thread context."""

    def __init__(
        self,
        client: Optional[ThreadServiceClient],
        *,
        recheck_delay: float = FALLBACK_RECHECK_DELAY,
        notify: Notify = _log_notify,
    ):
        self.client = client
        self.recheck_delay = recheck_delay
        self.notify = notify
        self._pending: set[asyncio.Task] = set()

    def should_load(self, ctx: ThreadContext) -> bool:
        if self.client is None or ctx.fallback_attempted or not ctx.persistent_id:
            return False
        if ctx.read_only:
            return True
        return not ctx.execution_loading and not ctx.execution_messages

    def observe(self, ctx: ThreadContext, is_current: IsCurrent) -> Optional[asyncio.Task]:
        """React to an execution-store update for ``ctx``.

        Loads right away when the trigger condition holds. Otherwise, while
        the execution store is still empty, schedules one recheck after
        ``recheck_delay`` in case it populated late.
        """
        if self.should_load(ctx):
            return self._spawn(self.load(ctx, is_current))
        if ctx.fallback_attempted or not ctx.persistent_id or ctx.execution_messages:
            return None
        return self._spawn(self._recheck(ctx, is_current))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _recheck(self, ctx: ThreadContext, is_current: IsCurrent) -> None:
        await asyncio.sleep(self.recheck_delay)
        if is_current(ctx) and self.should_load(ctx):
            logger.debug("Secondary check: loading persisted history for %s", ctx.persistent_id)
            await self.load(ctx, is_current)

    async def load(self, ctx: ThreadContext, is_current: IsCurrent) -> list[Message]:
        """Fetch and apply the persisted history of ``ctx``; never raises."""
        if ctx.fallback_attempted:
            return ctx.fallback_messages
        ctx.fallback_attempted = True
        if self.client is None or not ctx.persistent_id:
            return []
        ctx.fallback_loading = True
        logger.info("Loading persisted history for %s", ctx.persistent_id)
        try:
            record = await self.client.get_thread(ctx.persistent_id)
        except ThreadSyncError as e:
            logger.error("Failed to load persisted history for %s: %s", ctx.persistent_id, e)
            if is_current(ctx):
                ctx.fallback_loading = False
                self.notify("Failed to load thread history")
            return []

        history = persisted_history(record)
        if not is_current(ctx):
            logger.debug("Discarding persisted history for stale thread %s", ctx.persistent_id)
            return history
        ctx.fallback_messages = history
        ctx.fallback_loading = False
        logger.info("Loaded %d persisted messages for %s", len(history), ctx.persistent_id)
        return history

    async def cancel_pending(self) -> None:
        tasks = list(self._pending)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Upgrade path ─────────────────────────────────────────────────

    async def upgrade_and_submit(
        self,
        ctx: ThreadContext,
        message: Message,
        execution: ExecutionStore,
        engine: PersistenceSyncEngine,
        assistant_id: str,
    ) -> str:
        """Give a persistent-only thread an execution run, then submit ``message``.

        Steps: create the run, link it in the record metadata, replay the
        persisted history into the run, submit. A failed link or replay still
        ends in the submit; only a failed submit raises.
        """
        execution_id = None
        try:
            execution_id = await execution.create_thread(assistant_id)
            logger.info("Created execution thread %s for persisted thread %s",
                        execution_id, ctx.persistent_id)
        except ThreadSyncError as e:
            logger.error("Failed to create execution thread for %s: %s", ctx.persistent_id, e)

        if execution_id is not None and self.client is not None:
            await self._link(ctx, execution_id, engine)
            await self._replay(ctx, execution_id, execution, engine)

        return await execution.submit(execution_id, message)

    async def _link(self, ctx: ThreadContext, execution_id: str, engine: PersistenceSyncEngine) -> None:
        if not await engine.available():
            logger.warning("Thread service unavailable; %s linked to %s locally only",
                           ctx.persistent_id, execution_id)
        else:
            try:
                await self.client.update_thread(
                    ctx.persistent_id, metadata={LINKED_EXECUTION_KEY: execution_id}
                )
            except ThreadSyncError as e:
                logger.error("Failed to link %s to execution thread %s: %s",
                             ctx.persistent_id, execution_id, e)
        # the local link holds even if the record update failed
        engine.link(execution_id, ctx.persistent_id)

    async def _replay(
        self,
        ctx: ThreadContext,
        execution_id: str,
        execution: ExecutionStore,
        engine: PersistenceSyncEngine,
    ) -> None:
        try:
            record = await self.client.get_thread(ctx.persistent_id)
        except ThreadSyncError as e:
            logger.error("Failed to fetch history for replay into %s: %s", execution_id, e)
            return
        history = persisted_history(record)
        if not history:
            return
        try:
            await execution.update_state(execution_id, messages=history)
        except ThreadSyncError as e:
            logger.error("Failed to replay history into %s: %s", execution_id, e)
            return
        engine.mark_synced(execution_id, [m.id for m in history])
        logger.info("Replayed %d messages into execution thread %s", len(history), execution_id)
