"""Change feed that turns entity change notifications into debounced recomputations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Protocol

from app.metrics import MetricsRegistry, metrics_registry
from app.metrics.definitions import CHANGE_FEED_NOTIFICATIONS

from .errors import TicketLifecycleError
from .reconstruction import ReconstructionResult

logger = logging.getLogger(__name__)

TimelineListener = Callable[[str], Awaitable[None]]

# Tables whose changes alter the derived ticket metadata.
METADATA_TABLES: frozenset[str] = frozenset({"tickets", "audit_logs"})
# Tables whose changes only alter the merged timeline.
TIMELINE_TABLES: frozenset[str] = frozenset({"ticket_threads", "ticket_notes"})
# Metric label shared by every table outside the two sets above.
UNTRACKED_TABLE_LABEL = "other"


class LifecycleRecomputer(Protocol):
    async def resolve_ticket_id(self, table_name: str, record_id: str) -> str | None:
        ...

    async def reconstruct_metadata(self, ticket_id: str, *, actor: str = ...) -> ReconstructionResult:
        ...


class ChangeFeedSubscriber:
    """Consume ``(table, record_id)`` notifications and refresh the affected ticket.

    Notifications are queued without blocking the caller. A single worker maps
    each one to a ticket id and schedules a recompute after ``debounce_seconds``;
    a newer notification for a ticket still waiting replaces the pending one.
    """

    def __init__(
        self,
        service: LifecycleRecomputer,
        *,
        debounce_seconds: float = 0.5,
        max_queue_size: int = 0,
        registry: MetricsRegistry | None = None,
        actor: str = "change-feed",
    ) -> None:
        self._service = service
        self._debounce_seconds = max(0.0, debounce_seconds)
        self._queue: asyncio.Queue[tuple[str, str]] = asyncio.Queue(maxsize=max_queue_size)
        self._registry = registry or metrics_registry
        self._actor = actor
        self._listeners: list[TimelineListener] = []
        self._pending: dict[str, asyncio.Task[None]] = {}
        self._dirty_metadata: set[str] = set()
        self._running: set[asyncio.Task[None]] = set()
        self._worker: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def add_timeline_listener(self, listener: TimelineListener) -> None:
        """Register a callback told which ticket's timeline became stale."""

        self._listeners.append(listener)

    def on_entity_changed(self, table_name: str, record_id: str) -> bool:
        """Queue a change notification; returns ``False`` if it was dropped."""

        tracked = table_name in METADATA_TABLES or table_name in TIMELINE_TABLES
        self._registry.counter(CHANGE_FEED_NOTIFICATIONS, label_names=("table",)).inc(
            labels={"table": table_name if tracked else UNTRACKED_TABLE_LABEL}
        )
        try:
            self._queue.put_nowait((table_name, record_id))
        except asyncio.QueueFull:
            logger.warning("Change feed queue full, dropping %s/%s", table_name, record_id)
            return False
        return True

    async def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._consume(), name="change-feed-worker")
        logger.info("Change feed worker started")

    async def stop(self) -> None:
        """Stop consuming and cancel every pending or running recompute."""

        if self._worker is not None:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None
        tasks = [*self._pending.values(), *self._running]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._pending.clear()
        self._running.clear()
        self._dirty_metadata.clear()
        logger.info("Change feed worker stopped")

    async def drain(self) -> None:
        """Wait until every queued notification has been processed and applied."""

        await self._queue.join()
        while self._pending or self._running:
            await asyncio.gather(*self._pending.values(), *self._running, return_exceptions=True)

    async def _consume(self) -> None:
        while True:
            table_name, record_id = await self._queue.get()
            try:
                await self._dispatch(table_name, record_id)
            except TicketLifecycleError as exc:
                logger.error("Could not process change %s/%s: %s", table_name, record_id, exc)
            except Exception:  # noqa: BLE001 - the worker must outlive bad notifications
                logger.exception("Unexpected error processing change %s/%s", table_name, record_id)
            finally:
                self._queue.task_done()

    async def _dispatch(self, table_name: str, record_id: str) -> None:
        if table_name not in METADATA_TABLES and table_name not in TIMELINE_TABLES:
            logger.debug("Ignoring change on untracked table %s", table_name)
            return
        ticket_id = await self._service.resolve_ticket_id(table_name, record_id)
        if ticket_id is None:
            logger.debug("No ticket found for change %s/%s", table_name, record_id)
            return
        if table_name in METADATA_TABLES:
            self._dirty_metadata.add(ticket_id)
        self._schedule(ticket_id)

    def _schedule(self, ticket_id: str) -> None:
        waiting = self._pending.pop(ticket_id, None)
        if waiting is not None:
            waiting.cancel()
        self._pending[ticket_id] = asyncio.create_task(self._debounced(ticket_id))

    async def _debounced(self, ticket_id: str) -> None:
        await asyncio.sleep(self._debounce_seconds)
        current = asyncio.current_task()
        # Past the debounce window the recompute can no longer be superseded.
        if self._pending.get(ticket_id) is current:
            del self._pending[ticket_id]
        if current is not None:
            self._running.add(current)
        try:
            await self._refresh(ticket_id)
        finally:
            if current is not None:
                self._running.discard(current)

    async def _refresh(self, ticket_id: str) -> None:
        if ticket_id in self._dirty_metadata:
            self._dirty_metadata.discard(ticket_id)
            try:
                await self._service.reconstruct_metadata(ticket_id, actor=self._actor)
            except TicketLifecycleError as exc:
                logger.error("Recompute of ticket %s after change failed: %s", ticket_id, exc)
                return
            except Exception:  # noqa: BLE001 - recomputes run in detached tasks
                logger.exception("Unexpected error recomputing ticket %s after change", ticket_id)
                return
        for listener in self._listeners:
            try:
                await listener(ticket_id)
            except Exception:  # noqa: BLE001 - listeners are external collaborators
                logger.exception("Timeline listener failed for ticket %s", ticket_id)
