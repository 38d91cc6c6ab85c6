from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

from app.core.logging import get_tracer
from app.metrics import MetricsRegistry, metrics_registry
from app.metrics.base import track_duration
from app.metrics.definitions import (
    METADATA_REBUILD_DURATION,
    METADATA_REBUILDS,
    METADATA_WRITE_CONFLICTS,
    TIMELINE_BUILDS,
    TIMELINE_DENIALS,
)

from .access import can_see_internal_notes, can_view
from .errors import AccessDeniedError, PersistFailure, TicketLifecycleError, TicketNotFoundError, WriteConflict
from .models import Ticket, TicketMetadata, TimelineEvent
from .reconstruction import TICKETS_TABLE, ReconstructionResult, StateReconstructor
from .repository import TicketRepository
from .timeline import TimelineMerger

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


@dataclass(slots=True)
class BatchReport:
    """Outcome of rebuilding metadata for many tickets."""

    processed: int = 0
    succeeded: int = 0
    failed: dict[str, str] = field(default_factory=dict)
    warnings: dict[str, list[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass(slots=True)
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class TicketLifecycleService:
    """Rebuild ticket metadata and render access-controlled ticket timelines."""

    def __init__(
        self,
        repository: TicketRepository,
        *,
        reconstructor: StateReconstructor | None = None,
        merger: TimelineMerger | None = None,
        registry: MetricsRegistry | None = None,
        write_retries: int = 3,
    ) -> None:
        self._repository = repository
        self._reconstructor = reconstructor or StateReconstructor()
        self._merger = merger or TimelineMerger()
        self._registry = registry or metrics_registry
        self._write_retries = max(0, write_retries)
        self._locks: dict[str, _LockEntry] = {}

    async def reconstruct_metadata(self, ticket_id: str, *, actor: str = SYSTEM_ACTOR) -> ReconstructionResult:
        """Recompute and persist the lifecycle metadata of one ticket.

        Recomputations of the same ticket never overlap; a concurrent write by
        another process is detected through the metadata version and retried
        with a fresh read.
        """

        rebuilds = self._registry.counter(METADATA_REBUILDS, label_names=("outcome",))
        with get_tracer().start_as_current_span("tickets.reconstruct_metadata") as span:
            span.set_attribute("ticket.id", ticket_id)
            span.set_attribute("ticket.actor", actor)
            try:
                async with self._ticket_lock(ticket_id):
                    with track_duration(self._registry.distribution(METADATA_REBUILD_DURATION)):
                        result, outcome = await self._reconstruct_locked(ticket_id, actor=actor)
            except TicketLifecycleError:
                rebuilds.inc(labels={"outcome": "failed"})
                raise
            rebuilds.inc(labels={"outcome": outcome})
            span.set_attribute("ticket.metadata.outcome", outcome)
        return result

    async def reconstruct_all(self, *, actor: str = SYSTEM_ACTOR) -> BatchReport:
        """Rebuild every live ticket, collecting failures instead of stopping."""

        report = BatchReport()
        ticket_ids = await self._repository.list_ticket_ids()
        logger.info("Rebuilding metadata for %d tickets (requested by %s)", len(ticket_ids), actor)
        for ticket_id in ticket_ids:
            report.processed += 1
            try:
                result = await self.reconstruct_metadata(ticket_id, actor=actor)
            except TicketLifecycleError as exc:
                logger.error("Failed to rebuild metadata for ticket %s: %s", ticket_id, exc)
                report.failed[ticket_id] = str(exc)
                continue
            except Exception as exc:  # noqa: BLE001 - one bad ticket must not stop the batch
                logger.exception("Unexpected error rebuilding metadata for ticket %s", ticket_id)
                report.failed[ticket_id] = f"{type(exc).__name__}: {exc}"
                continue
            report.succeeded += 1
            if result.warnings:
                report.warnings[ticket_id] = [str(warning) for warning in result.warnings]
        logger.info(
            "Finished rebuilding metadata: %d succeeded, %d failed",
            report.succeeded,
            len(report.failed),
        )
        return report

    async def get_metadata(self, ticket_id: str, *, actor: str = SYSTEM_ACTOR) -> TicketMetadata:
        """Return stored metadata, rebuilding it when it is missing or unreadable."""

        stored = await self._repository.get_metadata(ticket_id)
        if stored is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        if stored.document:
            try:
                return TicketMetadata.from_document(stored.document)
            except ValueError as exc:
                logger.warning("Stored metadata of ticket %s is unreadable, rebuilding: %s", ticket_id, exc)
        result = await self.reconstruct_metadata(ticket_id, actor=actor)
        return result.metadata

    async def build_timeline(self, ticket_id: str, viewer_id: str, viewer_role: str) -> tuple[TimelineEvent, ...]:
        """Merge all events of a ticket into one ordered timeline for ``viewer_id``.

        Raises:
            TicketNotFoundError: If the ticket does not exist or was deleted.
            AccessDeniedError: If the viewer is neither owner, assignee nor admin.
        """

        with get_tracer().start_as_current_span("tickets.build_timeline") as span:
            span.set_attribute("ticket.id", ticket_id)
            ticket = await self._require_ticket(ticket_id)
            if not can_view(viewer_id, viewer_role, ticket.user_id, ticket.assigned_to):
                self._registry.counter(TIMELINE_DENIALS).inc()
                logger.info("Denied timeline of ticket %s to %s (%s)", ticket_id, viewer_id, viewer_role)
                raise AccessDeniedError(ticket_id, viewer_id)

            entries, threads, notes = await asyncio.gather(
                self._repository.read_audit_log(TICKETS_TABLE, ticket_id),
                self._repository.list_threads(ticket_id),
                self._repository.list_notes(ticket_id),
            )
            reconstruction = self._reconstructor.reconstruct(ticket, entries)
            pending = self._merger.collect(
                ticket,
                reconstruction,
                threads,
                notes,
                include_internal=can_see_internal_notes(viewer_role),
            )
            actor_names = await self._repository.resolve_actor_names(self._merger.actor_ids(pending))
            events = self._merger.merge(pending, actor_names)
            span.set_attribute("ticket.timeline.events", len(events))
        self._registry.counter(TIMELINE_BUILDS).inc()
        return events

    async def resolve_ticket_id(self, table_name: str, record_id: str) -> str | None:
        return await self._repository.resolve_ticket_id(table_name, record_id)

    async def _reconstruct_locked(self, ticket_id: str, *, actor: str) -> tuple[ReconstructionResult, str]:
        conflicts = self._registry.counter(METADATA_WRITE_CONFLICTS)
        for attempt in range(self._write_retries + 1):
            ticket = await self._require_ticket(ticket_id)
            # Read the version before the audit log so a concurrent writer surfaces as a conflict.
            stored = await self._repository.get_metadata(ticket_id)
            entries = await self._repository.read_audit_log(TICKETS_TABLE, ticket_id)
            result = self._reconstructor.reconstruct(ticket, entries)
            document = result.metadata.to_document()

            if stored is not None and stored.document == document:
                logger.debug("Metadata of ticket %s is up to date", ticket_id)
                return result, "unchanged"

            expected_version = stored.version if stored is not None else 0
            try:
                version = await self._repository.save_metadata(
                    ticket_id, document, expected_version=expected_version
                )
            except WriteConflict:
                conflicts.inc()
                logger.info(
                    "Write conflict on ticket %s metadata (attempt %d/%d)",
                    ticket_id,
                    attempt + 1,
                    self._write_retries + 1,
                )
                continue
            logger.info("Updated metadata for ticket %s to version %d (by %s)", ticket_id, version, actor)
            return result, "updated"

        raise PersistFailure(
            f"Gave up writing metadata for ticket {ticket_id} after {self._write_retries + 1} conflicting attempts"
        )

    async def _require_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    @asynccontextmanager
    async def _ticket_lock(self, ticket_id: str) -> AsyncIterator[None]:
        entry = self._locks.get(ticket_id)
        if entry is None:
            entry = self._locks[ticket_id] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._locks.pop(ticket_id, None)
