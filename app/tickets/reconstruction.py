"""Rebuild a ticket's lifecycle metadata from its audit trail.

The reconstruction is a pure function of the ticket facts and the audit
entries: it always replays the full log, so running it again over the same
(or a longer) log yields the same document up to the last shared entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from .classification import classify_security, resolve_sla
from .errors import MalformedEntry
from .models import (
    AuditLogEntry,
    CurrentState,
    StateTransition,
    StatusHistoryEntry,
    Ticket,
    TicketMetadata,
)
from .state import NO_STATE, TicketLifecycle

logger = logging.getLogger(__name__)

TICKETS_TABLE = "tickets"


@dataclass(slots=True)
class ReconstructionResult:
    """Metadata derived for a ticket, the entries it was replayed from and the ones skipped."""

    metadata: TicketMetadata
    warnings: list[MalformedEntry] = field(default_factory=list)
    entries: list[AuditLogEntry] = field(default_factory=list)


class StateReconstructor:
    """Derive canonical ticket metadata from creation facts and audit entries."""

    def __init__(self, *, source: str = "web") -> None:
        self._source = source

    def reconstruct(self, ticket: Ticket, entries: Sequence[AuditLogEntry]) -> ReconstructionResult:
        usable, warnings = self._usable_entries(ticket, entries)

        # Tickets are assumed to start open; the audit log rarely records creation.
        initial = TicketLifecycle.initial_state().value
        transitions = [
            StateTransition(
                from_state=NO_STATE,
                to_state=initial,
                timestamp=ticket.created_at,
                user_id=ticket.user_id,
            )
        ]
        history = [StatusHistoryEntry(status=initial, timestamp=ticket.created_at, user_id=ticket.user_id)]
        last_known_status = initial

        for entry in usable:
            new_status = entry.new_data.get("status")
            if not new_status:
                continue
            previous = entry.old_data.get("status") or last_known_status
            if new_status == previous:
                continue
            transitions.append(
                StateTransition(
                    from_state=previous,
                    to_state=new_status,
                    timestamp=entry.created_at,
                    user_id=entry.user_id,
                )
            )
            history.append(StatusHistoryEntry(status=new_status, timestamp=entry.created_at, user_id=entry.user_id))
            last_known_status = new_status

        latest = history[-1]
        if usable:
            last_updated_by = usable[-1].user_id or ticket.user_id
        else:
            last_updated_by = ticket.assigned_to or ticket.user_id

        security = classify_security(ticket.priority, ticket.tags)
        metadata = TicketMetadata(
            current_state=CurrentState(name=latest.status, entered_at=latest.timestamp, updated_by=latest.user_id),
            state_transitions=tuple(transitions),
            status_history=tuple(history),
            last_updated_by=last_updated_by,
            source=self._source,
            sla_level=resolve_sla(ticket.priority),
            security_level=security.security_level if security else None,
            security_classification=security.security_classification if security else None,
        )

        if latest.status != ticket.status:
            logger.info(
                "Ticket %s stored status %s differs from reconstructed status %s",
                ticket.id,
                ticket.status,
                latest.status,
            )
        return ReconstructionResult(metadata=metadata, warnings=warnings, entries=usable)

    @staticmethod
    def _usable_entries(
        ticket: Ticket, entries: Sequence[AuditLogEntry]
    ) -> tuple[list[AuditLogEntry], list[MalformedEntry]]:
        usable: list[AuditLogEntry] = []
        warnings: list[MalformedEntry] = []
        for entry in entries:
            reason: str | None = None
            if entry.table_name != TICKETS_TABLE or entry.record_id != ticket.id:
                reason = f"belongs to {entry.table_name}/{entry.record_id}"
            elif entry.created_at is None:
                reason = "missing or unparseable timestamp"
            elif not entry.user_id:
                reason = "missing actor"
            elif entry.created_at < ticket.created_at:
                reason = "timestamp precedes ticket creation"

            if reason is not None:
                warning = MalformedEntry(entry_id=entry.id, reason=reason)
                logger.warning("Skipping %s while rebuilding ticket %s", warning, ticket.id)
                warnings.append(warning)
                continue
            usable.append(entry)

        # Stable sort keeps the reader's order for entries sharing a timestamp.
        usable.sort(key=lambda item: item.created_at)  # type: ignore[arg-type, return-value]
        return usable, warnings
