"""Merge ticket lifecycle, assignment and conversation events into one timeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence

from .models import AuditLogEntry, Thread, ThreadNote, Ticket, TicketMetadata, TimelineEvent
from .reconstruction import ReconstructionResult
from .state import NO_STATE, TicketLifecycle

TICKET_CREATED = "ticket_created"
STATUS_CHANGE = "status_change"
ASSIGNMENT_CHANGE = "assignment_change"
THREAD_CREATED = "thread_created"
MESSAGE_ADDED = "message_added"
NOTE_ADDED = "note_added"

# Order applied to events that share a timestamp.
EVENT_PRIORITY: Mapping[str, int] = {
    TICKET_CREATED: 0,
    STATUS_CHANGE: 1,
    ASSIGNMENT_CHANGE: 2,
    THREAD_CREATED: 3,
    MESSAGE_ADDED: 4,
    NOTE_ADDED: 5,
}

UNKNOWN_ACTOR = "System"


@dataclass(frozen=True, slots=True)
class PendingEvent:
    """Timeline event whose actor has not been resolved to a display name yet."""

    event_time: datetime
    event_type: str
    event_description: str
    actor_id: str | None
    thread_id: str | None = None
    thread_context: Mapping[str, Any] = field(default_factory=dict)


class TimelineMerger:
    """Collect events from every source of a ticket and order them deterministically."""

    def collect(
        self,
        ticket: Ticket,
        reconstruction: ReconstructionResult,
        threads: Iterable[Thread],
        notes: Iterable[ThreadNote],
        *,
        include_internal: bool = False,
    ) -> list[PendingEvent]:
        events: list[PendingEvent] = [
            PendingEvent(
                event_time=ticket.created_at,
                event_type=TICKET_CREATED,
                event_description="Ticket created",
                actor_id=ticket.user_id,
                thread_context={
                    "ticket_id": ticket.id,
                    "title": ticket.title,
                    "description": ticket.description,
                },
            )
        ]
        events.extend(self._status_events(reconstruction.metadata))
        # Entries skipped by the reconstruction never reach the timeline.
        events.extend(self._assignment_events(reconstruction.entries))

        for thread in sorted(threads, key=lambda item: (item.created_at, item.id)):
            if thread.deleted:
                continue
            description = f"New thread created: {thread.title}" if thread.title else "New thread created"
            events.append(
                PendingEvent(
                    event_time=thread.created_at,
                    event_type=THREAD_CREATED,
                    event_description=description,
                    actor_id=thread.created_by,
                    thread_id=thread.id,
                    thread_context={
                        "title": thread.title,
                        "thread_type": thread.thread_type,
                        "status": thread.status,
                    },
                )
            )

        for note in sorted(notes, key=lambda item: (item.created_at, item.id)):
            if note.deleted or (note.is_internal and not include_internal):
                continue
            events.append(
                PendingEvent(
                    event_time=note.created_at,
                    event_type=MESSAGE_ADDED if note.is_message else NOTE_ADDED,
                    event_description=note.content,
                    actor_id=note.created_by,
                    thread_id=note.thread_id,
                    thread_context={
                        "message_type": note.message_type,
                        "is_internal": note.is_internal,
                    },
                )
            )
        return events

    @staticmethod
    def actor_ids(events: Iterable[PendingEvent]) -> list[str]:
        """Distinct actor ids across ``events`` in a stable order, for one batch lookup."""

        return sorted({event.actor_id for event in events if event.actor_id})

    @staticmethod
    def merge(events: Sequence[PendingEvent], actor_names: Mapping[str, str]) -> tuple[TimelineEvent, ...]:
        indexed = sorted(
            enumerate(events),
            key=lambda item: (item[1].event_time, EVENT_PRIORITY[item[1].event_type], item[0]),
        )
        return tuple(
            TimelineEvent(
                event_time=event.event_time,
                event_type=event.event_type,
                event_description=event.event_description,
                actor_name=actor_names.get(event.actor_id, UNKNOWN_ACTOR) if event.actor_id else UNKNOWN_ACTOR,
                thread_id=event.thread_id,
                thread_context=dict(event.thread_context),
            )
            for _, event in indexed
        )

    @staticmethod
    def _status_events(metadata: TicketMetadata) -> list[PendingEvent]:
        events: list[PendingEvent] = []
        for transition in metadata.state_transitions:
            # The seed transition coincides with the creation event.
            if transition.from_state == NO_STATE:
                continue
            events.append(
                PendingEvent(
                    event_time=transition.timestamp,
                    event_type=STATUS_CHANGE,
                    event_description=f"Status changed to {TicketLifecycle.status_label(transition.to_state)}",
                    actor_id=transition.user_id,
                    thread_context={
                        "old_status": transition.from_state,
                        "new_status": transition.to_state,
                    },
                )
            )
        return events

    @staticmethod
    def _assignment_events(usable_entries: Sequence[AuditLogEntry]) -> list[PendingEvent]:
        """Assignment changes from entries already validated and ordered by the reconstructor."""

        events: list[PendingEvent] = []
        last_assignee: str | None = None
        for entry in usable_entries:
            if not entry.new_data.has("assigned_to"):
                continue
            assignee = entry.new_data.assigned_to
            previous = entry.old_data.assigned_to if entry.old_data.has("assigned_to") else last_assignee
            last_assignee = assignee
            if assignee == previous:
                continue
            events.append(
                PendingEvent(
                    event_time=entry.created_at,  # type: ignore[arg-type]
                    event_type=ASSIGNMENT_CHANGE,
                    event_description="Ticket unassigned" if assignee is None else "Ticket assigned to support team",
                    actor_id=entry.user_id,
                    thread_context={"assigned_to": assignee},
                )
            )
        return events
