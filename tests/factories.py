from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from app.tickets.models import AuditLogEntry, Thread, ThreadNote, Ticket, TicketSnapshot
from app.tickets.state import TicketPriority, TicketStatus

CREATED_AT = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    """Timestamp ``minutes`` after the reference ticket creation time."""

    return CREATED_AT + timedelta(minutes=minutes)


def make_ticket(**overrides: Any) -> Ticket:
    values: dict[str, Any] = {
        "id": "ticket-1",
        "title": "Cannot log in",
        "description": "Password reset link is broken",
        "status": TicketStatus.OPEN,
        "priority": TicketPriority.MEDIUM,
        "user_id": "customer-1",
        "created_at": CREATED_AT,
    }
    values.update(overrides)
    return Ticket(**values)


def make_entry(
    entry_id: str,
    minutes: int | None,
    *,
    user_id: str | None = "agent-1",
    old: dict[str, Any] | None = None,
    new: dict[str, Any] | None = None,
    record_id: str = "ticket-1",
    table_name: str = "tickets",
) -> AuditLogEntry:
    return AuditLogEntry(
        id=entry_id,
        table_name=table_name,
        record_id=record_id,
        created_at=at(minutes) if minutes is not None else None,
        user_id=user_id,
        old_data=TicketSnapshot.from_mapping(old),
        new_data=TicketSnapshot.from_mapping(new),
    )


def make_thread(thread_id: str, minutes: int, **overrides: Any) -> Thread:
    values: dict[str, Any] = {
        "id": thread_id,
        "ticket_id": "ticket-1",
        "created_by": "agent-1",
        "thread_type": "customer",
        "created_at": at(minutes),
        "title": "Login help",
    }
    values.update(overrides)
    return Thread(**values)


def make_note(note_id: str, minutes: int, **overrides: Any) -> ThreadNote:
    values: dict[str, Any] = {
        "id": note_id,
        "ticket_id": "ticket-1",
        "content": "Looking into it",
        "created_by": "agent-1",
        "created_at": at(minutes),
    }
    values.update(overrides)
    return ThreadNote(**values)
