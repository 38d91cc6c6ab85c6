"""Ticket lifecycle reconstruction and timeline services."""

from .access import can_view, ensure_can_view
from .classification import classify_security, resolve_sla
from .errors import (
    AccessDeniedError,
    MalformedEntry,
    PersistFailure,
    ReadFailure,
    TicketLifecycleError,
    TicketNotFoundError,
    WriteConflict,
)
from .feed import ChangeFeedSubscriber
from .models import (
    AuditLogEntry,
    Thread,
    ThreadNote,
    Ticket,
    TicketMetadata,
    TicketSnapshot,
    TimelineEvent,
)
from .reconstruction import ReconstructionResult, StateReconstructor
from .repository import TicketRepository
from .service import BatchReport, TicketLifecycleService
from .state import TicketPriority, TicketStatus
from .timeline import TimelineMerger

__all__ = [
    "AccessDeniedError",
    "AuditLogEntry",
    "BatchReport",
    "ChangeFeedSubscriber",
    "MalformedEntry",
    "PersistFailure",
    "ReadFailure",
    "ReconstructionResult",
    "StateReconstructor",
    "Thread",
    "ThreadNote",
    "Ticket",
    "TicketLifecycleError",
    "TicketLifecycleService",
    "TicketMetadata",
    "TicketNotFoundError",
    "TicketPriority",
    "TicketRepository",
    "TicketSnapshot",
    "TicketStatus",
    "TimelineEvent",
    "TimelineMerger",
    "WriteConflict",
    "can_view",
    "classify_security",
    "ensure_can_view",
    "resolve_sla",
]
