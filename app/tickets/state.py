from __future__ import annotations

from enum import Enum


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


class TicketPriority(str, Enum):
    """Priority levels a ticket can be filed with."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


_STATUS_LABELS: dict[TicketStatus, str] = {
    TicketStatus.OPEN: "Open",
    TicketStatus.IN_PROGRESS: "In Progress",
    TicketStatus.RESOLVED: "Resolved",
    TicketStatus.CLOSED: "Closed",
}

# Marker used as the origin of the very first transition of every ticket.
NO_STATE = "none"


class TicketLifecycle:
    """Assumptions about where a ticket's lifecycle begins."""

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.OPEN

    @classmethod
    def status_label(cls, status: str) -> str:
        """Human readable label, falling back to the raw value for unknown statuses."""

        try:
            return TicketStatus(status).label
        except ValueError:
            return status
