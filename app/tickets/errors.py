from __future__ import annotations

from dataclasses import dataclass


class TicketLifecycleError(RuntimeError):
    """Base error for ticket lifecycle issues."""


class TicketNotFoundError(TicketLifecycleError):
    """Raised when a ticket could not be located or has been soft-deleted."""


class ReadFailure(TicketLifecycleError):
    """Raised when an upstream read of tickets, audit logs or threads fails."""


class WriteConflict(TicketLifecycleError):
    """Raised when the stored metadata changed between read and write."""


class PersistFailure(TicketLifecycleError):
    """Raised when the final metadata write could not be completed."""


class AccessDeniedError(TicketLifecycleError):
    """Raised when a viewer is not allowed to see a ticket's conversation."""

    def __init__(self, ticket_id: str, viewer_id: str) -> None:
        super().__init__(f"Viewer {viewer_id} may not view ticket {ticket_id}")
        self.ticket_id = ticket_id
        self.viewer_id = viewer_id


@dataclass(frozen=True, slots=True)
class MalformedEntry:
    """An audit entry skipped during reconstruction."""

    entry_id: str
    reason: str

    def __str__(self) -> str:
        return f"audit entry {self.entry_id}: {self.reason}"
