"""Database models and utilities."""

from .models import (
    AuditLogTable,
    ProfileTable,
    TagTable,
    ThreadTable,
    TicketNoteTable,
    TicketTable,
    TicketTagTable,
)

__all__ = [
    "AuditLogTable",
    "ProfileTable",
    "TagTable",
    "ThreadTable",
    "TicketNoteTable",
    "TicketTable",
    "TicketTagTable",
]
