"""SQLModel table definitions for the ticket lifecycle data layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    """Generate a random UUID string."""

    return str(uuid.uuid4())


class ProfileTable(SQLModel, table=True):
    """People that act on tickets: customers, agents and admins."""

    __tablename__ = "profiles"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    full_name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    role: str = Field(default="customer", sa_column=Column(String(50), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketTable(SQLModel, table=True):
    """Support tickets together with their derived lifecycle metadata."""

    __tablename__ = "tickets"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    title: str = Field(sa_column=Column(String(255), nullable=False))
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    status: str = Field(default="open", sa_column=Column(String(50), nullable=False))
    priority: str = Field(default="medium", sa_column=Column(String(50), nullable=False))
    user_id: str = Field(sa_column=Column(String(36), ForeignKey("profiles.id"), nullable=False))
    assigned_to: str | None = Field(
        default=None, sa_column=Column(String(36), ForeignKey("profiles.id"), nullable=True)
    )
    metadata_: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    metadata_version: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    deleted: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TagTable(SQLModel, table=True):
    """Free-form labels that can be attached to tickets."""

    __tablename__ = "tags"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    name: str = Field(sa_column=Column(String(100), nullable=False, unique=True))


class TicketTagTable(SQLModel, table=True):
    """Association between tickets and tags."""

    __tablename__ = "ticket_tags"

    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), primary_key=True)
    )
    tag_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)
    )


class AuditLogTable(SQLModel, table=True):
    """Append-only record of field level changes to any audited table."""

    __tablename__ = "audit_logs"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    created_at: datetime | None = Field(
        default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=True, index=True)
    )
    user_id: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    action_type: str = Field(sa_column=Column(String(10), nullable=False))
    table_name: str = Field(sa_column=Column(String(100), nullable=False, index=True))
    record_id: str = Field(sa_column=Column(String(36), nullable=False, index=True))
    old_data: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    new_data: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))


class ThreadTable(SQLModel, table=True):
    """Conversation threads attached to a ticket."""

    __tablename__ = "ticket_threads"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    created_by: str = Field(sa_column=Column(String(36), nullable=False))
    title: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    status: str = Field(default="open", sa_column=Column(String(20), nullable=False))
    thread_type: str = Field(sa_column=Column(String(50), nullable=False))
    deleted: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketNoteTable(SQLModel, table=True):
    """Ticket notes; rows carrying a thread id are conversation messages."""

    __tablename__ = "ticket_notes"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    thread_id: str | None = Field(
        default=None, sa_column=Column(String(36), ForeignKey("ticket_threads.id"), nullable=True)
    )
    content: str = Field(sa_column=Column(Text, nullable=False))
    created_by: str = Field(sa_column=Column(String(36), nullable=False))
    message_type: str | None = Field(default=None, sa_column=Column(String(20), nullable=True))
    is_internal: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    deleted: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
