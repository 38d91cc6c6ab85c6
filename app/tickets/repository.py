from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Mapping, Sequence

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, col, select

from packages.db.models import (
    AuditLogTable,
    ProfileTable,
    TagTable,
    ThreadTable,
    TicketNoteTable,
    TicketTable,
    TicketTagTable,
)

from .errors import PersistFailure, ReadFailure, TicketLifecycleError, WriteConflict
from .models import AuditLogEntry, StoredMetadata, Thread, ThreadNote, Ticket, TicketSnapshot
from .state import TicketPriority, TicketStatus


@contextmanager
def _translate_errors(error_cls: type[TicketLifecycleError], message: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise error_cls(f"{message}: {exc}") from exc


class TicketRepository:
    """Persistence helper over tickets, audit logs, threads, notes and profiles."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        with _translate_errors(ReadFailure, f"Failed to read ticket {ticket_id}"):
            async with self._session_factory() as session:
                row = await session.get(TicketTable, ticket_id)
                if row is None or row.deleted:
                    return None
                tag_result = await session.execute(
                    select(TagTable.name)
                    .join(TicketTagTable, col(TicketTagTable.tag_id) == col(TagTable.id))
                    .where(TicketTagTable.ticket_id == ticket_id)
                )
                tags = [str(name) for name in tag_result.scalars().all()]
        try:
            return self._table_to_ticket(row, tags)
        except ValueError as exc:
            raise ReadFailure(f"Ticket {ticket_id} has an unsupported status or priority: {exc}") from exc

    async def list_ticket_ids(self) -> list[str]:
        with _translate_errors(ReadFailure, "Failed to list tickets"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(TicketTable.id)
                    .where(col(TicketTable.deleted).is_(False))
                    .order_by(col(TicketTable.created_at).asc(), col(TicketTable.id).asc())
                )
                return [str(ticket_id) for ticket_id in result.scalars().all()]

    async def read_audit_log(self, table_name: str, record_id: str) -> list[AuditLogEntry]:
        with _translate_errors(ReadFailure, f"Failed to read audit log for {table_name}/{record_id}"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(AuditLogTable)
                    .where(AuditLogTable.table_name == table_name, AuditLogTable.record_id == record_id)
                    .order_by(col(AuditLogTable.created_at).asc(), col(AuditLogTable.id).asc())
                )
                rows = result.scalars().all()
        return [self._table_to_audit(row) for row in rows]

    async def list_threads(self, ticket_id: str) -> list[Thread]:
        with _translate_errors(ReadFailure, f"Failed to read threads for ticket {ticket_id}"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(ThreadTable)
                    .where(ThreadTable.ticket_id == ticket_id, col(ThreadTable.deleted).is_(False))
                    .order_by(col(ThreadTable.created_at).asc(), col(ThreadTable.id).asc())
                )
                rows = result.scalars().all()
        return [self._table_to_thread(row) for row in rows]

    async def list_notes(self, ticket_id: str, *, thread_id: str | None = None) -> list[ThreadNote]:
        """Return a ticket's notes and messages, or only one thread's messages."""

        with _translate_errors(ReadFailure, f"Failed to read notes for ticket {ticket_id}"):
            async with self._session_factory() as session:
                statement = select(TicketNoteTable).where(
                    TicketNoteTable.ticket_id == ticket_id, col(TicketNoteTable.deleted).is_(False)
                )
                if thread_id is not None:
                    statement = statement.where(TicketNoteTable.thread_id == thread_id)
                result = await session.execute(
                    statement.order_by(col(TicketNoteTable.created_at).asc(), col(TicketNoteTable.id).asc())
                )
                rows = result.scalars().all()
        return [self._table_to_note(row) for row in rows]

    async def resolve_actor_names(self, actor_ids: Iterable[str]) -> dict[str, str]:
        ids = sorted(set(actor_ids))
        if not ids:
            return {}
        with _translate_errors(ReadFailure, "Failed to resolve actor names"):
            async with self._session_factory() as session:
                result = await session.execute(select(ProfileTable).where(col(ProfileTable.id).in_(ids)))
                rows = result.scalars().all()
        return {row.id: row.full_name for row in rows if row.full_name}

    async def get_metadata(self, ticket_id: str) -> StoredMetadata | None:
        with _translate_errors(ReadFailure, f"Failed to read metadata for ticket {ticket_id}"):
            async with self._session_factory() as session:
                row = await session.get(TicketTable, ticket_id)
                if row is None or row.deleted:
                    return None
                return StoredMetadata(document=dict(row.metadata_ or {}), version=int(row.metadata_version or 0))

    async def save_metadata(self, ticket_id: str, document: Mapping[str, Any], *, expected_version: int) -> int:
        """Write ``document`` if the stored version still equals ``expected_version``.

        Returns the new version. Raises ``WriteConflict`` when another writer got
        there first and ``PersistFailure`` when the database rejects the write.
        """

        new_version = expected_version + 1
        with _translate_errors(PersistFailure, f"Failed to persist metadata for ticket {ticket_id}"):
            async with self._session_factory() as session:
                result = await session.execute(
                    update(TicketTable)
                    .where(
                        col(TicketTable.id) == ticket_id,
                        col(TicketTable.metadata_version) == expected_version,
                    )
                    .values({TicketTable.metadata_: dict(document), TicketTable.metadata_version: new_version})
                )
                await session.commit()
        if result.rowcount == 0:
            raise WriteConflict(f"Metadata of ticket {ticket_id} changed since version {expected_version}")
        return new_version

    async def resolve_ticket_id(self, table_name: str, record_id: str) -> str | None:
        """Map a changed record to the ticket whose derived views it affects."""

        if table_name == "tickets":
            return record_id
        with _translate_errors(ReadFailure, f"Failed to resolve ticket for {table_name}/{record_id}"):
            async with self._session_factory() as session:
                if table_name == "audit_logs":
                    audit = await session.get(AuditLogTable, record_id)
                    if audit is None or audit.table_name == "audit_logs":
                        return None
                    audited_table, audited_id = audit.table_name, audit.record_id
                elif table_name == "ticket_threads":
                    thread = await session.get(ThreadTable, record_id)
                    return thread.ticket_id if thread is not None else None
                elif table_name == "ticket_notes":
                    note = await session.get(TicketNoteTable, record_id)
                    return note.ticket_id if note is not None else None
                else:
                    return None
        return await self.resolve_ticket_id(audited_table, audited_id)

    @staticmethod
    def _table_to_ticket(row: TicketTable, tags: Sequence[str]) -> Ticket:
        return Ticket(
            id=row.id,
            title=row.title,
            description=row.description,
            status=TicketStatus(row.status),
            priority=TicketPriority(row.priority),
            user_id=row.user_id,
            assigned_to=row.assigned_to,
            created_at=_ensure_datetime(row.created_at),
            tags=frozenset(tags),
            deleted=row.deleted,
        )

    @staticmethod
    def _table_to_audit(row: AuditLogTable) -> AuditLogEntry:
        created_at = row.created_at
        return AuditLogEntry(
            id=row.id,
            table_name=row.table_name,
            record_id=row.record_id,
            created_at=_ensure_datetime(created_at) if isinstance(created_at, datetime) else None,
            user_id=row.user_id,
            old_data=TicketSnapshot.from_mapping(row.old_data),
            new_data=TicketSnapshot.from_mapping(row.new_data),
            action_type=row.action_type,
        )

    @staticmethod
    def _table_to_thread(row: ThreadTable) -> Thread:
        return Thread(
            id=row.id,
            ticket_id=row.ticket_id,
            created_by=row.created_by,
            thread_type=row.thread_type,
            created_at=_ensure_datetime(row.created_at),
            status=row.status,
            title=row.title,
            deleted=row.deleted,
        )

    @staticmethod
    def _table_to_note(row: TicketNoteTable) -> ThreadNote:
        return ThreadNote(
            id=row.id,
            ticket_id=row.ticket_id,
            content=row.content,
            created_by=row.created_by,
            created_at=_ensure_datetime(row.created_at),
            thread_id=row.thread_id,
            message_type=row.message_type,
            is_internal=row.is_internal,
            deleted=row.deleted,
        )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")
