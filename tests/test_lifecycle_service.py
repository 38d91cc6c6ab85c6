from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from app.metrics import MetricsRegistry
from app.metrics.definitions import METADATA_REBUILDS, METADATA_WRITE_CONFLICTS, TIMELINE_DENIALS
from app.tickets.errors import (
    AccessDeniedError,
    PersistFailure,
    ReadFailure,
    TicketNotFoundError,
    WriteConflict,
)
from app.tickets.models import StoredMetadata
from app.tickets.reconstruction import StateReconstructor
from app.tickets.service import TicketLifecycleService
from app.tickets.timeline import NOTE_ADDED, TICKET_CREATED

from tests.factories import make_entry, make_note, make_thread, make_ticket


class DummyRepository:
    def __init__(self, ticket=None, entries=None):
        self.ticket = ticket or make_ticket()
        self.get_ticket = AsyncMock(return_value=self.ticket)
        self.list_ticket_ids = AsyncMock(return_value=[self.ticket.id])
        self.read_audit_log = AsyncMock(return_value=list(entries or []))
        self.list_threads = AsyncMock(return_value=[])
        self.list_notes = AsyncMock(return_value=[])
        self.resolve_actor_names = AsyncMock(return_value={})
        self.get_metadata = AsyncMock(return_value=StoredMetadata(document={}, version=0))
        self.save_metadata = AsyncMock(return_value=1)
        self.resolve_ticket_id = AsyncMock(return_value=self.ticket.id)


def _service(repository, registry=None, **kwargs):
    return TicketLifecycleService(repository, registry=registry or MetricsRegistry(), **kwargs)


def _entries():
    return [make_entry("a1", 10, old={"status": "open"}, new={"status": "in_progress"})]


@pytest.mark.asyncio
async def test_reconstruct_metadata_persists_document_with_expected_version():
    repository = DummyRepository(entries=_entries())
    repository.get_metadata.return_value = StoredMetadata(document={"stale": True}, version=4)
    registry = MetricsRegistry()
    service = _service(repository, registry)

    result = await service.reconstruct_metadata("ticket-1", actor="agent-1")

    assert result.metadata.current_state.name == "in_progress"
    repository.read_audit_log.assert_awaited_with("tickets", "ticket-1")
    repository.save_metadata.assert_awaited_once_with(
        "ticket-1", result.metadata.to_document(), expected_version=4
    )
    assert registry.counter(METADATA_REBUILDS, label_names=("outcome",)).value(labels={"outcome": "updated"}) == 1


@pytest.mark.asyncio
async def test_unchanged_metadata_is_not_rewritten():
    repository = DummyRepository(entries=_entries())
    expected = StateReconstructor().reconstruct(repository.ticket, _entries()).metadata.to_document()
    repository.get_metadata.return_value = StoredMetadata(document=expected, version=2)
    registry = MetricsRegistry()

    await _service(repository, registry).reconstruct_metadata("ticket-1")

    repository.save_metadata.assert_not_awaited()
    assert registry.counter(METADATA_REBUILDS, label_names=("outcome",)).value(labels={"outcome": "unchanged"}) == 1


@pytest.mark.asyncio
async def test_write_conflict_is_retried_with_fresh_read():
    repository = DummyRepository(entries=_entries())
    repository.get_metadata.side_effect = [
        StoredMetadata(document={}, version=1),
        StoredMetadata(document={}, version=2),
    ]
    repository.save_metadata.side_effect = [WriteConflict("raced"), 3]
    registry = MetricsRegistry()

    await _service(repository, registry).reconstruct_metadata("ticket-1")

    assert repository.save_metadata.await_count == 2
    assert repository.save_metadata.await_args.kwargs["expected_version"] == 2
    assert registry.counter(METADATA_WRITE_CONFLICTS).value() == 1


@pytest.mark.asyncio
async def test_persistent_conflicts_become_persist_failure():
    repository = DummyRepository(entries=_entries())
    repository.save_metadata.side_effect = WriteConflict("raced")
    registry = MetricsRegistry()

    with pytest.raises(PersistFailure):
        await _service(repository, registry, write_retries=2).reconstruct_metadata("ticket-1")

    assert repository.save_metadata.await_count == 3
    assert registry.counter(METADATA_REBUILDS, label_names=("outcome",)).value(labels={"outcome": "failed"}) == 1


@pytest.mark.asyncio
async def test_missing_ticket_raises_not_found():
    repository = DummyRepository()
    repository.get_ticket.return_value = None

    with pytest.raises(TicketNotFoundError):
        await _service(repository).reconstruct_metadata("missing")


@pytest.mark.asyncio
async def test_recomputes_of_one_ticket_do_not_overlap():
    repository = DummyRepository(entries=_entries())
    active = 0
    peak = 0

    async def slow_save(ticket_id, document, *, expected_version):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return expected_version + 1

    repository.save_metadata.side_effect = slow_save
    service = _service(repository)

    await asyncio.gather(*(service.reconstruct_metadata("ticket-1") for _ in range(3)))

    assert peak == 1
    assert service._locks == {}


@pytest.mark.asyncio
async def test_reconstruct_all_reports_failures_and_continues():
    repository = DummyRepository()
    repository.list_ticket_ids.return_value = ["t-1", "t-2", "t-3", "t-4"]
    tickets = {
        "t-1": make_ticket(id="t-1"),
        "t-3": make_ticket(id="t-3"),
        "t-4": make_ticket(id="t-4"),
    }

    async def get_ticket(ticket_id):
        if ticket_id == "t-4":
            raise ReadFailure("database unavailable")
        return tickets.get(ticket_id)

    async def read_audit_log(table_name, record_id):
        return [make_entry("bad", None, record_id=record_id, new={"status": "closed"})]

    repository.get_ticket.side_effect = get_ticket
    repository.read_audit_log.side_effect = read_audit_log

    report = await _service(repository).reconstruct_all(actor="admin")

    assert report.processed == 4
    assert report.succeeded == 2
    assert set(report.failed) == {"t-2", "t-4"}
    assert "database unavailable" in report.failed["t-4"]
    assert report.warnings["t-1"] == ["audit entry bad: missing or unparseable timestamp"]
    assert not report.ok


@pytest.mark.asyncio
async def test_get_metadata_prefers_stored_document():
    repository = DummyRepository(entries=_entries())
    stored = StateReconstructor().reconstruct(repository.ticket, _entries()).metadata
    repository.get_metadata.return_value = StoredMetadata(document=stored.to_document(), version=1)

    metadata = await _service(repository).get_metadata("ticket-1")

    assert metadata == stored
    repository.read_audit_log.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_metadata_rebuilds_unreadable_document():
    repository = DummyRepository(entries=_entries())
    repository.get_metadata.return_value = StoredMetadata(document={"current_state": {}}, version=1)

    metadata = await _service(repository).get_metadata("ticket-1")

    assert metadata.current_state.name == "in_progress"
    repository.save_metadata.assert_awaited_once()


@pytest.mark.asyncio
async def test_build_timeline_denies_other_viewers():
    repository = DummyRepository()
    registry = MetricsRegistry()

    with pytest.raises(AccessDeniedError):
        await _service(repository, registry).build_timeline("ticket-1", "customer-2", "customer")

    repository.list_threads.assert_not_awaited()
    repository.list_notes.assert_not_awaited()
    assert registry.counter(TIMELINE_DENIALS).value() == 1


@pytest.mark.asyncio
async def test_build_timeline_resolves_actors_in_one_lookup():
    repository = DummyRepository(entries=_entries())
    repository.list_threads.return_value = [make_thread("th-1", 12)]
    repository.list_notes.return_value = [
        make_note("n1", 15),
        make_note("n2", 16, is_internal=True),
    ]
    repository.resolve_actor_names.return_value = {"customer-1": "Ada", "agent-1": "Bob"}

    events = await _service(repository).build_timeline("ticket-1", "customer-1", "customer")

    repository.resolve_actor_names.assert_awaited_once_with(["agent-1", "customer-1"])
    assert events[0].event_type == TICKET_CREATED
    assert events[0].actor_name == "Ada"
    assert events[-1].event_type == NOTE_ADDED
    assert len(events) == 4
    repository.save_metadata.assert_not_awaited()


@pytest.mark.asyncio
async def test_build_timeline_shows_internal_notes_to_assigned_agent():
    repository = DummyRepository(ticket=make_ticket(assigned_to="agent-1"))
    repository.list_notes.return_value = [make_note("n1", 15, is_internal=True)]

    events = await _service(repository).build_timeline("ticket-1", "agent-1", "agent")

    assert [event.event_type for event in events] == [TICKET_CREATED, NOTE_ADDED]


@pytest.mark.asyncio
async def test_build_timeline_ignores_entries_skipped_by_reconstruction():
    repository = DummyRepository(
        entries=[
            make_entry("early", -5, new={"assigned_to": "agent-9"}),
            make_entry("unassign", 3, old={"assigned_to": "agent-9"}, new={"assigned_to": None}),
        ]
    )

    events = await _service(repository).build_timeline("ticket-1", "customer-1", "customer")

    assert events[0].event_type == TICKET_CREATED
    assert [event.event_description for event in events[1:]] == ["Ticket unassigned"]
