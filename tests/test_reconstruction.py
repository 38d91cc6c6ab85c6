from __future__ import annotations

import logging

from app.tickets.models import TicketMetadata
from app.tickets.reconstruction import StateReconstructor
from app.tickets.state import TicketPriority, TicketStatus

from tests.factories import CREATED_AT, at, make_entry, make_ticket


def _scenario_entries():
    return [
        make_entry("a1", 10, old={"status": "open"}, new={"status": "in_progress"}),
        make_entry("a2", 20, old={"status": "in_progress"}, new={"status": "resolved"}),
    ]


def test_reconstruct_replays_status_changes():
    ticket = make_ticket(status=TicketStatus.RESOLVED, priority=TicketPriority.URGENT, tags=frozenset({"security"}))

    result = StateReconstructor().reconstruct(ticket, _scenario_entries())
    metadata = result.metadata

    assert [(t.from_state, t.to_state, t.timestamp, t.user_id) for t in metadata.state_transitions] == [
        ("none", "open", CREATED_AT, "customer-1"),
        ("open", "in_progress", at(10), "agent-1"),
        ("in_progress", "resolved", at(20), "agent-1"),
    ]
    assert metadata.current_state.name == "resolved"
    assert metadata.current_state.entered_at == at(20)
    assert metadata.current_state.updated_by == "agent-1"
    assert metadata.security_level == "critical"
    assert metadata.security_classification == "general"
    assert metadata.sla_level == "high"
    assert metadata.source == "web"
    assert result.warnings == []


def test_reconstruct_without_entries_uses_seed():
    ticket = make_ticket(assigned_to="agent-7")

    metadata = StateReconstructor(source="email").reconstruct(ticket, []).metadata

    assert len(metadata.state_transitions) == 1
    assert metadata.state_transitions[0].from_state == "none"
    assert metadata.current_state.name == "open"
    assert metadata.current_state.entered_at == CREATED_AT
    assert metadata.last_updated_by == "agent-7"
    assert metadata.source == "email"
    assert metadata.security_level is None
    assert "security_level" not in metadata.to_document()


def test_last_updated_by_falls_back_to_owner():
    metadata = StateReconstructor().reconstruct(make_ticket(), []).metadata

    assert metadata.last_updated_by == "customer-1"


def test_last_updated_by_uses_last_entry_even_without_status_change():
    entries = [
        make_entry("a1", 5, new={"status": "in_progress"}),
        make_entry("a2", 9, user_id="agent-2", old={"assigned_to": None}, new={"assigned_to": "agent-2"}),
    ]

    metadata = StateReconstructor().reconstruct(make_ticket(), entries).metadata

    assert metadata.last_updated_by == "agent-2"
    assert metadata.current_state.updated_by == "agent-1"


def test_missing_old_status_compares_against_last_known_status():
    entries = [
        make_entry("a1", 5, new={"status": "open"}),
        make_entry("a2", 6, new={"status": "in_progress"}),
        make_entry("a3", 7, old={"status": None}, new={"status": "in_progress"}),
    ]

    metadata = StateReconstructor().reconstruct(make_ticket(), entries).metadata

    assert [(t.from_state, t.to_state) for t in metadata.state_transitions] == [
        ("none", "open"),
        ("open", "in_progress"),
    ]


def test_entries_are_replayed_in_timestamp_order():
    entries = list(reversed(_scenario_entries()))

    metadata = StateReconstructor().reconstruct(make_ticket(), entries).metadata

    assert [h.status for h in metadata.status_history] == ["open", "in_progress", "resolved"]
    timestamps = [h.timestamp for h in metadata.status_history]
    assert timestamps == sorted(timestamps)


def test_malformed_entries_are_skipped_with_warnings():
    entries = [
        make_entry("no-time", None, new={"status": "closed"}),
        make_entry("no-actor", 3, user_id=None, new={"status": "closed"}),
        make_entry("too-early", -5, new={"status": "closed"}),
        make_entry("other-ticket", 4, record_id="ticket-2", new={"status": "closed"}),
        make_entry("good", 8, old={"status": "open"}, new={"status": "in_progress"}),
    ]

    result = StateReconstructor().reconstruct(make_ticket(), entries)

    assert [w.entry_id for w in result.warnings] == ["no-time", "no-actor", "too-early", "other-ticket"]
    assert "missing actor" in str(result.warnings[1])
    assert result.metadata.current_state.name == "in_progress"
    assert result.metadata.last_updated_by == "agent-1"


def test_reconstruction_is_idempotent():
    ticket = make_ticket(priority=TicketPriority.HIGH, tags=frozenset({"compliance"}))
    reconstructor = StateReconstructor()

    first = reconstructor.reconstruct(ticket, _scenario_entries()).metadata
    second = reconstructor.reconstruct(ticket, _scenario_entries()).metadata

    assert first.to_json() == second.to_json()


def test_longer_log_extends_previous_history():
    ticket = make_ticket()
    reconstructor = StateReconstructor()
    entries = _scenario_entries()

    short = reconstructor.reconstruct(ticket, entries).metadata
    extended = reconstructor.reconstruct(
        ticket, entries + [make_entry("a3", 30, old={"status": "resolved"}, new={"status": "closed"})]
    ).metadata

    assert extended.state_transitions[: len(short.state_transitions)] == short.state_transitions
    assert extended.current_state.name == "closed"


def test_document_round_trips_through_storage_form():
    metadata = StateReconstructor().reconstruct(
        make_ticket(priority=TicketPriority.URGENT, tags=frozenset({"vulnerability"})), _scenario_entries()
    ).metadata

    restored = TicketMetadata.from_document(metadata.to_document())

    assert restored == metadata


def test_status_mismatch_is_logged(caplog):
    ticket = make_ticket(status=TicketStatus.CLOSED)

    with caplog.at_level(logging.INFO, logger="app.tickets.reconstruction"):
        metadata = StateReconstructor().reconstruct(ticket, []).metadata

    assert metadata.current_state.name == "open"
    assert "differs from reconstructed status" in caplog.text
