from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.dependencies import tickets as ticket_deps
from app.dependencies.auth import Role, User
from app.main import create_app
from app.tickets.errors import AccessDeniedError, MalformedEntry, ReadFailure, TicketNotFoundError
from app.tickets.reconstruction import ReconstructionResult, StateReconstructor
from app.tickets.service import BatchReport
from app.tickets.timeline import TimelineMerger

from tests.factories import make_entry, make_note, make_ticket


def _reconstruction():
    entries = [make_entry("a1", 10, old={"status": "open"}, new={"status": "in_progress"})]
    return StateReconstructor().reconstruct(make_ticket(), entries)


def _metadata():
    return _reconstruction().metadata


@pytest.fixture
def ticket_client():
    app = create_app()
    service = AsyncMock()
    feed = MagicMock()

    user_admin = User("admin-1", (Role.ADMIN, Role.AGENT, Role.CUSTOMER))
    user_agent = User("agent-1", (Role.AGENT, Role.CUSTOMER))
    user_customer = User("customer-1", (Role.CUSTOMER,))

    async def override_service():
        return service

    async def override_feed():
        return feed

    app.dependency_overrides[ticket_deps.get_lifecycle_service] = override_service
    app.dependency_overrides[ticket_deps.get_change_feed] = override_feed
    app.dependency_overrides[ticket_deps.require_admin] = lambda: user_admin
    app.dependency_overrides[ticket_deps.require_agent] = lambda: user_agent
    app.dependency_overrides[ticket_deps.require_customer] = lambda: user_customer

    client = TestClient(app)
    try:
        yield client, service, feed
    finally:
        app.dependency_overrides.clear()


def test_get_metadata_returns_document(ticket_client):
    client, service, _ = ticket_client
    service.get_metadata = AsyncMock(return_value=_metadata())

    response = client.get("/tickets/ticket-1/metadata")

    assert response.status_code == 200
    body = response.json()
    assert body["current_state"]["name"] == "in_progress"
    assert body["state_transitions"][0]["from_state"] == "none"
    assert body["sla_level"] == "standard"
    assert body["security_level"] is None
    service.get_metadata.assert_awaited_with("ticket-1", actor="agent-1")


def test_get_metadata_missing_ticket_returns_404(ticket_client):
    client, service, _ = ticket_client
    service.get_metadata = AsyncMock(side_effect=TicketNotFoundError("Ticket missing not found"))

    response = client.get("/tickets/missing/metadata")

    assert response.status_code == 404


def test_rebuild_metadata_returns_warnings(ticket_client):
    client, service, _ = ticket_client
    result = ReconstructionResult(metadata=_metadata(), warnings=[MalformedEntry("a9", "missing actor")])
    service.reconstruct_metadata = AsyncMock(return_value=result)

    response = client.post("/tickets/ticket-1/metadata/rebuild")

    assert response.status_code == 200
    assert response.json()["warnings"] == ["audit entry a9: missing actor"]
    service.reconstruct_metadata.assert_awaited_with("ticket-1", actor="agent-1")


def test_rebuild_all_metadata_returns_report(ticket_client):
    client, service, _ = ticket_client
    report = BatchReport(processed=2, succeeded=1, failed={"t-2": "Ticket t-2 not found"})
    service.reconstruct_all = AsyncMock(return_value=report)

    response = client.post("/tickets/metadata/rebuild")

    assert response.status_code == 200
    assert response.json() == {
        "processed": 2,
        "succeeded": 1,
        "failed": {"t-2": "Ticket t-2 not found"},
        "warnings": {},
    }
    service.reconstruct_all.assert_awaited_with(actor="admin-1")


def test_timeline_returns_ordered_events(ticket_client):
    client, service, _ = ticket_client
    ticket = make_ticket()
    merger = TimelineMerger()
    pending = merger.collect(ticket, _reconstruction(), [], [make_note("n1", 20)])
    service.build_timeline = AsyncMock(return_value=merger.merge(pending, {"customer-1": "Ada"}))

    response = client.get("/tickets/ticket-1/timeline")

    assert response.status_code == 200
    body = response.json()
    assert [event["event_type"] for event in body] == ["ticket_created", "status_change", "note_added"]
    assert body[0]["actor_name"] == "Ada"
    assert body[2]["actor_name"] == "System"
    service.build_timeline.assert_awaited_with("ticket-1", "customer-1", "customer")


def test_timeline_denied_returns_403(ticket_client):
    client, service, _ = ticket_client
    service.build_timeline = AsyncMock(side_effect=AccessDeniedError("ticket-1", "customer-1"))

    response = client.get("/tickets/ticket-1/timeline")

    assert response.status_code == 403
    assert response.json()["detail"] == "You do not have access to this ticket"


def test_read_failure_returns_503(ticket_client):
    client, service, _ = ticket_client
    service.build_timeline = AsyncMock(side_effect=ReadFailure("database unavailable"))

    response = client.get("/tickets/ticket-1/timeline")

    assert response.status_code == 503


def test_change_notification_is_accepted(ticket_client):
    client, _, feed = ticket_client
    feed.on_entity_changed.return_value = True

    response = client.post("/changes", json={"table_name": "ticket_notes", "record_id": "note-1"})

    assert response.status_code == 202
    assert response.json() == {"accepted": True}
    feed.on_entity_changed.assert_called_once_with("ticket_notes", "note-1")


def test_saturated_change_feed_returns_503(ticket_client):
    client, _, feed = ticket_client
    feed.on_entity_changed.return_value = False

    response = client.post("/changes", json={"table_name": "tickets", "record_id": "ticket-1"})

    assert response.status_code == 503


def test_change_notification_validates_payload(ticket_client):
    client, _, _ = ticket_client

    response = client.post("/changes", json={"table_name": "", "record_id": "x"})

    assert response.status_code == 422


def test_metrics_endpoint_exports_text(ticket_client):
    client, _, _ = ticket_client

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "# TYPE ticket_metadata_rebuilds_total counter" in response.text
