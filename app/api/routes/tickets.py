from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict

from app.dependencies.tickets import AdminUser, AgentUser, CustomerUser, get_lifecycle_service
from app.tickets.errors import (
    AccessDeniedError,
    PersistFailure,
    ReadFailure,
    TicketLifecycleError,
    TicketNotFoundError,
)
from app.tickets.models import TicketMetadata, TimelineEvent
from app.tickets.service import BatchReport, TicketLifecycleService

router = APIRouter(prefix="/tickets", tags=["tickets"])


class CurrentStateResponse(BaseModel):
    name: str
    entered_at: datetime
    updated_by: str


class StateTransitionResponse(BaseModel):
    from_state: str
    to_state: str
    timestamp: datetime
    user_id: str


class StatusHistoryResponse(BaseModel):
    status: str
    timestamp: datetime
    user_id: str


class TicketMetadataResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    current_state: CurrentStateResponse
    state_transitions: list[StateTransitionResponse]
    status_history: list[StatusHistoryResponse]
    last_updated_by: str
    source: str
    sla_level: str
    security_level: str | None = None
    security_classification: str | None = None


class MetadataRebuildResponse(BaseModel):
    ticket_id: str
    metadata: TicketMetadataResponse
    warnings: list[str]


class BatchRebuildResponse(BaseModel):
    processed: int
    succeeded: int
    failed: dict[str, str]
    warnings: dict[str, list[str]]


class TimelineEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_time: datetime
    event_type: str
    event_description: str
    actor_name: str
    thread_id: str | None
    thread_context: dict[str, Any]


LifecycleServiceDep = Annotated[TicketLifecycleService, Depends(get_lifecycle_service)]


def _to_metadata_response(metadata: TicketMetadata) -> TicketMetadataResponse:
    return TicketMetadataResponse.model_validate(metadata.to_document())


def _to_timeline_response(event: TimelineEvent) -> TimelineEventResponse:
    return TimelineEventResponse.model_validate(event)


def _to_http_error(exc: TicketLifecycleError) -> HTTPException:
    if isinstance(exc, TicketNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, AccessDeniedError):
        return HTTPException(status_code=403, detail="You do not have access to this ticket")
    if isinstance(exc, (ReadFailure, PersistFailure)):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


@router.post("/metadata/rebuild", response_model=BatchRebuildResponse)
async def rebuild_all_metadata(service: LifecycleServiceDep, user: AdminUser) -> BatchRebuildResponse:
    try:
        report: BatchReport = await service.reconstruct_all(actor=user.username)
    except TicketLifecycleError as exc:
        raise _to_http_error(exc) from exc
    return BatchRebuildResponse(
        processed=report.processed,
        succeeded=report.succeeded,
        failed=report.failed,
        warnings=report.warnings,
    )


@router.get("/{ticket_id}/metadata", response_model=TicketMetadataResponse)
async def get_ticket_metadata(ticket_id: str, service: LifecycleServiceDep, user: AgentUser) -> TicketMetadataResponse:
    try:
        metadata = await service.get_metadata(ticket_id, actor=user.username)
    except TicketLifecycleError as exc:
        raise _to_http_error(exc) from exc
    return _to_metadata_response(metadata)


@router.post("/{ticket_id}/metadata/rebuild", response_model=MetadataRebuildResponse)
async def rebuild_ticket_metadata(
    ticket_id: str, service: LifecycleServiceDep, user: AgentUser
) -> MetadataRebuildResponse:
    try:
        result = await service.reconstruct_metadata(ticket_id, actor=user.username)
    except TicketLifecycleError as exc:
        raise _to_http_error(exc) from exc
    return MetadataRebuildResponse(
        ticket_id=ticket_id,
        metadata=_to_metadata_response(result.metadata),
        warnings=[str(warning) for warning in result.warnings],
    )


@router.get("/{ticket_id}/timeline", response_model=list[TimelineEventResponse])
async def get_ticket_timeline(
    ticket_id: str, service: LifecycleServiceDep, user: CustomerUser
) -> list[TimelineEventResponse]:
    try:
        events = await service.build_timeline(ticket_id, user.username, user.primary_role.value)
    except TicketLifecycleError as exc:
        raise _to_http_error(exc) from exc
    return [_to_timeline_response(event) for event in events]

