from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from app.dependencies.tickets import AdminUser, get_change_feed
from app.tickets.feed import ChangeFeedSubscriber

router = APIRouter(prefix="/changes", tags=["changes"])


class EntityChangeRequest(BaseModel):
    table_name: str = Field(..., min_length=1, max_length=100)
    record_id: str = Field(..., min_length=1, max_length=64)


class EntityChangeResponse(BaseModel):
    accepted: bool


ChangeFeedDep = Annotated[ChangeFeedSubscriber, Depends(get_change_feed)]


@router.post("", response_model=EntityChangeResponse, status_code=status.HTTP_202_ACCEPTED)
async def notify_entity_changed(
    payload: EntityChangeRequest,
    feed: ChangeFeedDep,
    _: AdminUser,
) -> EntityChangeResponse:
    if not feed.on_entity_changed(payload.table_name, payload.record_id):
        raise HTTPException(status_code=503, detail="Change feed is saturated, retry later")
    return EntityChangeResponse(accepted=True)
