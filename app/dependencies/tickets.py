from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from app.dependencies.auth import Role, User, role_required
from app.tickets.feed import ChangeFeedSubscriber
from app.tickets.service import TicketLifecycleService

require_customer = role_required(Role.CUSTOMER)
require_agent = role_required(Role.AGENT)
require_admin = role_required(Role.ADMIN)

CustomerUser = Annotated[User, Depends(require_customer)]
AgentUser = Annotated[User, Depends(require_agent)]
AdminUser = Annotated[User, Depends(require_admin)]


async def get_lifecycle_service(request: Request) -> TicketLifecycleService:
    service = getattr(request.app.state, "lifecycle_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket lifecycle service is not configured")
    return service


async def get_change_feed(request: Request) -> ChangeFeedSubscriber:
    feed = getattr(request.app.state, "change_feed", None)
    if feed is None:
        raise HTTPException(status_code=503, detail="Change feed is not running")
    return feed
