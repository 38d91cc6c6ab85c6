from __future__ import annotations

from .errors import AccessDeniedError

ADMIN_ROLE = "admin"
STAFF_ROLES: frozenset[str] = frozenset({"agent", ADMIN_ROLE})


def can_view(viewer_id: str, viewer_role: str, owner_id: str, assignee_id: str | None) -> bool:
    """Return whether a viewer may see a ticket's threads and timeline.

    Owners, the assigned agent and admins are allowed; everybody else is not.
    """

    if viewer_role == ADMIN_ROLE:
        return True
    if not viewer_id:
        return False
    return viewer_id == owner_id or (assignee_id is not None and viewer_id == assignee_id)


def ensure_can_view(
    ticket_id: str, viewer_id: str, viewer_role: str, owner_id: str, assignee_id: str | None
) -> None:
    if not can_view(viewer_id, viewer_role, owner_id, assignee_id):
        raise AccessDeniedError(ticket_id, viewer_id)


def can_see_internal_notes(viewer_role: str) -> bool:
    return viewer_role in STAFF_ROLES
