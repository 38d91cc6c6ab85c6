"""Deterministic security and SLA labels derived from priority and tags."""

from __future__ import annotations

from typing import Iterable

from .models import SecurityClassification
from .state import TicketPriority

SECURITY_TAGS: frozenset[str] = frozenset({"security", "vulnerability", "compliance"})

_SECURITY_LEVELS: dict[str, str] = {
    TicketPriority.URGENT.value: "critical",
    TicketPriority.HIGH.value: "high",
}

_SLA_LEVELS: dict[str, str] = {
    TicketPriority.URGENT.value: "high",
    TicketPriority.HIGH.value: "medium",
}


def normalize_tags(tags: Iterable[str]) -> frozenset[str]:
    return frozenset(tag.strip().lower() for tag in tags if tag and tag.strip())


def classify_security(priority: str, tags: Iterable[str]) -> SecurityClassification | None:
    """Return the security labels for a ticket, or ``None`` if it is not security related."""

    normalized = normalize_tags(tags)
    if not normalized & SECURITY_TAGS:
        return None

    level = _SECURITY_LEVELS.get(priority, "medium")
    if "vulnerability" in normalized:
        classification = "vulnerability"
    elif "compliance" in normalized:
        classification = "compliance"
    else:
        classification = "general"
    return SecurityClassification(security_level=level, security_classification=classification)


def resolve_sla(priority: str) -> str:
    return _SLA_LEVELS.get(priority, "standard")
