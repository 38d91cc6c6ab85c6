from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from .state import TicketPriority, TicketStatus


class _Absent:
    """Sentinel type marking a field that is missing from a snapshot."""

    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Any = _Absent()


def parse_timestamp(value: Any) -> datetime | None:
    """Coerce a database or JSON timestamp into an aware UTC datetime.

    Returns ``None`` for missing or unparseable values so callers can decide how
    to treat the record.
    """

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parse_timestamp(parsed)
    return None


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


@dataclass(frozen=True, slots=True)
class TicketSnapshot:
    """Partial view of a ticket row as captured by the audit trigger.

    Fields that were not captured hold ``ABSENT``; fields captured as null hold
    ``None``.
    """

    status: Any = ABSENT
    assigned_to: Any = ABSENT
    priority: Any = ABSENT

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "TicketSnapshot":
        if not data:
            return cls()
        values = {name: data[name] for name in ("status", "assigned_to", "priority") if name in data}
        return cls(**values)

    def has(self, name: str) -> bool:
        return getattr(self, name) is not ABSENT

    def get(self, name: str, default: Any = None) -> Any:
        value = getattr(self, name)
        return default if value is ABSENT else value


@dataclass(slots=True)
class Ticket:
    """Ticket facts needed to derive lifecycle state and the timeline."""

    id: str
    title: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    user_id: str
    created_at: datetime
    assigned_to: str | None = None
    tags: frozenset[str] = frozenset()
    deleted: bool = False


@dataclass(frozen=True, slots=True)
class AuditLogEntry:
    """Immutable field level change of a single record."""

    id: str
    table_name: str
    record_id: str
    created_at: datetime | None
    user_id: str | None
    old_data: TicketSnapshot = field(default_factory=TicketSnapshot)
    new_data: TicketSnapshot = field(default_factory=TicketSnapshot)
    action_type: str = "UPDATE"

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "AuditLogEntry":
        user_id = row.get("user_id")
        return cls(
            id=str(row["id"]),
            table_name=str(row.get("table_name", "tickets")),
            record_id=str(row["record_id"]),
            created_at=parse_timestamp(row.get("created_at")),
            user_id=str(user_id) if user_id else None,
            old_data=TicketSnapshot.from_mapping(row.get("old_data")),
            new_data=TicketSnapshot.from_mapping(row.get("new_data")),
            action_type=str(row.get("action_type", "UPDATE")),
        )


@dataclass(frozen=True, slots=True)
class Thread:
    id: str
    ticket_id: str
    created_by: str
    thread_type: str
    created_at: datetime
    status: str = "open"
    title: str | None = None
    deleted: bool = False


@dataclass(frozen=True, slots=True)
class ThreadNote:
    """A ticket note, or a conversation message when ``thread_id`` is set."""

    id: str
    ticket_id: str
    content: str
    created_by: str
    created_at: datetime
    thread_id: str | None = None
    message_type: str | None = None
    is_internal: bool = False
    deleted: bool = False

    @property
    def is_message(self) -> bool:
        return self.thread_id is not None


@dataclass(frozen=True, slots=True)
class StateTransition:
    from_state: str
    to_state: str
    timestamp: datetime
    user_id: str

    def to_document(self) -> dict[str, Any]:
        return {
            "from_state": self.from_state,
            "to_state": self.to_state,
            "timestamp": format_timestamp(self.timestamp),
            "user_id": self.user_id,
        }


@dataclass(frozen=True, slots=True)
class StatusHistoryEntry:
    status: str
    timestamp: datetime
    user_id: str

    def to_document(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": format_timestamp(self.timestamp),
            "user_id": self.user_id,
        }


@dataclass(frozen=True, slots=True)
class CurrentState:
    name: str
    entered_at: datetime
    updated_by: str

    def to_document(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "entered_at": format_timestamp(self.entered_at),
            "updated_by": self.updated_by,
        }


@dataclass(frozen=True, slots=True)
class SecurityClassification:
    security_level: str
    security_classification: str


@dataclass(frozen=True, slots=True)
class TicketMetadata:
    """Derived lifecycle document stored alongside each ticket."""

    current_state: CurrentState
    state_transitions: tuple[StateTransition, ...]
    status_history: tuple[StatusHistoryEntry, ...]
    last_updated_by: str
    source: str
    sla_level: str
    security_level: str | None = None
    security_classification: str | None = None

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            "current_state": self.current_state.to_document(),
            "state_transitions": [transition.to_document() for transition in self.state_transitions],
            "status_history": [entry.to_document() for entry in self.status_history],
            "last_updated_by": self.last_updated_by,
            "source": self.source,
            "sla_level": self.sla_level,
        }
        if self.security_level is not None:
            document["security_level"] = self.security_level
        if self.security_classification is not None:
            document["security_classification"] = self.security_classification
        return document

    def to_json(self) -> str:
        return json.dumps(self.to_document(), sort_keys=True, separators=(",", ":"))

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "TicketMetadata":
        """Rebuild metadata from its stored form.

        Raises:
            ValueError: If the document is incomplete or carries bad timestamps.
        """

        try:
            current = document["current_state"]
            return cls(
                current_state=CurrentState(
                    name=str(current["name"]),
                    entered_at=_require_timestamp(current["entered_at"]),
                    updated_by=str(current["updated_by"]),
                ),
                state_transitions=tuple(
                    StateTransition(
                        from_state=str(item["from_state"]),
                        to_state=str(item["to_state"]),
                        timestamp=_require_timestamp(item["timestamp"]),
                        user_id=str(item["user_id"]),
                    )
                    for item in document["state_transitions"]
                ),
                status_history=tuple(
                    StatusHistoryEntry(
                        status=str(item["status"]),
                        timestamp=_require_timestamp(item["timestamp"]),
                        user_id=str(item["user_id"]),
                    )
                    for item in document["status_history"]
                ),
                last_updated_by=str(document["last_updated_by"]),
                source=str(document["source"]),
                sla_level=str(document["sla_level"]),
                security_level=document.get("security_level"),
                security_classification=document.get("security_classification"),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Incomplete ticket metadata document: {exc}") from exc


@dataclass(frozen=True, slots=True)
class StoredMetadata:
    """Metadata document as persisted, with its optimistic concurrency version."""

    document: Mapping[str, Any]
    version: int


@dataclass(frozen=True, slots=True)
class TimelineEvent:
    event_time: datetime
    event_type: str
    event_description: str
    actor_name: str
    thread_id: str | None = None
    thread_context: Mapping[str, Any] = field(default_factory=dict)


def _require_timestamp(value: Any) -> datetime:
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValueError(f"Invalid timestamp in metadata document: {value!r}")
    return parsed
