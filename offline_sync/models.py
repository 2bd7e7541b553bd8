"""
Data models for the offline sync engine.

Defines the queued mutation (SyncOperation), the aggregate sync state exposed
to observers (SyncState), the outcome of a drain or full sync (SyncResult),
and the record shape exchanged with the remote and local stores (EntityRecord).
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


# Stand-in timestamp for records whose remote row carries none
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp as produced by JSON APIs.

    Accepts datetimes, ISO strings (with a trailing ``Z``) and None. Naive
    values are assumed to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# Enums
# =============================================================================

class OperationType(str, Enum):
    """Kind of mutation carried by a sync operation."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class EntityType(str, Enum):
    """Category of domain record synchronized independently."""
    TASK = "task"
    GOAL = "goal"
    ACHIEVEMENT = "achievement"
    USER = "user"
    STREAK = "streak"


class SyncStateKind(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"
    OFFLINE = "offline"


# =============================================================================
# Sync Operation
# =============================================================================

@dataclass
class SyncOperation:
    """A single queued mutation targeting one entity."""
    type: OperationType
    entity_type: EntityType
    entity_id: str
    payload: Optional[str] = None  # JSON snapshot, absent for delete
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    attempts: int = 0
    last_attempt: Optional[datetime] = None
    last_error: Optional[str] = None

    def __post_init__(self):
        self.type = OperationType(self.type)
        self.entity_type = EntityType(self.entity_type)
        self.entity_id = str(self.entity_id)

    @property
    def entity_key(self) -> tuple[EntityType, str]:
        """Dedupe key: at most one pending operation per entity."""
        return (self.entity_type, self.entity_id)

    def matches_entity(self, entity_type: EntityType, entity_id: str) -> bool:
        return self.entity_type == entity_type and self.entity_id == str(entity_id)

    def copy(self, **changes: Any) -> "SyncOperation":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "type": self.type.value,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
            "attempts": self.attempts,
            "last_attempt": self.last_attempt.isoformat() if self.last_attempt else None,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "SyncOperation":
        """Create from dictionary."""
        return cls(
            id=d["id"],
            type=OperationType(d["type"]),
            entity_type=EntityType(d["entity_type"]),
            entity_id=d["entity_id"],
            payload=d.get("payload"),
            created_at=parse_timestamp(d["created_at"]),
            attempts=d.get("attempts", 0),
            last_attempt=parse_timestamp(d.get("last_attempt")),
            last_error=d.get("last_error"),
        )


# =============================================================================
# Sync State
# =============================================================================

@dataclass(frozen=True)
class SyncState:
    """
    Aggregate sync state shown to observers.

    Use the constructors (``SyncState.idle()``, ``SyncState.syncing(0.5)``...)
    rather than building instances by hand.
    """
    kind: SyncStateKind = SyncStateKind.IDLE
    progress: float = 0.0
    synced_count: int = 0
    message: Optional[str] = None

    @classmethod
    def idle(cls) -> "SyncState":
        return cls(SyncStateKind.IDLE)

    @classmethod
    def syncing(cls, progress: float = 0.0) -> "SyncState":
        return cls(SyncStateKind.SYNCING, progress=min(max(progress, 0.0), 1.0))

    @classmethod
    def success(cls, synced_count: int) -> "SyncState":
        return cls(SyncStateKind.SUCCESS, synced_count=synced_count)

    @classmethod
    def error(cls, message: str) -> "SyncState":
        return cls(SyncStateKind.ERROR, message=message)

    @classmethod
    def offline(cls) -> "SyncState":
        return cls(SyncStateKind.OFFLINE)

    @property
    def is_active(self) -> bool:
        """True while a drain or full sync is running."""
        return self.kind == SyncStateKind.SYNCING

    @property
    def display_text(self) -> str:
        if self.kind == SyncStateKind.IDLE:
            return "Ready to sync"
        if self.kind == SyncStateKind.SYNCING:
            return f"Syncing... {int(self.progress * 100)}%"
        if self.kind == SyncStateKind.SUCCESS:
            return f"Synced {self.synced_count} items" if self.synced_count > 0 else "All synced"
        if self.kind == SyncStateKind.ERROR:
            return self.message or "Sync failed"
        return "Offline mode"

    def to_dict(self) -> dict:
        return {
            "state": self.kind.value,
            "progress": self.progress,
            "synced_count": self.synced_count,
            "message": self.message,
            "display_text": self.display_text,
        }


# =============================================================================
# Results and Records
# =============================================================================

@dataclass
class SyncResult:
    """Result of a drain or full sync."""
    success: bool
    items_processed: int = 0
    items_failed: int = 0
    items_dropped: int = 0
    records_pulled: int = 0
    errors: list[str] = field(default_factory=list)
    aborted_offline: bool = False
    duration_seconds: float = 0.0
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "items_processed": self.items_processed,
            "items_failed": self.items_failed,
            "items_dropped": self.items_dropped,
            "records_pulled": self.records_pulled,
            "errors": list(self.errors),
            "aborted_offline": self.aborted_offline,
            "duration_seconds": self.duration_seconds,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class EntityRecord:
    """A typed record keyed by id, carrying the timestamp used for last-write-wins."""
    entity_type: EntityType
    id: str
    updated_at: Optional[datetime] = None
    fields: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.entity_type = EntityType(self.entity_type)
        self.id = str(self.id)

    def is_newer_than(self, other: "EntityRecord") -> bool:
        """
        Strictly newer by ``updated_at``. A missing timestamp on this record
        never wins; ties are not newer.
        """
        if self.updated_at is None:
            return False
        if other.updated_at is None:
            return True
        return self.updated_at > other.updated_at

    @classmethod
    def from_row(cls, entity_type: EntityType, row: dict) -> "EntityRecord":
        """Build from a remote JSON row (``id`` and ``updated_at`` columns)."""
        if "id" not in row:
            raise ValueError(f"{EntityType(entity_type).value} row is missing 'id'")
        fields = {k: v for k, v in row.items() if k not in ("id", "updated_at")}
        return cls(
            entity_type=entity_type,
            id=row["id"],
            updated_at=parse_timestamp(row.get("updated_at")),
            fields=fields,
        )

    def to_row(self) -> dict:
        row = dict(self.fields)
        row["id"] = self.id
        row["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return row
