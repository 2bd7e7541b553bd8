"""
Pydantic schemas for the sync status API.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from .models import EntityType, OperationType, SyncOperation, SyncResult, SyncState


# =============================================================================
# Requests
# =============================================================================

class EnqueueRequest(BaseModel):
    """Queue a local mutation for sync."""
    type: OperationType
    entity_type: EntityType
    entity_id: str = Field(..., min_length=1)
    payload: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def payload_required_for_writes(self) -> "EnqueueRequest":
        if self.type != OperationType.DELETE and self.payload is None:
            raise ValueError(f"payload is required for {self.type.value} operations")
        return self


class FullSyncRequest(BaseModel):
    """Entity types to pull; all configured types when omitted."""
    entity_types: Optional[list[EntityType]] = None


# =============================================================================
# Responses
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str
    connection: str


class SyncStateResponse(BaseModel):
    state: str
    progress: float
    synced_count: int
    message: Optional[str] = None
    display_text: str

    @classmethod
    def from_state(cls, state: SyncState) -> "SyncStateResponse":
        return cls(**state.to_dict())


class ConnectionResponse(BaseModel):
    state: str
    quality: str
    interface: Optional[str] = None
    is_expensive: bool
    is_constrained: bool
    should_defer_sync: bool


class StatusResponse(BaseModel):
    """Everything a sync indicator needs."""
    sync_state: SyncStateResponse
    pending_count: int
    failed_operations_count: int
    dead_letter_count: int
    last_successful_sync: Optional[datetime] = None
    needs_sync: bool
    connection: ConnectionResponse


class OperationResponse(BaseModel):
    id: str
    type: OperationType
    entity_type: EntityType
    entity_id: str
    created_at: datetime
    attempts: int
    last_attempt: Optional[datetime] = None
    last_error: Optional[str] = None

    @classmethod
    def from_operation(cls, operation: SyncOperation) -> "OperationResponse":
        return cls(
            id=operation.id,
            type=operation.type,
            entity_type=operation.entity_type,
            entity_id=operation.entity_id,
            created_at=operation.created_at,
            attempts=operation.attempts,
            last_attempt=operation.last_attempt,
            last_error=operation.last_error,
        )


class SyncResultResponse(BaseModel):
    success: bool
    items_processed: int
    items_failed: int
    items_dropped: int
    records_pulled: int
    errors: list[str] = []
    aborted_offline: bool
    duration_seconds: float
    timestamp: datetime
    sync_state: SyncStateResponse

    @classmethod
    def from_result(cls, result: SyncResult, state: SyncState) -> "SyncResultResponse":
        return cls(**result.to_dict(), sync_state=SyncStateResponse.from_state(state))


class CountResponse(BaseModel):
    """Number of operations affected."""
    count: int
