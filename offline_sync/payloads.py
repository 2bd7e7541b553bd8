"""
Pydantic schemas for operation payloads.

A payload is the serialized snapshot of an entity at the time it was mutated.
Each entity type has a schema with its identifying and timestamp columns
required; other columns are carried through untouched.
"""

import json
from datetime import datetime
from typing import Any, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import PayloadError
from .models import EntityType


# =============================================================================
# Entity Schemas
# =============================================================================

class EntityPayload(BaseModel):
    """Columns shared by every synced entity."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: UUID
    updated_at: Optional[datetime] = None


class TaskPayload(EntityPayload):
    user_id: Optional[UUID] = None
    title: str = Field(..., min_length=1)
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    estimated_minutes: Optional[int] = Field(None, ge=0)
    scheduled_time: Optional[datetime] = None
    sort_order: Optional[int] = None
    star_rating: Optional[int] = Field(None, ge=0, le=5)


class GoalPayload(EntityPayload):
    user_id: Optional[UUID] = None
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    target_date: Optional[datetime] = None
    progress: Optional[float] = Field(None, ge=0.0, le=1.0)
    is_completed: Optional[bool] = None
    completed_at: Optional[datetime] = None


class AchievementPayload(EntityPayload):
    user_id: Optional[UUID] = None
    type: str = Field(..., min_length=1)
    unlocked_at: Optional[datetime] = None


class UserPayload(EntityPayload):
    email: Optional[str] = None
    full_name: Optional[str] = None
    current_level: Optional[int] = Field(None, ge=0)
    total_points: Optional[int] = Field(None, ge=0)


class StreakPayload(EntityPayload):
    user_id: Optional[UUID] = None
    current_streak: int = Field(0, ge=0)
    longest_streak: int = Field(0, ge=0)
    last_active_date: Optional[datetime] = None


PAYLOAD_SCHEMAS: dict[EntityType, type[EntityPayload]] = {
    EntityType.TASK: TaskPayload,
    EntityType.GOAL: GoalPayload,
    EntityType.ACHIEVEMENT: AchievementPayload,
    EntityType.USER: UserPayload,
    EntityType.STREAK: StreakPayload,
}


# =============================================================================
# Codec
# =============================================================================

def _describe(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = " -> ".join(str(x) for x in error["loc"])
        parts.append(f"{loc}: {error['msg']}")
    return "; ".join(parts)


def encode_payload(
    entity_type: EntityType,
    data: Union[dict[str, Any], EntityPayload],
) -> str:
    """Validate an entity snapshot and serialize it to JSON text."""
    schema = PAYLOAD_SCHEMAS[EntityType(entity_type)]
    try:
        model = data if isinstance(data, schema) else schema.model_validate(
            data.model_dump() if isinstance(data, BaseModel) else data
        )
    except ValidationError as e:
        raise PayloadError(f"Invalid {EntityType(entity_type).value} payload: {_describe(e)}") from e
    return model.model_dump_json()


def decode_payload(
    entity_type: EntityType,
    raw: Optional[str],
    entity_id: Optional[str] = None,
) -> dict[str, Any]:
    """
    Parse a serialized payload back into a JSON-ready dict.

    Raises:
        PayloadError: if the payload is missing, malformed, fails validation,
            or names a different entity than ``entity_id``.
    """
    entity_type = EntityType(entity_type)
    if raw is None:
        raise PayloadError(f"{entity_type.value} payload is missing")

    schema = PAYLOAD_SCHEMAS[entity_type]
    try:
        model = schema.model_validate_json(raw)
    except ValidationError as e:
        raise PayloadError(f"Invalid {entity_type.value} payload: {_describe(e)}") from e

    if entity_id is not None and str(model.id) != str(entity_id).lower():
        raise PayloadError(
            f"{entity_type.value} payload id {model.id} does not match entity {entity_id}"
        )
    return json.loads(model.model_dump_json())
