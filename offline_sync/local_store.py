"""
Local entity stores.

The sync core does not own local entities. It reads and writes them through
the ``LocalStore`` contract during the pull phase of a full sync: typed
records keyed by id, staged writes visible to reads, and an atomic
``save()``.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, String, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .exceptions import LocalStoreError
from .models import EntityRecord, EntityType, utcnow

logger = logging.getLogger(__name__)


class LocalStore(ABC):
    """Contract of the local entity store."""

    @abstractmethod
    def get(self, entity_type: EntityType, entity_id: str) -> Optional[EntityRecord]:
        """Return the record with this id, including staged writes."""

    @abstractmethod
    def all(self, entity_type: EntityType) -> list[EntityRecord]:
        """Return every record of one entity type."""

    @abstractmethod
    def insert(self, record: EntityRecord) -> None:
        """Stage a new record."""

    @abstractmethod
    def update(self, record: EntityRecord) -> None:
        """Stage an overwrite of an existing record."""

    @abstractmethod
    def save(self) -> None:
        """Commit staged writes atomically."""

    @abstractmethod
    def rollback(self) -> None:
        """Discard staged writes."""

    def close(self) -> None:
        return None


# =============================================================================
# In-Memory Store
# =============================================================================

class MemoryLocalStore(LocalStore):
    """Dict-backed store with staged writes."""

    def __init__(self, records: Optional[list[EntityRecord]] = None):
        self._committed: dict[tuple[EntityType, str], EntityRecord] = {}
        self._staged: dict[tuple[EntityType, str], EntityRecord] = {}
        self.save_count = 0
        for record in records or []:
            self._committed[(record.entity_type, record.id)] = record

    @staticmethod
    def _key(entity_type: EntityType, entity_id: str) -> tuple[EntityType, str]:
        return (EntityType(entity_type), str(entity_id))

    def get(self, entity_type: EntityType, entity_id: str) -> Optional[EntityRecord]:
        key = self._key(entity_type, entity_id)
        return self._staged.get(key) or self._committed.get(key)

    def all(self, entity_type: EntityType) -> list[EntityRecord]:
        merged = {**self._committed, **self._staged}
        entity_type = EntityType(entity_type)
        return [r for (t, _), r in merged.items() if t == entity_type]

    def insert(self, record: EntityRecord) -> None:
        key = self._key(record.entity_type, record.id)
        if self.get(*key) is not None:
            raise LocalStoreError(f"{record.entity_type.value} {record.id} already exists")
        self._staged[key] = record

    def update(self, record: EntityRecord) -> None:
        key = self._key(record.entity_type, record.id)
        if self.get(*key) is None:
            raise LocalStoreError(f"{record.entity_type.value} {record.id} does not exist")
        self._staged[key] = record

    def save(self) -> None:
        self._committed.update(self._staged)
        self._staged.clear()
        self.save_count += 1

    def rollback(self) -> None:
        self._staged.clear()


# =============================================================================
# SQLAlchemy Store
# =============================================================================

class Base(DeclarativeBase):
    """Base class for local database models."""
    pass


class LocalEntity(Base):
    """One synced entity, stored as a JSON document."""
    __tablename__ = "local_entities"

    entity_type: Mapped[str] = mapped_column(String(32), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )


def _as_utc(value: datetime) -> datetime:
    # SQLite drops the offset; stored values are always UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlLocalStore(LocalStore):
    """SQLAlchemy-backed store; one session per store instance."""

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.engine = create_engine(database_url, echo=echo)
        Base.metadata.create_all(self.engine)
        self._session_factory = sessionmaker(
            self.engine,
            expire_on_commit=False,
            autoflush=True,
        )
        self._session: Session = self._session_factory()

    @staticmethod
    def _to_record(row: LocalEntity) -> EntityRecord:
        return EntityRecord(
            entity_type=EntityType(row.entity_type),
            id=row.id,
            updated_at=_as_utc(row.updated_at),
            fields=dict(row.data or {}),
        )

    def get(self, entity_type: EntityType, entity_id: str) -> Optional[EntityRecord]:
        try:
            row = self._session.get(LocalEntity, (EntityType(entity_type).value, str(entity_id)))
        except SQLAlchemyError as e:
            raise LocalStoreError(f"Failed to read {entity_type} {entity_id}: {e}") from e
        return self._to_record(row) if row else None

    def all(self, entity_type: EntityType) -> list[EntityRecord]:
        stmt = select(LocalEntity).where(LocalEntity.entity_type == EntityType(entity_type).value)
        try:
            rows = self._session.scalars(stmt).all()
        except SQLAlchemyError as e:
            raise LocalStoreError(f"Failed to list {entity_type}: {e}") from e
        return [self._to_record(row) for row in rows]

    def insert(self, record: EntityRecord) -> None:
        if self.get(record.entity_type, record.id) is not None:
            raise LocalStoreError(f"{record.entity_type.value} {record.id} already exists")
        self._session.add(LocalEntity(
            entity_type=record.entity_type.value,
            id=record.id,
            data=dict(record.fields),
            updated_at=_as_utc(record.updated_at or utcnow()),
        ))
        try:
            self._session.flush()
        except SQLAlchemyError as e:
            self._session.rollback()
            raise LocalStoreError(f"Failed to stage {record.entity_type.value} {record.id}: {e}") from e

    def update(self, record: EntityRecord) -> None:
        row = self._session.get(LocalEntity, (record.entity_type.value, record.id))
        if row is None:
            raise LocalStoreError(f"{record.entity_type.value} {record.id} does not exist")
        row.data = dict(record.fields)
        row.updated_at = _as_utc(record.updated_at or utcnow())

    def save(self) -> None:
        try:
            self._session.commit()
        except SQLAlchemyError as e:
            self._session.rollback()
            raise LocalStoreError(f"Failed to commit local changes: {e}") from e

    def rollback(self) -> None:
        self._session.rollback()

    def close(self) -> None:
        self._session.close()
        self.engine.dispose()
