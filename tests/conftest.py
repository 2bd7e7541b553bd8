"""
Shared fixtures and fakes for the sync engine tests.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from offline_sync.config import SyncSettings
from offline_sync.connectivity import ConnectionState, ConnectivityMonitor
from offline_sync.coordinator import SyncCoordinator
from offline_sync.exceptions import QueueStoreError, TransientRemoteError
from offline_sync.gateway import RemoteGateway
from offline_sync.local_store import MemoryLocalStore
from offline_sync.models import EntityRecord, EntityType
from offline_sync.operation_queue import OperationQueue
from offline_sync.queue_store import MemoryQueueStore


def ts(minute: int) -> datetime:
    """Deterministic UTC timestamp helper."""
    return datetime(2024, 1, 1, 12, minute, tzinfo=timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def task_payload(entity_id: str, title: str = "Write tests", **extra: Any) -> dict:
    return {"id": entity_id, "title": title, "updated_at": ts(0).isoformat(), **extra}


class FakeGateway(RemoteGateway):
    """In-memory remote that records calls and fails on demand."""

    def __init__(self):
        self.calls: list[tuple[str, EntityType, str]] = []
        self.upserts: list[tuple[EntityType, dict]] = []
        self.deletes: list[tuple[EntityType, str]] = []
        self.remote: dict[EntityType, list[EntityRecord]] = {}
        self.fetch_errors: dict[EntityType, Exception] = {}
        self.closed = False
        self.before_call = None
        self._failures: dict[str, list[Exception]] = {}
        self._always_fail: dict[str, Exception] = {}

    def fail(self, entity_id: str, error: Optional[Exception] = None, times: int = 1) -> None:
        """Fail the next ``times`` calls for an entity."""
        error = error or TransientRemoteError("connection reset")
        self._failures.setdefault(entity_id, []).extend([error] * times)

    def fail_always(self, entity_id: str, error: Optional[Exception] = None) -> None:
        self._always_fail[entity_id] = error or TransientRemoteError("connection reset")

    async def _record(self, action: str, entity_type: EntityType, entity_id: str) -> None:
        self.calls.append((action, entity_type, entity_id))
        if self.before_call is not None:
            await self.before_call(action, entity_type, entity_id)
        if entity_id in self._always_fail:
            raise self._always_fail[entity_id]
        pending = self._failures.get(entity_id)
        if pending:
            raise pending.pop(0)

    async def create_or_update(self, entity_type: EntityType, record: dict[str, Any]) -> None:
        await self._record("upsert", entity_type, str(record["id"]))
        self.upserts.append((entity_type, record))

    async def delete(self, entity_type: EntityType, entity_id: str) -> None:
        await self._record("delete", entity_type, entity_id)
        self.deletes.append((entity_type, entity_id))

    async def fetch_all(self, entity_type: EntityType) -> list[EntityRecord]:
        self.calls.append(("fetch", entity_type, "*"))
        if entity_type in self.fetch_errors:
            raise self.fetch_errors[entity_type]
        return list(self.remote.get(entity_type, []))

    async def close(self) -> None:
        self.closed = True


class FlakyQueueStore(MemoryQueueStore):
    """Memory store whose writes fail while ``fail_saves`` is set."""

    def __init__(self):
        super().__init__()
        self.fail_saves = False

    def save(self, key: str, value: str) -> None:
        if self.fail_saves:
            raise QueueStoreError("disk full")
        super().save(key, value)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings(tmp_path):
    """Settings with short timers; retries far enough out not to fire mid-test."""
    return SyncSettings(
        _env_file=None,
        data_dir=tmp_path,
        sync_debounce=0.05,
        success_reset_delay=0.05,
        retry_delays=[30.0, 30.0, 30.0, 30.0, 30.0],
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def queue():
    return OperationQueue(MemoryQueueStore())


@pytest.fixture
def monitor():
    return ConnectivityMonitor(state=ConnectionState.ONLINE)


@pytest.fixture
def local_store():
    return MemoryLocalStore()


@pytest.fixture
async def make_coordinator(gateway, queue, monitor, local_store, settings):
    """Factory for coordinators over the shared fakes; closes them afterwards."""
    created = []

    def factory(**overrides) -> SyncCoordinator:
        coordinator = SyncCoordinator(
            gateway=gateway,
            queue=queue,
            connectivity=monitor,
            local_store=local_store,
            settings=settings.model_copy(update=overrides) if overrides else settings,
        )
        created.append(coordinator)
        return coordinator

    yield factory

    for coordinator in created:
        await coordinator.close()


@pytest.fixture
async def coordinator(make_coordinator):
    return make_coordinator()
