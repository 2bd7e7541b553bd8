"""
Sync coordinator: drains the operation queue and reconciles with the remote store.

Features:
- Trailing-edge debounced drain after every enqueue
- Sequential, FIFO queue drain with retry bookkeeping and dead letters
- Automatic retry drain on the backoff schedule
- Drain on connectivity restore, offline state on connectivity loss
- Full reconciliation: push the queue, then pull and merge by last-write-wins
- Observable aggregate state for UI and diagnostics
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable, Optional, Sequence, Union

from .config import SyncSettings, get_settings
from .connectivity import ConnectivityMonitor
from .exceptions import PayloadError, PermanentRemoteError
from .gateway import RemoteGateway, RestGateway
from .local_store import LocalStore, SqlLocalStore
from .models import (
    EPOCH,
    EntityRecord,
    EntityType,
    OperationType,
    SyncOperation,
    SyncResult,
    SyncState,
    SyncStateKind,
    utcnow,
)
from .operation_queue import OperationQueue
from .payloads import EntityPayload, decode_payload, encode_payload
from .queue_store import SqliteQueueStore
from .retry import RetryPolicy
from .timers import CancellableTimer

logger = logging.getLogger(__name__)

StateListener = Callable[[SyncState], None]

# Share of the progress bar given to the push phase of a full sync
FULL_SYNC_PUSH_SHARE = 0.3


class SyncCoordinator:
    """
    Orchestrates the offline queue against a remote gateway.

    All methods must be called from one event loop. Remote calls are the only
    suspension points inside a drain and are awaited one at a time.
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        queue: OperationQueue,
        connectivity: ConnectivityMonitor,
        local_store: LocalStore,
        retry_policy: Optional[RetryPolicy] = None,
        settings: Optional[SyncSettings] = None,
    ):
        self.settings = settings or get_settings()
        self.gateway = gateway
        self.queue = queue
        self.connectivity = connectivity
        self.local_store = local_store
        self.retry_policy = retry_policy or RetryPolicy(
            schedule=self.settings.retry_delays,
            max_attempts=self.settings.max_retry_attempts,
        )

        self._state = SyncState.idle() if connectivity.is_online else SyncState.offline()
        self._last_successful_sync: Optional[datetime] = None
        self._failed_operations_count = 0
        self._listeners: list[StateListener] = []
        self._busy = False
        self._rerun_requested = False

        self._debounce_timer = CancellableTimer("sync-debounce")
        self._retry_timer = CancellableTimer("sync-retry")
        self._reset_timer = CancellableTimer("sync-state-reset")

        connectivity.on_restored = self._on_connection_restored
        connectivity.on_lost = self._on_connection_lost

    # =========================================================================
    # Observation
    # =========================================================================

    @property
    def sync_state(self) -> SyncState:
        return self._state

    @property
    def sync_progress(self) -> float:
        return self._state.progress if self._state.is_active else 0.0

    @property
    def pending_count(self) -> int:
        return len(self.queue)

    @property
    def pending_operations(self) -> list[SyncOperation]:
        return self.queue.snapshot()

    @property
    def last_successful_sync(self) -> Optional[datetime]:
        return self._last_successful_sync

    @property
    def failed_operations_count(self) -> int:
        """Operations permanently dropped since the queue was last cleared."""
        return self._failed_operations_count

    @property
    def dead_letters(self) -> list[SyncOperation]:
        return self.queue.dead_letters

    @property
    def needs_sync(self) -> bool:
        return bool(self.queue) or self._last_successful_sync is None

    @property
    def drain_scheduled(self) -> bool:
        return self._debounce_timer.pending

    def status(self) -> dict[str, Any]:
        """Snapshot of everything a UI or diagnostic surface needs."""
        return {
            "sync_state": self._state.to_dict(),
            "pending_count": self.pending_count,
            "failed_operations_count": self._failed_operations_count,
            "dead_letter_count": len(self.queue.dead_letters),
            "last_successful_sync": (
                self._last_successful_sync.isoformat() if self._last_successful_sync else None
            ),
            "needs_sync": self.needs_sync,
            "connection": self.connectivity.snapshot().to_dict(),
        }

    def add_listener(self, callback: StateListener) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: StateListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _set_state(self, state: SyncState) -> None:
        if state == self._state:
            return
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Sync state listener failed")

    def retry_delay(self, attempt: int) -> float:
        return self.retry_policy.delay(attempt)

    # =========================================================================
    # Connectivity
    # =========================================================================

    def _on_connection_restored(self) -> None:
        logger.info("Connection restored, draining pending queue")
        if self._state.kind == SyncStateKind.OFFLINE:
            self._set_state(SyncState.idle())
        self._schedule(self._debounce_timer, 0.0, self.process_pending_queue)

    def _on_connection_lost(self) -> None:
        self._debounce_timer.cancel()
        self._retry_timer.cancel()
        self._reset_timer.cancel()
        self._set_state(SyncState.offline())

    # =========================================================================
    # Queue Operations
    # =========================================================================

    def enqueue(self, operation: SyncOperation) -> SyncOperation:
        """Add an operation (replacing any pending one for the entity) and debounce a drain."""
        self.queue.enqueue(operation)
        self._schedule(self._debounce_timer, self.settings.sync_debounce, self.process_pending_queue)
        return operation

    def queue_create(
        self,
        entity_type: EntityType,
        entity_id: str,
        payload: Union[dict[str, Any], EntityPayload],
    ) -> SyncOperation:
        return self._queue_mutation(OperationType.CREATE, entity_type, entity_id, payload)

    def queue_update(
        self,
        entity_type: EntityType,
        entity_id: str,
        payload: Union[dict[str, Any], EntityPayload],
    ) -> SyncOperation:
        return self._queue_mutation(OperationType.UPDATE, entity_type, entity_id, payload)

    def queue_delete(
        self,
        entity_type: EntityType,
        entity_id: str,
        payload: Optional[Union[dict[str, Any], EntityPayload]] = None,
    ) -> SyncOperation:
        entity_type = EntityType(entity_type)
        return self.enqueue(SyncOperation(
            type=OperationType.DELETE,
            entity_type=entity_type,
            entity_id=str(entity_id),
            payload=encode_payload(entity_type, payload) if payload is not None else None,
        ))

    def _queue_mutation(
        self,
        op_type: OperationType,
        entity_type: EntityType,
        entity_id: str,
        payload: Union[dict[str, Any], EntityPayload],
    ) -> SyncOperation:
        entity_type = EntityType(entity_type)
        encoded = encode_payload(entity_type, payload)
        # Reject snapshots of a different entity before they reach the queue
        decode_payload(entity_type, encoded, entity_id=str(entity_id))
        return self.enqueue(SyncOperation(
            type=op_type,
            entity_type=entity_type,
            entity_id=str(entity_id),
            payload=encoded,
        ))

    def cancel_pending(self, entity_id: str, entity_type: Optional[EntityType] = None) -> int:
        """Cancel pending operations for an entity, e.g. deleted locally before sync."""
        return self.queue.remove_by_entity(entity_id, entity_type)

    def clear_pending_queue(self) -> int:
        """Drop every pending operation without syncing it."""
        self._debounce_timer.cancel()
        self._retry_timer.cancel()
        count = self.queue.clear()
        self._failed_operations_count = 0
        logger.info(f"Cleared {count} pending operation(s)")
        return count

    def clear_dead_letters(self) -> int:
        return self.queue.clear_dead_letters()

    @staticmethod
    def _schedule(timer: CancellableTimer, delay: float, callback) -> None:
        try:
            timer.schedule(delay, callback)
        except RuntimeError:
            # No running event loop; the operation stays queued for the next drain
            logger.debug(f"No running event loop, {timer.name} not scheduled")

    # =========================================================================
    # Queue Drain
    # =========================================================================

    async def process_pending_queue(self) -> SyncResult:
        """
        Drain the pending queue against the remote gateway.

        A no-op while another drain or full sync is running. Offline, the
        queue is left untouched and the state becomes ``offline``.
        """
        if not self.connectivity.is_online:
            self._set_state(SyncState.offline())
            return SyncResult(success=False, aborted_offline=True)

        if self._busy:
            logger.debug("Drain requested while syncing, deferring")
            self._rerun_requested = True
            return SyncResult(success=False, errors=["sync already in progress"])

        self._debounce_timer.cancel()
        self._retry_timer.cancel()

        if not self.queue:
            self._set_state(SyncState.idle())
            return SyncResult(success=True)

        self._busy = True
        self._rerun_requested = False
        try:
            self._set_state(SyncState.syncing(0.0))
            result = await self._drain(0.0, 1.0)
        except Exception as e:
            return self._abort_pass("Drain", e)
        finally:
            self._busy = False

        if result.aborted_offline:
            self._set_state(SyncState.offline())
            return result

        self._finish(result.items_failed, result.items_processed)
        self._schedule_followups()
        return result

    async def _drain(self, progress_start: float, progress_span: float) -> SyncResult:
        started = time.time()
        operations = self.queue.snapshot()
        total = len(operations)
        result = SyncResult(success=True)

        logger.info(f"Draining {total} pending operation(s)")

        for index, operation in enumerate(operations):
            if not self.connectivity.is_online:
                logger.info(f"Connection lost mid-drain, {len(self.queue)} operation(s) left")
                result.aborted_offline = True
                break

            self._set_state(SyncState.syncing(progress_start + progress_span * index / total))

            # Superseded or cancelled while an earlier remote call was in flight
            if self.queue.get(operation.id) is None:
                continue

            try:
                await self._execute(operation)
            except (PermanentRemoteError, PayloadError) as e:
                result.items_failed += 1
                result.errors.append(f"{operation.id}: {e}")
                if self.settings.retry_permanent_failures:
                    dropped = self._register_failure(operation, str(e))
                else:
                    dropped = self._drop(operation.copy(
                        attempts=operation.attempts + 1,
                        last_attempt=utcnow(),
                        last_error=str(e),
                    ))
                if dropped:
                    result.items_dropped += 1
            except Exception as e:
                # Transient, or an unclassified gateway failure
                result.items_failed += 1
                result.errors.append(f"{operation.id}: {e}")
                if self._register_failure(operation, str(e)):
                    result.items_dropped += 1
            else:
                result.items_processed += 1
                self.queue.remove(operation.id)

        result.success = result.items_failed == 0 and not result.aborted_offline
        result.duration_seconds = time.time() - started

        logger.info(
            f"Drain finished in {result.duration_seconds:.2f}s: "
            f"{result.items_processed} synced, {result.items_failed} failed, "
            f"{result.items_dropped} dropped"
        )
        return result

    async def _execute(self, operation: SyncOperation) -> None:
        """Apply one operation remotely. Raises on failure."""
        if operation.type == OperationType.DELETE:
            await self.gateway.delete(operation.entity_type, operation.entity_id)
            return

        record = decode_payload(operation.entity_type, operation.payload, operation.entity_id)
        await self.gateway.create_or_update(operation.entity_type, record)

    def _register_failure(self, operation: SyncOperation, error: str) -> bool:
        """Record a failed attempt. Returns True if the operation was dropped."""
        if self.queue.get(operation.id) is None:
            return False

        failed = self.retry_policy.register_failure(operation, error)
        if self.retry_policy.should_drop(failed):
            return self._drop(failed)

        self.queue.update(failed)
        logger.warning(
            f"{failed.type.value} {failed.entity_type.value} {failed.entity_id} failed "
            f"(attempt {failed.attempts}/{self.retry_policy.max_attempts}): {error}"
        )
        return False

    def _drop(self, operation: SyncOperation) -> bool:
        if self.queue.get(operation.id) is None:
            return False
        self.queue.update(operation)
        self.queue.drop(operation.id)
        self._failed_operations_count += 1
        return True

    def _abort_pass(self, name: str, error: Exception) -> SyncResult:
        """End a pass that failed outside per-operation handling, e.g. a queue store write."""
        logger.exception(f"{name} aborted: {error}")
        message = str(error) or type(error).__name__
        self._set_state(SyncState.error(message))
        return SyncResult(success=False, errors=[message])

    def _finish(self, failed: int, synced: int) -> None:
        if failed > 0:
            self._set_state(SyncState.error(f"{failed} operations failed"))
            return

        self._last_successful_sync = utcnow()
        self._set_state(SyncState.success(synced))
        self._schedule(self._reset_timer, self.settings.success_reset_delay, self._reset_success)

    async def _reset_success(self) -> None:
        if self._state.kind == SyncStateKind.SUCCESS:
            self._set_state(SyncState.idle())

    def _schedule_followups(self) -> None:
        """Arm a retry drain for failed operations and rerun deferred drain requests."""
        if not self.connectivity.is_online:
            return

        if self._rerun_requested:
            self._rerun_requested = False
            if any(op.attempts == 0 for op in self.queue):
                self._schedule(
                    self._debounce_timer, self.settings.sync_debounce, self.process_pending_queue
                )

        retrying = [op for op in self.queue if op.attempts > 0]
        if not retrying:
            return
        attempts = min(op.attempts for op in retrying)
        delay = self.retry_policy.delay(attempts - 1)
        logger.info(f"Retrying {len(retrying)} failed operation(s) in {delay:.0f}s")
        self._schedule(self._retry_timer, delay, self.process_pending_queue)

    # =========================================================================
    # Full Sync
    # =========================================================================

    async def perform_full_sync(
        self,
        entity_types: Optional[Sequence[EntityType]] = None,
    ) -> SyncResult:
        """
        Push the pending queue, then pull every entity type and merge it locally.

        Remote records overwrite local ones only when strictly newer by
        ``updated_at``. Local-only records are left alone.
        """
        if not self.connectivity.is_online:
            self._set_state(SyncState.offline())
            return SyncResult(success=False, aborted_offline=True)

        if self._busy:
            logger.debug("Full sync requested while syncing, ignoring")
            return SyncResult(success=False, errors=["sync already in progress"])

        self._debounce_timer.cancel()
        self._retry_timer.cancel()

        types = [EntityType(t) for t in (entity_types or self.settings.pull_entity_types)]
        logger.info("Starting full sync...")

        self._busy = True
        self._rerun_requested = False
        try:
            self._set_state(SyncState.syncing(0.0))
            result, pull_error = await self._full_sync(types)
        except Exception as e:
            return self._abort_pass("Full sync", e)
        finally:
            self._busy = False

        if result.aborted_offline:
            self._set_state(SyncState.offline())
            return result

        if pull_error is not None:
            self._set_state(SyncState.error(pull_error))
        else:
            logger.info(
                f"Full sync completed in {result.duration_seconds:.2f}s: "
                f"{result.items_processed} pushed, {result.records_pulled} pulled, "
                f"{result.items_failed} failed"
            )
            self._finish(result.items_failed, result.items_processed + result.records_pulled)

        self._schedule_followups()
        return result

    async def _full_sync(self, types: list[EntityType]) -> tuple[SyncResult, Optional[str]]:
        started = time.time()
        pull_error = None

        # 1. Push local changes
        if self.queue:
            result = await self._drain(0.0, FULL_SYNC_PUSH_SHARE)
            if result.aborted_offline:
                return result, None
        else:
            result = SyncResult(success=True)

        # 2. Pull remote state
        pull_share = 1.0 - FULL_SYNC_PUSH_SHARE
        for index, entity_type in enumerate(types):
            if not self.connectivity.is_online:
                result.aborted_offline = True
                result.success = False
                return result, None

            self._set_state(SyncState.syncing(FULL_SYNC_PUSH_SHARE + pull_share * index / len(types)))
            try:
                result.records_pulled += await self._pull(entity_type)
            except Exception as e:
                self.local_store.rollback()
                logger.exception(f"Full sync failed while pulling {entity_type.value}")
                result.success = False
                result.errors.append(f"{entity_type.value}: {e}")
                pull_error = str(e) or type(e).__name__
                break
        else:
            result.success = result.items_failed == 0

        result.duration_seconds = time.time() - started
        return result, pull_error

    async def _pull(self, entity_type: EntityType) -> int:
        """Merge the remote collection into the local store. Returns records changed."""
        remote_records = await self.gateway.fetch_all(entity_type)

        changed = 0
        for remote in remote_records:
            local = self.local_store.get(entity_type, remote.id)
            if local is None:
                self.local_store.insert(EntityRecord(
                    entity_type=entity_type,
                    id=remote.id,
                    updated_at=remote.updated_at or EPOCH,
                    fields=dict(remote.fields),
                ))
                changed += 1
            elif remote.is_newer_than(local):
                self.local_store.update(EntityRecord(
                    entity_type=entity_type,
                    id=remote.id,
                    updated_at=remote.updated_at,
                    fields=dict(remote.fields),
                ))
                changed += 1

        self.local_store.save()
        logger.debug(f"Merged {changed} of {len(remote_records)} remote {entity_type.value} record(s)")
        return changed

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def wait_idle(self) -> None:
        """Wait for scheduled drains that are already armed or running."""
        await self._debounce_timer.wait()

    async def close(self) -> None:
        """Cancel timers and release the gateway and local store."""
        for timer in (self._debounce_timer, self._retry_timer, self._reset_timer):
            await timer.shutdown()

        if self.connectivity.on_restored == self._on_connection_restored:
            self.connectivity.on_restored = None
        if self.connectivity.on_lost == self._on_connection_lost:
            self.connectivity.on_lost = None

        await self.gateway.close()
        self.local_store.close()
        logger.info("Sync coordinator closed")


# =============================================================================
# Convenience Functions
# =============================================================================

def create_coordinator(
    settings: Optional[SyncSettings] = None,
    gateway: Optional[RemoteGateway] = None,
    local_store: Optional[LocalStore] = None,
    connectivity: Optional[ConnectivityMonitor] = None,
) -> SyncCoordinator:
    """
    Build a coordinator from settings.

    Defaults: SQLite-persisted queue under ``settings.data_dir``, SQL local
    store at ``settings.local_db_url``, REST gateway at ``settings.remote_url``.
    """
    settings = settings or get_settings()
    settings.ensure_data_dir()

    queue = OperationQueue(
        SqliteQueueStore(settings.queue_db_path),
        key=settings.queue_key,
        dead_letter_key=settings.dead_letter_key,
        max_dead_letters=settings.max_dead_letters,
    )
    return SyncCoordinator(
        gateway=gateway or RestGateway(
            settings.remote_url,
            api_key=settings.remote_api_key,
            timeout=settings.remote_timeout,
        ),
        queue=queue,
        connectivity=connectivity or ConnectivityMonitor(),
        local_store=local_store or SqlLocalStore(settings.local_db_url, echo=settings.debug),
        settings=settings,
    )


@asynccontextmanager
async def sync_session(settings: Optional[SyncSettings] = None, **overrides):
    """
    Context manager for a sync session.

    Usage:
        async with sync_session() as coordinator:
            coordinator.queue_update(EntityType.TASK, task_id, task_payload)
    """
    coordinator = create_coordinator(settings, **overrides)
    try:
        yield coordinator
    finally:
        await coordinator.close()
