"""
Durable FIFO queue of pending sync operations.

At most one operation per (entity_type, entity_id) is pending at any time:
enqueuing a mutation for an entity replaces whatever was queued for it. The
full queue is rewritten to the queue store after every mutation so it
survives process restarts. Operations that are given up on are moved to a
capped, persisted dead-letter list.
"""

import json
import logging
from typing import Iterator, Optional

from .models import EntityType, SyncOperation
from .queue_store import QueueStore

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_KEY = "sync.pending_queue"
DEFAULT_DEAD_LETTER_KEY = "sync.dead_letters"


class OperationQueue:
    """Deduplicated, persisted FIFO of SyncOperations."""

    def __init__(
        self,
        store: QueueStore,
        key: str = DEFAULT_QUEUE_KEY,
        dead_letter_key: str = DEFAULT_DEAD_LETTER_KEY,
        max_dead_letters: int = 200,
    ):
        self.store = store
        self.key = key
        self.dead_letter_key = dead_letter_key
        self.max_dead_letters = max_dead_letters
        self._operations: list[SyncOperation] = []
        self._dead_letters: list[SyncOperation] = []
        self.reload()

    # === Persistence ===

    def _read(self, key: str) -> list[SyncOperation]:
        raw = self.store.load(key)
        if not raw:
            return []
        try:
            return [SyncOperation.from_dict(d) for d in json.loads(raw)]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable queue data under '{key}': {e}")
            return []

    def _write(self, key: str, operations: list[SyncOperation]) -> None:
        self.store.save(key, json.dumps([op.to_dict() for op in operations]))

    def _commit(self, operations: list[SyncOperation]) -> None:
        # In-memory state only changes once the store accepted the new list
        self._write(self.key, operations)
        self._operations = operations

    def reload(self) -> None:
        """Re-read the queue and dead letters from the store."""
        self._operations = self._read(self.key)
        self._dead_letters = self._read(self.dead_letter_key)
        if self._operations:
            logger.info(f"Loaded {len(self._operations)} pending sync operations")

    # === Queue Operations ===

    def enqueue(self, operation: SyncOperation) -> Optional[SyncOperation]:
        """
        Append an operation, replacing any pending one for the same entity.

        Returns:
            The superseded operation, if there was one.
        """
        superseded = None
        remaining = []
        for op in self._operations:
            if op.entity_key == operation.entity_key:
                superseded = op
            else:
                remaining.append(op)

        remaining.append(operation)
        self._commit(remaining)

        if superseded:
            logger.debug(
                f"Replaced {superseded.type.value} with {operation.type.value} "
                f"for {operation.entity_type.value} {operation.entity_id}"
            )
        else:
            logger.debug(
                f"Enqueued {operation.type.value} for "
                f"{operation.entity_type.value} {operation.entity_id}"
            )
        return superseded

    def peek(self) -> Optional[SyncOperation]:
        return self._operations[0] if self._operations else None

    def dequeue_next(self) -> Optional[SyncOperation]:
        """Remove and return the oldest pending operation."""
        if not self._operations:
            return None
        operation = self._operations[0]
        self._commit(self._operations[1:])
        return operation

    def get(self, operation_id: str) -> Optional[SyncOperation]:
        for op in self._operations:
            if op.id == operation_id:
                return op
        return None

    def find_by_entity(self, entity_type: EntityType, entity_id: str) -> Optional[SyncOperation]:
        for op in self._operations:
            if op.matches_entity(entity_type, entity_id):
                return op
        return None

    def update(self, operation: SyncOperation) -> bool:
        """Replace an operation in place, keeping its position."""
        for index, op in enumerate(self._operations):
            if op.id == operation.id:
                operations = list(self._operations)
                operations[index] = operation
                self._commit(operations)
                return True
        return False

    def remove(self, operation_id: str) -> Optional[SyncOperation]:
        """Remove an operation by id."""
        for index, op in enumerate(self._operations):
            if op.id == operation_id:
                self._commit(self._operations[:index] + self._operations[index + 1:])
                return op
        return None

    def remove_by_entity(
        self,
        entity_id: str,
        entity_type: Optional[EntityType] = None,
    ) -> int:
        """Cancel pending operations for an entity. Returns how many were removed."""
        entity_id = str(entity_id)
        remaining = [
            op for op in self._operations
            if not (
                op.entity_id == entity_id
                and (entity_type is None or op.entity_type == EntityType(entity_type))
            )
        ]
        removed = len(self._operations) - len(remaining)
        if removed:
            self._commit(remaining)
            logger.debug(f"Cancelled {removed} pending operation(s) for {entity_id}")
        return removed

    def clear(self) -> int:
        """Remove every pending operation."""
        count = len(self._operations)
        self._commit([])
        return count

    def snapshot(self) -> list[SyncOperation]:
        """Ordered copy of the pending operations."""
        return list(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    def __iter__(self) -> Iterator[SyncOperation]:
        return iter(self.snapshot())

    def __bool__(self) -> bool:
        return bool(self._operations)

    # === Dead Letters ===

    def drop(self, operation_id: str, reason: Optional[str] = None) -> Optional[SyncOperation]:
        """Remove an operation permanently and keep it in the dead-letter list."""
        operation = self.get(operation_id)
        if operation is None:
            return None

        if reason:
            operation = operation.copy(last_error=reason)

        # Dead letter written first: a failed queue write leaves a duplicate, not a loss
        dead_letters = (self._dead_letters + [operation])[-self.max_dead_letters:]
        self._write(self.dead_letter_key, dead_letters)
        self._dead_letters = dead_letters
        self.remove(operation_id)

        logger.warning(
            f"Dropped {operation.type.value} for {operation.entity_type.value} "
            f"{operation.entity_id} after {operation.attempts} attempt(s): "
            f"{operation.last_error}"
        )
        return operation

    @property
    def dead_letters(self) -> list[SyncOperation]:
        return list(self._dead_letters)

    def clear_dead_letters(self) -> int:
        count = len(self._dead_letters)
        self.store.delete(self.dead_letter_key)
        self._dead_letters = []
        return count
