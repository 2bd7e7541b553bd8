"""
Local Store Tests

The same behaviour is checked against the in-memory and SQLAlchemy stores.
"""

import pytest

from conftest import ts
from offline_sync.exceptions import LocalStoreError
from offline_sync.models import EntityRecord, EntityType


@pytest.fixture(params=["memory", "sql"])
def store(request, tmp_path):
    from offline_sync.local_store import MemoryLocalStore, SqlLocalStore

    if request.param == "memory":
        yield MemoryLocalStore()
    else:
        store = SqlLocalStore(f"sqlite:///{tmp_path / 'local.db'}")
        yield store
        store.close()


class TestLocalStore:
    """Tests for staged writes, save and rollback."""

    def test_insert_then_get(self, store):
        store.insert(EntityRecord(EntityType.TASK, "t1", ts(1), {"title": "A"}))

        record = store.get(EntityType.TASK, "t1")

        assert record.fields == {"title": "A"}
        assert record.updated_at == ts(1)

    def test_get_missing(self, store):
        assert store.get(EntityType.TASK, "missing") is None

    def test_types_are_separate(self, store):
        store.insert(EntityRecord(EntityType.TASK, "x", ts(1), {"title": "task"}))
        store.insert(EntityRecord(EntityType.GOAL, "x", ts(1), {"title": "goal"}))
        store.save()

        assert store.get(EntityType.GOAL, "x").fields["title"] == "goal"
        assert [r.id for r in store.all(EntityType.TASK)] == ["x"]

    def test_insert_existing_fails(self, store):
        store.insert(EntityRecord(EntityType.TASK, "t1", ts(1)))

        with pytest.raises(LocalStoreError):
            store.insert(EntityRecord(EntityType.TASK, "t1", ts(2)))

    def test_update_missing_fails(self, store):
        with pytest.raises(LocalStoreError):
            store.update(EntityRecord(EntityType.TASK, "t1", ts(1)))

    def test_update_overwrites(self, store):
        store.insert(EntityRecord(EntityType.TASK, "t1", ts(1), {"title": "old"}))
        store.save()

        store.update(EntityRecord(EntityType.TASK, "t1", ts(2), {"title": "new"}))
        store.save()

        record = store.get(EntityType.TASK, "t1")
        assert record.fields == {"title": "new"}
        assert record.updated_at == ts(2)

    def test_rollback_discards_staged_writes(self, store):
        store.insert(EntityRecord(EntityType.TASK, "kept", ts(1)))
        store.save()

        store.insert(EntityRecord(EntityType.TASK, "staged", ts(1)))
        store.update(EntityRecord(EntityType.TASK, "kept", ts(5), {"title": "changed"}))
        store.rollback()

        assert store.get(EntityType.TASK, "staged") is None
        assert store.get(EntityType.TASK, "kept").updated_at == ts(1)


class TestSqlLocalStore:
    """SQL-specific behaviour."""

    def test_saved_records_survive_reopen(self, tmp_path):
        from offline_sync.local_store import SqlLocalStore

        url = f"sqlite:///{tmp_path / 'local.db'}"
        first = SqlLocalStore(url)
        first.insert(EntityRecord(EntityType.STREAK, "s1", ts(3), {"current_streak": 4}))
        first.save()
        first.close()

        second = SqlLocalStore(url)
        record = second.get(EntityType.STREAK, "s1")
        second.close()

        assert record.fields == {"current_streak": 4}
        assert record.updated_at == ts(3)
